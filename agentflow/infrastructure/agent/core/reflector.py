"""Reflector: recovery when the model answers with text instead of a tool call.

Outside of the assistant role every turn must end in a tool call. When the
model replies with plain text, a separate reflector chain turns that text into
advice, which is sent back as a human message before the original agent is
called again. The exchange is bounded by ``max_reflector_calls``.
"""

import logging

from agentflow.configuration.logging import truncate_for_log
from agentflow.domain.model.chain.message import Message
from agentflow.domain.model.chain.msg_chain import MsgChainType
from agentflow.domain.ports.services.prompt_renderer_port import PromptRenderer, PromptType
from agentflow.domain.ports.services.provider_client_port import ProviderOptionsType
from agentflow.domain.ports.services.tools_executor_port import ContextToolsExecutor
from agentflow.infrastructure.agent.config import ExecutionConfig
from agentflow.infrastructure.agent.core.caller import CallResult, ChainCaller
from agentflow.infrastructure.agent.errors import AgentExecutionError, error_text
from agentflow.infrastructure.agent.execution_context import get_current_time
from agentflow.infrastructure.agent.tools.names import TOOL_PLACEHOLDER
from agentflow.infrastructure.telemetry.tracing import add_span_attributes, async_with_tracer

logger = logging.getLogger(__name__)


class Reflector:
    """Steers an agent back to tool calls."""

    def __init__(
        self,
        caller: ChainCaller,
        prompter: PromptRenderer,
        config: ExecutionConfig | None = None,
    ) -> None:
        self.caller = caller
        self.prompter = prompter
        self.config = config or ExecutionConfig()

    @async_with_tracer("reflector")
    async def reflect(
        self,
        origin_options: ProviderOptionsType,
        chain_id: int,
        task_id: int | None,
        subtask_id: int | None,
        chain: list[Message],
        human_message: str,
        content: str,
        execution_context: str,
        executor: ContextToolsExecutor,
        iteration: int = 1,
    ) -> CallResult:
        """Get a tool-calling turn out of the agent.

        ``chain`` already ends with the AI text reply; it is extended locally
        and never persisted, the caller appends the resulting tool calls to
        its own chain.

        Raises:
            AgentExecutionError: If the iteration limit is exceeded
            AgentCommunicationError: If the agent can not be called
        """
        add_span_attributes({"reflector.iteration": iteration, "chain.id": chain_id})

        if iteration > self.config.max_reflector_calls:
            logger.warning(
                f"[Reflector] Called too many times for chain {chain_id}: "
                f"{truncate_for_log(content)}"
            )
            raise AgentExecutionError("reflector limit calls reached", step="reflector")

        logger.warning(
            f"[Reflector] Got message instead of tool call in chain {chain_id}: "
            f"{truncate_for_log(content)}"
        )

        user_context = {
            "Message": content,
            "BarrierToolNames": executor.get_barrier_tool_names(),
        }
        if human_message:
            user_context["Request"] = human_message
        system_context = {
            "BarrierTools": executor.get_barrier_tools(),
            "CurrentTime": get_current_time(),
            "ExecutionContext": execution_context,
        }

        try:
            user_prompt = self.prompter.render_template(PromptType.QUESTION_REFLECTOR, user_context)
            system_prompt = self.prompter.render_template(PromptType.REFLECTOR, system_context)
        except Exception as e:
            raise AgentExecutionError(
                f"failed to get reflector template: {error_text(e)}", step="reflector", cause=e
            ) from e

        try:
            advice = await self.caller.perform_simple_chain(
                task_id,
                subtask_id,
                ProviderOptionsType.REFLECTOR,
                MsgChainType.REFLECTOR,
                system_prompt,
                user_prompt,
            )
        except Exception as e:
            logger.warning(f"[Reflector] Reflector chain failed, using placeholder advice: {e}")
            advice = TOOL_PLACEHOLDER

        chain = [*chain, Message.human(advice)]
        result = await self.caller.call_with_retries(chain, origin_options, executor)
        await self.caller.update_msg_chain_usage(chain_id, result.info)

        chain.append(Message.ai(result.content))
        if not result.tool_calls:
            return await self.reflect(
                origin_options,
                chain_id,
                task_id,
                subtask_id,
                chain,
                human_message,
                result.content,
                execution_context,
                executor,
                iteration + 1,
            )

        return result

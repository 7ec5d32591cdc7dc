"""
Agent Chain Performer - the execution loop shared by every agent role.

Each iteration:
1. Calls the model with the role's tools (bounded retry)
2. Records token usage on the chain row
3. Recovers plain-text replies (assistant: final answer, others: reflector)
4. Appends the AI tool-call message and persists the chain
5. Executes each call through the bridge, appending and persisting every response
6. Stops after a barrier call, otherwise optionally summarizes the chain

The chain is persisted after every mutation, so an interrupted run leaves a
chain that ``ensure_chain_consistency`` can repair.
"""

import logging
from collections.abc import Callable

from agentflow.configuration.logging import truncate_for_log
from agentflow.domain.model.agent.agent_context import AgentContext
from agentflow.domain.model.chain.message import ChatMessageRole, Message
from agentflow.domain.ports.services.agent_log_port import MsgLogType
from agentflow.domain.ports.services.provider_client_port import ProviderOptionsType
from agentflow.domain.ports.services.summarizer_port import Summarizer
from agentflow.domain.ports.services.tools_executor_port import (
    ContextToolsExecutor,
    SummarizeHandler,
)
from agentflow.infrastructure.agent.chain.consistency import get_last_human_message
from agentflow.infrastructure.agent.config import ExecutionConfig
from agentflow.infrastructure.agent.core.caller import CallResult, ChainCaller
from agentflow.infrastructure.agent.core.reflector import Reflector
from agentflow.infrastructure.agent.doom_loop.detector import RepeatingCallDetector
from agentflow.infrastructure.agent.errors import AgentExecutionError, error_text
from agentflow.infrastructure.agent.execution_context import ExecutionContextBuilder
from agentflow.infrastructure.agent.tools.bridge import ToolCallBridge
from agentflow.infrastructure.telemetry.tracing import add_span_attributes, async_with_tracer

logger = logging.getLogger(__name__)

SummarizeHandlerFactory = Callable[[int | None, int | None], SummarizeHandler]


class AgentChainPerformer:
    """Runs an agent chain until a barrier tool is called."""

    def __init__(
        self,
        caller: ChainCaller,
        bridge: ToolCallBridge,
        reflector: Reflector,
        context_builder: ExecutionContextBuilder,
        summarize_handler_factory: SummarizeHandlerFactory,
        config: ExecutionConfig | None = None,
    ) -> None:
        """
        Initialize the performer.

        Args:
            caller: Model call primitives bound to the flow
            bridge: Tool call execution with argument repair
            reflector: Recovery of plain-text replies
            context_builder: Source of the execution context handed to the reflector
            summarize_handler_factory: Builds the result summarizer of a task/subtask
            config: Retry ceilings and loop guards
        """
        self.caller = caller
        self.bridge = bridge
        self.reflector = reflector
        self.context_builder = context_builder
        self.summarize_handler_factory = summarize_handler_factory
        self.config = config or ExecutionConfig()

    @async_with_tracer("agent_chain")
    async def perform_agent_chain(
        self,
        agent_ctx: AgentContext,
        options_type: ProviderOptionsType,
        chain_id: int,
        task_id: int | None,
        subtask_id: int | None,
        chain: list[Message],
        executor: ContextToolsExecutor,
        summarizer: Summarizer | None = None,
    ) -> None:
        """Drive the chain until a barrier call (or the assistant's final answer).

        Raises:
            AgentError: On any unrecoverable failure; the persisted chain keeps
                every completed step
        """
        add_span_attributes(
            {
                "agent.role": agent_ctx.current_role.value,
                "agent.parent_role": agent_ctx.parent_role.value,
                "chain.id": chain_id,
                "task.id": task_id,
                "subtask.id": subtask_id,
            }
        )

        detector = RepeatingCallDetector(threshold=self.config.repeating_tool_call_threshold)
        summarize_handler = self.summarize_handler_factory(task_id, subtask_id)
        chain = list(chain)

        try:
            execution_context = await self.context_builder.get_execution_context(
                task_id, subtask_id
            )
        except Exception as e:
            logger.error(f"[AgentChain] Failed to get execution context for chain {chain_id}: {e}")
            raise AgentExecutionError(
                f"failed to get execution context: {error_text(e)}", step="execution_context", cause=e
            ) from e

        while True:
            result = await self.caller.call_with_retries(chain, options_type, executor)
            await self.caller.update_msg_chain_usage(chain_id, result.info)

            if not result.tool_calls:
                if options_type == ProviderOptionsType.ASSISTANT:
                    await self.process_assistant_result(
                        chain_id, chain, result, summarizer, summarize_handler
                    )
                    return

                content = result.content
                try:
                    result = await self.reflector.reflect(
                        options_type,
                        chain_id,
                        task_id,
                        subtask_id,
                        [*chain, Message.ai(content)],
                        get_last_human_message(chain),
                        content,
                        execution_context,
                        executor,
                    )
                except Exception as e:
                    logger.error(
                        f"[AgentChain] Failed to perform reflector for chain {chain_id}: {e} "
                        f"content={truncate_for_log(content)!r} "
                        f"thinking={truncate_for_log(result.thinking)!r} "
                        f"execution={truncate_for_log(execution_context)!r}"
                    )
                    raise

            chain.append(Message(role=ChatMessageRole.AI, parts=list(result.tool_calls)))
            await self.caller.update_msg_chain(chain_id, chain)

            want_to_stop = False
            for idx, tool_call in enumerate(result.tool_calls):
                try:
                    response = await self.bridge.exec_tool_call(
                        chain_id, idx, result, detector, executor
                    )
                except Exception as e:
                    logger.error(
                        f"[AgentChain] Failed to exec tool call {tool_call.name} in chain "
                        f"{chain_id}: {e} args={truncate_for_log(tool_call.arguments)!r}"
                    )
                    raise

                chain.append(Message.tool_response(tool_call.id, tool_call.name, response))
                await self.caller.update_msg_chain(chain_id, chain)

                if executor.is_barrier_function(tool_call.name):
                    want_to_stop = True

            if want_to_stop:
                return

            if summarizer is not None:
                try:
                    chain = await summarizer.summarize_chain(summarize_handler, chain)
                except Exception as e:
                    logger.warning(f"[AgentChain] Failed to summarize chain {chain_id}: {e}")
                else:
                    await self.caller.update_msg_chain(chain_id, chain)

    async def process_assistant_result(
        self,
        chain_id: int,
        chain: list[Message],
        result: CallResult,
        summarizer: Summarizer | None,
        summarize_handler: SummarizeHandler,
    ) -> None:
        """Finish an assistant turn that answered with text."""
        if self.caller.stream_handler is not None:
            if result.stream_id == 0:
                result.stream_id = self.caller.stream_ids.next()
            try:
                await self.caller.stream_update(result, MsgLogType.ANSWER)
            except Exception as e:
                raise AgentExecutionError(
                    f"failed to stream assistant result: {error_text(e)}",
                    step="assistant_result",
                    cause=e,
                ) from e

        if summarizer is not None:
            try:
                chain = await summarizer.summarize_chain(summarize_handler, chain)
            except Exception as e:
                logger.warning(f"[AgentChain] Failed to summarize chain {chain_id}: {e}")

        chain = [*chain, Message.ai(result.content)]
        await self.caller.update_msg_chain(chain_id, chain)

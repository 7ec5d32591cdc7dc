"""
Assistant Provider - a free-form chat agent bound to one flow.

The assistant answers the user turn by turn in a single long-lived chain.
Unlike the primary agent it has no barrier tool: a text reply ends the turn.
Depending on the assistant record it either delegates to the specialist
agents or works with the host environment tools directly.
"""

import logging

from agentflow.domain.model.agent.agent_context import AgentContext
from agentflow.domain.model.chain.message import Message, chain_from_json
from agentflow.domain.model.chain.msg_chain import MsgChainType
from agentflow.domain.model.flow.task import SubtaskStatus
from agentflow.domain.ports.services.prompt_renderer_port import PromptType
from agentflow.domain.ports.services.provider_client_port import ProviderOptionsType
from agentflow.domain.ports.services.summarizer_port import Summarizer
from agentflow.domain.ports.services.tools_executor_port import AssistantExecutorConfig
from agentflow.infrastructure.agent.chain.chain_ast import SUMMARIZATION_TOOL_NAME, ChainAST
from agentflow.infrastructure.agent.errors import (
    AgentExecutionError,
    ChainSerializationError,
    ChainStructureError,
    ErrorContext,
    StorageError,
    error_text,
    wrap_error,
)
from agentflow.infrastructure.agent.execution_context import get_current_time
from agentflow.infrastructure.agent.provider import FlowProvider
from agentflow.infrastructure.agent.tools import names
from agentflow.infrastructure.telemetry.tracing import add_span_attributes, async_with_tracer

logger = logging.getLogger(__name__)


def update_assistant_chain(
    chain: list[Message], system_prompt: str, human_prompt: str
) -> list[Message]:
    """Refresh the system prompt of an assistant chain and append the user turn.

    Raises:
        ChainStructureError: If a non-empty chain has no sections
    """
    if not chain:
        return [Message.system(system_prompt), Message.human(human_prompt)]

    ast = ChainAST.from_messages(chain, force=True)
    if not ast.sections:
        raise ChainStructureError("failed to get sections from chain")

    ast.sections[0].header.system_message = Message.system(system_prompt)
    ast.append_human_message(human_prompt)
    return ast.messages()


class AssistantProvider:
    """Runs one assistant of a flow on top of the flow's ``FlowProvider``."""

    def __init__(
        self,
        assistant_id: int,
        flow_provider: FlowProvider,
        summarizer: Summarizer | None = None,
        msg_chain_id: int | None = None,
    ) -> None:
        """
        Initialize the assistant.

        Args:
            assistant_id: Assistant record the provider is bound to
            flow_provider: Provider of the flow the assistant belongs to
            summarizer: Chain summarizer of the assistant chain; the flow's
                summarizer is used when omitted
            msg_chain_id: Chain of an assistant that was prepared before
        """
        self.id = assistant_id
        self.fp = flow_provider
        self.summarizer = summarizer if summarizer is not None else flow_provider.summarizer
        self.msg_chain_id = msg_chain_id

    @property
    def title(self) -> str:
        return self.fp.title

    @property
    def language(self) -> str:
        return self.fp.language

    def _chain_id(self) -> int:
        if self.msg_chain_id is None:
            raise AgentExecutionError("assistant agent chain is not prepared", step="assistant")
        return self.msg_chain_id

    # ========================================================================
    # Prompt
    # ========================================================================

    async def use_agents(self) -> bool:
        try:
            return await self.fp.repository.get_assistant_use_agents(self.id)
        except Exception as e:
            logger.error(f"[AssistantProvider] Failed to get assistant {self.id}: {e}")
            raise StorageError(
                f"failed to get assistant use agents flag: {error_text(e)}",
                entity="assistant",
                cause=e,
            ) from e

    async def get_execution_context(self) -> str:
        """Stored context of the latest subtask, prepared on demand if none is stored."""
        try:
            subtasks = await self.fp.repository.get_flow_subtasks(self.fp.flow_id)
        except Exception as e:
            raise StorageError(
                f"failed to get flow subtasks: {error_text(e)}", entity="subtask", cause=e
            ) from e
        if not subtasks:
            return ""

        subtasks = sorted(subtasks, key=lambda s: s.id)
        last_active = None
        execution_context = ""
        for subtask in subtasks:
            if subtask.status != SubtaskStatus.CREATED:
                last_active = subtask
            if subtask.context:
                execution_context = subtask.context
        if execution_context:
            return execution_context

        subtask = last_active if last_active is not None else subtasks[-1]
        try:
            return await self.fp.context_builder.prepare_execution_context(
                subtask.task_id,
                subtask.id,
                self.fp.summarize_result_handler(subtask.task_id, subtask.id),
            )
        except Exception as e:
            logger.error(f"[AssistantProvider] Failed to prepare execution context: {e}")
            raise AgentExecutionError(
                f"failed to prepare execution context: {error_text(e)}",
                step="assistant",
                cause=e,
            ) from e

    async def get_system_prompt(self) -> str:
        use_agents = await self.use_agents()
        execution_context = await self.get_execution_context()
        return self.fp._render(
            PromptType.ASSISTANT,
            {
                "SearchToolName": names.SEARCH_TOOL_NAME,
                "PentesterToolName": names.PENTESTER_TOOL_NAME,
                "CoderToolName": names.CODER_TOOL_NAME,
                "AdviceToolName": names.ADVICE_TOOL_NAME,
                "MemoristToolName": names.MEMORIST_TOOL_NAME,
                "MaintenanceToolName": names.MAINTENANCE_TOOL_NAME,
                "TerminalToolName": names.TERMINAL_TOOL_NAME,
                "FileToolName": names.FILE_TOOL_NAME,
                "BrowserToolName": names.BROWSER_TOOL_NAME,
                "SummarizationToolName": SUMMARIZATION_TOOL_NAME,
                "UseAgents": use_agents,
                "DockerImage": self.fp.image,
                "ExecutionContext": execution_context,
                "Lang": self.fp.language,
                "CurrentTime": get_current_time(),
            },
            "system prompt for assistant",
        )

    # ========================================================================
    # Chain
    # ========================================================================

    @async_with_tracer("assistant_provider")
    async def prepare_agent_chain(self) -> int:
        """Seed (or restore) the assistant chain and return its ID."""
        add_span_attributes({"flow.id": self.fp.flow_id, "assistant.id": self.id})
        system_prompt = await self.get_system_prompt()

        try:
            chain_id, _ = await self.fp.restorer.restore_chain(
                None,
                None,
                ProviderOptionsType.ASSISTANT,
                MsgChainType.ASSISTANT,
                system_prompt,
                "",
                self.fp.summarize_result_handler(None, None),
            )
        except Exception as e:
            logger.error(f"[AssistantProvider] Failed to restore assistant msg chain: {e}")
            raise AgentExecutionError(
                f"failed to restore assistant msg chain: {error_text(e)}",
                step="prepare_agent_chain",
                cause=e,
            ) from e

        self.msg_chain_id = chain_id
        return chain_id

    @async_with_tracer("assistant_provider")
    async def perform_agent_chain(self) -> None:
        """Answer the latest user turn of the assistant chain.

        Raises:
            AgentError: If the chain can not be loaded or the loop fails
        """
        chain_id = self._chain_id()
        add_span_attributes(
            {"flow.id": self.fp.flow_id, "assistant.id": self.id, "chain.id": chain_id}
        )
        use_agents = await self.use_agents()

        try:
            msg_chain = await self.fp.repository.get_msg_chain(chain_id)
        except Exception as e:
            logger.error(f"[AssistantProvider] Failed to get assistant msg chain {chain_id}: {e}")
            raise StorageError(
                f"failed to get assistant msg chain {chain_id}: {error_text(e)}",
                entity="msg_chain",
                cause=e,
            ) from e

        try:
            chain = chain_from_json(msg_chain.chain)
        except ChainSerializationError as e:
            raise ChainSerializationError(
                f"failed to unmarshal assistant msg chain {chain_id}: {error_text(e)}", cause=e
            ) from e

        agent_ctx = AgentContext.root(MsgChainType.ASSISTANT)
        cfg = AssistantExecutorConfig(
            use_agents=use_agents,
            summarizer=self.fp.summarize_result_handler(None, None),
        )
        if use_agents:
            handlers = self.fp.handlers
            try:
                cfg.adviser = await handlers.ask_advice(agent_ctx, None, None)
                cfg.coder = await handlers.coder(agent_ctx, None, None)
                cfg.installer = await handlers.installer(agent_ctx, None, None)
                cfg.memorist = await handlers.memorist(agent_ctx, None, None)
                cfg.pentester = await handlers.pentester(agent_ctx, None, None)
                cfg.searcher = await handlers.subtask_searcher(agent_ctx, None, None)
            except Exception as e:
                logger.error(f"[AssistantProvider] Failed to get assistant handlers: {e}")
                raise wrap_error(e, "failed to get assistant handlers") from e

        try:
            executor = self.fp.executor.get_assistant_executor(cfg)
        except Exception as e:
            raise AgentExecutionError(
                f"failed to get assistant executor: {error_text(e)}", step="assistant", cause=e
            ) from e

        try:
            await self.fp.performer.perform_agent_chain(
                agent_ctx,
                ProviderOptionsType.ASSISTANT,
                msg_chain.id,
                None,
                None,
                chain,
                executor,
                self.summarizer,
            )
        except Exception as e:
            logger.error(f"[AssistantProvider] Assistant chain {chain_id} failed: {e}")
            raise AgentExecutionError(
                f"failed to perform assistant agent chain: {error_text(e)}",
                step="assistant",
                context=ErrorContext(
                    operation="perform_agent_chain",
                    flow_id=self.fp.flow_id,
                    chain_id=chain_id,
                ),
                cause=e,
            ) from e

    @async_with_tracer("assistant_provider")
    async def put_input_to_agent_chain(self, input: str) -> None:
        """Append a user turn, refreshing the system prompt first."""
        chain_id = self._chain_id()
        system_prompt = await self.get_system_prompt()
        await self.fp.process_chain(
            chain_id, lambda chain: update_assistant_chain(chain, system_prompt, input)
        )

    @async_with_tracer("assistant_provider")
    async def ensure_chain_consistency(self) -> None:
        await self.fp.ensure_chain_consistency(self._chain_id())

"""
Handler Factory - builds the delegating tool handlers of one flow.

Handlers are created per calling agent: ``coder(agent_ctx, task_id,
subtask_id)`` returns a handler that, when the model of the ``agent_ctx``
role calls ``coder``, runs a coder agent with its own nested handlers
(adviser, installer, memorist, searcher), persists its chain, waits for the
``code_result`` barrier and writes an audit entry.

Sub-agents fail by raising; the tool-call bridge of the calling agent
turns that into a retry of the tool call.
"""

import logging
from typing import Any

from agentflow.domain.model.agent.agent_context import AgentContext
from agentflow.domain.model.agent.tool_args import (
    AgentResult,
    CodeResult,
    EnricherResult,
    HackResult,
    MaintenanceResult,
    MemoristResult,
    SearchResult,
)
from agentflow.domain.model.chain.msg_chain import MsgChainType
from agentflow.domain.model.flow.task import Subtask, Task
from agentflow.domain.ports.repositories.flow_repository import FlowRepository
from agentflow.domain.ports.services.agent_log_port import AgentLogProvider
from agentflow.domain.ports.services.prompt_renderer_port import PromptRenderer, PromptType
from agentflow.domain.ports.services.provider_client_port import ProviderOptionsType
from agentflow.domain.ports.services.summarizer_port import Summarizer
from agentflow.domain.ports.services.tools_executor_port import (
    CoderExecutorConfig,
    ContextToolsExecutor,
    EnricherExecutorConfig,
    FlowToolsExecutor,
    InstallerExecutorConfig,
    MemoristExecutorConfig,
    PentesterExecutorConfig,
    SearcherExecutorConfig,
)
from agentflow.infrastructure.agent.config import ExecutionConfig
from agentflow.infrastructure.agent.core.caller import ChainCaller
from agentflow.infrastructure.agent.core.performer import AgentChainPerformer
from agentflow.infrastructure.agent.core.restorer import ChainRestorer
from agentflow.infrastructure.agent.errors import AgentExecutionError, error_text
from agentflow.infrastructure.agent.execution_context import ExecutionContextBuilder
from agentflow.infrastructure.agent.handlers.agents import (
    AskAdviceHandler,
    CoderHandler,
    InstallerHandler,
    MemoristHandler,
    PentesterHandler,
    SearcherHandler,
)
from agentflow.infrastructure.agent.handlers.base import ResultBarrier
from agentflow.infrastructure.agent.handlers.summarizer import SummarizeResultHandler

logger = logging.getLogger(__name__)


class HandlerFactory:
    """Creates sub-agent handlers and runs the sub-agents they delegate to."""

    def __init__(
        self,
        flow_id: int,
        repository: FlowRepository,
        prompter: PromptRenderer,
        tools: FlowToolsExecutor,
        performer: AgentChainPerformer,
        restorer: ChainRestorer,
        context_builder: ExecutionContextBuilder,
        caller: ChainCaller,
        agent_log: AgentLogProvider | None = None,
        summarizer: Summarizer | None = None,
        config: ExecutionConfig | None = None,
        image: str = "",
        language: str = "English",
    ) -> None:
        """
        Initialize the factory.

        Args:
            flow_id: Flow every handler works in
            repository: Storage of tasks, subtasks and chains
            prompter: Renders the sub-agent prompts
            tools: Builds the executor of each role
            performer: Runs the sub-agent chains
            restorer: Continues a role's previous chain of the same task
            context_builder: Source of execution contexts
            caller: Simple chain and chain persistence primitives
            agent_log: Audit sink of sub-agent invocations
            summarizer: Chain summarizer handed to every sub-agent loop
            config: Execution constants
            image: Container image the agents work in
            language: Language the agents answer in
        """
        self.flow_id = flow_id
        self.repository = repository
        self.prompter = prompter
        self.tools = tools
        self.performer = performer
        self.restorer = restorer
        self.context_builder = context_builder
        self.caller = caller
        self.agent_log = agent_log
        self.summarizer = summarizer
        self.config = config or ExecutionConfig()
        self.image = image
        self.language = language

    # ========================================================================
    # Helpers
    # ========================================================================

    @staticmethod
    def wrap(message: str, error: Exception) -> AgentExecutionError:
        return AgentExecutionError(f"{message}: {error_text(error)}", step="handler", cause=error)

    def render_prompts(
        self,
        label: str,
        user_type: PromptType,
        user_context: dict[str, Any],
        system_type: PromptType,
        system_context: dict[str, Any],
    ) -> tuple[str, str]:
        """Render the question and system prompts of a sub-agent."""
        try:
            user_prompt = self.prompter.render_template(user_type, user_context)
        except Exception as e:
            raise self.wrap(f"failed to get user {label} template", e) from e
        try:
            system_prompt = self.prompter.render_template(system_type, system_context)
        except Exception as e:
            raise self.wrap(f"failed to get system {label} template", e) from e
        return user_prompt, system_prompt

    def summarize_result(
        self, task_id: int | None, subtask_id: int | None
    ) -> SummarizeResultHandler:
        return SummarizeResultHandler(self.caller, self.prompter, task_id, subtask_id, self.config)

    async def _scope(
        self, task_id: int | None, subtask_id: int | None
    ) -> tuple[Task | None, Subtask | None, str]:
        task: Task | None = None
        subtask: Subtask | None = None
        if task_id is not None:
            try:
                task = await self.repository.get_flow_task(self.flow_id, task_id)
            except Exception as e:
                raise self.wrap("failed to get task", e) from e
        if subtask_id is not None:
            try:
                subtask = await self.repository.get_flow_subtask(self.flow_id, subtask_id)
            except Exception as e:
                raise self.wrap("failed to get subtask", e) from e
        try:
            execution_context = await self.context_builder.get_execution_context(
                task_id, subtask_id
            )
        except Exception as e:
            raise self.wrap("failed to get execution context", e) from e
        return task, subtask, execution_context

    async def put_agent_log(
        self,
        agent_ctx: AgentContext,
        question: str,
        answer: str,
        task_id: int | None,
        subtask_id: int | None,
    ) -> None:
        if self.agent_log is None:
            return
        try:
            await self.agent_log.put_log(
                agent_ctx.parent_role, agent_ctx.current_role, question, answer, task_id, subtask_id
            )
        except Exception as e:
            logger.warning(
                f"[HandlerFactory] Failed to put agent log "
                f"{agent_ctx.parent_role.value} -> {agent_ctx.current_role.value}: {e}"
            )

    # ========================================================================
    # Handlers
    # ========================================================================

    async def ask_advice(
        self, agent_ctx: AgentContext, task_id: int | None, subtask_id: int | None
    ) -> AskAdviceHandler:
        task, subtask, execution_context = await self._scope(task_id, subtask_id)
        return AskAdviceHandler(self, agent_ctx, task_id, subtask_id, execution_context, task, subtask)

    async def coder(
        self, agent_ctx: AgentContext, task_id: int | None, subtask_id: int | None
    ) -> CoderHandler:
        task, subtask, execution_context = await self._scope(task_id, subtask_id)
        return CoderHandler(self, agent_ctx, task_id, subtask_id, execution_context, task, subtask)

    async def installer(
        self, agent_ctx: AgentContext, task_id: int | None, subtask_id: int | None
    ) -> InstallerHandler:
        task, subtask, execution_context = await self._scope(task_id, subtask_id)
        return InstallerHandler(self, agent_ctx, task_id, subtask_id, execution_context, task, subtask)

    async def memorist(
        self, agent_ctx: AgentContext, task_id: int | None, subtask_id: int | None
    ) -> MemoristHandler:
        task, subtask, execution_context = await self._scope(task_id, subtask_id)
        return MemoristHandler(self, agent_ctx, task_id, subtask_id, execution_context, task, subtask)

    async def pentester(
        self, agent_ctx: AgentContext, task_id: int | None, subtask_id: int | None
    ) -> PentesterHandler:
        task, subtask, execution_context = await self._scope(task_id, subtask_id)
        return PentesterHandler(self, agent_ctx, task_id, subtask_id, execution_context, task, subtask)

    async def subtask_searcher(
        self, agent_ctx: AgentContext, task_id: int | None, subtask_id: int | None
    ) -> SearcherHandler:
        task, subtask, execution_context = await self._scope(task_id, subtask_id)
        return SearcherHandler(self, agent_ctx, task_id, subtask_id, execution_context, task, subtask)

    async def task_searcher(self, agent_ctx: AgentContext, task_id: int) -> SearcherHandler:
        return await self.subtask_searcher(agent_ctx, task_id, None)

    # ========================================================================
    # Sub-agent runs
    # ========================================================================

    async def _run(
        self,
        agent_ctx: AgentContext,
        label: str,
        options_type: ProviderOptionsType,
        chain_type: MsgChainType,
        executor: ContextToolsExecutor,
        barrier: ResultBarrier[Any],
        task_id: int | None,
        subtask_id: int | None,
        system_prompt: str,
        user_prompt: str,
        question: str,
    ) -> str:
        try:
            chain_id, chain = await self.restorer.restore_chain(
                task_id,
                subtask_id,
                options_type,
                chain_type,
                system_prompt,
                user_prompt,
                self.summarize_result(task_id, subtask_id),
            )
        except Exception as e:
            raise self.wrap("failed to restore chain", e) from e

        try:
            await self.performer.perform_agent_chain(
                agent_ctx,
                options_type,
                chain_id,
                task_id,
                subtask_id,
                chain,
                executor,
                self.summarizer,
            )
        except Exception as e:
            logger.error(f"[HandlerFactory] {label} chain {chain_id} failed: {e}")
            raise self.wrap(f"failed to get task {label} result", e) from e

        payload: AgentResult | None = barrier.value
        if payload is None:
            raise AgentExecutionError(
                f"{label} finished without calling its result function", step="handler"
            )

        await self.put_agent_log(agent_ctx, question, payload.result, task_id, subtask_id)
        return payload.result

    async def perform_adviser(
        self,
        agent_ctx: AgentContext,
        task_id: int | None,
        subtask_id: int | None,
        system_prompt: str,
        user_prompt: str,
    ) -> str:
        advice = await self.caller.perform_simple_chain(
            task_id,
            subtask_id,
            ProviderOptionsType.ADVISER,
            MsgChainType.ADVISER,
            system_prompt,
            user_prompt,
        )
        await self.put_agent_log(agent_ctx, user_prompt, advice, task_id, subtask_id)
        return advice

    async def perform_enricher(
        self,
        agent_ctx: AgentContext,
        task_id: int | None,
        subtask_id: int | None,
        system_prompt: str,
        user_prompt: str,
        question: str,
    ) -> str:
        try:
            memorist = await self.memorist(agent_ctx, task_id, subtask_id)
        except Exception as e:
            raise self.wrap("failed to get memorist handler", e) from e
        try:
            searcher = await self.subtask_searcher(agent_ctx, task_id, subtask_id)
        except Exception as e:
            raise self.wrap("failed to get searcher handler", e) from e

        barrier = ResultBarrier(EnricherResult, "enrich result successfully processed")
        try:
            executor = self.tools.get_enricher_executor(
                EnricherExecutorConfig(
                    task_id=task_id,
                    subtask_id=subtask_id,
                    memorist=memorist,
                    searcher=searcher,
                    enricher_result=barrier,
                )
            )
        except Exception as e:
            raise self.wrap("failed to get enricher executor", e) from e

        return await self._run(
            agent_ctx,
            "enricher",
            ProviderOptionsType.ENRICHER,
            MsgChainType.ENRICHER,
            executor,
            barrier,
            task_id,
            subtask_id,
            system_prompt,
            user_prompt,
            question,
        )

    async def perform_coder(
        self,
        agent_ctx: AgentContext,
        task_id: int | None,
        subtask_id: int | None,
        system_prompt: str,
        user_prompt: str,
        question: str,
    ) -> str:
        try:
            adviser = await self.ask_advice(agent_ctx, task_id, subtask_id)
        except Exception as e:
            raise self.wrap("failed to get adviser handler", e) from e
        try:
            installer = await self.installer(agent_ctx, task_id, subtask_id)
        except Exception as e:
            raise self.wrap("failed to get installer handler", e) from e
        try:
            memorist = await self.memorist(agent_ctx, task_id, subtask_id)
        except Exception as e:
            raise self.wrap("failed to get memorist handler", e) from e
        try:
            searcher = await self.subtask_searcher(agent_ctx, task_id, subtask_id)
        except Exception as e:
            raise self.wrap("failed to get searcher handler", e) from e

        barrier = ResultBarrier(CodeResult, "code result successfully processed")
        try:
            executor = self.tools.get_coder_executor(
                CoderExecutorConfig(
                    task_id=task_id,
                    subtask_id=subtask_id,
                    adviser=adviser,
                    installer=installer,
                    memorist=memorist,
                    searcher=searcher,
                    code_result=barrier,
                    summarizer=self.summarize_result(task_id, subtask_id),
                )
            )
        except Exception as e:
            raise self.wrap("failed to get coder executor", e) from e

        return await self._run(
            agent_ctx,
            "coder",
            ProviderOptionsType.CODER,
            MsgChainType.CODER,
            executor,
            barrier,
            task_id,
            subtask_id,
            system_prompt,
            user_prompt,
            question,
        )

    async def perform_installer(
        self,
        agent_ctx: AgentContext,
        task_id: int | None,
        subtask_id: int | None,
        system_prompt: str,
        user_prompt: str,
        question: str,
    ) -> str:
        try:
            adviser = await self.ask_advice(agent_ctx, task_id, subtask_id)
        except Exception as e:
            raise self.wrap("failed to get adviser handler", e) from e
        try:
            memorist = await self.memorist(agent_ctx, task_id, subtask_id)
        except Exception as e:
            raise self.wrap("failed to get memorist handler", e) from e
        try:
            searcher = await self.subtask_searcher(agent_ctx, task_id, subtask_id)
        except Exception as e:
            raise self.wrap("failed to get searcher handler", e) from e

        barrier = ResultBarrier(MaintenanceResult, "maintenance result successfully processed")
        try:
            executor = self.tools.get_installer_executor(
                InstallerExecutorConfig(
                    task_id=task_id,
                    subtask_id=subtask_id,
                    adviser=adviser,
                    memorist=memorist,
                    searcher=searcher,
                    maintenance_result=barrier,
                    summarizer=self.summarize_result(task_id, subtask_id),
                )
            )
        except Exception as e:
            raise self.wrap("failed to get installer executor", e) from e

        return await self._run(
            agent_ctx,
            "installer",
            ProviderOptionsType.INSTALLER,
            MsgChainType.INSTALLER,
            executor,
            barrier,
            task_id,
            subtask_id,
            system_prompt,
            user_prompt,
            question,
        )

    async def perform_pentester(
        self,
        agent_ctx: AgentContext,
        task_id: int | None,
        subtask_id: int | None,
        system_prompt: str,
        user_prompt: str,
        question: str,
    ) -> str:
        try:
            adviser = await self.ask_advice(agent_ctx, task_id, subtask_id)
        except Exception as e:
            raise self.wrap("failed to get adviser handler", e) from e
        try:
            coder = await self.coder(agent_ctx, task_id, subtask_id)
        except Exception as e:
            raise self.wrap("failed to get coder handler", e) from e
        try:
            installer = await self.installer(agent_ctx, task_id, subtask_id)
        except Exception as e:
            raise self.wrap("failed to get installer handler", e) from e
        try:
            memorist = await self.memorist(agent_ctx, task_id, subtask_id)
        except Exception as e:
            raise self.wrap("failed to get memorist handler", e) from e
        try:
            searcher = await self.subtask_searcher(agent_ctx, task_id, subtask_id)
        except Exception as e:
            raise self.wrap("failed to get searcher handler", e) from e

        barrier = ResultBarrier(HackResult, "hack result successfully processed")
        try:
            executor = self.tools.get_pentester_executor(
                PentesterExecutorConfig(
                    task_id=task_id,
                    subtask_id=subtask_id,
                    adviser=adviser,
                    coder=coder,
                    installer=installer,
                    memorist=memorist,
                    searcher=searcher,
                    hack_result=barrier,
                    summarizer=self.summarize_result(task_id, subtask_id),
                )
            )
        except Exception as e:
            raise self.wrap("failed to get pentester executor", e) from e

        return await self._run(
            agent_ctx,
            "pentester",
            ProviderOptionsType.PENTESTER,
            MsgChainType.PENTESTER,
            executor,
            barrier,
            task_id,
            subtask_id,
            system_prompt,
            user_prompt,
            question,
        )

    async def perform_memorist(
        self,
        agent_ctx: AgentContext,
        task_id: int | None,
        subtask_id: int | None,
        system_prompt: str,
        user_prompt: str,
        question: str,
    ) -> str:
        barrier = ResultBarrier(MemoristResult, "memorist result successfully processed")
        try:
            executor = self.tools.get_memorist_executor(
                MemoristExecutorConfig(
                    task_id=task_id,
                    subtask_id=subtask_id,
                    memorist_result=barrier,
                    summarizer=self.summarize_result(task_id, subtask_id),
                )
            )
        except Exception as e:
            raise self.wrap("failed to get memorist executor", e) from e

        return await self._run(
            agent_ctx,
            "memorist",
            ProviderOptionsType.SEARCHER,
            MsgChainType.MEMORIST,
            executor,
            barrier,
            task_id,
            subtask_id,
            system_prompt,
            user_prompt,
            question,
        )

    async def perform_searcher(
        self,
        agent_ctx: AgentContext,
        task_id: int | None,
        subtask_id: int | None,
        system_prompt: str,
        user_prompt: str,
        question: str,
    ) -> str:
        try:
            memorist = await self.memorist(agent_ctx, task_id, subtask_id)
        except Exception as e:
            raise self.wrap("failed to get memorist handler", e) from e

        barrier = ResultBarrier(SearchResult, "search result successfully processed")
        try:
            executor = self.tools.get_searcher_executor(
                SearcherExecutorConfig(
                    task_id=task_id,
                    subtask_id=subtask_id,
                    memorist=memorist,
                    search_result=barrier,
                    summarizer=self.summarize_result(task_id, subtask_id),
                )
            )
        except Exception as e:
            raise self.wrap("failed to get searcher executor", e) from e

        return await self._run(
            agent_ctx,
            "searcher",
            ProviderOptionsType.SEARCHER,
            MsgChainType.SEARCHER,
            executor,
            barrier,
            task_id,
            subtask_id,
            system_prompt,
            user_prompt,
            question,
        )

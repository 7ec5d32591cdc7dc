"""
Flow Provider - the public façade of the engine for one flow.

The provider wires the execution loop, the tool-call bridge, the reflector,
the handler factory and the planners around a model client and a storage
handle, and exposes the operations a flow worker needs:

- ``get_task_title`` / ``generate_subtasks`` / ``refine_subtasks`` /
  ``get_task_result`` for task planning and reporting
- ``prepare_agent_chain`` / ``perform_agent_chain`` to run the primary agent
  of a subtask
- ``put_input_to_agent_chain`` / ``ensure_chain_consistency`` to resume a
  suspended or interrupted chain
"""

import logging
from collections.abc import Callable
from enum import Enum
from typing import Any

from agentflow.domain.model.agent.agent_context import AgentContext
from agentflow.domain.model.agent.tool_args import AskUser, Done, SubtaskInfo, TaskResult
from agentflow.domain.model.chain.message import Message, chain_from_json, chain_to_json
from agentflow.domain.model.chain.msg_chain import MsgChainType
from agentflow.domain.model.flow.task import Subtask
from agentflow.domain.ports.repositories.flow_repository import FlowRepository
from agentflow.domain.ports.services.agent_log_port import (
    AgentLogProvider,
    MsgLogProvider,
    MsgLogResultFormat,
    MsgLogType,
)
from agentflow.domain.ports.services.prompt_renderer_port import PromptRenderer, PromptType
from agentflow.domain.ports.services.provider_client_port import ProviderClient, ProviderOptionsType
from agentflow.domain.ports.services.summarizer_port import Summarizer
from agentflow.domain.ports.services.tools_executor_port import (
    FlowToolsExecutor,
    PrimaryExecutorConfig,
)
from agentflow.infrastructure.agent.chain.chain_ast import SUMMARIZATION_TOOL_NAME
from agentflow.infrastructure.agent.chain.consistency import (
    ensure_chain_consistency,
    update_msg_chain_result,
)
from agentflow.infrastructure.agent.config import ExecutionConfig
from agentflow.infrastructure.agent.core.caller import ChainCaller
from agentflow.infrastructure.agent.core.performer import AgentChainPerformer
from agentflow.infrastructure.agent.core.reflector import Reflector
from agentflow.infrastructure.agent.core.restorer import ChainRestorer
from agentflow.infrastructure.agent.core.stream import StreamIdCounter, StreamMessageHandler
from agentflow.infrastructure.agent.errors import (
    AgentExecutionError,
    ChainSerializationError,
    ErrorContext,
    StorageError,
    error_text,
    wrap_error,
)
from agentflow.infrastructure.agent.execution_context import (
    ExecutionContextBuilder,
    get_current_time,
    get_subtasks_info,
)
from agentflow.infrastructure.agent.handlers.base import parse_payload
from agentflow.infrastructure.agent.handlers.factory import HandlerFactory
from agentflow.infrastructure.agent.handlers.planners import TaskPlanners
from agentflow.infrastructure.agent.handlers.summarizer import SummarizeResultHandler
from agentflow.infrastructure.agent.tools import names
from agentflow.infrastructure.agent.tools.bridge import ToolCallBridge
from agentflow.infrastructure.agent.tools.fixer import ToolCallArgsFixer
from agentflow.infrastructure.telemetry.tracing import add_span_attributes, async_with_tracer

logger = logging.getLogger(__name__)

# Size limits of the rendered planner questions
MSG_GENERATOR_SIZE_LIMIT = 150 * 1024
MSG_REFINER_SIZE_LIMIT = 100 * 1024
MSG_REPORTER_SIZE_LIMIT = 100 * 1024

TASK_TITLE_LENGTH = 150
REPORT_LENGTH = 4000

ChainTransform = Callable[[list[Message]], list[Message]]


class PerformResult(str, Enum):
    """Outcome of a primary agent run."""

    ERROR = "error"
    WAITING = "waiting"
    DONE = "done"


class PrimaryBarrier:
    """Handler of the ``done`` and ``ask_user`` barriers of the primary agent."""

    def __init__(
        self,
        repository: FlowRepository,
        msg_log: MsgLogProvider | None,
        task_id: int,
        subtask: Subtask,
    ) -> None:
        self.repository = repository
        self.msg_log = msg_log
        self.task_id = task_id
        self.subtask = subtask
        self.result = PerformResult.ERROR

    async def __call__(self, name: str, args: str) -> str:
        if name == names.FINAL_TOOL_NAME:
            await self._done(parse_payload(Done, args, "done result"))
        elif name == names.ASK_USER_TOOL_NAME:
            self.result = PerformResult.WAITING
            ask = parse_payload(AskUser, args, "ask user result")
            logger.info(f"[FlowProvider] Subtask {self.subtask.id} waits for the user: {ask.message}")
        return f"function {name} successfully processed arguments"

    async def _done(self, done: Done) -> None:
        self.result = PerformResult.DONE if done.success else PerformResult.ERROR
        subtask_id = self.subtask.id

        try:
            self.subtask = await self.repository.update_subtask_result(subtask_id, done.result)
        except Exception as e:
            logger.error(f"[FlowProvider] Failed to update subtask {subtask_id} result: {e}")
            raise StorageError(
                f"failed to update subtask {subtask_id} result: {error_text(e)}",
                entity="subtask",
                cause=e,
            ) from e

        if self.msg_log is None:
            return

        # the report is the final message of the subtask execution
        try:
            msg_id = await self.msg_log.put_msg(
                MsgLogType.REPORT, self.task_id, subtask_id, 0, "", self.subtask.description
            )
        except Exception as e:
            logger.error(f"[FlowProvider] Failed to put report msg: {e}")
            raise AgentExecutionError(
                f"failed to put report msg: {error_text(e)}", step="done", cause=e
            ) from e
        try:
            await self.msg_log.update_msg_result(
                msg_id, 0, done.result, MsgLogResultFormat.MARKDOWN
            )
        except Exception as e:
            logger.error(f"[FlowProvider] Failed to update report msg result: {e}")
            raise AgentExecutionError(
                f"failed to update report msg result: {error_text(e)}", step="done", cause=e
            ) from e


class FlowProvider:
    """Runs the agents of one flow against a model client and a storage handle."""

    def __init__(
        self,
        flow_id: int,
        repository: FlowRepository,
        client: ProviderClient,
        prompter: PromptRenderer,
        executor: FlowToolsExecutor,
        agent_log: AgentLogProvider | None = None,
        msg_log: MsgLogProvider | None = None,
        summarizer: Summarizer | None = None,
        stream_handler: StreamMessageHandler | None = None,
        config: ExecutionConfig | None = None,
        image: str = "",
        language: str = "English",
        title: str = "",
    ) -> None:
        """
        Initialize the provider.

        Args:
            flow_id: Flow the provider is bound to
            repository: Storage of tasks, subtasks and chains
            client: Model adapter
            prompter: Template renderer
            executor: Builder of the per-role tool executors
            agent_log: Audit sink of sub-agent invocations
            msg_log: Sink of user-facing messages
            summarizer: Chain summarizer used by every execution loop
            stream_handler: Receiver of streamed model output
            config: Execution constants; validated on construction
            image: Container image the agents work in
            language: Language the agents answer in
            title: Flow title
        """
        self.config = config or ExecutionConfig()
        self.config.validate()

        self.flow_id = flow_id
        self.repository = repository
        self.client = client
        self.prompter = prompter
        self.executor = executor
        self.agent_log = agent_log
        self.msg_log = msg_log
        self.summarizer = summarizer
        self.image = image
        self.language = language
        self.title = title

        self.caller = ChainCaller(
            flow_id,
            repository,
            client,
            self.config,
            stream_handler=stream_handler,
            stream_ids=StreamIdCounter(),
        )
        self.context_builder = ExecutionContextBuilder(flow_id, repository, prompter)
        self.bridge = ToolCallBridge(ToolCallArgsFixer(self.caller, prompter), self.config)
        self.reflector = Reflector(self.caller, prompter, self.config)
        self.performer = AgentChainPerformer(
            self.caller,
            self.bridge,
            self.reflector,
            self.context_builder,
            self.summarize_result_handler,
            self.config,
        )
        self.restorer = ChainRestorer(flow_id, repository, self.caller, summarizer, self.config)
        self.handlers = HandlerFactory(
            flow_id,
            repository,
            prompter,
            executor,
            self.performer,
            self.restorer,
            self.context_builder,
            self.caller,
            agent_log=agent_log,
            summarizer=summarizer,
            config=self.config,
            image=image,
            language=language,
        )
        self.planners = TaskPlanners(self.handlers)

    def summarize_result_handler(
        self, task_id: int | None, subtask_id: int | None
    ) -> SummarizeResultHandler:
        return SummarizeResultHandler(self.caller, self.prompter, task_id, subtask_id, self.config)

    def _render(self, prompt_type: PromptType, params: dict[str, Any], what: str) -> str:
        try:
            return self.prompter.render_template(prompt_type, params)
        except Exception as e:
            logger.error(f"[FlowProvider] Failed to get {what} template: {e}")
            raise AgentExecutionError(
                f"failed to get {what} template: {error_text(e)}", step="render", cause=e
            ) from e

    # ========================================================================
    # Planning
    # ========================================================================

    @async_with_tracer("flow_provider")
    async def get_task_title(self, input: str) -> str:
        prompt = self._render(
            PromptType.TASK_DESCRIPTOR,
            {
                "Input": input,
                "Lang": self.language,
                "CurrentTime": get_current_time(),
                "N": TASK_TITLE_LENGTH,
            },
            "flow title",
        )
        try:
            return await self.client.call(ProviderOptionsType.SIMPLE, prompt)
        except Exception as e:
            raise AgentExecutionError(
                f"failed to get flow title: {error_text(e)}", step="task_title", cause=e
            ) from e

    def _planner_system_context(self, n: int) -> dict[str, Any]:
        return {
            "SubtaskListToolName": names.SUBTASK_LIST_TOOL_NAME,
            "SubtaskPatchToolName": names.SUBTASK_PATCH_TOOL_NAME,
            "SearchToolName": names.SEARCH_TOOL_NAME,
            "TerminalToolName": names.TERMINAL_TOOL_NAME,
            "FileToolName": names.FILE_TOOL_NAME,
            "BrowserToolName": names.BROWSER_TOOL_NAME,
            "SummarizationToolName": SUMMARIZATION_TOOL_NAME,
            "DockerImage": self.image,
            "Lang": self.language,
            "CurrentTime": get_current_time(),
            "N": n,
            "ToolPlaceholder": names.TOOL_PLACEHOLDER,
        }

    @async_with_tracer("flow_provider")
    async def generate_subtasks(self, task_id: int) -> list[SubtaskInfo]:
        """Plan the subtasks of a new task."""
        add_span_attributes({"flow.id": self.flow_id, "task.id": task_id})
        tasks_info = await self.context_builder.get_tasks_info(task_id)

        user_context: dict[str, Any] = {
            "Task": tasks_info.task,
            "Tasks": tasks_info.tasks,
            "Subtasks": tasks_info.subtasks,
        }
        user_prompt = self._render(
            PromptType.QUESTION_SUBTASKS_GENERATOR, user_context, "task generator"
        )

        # keep the latest subtasks of the flow, halving until the question fits
        total = len(tasks_info.subtasks)
        keep = total
        while keep > 2 and len(user_prompt) >= MSG_GENERATOR_SIZE_LIMIT:
            user_context["Subtasks"] = tasks_info.subtasks[total - keep :]
            user_prompt = self._render(
                PromptType.QUESTION_SUBTASKS_GENERATOR, user_context, "task generator"
            )
            keep //= 2

        system_prompt = self._render(
            PromptType.SUBTASKS_GENERATOR,
            self._planner_system_context(self.config.tasks_number_limit),
            "task system generator",
        )

        question = tasks_info.task.input if tasks_info.task is not None else ""
        try:
            return await self.planners.perform_subtasks_generator(
                task_id, system_prompt, user_prompt, question
            )
        except Exception as e:
            raise AgentExecutionError(
                f"failed to perform subtasks generator: {error_text(e)}",
                step="generate_subtasks",
                cause=e,
            ) from e

    async def _with_execution_state(
        self,
        task_id: int,
        prompt_type: PromptType,
        user_context: dict[str, Any],
        user_prompt: str,
        limit: int,
        what: str,
    ) -> str:
        if len(user_prompt) >= limit:
            return user_prompt

        # the execution state is summarized again on every call
        try:
            user_context["ExecutionState"] = (
                await self.context_builder.get_task_primary_agent_chain_summary(
                    task_id, self.summarize_result_handler(task_id, None)
                )
            )
        except Exception as e:
            raise AgentExecutionError(
                f"failed to prepare execution state: {error_text(e)}",
                step="execution_state",
                cause=e,
            ) from e
        return self._render(prompt_type, user_context, what)

    @async_with_tracer("flow_provider")
    async def refine_subtasks(self, task_id: int) -> list[SubtaskInfo]:
        """Re-plan the remaining subtasks of a task after a subtask finished."""
        add_span_attributes({"flow.id": self.flow_id, "task.id": task_id})
        tasks_info = await self.context_builder.get_tasks_info(task_id)
        subtasks_info = get_subtasks_info(task_id, tasks_info.subtasks)

        user_context: dict[str, Any] = {
            "Task": tasks_info.task,
            "Tasks": tasks_info.tasks,
            "PlannedSubtasks": subtasks_info.planned,
            "CompletedSubtasks": subtasks_info.completed,
        }
        user_prompt = self._render(
            PromptType.QUESTION_SUBTASKS_REFINER, user_context, "task subtasks refiner"
        )
        user_prompt = await self._with_execution_state(
            task_id,
            PromptType.QUESTION_SUBTASKS_REFINER,
            user_context,
            user_prompt,
            MSG_REFINER_SIZE_LIMIT,
            "task subtasks refiner",
        )

        system_prompt = self._render(
            PromptType.SUBTASKS_REFINER,
            self._planner_system_context(
                max(self.config.tasks_number_limit - len(subtasks_info.completed), 0)
            ),
            "task system refiner",
        )

        try:
            planned = await self.repository.get_task_planned_subtasks(task_id)
        except Exception as e:
            raise StorageError(
                f"failed to get planned subtasks: {error_text(e)}", entity="subtask", cause=e
            ) from e

        question = tasks_info.task.input if tasks_info.task is not None else ""
        try:
            return await self.planners.perform_subtasks_refiner(
                task_id, planned, system_prompt, user_prompt, question
            )
        except Exception as e:
            raise AgentExecutionError(
                f"failed to perform subtasks refiner: {error_text(e)}",
                step="refine_subtasks",
                cause=e,
            ) from e

    @async_with_tracer("flow_provider")
    async def get_task_result(self, task_id: int) -> TaskResult:
        """Write the final report of a task."""
        add_span_attributes({"flow.id": self.flow_id, "task.id": task_id})
        tasks_info = await self.context_builder.get_tasks_info(task_id)
        subtasks_info = get_subtasks_info(task_id, tasks_info.subtasks)

        user_context: dict[str, Any] = {
            "Task": tasks_info.task,
            "Tasks": tasks_info.tasks,
            "CompletedSubtasks": subtasks_info.completed,
            "PlannedSubtasks": subtasks_info.planned,
        }
        user_prompt = self._render(PromptType.QUESTION_REPORTER, user_context, "task reporter")
        user_prompt = await self._with_execution_state(
            task_id,
            PromptType.QUESTION_REPORTER,
            user_context,
            user_prompt,
            MSG_REPORTER_SIZE_LIMIT,
            "task reporter",
        )

        system_prompt = self._render(
            PromptType.REPORTER,
            {
                "ReportResultToolName": names.REPORT_RESULT_TOOL_NAME,
                "SummarizationToolName": SUMMARIZATION_TOOL_NAME,
                "Lang": self.language,
                "N": REPORT_LENGTH,
                "ToolPlaceholder": names.TOOL_PLACEHOLDER,
            },
            "task system reporter",
        )

        question = tasks_info.task.input if tasks_info.task is not None else ""
        try:
            return await self.planners.perform_task_result_reporter(
                task_id, None, system_prompt, user_prompt, question
            )
        except Exception as e:
            raise AgentExecutionError(
                f"failed to perform task result reporter: {error_text(e)}",
                step="task_result",
                cause=e,
            ) from e

    # ========================================================================
    # Primary agent
    # ========================================================================

    @async_with_tracer("flow_provider")
    async def prepare_agent_chain(self, task_id: int, subtask_id: int) -> int:
        """Seed (or restore) the primary agent chain of a subtask and return its ID."""
        add_span_attributes({"flow.id": self.flow_id, "task.id": task_id, "subtask.id": subtask_id})
        try:
            subtask = await self.repository.get_subtask(subtask_id)
        except Exception as e:
            logger.error(f"[FlowProvider] Failed to get subtask {subtask_id}: {e}")
            raise StorageError(
                f"failed to get subtask: {error_text(e)}", entity="subtask", cause=e
            ) from e

        try:
            execution_context = await self.context_builder.prepare_execution_context(
                task_id, subtask_id, self.summarize_result_handler(task_id, subtask_id)
            )
        except Exception as e:
            logger.error(f"[FlowProvider] Failed to prepare execution context: {e}")
            raise AgentExecutionError(
                f"failed to prepare execution context: {error_text(e)}",
                step="prepare_agent_chain",
                cause=e,
            ) from e

        try:
            subtask = await self.repository.update_subtask_context(subtask_id, execution_context)
        except Exception as e:
            logger.error(f"[FlowProvider] Failed to update subtask {subtask_id} context: {e}")
            raise StorageError(
                f"failed to update subtask context: {error_text(e)}", entity="subtask", cause=e
            ) from e

        system_prompt = self._render(
            PromptType.PRIMARY_AGENT,
            {
                "FinalToolName": names.FINAL_TOOL_NAME,
                "AskUserToolName": names.ASK_USER_TOOL_NAME,
                "SearchToolName": names.SEARCH_TOOL_NAME,
                "PentesterToolName": names.PENTESTER_TOOL_NAME,
                "CoderToolName": names.CODER_TOOL_NAME,
                "AdviceToolName": names.ADVICE_TOOL_NAME,
                "MemoristToolName": names.MEMORIST_TOOL_NAME,
                "MaintenanceToolName": names.MAINTENANCE_TOOL_NAME,
                "SummarizationToolName": SUMMARIZATION_TOOL_NAME,
                "ExecutionContext": execution_context,
                "Lang": self.language,
                "DockerImage": self.image,
                "CurrentTime": get_current_time(),
                "ToolPlaceholder": names.TOOL_PLACEHOLDER,
            },
            "system prompt for primary agent",
        )

        try:
            chain_id, _ = await self.restorer.restore_chain(
                task_id,
                subtask_id,
                ProviderOptionsType.PRIMARY_AGENT,
                MsgChainType.PRIMARY_AGENT,
                system_prompt,
                subtask.description,
                self.summarize_result_handler(task_id, subtask_id),
            )
        except Exception as e:
            logger.error(f"[FlowProvider] Failed to restore primary agent msg chain: {e}")
            raise AgentExecutionError(
                f"failed to restore primary agent msg chain: {error_text(e)}",
                step="prepare_agent_chain",
                cause=e,
            ) from e
        return chain_id

    @async_with_tracer("flow_provider")
    async def perform_agent_chain(
        self, task_id: int, subtask_id: int, chain_id: int
    ) -> PerformResult:
        """Run the primary agent of a subtask until ``done`` or ``ask_user``.

        Returns:
            DONE or ERROR from the ``done`` success flag, WAITING after
            ``ask_user``

        Raises:
            AgentError: If the chain can not be loaded or the loop fails
        """
        add_span_attributes(
            {
                "flow.id": self.flow_id,
                "task.id": task_id,
                "subtask.id": subtask_id,
                "chain.id": chain_id,
            }
        )
        try:
            msg_chain = await self.repository.get_msg_chain(chain_id)
        except Exception as e:
            logger.error(f"[FlowProvider] Failed to get primary agent msg chain {chain_id}: {e}")
            raise StorageError(
                f"failed to get primary agent msg chain {chain_id}: {error_text(e)}",
                entity="msg_chain",
                cause=e,
            ) from e

        try:
            chain = chain_from_json(msg_chain.chain)
        except ChainSerializationError as e:
            logger.error(f"[FlowProvider] Failed to unmarshal primary agent msg chain {chain_id}: {e}")
            raise ChainSerializationError(
                f"failed to unmarshal primary agent msg chain {chain_id}: {error_text(e)}", cause=e
            ) from e

        agent_ctx = AgentContext.root(MsgChainType.PRIMARY_AGENT)
        handlers = self.handlers
        try:
            adviser = await handlers.ask_advice(agent_ctx, task_id, subtask_id)
            coder = await handlers.coder(agent_ctx, task_id, subtask_id)
            installer = await handlers.installer(agent_ctx, task_id, subtask_id)
            memorist = await handlers.memorist(agent_ctx, task_id, subtask_id)
            pentester = await handlers.pentester(agent_ctx, task_id, subtask_id)
            searcher = await handlers.subtask_searcher(agent_ctx, task_id, subtask_id)
        except Exception as e:
            logger.error(f"[FlowProvider] Failed to get primary agent handlers: {e}")
            raise wrap_error(e, "failed to get primary agent handlers") from e

        try:
            subtask = await self.repository.get_subtask(subtask_id)
        except Exception as e:
            raise StorageError(
                f"failed to get subtask: {error_text(e)}", entity="subtask", cause=e
            ) from e

        barrier = PrimaryBarrier(self.repository, self.msg_log, task_id, subtask)
        try:
            executor = self.executor.get_primary_executor(
                PrimaryExecutorConfig(
                    task_id=task_id,
                    subtask_id=subtask_id,
                    barrier=barrier,
                    adviser=adviser,
                    coder=coder,
                    installer=installer,
                    memorist=memorist,
                    pentester=pentester,
                    searcher=searcher,
                    summarizer=self.summarize_result_handler(task_id, subtask_id),
                )
            )
        except Exception as e:
            raise AgentExecutionError(
                f"failed to get primary executor: {error_text(e)}", step="primary", cause=e
            ) from e

        try:
            await self.performer.perform_agent_chain(
                agent_ctx,
                ProviderOptionsType.PRIMARY_AGENT,
                msg_chain.id,
                task_id,
                subtask_id,
                chain,
                executor,
                self.summarizer,
            )
        except Exception as e:
            logger.error(f"[FlowProvider] Primary agent chain {chain_id} failed: {e}")
            raise AgentExecutionError(
                f"failed to perform primary agent chain: {error_text(e)}",
                step="primary",
                context=ErrorContext(
                    operation="perform_agent_chain",
                    flow_id=self.flow_id,
                    task_id=task_id,
                    subtask_id=subtask_id,
                    chain_id=chain_id,
                ),
                cause=e,
            ) from e

        return barrier.result

    @async_with_tracer("flow_provider")
    async def put_input_to_agent_chain(self, chain_id: int, input: str) -> None:
        """Deliver the user's answer, back-filling a pending ``ask_user`` response."""
        await self.process_chain(
            chain_id,
            lambda chain: update_msg_chain_result(chain, names.ASK_USER_TOOL_NAME, input),
        )

    @async_with_tracer("flow_provider")
    async def ensure_chain_consistency(self, chain_id: int) -> None:
        """Answer every pending tool call of a persisted chain."""
        await self.process_chain(chain_id, ensure_chain_consistency)

    async def process_chain(self, chain_id: int, transform: ChainTransform) -> None:
        """Load, transform and store a chain; nothing is written if any step fails."""
        try:
            msg_chain = await self.repository.get_msg_chain(chain_id)
        except Exception as e:
            logger.error(f"[FlowProvider] Failed to get message chain {chain_id}: {e}")
            raise StorageError(
                f"failed to get message chain {chain_id}: {error_text(e)}",
                entity="msg_chain",
                cause=e,
            ) from e

        try:
            chain = chain_from_json(msg_chain.chain)
        except ChainSerializationError as e:
            logger.error(f"[FlowProvider] Failed to unmarshal message chain {chain_id}: {e}")
            raise ChainSerializationError(
                f"failed to unmarshal message chain {chain_id}: {error_text(e)}", cause=e
            ) from e

        try:
            updated = transform(chain)
        except Exception as e:
            logger.error(f"[FlowProvider] Failed to transform chain {chain_id}: {e}")
            raise AgentExecutionError(
                f"failed to transform chain: {error_text(e)}", step="process_chain", cause=e
            ) from e

        blob = chain_to_json(updated)
        try:
            await self.repository.update_msg_chain(chain_id, blob)
        except Exception as e:
            logger.error(f"[FlowProvider] Failed to update message chain {chain_id}: {e}")
            raise StorageError(
                f"failed to update message chain {chain_id}: {error_text(e)}",
                entity="msg_chain",
                cause=e,
            ) from e

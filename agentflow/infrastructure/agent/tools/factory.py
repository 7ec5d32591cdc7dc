"""Per-role executor composition.

``RoleToolsExecutorFactory`` implements the ``FlowToolsExecutor`` port: every
``get_<role>_executor`` checks that the handlers the role needs are present,
binds them to the registered tool definitions, marks the role's result tool
as barrier and adds the host's environment tools the role may use.
"""

import logging

from agentflow.domain.ports.services.agent_log_port import MsgLogProvider
from agentflow.domain.ports.services.tools_executor_port import (
    AssistantExecutorConfig,
    CoderExecutorConfig,
    EnricherExecutorConfig,
    ExecutorHandler,
    GeneratorExecutorConfig,
    InstallerExecutorConfig,
    MemoristExecutorConfig,
    PentesterExecutorConfig,
    PrimaryExecutorConfig,
    RefinerExecutorConfig,
    ReporterExecutorConfig,
    SearcherExecutorConfig,
    SummarizeHandler,
    ToolDefinition,
)
from agentflow.infrastructure.agent.errors import AgentValidationError
from agentflow.infrastructure.agent.tools import names, registry
from agentflow.infrastructure.agent.tools.executor import DEFAULT_RESULT_SIZE_LIMIT, RoleToolsExecutor
from agentflow.infrastructure.agent.tools.registry import EnvironmentTool, EnvironmentToolKind

logger = logging.getLogger(__name__)

Kind = EnvironmentToolKind


def _require(**handlers: ExecutorHandler | None) -> None:
    for label, handler in handlers.items():
        if handler is None:
            raise AgentValidationError(
                f"{label.replace('_', ' ')} handler is required", field=label
            )


class RoleToolsExecutorFactory:
    """Builds a ``RoleToolsExecutor`` for each agent role of a flow."""

    def __init__(
        self,
        environment_tools: list[EnvironmentTool] | None = None,
        msg_log: MsgLogProvider | None = None,
        ask_user: bool = False,
        result_size_limit: int = DEFAULT_RESULT_SIZE_LIMIT,
    ) -> None:
        """
        Args:
            environment_tools: Host tools (terminal, file, browser, search
                engines, memory search) made available to the roles allowed to
                use their kind
            msg_log: Sink for the user-facing messages of tool calls
            ask_user: Give the primary agent the ask_user barrier
            result_size_limit: Tool results above this size are summarized
        """
        self.environment_tools = list(environment_tools or [])
        self.msg_log = msg_log
        self.ask_user = ask_user
        self.result_size_limit = result_size_limit

    def _build(
        self,
        tools: list[tuple[str, ExecutorHandler]],
        barriers: list[str],
        kinds: tuple[EnvironmentToolKind, ...] = (),
        task_id: int | None = None,
        subtask_id: int | None = None,
        summarizer: SummarizeHandler | None = None,
    ) -> RoleToolsExecutor:
        definitions: list[ToolDefinition] = []
        handlers: dict[str, ExecutorHandler] = {}
        for name, handler in tools:
            definitions.append(registry.get_definition(name))
            handlers[name] = handler

        for env_tool in self.environment_tools:
            if env_tool.kind not in kinds:
                continue
            if env_tool.name in handlers:
                logger.warning(f"[ToolsFactory] Environment tool {env_tool.name} shadows a role tool")
                continue
            definitions.append(env_tool.definition)
            handlers[env_tool.name] = env_tool.handler

        return RoleToolsExecutor(
            definitions=definitions,
            handlers=handlers,
            barriers=barriers,
            task_id=task_id,
            subtask_id=subtask_id,
            msg_log=self.msg_log,
            summarizer=summarizer,
            result_size_limit=self.result_size_limit,
        )

    def get_assistant_executor(self, cfg: AssistantExecutorConfig) -> RoleToolsExecutor:
        if not cfg.use_agents:
            return self._build(
                [],
                [],
                (Kind.SHELL, Kind.BROWSER, Kind.SEARCH_ENGINE, Kind.MEMORY),
                summarizer=cfg.summarizer,
            )

        _require(
            adviser=cfg.adviser,
            coder=cfg.coder,
            installer=cfg.installer,
            memorist=cfg.memorist,
            pentester=cfg.pentester,
            searcher=cfg.searcher,
        )
        return self._build(
            [
                (names.ADVICE_TOOL_NAME, cfg.adviser),
                (names.CODER_TOOL_NAME, cfg.coder),
                (names.MAINTENANCE_TOOL_NAME, cfg.installer),
                (names.MEMORIST_TOOL_NAME, cfg.memorist),
                (names.PENTESTER_TOOL_NAME, cfg.pentester),
                (names.SEARCH_TOOL_NAME, cfg.searcher),
            ],
            [],
            (Kind.SHELL, Kind.BROWSER),
            summarizer=cfg.summarizer,
        )

    def get_primary_executor(self, cfg: PrimaryExecutorConfig) -> RoleToolsExecutor:
        if cfg.barrier is None:
            raise AgentValidationError("barrier (done) handler is required", field="barrier")
        _require(
            adviser=cfg.adviser,
            coder=cfg.coder,
            installer=cfg.installer,
            memorist=cfg.memorist,
            pentester=cfg.pentester,
            searcher=cfg.searcher,
        )
        tools = [
            (names.FINAL_TOOL_NAME, cfg.barrier),
            (names.ADVICE_TOOL_NAME, cfg.adviser),
            (names.CODER_TOOL_NAME, cfg.coder),
            (names.MAINTENANCE_TOOL_NAME, cfg.installer),
            (names.MEMORIST_TOOL_NAME, cfg.memorist),
            (names.PENTESTER_TOOL_NAME, cfg.pentester),
            (names.SEARCH_TOOL_NAME, cfg.searcher),
        ]
        barriers = [names.FINAL_TOOL_NAME]
        if self.ask_user:
            tools.append((names.ASK_USER_TOOL_NAME, cfg.barrier))
            barriers.append(names.ASK_USER_TOOL_NAME)

        return self._build(
            tools,
            barriers,
            task_id=cfg.task_id,
            subtask_id=cfg.subtask_id,
            summarizer=cfg.summarizer,
        )

    def get_installer_executor(self, cfg: InstallerExecutorConfig) -> RoleToolsExecutor:
        _require(
            maintenance_result=cfg.maintenance_result,
            adviser=cfg.adviser,
            memorist=cfg.memorist,
            searcher=cfg.searcher,
        )
        return self._build(
            [
                (names.MAINTENANCE_RESULT_TOOL_NAME, cfg.maintenance_result),
                (names.ADVICE_TOOL_NAME, cfg.adviser),
                (names.MEMORIST_TOOL_NAME, cfg.memorist),
                (names.SEARCH_TOOL_NAME, cfg.searcher),
            ],
            [names.MAINTENANCE_RESULT_TOOL_NAME],
            (Kind.SHELL, Kind.BROWSER, Kind.MEMORY),
            task_id=cfg.task_id,
            subtask_id=cfg.subtask_id,
            summarizer=cfg.summarizer,
        )

    def get_coder_executor(self, cfg: CoderExecutorConfig) -> RoleToolsExecutor:
        _require(
            code_result=cfg.code_result,
            adviser=cfg.adviser,
            installer=cfg.installer,
            memorist=cfg.memorist,
            searcher=cfg.searcher,
        )
        return self._build(
            [
                (names.CODE_RESULT_TOOL_NAME, cfg.code_result),
                (names.ADVICE_TOOL_NAME, cfg.adviser),
                (names.MAINTENANCE_TOOL_NAME, cfg.installer),
                (names.MEMORIST_TOOL_NAME, cfg.memorist),
                (names.SEARCH_TOOL_NAME, cfg.searcher),
            ],
            [names.CODE_RESULT_TOOL_NAME],
            (Kind.BROWSER, Kind.MEMORY),
            task_id=cfg.task_id,
            subtask_id=cfg.subtask_id,
            summarizer=cfg.summarizer,
        )

    def get_pentester_executor(self, cfg: PentesterExecutorConfig) -> RoleToolsExecutor:
        _require(
            hack_result=cfg.hack_result,
            adviser=cfg.adviser,
            coder=cfg.coder,
            installer=cfg.installer,
            memorist=cfg.memorist,
            searcher=cfg.searcher,
        )
        return self._build(
            [
                (names.HACK_RESULT_TOOL_NAME, cfg.hack_result),
                (names.ADVICE_TOOL_NAME, cfg.adviser),
                (names.CODER_TOOL_NAME, cfg.coder),
                (names.MAINTENANCE_TOOL_NAME, cfg.installer),
                (names.MEMORIST_TOOL_NAME, cfg.memorist),
                (names.SEARCH_TOOL_NAME, cfg.searcher),
            ],
            [names.HACK_RESULT_TOOL_NAME],
            (Kind.SHELL, Kind.BROWSER, Kind.MEMORY),
            task_id=cfg.task_id,
            subtask_id=cfg.subtask_id,
            summarizer=cfg.summarizer,
        )

    def get_searcher_executor(self, cfg: SearcherExecutorConfig) -> RoleToolsExecutor:
        _require(search_result=cfg.search_result, memorist=cfg.memorist)
        return self._build(
            [
                (names.SEARCH_RESULT_TOOL_NAME, cfg.search_result),
                (names.MEMORIST_TOOL_NAME, cfg.memorist),
            ],
            [names.SEARCH_RESULT_TOOL_NAME],
            (Kind.BROWSER, Kind.SEARCH_ENGINE, Kind.MEMORY),
            task_id=cfg.task_id,
            subtask_id=cfg.subtask_id,
            summarizer=cfg.summarizer,
        )

    def get_memorist_executor(self, cfg: MemoristExecutorConfig) -> RoleToolsExecutor:
        _require(memorist_result=cfg.memorist_result)
        return self._build(
            [(names.MEMORIST_RESULT_TOOL_NAME, cfg.memorist_result)],
            [names.MEMORIST_RESULT_TOOL_NAME],
            (Kind.SHELL, Kind.MEMORY),
            task_id=cfg.task_id,
            subtask_id=cfg.subtask_id,
            summarizer=cfg.summarizer,
        )

    def get_enricher_executor(self, cfg: EnricherExecutorConfig) -> RoleToolsExecutor:
        _require(
            enricher_result=cfg.enricher_result, memorist=cfg.memorist, searcher=cfg.searcher
        )
        return self._build(
            [
                (names.ENRICHER_RESULT_TOOL_NAME, cfg.enricher_result),
                (names.MEMORIST_TOOL_NAME, cfg.memorist),
                (names.SEARCH_TOOL_NAME, cfg.searcher),
            ],
            [names.ENRICHER_RESULT_TOOL_NAME],
            task_id=cfg.task_id,
            subtask_id=cfg.subtask_id,
        )

    def get_generator_executor(self, cfg: GeneratorExecutorConfig) -> RoleToolsExecutor:
        _require(memorist=cfg.memorist, searcher=cfg.searcher, subtask_list=cfg.subtask_list)
        return self._build(
            [
                (names.MEMORIST_TOOL_NAME, cfg.memorist),
                (names.SEARCH_TOOL_NAME, cfg.searcher),
                (names.SUBTASK_LIST_TOOL_NAME, cfg.subtask_list),
            ],
            [names.SUBTASK_LIST_TOOL_NAME],
            (Kind.SHELL, Kind.BROWSER),
            task_id=cfg.task_id,
        )

    def get_refiner_executor(self, cfg: RefinerExecutorConfig) -> RoleToolsExecutor:
        _require(memorist=cfg.memorist, searcher=cfg.searcher, subtask_patch=cfg.subtask_patch)
        return self._build(
            [
                (names.MEMORIST_TOOL_NAME, cfg.memorist),
                (names.SEARCH_TOOL_NAME, cfg.searcher),
                (names.SUBTASK_PATCH_TOOL_NAME, cfg.subtask_patch),
            ],
            [names.SUBTASK_PATCH_TOOL_NAME],
            (Kind.SHELL,),
            task_id=cfg.task_id,
        )

    def get_reporter_executor(self, cfg: ReporterExecutorConfig) -> RoleToolsExecutor:
        _require(report_result=cfg.report_result)
        return self._build(
            [(names.REPORT_RESULT_TOOL_NAME, cfg.report_result)],
            [names.REPORT_RESULT_TOOL_NAME],
            task_id=cfg.task_id,
            subtask_id=cfg.subtask_id,
        )

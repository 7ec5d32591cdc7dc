"""Tools Executor Port - capability sets bound to one agent role.

A ``ContextToolsExecutor`` holds the tools an agent may call, which of them are
barriers (calling one ends the execution loop) and a JSON schema per tool for
argument repair. A ``FlowToolsExecutor`` builds one executor per role from the
handlers that role is allowed to call.
"""

from collections.abc import Awaitable, Callable
from dataclasses import dataclass, field
from typing import Any, Protocol, runtime_checkable


@runtime_checkable
class ExecutorHandler(Protocol):
    """Implementation of one tool: receives the tool name and raw JSON arguments."""

    async def __call__(self, name: str, args: str) -> str:
        ...


SummarizeHandler = Callable[[str], Awaitable[str]]


@dataclass
class ToolDefinition:
    """Function definition handed to the model."""

    name: str
    description: str
    parameters: dict[str, Any] = field(default_factory=dict)

    def to_dict(self) -> dict[str, Any]:
        return {
            "type": "function",
            "function": {
                "name": self.name,
                "description": self.description,
                "parameters": self.parameters,
            },
        }


@dataclass
class FunctionInfo:
    """Barrier tool name with its schema serialized as JSON."""

    name: str
    schema: str


@runtime_checkable
class ContextToolsExecutor(Protocol):
    def tools(self) -> list[ToolDefinition]:
        ...

    async def execute(
        self,
        stream_id: int,
        tool_call_id: str,
        name: str,
        thinking: str,
        args: str,
    ) -> str:
        """Run a tool.

        Unknown tools and malformed JSON produce a model-visible message, not
        an error. Handler failures raise.
        """
        ...

    def get_tool_schema(self, name: str) -> dict[str, Any]:
        """Return the JSON schema of a tool's arguments.

        Raises:
            AgentValidationError: If the tool is unknown
        """
        ...

    def is_barrier_function(self, name: str) -> bool:
        ...

    def get_barrier_tool_names(self) -> list[str]:
        ...

    def get_barrier_tools(self) -> list[FunctionInfo]:
        ...


# ============================================================================
# Role executor configs
# ============================================================================


@dataclass(kw_only=True)
class AssistantExecutorConfig:
    use_agents: bool = False
    adviser: ExecutorHandler | None = None
    coder: ExecutorHandler | None = None
    installer: ExecutorHandler | None = None
    memorist: ExecutorHandler | None = None
    pentester: ExecutorHandler | None = None
    searcher: ExecutorHandler | None = None
    summarizer: SummarizeHandler | None = None


@dataclass(kw_only=True)
class PrimaryExecutorConfig:
    task_id: int
    subtask_id: int
    barrier: ExecutorHandler
    adviser: ExecutorHandler
    coder: ExecutorHandler
    installer: ExecutorHandler
    memorist: ExecutorHandler
    pentester: ExecutorHandler
    searcher: ExecutorHandler
    summarizer: SummarizeHandler | None = None


@dataclass(kw_only=True)
class InstallerExecutorConfig:
    task_id: int | None = None
    subtask_id: int | None = None
    adviser: ExecutorHandler
    memorist: ExecutorHandler
    searcher: ExecutorHandler
    maintenance_result: ExecutorHandler
    summarizer: SummarizeHandler | None = None


@dataclass(kw_only=True)
class CoderExecutorConfig:
    task_id: int | None = None
    subtask_id: int | None = None
    adviser: ExecutorHandler
    installer: ExecutorHandler
    memorist: ExecutorHandler
    searcher: ExecutorHandler
    code_result: ExecutorHandler
    summarizer: SummarizeHandler | None = None


@dataclass(kw_only=True)
class PentesterExecutorConfig:
    task_id: int | None = None
    subtask_id: int | None = None
    adviser: ExecutorHandler
    coder: ExecutorHandler
    installer: ExecutorHandler
    memorist: ExecutorHandler
    searcher: ExecutorHandler
    hack_result: ExecutorHandler
    summarizer: SummarizeHandler | None = None


@dataclass(kw_only=True)
class SearcherExecutorConfig:
    task_id: int | None = None
    subtask_id: int | None = None
    memorist: ExecutorHandler
    search_result: ExecutorHandler
    summarizer: SummarizeHandler | None = None


@dataclass(kw_only=True)
class MemoristExecutorConfig:
    task_id: int | None = None
    subtask_id: int | None = None
    memorist_result: ExecutorHandler
    summarizer: SummarizeHandler | None = None


@dataclass(kw_only=True)
class EnricherExecutorConfig:
    task_id: int | None = None
    subtask_id: int | None = None
    memorist: ExecutorHandler
    searcher: ExecutorHandler
    enricher_result: ExecutorHandler


@dataclass(kw_only=True)
class GeneratorExecutorConfig:
    task_id: int
    memorist: ExecutorHandler
    searcher: ExecutorHandler
    subtask_list: ExecutorHandler


@dataclass(kw_only=True)
class RefinerExecutorConfig:
    task_id: int
    memorist: ExecutorHandler
    searcher: ExecutorHandler
    subtask_patch: ExecutorHandler


@dataclass(kw_only=True)
class ReporterExecutorConfig:
    task_id: int | None = None
    subtask_id: int | None = None
    report_result: ExecutorHandler


@runtime_checkable
class FlowToolsExecutor(Protocol):
    """Builds per-role executors for one flow."""

    def get_primary_executor(self, cfg: PrimaryExecutorConfig) -> ContextToolsExecutor:
        ...

    def get_assistant_executor(self, cfg: AssistantExecutorConfig) -> ContextToolsExecutor:
        ...

    def get_coder_executor(self, cfg: CoderExecutorConfig) -> ContextToolsExecutor:
        ...

    def get_installer_executor(self, cfg: InstallerExecutorConfig) -> ContextToolsExecutor:
        ...

    def get_pentester_executor(self, cfg: PentesterExecutorConfig) -> ContextToolsExecutor:
        ...

    def get_searcher_executor(self, cfg: SearcherExecutorConfig) -> ContextToolsExecutor:
        ...

    def get_memorist_executor(self, cfg: MemoristExecutorConfig) -> ContextToolsExecutor:
        ...

    def get_enricher_executor(self, cfg: EnricherExecutorConfig) -> ContextToolsExecutor:
        ...

    def get_generator_executor(self, cfg: GeneratorExecutorConfig) -> ContextToolsExecutor:
        ...

    def get_refiner_executor(self, cfg: RefinerExecutorConfig) -> ContextToolsExecutor:
        ...

    def get_reporter_executor(self, cfg: ReporterExecutorConfig) -> ContextToolsExecutor:
        ...

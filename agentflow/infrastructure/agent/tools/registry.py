"""Definitions of the engine's own tools.

Argument schemas come from the pydantic payload models in
``agentflow.domain.model.agent.tool_args``. Environment tools (terminal,
file, browser, search engines) are supplied by the host with their own
definitions, see ``EnvironmentTool``.
"""

from dataclasses import dataclass
from enum import Enum
from typing import Any

from agentflow.domain.model.agent import tool_args
from agentflow.domain.ports.services.agent_log_port import MsgLogResultFormat, MsgLogType
from agentflow.domain.ports.services.tools_executor_port import ExecutorHandler, ToolDefinition
from agentflow.infrastructure.agent.tools import names


@dataclass(frozen=True)
class ToolSpec:
    """A registered tool: name, description and argument model."""

    name: str
    description: str
    args_model: type[tool_args.ToolArgs]

    def schema(self) -> dict[str, Any]:
        return self.args_model.model_json_schema()

    def definition(self) -> ToolDefinition:
        return ToolDefinition(name=self.name, description=self.description, parameters=self.schema())


class EnvironmentToolKind(str, Enum):
    """Capability class of a host-provided tool; decides which roles get it."""

    SHELL = "shell"  # terminal, file
    BROWSER = "browser"
    SEARCH_ENGINE = "search_engine"
    MEMORY = "memory"


@dataclass
class EnvironmentTool:
    """A tool implemented by the host process."""

    definition: ToolDefinition
    handler: ExecutorHandler
    kind: EnvironmentToolKind = EnvironmentToolKind.SHELL

    @property
    def name(self) -> str:
        return self.definition.name


_SPECS = [
    ToolSpec(
        names.FINAL_TOOL_NAME,
        "Finish the current subtask with success or failure and a detailed result",
        tool_args.Done,
    ),
    ToolSpec(
        names.ASK_USER_TOOL_NAME,
        "Ask the user for input when the subtask can not continue without it",
        tool_args.AskUser,
    ),
    ToolSpec(
        names.ADVICE_TOOL_NAME,
        "Get a detailed answer from the mentor about an issue or a difficult situation",
        tool_args.AskAdvice,
    ),
    ToolSpec(
        names.CODER_TOOL_NAME,
        "Delegate writing code for a specific task to the developer",
        tool_args.CoderAction,
    ),
    ToolSpec(
        names.CODE_RESULT_TOOL_NAME,
        "Send the code result with its status and a detailed report about using it",
        tool_args.CodeResult,
    ),
    ToolSpec(
        names.MAINTENANCE_TOOL_NAME,
        "Delegate maintenance of the local environment and its tools to the installer",
        tool_args.MaintenanceAction,
    ),
    ToolSpec(
        names.MAINTENANCE_RESULT_TOOL_NAME,
        "Send the maintenance result with its status and a detailed report",
        tool_args.MaintenanceResult,
    ),
    ToolSpec(
        names.PENTESTER_TOOL_NAME,
        "Delegate a penetration test or a search for weaknesses to the pentester",
        tool_args.PentesterAction,
    ),
    ToolSpec(
        names.HACK_RESULT_TOOL_NAME,
        "Send the penetration test result with a detailed report",
        tool_args.HackResult,
    ),
    ToolSpec(
        names.MEMORIST_TOOL_NAME,
        "Ask the archivist about previous work, finished tasks and past tool calls",
        tool_args.MemoristAction,
    ),
    ToolSpec(
        names.MEMORIST_RESULT_TOOL_NAME,
        "Send the answer found in the long-term memory",
        tool_args.MemoristResult,
    ),
    ToolSpec(
        names.SEARCH_TOOL_NAME,
        "Research a question in search engines and the long-term memory",
        tool_args.ComplexSearch,
    ),
    ToolSpec(
        names.SEARCH_RESULT_TOOL_NAME,
        "Send the research result as the answer to the question",
        tool_args.SearchResult,
    ),
    ToolSpec(
        names.ENRICHER_RESULT_TOOL_NAME,
        "Send the question enriched with additional information",
        tool_args.EnricherResult,
    ),
    ToolSpec(
        names.REPORT_RESULT_TOOL_NAME,
        "Send the task report with its execution status and description",
        tool_args.TaskResult,
    ),
    ToolSpec(
        names.SUBTASK_LIST_TOOL_NAME,
        "Send the generated list of subtasks",
        tool_args.SubtaskList,
    ),
    ToolSpec(
        names.SUBTASK_PATCH_TOOL_NAME,
        "Send delta operations for the planned subtasks, an empty list keeps the plan",
        tool_args.SubtaskPatch,
    ),
]

REGISTRY: dict[str, ToolSpec] = {spec.name: spec for spec in _SPECS}


def get_definition(name: str) -> ToolDefinition:
    """Definition of a registered tool; raises KeyError for unknown names."""
    return REGISTRY[name].definition()


def get_message_type(name: str) -> MsgLogType:
    """User-facing message kind for a call of the tool."""
    match name:
        case names.TERMINAL_TOOL_NAME:
            return MsgLogType.TERMINAL
        case names.FILE_TOOL_NAME:
            return MsgLogType.FILE
        case names.BROWSER_TOOL_NAME:
            return MsgLogType.BROWSER
        case names.MEMORIST_TOOL_NAME | names.SEARCH_TOOL_NAME:
            return MsgLogType.SEARCH
        case names.ADVICE_TOOL_NAME:
            return MsgLogType.ADVICE
        case names.ASK_USER_TOOL_NAME:
            return MsgLogType.ASK
        case names.FINAL_TOOL_NAME:
            return MsgLogType.DONE
        case _:
            return MsgLogType.THOUGHTS


def get_result_format(name: str) -> MsgLogResultFormat:
    match name:
        case names.TERMINAL_TOOL_NAME:
            return MsgLogResultFormat.TERMINAL
        case names.FILE_TOOL_NAME | names.BROWSER_TOOL_NAME:
            return MsgLogResultFormat.PLAIN
        case _:
            return MsgLogResultFormat.MARKDOWN

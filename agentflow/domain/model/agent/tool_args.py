"""Tool call payloads exchanged between agents.

Every payload is a pydantic model: arguments from the model are validated with
``model_validate_json`` and ``model_json_schema`` provides the schema handed to
the argument fixer.
"""

from enum import Enum

from pydantic import BaseModel, ConfigDict, Field


class ToolArgs(BaseModel):
    """Base class of tool payloads; unknown fields are ignored."""

    model_config = ConfigDict(extra="ignore")


# ============================================================================
# Agent requests
# ============================================================================


class AskAdvice(ToolArgs):
    question: str = Field(
        ...,
        description="Question with detailed information about the issue to send to the mentor",
    )
    code: str = Field(default="", description="Relevant code snippet, if any")
    output: str = Field(default="", description="Relevant terminal output, if any")
    message: str = Field(..., description="Short message for the user")


class CoderAction(ToolArgs):
    question: str = Field(..., description="Task for the developer with expected outcome")
    message: str = Field(..., description="Short message for the user")


class MaintenanceAction(ToolArgs):
    question: str = Field(..., description="Task to maintain the local environment")
    message: str = Field(..., description="Short message for the user")


class PentesterAction(ToolArgs):
    question: str = Field(..., description="Task for the penetration tester")
    message: str = Field(..., description="Short message for the user")


class ComplexSearch(ToolArgs):
    question: str = Field(..., description="Question to research on the internet and in memory")
    message: str = Field(..., description="Short message for the user")


class MemoristAction(ToolArgs):
    question: str = Field(..., description="Question about previous work, tasks and calls")
    task_id: int | None = Field(default=None, description="Task to use as a hard filter")
    subtask_id: int | None = Field(default=None, description="Subtask to use as a hard filter")
    message: str = Field(..., description="Short message for the user")


# ============================================================================
# Barrier results
# ============================================================================


class AgentResult(ToolArgs):
    """Common shape of sub-agent result tools."""

    result: str = Field(..., description="Fully detailed report or error message")
    message: str = Field(..., description="Short message for the user")


class CodeResult(AgentResult):
    pass


class HackResult(AgentResult):
    pass


class MaintenanceResult(AgentResult):
    pass


class SearchResult(AgentResult):
    pass


class MemoristResult(AgentResult):
    pass


class EnricherResult(AgentResult):
    pass


class TaskResult(AgentResult):
    success: bool = Field(default=False, description="True if the task reached its goal")


class Done(AgentResult):
    success: bool = Field(default=False, description="True if the subtask reached its goal")


class AskUser(ToolArgs):
    message: str = Field(..., description="Question or information for the user")


# ============================================================================
# Planning
# ============================================================================


class SubtaskInfo(ToolArgs):
    title: str = Field(..., description="Subtask title with the main goal")
    description: str = Field(..., description="Detailed instructions for the subtask")


class SubtaskInfoPatch(SubtaskInfo):
    """A subtask in a patched plan; ``id == 0`` marks a new, unpersisted item."""

    id: int = Field(default=0, description="Persisted subtask ID, 0 for new subtasks")


class SubtaskList(ToolArgs):
    subtasks: list[SubtaskInfo] = Field(..., description="Ordered list of subtasks")
    message: str = Field(..., description="Short message for the user")


class SubtaskOperationType(str, Enum):
    ADD = "add"
    REMOVE = "remove"
    MODIFY = "modify"
    REORDER = "reorder"


class SubtaskOperation(ToolArgs):
    """One delta operation on the planned subtask list.

    ``op`` stays a plain string so that unknown operations reach validation
    instead of failing while parsing.
    """

    op: str = Field(..., description="One of add, remove, modify, reorder")
    id: int | None = Field(default=None, description="Existing subtask ID")
    after_id: int | None = Field(
        default=None, description="Insert after this subtask ID (null/0 = at the beginning)"
    )
    title: str = Field(default="", description="New title")
    description: str = Field(default="", description="New description")


class SubtaskPatch(ToolArgs):
    operations: list[SubtaskOperation] = Field(
        default_factory=list, description="Operations to apply, empty means no changes"
    )
    message: str = Field(default="", description="Summary of the changes for the user")

"""Flow / Task / Subtask domain models.

A flow owns many tasks and a task owns many subtasks. Records are owned by the
storage layer; the engine only reads them and writes results back.
"""

from dataclasses import dataclass, field
from datetime import UTC, datetime
from enum import Enum
from typing import Any


class TaskStatus(str, Enum):
    """Status of a task."""

    CREATED = "created"
    RUNNING = "running"
    WAITING = "waiting"
    FINISHED = "finished"
    FAILED = "failed"


class SubtaskStatus(str, Enum):
    """Lifecycle of a subtask: created -> running -> finished | failed."""

    CREATED = "created"
    RUNNING = "running"
    WAITING = "waiting"
    FINISHED = "finished"
    FAILED = "failed"


@dataclass(kw_only=True)
class Flow:
    """Top-level unit of work."""

    id: int = 0
    title: str = ""
    language: str = "English"
    created_at: datetime = field(default_factory=lambda: datetime.now(UTC))


@dataclass(kw_only=True)
class Task:
    """A user objective inside a flow."""

    id: int = 0
    flow_id: int
    title: str = ""
    input: str = ""
    status: TaskStatus = TaskStatus.CREATED
    result: str = ""
    created_at: datetime = field(default_factory=lambda: datetime.now(UTC))

    def to_dict(self) -> dict[str, Any]:
        return {
            "id": self.id,
            "flow_id": self.flow_id,
            "title": self.title,
            "input": self.input,
            "status": self.status.value,
            "result": self.result,
        }


@dataclass(kw_only=True)
class Subtask:
    """A planned step of a task.

    Only subtasks in the ``created`` status are considered planned and may be
    patched by the refiner.
    """

    id: int = 0
    task_id: int
    title: str = ""
    description: str = ""
    status: SubtaskStatus = SubtaskStatus.CREATED
    result: str = ""
    context: str = ""
    created_at: datetime = field(default_factory=lambda: datetime.now(UTC))

    @property
    def is_planned(self) -> bool:
        return self.status == SubtaskStatus.CREATED

    def to_dict(self) -> dict[str, Any]:
        return {
            "id": self.id,
            "task_id": self.task_id,
            "title": self.title,
            "description": self.description,
            "status": self.status.value,
            "result": self.result,
        }


@dataclass
class TasksInfo:
    """The current task, the other tasks of the flow and all flow subtasks."""

    task: Task | None = None
    tasks: list[Task] = field(default_factory=list)
    subtasks: list[Subtask] = field(default_factory=list)


@dataclass
class SubtasksInfo:
    """Subtasks of one task split by lifecycle."""

    subtask: Subtask | None = None
    planned: list[Subtask] = field(default_factory=list)
    completed: list[Subtask] = field(default_factory=list)

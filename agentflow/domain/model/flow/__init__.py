"""Flow, task and subtask records."""

from agentflow.domain.model.flow.task import Flow, Subtask, SubtaskStatus, Task, TaskStatus

__all__ = ["Flow", "Subtask", "SubtaskStatus", "Task", "TaskStatus"]

"""Repository interface for flow, task, subtask and message chain persistence."""

from abc import ABC, abstractmethod

from agentflow.domain.model.chain.msg_chain import MsgChain, MsgChainType
from agentflow.domain.model.flow.task import Subtask, Task


class FlowRepository(ABC):
    """Repository port used by the agent chain engine.

    Every call is atomic on its own; concurrent execution loops rely on
    per-row updates only.
    """

    # === Message chains ===

    @abstractmethod
    async def create_msg_chain(self, msg_chain: MsgChain) -> MsgChain:
        """Persist a new chain row and return it with its issued ID."""
        ...

    @abstractmethod
    async def get_msg_chain(self, chain_id: int) -> MsgChain:
        """Get a chain row.

        Raises:
            RecordNotFoundError: If the row does not exist
        """
        ...

    @abstractmethod
    async def update_msg_chain(self, chain_id: int, chain: str) -> MsgChain:
        """Replace the serialized messages of a chain."""
        ...

    @abstractmethod
    async def update_msg_chain_usage(
        self, chain_id: int, usage_in: int, usage_out: int
    ) -> MsgChain:
        """Add token usage to the cumulative counters of a chain."""
        ...

    @abstractmethod
    async def get_flow_task_type_last_msg_chain(
        self, flow_id: int, task_id: int | None, chain_type: MsgChainType
    ) -> MsgChain | None:
        """Find the most recent chain of a role for a task of a flow."""
        ...

    # === Tasks ===

    @abstractmethod
    async def get_task(self, task_id: int) -> Task:
        """Raises RecordNotFoundError if the task does not exist."""
        ...

    @abstractmethod
    async def get_flow_task(self, flow_id: int, task_id: int) -> Task:
        """Get a task only if it belongs to the flow."""
        ...

    @abstractmethod
    async def get_flow_tasks(self, flow_id: int) -> list[Task]:
        """All tasks of a flow ordered by ID."""
        ...

    # === Subtasks ===

    @abstractmethod
    async def get_subtask(self, subtask_id: int) -> Subtask:
        """Raises RecordNotFoundError if the subtask does not exist."""
        ...

    @abstractmethod
    async def get_flow_subtask(self, flow_id: int, subtask_id: int) -> Subtask:
        """Get a subtask only if its task belongs to the flow."""
        ...

    @abstractmethod
    async def get_flow_subtasks(self, flow_id: int) -> list[Subtask]:
        """All subtasks of a flow ordered by ID."""
        ...

    @abstractmethod
    async def get_task_planned_subtasks(self, task_id: int) -> list[Subtask]:
        """Subtasks of a task in the created status, ordered by ID."""
        ...

    @abstractmethod
    async def update_subtask_context(self, subtask_id: int, context: str) -> Subtask:
        ...

    @abstractmethod
    async def update_subtask_result(self, subtask_id: int, result: str) -> Subtask:
        ...

    # === Assistants ===

    @abstractmethod
    async def get_assistant_use_agents(self, assistant_id: int) -> bool:
        """Whether an assistant delegates to the specialist agents.

        Raises:
            RecordNotFoundError: If the assistant does not exist
        """
        ...

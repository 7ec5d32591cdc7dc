"""Agent role tracking passed explicitly through handler calls."""

from dataclasses import dataclass

from agentflow.domain.model.chain.msg_chain import MsgChainType


@dataclass(frozen=True)
class AgentContext:
    """Which role invoked which.

    Attributes:
        parent_role: Role of the agent that called the current one.
        current_role: Role of the agent currently running.
    """

    parent_role: MsgChainType
    current_role: MsgChainType

    @classmethod
    def root(cls, role: MsgChainType) -> "AgentContext":
        return cls(parent_role=role, current_role=role)

    def descend(self, role: MsgChainType) -> "AgentContext":
        """Return the context of a sub-agent started by the current role."""
        return AgentContext(parent_role=self.current_role, current_role=role)

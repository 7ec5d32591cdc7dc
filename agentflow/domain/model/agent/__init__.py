"""Agent context and tool payloads."""

from agentflow.domain.model.agent.agent_context import AgentContext

__all__ = ["AgentContext"]

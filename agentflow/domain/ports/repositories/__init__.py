"""Repository ports."""

from agentflow.domain.ports.repositories.flow_repository import FlowRepository

__all__ = ["FlowRepository"]

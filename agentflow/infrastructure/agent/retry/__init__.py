"""Bounded retry policies."""

from agentflow.infrastructure.agent.retry.policy import FixedDelayRetryPolicy

__all__ = ["FixedDelayRetryPolicy"]

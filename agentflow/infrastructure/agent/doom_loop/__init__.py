"""Repeating tool call detection."""

from agentflow.infrastructure.agent.doom_loop.detector import RepeatingCallDetector

__all__ = ["RepeatingCallDetector"]

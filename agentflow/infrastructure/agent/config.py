"""Execution loop configuration.

Retry ceilings and backoff delays are injected into the execution loop and its
helpers through ``ExecutionConfig`` so tests can shrink them without touching
production code paths.
"""

import logging
from dataclasses import asdict, dataclass
from typing import Any

from agentflow.configuration.config import Settings

logger = logging.getLogger(__name__)


@dataclass
class ExecutionConfig:
    """Constants of the agent chain execution loop."""

    # -- Retry ceilings ----------------------------------------------------
    max_retries_agent_chain: int = 3
    max_retries_simple_chain: int = 3
    max_retries_tool_call: int = 3
    max_reflector_calls: int = 3

    # -- Backoff -----------------------------------------------------------
    retry_delay_seconds: float = 5.0

    # -- Loop guards -------------------------------------------------------
    repeating_tool_call_threshold: int = 3

    # -- Chain -------------------------------------------------------------
    tool_call_id_template: str = "call_{r:24:x}"
    msg_summarizer_limit: int = 16 * 1024
    tasks_number_limit: int = 15

    def validate(self) -> None:
        """Validate all configuration values."""
        for name in (
            "max_retries_agent_chain",
            "max_retries_simple_chain",
            "max_retries_tool_call",
            "max_reflector_calls",
        ):
            value = getattr(self, name)
            if value < 1:
                raise ValueError(f"{name} must be >= 1, got {value}")
        if self.retry_delay_seconds < 0:
            raise ValueError(
                f"retry_delay_seconds must be >= 0, got {self.retry_delay_seconds}"
            )
        if self.repeating_tool_call_threshold < 1:
            raise ValueError(
                "repeating_tool_call_threshold must be >= 1, "
                f"got {self.repeating_tool_call_threshold}"
            )
        if self.msg_summarizer_limit < 1:
            raise ValueError(f"msg_summarizer_limit must be >= 1, got {self.msg_summarizer_limit}")
        if self.tasks_number_limit < 0:
            raise ValueError(f"tasks_number_limit must be >= 0, got {self.tasks_number_limit}")

    def to_dict(self) -> dict[str, Any]:
        return asdict(self)

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> "ExecutionConfig":
        known = {key: value for key, value in data.items() if key in cls.__dataclass_fields__}
        unknown = set(data) - set(known)
        if unknown:
            logger.warning(f"[ExecutionConfig] Ignoring unknown keys: {sorted(unknown)}")
        config = cls(**known)
        config.validate()
        return config

    @classmethod
    def from_settings(cls, settings: Settings) -> "ExecutionConfig":
        config = cls(
            max_retries_agent_chain=settings.agent_max_retries_agent_chain,
            max_retries_simple_chain=settings.agent_max_retries_simple_chain,
            max_retries_tool_call=settings.agent_max_retries_tool_call,
            max_reflector_calls=settings.agent_max_reflector_calls,
            retry_delay_seconds=settings.agent_retry_delay_seconds,
            repeating_tool_call_threshold=settings.agent_repeating_tool_call_threshold,
            tool_call_id_template=settings.agent_tool_call_id_template,
            msg_summarizer_limit=settings.msg_summarizer_limit,
            tasks_number_limit=settings.tasks_number_limit,
        )
        config.validate()
        return config

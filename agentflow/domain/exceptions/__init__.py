"""Domain exceptions for the agent chain engine."""

from agentflow.domain.exceptions.agent_exceptions import (
    AgentError,
    ChainSerializationError,
    ErrorCategory,
    ErrorContext,
    ErrorSeverity,
    TemplateNotFoundError,
)

__all__ = [
    "AgentError",
    "ChainSerializationError",
    "ErrorCategory",
    "ErrorContext",
    "ErrorSeverity",
    "TemplateNotFoundError",
]

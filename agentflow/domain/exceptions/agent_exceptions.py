"""
Agent domain exceptions.

The base of the engine error hierarchy lives in the domain layer so that
domain models and ports can raise typed errors without knowledge of the
infrastructure that runs the chains.

Exception Hierarchy:
    AgentError (base)
    ├── ChainSerializationError - Chain blob can not be encoded or decoded
    └── TemplateNotFoundError   - Prompt renderer has no such template

Infrastructure adds its own kinds on top in
``agentflow.infrastructure.agent.errors``.
"""

from dataclasses import dataclass, field
from datetime import UTC, datetime
from enum import Enum
from typing import Any

class ErrorSeverity(Enum):
    """Severity levels for agent errors."""

    DEBUG = "debug"
    INFO = "info"
    WARNING = "warning"
    ERROR = "error"
    CRITICAL = "critical"


class ErrorCategory(Enum):
    """Categories of agent errors."""

    VALIDATION = "validation"  # Bad tool arguments, bad patches, bad config
    EXECUTION = "execution"  # Tool dispatch and loop failures
    COMMUNICATION = "communication"  # Model provider calls
    SERIALIZATION = "serialization"  # Chain encode/decode
    STORAGE = "storage"  # Storage collaborator
    INTERNAL = "internal"


@dataclass
class ErrorContext:
    """Identity of the chain an error happened in."""

    operation: str
    flow_id: int | None = None
    task_id: int | None = None
    subtask_id: int | None = None
    chain_id: int | None = None
    timestamp: datetime = field(default_factory=lambda: datetime.now(UTC))
    details: dict[str, Any] = field(default_factory=dict)

    def to_dict(self) -> dict[str, Any]:
        return {
            "operation": self.operation,
            "flow_id": self.flow_id,
            "task_id": self.task_id,
            "subtask_id": self.subtask_id,
            "chain_id": self.chain_id,
            "timestamp": self.timestamp.isoformat(),
            "details": self.details,
        }


class AgentError(Exception):
    """Base exception for all engine errors."""

    def __init__(
        self,
        message: str,
        category: ErrorCategory = ErrorCategory.INTERNAL,
        severity: ErrorSeverity = ErrorSeverity.ERROR,
        context: ErrorContext | None = None,
        cause: BaseException | None = None,
    ) -> None:
        """Initialize the agent error.

        Args:
            message: Human-readable error message
            category: Error category for filtering/routing
            severity: Error severity level
            context: Chain identity the error belongs to
            cause: Original exception that caused this error
        """
        super().__init__(message)
        self.message = message
        self.category = category
        self.severity = severity
        self.context = context or ErrorContext(operation="unknown")
        self.cause = cause

    def to_dict(self) -> dict[str, Any]:
        """Convert error to dictionary for audit records."""
        return {
            "error_type": self.__class__.__name__,
            "message": self.message,
            "category": self.category.value,
            "severity": self.severity.value,
            "context": self.context.to_dict(),
        }

    def __str__(self) -> str:
        parts = [f"[{self.category.value.upper()}] {self.message}"]
        if self.context.operation != "unknown":
            parts.append(f"operation={self.context.operation}")
        if self.context.chain_id:
            parts.append(f"chain_id={self.context.chain_id}")
        return " | ".join(parts)


class ChainSerializationError(AgentError):
    """Raised when a chain blob can not be encoded or decoded."""

    def __init__(
        self,
        message: str,
        context: ErrorContext | None = None,
        cause: BaseException | None = None,
    ) -> None:
        super().__init__(
            message=message,
            category=ErrorCategory.SERIALIZATION,
            severity=ErrorSeverity.CRITICAL,
            context=context,
            cause=cause,
        )




class TemplateNotFoundError(AgentError):
    """Raised when the renderer has no template of the requested type."""

    def __init__(self, prompt_type: Enum | str) -> None:
        name = prompt_type.value if isinstance(prompt_type, Enum) else prompt_type
        super().__init__(
            message=f"template '{name}' not found",
            category=ErrorCategory.VALIDATION,
            severity=ErrorSeverity.ERROR,
        )
        self.prompt_type = prompt_type

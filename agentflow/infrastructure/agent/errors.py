"""Error hierarchy for the agent chain engine.

Every failure raised by the engine is an ``AgentError`` carrying a category,
a severity and an optional context. The base classes come from
``agentflow.domain.exceptions``; this module adds the kinds raised while
running chains. Cancellation is never wrapped: an ``asyncio.CancelledError``
always propagates as-is.
"""

from typing import Any

from agentflow.domain.exceptions import (
    AgentError,
    ChainSerializationError,
    ErrorCategory,
    ErrorContext,
    ErrorSeverity,
    TemplateNotFoundError,
)

__all__ = [
    "AgentCommunicationError",
    "AgentError",
    "AgentExecutionError",
    "AgentInternalError",
    "AgentValidationError",
    "ChainSerializationError",
    "ChainStructureError",
    "ErrorCategory",
    "ErrorContext",
    "ErrorSeverity",
    "RecordNotFoundError",
    "StorageError",
    "TemplateNotFoundError",
    "error_text",
    "wrap_error",
]


class AgentValidationError(AgentError):
    """Raised when tool arguments, a subtask patch or a config value are invalid."""

    def __init__(
        self,
        message: str,
        field: str | None = None,
        value: Any | None = None,
        operation_index: int | None = None,
        context: ErrorContext | None = None,
        cause: BaseException | None = None,
    ) -> None:
        super().__init__(
            message=message,
            category=ErrorCategory.VALIDATION,
            severity=ErrorSeverity.WARNING,
            context=context,
            cause=cause,
        )
        self.field = field
        self.value = value
        self.operation_index = operation_index

    def to_dict(self) -> dict[str, Any]:
        data = super().to_dict()
        if self.field:
            data["field"] = self.field
        if self.value is not None:
            data["value"] = str(self.value)
        if self.operation_index is not None:
            data["operation_index"] = self.operation_index
        return data


class AgentExecutionError(AgentError):
    """Raised when tool dispatch or the execution loop fails."""

    def __init__(
        self,
        message: str,
        step: str | None = None,
        tool_name: str | None = None,
        context: ErrorContext | None = None,
        cause: BaseException | None = None,
    ) -> None:
        super().__init__(
            message=message,
            category=ErrorCategory.EXECUTION,
            severity=ErrorSeverity.ERROR,
            context=context,
            cause=cause,
        )
        self.step = step
        self.tool_name = tool_name


class AgentCommunicationError(AgentError):
    """Raised when the model provider can not produce a usable response."""

    def __init__(
        self,
        message: str,
        service: str | None = None,
        attempts: int | None = None,
        context: ErrorContext | None = None,
        cause: BaseException | None = None,
    ) -> None:
        super().__init__(
            message=message,
            category=ErrorCategory.COMMUNICATION,
            severity=ErrorSeverity.ERROR,
            context=context,
            cause=cause,
        )
        self.service = service
        self.attempts = attempts


class ChainStructureError(AgentError):
    """Raised when a chain violates the section/body-pair structure."""

    def __init__(
        self,
        message: str,
        message_index: int | None = None,
        context: ErrorContext | None = None,
    ) -> None:
        super().__init__(
            message=message,
            category=ErrorCategory.VALIDATION,
            severity=ErrorSeverity.ERROR,
            context=context,
        )
        self.message_index = message_index


class StorageError(AgentError):
    """Raised when the storage collaborator fails."""

    def __init__(
        self,
        message: str,
        entity: str | None = None,
        context: ErrorContext | None = None,
        cause: BaseException | None = None,
    ) -> None:
        super().__init__(
            message=message,
            category=ErrorCategory.STORAGE,
            severity=ErrorSeverity.CRITICAL,
            context=context,
            cause=cause,
        )
        self.entity = entity


class RecordNotFoundError(StorageError):
    """Raised when a requested row does not exist."""

    def __init__(self, entity: str, record_id: int | None) -> None:
        super().__init__(f"{entity} '{record_id}' not found", entity=entity)
        self.record_id = record_id


class AgentInternalError(AgentError):
    """Raised when an unexpected internal failure occurs."""

    def __init__(
        self,
        message: str,
        component: str | None = None,
        context: ErrorContext | None = None,
        cause: BaseException | None = None,
    ) -> None:
        super().__init__(
            message=message,
            category=ErrorCategory.INTERNAL,
            severity=ErrorSeverity.CRITICAL,
            context=context,
            cause=cause,
        )
        self.component = component


def wrap_error(
    error: Exception,
    message: str | None = None,
    context: ErrorContext | None = None,
) -> AgentError:
    """Wrap a generic exception into an AgentError.

    Args:
        error: The original exception
        message: Optional prefix, rendered as ``"<message>: <error>"``
        context: Optional error context

    Returns:
        The error itself if it already is an AgentError, otherwise an
        AgentInternalError chained to it
    """
    if isinstance(error, AgentError):
        return error

    error_message = f"{message}: {error}" if message else str(error)
    return AgentInternalError(
        message=error_message,
        component=type(error).__name__,
        context=context,
        cause=error,
    )


def error_text(error: BaseException) -> str:
    """Return the bare message of an error, without the category prefix."""
    if isinstance(error, AgentError):
        return error.message
    return str(error)

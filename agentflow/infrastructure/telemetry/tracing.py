"""OpenTelemetry tracing helpers.

Spans are created through the global tracer provider. Exporting is left to the
host process; without a configured provider the API hands out no-op spans.
"""

import functools
from collections.abc import Callable, Mapping
from typing import Any

from opentelemetry import trace
from opentelemetry.trace import NonRecordingSpan, Span, Status, StatusCode

TRACER_NAME_PREFIX = "agentflow"


def get_tracer(component_name: str) -> trace.Tracer:
    """Return a tracer scoped to an engine component."""
    return trace.get_tracer(f"{TRACER_NAME_PREFIX}.{component_name}")


def add_span_attributes(attributes: Mapping[str, Any]) -> None:
    """Add attributes to the current span.

    Args:
        attributes: Key-value pairs to add as span attributes. ``None`` values
            are skipped since OpenTelemetry rejects them.
    """
    span: Span = trace.get_current_span()
    if isinstance(span, NonRecordingSpan):
        return
    for key, value in attributes.items():
        if value is not None:
            span.set_attribute(key, value)


def async_with_tracer(component_name: str, attributes: dict[str, Any] | None = None):
    """Decorator to add tracing to asynchronous functions.

    Args:
        component_name: Name of the component/module
        attributes: Optional static attributes to add to the span

    Returns:
        Decorator function
    """

    def decorator(func: Callable) -> Callable:
        @functools.wraps(func)
        async def wrapper(*args: Any, **kwargs: Any) -> Any:
            tracer = get_tracer(component_name)
            span_name = f"{component_name}.{func.__name__}"

            with tracer.start_as_current_span(span_name, record_exception=False) as span:
                if attributes:
                    for key, value in attributes.items():
                        span.set_attribute(key, value)
                span.set_attribute("function.name", func.__name__)

                try:
                    result = await func(*args, **kwargs)
                    span.set_status(Status(StatusCode.OK))
                    return result
                except Exception as e:
                    span.record_exception(e)
                    span.set_status(Status(StatusCode.ERROR, str(e)))
                    raise

        return wrapper

    return decorator

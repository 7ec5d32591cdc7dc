"""OpenTelemetry tracing helpers."""

from agentflow.infrastructure.telemetry.tracing import add_span_attributes, async_with_tracer

__all__ = ["add_span_attributes", "async_with_tracer"]

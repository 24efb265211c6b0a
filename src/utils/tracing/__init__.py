"""
Distributed tracing using OpenTelemetry.

Reconciliation runs open one span per run with child spans for the
source and target load phases.
"""

from .context import add_span_attributes, add_span_event, trace_function, trace_operation
from .tracer import get_tracer, initialize_tracing, shutdown_tracing

__all__ = [
    "initialize_tracing",
    "get_tracer",
    "shutdown_tracing",
    "trace_operation",
    "trace_function",
    "add_span_attributes",
    "add_span_event",
]

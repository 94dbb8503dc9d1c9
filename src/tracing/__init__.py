"""Trace context correlation for logging.

- **model**: trace context and baggage field value types
- **bridge**: mirrors scope and baggage changes into the correlation store
- **backend**: OpenTelemetry and no-op tracing backends
- **propagation**: wire formats and baggage field classification
- **tracer**: the ``Tracing`` facade used by application code
"""

from src.tracing.backend import (
    NoopTracingBackend,
    OpenTelemetryBackend,
    TracingBackend,
)
from src.tracing.bridge import ContextCorrelationBridge, TagSink
from src.tracing.model import (
    BaggageField,
    BaggageScope,
    TraceContext,
    is_unset_trace_id,
)
from src.tracing.tracer import Tracing

__all__ = [
    "BaggageField",
    "BaggageScope",
    "ContextCorrelationBridge",
    "NoopTracingBackend",
    "OpenTelemetryBackend",
    "TagSink",
    "TraceContext",
    "Tracing",
    "TracingBackend",
    "is_unset_trace_id",
]

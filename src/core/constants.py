"""Core application constants."""

# Time constants
NANOSECONDS_PER_MILLISECOND = 1_000_000

# Correlation store keys
TRACE_ID_KEY = "traceId"
SPAN_ID_KEY = "spanId"

# All-zero trace id reported by OpenTelemetry for an invalid span context
UNSET_TRACE_ID = "0" * 32

# Security and redaction
REDACTED = "[REDACTED]"

# Default span export endpoints
DEFAULT_ZIPKIN_ENDPOINT = "http://localhost:9411/api/v2/spans"
DEFAULT_OTLP_ENDPOINT = "http://localhost:4317"

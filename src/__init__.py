"""Tracebridge - trace and baggage correlation for structured logs.

Tracebridge binds tracing configuration (sampling, baggage fields,
propagation format, span export) to OpenTelemetry and keeps a per-context
correlation store in sync with the active span, so every log line carries
the trace id, span id and selected baggage values.

Architecture Overview:
- **Core Layer**: Configuration, correlation store, logging, setup wiring
- **Tracing Layer**: Backends, propagation, the correlation bridge and facade
- **API Layer**: FastAPI application with a per-request tracing scope
"""

"""Tracing setup: backend selection, span export and log correlation wiring.

This module turns :class:`~src.core.config.TracingConfig` into a ready
:class:`~src.tracing.tracer.Tracing` handle:

- **Backend**: chosen from ``tracing_config.backend`` (``opentelemetry`` or
  ``noop``); disabling tracing forces the no-op backend
- **Sampling**: parent-based, trace-id ratio from ``sampling.probability``
- **Export**: console (through Loguru), Zipkin, OTLP, or none
- **Propagation**: W3C, B3, AWS X-Ray or a custom propagator
- **Correlation**: a bridge mirroring trace ids and baggage into the logging
  context
"""

from __future__ import annotations

import math
from typing import TYPE_CHECKING, Final

from loguru import logger
from opentelemetry import propagate, trace
from opentelemetry.exporter.otlp.proto.grpc.trace_exporter import OTLPSpanExporter
from opentelemetry.exporter.zipkin.json import ZipkinExporter
from opentelemetry.sdk.resources import Resource
from opentelemetry.sdk.trace import ReadableSpan, TracerProvider
from opentelemetry.sdk.trace.export import (
    BatchSpanProcessor,
    SpanExporter,
    SpanExportResult,
)
from opentelemetry.sdk.trace.sampling import ParentBased, TraceIdRatioBased

from src.core.config import BaggageConfig
from src.core.constants import (
    DEFAULT_OTLP_ENDPOINT,
    DEFAULT_ZIPKIN_ENDPOINT,
    NANOSECONDS_PER_MILLISECOND,
)
from src.tracing.backend import NoopTracingBackend, OpenTelemetryBackend
from src.tracing.bridge import ContextCorrelationBridge
from src.tracing.propagation import build_propagator
from src.tracing.tracer import Tracing

if TYPE_CHECKING:
    from collections.abc import Sequence

    from opentelemetry.propagators.textmap import TextMapPropagator

    from src.core.config import Settings
    from src.tracing.backend import TracingBackend

# Constants
SERVICE_NAME_KEY: Final[str] = "service.name"
SERVICE_VERSION_KEY: Final[str] = "service.version"
ENVIRONMENT_KEY: Final[str] = "deployment.environment"


class _TracingState:
    """Holds the process-wide tracing handle once setup has run."""

    def __init__(self) -> None:
        self.tracing: Tracing | None = None


_state = _TracingState()


class LoguruSpanExporter(SpanExporter):
    """Span exporter that writes finished spans through Loguru."""

    def export(self, spans: Sequence[ReadableSpan]) -> SpanExportResult:
        """Export spans through Loguru logger instead of stdout.

        This keeps spans in the configured log format instead of raw JSON.
        """
        for span in spans:
            span_context = span.get_span_context()
            if not span_context:
                continue

            duration_ms = None
            if span.end_time and span.start_time:
                duration_ms = (
                    span.end_time - span.start_time
                ) // NANOSECONDS_PER_MILLISECOND

            logger.bind(
                trace_id=trace.format_trace_id(span_context.trace_id),
                span_id=trace.format_span_id(span_context.span_id),
                span_name=span.name,
                span_kind=span.kind.name,
                duration_ms=duration_ms,
                attributes=dict(span.attributes or {}),
                status=span.status.status_code.name,
            ).debug("Trace span completed: {}", span.name)

        return SpanExportResult.SUCCESS


def get_span_exporter(settings: Settings) -> SpanExporter | None:
    """Get the span exporter selected by configuration.

    Args:
        settings: Application settings.

    Returns:
        SpanExporter | None: Configured exporter or None if export is disabled.
    """
    config = settings.tracing_config
    exporter_type = config.exporter_type

    if exporter_type == "console":
        logger.info("Using Loguru span exporter for development")
        return LoguruSpanExporter()

    if exporter_type == "zipkin":
        endpoint = config.exporter_endpoint or DEFAULT_ZIPKIN_ENDPOINT
        logger.info(f"Using Zipkin exporter at {endpoint}")
        # Zipkin takes whole seconds and treats 0 as "use the default"
        timeout = math.ceil(config.export_timeout_s)
        return ZipkinExporter(endpoint=endpoint, timeout=timeout)

    if exporter_type == "otlp":
        endpoint = config.exporter_endpoint or DEFAULT_OTLP_ENDPOINT
        logger.info(f"Using OTLP exporter at {endpoint}")
        return OTLPSpanExporter(
            endpoint=endpoint,
            insecure=settings.environment == "development",
            timeout=config.export_timeout_s,
        )

    logger.info("Span export explicitly disabled")
    return None


def create_tracer_provider(
    settings: Settings, exporter: SpanExporter | None = None
) -> TracerProvider:
    """Create a tracer provider with the configured sampler and exporter.

    Args:
        settings: Application settings.
        exporter: Exporter to use instead of the configured one.

    Returns:
        TracerProvider: Provider ready to create spans.
    """
    resource = Resource.create(
        {
            SERVICE_NAME_KEY: settings.app_name,
            SERVICE_VERSION_KEY: settings.app_version,
            ENVIRONMENT_KEY: settings.environment,
        }
    )
    tracer_provider = TracerProvider(
        resource=resource,
        sampler=ParentBased(
            TraceIdRatioBased(settings.tracing_config.sampling.probability)
        ),
    )

    span_exporter = exporter or get_span_exporter(settings)
    if span_exporter:
        tracer_provider.add_span_processor(BatchSpanProcessor(span_exporter))
    return tracer_provider


def create_backend(
    settings: Settings,
    *,
    propagator: TextMapPropagator | None = None,
    tracer_provider: TracerProvider | None = None,
) -> TracingBackend:
    """Resolve the tracing backend named by configuration.

    Args:
        settings: Application settings.
        propagator: Propagator for the ``custom`` propagation type.
        tracer_provider: Provider to use instead of building one.

    Returns:
        TracingBackend: The selected backend.

    Raises:
        ConfigurationError: If the propagation setup is incomplete.
    """
    config = settings.tracing_config
    if config.effective_backend == "noop":
        logger.info("Tracing disabled, using no-op backend")
        return NoopTracingBackend()

    text_map = build_propagator(config, propagator)
    provider = tracer_provider or create_tracer_provider(settings)
    return OpenTelemetryBackend(provider, text_map)


def setup_tracing(
    settings: Settings,
    *,
    propagator: TextMapPropagator | None = None,
    tracer_provider: TracerProvider | None = None,
) -> Tracing:
    """Configure tracing and log correlation for the process.

    The OpenTelemetry backend also becomes the global tracer provider and
    text map propagator so instrumented libraries share it.

    Args:
        settings: Application settings.
        propagator: Propagator for the ``custom`` propagation type.
        tracer_provider: Provider to use instead of building one.

    Returns:
        Tracing: The process-wide tracing handle.
    """
    config = settings.tracing_config
    backend = create_backend(
        settings, propagator=propagator, tracer_provider=tracer_provider
    )
    bridge = ContextCorrelationBridge(config.baggage, backend.tag_sink)
    tracing = Tracing(backend, bridge, config.baggage)

    if isinstance(backend, OpenTelemetryBackend):
        trace.set_tracer_provider(backend.tracer_provider)
        propagate.set_global_textmap(backend.propagator)

    _state.tracing = tracing
    logger.info(
        "Tracing configured",
        backend=backend.name,
        exporter_type=config.exporter_type,
        sample_rate=config.sampling.probability,
        propagation=config.propagation.type.value,
        correlation_fields=list(config.baggage.correlation_fields),
    )
    return tracing


def get_tracing() -> Tracing:
    """Get the process-wide tracing handle.

    Falls back to a no-op handle with default baggage settings when
    :func:`setup_tracing` has not run.
    """
    if _state.tracing is None:
        config = BaggageConfig()
        return Tracing(NoopTracingBackend(), ContextCorrelationBridge(config), config)
    return _state.tracing


def shutdown_tracing() -> None:
    """Flush and release the process-wide tracing backend."""
    if _state.tracing is None:
        return
    _state.tracing.shutdown()
    _state.tracing = None
    logger.info("Tracing shut down")

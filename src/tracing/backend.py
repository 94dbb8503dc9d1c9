"""Tracing backends selected explicitly from configuration.

A backend owns span creation, context attachment and propagation for one
tracing implementation. The rest of the library only talks to the
:class:`TracingBackend` interface, so the choice between a real tracer and
the no-op one is made once at startup from ``tracing_config.backend``.

Both backends keep the active span and baggage in OpenTelemetry's context
API, which is backed by contextvars and therefore isolated per thread and
per asyncio task.
"""

from __future__ import annotations

from abc import ABC, abstractmethod
from typing import TYPE_CHECKING, ClassVar

from opentelemetry import baggage, trace
from opentelemetry import context as otel_context
from opentelemetry.trace import (
    INVALID_SPAN,
    SpanKind,
    Status,
    StatusCode,
    format_span_id,
    format_trace_id,
)

from src.tracing.model import TraceContext

if TYPE_CHECKING:
    from collections.abc import Mapping

    from opentelemetry.propagators.textmap import TextMapPropagator
    from opentelemetry.sdk.trace import TracerProvider

    from src.core.types import Carrier, TagValue
    from src.tracing.bridge import TagSink


class SpanAttributeTagSink:
    """Tags the current recording span with baggage values."""

    def tag(self, name: str, value: str) -> None:
        """Set ``name`` as an attribute of the current span."""
        span = trace.get_current_span()
        if span.is_recording():
            span.set_attribute(name, value)


class NoopTagSink:
    """Drops tags."""

    def tag(self, name: str, value: str) -> None:
        """Ignore the tag."""


class TracingBackend(ABC):
    """Capability interface implemented by every tracing backend."""

    name: ClassVar[str]
    tag_sink: TagSink

    @abstractmethod
    def start_span(
        self,
        name: str,
        kind: SpanKind = SpanKind.INTERNAL,
        attributes: Mapping[str, TagValue] | None = None,
    ) -> trace.Span:
        """Start a span as a child of the current context."""

    @abstractmethod
    def inject(self, carrier: Carrier) -> None:
        """Write the current trace context and baggage into ``carrier``."""

    @abstractmethod
    def extract(self, carrier: Mapping[str, str]) -> object:
        """Attach the context found in ``carrier`` and return its detach token."""

    @abstractmethod
    def shutdown(self) -> None:
        """Flush and release backend resources."""

    def end_span(self, span: trace.Span, error: BaseException | None = None) -> None:
        """End ``span``, recording ``error`` if the unit of work failed."""
        if error is not None and span.is_recording():
            span.record_exception(error)
            span.set_status(Status(StatusCode.ERROR, str(error)))
        span.end()

    def trace_context(self, span: trace.Span | None) -> TraceContext | None:
        """Describe ``span`` with the baggage of the current context.

        Returns:
            TraceContext | None: None for a missing or invalid span.
        """
        if span is None:
            return None
        span_context = span.get_span_context()
        if not span_context.is_valid:
            return None
        return TraceContext(
            trace_id=format_trace_id(span_context.trace_id),
            span_id=format_span_id(span_context.span_id),
            baggage=self.current_baggage(),
        )

    def current_baggage(self) -> dict[str, str]:
        """Return the baggage of the current context, with or without a span."""
        return {name: str(value) for name, value in baggage.get_all().items()}

    def current_trace_context(self) -> TraceContext | None:
        """Describe the span that is current in this context."""
        return self.trace_context(trace.get_current_span())

    def attach_span(self, span: trace.Span | None) -> object:
        """Make ``span`` current and return the detach token.

        None attaches an empty context: no span and no baggage.
        """
        if span is None:
            return otel_context.attach(otel_context.Context())
        return otel_context.attach(trace.set_span_in_context(span))

    def attach_baggage(self, name: str, value: str | None) -> object:
        """Attach a baggage value to the current context."""
        if value is None:
            return otel_context.attach(baggage.remove_baggage(name))
        return otel_context.attach(baggage.set_baggage(name, value))

    def detach(self, token: object) -> None:
        """Restore the context that was current before ``token`` was attached."""
        otel_context.detach(token)  # type: ignore[arg-type]


class OpenTelemetryBackend(TracingBackend):
    """Backend delegating to the OpenTelemetry SDK.

    Args:
        tracer_provider: Provider carrying the sampler and span processors.
        propagator: Propagator for the configured wire format.
    """

    name = "opentelemetry"

    def __init__(
        self, tracer_provider: TracerProvider, propagator: TextMapPropagator
    ) -> None:
        self.tracer_provider = tracer_provider
        self.propagator = propagator
        self.tag_sink = SpanAttributeTagSink()
        self._tracer = tracer_provider.get_tracer("src.tracing")

    def start_span(
        self,
        name: str,
        kind: SpanKind = SpanKind.INTERNAL,
        attributes: Mapping[str, TagValue] | None = None,
    ) -> trace.Span:
        return self._tracer.start_span(name, kind=kind, attributes=attributes)

    def inject(self, carrier: Carrier) -> None:
        self.propagator.inject(carrier)

    def extract(self, carrier: Mapping[str, str]) -> object:
        return otel_context.attach(self.propagator.extract(carrier))

    def shutdown(self) -> None:
        self.tracer_provider.shutdown()


class NoopTracingBackend(TracingBackend):
    """Backend used when tracing is disabled.

    Spans are invalid, so no trace id ever reaches the correlation store.
    Baggage still works in-process but is never propagated.
    """

    name = "noop"

    def __init__(self) -> None:
        self.tag_sink = NoopTagSink()

    def start_span(
        self,
        name: str,
        kind: SpanKind = SpanKind.INTERNAL,
        attributes: Mapping[str, TagValue] | None = None,
    ) -> trace.Span:
        _ = (name, kind, attributes)
        return INVALID_SPAN

    def inject(self, carrier: Carrier) -> None:
        _ = carrier

    def extract(self, carrier: Mapping[str, str]) -> object:
        _ = carrier
        return otel_context.attach(otel_context.get_current())

    def shutdown(self) -> None:
        """Nothing to release."""

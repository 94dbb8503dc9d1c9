"""Tracing facade routing every scope change through the correlation bridge.

Application code opens spans and baggage through :class:`Tracing` instead of
the backend directly, so the logging correlation store always reflects the
context that is current:

    >>> with tracing.span("charge-card"):
    ...     with tracing.baggage("country-code", "FO"):
    ...         logger.info("charging")  # carries traceId, spanId, country-code
"""

from __future__ import annotations

from contextlib import contextmanager
from typing import TYPE_CHECKING

from opentelemetry.trace import SpanKind

from src.tracing.model import BaggageField, BaggageScope

if TYPE_CHECKING:
    from collections.abc import Iterator, Mapping

    from opentelemetry import trace

    from src.core.config import BaggageConfig
    from src.core.types import Carrier, TagValue
    from src.tracing.backend import TracingBackend
    from src.tracing.bridge import ContextCorrelationBridge
    from src.tracing.model import TraceContext


class Tracing:
    """Entry point for spans, baggage and propagation.

    Args:
        backend: The tracing backend resolved at startup.
        bridge: Listener keeping the correlation store in sync.
        baggage_config: Field classification for :meth:`field`.
    """

    def __init__(
        self,
        backend: TracingBackend,
        bridge: ContextCorrelationBridge,
        baggage_config: BaggageConfig,
    ) -> None:
        self.backend = backend
        self.bridge = bridge
        self._local_fields = frozenset(baggage_config.local_fields)
        self._remote_fields = frozenset(baggage_config.remote_fields)

    def field(self, name: str) -> BaggageField:
        """Create an empty baggage field classified by configuration."""
        if name in self._local_fields:
            scope = BaggageScope.LOCAL
        elif name in self._remote_fields:
            scope = BaggageScope.REMOTE
        else:
            scope = BaggageScope.DEFAULT
        return BaggageField(name=name, scope=scope)

    def current_context(self) -> TraceContext | None:
        """Trace context of the span current in this thread or task."""
        return self.backend.current_trace_context()

    @contextmanager
    def with_span(self, span: trace.Span | None) -> Iterator[TraceContext | None]:
        """Make ``span`` current for the duration of the block.

        Passing None opens a scope with no active span.

        Yields:
            TraceContext | None: The context now visible to logging.
        """
        previous = self.backend.current_trace_context()
        token = self.backend.attach_span(span)
        with self._correlated(token, previous) as current:
            yield current

    @contextmanager
    def span(
        self,
        name: str,
        kind: SpanKind = SpanKind.INTERNAL,
        **attributes: TagValue,
    ) -> Iterator[trace.Span]:
        """Start a child span, make it current, and end it on exit.

        Exceptions escaping the block are recorded on the span and re-raised.

        Args:
            name: Span name.
            kind: Span kind.
            **attributes: Initial span attributes.

        Yields:
            trace.Span: The started span.
        """
        span = self.backend.start_span(name, kind=kind, attributes=attributes)
        error: BaseException | None = None
        try:
            with self.with_span(span):
                yield span
        except BaseException as exc:
            error = exc
            raise
        finally:
            self.backend.end_span(span, error)

    @contextmanager
    def baggage(self, name: str, value: str | None) -> Iterator[BaggageField]:
        """Attach a baggage value to the current context for the block.

        Args:
            name: Baggage field name.
            value: Field value. None hides an inherited value.

        Yields:
            BaggageField: The classified field carrying ``value``.
        """
        field = self.field(name).with_value(value)
        token = self.backend.attach_baggage(name, value)
        context = self.backend.current_trace_context()
        self.bridge.on_baggage_set(field, context)
        try:
            yield field
        finally:
            self.backend.detach(token)
            self.bridge.on_baggage_clear(field, context)

    @contextmanager
    def extracted(self, carrier: Mapping[str, str]) -> Iterator[TraceContext | None]:
        """Make the remote parent found in ``carrier`` current for the block.

        Yields:
            TraceContext | None: The remote parent, None if the carrier has none.
        """
        previous = self.backend.current_trace_context()
        token = self.backend.extract(carrier)
        with self._correlated(token, previous) as current:
            yield current

    def inject(self, carrier: Carrier) -> Carrier:
        """Write the current trace context and baggage into ``carrier``."""
        self.backend.inject(carrier)
        return carrier

    def shutdown(self) -> None:
        """Flush pending spans and release the backend."""
        self.backend.shutdown()

    @contextmanager
    def _correlated(
        self, token: object, previous: TraceContext | None
    ) -> Iterator[TraceContext | None]:
        current = self.backend.current_trace_context()
        self.bridge.on_scope_enter(current, self.backend.current_baggage())
        try:
            yield current
        finally:
            self.backend.detach(token)
            self.bridge.on_scope_exit(previous)

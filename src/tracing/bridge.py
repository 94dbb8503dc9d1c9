"""Bridge between span/baggage scopes and the logging correlation store.

The tracing facade notifies the bridge whenever a span scope is entered or
exited and whenever a baggage value is set or cleared. The bridge mirrors the
current trace id, span id and the configured correlation baggage fields into
:class:`~src.core.context.CorrelationStore`, so every log line emitted in the
same thread or task carries them.

Scopes nest strictly. Entering a scope records the store state; exiting it
restores exactly that state, so leaving a "no active span" scope brings the
parent's ids back instead of leaving the store cleared.
"""

from __future__ import annotations

from collections.abc import Mapping
from contextvars import ContextVar
from typing import TYPE_CHECKING, NamedTuple, Protocol

from loguru import logger

from src.core.constants import SPAN_ID_KEY, TRACE_ID_KEY
from src.core.context import CorrelationStore

if TYPE_CHECKING:
    from src.core.config import BaggageConfig
    from src.tracing.model import BaggageField, TraceContext


class TagSink(Protocol):
    """Receives baggage values configured as tag fields."""

    def tag(self, name: str, value: str) -> None:
        """Surface ``value`` as a tag named ``name`` on the current observation."""
        ...


class _BaggageEntry(NamedTuple):
    name: str
    shadowed: str | None


class _ScopeFrame(NamedTuple):
    entries: Mapping[str, str]
    baggage: tuple[_BaggageEntry, ...]


# Both stacks are immutable tuples replaced on every change.
_scope_stack: ContextVar[tuple[_ScopeFrame, ...]] = ContextVar(
    "correlation_scope_stack", default=()
)
_baggage_stack: ContextVar[tuple[_BaggageEntry, ...]] = ContextVar(
    "correlation_baggage_stack", default=()
)


class ContextCorrelationBridge:
    """Keeps the correlation store consistent with the active trace context.

    Args:
        config: Baggage configuration naming the correlation and tag fields.
        tag_sink: Optional collaborator receiving tag field values.
    """

    def __init__(self, config: BaggageConfig, tag_sink: TagSink | None = None) -> None:
        self.correlation_enabled = config.correlation_enabled
        self.correlation_fields = frozenset(config.correlation_fields)
        self.tag_fields = frozenset(config.tag_fields)
        self.tag_sink = tag_sink

    def on_scope_enter(
        self,
        context: TraceContext | None,
        baggage: Mapping[str, str] | None = None,
    ) -> None:
        """Make ``context`` the visible trace context.

        Args:
            context: The context entering scope, or None for "no active span".
            baggage: Baggage active in the scope when there is no valid span,
                as with the no-op backend. Ignored for a valid ``context``,
                which carries its own baggage.
        """
        frame = _ScopeFrame(CorrelationStore.snapshot(), _baggage_stack.get())
        _scope_stack.set((*_scope_stack.get(), frame))
        self._apply(context, baggage)

    def on_scope_exit(self, previous_context: TraceContext | None = None) -> None:
        """Restore the state captured by the matching :meth:`on_scope_enter`.

        Args:
            previous_context: The context becoming current again. Only used
                when no scope is open, which means enter/exit calls were
                unbalanced.
        """
        stack = _scope_stack.get()
        if not stack:
            logger.warning(
                "Scope exit without a matching enter, applying previous context",
                trace_id=previous_context.trace_id if previous_context else None,
            )
            self._apply(previous_context)
            return

        *rest, frame = stack
        _scope_stack.set(tuple(rest))
        _baggage_stack.set(frame.baggage)
        CorrelationStore.restore(frame.entries)

    def on_baggage_set(self, field: BaggageField, context: TraceContext | None) -> None:
        """Mirror a baggage value that was just set.

        Args:
            field: The baggage field carrying its new value.
            context: The trace context the baggage was attached to.
        """
        if not self.correlation_enabled:
            return

        if field.name in self.correlation_fields:
            entry = _BaggageEntry(field.name, CorrelationStore.get(field.name))
            _baggage_stack.set((*_baggage_stack.get(), entry))
            if field.value is None:
                CorrelationStore.remove(field.name)
            else:
                CorrelationStore.put(field.name, field.value)

        if field.name in self.tag_fields and field.value is not None:
            self._forward_tag(field.name, field.value, context)

    def on_baggage_clear(
        self, field: BaggageField, context: TraceContext | None
    ) -> None:
        """Drop a baggage value whose scope ended.

        If an outer baggage scope set the same field, the value it held is
        restored instead of removing the entry.

        Args:
            field: The baggage field being cleared.
            context: The trace context the baggage was attached to.
        """
        _ = context
        if not self.correlation_enabled or field.name not in self.correlation_fields:
            return

        stack = _baggage_stack.get()
        for index in range(len(stack) - 1, -1, -1):
            if stack[index].name == field.name:
                shadowed = stack[index].shadowed
                _baggage_stack.set(stack[:index] + stack[index + 1 :])
                break
        else:
            shadowed = None

        if shadowed is None:
            CorrelationStore.remove(field.name)
        else:
            CorrelationStore.put(field.name, shadowed)

    def _apply(
        self,
        context: TraceContext | None,
        baggage: Mapping[str, str] | None = None,
    ) -> None:
        if context is not None and context.is_valid:
            CorrelationStore.put(TRACE_ID_KEY, context.trace_id)
            CorrelationStore.put(SPAN_ID_KEY, context.span_id)
            baggage = context.baggage
        elif not baggage:
            CorrelationStore.remove(TRACE_ID_KEY, SPAN_ID_KEY, *self.correlation_fields)
            return
        else:
            # Span-less scope that still sees baggage
            CorrelationStore.remove(TRACE_ID_KEY, SPAN_ID_KEY)

        if not self.correlation_enabled:
            return
        for name in self.correlation_fields:
            value = baggage.get(name)
            if value is None:
                CorrelationStore.remove(name)
            else:
                CorrelationStore.put(name, value)

    def _forward_tag(self, name: str, value: str, context: TraceContext | None) -> None:
        if self.tag_sink is None:
            return
        try:
            self.tag_sink.tag(name, value)
        except Exception:
            # Tagging is best-effort, the store update above already happened
            logger.opt(exception=True).warning(
                "Failed to forward baggage tag {}",
                name,
                trace_id=context.trace_id if context else None,
            )

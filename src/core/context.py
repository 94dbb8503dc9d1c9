"""Correlation store backing log correlation with trace and baggage data.

The store is a string-to-string map local to the current execution context
(thread or asyncio task). The logging subsystem reads it on every emitted
record; the correlation bridge writes it when span scopes are entered and
exited and when baggage changes.
"""

from collections.abc import Mapping
from contextvars import ContextVar
from types import MappingProxyType

_EMPTY: Mapping[str, str] = MappingProxyType({})

# The stored mapping is never mutated in place. Every write replaces it, so a
# context copied into another task or thread cannot observe later writes.
_correlation_var: ContextVar[Mapping[str, str]] = ContextVar(
    "correlation_store", default=_EMPTY
)


class CorrelationStore:
    """Context-local key-value store read by the logging subsystem.

    This class provides thread-safe and async-safe storage using contextvars:
    each thread, and each asyncio task, sees its own entries.
    """

    @staticmethod
    def get(key: str) -> str | None:
        """Get a value from the current context.

        Args:
            key: The entry name, e.g. "traceId".

        Returns:
            str | None: The value if present, None otherwise.
        """
        return _correlation_var.get().get(key)

    @staticmethod
    def entries() -> tuple[tuple[str, str], ...]:
        """Enumerate all entries of the current context in insertion order."""
        return tuple(_correlation_var.get().items())

    @staticmethod
    def put(key: str, value: str) -> None:
        """Set an entry in the current context.

        Args:
            key: The entry name.
            value: The entry value.
        """
        current = _correlation_var.get()
        if current.get(key) == value:
            return
        _correlation_var.set(MappingProxyType({**current, key: value}))

    @staticmethod
    def remove(*keys: str) -> None:
        """Remove entries from the current context, ignoring missing ones."""
        current = _correlation_var.get()
        if not any(key in current for key in keys):
            return
        _correlation_var.set(
            MappingProxyType({k: v for k, v in current.items() if k not in keys})
        )

    @staticmethod
    def snapshot() -> Mapping[str, str]:
        """Capture the current entries as an immutable mapping."""
        return _correlation_var.get()

    @staticmethod
    def restore(snapshot: Mapping[str, str]) -> None:
        """Replace the current entries with a previously captured snapshot."""
        _correlation_var.set(MappingProxyType(dict(snapshot)))

    @staticmethod
    def clear() -> None:
        """Clear all entries.

        Tests and worker loops call this to start from a clean state.
        """
        _correlation_var.set(_EMPTY)

"""Value types exchanged between tracing backends and the correlation bridge."""

from collections.abc import Mapping
from enum import StrEnum
from types import MappingProxyType

from pydantic import BaseModel, ConfigDict, Field, field_validator

from src.core.constants import UNSET_TRACE_ID


class BaggageScope(StrEnum):
    """How a baggage field travels across process boundaries."""

    LOCAL = "local"
    """Visible in-process only, never serialized to the wire."""

    REMOTE = "remote"
    """Propagated verbatim as its own header, prefix included."""

    DEFAULT = "default"
    """Propagated with the propagation format's baggage encoding."""


class TraceContext(BaseModel):
    """Identity of the unit of work that is current in a scope."""

    model_config = ConfigDict(frozen=True)

    trace_id: str
    span_id: str
    baggage: Mapping[str, str] = Field(default_factory=dict)

    @field_validator("baggage", mode="after")
    @classmethod
    def freeze_baggage(cls, v: Mapping[str, str]) -> Mapping[str, str]:
        """Store baggage as a read-only mapping."""
        return MappingProxyType(dict(v))

    @property
    def is_valid(self) -> bool:
        """Whether the trace id is set."""
        return not is_unset_trace_id(self.trace_id)


class BaggageField(BaseModel):
    """A named piece of contextual data attached to a trace."""

    model_config = ConfigDict(frozen=True)

    name: str
    value: str | None = None
    scope: BaggageScope = BaggageScope.DEFAULT

    def with_value(self, value: str | None) -> "BaggageField":
        """Return a copy of this field carrying ``value``."""
        return self.model_copy(update={"value": value})


def is_unset_trace_id(value: str | None) -> bool:
    """Whether a trace id read from the correlation store means "no trace".

    Absent and all-zero ids are equivalent. The store itself never holds the
    all-zero form; it is accepted here for values read from other sources.
    """
    return not value or value == UNSET_TRACE_ID

"""Propagator selection and baggage field classification on the wire.

Maps ``tracing_config.propagation.type`` to OpenTelemetry propagators:

- **w3c**: ``traceparent``/``tracestate`` plus the W3C ``baggage`` header
- **b3**: B3 multi-header (``X-B3-TraceId``, ``X-B3-SpanId``, ...)
- **aws**: AWS X-Ray ``X-Amzn-Trace-Id``
- **custom**: a propagator supplied by the application

Whatever the type, remote baggage fields travel verbatim as headers named
after the field, and local baggage fields never leave the process.
"""

from __future__ import annotations

from typing import TYPE_CHECKING

from loguru import logger
from opentelemetry import baggage
from opentelemetry.baggage.propagation import W3CBaggagePropagator
from opentelemetry.context import get_current
from opentelemetry.propagators.aws import AwsXRayPropagator
from opentelemetry.propagators.b3 import B3MultiFormat
from opentelemetry.propagators.composite import CompositePropagator
from opentelemetry.propagators.textmap import (
    CarrierT,
    Getter,
    Setter,
    TextMapPropagator,
    default_getter,
    default_setter,
)
from opentelemetry.trace.propagation.tracecontext import TraceContextTextMapPropagator

from src.core.config import PropagationType
from src.core.exceptions import ConfigurationError

if TYPE_CHECKING:
    from collections.abc import Iterable

    from opentelemetry.context import Context

    from src.core.config import TracingConfig


def _without(names: Iterable[str], context: Context | None) -> Context:
    """Return ``context`` with the given baggage entries removed."""
    ctx = get_current() if context is None else context
    for name in names:
        ctx = baggage.remove_baggage(name, ctx)
    return ctx


class RemoteFieldsPropagator(TextMapPropagator):
    """Carries remote baggage fields as individual headers.

    The header name is the field name itself, so a field such as
    ``x-vcap-request-id`` is read and written exactly as other systems expect.
    """

    def __init__(self, remote_fields: Iterable[str]) -> None:
        self._remote_fields = tuple(remote_fields)

    def extract(
        self,
        carrier: CarrierT,
        context: Context | None = None,
        getter: Getter[CarrierT] = default_getter,
    ) -> Context:
        ctx = _without((), context)
        for name in self._remote_fields:
            values = getter.get(carrier, name) or getter.get(carrier, name.lower())
            if values:
                ctx = baggage.set_baggage(name, values[0], ctx)
        return ctx

    def inject(
        self,
        carrier: CarrierT,
        context: Context | None = None,
        setter: Setter[CarrierT] = default_setter,
    ) -> None:
        for name in self._remote_fields:
            value = baggage.get_baggage(name, context)
            if value is not None:
                setter.set(carrier, name, str(value))

    @property
    def fields(self) -> set[str]:
        return set(self._remote_fields)


class ScopedBaggagePropagator(W3CBaggagePropagator):
    """W3C baggage header that skips local fields and remote fields.

    Local fields must not reach the wire; remote fields already travel in
    their own headers.
    """

    def __init__(
        self, local_fields: Iterable[str], remote_fields: Iterable[str]
    ) -> None:
        self._local_fields = tuple(local_fields)
        self._excluded = (*self._local_fields, *remote_fields)

    def extract(
        self,
        carrier: CarrierT,
        context: Context | None = None,
        getter: Getter[CarrierT] = default_getter,
    ) -> Context:
        ctx = super().extract(carrier, context, getter)
        return _without(self._local_fields, ctx)

    def inject(
        self,
        carrier: CarrierT,
        context: Context | None = None,
        setter: Setter[CarrierT] = default_setter,
    ) -> None:
        super().inject(carrier, _without(self._excluded, context), setter)


def build_propagator(
    config: TracingConfig, custom: TextMapPropagator | None = None
) -> TextMapPropagator:
    """Build the propagator for the configured propagation type.

    Args:
        config: Tracing configuration.
        custom: Propagator used when the type is ``custom``.

    Returns:
        TextMapPropagator: Composite propagator for trace context and baggage.

    Raises:
        ConfigurationError: If the type is ``custom`` and no propagator is given.
    """
    fields = config.baggage
    propagation_type = config.propagation.type
    propagators: list[TextMapPropagator] = []

    if propagation_type == PropagationType.W3C:
        propagators.append(TraceContextTextMapPropagator())
        propagators.append(
            ScopedBaggagePropagator(fields.local_fields, fields.remote_fields)
        )
    elif propagation_type == PropagationType.B3:
        propagators.append(B3MultiFormat())
    elif propagation_type == PropagationType.AWS:
        propagators.append(AwsXRayPropagator())
    elif custom is None:
        raise ConfigurationError(
            "Custom propagation type requires a propagator",
            context={"propagation_type": propagation_type.value},
        )
    else:
        propagators.append(custom)

    if fields.remote_fields:
        propagators.append(RemoteFieldsPropagator(fields.remote_fields))

    logger.debug(
        "Propagation configured with {} format",
        propagation_type.value,
        remote_fields=list(fields.remote_fields),
        local_fields=list(fields.local_fields),
    )
    return CompositePropagator(propagators)

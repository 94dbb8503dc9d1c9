"""Unit tests for src/core/observability.py module."""

from __future__ import annotations

from typing import TYPE_CHECKING

import pytest
from opentelemetry.exporter.otlp.proto.grpc.trace_exporter import OTLPSpanExporter
from opentelemetry.exporter.zipkin.json import ZipkinExporter
from opentelemetry.propagators.b3 import B3SingleFormat
from opentelemetry.sdk.trace import TracerProvider
from opentelemetry.sdk.trace.export import SpanExportResult
from opentelemetry.sdk.trace.sampling import ParentBased

from src.core.config import (
    PropagationConfig,
    PropagationType,
    SamplingConfig,
    Settings,
    TracingConfig,
)
from src.core.context import CorrelationStore
from src.core.exceptions import ConfigurationError
from src.core.observability import (
    LoguruSpanExporter,
    create_backend,
    create_tracer_provider,
    get_span_exporter,
    get_tracing,
    setup_tracing,
    shutdown_tracing,
)
from src.tracing.backend import NoopTracingBackend, OpenTelemetryBackend

if TYPE_CHECKING:
    from opentelemetry.sdk.trace.export.in_memory_span_exporter import (
        InMemorySpanExporter,
    )
    from pytest_mock import MockerFixture

COUNTRY_CODE = "country-code"


def _settings(**tracing: object) -> Settings:
    return Settings(tracing_config=TracingConfig(**tracing))  # type: ignore[arg-type]


@pytest.mark.unit
class TestSpanExporter:
    """Exporter selection by exporter type."""

    def test_console(self) -> None:
        """Console export goes through Loguru."""
        assert isinstance(
            get_span_exporter(_settings(exporter_type="console")), LoguruSpanExporter
        )

    def test_none(self) -> None:
        """Export can be disabled."""
        assert get_span_exporter(_settings(exporter_type="none")) is None

    def test_zipkin(self, mocker: MockerFixture) -> None:
        """Zipkin uses the configured endpoint and timeout."""
        mock_zipkin = mocker.patch(
            "src.core.observability.ZipkinExporter", spec=ZipkinExporter
        )

        get_span_exporter(
            _settings(
                exporter_type="zipkin",
                exporter_endpoint="http://zipkin:9411/api/v2/spans",
                export_timeout_s=5,
            )
        )

        mock_zipkin.assert_called_once_with(
            endpoint="http://zipkin:9411/api/v2/spans", timeout=5
        )

    @pytest.mark.parametrize(("timeout_s", "expected"), [(0.5, 1), (2.2, 3)])
    def test_zipkin_rounds_timeout_up(
        self, mocker: MockerFixture, timeout_s: float, expected: int
    ) -> None:
        """Fractional timeouts round up to whole seconds, never to zero."""
        mock_zipkin = mocker.patch("src.core.observability.ZipkinExporter")

        get_span_exporter(_settings(exporter_type="zipkin", export_timeout_s=timeout_s))

        assert mock_zipkin.call_args.kwargs["timeout"] == expected

    def test_zipkin_default_endpoint(self, mocker: MockerFixture) -> None:
        """Zipkin falls back to the local collector."""
        mock_zipkin = mocker.patch("src.core.observability.ZipkinExporter")

        get_span_exporter(_settings(exporter_type="zipkin"))

        assert mock_zipkin.call_args.kwargs["endpoint"] == (
            "http://localhost:9411/api/v2/spans"
        )

    def test_otlp(self, mocker: MockerFixture) -> None:
        """OTLP is insecure only in development."""
        mock_otlp = mocker.patch(
            "src.core.observability.OTLPSpanExporter", spec=OTLPSpanExporter
        )

        get_span_exporter(_settings(exporter_type="otlp"))

        mock_otlp.assert_called_once_with(
            endpoint="http://localhost:4317", insecure=True, timeout=10.0
        )


@pytest.mark.unit
class TestLoguruSpanExporter:
    """Test cases for LoguruSpanExporter."""

    def test_export_logs_span(
        self, mocker: MockerFixture, tracer_provider: TracerProvider
    ) -> None:
        """Finished spans are logged with their ids and duration."""
        mock_logger = mocker.patch("src.core.observability.logger")
        span = tracer_provider.get_tracer("test").start_span("work")
        span.end()

        result = LoguruSpanExporter().export([span])  # type: ignore[list-item]

        assert result == SpanExportResult.SUCCESS
        bound = mock_logger.bind.call_args.kwargs
        assert bound["span_name"] == "work"
        assert len(bound["trace_id"]) == 32
        assert bound["duration_ms"] is not None
        mock_logger.bind.return_value.debug.assert_called_once_with(
            "Trace span completed: {}", "work"
        )


@pytest.mark.unit
class TestBackendSelection:
    """Backend creation from configuration."""

    def test_tracer_provider_sampler(self) -> None:
        """The provider samples with a parent-based ratio sampler."""
        provider = create_tracer_provider(
            _settings(exporter_type="none", sampling=SamplingConfig(probability=0.25))
        )

        assert isinstance(provider.sampler, ParentBased)
        assert "0.25" in provider.sampler.get_description()
        assert provider.resource.attributes["service.name"] == "Tracebridge"

    def test_opentelemetry_backend(self) -> None:
        """The default backend is OpenTelemetry."""
        backend = create_backend(_settings(exporter_type="none"))

        assert isinstance(backend, OpenTelemetryBackend)

    @pytest.mark.parametrize(
        "tracing", [{"enabled": False}, {"backend": "noop"}]
    )
    def test_noop_backend(self, tracing: dict[str, object]) -> None:
        """Disabled tracing and the noop backend both resolve to no-op."""
        assert isinstance(create_backend(_settings(**tracing)), NoopTracingBackend)

    def test_custom_propagation_without_propagator(self) -> None:
        """A custom propagation type needs an application propagator."""
        settings = _settings(
            exporter_type="none",
            propagation=PropagationConfig(type=PropagationType.CUSTOM),
        )

        with pytest.raises(ConfigurationError):
            create_backend(settings)

    def test_custom_propagation_with_propagator(self) -> None:
        """The supplied propagator is accepted."""
        settings = _settings(
            exporter_type="none",
            propagation=PropagationConfig(type=PropagationType.CUSTOM),
        )

        backend = create_backend(settings, propagator=B3SingleFormat())

        assert isinstance(backend, OpenTelemetryBackend)


@pytest.mark.unit
class TestSetupTracing:
    """Process-wide tracing setup."""

    def test_setup_installs_globals(
        self,
        mocker: MockerFixture,
        tracing_settings: Settings,
        tracer_provider: TracerProvider,
        span_exporter: InMemorySpanExporter,
    ) -> None:
        """The OpenTelemetry backend becomes the global provider and propagator."""
        mock_set_provider = mocker.patch(
            "src.core.observability.trace.set_tracer_provider"
        )
        mock_set_textmap = mocker.patch(
            "src.core.observability.propagate.set_global_textmap"
        )

        tracing = setup_tracing(tracing_settings, tracer_provider=tracer_provider)

        assert get_tracing() is tracing
        mock_set_provider.assert_called_once_with(tracer_provider)
        backend = tracing.backend
        assert isinstance(backend, OpenTelemetryBackend)
        mock_set_textmap.assert_called_once_with(backend.propagator)

        with tracing.span("work") as span, tracing.baggage(COUNTRY_CODE, "FO"):
            assert CorrelationStore.get("traceId") == format(
                span.get_span_context().trace_id, "032x"
            )
            assert CorrelationStore.get(COUNTRY_CODE) == "FO"

        assert len(span_exporter.get_finished_spans()) == 1

    def test_setup_noop_leaves_globals(self, mocker: MockerFixture) -> None:
        """The no-op backend installs nothing globally."""
        mock_set_provider = mocker.patch(
            "src.core.observability.trace.set_tracer_provider"
        )

        tracing = setup_tracing(_settings(enabled=False))

        assert tracing.backend.name == "noop"
        mock_set_provider.assert_not_called()

    def test_get_tracing_before_setup(self) -> None:
        """Without setup a no-op handle is returned."""
        tracing = get_tracing()

        assert isinstance(tracing.backend, NoopTracingBackend)
        with tracing.span("work"):
            assert CorrelationStore.get("traceId") is None

    def test_shutdown(
        self, mocker: MockerFixture, tracing_settings: Settings
    ) -> None:
        """Shutdown flushes the backend and forgets the handle."""
        mocker.patch("src.core.observability.trace.set_tracer_provider")
        mocker.patch("src.core.observability.propagate.set_global_textmap")
        tracing = setup_tracing(tracing_settings)
        mock_shutdown = mocker.patch.object(tracing.backend, "shutdown")

        shutdown_tracing()
        shutdown_tracing()

        mock_shutdown.assert_called_once_with()
        assert get_tracing() is not tracing

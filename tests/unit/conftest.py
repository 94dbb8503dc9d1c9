"""Shared fixtures for unit tests."""

import os
import threading
from collections.abc import Generator
from typing import Any

import pytest
from opentelemetry import context as otel_context
from opentelemetry.sdk.trace import TracerProvider
from opentelemetry.sdk.trace.export import SimpleSpanProcessor
from opentelemetry.sdk.trace.export.in_memory_span_exporter import (
    InMemorySpanExporter,
)
from opentelemetry.sdk.trace.sampling import ALWAYS_ON

from src.core import observability
from src.core.config import (
    BaggageConfig,
    SamplingConfig,
    Settings,
    TracingConfig,
    get_settings,
)
from src.core.context import CorrelationStore
from src.tracing import bridge as bridge_module
from src.tracing.backend import NoopTracingBackend, OpenTelemetryBackend
from src.tracing.bridge import ContextCorrelationBridge
from src.tracing.propagation import build_propagator
from src.tracing.tracer import Tracing

COUNTRY_CODE = "country-code"
BUSINESS_PROCESS = "bp"


@pytest.fixture(autouse=True)
def clean_lru_cache() -> Generator[None]:
    """Clear the settings cache before and after each test."""
    get_settings.cache_clear()
    yield
    get_settings.cache_clear()


@pytest.fixture(autouse=True)
def clean_env(
    monkeypatch: pytest.MonkeyPatch,
) -> Generator[pytest.MonkeyPatch]:
    """Backup and restore environment variables to prevent test interference.

    Args:
        monkeypatch: Pytest monkeypatch fixture.

    Returns:
        pytest.MonkeyPatch: The monkeypatch instance for env manipulation.
    """
    original_env = os.environ.copy()

    env_prefixes = [
        "APP_",
        "API_",
        "ENVIRONMENT",
        "DEBUG",
        "LOG_CONFIG__",
        "TRACING_CONFIG__",
        "K_SERVICE",
        "GOOGLE_CLOUD_PROJECT",
        "PORT",
    ]
    for key in list(os.environ.keys()):
        if any(key.startswith(prefix) for prefix in env_prefixes):
            monkeypatch.delenv(key, raising=False)

    yield monkeypatch

    os.environ.clear()
    os.environ.update(original_env)


@pytest.fixture(autouse=True)
def clean_context() -> Generator[None]:
    """Start and finish every test with an empty correlation context."""
    CorrelationStore.clear()
    bridge_module._scope_stack.set(())
    bridge_module._baggage_stack.set(())
    token = otel_context.attach(otel_context.Context())
    yield
    otel_context.detach(token)
    CorrelationStore.clear()
    bridge_module._scope_stack.set(())
    bridge_module._baggage_stack.set(())
    observability._state.tracing = None


@pytest.fixture
def baggage_config() -> BaggageConfig:
    """Baggage configuration with remote, local and correlation fields."""
    return BaggageConfig(
        remote_fields=["x-vcap-request-id", COUNTRY_CODE],
        local_fields=[BUSINESS_PROCESS],
        correlation_fields=[COUNTRY_CODE, BUSINESS_PROCESS],
    )


@pytest.fixture
def tracing_settings(baggage_config: BaggageConfig) -> Settings:
    """Settings sampling every trace without a configured exporter."""
    return Settings(
        tracing_config=TracingConfig(
            exporter_type="none",
            sampling=SamplingConfig(probability=1.0),
            baggage=baggage_config,
        )
    )


@pytest.fixture
def span_exporter() -> InMemorySpanExporter:
    """In-memory exporter collecting finished spans."""
    return InMemorySpanExporter()


@pytest.fixture
def tracer_provider(span_exporter: InMemorySpanExporter) -> TracerProvider:
    """Tracer provider exporting synchronously to memory."""
    provider = TracerProvider(sampler=ALWAYS_ON)
    provider.add_span_processor(SimpleSpanProcessor(span_exporter))
    return provider


@pytest.fixture
def otel_tracing(
    tracing_settings: Settings, tracer_provider: TracerProvider
) -> Tracing:
    """Tracing facade over the OpenTelemetry backend."""
    config = tracing_settings.tracing_config
    backend = OpenTelemetryBackend(tracer_provider, build_propagator(config))
    bridge = ContextCorrelationBridge(config.baggage, backend.tag_sink)
    return Tracing(backend, bridge, config.baggage)


@pytest.fixture
def noop_tracing(baggage_config: BaggageConfig) -> Tracing:
    """Tracing facade over the no-op backend."""
    backend = NoopTracingBackend()
    bridge = ContextCorrelationBridge(baggage_config, backend.tag_sink)
    return Tracing(backend, bridge, baggage_config)


@pytest.fixture
def thread_sync() -> dict[str, Any]:
    """Provide thread synchronization utilities for thread safety tests.

    Returns:
        dict[str, Any]: Dictionary with threading utilities.
    """

    def create_barrier(n: int) -> threading.Barrier:
        """Create a barrier for n threads."""
        return threading.Barrier(n)

    def create_results() -> list[Any]:
        """Create a new results list."""
        return []

    return {
        "barrier": create_barrier,
        "event": threading.Event,
        "lock": threading.Lock,
        "create_results": create_results,
    }

"""Shared fixtures for integration tests.

Applications are built with create_app() against explicit settings. Global
OpenTelemetry state and Loguru sinks are left untouched so tests can build
several applications in one session.
"""

from collections.abc import AsyncGenerator, Callable, Generator
from typing import TypeAlias

import pytest
from fastapi import FastAPI
from httpx import ASGITransport, AsyncClient
from loguru import logger
from pytest_mock import MockerFixture

from src.api.main import create_app
from src.core.config import (
    BaggageConfig,
    SamplingConfig,
    Settings,
    TracingConfig,
    get_settings,
)
from src.core.context import CorrelationStore
from src.core.observability import shutdown_tracing

AppFactory: TypeAlias = Callable[..., FastAPI]


@pytest.fixture(autouse=True)
def clean_context() -> Generator[None]:
    """Start and finish every test with an empty correlation store."""
    get_settings.cache_clear()
    CorrelationStore.clear()
    yield
    shutdown_tracing()
    CorrelationStore.clear()
    get_settings.cache_clear()


@pytest.fixture
def app_factory(mocker: MockerFixture) -> AppFactory:
    """Build applications exposing their correlation store at /correlation."""
    mocker.patch("src.api.main.setup_logging")
    mocker.patch("src.core.observability.trace.set_tracer_provider")
    mocker.patch("src.core.observability.propagate.set_global_textmap")

    def factory(**tracing: object) -> FastAPI:
        settings = Settings(
            tracing_config=TracingConfig(
                exporter_type="none",
                sampling=SamplingConfig(probability=1.0),
                baggage=BaggageConfig(
                    remote_fields=["country-code"],
                    local_fields=["bp"],
                    correlation_fields=["country-code", "bp"],
                ),
                **tracing,  # type: ignore[arg-type]
            )
        )
        application = create_app(settings)

        @application.get("/correlation")
        async def correlation() -> dict[str, str]:
            logger.info("Reading correlation context")
            return dict(CorrelationStore.entries())

        return application

    return factory


@pytest.fixture
async def client(app_factory: AppFactory) -> AsyncGenerator[AsyncClient]:
    """HTTP client for an application with tracing enabled."""
    transport = ASGITransport(app=app_factory())
    async with AsyncClient(transport=transport, base_url="http://test") as ac:
        yield ac


@pytest.fixture
async def client_noop(app_factory: AppFactory) -> AsyncGenerator[AsyncClient]:
    """HTTP client for an application with tracing disabled."""
    transport = ASGITransport(app=app_factory(enabled=False))
    async with AsyncClient(transport=transport, base_url="http://test") as ac:
        yield ac

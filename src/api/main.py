"""FastAPI application initialization and configuration module.

It handles:
- Logging and tracing setup before the application is built
- Application lifecycle management (tracing shutdown flushes spans)
- Middleware registration
- Health check endpoint
"""

from collections.abc import AsyncGenerator
from contextlib import asynccontextmanager

from fastapi import FastAPI
from loguru import logger

from src.api.middleware.tracing_context import TracingContextMiddleware
from src.core.config import Settings, get_settings
from src.core.logging import setup_logging
from src.core.observability import setup_tracing, shutdown_tracing


@asynccontextmanager
async def lifespan(app_instance: FastAPI) -> AsyncGenerator[None]:
    """Manage application lifespan events.

    Args:
        app_instance: The FastAPI application instance.

    Yields:
        None: Nothing is yielded, this is just a lifespan context.
    """
    logger.info(
        "Application startup complete - {} v{}",
        app_instance.title,
        app_instance.version,
    )

    yield

    logger.info("Application shutdown initiated")
    shutdown_tracing()
    logger.info("Application shutdown complete")


def create_app(settings: Settings | None = None) -> FastAPI:
    """Create and configure the FastAPI application.

    Args:
        settings: Optional settings instance. If not provided, will use get_settings().

    Returns:
        FastAPI: Configured FastAPI application instance.
    """
    if settings is None:
        settings = get_settings()

    # Setup logging first so tracing setup is logged with the right formatter
    setup_logging(settings)
    tracing = setup_tracing(settings)

    application = FastAPI(
        title=settings.app_name,
        version=settings.app_version,
        debug=settings.debug,
        lifespan=lifespan,
    )

    application.add_middleware(
        TracingContextMiddleware,
        tracing=tracing,
        excluded_paths=settings.log_config.excluded_paths,
    )

    @application.get("/health")
    async def health() -> dict[str, str]:
        """Health check endpoint for monitoring and container orchestration.

        Returns:
            dict[str, str]: Service status and the active tracing backend.
        """
        return {"status": "healthy", "tracing_backend": tracing.backend.name}

    return application

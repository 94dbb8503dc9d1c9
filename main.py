"""Main entry point for running the Tracebridge FastAPI application."""

import os

import uvicorn
from loguru import logger

from src.api.main import create_app
from src.core.config import get_settings
from src.core.logging import setup_logging


def main() -> None:
    """Main entry point for the Tracebridge application."""
    settings = get_settings()

    setup_logging(settings)

    port = int(os.environ.get("PORT", settings.api_port))

    # Route uvicorn's loggers through Loguru
    log_config = {
        "version": 1,
        "disable_existing_loggers": False,
        "handlers": {
            "default": {
                "class": "src.core.logging.InterceptHandler",
            },
        },
        "loggers": {
            "uvicorn": {"handlers": ["default"], "level": "INFO", "propagate": False},
            "uvicorn.error": {
                "handlers": ["default"],
                "level": "INFO",
                "propagate": False,
            },
            "uvicorn.access": {
                "handlers": ["default"],
                "level": "INFO",
                "propagate": False,
            },
        },
    }

    logger.info(f"Starting Uvicorn on http://{settings.api_host}:{port}")
    uvicorn.run(
        create_app(settings),
        host=settings.api_host,
        port=port,
        log_config=log_config,
    )


if __name__ == "__main__":
    main()

"""Structured logging with trace correlation.

This module configures Loguru so that every record carries the entries of
the current :class:`~src.core.context.CorrelationStore` (trace id, span id
and correlation baggage fields). The store is read by a patcher at the moment
a record is emitted, in the thread or task that emitted it.

Formatter types:
- **console**: Human-readable with inline context (development)
- **json**: Generic structured format (self-hosted)
- **gcp**: Google Cloud Logging format with trace integration
"""

from __future__ import annotations

import json
import logging
import os
import sys
from typing import TYPE_CHECKING, Any, Final, Protocol, cast

from loguru import logger

from src.core.constants import REDACTED, SPAN_ID_KEY, TRACE_ID_KEY
from src.core.context import CorrelationStore

if TYPE_CHECKING:
    from collections.abc import Callable

    from loguru import Record


class _LoggingState:
    """Simple state holder to track if logging has been configured."""

    def __init__(self) -> None:
        self.configured = False
        self.sensitive_fields: frozenset[str] = frozenset()


_state = _LoggingState()


class SettingsProtocol(Protocol):
    """Protocol for settings objects that setup_logging can accept."""

    @property
    def app_name(self) -> str:
        """Application name."""
        ...

    @property
    def app_version(self) -> str:
        """Application version."""
        ...

    @property
    def debug(self) -> bool:
        """Debug mode flag."""
        ...

    @property
    def log_config(self) -> LogConfigProtocol:
        """Log configuration."""
        ...


class LogConfigProtocol(Protocol):
    """Protocol for log configuration objects."""

    @property
    def log_level(self) -> str:
        """Logging level."""
        ...

    @property
    def log_formatter_type(self) -> str | None:
        """Log formatter type."""
        ...

    @property
    def sensitive_fields(self) -> list[str]:
        """Field names to redact."""
        ...


# Constants
DEFAULT_LOG_FORMAT: Final[str] = (
    "<green>{time:YYYY-MM-DD HH:mm:ss.SSS}</green> | "
    "<level>{level: <8}</level> | "
    "<cyan>{name}</cyan>:<cyan>{function}</cyan>:<cyan>{line}</cyan> | "
    "{message}"
)
TRACE_ID_DISPLAY_LENGTH: Final[int] = 8
MAX_FIELD_VALUE_LENGTH: Final[int] = 100
PRIORITY_FIELDS: Final[tuple[str, ...]] = (TRACE_ID_KEY, SPAN_ID_KEY)


def correlation_patcher(record: Record) -> None:
    """Copy the correlation store into the record's extra fields.

    Values bound explicitly on the logger win over store entries.

    Args:
        record: Loguru record being emitted.
    """
    for key, value in CorrelationStore.entries():
        record["extra"].setdefault(key, value)


def _escape(value: object) -> str:
    return str(value).replace("{", "{{").replace("}", "}}")


def _format_priority_field(field: str, value: object) -> str:
    """Shorten trace and span ids for console readability."""
    text = str(value)
    if len(text) > TRACE_ID_DISPLAY_LENGTH:
        text = text[:TRACE_ID_DISPLAY_LENGTH]
    return f"{field}={_escape(text)}"


def _format_extra_field(key: str, value: object) -> str | None:
    """Format an extra field for display.

    Args:
        key: The field name.
        value: The field value.

    Returns:
        str | None: Formatted field or None if formatting fails.
    """
    try:
        str_value = str(value)

        if key in _state.sensitive_fields:
            str_value = REDACTED
        elif len(str_value) > MAX_FIELD_VALUE_LENGTH:
            str_value = str_value[: MAX_FIELD_VALUE_LENGTH - 3] + "..."
    except (AttributeError, TypeError, ValueError) as e:
        logger.trace(f"Failed to format extra field {key}: {e}")
        return None
    else:
        return f"{_escape(key)}={_escape(str_value)}"


def _format_context_fields(extra: dict[str, Any]) -> list[str]:
    """Format all context fields, trace ids first."""
    context_parts = [
        f"<yellow>{_format_priority_field(field, extra[field])}</yellow>"
        for field in PRIORITY_FIELDS
        if extra.get(field)
    ]

    for key, value in extra.items():
        if key in PRIORITY_FIELDS or key.startswith("_") or value is None:
            continue
        formatted = _format_extra_field(key, value)
        if formatted:
            context_parts.append(f"<dim>{formatted}</dim>")

    return context_parts


def format_console_with_context(record: Record) -> str:
    """Format log record for console with all context fields visible.

    Args:
        record: Loguru record to format.

    Returns:
        str: Loguru format template for the record.
    """
    try:
        time_str = record["time"].strftime("%Y-%m-%d %H:%M:%S.%f")[:-3]
        location = f"{record['name']}:{record['function']}:{record['line']}"
        parts = [
            f"<green>{time_str}</green>",
            f"<level>{record['level'].name: <8}</level>",
            f"<cyan>{_escape(location)}</cyan>",
        ]

        context_parts = _format_context_fields(record["extra"])
        if context_parts:
            parts.append(" ".join(f"[{part}]" for part in context_parts))

        parts.append(_escape(record["message"]))

        if record["exception"]:
            parts.append("\n{exception}")

        return " | ".join(parts) + "\n"
    except (AttributeError, TypeError, ValueError, KeyError) as e:
        logger.trace(f"Failed to format log record: {e}")
        return DEFAULT_LOG_FORMAT + "\n"


class InterceptHandler(logging.Handler):
    """Intercept standard logging and redirect to Loguru.

    This handler captures logs from libraries using standard logging
    (uvicorn, OpenTelemetry exporters) and forwards them to Loguru so they
    get the same formatting and correlation fields.
    """

    def emit(self, record: logging.LogRecord) -> None:
        """Forward log record to Loguru.

        Args:
            record: Standard library LogRecord to forward.
        """
        try:
            level: str | int = logger.level(record.levelname).name
        except ValueError:
            level = record.levelno

        # Find caller from where originated the logged message
        frame, depth = logging.currentframe(), 2
        while frame and frame.f_code.co_filename == logging.__file__:
            frame = frame.f_back
            depth += 1

        logger.opt(depth=depth, exception=record.exc_info).log(
            level, record.getMessage()
        )


def _redact(extra: dict[str, Any]) -> dict[str, Any]:
    return {
        k: (REDACTED if k in _state.sensitive_fields else v)
        for k, v in extra.items()
        if not k.startswith("_")
    }


def serialize_for_json(record: Record) -> str:
    """Format log record as generic JSON.

    Args:
        record: Loguru record to format.

    Returns:
        str: JSON-formatted log entry with newline.
    """
    log_entry: dict[str, Any] = {
        "timestamp": record["time"].isoformat(),
        "level": record["level"].name,
        "message": record["message"],
        "logger": record["name"],
        "function": record["function"],
        "module": record["module"],
        "line": record["line"],
    }

    # Extra fields include traceId, spanId and correlation baggage
    if extra := _redact(record["extra"]):
        log_entry.update(extra)

    if exc := record["exception"]:
        log_entry["exception"] = {
            "type": exc.type.__name__ if exc.type else None,
            "value": str(exc.value) if exc.value else None,
        }

    return json.dumps(log_entry, default=str) + "\n"


class GcpSerializer:
    """Format log records for GCP Cloud Logging.

    Follows GCP structured logging format:
    https://cloud.google.com/logging/docs/structured-logging

    Args:
        service: Service name reported in ``serviceContext``.
        version: Service version reported in ``serviceContext``.
        project_id: GCP project owning the trace. Cloud Logging only links
            entries to traces named ``projects/<project>/traces/<trace id>``,
            so without a project the trace id stays in ``jsonPayload``.
    """

    severity_mapping: Final[dict[str, str]] = {
        "TRACE": "DEBUG",
        "DEBUG": "DEBUG",
        "INFO": "INFO",
        "SUCCESS": "INFO",
        "WARNING": "WARNING",
        "ERROR": "ERROR",
        "CRITICAL": "CRITICAL",
    }

    def __init__(
        self, service: str, version: str, project_id: str | None = None
    ) -> None:
        self.service = service
        self.version = version
        self.project_id = project_id

    def __call__(self, record: Record) -> str:
        """Serialize ``record`` as a GCP log entry with newline."""
        log_entry: dict[str, Any] = {
            "severity": self.severity_mapping.get(record["level"].name, "INFO"),
            "message": record["message"],
            "timestamp": record["time"].isoformat(),
            "serviceContext": {"service": self.service, "version": self.version},
            "logging.googleapis.com/labels": {
                "function": record["function"],
                "module": record["module"],
                "line": str(record["line"]),
            },
        }

        extra = _redact(record["extra"])
        if self.project_id and (trace_id := extra.pop(TRACE_ID_KEY, None)):
            log_entry["logging.googleapis.com/trace"] = (
                f"projects/{self.project_id}/traces/{trace_id}"
            )
        if span_id := extra.pop(SPAN_ID_KEY, None):
            log_entry["logging.googleapis.com/spanId"] = span_id
        if extra:
            log_entry["jsonPayload"] = extra

        if record["exception"] or record["level"].name in ("ERROR", "CRITICAL"):
            log_entry["logging.googleapis.com/sourceLocation"] = {
                "file": record["file"].path,
                "line": str(record["line"]),
                "function": record["function"],
            }

        return json.dumps(log_entry, default=str) + "\n"


def get_formatter(
    formatter_type: str, settings: SettingsProtocol
) -> Callable[[Record], str] | None:
    """Return the structured serializer for ``formatter_type``.

    Returns:
        Callable[[Record], str] | None: None for the console formatter.
    """
    if formatter_type == "json":
        return serialize_for_json
    if formatter_type == "gcp":
        return GcpSerializer(
            settings.app_name,
            settings.app_version,
            project_id=os.getenv("GOOGLE_CLOUD_PROJECT"),
        )
    return None


def setup_logging(settings: SettingsProtocol) -> None:
    """Configure Loguru with correlation fields and pluggable formatters.

    Args:
        settings: Application settings containing log configuration.

    Note:
        This function ensures it's only called once using module state.
    """
    if _state.configured:
        return

    logger.remove()
    logger.configure(patcher=correlation_patcher)
    _state.sensitive_fields = frozenset(settings.log_config.sensitive_fields)

    # Settings always fills this in, other SettingsProtocol objects may not
    formatter_type = settings.log_config.log_formatter_type or "console"
    formatter = get_formatter(formatter_type, settings)

    if formatter is None:
        logger.add(
            sys.stdout,
            format=cast("Any", format_console_with_context),
            level=settings.log_config.log_level,
            enqueue=True,
            colorize=True,
            diagnose=settings.debug,
            backtrace=settings.debug,
        )
    else:

        def structured_sink(message: Any) -> None:
            """Write the serialized record to stdout."""
            sys.stdout.write(formatter(message.record))
            sys.stdout.flush()

        logger.add(
            structured_sink,
            level=settings.log_config.log_level,
            enqueue=True,
            diagnose=False,
            backtrace=False,
        )

    logging.basicConfig(handlers=[InterceptHandler()], level=0, force=True)

    for logger_name in ("uvicorn", "uvicorn.error", "uvicorn.access"):
        uvicorn_logger = logging.getLogger(logger_name)
        uvicorn_logger.handlers = [InterceptHandler()]
        uvicorn_logger.propagate = False

    logger.info(
        "Logging configured with {} formatter",
        formatter_type,
        formatter_type=formatter_type,
        log_level=settings.log_config.log_level,
    )

    _state.configured = True


def reset_logging() -> None:
    """Forget previous configuration so :func:`setup_logging` runs again."""
    _state.configured = False

"""Centralized configuration management with environment-aware defaults.

This module implements the configuration system using Pydantic Settings,
providing type-safe configuration with validation and environment variable
support for the logging and tracing layers.

Features:
- **Type safety**: All configuration values are validated and typed
- **Environment variables**: Supports .env files and environment overrides
- **Nested configuration**: Uses __ delimiter for complex config structures
- **Auto-detection**: Detects cloud environments for log formatting
- **Validation**: Invalid values fail at startup with a ConfigurationError
- **Caching**: Configuration is cached for performance

Configuration sources (in order of precedence):
1. Environment variables
2. .env file in project root
3. Default values in model definitions
4. Environment-based defaults (production vs development)

Example:
    TRACING_CONFIG__SAMPLING__PROBABILITY=0.5
    TRACING_CONFIG__BAGGAGE__CORRELATION_FIELDS=country-code,bp
    TRACING_CONFIG__PROPAGATION__TYPE=b3
"""

import json
import os
from enum import StrEnum
from functools import lru_cache
from typing import Annotated, Literal

from pydantic import BaseModel, Field, field_validator, model_validator
from pydantic import ValidationError as PydanticValidationError
from pydantic_settings import BaseSettings, NoDecode, SettingsConfigDict

from src.core.exceptions import ConfigurationError

# NoDecode lets comma-separated env values reach the validator undecoded
FieldList = Annotated[list[str], NoDecode]


class PropagationType(StrEnum):
    """Tracing context propagation formats."""

    AWS = "aws"
    B3 = "b3"
    W3C = "w3c"
    CUSTOM = "custom"
    """Requires a propagator supplied by the application at startup."""


class LogConfig(BaseModel):
    """Simplified logging configuration."""

    log_level: Literal["DEBUG", "INFO", "WARNING", "ERROR", "CRITICAL"] = Field(
        default="INFO",
        description="Logging level",
    )
    log_formatter_type: Literal["console", "json", "gcp"] | None = Field(
        default=None,
        description="Log output formatter. Auto-detected if not specified.",
    )
    excluded_paths: list[str] = Field(
        default_factory=lambda: ["/health"],
        description="Paths that do not open a server span",
    )
    sensitive_fields: list[str] = Field(
        default_factory=lambda: [
            "password",
            "token",
            "secret",
            "api_key",
            "authorization",
        ],
        description="Field names to redact",
    )


class SamplingConfig(BaseModel):
    """Sampling configuration."""

    probability: float = Field(
        default=0.1,
        ge=0.0,
        le=1.0,
        description="Probability in the range from 0.0 to 1.0 that a trace is sampled",
    )


class BaggageConfig(BaseModel):
    """Baggage classification and log correlation configuration."""

    correlation_enabled: bool = Field(
        default=True,
        description="Whether to correlate baggage with the logging context",
    )
    correlation_fields: FieldList = Field(
        default_factory=list,
        description="Baggage fields mirrored into the logging context",
    )
    local_fields: FieldList = Field(
        default_factory=list,
        description="Fields accessible in-process but never propagated over the wire",
    )
    remote_fields: FieldList = Field(
        default_factory=list,
        description=(
            "Fields propagated verbatim as their own header, prefix included "
            "(e.g. x-vcap-request-id)"
        ),
    )
    tag_fields: FieldList = Field(
        default_factory=list,
        description="Fields that automatically become span tags",
    )

    @field_validator(
        "correlation_fields",
        "local_fields",
        "remote_fields",
        "tag_fields",
        mode="before",
    )
    @classmethod
    def split_field_names(cls, v: object) -> object:
        """Accept JSON lists or comma-separated strings from the environment."""
        if not isinstance(v, str):
            return v
        stripped = v.strip()
        if stripped.startswith("["):
            return json.loads(stripped)
        return [name.strip() for name in stripped.split(",") if name.strip()]

    @model_validator(mode="after")
    def check_field_scopes(self) -> "BaggageConfig":
        """A field cannot be both local and remote."""
        overlap = set(self.local_fields) & set(self.remote_fields)
        if overlap:
            msg = f"Baggage fields cannot be both local and remote: {sorted(overlap)}"
            raise ValueError(msg)
        return self


class PropagationConfig(BaseModel):
    """Propagation configuration."""

    type: PropagationType = Field(
        default=PropagationType.W3C,
        description="Tracing context propagation format",
    )

    @field_validator("type", mode="before")
    @classmethod
    def normalize_type(cls, v: object) -> object:
        """Accept the propagation type in any case."""
        if isinstance(v, str):
            return v.strip().lower()
        return v


class TracingConfig(BaseModel):
    """Tracing backend, export, sampling, baggage and propagation settings."""

    enabled: bool = Field(
        default=True,
        description="Enable tracing. When disabled the no-op backend is used.",
    )
    backend: Literal["opentelemetry", "noop"] = Field(
        default="opentelemetry",
        description="Tracing backend implementation",
    )
    exporter_type: Literal["console", "zipkin", "otlp", "none"] = Field(
        default="console",
        description="Span exporter. Defaults to console for development.",
    )
    exporter_endpoint: str | None = Field(
        default=None,
        description="Exporter endpoint (Zipkin or OTLP)",
    )
    export_timeout_s: float = Field(
        default=10.0,
        gt=0,
        description="Span export timeout in seconds",
    )
    sampling: SamplingConfig = Field(default_factory=SamplingConfig)
    baggage: BaggageConfig = Field(default_factory=BaggageConfig)
    propagation: PropagationConfig = Field(default_factory=PropagationConfig)

    @field_validator("exporter_endpoint", mode="before")
    @classmethod
    def empty_str_to_none(cls, v: str | None) -> str | None:
        """Convert empty strings to None for nullable fields."""
        if v == "":
            return None
        return v

    @property
    def effective_backend(self) -> Literal["opentelemetry", "noop"]:
        """Backend actually used, taking the enabled flag into account."""
        return self.backend if self.enabled else "noop"


class Settings(BaseSettings):
    """Main settings class for the application."""

    model_config = SettingsConfigDict(
        env_file=".env",
        env_file_encoding="utf-8",
        case_sensitive=False,
        validate_default=True,
        env_nested_delimiter="__",
    )

    # Application settings
    app_name: str = Field(default="Tracebridge", description="Application name")
    app_version: str = Field(default="0.1.0", description="Application version")
    environment: Literal["development", "staging", "production"] = Field(
        default="development",
        description="Environment the application is running in",
    )
    debug: bool = Field(default=True, description="Debug mode flag")

    # API settings
    api_host: str = Field(default="127.0.0.1", description="API host")
    api_port: int = Field(default=8000, description="API port")

    # Logging configuration
    log_config: LogConfig = Field(
        default_factory=LogConfig, description="Logging configuration"
    )

    # Tracing configuration
    tracing_config: TracingConfig = Field(
        default_factory=TracingConfig, description="Tracing configuration"
    )

    def model_post_init(self, __context: object) -> None:
        """Post initialization to set environment-based defaults."""
        super().model_post_init(__context)

        if self.log_config.log_formatter_type is None:
            self.log_config.log_formatter_type = self._detect_formatter()

        if (
            self.environment == "production"
            and self.tracing_config.exporter_type == "console"
        ):
            self.tracing_config.exporter_type = "otlp"

    def _detect_formatter(self) -> Literal["console", "json", "gcp"]:
        """Auto-detect log formatter based on environment."""
        # Check for cloud environments first (more authoritative)
        if os.getenv("K_SERVICE"):  # Cloud Run
            return "gcp"

        if self.environment == "development":
            return "console"
        return "json"


@lru_cache
def get_settings() -> Settings:
    """Get cached settings instance.

    Raises:
        ConfigurationError: If any configuration value is invalid.
    """
    try:
        return Settings()
    except PydanticValidationError as e:
        raise ConfigurationError(
            "Invalid configuration",
            context={
                "errors": [
                    {"loc": ".".join(str(p) for p in err["loc"]), "msg": err["msg"]}
                    for err in e.errors()
                ]
            },
            cause=e,
        ) from e

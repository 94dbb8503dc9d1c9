"""Structured exception hierarchy for consistent error handling.

Key components:
- **ErrorCode enum**: Standardized error identifiers for programmatic handling
- **Severity enum**: Error classification for monitoring and alerting
- **TracebridgeError**: Base exception with rich context and fingerprinting
- **ConfigurationError**: Startup-time configuration failures

Configuration problems surface once, at startup, to the operator. Listener
paths that run on every span scope change never raise.
"""

import hashlib
import traceback
from enum import Enum
from typing import Any


class ErrorCode(Enum):
    """Standardized error codes for the Tracebridge library."""

    # System errors
    INTERNAL_ERROR = "INTERNAL_ERROR"
    """An unexpected internal error occurred in the system."""

    # Configuration errors
    CONFIGURATION_ERROR = "CONFIGURATION_ERROR"
    """A configuration value is missing, malformed or out of range."""


class Severity(Enum):
    """Severity levels for errors.

    These severity levels help categorize the impact and urgency of errors,
    enabling appropriate handling, monitoring, and alerting strategies.
    """

    LOW = "LOW"
    """Low severity errors that don't significantly impact functionality."""

    MEDIUM = "MEDIUM"
    """Medium severity errors that may affect some features but not critical ops."""

    HIGH = "HIGH"
    """High severity errors impacting critical functionality or data integrity."""

    CRITICAL = "CRITICAL"
    """Critical errors requiring immediate attention, may cause system failures."""


class TracebridgeError(Exception):
    """Base exception class for all Tracebridge exceptions.

    Args:
        error_code: Unique identifier for the error type (string or ErrorCode enum)
        message: Human-readable error message
        severity: Severity level of the error (defaults to MEDIUM)
        context: Additional context information about the error
        cause: The original exception that caused this error
    """

    def __init__(
        self,
        error_code: str | ErrorCode,
        message: str,
        severity: Severity = Severity.MEDIUM,
        context: dict[str, Any] | None = None,
        cause: Exception | None = None,
    ) -> None:
        self.error_code = (
            error_code.value if isinstance(error_code, ErrorCode) else error_code
        )
        self.message = message
        self.severity = severity
        self.context = context or {}
        self.cause = cause

        # Capture stack trace at creation time
        self.stack_trace = traceback.format_stack()[:-1]  # Exclude this frame

        self.fingerprint = self._generate_fingerprint()

        super().__init__(message)
        if cause:
            self.__cause__ = cause

    def _generate_fingerprint(self) -> str:
        """Generate a fingerprint for error grouping.

        Returns:
            str: A hash of the error type and the frames that raised it
        """
        max_frames = 5
        relevant_frames = self.stack_trace[-max_frames:]

        fingerprint_data = f"{self.__class__.__name__}:{self.error_code}"

        for frame in relevant_frames:
            if "site-packages" not in frame and "src/" in frame:
                lines = frame.strip().split("\n")
                if lines:
                    fingerprint_data += f":{lines[0]}"

        return hashlib.sha256(fingerprint_data.encode()).hexdigest()[:16]

    @property
    def is_expected(self) -> bool:
        """Whether this error is part of normal operation (LOW or MEDIUM)."""
        return self.severity in (Severity.LOW, Severity.MEDIUM)

    @property
    def should_alert(self) -> bool:
        """Whether this error should trigger alerts (HIGH or CRITICAL)."""
        return self.severity in (Severity.HIGH, Severity.CRITICAL)

    def __str__(self) -> str:
        """Return a string representation of the exception."""
        return f"[{self.error_code}] {self.message}"

    def __repr__(self) -> str:
        """Return a detailed representation of the exception."""
        class_name = self.__class__.__name__
        context_str = f", context={self.context}" if self.context else ""
        return (
            f"{class_name}(error_code='{self.error_code}', "
            f"message='{self.message}', severity={self.severity.value}{context_str})"
        )


class ConfigurationError(TracebridgeError):
    """Exception raised when configuration is invalid or incomplete.

    Raised at startup, e.g. for a sampling probability outside [0.0, 1.0]
    or a custom propagation type without a propagator.

    Args:
        message: Description of the configuration problem
        error_code: Error code (defaults to CONFIGURATION_ERROR)
        context: Additional context information about the error
        cause: The original exception that caused this error
    """

    def __init__(
        self,
        message: str,
        error_code: str | ErrorCode = ErrorCode.CONFIGURATION_ERROR,
        context: dict[str, Any] | None = None,
        cause: Exception | None = None,
    ) -> None:
        super().__init__(error_code, message, Severity.HIGH, context, cause)

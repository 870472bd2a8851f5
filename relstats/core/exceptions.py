"""
Custom exceptions for the extraction engine.

This module defines a hierarchy of custom exceptions for error handling:
- AppException: Base exception for all engine errors
- ExtractionCancelledError: Caller-initiated cancellation (fatal, "aborted")
- GenerationTransportError: Generation call failed after all transport retries
- ConfigurationError: Invalid settings rejected at the boundary

Coverage and normalization failures are not exceptions; they are absorbed
by the retry controller and the normalizers and only show up in diagnostics.
"""

import logging
from typing import Any


logger = logging.getLogger(__name__)


class AppException(Exception):
    """Base exception for engine errors.

    Provides consistent error structure with error_code, message, and details.
    """

    def __init__(
        self,
        message: str,
        error_code: str = "internal_error",
        details: Any = None,
    ):
        self.message = message
        self.error_code = error_code
        self.details = details
        super().__init__(message)

    def to_dict(self) -> dict:
        """Convert exception to a plain dictionary."""
        result = {
            "error": self.error_code,
            "message": self.message,
        }
        if self.details is not None:
            result["details"] = self.details
        return result


class ExtractionCancelledError(AppException):
    """Raised when the caller's cancellation predicate fires.

    Propagates through every retry loop and worker pool; the run
    returns no partial statistics.
    """

    def __init__(
        self,
        message: str = "Extraction cancelled",
        stage: str | None = None,
    ):
        details = {"stage": stage} if stage else None
        super().__init__(
            message=message,
            error_code="aborted",
            details=details,
        )
        self.stage = stage


class GenerationTransportError(AppException):
    """Raised when a generation call fails on every transport attempt."""

    def __init__(
        self,
        message: str = "Generation request failed",
        original_error: Exception | None = None,
        attempts: int = 0,
        stat_list: list[str] | None = None,
    ):
        details: dict[str, Any] = {"attempts": attempts}
        if stat_list:
            details["stats"] = list(stat_list)
        if original_error is not None:
            details["last_error"] = str(original_error)
        super().__init__(
            message=message,
            error_code="transport_error",
            details=details,
        )
        self.original_error = original_error
        self.attempts = attempts
        self.stat_list = list(stat_list or [])


class ConfigurationError(AppException):
    """Raised when extraction settings fail validation."""

    def __init__(
        self,
        message: str = "Invalid configuration",
        errors: list | None = None,
    ):
        super().__init__(
            message=message,
            error_code="configuration_error",
            details={"errors": errors} if errors else None,
        )
        self.errors = errors or []


def log_exception(exc: Exception, context: str | None = None) -> None:
    """Log an exception with context information.

    Args:
        exc: The exception to log.
        context: Optional context string for the log message.
    """
    if isinstance(exc, AppException):
        logger.error(
            f"{context or 'Error'}: [{exc.error_code}] {exc.message}",
            extra={"error_code": exc.error_code, "details": exc.details},
        )
    else:
        logger.exception(f"{context or 'Unexpected error'}: {exc}")

# ruff: noqa: D107
"""AI service exceptions.

Raised by the token producer. Before a response has started streaming they
surface as HTTP errors; once streaming they are logged and turned into an
inline error frame.
"""

from typing import Any

from .base import BaseAppException


class AIServiceError(BaseAppException):
    """Base exception for AI service errors."""

    status_code_default = 502

    def __init__(
        self,
        message: str = "AI service error occurred",
        error_code: str = "AI_SERVICE_ERROR",
        details: dict[str, Any] | None = None,
    ):
        super().__init__(
            message=message,
            status_code=self.status_code_default,
            error_code=error_code,
            details=details,
        )


class AIServiceUnavailableError(AIServiceError):
    """Exception raised when AI service is unavailable."""

    status_code_default = 503

    def __init__(
        self,
        message: str = "AI service is temporarily unavailable",
        details: dict[str, Any] | None = None,
    ):
        super().__init__(message, "AI_SERVICE_UNAVAILABLE", details)


class AIQuotaExceededError(AIServiceError):
    """Exception raised when AI service quota is exceeded."""

    status_code_default = 429

    def __init__(
        self,
        message: str = "AI service quota exceeded",
        details: dict[str, Any] | None = None,
    ):
        super().__init__(message, "AI_QUOTA_EXCEEDED", details)


class AITimeoutError(AIServiceError):
    """Exception raised when AI service request times out."""

    status_code_default = 504

    def __init__(
        self,
        message: str = "AI service request timed out",
        details: dict[str, Any] | None = None,
    ):
        super().__init__(message, "AI_TIMEOUT", details)


class AIConfigurationError(AIServiceError):
    """Exception raised when AI service is not properly configured."""

    status_code_default = 503

    def __init__(
        self,
        message: str = "AI service is not properly configured",
        details: dict[str, Any] | None = None,
    ):
        super().__init__(message, "AI_CONFIGURATION_ERROR", details)


class AIContentFilterError(AIServiceError):
    """Exception raised when content is blocked by AI safety filters."""

    status_code_default = 400

    def __init__(
        self,
        message: str = "Content was blocked by AI safety filters",
        details: dict[str, Any] | None = None,
    ):
        super().__init__(message, "AI_CONTENT_FILTERED", details)


class AIRateLimitError(AIServiceError):
    """Exception raised when AI service rate limit is hit."""

    status_code_default = 429

    def __init__(
        self,
        message: str = "AI service rate limit exceeded",
        retry_after: int | None = None,
        details: dict[str, Any] | None = None,
    ):
        if details is None:
            details = {}
        if retry_after:
            details["retry_after"] = retry_after
        super().__init__(message, "AI_RATE_LIMITED", details)


# Map common error patterns to exceptions
AI_ERROR_MAPPING = {
    "quota_exceeded": AIQuotaExceededError,
    "service_unavailable": AIServiceUnavailableError,
    "timeout": AITimeoutError,
    "configuration_error": AIConfigurationError,
    "content_filtered": AIContentFilterError,
    "rate_limited": AIRateLimitError,
}


def map_ai_error(
    error_type: str, message: str, details: dict[str, Any] | None = None
) -> AIServiceError:
    """Map error type to appropriate exception."""
    exception_class = AI_ERROR_MAPPING.get(error_type)
    if exception_class is None:
        return AIServiceError(message, details=details)
    return exception_class(message, details=details)


def classify_ai_error(error: Exception) -> str:
    """Guess an error type from an upstream exception message."""
    error_msg = str(error).lower()
    if "quota" in error_msg or "resource exhausted" in error_msg or "resource_exhausted" in error_msg:
        return "quota_exceeded"
    if ("rate" in error_msg and "limit" in error_msg) or "429" in error_msg:
        return "rate_limited"
    if "timeout" in error_msg or "deadline" in error_msg:
        return "timeout"
    if "safety" in error_msg or "blocked" in error_msg:
        return "content_filtered"
    if "unavailable" in error_msg or "503" in error_msg:
        return "service_unavailable"
    if "api key" in error_msg or "permission" in error_msg:
        return "configuration_error"
    return "unknown"

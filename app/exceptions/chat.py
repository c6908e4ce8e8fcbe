# ruff: noqa: D107
"""Chat API exceptions.

Every error the chat surface returns carries a ``category:surface`` code, for
example ``rate_limit:chat`` or ``bad_request:api``.
"""

from enum import Enum
from typing import Any

from .base import BaseAppException


class ErrorType(str, Enum):
    """Error category."""

    BAD_REQUEST = "bad_request"
    UNAUTHORIZED = "unauthorized"
    FORBIDDEN = "forbidden"
    NOT_FOUND = "not_found"
    RATE_LIMIT = "rate_limit"
    OFFLINE = "offline"


class Surface(str, Enum):
    """Subsystem an error originated from."""

    API = "api"
    CHAT = "chat"
    DATABASE = "database"
    STREAM = "stream"


STATUS_BY_ERROR_TYPE = {
    ErrorType.BAD_REQUEST: 400,
    ErrorType.UNAUTHORIZED: 401,
    ErrorType.FORBIDDEN: 403,
    ErrorType.NOT_FOUND: 404,
    ErrorType.RATE_LIMIT: 429,
    ErrorType.OFFLINE: 503,
}

DEFAULT_CAUSES = {
    "bad_request:api": "The request couldn't be processed. Please check your input and try again.",
    "bad_request:database": "An error occurred while executing a database query.",
    "unauthorized:chat": "You need to sign in to use the chat.",
    "forbidden:chat": "This chat belongs to another user.",
    "not_found:chat": "The requested chat was not found.",
    "not_found:stream": "The requested stream was not found.",
    "rate_limit:chat": "You have exceeded your maximum number of messages for the day.",
    "offline:chat": "The chat service is currently unavailable.",
}


def error_type_for_status(status_code: int) -> ErrorType:
    """Map an HTTP status onto the closest error category."""
    for error_type, code in STATUS_BY_ERROR_TYPE.items():
        if code == status_code:
            return error_type
    if status_code >= 500:
        return ErrorType.OFFLINE
    return ErrorType.BAD_REQUEST


class ChatError(BaseAppException):
    """Typed chat API error rendered as ``{code, cause}``."""

    def __init__(
        self,
        code: str,
        cause: str | None = None,
        details: dict[str, Any] | None = None,
    ):
        error_type, _, surface = code.partition(":")
        self.type = ErrorType(error_type)
        self.surface = Surface(surface)
        self.code = code
        self.cause = cause or DEFAULT_CAUSES.get(code, "Something went wrong. Please try again later.")
        super().__init__(
            message=self.cause,
            status_code=STATUS_BY_ERROR_TYPE[self.type],
            error_code=code,
            details=details,
        )

    def to_body(self) -> dict[str, str]:
        return {"code": self.code, "cause": self.cause}

# ruff: noqa: D107
"""Base exception classes.

Every application error is an ``HTTPException`` so FastAPI can render it
before a response starts. Errors that happen mid-stream are logged and
reported as an error frame instead.
"""

from typing import Any

from fastapi import HTTPException


class BaseAppException(HTTPException):
    """Base application exception.

    ``error_code`` is an internal identifier for logs; clients only ever see
    the status code and ``message`` as the cause.
    """

    def __init__(
        self,
        message: str,
        status_code: int = 500,
        error_code: str = "INTERNAL_ERROR",
        details: dict[str, Any] | None = None,
    ):
        self.message = message
        self.error_code = error_code
        self.details = details or {}

        super().__init__(status_code=status_code, detail=message)

    def __str__(self) -> str:
        return f"{self.error_code}: {self.message}"

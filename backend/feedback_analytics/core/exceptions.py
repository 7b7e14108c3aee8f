"""Application exceptions.

HTTP-facing errors subclass ``HTTPException`` so route handlers can raise them
directly. Domain errors raised by the aggregation core are plain exceptions;
the API maps them to responses through the handlers registered in ``main``.
"""

from typing import Any

from fastapi import HTTPException, status


class AppError(HTTPException):
    """Base class for errors that map directly to an HTTP response."""

    status_code = status.HTTP_500_INTERNAL_SERVER_ERROR

    def __init__(self, detail: Any = None, headers: dict[str, str] | None = None):
        super().__init__(status_code=self.status_code, detail=detail, headers=headers)


class NotFoundError(AppError):
    status_code = status.HTTP_404_NOT_FOUND


class ServiceUnavailableError(AppError):
    status_code = status.HTTP_503_SERVICE_UNAVAILABLE


class InvalidPeriodError(ValueError):
    """Raised for a period kind outside daily/weekly/monthly/quarterly/yearly/all_time."""

    def __init__(self, period: Any):
        self.period = period
        super().__init__(
            f"Invalid period {period!r}. Must be one of: "
            "daily, weekly, monthly, quarterly, yearly, all_time"
        )


class StoreUnavailableError(RuntimeError):
    """Raised when the event or metrics store cannot be read or written."""


class EventValidationError(ValueError):
    """Raised when an inbound event is missing required fields."""

    def __init__(self, message: str, errors: list[dict[str, Any]] | None = None):
        self.errors = errors or []
        super().__init__(message)

"""
Base exception classes for application-wide error handling.

Exception Hierarchy:
    BaseApplicationError (base)
    ├── ValidationError - Input validation failures
    ├── NotFoundError - Resource not found
    ├── ConflictError - State conflicts (duplicates, concurrent modifications)
    └── ExternalServiceError - Third-party service failures

Each class carries the HTTP status the API layer should answer with, so
views can translate a domain error without a lookup table of their own.

Usage:
    from core.exceptions import NotFoundError

    raise NotFoundError(
        f"Booking {booking_id} not found",
        error_code="BOOKING_NOT_FOUND",
        details={"booking_id": booking_id},
    )

    try:
        ...
    except BaseApplicationError as e:
        return Response(e.to_dict(), status=e.http_status)

Note:
    These exceptions are for domain/business logic errors.
    Expected business outcomes (ineligible refund, declined payment) are
    returned as core.services.ServiceResult, not raised.
"""

from __future__ import annotations

from typing import TYPE_CHECKING

if TYPE_CHECKING:
    from typing import Any


class BaseApplicationError(Exception):
    """
    Base exception for all application errors.

    Attributes:
        message: Human-readable error description
        error_code: Machine-readable code for client-side handling
        details: Additional context (field errors, identifiers)
        http_status: Status code used when surfaced through the API
    """

    default_error_code: str = "APPLICATION_ERROR"
    http_status: int = 400

    def __init__(
        self,
        message: str,
        error_code: str | None = None,
        details: dict[str, Any] | None = None,
    ) -> None:
        super().__init__(message)
        self.message = message
        self.error_code = error_code or self.default_error_code
        self.details = details or {}

    def to_dict(self) -> dict[str, Any]:
        """
        Convert exception to a dictionary for API responses.

        Returns:
            Dict with error, error_code, and details keys
        """
        return {
            "error": self.message,
            "error_code": self.error_code,
            "details": self.details,
        }

    def __str__(self) -> str:
        return f"[{self.error_code}] {self.message}"

    def __repr__(self) -> str:
        return (
            f"{self.__class__.__name__}("
            f"message={self.message!r}, "
            f"error_code={self.error_code!r}, "
            f"details={self.details!r})"
        )


class ValidationError(BaseApplicationError):
    """Input failed validation before any persistence or external call."""

    default_error_code: str = "VALIDATION_ERROR"
    http_status: int = 400


class NotFoundError(BaseApplicationError):
    """
    Requested resource does not exist.

    Example:
        booking = Booking.objects.filter(pk=booking_id).first()
        if booking is None:
            raise NotFoundError(
                f"Booking {booking_id} not found",
                error_code="BOOKING_NOT_FOUND",
            )
    """

    default_error_code: str = "NOT_FOUND"
    http_status: int = 404


class ConflictError(BaseApplicationError):
    """
    Operation conflicts with the current state of a resource.

    Use for invalid state transitions, lock contention and duplicate
    active records. Maps to HTTP 409.
    """

    default_error_code: str = "CONFLICT"
    http_status: int = 409


class ExternalServiceError(BaseApplicationError):
    """
    An external service call failed.

    Note:
        Log the original error for debugging but don't expose
        internal details to clients. Maps to HTTP 502.
    """

    default_error_code: str = "EXTERNAL_SERVICE_ERROR"
    http_status: int = 502

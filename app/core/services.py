"""
Base service layer patterns for business logic encapsulation.

This module provides foundational patterns for the service layer:
- ServiceResult: Standard result wrapper for consistent success/failure handling
- BaseService: Base class with common service utilities

Pattern Comparison:
    - ServiceResult: Use for expected failures (validation, business rules,
      gateway declines)
    - Exceptions: Use for unexpected failures (database errors, bugs)

Usage:
    from core.services import BaseService, ServiceResult

    class RefundOrchestrator(BaseService):
        @classmethod
        def deny_refund(cls, refund_id: int) -> ServiceResult[RefundTransaction]:
            refund = RefundTransaction.objects.filter(pk=refund_id).first()
            if refund is None:
                return ServiceResult.failure(
                    "Refund not found", error_code="REFUND_NOT_FOUND"
                )

            with cls.atomic():
                refund.cancel()
                refund.save()

            cls.get_logger().info("Refund denied", extra={"refund_id": refund.pk})
            return ServiceResult.success(refund)

    # In view
    result = RefundOrchestrator.deny_refund(refund_id)
    if result.success:
        return Response(RefundTransactionSerializer(result.data).data)
    return Response(result.to_response(), status=400)
"""

from __future__ import annotations

import logging
from contextlib import contextmanager
from dataclasses import dataclass, field
from typing import TYPE_CHECKING, Generic, TypeVar

from django.db import transaction

if TYPE_CHECKING:
    from collections.abc import Callable, Generator
    from typing import Any

# Generic type for ServiceResult data
T = TypeVar("T")


@dataclass
class ServiceResult(Generic[T]):
    """
    Standard result wrapper for service operations.

    Provides consistent success/failure handling without exceptions.

    Attributes:
        success: Whether the operation succeeded
        data: Result data (set on success, and optionally on failure when the
            caller needs the partially-completed record, e.g. a failed refund)
        error: Error message if failed (None if successful)
        error_code: Machine-readable error code for client handling
        errors: Field-level errors for validation failures
    """

    success: bool
    data: T | None = None
    error: str | None = None
    error_code: str | None = None
    errors: dict[str, list[str]] | None = field(default=None)

    @classmethod
    def ok(cls, data: T) -> ServiceResult[T]:
        """Alias for success() - use whichever reads better in context."""
        return cls(success=True, data=data)

    @classmethod
    def success(cls, data: T) -> ServiceResult[T]:
        """
        Create a successful result.

        Args:
            data: The result data

        Returns:
            ServiceResult with success=True and data set
        """
        return cls(success=True, data=data)

    @classmethod
    def failure(
        cls,
        error: str,
        error_code: str | None = None,
        errors: dict[str, list[str]] | None = None,
        data: T | None = None,
    ) -> ServiceResult[T]:
        """
        Create a failed result.

        Args:
            error: Human-readable error message
            error_code: Machine-readable error code for client handling
            errors: Field-level errors (for validation failures)
            data: Optional payload describing what was recorded before
                the failure

        Returns:
            ServiceResult with success=False and error details

        Example:
            return ServiceResult.failure(
                "Validation failed",
                error_code="INVALID_AMOUNT",
                errors={"amount": ["Amount must be greater than zero"]},
            )
        """
        return cls(
            success=False,
            data=data,
            error=error,
            error_code=error_code,
            errors=errors,
        )

    def to_response(self) -> dict[str, Any]:
        """
        Convert to API response format.

        Returns:
            Dict with success status and data or error details
        """
        if self.success:
            return {"success": True, "data": self.data}

        response: dict[str, Any] = {
            "success": False,
            "error": self.error,
        }
        if self.error_code:
            response["error_code"] = self.error_code
        if self.errors:
            response["errors"] = self.errors
        return response

    def map(self, func: Callable[[T], Any]) -> ServiceResult:
        """Transform the data if successful; failures pass through unchanged."""
        if self.success and self.data is not None:
            return ServiceResult.success(func(self.data))
        return self

    def __bool__(self) -> bool:
        return self.success


class BaseService:
    """
    Base class for service layer classes.

    Provides common utilities for services:
    - Logging setup per service
    - Database transaction management

    Design Notes:
        - Use @classmethod (no instance state)
        - Use ServiceResult for expected failures
        - Raise exceptions for unexpected failures
    """

    @classmethod
    def get_logger(cls) -> logging.Logger:
        """
        Get logger for this service.

        Returns a logger named after the service class for
        easy filtering in logs.
        """
        return logging.getLogger(f"{cls.__module__}.{cls.__name__}")

    @classmethod
    @contextmanager
    def atomic(cls) -> Generator[None, None, None]:
        """
        Execute operations in a database transaction.

        All database operations within this context manager are
        wrapped in a transaction. If any operation raises, all
        changes are rolled back.

        Example:
            with cls.atomic():
                booking = Booking.objects.select_for_update().get(pk=booking_id)
                RefundTransaction.objects.create(booking=booking, ...)
        """
        with transaction.atomic():
            yield


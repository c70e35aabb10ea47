"""
Base exception classes for application-wide error handling.

Every domain error carries a human-readable message, a machine-readable
error code and optional details, so views can turn any of them into the
same JSON error body.

Exception Hierarchy:
    BaseApplicationError (base)
    ├── ValidationError - Caller input failures
    ├── NotFoundError - Resource not found
    └── ConflictError - State conflicts (concurrent writes, illegal transitions)

Usage:
    from core.exceptions import ValidationError, NotFoundError

    raise ValidationError("amount must be positive", details={"amount": "-1"})

    try:
        ...
    except BaseApplicationError as e:
        return Response(e.to_dict(), status=400)
"""

from __future__ import annotations

from typing import TYPE_CHECKING

if TYPE_CHECKING:
    from typing import Any


class BaseApplicationError(Exception):
    """
    Base exception for all application-specific errors.

    Attributes:
        message: Human-readable error description
        error_code: Machine-readable code for client-side handling
        details: Additional error context (field errors, identifiers, etc.)

    Subclasses set ``default_error_code``; callers may override it per raise.
    """

    default_error_code: str = "APPLICATION_ERROR"

    def __init__(
        self,
        message: str,
        error_code: str | None = None,
        details: dict[str, Any] | None = None,
    ):
        self.message = message
        self.error_code = error_code or self.default_error_code
        self.details = details or {}
        super().__init__(message)

    def to_dict(self) -> dict[str, Any]:
        """
        Convert exception to dictionary for API response.

        Example:
            {
                "error": "Payment order BRANDIFY-1-2 not found",
                "error_code": "PAYMENT_ORDER_NOT_FOUND",
                "details": {"order_id": "BRANDIFY-1-2"}
            }
        """
        result: dict[str, Any] = {
            "error": self.message,
            "error_code": self.error_code,
        }
        if self.details:
            result["details"] = self.details
        return result

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
    """
    Raised when caller input fails validation.

    Use for service-layer checks (missing fields, non-positive amounts).
    DRF serializers still handle field parsing at the API boundary.
    """

    default_error_code: str = "VALIDATION_ERROR"


class NotFoundError(BaseApplicationError):
    """Raised when a requested resource does not exist."""

    default_error_code: str = "NOT_FOUND"


class ConflictError(BaseApplicationError):
    """
    Raised when an operation conflicts with current resource state.

    Use for:
    - Concurrent modification conflicts
    - Invalid state transitions
    - Contended locks

    HTTP 409 Conflict is the natural status for these errors.
    """

    default_error_code: str = "CONFLICT"

"""
Payment-specific exceptions for payment operations.

This module provides the exception hierarchy for the Pesapal integration:
caller input errors, gateway errors split by retry policy, and the
concurrency errors raised while serializing order writes.

Exception Hierarchy:
    PaymentError (base for payment domain)
    ├── PaymentProcessingError - Payment processing failures
    │   └── GatewayError - Base for all Pesapal errors
    │       ├── AuthenticationFailedError - Token request failed (next acquire retries)
    │       ├── TokenRejectedError - Bearer token refused (refresh and retry once)
    │       ├── GatewayRejectedError - Structured business rejection (permanent)
    │       ├── GatewayUnavailableError - Timeout/connection/5xx (transient, retry)
    │       └── MalformedResponseError - Integration defect (permanent)

    InvalidRequestError - Caller input failures (inherits ValidationError)
    PaymentNotFoundError - Unknown order or tracking id (inherits NotFoundError)
    InconsistentStatusError - Conflicting status update (inherits ConflictError)
    LockAcquisitionError - Distributed lock timeout (inherits ConflictError)

Usage:
    from payments.exceptions import GatewayError, GatewayUnavailableError

    try:
        client.submit_order(params)
    except GatewayError as e:
        if e.is_retryable:
            ...
"""

from __future__ import annotations

from typing import TYPE_CHECKING

from core.exceptions import (
    BaseApplicationError,
    ConflictError,
    NotFoundError,
    ValidationError,
)

if TYPE_CHECKING:
    from typing import Any


# =============================================================================
# Payment Domain Exceptions
# =============================================================================


class PaymentError(BaseApplicationError):
    """Base exception for all payment operations."""

    default_error_code: str = "PAYMENT_ERROR"


class PaymentProcessingError(PaymentError):
    """Raised when talking to the payment gateway fails."""

    default_error_code: str = "PAYMENT_PROCESSING_ERROR"


class InvalidRequestError(ValidationError):
    """
    Raised when an intake request is missing or has invalid fields.

    Raised before any gateway call is attempted and never retried.

    Example:
        raise InvalidRequestError(
            "Missing required fields",
            details={"required": ["amount", "currency", "customerEmail"]},
        )
    """

    default_error_code: str = "INVALID_REQUEST"


class PaymentNotFoundError(NotFoundError):
    """
    Raised when no stored order matches an order id or tracking id.

    Example:
        order = PaymentOrder.objects.filter(order_id=order_id).first()
        if order is None:
            raise PaymentNotFoundError(
                f"Payment order {order_id} not found",
                details={"order_id": order_id},
            )
    """

    default_error_code: str = "PAYMENT_ORDER_NOT_FOUND"


# =============================================================================
# Gateway Exceptions
# =============================================================================


class GatewayError(PaymentProcessingError):
    """
    Base exception for all Pesapal gateway errors.

    Attributes:
        status_code: HTTP status returned by the gateway, if any
        is_retryable: Whether repeating the same call may succeed

    Example:
        except GatewayError as e:
            if e.is_retryable:
                poll_order_status.apply_async(args=[order_id], countdown=30)
    """

    default_error_code: str = "GATEWAY_ERROR"
    is_retryable: bool = False

    def __init__(
        self,
        message: str,
        error_code: str | None = None,
        status_code: int | None = None,
        details: dict[str, Any] | None = None,
    ):
        details = details or {}
        if status_code is not None:
            details["status_code"] = status_code
        super().__init__(message, error_code=error_code, details=details)
        self.status_code = status_code


class AuthenticationFailedError(GatewayError):
    """
    The token request failed.

    Covers invalid credentials, an ``error`` object in the token response,
    timeouts and connection failures on the authentication call. The token
    cache does not cache this failure; the next acquire tries again.
    """

    default_error_code: str = "GATEWAY_AUTHENTICATION_FAILED"


class TokenRejectedError(GatewayError):
    """
    The gateway refused a bearer token (HTTP 401/403).

    Distinct from GatewayRejectedError so the client can discard the
    cached token, fetch a fresh one and retry the call once.
    """

    default_error_code: str = "GATEWAY_TOKEN_REJECTED"


class GatewayRejectedError(GatewayError):
    """
    The gateway returned a structured business error.

    Never retried with the same payload. The gateway's own error object is
    kept in ``details["gateway_error"]``.
    """

    default_error_code: str = "GATEWAY_REJECTED"


class GatewayUnavailableError(GatewayError):
    """
    The gateway could not be reached or failed on its side.

    Covers timeouts, connection errors and 5xx responses. Status queries may
    be retried freely; an order submission may be retried once with the
    same order id.
    """

    default_error_code: str = "GATEWAY_UNAVAILABLE"
    is_retryable: bool = True


class MalformedResponseError(GatewayError):
    """
    The gateway answered with success but the body is unusable.

    Examples are a non-JSON body or a submission response without
    ``redirect_url``. This points to an integration defect and is logged
    loudly instead of being retried.
    """

    default_error_code: str = "GATEWAY_MALFORMED_RESPONSE"


# =============================================================================
# Concurrency Control Exceptions
# =============================================================================


class InconsistentStatusError(ConflictError):
    """
    Raised when a status update conflicts with the stored state.

    The first terminal write wins: a different terminal value, or a
    non-terminal value for a terminal order, is rejected and recorded as a
    StatusAnomaly. The original state is preserved.

    Attributes:
        details: Contains order_id, current_state, attempted_state and source
    """

    default_error_code: str = "INCONSISTENT_STATUS"


class LockAcquisitionError(ConflictError):
    """
    Raised when a distributed lock cannot be acquired.

    Another process holds the lock and it was not released within the
    timeout. Treated as transient by callers.

    Attributes:
        details: Contains key and timeout information
    """

    default_error_code: str = "LOCK_ACQUISITION_FAILED"


__all__ = [
    "PaymentError",
    "PaymentProcessingError",
    "InvalidRequestError",
    "PaymentNotFoundError",
    "GatewayError",
    "AuthenticationFailedError",
    "TokenRejectedError",
    "GatewayRejectedError",
    "GatewayUnavailableError",
    "MalformedResponseError",
    "InconsistentStatusError",
    "LockAcquisitionError",
]

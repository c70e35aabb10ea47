"""
Pesapal API adapter for payment operations.

This module provides the PesapalClient class which encapsulates all
Pesapal v3 API interactions. All gateway calls go through this adapter to
ensure consistent error handling, timeouts, token handling and
observability.

Features:
- Bounded timeout on every call (PESAPAL_API_TIMEOUT_SECONDS, default 25)
- Automatic error translation to domain exceptions
- Structured logging with timing metrics
- Cached bearer token with single-flight refresh
- One forced refresh-and-retry when the gateway rejects a token
- No retry of business calls; callers decide

Configuration (via settings):
- PESAPAL_BASE_URL: Sandbox or production API root
- PESAPAL_CONSUMER_KEY / PESAPAL_CONSUMER_SECRET: Credential pair
- PESAPAL_API_TIMEOUT_SECONDS: API call timeout
- PESAPAL_TOKEN_SAFETY_MARGIN_SECONDS: Refresh tokens this early

Usage:
    from payments.adapters import SubmitOrderParams, get_pesapal_client

    client = get_pesapal_client()
    result = client.submit_order(
        SubmitOrderParams(
            order_id="BRANDIFY-1718000000000-42",
            amount=Decimal("1000.00"),
            currency="KES",
            description="Pro Subscription",
            callback_url="https://example.com/pesapal-callback",
            notification_id="ipn-id",
            customer_email="a@b.com",
        )
    )
    status = client.query_status(result.tracking_id)
"""

from __future__ import annotations

import logging
import random
import threading
import time
from dataclasses import dataclass, field
from datetime import timedelta
from datetime import timezone as dt_timezone
from decimal import Decimal
from typing import TYPE_CHECKING, Any

import httpx
from django.conf import settings
from django.utils import timezone
from django.utils.dateparse import parse_datetime

from payments.exceptions import (
    AuthenticationFailedError,
    GatewayError,
    GatewayRejectedError,
    GatewayUnavailableError,
    MalformedResponseError,
    TokenRejectedError,
)
from payments.state_machines import PaymentOrderState, status_from_payload
from payments.token_cache import CredentialToken, TokenCache

if TYPE_CHECKING:
    from collections.abc import Mapping


SANDBOX_BASE_URL = "https://cybqa.pesapal.com/pesapalv3"
PRODUCTION_BASE_URL = "https://pay.pesapal.com/v3"

# Pesapal tokens are valid for five minutes
DEFAULT_TOKEN_LIFETIME = timedelta(minutes=5)


# =============================================================================
# Data Types
# =============================================================================


@dataclass
class SubmitOrderParams:
    """
    Parameters for submitting an order to Pesapal.

    Attributes:
        order_id: Merchant reference, unique per order
        amount: Amount in major currency units
        currency: ISO 4217 currency code
        description: Text shown on the payment page
        callback_url: Where Pesapal redirects the payer afterwards
        notification_id: Registered IPN id that receives callbacks
        customer_email: Billing email address
        customer_name: Full name, split into first/last name
    """

    order_id: str
    amount: Decimal
    currency: str
    description: str
    callback_url: str
    notification_id: str
    customer_email: str
    customer_name: str = ""

    def __post_init__(self) -> None:
        if not self.order_id:
            raise ValueError("order_id is required")
        if self.amount <= 0:
            raise ValueError("amount must be positive")
        if not self.currency:
            raise ValueError("currency is required")
        if not self.customer_email:
            raise ValueError("customer_email is required")

    def to_payload(self) -> dict[str, Any]:
        """Build the SubmitOrderRequest JSON body."""
        first_name, last_name = split_customer_name(self.customer_name)
        return {
            "id": self.order_id,
            "currency": self.currency,
            "amount": float(self.amount),
            "description": self.description[:100],
            "callback_url": self.callback_url,
            "notification_id": self.notification_id,
            "billing_address": {
                "email_address": self.customer_email,
                "phone_number": "",
                "country_code": "",
                "first_name": first_name,
                "middle_name": "",
                "last_name": last_name,
                "line_1": "",
                "line_2": "",
                "city": "",
                "state": "",
                "postal_code": "",
                "zip_code": "",
            },
        }


@dataclass
class SubmitOrderResult:
    """
    Result of a successful order submission.

    Attributes:
        tracking_id: Pesapal order_tracking_id
        redirect_url: Payment page the payer must be sent to
        merchant_reference: Echo of our order id
        raw_response: Full Pesapal response body
    """

    tracking_id: str
    redirect_url: str
    merchant_reference: str = ""
    raw_response: dict[str, Any] = field(default_factory=dict)


@dataclass
class StatusResult:
    """
    Result of a transaction status query.

    Attributes:
        tracking_id: Tracking id that was queried
        status: Normalized state, or None if the gateway value has no
            place in the order state machine (e.g. REVERSED)
        raw_response: Full Pesapal response body
    """

    tracking_id: str
    status: PaymentOrderState | None
    raw_response: dict[str, Any] = field(default_factory=dict)

    @property
    def description(self) -> str:
        """Gateway's own wording for the status."""
        return str(self.raw_response.get("payment_status_description") or "")


@dataclass
class IpnRegistration:
    """A registered IPN endpoint."""

    ipn_id: str
    url: str
    raw_response: dict[str, Any] = field(default_factory=dict)


# =============================================================================
# Helpers
# =============================================================================


def split_customer_name(name: str | None) -> tuple[str, str]:
    """
    Split a full name into the first/last names Pesapal expects.

    Example:
        split_customer_name("Ada Lovelace")  # ("Ada", "Lovelace")
        split_customer_name("")              # ("Customer", "")
    """
    parts = (name or "").split()
    if not parts:
        return "Customer", ""
    return parts[0], " ".join(parts[1:])


def backoff_delay(attempt: int, base: float = 1.0, max_delay: float = 60.0) -> float:
    """
    Calculate exponential backoff delay with jitter.

    Jitter prevents thundering herd when multiple workers retry simultaneously.

    Args:
        attempt: Current attempt number (0-indexed)
        base: Base delay in seconds (default: 1.0)
        max_delay: Maximum delay in seconds (default: 60.0)

    Returns:
        Delay in seconds with jitter (0-25% of calculated delay)
    """
    delay = min(base * (2**attempt), max_delay)
    jitter = delay * random.uniform(0, 0.25)
    return delay + jitter


def _gateway_error(body: Any) -> dict[str, Any] | None:
    """Return Pesapal's error object if it carries an actual error."""
    if not isinstance(body, dict):
        return None
    error = body.get("error")
    if isinstance(error, dict):
        if any(error.get(key) for key in ("code", "message", "error_type")):
            return error
        return None
    if error:
        return {"message": str(error)}
    return None


def _require_object(body: Any, operation: str) -> dict[str, Any]:
    if not isinstance(body, dict):
        raise MalformedResponseError(
            f"Pesapal returned an unexpected body for {operation}",
            details={"operation": operation},
        )
    return body


def _parse_expiry(value: Any) -> Any:
    parsed = parse_datetime(value) if isinstance(value, str) else None
    if parsed is None:
        return timezone.now() + DEFAULT_TOKEN_LIFETIME
    if timezone.is_naive(parsed):
        parsed = timezone.make_aware(parsed, dt_timezone.utc)
    return parsed


# =============================================================================
# Pesapal Client
# =============================================================================


class PesapalClient:
    """
    Client for the Pesapal v3 REST API.

    Holds an httpx connection pool and its own TokenCache; otherwise
    stateless and safe to share between threads.

    Args:
        base_url: API root (sandbox or production)
        consumer_key: Pesapal consumer key
        consumer_secret: Pesapal consumer secret
        timeout: Per-call timeout in seconds
        token_safety_margin: Refresh tokens this long before expiry
        transport: Optional httpx transport (tests use httpx.MockTransport)
    """

    AUTH_PATH = "/api/Auth/RequestToken"
    SUBMIT_ORDER_PATH = "/api/Transactions/SubmitOrderRequest"
    STATUS_PATH = "/api/Transactions/GetTransactionStatus"
    REGISTER_IPN_PATH = "/api/URLSetup/RegisterIPN"
    LIST_IPNS_PATH = "/api/URLSetup/GetIpnList"

    def __init__(
        self,
        base_url: str,
        consumer_key: str,
        consumer_secret: str,
        timeout: float = 25.0,
        token_safety_margin: timedelta = timedelta(seconds=60),
        transport: httpx.BaseTransport | None = None,
    ) -> None:
        self.base_url = base_url.rstrip("/")
        self._consumer_key = consumer_key
        self._consumer_secret = consumer_secret
        self._http = httpx.Client(
            base_url=self.base_url,
            timeout=timeout,
            transport=transport,
            headers={"Accept": "application/json"},
        )
        self.token_cache = TokenCache(self.authenticate, safety_margin=token_safety_margin)

    @classmethod
    def from_settings(cls, transport: httpx.BaseTransport | None = None) -> PesapalClient:
        """Build a client from the PESAPAL_* settings."""
        return cls(
            base_url=settings.PESAPAL_BASE_URL,
            consumer_key=settings.PESAPAL_CONSUMER_KEY,
            consumer_secret=settings.PESAPAL_CONSUMER_SECRET,
            timeout=settings.PESAPAL_API_TIMEOUT_SECONDS,
            token_safety_margin=timedelta(
                seconds=settings.PESAPAL_TOKEN_SAFETY_MARGIN_SECONDS
            ),
            transport=transport,
        )

    @classmethod
    def get_logger(cls) -> logging.Logger:
        """Get logger for this adapter."""
        return logging.getLogger(f"{cls.__module__}.{cls.__name__}")

    def close(self) -> None:
        """Close the underlying connection pool."""
        self._http.close()

    # =========================================================================
    # Core Operations
    # =========================================================================

    def authenticate(self) -> CredentialToken:
        """
        Request a new bearer token.

        Used by the token cache; call token_cache.acquire() instead of this
        to benefit from caching.

        Raises:
            AuthenticationFailedError: For any failure, including timeouts
        """
        log_context = {"operation": "authenticate"}
        try:
            body = self._send(
                "POST",
                self.AUTH_PATH,
                log_context,
                json={
                    "consumer_key": self._consumer_key.strip(),
                    "consumer_secret": self._consumer_secret.strip(),
                },
            )
        except GatewayError as e:
            raise AuthenticationFailedError(
                f"Pesapal authentication failed: {e.message}",
                status_code=e.status_code,
                details={"cause": e.error_code},
            ) from e

        token = body.get("token") if isinstance(body, dict) else None
        if not token:
            self.get_logger().critical(
                "Pesapal did not return an access token - check credentials",
                extra=log_context,
            )
            raise AuthenticationFailedError("Pesapal did not return an access token")

        return CredentialToken(value=token, expires_at=_parse_expiry(body.get("expiryDate")))

    def submit_order(self, params: SubmitOrderParams) -> SubmitOrderResult:
        """
        Submit an order and obtain the payer redirect URL.

        Args:
            params: Order fields to send

        Returns:
            SubmitOrderResult with tracking id and redirect URL

        Raises:
            GatewayRejectedError: Gateway refused the order (do not resend)
            GatewayUnavailableError: Timeout/connection/5xx (safe to resend
                once with the same order id)
            MalformedResponseError: Success without tracking id or redirect URL
            AuthenticationFailedError / TokenRejectedError: Credential problems
        """
        log_context = {
            "operation": "submit_order",
            "order_id": params.order_id,
            "amount": str(params.amount),
            "currency": params.currency,
        }
        body = self._authorized_request(
            "POST",
            self.SUBMIT_ORDER_PATH,
            log_context,
            json=params.to_payload(),
        )
        body = _require_object(body, "submit_order")

        tracking_id = body.get("order_tracking_id")
        redirect_url = body.get("redirect_url")
        if not tracking_id or not redirect_url:
            self.get_logger().error(
                "Pesapal order response missing tracking id or redirect URL",
                extra={**log_context, "tracking_id": tracking_id},
            )
            raise MalformedResponseError(
                "Pesapal did not return a redirect URL and tracking id",
                details={"order_id": params.order_id, "tracking_id": tracking_id},
            )

        return SubmitOrderResult(
            tracking_id=tracking_id,
            redirect_url=redirect_url,
            merchant_reference=body.get("merchant_reference") or params.order_id,
            raw_response=body,
        )

    def query_status(self, tracking_id: str) -> StatusResult:
        """
        Fetch the current transaction status of a submitted order.

        Read-only and safe to retry.

        Raises:
            GatewayRejectedError, GatewayUnavailableError,
            MalformedResponseError, AuthenticationFailedError, TokenRejectedError
        """
        log_context = {"operation": "query_status", "tracking_id": tracking_id}
        body = self._authorized_request(
            "GET",
            self.STATUS_PATH,
            log_context,
            params={"orderTrackingId": tracking_id},
        )
        body = _require_object(body, "query_status")
        return StatusResult(
            tracking_id=tracking_id,
            status=status_from_payload(body),
            raw_response=body,
        )

    def register_ipn(self, url: str, notification_type: str = "POST") -> IpnRegistration:
        """Register ``url`` as an IPN endpoint and return its id."""
        log_context = {"operation": "register_ipn", "ipn_url": url}
        body = self._authorized_request(
            "POST",
            self.REGISTER_IPN_PATH,
            log_context,
            json={"url": url, "ipn_notification_type": notification_type},
        )
        body = _require_object(body, "register_ipn")
        ipn_id = body.get("ipn_id")
        if not ipn_id:
            raise MalformedResponseError(
                "Pesapal did not return an ipn_id",
                details={"ipn_url": url},
            )
        return IpnRegistration(ipn_id=ipn_id, url=body.get("url") or url, raw_response=body)

    def list_ipns(self) -> list[IpnRegistration]:
        """List the IPN endpoints registered for these credentials."""
        body = self._authorized_request(
            "GET",
            self.LIST_IPNS_PATH,
            {"operation": "list_ipns"},
        )
        if isinstance(body, list):
            entries = body
        else:
            entries = _require_object(body, "list_ipns").get("data") or []
        return [
            IpnRegistration(ipn_id=entry["ipn_id"], url=entry.get("url", ""), raw_response=entry)
            for entry in entries
            if isinstance(entry, dict) and entry.get("ipn_id")
        ]

    # =========================================================================
    # Transport
    # =========================================================================

    def _authorized_request(
        self,
        method: str,
        path: str,
        log_context: dict[str, Any],
        **kwargs: Any,
    ) -> Any:
        """
        Send a bearer-authenticated request.

        A TokenRejectedError invalidates the token, and the call is repeated
        once with a fresh one. A second rejection propagates.
        """
        token = self.token_cache.acquire()
        try:
            return self._send(method, path, log_context, token=token, **kwargs)
        except TokenRejectedError:
            self.token_cache.invalidate(token)
            self.get_logger().warning(
                "Pesapal rejected bearer token, retrying once with a fresh token",
                extra=log_context,
            )
            token = self.token_cache.acquire()
            return self._send(method, path, log_context, token=token, **kwargs)

    def _send(
        self,
        method: str,
        path: str,
        log_context: dict[str, Any],
        token: CredentialToken | None = None,
        **kwargs: Any,
    ) -> Any:
        """Perform one HTTP call and translate every failure mode."""
        logger = self.get_logger()
        headers = {"Content-Type": "application/json"}
        if token is not None:
            headers["Authorization"] = f"Bearer {token.value}"

        start_time = time.monotonic()
        logger.info("Starting Pesapal operation", extra=log_context)

        try:
            response = self._http.request(method, path, headers=headers, **kwargs)
        except httpx.TimeoutException as e:
            duration_ms = (time.monotonic() - start_time) * 1000
            logger.error(
                "Pesapal request timed out",
                extra={**log_context, "duration_ms": duration_ms},
            )
            raise GatewayUnavailableError("Pesapal request timed out. Please retry.") from e
        except httpx.TransportError as e:
            duration_ms = (time.monotonic() - start_time) * 1000
            logger.error(
                "Connection error to Pesapal",
                extra={**log_context, "duration_ms": duration_ms},
                exc_info=True,
            )
            raise GatewayUnavailableError("Could not connect to Pesapal. Please retry.") from e

        duration_ms = (time.monotonic() - start_time) * 1000
        log_context = {
            **log_context,
            "status_code": response.status_code,
            "duration_ms": duration_ms,
        }
        body = self._handle_response(response, log_context)

        logger.info("Pesapal operation completed", extra=log_context)
        return body

    def _handle_response(self, response: httpx.Response, log_context: Mapping[str, Any]) -> Any:
        """
        Translate an HTTP response into a parsed body or a domain exception.

        Raises:
            TokenRejectedError: 401/403
            GatewayUnavailableError: 5xx
            GatewayRejectedError: Other non-2xx, or an error object in the body
            MalformedResponseError: 2xx with a body that is not JSON
        """
        logger = self.get_logger()
        status_code = response.status_code

        if status_code in (401, 403):
            logger.warning("Pesapal rejected credentials", extra=dict(log_context))
            raise TokenRejectedError(
                "Pesapal rejected the bearer token",
                status_code=status_code,
            )

        if status_code >= 500:
            logger.error(
                "Pesapal server error",
                extra={**log_context, "response_text": response.text[:500]},
            )
            raise GatewayUnavailableError(
                "Pesapal service error. Please retry.",
                status_code=status_code,
            )

        try:
            body = response.json()
        except ValueError:
            body = None

        if not response.is_success:
            error = _gateway_error(body) or {"message": response.text[:500]}
            logger.error(
                "Pesapal rejected request",
                extra={**log_context, "gateway_error": error},
            )
            raise GatewayRejectedError(
                error.get("message") or f"Pesapal returned HTTP {status_code}",
                status_code=status_code,
                details={"gateway_error": error},
            )

        if body is None:
            logger.error(
                "Pesapal returned a non-JSON body",
                extra={**log_context, "response_text": response.text[:500]},
            )
            raise MalformedResponseError(
                "Pesapal returned a response that is not JSON",
                status_code=status_code,
            )

        error = _gateway_error(body)
        if error is not None:
            logger.error(
                "Pesapal returned an error object",
                extra={**log_context, "gateway_error": error},
            )
            raise GatewayRejectedError(
                error.get("message") or "Pesapal returned an error",
                status_code=status_code,
                details={"gateway_error": error},
            )

        return body


# =============================================================================
# Process-wide client
# =============================================================================

_client: PesapalClient | None = None
_client_lock = threading.Lock()


def get_pesapal_client() -> PesapalClient:
    """
    Return the shared PesapalClient for this process.

    Sharing the client shares its token cache, so concurrent requests reuse
    one token instead of authenticating separately.
    """
    global _client
    with _client_lock:
        if _client is None:
            _client = PesapalClient.from_settings()
        return _client


def reset_pesapal_client() -> None:
    """Drop the shared client, e.g. after credentials change."""
    global _client
    with _client_lock:
        if _client is not None:
            _client.close()
        _client = None

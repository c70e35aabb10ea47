"""
State enums for payment models.

This module defines the state enums used by PaymentOrder with django-fsm,
plus the mapping from raw Pesapal status values onto those states.

PaymentOrder States:
    created → pending → completed / failed / invalid
    created → error (local integration failure, absorbing)

Pesapal reports a transaction in two ways depending on the endpoint:
    - payment_status_description / payment_status: "Completed", "Failed",
      "Invalid", "Reversed", "Pending"
    - status_code: 0 INVALID, 1 COMPLETED, 2 FAILED, 3 REVERSED
"""

from __future__ import annotations

from typing import TYPE_CHECKING

from django.db import models

if TYPE_CHECKING:
    from typing import Any


class PaymentOrderState(models.TextChoices):
    """
    States for the PaymentOrder model lifecycle.

    Terminal states: COMPLETED, FAILED, INVALID, ERROR

    State Flow:
        CREATED → PENDING → COMPLETED
        CREATED → PENDING → FAILED
        CREATED → PENDING → INVALID

    Integration Failure:
        CREATED → ERROR (e.g. the gateway never returned a tracking id)
    """

    CREATED = "created", "Created"
    PENDING = "pending", "Pending"
    COMPLETED = "completed", "Completed"
    FAILED = "failed", "Failed"
    INVALID = "invalid", "Invalid"
    ERROR = "error", "Error"


class StatusSource(models.TextChoices):
    """Channel that last wrote a PaymentOrder's state."""

    INTAKE = "intake", "Order Intake"
    SUBMISSION = "submission", "Submission Response"
    CALLBACK = "callback", "Gateway Callback"
    POLL = "poll", "Status Poll"


# Gateway-reported outcomes
GATEWAY_TERMINAL_STATES = frozenset(
    {
        PaymentOrderState.COMPLETED,
        PaymentOrderState.FAILED,
        PaymentOrderState.INVALID,
    }
)

TERMINAL_STATES = GATEWAY_TERMINAL_STATES | {PaymentOrderState.ERROR}

_STATUS_WORDS = {
    "COMPLETED": PaymentOrderState.COMPLETED,
    "FAILED": PaymentOrderState.FAILED,
    "INVALID": PaymentOrderState.INVALID,
    "PENDING": PaymentOrderState.PENDING,
}

_STATUS_CODES = {
    0: PaymentOrderState.INVALID,
    1: PaymentOrderState.COMPLETED,
    2: PaymentOrderState.FAILED,
}


def is_terminal(state: str) -> bool:
    """Return True if no further transition is allowed out of ``state``."""
    return state in TERMINAL_STATES


def normalize_gateway_status(value: Any) -> PaymentOrderState | None:
    """
    Map a single raw gateway status value onto a PaymentOrderState.

    Accepts status words in any case and the numeric status codes, either
    as ints or digit strings. Returns None for values the state machine has
    no place for, such as REVERSED or an empty string.

    Example:
        normalize_gateway_status("Completed")  # PaymentOrderState.COMPLETED
        normalize_gateway_status(2)            # PaymentOrderState.FAILED
        normalize_gateway_status("REVERSED")   # None
    """
    if value is None or isinstance(value, bool):
        return None
    if isinstance(value, int):
        return _STATUS_CODES.get(value)

    text = str(value).strip()
    if text.isdigit():
        return _STATUS_CODES.get(int(text))
    return _STATUS_WORDS.get(text.upper())


def status_from_payload(payload: dict[str, Any]) -> PaymentOrderState | None:
    """
    Extract the normalized status from a raw gateway body.

    The description field is preferred because status_code has no value
    for a pending payment.
    """
    for key in ("payment_status_description", "payment_status", "status_description"):
        if payload.get(key):
            return normalize_gateway_status(payload[key])
    if payload.get("status_code") is not None:
        return normalize_gateway_status(payload["status_code"])
    return None


__all__ = [
    "PaymentOrderState",
    "StatusSource",
    "GATEWAY_TERMINAL_STATES",
    "TERMINAL_STATES",
    "is_terminal",
    "normalize_gateway_status",
    "status_from_payload",
]

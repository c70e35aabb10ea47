"""
State machine enums and helpers for payment models.

This module defines the state enums used by payment models with django-fsm.
"""

from payments.state_machines.states import (
    GATEWAY_TERMINAL_STATES,
    TERMINAL_STATES,
    PaymentOrderState,
    StatusSource,
    is_terminal,
    normalize_gateway_status,
    status_from_payload,
)

__all__ = [
    "GATEWAY_TERMINAL_STATES",
    "TERMINAL_STATES",
    "PaymentOrderState",
    "StatusSource",
    "is_terminal",
    "normalize_gateway_status",
    "status_from_payload",
]

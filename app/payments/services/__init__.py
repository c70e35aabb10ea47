"""
Payment services for coordinating payment operations.

This module provides:
- OrderReconciler: Creates orders and applies every status report for them

Usage:
    from payments.services import CreateOrderParams, OrderReconciler

    result = OrderReconciler().create_order(
        CreateOrderParams(amount="1000", currency="KES", customer_email="a@b.com")
    )
"""

from payments.services.order_reconciler import (
    CreateOrderParams,
    OrderReconciler,
    StatusUpdateResult,
    UpdateOutcome,
)

__all__ = [
    "CreateOrderParams",
    "OrderReconciler",
    "StatusUpdateResult",
    "UpdateOutcome",
]

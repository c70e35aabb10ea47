"""
Payment domain models.

This module contains all payment-related models:
- PaymentOrder: Central entity tracking an order through the gateway
- PaymentRecord: Immutable record created once per completed order
- StatusAnomaly: Status updates rejected because they conflicted with stored state
"""

from payments.models.payment_order import PaymentOrder
from payments.models.payment_record import PaymentRecord
from payments.models.status_anomaly import StatusAnomaly

__all__ = [
    "PaymentOrder",
    "PaymentRecord",
    "StatusAnomaly",
]

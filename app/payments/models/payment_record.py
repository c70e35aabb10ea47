"""
PaymentRecord model for completed payments.

A PaymentRecord is derived from a PaymentOrder the first time it reaches
COMPLETED. It is the durable "this customer paid for this plan" fact that
the rest of the product reads; it is never updated or deleted.
"""

from __future__ import annotations

from django.db import models

from core.model_mixins import UUIDPrimaryKeyMixin
from core.models import BaseModel


class PaymentRecord(UUIDPrimaryKeyMixin, BaseModel):
    """
    Immutable record of a completed payment.

    Creation is idempotent on ``order_id`` (unique), so a redelivered
    COMPLETED callback can never produce a second record.

    Fields:
        payment_order: The order this record was derived from
        order_id: Copy of the order's business id (idempotency key)
        gateway_tracking_id: Pesapal tracking id of the paid order
        email/plan_id/plan_name: Who paid and for what
        amount/currency: What was paid
        payment_method: Gateway used ("pesapal")
    """

    PAYMENT_METHOD_PESAPAL = "pesapal"

    payment_order = models.OneToOneField(
        "payments.PaymentOrder",
        on_delete=models.PROTECT,
        related_name="payment_record",
        help_text="Order this payment record was derived from",
    )

    order_id = models.CharField(
        max_length=64,
        unique=True,
        help_text="Business id of the paid order",
    )

    gateway_tracking_id = models.CharField(
        max_length=100,
        blank=True,
        default="",
        help_text="Pesapal order_tracking_id of the paid order",
    )

    email = models.EmailField(
        help_text="Payer email",
    )

    plan_id = models.CharField(max_length=100, blank=True, default="")
    plan_name = models.CharField(max_length=255, blank=True, default="")

    amount = models.DecimalField(
        max_digits=12,
        decimal_places=2,
        help_text="Amount paid in major currency units",
    )

    currency = models.CharField(
        max_length=3,
        help_text="ISO 4217 currency code",
    )

    payment_method = models.CharField(
        max_length=20,
        default=PAYMENT_METHOD_PESAPAL,
        help_text="Gateway the payment went through",
    )

    class Meta:
        ordering = ["-created_at"]
        verbose_name = "Payment Record"
        verbose_name_plural = "Payment Records"
        indexes = [
            models.Index(fields=["email", "created_at"], name="payments_pa_email_3b7e91_idx"),
        ]

    def __str__(self) -> str:
        return f"PaymentRecord({self.order_id}, {self.amount} {self.currency})"

"""
StatusAnomaly model for rejected status updates.

Every update the reconciler refuses to apply (a second, different terminal
status, a regression from a terminal state, a second tracking id) is stored
here so operators can see what the gateway claimed and when.
"""

from __future__ import annotations

from django.db import models

from core.model_mixins import UUIDPrimaryKeyMixin
from core.models import BaseModel

from payments.state_machines import StatusSource


class StatusAnomaly(UUIDPrimaryKeyMixin, BaseModel):
    """
    A status update that conflicted with the stored order state.

    Indexes:
        - (reviewed, created_at): Review queue of unhandled anomalies
        - (payment_order, created_at): History per order

    Example:
        StatusAnomaly.objects.create(
            payment_order=order,
            current_state="completed",
            attempted_state="failed",
            source=StatusSource.POLL,
            message="Order BRANDIFY-1-2 is already completed",
            payload={"payment_status_description": "Failed"},
        )
    """

    payment_order = models.ForeignKey(
        "payments.PaymentOrder",
        on_delete=models.CASCADE,
        related_name="status_anomalies",
        help_text="Order the rejected update was aimed at",
    )

    current_state = models.CharField(
        max_length=20,
        help_text="State of the order when the update arrived",
    )

    attempted_state = models.CharField(
        max_length=20,
        help_text="State the update tried to write",
    )

    source = models.CharField(
        max_length=20,
        choices=StatusSource.choices,
        help_text="Channel the rejected update came from",
    )

    message = models.TextField(
        help_text="Why the update was rejected",
    )

    payload = models.JSONField(
        default=dict,
        blank=True,
        help_text="Raw gateway body that carried the update",
    )

    reviewed = models.BooleanField(
        default=False,
        help_text="Whether an operator has looked at this anomaly",
    )

    class Meta:
        ordering = ["-created_at"]
        verbose_name = "Status Anomaly"
        verbose_name_plural = "Status Anomalies"
        indexes = [
            models.Index(fields=["reviewed", "created_at"], name="payments_st_reviewe_c2d0a4_idx"),
            models.Index(
                fields=["payment_order", "created_at"],
                name="payments_st_payment_71e5b8_idx",
            ),
        ]

    def __str__(self) -> str:
        return f"StatusAnomaly({self.current_state} -> {self.attempted_state}, {self.source})"

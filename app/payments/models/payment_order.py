"""
PaymentOrder model for the Pesapal payment lifecycle.

PaymentOrder is the central entity tracking an order from intake, through
submission to the gateway, to the outcome the gateway reports.

Usage:
    from payments.models import PaymentOrder
    from payments.state_machines import PaymentOrderState

    order = PaymentOrder.objects.create(
        order_id="BRANDIFY-1718000000000-42",
        amount=Decimal("1000.00"),
        currency="KES",
        customer_email="a@b.com",
    )

    # State transitions using django-fsm
    order.submit(tracking_id="T-1", redirect_url="https://pay.example/T-1")
    order.save()
"""

from __future__ import annotations

from django.db import models
from django.db.models import F
from django.utils import timezone

from django_fsm import FSMField, transition

from core.model_mixins import UUIDPrimaryKeyMixin
from core.models import BaseModel

from payments.exceptions import InconsistentStatusError
from payments.state_machines import PaymentOrderState, StatusSource


class PaymentOrder(UUIDPrimaryKeyMixin, BaseModel):
    """
    Central payment entity tracking the full order lifecycle.

    Uses django-fsm for the state machine and a version field that is
    incremented on every save.

    State Flow:
        CREATED -> PENDING -> COMPLETED / FAILED / INVALID

    Integration Failure:
        CREATED -> ERROR

    Fields:
        order_id: Caller-generated business identifier (immutable)
        amount/currency: What the payer is charged
        customer_*: Billing identity sent to the gateway
        plan_id/plan_name: Opaque references copied to the payment record
        gateway_tracking_id: Pesapal order_tracking_id (write-once)
        redirect_url: Where the payer completes the payment
        state: Current FSM state
        status_source: Channel that last wrote the state
        raw_gateway_payload: Last raw status or callback body, for audit
        version: Save counter
        *_at timestamps: Track state transition times
        failure_reason: Local integration failure description
    """

    # ==========================================================================
    # Identity
    # ==========================================================================

    order_id = models.CharField(
        max_length=64,
        unique=True,
        editable=False,
        help_text="Caller-generated order id sent to the gateway as merchant reference",
    )

    # ==========================================================================
    # Amount & Currency
    # ==========================================================================

    amount = models.DecimalField(
        max_digits=12,
        decimal_places=2,
        help_text="Order amount in major currency units",
    )

    currency = models.CharField(
        max_length=3,
        help_text="ISO 4217 currency code (uppercase)",
    )

    # ==========================================================================
    # Customer & Plan
    # ==========================================================================

    customer_email = models.EmailField(
        help_text="Payer email, sent as billing email address",
    )

    customer_name = models.CharField(
        max_length=255,
        blank=True,
        default="",
        help_text="Payer full name, split into first/last name for the gateway",
    )

    plan_id = models.CharField(
        max_length=100,
        blank=True,
        default="",
        help_text="Opaque reference to the purchased plan",
    )

    plan_name = models.CharField(
        max_length=255,
        blank=True,
        default="",
        help_text="Plan name, used in the order description",
    )

    # ==========================================================================
    # Gateway Integration
    # ==========================================================================

    gateway_tracking_id = models.CharField(
        max_length=100,
        null=True,
        blank=True,
        unique=True,
        help_text="Pesapal order_tracking_id, set once after submission",
    )

    redirect_url = models.URLField(
        max_length=1000,
        blank=True,
        default="",
        help_text="Gateway payment page the payer is sent to",
    )

    raw_gateway_payload = models.JSONField(
        default=dict,
        blank=True,
        help_text="Last raw submission, status or callback body from the gateway",
    )

    # ==========================================================================
    # State
    # ==========================================================================

    state = FSMField(
        default=PaymentOrderState.CREATED,
        choices=PaymentOrderState.choices,
        db_index=True,
        protected=True,  # Prevent direct assignment outside transitions
        help_text="Current state of the payment order (managed by FSM)",
    )

    status_source = models.CharField(
        max_length=20,
        choices=StatusSource.choices,
        default=StatusSource.INTAKE,
        help_text="Channel that last wrote the state",
    )

    # ==========================================================================
    # Concurrency Control
    # ==========================================================================

    version = models.PositiveIntegerField(
        default=1,
        help_text="Incremented on each save",
    )

    # ==========================================================================
    # State Timestamps & Error Info
    # ==========================================================================

    completed_at = models.DateTimeField(
        null=True,
        blank=True,
        help_text="When the gateway reported the payment completed",
    )

    failed_at = models.DateTimeField(
        null=True,
        blank=True,
        help_text="When the order reached failed, invalid or error",
    )

    failure_reason = models.TextField(
        null=True,
        blank=True,
        help_text="Detailed reason if the order could not be submitted",
    )

    # ==========================================================================
    # Meta & Methods
    # ==========================================================================

    class Meta:
        ordering = ["-created_at"]
        verbose_name = "Payment Order"
        verbose_name_plural = "Payment Orders"
        indexes = [
            models.Index(fields=["state", "created_at"], name="payments_pa_state_5d1c2e_idx"),
            models.Index(
                fields=["customer_email", "created_at"],
                name="payments_pa_custome_8a4f10_idx",
            ),
        ]
        constraints = [
            models.CheckConstraint(
                condition=models.Q(amount__gt=0),
                name="payment_order_amount_positive",
            ),
        ]

    def __str__(self) -> str:
        return f"PaymentOrder({self.order_id}, {self.state}, {self.amount} {self.currency})"

    def save(self, *args, **kwargs):
        """
        Save with version auto-increment.

        On update (not force_insert), atomically increments the version
        field so concurrent modifications are detectable.
        """
        is_update = not self._state.adding and not kwargs.get("force_insert", False)
        if is_update:
            self.version = F("version") + 1
        super().save(*args, **kwargs)
        if is_update:
            self.refresh_from_db(fields=["version"])

    @property
    def description(self) -> str:
        """Order description shown on the gateway payment page."""
        return f"{self.plan_name or 'Plan'} Subscription"

    def assign_tracking_id(self, tracking_id: str) -> None:
        """
        Record the gateway tracking id, which may only be set once.

        Raises:
            InconsistentStatusError: If a different tracking id is already stored
        """
        if self.gateway_tracking_id and self.gateway_tracking_id != tracking_id:
            raise InconsistentStatusError(
                f"Order {self.order_id} already has tracking id {self.gateway_tracking_id}",
                details={
                    "order_id": self.order_id,
                    "current_tracking_id": self.gateway_tracking_id,
                    "attempted_tracking_id": tracking_id,
                },
            )
        self.gateway_tracking_id = tracking_id

    # ==========================================================================
    # State Transitions (django-fsm)
    # ==========================================================================

    @transition(
        field=state,
        source=PaymentOrderState.CREATED,
        target=PaymentOrderState.PENDING,
    )
    def submit(self, tracking_id: str, redirect_url: str):
        """
        Record a successful submission to the gateway.

        Transition: CREATED -> PENDING

        The payer can now be sent to the redirect URL.
        """
        self.assign_tracking_id(tracking_id)
        self.redirect_url = redirect_url

    @transition(
        field=state,
        source=PaymentOrderState.PENDING,
        target=PaymentOrderState.COMPLETED,
    )
    def complete(self):
        """
        Mark the payment as completed.

        Transition: PENDING -> COMPLETED

        A PaymentRecord must be created in the same transaction.
        """
        self.completed_at = timezone.now()

    @transition(
        field=state,
        source=PaymentOrderState.PENDING,
        target=PaymentOrderState.FAILED,
    )
    def fail(self):
        """
        Mark the payment as failed.

        Transition: PENDING -> FAILED
        """
        self.failed_at = timezone.now()

    @transition(
        field=state,
        source=PaymentOrderState.PENDING,
        target=PaymentOrderState.INVALID,
    )
    def invalidate(self):
        """
        Mark the payment as invalid.

        Transition: PENDING -> INVALID
        """
        self.failed_at = timezone.now()

    @transition(
        field=state,
        source=PaymentOrderState.CREATED,
        target=PaymentOrderState.ERROR,
    )
    def mark_error(self, reason: str):
        """
        Record a local integration failure.

        Transition: CREATED -> ERROR

        Called when submission could not produce a tracking id, e.g. the
        gateway rejected the order or answered without a redirect URL.
        """
        self.failure_reason = reason
        self.failed_at = timezone.now()

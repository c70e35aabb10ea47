import uuid

import django.db.models.deletion
import django_fsm
from django.db import migrations, models


class Migration(migrations.Migration):

    initial = True

    dependencies = []

    operations = [
        migrations.CreateModel(
            name="PaymentOrder",
            fields=[
                (
                    "created_at",
                    models.DateTimeField(
                        auto_now_add=True,
                        db_index=True,
                        help_text="Timestamp when this record was created",
                    ),
                ),
                (
                    "updated_at",
                    models.DateTimeField(
                        auto_now=True,
                        help_text="Timestamp when this record was last modified",
                    ),
                ),
                (
                    "id",
                    models.UUIDField(
                        default=uuid.uuid4,
                        editable=False,
                        help_text="Unique identifier for this record",
                        primary_key=True,
                        serialize=False,
                    ),
                ),
                (
                    "order_id",
                    models.CharField(
                        editable=False,
                        help_text="Caller-generated order id sent to the gateway as merchant reference",
                        max_length=64,
                        unique=True,
                    ),
                ),
                (
                    "amount",
                    models.DecimalField(
                        decimal_places=2,
                        help_text="Order amount in major currency units",
                        max_digits=12,
                    ),
                ),
                (
                    "currency",
                    models.CharField(
                        help_text="ISO 4217 currency code (uppercase)",
                        max_length=3,
                    ),
                ),
                (
                    "customer_email",
                    models.EmailField(
                        help_text="Payer email, sent as billing email address",
                        max_length=254,
                    ),
                ),
                (
                    "customer_name",
                    models.CharField(
                        blank=True,
                        default="",
                        help_text="Payer full name, split into first/last name for the gateway",
                        max_length=255,
                    ),
                ),
                (
                    "plan_id",
                    models.CharField(
                        blank=True,
                        default="",
                        help_text="Opaque reference to the purchased plan",
                        max_length=100,
                    ),
                ),
                (
                    "plan_name",
                    models.CharField(
                        blank=True,
                        default="",
                        help_text="Plan name, used in the order description",
                        max_length=255,
                    ),
                ),
                (
                    "gateway_tracking_id",
                    models.CharField(
                        blank=True,
                        help_text="Pesapal order_tracking_id, set once after submission",
                        max_length=100,
                        null=True,
                        unique=True,
                    ),
                ),
                (
                    "redirect_url",
                    models.URLField(
                        blank=True,
                        default="",
                        help_text="Gateway payment page the payer is sent to",
                        max_length=1000,
                    ),
                ),
                (
                    "raw_gateway_payload",
                    models.JSONField(
                        blank=True,
                        default=dict,
                        help_text="Last raw submission, status or callback body from the gateway",
                    ),
                ),
                (
                    "state",
                    django_fsm.FSMField(
                        choices=[
                            ("created", "Created"),
                            ("pending", "Pending"),
                            ("completed", "Completed"),
                            ("failed", "Failed"),
                            ("invalid", "Invalid"),
                            ("error", "Error"),
                        ],
                        db_index=True,
                        default="created",
                        help_text="Current state of the payment order (managed by FSM)",
                        max_length=50,
                        protected=True,
                    ),
                ),
                (
                    "status_source",
                    models.CharField(
                        choices=[
                            ("intake", "Order Intake"),
                            ("submission", "Submission Response"),
                            ("callback", "Gateway Callback"),
                            ("poll", "Status Poll"),
                        ],
                        default="intake",
                        help_text="Channel that last wrote the state",
                        max_length=20,
                    ),
                ),
                (
                    "version",
                    models.PositiveIntegerField(
                        default=1,
                        help_text="Incremented on each save",
                    ),
                ),
                (
                    "completed_at",
                    models.DateTimeField(
                        blank=True,
                        help_text="When the gateway reported the payment completed",
                        null=True,
                    ),
                ),
                (
                    "failed_at",
                    models.DateTimeField(
                        blank=True,
                        help_text="When the order reached failed, invalid or error",
                        null=True,
                    ),
                ),
                (
                    "failure_reason",
                    models.TextField(
                        blank=True,
                        help_text="Detailed reason if the order could not be submitted",
                        null=True,
                    ),
                ),
            ],
            options={
                "verbose_name": "Payment Order",
                "verbose_name_plural": "Payment Orders",
                "ordering": ["-created_at"],
                "indexes": [
                    models.Index(
                        fields=["state", "created_at"],
                        name="payments_pa_state_5d1c2e_idx",
                    ),
                    models.Index(
                        fields=["customer_email", "created_at"],
                        name="payments_pa_custome_8a4f10_idx",
                    ),
                ],
                "constraints": [
                    models.CheckConstraint(
                        condition=models.Q(("amount__gt", 0)),
                        name="payment_order_amount_positive",
                    ),
                ],
            },
        ),
        migrations.CreateModel(
            name="PaymentRecord",
            fields=[
                (
                    "created_at",
                    models.DateTimeField(
                        auto_now_add=True,
                        db_index=True,
                        help_text="Timestamp when this record was created",
                    ),
                ),
                (
                    "updated_at",
                    models.DateTimeField(
                        auto_now=True,
                        help_text="Timestamp when this record was last modified",
                    ),
                ),
                (
                    "id",
                    models.UUIDField(
                        default=uuid.uuid4,
                        editable=False,
                        help_text="Unique identifier for this record",
                        primary_key=True,
                        serialize=False,
                    ),
                ),
                (
                    "order_id",
                    models.CharField(
                        help_text="Business id of the paid order",
                        max_length=64,
                        unique=True,
                    ),
                ),
                (
                    "gateway_tracking_id",
                    models.CharField(
                        blank=True,
                        default="",
                        help_text="Pesapal order_tracking_id of the paid order",
                        max_length=100,
                    ),
                ),
                (
                    "email",
                    models.EmailField(help_text="Payer email", max_length=254),
                ),
                (
                    "plan_id",
                    models.CharField(blank=True, default="", max_length=100),
                ),
                (
                    "plan_name",
                    models.CharField(blank=True, default="", max_length=255),
                ),
                (
                    "amount",
                    models.DecimalField(
                        decimal_places=2,
                        help_text="Amount paid in major currency units",
                        max_digits=12,
                    ),
                ),
                (
                    "currency",
                    models.CharField(
                        help_text="ISO 4217 currency code",
                        max_length=3,
                    ),
                ),
                (
                    "payment_method",
                    models.CharField(
                        default="pesapal",
                        help_text="Gateway the payment went through",
                        max_length=20,
                    ),
                ),
                (
                    "payment_order",
                    models.OneToOneField(
                        help_text="Order this payment record was derived from",
                        on_delete=django.db.models.deletion.PROTECT,
                        related_name="payment_record",
                        to="payments.paymentorder",
                    ),
                ),
            ],
            options={
                "verbose_name": "Payment Record",
                "verbose_name_plural": "Payment Records",
                "ordering": ["-created_at"],
                "indexes": [
                    models.Index(
                        fields=["email", "created_at"],
                        name="payments_pa_email_3b7e91_idx",
                    ),
                ],
            },
        ),
        migrations.CreateModel(
            name="StatusAnomaly",
            fields=[
                (
                    "created_at",
                    models.DateTimeField(
                        auto_now_add=True,
                        db_index=True,
                        help_text="Timestamp when this record was created",
                    ),
                ),
                (
                    "updated_at",
                    models.DateTimeField(
                        auto_now=True,
                        help_text="Timestamp when this record was last modified",
                    ),
                ),
                (
                    "id",
                    models.UUIDField(
                        default=uuid.uuid4,
                        editable=False,
                        help_text="Unique identifier for this record",
                        primary_key=True,
                        serialize=False,
                    ),
                ),
                (
                    "current_state",
                    models.CharField(
                        help_text="State of the order when the update arrived",
                        max_length=20,
                    ),
                ),
                (
                    "attempted_state",
                    models.CharField(
                        help_text="State the update tried to write",
                        max_length=20,
                    ),
                ),
                (
                    "source",
                    models.CharField(
                        choices=[
                            ("intake", "Order Intake"),
                            ("submission", "Submission Response"),
                            ("callback", "Gateway Callback"),
                            ("poll", "Status Poll"),
                        ],
                        help_text="Channel the rejected update came from",
                        max_length=20,
                    ),
                ),
                (
                    "message",
                    models.TextField(help_text="Why the update was rejected"),
                ),
                (
                    "payload",
                    models.JSONField(
                        blank=True,
                        default=dict,
                        help_text="Raw gateway body that carried the update",
                    ),
                ),
                (
                    "reviewed",
                    models.BooleanField(
                        default=False,
                        help_text="Whether an operator has looked at this anomaly",
                    ),
                ),
                (
                    "payment_order",
                    models.ForeignKey(
                        help_text="Order the rejected update was aimed at",
                        on_delete=django.db.models.deletion.CASCADE,
                        related_name="status_anomalies",
                        to="payments.paymentorder",
                    ),
                ),
            ],
            options={
                "verbose_name": "Status Anomaly",
                "verbose_name_plural": "Status Anomalies",
                "ordering": ["-created_at"],
                "indexes": [
                    models.Index(
                        fields=["reviewed", "created_at"],
                        name="payments_st_reviewe_c2d0a4_idx",
                    ),
                    models.Index(
                        fields=["payment_order", "created_at"],
                        name="payments_st_payment_71e5b8_idx",
                    ),
                ],
            },
        ),
    ]

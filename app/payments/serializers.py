"""
DRF serializers for payments app.

This module provides serializers for:
- Pesapal order intake (camelCase request fields)
- Order status responses

Related files:
    - views.py: Payment API views
    - services/order_reconciler.py: CreateOrderParams

Usage:
    serializer = CreatePesapalOrderSerializer(data=request.data)
    if serializer.is_valid():
        params = serializer.to_params()
"""

from __future__ import annotations

from decimal import Decimal

from rest_framework import serializers

from payments.models import PaymentOrder
from payments.services import CreateOrderParams


REQUIRED_ORDER_FIELDS = ["amount", "currency", "customerEmail"]


class CreatePesapalOrderSerializer(serializers.Serializer):
    """
    Serializer for order creation requests.

    Fields:
        amount: Positive amount in major currency units
        currency: ISO 4217 code, upper-cased
        customerEmail: Payer email
        customerName: Optional payer full name
        planId / planName: Optional plan references

    Usage:
        serializer = CreatePesapalOrderSerializer(data=request.data)
        serializer.is_valid(raise_exception=True)
        result = OrderReconciler().create_order(serializer.to_params())
    """

    amount = serializers.DecimalField(
        max_digits=12,
        decimal_places=2,
        min_value=Decimal("0.01"),
        help_text="Amount in major currency units",
    )
    currency = serializers.CharField(
        min_length=3,
        max_length=3,
        help_text="ISO 4217 currency code, e.g. KES",
    )
    customerEmail = serializers.EmailField(
        help_text="Payer email address",
    )
    customerName = serializers.CharField(
        max_length=255,
        required=False,
        allow_blank=True,
        default="",
    )
    planId = serializers.CharField(
        max_length=100,
        required=False,
        allow_blank=True,
        default="",
    )
    planName = serializers.CharField(
        max_length=255,
        required=False,
        allow_blank=True,
        default="",
    )

    def validate_currency(self, value: str) -> str:
        return value.strip().upper()

    def to_params(self) -> CreateOrderParams:
        """Map validated camelCase fields onto CreateOrderParams."""
        data = self.validated_data
        return CreateOrderParams(
            amount=data["amount"],
            currency=data["currency"],
            customer_email=data["customerEmail"],
            customer_name=data.get("customerName", ""),
            plan_id=data.get("planId", ""),
            plan_name=data.get("planName", ""),
        )


class PaymentOrderStatusSerializer(serializers.ModelSerializer):
    """
    Order status response.

    Output:
        {
            "orderId": "BRANDIFY-1718000000000-42",
            "status": "completed",
            "trackingId": "T-1",
            "details": {...}
        }
    """

    orderId = serializers.CharField(source="order_id", read_only=True)
    status = serializers.CharField(source="state", read_only=True)
    trackingId = serializers.CharField(source="gateway_tracking_id", read_only=True)
    details = serializers.SerializerMethodField()

    class Meta:
        model = PaymentOrder
        fields = ["orderId", "status", "trackingId", "details"]

    def get_details(self, obj: PaymentOrder) -> dict:
        payload = obj.raw_gateway_payload or {}
        return {
            "amount": str(obj.amount),
            "currency": obj.currency,
            "statusSource": obj.status_source,
            "paymentStatusDescription": payload.get("payment_status_description"),
            "paymentMethod": payload.get("payment_method"),
            "confirmationCode": payload.get("confirmation_code"),
            "failureReason": obj.failure_reason,
            "createdAt": obj.created_at.isoformat() if obj.created_at else None,
            "completedAt": obj.completed_at.isoformat() if obj.completed_at else None,
        }

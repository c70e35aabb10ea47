"""
Tests for payment domain models.

Tests model field validation, constraints, defaults, and basic
functionality for PaymentOrder, PaymentRecord and StatusAnomaly.
"""

import uuid
from decimal import Decimal

import pytest
from django.db import IntegrityError, transaction

from payments.models import PaymentOrder, PaymentRecord, StatusAnomaly
from payments.state_machines import PaymentOrderState, StatusSource
from payments.tests.factories import (
    PaymentOrderFactory,
    PaymentRecordFactory,
    StatusAnomalyFactory,
)


# =============================================================================
# PaymentOrder Tests
# =============================================================================


class TestPaymentOrderModel:
    """Tests for PaymentOrder model."""

    def test_create_with_required_fields(self, db):
        """Should create order with defaults for everything optional."""
        order = PaymentOrder.objects.create(
            order_id="BRANDIFY-1718000000000-1",
            amount=Decimal("1000.00"),
            currency="KES",
            customer_email="a@b.com",
        )

        assert isinstance(order.pk, uuid.UUID)
        assert order.state == PaymentOrderState.CREATED
        assert order.status_source == StatusSource.INTAKE
        assert order.gateway_tracking_id is None
        assert order.version == 1
        assert order.raw_gateway_payload == {}

    def test_order_id_unique(self, db):
        PaymentOrderFactory(order_id="DUP-1")

        with pytest.raises(IntegrityError), transaction.atomic():
            PaymentOrderFactory(order_id="DUP-1")

    def test_tracking_id_unique(self, db, pending_order):
        other = PaymentOrderFactory()
        other.submit(tracking_id=pending_order.gateway_tracking_id, redirect_url="https://x.test")

        with pytest.raises(IntegrityError), transaction.atomic():
            other.save()

    def test_several_orders_without_tracking_id(self, db):
        """NULL tracking ids do not collide."""
        PaymentOrderFactory()
        PaymentOrderFactory()

        assert PaymentOrder.objects.filter(gateway_tracking_id__isnull=True).count() == 2

    def test_amount_must_be_positive(self, db):
        with pytest.raises(IntegrityError), transaction.atomic():
            PaymentOrderFactory(amount=Decimal("0"))

    def test_version_increments_on_save(self, db, created_order):
        assert created_order.version == 1

        created_order.customer_name = "Grace Hopper"
        created_order.save()
        assert created_order.version == 2

        created_order.save()
        assert created_order.version == 3

    def test_description_uses_plan_name(self, db):
        assert PaymentOrderFactory(plan_name="Pro").description == "Pro Subscription"
        assert PaymentOrderFactory(plan_name="").description == "Plan Subscription"

    def test_str(self, db, created_order):
        assert created_order.order_id in str(created_order)
        assert "created" in str(created_order)


# =============================================================================
# PaymentRecord Tests
# =============================================================================


class TestPaymentRecordModel:
    """Tests for PaymentRecord model."""

    def test_create_from_order(self, db, completed_order):
        record = PaymentRecordFactory(payment_order=completed_order)

        assert record.order_id == completed_order.order_id
        assert record.amount == completed_order.amount
        assert record.payment_method == PaymentRecord.PAYMENT_METHOD_PESAPAL
        assert completed_order.payment_record == record

    def test_one_record_per_order_id(self, db, completed_order):
        PaymentRecordFactory(payment_order=completed_order)

        with pytest.raises(IntegrityError), transaction.atomic():
            PaymentRecord.objects.create(
                payment_order=PaymentOrderFactory(),
                order_id=completed_order.order_id,
                email="a@b.com",
                amount=Decimal("1.00"),
                currency="KES",
            )

    def test_order_cannot_be_deleted_with_record(self, db, completed_order):
        from django.db.models import ProtectedError

        PaymentRecordFactory(payment_order=completed_order)

        with pytest.raises(ProtectedError):
            completed_order.delete()


# =============================================================================
# StatusAnomaly Tests
# =============================================================================


class TestStatusAnomalyModel:
    """Tests for StatusAnomaly model."""

    def test_defaults(self, db):
        anomaly = StatusAnomalyFactory()

        assert anomaly.reviewed is False
        assert anomaly.payload == {}
        assert anomaly.payment_order.status_anomalies.count() == 1

    def test_str(self, db):
        anomaly = StatusAnomalyFactory(source=StatusSource.CALLBACK)

        assert str(anomaly) == "StatusAnomaly(completed -> failed, callback)"

    def test_deleted_with_order(self, db):
        anomaly = StatusAnomalyFactory()
        anomaly.payment_order.delete()

        assert not StatusAnomaly.objects.filter(pk=anomaly.pk).exists()

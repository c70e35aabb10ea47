"""
Pytest fixtures for payment tests.

This module provides fixtures for creating payment-related test data and
for replacing the two external services: the Redis lock store (fakeredis)
and the Pesapal gateway (FakeGateway).

Usage:
    def test_callback_completes_order(reconciler, pending_order):
        result = reconciler.handle_callback(
            pending_order.gateway_tracking_id, status="COMPLETED"
        )
        assert result.data.order.state == PaymentOrderState.COMPLETED
"""

import fakeredis
import pytest

from payments.services import OrderReconciler
from payments.tests.factories import PaymentOrderFactory
from payments.tests.fakes import FakeGateway


# =============================================================================
# External Service Fixtures
# =============================================================================


@pytest.fixture(autouse=True)
def lock_store(mocker):
    """
    In-memory Redis for the per-order locks.

    Patched into payments.locks so every test runs without a Redis server.
    """
    client = fakeredis.FakeRedis()
    mocker.patch("payments.locks.get_redis_connection", return_value=client)
    return client


@pytest.fixture(autouse=True)
def clear_notification_cache():
    """Forget IPN ids resolved by earlier tests."""
    OrderReconciler.clear_notification_cache()
    yield
    OrderReconciler.clear_notification_cache()


@pytest.fixture
def gateway():
    """Scriptable fake Pesapal gateway."""
    return FakeGateway()


@pytest.fixture
def reconciler(gateway):
    """OrderReconciler wired to the fake gateway, with no retry delay."""
    return OrderReconciler(gateway=gateway, sleep=lambda seconds: None)


@pytest.fixture
def shared_gateway(mocker, gateway):
    """Make the process-wide client (used by views and tasks) the fake gateway."""
    mocker.patch(
        "payments.services.order_reconciler.get_pesapal_client",
        return_value=gateway,
    )
    return gateway


# =============================================================================
# PaymentOrder State Fixtures
# =============================================================================


@pytest.fixture
def created_order(db):
    """Create an order that has not been submitted."""
    return PaymentOrderFactory()


@pytest.fixture
def pending_order(db):
    """Create an order submitted to the gateway with tracking id T-100."""
    order = PaymentOrderFactory()
    order.submit(tracking_id="T-100", redirect_url="https://pay.test/iframe?T-100")
    order.save()
    return order


@pytest.fixture
def completed_order(db):
    """Create an order the gateway reported completed (no record attached)."""
    order = PaymentOrderFactory()
    order.submit(tracking_id="T-200", redirect_url="https://pay.test/iframe?T-200")
    order.save()
    order.complete()
    order.save()
    return order

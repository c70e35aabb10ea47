"""
End-to-end payment journeys over HTTP.

Each test drives the public endpoints in the order a checkout does:
create the order, receive Pesapal's IPN and/or poll, then read the status.
"""

import pytest
from django.test import Client
from django.urls import reverse
from rest_framework.test import APIClient

from payments.models import PaymentRecord, StatusAnomaly


@pytest.fixture
def api_client():
    return APIClient()


def create_order(api_client):
    response = api_client.post(
        reverse("payments:pesapal_order_create"),
        {"amount": 1000, "currency": "KES", "customerEmail": "a@b.com", "planName": "Pro"},
        format="json",
    )
    assert response.status_code == 201
    return response.json()


def read_status(api_client, order_id):
    response = api_client.get(reverse("payments:pesapal_order_status"), {"orderId": order_id})
    assert response.status_code == 200
    return response.json()


@pytest.mark.django_db
class TestCheckoutJourney:
    """Create, pay, confirm."""

    def test_ipn_then_status(self, api_client, shared_gateway):
        order = create_order(api_client)
        assert order["status"] == "pending"

        shared_gateway.statuses[order["trackingId"]] = "Completed"
        ipn = Client().get(
            reverse("payments:pesapal_ipn"),
            {
                "OrderTrackingId": order["trackingId"],
                "OrderMerchantReference": order["orderId"],
                "OrderNotificationType": "IPNCHANGE",
            },
        )
        assert ipn.status_code == 200
        assert ipn.json()["status"] == 200

        status = read_status(api_client, order["orderId"])
        assert status["status"] == "completed"
        assert status["details"]["statusSource"] == "callback"

        record = PaymentRecord.objects.get(order_id=order["orderId"])
        assert record.email == "a@b.com"
        assert record.plan_name == "Pro"

    def test_lost_ipn_healed_by_poll(self, api_client, shared_gateway):
        order = create_order(api_client)

        assert read_status(api_client, order["orderId"])["status"] == "pending"

        shared_gateway.statuses[order["trackingId"]] = "Failed"
        status = read_status(api_client, order["orderId"])
        assert status["status"] == "failed"
        assert status["details"]["statusSource"] == "poll"

        # A late, contradicting IPN is acknowledged but changes nothing
        ipn = Client().post(
            reverse("payments:pesapal_ipn"),
            {"order_tracking_id": order["trackingId"], "payment_status": "COMPLETED"},
            content_type="application/json",
        )
        assert ipn.status_code == 200
        assert read_status(api_client, order["orderId"])["status"] == "failed"
        assert PaymentRecord.objects.count() == 0
        assert StatusAnomaly.objects.count() == 1

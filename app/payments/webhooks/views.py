"""
Webhook endpoint views for Pesapal.

This module provides the HTTP endpoint Pesapal calls (IPN) when an order's
status changes. Pesapal sends only identifiers, as JSON (POST IPNs) or as
query parameters (GET IPNs); the reconciler fetches the status itself when
none is supplied.

Pesapal retries an IPN until it receives the acknowledgement body with
"status": 200. The view therefore answers:
- 200 + ack: update applied, repeated, or rejected as an anomaly
- 400: no tracking id in the request
- 404: tracking id unknown
- 500 + ack with "status": 500: transient failure, Pesapal should retry

Usage:
    # In urls.py
    from payments.webhooks.views import pesapal_ipn

    urlpatterns = [
        path("pesapal/ipn/", pesapal_ipn, name="pesapal_ipn"),
    ]
"""

from __future__ import annotations

import json
import logging
from typing import Any

from django.db import DatabaseError
from django.http import HttpRequest, JsonResponse
from django.views.decorators.csrf import csrf_exempt
from django.views.decorators.http import require_http_methods

from core.exceptions import NotFoundError
from payments.services import OrderReconciler


logger = logging.getLogger(__name__)

DEFAULT_NOTIFICATION_TYPE = "IPNCHANGE"


def _first(data: dict[str, Any], *keys: str) -> Any:
    for key in keys:
        value = data.get(key)
        if value not in (None, ""):
            return value
    return None


def _read_notification(request: HttpRequest) -> dict[str, Any] | None:
    """Collect notification fields from query string, form data or JSON body."""
    data: dict[str, Any] = request.GET.dict()
    if request.method == "POST":
        if request.content_type == "application/json":
            if request.body:
                try:
                    body = json.loads(request.body)
                except ValueError:
                    return None
                if not isinstance(body, dict):
                    return None
                data.update(body)
        else:
            data.update(request.POST.dict())
    return data


def _ack(
    notification_type: str,
    tracking_id: str,
    merchant_reference: str,
    status_code: int,
) -> JsonResponse:
    return JsonResponse(
        {
            "orderNotificationType": notification_type,
            "orderTrackingId": tracking_id,
            "orderMerchantReference": merchant_reference,
            "status": status_code,
        },
        status=status_code,
    )


@csrf_exempt
@require_http_methods(["GET", "POST"])
def pesapal_ipn(request: HttpRequest) -> JsonResponse:
    """
    Receive a Pesapal instant payment notification.

    Accepted fields (either spelling):
        order_tracking_id / OrderTrackingId: required
        order_merchant_reference / OrderMerchantReference: echoed back
        order_notification_type / OrderNotificationType: echoed back
        payment_status / PaymentStatus: optional status; queried when absent

    Security:
    - CSRF exemption required for external webhooks
    - The status is confirmed against the gateway unless supplied, and an
      unknown tracking id never creates an order
    """
    data = _read_notification(request)
    if data is None:
        logger.warning("IPN with unreadable body")
        return JsonResponse({"message": "Invalid notification body", "status": 400}, status=400)

    tracking_id = _first(data, "order_tracking_id", "OrderTrackingId")
    merchant_reference = _first(data, "order_merchant_reference", "OrderMerchantReference") or ""
    notification_type = (
        _first(data, "order_notification_type", "OrderNotificationType")
        or DEFAULT_NOTIFICATION_TYPE
    )
    payment_status = _first(data, "payment_status", "PaymentStatus")

    if not tracking_id:
        logger.warning("IPN without order tracking id")
        return JsonResponse(
            {"message": "Missing order tracking id", "status": 400},
            status=400,
        )

    tracking_id = str(tracking_id)
    logger.info(
        "Received Pesapal IPN",
        extra={
            "tracking_id": tracking_id,
            "notification_type": notification_type,
            "has_status": payment_status is not None,
        },
    )

    try:
        result = OrderReconciler().handle_callback(
            tracking_id,
            status=payment_status,
            payload=data,
        )
    except DatabaseError:
        logger.error(
            "Database error while applying IPN",
            extra={"tracking_id": tracking_id},
            exc_info=True,
        )
        return _ack(notification_type, tracking_id, merchant_reference, 500)

    if result.data is not None:
        merchant_reference = result.data.order.order_id

    if not result.success:
        if isinstance(result.exception, NotFoundError):
            return JsonResponse(
                {
                    "message": result.error,
                    "orderTrackingId": tracking_id,
                    "status": 404,
                },
                status=404,
            )
        return _ack(notification_type, tracking_id, merchant_reference, 500)

    logger.info(
        "Pesapal IPN processed",
        extra={"tracking_id": tracking_id, "outcome": result.data.outcome},
    )
    return _ack(notification_type, tracking_id, merchant_reference, 200)

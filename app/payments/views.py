"""
DRF views for payments app.

This module provides API views for:
- Pesapal order creation
- Order status lookup (with a live gateway poll)

Related files:
    - services/order_reconciler.py: OrderReconciler
    - serializers.py: Request/response serializers
    - webhooks/views.py: Pesapal IPN endpoint
    - urls.py: URL routing

Endpoints:
    POST /api/v1/payments/pesapal/orders/ - Create and submit an order
    GET /api/v1/payments/pesapal/orders/status/?orderId= - Order status

Security:
    - Endpoints are public; the checkout front end calls them directly
"""

from __future__ import annotations

import logging

from rest_framework import status
from rest_framework.permissions import AllowAny
from rest_framework.response import Response
from rest_framework.views import APIView

from core.exceptions import NotFoundError, ValidationError
from core.services import ServiceResult

from payments.exceptions import GatewayError, GatewayUnavailableError, LockAcquisitionError
from payments.services import OrderReconciler

from .serializers import (
    REQUIRED_ORDER_FIELDS,
    CreatePesapalOrderSerializer,
    PaymentOrderStatusSerializer,
)

logger = logging.getLogger(__name__)


def status_for_failure(result: ServiceResult) -> int:
    """Map a failed service result onto an HTTP status code."""
    exc = result.exception
    if isinstance(exc, ValidationError):
        return status.HTTP_400_BAD_REQUEST
    if isinstance(exc, NotFoundError):
        return status.HTTP_404_NOT_FOUND
    if isinstance(exc, (GatewayUnavailableError, LockAcquisitionError)):
        return status.HTTP_503_SERVICE_UNAVAILABLE
    if isinstance(exc, GatewayError):
        return status.HTTP_502_BAD_GATEWAY
    return status.HTTP_500_INTERNAL_SERVER_ERROR


class PesapalOrderCreateView(APIView):
    """
    Create an order and submit it to Pesapal.

    POST /api/v1/payments/pesapal/orders/

    Request body:
        {
            "amount": 1000,
            "currency": "KES",
            "customerEmail": "a@b.com",
            "customerName": "Ada Lovelace",
            "planId": "pro",
            "planName": "Pro"
        }

    Returns:
        201 {"iframeUrl", "orderId", "trackingId", "status", "message"}
        400 {"message": "Missing required fields", "required", "errors"}
        502 gateway rejected the order or answered malformed
        503 gateway unavailable
    """

    permission_classes = [AllowAny]
    authentication_classes = []

    def post(self, request):
        serializer = CreatePesapalOrderSerializer(data=request.data)
        if not serializer.is_valid():
            return Response(
                {
                    "message": "Missing required fields",
                    "required": REQUIRED_ORDER_FIELDS,
                    "errors": serializer.errors,
                },
                status=status.HTTP_400_BAD_REQUEST,
            )

        result = OrderReconciler().create_order(serializer.to_params())

        if not result.success:
            body = {
                "message": result.error,
                "errorCode": result.error_code,
            }
            if result.errors:
                body["required"] = REQUIRED_ORDER_FIELDS
                body["errors"] = result.errors
            if result.data is not None:
                body["orderId"] = result.data.order_id
                body["status"] = result.data.state
            return Response(body, status=status_for_failure(result))

        order = result.data
        return Response(
            {
                "iframeUrl": order.redirect_url,
                "orderId": order.order_id,
                "trackingId": order.gateway_tracking_id,
                "status": order.state,
                "message": "Order created successfully",
            },
            status=status.HTTP_201_CREATED,
        )


class PesapalOrderStatusView(APIView):
    """
    Return the status of an order, polling the gateway if it is not final.

    GET /api/v1/payments/pesapal/orders/status/?orderId=BRANDIFY-...

    Returns:
        200 {"orderId", "status", "trackingId", "details"}
        400 orderId missing
        404 unknown order
        503 gateway unavailable
    """

    permission_classes = [AllowAny]
    authentication_classes = []

    def get(self, request):
        order_id = (request.query_params.get("orderId") or "").strip()
        if not order_id:
            return Response(
                {"message": "orderId query parameter is required"},
                status=status.HTTP_400_BAD_REQUEST,
            )

        result = OrderReconciler().poll_status(order_id)

        if not result.success:
            return Response(
                {
                    "message": result.error,
                    "errorCode": result.error_code,
                    "orderId": order_id,
                },
                status=status_for_failure(result),
            )

        return Response(PaymentOrderStatusSerializer(result.data.order).data)

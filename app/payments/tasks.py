"""
Celery tasks for payment processing.

This module provides async tasks for:
- Polling the gateway for a single order's status
- Periodically healing PENDING orders whose callback never arrived

Usage:
    from payments.tasks import poll_order_status

    # Queue a poll for one order
    poll_order_status.delay("BRANDIFY-1718000000000-42")

    # Scan for stale pending orders (typically via celery beat)
    from payments.tasks import poll_pending_orders
    poll_pending_orders.delay()
"""

from __future__ import annotations

import logging
from datetime import timedelta

from celery import shared_task
from django.conf import settings
from django.utils import timezone

from payments.exceptions import GatewayUnavailableError, LockAcquisitionError
from payments.models import PaymentOrder
from payments.state_machines import PaymentOrderState

logger = logging.getLogger(__name__)


# =============================================================================
# Constants
# =============================================================================

MAX_POLL_RETRIES = 5


# =============================================================================
# Individual Poll Task
# =============================================================================


@shared_task(
    bind=True,
    autoretry_for=(GatewayUnavailableError, LockAcquisitionError),
    retry_backoff=True,
    retry_backoff_max=300,
    retry_kwargs={"max_retries": MAX_POLL_RETRIES},
    acks_late=True,
)
def poll_order_status(self, order_id: str) -> dict:
    """
    Poll the gateway for one order and apply the result.

    Args:
        order_id: Business id of the PaymentOrder

    Returns:
        Dict with:
        - status: "applied", "unchanged", "rejected", "ignored",
                  "not_found" or "failed"
        - order_id: The order polled
        - state: Stored state after the poll
        - error_code: Error code if failed

    Raises:
        GatewayUnavailableError: Re-raised to trigger Celery retry
        LockAcquisitionError: Re-raised to trigger Celery retry
    """
    from payments.services import OrderReconciler

    logger.info(
        "Polling order status",
        extra={"order_id": order_id, "celery_retries": self.request.retries},
    )

    result = OrderReconciler().poll_status(order_id)

    if not result.success:
        if isinstance(result.exception, (GatewayUnavailableError, LockAcquisitionError)):
            raise result.exception
        if result.data is None:
            return {"status": "not_found", "order_id": order_id}
        return {
            "status": "failed",
            "order_id": order_id,
            "state": result.data.order.state,
            "error_code": result.error_code,
        }

    return {
        "status": str(result.data.outcome),
        "order_id": order_id,
        "state": result.data.order.state,
    }


# =============================================================================
# Periodic Task: Scan for Pending Orders
# =============================================================================


@shared_task
def poll_pending_orders() -> dict:
    """
    Queue status polls for PENDING orders that have not settled.

    Picks orders older than PESAPAL_POLL_MIN_AGE_SECONDS, oldest first, at
    most PESAPAL_POLL_BATCH_SIZE per run. Scheduled via celery beat every
    PESAPAL_POLL_INTERVAL_SECONDS.

    Returns:
        Dict with count of orders queued
    """
    cutoff = timezone.now() - timedelta(seconds=settings.PESAPAL_POLL_MIN_AGE_SECONDS)
    order_ids = list(
        PaymentOrder.objects.filter(
            state=PaymentOrderState.PENDING,
            created_at__lte=cutoff,
            gateway_tracking_id__isnull=False,
        )
        .order_by("created_at")
        .values_list("order_id", flat=True)[: settings.PESAPAL_POLL_BATCH_SIZE]
    )

    for order_id in order_ids:
        poll_order_status.delay(order_id)

    logger.info(
        f"Queued {len(order_ids)} pending orders for polling",
        extra={"queued_count": len(order_ids)},
    )

    return {"queued_count": len(order_ids)}

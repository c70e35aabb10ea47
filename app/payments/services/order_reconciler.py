"""
Order reconciler for the Pesapal payment lifecycle.

This module provides the OrderReconciler class which owns every write to a
PaymentOrder's state. Three channels report status for an order:

- Submission response: CREATED -> PENDING (or ERROR)
- Callback (IPN) from the gateway: PENDING -> terminal
- Poll of the gateway status endpoint: PENDING -> terminal

They may arrive in any order, more than once, and concurrently. The
reconciler makes them converge:

- The first terminal write wins; repeating it is a no-op, contradicting it
  is rejected and recorded as a StatusAnomaly
- Writes for one order are serialized (Redis lock + SELECT ... FOR UPDATE)
- The PaymentRecord is created exactly once, in the same transaction as the
  first transition into COMPLETED
- Gateway calls are made outside the order lock

Usage:
    from payments.services import CreateOrderParams, OrderReconciler

    reconciler = OrderReconciler()
    result = reconciler.create_order(
        CreateOrderParams(
            amount=Decimal("1000"),
            currency="KES",
            customer_email="a@b.com",
        )
    )
    if result.success:
        redirect_to(result.data.redirect_url)

    # Pesapal IPN
    result = reconciler.handle_callback("T-1", status="COMPLETED")

    # Healing poll
    result = reconciler.poll_status("BRANDIFY-1718000000000-42")
"""

from __future__ import annotations

import random
import threading
import time
from dataclasses import dataclass
from decimal import Decimal, InvalidOperation
from typing import TYPE_CHECKING, Any

from django.conf import settings
from django.core.exceptions import ValidationError as DjangoValidationError
from django.core.validators import validate_email
from django.db import IntegrityError, models

from core.services import BaseService, ServiceResult

from payments.adapters import SubmitOrderParams, backoff_delay, get_pesapal_client
from payments.exceptions import (
    GatewayError,
    GatewayUnavailableError,
    InconsistentStatusError,
    InvalidRequestError,
    LockAcquisitionError,
    PaymentNotFoundError,
)
from payments.locks import order_lock
from payments.models import PaymentOrder, PaymentRecord, StatusAnomaly
from payments.state_machines import (
    GATEWAY_TERMINAL_STATES,
    PaymentOrderState,
    StatusSource,
    is_terminal,
    normalize_gateway_status,
)

if TYPE_CHECKING:
    from collections.abc import Callable

    from payments.adapters import PesapalClient, SubmitOrderResult


ORDER_ID_ATTEMPTS = 3

# Matches the amount column: 12 digits, 2 of them decimal places
CENT = Decimal("0.01")
MAX_AMOUNT = Decimal("10000000000")


# =============================================================================
# Parameter & Result Types
# =============================================================================


@dataclass
class CreateOrderParams:
    """
    Parameters for creating an order.

    Attributes:
        amount: Amount in major currency units, must be positive
        currency: ISO 4217 currency code
        customer_email: Payer email, required
        customer_name: Payer full name
        plan_id: Opaque plan reference copied to the payment record
        plan_name: Plan name used in the order description
    """

    amount: Decimal | str | int | float | None
    currency: str | None
    customer_email: str | None
    customer_name: str = ""
    plan_id: str = ""
    plan_name: str = ""

    def validate(self) -> None:
        """
        Normalize and validate the fields in place.

        Raises:
            InvalidRequestError: With per-field messages in details["errors"]
        """
        errors: dict[str, list[str]] = {}

        try:
            amount = Decimal(str(self.amount)) if self.amount is not None else None
        except InvalidOperation:
            amount = None
        if amount is None or not amount.is_finite() or amount <= 0:
            errors["amount"] = ["Amount must be a positive number."]
        elif amount >= MAX_AMOUNT:
            errors["amount"] = [f"Amount must be less than {MAX_AMOUNT}."]
        elif amount != amount.quantize(CENT):
            errors["amount"] = ["Amount must have at most 2 decimal places."]
        else:
            self.amount = amount.quantize(CENT)

        currency = (self.currency or "").strip().upper()
        if not currency:
            errors["currency"] = ["Currency is required."]
        elif len(currency) != 3:
            errors["currency"] = ["Currency must be a 3-letter ISO 4217 code."]
        else:
            self.currency = currency

        email = (self.customer_email or "").strip()
        if not email:
            errors["customer_email"] = ["Customer email is required."]
        else:
            try:
                validate_email(email)
            except DjangoValidationError:
                errors["customer_email"] = ["Enter a valid email address."]
            self.customer_email = email

        self.customer_name = (self.customer_name or "").strip()
        self.plan_id = str(self.plan_id or "")
        self.plan_name = (self.plan_name or "").strip()

        if errors:
            raise InvalidRequestError(
                "Missing required fields",
                details={"errors": errors},
            )


class UpdateOutcome(models.TextChoices):
    """What a status update did to the order."""

    APPLIED = "applied", "Applied"
    UNCHANGED = "unchanged", "Unchanged"
    REJECTED = "rejected", "Rejected"
    IGNORED = "ignored", "Ignored"


@dataclass
class StatusUpdateResult:
    """
    Result of applying one status report to an order.

    Attributes:
        outcome: UpdateOutcome value
        order: The order as stored after the update
        payment_record_created: Whether this update created the PaymentRecord
        anomaly: The StatusAnomaly recorded for a rejected update
    """

    outcome: str
    order: PaymentOrder
    payment_record_created: bool = False
    anomaly: StatusAnomaly | None = None

    @property
    def applied(self) -> bool:
        return self.outcome == UpdateOutcome.APPLIED


# =============================================================================
# Order Reconciler
# =============================================================================


class OrderReconciler(BaseService):
    """
    Single writer of PaymentOrder state.

    Args:
        gateway: Pesapal client; defaults to the shared process client
        sleep: Sleep function used between submission attempts
    """

    # notification ids resolved per IPN URL, shared for the process lifetime
    _notification_ids: dict[str, str] = {}
    _notification_lock = threading.Lock()

    def __init__(
        self,
        gateway: PesapalClient | None = None,
        sleep: Callable[[float], None] = time.sleep,
    ) -> None:
        self._gateway = gateway
        self._sleep = sleep

    @property
    def gateway(self) -> PesapalClient:
        if self._gateway is None:
            self._gateway = get_pesapal_client()
        return self._gateway

    @classmethod
    def clear_notification_cache(cls) -> None:
        """Forget resolved notification ids."""
        with cls._notification_lock:
            cls._notification_ids.clear()

    # =========================================================================
    # Create
    # =========================================================================

    def create_order(self, params: CreateOrderParams) -> ServiceResult[PaymentOrder]:
        """
        Create an order locally and submit it to the gateway.

        The CREATED row is committed before the gateway is called, so the
        outcome of a submission always has a row to land on.

        Returns:
            ServiceResult with the PENDING order on success. On failure the
            result carries the domain exception and, when the order was
            stored, the order in ERROR state as data.
        """
        logger = self.get_logger()

        try:
            params.validate()
        except InvalidRequestError as e:
            result: ServiceResult[PaymentOrder] = ServiceResult.from_exception(e)
            result.errors = e.details.get("errors")
            return result

        order = self._create_local_order(params)
        logger.info(
            "Payment order created",
            extra={
                "order_id": order.order_id,
                "amount": str(order.amount),
                "currency": order.currency,
            },
        )

        submit_params = SubmitOrderParams(
            order_id=order.order_id,
            amount=order.amount,
            currency=order.currency,
            description=order.description,
            callback_url=settings.PESAPAL_CALLBACK_URL,
            notification_id=self.resolve_notification_id(),
            customer_email=order.customer_email,
            customer_name=order.customer_name,
        )

        try:
            submission = self._submit_with_retry(submit_params)
        except GatewayError as e:
            logger.error(
                "Order submission failed",
                extra={"order_id": order.order_id, "error_code": e.error_code},
            )
            try:
                order = self._record_submission_failure(order, e)
            except LockAcquisitionError as lock_error:
                return ServiceResult.from_exception(lock_error, data=order)
            return ServiceResult.from_exception(e, data=order)

        try:
            order = self._record_submission(order, submission)
        except LockAcquisitionError as e:
            return ServiceResult.from_exception(e, data=order)

        logger.info(
            "Payment order submitted",
            extra={"order_id": order.order_id, "tracking_id": order.gateway_tracking_id},
        )
        return ServiceResult.success(order)

    def _create_local_order(self, params: CreateOrderParams) -> PaymentOrder:
        last_error: IntegrityError | None = None
        for _ in range(ORDER_ID_ATTEMPTS):
            order_id = self.generate_order_id()
            try:
                with self.atomic():
                    return PaymentOrder.objects.create(
                        order_id=order_id,
                        amount=params.amount,
                        currency=params.currency,
                        customer_email=params.customer_email,
                        customer_name=params.customer_name,
                        plan_id=params.plan_id,
                        plan_name=params.plan_name,
                        status_source=StatusSource.INTAKE,
                    )
            except IntegrityError as e:
                if not PaymentOrder.objects.filter(order_id=order_id).exists():
                    raise
                # order_id collision; draw a new one
                last_error = e
        raise last_error

    @staticmethod
    def generate_order_id() -> str:
        """Build ``<PREFIX>-<epoch ms>-<0..999>``."""
        prefix = settings.PESAPAL_ORDER_ID_PREFIX
        return f"{prefix}-{int(time.time() * 1000)}-{random.randint(0, 999)}"

    def _submit_with_retry(self, params: SubmitOrderParams) -> SubmitOrderResult:
        """Submit, resending once with the same order id if the gateway is unavailable."""
        try:
            return self.gateway.submit_order(params)
        except GatewayUnavailableError:
            delay = backoff_delay(0, base=settings.PESAPAL_SUBMIT_RETRY_BACKOFF_SECONDS)
            self.get_logger().warning(
                "Gateway unavailable during submission, retrying once",
                extra={"order_id": params.order_id, "delay_seconds": delay},
            )
            self._sleep(delay)
            return self.gateway.submit_order(params)

    def _record_submission(
        self,
        order: PaymentOrder,
        submission: SubmitOrderResult,
    ) -> PaymentOrder:
        with order_lock(order.order_id), self.atomic():
            locked = PaymentOrder.objects.select_for_update().get(pk=order.pk)
            if locked.state != PaymentOrderState.CREATED:
                self.get_logger().warning(
                    "Order left CREATED before its submission was recorded",
                    extra={"order_id": locked.order_id, "state": locked.state},
                )
                return locked
            locked.submit(
                tracking_id=submission.tracking_id,
                redirect_url=submission.redirect_url,
            )
            locked.status_source = StatusSource.SUBMISSION
            locked.raw_gateway_payload = submission.raw_response
            locked.save()
            return locked

    def _record_submission_failure(self, order: PaymentOrder, error: GatewayError) -> PaymentOrder:
        with order_lock(order.order_id), self.atomic():
            locked = PaymentOrder.objects.select_for_update().get(pk=order.pk)
            if locked.state != PaymentOrderState.CREATED:
                return locked
            tracking_id = error.details.get("tracking_id")
            if tracking_id and not locked.gateway_tracking_id:
                locked.assign_tracking_id(tracking_id)
            locked.mark_error(reason=f"{error.error_code}: {error.message}")
            locked.status_source = StatusSource.SUBMISSION
            locked.save()
            return locked

    # =========================================================================
    # Notification id (best effort)
    # =========================================================================

    def resolve_notification_id(self) -> str:
        """
        Return the IPN id to submit orders with.

        Uses PESAPAL_IPN_ID when configured. Otherwise looks up (or
        registers) PESAPAL_IPN_URL with the gateway and remembers the id.
        On any gateway failure the IPN URL itself is returned.
        """
        configured = getattr(settings, "PESAPAL_IPN_ID", "")
        if configured:
            return configured

        ipn_url = settings.PESAPAL_IPN_URL
        with self._notification_lock:
            cached = self._notification_ids.get(ipn_url)
        if cached:
            return cached

        logger = self.get_logger()
        try:
            registration = next(
                (entry for entry in self.gateway.list_ipns() if entry.url == ipn_url),
                None,
            )
            if registration is None:
                registration = self.gateway.register_ipn(ipn_url)
                logger.info(
                    "Registered IPN endpoint",
                    extra={"ipn_url": ipn_url, "ipn_id": registration.ipn_id},
                )
        except GatewayError as e:
            logger.warning(
                "Could not resolve IPN id, falling back to IPN URL",
                extra={"ipn_url": ipn_url, "error_code": e.error_code},
            )
            return ipn_url

        with self._notification_lock:
            self._notification_ids[ipn_url] = registration.ipn_id
        return registration.ipn_id

    # =========================================================================
    # Poll & Callback
    # =========================================================================

    def poll_status(self, order_id: str) -> ServiceResult[StatusUpdateResult]:
        """
        Fetch the gateway status of an order and apply it.

        Terminal orders and orders without a tracking id are returned as
        stored without a remote call.
        """
        order = PaymentOrder.objects.filter(order_id=order_id).first()
        if order is None:
            return ServiceResult.from_exception(
                PaymentNotFoundError(
                    f"Payment order {order_id} not found",
                    details={"order_id": order_id},
                )
            )

        if is_terminal(order.state) or not order.gateway_tracking_id:
            return ServiceResult.success(
                StatusUpdateResult(outcome=UpdateOutcome.UNCHANGED, order=order)
            )

        try:
            status_result = self.gateway.query_status(order.gateway_tracking_id)
            update = self.apply_status_update(
                order.order_id,
                status_result.status,
                StatusSource.POLL,
                status_result.raw_response,
            )
        except (GatewayError, LockAcquisitionError) as e:
            self.get_logger().warning(
                "Order poll failed",
                extra={"order_id": order_id, "error_code": e.error_code},
            )
            return ServiceResult.from_exception(
                e,
                data=StatusUpdateResult(outcome=UpdateOutcome.UNCHANGED, order=order),
            )
        return ServiceResult.success(update)

    def handle_callback(
        self,
        tracking_id: str,
        status: Any = None,
        payload: dict[str, Any] | None = None,
    ) -> ServiceResult[StatusUpdateResult]:
        """
        Apply a gateway callback for ``tracking_id``.

        A callback without a status triggers a status query first. Unknown
        tracking ids produce a not-found failure and no write.
        """
        logger = self.get_logger()
        order = PaymentOrder.objects.filter(gateway_tracking_id=tracking_id).first()
        if order is None:
            logger.warning(
                "Callback for unknown tracking id",
                extra={"tracking_id": tracking_id},
            )
            return ServiceResult.from_exception(
                PaymentNotFoundError(
                    f"No payment order with tracking id {tracking_id}",
                    details={"tracking_id": tracking_id},
                )
            )

        payload = dict(payload or {})
        has_status = status is not None and str(status).strip() != ""

        try:
            if has_status:
                normalized = normalize_gateway_status(status)
            elif is_terminal(order.state):
                return ServiceResult.success(
                    StatusUpdateResult(outcome=UpdateOutcome.UNCHANGED, order=order)
                )
            else:
                status_result = self.gateway.query_status(tracking_id)
                normalized = status_result.status
                payload = {**payload, **status_result.raw_response}

            update = self.apply_status_update(
                order.order_id,
                normalized,
                StatusSource.CALLBACK,
                payload,
            )
        except (GatewayError, LockAcquisitionError) as e:
            logger.error(
                "Callback could not be applied",
                extra={"tracking_id": tracking_id, "error_code": e.error_code},
            )
            return ServiceResult.from_exception(
                e,
                data=StatusUpdateResult(outcome=UpdateOutcome.UNCHANGED, order=order),
            )
        return ServiceResult.success(update)

    # =========================================================================
    # Apply
    # =========================================================================

    def apply_status_update(
        self,
        order_id: str,
        status: PaymentOrderState | str | None,
        source: str,
        payload: dict[str, Any] | None = None,
    ) -> StatusUpdateResult:
        """
        Apply one normalized gateway status to an order.

        Runs under the order lock and a row lock.

        Returns:
            StatusUpdateResult; a conflicting update is REJECTED and recorded
            as a StatusAnomaly rather than raised

        Raises:
            PaymentNotFoundError: Unknown order_id
            LockAcquisitionError: Order lock not obtained in time
        """
        logger = self.get_logger()
        log_context = {"order_id": order_id, "status": status, "source": source}

        if status is None:
            order = PaymentOrder.objects.filter(order_id=order_id).first()
            if order is None:
                raise PaymentNotFoundError(
                    f"Payment order {order_id} not found",
                    details={"order_id": order_id},
                )
            logger.info("Ignoring gateway status with no order state", extra=log_context)
            return StatusUpdateResult(outcome=UpdateOutcome.IGNORED, order=order)

        status = PaymentOrderState(status)

        with order_lock(order_id), self.atomic():
            order = PaymentOrder.objects.select_for_update().filter(order_id=order_id).first()
            if order is None:
                raise PaymentNotFoundError(
                    f"Payment order {order_id} not found",
                    details={"order_id": order_id},
                )

            try:
                result = self._transition(order, status, source, payload or {})
            except InconsistentStatusError as e:
                anomaly = StatusAnomaly.objects.create(
                    payment_order=order,
                    current_state=order.state,
                    attempted_state=status,
                    source=source,
                    message=e.message,
                    payload=payload or {},
                )
                logger.warning(
                    "Rejected inconsistent status update",
                    extra={**log_context, "current_state": order.state},
                )
                return StatusUpdateResult(
                    outcome=UpdateOutcome.REJECTED,
                    order=order,
                    anomaly=anomaly,
                )

        if result.applied:
            logger.info(
                "Order status updated",
                extra={
                    **log_context,
                    "payment_record_created": result.payment_record_created,
                },
            )
        return result

    def _transition(
        self,
        order: PaymentOrder,
        status: PaymentOrderState,
        source: str,
        payload: dict[str, Any],
    ) -> StatusUpdateResult:
        current = order.state

        if current == status:
            record_created = False
            if status == PaymentOrderState.COMPLETED:
                record_created = self._ensure_payment_record(order)
            return StatusUpdateResult(
                outcome=UpdateOutcome.UNCHANGED,
                order=order,
                payment_record_created=record_created,
            )

        if is_terminal(current):
            raise InconsistentStatusError(
                f"Order {order.order_id} is already {current}, refusing {status}",
                details={"current": current, "attempted": status},
            )

        if status == PaymentOrderState.PENDING:
            return StatusUpdateResult(outcome=UpdateOutcome.UNCHANGED, order=order)

        if status not in GATEWAY_TERMINAL_STATES:
            raise ValueError(f"{status} cannot be reported by the gateway")

        if current != PaymentOrderState.PENDING:
            raise InconsistentStatusError(
                f"Order {order.order_id} was never submitted, refusing {status}",
                details={"current": current, "attempted": status},
            )

        transitions = {
            PaymentOrderState.COMPLETED: order.complete,
            PaymentOrderState.FAILED: order.fail,
            PaymentOrderState.INVALID: order.invalidate,
        }
        transitions[status]()
        order.status_source = source
        order.raw_gateway_payload = payload
        order.save()

        record_created = False
        if status == PaymentOrderState.COMPLETED:
            record_created = self._ensure_payment_record(order)

        return StatusUpdateResult(
            outcome=UpdateOutcome.APPLIED,
            order=order,
            payment_record_created=record_created,
        )

    def _ensure_payment_record(self, order: PaymentOrder) -> bool:
        """Create the order's PaymentRecord unless it exists. Returns True if created."""
        _, created = PaymentRecord.objects.get_or_create(
            order_id=order.order_id,
            defaults={
                "payment_order": order,
                "gateway_tracking_id": order.gateway_tracking_id or "",
                "email": order.customer_email,
                "plan_id": order.plan_id,
                "plan_name": order.plan_name,
                "amount": order.amount,
                "currency": order.currency,
                "payment_method": PaymentRecord.PAYMENT_METHOD_PESAPAL,
            },
        )
        return created

"""
Tests for state machine transitions using django-fsm.

Tests valid and invalid PaymentOrder transitions, plus the mapping of raw
Pesapal status values onto order states.
"""

import pytest
from django_fsm import TransitionNotAllowed

from payments.exceptions import InconsistentStatusError
from payments.models import PaymentOrder
from payments.state_machines import (
    GATEWAY_TERMINAL_STATES,
    PaymentOrderState,
    is_terminal,
    normalize_gateway_status,
    status_from_payload,
)


# =============================================================================
# PaymentOrder State Transition Tests
# =============================================================================


class TestPaymentOrderTransitions:
    """Tests for PaymentOrder state machine transitions."""

    # -------------------------------------------------------------------------
    # Valid Transitions
    # -------------------------------------------------------------------------

    def test_created_to_pending(self, db, created_order):
        """Submission attaches the tracking id and redirect URL."""
        created_order.submit(tracking_id="T-1", redirect_url="https://pay.test/T-1")
        created_order.save()

        assert created_order.state == PaymentOrderState.PENDING
        assert created_order.gateway_tracking_id == "T-1"
        assert created_order.redirect_url == "https://pay.test/T-1"

    def test_pending_to_completed(self, db, pending_order):
        pending_order.complete()
        pending_order.save()

        assert pending_order.state == PaymentOrderState.COMPLETED
        assert pending_order.completed_at is not None

    def test_pending_to_failed(self, db, pending_order):
        pending_order.fail()
        pending_order.save()

        assert pending_order.state == PaymentOrderState.FAILED
        assert pending_order.failed_at is not None

    def test_pending_to_invalid(self, db, pending_order):
        pending_order.invalidate()
        pending_order.save()

        assert pending_order.state == PaymentOrderState.INVALID
        assert pending_order.failed_at is not None

    def test_created_to_error(self, db, created_order):
        created_order.mark_error(reason="GATEWAY_REJECTED: bad currency")
        created_order.save()

        assert created_order.state == PaymentOrderState.ERROR
        assert created_order.failure_reason == "GATEWAY_REJECTED: bad currency"

    def test_state_persists(self, db, pending_order):
        pending_order.complete()
        pending_order.save()

        stored = PaymentOrder.objects.get(pk=pending_order.pk)
        assert stored.state == PaymentOrderState.COMPLETED

    # -------------------------------------------------------------------------
    # Invalid Transitions
    # -------------------------------------------------------------------------

    def test_cannot_complete_created_order(self, db, created_order):
        with pytest.raises(TransitionNotAllowed):
            created_order.complete()

    def test_cannot_fail_completed_order(self, db, completed_order):
        with pytest.raises(TransitionNotAllowed):
            completed_order.fail()

    def test_cannot_submit_twice(self, db, pending_order):
        with pytest.raises(TransitionNotAllowed):
            pending_order.submit(tracking_id="T-2", redirect_url="https://pay.test/T-2")

    def test_cannot_error_pending_order(self, db, pending_order):
        with pytest.raises(TransitionNotAllowed):
            pending_order.mark_error(reason="late failure")

    def test_direct_state_assignment_blocked(self, db, created_order):
        """state is protected; only transitions may change it."""
        with pytest.raises(AttributeError):
            created_order.state = PaymentOrderState.COMPLETED

    def test_tracking_id_is_write_once(self, db, pending_order):
        with pytest.raises(InconsistentStatusError):
            pending_order.assign_tracking_id("T-other")

    def test_same_tracking_id_can_be_reassigned(self, db, pending_order):
        pending_order.assign_tracking_id("T-100")

        assert pending_order.gateway_tracking_id == "T-100"


# =============================================================================
# Terminal States
# =============================================================================


class TestTerminalStates:
    """Tests for is_terminal."""

    @pytest.mark.parametrize(
        "state",
        [
            PaymentOrderState.COMPLETED,
            PaymentOrderState.FAILED,
            PaymentOrderState.INVALID,
            PaymentOrderState.ERROR,
        ],
    )
    def test_terminal(self, state):
        assert is_terminal(state) is True

    @pytest.mark.parametrize("state", [PaymentOrderState.CREATED, PaymentOrderState.PENDING])
    def test_not_terminal(self, state):
        assert is_terminal(state) is False

    def test_error_is_not_reported_by_gateway(self):
        assert PaymentOrderState.ERROR not in GATEWAY_TERMINAL_STATES


# =============================================================================
# Status Normalization
# =============================================================================


class TestNormalizeGatewayStatus:
    """Tests for mapping raw Pesapal values onto order states."""

    @pytest.mark.parametrize(
        ("raw", "expected"),
        [
            ("COMPLETED", PaymentOrderState.COMPLETED),
            ("Completed", PaymentOrderState.COMPLETED),
            ("failed", PaymentOrderState.FAILED),
            ("INVALID", PaymentOrderState.INVALID),
            ("Pending", PaymentOrderState.PENDING),
            (1, PaymentOrderState.COMPLETED),
            (2, PaymentOrderState.FAILED),
            (0, PaymentOrderState.INVALID),
            ("1", PaymentOrderState.COMPLETED),
        ],
    )
    def test_known_values(self, raw, expected):
        assert normalize_gateway_status(raw) == expected

    @pytest.mark.parametrize("raw", ["REVERSED", 3, "", None, "settled", True])
    def test_values_without_a_state(self, raw):
        assert normalize_gateway_status(raw) is None


class TestStatusFromPayload:
    """Tests for reading the status out of a gateway body."""

    def test_prefers_description(self):
        payload = {"payment_status_description": "Failed", "status_code": 1}

        assert status_from_payload(payload) == PaymentOrderState.FAILED

    def test_falls_back_to_status_code(self):
        assert status_from_payload({"status_code": 1}) == PaymentOrderState.COMPLETED

    def test_pending_has_no_status_code(self):
        payload = {"payment_status_description": "", "status_code": None}

        assert status_from_payload(payload) is None

    def test_reversed_is_ignored(self):
        assert status_from_payload({"payment_status_description": "Reversed"}) is None

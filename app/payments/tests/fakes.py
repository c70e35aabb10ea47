"""
In-memory test doubles for payment tests.

FakeGateway stands in for PesapalClient wherever a test exercises the
reconciler, views or tasks rather than the HTTP wire.
"""

from __future__ import annotations

from typing import Any, Callable

from payments.adapters import (
    IpnRegistration,
    StatusResult,
    SubmitOrderParams,
    SubmitOrderResult,
)
from payments.state_machines import normalize_gateway_status


class FakeGateway:
    """
    Scriptable stand-in for PesapalClient.

    Attributes:
        submit_outcomes: Queue of SubmitOrderResult or exceptions returned by
            submit_order; when empty, tracking ids T-1, T-2, ... are issued
        statuses: Raw status word (or exception) returned per tracking id;
            unknown ids report PENDING
        on_query: Called with the tracking id before a status is returned
    """

    def __init__(self) -> None:
        self.submissions: list[SubmitOrderParams] = []
        self.status_queries: list[str] = []
        self.submit_outcomes: list[SubmitOrderResult | Exception] = []
        self.statuses: dict[str, str | Exception] = {}
        self.on_query: Callable[[str], None] | None = None
        self.ipns: list[IpnRegistration] = []
        self.registered_urls: list[str] = []
        self.ipn_error: Exception | None = None

    def submit_order(self, params: SubmitOrderParams) -> SubmitOrderResult:
        self.submissions.append(params)
        if self.submit_outcomes:
            outcome = self.submit_outcomes.pop(0)
            if isinstance(outcome, Exception):
                raise outcome
            return outcome

        tracking_id = f"T-{len(self.submissions)}"
        return SubmitOrderResult(
            tracking_id=tracking_id,
            redirect_url=f"https://pay.test/iframe?OrderTrackingId={tracking_id}",
            merchant_reference=params.order_id,
            raw_response={
                "order_tracking_id": tracking_id,
                "merchant_reference": params.order_id,
                "redirect_url": f"https://pay.test/iframe?OrderTrackingId={tracking_id}",
                "status": "200",
            },
        )

    def query_status(self, tracking_id: str) -> StatusResult:
        self.status_queries.append(tracking_id)
        if self.on_query is not None:
            self.on_query(tracking_id)

        outcome = self.statuses.get(tracking_id, "PENDING")
        if isinstance(outcome, Exception):
            raise outcome

        body: dict[str, Any] = {
            "payment_status_description": outcome,
            "order_tracking_id": tracking_id,
            "status": "200",
        }
        return StatusResult(
            tracking_id=tracking_id,
            status=normalize_gateway_status(outcome),
            raw_response=body,
        )

    def list_ipns(self) -> list[IpnRegistration]:
        if self.ipn_error is not None:
            raise self.ipn_error
        return list(self.ipns)

    def register_ipn(self, url: str, notification_type: str = "POST") -> IpnRegistration:
        if self.ipn_error is not None:
            raise self.ipn_error
        self.registered_urls.append(url)
        registration = IpnRegistration(ipn_id=f"ipn-{len(self.registered_urls)}", url=url)
        self.ipns.append(registration)
        return registration

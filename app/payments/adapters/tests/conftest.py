"""
Pytest fixtures for Pesapal adapter tests.

The client talks to an in-process httpx.MockTransport, so every test runs
the real request/response translation without network access.

Sections:
    - Scripted Pesapal Server
    - Client Fixtures
"""

from __future__ import annotations

import json
from typing import Any

import httpx
import pytest

from payments.adapters import PesapalClient


BASE_URL = "https://pesapal.test/v3"
TOKEN_EXPIRY = "2099-01-01T12:05:00.1234567Z"


# =============================================================================
# Scripted Pesapal Server
# =============================================================================


class PesapalServer:
    """
    Scripted Pesapal API behind an httpx.MockTransport.

    Responses are queued per endpoint name (the last path segment, e.g.
    "RequestToken"). When an endpoint's queue is empty its default reply is
    used. Every request is kept in ``requests``.
    """

    def __init__(self) -> None:
        self.requests: list[httpx.Request] = []
        self.queued: dict[str, list[Any]] = {}
        self.token_count = 0
        self.defaults = {
            "RequestToken": self._issue_token,
        }

    def queue(self, endpoint: str, *responses: Any) -> None:
        """
        Queue responses for ``endpoint``.

        Each response is an httpx.Response, an exception to raise, or a
        callable taking the request.
        """
        self.queued.setdefault(endpoint, []).extend(responses)

    def calls(self, endpoint: str) -> list[httpx.Request]:
        return [r for r in self.requests if r.url.path.endswith(f"/{endpoint}")]

    def handler(self, request: httpx.Request) -> httpx.Response:
        self.requests.append(request)
        endpoint = request.url.path.rsplit("/", 1)[-1]

        queue = self.queued.get(endpoint)
        if queue:
            reply = queue.pop(0)
        elif endpoint in self.defaults:
            reply = self.defaults[endpoint]
        else:
            return httpx.Response(404, json={"error": {"message": "no route"}})

        if isinstance(reply, Exception):
            raise reply
        if callable(reply):
            return reply(request)
        return reply

    def _issue_token(self, request: httpx.Request) -> httpx.Response:
        self.token_count += 1
        return httpx.Response(
            200,
            json={
                "token": f"tok-{self.token_count}",
                "expiryDate": TOKEN_EXPIRY,
                "error": None,
                "status": "200",
                "message": "Request processed successfully",
            },
        )


def bearer(request: httpx.Request) -> str:
    """Token sent on ``request``."""
    return request.headers.get("Authorization", "").removeprefix("Bearer ")


def body_of(request: httpx.Request) -> dict[str, Any]:
    return json.loads(request.content)


# =============================================================================
# Client Fixtures
# =============================================================================


@pytest.fixture
def pesapal_server():
    """Scripted Pesapal API."""
    return PesapalServer()


@pytest.fixture
def client(pesapal_server):
    """PesapalClient wired to the scripted server."""
    pesapal_client = PesapalClient(
        base_url=BASE_URL,
        consumer_key=" key ",
        consumer_secret="secret",
        timeout=5.0,
        transport=httpx.MockTransport(pesapal_server.handler),
    )
    yield pesapal_client
    pesapal_client.close()


@pytest.fixture
def submit_params():
    """Factory for SubmitOrderParams."""
    from decimal import Decimal

    from payments.adapters import SubmitOrderParams

    def _create(**overrides) -> SubmitOrderParams:
        values = {
            "order_id": "BRANDIFY-1718000000000-42",
            "amount": Decimal("1000.00"),
            "currency": "KES",
            "description": "Pro Subscription",
            "callback_url": "https://shop.test/pesapal-callback",
            "notification_id": "ipn-1",
            "customer_email": "a@b.com",
            "customer_name": "Ada King Lovelace",
        }
        values.update(overrides)
        return SubmitOrderParams(**values)

    return _create

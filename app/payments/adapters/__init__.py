"""
Payment adapters for external services.

This module provides the adapter for the Pesapal v3 API. All gateway calls
should go through it to ensure consistent error handling, timeouts, token
handling and observability.

Usage:
    from payments.adapters import SubmitOrderParams, get_pesapal_client

    client = get_pesapal_client()
    result = client.submit_order(SubmitOrderParams(...))
    status = client.query_status(result.tracking_id)
"""

from payments.adapters.pesapal_adapter import (
    PRODUCTION_BASE_URL,
    SANDBOX_BASE_URL,
    IpnRegistration,
    PesapalClient,
    StatusResult,
    SubmitOrderParams,
    SubmitOrderResult,
    backoff_delay,
    get_pesapal_client,
    reset_pesapal_client,
    split_customer_name,
)

__all__ = [
    "PRODUCTION_BASE_URL",
    "SANDBOX_BASE_URL",
    "IpnRegistration",
    "PesapalClient",
    "StatusResult",
    "SubmitOrderParams",
    "SubmitOrderResult",
    "backoff_delay",
    "get_pesapal_client",
    "reset_pesapal_client",
    "split_customer_name",
]

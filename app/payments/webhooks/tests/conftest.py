"""
Pytest fixtures for webhook tests.

Reuses the payment fixtures: fakeredis order locks, the fake gateway
installed as the process-wide client, and orders in each state.
"""

from payments.tests.conftest import (  # noqa: F401
    clear_notification_cache,
    completed_order,
    created_order,
    gateway,
    lock_store,
    pending_order,
    shared_gateway,
)

"""
Tests for payments app.

This package contains test modules for:
- test_order_reconciler.py: Order creation, callbacks, polls and races
- test_token_cache.py: Single-flight token refresh
- test_locks.py: Redis order locks
- test_models.py / test_state_transitions.py: Models and the order state machine
- test_views.py / test_serializers.py: API endpoints
- test_tasks.py: Celery polling tasks
- test_integration.py: End-to-end checkout journeys

Usage:
    pytest app/payments/tests/
    pytest app/payments/tests/test_order_reconciler.py
"""

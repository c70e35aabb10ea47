"""
Root pytest configuration for the Django project.

This module configures pytest-django and provides project-wide fixtures.
App-specific fixtures are defined in each app's tests/conftest.py.
"""

import os

import django
import pytest

# Ensure Django settings are configured before any tests run
os.environ.setdefault("DJANGO_SETTINGS_MODULE", "config.settings")


def pytest_configure():
    """Configure Django settings before tests run."""
    django.setup()

    from django.conf import settings

    # Keep the tests off any real gateway and give retries no delay
    settings.PESAPAL_BASE_URL = "https://pesapal.test/v3"
    settings.PESAPAL_CONSUMER_KEY = "test-key"
    settings.PESAPAL_CONSUMER_SECRET = "test-secret"
    settings.PESAPAL_IPN_ID = "test-ipn-id"
    settings.PESAPAL_SUBMIT_RETRY_BACKOFF_SECONDS = 0
    settings.PESAPAL_ORDER_LOCK_TIMEOUT_SECONDS = 1

    # Local-memory cache so nothing in the suite needs a Redis server
    settings.CACHES = {
        "default": {"BACKEND": "django.core.cache.backends.locmem.LocMemCache"},
    }

    # Run Celery tasks inline
    from config.celery import app as celery_app

    celery_app.conf.task_always_eager = True
    celery_app.conf.task_eager_propagates = True


def pytest_collection_modifyitems(items):
    """
    Auto-mark tests based on filename patterns.

    Mapping:
    - test_integration.py → e2e (full payment journeys)
    - test_views.py, test_tasks.py, test_order_reconciler.py, etc. → integration
    - test_models.py, test_token_cache.py, test_locks.py, etc. → unit
    - Unmatched files → integration (safe default for Django)

    Explicit markers on test functions/classes take precedence.
    """
    e2e_patterns = ["test_integration.py"]

    integration_patterns = [
        "test_views.py",
        "test_tasks.py",
        "test_order_reconciler.py",
        "test_health_check.py",
        "test_admin.py",
    ]

    unit_patterns = [
        "test_models.py",
        "test_serializers.py",
        "test_state_transitions.py",
        "test_locks.py",
        "test_token_cache.py",
        "test_pesapal_adapter.py",
        "test_services.py",
    ]

    for item in items:
        # Skip if test already has unit/integration/e2e marker
        existing_markers = {m.name for m in item.iter_markers()}
        if existing_markers & {"unit", "integration", "e2e"}:
            continue

        filename = os.path.basename(str(item.fspath))

        # Check patterns in priority order
        if any(pattern in filename for pattern in e2e_patterns):
            item.add_marker(pytest.mark.e2e)
        elif any(pattern in filename for pattern in integration_patterns):
            item.add_marker(pytest.mark.integration)
        elif any(pattern in filename for pattern in unit_patterns):
            item.add_marker(pytest.mark.unit)
        else:
            # Default: integration (safe for Django where most tests hit DB)
            item.add_marker(pytest.mark.integration)

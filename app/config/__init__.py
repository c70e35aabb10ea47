# =============================================================================
# Django Project Configuration Package
# =============================================================================
# This package contains all Django configuration including settings, URLs,
# the WSGI application, and Celery configuration.
#
# Import Celery app to ensure it's loaded when Django starts.
# This is required for shared_task decorators to bind to this app.
# =============================================================================

from config.celery import app as celery_app

__all__ = ("celery_app",)

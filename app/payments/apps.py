"""
Payments app configuration.

This app provides the Pesapal payment core:
- Gateway client with cached bearer token
- Order reconciliation across submission, callback and poll
- Payment records for completed orders
"""

from django.apps import AppConfig


class PaymentsConfig(AppConfig):
    """Configuration for the payments application."""

    default_auto_field = "django.db.models.BigAutoField"
    name = "payments"
    verbose_name = "Payments"

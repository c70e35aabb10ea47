"""
Webhook handling for payment events from Pesapal.

Pesapal notifies us (IPN) when an order's status changes. The view
confirms the status and hands it to the OrderReconciler.

Usage:
    # In urls.py
    from payments.webhooks.views import pesapal_ipn

    urlpatterns = [
        path("pesapal/ipn/", pesapal_ipn, name="pesapal_ipn"),
    ]
"""

from payments.webhooks.views import pesapal_ipn

__all__ = [
    "pesapal_ipn",
]

"""
URL configuration for the payments app.

Routes:
    - POST /pesapal/orders/ - Create and submit an order
    - GET /pesapal/orders/status/ - Order status (polls the gateway)
    - GET|POST /pesapal/ipn/ - Pesapal IPN endpoint

All routes are prefixed with /api/v1/payments/ when included in the main URLconf.

Usage:
    # In config/urls.py
    api_v1_patterns = [
        path("payments/", include("payments.urls")),
    ]
"""

from django.urls import path

from payments.views import PesapalOrderCreateView, PesapalOrderStatusView
from payments.webhooks.views import pesapal_ipn

app_name = "payments"

urlpatterns = [
    path("pesapal/orders/", PesapalOrderCreateView.as_view(), name="pesapal_order_create"),
    path(
        "pesapal/orders/status/",
        PesapalOrderStatusView.as_view(),
        name="pesapal_order_status",
    ),
    # Webhook endpoints
    path("pesapal/ipn/", pesapal_ipn, name="pesapal_ipn"),
]

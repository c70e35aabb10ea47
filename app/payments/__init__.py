"""
Payments app for Pesapal integration.

This app handles:
- Order intake and submission to Pesapal
- Gateway token caching
- Callback (IPN) and poll reconciliation of order status
- Payment records for completed orders

Usage:
    from payments.services import CreateOrderParams, OrderReconciler

    result = OrderReconciler().create_order(
        CreateOrderParams(amount="1000", currency="KES", customer_email="a@b.com")
    )

    # Pesapal IPN
    OrderReconciler().handle_callback("T-1")
"""

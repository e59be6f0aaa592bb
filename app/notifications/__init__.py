"""
Notifications app: customer notifications for payment and refund events.

This app provides:
- PaymentNotifier hooks called by the payment and refund orchestrators
- send_payment_email Celery task for email delivery

Usage:
    from notifications.hooks import PaymentNotifier

    PaymentNotifier.refund_processed(refund)
"""

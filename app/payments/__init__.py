"""
Payments app: PayMongo payments and refunds for bookings.

This app handles:
- Taking GCash (PayMongo) and cash payments for bookings
- Lazy status pulls and webhook reconciliation
- Refund eligibility, automatic (PayMongo) and manual refunds
- Retrying refunds that failed transiently

Related apps:
    - bookings: Booking being paid for and refunded
    - notifications: Customer emails for payment and refund outcomes

Usage:
    from payments.services import RefundOrchestrator, ProcessRefundRequest

    result = RefundOrchestrator.process_refund(
        ProcessRefundRequest(booking_id=42, amount="1500.00", reason="duplicate")
    )
"""

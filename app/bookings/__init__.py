"""
Bookings app.

Holds the payment-relevant subset of a cremation booking: its lifecycle
status and payment status. The rest of the booking lifecycle (scheduling,
packages, documents) is owned elsewhere.
"""

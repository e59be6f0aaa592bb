"""
Booking admin configuration.

Payment status is read-only here: it is owned by the payment and refund
orchestrators and must not be edited by hand.
"""

from django.contrib import admin

from bookings.models import Booking


@admin.register(Booking)
class BookingAdmin(admin.ModelAdmin):
    list_display = [
        "id",
        "customer",
        "status",
        "payment_status",
        "payment_method",
        "total_amount",
        "scheduled_at",
        "created_at",
    ]
    list_filter = ["status", "payment_status", "payment_method"]
    search_fields = ["id", "customer__email"]
    readonly_fields = ["payment_status", "created_at", "updated_at"]
    ordering = ["-created_at"]

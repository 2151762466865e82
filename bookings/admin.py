"""Admin configuration for bookings."""

from django.contrib import admin

from bookings.models import Booking


@admin.register(Booking)
class BookingAdmin(admin.ModelAdmin):
    list_display = ["id", "title", "organizer", "status", "payment_status", "created_at"]
    list_filter = ["status", "payment_status"]
    search_fields = ["id", "title", "organizer__email"]
    readonly_fields = ["id", "created_at", "updated_at", "confirmed_at", "cancelled_at"]

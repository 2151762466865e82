"""
Bookings app.

Holds the Booking a group payment is collected for. The booking itself is
owned by the organizer; the group_payments engine only moves its payment
status and, when a group fails to collect enough by the deadline, cancels it.

Usage:
    from bookings.models import Booking

    booking = Booking.objects.create(
        organizer=user,
        title="Sea kayaking, 6 people",
        total_amount_cents=60000,
    )
"""

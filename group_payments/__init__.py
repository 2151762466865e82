"""
Group payments app.

This app handles:
- Dividing a booking total between participants (equal or custom splits)
- Charging each participant through the payment gateway
- Payment reminders before the deadline
- Deadline enforcement: proceed with a partial payment or cancel and refund

Related apps:
    - bookings: The booking a split payment pays for
    - core: Base models, service results and exceptions

Usage:
    from group_payments.services import SplitPaymentLedger

    ledger = SplitPaymentLedger()
    result = ledger.create_split_payment(booking, organizer, 10000, participants, deadline)
    if result.success:
        split_payment = result.data
"""

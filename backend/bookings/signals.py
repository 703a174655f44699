import logging

from django.dispatch import Signal, receiver

logger = logging.getLogger(__name__)

# Sent once per booking, after the transaction that moved it to confirmed commits.
# Receivers get ``booking`` and ``payment`` keyword arguments.
booking_confirmed = Signal()


@receiver(booking_confirmed)
def log_booking_confirmed(sender, booking, payment, **kwargs):
    logger.info(
        "Booking %s confirmed by %s payment %s (%s %s)",
        booking.pk,
        payment.payment_type,
        payment.pk,
        payment.amount,
        payment.currency,
    )

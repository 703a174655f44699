"""
Payment reconciliation for bookings.

Two independent triggers report the outcome of a PaymentIntent: the customer's
browser calling the confirm endpoint, and Stripe's webhook (delivered at least
once, at any time). Both funnel into the transition helpers below, which apply
each status change as a single conditional UPDATE. Whichever trigger wins the
update performs the follow-up work (booking confirmation); the loser sees zero
rows changed and does nothing.

Allowed payment transitions::

    pending -> succeeded -> refunded
    pending -> failed
"""

from __future__ import annotations

import logging
from contextlib import contextmanager
from dataclasses import dataclass
from decimal import ROUND_HALF_UP, Decimal, InvalidOperation
from typing import Any, Optional

from django.conf import settings
from django.db import DatabaseError, transaction
from django.utils import timezone

from bookings.models import Booking
from bookings.signals import booking_confirmed
from payments.exceptions import (
    GatewayError,
    PaymentNotFound,
    PaymentValidationError,
    StoreError,
)
from payments.models import Payment
from payments.services import gateway

logger = logging.getLogger(__name__)

CENTS = Decimal("0.01")
PAYMENT_TYPES = {Payment.DEPOSIT, Payment.FULL}


@dataclass
class IntentCreation:
    payment: Payment
    client_secret: str


@dataclass
class ConfirmationResult:
    outcome: str
    payment: Payment

    SUCCEEDED = "succeeded"
    PROCESSING = "processing"
    FAILED = "failed"

    @property
    def succeeded(self) -> bool:
        return self.outcome == self.SUCCEEDED


@contextmanager
def _store_guard(action: str):
    try:
        yield
    except DatabaseError as exc:
        raise StoreError(f"Database error while trying to {action}.") from exc


def _field(obj: Any, name: str) -> Any:
    # Stripe objects, plain dicts and the local stubs all reach this point.
    try:
        return obj[name]
    except (KeyError, TypeError):
        return getattr(obj, name, None)


def _charge_id(intent: Any) -> Optional[str]:
    charge = _field(intent, "latest_charge")
    if charge is None or isinstance(charge, str):
        return charge or None
    return _field(charge, "id")


def _parse_amount(amount: Any) -> Decimal:
    try:
        value = Decimal(str(amount))
    except (InvalidOperation, ValueError):
        raise PaymentValidationError("Amount must be a number.")
    if not value.is_finite() or value <= 0:
        raise PaymentValidationError("Amount must be greater than zero.")
    return value.quantize(CENTS, rounding=ROUND_HALF_UP)


def _expected_amount(booking: Booking, payment_type: str) -> Decimal:
    if payment_type == Payment.FULL:
        return booking.total_amount
    return booking.deposit_amount


# Transitions ----------------------------------------------------------------


def _transition(payment: Payment, *, from_statuses: tuple[str, ...], to_status: str, **fields) -> bool:
    """Compare-and-set the payment status; return True only if this call changed the row."""
    now = timezone.now()
    updated = Payment.objects.filter(pk=payment.pk, status__in=from_statuses).update(
        status=to_status,
        updated_at=now,
        **fields,
    )
    if not updated:
        return False
    payment.status = to_status
    payment.updated_at = now
    for name, value in fields.items():
        setattr(payment, name, value)
    return True


def _confirm_booking(payment: Payment) -> bool:
    updated = Booking.objects.filter(pk=payment.booking_id, status=Booking.PENDING).update(
        status=Booking.CONFIRMED,
        updated_at=timezone.now(),
    )
    if not updated:
        logger.info(
            "Booking %s not pending; full payment %s leaves its status unchanged",
            payment.booking_id,
            payment.pk,
        )
        return False

    booking = Booking.objects.select_related("service").get(pk=payment.booking_id)
    transaction.on_commit(
        lambda: booking_confirmed.send(sender=Booking, booking=booking, payment=payment)
    )
    return True


def mark_payment_succeeded(payment: Payment, *, charge_id: Optional[str] = None) -> bool:
    """
    Move a pending payment to succeeded and, for full payments, confirm its booking.

    Safe to call repeatedly and concurrently: only the call that flips the row
    from pending confirms the booking.
    """

    fields = {"paid_at": timezone.now()}
    if charge_id:
        fields["stripe_charge_id"] = charge_id

    with _store_guard("record a successful payment"), transaction.atomic():
        if not _transition(payment, from_statuses=(Payment.PENDING,), to_status=Payment.SUCCEEDED, **fields):
            return False
        if payment.payment_type == Payment.FULL:
            _confirm_booking(payment)
    return True


def mark_payment_failed(payment: Payment) -> bool:
    with _store_guard("record a failed payment"):
        return _transition(payment, from_statuses=(Payment.PENDING,), to_status=Payment.FAILED)


def mark_payment_refunded(payment: Payment) -> bool:
    with _store_guard("record a refund"):
        return _transition(payment, from_statuses=(Payment.SUCCEEDED,), to_status=Payment.REFUNDED)


# Operations -----------------------------------------------------------------


def create_payment_intent(*, booking_id: Any, amount: Any, payment_type: Optional[str] = None) -> IntentCreation:
    """
    Create a Stripe PaymentIntent for a booking and record a pending Payment for it.

    If the Payment cannot be stored the intent is cancelled again so that no
    chargeable intent exists without a local record.
    """

    if not booking_id or amount in (None, ""):
        raise PaymentValidationError("Missing required fields: bookingId, amount")
    value = _parse_amount(amount)
    payment_type = payment_type or Payment.DEPOSIT
    if payment_type not in PAYMENT_TYPES:
        raise PaymentValidationError(f"Unknown payment type: {payment_type}")

    try:
        booking = Booking.objects.select_related("service").get(pk=booking_id)
    except (Booking.DoesNotExist, ValueError, TypeError):
        raise PaymentNotFound("Booking not found")

    if booking.status == Booking.CANCELLED:
        raise PaymentValidationError("Booking has been cancelled.")

    if settings.PAYMENTS_ENFORCE_BOOKING_AMOUNT:
        expected = _expected_amount(booking, payment_type)
        if value != expected:
            raise PaymentValidationError(
                f"Amount {value} does not match the booking's {payment_type} amount of {expected}."
            )

    service = booking.service
    currency = settings.PAYMENTS_CURRENCY
    intent = gateway.create_payment_intent(
        amount_cents=gateway.to_minor_units(value),
        currency=currency,
        metadata={
            "booking_id": booking.pk,
            "payment_type": payment_type,
            "customer_email": booking.customer_email,
            "service_name": service.name,
        },
        description=f"{payment_type.capitalize()} payment for {service.name} - {booking.customer_name}",
    )

    try:
        with transaction.atomic():
            payment = Payment.objects.create(
                booking=booking,
                amount=value,
                currency=currency,
                status=Payment.PENDING,
                payment_type=payment_type,
                stripe_payment_intent_id=intent.id,
                description=f"{payment_type} payment for {service.name}",
            )
    except DatabaseError as exc:
        logger.exception("Could not record payment for intent %s; cancelling it", intent.id)
        _cancel_orphaned_intent(intent.id)
        raise StoreError("Failed to record payment.") from exc

    logger.info(
        "Created %s payment %s for booking %s (intent %s, %s %s)",
        payment_type,
        payment.pk,
        booking.pk,
        intent.id,
        value,
        currency,
    )
    return IntentCreation(payment=payment, client_secret=intent.client_secret)


def _cancel_orphaned_intent(intent_id: str) -> None:
    try:
        gateway.cancel_payment_intent(intent_id)
    except GatewayError:
        logger.critical(
            "Orphaned Stripe intent %s: no payment record and cancellation failed",
            intent_id,
            exc_info=True,
        )
    else:
        logger.warning("Cancelled intent %s after failing to record its payment", intent_id)


def confirm_payment(*, payment_intent_id: Optional[str], payment_id: Any) -> ConfirmationResult:
    """
    Reconcile a payment with the current state of its intent at Stripe.

    Re-confirming an already reconciled payment reports success without
    touching the record.
    """

    if not payment_intent_id or not payment_id:
        raise PaymentValidationError("Missing required fields: paymentIntentId, paymentId")

    try:
        payment = Payment.objects.select_related("booking").get(pk=payment_id)
    except (Payment.DoesNotExist, ValueError, TypeError):
        raise PaymentNotFound("Payment not found")

    if payment.stripe_payment_intent_id != payment_intent_id:
        raise PaymentValidationError("Payment intent does not belong to this payment.")

    intent = gateway.retrieve_payment_intent(payment_intent_id)
    intent_status = _field(intent, "status")

    if intent_status == "succeeded":
        if mark_payment_succeeded(payment, charge_id=_charge_id(intent)):
            logger.info("Payment %s confirmed for booking %s", payment.pk, payment.booking_id)
        else:
            payment.refresh_from_db()
        if payment.status in (Payment.SUCCEEDED, Payment.REFUNDED):
            return ConfirmationResult(ConfirmationResult.SUCCEEDED, payment)
        logger.warning(
            "Intent %s succeeded but payment %s is %s; not reverting",
            payment_intent_id,
            payment.pk,
            payment.status,
        )
        return ConfirmationResult(ConfirmationResult.FAILED, payment)

    if intent_status == "processing":
        return ConfirmationResult(ConfirmationResult.PROCESSING, payment)

    logger.info("Intent %s for payment %s is %s", payment_intent_id, payment.pk, intent_status)
    return ConfirmationResult(ConfirmationResult.FAILED, payment)


def refund_payment(*, payment_id: Any) -> Payment:
    """
    Ask Stripe to refund a succeeded payment.

    The local status flips immediately when Stripe reports the refund as
    succeeded; otherwise the ``charge.refunded`` webhook completes it.
    """

    try:
        payment = Payment.objects.get(pk=payment_id)
    except (Payment.DoesNotExist, ValueError, TypeError):
        raise PaymentNotFound("Payment not found")

    if payment.status != Payment.SUCCEEDED:
        raise PaymentValidationError(f"Only succeeded payments can be refunded (payment is {payment.status}).")

    refund = gateway.create_refund(payment_intent_id=payment.stripe_payment_intent_id)
    if _field(refund, "status") == "succeeded":
        mark_payment_refunded(payment)
    logger.info("Refund %s requested for payment %s", _field(refund, "id"), payment.pk)
    return payment


# Webhooks -------------------------------------------------------------------


def _find_payment(**lookup) -> Optional[Payment]:
    if not all(lookup.values()):
        return None
    return Payment.objects.filter(**lookup).first()


def _handle_payment_succeeded(intent: Any) -> None:
    intent_id = _field(intent, "id")
    payment = _find_payment(stripe_payment_intent_id=intent_id)
    if payment is None:
        logger.info("No payment recorded for intent %s; ignoring success event", intent_id)
        return
    if mark_payment_succeeded(payment, charge_id=_charge_id(intent)):
        logger.info("Payment %s succeeded for booking %s", payment.pk, payment.booking_id)
    else:
        logger.info("Payment %s already %s; ignoring success event", payment.pk, payment.status)


def _handle_payment_failed(intent: Any) -> None:
    intent_id = _field(intent, "id")
    payment = _find_payment(stripe_payment_intent_id=intent_id)
    if payment is None:
        logger.info("No payment recorded for intent %s; ignoring failure event", intent_id)
        return
    if mark_payment_failed(payment):
        logger.info("Payment %s failed for booking %s", payment.pk, payment.booking_id)
    else:
        logger.info("Payment %s already %s; ignoring failure event", payment.pk, payment.status)


def _handle_charge_refunded(charge: Any) -> None:
    charge_id = _field(charge, "id")
    payment = _find_payment(stripe_charge_id=charge_id)
    if payment is None:
        logger.info("No payment recorded for charge %s; ignoring refund event", charge_id)
        return
    if mark_payment_refunded(payment):
        logger.info("Payment %s refunded (charge %s)", payment.pk, charge_id)
    else:
        logger.info("Payment %s is %s; ignoring refund event", payment.pk, payment.status)


WEBHOOK_HANDLERS = {
    "payment_intent.succeeded": _handle_payment_succeeded,
    "payment_intent.payment_failed": _handle_payment_failed,
    "charge.refunded": _handle_charge_refunded,
}


def handle_webhook_event(payload: bytes, sig_header: str) -> str:
    """
    Verify and apply one Stripe webhook delivery; return the event type.

    Raises InvalidSignature before anything is read from the payload. Events
    that do not apply here (unknown types, unknown intents, transitions a
    payment has already moved past) are logged and acknowledged; only database
    failures raise StoreError so that Stripe redelivers.
    """

    event = gateway.construct_webhook_event(payload, sig_header)
    event_type = _field(event, "type")
    handler = WEBHOOK_HANDLERS.get(event_type)
    if handler is None:
        logger.info("Unhandled Stripe event type: %s", event_type)
        return event_type

    with _store_guard(f"handle {event_type}"):
        handler(_field(_field(event, "data"), "object"))
    return event_type

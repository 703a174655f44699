from __future__ import annotations

from dataclasses import dataclass, fields
from datetime import datetime, timedelta
from decimal import ROUND_HALF_UP, Decimal
from typing import Optional

from django.conf import settings
from django.db import transaction
from django.utils import timezone

from bookings.models import Booking
from catalog.models import Service

CENTS = Decimal("0.01")


def calculate_deposit(total: Decimal) -> Decimal:
    percent = Decimal(settings.BOOKING_DEPOSIT_PERCENT) / Decimal(100)
    return (Decimal(total) * percent).quantize(CENTS, rounding=ROUND_HALF_UP)


def default_scheduled_date() -> datetime:
    return timezone.now() + timedelta(days=settings.BOOKING_LEAD_DAYS)


def create_booking(
    *,
    service: Service,
    customer_name: str,
    customer_email: str,
    customer_phone: str,
    customer_address: str,
    scheduled_date: Optional[datetime] = None,
    budget: Optional[Decimal] = None,
    notes: str = "",
) -> Booking:
    """
    Create a pending booking with totals snapshotted from the service price.

    Later price changes on the service never alter the amounts stored here.
    """

    total = Decimal(service.price).quantize(CENTS)
    return Booking.objects.create(
        service=service,
        customer_name=customer_name.strip(),
        customer_email=customer_email.strip().lower(),
        customer_phone=customer_phone.strip(),
        customer_address=customer_address.strip(),
        scheduled_date=scheduled_date or default_scheduled_date(),
        status=Booking.PENDING,
        budget=budget,
        notes=notes or "",
        total_amount=total,
        deposit_amount=calculate_deposit(total),
    )


@dataclass
class BookingUpdate:
    """Fields staff may change on an existing booking."""

    status: Optional[str] = None
    notes: Optional[str] = None
    scheduled_date: Optional[datetime] = None


STAFF_STATUSES = {Booking.COMPLETED, Booking.CANCELLED}


def update_booking(booking: Booking, changes: BookingUpdate) -> Booking:
    changed_fields: list[str] = []
    for field in fields(changes):
        value = getattr(changes, field.name)
        if value is None:
            continue
        if field.name == "status" and value not in STAFF_STATUSES:
            raise ValueError(f"Status cannot be set to {value!r} manually.")
        if getattr(booking, field.name) != value:
            setattr(booking, field.name, value)
            changed_fields.append(field.name)

    if "status" in changed_fields and booking.status == Booking.COMPLETED:
        booking.completed_at = timezone.now()
        changed_fields.append("completed_at")

    if changed_fields:
        changed_fields.append("updated_at")
        with transaction.atomic():
            booking.save(update_fields=changed_fields)
    return booking

"""Tool functions the voice assistant can call during a phone conversation."""

from __future__ import annotations

import logging
from datetime import date, datetime, time
from typing import Any, Dict, Optional, Tuple

from django.utils import timezone
from django.utils.dateparse import parse_date

from bookings.services.bookings import create_booking, default_scheduled_date
from catalog.models import Service
from voice.serializers import CheckAvailabilityArgsSerializer, CreateBookingArgsSerializer

logger = logging.getLogger(__name__)

# No availability computation exists yet; every day offers the same slots.
DEFAULT_SLOTS = ["09:00 AM", "11:00 AM", "02:00 PM", "04:00 PM"]
TIME_FORMATS = ["%I:%M %p", "%I %p", "%H:%M"]


def _describe_errors(errors: Dict[str, Any]) -> str:
    return ", ".join(sorted(errors))


def _find_service(name: str) -> Optional[Service]:
    return Service.objects.active().filter(name__iexact=name.strip()).first()


def _parse_time(value: str) -> Optional[time]:
    value = (value or "").strip().upper()
    for fmt in TIME_FORMATS:
        try:
            return datetime.strptime(value, fmt).time()
        except ValueError:
            continue
    return None


def _parse_day(value: Optional[str]) -> Optional[date]:
    try:
        return parse_date((value or "").strip())
    except ValueError:
        return None


def _schedule(day_text: Optional[str], time_text: str) -> Tuple[datetime, bool]:
    """Return the booking slot and whether the caller's date and time were both understood."""
    day = _parse_day(day_text)
    if day is None:
        return default_scheduled_date(), not (day_text or time_text)
    slot = _parse_time(time_text)
    if slot is None:
        return timezone.make_aware(datetime.combine(day, time(9, 0))), not time_text
    return timezone.make_aware(datetime.combine(day, slot)), True


def check_availability(args: Dict[str, Any]) -> str:
    serializer = CheckAvailabilityArgsSerializer(data=args)
    if not serializer.is_valid():
        return f"Error: Missing or invalid details: {_describe_errors(serializer.errors)}."
    data = serializer.validated_data

    service = _find_service(data["serviceName"])
    if service is None:
        return "Service not found."

    day = data["date"] or "the requested day"
    return f"Available slots for {service.name} on {day}: {', '.join(DEFAULT_SLOTS)}"


def create_booking_from_call(args: Dict[str, Any]) -> str:
    serializer = CreateBookingArgsSerializer(data=args)
    if not serializer.is_valid():
        return f"Error: Missing or invalid booking details: {_describe_errors(serializer.errors)}."
    data = serializer.validated_data

    service = _find_service(data["serviceName"])
    if service is None:
        return "Error: Service not found."

    scheduled_date, understood = _schedule(data.get("date"), data["time"])
    notes = "Booked by phone assistant."
    if not understood:
        requested = " ".join(part for part in (data.get("date") or "", data["time"]) if part)
        notes = f"{notes} Requested time: {requested}."

    booking = create_booking(
        service=service,
        customer_name=data["customerName"],
        customer_email=data["customerEmail"],
        customer_phone=data["customerPhone"],
        customer_address=data["customerAddress"],
        scheduled_date=scheduled_date,
        notes=notes,
    )
    logger.info("Voice assistant created booking %s for %s", booking.pk, service.name)
    return f"Success! Booking created for {booking.customer_name}. Booking ID: {booking.pk}."


TOOLS = {
    "checkAvailability": check_availability,
    "createBooking": create_booking_from_call,
}

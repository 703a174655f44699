import logging
import types
from decimal import Decimal

import pytest
import stripe
from django.db import DatabaseError
from django.urls import reverse
from rest_framework.test import APIClient

from bookings.models import Booking
from bookings.services.bookings import create_booking
from catalog.models import Service
from payments.models import Payment


@pytest.fixture
def booking(db):
    service = Service.objects.create(name="Roofing", duration=120, price=Decimal("150.00"))
    return create_booking(
        service=service,
        customer_name="Dana Doe",
        customer_email="dana@example.test",
        customer_phone="555-0100",
        customer_address="12 Elm Street",
    )


@pytest.fixture
def client():
    return APIClient()


@pytest.fixture
def stripe_live(settings):
    settings.STRIPE_USE_STUB = False
    settings.STRIPE_SECRET_KEY = "sk_test_123"
    original_api_key = stripe.api_key
    original_client = stripe.default_http_client
    yield settings
    stripe.api_key = original_api_key
    stripe.default_http_client = original_client


def _fake_intent(intent_id="pi_real_123"):
    return types.SimpleNamespace(
        id=intent_id,
        client_secret=f"{intent_id}_secret_abc",
        status="requires_payment_method",
    )


@pytest.mark.django_db
def test_deposit_intent_creates_pending_payment(settings, client, booking):
    settings.STRIPE_USE_STUB = True

    response = client.post(
        reverse("payment-intent"),
        {"bookingId": booking.id, "amount": "75.00", "paymentType": "deposit"},
        format="json",
    )

    assert response.status_code == 200
    data = response.json()
    assert data["amount"] == "75.00"
    assert data["paymentType"] == Payment.DEPOSIT
    assert data["clientSecret"].startswith("pi_test_")

    payment = Payment.objects.get(pk=data["paymentId"])
    assert payment.amount == Decimal("75.00")
    assert payment.status == Payment.PENDING
    assert payment.payment_type == Payment.DEPOSIT
    assert payment.currency == "usd"
    assert data["clientSecret"].startswith(payment.stripe_payment_intent_id)
    booking.refresh_from_db()
    assert booking.status == Booking.PENDING


@pytest.mark.django_db
def test_payment_type_defaults_to_deposit(settings, client, booking):
    settings.STRIPE_USE_STUB = True

    response = client.post(reverse("payment-intent"), {"bookingId": booking.id, "amount": "75.00"}, format="json")

    assert response.status_code == 200
    assert Payment.objects.get().payment_type == Payment.DEPOSIT


@pytest.mark.django_db
def test_each_intent_gets_its_own_payment_row(settings, client, booking):
    settings.STRIPE_USE_STUB = True
    payload = {"bookingId": booking.id, "amount": "150.00", "paymentType": "full"}

    first = client.post(reverse("payment-intent"), payload, format="json")
    second = client.post(reverse("payment-intent"), payload, format="json")

    assert first.status_code == second.status_code == 200
    payments = list(Payment.objects.filter(booking=booking))
    assert len(payments) == 2
    assert len({payment.stripe_payment_intent_id for payment in payments}) == 2
    assert all(payment.status == Payment.PENDING for payment in payments)


@pytest.mark.django_db
def test_intent_uses_stripe_when_configured(monkeypatch, stripe_live, client, booking):
    captured = {}

    def fake_create(**kwargs):
        captured["kwargs"] = kwargs
        return _fake_intent()

    monkeypatch.setattr(stripe.PaymentIntent, "create", staticmethod(fake_create))

    response = client.post(
        reverse("payment-intent"),
        {"bookingId": booking.id, "amount": "150.00", "paymentType": "full"},
        format="json",
    )

    assert response.status_code == 200
    assert response.json()["clientSecret"] == "pi_real_123_secret_abc"
    assert stripe.api_key == "sk_test_123"
    kwargs = captured["kwargs"]
    assert kwargs["amount"] == 15000
    assert kwargs["currency"] == "usd"
    assert kwargs["metadata"] == {
        "booking_id": str(booking.id),
        "payment_type": "full",
        "customer_email": "dana@example.test",
        "service_name": "Roofing",
    }
    assert kwargs["description"] == "Full payment for Roofing - Dana Doe"
    payment = Payment.objects.get()
    assert payment.stripe_payment_intent_id == "pi_real_123"
    assert payment.description == "full payment for Roofing"


@pytest.mark.django_db
def test_missing_fields_are_rejected(client, booking):
    response = client.post(reverse("payment-intent"), {"paymentType": "full"}, format="json")

    assert response.status_code == 400
    assert set(response.json()) == {"bookingId", "amount"}
    assert Payment.objects.count() == 0


@pytest.mark.django_db
def test_unknown_booking_returns_404(settings, client):
    settings.STRIPE_USE_STUB = True

    response = client.post(reverse("payment-intent"), {"bookingId": 4242, "amount": "75.00"}, format="json")

    assert response.status_code == 404
    assert response.json() == {"error": "Booking not found"}


@pytest.mark.django_db
def test_amount_must_match_booking_snapshot(settings, client, booking):
    settings.STRIPE_USE_STUB = True

    response = client.post(
        reverse("payment-intent"),
        {"bookingId": booking.id, "amount": "1.00", "paymentType": "full"},
        format="json",
    )

    assert response.status_code == 400
    assert "150.00" in response.json()["error"]
    assert Payment.objects.count() == 0


@pytest.mark.django_db
def test_amount_check_can_be_disabled(settings, client, booking):
    settings.STRIPE_USE_STUB = True
    settings.PAYMENTS_ENFORCE_BOOKING_AMOUNT = False

    response = client.post(
        reverse("payment-intent"),
        {"bookingId": booking.id, "amount": "20.00", "paymentType": "deposit"},
        format="json",
    )

    assert response.status_code == 200
    assert Payment.objects.get().amount == Decimal("20.00")


@pytest.mark.django_db
def test_cancelled_booking_cannot_be_paid(settings, client, booking):
    settings.STRIPE_USE_STUB = True
    Booking.objects.filter(pk=booking.pk).update(status=Booking.CANCELLED)

    response = client.post(reverse("payment-intent"), {"bookingId": booking.id, "amount": "75.00"}, format="json")

    assert response.status_code == 400
    assert Payment.objects.count() == 0


@pytest.mark.django_db
def test_gateway_timeout_is_retryable(monkeypatch, stripe_live, client, booking):
    def fake_create(**kwargs):
        raise stripe.APIConnectionError("Request timed out")

    monkeypatch.setattr(stripe.PaymentIntent, "create", staticmethod(fake_create))

    response = client.post(reverse("payment-intent"), {"bookingId": booking.id, "amount": "75.00"}, format="json")

    assert response.status_code == 503
    assert response.json() == {"error": "Failed to create payment intent. Please try again."}
    assert Payment.objects.count() == 0


@pytest.mark.django_db
def test_gateway_rejection_returns_generic_500(monkeypatch, stripe_live, client, booking):
    def fake_create(**kwargs):
        raise stripe.InvalidRequestError("Amount must be at least 50 cents", param="amount")

    monkeypatch.setattr(stripe.PaymentIntent, "create", staticmethod(fake_create))

    response = client.post(reverse("payment-intent"), {"bookingId": booking.id, "amount": "75.00"}, format="json")

    assert response.status_code == 500
    assert response.json() == {"error": "Failed to create payment intent"}
    assert Payment.objects.count() == 0


@pytest.mark.django_db
def test_store_failure_cancels_created_intent(monkeypatch, stripe_live, client, booking):
    cancelled = []

    monkeypatch.setattr(stripe.PaymentIntent, "create", staticmethod(lambda **kwargs: _fake_intent("pi_orphan")))
    monkeypatch.setattr(
        stripe.PaymentIntent,
        "cancel",
        staticmethod(lambda intent_id, **kwargs: cancelled.append(intent_id)),
    )

    def failing_create(**kwargs):
        raise DatabaseError("connection lost")

    monkeypatch.setattr(Payment.objects, "create", failing_create)

    response = client.post(reverse("payment-intent"), {"bookingId": booking.id, "amount": "75.00"}, format="json")

    assert response.status_code == 500
    assert cancelled == ["pi_orphan"]


@pytest.mark.django_db
def test_failed_compensation_is_logged_as_orphan(monkeypatch, caplog, stripe_live, client, booking):
    monkeypatch.setattr(stripe.PaymentIntent, "create", staticmethod(lambda **kwargs: _fake_intent("pi_orphan")))

    def failing_cancel(intent_id, **kwargs):
        raise stripe.APIConnectionError("unreachable")

    def failing_create(**kwargs):
        raise DatabaseError("connection lost")

    monkeypatch.setattr(stripe.PaymentIntent, "cancel", staticmethod(failing_cancel))
    monkeypatch.setattr(Payment.objects, "create", failing_create)

    with caplog.at_level(logging.CRITICAL, logger="payments.services.reconciliation"):
        response = client.post(
            reverse("payment-intent"),
            {"bookingId": booking.id, "amount": "75.00"},
            format="json",
        )

    assert response.status_code == 500
    assert any("Orphaned Stripe intent pi_orphan" in record.getMessage() for record in caplog.records)

import types
from decimal import Decimal

import pytest
import stripe
from django.urls import reverse
from rest_framework.test import APIClient

from bookings.models import Booking
from bookings.services.bookings import create_booking
from catalog.models import Service
from payments.models import Payment
from payments.services import gateway


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
def full_payment(booking):
    return Payment.objects.create(
        booking=booking,
        amount=Decimal("150.00"),
        payment_type=Payment.FULL,
        stripe_payment_intent_id="pi_full",
    )


@pytest.fixture
def deposit_payment(booking):
    return Payment.objects.create(
        booking=booking,
        amount=Decimal("75.00"),
        payment_type=Payment.DEPOSIT,
        stripe_payment_intent_id="pi_deposit",
    )


@pytest.fixture
def stripe_live(settings):
    settings.STRIPE_USE_STUB = False
    settings.STRIPE_SECRET_KEY = "sk_test_123"
    original_api_key = stripe.api_key
    original_client = stripe.default_http_client
    yield settings
    stripe.api_key = original_api_key
    stripe.default_http_client = original_client


def _stub_retrieve(monkeypatch, status, latest_charge=None):
    calls = []

    def fake_retrieve(intent_id, **kwargs):
        calls.append(intent_id)
        return types.SimpleNamespace(id=intent_id, status=status, latest_charge=latest_charge)

    monkeypatch.setattr(stripe.PaymentIntent, "retrieve", staticmethod(fake_retrieve))
    return calls


def _confirm(payment, intent_id=None):
    return APIClient().put(
        reverse("payment-intent"),
        {"paymentIntentId": intent_id or payment.stripe_payment_intent_id, "paymentId": payment.id},
        format="json",
    )


@pytest.mark.django_db
def test_full_payment_success_confirms_booking(monkeypatch, stripe_live, full_payment, booking):
    calls = _stub_retrieve(monkeypatch, "succeeded", latest_charge="ch_full")

    response = _confirm(full_payment)

    assert response.status_code == 200
    data = response.json()
    assert data["success"] is True
    assert data["message"] == "Payment confirmed successfully"
    assert data["payment"]["status"] == Payment.SUCCEEDED
    assert calls == ["pi_full"]

    full_payment.refresh_from_db()
    assert full_payment.status == Payment.SUCCEEDED
    assert full_payment.stripe_charge_id == "ch_full"
    assert full_payment.paid_at is not None
    booking.refresh_from_db()
    assert booking.status == Booking.CONFIRMED


@pytest.mark.django_db
def test_deposit_success_leaves_booking_pending(monkeypatch, stripe_live, deposit_payment, booking):
    _stub_retrieve(monkeypatch, "succeeded", latest_charge="ch_deposit")

    response = _confirm(deposit_payment)

    assert response.status_code == 200
    deposit_payment.refresh_from_db()
    assert deposit_payment.status == Payment.SUCCEEDED
    booking.refresh_from_db()
    assert booking.status == Booking.PENDING


@pytest.mark.django_db
def test_expanded_latest_charge_is_recorded(monkeypatch, stripe_live, full_payment):
    _stub_retrieve(monkeypatch, "succeeded", latest_charge=types.SimpleNamespace(id="ch_expanded"))

    _confirm(full_payment)

    full_payment.refresh_from_db()
    assert full_payment.stripe_charge_id == "ch_expanded"


@pytest.mark.django_db
def test_processing_intent_is_not_terminal(monkeypatch, stripe_live, full_payment, booking):
    _stub_retrieve(monkeypatch, "processing")

    response = _confirm(full_payment)

    assert response.status_code == 200
    assert response.json() == {"success": False, "message": "Payment is still processing"}
    full_payment.refresh_from_db()
    assert full_payment.status == Payment.PENDING
    booking.refresh_from_db()
    assert booking.status == Booking.PENDING


@pytest.mark.django_db
def test_unsuccessful_intent_reports_failure_without_mutation(monkeypatch, stripe_live, full_payment):
    _stub_retrieve(monkeypatch, "requires_payment_method")

    response = _confirm(full_payment)

    assert response.status_code == 400
    assert response.json() == {"error": "Payment failed"}
    full_payment.refresh_from_db()
    assert full_payment.status == Payment.PENDING
    assert full_payment.paid_at is None


@pytest.mark.django_db
def test_reconfirming_succeeded_payment_does_not_mutate(monkeypatch, stripe_live, full_payment):
    _stub_retrieve(monkeypatch, "succeeded", latest_charge="ch_full")
    _confirm(full_payment)
    full_payment.refresh_from_db()
    first_paid_at = full_payment.paid_at

    _stub_retrieve(monkeypatch, "succeeded", latest_charge="ch_other")
    response = _confirm(full_payment)

    assert response.status_code == 200
    assert response.json()["success"] is True
    full_payment.refresh_from_db()
    assert full_payment.paid_at == first_paid_at
    assert full_payment.stripe_charge_id == "ch_full"


@pytest.mark.django_db
def test_failed_payment_is_not_revived_by_late_success(monkeypatch, stripe_live, full_payment, booking):
    Payment.objects.filter(pk=full_payment.pk).update(status=Payment.FAILED)
    _stub_retrieve(monkeypatch, "succeeded", latest_charge="ch_late")

    response = _confirm(full_payment)

    assert response.status_code == 400
    full_payment.refresh_from_db()
    assert full_payment.status == Payment.FAILED
    booking.refresh_from_db()
    assert booking.status == Booking.PENDING


@pytest.mark.django_db
def test_unknown_payment_returns_404(monkeypatch, stripe_live, booking):
    calls = _stub_retrieve(monkeypatch, "succeeded")

    response = APIClient().put(
        reverse("payment-intent"),
        {"paymentIntentId": "pi_missing", "paymentId": 4242},
        format="json",
    )

    assert response.status_code == 404
    assert calls == []


@pytest.mark.django_db
def test_intent_must_belong_to_payment(monkeypatch, stripe_live, full_payment, deposit_payment):
    _stub_retrieve(monkeypatch, "succeeded")

    response = _confirm(full_payment, intent_id=deposit_payment.stripe_payment_intent_id)

    assert response.status_code == 400
    full_payment.refresh_from_db()
    assert full_payment.status == Payment.PENDING


@pytest.mark.django_db
def test_missing_fields_are_rejected(full_payment):
    response = APIClient().put(reverse("payment-intent"), {"paymentId": full_payment.id}, format="json")

    assert response.status_code == 400
    assert "paymentIntentId" in response.json()


@pytest.mark.django_db
def test_retrieval_failure_surfaces_as_retryable(monkeypatch, stripe_live, full_payment):
    def fake_retrieve(intent_id, **kwargs):
        raise stripe.APIConnectionError("Request timed out")

    monkeypatch.setattr(stripe.PaymentIntent, "retrieve", staticmethod(fake_retrieve))

    response = _confirm(full_payment)

    assert response.status_code == 503
    full_payment.refresh_from_db()
    assert full_payment.status == Payment.PENDING


@pytest.mark.django_db
def test_stub_mode_confirms_without_stripe(settings, full_payment, booking):
    settings.STRIPE_USE_STUB = True

    response = _confirm(full_payment)

    assert response.status_code == 200
    full_payment.refresh_from_db()
    assert full_payment.status == Payment.SUCCEEDED
    assert full_payment.stripe_charge_id.startswith("ch_test_")
    booking.refresh_from_db()
    assert booking.status == Booking.CONFIRMED


@pytest.mark.django_db
def test_configured_key_overrides_stub_flag(monkeypatch, settings, full_payment, booking):
    settings.STRIPE_SECRET_KEY = "sk_live_configured"
    settings.STRIPE_USE_STUB = True
    original_api_key = stripe.api_key
    original_client = stripe.default_http_client
    calls = _stub_retrieve(monkeypatch, "requires_payment_method")

    try:
        response = _confirm(full_payment)
    finally:
        stripe.api_key = original_api_key
        stripe.default_http_client = original_client

    assert response.status_code == 400
    assert calls == ["pi_full"]
    full_payment.refresh_from_db()
    assert full_payment.status == Payment.PENDING
    booking.refresh_from_db()
    assert booking.status == Booking.PENDING


@pytest.mark.django_db
def test_missing_key_without_stub_never_confirms(settings, full_payment, booking):
    settings.STRIPE_SECRET_KEY = ""
    settings.STRIPE_USE_STUB = False

    response = _confirm(full_payment)

    assert response.status_code == 500
    full_payment.refresh_from_db()
    assert full_payment.status == Payment.PENDING
    booking.refresh_from_db()
    assert booking.status == Booking.PENDING


def test_stub_mode_is_off_by_default():
    from config import settings as project_settings

    assert project_settings.STRIPE_USE_STUB is False


def test_http_client_is_reused_between_calls(stripe_live):
    gateway.configure_stripe()
    first = stripe.default_http_client
    gateway.configure_stripe()

    assert stripe.default_http_client is first
    assert isinstance(first, stripe.RequestsClient)

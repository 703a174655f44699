from __future__ import annotations

from dataclasses import dataclass
from decimal import ROUND_HALF_UP, Decimal
from typing import Optional
from uuid import uuid4

import stripe
from django.conf import settings

from payments.exceptions import GatewayConfigurationError, GatewayError, InvalidSignature

# Failures worth retrying: the request may not have reached Stripe, or Stripe asked us to back off.
TRANSIENT_ERRORS = (stripe.APIConnectionError, stripe.RateLimitError, stripe.APIError)


@dataclass
class PaymentIntentStub:
    """
    Stand-in for stripe.PaymentIntent when running in stub mode.

    Local development does not hit Stripe; intents are created with predictable
    identifiers and every confirmation reports success so the booking flow can
    be exercised end to end. Only used while no STRIPE_SECRET_KEY is set.
    """

    id: str
    client_secret: str
    status: str
    amount: int
    currency: str
    latest_charge: Optional[str] = None


@dataclass
class RefundStub:
    id: str
    payment_intent: str
    status: str


def to_minor_units(amount: Decimal) -> int:
    """Convert a decimal currency amount to integer cents, rounding half up."""
    cents = (Decimal(amount) * Decimal("100")).quantize(Decimal("1"), rounding=ROUND_HALF_UP)
    return int(cents)


def _get_stripe_api_key() -> Optional[str]:
    key = getattr(settings, "STRIPE_SECRET_KEY", "")
    return key or None


def _should_use_stub() -> bool:
    # A configured key always talks to Stripe.
    if _get_stripe_api_key():
        return False
    return bool(getattr(settings, "STRIPE_USE_STUB", False))


_http_clients: dict = {}


def _http_client(timeout: int):
    client = _http_clients.get(timeout)
    if client is None:
        client = _http_clients[timeout] = stripe.RequestsClient(timeout=timeout)
    return client


def configure_stripe():
    api_key = _get_stripe_api_key()
    if not api_key:
        raise GatewayConfigurationError("STRIPE_SECRET_KEY is not configured.")
    stripe.api_key = api_key
    stripe.max_network_retries = settings.STRIPE_MAX_NETWORK_RETRIES
    client = _http_client(settings.STRIPE_TIMEOUT_SECONDS)
    if stripe.default_http_client is not client:
        stripe.default_http_client = client


def _gateway_error(action: str, exc: stripe.StripeError) -> GatewayError:
    retryable = isinstance(exc, TRANSIENT_ERRORS)
    message = f"Stripe {action} failed: {exc.user_message or exc.__class__.__name__}"
    return GatewayError(message, retryable=retryable)


def create_payment_intent(*, amount_cents: int, currency: str, metadata: dict, description: str):
    """
    Create a PaymentIntent (or stub equivalent).

    Returns an object exposing ``id``, ``client_secret`` and ``status``.
    """

    if _should_use_stub():
        intent_id = f"pi_test_{uuid4().hex}"
        return PaymentIntentStub(
            id=intent_id,
            client_secret=f"{intent_id}_secret_{uuid4().hex[:16]}",
            status="requires_payment_method",
            amount=amount_cents,
            currency=currency,
        )

    configure_stripe()
    try:
        return stripe.PaymentIntent.create(
            amount=amount_cents,
            currency=currency,
            metadata={key: str(value) for key, value in metadata.items()},
            description=description,
            automatic_payment_methods={"enabled": True},
        )
    except stripe.StripeError as exc:
        raise _gateway_error("intent creation", exc) from exc


def retrieve_payment_intent(intent_id: str):
    if _should_use_stub():
        return PaymentIntentStub(
            id=intent_id,
            client_secret="",
            status="succeeded",
            amount=0,
            currency=settings.PAYMENTS_CURRENCY,
            latest_charge=f"ch_test_{intent_id.removeprefix('pi_test_')}",
        )

    configure_stripe()
    try:
        return stripe.PaymentIntent.retrieve(intent_id)
    except stripe.StripeError as exc:
        raise _gateway_error("intent retrieval", exc) from exc


def cancel_payment_intent(intent_id: str):
    if _should_use_stub():
        return PaymentIntentStub(
            id=intent_id,
            client_secret="",
            status="canceled",
            amount=0,
            currency=settings.PAYMENTS_CURRENCY,
        )

    configure_stripe()
    try:
        return stripe.PaymentIntent.cancel(intent_id)
    except stripe.StripeError as exc:
        raise _gateway_error("intent cancellation", exc) from exc


def create_refund(*, payment_intent_id: str):
    if _should_use_stub():
        return RefundStub(id=f"re_test_{uuid4().hex}", payment_intent=payment_intent_id, status="succeeded")

    configure_stripe()
    try:
        return stripe.Refund.create(payment_intent=payment_intent_id)
    except stripe.StripeError as exc:
        raise _gateway_error("refund", exc) from exc


def construct_webhook_event(payload: bytes, sig_header: str):
    """
    Verify ``payload`` against the Stripe-Signature header and return the event.

    ``payload`` must be the raw request body; the signature covers its exact bytes.
    """

    if not sig_header:
        raise InvalidSignature("Missing Stripe-Signature header.")

    secret = getattr(settings, "STRIPE_WEBHOOK_SECRET", "")
    if not secret:
        raise GatewayConfigurationError("STRIPE_WEBHOOK_SECRET is not configured.")

    try:
        return stripe.Webhook.construct_event(payload, sig_header, secret)
    except ValueError as exc:
        raise InvalidSignature("Webhook payload is not valid JSON.") from exc
    except stripe.SignatureVerificationError as exc:
        raise InvalidSignature("Webhook signature verification failed.") from exc

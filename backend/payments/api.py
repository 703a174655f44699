import logging

from rest_framework import permissions, status
from rest_framework.response import Response
from rest_framework.views import APIView

from payments.exceptions import (
    GatewayConfigurationError,
    GatewayError,
    InvalidSignature,
    PaymentError,
    PaymentNotFound,
    PaymentValidationError,
    StoreError,
)
from payments.serializers import (
    PaymentConfirmRequestSerializer,
    PaymentIntentRequestSerializer,
    PaymentSerializer,
)
from payments.services.reconciliation import (
    ConfirmationResult,
    confirm_payment,
    create_payment_intent,
    handle_webhook_event,
    refund_payment,
)

logger = logging.getLogger(__name__)


def payment_error_response(exc: PaymentError, *, failure_message: str) -> Response:
    """Translate a reconciliation error into a response without leaking internals."""
    if isinstance(exc, PaymentValidationError):
        return Response({"error": str(exc)}, status=status.HTTP_400_BAD_REQUEST)
    if isinstance(exc, PaymentNotFound):
        return Response({"error": str(exc)}, status=status.HTTP_404_NOT_FOUND)
    if isinstance(exc, GatewayError) and exc.retryable:
        logger.exception("%s: %s", failure_message, exc)
        return Response(
            {"error": f"{failure_message}. Please try again."},
            status=status.HTTP_503_SERVICE_UNAVAILABLE,
        )
    logger.exception("%s: %s", failure_message, exc)
    return Response({"error": failure_message}, status=status.HTTP_500_INTERNAL_SERVER_ERROR)


class PaymentIntentView(APIView):
    """Create (POST) and confirm (PUT) booking payments."""

    def post(self, request, *args, **kwargs):
        serializer = PaymentIntentRequestSerializer(data=request.data)
        serializer.is_valid(raise_exception=True)
        try:
            created = create_payment_intent(**serializer.validated_data)
        except PaymentError as exc:
            return payment_error_response(exc, failure_message="Failed to create payment intent")

        payment = created.payment
        return Response(
            {
                "clientSecret": created.client_secret,
                "paymentId": payment.pk,
                "amount": f"{payment.amount:.2f}",
                "paymentType": payment.payment_type,
            }
        )

    def put(self, request, *args, **kwargs):
        serializer = PaymentConfirmRequestSerializer(data=request.data)
        serializer.is_valid(raise_exception=True)
        try:
            result = confirm_payment(**serializer.validated_data)
        except PaymentError as exc:
            return payment_error_response(exc, failure_message="Failed to confirm payment")

        if result.succeeded:
            return Response(
                {
                    "success": True,
                    "payment": PaymentSerializer(result.payment).data,
                    "message": "Payment confirmed successfully",
                }
            )
        if result.outcome == ConfirmationResult.PROCESSING:
            return Response({"success": False, "message": "Payment is still processing"})
        return Response({"error": "Payment failed"}, status=status.HTTP_400_BAD_REQUEST)


class PaymentRefundView(APIView):
    permission_classes = [permissions.IsAdminUser]

    def post(self, request, payment_id):
        try:
            payment = refund_payment(payment_id=payment_id)
        except PaymentError as exc:
            return payment_error_response(exc, failure_message="Failed to refund payment")
        return Response(PaymentSerializer(payment).data, status=status.HTTP_202_ACCEPTED)


class StripeWebhookView(APIView):
    """Receive Stripe payment webhook events."""

    permission_classes: list = []
    authentication_classes: list = []

    def post(self, request, *args, **kwargs):
        payload = request.body
        sig_header = request.META.get("HTTP_STRIPE_SIGNATURE", "")

        try:
            event_type = handle_webhook_event(payload, sig_header)
        except InvalidSignature as exc:
            logger.warning(
                "Rejected Stripe webhook from %s: %s",
                request.META.get("REMOTE_ADDR", "unknown"),
                exc,
            )
            return Response({"error": "Invalid signature"}, status=status.HTTP_400_BAD_REQUEST)
        except GatewayConfigurationError as exc:
            logger.error("Stripe webhook not configured: %s", exc)
            return Response(status=status.HTTP_500_INTERNAL_SERVER_ERROR)
        except StoreError as exc:
            logger.exception("Stripe webhook processing failed: %s", exc)
            return Response(
                {"error": "Webhook processing failed"},
                status=status.HTTP_500_INTERNAL_SERVER_ERROR,
            )

        logger.debug("Processed Stripe webhook event %s", event_type)
        return Response({"received": True})

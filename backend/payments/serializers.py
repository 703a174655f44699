from rest_framework import serializers

from payments.models import Payment


class PaymentSerializer(serializers.ModelSerializer):
    booking_id = serializers.IntegerField(read_only=True)

    class Meta:
        model = Payment
        fields = [
            "id",
            "booking_id",
            "amount",
            "currency",
            "status",
            "payment_type",
            "stripe_payment_intent_id",
            "stripe_charge_id",
            "description",
            "paid_at",
            "created_at",
            "updated_at",
        ]
        read_only_fields = fields


class PaymentIntentRequestSerializer(serializers.Serializer):
    bookingId = serializers.IntegerField(source="booking_id", min_value=1)
    amount = serializers.DecimalField(max_digits=10, decimal_places=2)
    paymentType = serializers.ChoiceField(
        source="payment_type",
        choices=[choice for choice, _ in Payment.PAYMENT_TYPES],
        default=Payment.DEPOSIT,
    )


class PaymentConfirmRequestSerializer(serializers.Serializer):
    paymentIntentId = serializers.CharField(source="payment_intent_id", max_length=200)
    paymentId = serializers.IntegerField(source="payment_id", min_value=1)

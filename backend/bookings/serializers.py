from collections.abc import Mapping

from rest_framework import serializers

from bookings.models import Booking
from bookings.services.bookings import BookingUpdate
from catalog.models import Service
from catalog.serializers import ServiceSerializer
from payments.serializers import PaymentSerializer


class BookingSerializer(serializers.ModelSerializer):
    service = ServiceSerializer(read_only=True)

    class Meta:
        model = Booking
        fields = [
            "id",
            "service",
            "customer_name",
            "customer_email",
            "customer_phone",
            "customer_address",
            "scheduled_date",
            "status",
            "notes",
            "budget",
            "total_amount",
            "deposit_amount",
            "created_at",
            "updated_at",
            "completed_at",
        ]
        read_only_fields = fields


class BookingDetailSerializer(BookingSerializer):
    payments = serializers.SerializerMethodField()

    class Meta(BookingSerializer.Meta):
        fields = BookingSerializer.Meta.fields + ["payments"]
        read_only_fields = fields

    def get_payments(self, obj):
        return PaymentSerializer(obj.payments.all(), many=True).data


class BookingCreateSerializer(serializers.Serializer):
    service_id = serializers.PrimaryKeyRelatedField(
        queryset=Service.objects.active(),
        source="service",
        error_messages={"does_not_exist": "Service not found."},
    )
    customer_name = serializers.CharField(max_length=200)
    customer_email = serializers.EmailField()
    customer_phone = serializers.CharField(max_length=30)
    customer_address = serializers.CharField(max_length=300)
    budget = serializers.DecimalField(
        max_digits=10,
        decimal_places=2,
        min_value=0,
        required=False,
        allow_null=True,
    )
    notes = serializers.CharField(required=False, allow_blank=True, default="")


class BookingUpdateSerializer(serializers.Serializer):
    status = serializers.ChoiceField(
        choices=[Booking.COMPLETED, Booking.CANCELLED],
        required=False,
    )
    notes = serializers.CharField(required=False, allow_blank=True)
    scheduled_date = serializers.DateTimeField(required=False)

    def to_internal_value(self, data):
        if not isinstance(data, Mapping):
            raise serializers.ValidationError(
                {"non_field_errors": ["Expected an object of fields to update."]}
            )
        unknown = sorted(set(data) - set(self.fields))
        if unknown:
            raise serializers.ValidationError(
                {field: "This field cannot be updated." for field in unknown}
            )
        return super().to_internal_value(data)

    def to_update(self) -> BookingUpdate:
        return BookingUpdate(**self.validated_data)

from rest_framework import serializers


class CheckAvailabilityArgsSerializer(serializers.Serializer):
    serviceName = serializers.CharField()
    date = serializers.CharField(required=False, allow_blank=True, default="")


class CreateBookingArgsSerializer(serializers.Serializer):
    serviceName = serializers.CharField()
    customerName = serializers.CharField(max_length=200)
    customerEmail = serializers.EmailField()
    customerPhone = serializers.CharField(max_length=30)
    customerAddress = serializers.CharField(max_length=300)
    date = serializers.CharField(required=False, allow_blank=True, allow_null=True, default="")
    time = serializers.CharField(required=False, allow_blank=True, default="")

from django.db.models import Prefetch
from rest_framework import generics, status
from rest_framework.response import Response

from bookings.models import Booking
from bookings.serializers import (
    BookingCreateSerializer,
    BookingDetailSerializer,
    BookingSerializer,
    BookingUpdateSerializer,
)
from bookings.services.bookings import create_booking, update_booking
from payments.models import Payment


class BookingListCreateView(generics.ListCreateAPIView):
    serializer_class = BookingSerializer
    pagination_class = None
    filterset_fields = ["status", "service"]
    search_fields = ["customer_name", "customer_email", "customer_phone"]
    ordering_fields = ["created_at", "scheduled_date"]

    def get_queryset(self):
        return Booking.objects.select_related("service").order_by("-created_at", "-id")

    def create(self, request, *args, **kwargs):
        serializer = BookingCreateSerializer(data=request.data)
        serializer.is_valid(raise_exception=True)
        booking = create_booking(**serializer.validated_data)
        output = BookingSerializer(booking)
        return Response(output.data, status=status.HTTP_201_CREATED)


class BookingDetailView(generics.RetrieveAPIView):
    serializer_class = BookingDetailSerializer

    def get_queryset(self):
        return Booking.objects.select_related("service").prefetch_related(
            Prefetch("payments", queryset=Payment.objects.order_by("created_at", "id"))
        )

    def patch(self, request, *args, **kwargs):
        booking = self.get_object()
        serializer = BookingUpdateSerializer(data=request.data, partial=True)
        serializer.is_valid(raise_exception=True)
        update_booking(booking, serializer.to_update())
        return Response(BookingSerializer(booking).data)

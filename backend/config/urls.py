from django.contrib import admin
from django.urls import path

from bookings.api import BookingDetailView, BookingListCreateView
from catalog.api import ServiceListView
from payments.api import PaymentIntentView, PaymentRefundView, StripeWebhookView
from voice.api import VapiWebhookView

urlpatterns = [
    path("admin/", admin.site.urls),
    path("api/services/", ServiceListView.as_view(), name="service-list"),
    path("api/bookings/", BookingListCreateView.as_view(), name="booking-list"),
    path("api/bookings/<int:pk>/", BookingDetailView.as_view(), name="booking-detail"),
    path("api/payments/", PaymentIntentView.as_view(), name="payment-intent"),
    path(
        "api/payments/<int:payment_id>/refund/",
        PaymentRefundView.as_view(),
        name="payment-refund",
    ),
    path("api/webhooks/stripe/", StripeWebhookView.as_view(), name="stripe-webhook"),
    path("api/vapi/", VapiWebhookView.as_view(), name="vapi-webhook"),
]

from django.contrib import admin, messages

from payments.exceptions import PaymentError
from payments.services.reconciliation import refund_payment

from .models import Payment


@admin.register(Payment)
class PaymentAdmin(admin.ModelAdmin):
    list_display = ("booking", "payment_type", "amount", "currency", "status", "paid_at", "created_at")
    list_filter = ("status", "payment_type")
    search_fields = ("stripe_payment_intent_id", "stripe_charge_id", "booking__customer_email")
    readonly_fields = (
        "booking",
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
    )
    actions = ["refund_selected"]

    def has_add_permission(self, request):
        return False

    def has_delete_permission(self, request, obj=None):
        return False

    @admin.action(description="Refund selected payments")
    def refund_selected(self, request, queryset):
        for payment in queryset:
            try:
                refund_payment(payment_id=payment.pk)
            except PaymentError as exc:
                self.message_user(request, f"Payment {payment.pk}: {exc}", level=messages.ERROR)
            else:
                self.message_user(request, f"Refund requested for payment {payment.pk}.")

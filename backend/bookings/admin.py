from django.contrib import admin

from payments.models import Payment

from .models import Booking


class PaymentInline(admin.TabularInline):
    model = Payment
    extra = 0
    can_delete = False
    fields = ("payment_type", "amount", "currency", "status", "stripe_payment_intent_id", "paid_at")
    readonly_fields = fields

    def has_add_permission(self, request, obj=None):
        return False


@admin.register(Booking)
class BookingAdmin(admin.ModelAdmin):
    list_display = ("customer_name", "service", "scheduled_date", "status", "total_amount", "created_at")
    list_filter = ("status", "service")
    search_fields = ("customer_name", "customer_email", "customer_phone")
    readonly_fields = ("total_amount", "deposit_amount", "created_at", "updated_at", "completed_at")
    date_hierarchy = "scheduled_date"
    inlines = [PaymentInline]

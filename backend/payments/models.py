from django.db import models


class Payment(models.Model):
    """One attempt to collect money for a booking, mirrored from a Stripe PaymentIntent."""

    PENDING = "pending"
    SUCCEEDED = "succeeded"
    FAILED = "failed"
    REFUNDED = "refunded"
    STATUSES = [
        (PENDING, "Pending"),
        (SUCCEEDED, "Succeeded"),
        (FAILED, "Failed"),
        (REFUNDED, "Refunded"),
    ]

    DEPOSIT = "deposit"
    FULL = "full"
    PAYMENT_TYPES = [
        (DEPOSIT, "Deposit"),
        (FULL, "Full"),
    ]

    booking = models.ForeignKey("bookings.Booking", on_delete=models.PROTECT, related_name="payments")
    amount = models.DecimalField(max_digits=10, decimal_places=2)
    currency = models.CharField(max_length=10, default="usd")
    status = models.CharField(max_length=12, choices=STATUSES, default=PENDING)
    payment_type = models.CharField(max_length=10, choices=PAYMENT_TYPES, default=DEPOSIT)
    stripe_payment_intent_id = models.CharField(max_length=200, unique=True)
    stripe_charge_id = models.CharField(max_length=200, unique=True, null=True, blank=True)
    description = models.CharField(max_length=300, blank=True)
    paid_at = models.DateTimeField(null=True, blank=True)
    created_at = models.DateTimeField(auto_now_add=True)
    updated_at = models.DateTimeField(auto_now=True)

    class Meta:
        ordering = ["-created_at", "-id"]
        indexes = [
            models.Index(fields=["status"], name="payment_status_idx"),
        ]

    def __str__(self):
        return f"{self.get_payment_type_display()} {self.amount} {self.currency} ({self.status})"


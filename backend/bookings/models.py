from django.core.validators import MinValueValidator
from django.db import models


class Booking(models.Model):
    """A customer's request for a service visit, priced at creation time."""

    PENDING = "pending"
    CONFIRMED = "confirmed"
    COMPLETED = "completed"
    CANCELLED = "cancelled"
    STATUSES = [
        (PENDING, "Pending"),
        (CONFIRMED, "Confirmed"),
        (COMPLETED, "Completed"),
        (CANCELLED, "Cancelled"),
    ]

    service = models.ForeignKey("catalog.Service", on_delete=models.PROTECT, related_name="bookings")
    customer_name = models.CharField(max_length=200)
    customer_email = models.EmailField()
    customer_phone = models.CharField(max_length=30)
    customer_address = models.CharField(max_length=300)
    scheduled_date = models.DateTimeField()
    status = models.CharField(max_length=12, choices=STATUSES, default=PENDING)
    notes = models.TextField(blank=True)
    budget = models.DecimalField(
        max_digits=10,
        decimal_places=2,
        null=True,
        blank=True,
        validators=[MinValueValidator(0)],
    )
    # Snapshots of the service price when the booking was made.
    total_amount = models.DecimalField(max_digits=10, decimal_places=2, default=0)
    deposit_amount = models.DecimalField(max_digits=10, decimal_places=2, default=0)
    created_at = models.DateTimeField(auto_now_add=True)
    updated_at = models.DateTimeField(auto_now=True)
    completed_at = models.DateTimeField(null=True, blank=True)

    class Meta:
        ordering = ["-created_at", "-id"]
        indexes = [
            models.Index(fields=["customer_email"], name="booking_customer_email_idx"),
            models.Index(fields=["scheduled_date"], name="booking_scheduled_date_idx"),
            models.Index(fields=["status"], name="booking_status_idx"),
        ]

    def __str__(self):
        return f"{self.service.name} for {self.customer_name} ({self.status})"

from django.core.validators import MinValueValidator
from django.db import models


class ServiceQuerySet(models.QuerySet):
    def active(self):
        return self.filter(is_active=True)


class Service(models.Model):
    """A bookable home-service offering (roofing, plumbing, ...)."""

    name = models.CharField(max_length=120, unique=True)
    description = models.TextField(blank=True)
    duration = models.PositiveIntegerField(help_text="Duration in minutes.")
    price = models.DecimalField(max_digits=10, decimal_places=2, validators=[MinValueValidator(0)])
    # Services referenced by bookings are deactivated rather than deleted.
    is_active = models.BooleanField(default=True)
    created_at = models.DateTimeField(auto_now_add=True)
    updated_at = models.DateTimeField(auto_now=True)

    objects = ServiceQuerySet.as_manager()

    class Meta:
        ordering = ["name"]

    def __str__(self):
        return self.name

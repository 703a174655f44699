from decimal import Decimal

from django.conf import settings
from django.contrib.auth import get_user_model
from django.core.management.base import BaseCommand, CommandError
from django.db import transaction

from catalog.models import Service


SUPERUSER_EMAIL = "admin@homeservices.test"
SUPERUSER_PASSWORD = "AdminHomeServices123!"

SEED_SERVICES = [
    {
        "name": "Roofing",
        "description": "Professional roof repair, replacement, and maintenance",
        "duration": 120,
        "price": Decimal("150.00"),
    },
    {
        "name": "Plumbing",
        "description": "Plumbing repairs, installations, and maintenance",
        "duration": 90,
        "price": Decimal("120.00"),
    },
    {
        "name": "HVAC",
        "description": "Heating, ventilation, and air conditioning services",
        "duration": 120,
        "price": Decimal("140.00"),
    },
    {
        "name": "General Maintenance",
        "description": "General home maintenance and repairs",
        "duration": 60,
        "price": Decimal("100.00"),
    },
]


class Command(BaseCommand):
    help = "Populate the local development database with reference services and a staff login."

    def handle(self, *args, **options):
        if not settings.DEBUG:
            raise CommandError("Refusing to seed data while DEBUG is False.")

        with transaction.atomic():
            self.stdout.write(self.style.MIGRATE_HEADING("Creating services"))
            services = [self._ensure_service(**data) for data in SEED_SERVICES]
            for service in services:
                self.stdout.write(f"  {service.name}: ${service.price} / {service.duration} min")

            self.stdout.write(self.style.MIGRATE_HEADING("Creating staff login"))
            self._ensure_superuser()

        self.stdout.write(self.style.SUCCESS(f"Seeded {len(services)} services."))
        self.stdout.write(f"Admin login: {SUPERUSER_EMAIL} / {SUPERUSER_PASSWORD}")

    def _ensure_service(self, name: str, description: str, duration: int, price: Decimal) -> Service:
        # Existing rows keep their price; bookings snapshot it anyway.
        service, _ = Service.objects.get_or_create(
            name=name,
            defaults={"description": description, "duration": duration, "price": price},
        )
        return service

    def _ensure_superuser(self):
        User = get_user_model()
        user, created = User.objects.get_or_create(
            username=SUPERUSER_EMAIL,
            defaults={
                "email": SUPERUSER_EMAIL,
                "is_staff": True,
                "is_superuser": True,
            },
        )
        if created or not user.has_usable_password():
            user.set_password(SUPERUSER_PASSWORD)
            user.save(update_fields=["password"])
        return user

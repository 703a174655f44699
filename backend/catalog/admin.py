from django.contrib import admin

from .models import Service


@admin.register(Service)
class ServiceAdmin(admin.ModelAdmin):
    list_display = ("name", "price", "duration", "is_active", "updated_at")
    list_filter = ("is_active",)
    search_fields = ("name", "description")
    actions = ["deactivate_services", "activate_services"]

    @admin.action(description="Deactivate selected services")
    def deactivate_services(self, request, queryset):
        updated = queryset.update(is_active=False)
        self.message_user(request, f"{updated} service(s) deactivated.")

    @admin.action(description="Activate selected services")
    def activate_services(self, request, queryset):
        updated = queryset.update(is_active=True)
        self.message_user(request, f"{updated} service(s) activated.")

    def has_delete_permission(self, request, obj=None):
        if obj is not None and obj.bookings.exists():
            return False
        return super().has_delete_permission(request, obj)

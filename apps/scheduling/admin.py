"""Admin registration for scheduling."""

from __future__ import annotations

from django.contrib import admin

from .models import Appointment, Resource, Service


@admin.register(Resource)
class ResourceAdmin(admin.ModelAdmin):
    list_display = ("label", "capacity", "opens_at", "closes_at", "is_published", "ledger_version")
    list_filter = ("is_published",)
    search_fields = ("label",)
    readonly_fields = ("ledger_version", "created_at", "updated_at")

    def get_readonly_fields(self, request, obj=None):  # type: ignore
        # Capacity of an existing resource only changes through the capacity action
        if obj is not None:
            return ("capacity",) + self.readonly_fields
        return self.readonly_fields


@admin.register(Service)
class ServiceAdmin(admin.ModelAdmin):
    list_display = ("name", "duration", "requires_otp", "confirmation_window", "is_published")
    list_filter = ("is_published", "requires_otp")
    search_fields = ("name",)
    filter_horizontal = ("resources",)


@admin.register(Appointment)
class AppointmentAdmin(admin.ModelAdmin):
    list_display = (
        "id",
        "resource",
        "service",
        "customer",
        "status",
        "start_time",
        "end_time",
        "capacity_units",
        "confirm_deadline",
    )
    list_filter = ("status", "resource", "service")
    search_fields = ("id", "customer__email", "resource__label")
    readonly_fields = [field.name for field in Appointment._meta.fields]

    def has_add_permission(self, request):  # type: ignore
        return False

    def has_delete_permission(self, request, obj=None):  # type: ignore
        return False

from django.contrib import admin
from drivers.models import DriverApplication


@admin.register(DriverApplication)
class DriverApplicationAdmin(admin.ModelAdmin):
    """Admin panel for reviewing driver applications"""

    list_display = [
        "application_id",
        "user",
        "first_name",
        "last_name",
        "plate_no",
        "license_no",
        "status",
        "submitted_at",
    ]

    list_filter = [
        "status",
        "vehicle_type",
        "submitted_at",
    ]

    search_fields = [
        "user__username",
        "plate_no",
        "license_no",
        "citizenship_no",
    ]

    # Decisions go through the verify endpoint so approval also promotes the user.
    readonly_fields = [
        "status",
        "submitted_at",
        "decided_at",
        "decided_by",
    ]

    ordering = ("submitted_at",)

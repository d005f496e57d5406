"""Tells what to show in the Django admin interface for rides app"""

from django.contrib import admin
from .models import RideRequest


@admin.register(RideRequest)
class RideRequestAdmin(admin.ModelAdmin):
    """Ride Request admin"""
    list_display = ['id', 'passenger', 'driver', 'status', 'fare', 'distance_km', 'requested_at', 'accepted_at', 'completed_at']
    list_filter = ['status', 'requested_at']
    search_fields = ['passenger__username', 'driver__username']
    readonly_fields = ['fare', 'distance_km', 'requested_at', 'accepted_at', 'completed_at', 'cancelled_at']
    date_hierarchy = 'requested_at'

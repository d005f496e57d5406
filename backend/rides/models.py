from django.db import models
from django.conf import settings

from services.ride_management import transitions


class RideRequest(models.Model):
    """A passenger's ride request and its lifecycle state."""

    STATUS_CHOICES = transitions.STATUS_CHOICES

    # Foreign keys
    passenger = models.ForeignKey(
        settings.AUTH_USER_MODEL,
        on_delete=models.CASCADE,
        related_name='ride_requests'
    )

    driver = models.ForeignKey(
        settings.AUTH_USER_MODEL,
        on_delete=models.SET_NULL,
        null=True,
        blank=True,
        related_name='accepted_rides'
    )

    # Pickup / dropoff location (degrees)
    pickup_latitude = models.FloatField()
    pickup_longitude = models.FloatField()
    dropoff_latitude = models.FloatField()
    dropoff_longitude = models.FloatField()

    # Estimate, fixed at creation
    distance_km = models.DecimalField(max_digits=8, decimal_places=2)
    fare = models.PositiveIntegerField()

    status = models.CharField(max_length=20, choices=STATUS_CHOICES, default=transitions.REQUESTED)
    status_updated_by = models.ForeignKey(
        settings.AUTH_USER_MODEL,
        on_delete=models.SET_NULL,
        null=True,
        blank=True,
        related_name='+'
    )

    # Timestamps
    requested_at = models.DateTimeField(auto_now_add=True)
    accepted_at = models.DateTimeField(null=True, blank=True)
    completed_at = models.DateTimeField(null=True, blank=True)
    cancelled_at = models.DateTimeField(null=True, blank=True)

    class Meta:
        db_table = 'ride_requests'
        ordering = ['-requested_at']

    def __str__(self):
        return f"Ride #{self.id} - {self.passenger} - {self.status}"

    @property
    def pickup(self):
        return (self.pickup_latitude, self.pickup_longitude)

    @property
    def dropoff(self):
        return (self.dropoff_latitude, self.dropoff_longitude)

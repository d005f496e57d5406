from django.db import models
from django.conf import settings

from services.driver_verification import transitions

User = settings.AUTH_USER_MODEL


class DriverApplication(models.Model):
    """Identity, vehicle and license documents submitted to become a driver.

    File fields hold opaque references to already-stored uploads; multi-file
    documents are stored comma-joined.
    """
    STATUS_CHOICES = transitions.STATUS_CHOICES

    application_id = models.BigAutoField(primary_key=True)
    user = models.ForeignKey(User, on_delete=models.CASCADE, related_name='driver_applications')

    # Identity
    first_name = models.CharField(max_length=100)
    last_name = models.CharField(max_length=100)
    dob = models.DateField()
    photo_face = models.CharField(max_length=255, blank=True)
    citizenship_front = models.CharField(max_length=255, blank=True)
    citizenship_back = models.CharField(max_length=255, blank=True)
    citizenship_issue_date = models.DateField(null=True, blank=True)
    citizenship_no = models.CharField(max_length=50)
    pan_no = models.CharField(max_length=50, blank=True)

    # Vehicle
    vehicle_type = models.CharField(max_length=50)
    vehicle_brand = models.CharField(max_length=100, blank=True)
    vehicle_model = models.CharField(max_length=100, blank=True)
    vehicle_color = models.CharField(max_length=50, blank=True)
    vehicle_year = models.PositiveSmallIntegerField(null=True, blank=True)
    plate_no = models.CharField(max_length=20)
    vehicle_photo = models.CharField(max_length=255, blank=True)

    # License & billbook
    license_no = models.CharField(max_length=50)
    license_expiry = models.DateField(null=True, blank=True)
    license_photo = models.CharField(max_length=255, blank=True)
    billbook_pages = models.TextField(blank=True)
    billbook_reg_page = models.CharField(max_length=255, blank=True)
    billbook_renew_date = models.DateField(null=True, blank=True)
    billbook_renew_page = models.CharField(max_length=255, blank=True)

    # Review
    status = models.CharField(max_length=10, choices=STATUS_CHOICES, default=transitions.PENDING)
    submitted_at = models.DateTimeField(auto_now_add=True)
    decided_at = models.DateTimeField(null=True, blank=True)
    decided_by = models.ForeignKey(User, on_delete=models.SET_NULL, null=True, blank=True, related_name='+')

    class Meta:
        db_table = 'driver_applications'
        ordering = ['submitted_at']
        constraints = [
            models.UniqueConstraint(
                fields=['user'],
                condition=models.Q(status='pending'),
                name='one_pending_application_per_user',
            )
        ]

    def __str__(self):
        return f"Application #{self.application_id} - {self.user} - {self.status}"

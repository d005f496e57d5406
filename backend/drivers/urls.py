from django.urls import path
from .views import (
    DriverApplicationView,
    PendingApplicationsView,
    ApplicationDecisionView,
)

urlpatterns = [
    path("apply/", DriverApplicationView.as_view(), name="driver-apply"),
    path("applications/", PendingApplicationsView.as_view(), name="driver-applications"),
    path("applications/verify/", ApplicationDecisionView.as_view(), name="driver-application-verify"),
]

from django.contrib import admin
from django.urls import path, include

from .views import health_check

urlpatterns = [
    path('admin/', admin.site.urls),
    path("health/", health_check), # Health check endpoint

    # Token endpoints (at /api/auth/)
    path('api/auth/', include('accounts.urls')),

    # Driver verification APIs (apply, admin review)
    path('api/driver/', include('drivers.urls')),

    # Rides endpoints (at /api/rides/)
    path('api/rides/', include('rides.urls')),
]

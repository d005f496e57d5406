from django.urls import path
from . import views

app_name = 'rides'

urlpatterns = [
    # Passenger APIs
    path('request/', views.request_ride, name='request-ride'),
    path('mine/', views.my_rides, name='my-rides'),

    # Driver Ride Actions
    path('open/', views.open_rides, name='open-rides'),
    path('accept/', views.accept_ride, name='accept-ride'),

    # Either participant
    path('update-status/', views.update_ride_status, name='update-ride-status'),
    path('<int:ride_id>/', views.ride_detail, name='ride-detail'),
]

"""WebSocket URL routing for the realtime app."""

from django.urls import re_path

from .consumers.dispatch_consumer import DispatchConsumer

websocket_urlpatterns = [
    # Ride lifecycle events for passengers and drivers
    # URL: ws://localhost:8000/ws/dispatch/?token=<access>
    re_path(
        r"ws/dispatch/$",
        DispatchConsumer.as_asgi(),
        name="dispatch-ws"
    ),
]

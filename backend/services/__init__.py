"""
Services package - Business logic layer.

This package contains all business logic services that operate on Django models
but are decoupled from the HTTP/WebSocket layer.

Modules:
    - pricing: Distance & fare estimation
    - ride_management: Ride state machine and lifecycle operations
    - driver_verification: Driver application workflow
    - dispatch: Coordinator that persists transitions and publishes events

Submodules are imported directly (e.g. ``from services.ride_management import
ride_lifecycle``) because the models import the state machines from here.
"""

"""
Ride management service - Core ride lifecycle operations.

This package handles:
    - The ride state machine (transitions)
    - Creating ride requests
    - Accepting rides (compare-and-swap on status)
    - Declining / cancelling / completing rides
    - Querying rides

Lifecycle operations live in ``ride_lifecycle`` and are imported from there.
"""

"""
Realtime event payloads and their audiences.

Event shapes:
    { type: "NEW_RIDE_REQUEST", rideId, passengerId, pickup, dropoff, fare, distanceKm }
    { type: "RIDE_ACCEPTED",    rideId, driverId, passengerId }
    { type: "STATUS_UPDATE",    rideId, status, updaterId }

Audiences are predicates over registry peers: only the ride's participants
(and, while a ride is open, drivers) receive its events.
"""

from typing import Any, Dict, Optional

NEW_RIDE_REQUEST = "NEW_RIDE_REQUEST"
RIDE_ACCEPTED = "RIDE_ACCEPTED"
STATUS_UPDATE = "STATUS_UPDATE"


def _point(lat, lng) -> Dict[str, float]:
    return {"lat": float(lat), "lng": float(lng)}


def new_ride_request(ride) -> Dict[str, Any]:
    return {
        "type": NEW_RIDE_REQUEST,
        "rideId": ride.id,
        "passengerId": ride.passenger_id,
        "pickup": _point(*ride.pickup),
        "dropoff": _point(*ride.dropoff),
        "fare": ride.fare,
        "distanceKm": float(ride.distance_km),
    }


def ride_accepted(ride) -> Dict[str, Any]:
    return {
        "type": RIDE_ACCEPTED,
        "rideId": ride.id,
        "driverId": ride.driver_id,
        "passengerId": ride.passenger_id,
    }


def status_update(ride, updater_id: int) -> Dict[str, Any]:
    return {
        "type": STATUS_UPDATE,
        "rideId": ride.id,
        "status": ride.status,
        "updaterId": updater_id,
    }


# ---------------------- Audiences ----------------------

def drivers_and_passenger(passenger_id: int):
    """Every driver connection plus the ride's passenger."""
    return lambda peer: peer.is_driver or peer.user_id == passenger_id


def participants(passenger_id: int, driver_id: Optional[int]):
    """The ride's passenger and bound driver; all drivers while unbound."""
    if driver_id is None:
        return drivers_and_passenger(passenger_id)
    return lambda peer: peer.user_id in (passenger_id, driver_id)

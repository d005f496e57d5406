"""
Dispatch coordinator.

The only component aware of both persistence and realtime fan-out. Each
operation runs the relevant state machine against the database and, once
the transaction has committed, publishes the resulting event. Failed
transitions publish nothing.
"""

import logging
from contextlib import contextmanager
from typing import Any, Callable, Dict, Optional

from django.conf import settings
from django.db import DatabaseError, transaction

from common.utils.geo import Coordinate
from services.driver_verification import workflow
from services.exceptions import StorageError
from services.pricing import FareTariff
from services.ride_management import ride_lifecycle
from services.ride_management.ride_lifecycle import RideResult
from . import events

logger = logging.getLogger(__name__)

Publisher = Callable[..., int]


@contextmanager
def _storage_errors(action: str):
    try:
        yield
    except DatabaseError as exc:
        logger.exception("Storage failure while trying to %s", action)
        raise StorageError(f"Could not {action}, please try again") from exc


def _default_publisher(event, audience=None) -> int:
    from realtime.notifications import publish_event
    return publish_event(event, audience)


class DispatchCoordinator:
    """
    Orchestrates ride and driver-application commands.

    Args:
        publish: callable(event, audience) used for fan-out; defaults to the
            realtime connection registry
        tariff: fare constants; defaults to settings.RIDELIVE
    """

    def __init__(self, publish: Optional[Publisher] = None, tariff: Optional[FareTariff] = None):
        self._publish = publish or _default_publisher
        self.tariff = tariff or FareTariff.from_mapping(getattr(settings, "RIDELIVE", {}))

    def _publish_on_commit(self, event: Dict[str, Any], audience) -> None:
        transaction.on_commit(lambda: self._publish(event, audience))

    # ===================== Rides =====================

    def request_ride(self, passenger, pickup: Coordinate, dropoff: Coordinate) -> RideResult:
        with _storage_errors("save ride request"):
            result = ride_lifecycle.create_ride_request(passenger, pickup, dropoff, self.tariff)

        ride = result.ride
        self._publish_on_commit(events.new_ride_request(ride), events.drivers_and_passenger(ride.passenger_id))
        return result

    def accept_ride(self, driver, ride_id: int) -> RideResult:
        with _storage_errors("accept ride"):
            result = ride_lifecycle.accept_ride(driver, ride_id)

        ride = result.ride
        self._publish_on_commit(events.ride_accepted(ride), events.drivers_and_passenger(ride.passenger_id))
        return result

    def update_ride_status(self, actor, ride_id: int, new_status: str) -> RideResult:
        with _storage_errors("update ride"):
            result = ride_lifecycle.update_ride_status(actor, ride_id, new_status)

        ride = result.ride
        audience = events.participants(ride.passenger_id, result.extra["previous_driver_id"])
        self._publish_on_commit(events.status_update(ride, actor.id), audience)
        return result

    # ===================== Driver applications =====================

    def submit_application(self, user, documents: Dict[str, Any]):
        with _storage_errors("save application"):
            return workflow.submit_application(user, documents)

    def list_pending_applications(self):
        with _storage_errors("load applications"):
            return list(workflow.list_pending_applications())

    def decide_application(self, admin, application_id: int, verdict: str, user_id: Optional[int] = None):
        with _storage_errors("save decision"):
            return workflow.decide_application(application_id, verdict, admin, user_id=user_id)

"""
Core ride lifecycle operations.

This module applies the ride state machine against the database. Every
transition is a single conditional UPDATE filtered on the previous status,
so two drivers racing to accept the same ride can never both win: the
loser's UPDATE matches zero rows and is reported as a conflict.
"""

import logging
from dataclasses import dataclass
from decimal import Decimal, ROUND_HALF_UP
from typing import Any, Dict, Optional

from django.db import transaction
from django.db.models import F, Q
from django.utils import timezone

from common.utils.geo import Coordinate
from rides.models import RideRequest
from services.exceptions import (
    ConflictError,
    ForbiddenError,
    InvalidTransitionError,
    NotFoundError,
)
from services.pricing import DEFAULT_TARIFF, FareTariff, estimate_fare
from . import transitions

logger = logging.getLogger(__name__)


@dataclass
class RideResult:
    """Result object for ride operations."""
    success: bool
    ride: Optional[RideRequest] = None
    message: str = ""
    extra: Optional[Dict[str, Any]] = None


def _load(ride_id: int) -> RideRequest:
    try:
        return RideRequest.objects.select_related('passenger', 'driver').get(pk=ride_id)
    except RideRequest.DoesNotExist:
        raise NotFoundError("Ride not found")


# ===================== Passenger Operations =====================

@transaction.atomic
def create_ride_request(
    passenger,
    pickup: Coordinate,
    dropoff: Coordinate,
    tariff: FareTariff = DEFAULT_TARIFF,
) -> RideResult:
    """
    Price and store a new ride request in the `requested` state.

    Args:
        passenger: User model instance (passenger)
        pickup: (latitude, longitude) of the pickup point, already validated
        dropoff: (latitude, longitude) of the drop-off point, already validated
        tariff: pricing constants

    Returns:
        RideResult with the created ride
    """
    estimate = estimate_fare(pickup, dropoff, tariff)

    ride = RideRequest.objects.create(
        passenger=passenger,
        pickup_latitude=pickup[0],
        pickup_longitude=pickup[1],
        dropoff_latitude=dropoff[0],
        dropoff_longitude=dropoff[1],
        distance_km=Decimal(str(estimate.distance_km)).quantize(Decimal("0.01"), rounding=ROUND_HALF_UP),
        fare=estimate.fare,
        status=transitions.REQUESTED,
    )
    logger.info("Ride %s requested by passenger %s (fare=%s)", ride.id, passenger.id, ride.fare)

    return RideResult(
        success=True,
        ride=ride,
        message=f"Ride requested! Fare: NPR {ride.fare}",
    )


def get_ride_for_participant(user, ride_id: int) -> RideRequest:
    """Return a ride visible to `user` (its passenger, its driver, or staff)."""
    ride = _load(ride_id)
    if user.is_staff or user.id in (ride.passenger_id, ride.driver_id):
        return ride
    raise ForbiddenError("You are not part of this ride")


def list_passenger_rides(passenger):
    """All rides requested by a passenger, newest first (history is never deleted)."""
    return RideRequest.objects.filter(passenger=passenger).select_related('driver')


def list_open_rides():
    """Rides still waiting for a driver, oldest first."""
    return RideRequest.objects.filter(status=transitions.REQUESTED).select_related('passenger').order_by('requested_at')


# ===================== Driver Operations =====================

@transaction.atomic
def accept_ride(driver, ride_id: int) -> RideResult:
    """
    Bind `driver` to a ride that is still `requested`.

    Args:
        driver: User model instance (verified driver)
        ride_id: ID of the ride to accept

    Returns:
        RideResult with the accepted ride, read back from the database

    Raises:
        NotFoundError: no such ride
        ConflictError: the ride is no longer `requested`
    """
    updated = RideRequest.objects.filter(
        pk=ride_id,
        status=transitions.REQUESTED,
    ).update(
        status=transitions.ACCEPTED,
        driver=driver,
        accepted_at=timezone.now(),
        status_updated_by=driver,
    )

    if not updated:
        current = RideRequest.objects.filter(pk=ride_id).values_list('status', flat=True).first()
        if current is None:
            raise NotFoundError("Ride not found")
        logger.info("Driver %s lost race for ride %s (status=%s)", driver.id, ride_id, current)
        transitions.ensure_can_accept(current)
        raise ConflictError("This ride was already handled or cancelled")

    ride = _load(ride_id)
    logger.info("Ride %s accepted by driver %s", ride.id, driver.id)
    return RideResult(
        success=True,
        ride=ride,
        message="Ride Accepted Successfully! Navigate to pickup location.",
    )


# ===================== Shared Operations =====================

def _ensure_may_update(ride: RideRequest, actor, target: str) -> None:
    if actor.id in (ride.passenger_id, ride.driver_id):
        return
    # An unbound ride may be declined by any verified driver.
    if ride.driver_id is None and target == transitions.DECLINED and getattr(actor, 'is_verified_driver', False):
        return
    raise ForbiddenError("You are not allowed to update this ride")


@transaction.atomic
def update_ride_status(actor, ride_id: int, new_status: str) -> RideResult:
    """
    Move a ride into `declined`, `cancelled` or `completed`.

    Args:
        actor: authenticated User performing the change
        ride_id: ID of the ride
        new_status: target status

    Returns:
        RideResult with the updated ride and the status it left

    Raises:
        NotFoundError, ForbiddenError, InvalidCommandError, InvalidTransitionError, ConflictError
    """
    ride = _load(ride_id)
    transitions.ensure_can_update(ride.status, new_status)
    _ensure_may_update(ride, actor, new_status)

    previous_status = ride.status
    previous_driver_id = ride.driver_id

    # Conditional on both status and driver so a concurrent accept or
    # terminal update invalidates this one instead of being overwritten.
    updated = RideRequest.objects.filter(
        Q(driver_id=previous_driver_id) if previous_driver_id else Q(driver__isnull=True),
        pk=ride_id,
        status=previous_status,
    ).update(**{
        'status': new_status,
        'status_updated_by': actor,
        transitions.timestamp_field_for(new_status): timezone.now(),
    })

    if not updated:
        current = RideRequest.objects.filter(pk=ride_id).values_list('status', flat=True).first()
        if current is not None and transitions.is_terminal(current):
            raise InvalidTransitionError(f"Cannot change ride - it is already {current}")
        raise ConflictError("Ride changed while updating, please retry")

    if new_status == transitions.COMPLETED:
        _count_completed_ride(ride)

    ride = _load(ride_id)
    logger.info("Ride %s: %s -> %s by user %s", ride.id, previous_status, new_status, actor.id)
    return RideResult(
        success=True,
        ride=ride,
        message=f"Ride {new_status}",
        extra={"previous_status": previous_status, "previous_driver_id": previous_driver_id},
    )


def _count_completed_ride(ride: RideRequest) -> None:
    from django.contrib.auth import get_user_model

    user_ids = [uid for uid in (ride.passenger_id, ride.driver_id) if uid]
    get_user_model().objects.filter(pk__in=user_ids).update(completed_rides=F('completed_rides') + 1)

"""
Distance and fare estimation for ride requests.

The estimate is deliberately simple: the great-circle distance between
pickup and drop-off is inflated by a fixed road factor, then priced as a
base fare plus a per-kilometre rate with a minimum fare floor.
"""

import math
from dataclasses import dataclass

from common.utils.geo import Coordinate, calculate_distance_km


@dataclass(frozen=True)
class FareTariff:
    """Pricing constants (NPR, whole units)."""
    base_fare: int = 50
    per_km_rate: int = 40
    minimum_fare: int = 100
    road_factor: float = 1.5

    @classmethod
    def from_mapping(cls, config) -> "FareTariff":
        defaults = cls()
        return cls(
            base_fare=int(config.get("BASE_FARE", defaults.base_fare)),
            per_km_rate=int(config.get("PER_KM_RATE", defaults.per_km_rate)),
            minimum_fare=int(config.get("MINIMUM_FARE", defaults.minimum_fare)),
            road_factor=float(config.get("ROAD_FACTOR", defaults.road_factor)),
        )


DEFAULT_TARIFF = FareTariff()


@dataclass(frozen=True)
class FareEstimate:
    distance_km: float
    fare: int


def _round_half_up(value: float) -> int:
    # Fares are rounded half away from zero, not to even.
    return int(math.floor(value + 0.5))


def estimate_fare(pickup: Coordinate, dropoff: Coordinate, tariff: FareTariff = DEFAULT_TARIFF) -> FareEstimate:
    """
    Estimate road distance and fare between two coordinates.

    Coordinates must already be validated by the caller.

    Args:
        pickup: (latitude, longitude) of the pickup point
        dropoff: (latitude, longitude) of the drop-off point
        tariff: pricing constants

    Returns:
        FareEstimate with the estimated road distance in km and the integer fare
    """
    straight_km = calculate_distance_km(pickup[0], pickup[1], dropoff[0], dropoff[1])
    road_km = straight_km * tariff.road_factor
    fare = _round_half_up(tariff.base_fare + road_km * tariff.per_km_rate)
    return FareEstimate(distance_km=road_km, fare=max(fare, tariff.minimum_fare))

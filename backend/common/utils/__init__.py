"""Common utility functions."""

from .geo import EARTH_RADIUS_KM, Coordinate, calculate_distance_km, is_valid_coordinate

__all__ = [
    "EARTH_RADIUS_KM",
    "Coordinate",
    "calculate_distance_km",
    "is_valid_coordinate",
]

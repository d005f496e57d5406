"""Fare estimation."""

from .fare import DEFAULT_TARIFF, FareEstimate, FareTariff, estimate_fare

__all__ = ["DEFAULT_TARIFF", "FareEstimate", "FareTariff", "estimate_fare"]

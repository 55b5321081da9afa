"""
Fares, fees and cancellation penalties  (Strategy Pattern)
==========================================================

Formula
-------
Estimated_Fare = Base_Fare + Distance x Rate_Per_KM

* **Platform fee** = fare x platform_fee_rate, kept by the platform when a
  ride completes; the driver receives the rest.
* **Cancellation penalty** = fare x cancellation_penalty_rate.

All amounts are ``Decimal`` rounded half-up to cents.
"""

from __future__ import annotations

from abc import ABC, abstractmethod
from decimal import ROUND_HALF_UP, Decimal

from .distance import route_km
from .entities import Location

CENT = Decimal("0.01")


def to_money(value) -> Decimal:
    """Quantize any number-like value to 2 decimal places."""
    return Decimal(str(value)).quantize(CENT, rounding=ROUND_HALF_UP)


def percentage_of(amount: Decimal, rate: Decimal) -> Decimal:
    return to_money(Decimal(amount) * Decimal(rate))


# ── Strategy hierarchy ────────────────────────────────────────────────


class FareStrategy(ABC):
    @abstractmethod
    def calculate(
        self, distance_km: float, base_fare: Decimal, rate_per_km: Decimal
    ) -> Decimal: ...


class DistanceFare(FareStrategy):
    def calculate(
        self, distance_km: float, base_fare: Decimal, rate_per_km: Decimal
    ) -> Decimal:
        return to_money(base_fare + Decimal(str(distance_km)) * rate_per_km)


class FlatFare(FareStrategy):
    """Fixed fare regardless of distance (school-term contracts)."""

    def __init__(self, amount: Decimal):
        self.amount = to_money(amount)

    def calculate(
        self, distance_km: float, base_fare: Decimal, rate_per_km: Decimal
    ) -> Decimal:
        return self.amount


# ── Engine facade ─────────────────────────────────────────────────────


class PricingEngine:
    """High-level API used by the lifecycle controller."""

    def __init__(
        self,
        base_fare: Decimal = Decimal("50.00"),
        rate_per_km: Decimal = Decimal("12.00"),
        platform_fee_rate: Decimal = Decimal("0.10"),
        cancellation_penalty_rate: Decimal = Decimal("0.10"),
    ):
        self.base_fare = Decimal(base_fare)
        self.rate_per_km = Decimal(rate_per_km)
        self.platform_fee_rate = Decimal(platform_fee_rate)
        self.cancellation_penalty_rate = Decimal(cancellation_penalty_rate)

    def estimate_fare(
        self,
        origin: Location,
        destination: Location,
        strategy: FareStrategy | None = None,
    ) -> Decimal:
        strategy = strategy or DistanceFare()
        return strategy.calculate(
            route_km(origin, destination), self.base_fare, self.rate_per_km
        )

    def platform_fee(self, fare: Decimal) -> Decimal:
        return percentage_of(fare, self.platform_fee_rate)

    def cancellation_penalty(self, fare: Decimal) -> Decimal:
        return percentage_of(fare, self.cancellation_penalty_rate)

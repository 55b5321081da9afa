"""
Domain value objects and lifecycle results.

Patterns used
-------------
- **State Pattern** via ``ensure_transition``: enforces valid lifecycle
  transitions (REQUESTED -> SCHEDULED -> IN_PROGRESS -> COMPLETED | CANCELLED).
- ``Actor`` is the explicit caller context handed to every controller call.
- One frozen result type per operation, decoded once at the boundary.
"""

from __future__ import annotations

from dataclasses import dataclass
from datetime import datetime
from decimal import Decimal
from typing import Optional

from .enums import (
    RIDE_TRANSITIONS,
    CancellationOutcome,
    RideStatus,
    UserType,
)
from .errors import InvalidStatus


def ensure_transition(current: RideStatus, new_status: RideStatus) -> None:
    """Raise ``InvalidStatus`` unless *current* may move to *new_status*."""
    allowed = RIDE_TRANSITIONS.get(current, set())
    if new_status not in allowed:
        raise InvalidStatus(
            current,
            f"Cannot move ride from {current.value} to {new_status.value}",
        )


# ── Value Objects ─────────────────────────────────────────────────────


@dataclass(frozen=True)
class Location:
    latitude: float
    longitude: float
    address: Optional[str] = None


@dataclass(frozen=True)
class Actor:
    id: str
    user_type: UserType

    @property
    def is_driver(self) -> bool:
        return self.user_type == UserType.DRIVER

    @property
    def is_parent(self) -> bool:
        return self.user_type == UserType.PARENT


# ── Operation results ─────────────────────────────────────────────────


@dataclass(frozen=True)
class AcceptResult:
    id: str
    otp: str
    otp_generated_at: datetime
    estimated_arrival: datetime
    fare: Decimal


@dataclass(frozen=True)
class StartResult:
    success: bool
    ride_id: str
    message: str = "Ride started successfully"


@dataclass(frozen=True)
class CompleteResult:
    success: bool
    ride_id: str
    fare: Decimal
    message: str
    already_completed: bool = False
    completed_at: Optional[datetime] = None
    platform_fee: Decimal = Decimal("0.00")
    driver_earnings: Decimal = Decimal("0.00")
    parent_transaction_id: Optional[str] = None
    driver_transaction_id: Optional[str] = None


@dataclass(frozen=True)
class CancelResult:
    success: bool
    ride_id: str
    cancelled_by: str
    cancelled_by_type: UserType
    outcome: CancellationOutcome
    message: str
    penalty_applied: Decimal = Decimal("0.00")
    penalty_recipient: Optional[str] = None
    cancelled_at: Optional[datetime] = None


@dataclass(frozen=True)
class BalanceReport:
    balance: Decimal
    verified_balance: Decimal
    discrepancy: Decimal
    is_accurate: bool

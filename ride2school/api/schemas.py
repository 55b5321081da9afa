"""Pydantic request / response schemas for the REST API."""

from __future__ import annotations

from datetime import datetime
from decimal import Decimal
from typing import Any, Optional

from pydantic import BaseModel, Field

from ride2school.domain.enums import (
    CancellationOutcome,
    EventKind,
    EventStatus,
    NotificationType,
    Partition,
    RequestStatus,
    RideStatus,
    TransactionDirection,
    TransactionStatus,
    TransactionType,
    UserType,
)


# ── Requests ──────────────────────────────────────────────────────────


class LocationIn(BaseModel):
    lat: float = Field(..., ge=-90, le=90)
    lng: float = Field(..., ge=-180, le=180)
    address: Optional[str] = Field(None, max_length=255)


class RideRequestCreate(BaseModel):
    child_id: Optional[str] = None
    origin: LocationIn
    destination: LocationIn
    destination_name: Optional[str] = Field(None, max_length=120)
    scheduled_time: Optional[datetime] = None
    notes: Optional[str] = Field(None, max_length=1000)
    estimated_fare: Optional[Decimal] = Field(
        None,
        gt=0,
        description="Fare quoted to the parent; estimated from distance when omitted.",
    )


class VerifyOtpRequest(BaseModel):
    otp: str = Field(..., pattern=r"^\d{6}$")


class CancelRequest(BaseModel):
    reason: Optional[str] = Field(
        None,
        max_length=500,
        description="Optional for scheduled rides, required once in progress.",
    )


class FundsRequest(BaseModel):
    amount: Decimal = Field(..., gt=0, le=100000)


class DriverStatusRequest(BaseModel):
    is_online: bool


class RatingRequest(BaseModel):
    rating: int = Field(..., ge=1, le=5)
    comment: Optional[str] = Field(None, max_length=500)


class MessageCreate(BaseModel):
    content: str = Field(..., min_length=1, max_length=1000)


# ── Responses ─────────────────────────────────────────────────────────


class RideRequestResponse(BaseModel):
    id: str
    parent_id: str
    child_id: Optional[str] = None
    origin_lat: float
    origin_lng: float
    origin_address: Optional[str] = None
    destination_lat: float
    destination_lng: float
    destination_address: Optional[str] = None
    destination_name: Optional[str] = None
    scheduled_time: Optional[datetime] = None
    notes: Optional[str] = None
    estimated_fare: Decimal
    status: RequestStatus
    last_cancellation_reason: Optional[str] = None
    reopened_count: int = 0
    created_at: Optional[datetime] = None
    updated_at: Optional[datetime] = None

    model_config = {"from_attributes": True}


class RideResponse(BaseModel):
    id: str
    parent_id: str
    driver_id: str
    child_id: Optional[str] = None
    origin_lat: float
    origin_lng: float
    origin_address: Optional[str] = None
    destination_lat: float
    destination_lng: float
    destination_address: Optional[str] = None
    destination_name: Optional[str] = None
    scheduled_time: Optional[datetime] = None
    status: RideStatus
    fare: Decimal
    current_location_lat: Optional[float] = None
    current_location_lng: Optional[float] = None
    current_location_address: Optional[str] = None
    estimated_arrival: Optional[datetime] = None
    otp: Optional[str] = None
    otp_generated_at: Optional[datetime] = None
    actual_pickup_time: Optional[datetime] = None
    reopened_count: int = 0
    created_at: Optional[datetime] = None
    updated_at: Optional[datetime] = None

    model_config = {"from_attributes": True}


class RideSnapshotResponse(BaseModel):
    """A ride as seen in whichever partition currently holds it."""

    id: str
    partition: Partition
    status: RideStatus
    parent_id: str
    driver_id: Optional[str] = None
    fare: Optional[Decimal] = None
    completed_at: Optional[datetime] = None
    distance_traveled: Optional[float] = None
    duration_minutes: Optional[int] = None
    platform_fee: Optional[Decimal] = None
    driver_earnings: Optional[Decimal] = None
    cancelled_by: Optional[str] = None
    cancelled_by_type: Optional[UserType] = None
    cancellation_reason: Optional[str] = None
    cancelled_at: Optional[datetime] = None
    fine_applied: Optional[bool] = None
    cancellation_fine: Optional[Decimal] = None
    updated_at: Optional[datetime] = None


class AcceptResponse(BaseModel):
    id: str
    otp: str
    otp_generated_at: datetime
    estimated_arrival: datetime
    fare: Decimal


class OtpResponse(BaseModel):
    ride_id: str
    otp: str


class StartResponse(BaseModel):
    success: bool
    ride_id: str
    message: str


class CompleteResponse(BaseModel):
    success: bool
    ride_id: str
    fare: Decimal
    message: str
    already_completed: bool = False
    completed_at: Optional[datetime] = None
    platform_fee: Decimal
    driver_earnings: Decimal
    parent_transaction_id: Optional[str] = None
    driver_transaction_id: Optional[str] = None


class CancelResponse(BaseModel):
    success: bool
    ride_id: str
    cancelled_by: str
    cancelled_by_type: UserType
    outcome: CancellationOutcome
    message: str
    penalty_applied: Decimal
    penalty_recipient: Optional[str] = None
    cancelled_at: Optional[datetime] = None


class BalanceResponse(BaseModel):
    balance: Decimal
    verified_balance: Decimal
    discrepancy: Decimal
    is_accurate: bool


class TransactionResponse(BaseModel):
    id: str
    ride_id: Optional[str] = None
    amount: Decimal
    type: TransactionDirection
    transaction_type: TransactionType
    description: Optional[str] = None
    fee_amount: Decimal
    net_amount: Decimal
    status: TransactionStatus
    created_at: Optional[datetime] = None

    model_config = {"from_attributes": True}


class SummaryResponse(BaseModel):
    period: str
    total_credits: Decimal
    total_debits: Decimal
    total_fees: Decimal
    net_amount: Decimal
    transaction_count: int
    breakdown: dict[str, Any]


class FundsResponse(BaseModel):
    transaction_id: str
    balance: Decimal


class UserResponse(BaseModel):
    id: str
    name: str
    user_type: UserType
    is_online: bool
    wallet_balance: Decimal

    model_config = {"from_attributes": True}


class NotificationResponse(BaseModel):
    id: str
    title: str
    content: str
    type: NotificationType
    ride_id: Optional[str] = None
    is_read: bool
    created_at: Optional[datetime] = None

    model_config = {"from_attributes": True}


class MessageResponse(BaseModel):
    id: str
    sender_id: str
    recipient_id: str
    content: str
    ride_id: Optional[str] = None
    is_read: bool
    created_at: Optional[datetime] = None

    model_config = {"from_attributes": True}


class RatingResponse(BaseModel):
    id: str
    ride_id: str
    rater_id: str
    rated_id: str
    rated_type: UserType
    rating: int
    comment: Optional[str] = None
    created_at: Optional[datetime] = None

    model_config = {"from_attributes": True}


class EarningsResponse(BaseModel):
    today: Decimal
    week: Decimal
    month: Decimal
    total: Decimal
    rides: int


class RideEventResponse(BaseModel):
    id: int
    kind: EventKind
    status: EventStatus
    attempts: int
    last_error: Optional[str] = None
    created_at: Optional[datetime] = None
    delivered_at: Optional[datetime] = None

    model_config = {"from_attributes": True}


class HealthResponse(BaseModel):
    status: str = "ok"


class ErrorDetail(BaseModel):
    code: str
    message: str


class ErrorResponse(BaseModel):
    detail: ErrorDetail

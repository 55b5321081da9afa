"""Domain enumerations and state-transition rules."""

import enum


class UserType(str, enum.Enum):
    PARENT = "parent"
    DRIVER = "driver"


class RequestStatus(str, enum.Enum):
    PENDING = "pending"
    ACCEPTED = "accepted"


class RideStatus(str, enum.Enum):
    REQUESTED = "requested"
    SCHEDULED = "scheduled"
    IN_PROGRESS = "in_progress"
    COMPLETED = "completed"
    CANCELLED = "cancelled"


# State machine: maps current status -> set of valid next statuses.
# A driver cancelling a scheduled ride re-opens it, hence SCHEDULED -> REQUESTED.
RIDE_TRANSITIONS: dict[RideStatus, set[RideStatus]] = {
    RideStatus.REQUESTED: {RideStatus.SCHEDULED, RideStatus.CANCELLED},
    RideStatus.SCHEDULED: {
        RideStatus.IN_PROGRESS,
        RideStatus.COMPLETED,
        RideStatus.CANCELLED,
        RideStatus.REQUESTED,
    },
    RideStatus.IN_PROGRESS: {RideStatus.COMPLETED, RideStatus.CANCELLED},
    RideStatus.COMPLETED: set(),
    RideStatus.CANCELLED: set(),
}


class Partition(str, enum.Enum):
    """The table a ride record currently lives in."""

    REQUESTS = "requests"
    ACTIVE = "active"
    COMPLETED = "completed"
    CANCELLED = "cancelled"


class TransactionDirection(str, enum.Enum):
    CREDIT = "credit"
    DEBIT = "debit"


class TransactionType(str, enum.Enum):
    RIDE_PAYMENT = "ride_payment"
    RIDE_EARNINGS = "ride_earnings"
    CANCELLATION_FEE = "cancellation_fee"
    CANCELLATION_COMPENSATION = "cancellation_compensation"
    WALLET_TOPUP = "wallet_topup"
    WALLET_WITHDRAWAL = "wallet_withdrawal"


class TransactionStatus(str, enum.Enum):
    PENDING = "pending"
    COMPLETED = "completed"
    FAILED = "failed"


class PenaltyPolicy(str, enum.Enum):
    """Who pays the in-progress cancellation penalty to the counterparty."""

    SYMMETRIC = "symmetric"
    DRIVER_ONLY = "driver_only"
    PARENT_ONLY = "parent_only"


class CancellationOutcome(str, enum.Enum):
    CANCELLED = "cancelled"
    REOPENED = "reopened"


class NotificationType(str, enum.Enum):
    RIDE_ACCEPTED = "ride_accepted"
    OTP_GENERATED = "otp_generated"
    RIDE_STARTED = "ride_started"
    RIDE_COMPLETED = "ride_completed"
    RIDE_CANCELLED = "ride_cancelled"
    RIDE_REOPENED = "ride_reopened"


class EventKind(str, enum.Enum):
    NOTIFICATION = "notification"
    MESSAGE = "message"


class EventStatus(str, enum.Enum):
    PENDING = "pending"
    DELIVERED = "delivered"
    FAILED = "failed"

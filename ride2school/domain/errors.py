"""
Ride lifecycle error taxonomy.

Every primary-transition failure is a ``RideError`` with a stable ``code``
(what clients switch on), an HTTP ``status_code`` and a human-readable
message.  Side-effect failures never appear here: they are logged by the
dispatcher and recorded on the outbox row.
"""

from __future__ import annotations

from typing import Any, Optional


class RideError(Exception):
    code = "RIDE_ERROR"
    status_code = 400
    default_message = "The ride operation failed."

    def __init__(self, message: Optional[str] = None, **extra: Any):
        super().__init__(message or self.default_message)
        self.message = message or self.default_message
        self.extra = extra

    def to_dict(self) -> dict[str, Any]:
        return {"code": self.code, "message": self.message, **self.extra}


# ── Not found ─────────────────────────────────────────────────────────


class RideNotFound(RideError):
    code = "RIDE_NOT_FOUND"
    status_code = 404
    default_message = (
        "Ride not found. It may have been cancelled or completed by another process."
    )


class UserNotFound(RideError):
    code = "USER_NOT_FOUND"
    status_code = 404
    default_message = "User not found."


# ── Invalid state ─────────────────────────────────────────────────────


class RideCancelled(RideError):
    code = "RIDE_CANCELLED"
    status_code = 409
    default_message = "This ride was already cancelled and cannot be changed."


class RideNotAccepted(RideError):
    code = "RIDE_NOT_ACCEPTED"
    status_code = 409
    default_message = "This ride request was never accepted by a driver."


class InvalidStatus(RideError):
    code = "INVALID_STATUS"
    status_code = 409

    def __init__(self, current_status: Any, message: Optional[str] = None):
        status = getattr(current_status, "value", current_status)
        super().__init__(
            message or f"Operation not allowed. Current status: {status}",
            current_status=status,
        )
        self.current_status = status


class DriverOffline(RideError):
    code = "DRIVER_OFFLINE"
    status_code = 409
    default_message = "Driver must be online to accept rides."


class DriverBusy(RideError):
    code = "DRIVER_BUSY"
    status_code = 409
    default_message = (
        "You already have an active ride. Complete it before accepting a new one."
    )


class RideLocked(RideError):
    code = "RIDE_LOCKED"
    status_code = 409
    default_message = "Ride is being processed. Please wait and try again."


class AlreadyRated(RideError):
    code = "ALREADY_RATED"
    status_code = 409
    default_message = "You have already rated this ride."


# ── Authorization / input ─────────────────────────────────────────────


class Unauthorized(RideError):
    code = "UNAUTHORIZED"
    status_code = 403
    default_message = "You are not authorized to perform this action on this ride."


class Unauthenticated(RideError):
    code = "UNAUTHENTICATED"
    status_code = 401
    default_message = "User not authenticated."


class InvalidOTP(RideError):
    code = "INVALID_OTP"
    status_code = 422
    default_message = "Invalid OTP. Please check the code and try again."


class OTPExpired(RideError):
    code = "OTP_EXPIRED"
    status_code = 422
    default_message = "OTP has expired. Please ask the parent to generate a new one."


class ValidationFailed(RideError):
    code = "VALIDATION_ERROR"
    status_code = 422
    default_message = "The request was malformed."


class InsufficientFunds(RideError):
    code = "INSUFFICIENT_FUNDS"
    status_code = 402
    default_message = "Insufficient wallet balance. Please add funds to your wallet."


ERRORS_BY_CODE: dict[str, type[RideError]] = {
    cls.code: cls
    for cls in (
        RideNotFound,
        UserNotFound,
        RideCancelled,
        RideNotAccepted,
        InvalidStatus,
        DriverOffline,
        DriverBusy,
        RideLocked,
        AlreadyRated,
        Unauthorized,
        Unauthenticated,
        InvalidOTP,
        OTPExpired,
        ValidationFailed,
        InsufficientFunds,
    )
}

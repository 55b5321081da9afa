"""
OTP gate.

Binds a 6-digit pickup code to a ride.  The driver enters the code the child
shows at pickup; the ride only starts once it matches.  Expiry is a policy:
``ttl_minutes=None`` (the default) never expires a code.
"""

from __future__ import annotations

import logging
from datetime import datetime
from typing import Optional

from ride2school.domain.enums import NotificationType
from ride2school.domain.errors import OTPExpired
from ride2school.domain.otp import generate_otp, otp_expired, otp_matches
from ride2school.infrastructure.models import RideModel
from ride2school.services.events import SideEffects

logger = logging.getLogger(__name__)


class OtpGate:
    def __init__(self, events: SideEffects, ttl_minutes: Optional[int] = None):
        self.events = events
        self.ttl_minutes = ttl_minutes

    @staticmethod
    def new_code(now: datetime) -> tuple[str, datetime]:
        return generate_otp(), now

    async def announce(self, ride: RideModel) -> None:
        """Tell the parent the ride was accepted and hand them the code."""
        await self.events.notify(
            ride.parent_id,
            "Ride Request Accepted",
            f"Your ride request has been accepted by a driver. Your OTP is: {ride.otp}",
            NotificationType.RIDE_ACCEPTED,
            ride.id,
        )
        await self.events.message(
            ride.driver_id,
            ride.parent_id,
            "Hello! I've accepted your ride request. "
            f"Your OTP for the ride is: {ride.otp}. Please share this with your child.",
            ride.id,
        )

    async def regenerate(self, ride: RideModel, now: datetime) -> str:
        ride.otp, ride.otp_generated_at = self.new_code(now)
        logger.info("Regenerated OTP for ride %s", ride.id)
        await self.events.notify(
            ride.parent_id,
            "New OTP Generated",
            f"Your new OTP for the ride is: {ride.otp}",
            NotificationType.OTP_GENERATED,
            ride.id,
        )
        await self.events.message(
            ride.driver_id,
            ride.parent_id,
            f"Your new OTP for the ride is: {ride.otp}. Please share this with your child.",
            ride.id,
        )
        await self.events.notify(
            ride.driver_id,
            "New OTP Generated",
            "The parent has generated a new OTP for the ride.",
            NotificationType.OTP_GENERATED,
            ride.id,
        )
        return ride.otp

    def verify(self, ride: RideModel, candidate: str, now: datetime) -> bool:
        """True when *candidate* matches; raises ``OTPExpired`` past the TTL."""
        if otp_expired(ride.otp_generated_at, self.ttl_minutes, now):
            raise OTPExpired()
        return otp_matches(ride.otp, candidate)

"""
Repository Pattern -- abstracts DB access so domain logic stays DB-agnostic.

Each repository receives an ``AsyncSession`` (unit-of-work) and exposes
domain-relevant queries only.  ``RideStore`` sits on top of the four
partition repositories and implements the moves between them; every move
inserts the destination row and deletes the source row in the caller's
transaction, so a ride id is never visible in two partitions or in none.
"""

from __future__ import annotations

import logging
from datetime import datetime
from decimal import Decimal
from typing import Any, Optional, Union

from sqlalchemy import func, or_, select, update
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.ext.asyncio import AsyncSession

from .models import (
    CancelledRideModel,
    CompletedRideModel,
    MessageModel,
    NotificationModel,
    RatingModel,
    RideEventModel,
    RideModel,
    RideRequestModel,
    TransactionModel,
    UserModel,
)
from ride2school.domain.enums import (
    EventKind,
    EventStatus,
    Partition,
    RequestStatus,
    RideStatus,
    TransactionDirection,
    TransactionType,
    UserType,
)
from ride2school.domain.errors import InvalidStatus
from ride2school.domain.otp import as_utc

logger = logging.getLogger(__name__)

ROUTE_FIELDS = (
    "child_id",
    "origin_lat",
    "origin_lng",
    "origin_address",
    "destination_lat",
    "destination_lng",
    "destination_address",
    "destination_name",
    "scheduled_time",
    "notes",
)

AnyRideRecord = Union[
    RideRequestModel, RideModel, CompletedRideModel, CancelledRideModel
]


def _ended_at(partition: Partition, record: AnyRideRecord) -> datetime:
    if partition == Partition.COMPLETED:
        return record.completed_at
    return record.cancelled_at


def _route_of(record: Any) -> dict[str, Any]:
    return {name: getattr(record, name) for name in ROUTE_FIELDS}


class UserRepository:
    def __init__(self, session: AsyncSession):
        self.session = session

    async def get_by_id(self, user_id: str) -> Optional[UserModel]:
        return await self.session.get(UserModel, user_id)

    async def get_for_update(self, user_id: str) -> Optional[UserModel]:
        return await self.session.get(UserModel, user_id, with_for_update=True)

    async def create(self, user: UserModel) -> UserModel:
        self.session.add(user)
        await self.session.flush()
        return user


class RideRequestRepository:
    def __init__(self, session: AsyncSession):
        self.session = session

    async def create(self, request: RideRequestModel) -> RideRequestModel:
        self.session.add(request)
        await self.session.flush()
        return request

    async def get_by_id(self, request_id: str) -> Optional[RideRequestModel]:
        return await self.session.get(RideRequestModel, request_id)

    async def get_for_update(self, request_id: str) -> Optional[RideRequestModel]:
        return await self.session.get(
            RideRequestModel, request_id, with_for_update=True
        )

    async def list_open(self, limit: int = 50) -> list[RideRequestModel]:
        result = await self.session.execute(
            select(RideRequestModel)
            .where(RideRequestModel.status == RequestStatus.PENDING)
            .order_by(RideRequestModel.created_at)
            .limit(limit)
        )
        return list(result.scalars().all())

    async def list_for_parent(self, parent_id: str) -> list[RideRequestModel]:
        result = await self.session.execute(
            select(RideRequestModel)
            .where(RideRequestModel.parent_id == parent_id)
            .order_by(RideRequestModel.created_at)
        )
        return list(result.scalars().all())

    async def claim(self, request_id: str) -> bool:
        """Optimistic guard: pending -> accepted.  False if already taken."""
        result = await self.session.execute(
            update(RideRequestModel)
            .where(
                RideRequestModel.id == request_id,
                RideRequestModel.status == RequestStatus.PENDING,
            )
            .values(status=RequestStatus.ACCEPTED)
        )
        return result.rowcount == 1

    async def release(self, request_id: str) -> None:
        await self.session.execute(
            update(RideRequestModel)
            .where(RideRequestModel.id == request_id)
            .values(status=RequestStatus.PENDING)
        )


class RideRepository:
    """Active partition: scheduled and in-progress rides."""

    def __init__(self, session: AsyncSession):
        self.session = session

    async def get_by_id(self, ride_id: str) -> Optional[RideModel]:
        return await self.session.get(RideModel, ride_id)

    async def get_for_update(self, ride_id: str) -> Optional[RideModel]:
        return await self.session.get(RideModel, ride_id, with_for_update=True)

    async def count_active_for_driver(self, driver_id: str) -> int:
        result = await self.session.execute(
            select(func.count())
            .select_from(RideModel)
            .where(
                RideModel.driver_id == driver_id,
                RideModel.status.in_(
                    [RideStatus.SCHEDULED, RideStatus.IN_PROGRESS]
                ),
            )
        )
        return result.scalar() or 0

    async def list_for_user(self, user_id: str) -> list[RideModel]:
        result = await self.session.execute(
            select(RideModel)
            .where(
                or_(RideModel.parent_id == user_id, RideModel.driver_id == user_id)
            )
            .order_by(RideModel.scheduled_time, RideModel.created_at)
        )
        return list(result.scalars().all())


class CompletedRideRepository:
    def __init__(self, session: AsyncSession):
        self.session = session

    async def get_by_id(self, ride_id: str) -> Optional[CompletedRideModel]:
        return await self.session.get(CompletedRideModel, ride_id)

    async def list_for_user(
        self, user_id: str, limit: Optional[int] = None
    ) -> list[CompletedRideModel]:
        query = (
            select(CompletedRideModel)
            .where(
                or_(
                    CompletedRideModel.parent_id == user_id,
                    CompletedRideModel.driver_id == user_id,
                )
            )
            .order_by(CompletedRideModel.completed_at.desc())
        )
        if limit is not None:
            query = query.limit(limit)
        result = await self.session.execute(query)
        return list(result.scalars().all())

    async def list_for_driver(self, driver_id: str) -> list[CompletedRideModel]:
        result = await self.session.execute(
            select(CompletedRideModel)
            .where(CompletedRideModel.driver_id == driver_id)
            .order_by(CompletedRideModel.completed_at.desc())
        )
        return list(result.scalars().all())


class CancelledRideRepository:
    def __init__(self, session: AsyncSession):
        self.session = session

    async def get_by_id(self, ride_id: str) -> Optional[CancelledRideModel]:
        return await self.session.get(CancelledRideModel, ride_id)

    async def list_for_user(
        self, user_id: str, limit: Optional[int] = None
    ) -> list[CancelledRideModel]:
        query = (
            select(CancelledRideModel)
            .where(
                or_(
                    CancelledRideModel.parent_id == user_id,
                    CancelledRideModel.driver_id == user_id,
                )
            )
            .order_by(CancelledRideModel.cancelled_at.desc())
        )
        if limit is not None:
            query = query.limit(limit)
        result = await self.session.execute(query)
        return list(result.scalars().all())


class RideStore:
    """The four ride partitions and the moves between them."""

    def __init__(self, session: AsyncSession):
        self.session = session
        self.requests = RideRequestRepository(session)
        self.active = RideRepository(session)
        self.completed = CompletedRideRepository(session)
        self.cancelled = CancelledRideRepository(session)

    async def locate(
        self, ride_id: str
    ) -> Optional[tuple[Partition, AnyRideRecord]]:
        """Find which partition holds *ride_id* (active first)."""
        lookups = (
            (Partition.ACTIVE, self.active.get_by_id),
            (Partition.COMPLETED, self.completed.get_by_id),
            (Partition.CANCELLED, self.cancelled.get_by_id),
            (Partition.REQUESTS, self.requests.get_by_id),
        )
        for partition, get in lookups:
            record = await get(ride_id)
            if record is not None:
                return partition, record
        return None

    async def history(
        self, user_id: str, *, limit: int = 20, offset: int = 0
    ) -> list[tuple[Partition, AnyRideRecord]]:
        """Completed and cancelled rides of *user_id*, most recent first."""
        window = limit + offset
        entries: list[tuple[Partition, AnyRideRecord]] = [
            (Partition.COMPLETED, r)
            for r in await self.completed.list_for_user(user_id, limit=window)
        ]
        entries += [
            (Partition.CANCELLED, r)
            for r in await self.cancelled.list_for_user(user_id, limit=window)
        ]
        entries.sort(key=lambda entry: as_utc(_ended_at(*entry)), reverse=True)
        return entries[offset:window]

    async def accept_request(
        self,
        request: RideRequestModel,
        *,
        driver_id: str,
        otp: str,
        otp_generated_at: datetime,
        estimated_arrival: datetime,
    ) -> RideModel:
        """requests -> active.

        Claims the request with a status guard, inserts the ride inside a
        savepoint and removes the request.  If the insert fails the claim
        is reverted before the error propagates.
        """
        request_id = request.id
        if not await self.requests.claim(request_id):
            raise InvalidStatus(
                RequestStatus.ACCEPTED, "This ride request was already accepted."
            )

        route = _route_of(request)
        ride = RideModel(
            id=request_id,
            parent_id=request.parent_id,
            driver_id=driver_id,
            status=RideStatus.SCHEDULED,
            fare=request.estimated_fare,
            current_location_lat=request.origin_lat,
            current_location_lng=request.origin_lng,
            current_location_address=request.origin_address,
            estimated_arrival=estimated_arrival,
            otp=otp,
            otp_generated_at=otp_generated_at,
            reopened_count=request.reopened_count or 0,
            **route,
        )
        try:
            async with self.session.begin_nested():
                self.session.add(ride)
                await self.session.flush()
        except SQLAlchemyError:
            logger.error("Could not create ride for request %s", request_id)
            await self._release_claim(request_id)
            raise

        await self.session.delete(request)
        await self.session.flush()
        return ride

    async def _release_claim(self, request_id: str) -> None:
        try:
            await self.requests.release(request_id)
        except SQLAlchemyError:
            logger.exception(
                "Failed to revert ride request %s to pending", request_id
            )

    async def move_to_completed(
        self,
        ride: RideModel,
        *,
        completed_at: datetime,
        actual_dropoff_time: datetime,
        distance_traveled: Optional[float],
        duration_minutes: Optional[int],
        platform_fee: Decimal,
        driver_earnings: Decimal,
    ) -> CompletedRideModel:
        """active -> completed."""
        completed = CompletedRideModel(
            id=ride.id,
            parent_id=ride.parent_id,
            driver_id=ride.driver_id,
            fare=ride.fare,
            platform_fee=platform_fee,
            driver_earnings=driver_earnings,
            completed_at=completed_at,
            actual_pickup_time=ride.actual_pickup_time,
            actual_dropoff_time=actual_dropoff_time,
            distance_traveled=distance_traveled,
            duration_minutes=duration_minutes,
            **_route_of(ride),
        )
        await self.session.delete(ride)
        await self.session.flush()
        self.session.add(completed)
        await self.session.flush()
        return completed

    async def move_back_to_requests(
        self, ride: RideModel, *, reason: Optional[str]
    ) -> RideRequestModel:
        """active -> requests, re-opened for any other driver."""
        request = RideRequestModel(
            id=ride.id,
            parent_id=ride.parent_id,
            estimated_fare=ride.fare,
            status=RequestStatus.PENDING,
            last_cancellation_reason=reason,
            reopened_count=(ride.reopened_count or 0) + 1,
            **_route_of(ride),
        )
        await self.session.delete(ride)
        await self.session.flush()
        self.session.add(request)
        await self.session.flush()
        return request

    async def move_to_cancelled(
        self,
        record: Union[RideRequestModel, RideModel],
        *,
        previous_status: RideStatus,
        cancelled_by: str,
        cancelled_by_type: UserType,
        reason: Optional[str],
        cancelled_at: datetime,
        fine: Decimal,
    ) -> CancelledRideModel:
        """requests | active -> cancelled."""
        if isinstance(record, RideModel):
            driver_id, fare = record.driver_id, record.fare
        else:
            driver_id, fare = None, record.estimated_fare
        cancelled = CancelledRideModel(
            id=record.id,
            parent_id=record.parent_id,
            driver_id=driver_id,
            fare=fare,
            previous_status=previous_status.value,
            cancelled_by=cancelled_by,
            cancelled_by_type=cancelled_by_type,
            cancellation_reason=reason,
            cancelled_at=cancelled_at,
            fine_applied=fine > 0,
            cancellation_fine=fine,
            **_route_of(record),
        )
        await self.session.delete(record)
        await self.session.flush()
        self.session.add(cancelled)
        await self.session.flush()
        return cancelled


class TransactionRepository:
    def __init__(self, session: AsyncSession):
        self.session = session

    async def add(self, transaction: TransactionModel) -> TransactionModel:
        self.session.add(transaction)
        await self.session.flush()
        return transaction

    async def list_for_user(
        self,
        user_id: str,
        *,
        direction: Optional[TransactionDirection] = None,
        transaction_type: Optional[TransactionType] = None,
        since: Optional[datetime] = None,
        limit: Optional[int] = 50,
        offset: int = 0,
    ) -> list[TransactionModel]:
        query = (
            select(TransactionModel)
            .where(TransactionModel.user_id == user_id)
            .order_by(TransactionModel.created_at.desc(), TransactionModel.id)
        )
        if direction is not None:
            query = query.where(TransactionModel.type == direction)
        if transaction_type is not None:
            query = query.where(TransactionModel.transaction_type == transaction_type)
        if since is not None:
            query = query.where(TransactionModel.created_at >= since)
        if limit is not None:
            query = query.limit(limit).offset(offset)
        result = await self.session.execute(query)
        return list(result.scalars().all())

    async def list_for_ride(self, ride_id: str) -> list[TransactionModel]:
        result = await self.session.execute(
            select(TransactionModel).where(TransactionModel.ride_id == ride_id)
        )
        return list(result.scalars().all())


class NotificationRepository:
    def __init__(self, session: AsyncSession):
        self.session = session

    async def add(self, notification: NotificationModel) -> NotificationModel:
        self.session.add(notification)
        await self.session.flush()
        return notification

    async def list_for_user(
        self, user_id: str, unread_only: bool = False
    ) -> list[NotificationModel]:
        query = (
            select(NotificationModel)
            .where(NotificationModel.user_id == user_id)
            .order_by(NotificationModel.created_at.desc())
        )
        if unread_only:
            query = query.where(NotificationModel.is_read.is_(False))
        result = await self.session.execute(query)
        return list(result.scalars().all())

    async def mark_read(self, notification_id: str, user_id: str) -> bool:
        result = await self.session.execute(
            update(NotificationModel)
            .where(
                NotificationModel.id == notification_id,
                NotificationModel.user_id == user_id,
            )
            .values(is_read=True)
        )
        return result.rowcount == 1


class RatingRepository:
    def __init__(self, session: AsyncSession):
        self.session = session

    async def add(self, rating: RatingModel) -> RatingModel:
        self.session.add(rating)
        await self.session.flush()
        return rating

    async def get_by_rater(self, ride_id: str, rater_id: str) -> Optional[RatingModel]:
        result = await self.session.execute(
            select(RatingModel).where(
                RatingModel.ride_id == ride_id, RatingModel.rater_id == rater_id
            )
        )
        return result.scalar_one_or_none()

    async def list_for_ride(self, ride_id: str) -> list[RatingModel]:
        result = await self.session.execute(
            select(RatingModel)
            .where(RatingModel.ride_id == ride_id)
            .order_by(RatingModel.created_at)
        )
        return list(result.scalars().all())


class MessageRepository:
    def __init__(self, session: AsyncSession):
        self.session = session

    async def add(self, message: MessageModel) -> MessageModel:
        self.session.add(message)
        await self.session.flush()
        return message

    async def list_for_ride(self, ride_id: str) -> list[MessageModel]:
        result = await self.session.execute(
            select(MessageModel)
            .where(MessageModel.ride_id == ride_id)
            .order_by(MessageModel.created_at)
        )
        return list(result.scalars().all())

    async def mark_ride_read(self, ride_id: str, recipient_id: str) -> int:
        result = await self.session.execute(
            update(MessageModel)
            .where(
                MessageModel.ride_id == ride_id,
                MessageModel.recipient_id == recipient_id,
            )
            .values(is_read=True)
        )
        return result.rowcount or 0


class EventRepository:
    """Outbox of side effects written alongside each transition."""

    def __init__(self, session: AsyncSession):
        self.session = session

    async def emit(
        self, kind: EventKind, ride_id: Optional[str], payload: dict
    ) -> RideEventModel:
        event = RideEventModel(
            kind=kind, ride_id=ride_id, payload=payload, status=EventStatus.PENDING
        )
        self.session.add(event)
        await self.session.flush()
        return event

    async def claim_pending(self, limit: int = 100) -> list[RideEventModel]:
        """SELECT ... FOR UPDATE SKIP LOCKED, oldest first."""
        result = await self.session.execute(
            select(RideEventModel)
            .where(RideEventModel.status == EventStatus.PENDING)
            .order_by(RideEventModel.id)
            .limit(limit)
            .with_for_update(skip_locked=True)
        )
        return list(result.scalars().all())

    async def list_for_ride(self, ride_id: str) -> list[RideEventModel]:
        result = await self.session.execute(
            select(RideEventModel)
            .where(RideEventModel.ride_id == ride_id)
            .order_by(RideEventModel.id)
        )
        return list(result.scalars().all())

"""
Ride lifecycle controller.

Orchestrates request -> accept -> start -> complete | cancel.  Every
transition runs as one unit:

1. acquire the per-ride Redis lock (``RideLocked`` if another transition
   for the same ride is in flight),
2. open a session and a transaction,
3. guard the status, move the record between partitions, mutate wallets
   and write side-effect events to the outbox,
4. commit, then release the lock.

Nothing here delivers notifications or messages; the dispatcher worker does
that after commit, so a failing sink can never undo a transition.
"""

from __future__ import annotations

import logging
from contextlib import asynccontextmanager
from datetime import datetime, timedelta, timezone
from decimal import Decimal
from typing import AsyncIterator, Callable, Optional

import redis.asyncio as aioredis
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from ride2school.config import Settings, settings as default_settings
from ride2school.domain.cancellation import plan_cancellation
from ride2school.domain.distance import route_km
from ride2school.domain.entities import (
    AcceptResult,
    Actor,
    CancelResult,
    CompleteResult,
    Location,
    StartResult,
    ensure_transition,
)
from ride2school.domain.enums import (
    CancellationOutcome,
    NotificationType,
    Partition,
    RequestStatus,
    RideStatus,
    TransactionType,
    UserType,
)
from ride2school.domain.errors import (
    AlreadyRated,
    DriverBusy,
    DriverOffline,
    InsufficientFunds,
    InvalidOTP,
    InvalidStatus,
    RideCancelled,
    RideNotAccepted,
    RideNotFound,
    Unauthorized,
    UserNotFound,
    ValidationFailed,
)
from ride2school.domain.otp import as_utc
from ride2school.domain.pricing import FlatFare, PricingEngine, to_money
from ride2school.infrastructure.locks import ride_lock
from ride2school.infrastructure.models import (
    MessageModel,
    RatingModel,
    RideModel,
    RideRequestModel,
)
from ride2school.infrastructure.repositories import (
    AnyRideRecord,
    MessageRepository,
    RatingRepository,
    RideStore,
    UserRepository,
)
from ride2school.services.events import SideEffects
from ride2school.services.otp_gate import OtpGate
from ride2school.services.wallet import WalletLedger

logger = logging.getLogger(__name__)

MIN_RATING, MAX_RATING = 1, 5
MAX_MESSAGE_LENGTH = 1000


def utcnow() -> datetime:
    return datetime.now(timezone.utc)


def status_of(partition: Partition, record: AnyRideRecord) -> RideStatus:
    if partition == Partition.ACTIVE:
        return RideStatus(record.status)
    if partition == Partition.COMPLETED:
        return RideStatus.COMPLETED
    if partition == Partition.CANCELLED:
        return RideStatus.CANCELLED
    return RideStatus.REQUESTED


def is_party(record: AnyRideRecord, actor: Actor) -> bool:
    return actor.id in (record.parent_id, getattr(record, "driver_id", None))


class RideLifecycleController:
    def __init__(
        self,
        session_factory: async_sessionmaker[AsyncSession],
        redis: aioredis.Redis,
        settings: Settings = default_settings,
        clock: Callable[[], datetime] = utcnow,
    ):
        self.session_factory = session_factory
        self.redis = redis
        self.settings = settings
        self.clock = clock
        self.pricing = PricingEngine(
            base_fare=settings.base_fare,
            rate_per_km=settings.rate_per_km,
            platform_fee_rate=settings.platform_fee_rate,
            cancellation_penalty_rate=settings.cancellation_penalty_rate,
        )

    # ── Unit of work ──────────────────────────────────────────────────

    @asynccontextmanager
    async def _transition(self, ride_id: str) -> AsyncIterator[AsyncSession]:
        async with ride_lock(
            self.redis, ride_id, ttl_seconds=self.settings.ride_lock_ttl_seconds
        ):
            async with self.session_factory() as session:
                async with session.begin():
                    yield session

    @asynccontextmanager
    async def _unlocked(self) -> AsyncIterator[AsyncSession]:
        async with self.session_factory() as session:
            async with session.begin():
                yield session

    def _ledger(self, session: AsyncSession) -> WalletLedger:
        return WalletLedger(session, tolerance=self.settings.balance_tolerance)

    def _otp_gate(self, events: SideEffects) -> OtpGate:
        return OtpGate(events, ttl_minutes=self.settings.otp_ttl_minutes)

    async def _find(
        self, store: RideStore, ride_id: str
    ) -> tuple[Partition, AnyRideRecord]:
        ride = await store.active.get_for_update(ride_id)
        if ride is not None:
            return Partition.ACTIVE, ride
        found = await store.locate(ride_id)
        if found is None:
            raise RideNotFound()
        return found

    async def _active_ride(
        self, store: RideStore, ride_id: str, actor: Actor
    ) -> RideModel:
        """The ride in the active partition, or the error its partition implies."""
        partition, record = await self._find(store, ride_id)
        if partition == Partition.REQUESTS:
            raise RideNotAccepted()
        if not is_party(record, actor):
            raise Unauthorized()
        if partition == Partition.ACTIVE:
            return record
        if partition == Partition.CANCELLED:
            raise RideCancelled()
        raise InvalidStatus(RideStatus.COMPLETED)

    # ── Requests ──────────────────────────────────────────────────────

    async def create_request(
        self,
        actor: Actor,
        *,
        origin: Location,
        destination: Location,
        scheduled_time: Optional[datetime] = None,
        child_id: Optional[str] = None,
        destination_name: Optional[str] = None,
        notes: Optional[str] = None,
        estimated_fare: Optional[Decimal] = None,
    ) -> RideRequestModel:
        if not actor.is_parent:
            raise Unauthorized("Only parents can request rides.")
        strategy = FlatFare(estimated_fare) if estimated_fare is not None else None
        fare = self.pricing.estimate_fare(origin, destination, strategy)

        async with self._unlocked() as session:
            parent = await UserRepository(session).get_by_id(actor.id)
            if parent is None:
                raise UserNotFound()
            if Decimal(parent.wallet_balance or 0) < fare:
                raise InsufficientFunds()
            request = await RideStore(session).requests.create(
                RideRequestModel(
                    parent_id=actor.id,
                    child_id=child_id,
                    origin_lat=origin.latitude,
                    origin_lng=origin.longitude,
                    origin_address=origin.address,
                    destination_lat=destination.latitude,
                    destination_lng=destination.longitude,
                    destination_address=destination.address,
                    destination_name=destination_name,
                    scheduled_time=scheduled_time,
                    notes=notes,
                    estimated_fare=fare,
                    status=RequestStatus.PENDING,
                )
            )
        logger.info("Ride request %s created by %s (fare %s)", request.id, actor.id, fare)
        return request

    # ── Accept: requested -> scheduled ────────────────────────────────

    async def accept(self, actor: Actor, request_id: str) -> AcceptResult:
        if not actor.is_driver:
            raise Unauthorized("Only drivers can accept ride requests.")

        async with self._transition(request_id) as session:
            store = RideStore(session)
            driver = await UserRepository(session).get_for_update(actor.id)
            if driver is None:
                raise UserNotFound()
            if not driver.is_online:
                raise DriverOffline()
            if await store.active.count_active_for_driver(actor.id) > 0:
                raise DriverBusy()

            request = await store.requests.get_for_update(request_id)
            if request is None:
                found = await store.locate(request_id)
                if found is None:
                    raise RideNotFound("Ride request not found.")
                partition, record = found
                if partition == Partition.CANCELLED:
                    raise RideCancelled()
                raise InvalidStatus(
                    status_of(partition, record),
                    "This ride request is no longer available.",
                )

            now = self.clock()
            events = SideEffects(session)
            gate = self._otp_gate(events)
            otp, generated_at = gate.new_code(now)
            ride = await store.accept_request(
                request,
                driver_id=actor.id,
                otp=otp,
                otp_generated_at=generated_at,
                estimated_arrival=now
                + timedelta(minutes=self.settings.estimated_arrival_minutes),
            )
            await gate.announce(ride)
            result = AcceptResult(
                id=ride.id,
                otp=otp,
                otp_generated_at=generated_at,
                estimated_arrival=ride.estimated_arrival,
                fare=to_money(ride.fare),
            )

        logger.info("Ride %s accepted by driver %s", request_id, actor.id)
        return result

    async def regenerate_otp(self, actor: Actor, ride_id: str) -> str:
        async with self._transition(ride_id) as session:
            ride = await self._active_ride(RideStore(session), ride_id, actor)
            if ride.parent_id != actor.id:
                raise Unauthorized("Only the parent can generate a new OTP.")
            if ride.status != RideStatus.SCHEDULED:
                raise InvalidStatus(ride.status)
            otp = await self._otp_gate(SideEffects(session)).regenerate(
                ride, self.clock()
            )
        return otp

    # ── Start: scheduled -> in_progress ───────────────────────────────

    async def start(self, actor: Actor, ride_id: str, otp: str) -> StartResult:
        async with self._transition(ride_id) as session:
            ride = await self._active_ride(RideStore(session), ride_id, actor)
            if ride.driver_id != actor.id:
                raise Unauthorized("Only the assigned driver can start this ride.")
            if ride.status != RideStatus.SCHEDULED:
                raise InvalidStatus(
                    ride.status, "Ride cannot be started in its current status."
                )

            events = SideEffects(session)
            now = self.clock()
            if not self._otp_gate(events).verify(ride, otp, now):
                logger.info("Wrong OTP entered for ride %s", ride_id)
                raise InvalidOTP()

            ensure_transition(RideStatus.SCHEDULED, RideStatus.IN_PROGRESS)
            ride.status = RideStatus.IN_PROGRESS
            ride.actual_pickup_time = now
            ride.current_location_lat = ride.origin_lat
            ride.current_location_lng = ride.origin_lng
            ride.current_location_address = ride.origin_address
            await session.flush()

            await events.notify(
                ride.parent_id,
                "Ride Started",
                "Your child's ride has started. You can track the progress in real-time.",
                NotificationType.RIDE_STARTED,
                ride.id,
            )

        logger.info("Ride %s started", ride_id)
        return StartResult(success=True, ride_id=ride_id)

    async def update_location(
        self, actor: Actor, ride_id: str, location: Location
    ) -> RideModel:
        async with self._unlocked() as session:
            ride = await self._active_ride(RideStore(session), ride_id, actor)
            if ride.driver_id != actor.id:
                raise Unauthorized("Only the assigned driver can report location.")
            ride.current_location_lat = location.latitude
            ride.current_location_lng = location.longitude
            ride.current_location_address = location.address or "Current location"
            await session.flush()
        return ride

    # ── Complete: scheduled | in_progress -> completed ────────────────

    async def complete(self, actor: Actor, ride_id: str) -> CompleteResult:
        async with self._transition(ride_id) as session:
            store = RideStore(session)
            partition, record = await self._find(store, ride_id)
            if partition == Partition.REQUESTS:
                raise RideNotAccepted()
            if not is_party(record, actor):
                raise Unauthorized("Only the assigned driver can complete this ride.")
            if partition == Partition.CANCELLED:
                raise RideCancelled()
            if record.driver_id != actor.id:
                raise Unauthorized("Only the assigned driver can complete this ride.")

            if partition == Partition.COMPLETED:
                logger.info("Ride %s was already completed; nothing to do", ride_id)
                return CompleteResult(
                    success=True,
                    ride_id=ride_id,
                    fare=to_money(record.fare),
                    message="Ride was already completed. No further action was taken.",
                    already_completed=True,
                    completed_at=record.completed_at,
                    platform_fee=to_money(record.platform_fee),
                    driver_earnings=to_money(record.driver_earnings),
                )

            ride: RideModel = record
            ensure_transition(RideStatus(ride.status), RideStatus.COMPLETED)

            now = self.clock()
            fare = to_money(ride.fare)
            fee = self.pricing.platform_fee(fare)
            pickup = ride.actual_pickup_time
            duration = (
                int((as_utc(now) - as_utc(pickup)).total_seconds() // 60)
                if pickup
                else None
            )
            distance = route_km(
                Location(ride.origin_lat, ride.origin_lng),
                Location(ride.destination_lat, ride.destination_lng),
            )
            parent_id, driver_id = ride.parent_id, ride.driver_id

            completed = await store.move_to_completed(
                ride,
                completed_at=now,
                actual_dropoff_time=now,
                distance_traveled=distance,
                duration_minutes=duration,
                platform_fee=fee,
                driver_earnings=fare - fee,
            )

            ledger = self._ledger(session)
            short_id = ride_id[:8]
            parent_tx = await ledger.debit(
                parent_id,
                fare,
                TransactionType.RIDE_PAYMENT,
                description=f"Payment for ride {short_id}",
                ride_id=ride_id,
            )
            driver_tx = await ledger.credit(
                driver_id,
                fare,
                TransactionType.RIDE_EARNINGS,
                description=f"Earnings for ride {short_id}",
                fee_amount=fee,
                ride_id=ride_id,
            )

            await SideEffects(session).notify(
                parent_id,
                "Ride Completed",
                "Your child's ride has been completed successfully.",
                NotificationType.RIDE_COMPLETED,
                ride_id,
            )

            result = CompleteResult(
                success=True,
                ride_id=ride_id,
                fare=fare,
                message="Ride completed successfully",
                completed_at=completed.completed_at,
                platform_fee=fee,
                driver_earnings=fare - fee,
                parent_transaction_id=parent_tx,
                driver_transaction_id=driver_tx,
            )

        logger.info("Ride %s completed (fare %s, fee %s)", ride_id, fare, fee)
        return result

    # ── Cancel ────────────────────────────────────────────────────────

    async def cancel(
        self, actor: Actor, ride_id: str, reason: Optional[str] = None
    ) -> CancelResult:
        async with self._transition(ride_id) as session:
            store = RideStore(session)
            partition, record = await self._find(store, ride_id)
            if not is_party(record, actor):
                raise Unauthorized("You are not authorized to cancel this ride.")
            if partition == Partition.CANCELLED:
                raise RideCancelled()
            if partition == Partition.COMPLETED:
                raise InvalidStatus(
                    RideStatus.COMPLETED, "Completed rides cannot be cancelled."
                )

            status = status_of(partition, record)
            is_driver = getattr(record, "driver_id", None) == actor.id
            canceller_type = UserType.DRIVER if is_driver else UserType.PARENT
            counterparty_id = (
                record.parent_id if is_driver else getattr(record, "driver_id", None)
            )
            fare = record.fare if partition == Partition.ACTIVE else record.estimated_fare
            reason = (reason or "").strip() or None

            plan = plan_cancellation(
                status=status,
                canceller_type=canceller_type,
                canceller_id=actor.id,
                counterparty_id=counterparty_id,
                fare=fare,
                reason=reason,
                pricing=self.pricing,
                policy=self.settings.in_progress_penalty_policy,
            )

            now = self.clock()
            if plan.outcome == CancellationOutcome.REOPENED:
                await store.move_back_to_requests(record, reason=reason)
            else:
                await store.move_to_cancelled(
                    record,
                    previous_status=status,
                    cancelled_by=actor.id,
                    cancelled_by_type=canceller_type,
                    reason=reason or f"Cancelled by {canceller_type.value}",
                    cancelled_at=now,
                    fine=plan.penalty,
                )

            if plan.fine_applied:
                ledger = self._ledger(session)
                await ledger.debit(
                    plan.payer_id,
                    plan.penalty,
                    TransactionType.CANCELLATION_FEE,
                    description=f"Cancellation penalty for ride {ride_id[:8]}",
                    ride_id=ride_id,
                )
                if plan.payee_id:
                    await ledger.credit(
                        plan.payee_id,
                        plan.penalty,
                        TransactionType.CANCELLATION_COMPENSATION,
                        description=f"Cancellation compensation for ride {ride_id[:8]}",
                        ride_id=ride_id,
                    )

            await self._notify_cancellation(
                SideEffects(session),
                ride_id=ride_id,
                recipient_id=counterparty_id,
                canceller_type=canceller_type,
                outcome=plan.outcome,
                reason=reason,
                penalty=plan.penalty if plan.fine_applied else None,
                compensated=plan.payee_id is not None,
            )

            result = CancelResult(
                success=True,
                ride_id=ride_id,
                cancelled_by=actor.id,
                cancelled_by_type=canceller_type,
                outcome=plan.outcome,
                message=self._cancel_message(plan.penalty, plan.payee_id),
                penalty_applied=plan.penalty,
                penalty_recipient=plan.payee_id,
                cancelled_at=now,
            )

        logger.info(
            "Ride %s cancelled by %s (%s, penalty %s)",
            ride_id,
            canceller_type.value,
            plan.outcome.value,
            plan.penalty,
        )
        return result

    @staticmethod
    def _cancel_message(penalty: Decimal, payee_id: Optional[str]) -> str:
        if penalty <= 0:
            return "Ride cancelled successfully."
        if payee_id:
            return (
                f"Ride cancelled successfully. A penalty of R{penalty} has been "
                "transferred from your wallet to the other party."
            )
        return (
            f"Ride cancelled successfully. A penalty of R{penalty} has been "
            "applied to your account."
        )

    @staticmethod
    async def _notify_cancellation(
        events: SideEffects,
        *,
        ride_id: str,
        recipient_id: Optional[str],
        canceller_type: UserType,
        outcome: CancellationOutcome,
        reason: Optional[str],
        penalty: Optional[Decimal],
        compensated: bool = False,
    ) -> None:
        content = f"The ride has been cancelled by the {canceller_type.value}."
        if reason:
            content += f" Reason: {reason}."
        if penalty and compensated:
            content += f" You have been credited R{penalty} as compensation."
        elif penalty:
            content += f" The {canceller_type.value} was charged a R{penalty} penalty."
        if outcome == CancellationOutcome.REOPENED:
            content += " Your ride request is open again for other drivers."
            kind = NotificationType.RIDE_REOPENED
        else:
            kind = NotificationType.RIDE_CANCELLED
        await events.notify(recipient_id, "Ride Cancelled", content, kind, ride_id)

    # ── Ratings and chat ──────────────────────────────────────────────

    async def rate(
        self,
        actor: Actor,
        ride_id: str,
        rating: int,
        comment: Optional[str] = None,
    ) -> RatingModel:
        """Either party of a completed ride rates the other, once."""
        if not MIN_RATING <= rating <= MAX_RATING:
            raise ValidationFailed(
                f"Rating must be between {MIN_RATING} and {MAX_RATING}."
            )
        async with self._unlocked() as session:
            store = RideStore(session)
            found = await store.locate(ride_id)
            if found is None:
                raise RideNotFound()
            partition, record = found
            if not is_party(record, actor):
                raise Unauthorized("You are not authorized to rate this ride.")
            if partition != Partition.COMPLETED:
                raise InvalidStatus(
                    status_of(partition, record), "Only completed rides can be rated."
                )

            ratings = RatingRepository(session)
            if await ratings.get_by_rater(ride_id, actor.id) is not None:
                raise AlreadyRated()
            if actor.id == record.parent_id:
                rated_id, rated_type = record.driver_id, UserType.DRIVER
            else:
                rated_id, rated_type = record.parent_id, UserType.PARENT
            saved = await ratings.add(
                RatingModel(
                    ride_id=ride_id,
                    rater_id=actor.id,
                    rated_id=rated_id,
                    rated_type=rated_type,
                    rating=rating,
                    comment=(comment or "").strip() or None,
                )
            )
        logger.info("Ride %s rated %d by %s", ride_id, rating, actor.id)
        return saved

    async def send_message(
        self, actor: Actor, ride_id: str, content: str
    ) -> MessageModel:
        """Chat message from one party of a ride to the other."""
        content = (content or "").strip()
        if not content:
            raise ValidationFailed("Message content cannot be empty.")
        if len(content) > MAX_MESSAGE_LENGTH:
            raise ValidationFailed(
                f"Message is too long (max {MAX_MESSAGE_LENGTH} characters)."
            )
        async with self._unlocked() as session:
            found = await RideStore(session).locate(ride_id)
            if found is None:
                raise RideNotFound()
            _, record = found
            if not is_party(record, actor):
                raise Unauthorized("You don't have access to this ride.")
            driver_id = getattr(record, "driver_id", None)
            if driver_id is None:
                raise RideNotAccepted()
            recipient_id = record.parent_id if actor.id == driver_id else driver_id
            message = await MessageRepository(session).add(
                MessageModel(
                    sender_id=actor.id,
                    recipient_id=recipient_id,
                    content=content,
                    ride_id=ride_id,
                )
            )
        return message

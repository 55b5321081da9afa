"""
SQLAlchemy ORM models  (maps to PostgreSQL).

Tables
------
* ``users``            -- parents and drivers, each with a wallet balance
* ``ride_requests``    -- requests partition: open bookings awaiting a driver
* ``rides``            -- active partition: scheduled / in-progress rides
* ``completed_rides``  -- terminal partition
* ``cancelled_rides``  -- terminal partition
* ``transactions``     -- append-only wallet ledger
* ``notifications``    -- in-app notifications (read flag mutable)
* ``messages``         -- ride chat messages (read flag mutable)
* ``ratings``          -- one rating per party per completed ride
* ``ride_events``      -- outbox of side effects awaiting delivery

A ride keeps its id as it moves between the four partition tables.

Indexes
-------
* **B-Tree** on ``status``, party ids and ``created_at`` for the look-ups
  used by the lifecycle controller, the poller and the dispatcher.
"""

import uuid
from decimal import Decimal

from sqlalchemy import (
    JSON,
    Boolean,
    Column,
    DateTime,
    Enum,
    Float,
    ForeignKey,
    Index,
    Integer,
    Numeric,
    String,
    Text,
    UniqueConstraint,
    func,
)

from .database import Base
from ride2school.domain.enums import (
    EventKind,
    EventStatus,
    RequestStatus,
    RideStatus,
    TransactionDirection,
    TransactionStatus,
    TransactionType,
    UserType,
)


def _uuid() -> str:
    return str(uuid.uuid4())


def _enum(enum_cls):
    """Persist the enum's lowercase values rather than its member names."""
    return Enum(
        enum_cls,
        name=enum_cls.__name__.lower(),
        values_callable=lambda members: [m.value for m in members],
    )


Money = Numeric(12, 2)


class UserModel(Base):
    __tablename__ = "users"

    id = Column(String(36), primary_key=True, default=_uuid)
    name = Column(String(120), nullable=False)
    email = Column(String(255), unique=True, nullable=False)
    phone_number = Column(String(32), nullable=True)
    user_type = Column(_enum(UserType), nullable=False)
    is_online = Column(Boolean, default=False, nullable=False)
    wallet_balance = Column(Money, default=Decimal("0.00"), nullable=False)
    created_at = Column(DateTime(timezone=True), server_default=func.now())

    __table_args__ = (Index("idx_users_type_online", "user_type", "is_online"),)


class _RouteColumns:
    """Geo / schedule columns shared by every ride partition."""

    child_id = Column(String(36), nullable=True)

    origin_lat = Column(Float, nullable=False)
    origin_lng = Column(Float, nullable=False)
    origin_address = Column(String(255), nullable=True)
    destination_lat = Column(Float, nullable=False)
    destination_lng = Column(Float, nullable=False)
    destination_address = Column(String(255), nullable=True)
    destination_name = Column(String(120), nullable=True)

    scheduled_time = Column(DateTime(timezone=True), nullable=True)
    notes = Column(Text, nullable=True)


class RideRequestModel(_RouteColumns, Base):
    __tablename__ = "ride_requests"

    id = Column(String(36), primary_key=True, default=_uuid)
    parent_id = Column(String(36), ForeignKey("users.id"), nullable=False)
    estimated_fare = Column(Money, nullable=False)
    status = Column(
        _enum(RequestStatus), default=RequestStatus.PENDING, nullable=False
    )
    # Times a driver has handed this ride back after accepting it.
    reopened_count = Column(Integer, default=0, nullable=False)
    last_cancellation_reason = Column(Text, nullable=True)

    created_at = Column(DateTime(timezone=True), server_default=func.now())
    updated_at = Column(
        DateTime(timezone=True), server_default=func.now(), onupdate=func.now()
    )

    __table_args__ = (
        Index("idx_ride_requests_status", "status"),
        Index("idx_ride_requests_parent", "parent_id"),
    )


class RideModel(_RouteColumns, Base):
    __tablename__ = "rides"

    id = Column(String(36), primary_key=True)
    parent_id = Column(String(36), ForeignKey("users.id"), nullable=False)
    driver_id = Column(String(36), ForeignKey("users.id"), nullable=False)

    status = Column(_enum(RideStatus), default=RideStatus.SCHEDULED, nullable=False)
    fare = Column(Money, nullable=False)

    current_location_lat = Column(Float, nullable=True)
    current_location_lng = Column(Float, nullable=True)
    current_location_address = Column(String(255), nullable=True)
    estimated_arrival = Column(DateTime(timezone=True), nullable=True)

    otp = Column(String(6), nullable=True)
    otp_generated_at = Column(DateTime(timezone=True), nullable=True)
    actual_pickup_time = Column(DateTime(timezone=True), nullable=True)
    reopened_count = Column(Integer, default=0, nullable=False)

    created_at = Column(DateTime(timezone=True), server_default=func.now())
    updated_at = Column(
        DateTime(timezone=True), server_default=func.now(), onupdate=func.now()
    )

    __table_args__ = (
        Index("idx_rides_status", "status"),
        Index("idx_rides_parent", "parent_id"),
        Index("idx_rides_driver", "driver_id"),
    )


class CompletedRideModel(_RouteColumns, Base):
    __tablename__ = "completed_rides"

    id = Column(String(36), primary_key=True)
    parent_id = Column(String(36), ForeignKey("users.id"), nullable=False)
    driver_id = Column(String(36), ForeignKey("users.id"), nullable=False)
    fare = Column(Money, nullable=False)
    platform_fee = Column(Money, nullable=False)
    driver_earnings = Column(Money, nullable=False)

    completed_at = Column(DateTime(timezone=True), nullable=False)
    actual_pickup_time = Column(DateTime(timezone=True), nullable=True)
    actual_dropoff_time = Column(DateTime(timezone=True), nullable=True)
    distance_traveled = Column(Float, nullable=True)  # km
    duration_minutes = Column(Integer, nullable=True)

    created_at = Column(DateTime(timezone=True), server_default=func.now())
    updated_at = Column(
        DateTime(timezone=True), server_default=func.now(), onupdate=func.now()
    )

    __table_args__ = (
        Index("idx_completed_rides_parent", "parent_id"),
        Index("idx_completed_rides_driver", "driver_id"),
    )


class CancelledRideModel(_RouteColumns, Base):
    __tablename__ = "cancelled_rides"

    id = Column(String(36), primary_key=True)
    parent_id = Column(String(36), ForeignKey("users.id"), nullable=False)
    # Null when the request was cancelled before any driver accepted it.
    driver_id = Column(String(36), ForeignKey("users.id"), nullable=True)
    fare = Column(Money, nullable=True)
    previous_status = Column(String(20), nullable=False)

    cancelled_by = Column(String(36), ForeignKey("users.id"), nullable=False)
    cancelled_by_type = Column(_enum(UserType), nullable=False)
    cancellation_reason = Column(Text, nullable=True)
    cancelled_at = Column(DateTime(timezone=True), nullable=False)
    fine_applied = Column(Boolean, default=False, nullable=False)
    cancellation_fine = Column(Money, default=Decimal("0.00"), nullable=False)

    created_at = Column(DateTime(timezone=True), server_default=func.now())
    updated_at = Column(
        DateTime(timezone=True), server_default=func.now(), onupdate=func.now()
    )

    __table_args__ = (
        Index("idx_cancelled_rides_parent", "parent_id"),
        Index("idx_cancelled_rides_driver", "driver_id"),
    )


class TransactionModel(Base):
    __tablename__ = "transactions"

    id = Column(String(36), primary_key=True, default=_uuid)
    user_id = Column(String(36), ForeignKey("users.id"), nullable=False)
    ride_id = Column(String(36), nullable=True)
    amount = Column(Money, nullable=False)
    type = Column(_enum(TransactionDirection), nullable=False)
    transaction_type = Column(_enum(TransactionType), nullable=False)
    description = Column(String(255), nullable=True)
    fee_amount = Column(Money, default=Decimal("0.00"), nullable=False)
    net_amount = Column(Money, nullable=False)
    status = Column(
        _enum(TransactionStatus), default=TransactionStatus.COMPLETED, nullable=False
    )
    created_at = Column(DateTime(timezone=True), server_default=func.now())

    __table_args__ = (
        Index("idx_transactions_user_created", "user_id", "created_at"),
        Index("idx_transactions_ride", "ride_id"),
    )


class NotificationModel(Base):
    __tablename__ = "notifications"

    id = Column(String(36), primary_key=True, default=_uuid)
    user_id = Column(String(36), ForeignKey("users.id"), nullable=False)
    title = Column(String(120), nullable=False)
    content = Column(Text, nullable=False)
    type = Column(String(40), nullable=False)
    ride_id = Column(String(36), nullable=True)
    is_read = Column(Boolean, default=False, nullable=False)
    created_at = Column(DateTime(timezone=True), server_default=func.now())

    __table_args__ = (Index("idx_notifications_user", "user_id", "is_read"),)


class MessageModel(Base):
    __tablename__ = "messages"

    id = Column(String(36), primary_key=True, default=_uuid)
    sender_id = Column(String(36), ForeignKey("users.id"), nullable=False)
    recipient_id = Column(String(36), ForeignKey("users.id"), nullable=False)
    content = Column(Text, nullable=False)
    ride_id = Column(String(36), nullable=True)
    is_read = Column(Boolean, default=False, nullable=False)
    created_at = Column(DateTime(timezone=True), server_default=func.now())

    __table_args__ = (
        Index("idx_messages_ride", "ride_id"),
        Index("idx_messages_recipient", "recipient_id", "is_read"),
    )


class RatingModel(Base):
    __tablename__ = "ratings"

    id = Column(String(36), primary_key=True, default=_uuid)
    ride_id = Column(String(36), ForeignKey("completed_rides.id"), nullable=False)
    rater_id = Column(String(36), ForeignKey("users.id"), nullable=False)
    rated_id = Column(String(36), ForeignKey("users.id"), nullable=False)
    rated_type = Column(_enum(UserType), nullable=False)
    rating = Column(Integer, nullable=False)
    comment = Column(Text, nullable=True)
    created_at = Column(DateTime(timezone=True), server_default=func.now())

    __table_args__ = (
        UniqueConstraint("ride_id", "rater_id", name="uq_ratings_ride_rater"),
        Index("idx_ratings_rated", "rated_id"),
    )


class RideEventModel(Base):
    __tablename__ = "ride_events"

    id = Column(Integer, primary_key=True, autoincrement=True)
    kind = Column(_enum(EventKind), nullable=False)
    ride_id = Column(String(36), nullable=True)
    payload = Column(JSON, nullable=False)
    status = Column(_enum(EventStatus), default=EventStatus.PENDING, nullable=False)
    attempts = Column(Integer, default=0, nullable=False)
    last_error = Column(Text, nullable=True)
    created_at = Column(DateTime(timezone=True), server_default=func.now())
    delivered_at = Column(DateTime(timezone=True), nullable=True)

    __table_args__ = (Index("idx_ride_events_status", "status", "id"),)

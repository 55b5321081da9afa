"""Initial schema: users, the four ride partitions, wallet ledger and outbox.

Revision ID: 001
Create Date: 2026-10-19
"""

from alembic import op
import sqlalchemy as sa
from sqlalchemy.dialects import postgresql


revision = "001"
down_revision = None
branch_labels = None
depends_on = None


ENUMS = {
    "usertype": ("parent", "driver"),
    "requeststatus": ("pending", "accepted"),
    "ridestatus": ("requested", "scheduled", "in_progress", "completed", "cancelled"),
    "transactiondirection": ("credit", "debit"),
    "transactiontype": (
        "ride_payment",
        "ride_earnings",
        "cancellation_fee",
        "cancellation_compensation",
        "wallet_topup",
        "wallet_withdrawal",
    ),
    "transactionstatus": ("pending", "completed", "failed"),
    "eventkind": ("notification", "message"),
    "eventstatus": ("pending", "delivered", "failed"),
}


def _enum(name: str) -> postgresql.ENUM:
    return postgresql.ENUM(*ENUMS[name], name=name, create_type=False)


def _money(name: str, nullable: bool = False, **kw) -> sa.Column:
    return sa.Column(name, sa.Numeric(12, 2), nullable=nullable, **kw)


def _user_fk(name: str, nullable: bool = False) -> sa.Column:
    return sa.Column(
        name, sa.String(36), sa.ForeignKey("users.id"), nullable=nullable
    )


def _route_columns() -> list[sa.Column]:
    return [
        sa.Column("child_id", sa.String(36), nullable=True),
        sa.Column("origin_lat", sa.Float, nullable=False),
        sa.Column("origin_lng", sa.Float, nullable=False),
        sa.Column("origin_address", sa.String(255), nullable=True),
        sa.Column("destination_lat", sa.Float, nullable=False),
        sa.Column("destination_lng", sa.Float, nullable=False),
        sa.Column("destination_address", sa.String(255), nullable=True),
        sa.Column("destination_name", sa.String(120), nullable=True),
        sa.Column("scheduled_time", sa.DateTime(timezone=True), nullable=True),
        sa.Column("notes", sa.Text, nullable=True),
    ]


def _timestamps(updated: bool = True) -> list[sa.Column]:
    columns = [
        sa.Column(
            "created_at",
            sa.DateTime(timezone=True),
            server_default=sa.func.now(),
        )
    ]
    if updated:
        columns.append(
            sa.Column(
                "updated_at",
                sa.DateTime(timezone=True),
                server_default=sa.func.now(),
            )
        )
    return columns


def upgrade() -> None:
    bind = op.get_bind()
    for name, values in ENUMS.items():
        postgresql.ENUM(*values, name=name).create(bind, checkfirst=True)

    # ── users ─────────────────────────────────────────────────────────
    op.create_table(
        "users",
        sa.Column("id", sa.String(36), primary_key=True),
        sa.Column("name", sa.String(120), nullable=False),
        sa.Column("email", sa.String(255), unique=True, nullable=False),
        sa.Column("phone_number", sa.String(32), nullable=True),
        sa.Column("user_type", _enum("usertype"), nullable=False),
        sa.Column("is_online", sa.Boolean, default=False, nullable=False),
        _money("wallet_balance", server_default="0.00"),
        *_timestamps(updated=False),
    )
    op.create_index("idx_users_type_online", "users", ["user_type", "is_online"])

    # ── ride_requests (requests partition) ────────────────────────────
    op.create_table(
        "ride_requests",
        sa.Column("id", sa.String(36), primary_key=True),
        _user_fk("parent_id"),
        *_route_columns(),
        _money("estimated_fare"),
        sa.Column(
            "status",
            _enum("requeststatus"),
            server_default="pending",
            nullable=False,
        ),
        sa.Column("reopened_count", sa.Integer, server_default="0", nullable=False),
        sa.Column("last_cancellation_reason", sa.Text, nullable=True),
        *_timestamps(),
    )
    op.create_index("idx_ride_requests_status", "ride_requests", ["status"])
    op.create_index("idx_ride_requests_parent", "ride_requests", ["parent_id"])

    # ── rides (active partition) ──────────────────────────────────────
    op.create_table(
        "rides",
        sa.Column("id", sa.String(36), primary_key=True),
        _user_fk("parent_id"),
        _user_fk("driver_id"),
        *_route_columns(),
        sa.Column("status", _enum("ridestatus"), nullable=False),
        _money("fare"),
        sa.Column("current_location_lat", sa.Float, nullable=True),
        sa.Column("current_location_lng", sa.Float, nullable=True),
        sa.Column("current_location_address", sa.String(255), nullable=True),
        sa.Column("estimated_arrival", sa.DateTime(timezone=True), nullable=True),
        sa.Column("otp", sa.String(6), nullable=True),
        sa.Column("otp_generated_at", sa.DateTime(timezone=True), nullable=True),
        sa.Column("actual_pickup_time", sa.DateTime(timezone=True), nullable=True),
        sa.Column("reopened_count", sa.Integer, server_default="0", nullable=False),
        *_timestamps(),
    )
    op.create_index("idx_rides_status", "rides", ["status"])
    op.create_index("idx_rides_parent", "rides", ["parent_id"])
    op.create_index("idx_rides_driver", "rides", ["driver_id"])

    # ── completed_rides ───────────────────────────────────────────────
    op.create_table(
        "completed_rides",
        sa.Column("id", sa.String(36), primary_key=True),
        _user_fk("parent_id"),
        _user_fk("driver_id"),
        *_route_columns(),
        _money("fare"),
        _money("platform_fee"),
        _money("driver_earnings"),
        sa.Column("completed_at", sa.DateTime(timezone=True), nullable=False),
        sa.Column("actual_pickup_time", sa.DateTime(timezone=True), nullable=True),
        sa.Column("actual_dropoff_time", sa.DateTime(timezone=True), nullable=True),
        sa.Column("distance_traveled", sa.Float, nullable=True),
        sa.Column("duration_minutes", sa.Integer, nullable=True),
        *_timestamps(),
    )
    op.create_index("idx_completed_rides_parent", "completed_rides", ["parent_id"])
    op.create_index("idx_completed_rides_driver", "completed_rides", ["driver_id"])

    # ── cancelled_rides ───────────────────────────────────────────────
    op.create_table(
        "cancelled_rides",
        sa.Column("id", sa.String(36), primary_key=True),
        _user_fk("parent_id"),
        _user_fk("driver_id", nullable=True),
        *_route_columns(),
        _money("fare", nullable=True),
        sa.Column("previous_status", sa.String(20), nullable=False),
        _user_fk("cancelled_by"),
        sa.Column("cancelled_by_type", _enum("usertype"), nullable=False),
        sa.Column("cancellation_reason", sa.Text, nullable=True),
        sa.Column("cancelled_at", sa.DateTime(timezone=True), nullable=False),
        sa.Column("fine_applied", sa.Boolean, default=False, nullable=False),
        _money("cancellation_fine", server_default="0.00"),
        *_timestamps(),
    )
    op.create_index("idx_cancelled_rides_parent", "cancelled_rides", ["parent_id"])
    op.create_index("idx_cancelled_rides_driver", "cancelled_rides", ["driver_id"])

    # ── transactions (wallet ledger) ──────────────────────────────────
    op.create_table(
        "transactions",
        sa.Column("id", sa.String(36), primary_key=True),
        _user_fk("user_id"),
        sa.Column("ride_id", sa.String(36), nullable=True),
        _money("amount"),
        sa.Column("type", _enum("transactiondirection"), nullable=False),
        sa.Column("transaction_type", _enum("transactiontype"), nullable=False),
        sa.Column("description", sa.String(255), nullable=True),
        _money("fee_amount", server_default="0.00"),
        _money("net_amount"),
        sa.Column(
            "status",
            _enum("transactionstatus"),
            server_default="completed",
            nullable=False,
        ),
        *_timestamps(updated=False),
    )
    op.create_index(
        "idx_transactions_user_created", "transactions", ["user_id", "created_at"]
    )
    op.create_index("idx_transactions_ride", "transactions", ["ride_id"])

    # ── notifications / messages ──────────────────────────────────────
    op.create_table(
        "notifications",
        sa.Column("id", sa.String(36), primary_key=True),
        _user_fk("user_id"),
        sa.Column("title", sa.String(120), nullable=False),
        sa.Column("content", sa.Text, nullable=False),
        sa.Column("type", sa.String(40), nullable=False),
        sa.Column("ride_id", sa.String(36), nullable=True),
        sa.Column("is_read", sa.Boolean, server_default=sa.false(), nullable=False),
        *_timestamps(updated=False),
    )
    op.create_index("idx_notifications_user", "notifications", ["user_id", "is_read"])

    op.create_table(
        "messages",
        sa.Column("id", sa.String(36), primary_key=True),
        _user_fk("sender_id"),
        _user_fk("recipient_id"),
        sa.Column("content", sa.Text, nullable=False),
        sa.Column("ride_id", sa.String(36), nullable=True),
        sa.Column("is_read", sa.Boolean, server_default=sa.false(), nullable=False),
        *_timestamps(updated=False),
    )
    op.create_index("idx_messages_ride", "messages", ["ride_id"])
    op.create_index("idx_messages_recipient", "messages", ["recipient_id", "is_read"])

    # ── ratings ───────────────────────────────────────────────────────
    op.create_table(
        "ratings",
        sa.Column("id", sa.String(36), primary_key=True),
        sa.Column(
            "ride_id",
            sa.String(36),
            sa.ForeignKey("completed_rides.id"),
            nullable=False,
        ),
        _user_fk("rater_id"),
        _user_fk("rated_id"),
        sa.Column("rated_type", _enum("usertype"), nullable=False),
        sa.Column("rating", sa.Integer, nullable=False),
        sa.Column("comment", sa.Text, nullable=True),
        *_timestamps(updated=False),
        sa.UniqueConstraint("ride_id", "rater_id", name="uq_ratings_ride_rater"),
    )
    op.create_index("idx_ratings_rated", "ratings", ["rated_id"])

    # ── ride_events (side-effect outbox) ──────────────────────────────
    op.create_table(
        "ride_events",
        sa.Column("id", sa.Integer, primary_key=True, autoincrement=True),
        sa.Column("kind", _enum("eventkind"), nullable=False),
        sa.Column("ride_id", sa.String(36), nullable=True),
        sa.Column("payload", sa.JSON, nullable=False),
        sa.Column(
            "status", _enum("eventstatus"), server_default="pending", nullable=False
        ),
        sa.Column("attempts", sa.Integer, server_default="0", nullable=False),
        sa.Column("last_error", sa.Text, nullable=True),
        sa.Column(
            "created_at",
            sa.DateTime(timezone=True),
            server_default=sa.func.now(),
        ),
        sa.Column("delivered_at", sa.DateTime(timezone=True), nullable=True),
    )
    op.create_index("idx_ride_events_status", "ride_events", ["status", "id"])


def downgrade() -> None:
    for table in (
        "ride_events",
        "ratings",
        "messages",
        "notifications",
        "transactions",
        "cancelled_rides",
        "completed_rides",
        "rides",
        "ride_requests",
        "users",
    ):
        op.drop_table(table)
    for name in reversed(list(ENUMS)):
        op.execute(f"DROP TYPE IF EXISTS {name}")

"""create_parking_core_tables

Revision ID: 4f2a9c1d7e3b
Revises:
Create Date: 2026-10-18 10:12:41.508113

"""

from typing import Sequence, Union

from alembic import op
import sqlalchemy as sa


# revision identifiers, used by Alembic.
revision: str = "4f2a9c1d7e3b"
down_revision: Union[str, None] = None
branch_labels: Union[str, Sequence[str], None] = None
depends_on: Union[str, Sequence[str], None] = None

ACTIVE_ONLY = sa.text("status = 'ACTIVE'")


def _in(column: str, values) -> str:
    return f"{column} IN ({', '.join(repr(v) for v in values)})"


SPOT_TYPES = ("COMPACT", "STANDARD", "OVERSIZED", "ELECTRIC", "HANDICAP", "MOTORCYCLE")
SPOT_STATUSES = ("AVAILABLE", "OCCUPIED", "MAINTENANCE", "OUT_OF_ORDER")
VEHICLE_TYPES = ("COMPACT", "STANDARD", "OVERSIZED", "ELECTRIC", "MOTORCYCLE")
VEHICLE_STATUSES = ("ACTIVE", "BLOCKED", "BANNED", "INACTIVE")
SESSION_STATUSES = ("ACTIVE", "COMPLETED", "EXPIRED", "CANCELLED", "ABANDONED")
RATE_TYPES = ("HOURLY", "DAILY", "MONTHLY")


def upgrade() -> None:
    # Create vehicles table
    op.create_table(
        "vehicles",
        sa.Column("id", sa.Uuid(), nullable=False),
        sa.Column("license_plate", sa.String(length=20), nullable=False),
        sa.Column("vehicle_type", sa.String(length=16), nullable=False),
        sa.Column("status", sa.String(length=16), nullable=False),
        sa.Column("owner_name", sa.String(length=255), nullable=True),
        sa.Column("owner_email", sa.String(length=255), nullable=True),
        sa.Column("owner_phone", sa.String(length=32), nullable=True),
        sa.Column("make", sa.String(length=64), nullable=True),
        sa.Column("model", sa.String(length=64), nullable=True),
        sa.Column("color", sa.String(length=32), nullable=True),
        sa.Column("year", sa.Integer(), nullable=True),
        sa.Column("created_at", sa.DateTime(timezone=True), nullable=False),
        sa.Column("updated_at", sa.DateTime(timezone=True), nullable=False),
        sa.CheckConstraint(_in("vehicle_type", VEHICLE_TYPES), name="check_vehicle_type"),
        sa.CheckConstraint(_in("status", VEHICLE_STATUSES), name="check_vehicle_status"),
        sa.PrimaryKeyConstraint("id"),
        sa.UniqueConstraint("license_plate"),
    )

    # Create spots table
    op.create_table(
        "spots",
        sa.Column("id", sa.Uuid(), nullable=False),
        sa.Column("garage", sa.String(length=64), nullable=False),
        sa.Column("floor", sa.Integer(), nullable=False),
        sa.Column("bay", sa.String(length=32), nullable=True),
        sa.Column("spot_number", sa.String(length=32), nullable=False),
        sa.Column("spot_type", sa.String(length=16), nullable=False),
        sa.Column("status", sa.String(length=16), nullable=False),
        sa.Column("current_vehicle_id", sa.Uuid(), nullable=True),
        sa.Column("hourly_rate", sa.Numeric(precision=10, scale=2), nullable=False),
        sa.Column("created_at", sa.DateTime(timezone=True), nullable=False),
        sa.Column("updated_at", sa.DateTime(timezone=True), nullable=False),
        sa.CheckConstraint(_in("spot_type", SPOT_TYPES), name="check_spot_type"),
        sa.CheckConstraint(_in("status", SPOT_STATUSES), name="check_spot_status"),
        sa.CheckConstraint(
            "(status = 'OCCUPIED' AND current_vehicle_id IS NOT NULL) "
            "OR (status <> 'OCCUPIED' AND current_vehicle_id IS NULL)",
            name="check_spot_occupant",
        ),
        sa.CheckConstraint("hourly_rate >= 0", name="check_spot_hourly_rate"),
        sa.ForeignKeyConstraint(["current_vehicle_id"], ["vehicles.id"], ondelete="SET NULL"),
        sa.PrimaryKeyConstraint("id"),
        sa.UniqueConstraint("garage", "spot_number", name="uq_spots_garage_number"),
    )
    op.create_index("ix_spots_status", "spots", ["status"])

    # Create parking_sessions table
    op.create_table(
        "parking_sessions",
        sa.Column("id", sa.Uuid(), nullable=False),
        sa.Column("vehicle_id", sa.Uuid(), nullable=False),
        sa.Column("spot_id", sa.Uuid(), nullable=False),
        sa.Column("status", sa.String(length=16), nullable=False),
        sa.Column("entry_time", sa.DateTime(timezone=True), nullable=False),
        sa.Column("exit_time", sa.DateTime(timezone=True), nullable=True),
        sa.Column("duration_seconds", sa.Integer(), nullable=True),
        sa.Column("rate_type", sa.String(length=16), nullable=False),
        sa.Column("hourly_rate", sa.Numeric(precision=10, scale=2), nullable=True),
        sa.Column("total_fee", sa.Numeric(precision=10, scale=2), nullable=True),
        sa.Column("is_paid", sa.Boolean(), nullable=False),
        sa.Column("notes", sa.Text(), nullable=True),
        sa.Column("metadata", sa.JSON(), nullable=True),
        sa.Column("created_at", sa.DateTime(timezone=True), nullable=False),
        sa.Column("updated_at", sa.DateTime(timezone=True), nullable=False),
        sa.CheckConstraint(_in("status", SESSION_STATUSES), name="check_session_status"),
        sa.CheckConstraint(_in("rate_type", RATE_TYPES), name="check_session_rate_type"),
        sa.CheckConstraint(
            "exit_time IS NULL OR exit_time > entry_time", name="check_session_time_range"
        ),
        sa.CheckConstraint("total_fee IS NULL OR total_fee >= 0", name="check_session_total_fee"),
        sa.ForeignKeyConstraint(["spot_id"], ["spots.id"], ondelete="RESTRICT"),
        sa.ForeignKeyConstraint(["vehicle_id"], ["vehicles.id"], ondelete="RESTRICT"),
        sa.PrimaryKeyConstraint("id"),
    )

    # Create indexes for lookups and for the one-active-session rule
    op.create_index("ix_parking_sessions_vehicle_id", "parking_sessions", ["vehicle_id"])
    op.create_index("ix_parking_sessions_spot_id", "parking_sessions", ["spot_id"])
    op.create_index(
        "uq_parking_sessions_active_spot",
        "parking_sessions",
        ["spot_id"],
        unique=True,
        postgresql_where=ACTIVE_ONLY,
        sqlite_where=ACTIVE_ONLY,
    )
    op.create_index(
        "uq_parking_sessions_active_vehicle",
        "parking_sessions",
        ["vehicle_id"],
        unique=True,
        postgresql_where=ACTIVE_ONLY,
        sqlite_where=ACTIVE_ONLY,
    )


def downgrade() -> None:
    # Drop indexes
    op.drop_index("uq_parking_sessions_active_vehicle", table_name="parking_sessions")
    op.drop_index("uq_parking_sessions_active_spot", table_name="parking_sessions")
    op.drop_index("ix_parking_sessions_spot_id", table_name="parking_sessions")
    op.drop_index("ix_parking_sessions_vehicle_id", table_name="parking_sessions")
    op.drop_index("ix_spots_status", table_name="spots")

    # Drop tables
    op.drop_table("parking_sessions")
    op.drop_table("spots")
    op.drop_table("vehicles")

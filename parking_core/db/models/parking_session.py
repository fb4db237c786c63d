"""ParkingSession model."""

from uuid import uuid4

from sqlalchemy import (
    JSON,
    Boolean,
    CheckConstraint,
    Column,
    DateTime,
    ForeignKey,
    Index,
    Integer,
    Numeric,
    String,
    Text,
    Uuid,
    text,
)
from sqlalchemy.orm import relationship

from parking_core.core.enums import RateType, SessionStatus, sql_in_check
from parking_core.db.base import Base
from parking_core.db.models.spot import _utcnow

ACTIVE_ONLY = text("status = 'ACTIVE'")


class ParkingSession(Base):
    """One continuous stay of a vehicle in a spot."""

    __tablename__ = "parking_sessions"

    id = Column(Uuid(as_uuid=True), primary_key=True, default=uuid4)
    vehicle_id = Column(
        Uuid(as_uuid=True),
        ForeignKey("vehicles.id", ondelete="RESTRICT"),
        nullable=False,
        index=True,
    )
    spot_id = Column(
        Uuid(as_uuid=True),
        ForeignKey("spots.id", ondelete="RESTRICT"),
        nullable=False,
        index=True,
    )
    status = Column(String(16), nullable=False, default=SessionStatus.ACTIVE.value)

    # Time information
    entry_time = Column(DateTime(timezone=True), nullable=False)
    exit_time = Column(DateTime(timezone=True), nullable=True)
    duration_seconds = Column(Integer, nullable=True)

    # Billing
    rate_type = Column(String(16), nullable=False, default=RateType.HOURLY.value)
    hourly_rate = Column(Numeric(10, 2), nullable=True)
    total_fee = Column(Numeric(10, 2), nullable=True)
    is_paid = Column(Boolean, nullable=False, default=False)

    notes = Column(Text, nullable=True)
    # "metadata" is reserved on declarative classes
    details = Column("metadata", JSON, nullable=True)

    created_at = Column(DateTime(timezone=True), default=_utcnow, nullable=False)
    updated_at = Column(DateTime(timezone=True), default=_utcnow, onupdate=_utcnow, nullable=False)

    # Constraints
    __table_args__ = (
        CheckConstraint(sql_in_check("status", SessionStatus), name="check_session_status"),
        CheckConstraint(sql_in_check("rate_type", RateType), name="check_session_rate_type"),
        CheckConstraint(
            "exit_time IS NULL OR exit_time > entry_time",
            name="check_session_time_range",
        ),
        CheckConstraint("total_fee IS NULL OR total_fee >= 0", name="check_session_total_fee"),
        # At most one ACTIVE session per spot and per vehicle. These indexes are
        # what actually stops two concurrent parks from claiming the same spot.
        Index(
            "uq_parking_sessions_active_spot",
            "spot_id",
            unique=True,
            postgresql_where=ACTIVE_ONLY,
            sqlite_where=ACTIVE_ONLY,
        ),
        Index(
            "uq_parking_sessions_active_vehicle",
            "vehicle_id",
            unique=True,
            postgresql_where=ACTIVE_ONLY,
            sqlite_where=ACTIVE_ONLY,
        ),
    )

    # Relationships
    vehicle = relationship("Vehicle", back_populates="sessions", lazy="raise")
    spot = relationship("Spot", back_populates="sessions", lazy="raise")

    def __repr__(self):
        return f"<ParkingSession(id={self.id}, status={self.status}, spot_id={self.spot_id})>"

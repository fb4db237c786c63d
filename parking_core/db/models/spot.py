"""Spot model."""

from datetime import datetime, timezone
from decimal import Decimal
from uuid import uuid4

from sqlalchemy import (
    CheckConstraint,
    Column,
    DateTime,
    ForeignKey,
    Integer,
    Numeric,
    String,
    UniqueConstraint,
    Uuid,
)
from sqlalchemy.orm import relationship

from parking_core.core.enums import SpotStatus, SpotType, sql_in_check
from parking_core.db.base import Base


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


class Spot(Base):
    """Physical parking location within a garage."""

    __tablename__ = "spots"

    id = Column(Uuid(as_uuid=True), primary_key=True, default=uuid4)
    garage = Column(String(64), nullable=False, default="MAIN")
    floor = Column(Integer, nullable=False, default=0)
    bay = Column(String(32), nullable=True)
    spot_number = Column(String(32), nullable=False)
    spot_type = Column(String(16), nullable=False, default=SpotType.STANDARD.value)
    status = Column(String(16), nullable=False, default=SpotStatus.AVAILABLE.value, index=True)
    current_vehicle_id = Column(
        Uuid(as_uuid=True),
        ForeignKey("vehicles.id", ondelete="SET NULL"),
        nullable=True,
    )
    hourly_rate = Column(Numeric(10, 2), nullable=False, default=Decimal("5.00"))
    created_at = Column(DateTime(timezone=True), default=_utcnow, nullable=False)
    updated_at = Column(DateTime(timezone=True), default=_utcnow, onupdate=_utcnow, nullable=False)

    # Constraints
    __table_args__ = (
        UniqueConstraint("garage", "spot_number", name="uq_spots_garage_number"),
        CheckConstraint(sql_in_check("spot_type", SpotType), name="check_spot_type"),
        CheckConstraint(sql_in_check("status", SpotStatus), name="check_spot_status"),
        # OCCUPIED always comes with an occupant and nothing else does
        CheckConstraint(
            "(status = 'OCCUPIED' AND current_vehicle_id IS NOT NULL) "
            "OR (status <> 'OCCUPIED' AND current_vehicle_id IS NULL)",
            name="check_spot_occupant",
        ),
        CheckConstraint("hourly_rate >= 0", name="check_spot_hourly_rate"),
    )

    # Relationships
    current_vehicle = relationship("Vehicle", foreign_keys=[current_vehicle_id], lazy="raise")
    sessions = relationship("ParkingSession", back_populates="spot", lazy="raise")

    def __repr__(self):
        return f"<Spot(id={self.id}, number={self.spot_number}, status={self.status})>"

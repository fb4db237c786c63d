"""Vehicle model."""

from uuid import uuid4

from sqlalchemy import CheckConstraint, Column, DateTime, Integer, String, Uuid
from sqlalchemy.orm import relationship

from parking_core.core.enums import VehicleStatus, VehicleType, sql_in_check
from parking_core.db.base import Base
from parking_core.db.models.spot import _utcnow


class Vehicle(Base):
    """Registered plate. Created on first park, looked up by plate afterwards."""

    __tablename__ = "vehicles"

    id = Column(Uuid(as_uuid=True), primary_key=True, default=uuid4)
    # Always stored normalized (trimmed, upper-case)
    license_plate = Column(String(20), nullable=False, unique=True)
    vehicle_type = Column(String(16), nullable=False, default=VehicleType.STANDARD.value)
    status = Column(String(16), nullable=False, default=VehicleStatus.ACTIVE.value)

    # Owner metadata
    owner_name = Column(String(255), nullable=True)
    owner_email = Column(String(255), nullable=True)
    owner_phone = Column(String(32), nullable=True)

    make = Column(String(64), nullable=True)
    model = Column(String(64), nullable=True)
    color = Column(String(32), nullable=True)
    year = Column(Integer, nullable=True)

    created_at = Column(DateTime(timezone=True), default=_utcnow, nullable=False)
    updated_at = Column(DateTime(timezone=True), default=_utcnow, onupdate=_utcnow, nullable=False)

    # Constraints
    __table_args__ = (
        CheckConstraint(sql_in_check("vehicle_type", VehicleType), name="check_vehicle_type"),
        CheckConstraint(sql_in_check("status", VehicleStatus), name="check_vehicle_status"),
    )

    # Relationships
    sessions = relationship("ParkingSession", back_populates="vehicle", lazy="raise")

    def __repr__(self):
        return f"<Vehicle(id={self.id}, plate={self.license_plate})>"

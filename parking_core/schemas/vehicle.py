"""Vehicle schemas."""

from datetime import datetime
from typing import Optional
from uuid import UUID

from pydantic import BaseModel, Field

from parking_core.core.enums import VehicleStatus, VehicleType


class VehicleParkingData(BaseModel):
    """Vehicle as presented at the gate. Unknown plates are registered from it."""

    license_plate: str = Field(..., min_length=1, max_length=32)
    vehicle_type: VehicleType = VehicleType.STANDARD
    owner_name: Optional[str] = Field(None, max_length=255)
    owner_email: Optional[str] = Field(None, max_length=255)
    owner_phone: Optional[str] = Field(None, max_length=32)
    make: Optional[str] = Field(None, max_length=64)
    model: Optional[str] = Field(None, max_length=64)
    color: Optional[str] = Field(None, max_length=32)
    year: Optional[int] = Field(None, ge=1886, le=2100)


class VehicleResponse(BaseModel):
    """Schema for vehicle response."""

    id: UUID
    license_plate: str
    vehicle_type: VehicleType
    status: VehicleStatus
    owner_name: Optional[str] = None
    make: Optional[str] = None
    model: Optional[str] = None
    color: Optional[str] = None
    created_at: datetime

    model_config = {"from_attributes": True}

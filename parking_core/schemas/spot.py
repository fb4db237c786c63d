"""Spot schemas."""

from datetime import datetime
from decimal import Decimal
from typing import List, Optional
from uuid import UUID

from pydantic import BaseModel, Field

from parking_core.core.enums import SpotStatus, SpotType


class SpotCreate(BaseModel):
    """Schema for provisioning a spot."""

    garage: str = Field("MAIN", min_length=1, max_length=64)
    floor: int = 0
    bay: Optional[str] = Field(None, max_length=32)
    spot_number: str = Field(..., min_length=1, max_length=32)
    spot_type: SpotType = SpotType.STANDARD
    status: SpotStatus = SpotStatus.AVAILABLE
    hourly_rate: Optional[Decimal] = Field(None, ge=0, max_digits=10, decimal_places=2)


class SpotResponse(BaseModel):
    """Schema for spot response."""

    id: UUID
    garage: str
    floor: int
    bay: Optional[str] = None
    spot_number: str
    spot_type: SpotType
    status: SpotStatus
    current_vehicle_id: Optional[UUID] = None
    hourly_rate: Decimal
    created_at: datetime
    updated_at: datetime

    model_config = {"from_attributes": True}


class BulkStatusRequest(BaseModel):
    """Schema for changing the status of many spots at once."""

    spot_ids: List[UUID] = Field(..., min_length=1)
    status: SpotStatus
    reason: Optional[str] = Field(None, max_length=255)
    atomic: bool = True


class BulkStatusResult(BaseModel):
    updated_count: int
    spots: List[SpotResponse] = []
    skipped_ids: List[UUID] = []
    failed_ids: List[UUID] = []

    model_config = {"from_attributes": True}

"""Parking session schemas."""

from datetime import datetime
from decimal import Decimal
from typing import Any, Dict, Optional
from uuid import UUID

from pydantic import BaseModel

from parking_core.core.enums import RateType, SessionStatus


class SessionResponse(BaseModel):
    """Schema for parking session response."""

    id: UUID
    vehicle_id: UUID
    spot_id: UUID
    status: SessionStatus
    entry_time: datetime
    exit_time: Optional[datetime] = None
    duration_seconds: Optional[int] = None
    rate_type: RateType
    hourly_rate: Optional[Decimal] = None
    total_fee: Optional[Decimal] = None
    is_paid: bool
    details: Optional[Dict[str, Any]] = None

    model_config = {"from_attributes": True}

"""Request and result schemas for the parking operations."""

from datetime import datetime
from decimal import Decimal
from typing import Any, Dict, Generic, Optional, TypeVar
from uuid import UUID

from pydantic import BaseModel, Field

from parking_core.core.enums import TransactionPriority
from parking_core.schemas.parking_session import SessionResponse
from parking_core.schemas.spot import SpotResponse
from parking_core.schemas.vehicle import VehicleParkingData, VehicleResponse

T = TypeVar("T")


class ParkRequest(BaseModel):
    """Schema for parking a vehicle."""

    vehicle: VehicleParkingData
    spot_id: UUID
    entry_time: Optional[datetime] = None
    metadata: Optional[Dict[str, Any]] = None
    priority: Optional[TransactionPriority] = None


class ExitRequest(BaseModel):
    """Schema for checking a vehicle out."""

    license_plate: str = Field(..., min_length=1, max_length=32)
    exit_time: Optional[datetime] = None
    priority: Optional[TransactionPriority] = None


class TransferRequest(BaseModel):
    """Schema for moving a parked vehicle to another spot."""

    from_spot_id: UUID
    to_spot_id: UUID
    reason: Optional[str] = Field(None, max_length=255)
    metadata: Optional[Dict[str, Any]] = None
    priority: Optional[TransactionPriority] = None


class PaymentSummary(BaseModel):
    amount: Decimal
    hours: int
    duration_seconds: int


class ParkResult(BaseModel):
    session: SessionResponse
    spot: SpotResponse
    vehicle: VehicleResponse


class ExitResult(BaseModel):
    session: SessionResponse
    spot: SpotResponse
    payment: PaymentSummary


class TransferResult(BaseModel):
    session: SessionResponse
    from_spot: SpotResponse
    to_spot: SpotResponse


class OperationEnvelope(BaseModel, Generic[T]):
    """Uniform outcome of a parking operation."""

    success: bool
    data: Optional[T] = None
    error: Optional[str] = None
    error_code: Optional[str] = None
    details: Dict[str, Any] = {}
    transaction_id: Optional[str] = None
    duration_ms: float = 0.0

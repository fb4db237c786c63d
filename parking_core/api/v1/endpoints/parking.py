"""Parking operation endpoints."""

from typing import Optional

from fastapi import APIRouter, Depends, Response

from parking_core.api.deps import get_parking_service
from parking_core.api.responses import build_envelope
from parking_core.core.enums import TransactionPriority
from parking_core.schemas.parking import (
    ExitRequest,
    ExitResult,
    OperationEnvelope,
    ParkRequest,
    ParkResult,
    TransferRequest,
    TransferResult,
)
from parking_core.services.parking_service import ParkingService
from parking_core.transactions.context import TransactionOptions

router = APIRouter()


def _options(priority: Optional[TransactionPriority]) -> Optional[TransactionOptions]:
    if priority is None:
        return None
    return TransactionOptions(priority=priority)


@router.post("/park", response_model=OperationEnvelope[ParkResult])
async def park_vehicle(
    request: ParkRequest,
    response: Response,
    service: ParkingService = Depends(get_parking_service),
):
    """Park a vehicle in a spot."""
    result = await service.park(
        request.vehicle,
        request.spot_id,
        entry_time=request.entry_time,
        metadata=request.metadata,
        options=_options(request.priority),
    )
    return build_envelope(result, ParkResult, response)


@router.post("/exit", response_model=OperationEnvelope[ExitResult])
async def exit_vehicle(
    request: ExitRequest,
    response: Response,
    service: ParkingService = Depends(get_parking_service),
):
    """Check a vehicle out and return the amount owed."""
    result = await service.exit_vehicle(
        request.license_plate,
        exit_time=request.exit_time,
        options=_options(request.priority),
    )
    return build_envelope(result, ExitResult, response)


@router.post("/transfer", response_model=OperationEnvelope[TransferResult])
async def transfer_vehicle(
    request: TransferRequest,
    response: Response,
    service: ParkingService = Depends(get_parking_service),
):
    """Move a parked vehicle to another spot."""
    result = await service.transfer_vehicle(
        request.from_spot_id,
        request.to_spot_id,
        reason=request.reason,
        metadata=request.metadata,
        options=_options(request.priority),
    )
    return build_envelope(result, TransferResult, response)

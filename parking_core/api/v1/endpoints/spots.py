"""Spot endpoints."""

from typing import List, Optional
from uuid import UUID

from fastapi import APIRouter, Depends, HTTPException, Query, Response, status
from sqlalchemy.exc import IntegrityError
from sqlalchemy.ext.asyncio import AsyncSession

from parking_core.api.deps import get_db_session, get_parking_service
from parking_core.api.responses import build_envelope
from parking_core.config import settings
from parking_core.core.enums import SpotStatus
from parking_core.repositories.spot import SpotRepository
from parking_core.schemas.parking import OperationEnvelope
from parking_core.schemas.spot import BulkStatusRequest, BulkStatusResult, SpotCreate, SpotResponse
from parking_core.services.parking_service import ParkingService

router = APIRouter()

spot_repository = SpotRepository()


@router.post("/", response_model=SpotResponse, status_code=status.HTTP_201_CREATED)
async def create_spot(
    spot_data: SpotCreate,
    db: AsyncSession = Depends(get_db_session),
):
    """Provision a new spot."""
    data = spot_data.model_dump()
    if data["hourly_rate"] is None:
        data["hourly_rate"] = settings.DEFAULT_HOURLY_RATE

    if data["status"] == SpotStatus.OCCUPIED:
        raise HTTPException(
            status_code=status.HTTP_400_BAD_REQUEST,
            detail="A spot cannot be created occupied",
        )

    try:
        spot = await spot_repository.create(data, db)
        await db.commit()
    except IntegrityError:
        await db.rollback()
        raise HTTPException(
            status_code=status.HTTP_409_CONFLICT,
            detail=f"Spot {spot_data.spot_number} already exists in garage {spot_data.garage}",
        )

    return spot


@router.get("/", response_model=List[SpotResponse])
async def list_spots(
    spot_status: Optional[SpotStatus] = Query(None, alias="status", description="Filter by status"),
    garage: Optional[str] = Query(None, description="Filter by garage"),
    skip: int = 0,
    limit: int = 100,
    db: AsyncSession = Depends(get_db_session),
):
    """List spots, optionally filtered by status and garage."""
    return await spot_repository.list(db, status=spot_status, garage=garage, skip=skip, limit=limit)


@router.get("/{spot_id}", response_model=SpotResponse)
async def get_spot(
    spot_id: UUID,
    db: AsyncSession = Depends(get_db_session),
):
    """Get a specific spot by ID."""
    spot = await spot_repository.find_by_id(spot_id, db)

    if not spot:
        raise HTTPException(
            status_code=status.HTTP_404_NOT_FOUND,
            detail=f"Spot with id {spot_id} not found",
        )

    return spot


@router.patch("/status", response_model=OperationEnvelope[BulkStatusResult])
async def bulk_update_status(
    request: BulkStatusRequest,
    response: Response,
    service: ParkingService = Depends(get_parking_service),
):
    """Change the status of many spots at once."""
    result = await service.bulk_update_spot_status(
        request.spot_ids,
        request.status,
        reason=request.reason,
        atomic=request.atomic,
    )
    return build_envelope(result, BulkStatusResult, response)

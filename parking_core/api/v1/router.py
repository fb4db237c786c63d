"""API v1 router."""

from fastapi import APIRouter

from parking_core.api.v1.endpoints import parking, spots, stats

api_router = APIRouter()

api_router.include_router(parking.router, prefix="/parking", tags=["parking"])
api_router.include_router(spots.router, prefix="/spots", tags=["spots"])
api_router.include_router(stats.router, prefix="/stats", tags=["stats"])

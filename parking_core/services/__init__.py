"""Application services."""

from parking_core.services.parking_service import ParkingOperationResult, ParkingService

__all__ = ["ParkingOperationResult", "ParkingService"]

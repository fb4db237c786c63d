"""Database models package."""

from parking_core.db.base import Base
from parking_core.db.models.parking_session import ParkingSession
from parking_core.db.models.spot import Spot
from parking_core.db.models.vehicle import Vehicle

__all__ = [
    "Base",
    "Spot",
    "Vehicle",
    "ParkingSession",
]

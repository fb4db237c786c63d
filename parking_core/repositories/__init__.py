"""Entity repositories."""

from parking_core.repositories.base import (
    SessionRepositoryPort,
    SpotRepositoryPort,
    VehicleRepositoryPort,
)
from parking_core.repositories.parking_session import SessionRepository
from parking_core.repositories.spot import SpotRepository
from parking_core.repositories.vehicle import VehicleRepository

__all__ = [
    "SpotRepositoryPort",
    "VehicleRepositoryPort",
    "SessionRepositoryPort",
    "SpotRepository",
    "VehicleRepository",
    "SessionRepository",
]

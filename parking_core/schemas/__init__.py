"""Schemas package."""

from parking_core.schemas.parking import (
    ExitRequest,
    ExitResult,
    OperationEnvelope,
    ParkRequest,
    ParkResult,
    PaymentSummary,
    TransferRequest,
    TransferResult,
)
from parking_core.schemas.parking_session import SessionResponse
from parking_core.schemas.spot import BulkStatusRequest, BulkStatusResult, SpotCreate, SpotResponse
from parking_core.schemas.stats import TransactionStatisticsResponse
from parking_core.schemas.vehicle import VehicleParkingData, VehicleResponse

__all__ = [
    "BulkStatusRequest",
    "BulkStatusResult",
    "ExitRequest",
    "ExitResult",
    "OperationEnvelope",
    "ParkRequest",
    "ParkResult",
    "PaymentSummary",
    "SessionResponse",
    "SpotCreate",
    "SpotResponse",
    "TransactionStatisticsResponse",
    "TransferRequest",
    "TransferResult",
    "VehicleParkingData",
    "VehicleResponse",
]

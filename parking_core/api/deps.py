"""FastAPI dependencies."""

from fastapi import Request

from parking_core.db.session import get_db as get_db_session
from parking_core.services.parking_service import ParkingService
from parking_core.transactions.manager import TransactionManager

__all__ = ["get_db_session", "get_parking_service", "get_transaction_manager"]


def get_parking_service(request: Request) -> ParkingService:
    return request.app.state.parking_service


def get_transaction_manager(request: Request) -> TransactionManager:
    return request.app.state.transaction_manager

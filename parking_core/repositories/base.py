"""Repository interfaces and the shared SQLAlchemy plumbing.

Every repository method takes an optional ``db`` handle. When the caller is
inside a unit of work it passes its session and the statement joins that
transaction. Without a handle the repository opens a short transaction of its
own from the session factory it was built with.

Repositories never check cross-entity invariants; that is the parking
service's job.
"""

import enum
from abc import ABC, abstractmethod
from contextlib import asynccontextmanager
from typing import Any, AsyncIterator, Dict, Iterable, List, Optional
from uuid import UUID

from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from parking_core.core.enums import SessionStatus, SpotStatus
from parking_core.db.models import ParkingSession, Spot, Vehicle


class SpotRepositoryPort(ABC):
    @abstractmethod
    async def find_by_id(
        self, spot_id: UUID, db: Optional[AsyncSession] = None, *, for_update: bool = False
    ) -> Optional[Spot]: ...

    @abstractmethod
    async def find_many(
        self, spot_ids: Iterable[UUID], db: Optional[AsyncSession] = None, *, for_update: bool = False
    ) -> List[Spot]: ...

    @abstractmethod
    async def list(
        self,
        db: Optional[AsyncSession] = None,
        *,
        status: Optional[SpotStatus] = None,
        garage: Optional[str] = None,
        skip: int = 0,
        limit: int = 100,
    ) -> List[Spot]: ...

    @abstractmethod
    async def create(self, data: Dict[str, Any], db: Optional[AsyncSession] = None) -> Spot: ...

    @abstractmethod
    async def update(
        self, spot_id: UUID, changes: Dict[str, Any], db: Optional[AsyncSession] = None
    ) -> Spot: ...


class VehicleRepositoryPort(ABC):
    @abstractmethod
    async def find_by_id(self, vehicle_id: UUID, db: Optional[AsyncSession] = None) -> Optional[Vehicle]: ...

    @abstractmethod
    async def find_by_license_plate(
        self, license_plate: str, db: Optional[AsyncSession] = None
    ) -> Optional[Vehicle]: ...

    @abstractmethod
    async def create(self, data: Dict[str, Any], db: Optional[AsyncSession] = None) -> Vehicle: ...

    @abstractmethod
    async def update(
        self, vehicle_id: UUID, changes: Dict[str, Any], db: Optional[AsyncSession] = None
    ) -> Vehicle: ...

    @abstractmethod
    async def delete(self, vehicle_id: UUID, db: Optional[AsyncSession] = None) -> None: ...


class SessionRepositoryPort(ABC):
    @abstractmethod
    async def find_by_id(
        self, session_id: UUID, db: Optional[AsyncSession] = None
    ) -> Optional[ParkingSession]: ...

    @abstractmethod
    async def find_active_by_vehicle(
        self, vehicle_id: UUID, db: Optional[AsyncSession] = None, *, for_update: bool = False
    ) -> Optional[ParkingSession]: ...

    @abstractmethod
    async def find_by_spot_and_status(
        self,
        spot_id: UUID,
        status: SessionStatus,
        db: Optional[AsyncSession] = None,
        *,
        for_update: bool = False,
    ) -> Optional[ParkingSession]: ...

    @abstractmethod
    async def list_by_vehicle(
        self, vehicle_id: UUID, db: Optional[AsyncSession] = None, *, limit: int = 100
    ) -> List[ParkingSession]: ...

    @abstractmethod
    async def create(self, data: Dict[str, Any], db: Optional[AsyncSession] = None) -> ParkingSession: ...

    @abstractmethod
    async def update(
        self, session_id: UUID, changes: Dict[str, Any], db: Optional[AsyncSession] = None
    ) -> ParkingSession: ...

    @abstractmethod
    async def delete(self, session_id: UUID, db: Optional[AsyncSession] = None) -> None: ...


def column_values(data: Dict[str, Any]) -> Dict[str, Any]:
    """Unwrap enum members so string columns receive plain values."""
    return {
        key: value.value if isinstance(value, enum.Enum) else value
        for key, value in data.items()
    }


class SqlAlchemyRepository:
    """Session handling shared by the SQLAlchemy repositories."""

    def __init__(self, session_factory: Optional[async_sessionmaker] = None):
        self._session_factory = session_factory

    @asynccontextmanager
    async def _session(self, db: Optional[AsyncSession]) -> AsyncIterator[AsyncSession]:
        if db is not None:
            yield db
            return

        if self._session_factory is None:
            raise RuntimeError(
                f"{type(self).__name__} needs a session: pass db= or build it with a session factory"
            )

        async with self._session_factory() as session:
            async with session.begin():
                yield session

    @staticmethod
    def _apply(instance, changes: Dict[str, Any]) -> None:
        for field, value in column_values(changes).items():
            if not hasattr(type(instance), field):
                raise AttributeError(f"{type(instance).__name__} has no column {field!r}")
            setattr(instance, field, value)

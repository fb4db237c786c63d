"""Vehicle repository."""

from typing import Any, Dict, Optional
from uuid import UUID

from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession

from parking_core.core.errors import NotFoundError
from parking_core.db.models import Vehicle
from parking_core.repositories.base import SqlAlchemyRepository, VehicleRepositoryPort, column_values


class VehicleRepository(SqlAlchemyRepository, VehicleRepositoryPort):
    """SQLAlchemy-backed vehicle access. Plates are expected already normalized."""

    async def find_by_id(self, vehicle_id: UUID, db: Optional[AsyncSession] = None) -> Optional[Vehicle]:
        async with self._session(db) as session:
            return await session.get(Vehicle, vehicle_id)

    async def find_by_license_plate(
        self, license_plate: str, db: Optional[AsyncSession] = None
    ) -> Optional[Vehicle]:
        async with self._session(db) as session:
            result = await session.execute(
                select(Vehicle).where(Vehicle.license_plate == license_plate)
            )
            return result.scalar_one_or_none()

    async def create(self, data: Dict[str, Any], db: Optional[AsyncSession] = None) -> Vehicle:
        async with self._session(db) as session:
            vehicle = Vehicle(**column_values(data))
            session.add(vehicle)
            await session.flush()
            return vehicle

    async def update(
        self, vehicle_id: UUID, changes: Dict[str, Any], db: Optional[AsyncSession] = None
    ) -> Vehicle:
        async with self._session(db) as session:
            vehicle = await session.get(Vehicle, vehicle_id)
            if vehicle is None:
                raise NotFoundError(
                    f"Vehicle {vehicle_id} not found", details={"vehicle_id": str(vehicle_id)}
                )

            self._apply(vehicle, changes)
            await session.flush()
            return vehicle

    async def delete(self, vehicle_id: UUID, db: Optional[AsyncSession] = None) -> None:
        async with self._session(db) as session:
            vehicle = await session.get(Vehicle, vehicle_id)
            if vehicle is None:
                raise NotFoundError(
                    f"Vehicle {vehicle_id} not found", details={"vehicle_id": str(vehicle_id)}
                )

            await session.delete(vehicle)
            await session.flush()

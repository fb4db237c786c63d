"""Spot repository."""

from typing import Any, Dict, Iterable, List, Optional
from uuid import UUID

from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession

from parking_core.core.enums import SpotStatus
from parking_core.core.errors import NotFoundError
from parking_core.db.models import Spot
from parking_core.repositories.base import SpotRepositoryPort, SqlAlchemyRepository, column_values


class SpotRepository(SqlAlchemyRepository, SpotRepositoryPort):
    """SQLAlchemy-backed spot access."""

    async def find_by_id(
        self, spot_id: UUID, db: Optional[AsyncSession] = None, *, for_update: bool = False
    ) -> Optional[Spot]:
        async with self._session(db) as session:
            if for_update:
                # Re-read under a row lock so the status check is not stale
                return await session.get(Spot, spot_id, with_for_update=True, populate_existing=True)
            return await session.get(Spot, spot_id)

    async def find_many(
        self, spot_ids: Iterable[UUID], db: Optional[AsyncSession] = None, *, for_update: bool = False
    ) -> List[Spot]:
        ids = list(spot_ids)
        if not ids:
            return []

        async with self._session(db) as session:
            query = select(Spot).where(Spot.id.in_(ids)).order_by(Spot.id)
            if for_update:
                query = query.with_for_update().execution_options(populate_existing=True)
            result = await session.execute(query)
            return list(result.scalars().all())

    async def list(
        self,
        db: Optional[AsyncSession] = None,
        *,
        status: Optional[SpotStatus] = None,
        garage: Optional[str] = None,
        skip: int = 0,
        limit: int = 100,
    ) -> List[Spot]:
        async with self._session(db) as session:
            query = (
                select(Spot)
                .order_by(Spot.garage, Spot.floor, Spot.spot_number)
                .offset(skip)
                .limit(limit)
            )
            if status:
                query = query.where(Spot.status == SpotStatus(status).value)
            if garage:
                query = query.where(Spot.garage == garage)

            result = await session.execute(query)
            return list(result.scalars().all())

    async def create(self, data: Dict[str, Any], db: Optional[AsyncSession] = None) -> Spot:
        async with self._session(db) as session:
            spot = Spot(**column_values(data))
            session.add(spot)
            await session.flush()
            return spot

    async def update(
        self, spot_id: UUID, changes: Dict[str, Any], db: Optional[AsyncSession] = None
    ) -> Spot:
        async with self._session(db) as session:
            spot = await session.get(Spot, spot_id)
            if spot is None:
                raise NotFoundError(f"Spot {spot_id} not found", details={"spot_id": str(spot_id)})

            self._apply(spot, changes)
            await session.flush()
            return spot

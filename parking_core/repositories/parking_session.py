"""Parking session repository."""

from typing import Any, Dict, List, Optional
from uuid import UUID

from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession

from parking_core.core.enums import SessionStatus
from parking_core.core.errors import NotFoundError
from parking_core.db.models import ParkingSession
from parking_core.repositories.base import SessionRepositoryPort, SqlAlchemyRepository, column_values


class SessionRepository(SqlAlchemyRepository, SessionRepositoryPort):
    """SQLAlchemy-backed parking session access."""

    async def find_by_id(
        self, session_id: UUID, db: Optional[AsyncSession] = None
    ) -> Optional[ParkingSession]:
        async with self._session(db) as session:
            return await session.get(ParkingSession, session_id)

    async def find_active_by_vehicle(
        self, vehicle_id: UUID, db: Optional[AsyncSession] = None, *, for_update: bool = False
    ) -> Optional[ParkingSession]:
        query = select(ParkingSession).where(
            ParkingSession.vehicle_id == vehicle_id,
            ParkingSession.status == SessionStatus.ACTIVE.value,
        )
        return await self._one_or_none(query, db, for_update)

    async def find_by_spot_and_status(
        self,
        spot_id: UUID,
        status: SessionStatus,
        db: Optional[AsyncSession] = None,
        *,
        for_update: bool = False,
    ) -> Optional[ParkingSession]:
        query = (
            select(ParkingSession)
            .where(
                ParkingSession.spot_id == spot_id,
                ParkingSession.status == SessionStatus(status).value,
            )
            .order_by(ParkingSession.entry_time.desc())
            .limit(1)
        )
        return await self._one_or_none(query, db, for_update)

    async def list_by_vehicle(
        self, vehicle_id: UUID, db: Optional[AsyncSession] = None, *, limit: int = 100
    ) -> List[ParkingSession]:
        async with self._session(db) as session:
            result = await session.execute(
                select(ParkingSession)
                .where(ParkingSession.vehicle_id == vehicle_id)
                .order_by(ParkingSession.entry_time.desc())
                .limit(limit)
            )
            return list(result.scalars().all())

    async def create(self, data: Dict[str, Any], db: Optional[AsyncSession] = None) -> ParkingSession:
        async with self._session(db) as session:
            parking_session = ParkingSession(**column_values(data))
            session.add(parking_session)
            await session.flush()
            return parking_session

    async def update(
        self, session_id: UUID, changes: Dict[str, Any], db: Optional[AsyncSession] = None
    ) -> ParkingSession:
        async with self._session(db) as session:
            parking_session = await session.get(ParkingSession, session_id)
            if parking_session is None:
                raise NotFoundError(
                    f"Parking session {session_id} not found",
                    details={"session_id": str(session_id)},
                )

            self._apply(parking_session, changes)
            await session.flush()
            return parking_session

    async def delete(self, session_id: UUID, db: Optional[AsyncSession] = None) -> None:
        async with self._session(db) as session:
            parking_session = await session.get(ParkingSession, session_id)
            if parking_session is None:
                raise NotFoundError(
                    f"Parking session {session_id} not found",
                    details={"session_id": str(session_id)},
                )

            await session.delete(parking_session)
            await session.flush()

    async def _one_or_none(self, query, db: Optional[AsyncSession], for_update: bool):
        if for_update:
            query = query.with_for_update().execution_options(populate_existing=True)

        async with self._session(db) as session:
            result = await session.execute(query)
            return result.scalar_one_or_none()

"""Pytest configuration and fixtures."""

import itertools
from decimal import Decimal
from typing import AsyncGenerator

import pytest
from httpx import ASGITransport, AsyncClient
from sqlalchemy.ext.asyncio import AsyncEngine, AsyncSession, async_sessionmaker

from parking_core.core.enums import SpotStatus, SpotType
from parking_core.db.session import build_engine, build_session_factory, create_schema, drop_schema
from parking_core.repositories import SessionRepository, SpotRepository, VehicleRepository
from parking_core.services.parking_service import ParkingService
from parking_core.transactions.manager import TransactionManager

_spot_numbers = itertools.count(1)


@pytest.fixture
async def engine(tmp_path) -> AsyncGenerator[AsyncEngine, None]:
    """File-backed SQLite database, fresh for each test."""
    test_engine = build_engine(f"sqlite+aiosqlite:///{tmp_path / 'parking.db'}")
    await create_schema(test_engine)
    yield test_engine
    await drop_schema(test_engine)
    await test_engine.dispose()


@pytest.fixture
def session_factory(engine: AsyncEngine) -> async_sessionmaker:
    return build_session_factory(engine)


@pytest.fixture
async def db_session(session_factory: async_sessionmaker) -> AsyncGenerator[AsyncSession, None]:
    """Create a database session for direct inserts."""
    async with session_factory() as session:
        yield session
        await session.rollback()


@pytest.fixture
def spot_repository(session_factory) -> SpotRepository:
    return SpotRepository(session_factory)


@pytest.fixture
def vehicle_repository(session_factory) -> VehicleRepository:
    return VehicleRepository(session_factory)


@pytest.fixture
def session_repository(session_factory) -> SessionRepository:
    return SessionRepository(session_factory)


@pytest.fixture
def transaction_manager(session_factory) -> TransactionManager:
    return TransactionManager(session_factory, default_timeout=5.0)


@pytest.fixture
def service_factory(session_factory, spot_repository, vehicle_repository, session_repository):
    """Build a parking service, overriding any collaborator or setting."""

    def _build(**overrides) -> ParkingService:
        manager = overrides.pop("transaction_manager", None) or TransactionManager(
            session_factory,
            default_timeout=5.0,
            savepoint_mode=overrides.pop("savepoint_mode", "native"),
        )
        return ParkingService(
            manager,
            overrides.pop("spot_repository", spot_repository),
            overrides.pop("vehicle_repository", vehicle_repository),
            overrides.pop("session_repository", session_repository),
            retry_delay=overrides.pop("retry_delay", 0.001),
            **overrides,
        )

    return _build


@pytest.fixture
def parking_service(service_factory) -> ParkingService:
    return service_factory()


@pytest.fixture
def make_spot(spot_repository):
    """Create a committed spot."""

    async def _make(**overrides):
        data = {
            "garage": "MAIN",
            "floor": 1,
            "spot_number": f"A-{next(_spot_numbers)}",
            "spot_type": SpotType.STANDARD,
            "status": SpotStatus.AVAILABLE,
            "hourly_rate": Decimal("5.00"),
        }
        data.update(overrides)
        return await spot_repository.create(data)

    return _make


@pytest.fixture
async def async_client(session_factory) -> AsyncGenerator[AsyncClient, None]:
    """Create async test client bound to the test database."""
    from parking_core.main import create_app

    app = create_app(session_factory=session_factory)
    async with AsyncClient(transport=ASGITransport(app=app), base_url="http://test") as ac:
        yield ac

"""Tests for concurrent parking requests."""

import asyncio
import time

import pytest
from sqlalchemy import func, select, text

from parking_core.db.models import ParkingSession
from parking_core.db.session import build_engine, build_session_factory
from parking_core.repositories import SessionRepository, SpotRepository, VehicleRepository
from parking_core.schemas.vehicle import VehicleParkingData
from parking_core.services.parking_service import ParkingService
from parking_core.transactions.manager import TransactionManager


@pytest.mark.asyncio
async def test_concurrent_parks_on_one_spot(parking_service, make_spot, spot_repository, session_factory):
    """Test exactly one of many simultaneous parks on a spot wins."""
    spot = await make_spot()

    results = await asyncio.gather(
        *[
            parking_service.park(VehicleParkingData(license_plate=f"RACE {i}"), spot.id)
            for i in range(8)
        ]
    )

    winners = [result for result in results if result.success]
    losers = [result for result in results if not result.success]
    assert len(winners) == 1
    assert {result.error_code for result in losers} <= {"INVALID_STATE", "CONFLICT"}

    stored = await spot_repository.find_by_id(spot.id)
    assert stored.status == "OCCUPIED"
    assert stored.current_vehicle_id == winners[0].data["vehicle"].id

    async with session_factory() as db:
        active = await db.scalar(
            select(func.count())
            .select_from(ParkingSession)
            .where(ParkingSession.spot_id == spot.id, ParkingSession.status == "ACTIVE")
        )
    assert active == 1


@pytest.mark.asyncio
async def test_concurrent_parks_of_one_vehicle(parking_service, make_spot, session_factory):
    """Test one vehicle racing for several spots ends up in exactly one."""
    spots = [await make_spot() for _ in range(5)]

    results = await asyncio.gather(
        *[
            parking_service.park(VehicleParkingData(license_plate="SAME 1"), spot.id)
            for spot in spots
        ]
    )

    assert sum(result.success for result in results) == 1

    async with session_factory() as db:
        active = await db.scalar(
            select(func.count()).select_from(ParkingSession).where(ParkingSession.status == "ACTIVE")
        )
    assert active == 1


@pytest.mark.asyncio
async def test_statistics_after_concurrent_load(parking_service, make_spot):
    spots = [await make_spot() for _ in range(4)]

    await asyncio.gather(
        *[
            parking_service.park(VehicleParkingData(license_plate=f"LOAD {i}"), spot.id)
            for i, spot in enumerate(spots)
        ]
    )

    stats = parking_service.get_service_statistics()
    assert stats["total_transactions"] == 4
    assert stats["succeeded"] == 4
    assert stats["active_transactions"] == 0


@pytest.mark.asyncio
async def test_timeout_is_not_held_up_by_a_locked_database(engine, make_spot):
    """Test a park blocked on another writer returns TIMEOUT within the busy timeout."""
    spot = await make_spot()
    locked_engine = build_engine(engine.url.render_as_string(hide_password=False), busy_timeout=0.5)
    factory = build_session_factory(locked_engine)
    service = ParkingService(
        TransactionManager(factory, default_timeout=5.0),
        SpotRepository(factory),
        VehicleRepository(factory),
        SessionRepository(factory),
        park_timeout=0.2,
        retry_delay=0.001,
    )

    async with factory() as holder:
        await holder.execute(text("UPDATE spots SET floor = floor"))
        started = time.monotonic()
        result = await service.park(VehicleParkingData(license_plate="WAIT 1"), spot.id)
        elapsed = time.monotonic() - started
        await holder.rollback()

    await locked_engine.dispose()
    assert result.error_code == "TIMEOUT"
    assert elapsed < 5.0

"""Tests for repositories and the physical constraints behind them."""

import uuid
from datetime import datetime, timezone

import pytest
from sqlalchemy.exc import IntegrityError

from parking_core.core.enums import SessionStatus, SpotStatus, SpotType
from parking_core.core.errors import NotFoundError
from parking_core.repositories import SpotRepository

ENTRY = datetime(2026, 1, 1, 10, 0, tzinfo=timezone.utc)


@pytest.mark.asyncio
async def test_create_and_find_spot(make_spot, spot_repository):
    """Test creating a spot and reading it back."""
    spot = await make_spot(spot_type=SpotType.ELECTRIC, bay="North")

    found = await spot_repository.find_by_id(spot.id)
    assert found is not None
    assert found.spot_type == "ELECTRIC"
    assert found.status == "AVAILABLE"
    assert found.bay == "North"
    assert found.current_vehicle_id is None


@pytest.mark.asyncio
async def test_list_spots_filters(make_spot, spot_repository):
    """Test listing spots by status and garage."""
    await make_spot(garage="EAST")
    await make_spot(garage="EAST", status=SpotStatus.MAINTENANCE)
    await make_spot(garage="WEST")

    east = await spot_repository.list(garage="EAST")
    assert len(east) == 2

    maintenance = await spot_repository.list(status=SpotStatus.MAINTENANCE)
    assert [spot.garage for spot in maintenance] == ["EAST"]


@pytest.mark.asyncio
async def test_find_many_ignores_unknown_ids(make_spot, spot_repository):
    first = await make_spot()
    second = await make_spot()

    found = await spot_repository.find_many([first.id, uuid.uuid4(), second.id])
    assert {spot.id for spot in found} == {first.id, second.id}


@pytest.mark.asyncio
async def test_update_missing_spot_raises(spot_repository):
    with pytest.raises(NotFoundError):
        await spot_repository.update(uuid.uuid4(), {"status": SpotStatus.MAINTENANCE})


@pytest.mark.asyncio
async def test_update_rejects_unknown_column(make_spot, spot_repository):
    spot = await make_spot()

    with pytest.raises(AttributeError):
        await spot_repository.update(spot.id, {"colour": "red"})


@pytest.mark.asyncio
async def test_repository_without_factory_needs_a_session():
    with pytest.raises(RuntimeError):
        await SpotRepository().find_by_id(uuid.uuid4())


@pytest.mark.asyncio
async def test_vehicle_lookup_by_plate(vehicle_repository):
    """Test vehicles are found by their stored plate."""
    vehicle = await vehicle_repository.create({"license_plate": "ABC 123"})

    found = await vehicle_repository.find_by_license_plate("ABC 123")
    assert found is not None
    assert found.id == vehicle.id
    assert found.vehicle_type == "STANDARD"
    assert found.status == "ACTIVE"

    assert await vehicle_repository.find_by_license_plate("ZZZ 999") is None


@pytest.mark.asyncio
async def test_duplicate_plate_is_rejected(vehicle_repository):
    await vehicle_repository.create({"license_plate": "DUP 1"})

    with pytest.raises(IntegrityError):
        await vehicle_repository.create({"license_plate": "DUP 1"})


@pytest.mark.asyncio
async def test_duplicate_spot_number_in_garage_is_rejected(make_spot):
    await make_spot(garage="MAIN", spot_number="X-1")
    await make_spot(garage="SIDE", spot_number="X-1")

    with pytest.raises(IntegrityError):
        await make_spot(garage="MAIN", spot_number="X-1")


@pytest.mark.asyncio
async def test_occupied_spot_requires_occupant(make_spot):
    """Test the row check pairing OCCUPIED with an occupant."""
    with pytest.raises(IntegrityError):
        await make_spot(status=SpotStatus.OCCUPIED)


@pytest.mark.asyncio
async def test_second_active_session_on_spot_is_rejected(
    make_spot, vehicle_repository, session_repository, session_factory
):
    """Test the partial unique index stops two ACTIVE sessions on one spot."""
    spot = await make_spot()
    first = await vehicle_repository.create({"license_plate": "ONE 1"})
    second = await vehicle_repository.create({"license_plate": "TWO 2"})

    async with session_factory() as db:
        await session_repository.create(
            {"vehicle_id": first.id, "spot_id": spot.id, "entry_time": ENTRY}, db
        )
        with pytest.raises(IntegrityError):
            await session_repository.create(
                {"vehicle_id": second.id, "spot_id": spot.id, "entry_time": ENTRY}, db
            )
        await db.rollback()


@pytest.mark.asyncio
async def test_second_active_session_for_vehicle_is_rejected(
    make_spot, vehicle_repository, session_repository
):
    first_spot = await make_spot()
    second_spot = await make_spot()
    vehicle = await vehicle_repository.create({"license_plate": "SOLO 1"})

    await session_repository.create(
        {"vehicle_id": vehicle.id, "spot_id": first_spot.id, "entry_time": ENTRY}
    )
    with pytest.raises(IntegrityError):
        await session_repository.create(
            {"vehicle_id": vehicle.id, "spot_id": second_spot.id, "entry_time": ENTRY}
        )


@pytest.mark.asyncio
async def test_completed_sessions_do_not_count(make_spot, vehicle_repository, session_repository):
    """Test only ACTIVE sessions take part in the uniqueness rule."""
    spot = await make_spot()
    vehicle = await vehicle_repository.create({"license_plate": "BACK 2"})

    await session_repository.create(
        {
            "vehicle_id": vehicle.id,
            "spot_id": spot.id,
            "status": SessionStatus.COMPLETED,
            "entry_time": ENTRY,
            "exit_time": ENTRY.replace(hour=11),
        }
    )
    active = await session_repository.create(
        {"vehicle_id": vehicle.id, "spot_id": spot.id, "entry_time": ENTRY.replace(hour=12)}
    )

    found = await session_repository.find_active_by_vehicle(vehicle.id)
    assert found.id == active.id

    latest = await session_repository.find_by_spot_and_status(spot.id, SessionStatus.COMPLETED)
    assert latest.status == "COMPLETED"

    history = await session_repository.list_by_vehicle(vehicle.id)
    assert [session.status for session in history] == ["ACTIVE", "COMPLETED"]


@pytest.mark.asyncio
async def test_session_exit_must_follow_entry(make_spot, vehicle_repository, session_repository):
    spot = await make_spot()
    vehicle = await vehicle_repository.create({"license_plate": "TIME 1"})

    with pytest.raises(IntegrityError):
        await session_repository.create(
            {
                "vehicle_id": vehicle.id,
                "spot_id": spot.id,
                "status": SessionStatus.COMPLETED,
                "entry_time": ENTRY,
                "exit_time": ENTRY,
            }
        )

"""Tests for the transaction manager."""

import asyncio

import pytest
from sqlalchemy.exc import OperationalError

from parking_core.core.enums import TransactionPriority, TransactionStatus
from parking_core.core.errors import (
    ConflictError,
    SavepointError,
    TransactionError,
    TransactionTimeoutError,
    ValidationError,
)
from parking_core.transactions import TransactionManager, TransactionOptions, extract_transaction_error


@pytest.fixture
def compensating_manager(session_factory) -> TransactionManager:
    return TransactionManager(session_factory, default_timeout=5.0, savepoint_mode="compensating")


@pytest.mark.asyncio
async def test_successful_work_is_committed(transaction_manager, vehicle_repository):
    """Test a successful callback commits and returns its value."""

    async def work(db, context):
        assert context.status == TransactionStatus.ACTIVE
        assert context.handle is db
        vehicle = await vehicle_repository.create({"license_plate": "COMMIT 1"}, db)
        return vehicle.id

    result = await transaction_manager.execute_transaction(work)

    assert result.success
    assert result.error is None
    assert result.transaction_id.startswith("tx_")
    assert result.context.status == TransactionStatus.COMMITTED
    assert result.duration_ms >= 0
    assert await vehicle_repository.find_by_id(result.result) is not None


@pytest.mark.asyncio
async def test_failed_work_is_rolled_back(transaction_manager, vehicle_repository):
    """Test a domain error aborts the whole transaction and is returned, not raised."""

    async def work(db, context):
        await vehicle_repository.create({"license_plate": "GONE 1"}, db)
        raise ValidationError("no thanks")

    result = await transaction_manager.execute_transaction(work)

    assert not result.success
    assert isinstance(result.error, ValidationError)
    assert result.error.code == "VALIDATION_ERROR"
    assert result.error.transaction_id == result.transaction_id
    assert result.context.status == TransactionStatus.FAILED
    assert await vehicle_repository.find_by_license_plate("GONE 1") is None


@pytest.mark.asyncio
async def test_unexpected_error_is_classified_as_aborted(transaction_manager):
    async def work(db, context):
        raise RuntimeError("disk on fire")

    result = await transaction_manager.execute_transaction(work)

    assert not result.success
    assert isinstance(result.error, TransactionError)
    assert result.error.code == "ABORTED"
    assert "disk on fire" in result.error.message
    assert not result.error.retryable


@pytest.mark.asyncio
async def test_integrity_error_is_classified_as_conflict(transaction_manager, vehicle_repository):
    await vehicle_repository.create({"license_plate": "TAKEN 1"})

    async def work(db, context):
        await vehicle_repository.create({"license_plate": "TAKEN 1"}, db)

    result = await transaction_manager.execute_transaction(work)

    assert isinstance(result.error, ConflictError)
    assert result.error.code == "CONFLICT"


def test_lock_errors_are_retryable():
    """Test transient store errors map to a retryable CONFLICT."""
    locked = OperationalError("UPDATE spots", {}, Exception("database is locked"))
    error = extract_transaction_error(locked, "tx_1")

    assert isinstance(error, TransactionError)
    assert error.code == "CONFLICT"
    assert error.retryable
    assert error.transaction_id == "tx_1"

    broken = OperationalError("SELECT 1", {}, Exception("no such table: spots"))
    assert extract_transaction_error(broken, "tx_2").code == "ABORTED"


@pytest.mark.asyncio
async def test_timeout_aborts_transaction(transaction_manager, vehicle_repository):
    """Test a callback exceeding its deadline is rolled back with TIMEOUT."""

    async def work(db, context):
        await vehicle_repository.create({"license_plate": "SLOW 1"}, db)
        await asyncio.sleep(1)

    result = await transaction_manager.execute_transaction(work, timeout=0.05)

    assert not result.success
    assert isinstance(result.error, TransactionTimeoutError)
    assert result.error.code == "TIMEOUT"
    assert result.context.status == TransactionStatus.TIMEOUT
    assert await vehicle_repository.find_by_license_plate("SLOW 1") is None

    stats = transaction_manager.get_transaction_statistics()
    assert stats.timed_out == 1
    assert stats.failed == 1


@pytest.mark.asyncio
async def test_invalid_options_raise_immediately(transaction_manager):
    async def work(db, context):
        return None

    with pytest.raises(ValueError):
        await transaction_manager.execute_transaction(work, timeout=0)

    with pytest.raises(TypeError):
        await transaction_manager.execute_transaction(work, deadline=3)


@pytest.mark.asyncio
async def test_options_are_carried_on_context(transaction_manager):
    seen = {}

    async def work(db, context):
        seen["priority"] = context.priority
        seen["timeout"] = context.timeout
        seen["metadata"] = context.metadata

    options = TransactionOptions(priority=TransactionPriority.HIGH, timeout=2.5, metadata={"op": "x"})
    await transaction_manager.execute_transaction(work, options)

    assert seen == {"priority": TransactionPriority.HIGH, "timeout": 2.5, "metadata": {"op": "x"}}


@pytest.mark.asyncio
async def test_native_savepoint_rollback_keeps_earlier_work(transaction_manager, vehicle_repository):
    """Test rolling back to a savepoint undoes only the work after it."""

    async def work(db, context):
        await vehicle_repository.create({"license_plate": "KEEP 1"}, db)
        savepoint = await transaction_manager.create_savepoint(context, "second")
        await vehicle_repository.create({"license_plate": "DROP 1"}, db)
        await transaction_manager.rollback_to_savepoint(context, savepoint)
        assert context.depth == 0

    result = await transaction_manager.execute_transaction(work)

    assert result.success
    assert await vehicle_repository.find_by_license_plate("KEEP 1") is not None
    assert await vehicle_repository.find_by_license_plate("DROP 1") is None


@pytest.mark.asyncio
async def test_compensating_savepoint_replays_in_reverse(compensating_manager, vehicle_repository):
    """Test compensations run newest first when a savepoint is rolled back."""
    calls = []

    async def work(db, context):
        await vehicle_repository.create({"license_plate": "KEEP 2"}, db)
        savepoint = await compensating_manager.create_savepoint(context, "second")
        assert savepoint.nested is None

        created = await vehicle_repository.create({"license_plate": "DROP 2"}, db)

        async def undo_create():
            calls.append("delete")
            await vehicle_repository.delete(created.id, db)

        async def undo_note():
            calls.append("note")

        compensating_manager.add_compensation(context, undo_create, "delete DROP 2")
        compensating_manager.add_compensation(context, undo_note, "note")
        await compensating_manager.rollback_to_savepoint(context, savepoint)

    result = await compensating_manager.execute_transaction(work)

    assert result.success
    assert calls == ["note", "delete"]
    assert await vehicle_repository.find_by_license_plate("KEEP 2") is not None
    assert await vehicle_repository.find_by_license_plate("DROP 2") is None


@pytest.mark.asyncio
async def test_failing_compensation_raises_savepoint_error(compensating_manager):
    async def work(db, context):
        savepoint = await compensating_manager.create_savepoint(context, "broken")

        async def explode():
            raise RuntimeError("cannot undo")

        compensating_manager.add_compensation(context, explode, "explode")
        await compensating_manager.rollback_to_savepoint(context, savepoint)

    result = await compensating_manager.execute_transaction(work)

    assert isinstance(result.error, SavepointError)
    assert result.error.details["failed_compensations"] == ["explode"]


@pytest.mark.asyncio
@pytest.mark.parametrize("mode", ["native", "compensating"])
async def test_savepoint_context_manager_rolls_back_on_error(session_factory, vehicle_repository, mode):
    manager = TransactionManager(session_factory, savepoint_mode=mode)

    async def work(db, context):
        await vehicle_repository.create({"license_plate": "OUTER 1"}, db)
        with pytest.raises(ValueError):
            async with manager.savepoint(context, "inner"):
                inner = await vehicle_repository.create({"license_plate": "INNER 1"}, db)
                manager.add_compensation(
                    context, lambda: vehicle_repository.delete(inner.id, db), "delete INNER 1"
                )
                raise ValueError("changed my mind")
        assert context.depth == 0

    result = await manager.execute_transaction(work)

    assert result.success
    assert await vehicle_repository.find_by_license_plate("OUTER 1") is not None
    assert await vehicle_repository.find_by_license_plate("INNER 1") is None


@pytest.mark.asyncio
async def test_release_closes_inner_savepoints(transaction_manager):
    async def work(db, context):
        outer = await transaction_manager.create_savepoint(context, "outer")
        inner = await transaction_manager.create_savepoint(context, "inner")
        assert inner.depth == 2
        assert context.depth == 2

        await transaction_manager.release_savepoint(context, outer)
        assert context.depth == 0

        with pytest.raises(SavepointError):
            await transaction_manager.rollback_to_savepoint(context, inner)

    result = await transaction_manager.execute_transaction(work)

    assert result.success
    assert result.context.savepoints_created == 2


@pytest.mark.asyncio
async def test_released_compensations_move_to_parent(compensating_manager):
    calls = []

    async def work(db, context):
        outer = await compensating_manager.create_savepoint(context, "outer")
        inner = await compensating_manager.create_savepoint(context, "inner")

        async def undo():
            calls.append("undo")

        compensating_manager.add_compensation(context, undo, "undo inner")
        await compensating_manager.release_savepoint(context, inner)
        await compensating_manager.rollback_to_savepoint(context, outer)

    result = await compensating_manager.execute_transaction(work)

    assert result.success
    assert calls == ["undo"]


@pytest.mark.asyncio
async def test_savepoint_depth_limit(session_factory):
    manager = TransactionManager(session_factory, max_savepoint_depth=2)

    async def work(db, context):
        await manager.create_savepoint(context, "one")
        await manager.create_savepoint(context, "two")
        await manager.create_savepoint(context, "three")

    result = await manager.execute_transaction(work)

    assert isinstance(result.error, SavepointError)
    assert result.error.details["reason"] == "DEPTH_EXCEEDED"


@pytest.mark.asyncio
async def test_statistics_track_outcomes(transaction_manager):
    """Test counters, success rate and per-priority totals."""

    async def ok(db, context):
        return True

    async def fail(db, context):
        raise ValidationError("nope")

    await transaction_manager.execute_transaction(ok, priority=TransactionPriority.HIGH)
    await transaction_manager.execute_transaction(ok)
    await transaction_manager.execute_transaction(fail)

    stats = transaction_manager.get_transaction_statistics()
    assert stats.total == 3
    assert stats.active == 0
    assert stats.succeeded == 2
    assert stats.failed == 1
    assert stats.timed_out == 0
    assert stats.success_rate == pytest.approx(66.67, abs=0.01)
    assert stats.by_priority == {"HIGH": 1, "NORMAL": 2}
    assert stats.average_duration_ms >= 0


@pytest.mark.asyncio
async def test_capacity_limit_rejects_new_work(session_factory):
    """Test the manager refuses work beyond its active transaction limit."""
    manager = TransactionManager(session_factory, max_active_transactions=1)
    release = asyncio.Event()
    started = asyncio.Event()

    async def hold(db, context):
        started.set()
        await release.wait()
        return "held"

    async def quick(db, context):
        return "quick"

    holder = asyncio.create_task(manager.execute_transaction(hold))
    await started.wait()

    assert len(manager.get_active_transactions()) == 1
    rejected = await manager.execute_transaction(quick)

    release.set()
    held = await holder

    assert held.success
    assert not rejected.success
    assert rejected.error.code == "CAPACITY_EXCEEDED"
    assert manager.get_transaction_statistics().failed == 1


@pytest.mark.asyncio
async def test_metrics_are_kept_and_cleared(transaction_manager):
    async def work(db, context):
        assert transaction_manager.get_transaction_metrics(context.id).status == TransactionStatus.PENDING
        return 1

    result = await transaction_manager.execute_transaction(work, metadata={"operation": "audit"})

    metrics = transaction_manager.get_transaction_metrics(result.transaction_id)
    assert metrics.status == TransactionStatus.COMMITTED
    assert metrics.metadata == {"operation": "audit"}
    assert metrics.duration_ms is not None

    assert transaction_manager.clear_old_metrics(older_than_hours=24) == 0
    assert transaction_manager.clear_old_metrics(older_than_hours=0) == 1
    assert transaction_manager.get_transaction_metrics(result.transaction_id) is None


@pytest.mark.asyncio
async def test_execute_multiple_operations(transaction_manager, vehicle_repository):
    async def first(db, context):
        return (await vehicle_repository.create({"license_plate": "MULTI 1"}, db)).license_plate

    async def second(db, context):
        return (await vehicle_repository.create({"license_plate": "MULTI 2"}, db)).license_plate

    result = await transaction_manager.execute_multiple_operations([first, second])

    assert result.success
    assert result.result == ["MULTI 1", "MULTI 2"]
    assert result.context.savepoints_created == 2


@pytest.mark.asyncio
async def test_execute_multiple_operations_is_all_or_nothing(transaction_manager, vehicle_repository):
    async def first(db, context):
        await vehicle_repository.create({"license_plate": "MULTI 3"}, db)

    async def second(db, context):
        raise ValidationError("second one fails")

    result = await transaction_manager.execute_multiple_operations([first, second])

    assert not result.success
    assert await vehicle_repository.find_by_license_plate("MULTI 3") is None

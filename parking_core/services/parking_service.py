"""Parking orchestration: park, exit, transfer and bulk status changes.

Each operation is one unit of work on the transaction manager. Inside it the
rows involved are re-read under lock, the state transition is checked, and
every write happens behind its own savepoint with a registered compensation.
Callers always get a ``ParkingOperationResult`` back; errors never escape.
"""

import logging
from dataclasses import dataclass, field
from datetime import datetime
from typing import Any, Dict, Iterable, List, Mapping, Optional, Sequence, Union
from uuid import UUID

import pydantic
from sqlalchemy.ext.asyncio import AsyncSession

from parking_core.core.enums import (
    BLOCKED_VEHICLE_STATUSES,
    SessionStatus,
    SpotStatus,
    TransactionPriority,
    VehicleStatus,
)
from parking_core.core.errors import (
    ConflictError,
    InvalidStateError,
    NotFoundError,
    ParkingError,
    ValidationError,
)
from parking_core.core.rules import (
    CompatibilityPolicy,
    compute_fee,
    ensure_utc,
    normalize_license_plate,
    utcnow,
)
from parking_core.repositories.base import (
    SessionRepositoryPort,
    SpotRepositoryPort,
    VehicleRepositoryPort,
)
from parking_core.schemas.vehicle import VehicleParkingData
from parking_core.transactions.context import TransactionContext, TransactionOptions, TransactionResult
from parking_core.transactions.interfaces import TransactionManagerPort
from parking_core.transactions.retry import retry_transaction

logger = logging.getLogger(__name__)


@dataclass
class ParkingOperationResult:
    """Envelope returned by every parking operation."""

    success: bool
    data: Any = None
    error: Optional[str] = None
    error_code: Optional[str] = None
    details: Dict[str, Any] = field(default_factory=dict)
    transaction_id: Optional[str] = None
    duration_ms: float = 0.0
    retry_count: int = 0

    @classmethod
    def from_transaction(cls, result: TransactionResult) -> "ParkingOperationResult":
        if result.success:
            return cls(
                success=True,
                data=result.result,
                transaction_id=result.transaction_id,
                duration_ms=result.duration_ms,
                retry_count=result.retry_count,
            )
        return cls.failure(
            result.error,
            transaction_id=result.transaction_id,
            duration_ms=result.duration_ms,
            retry_count=result.retry_count,
        )

    @classmethod
    def failure(cls, error: ParkingError, **kwargs) -> "ParkingOperationResult":
        kwargs.setdefault("transaction_id", error.transaction_id)
        return cls(
            success=False,
            error=error.message,
            error_code=error.code,
            details=dict(error.details),
            **kwargs,
        )

    def to_dict(self) -> Dict[str, Any]:
        return {
            "success": self.success,
            "data": self.data,
            "error": self.error,
            "error_code": self.error_code,
            "details": self.details,
            "transaction_id": self.transaction_id,
            "duration_ms": self.duration_ms,
        }


class ParkingService:
    """Keeps spots, vehicles and sessions consistent with each other."""

    def __init__(
        self,
        transaction_manager: TransactionManagerPort,
        spot_repository: SpotRepositoryPort,
        vehicle_repository: VehicleRepositoryPort,
        session_repository: SessionRepositoryPort,
        compatibility: Optional[CompatibilityPolicy] = None,
        *,
        park_timeout: float = 15.0,
        exit_timeout: float = 15.0,
        transfer_timeout: float = 20.0,
        bulk_timeout: float = 60.0,
        bulk_batch_size: int = 50,
        max_retries: int = 2,
        retry_delay: float = 0.1,
    ):
        if bulk_batch_size < 1:
            raise ValueError("bulk_batch_size must be at least 1")

        self.transactions = transaction_manager
        self.spots = spot_repository
        self.vehicles = vehicle_repository
        self.sessions = session_repository
        self.compatibility = compatibility or CompatibilityPolicy()
        self.park_timeout = park_timeout
        self.exit_timeout = exit_timeout
        self.transfer_timeout = transfer_timeout
        self.bulk_timeout = bulk_timeout
        self.bulk_batch_size = bulk_batch_size
        self.max_retries = max_retries
        self.retry_delay = retry_delay

    @classmethod
    def from_settings(
        cls,
        transaction_manager: TransactionManagerPort,
        spot_repository: SpotRepositoryPort,
        vehicle_repository: VehicleRepositoryPort,
        session_repository: SessionRepositoryPort,
        settings,
    ) -> "ParkingService":
        return cls(
            transaction_manager,
            spot_repository,
            vehicle_repository,
            session_repository,
            CompatibilityPolicy(settings.COMPATIBILITY_MATRIX),
            park_timeout=settings.PARK_TIMEOUT,
            exit_timeout=settings.EXIT_TIMEOUT,
            transfer_timeout=settings.TRANSFER_TIMEOUT,
            bulk_timeout=settings.BULK_TIMEOUT,
            bulk_batch_size=settings.BULK_BATCH_SIZE,
            max_retries=settings.TRANSACTION_MAX_RETRIES,
            retry_delay=settings.TRANSACTION_RETRY_DELAY,
        )

    # ------------------------------------------------------------------
    # Park
    # ------------------------------------------------------------------

    async def park(
        self,
        vehicle: Union[VehicleParkingData, Mapping[str, Any]],
        spot_id: UUID,
        entry_time: Optional[datetime] = None,
        metadata: Optional[Dict[str, Any]] = None,
        options: Optional[TransactionOptions] = None,
    ) -> ParkingOperationResult:
        """Assign a spot to a vehicle, registering the vehicle on first visit."""

        async def work(db: AsyncSession, context: TransactionContext) -> Dict[str, Any]:
            vehicle_data = self._vehicle_data(vehicle)
            plate = normalize_license_plate(vehicle_data.license_plate)

            spot = await self.spots.find_by_id(spot_id, db, for_update=True)
            if spot is None:
                raise NotFoundError(f"Spot {spot_id} not found", details={"spot_id": str(spot_id)})
            if spot.status != SpotStatus.AVAILABLE.value:
                raise InvalidStateError(
                    f"Spot {spot.spot_number} is not available",
                    details={"spot_id": str(spot.id), "status": spot.status},
                )

            existing = await self.vehicles.find_by_license_plate(plate, db)
            if existing is None:
                async with self.transactions.savepoint(context, "vehicle_creation"):
                    registered = await self.vehicles.create(
                        {
                            **vehicle_data.model_dump(exclude={"license_plate"}),
                            "license_plate": plate,
                            "status": VehicleStatus.ACTIVE,
                        },
                        db,
                    )
                    self.transactions.add_compensation(
                        context,
                        lambda vehicle_id=registered.id: self.vehicles.delete(vehicle_id, db),
                        f"delete vehicle {plate}",
                    )
                current_vehicle = registered
            else:
                if existing.status in {s.value for s in BLOCKED_VEHICLE_STATUSES}:
                    raise InvalidStateError(
                        f"Vehicle {plate} is {existing.status.lower()} and may not park",
                        details={"vehicle_id": str(existing.id), "status": existing.status},
                    )
                current_vehicle = existing

            active = await self.sessions.find_active_by_vehicle(current_vehicle.id, db, for_update=True)
            if active is not None:
                raise ConflictError(
                    f"Vehicle {plate} is already parked",
                    details={"session_id": str(active.id), "spot_id": str(active.spot_id)},
                )

            if not self.compatibility.is_compatible(current_vehicle.vehicle_type, spot.spot_type):
                raise ValidationError(
                    f"Vehicle type {current_vehicle.vehicle_type} cannot use a {spot.spot_type} spot",
                    details={"vehicle_type": current_vehicle.vehicle_type, "spot_type": spot.spot_type},
                )

            async with self.transactions.savepoint(context, "session_creation"):
                parking_session = await self.sessions.create(
                    {
                        "vehicle_id": current_vehicle.id,
                        "spot_id": spot.id,
                        "status": SessionStatus.ACTIVE,
                        "entry_time": ensure_utc(entry_time) if entry_time else utcnow(),
                        "details": dict(metadata) if metadata else None,
                    },
                    db,
                )
                self.transactions.add_compensation(
                    context,
                    lambda session_id=parking_session.id: self.sessions.delete(session_id, db),
                    f"delete session {parking_session.id}",
                )

            async with self.transactions.savepoint(context, "spot_occupation"):
                spot = await self._set_spot_status(
                    db, context, spot, SpotStatus.OCCUPIED, current_vehicle.id
                )

            return {"session": parking_session, "spot": spot, "vehicle": current_vehicle}

        result = await self._run(
            "park", work, options, TransactionPriority.HIGH, self.park_timeout,
            {"spot_id": str(spot_id)},
        )
        if result.success:
            logger.info(
                f"[{result.transaction_id}] Vehicle {result.data['vehicle'].license_plate} "
                f"parked in spot {result.data['spot'].spot_number}",
                extra={"transaction_id": result.transaction_id, "spot_id": str(spot_id)},
            )
        return result

    # ------------------------------------------------------------------
    # Exit
    # ------------------------------------------------------------------

    async def exit_vehicle(
        self,
        license_plate: str,
        exit_time: Optional[datetime] = None,
        options: Optional[TransactionOptions] = None,
    ) -> ParkingOperationResult:
        """Close the vehicle's active session, free its spot and quote the fee."""

        async def work(db: AsyncSession, context: TransactionContext) -> Dict[str, Any]:
            plate = normalize_license_plate(license_plate)
            vehicle = await self.vehicles.find_by_license_plate(plate, db)
            if vehicle is None:
                raise NotFoundError(f"Vehicle {plate} not found", details={"license_plate": plate})

            parking_session = await self.sessions.find_active_by_vehicle(vehicle.id, db, for_update=True)
            if parking_session is None:
                raise InvalidStateError(
                    f"Vehicle {plate} has no active session",
                    details={"vehicle_id": str(vehicle.id)},
                )

            spot = await self.spots.find_by_id(parking_session.spot_id, db, for_update=True)
            if spot is None:
                raise NotFoundError(
                    f"Spot {parking_session.spot_id} not found",
                    details={"spot_id": str(parking_session.spot_id)},
                )

            exit_at = ensure_utc(exit_time) if exit_time else utcnow()
            quote = compute_fee(parking_session.entry_time, exit_at, spot.hourly_rate)

            async with self.transactions.savepoint(context, "session_completion"):
                previous = {
                    "status": parking_session.status,
                    "exit_time": parking_session.exit_time,
                    "duration_seconds": parking_session.duration_seconds,
                    "hourly_rate": parking_session.hourly_rate,
                    "total_fee": parking_session.total_fee,
                }
                parking_session = await self.sessions.update(
                    parking_session.id,
                    {
                        "status": SessionStatus.COMPLETED,
                        "exit_time": exit_at,
                        "duration_seconds": quote.duration_seconds,
                        "hourly_rate": spot.hourly_rate,
                        "total_fee": quote.amount,
                    },
                    db,
                )
                self.transactions.add_compensation(
                    context,
                    lambda session_id=parking_session.id: self.sessions.update(session_id, previous, db),
                    f"reopen session {parking_session.id}",
                )

            async with self.transactions.savepoint(context, "spot_vacation"):
                spot = await self._set_spot_status(db, context, spot, SpotStatus.AVAILABLE, None)

            return {
                "session": parking_session,
                "spot": spot,
                "vehicle": vehicle,
                "payment": {
                    "amount": quote.amount,
                    "hours": quote.hours,
                    "duration_seconds": quote.duration_seconds,
                },
            }

        result = await self._run(
            "exit", work, options, TransactionPriority.HIGH, self.exit_timeout,
            {"license_plate": license_plate},
        )
        if result.success:
            payment = result.data["payment"]
            logger.info(
                f"[{result.transaction_id}] Vehicle {result.data['vehicle'].license_plate} exited, "
                f"{payment['hours']}h owed {payment['amount']}",
                extra={"transaction_id": result.transaction_id},
            )
        return result

    # ------------------------------------------------------------------
    # Transfer
    # ------------------------------------------------------------------

    async def transfer_vehicle(
        self,
        from_spot_id: UUID,
        to_spot_id: UUID,
        reason: Optional[str] = None,
        metadata: Optional[Dict[str, Any]] = None,
        options: Optional[TransactionOptions] = None,
    ) -> ParkingOperationResult:
        """Move the active session on one spot to another, keeping both spots coherent."""

        async def work(db: AsyncSession, context: TransactionContext) -> Dict[str, Any]:
            if from_spot_id == to_spot_id:
                raise ValidationError(
                    "Source and destination spot must differ", details={"spot_id": str(from_spot_id)}
                )

            # Locked in id order
            locked = {s.id: s for s in await self.spots.find_many([from_spot_id, to_spot_id], db, for_update=True)}
            from_spot = locked.get(from_spot_id)
            to_spot = locked.get(to_spot_id)

            if from_spot is None or from_spot.status != SpotStatus.OCCUPIED.value:
                raise InvalidStateError(
                    f"Spot {from_spot_id} is not occupied",
                    details={"spot_id": str(from_spot_id), "status": getattr(from_spot, "status", None)},
                )
            if to_spot is None or to_spot.status != SpotStatus.AVAILABLE.value:
                raise InvalidStateError(
                    f"Spot {to_spot_id} is not available",
                    details={"spot_id": str(to_spot_id), "status": getattr(to_spot, "status", None)},
                )

            parking_session = await self.sessions.find_by_spot_and_status(
                from_spot.id, SessionStatus.ACTIVE, db, for_update=True
            )
            if parking_session is None:
                raise NotFoundError(
                    f"No active session found for spot {from_spot_id}",
                    details={"spot_id": str(from_spot_id)},
                )

            vehicle = await self.vehicles.find_by_id(parking_session.vehicle_id, db)
            if vehicle is not None and not self.compatibility.is_compatible(
                vehicle.vehicle_type, to_spot.spot_type
            ):
                raise ValidationError(
                    f"Vehicle type {vehicle.vehicle_type} cannot use a {to_spot.spot_type} spot",
                    details={"vehicle_type": vehicle.vehicle_type, "spot_type": to_spot.spot_type},
                )

            async with self.transactions.savepoint(context, "session_transfer"):
                previous = {"spot_id": parking_session.spot_id, "details": parking_session.details}
                details = dict(parking_session.details or {})
                details["transfers"] = list(details.get("transfers", [])) + [
                    {
                        "from_spot_id": str(from_spot.id),
                        "to_spot_id": str(to_spot.id),
                        "reason": reason,
                        "transferred_at": utcnow().isoformat(),
                        "metadata": metadata or {},
                    }
                ]
                parking_session = await self.sessions.update(
                    parking_session.id, {"spot_id": to_spot.id, "details": details}, db
                )
                self.transactions.add_compensation(
                    context,
                    lambda session_id=parking_session.id: self.sessions.update(session_id, previous, db),
                    f"move session {parking_session.id} back",
                )

            occupant = from_spot.current_vehicle_id or parking_session.vehicle_id
            async with self.transactions.savepoint(context, "from_spot_update"):
                from_spot = await self._set_spot_status(db, context, from_spot, SpotStatus.AVAILABLE, None)
            async with self.transactions.savepoint(context, "to_spot_update"):
                to_spot = await self._set_spot_status(db, context, to_spot, SpotStatus.OCCUPIED, occupant)

            return {"session": parking_session, "from_spot": from_spot, "to_spot": to_spot}

        result = await self._run(
            "transfer", work, options, TransactionPriority.HIGH, self.transfer_timeout,
            {"from_spot_id": str(from_spot_id), "to_spot_id": str(to_spot_id)},
        )
        if result.success:
            logger.info(
                f"[{result.transaction_id}] Session {result.data['session'].id} transferred "
                f"from spot {result.data['from_spot'].spot_number} to {result.data['to_spot'].spot_number}",
                extra={"transaction_id": result.transaction_id, "reason": reason},
            )
        return result

    # ------------------------------------------------------------------
    # Bulk status change
    # ------------------------------------------------------------------

    async def bulk_update_spot_status(
        self,
        spot_ids: Iterable[Union[UUID, str]],
        target_status: Union[SpotStatus, str],
        reason: Optional[str] = None,
        atomic: bool = True,
        options: Optional[TransactionOptions] = None,
    ) -> ParkingOperationResult:
        """Set many spots to one non-occupied status, in batches.

        With ``atomic`` every batch shares one transaction and any failure
        undoes all of them. Without it each batch commits on its own and the
        ids of failed batches are reported back.
        """
        try:
            status = self._target_status(target_status)
            ids = self._unique_ids(spot_ids)
        except ValidationError as e:
            logger.warning(f"Bulk status update rejected: {e.message}")
            return ParkingOperationResult.failure(e)

        batches = [ids[i:i + self.bulk_batch_size] for i in range(0, len(ids), self.bulk_batch_size)]
        metadata = {"spot_count": len(ids), "target_status": status.value, "reason": reason}

        if atomic:
            result = await self._bulk_atomic(batches, status, options, metadata)
        else:
            result = await self._bulk_per_batch(batches, status, options, metadata)

        if result.success:
            logger.info(
                f"[{result.transaction_id}] {result.data['updated_count']} spots set to {status.value}",
                extra={"transaction_id": result.transaction_id, "reason": reason},
            )
        return result

    async def _bulk_atomic(self, batches, status, options, metadata) -> ParkingOperationResult:
        async def work(db: AsyncSession, context: TransactionContext) -> Dict[str, Any]:
            updated: List = []
            skipped: List[UUID] = []
            for number, batch in enumerate(batches, start=1):
                batch_updated, batch_skipped = await self._update_batch(db, context, number, batch, status)
                updated.extend(batch_updated)
                skipped.extend(batch_skipped)
            return {
                "updated_count": len(updated),
                "spots": updated,
                "skipped_ids": skipped,
                "failed_ids": [],
            }

        return await self._run(
            "bulk_status", work, options, TransactionPriority.NORMAL, self.bulk_timeout, metadata
        )

    async def _bulk_per_batch(self, batches, status, options, metadata) -> ParkingOperationResult:
        updated: List = []
        skipped: List[UUID] = []
        failed: List[UUID] = []
        first_failure: Optional[ParkingOperationResult] = None
        last: Optional[ParkingOperationResult] = None
        duration_ms = 0.0

        for number, batch in enumerate(batches, start=1):

            async def work(db: AsyncSession, context: TransactionContext, number=number, batch=batch):
                return await self._update_batch(db, context, number, batch, status)

            last = await self._run(
                "bulk_status", work, options, TransactionPriority.NORMAL, self.bulk_timeout,
                {**metadata, "batch": number},
            )
            duration_ms += last.duration_ms
            if last.success:
                batch_updated, batch_skipped = last.data
                updated.extend(batch_updated)
                skipped.extend(batch_skipped)
            else:
                missing = set(last.details.get("skipped_ids", []))
                skipped.extend(spot_id for spot_id in batch if str(spot_id) in missing)
                failed.extend(spot_id for spot_id in batch if str(spot_id) not in missing)
                first_failure = first_failure or last

        data = {
            "updated_count": len(updated),
            "spots": updated,
            "skipped_ids": skipped,
            "failed_ids": failed,
        }
        if first_failure is not None:
            return ParkingOperationResult(
                success=False,
                data=data,
                error=first_failure.error,
                error_code=first_failure.error_code,
                details=first_failure.details,
                transaction_id=first_failure.transaction_id,
                duration_ms=duration_ms,
            )
        return ParkingOperationResult(
            success=True,
            data=data,
            transaction_id=last.transaction_id if last else None,
            duration_ms=duration_ms,
        )

    async def _update_batch(self, db, context, number: int, batch: Sequence[UUID], status: SpotStatus):
        async with self.transactions.savepoint(context, f"bulk_batch_{number}"):
            found = {spot.id: spot for spot in await self.spots.find_many(batch, db, for_update=True)}
            skipped = [spot_id for spot_id in batch if spot_id not in found]

            occupied = [spot for spot in found.values() if spot.status == SpotStatus.OCCUPIED.value]
            if occupied:
                raise InvalidStateError(
                    f"{len(occupied)} spot(s) in batch {number} are occupied",
                    details={
                        "occupied_ids": [str(spot.id) for spot in occupied],
                        "skipped_ids": [str(spot_id) for spot_id in skipped],
                        "batch": number,
                    },
                )

            updated = []
            for spot_id in batch:
                spot = found.get(spot_id)
                if spot is not None:
                    updated.append(await self._set_spot_status(db, context, spot, status, None))

        if skipped:
            logger.debug(
                f"[{context.id}] Batch {number}: {len(skipped)} unknown spot(s) skipped",
                extra={"transaction_id": context.id},
            )
        return updated, skipped

    # ------------------------------------------------------------------
    # Statistics
    # ------------------------------------------------------------------

    def get_service_statistics(self) -> Dict[str, Any]:
        stats = self.transactions.get_transaction_statistics()
        return {
            "active_transactions": stats.active,
            "total_transactions": stats.total,
            "succeeded": stats.succeeded,
            "failed": stats.failed,
            "timed_out": stats.timed_out,
            "success_rate": round(stats.success_rate, 2),
            "average_duration_ms": stats.average_duration_ms,
            "by_priority": stats.by_priority,
        }

    # ------------------------------------------------------------------
    # Helpers
    # ------------------------------------------------------------------

    async def _run(
        self,
        operation: str,
        work,
        options: Optional[TransactionOptions],
        priority: TransactionPriority,
        timeout: float,
        metadata: Dict[str, Any],
    ) -> ParkingOperationResult:
        opts = self._options(options, priority, timeout, {"operation": operation, **metadata})
        result = await retry_transaction(
            lambda: self.transactions.execute_transaction(work, opts),
            max_retries=self.max_retries,
            base_delay=self.retry_delay,
        )

        envelope = ParkingOperationResult.from_transaction(result)
        if not envelope.success:
            logger.warning(
                f"[{envelope.transaction_id}] {operation} failed ({envelope.error_code}): {envelope.error}",
                extra={"transaction_id": envelope.transaction_id, "error_code": envelope.error_code},
            )
        return envelope

    @staticmethod
    def _options(
        options: Optional[TransactionOptions],
        priority: TransactionPriority,
        timeout: float,
        metadata: Dict[str, Any],
    ) -> TransactionOptions:
        if options is None:
            return TransactionOptions(priority=priority, timeout=timeout, metadata=metadata)
        return options.merged(
            priority=options.priority or priority,
            timeout=options.timeout or timeout,
            metadata={**metadata, **options.metadata},
        )

    async def _set_spot_status(self, db, context, spot, status: SpotStatus, occupant: Optional[UUID]):
        previous = {"status": spot.status, "current_vehicle_id": spot.current_vehicle_id}
        updated = await self.spots.update(
            spot.id, {"status": status, "current_vehicle_id": occupant}, db
        )
        self.transactions.add_compensation(
            context,
            lambda spot_id=spot.id: self.spots.update(spot_id, previous, db),
            f"restore spot {spot.spot_number} to {previous['status']}",
        )
        return updated

    @staticmethod
    def _vehicle_data(vehicle: Union[VehicleParkingData, Mapping[str, Any]]) -> VehicleParkingData:
        if isinstance(vehicle, VehicleParkingData):
            return vehicle
        try:
            return VehicleParkingData.model_validate(vehicle)
        except pydantic.ValidationError as e:
            raise ValidationError(
                f"Invalid vehicle data: {e.error_count()} error(s)",
                details={"errors": [error["msg"] for error in e.errors()]},
            ) from e

    @staticmethod
    def _target_status(target_status: Union[SpotStatus, str]) -> SpotStatus:
        try:
            status = SpotStatus(target_status)
        except ValueError as e:
            raise ValidationError(
                f"Unknown spot status: {target_status}", details={"status": str(target_status)}
            ) from e
        if status == SpotStatus.OCCUPIED:
            raise ValidationError(
                "Spots can only become OCCUPIED by parking a vehicle",
                details={"status": status.value},
            )
        return status

    @staticmethod
    def _unique_ids(spot_ids: Iterable[Union[UUID, str]]) -> List[UUID]:
        ids: List[UUID] = []
        for spot_id in spot_ids:
            try:
                ids.append(spot_id if isinstance(spot_id, UUID) else UUID(str(spot_id)))
            except ValueError as e:
                raise ValidationError(f"Invalid spot id: {spot_id}", details={"spot_id": str(spot_id)}) from e
        if not ids:
            raise ValidationError("At least one spot id is required")
        return list(dict.fromkeys(ids))

"""Unit-of-work execution with savepoints, timeouts and statistics."""

import asyncio
import logging
from collections import Counter, OrderedDict, deque
from contextlib import asynccontextmanager
from datetime import timedelta
from typing import AsyncIterator, Dict, List, Optional, Sequence

from sqlalchemy import text
from sqlalchemy.exc import DBAPIError, IntegrityError, InvalidRequestError, SQLAlchemyError
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from parking_core.core.enums import TransactionPriority, TransactionStatus
from parking_core.core.errors import (
    ConflictError,
    ParkingError,
    SavepointError,
    TransactionError,
    TransactionTimeoutError,
)
from parking_core.core.rules import utcnow
from parking_core.transactions.context import (
    CompensatingAction,
    Compensation,
    Savepoint,
    TransactionContext,
    TransactionMetrics,
    TransactionOptions,
    TransactionResult,
    TransactionStatistics,
    generate_savepoint_id,
    generate_transaction_id,
)
from parking_core.transactions.interfaces import TransactionManagerPort, WorkCallback

logger = logging.getLogger(__name__)

NATIVE = "native"
COMPENSATING = "compensating"
SAVEPOINT_MODES = (NATIVE, COMPENSATING)

ISOLATION_LEVELS = ("READ UNCOMMITTED", "READ COMMITTED", "REPEATABLE READ", "SERIALIZABLE")

# serialization_failure, deadlock_detected, lock_not_available
TRANSIENT_SQLSTATES = {"40001", "40P01", "55P03"}
TRANSIENT_MARKERS = (
    "deadlock",
    "could not serialize",
    "serialization failure",
    "lock timeout",
    "lock wait timeout",
    "database is locked",
    "database table is locked",
)


def is_transient_store_error(exc: BaseException) -> bool:
    """True for lock, deadlock and serialization failures reported by the driver."""
    if not isinstance(exc, DBAPIError) or isinstance(exc, IntegrityError):
        return False

    orig = exc.orig
    sqlstate = getattr(orig, "sqlstate", None) or getattr(orig, "pgcode", None)
    if sqlstate in TRANSIENT_SQLSTATES:
        return True

    message = str(orig or exc).lower()
    return any(marker in message for marker in TRANSIENT_MARKERS)


def extract_transaction_error(exc: BaseException, transaction_id: str) -> ParkingError:
    """Map whatever escaped a work callback onto the parking error taxonomy."""
    if isinstance(exc, ParkingError):
        error = exc
    elif isinstance(exc, IntegrityError):
        error = ConflictError(
            f"Constraint violation: {exc.orig}",
            details={"statement": exc.statement},
        )
    elif is_transient_store_error(exc):
        error = TransactionError(
            f"Transient store conflict: {exc}",
            code="CONFLICT",
            retryable=True,
        )
    else:
        error = TransactionError(
            str(exc) or type(exc).__name__,
            code="ABORTED",
            details={"exception": type(exc).__name__},
        )

    error.transaction_id = transaction_id
    return error


class TransactionManager(TransactionManagerPort):
    """Runs work callbacks inside one database transaction each.

    Failures never propagate out of ``execute_transaction``: they are
    classified, logged once and returned in a ``TransactionResult``.

    Savepoints come in two flavours. ``native`` issues SQL ``SAVEPOINT``
    through ``AsyncSession.begin_nested``. ``compensating`` keeps a log of
    inverse actions per savepoint and replays it in reverse on rollback,
    for stores without nested transaction support. Compensations are recorded
    in both modes.
    """

    def __init__(
        self,
        session_factory: async_sessionmaker,
        *,
        default_timeout: float = 30.0,
        max_savepoint_depth: int = 10,
        savepoint_mode: str = NATIVE,
        max_active_transactions: int = 100,
        stats_window: int = 1000,
        isolation_level: Optional[str] = None,
        metrics_limit: int = 10000,
    ):
        if savepoint_mode not in SAVEPOINT_MODES:
            raise ValueError(f"savepoint_mode must be one of {SAVEPOINT_MODES}, got {savepoint_mode!r}")
        if default_timeout <= 0:
            raise ValueError("default_timeout must be positive")

        self._session_factory = session_factory
        self.default_timeout = default_timeout
        self.max_savepoint_depth = max_savepoint_depth
        self.savepoint_mode = savepoint_mode
        self.max_active_transactions = max_active_transactions
        self.isolation_level = self._check_isolation_level(isolation_level)
        self._metrics_limit = metrics_limit

        self._active: Dict[str, TransactionContext] = {}
        self._metrics: "OrderedDict[str, TransactionMetrics]" = OrderedDict()
        self._durations: deque = deque(maxlen=stats_window)
        self._counters: Counter = Counter()
        self._by_priority: Counter = Counter()

    @classmethod
    def from_settings(cls, session_factory: async_sessionmaker, settings) -> "TransactionManager":
        return cls(
            session_factory,
            default_timeout=settings.TRANSACTION_DEFAULT_TIMEOUT,
            max_savepoint_depth=settings.MAX_SAVEPOINT_DEPTH,
            savepoint_mode=settings.SAVEPOINT_MODE,
            max_active_transactions=settings.TRANSACTION_MAX_ACTIVE,
            stats_window=settings.STATS_WINDOW,
            isolation_level=settings.TRANSACTION_ISOLATION_LEVEL,
        )

    # ------------------------------------------------------------------
    # Execution
    # ------------------------------------------------------------------

    async def execute_transaction(
        self, work: WorkCallback, options: Optional[TransactionOptions] = None, **overrides
    ) -> TransactionResult:
        opts = (options or TransactionOptions()).merged(**overrides)
        opts.validate()
        isolation_level = self._check_isolation_level(opts.isolation_level) or self.isolation_level
        timeout = opts.timeout or self.default_timeout

        context = TransactionContext(
            id=generate_transaction_id(),
            priority=TransactionPriority(opts.priority or TransactionPriority.NORMAL),
            timeout=timeout,
            metadata=dict(opts.metadata),
        )

        if len(self._active) >= self.max_active_transactions:
            return self._reject_over_capacity(context)

        self._begin_tracking(context)
        try:
            async with self._session_factory() as db:
                context.handle = db
                context.status = TransactionStatus.ACTIVE
                logger.debug(f"[{context.id}] Transaction started", extra=context.describe())

                try:
                    await self._apply_isolation_level(db, isolation_level)
                    result = await asyncio.wait_for(work(db, context), timeout=timeout)
                    await db.commit()
                except asyncio.TimeoutError:
                    await self._abort(db, context)
                    context.finish(TransactionStatus.TIMEOUT)
                    error = TransactionTimeoutError(context.id, timeout)
                    logger.error(f"[{context.id}] {error.message}", extra=context.describe())
                    return TransactionResult(success=False, context=context, error=error)
                except Exception as exc:
                    await self._abort(db, context)
                    context.finish(TransactionStatus.FAILED)
                    error = extract_transaction_error(exc, context.id)
                    self._log_failure(context, error, exc)
                    return TransactionResult(success=False, context=context, error=error)

                context.finish(TransactionStatus.COMMITTED)
                logger.debug(f"[{context.id}] Transaction committed", extra=context.describe())
                return TransactionResult(success=True, context=context, result=result)
        finally:
            if context.end_time is None:
                # Cancelled from outside
                context.finish(TransactionStatus.ROLLED_BACK)
            context.handle = None
            context.savepoints.clear()
            self._end_tracking(context)

    async def execute_multiple_operations(
        self, operations: Sequence[WorkCallback], options: Optional[TransactionOptions] = None, **overrides
    ) -> TransactionResult:
        """Run several callbacks in one transaction, each behind its own savepoint."""

        async def run_all(db: AsyncSession, context: TransactionContext) -> List:
            results = []
            for index, operation in enumerate(operations):
                async with self.savepoint(context, f"operation_{index}"):
                    results.append(await operation(db, context))
            return results

        return await self.execute_transaction(run_all, options, **overrides)

    # ------------------------------------------------------------------
    # Savepoints
    # ------------------------------------------------------------------

    async def create_savepoint(self, context: TransactionContext, label: str = "savepoint") -> Savepoint:
        db = self._require_handle(context)
        if context.depth >= self.max_savepoint_depth:
            raise SavepointError(
                f"Maximum savepoint depth of {self.max_savepoint_depth} exceeded in transaction {context.id}",
                transaction_id=context.id,
                details={"reason": "DEPTH_EXCEEDED", "label": label},
            )

        context.savepoints_created += 1
        savepoint = Savepoint(
            id=generate_savepoint_id(),
            name=f"{label}_{context.savepoints_created}",
            label=label,
            transaction_id=context.id,
            depth=context.depth + 1,
            created_at=utcnow(),
        )

        if self.savepoint_mode == NATIVE:
            try:
                savepoint.nested = await db.begin_nested()
            except SQLAlchemyError as e:
                raise SavepointError(
                    f"Failed to create savepoint {savepoint.name}: {e}", transaction_id=context.id
                ) from e

        context.savepoints.append(savepoint)
        logger.debug(
            f"[{context.id}] Savepoint {savepoint.name} created at depth {savepoint.depth}",
            extra={"transaction_id": context.id, "savepoint": savepoint.name},
        )
        return savepoint

    async def release_savepoint(self, context: TransactionContext, savepoint: Savepoint) -> None:
        index = self._index_of(context, savepoint)
        closing = context.savepoints[index:]

        for inner in reversed(closing):
            if inner.nested is not None:
                try:
                    await inner.nested.commit()
                except SQLAlchemyError as e:
                    raise SavepointError(
                        f"Failed to release savepoint {inner.name}: {e}", transaction_id=context.id
                    ) from e

        # Released work can still be undone by a rollback of the enclosing savepoint
        if index > 0:
            parent = context.savepoints[index - 1]
            for inner in closing:
                parent.compensations.extend(inner.compensations)

        del context.savepoints[index:]
        logger.debug(
            f"[{context.id}] Savepoint {savepoint.name} released",
            extra={"transaction_id": context.id, "savepoint": savepoint.name},
        )

    async def rollback_to_savepoint(self, context: TransactionContext, savepoint: Savepoint) -> None:
        index = self._index_of(context, savepoint)
        closing = context.savepoints[index:]
        del context.savepoints[index:]

        failures = []
        for inner in reversed(closing):
            if self.savepoint_mode == NATIVE:
                await self._rollback_nested(context, inner)
            else:
                failures.extend(await self._run_compensations(context, inner))

        if failures:
            raise SavepointError(
                f"Rollback to savepoint {savepoint.name} incomplete: {len(failures)} compensation(s) failed",
                transaction_id=context.id,
                details={"failed_compensations": failures},
            )

        logger.debug(
            f"[{context.id}] Rolled back to savepoint {savepoint.name}",
            extra={"transaction_id": context.id, "savepoint": savepoint.name},
        )

    def add_compensation(
        self, context: TransactionContext, action: Compensation, description: str = ""
    ) -> None:
        if not context.savepoints:
            # Outside any savepoint the transaction rollback is the compensation
            return
        context.savepoints[-1].compensations.append(CompensatingAction(description, action))

    @asynccontextmanager
    async def savepoint(self, context: TransactionContext, label: str) -> AsyncIterator[Savepoint]:
        savepoint = await self.create_savepoint(context, label)
        try:
            yield savepoint
        except Exception:
            try:
                await self.rollback_to_savepoint(context, savepoint)
            except Exception:
                logger.exception(
                    f"[{context.id}] Rollback to savepoint {savepoint.name} failed",
                    extra={"transaction_id": context.id, "savepoint": savepoint.name},
                )
            raise
        await self.release_savepoint(context, savepoint)

    # ------------------------------------------------------------------
    # Statistics
    # ------------------------------------------------------------------

    def get_transaction_statistics(self) -> TransactionStatistics:
        average = sum(self._durations) / len(self._durations) if self._durations else 0.0
        return TransactionStatistics(
            total=self._counters["total"],
            active=len(self._active),
            succeeded=self._counters["succeeded"],
            failed=self._counters["failed"],
            timed_out=self._counters["timed_out"],
            average_duration_ms=round(average, 2),
            by_priority=dict(self._by_priority),
        )

    def get_active_transactions(self) -> List[TransactionContext]:
        return list(self._active.values())

    def get_transaction_metrics(self, transaction_id: str) -> Optional[TransactionMetrics]:
        return self._metrics.get(transaction_id)

    def clear_old_metrics(self, older_than_hours: float = 24) -> int:
        cutoff = utcnow() - timedelta(hours=older_than_hours)
        stale = [
            transaction_id
            for transaction_id, metrics in self._metrics.items()
            if metrics.end_time is not None and metrics.end_time < cutoff
        ]
        for transaction_id in stale:
            del self._metrics[transaction_id]

        if stale:
            logger.info(f"Cleared {len(stale)} transaction metrics older than {older_than_hours}h")
        return len(stale)

    # ------------------------------------------------------------------
    # Internals
    # ------------------------------------------------------------------

    def _reject_over_capacity(self, context: TransactionContext) -> TransactionResult:
        context.finish(TransactionStatus.FAILED)
        error = TransactionError(
            f"Too many active transactions (limit {self.max_active_transactions})",
            code="CAPACITY_EXCEEDED",
            transaction_id=context.id,
            details={"max_active_transactions": self.max_active_transactions},
        )
        logger.warning(f"[{context.id}] {error.message}", extra=context.describe())
        self._counters["total"] += 1
        self._counters["failed"] += 1
        self._by_priority[context.priority.value] += 1
        return TransactionResult(success=False, context=context, error=error)

    def _begin_tracking(self, context: TransactionContext) -> None:
        self._active[context.id] = context
        self._counters["total"] += 1
        self._by_priority[context.priority.value] += 1
        self._metrics[context.id] = TransactionMetrics(
            transaction_id=context.id,
            priority=context.priority,
            start_time=context.start_time,
            status=context.status,
            metadata=dict(context.metadata),
        )
        while len(self._metrics) > self._metrics_limit:
            self._metrics.popitem(last=False)

    def _end_tracking(self, context: TransactionContext) -> None:
        self._active.pop(context.id, None)

        if context.status == TransactionStatus.COMMITTED:
            self._counters["succeeded"] += 1
        else:
            self._counters["failed"] += 1
            if context.status == TransactionStatus.TIMEOUT:
                self._counters["timed_out"] += 1

        duration = context.duration_ms or 0.0
        self._durations.append(duration)

        metrics = self._metrics.get(context.id)
        if metrics is not None:
            metrics.status = context.status
            metrics.end_time = context.end_time
            metrics.duration_ms = duration
            metrics.savepoint_count = context.savepoints_created

    async def _apply_isolation_level(self, db: AsyncSession, isolation_level: Optional[str]) -> None:
        if not isolation_level:
            return
        if db.get_bind().dialect.name != "postgresql":
            return
        await db.execute(text(f"SET TRANSACTION ISOLATION LEVEL {isolation_level}"))

    async def _abort(self, db: AsyncSession, context: TransactionContext) -> None:
        try:
            await db.rollback()
        except SQLAlchemyError:
            logger.exception(f"[{context.id}] Rollback failed", extra=context.describe())
        else:
            logger.debug(f"[{context.id}] Transaction rolled back", extra=context.describe())

    async def _rollback_nested(self, context: TransactionContext, savepoint: Savepoint) -> None:
        if savepoint.nested is None:
            return
        try:
            await savepoint.nested.rollback()
        except InvalidRequestError:
            # Already closed together with an enclosing savepoint
            logger.debug(f"[{context.id}] Savepoint {savepoint.name} was already closed")
        except SQLAlchemyError as e:
            raise SavepointError(
                f"Failed to roll back savepoint {savepoint.name}: {e}", transaction_id=context.id
            ) from e

    async def _run_compensations(self, context: TransactionContext, savepoint: Savepoint) -> List[str]:
        failures = []
        for compensation in reversed(savepoint.compensations):
            try:
                await compensation.action()
            except Exception as e:
                logger.error(
                    f"[{context.id}] Compensation '{compensation.description}' failed: {e}",
                    extra={"transaction_id": context.id, "savepoint": savepoint.name},
                )
                failures.append(compensation.description)
        savepoint.compensations.clear()
        return failures

    def _require_handle(self, context: TransactionContext) -> AsyncSession:
        if context.handle is None:
            raise SavepointError(
                f"Transaction {context.id} is not active", transaction_id=context.id
            )
        return context.handle

    @staticmethod
    def _index_of(context: TransactionContext, savepoint: Savepoint) -> int:
        for index, candidate in enumerate(context.savepoints):
            if candidate.id == savepoint.id:
                return index
        raise SavepointError(
            f"Savepoint {savepoint.name} is not open in transaction {context.id}",
            transaction_id=context.id,
            details={"reason": "UNKNOWN_SAVEPOINT", "savepoint_id": savepoint.id},
        )

    @staticmethod
    def _check_isolation_level(isolation_level: Optional[str]) -> Optional[str]:
        if not isolation_level:
            return None
        level = " ".join(isolation_level.upper().replace("_", " ").split())
        if level not in ISOLATION_LEVELS:
            raise ValueError(f"Unsupported isolation level: {isolation_level!r}")
        return level

    def _log_failure(self, context: TransactionContext, error: ParkingError, exc: BaseException) -> None:
        extra = {**context.describe(), "error_code": error.code}
        if isinstance(exc, ParkingError):
            logger.warning(f"[{context.id}] Transaction failed: {error.message}", extra=extra)
        else:
            logger.error(
                f"[{context.id}] Transaction aborted: {error.message}", extra=extra, exc_info=exc
            )

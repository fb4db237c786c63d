"""Transaction execution context, options, savepoints and results."""

from dataclasses import dataclass, field
from datetime import datetime
from typing import Any, Awaitable, Callable, Dict, Generic, List, Optional, TypeVar
from uuid import uuid4

from sqlalchemy.ext.asyncio import AsyncSession, AsyncSessionTransaction

from parking_core.core.enums import TransactionPriority, TransactionStatus
from parking_core.core.errors import ParkingError
from parking_core.core.rules import utcnow

T = TypeVar("T")

Compensation = Callable[[], Awaitable[Any]]


def generate_transaction_id() -> str:
    return f"tx_{uuid4().hex}"


def generate_savepoint_id() -> str:
    return f"sp_{uuid4().hex}"


@dataclass
class TransactionOptions:
    """Per-call knobs for ``execute_transaction``.

    ``timeout`` is in seconds; ``None`` falls back to the manager default.
    ``priority`` left as ``None`` lets the caller pick its own default, and
    the manager treats it as NORMAL.
    """

    priority: Optional[TransactionPriority] = None
    timeout: Optional[float] = None
    isolation_level: Optional[str] = None
    metadata: Dict[str, Any] = field(default_factory=dict)

    def validate(self) -> None:
        if self.timeout is not None and self.timeout <= 0:
            raise ValueError("timeout must be a positive number of seconds")
        if self.priority is not None:
            TransactionPriority(self.priority)

    def merged(self, **overrides) -> "TransactionOptions":
        values = {
            "priority": self.priority,
            "timeout": self.timeout,
            "isolation_level": self.isolation_level,
            "metadata": dict(self.metadata),
        }
        for key, value in overrides.items():
            if key not in values:
                raise TypeError(f"Unknown transaction option: {key}")
            if value is not None:
                values[key] = value
        return TransactionOptions(**values)


@dataclass
class CompensatingAction:
    description: str
    action: Compensation


@dataclass
class Savepoint:
    """Named mark inside a transaction allowing partial rollback."""

    id: str
    name: str
    label: str
    transaction_id: str
    depth: int
    created_at: datetime
    nested: Optional[AsyncSessionTransaction] = None
    compensations: List[CompensatingAction] = field(default_factory=list)


@dataclass
class TransactionContext:
    """State of one unit of work, passed to the work callback."""

    id: str
    priority: TransactionPriority
    timeout: float
    start_time: datetime = field(default_factory=utcnow)
    status: TransactionStatus = TransactionStatus.PENDING
    metadata: Dict[str, Any] = field(default_factory=dict)
    savepoints: List[Savepoint] = field(default_factory=list)
    savepoints_created: int = 0
    handle: Optional[AsyncSession] = None
    end_time: Optional[datetime] = None

    @property
    def depth(self) -> int:
        return len(self.savepoints)

    @property
    def duration_ms(self) -> Optional[float]:
        if self.end_time is None:
            return None
        return (self.end_time - self.start_time).total_seconds() * 1000

    def finish(self, status: TransactionStatus) -> None:
        self.status = status
        self.end_time = utcnow()

    def describe(self) -> Dict[str, Any]:
        """Flat view used for log records."""
        return {
            "transaction_id": self.id,
            "status": self.status.value,
            "priority": self.priority.value,
            "savepoint_count": self.savepoints_created,
            "duration_ms": self.duration_ms,
        }


@dataclass
class TransactionResult(Generic[T]):
    """Outcome of ``execute_transaction``. Failures never raise, inspect ``success``."""

    success: bool
    context: TransactionContext
    result: Optional[T] = None
    error: Optional[ParkingError] = None
    retry_count: int = 0

    @property
    def transaction_id(self) -> str:
        return self.context.id

    @property
    def duration_ms(self) -> float:
        return self.context.duration_ms or 0.0


@dataclass
class TransactionMetrics:
    transaction_id: str
    priority: TransactionPriority
    start_time: datetime
    status: TransactionStatus
    end_time: Optional[datetime] = None
    duration_ms: Optional[float] = None
    savepoint_count: int = 0
    metadata: Dict[str, Any] = field(default_factory=dict)


@dataclass
class TransactionStatistics:
    total: int
    active: int
    succeeded: int
    failed: int
    timed_out: int
    average_duration_ms: float
    by_priority: Dict[str, int]

    @property
    def success_rate(self) -> float:
        finished = self.succeeded + self.failed
        return (self.succeeded / finished * 100) if finished else 0.0

"""Closed enumerations shared by models, schemas and services."""

import enum


class SpotType(str, enum.Enum):
    COMPACT = "COMPACT"
    STANDARD = "STANDARD"
    OVERSIZED = "OVERSIZED"
    ELECTRIC = "ELECTRIC"
    HANDICAP = "HANDICAP"
    MOTORCYCLE = "MOTORCYCLE"


class SpotStatus(str, enum.Enum):
    AVAILABLE = "AVAILABLE"
    OCCUPIED = "OCCUPIED"
    MAINTENANCE = "MAINTENANCE"
    OUT_OF_ORDER = "OUT_OF_ORDER"


class VehicleType(str, enum.Enum):
    COMPACT = "COMPACT"
    STANDARD = "STANDARD"
    OVERSIZED = "OVERSIZED"
    ELECTRIC = "ELECTRIC"
    MOTORCYCLE = "MOTORCYCLE"


class VehicleStatus(str, enum.Enum):
    ACTIVE = "ACTIVE"
    BLOCKED = "BLOCKED"
    BANNED = "BANNED"
    INACTIVE = "INACTIVE"


class SessionStatus(str, enum.Enum):
    ACTIVE = "ACTIVE"
    COMPLETED = "COMPLETED"
    EXPIRED = "EXPIRED"
    CANCELLED = "CANCELLED"
    ABANDONED = "ABANDONED"


class RateType(str, enum.Enum):
    HOURLY = "HOURLY"
    DAILY = "DAILY"
    MONTHLY = "MONTHLY"


class TransactionPriority(str, enum.Enum):
    """Scheduling hint. Drives timeout defaults and statistics, never preemption."""

    LOW = "LOW"
    NORMAL = "NORMAL"
    HIGH = "HIGH"


class TransactionStatus(str, enum.Enum):
    PENDING = "PENDING"
    ACTIVE = "ACTIVE"
    COMMITTED = "COMMITTED"
    ROLLED_BACK = "ROLLED_BACK"
    FAILED = "FAILED"
    TIMEOUT = "TIMEOUT"


DEFAULT_VEHICLE_TYPE = VehicleType.STANDARD

# Vehicles in these states are refused at the gate.
BLOCKED_VEHICLE_STATUSES = frozenset({VehicleStatus.BLOCKED, VehicleStatus.BANNED})


def sql_in_check(column: str, enum_cls) -> str:
    """Render a CHECK expression limiting a string column to the enum's values."""
    values = ", ".join(f"'{member.value}'" for member in enum_cls)
    return f"{column} IN ({values})"

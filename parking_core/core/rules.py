"""Spot compatibility and fee rules.

Pure functions, no I/O. The parking service calls them inside its
transactions, the HTTP layer may call them directly for quotes.
"""

import math
import re
from dataclasses import dataclass
from datetime import datetime, timezone
from decimal import ROUND_HALF_UP, Decimal
from typing import Dict, FrozenSet, Iterable, Mapping, Optional, Union

from parking_core.core.enums import SpotType, VehicleType
from parking_core.core.errors import ValidationError

DEFAULT_COMPATIBILITY: Dict[VehicleType, FrozenSet[SpotType]] = {
    VehicleType.COMPACT: frozenset({SpotType.COMPACT, SpotType.STANDARD, SpotType.OVERSIZED}),
    VehicleType.STANDARD: frozenset({SpotType.STANDARD, SpotType.OVERSIZED}),
    VehicleType.OVERSIZED: frozenset({SpotType.OVERSIZED}),
    VehicleType.MOTORCYCLE: frozenset({SpotType.MOTORCYCLE, SpotType.COMPACT}),
    VehicleType.ELECTRIC: frozenset({SpotType.ELECTRIC, SpotType.STANDARD, SpotType.OVERSIZED}),
}

MAX_PLATE_LENGTH = 20
_PLATE_PATTERN = re.compile(r"^[A-Z0-9 -]+$")
_CENTS = Decimal("0.01")


class CompatibilityPolicy:
    """Which spot classes a vehicle class may occupy.

    The table is static policy input. Overrides are given as plain strings
    (e.g. from the environment) and validated against the closed enums here,
    so a typo fails at startup instead of silently denying every park.
    """

    def __init__(self, matrix: Optional[Mapping[Union[str, VehicleType], Iterable[Union[str, SpotType]]]] = None):
        if matrix is None:
            self._matrix = dict(DEFAULT_COMPATIBILITY)
            return

        parsed: Dict[VehicleType, FrozenSet[SpotType]] = {}
        for vehicle_type, spot_types in matrix.items():
            try:
                key = VehicleType(str(getattr(vehicle_type, "value", vehicle_type)).upper())
                allowed = frozenset(
                    SpotType(str(getattr(s, "value", s)).upper()) for s in spot_types
                )
            except ValueError as e:
                raise ValidationError(f"Invalid compatibility matrix entry: {e}") from e
            parsed[key] = allowed

        # Vehicle classes missing from an override keep their default entry
        self._matrix = {**DEFAULT_COMPATIBILITY, **parsed}

    def is_compatible(self, vehicle_type: VehicleType, spot_type: SpotType) -> bool:
        return SpotType(spot_type) in self._matrix.get(VehicleType(vehicle_type), frozenset())

    def compatible_spot_types(self, vehicle_type: VehicleType) -> FrozenSet[SpotType]:
        return self._matrix.get(VehicleType(vehicle_type), frozenset())

    def as_dict(self) -> Dict[str, list]:
        return {
            vehicle_type.value: sorted(s.value for s in spot_types)
            for vehicle_type, spot_types in self._matrix.items()
        }


_default_policy = CompatibilityPolicy()


def is_compatible(vehicle_type: VehicleType, spot_type: SpotType) -> bool:
    """Check the default compatibility table."""
    return _default_policy.is_compatible(vehicle_type, spot_type)


@dataclass(frozen=True)
class FeeQuote:
    """Billable outcome of one stay."""

    hours: int
    amount: Decimal
    duration_seconds: int


def ensure_utc(value: datetime) -> datetime:
    """Return an aware UTC datetime. Naive values are taken to be UTC already."""
    if value.tzinfo is None:
        return value.replace(tzinfo=timezone.utc)
    return value.astimezone(timezone.utc)


def utcnow() -> datetime:
    return datetime.now(timezone.utc)


def compute_fee(
    entry_time: datetime,
    exit_time: datetime,
    hourly_rate: Union[Decimal, int, float, str],
) -> FeeQuote:
    """Compute billable hours and the amount owed.

    Billable hours are the stay in minutes divided by 60, rounded up, with a
    floor of one hour. The amount is rounded half-up to cents.
    """
    entry = ensure_utc(entry_time)
    exit_ = ensure_utc(exit_time)
    if exit_ <= entry:
        raise ValidationError(
            "Exit time must be after entry time",
            details={"entry_time": entry.isoformat(), "exit_time": exit_.isoformat()},
        )

    rate = Decimal(str(hourly_rate))
    if rate < 0:
        raise ValidationError(f"Hourly rate must not be negative, got {rate}")

    duration = exit_ - entry
    minutes = duration.total_seconds() / 60
    hours = max(1, math.ceil(minutes / 60))
    amount = (rate * hours).quantize(_CENTS, rounding=ROUND_HALF_UP)

    return FeeQuote(hours=hours, amount=amount, duration_seconds=int(duration.total_seconds()))


def normalize_license_plate(plate: str) -> str:
    """Canonical plate form: trimmed, upper-case, single inner spaces."""
    if plate is None:
        raise ValidationError("License plate is required")
    normalized = " ".join(str(plate).split()).upper()
    if not normalized:
        raise ValidationError("License plate is required")
    if len(normalized) > MAX_PLATE_LENGTH:
        raise ValidationError(
            f"License plate must be at most {MAX_PLATE_LENGTH} characters",
            details={"license_plate": normalized},
        )
    if not _PLATE_PATTERN.match(normalized):
        raise ValidationError(
            "License plate may only contain letters, digits, spaces and dashes",
            details={"license_plate": normalized},
        )
    return normalized

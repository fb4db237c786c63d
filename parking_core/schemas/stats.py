"""Statistics schemas."""

from typing import Dict

from pydantic import BaseModel


class TransactionStatisticsResponse(BaseModel):
    """Transaction manager counters."""

    total: int
    active: int
    succeeded: int
    failed: int
    timed_out: int
    success_rate: float
    average_duration_ms: float
    by_priority: Dict[str, int]

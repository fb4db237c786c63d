"""Statistics endpoints."""

from fastapi import APIRouter, Depends

from parking_core.api.deps import get_transaction_manager
from parking_core.schemas.stats import TransactionStatisticsResponse
from parking_core.transactions.manager import TransactionManager

router = APIRouter()


@router.get("/transactions", response_model=TransactionStatisticsResponse)
async def transaction_statistics(
    manager: TransactionManager = Depends(get_transaction_manager),
):
    """Transaction counters since startup."""
    stats = manager.get_transaction_statistics()
    return TransactionStatisticsResponse(
        total=stats.total,
        active=stats.active,
        succeeded=stats.succeeded,
        failed=stats.failed,
        timed_out=stats.timed_out,
        success_rate=round(stats.success_rate, 2),
        average_duration_ms=stats.average_duration_ms,
        by_priority=stats.by_priority,
    )

"""Transaction execution engine."""

from parking_core.transactions.context import (
    Savepoint,
    TransactionContext,
    TransactionMetrics,
    TransactionOptions,
    TransactionResult,
    TransactionStatistics,
)
from parking_core.transactions.interfaces import TransactionManagerPort
from parking_core.transactions.manager import (
    COMPENSATING,
    NATIVE,
    TransactionManager,
    extract_transaction_error,
)
from parking_core.transactions.retry import retry_transaction

__all__ = [
    "COMPENSATING",
    "NATIVE",
    "Savepoint",
    "TransactionContext",
    "TransactionManager",
    "TransactionManagerPort",
    "TransactionMetrics",
    "TransactionOptions",
    "TransactionResult",
    "TransactionStatistics",
    "extract_transaction_error",
    "retry_transaction",
]

"""Transaction manager interface."""

from abc import ABC, abstractmethod
from typing import AsyncContextManager, Awaitable, Callable, Optional, TypeVar

from sqlalchemy.ext.asyncio import AsyncSession

from parking_core.transactions.context import (
    Compensation,
    Savepoint,
    TransactionContext,
    TransactionOptions,
    TransactionResult,
    TransactionStatistics,
)

T = TypeVar("T")

WorkCallback = Callable[[AsyncSession, TransactionContext], Awaitable[T]]


class TransactionManagerPort(ABC):
    @abstractmethod
    async def execute_transaction(
        self, work: WorkCallback, options: Optional[TransactionOptions] = None, **overrides
    ) -> TransactionResult: ...

    @abstractmethod
    async def create_savepoint(self, context: TransactionContext, label: str = "savepoint") -> Savepoint: ...

    @abstractmethod
    async def release_savepoint(self, context: TransactionContext, savepoint: Savepoint) -> None: ...

    @abstractmethod
    async def rollback_to_savepoint(self, context: TransactionContext, savepoint: Savepoint) -> None: ...

    @abstractmethod
    def add_compensation(
        self, context: TransactionContext, action: Compensation, description: str = ""
    ) -> None: ...

    @abstractmethod
    def savepoint(self, context: TransactionContext, label: str) -> AsyncContextManager[Savepoint]: ...

    @abstractmethod
    def get_transaction_statistics(self) -> TransactionStatistics: ...

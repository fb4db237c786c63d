"""Caller-side retry of transactions that lost a store-level race."""

import asyncio
import logging
from typing import Awaitable, Callable, Optional

from tenacity import (
    AsyncRetrying,
    RetryCallState,
    retry_if_result,
    stop_after_attempt,
    wait_exponential,
    wait_random,
)

from parking_core.core.errors import ParkingError, TransactionError
from parking_core.transactions.context import TransactionResult

logger = logging.getLogger(__name__)

JITTER_RATIO = 0.1


def is_retryable(error: Optional[ParkingError]) -> bool:
    return isinstance(error, TransactionError) and error.retryable


def _is_transient_failure(result: TransactionResult) -> bool:
    return not result.success and is_retryable(result.error)


def _log_retry(retry_state: RetryCallState) -> None:
    result = retry_state.outcome.result()
    retries = retry_state.attempt_number
    logger.warning(
        f"[{result.transaction_id}] Transient conflict, retry {retries} "
        f"in {retry_state.next_action.sleep:.3f}s",
        extra={"transaction_id": result.transaction_id, "retries": retries},
    )


def _give_up(retry_state: RetryCallState) -> TransactionResult:
    result = retry_state.outcome.result()
    retries = retry_state.attempt_number - 1
    result.retry_count = retries
    result.error.details = {**result.error.details, "retries": retries}
    logger.error(
        f"[{result.transaction_id}] Giving up after {retries} retries: {result.error.message}",
        extra={"transaction_id": result.transaction_id, "retries": retries},
    )
    return result


async def retry_transaction(
    attempt_fn: Callable[[], Awaitable[TransactionResult]],
    *,
    max_retries: int = 2,
    base_delay: float = 0.1,
    sleep: Callable[[float], Awaitable] = asyncio.sleep,
) -> TransactionResult:
    """Run ``attempt_fn`` until it succeeds or fails with a non-transient error.

    Every attempt is a fresh transaction. Domain errors, timeouts and capacity
    rejections are returned as-is on the first failure. Retry ``n`` waits
    ``base_delay * 2**(n-1)`` plus up to ``base_delay / 10`` of jitter.
    """
    attempts = 0

    async def attempt() -> TransactionResult:
        nonlocal attempts
        attempts += 1
        result = await attempt_fn()
        result.retry_count = attempts - 1
        return result

    retrying = AsyncRetrying(
        retry=retry_if_result(_is_transient_failure),
        stop=stop_after_attempt(max_retries + 1),
        wait=wait_exponential(multiplier=base_delay)
        + wait_random(0, base_delay * JITTER_RATIO),
        before_sleep=_log_retry,
        retry_error_callback=_give_up,
        sleep=sleep,
    )
    return await retrying(attempt)

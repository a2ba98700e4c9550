# marketsync/core/batching.py
"""
Bounded fan-out for per-listing work.

Items are split into fixed-size batches. Inside a batch the coroutines run
concurrently (capped by a semaphore) and every item settles on its own, so one
failure never cancels its siblings. Batches run one after another with a pause
in between to stay under the marketplace rate limits.
"""

import asyncio
import logging
from dataclasses import dataclass
from typing import Any, Awaitable, Callable, Generic, Iterable, List, Optional, Sequence, Tuple, Type, TypeVar

logger = logging.getLogger(__name__)

T = TypeVar("T")
R = TypeVar("R")


@dataclass(frozen=True)
class ItemResult(Generic[T, R]):
    """Outcome for a single item: ``value`` on success, ``error`` on failure."""
    item: T
    value: Optional[R] = None
    error: Optional[BaseException] = None

    @property
    def ok(self) -> bool:
        return self.error is None


def chunked(items: Sequence[T], size: int) -> Iterable[List[T]]:
    if size < 1:
        raise ValueError("chunk size must be positive")
    for start in range(0, len(items), size):
        yield list(items[start:start + size])


async def run_batched(
    items: Sequence[T],
    worker: Callable[[T], Awaitable[R]],
    batch_size: int = 5,
    concurrency: int = 5,
    delay_seconds: float = 0.0,
    stop_on: Tuple[Type[BaseException], ...] = (),
    sleep: Callable[[float], Awaitable[Any]] = asyncio.sleep,
) -> List[ItemResult]:
    """
    Run ``worker`` over ``items`` and return one ItemResult per item, in order.

    When an item fails with one of the ``stop_on`` exceptions the current
    batch still settles, but no later batch is started. The caller gets the
    partial results and decides what the stop means.
    """
    semaphore = asyncio.Semaphore(max(1, concurrency))
    results: List[ItemResult] = []

    async def _guarded(item: T) -> R:
        async with semaphore:
            return await worker(item)

    batches = list(chunked(list(items), batch_size))
    for index, batch in enumerate(batches):
        outcomes = await asyncio.gather(*(_guarded(item) for item in batch), return_exceptions=True)

        stop_error = None
        for item, outcome in zip(batch, outcomes):
            if isinstance(outcome, BaseException):
                if not isinstance(outcome, Exception):
                    # CancelledError / KeyboardInterrupt
                    raise outcome
                results.append(ItemResult(item=item, error=outcome))
                if stop_on and isinstance(outcome, stop_on) and stop_error is None:
                    stop_error = outcome
            else:
                results.append(ItemResult(item=item, value=outcome))

        if stop_error is not None:
            logger.warning(f"Stopping batched run after batch {index + 1}/{len(batches)}: {stop_error}")
            break

        if delay_seconds and index < len(batches) - 1:
            await sleep(delay_seconds)

    return results

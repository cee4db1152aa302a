"""
Bounded-concurrency batch execution.

Items are cut into consecutive chunks of `batch_size`. Every item of a chunk
runs concurrently; the next chunk starts only when the whole chunk has
settled. Results come back in input order, not completion order.
"""

import asyncio
import math
from typing import Awaitable, Callable, Optional, Sequence, TypeVar

from shared.logging import get_logger

log = get_logger("llm", "batching")

T = TypeVar("T")
R = TypeVar("R")

Processor = Callable[[T, int], Awaitable[R]]
BatchCallback = Callable[[int, int], None]


async def process_in_batches(
    items: Sequence[T],
    processor: Processor,
    batch_size: int,
    on_batch_start: Optional[BatchCallback] = None,
) -> list[R]:
    """
    Run `processor(item, original_index)` over `items`, `batch_size` at a time.

    Fail-fast: the first failure in a chunk cancels its still-running
    siblings and propagates; later chunks never start and no partial result
    is returned. Callers that want to keep going past a failed item must
    catch inside the processor and return the failure as a value.

    Args:
        items: Items to process
        processor: Coroutine function taking (item, original_index)
        batch_size: Maximum number of concurrent calls (>= 1)
        on_batch_start: Called with (1-based batch index, total batches)

    Returns:
        One result per item, in input order
    """
    if batch_size < 1:
        raise ValueError(f"batch_size must be >= 1, got {batch_size}")

    items = list(items)
    total_batches = math.ceil(len(items) / batch_size)
    results: list[R] = []

    for batch_index, start in enumerate(range(0, len(items), batch_size), start=1):
        if on_batch_start:
            on_batch_start(batch_index, total_batches)

        chunk = items[start:start + batch_size]
        log.debug(
            "llm.batching.batch_start",
            batch=batch_index,
            total_batches=total_batches,
            size=len(chunk),
        )

        tasks = [
            asyncio.ensure_future(processor(item, start + offset))
            for offset, item in enumerate(chunk)
        ]
        try:
            batch_results = await asyncio.gather(*tasks)
        except BaseException:
            for task in tasks:
                task.cancel()
            await asyncio.gather(*tasks, return_exceptions=True)
            log.debug("llm.batching.batch_failed", batch=batch_index)
            raise

        results.extend(batch_results)

    return results

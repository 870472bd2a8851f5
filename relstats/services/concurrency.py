"""Bounded worker pools over FIFO queues."""

import asyncio
import logging
from collections import deque
from typing import Any, Awaitable, Callable, Iterable, Optional, TypeVar

from relstats.core.constants import MAX_WORKER_POOL_SIZE


logger = logging.getLogger(__name__)

T = TypeVar("T")


def worker_pool_size(configured: int, queue_length: int) -> int:
    """Number of workers for a queue: ``max(1, min(configured, 8, queue_length))``."""
    return max(1, min(configured, MAX_WORKER_POOL_SIZE, queue_length))


async def gather_or_cancel(*aws: Awaitable[Any]) -> list[Any]:
    """Run awaitables concurrently; if one fails, cancel the rest and re-raise."""
    tasks = [asyncio.ensure_future(aw) for aw in aws]
    try:
        return await asyncio.gather(*tasks)
    except BaseException:
        for task in tasks:
            if not task.done():
                task.cancel()
        # Let cancelled tasks unwind before the original error propagates
        await asyncio.gather(*tasks, return_exceptions=True)
        raise


async def run_worker_pool(
    items: Iterable[T],
    handler: Callable[[T], Awaitable[None]],
    configured_size: int,
    before_item: Optional[Callable[[], None]] = None,
    name: str = "pool",
) -> None:
    """Drain a FIFO queue with a bounded number of concurrent workers.

    Each worker pops the next item and awaits ``handler`` for it until the
    queue is empty. Workers are sequential internally.

    Args:
        items: Queue contents, in order.
        handler: Coroutine function run for each item.
        configured_size: Requested concurrency before bounding.
        before_item: Called before each pop (e.g. a cancellation check).
        name: Label for logs.
    """
    queue: deque[T] = deque(items)
    if not queue:
        return
    size = worker_pool_size(configured_size, len(queue))
    logger.debug(f"Starting {name} with {size} worker(s) for {len(queue)} item(s)")

    async def worker() -> None:
        while queue:
            if before_item is not None:
                before_item()
            item = queue.popleft()
            await handler(item)

    await gather_or_cancel(*(worker() for _ in range(size)))

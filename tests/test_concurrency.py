"""Tests for bounded worker pools and cancel-on-failure gathering."""

import asyncio

import pytest

from relstats.services.concurrency import gather_or_cancel, run_worker_pool, worker_pool_size


class TestWorkerPoolSize:
    @pytest.mark.parametrize(
        "configured,queue_length,expected",
        [
            (8, 2, 2),
            (2, 6, 2),
            (12, 20, 8),
            (1, 0, 1),
            (0, 5, 1),
        ],
    )
    def test_bounds(self, configured, queue_length, expected):
        assert worker_pool_size(configured, queue_length) == expected


class TrackingHandler:
    """Handler that records processing order and peak concurrency."""

    def __init__(self, fail_on=None):
        self.fail_on = fail_on
        self.started: list[int] = []
        self.finished: list[int] = []
        self.cancelled: list[int] = []
        self.in_flight = 0
        self.max_in_flight = 0

    async def __call__(self, item: int) -> None:
        self.started.append(item)
        self.in_flight += 1
        self.max_in_flight = max(self.max_in_flight, self.in_flight)
        try:
            await asyncio.sleep(0)
            if item == self.fail_on:
                raise RuntimeError(f"item {item} failed")
            await asyncio.sleep(0.01)
            self.finished.append(item)
        except asyncio.CancelledError:
            self.cancelled.append(item)
            raise
        finally:
            self.in_flight -= 1


class TestRunWorkerPool:
    @pytest.mark.asyncio
    async def test_processes_every_item_in_fifo_order(self):
        handler = TrackingHandler()

        await run_worker_pool(range(6), handler, configured_size=2)

        assert handler.started == [0, 1, 2, 3, 4, 5]
        assert sorted(handler.finished) == [0, 1, 2, 3, 4, 5]
        assert handler.max_in_flight == 2

    @pytest.mark.asyncio
    async def test_empty_queue_is_a_no_op(self):
        handler = TrackingHandler()

        await run_worker_pool([], handler, configured_size=4)

        assert handler.started == []

    @pytest.mark.asyncio
    async def test_before_item_can_stop_the_pool(self):
        handler = TrackingHandler()
        polls = []

        def before_item():
            polls.append(1)
            if len(polls) > 2:
                raise RuntimeError("stop")

        with pytest.raises(RuntimeError, match="stop"):
            await run_worker_pool(range(5), handler, configured_size=1, before_item=before_item)

        assert handler.started == [0, 1]

    @pytest.mark.asyncio
    async def test_failure_cancels_sibling_workers(self):
        handler = TrackingHandler(fail_on=0)

        with pytest.raises(RuntimeError, match="item 0 failed"):
            await run_worker_pool(range(4), handler, configured_size=2)

        assert handler.cancelled == [1]
        assert handler.in_flight == 0
        assert 2 not in handler.started


class TestGatherOrCancel:
    @pytest.mark.asyncio
    async def test_returns_results_in_order(self):
        async def value(v):
            await asyncio.sleep(0)
            return v

        assert await gather_or_cancel(value(1), value(2)) == [1, 2]

    @pytest.mark.asyncio
    async def test_cancels_remaining_on_failure(self):
        cancelled = []

        async def slow():
            try:
                await asyncio.sleep(10)
            except asyncio.CancelledError:
                cancelled.append(True)
                raise

        async def failing():
            await asyncio.sleep(0)
            raise ValueError("bad")

        with pytest.raises(ValueError, match="bad"):
            await gather_or_cancel(slow(), failing())

        assert cancelled == [True]

"""Tests for the batch runner and the flush buffer policy."""

from __future__ import annotations

import asyncio
from unittest.mock import AsyncMock, patch

import pytest

from convergence.batching import FlushBuffer, run_in_batches, should_flush


class FakeClock:
    def __init__(self, t: float = 0.0) -> None:
        self.t = t

    def __call__(self) -> float:
        return self.t

    def advance(self, seconds: float) -> None:
        self.t += seconds


# ---------------------------------------------------------------------------
# run_in_batches
# ---------------------------------------------------------------------------


class TestRunInBatches:
    async def test_failure_is_isolated(self) -> None:
        async def _worker(n: int) -> int:
            if n == 3:
                raise ValueError("bad item")
            return n * 10

        outcome = await run_in_batches(range(6), _worker, batch_size=2, delay=0)

        assert outcome.results == [0, 10, 20, 40, 50]
        assert [item for item, _ in outcome.failed] == [3]
        assert isinstance(outcome.failed[0][1], ValueError)

    async def test_timeout_fails_only_slow_item(self) -> None:
        async def _worker(n: int) -> int:
            if n == 1:
                await asyncio.sleep(5)
            return n

        outcome = await run_in_batches([0, 1, 2], _worker, batch_size=3, delay=0, timeout=0.05)

        assert outcome.results == [0, 2]
        assert outcome.failed[0][0] == 1
        assert isinstance(outcome.failed[0][1], asyncio.TimeoutError)

    async def test_sleeps_between_batches_only(self) -> None:
        async def _worker(n: int) -> int:
            return n

        with patch("convergence.batching.asyncio.sleep", new_callable=AsyncMock) as mock_sleep:
            await run_in_batches(range(5), _worker, batch_size=2, delay=0.5)

        assert mock_sleep.await_count == 2
        mock_sleep.assert_awaited_with(0.5)

    async def test_empty_input(self) -> None:
        worker = AsyncMock()
        outcome = await run_in_batches([], worker)
        assert outcome.succeeded == []
        worker.assert_not_awaited()


# ---------------------------------------------------------------------------
# Flush policy
# ---------------------------------------------------------------------------


class TestShouldFlush:
    @pytest.mark.parametrize(
        "size,age,expected",
        [
            (0, None, False),
            (0, 999.0, False),
            (1, None, False),
            (1, 4.9, False),
            (1, 5.0, True),
            (10, 0.0, True),
            (11, None, True),
            (9, 4.0, False),
        ],
    )
    def test_policy(self, size, age, expected) -> None:
        assert should_flush(size, age, max_size=10, max_age=5.0) is expected


class TestFlushBuffer:
    def test_flushes_on_size(self) -> None:
        buf = FlushBuffer(max_size=3, max_age=60.0, clock=FakeClock())
        assert buf.add("a") == []
        assert buf.add("b") == []
        assert buf.add("c") == ["a", "b", "c"]
        assert len(buf) == 0
        assert buf.oldest_age is None

    def test_flushes_on_age(self) -> None:
        clock = FakeClock()
        buf = FlushBuffer(max_size=100, max_age=5.0, clock=clock)
        buf.add(1)
        clock.advance(3.0)
        assert buf.add(2) == []
        assert buf.oldest_age == pytest.approx(3.0)
        clock.advance(2.0)
        assert buf.due() is True
        assert buf.add(3) == [1, 2, 3]

    def test_age_restarts_after_drain(self) -> None:
        clock = FakeClock()
        buf = FlushBuffer(max_size=100, max_age=5.0, clock=clock)
        buf.add(1)
        clock.advance(10.0)
        buf.drain()
        buf.add(2)
        assert buf.oldest_age == 0.0
        assert buf.due() is False

    def test_rejects_zero_size(self) -> None:
        with pytest.raises(ValueError):
            FlushBuffer(max_size=0, max_age=1.0)

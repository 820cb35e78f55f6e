"""Bounded concurrency helpers: batch runner and size/age flush buffer."""

from __future__ import annotations

import asyncio
import logging
import time
from dataclasses import dataclass, field
from typing import Any, Awaitable, Callable, Generic, Iterable, TypeVar

logger = logging.getLogger(__name__)

T = TypeVar("T")
R = TypeVar("R")


# ---------------------------------------------------------------------------
# Batch runner
# ---------------------------------------------------------------------------


@dataclass
class BatchOutcome(Generic[T, R]):
    """Per-item results of :func:`run_in_batches`."""

    succeeded: list[tuple[T, R]] = field(default_factory=list)
    failed: list[tuple[T, BaseException]] = field(default_factory=list)

    @property
    def results(self) -> list[R]:
        return [r for _, r in self.succeeded]


async def run_in_batches(
    items: Iterable[T],
    worker: Callable[[T], Awaitable[R]],
    *,
    batch_size: int = 10,
    delay: float = 0.5,
    timeout: float | None = 20.0,
    label: str = "item",
) -> BatchOutcome[T, R]:
    """Run *worker* over *items*, ``batch_size`` at a time.

    Items within a batch run concurrently.  Each call is bounded by
    *timeout*; a timeout or exception fails that item only and is logged,
    the rest of the batch and later batches still run.  Batches are separated
    by *delay* seconds to respect upstream rate limits.
    """
    pending = list(items)
    outcome: BatchOutcome[T, R] = BatchOutcome()

    async def _guarded(item: T) -> Any:
        if timeout is None:
            return await worker(item)
        return await asyncio.wait_for(worker(item), timeout=timeout)

    for start in range(0, len(pending), batch_size):
        batch = pending[start:start + batch_size]
        results = await asyncio.gather(
            *(_guarded(item) for item in batch), return_exceptions=True
        )
        for item, result in zip(batch, results):
            if isinstance(result, asyncio.CancelledError):
                raise result
            if isinstance(result, BaseException):
                if isinstance(result, asyncio.TimeoutError):
                    logger.warning("%s %s timed out after %.1fs", label, item, timeout)
                else:
                    logger.warning(
                        "%s %s failed: %s", label, item, result, exc_info=result
                    )
                outcome.failed.append((item, result))
            else:
                outcome.succeeded.append((item, result))

        if start + batch_size < len(pending) and delay > 0:
            await asyncio.sleep(delay)

    return outcome


# ---------------------------------------------------------------------------
# Flush buffer
# ---------------------------------------------------------------------------


def should_flush(
    size: int,
    oldest_age: float | None,
    max_size: int,
    max_age: float,
) -> bool:
    """Flush policy: at least ``max_size`` entries OR the oldest is ``max_age`` old.

    An empty buffer never needs flushing.
    """
    if size <= 0:
        return False
    if size >= max_size:
        return True
    return oldest_age is not None and oldest_age >= max_age


class FlushBuffer(Generic[T]):
    """Bounded in-memory buffer drained by the :func:`should_flush` policy.

    ``add`` returns the drained batch when the policy fires, otherwise an
    empty list.  ``drain`` empties the buffer unconditionally.
    """

    def __init__(
        self,
        max_size: int,
        max_age: float,
        clock: Callable[[], float] = time.monotonic,
    ) -> None:
        if max_size < 1:
            raise ValueError("max_size must be >= 1")
        self.max_size = max_size
        self.max_age = max_age
        self._clock = clock
        self._items: list[T] = []
        self._oldest_at: float | None = None

    def __len__(self) -> int:
        return len(self._items)

    @property
    def oldest_age(self) -> float | None:
        if self._oldest_at is None:
            return None
        return self._clock() - self._oldest_at

    def due(self) -> bool:
        return should_flush(len(self._items), self.oldest_age, self.max_size, self.max_age)

    def add(self, item: T) -> list[T]:
        if not self._items:
            self._oldest_at = self._clock()
        self._items.append(item)
        if self.due():
            return self.drain()
        return []

    def drain(self) -> list[T]:
        items, self._items = self._items, []
        self._oldest_at = None
        return items

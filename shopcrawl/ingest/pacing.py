"""Delays, backoff and the cooperative run-time budget.

Every sleep in the crawl goes through `pause`, so one patch point controls
pacing in tests.
"""

import asyncio
import random
import time
from typing import Optional


async def pause(seconds: float) -> None:
    if seconds > 0:
        await asyncio.sleep(seconds)


async def random_delay(bounds: tuple[float, float]) -> float:
    """Sleep for a uniformly random duration within `bounds` and return it."""
    low, high = bounds
    delay = random.uniform(low, high)
    await pause(delay)
    return delay


def backoff_delay(attempt: int) -> float:
    """Exponential backoff with jitter: 2**attempt + U(1, 3) seconds."""
    return (2 ** attempt) + random.uniform(1, 3)


class RunBudget:
    """Wall-clock budget for a run, checked at page and listing boundaries."""

    def __init__(self, seconds: Optional[float]):
        self.seconds = seconds
        self._started = time.monotonic()

    @property
    def elapsed(self) -> float:
        return time.monotonic() - self._started

    @property
    def remaining(self) -> Optional[float]:
        if self.seconds is None:
            return None
        return max(0.0, self.seconds - self.elapsed)

    def exceeded(self) -> bool:
        return self.seconds is not None and self.elapsed >= self.seconds

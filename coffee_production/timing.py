"""Clock abstraction used for timestamps and simulated processing latency."""

from __future__ import annotations

import asyncio
from datetime import datetime, timedelta, timezone
from typing import List, Optional


class Clock:
    """Wall clock backed by :mod:`asyncio` sleeps."""

    def now(self) -> datetime:
        return datetime.now(timezone.utc)

    async def sleep(self, seconds: float) -> None:
        await asyncio.sleep(max(seconds, 0.0))


class ManualClock(Clock):
    """Deterministic clock for tests and dry runs.

    Sleeping never blocks; it only yields to the event loop and moves the
    clock forward by the requested amount.
    """

    def __init__(self, start: Optional[datetime] = None) -> None:
        self._now = start or datetime(2024, 1, 1, 8, 0, tzinfo=timezone.utc)
        self.sleeps: List[float] = []

    def now(self) -> datetime:
        return self._now

    def advance(self, seconds: float = 0.0, *, minutes: float = 0.0) -> datetime:
        self._now += timedelta(seconds=seconds, minutes=minutes)
        return self._now

    async def sleep(self, seconds: float) -> None:
        self.sleeps.append(seconds)
        self.advance(max(seconds, 0.0))
        await asyncio.sleep(0)


__all__ = ["Clock", "ManualClock"]

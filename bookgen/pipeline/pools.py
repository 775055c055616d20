"""Bounded worker pools for provider calls.

A pool is a semaphore sized from provider configuration plus in-flight
accounting, so runs can report and tests can assert the concurrency high-water
mark per pool.
"""

from __future__ import annotations

import asyncio
from collections.abc import AsyncIterator
from contextlib import asynccontextmanager


class WorkerPool:
    """Bounded-concurrency gate for one category of provider calls."""

    def __init__(self, name: str, size: int | None) -> None:
        self.name = name
        self.size = max(1, size or 1)
        self._semaphore = asyncio.Semaphore(self.size)
        self.in_flight = 0
        self.high_water_mark = 0

    @asynccontextmanager
    async def slot(self) -> AsyncIterator[None]:
        """Hold one pool slot for the duration of the `async with` block."""

        async with self._semaphore:
            self.in_flight += 1
            self.high_water_mark = max(self.high_water_mark, self.in_flight)
            try:
                yield
            finally:
                self.in_flight -= 1

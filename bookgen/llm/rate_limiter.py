"""Rate limiting for provider calls.

Responsibilities:
- Cap the rate at which calls against one provider are started.
- Stay independent from pool concurrency: a caller holds a pool slot first and
  then waits here for a start token.
- Serve waiters in FIFO order and observe cancellation while waiting.
"""

from __future__ import annotations

import asyncio
from collections.abc import Awaitable, Callable
from dataclasses import dataclass, field
from time import monotonic
from typing import TYPE_CHECKING

from ..telemetry.logger import RunLogger

if TYPE_CHECKING:
    from ..pipeline.cancellation import CancellationToken


def interval_from_rate(rpm: int | None = None, qps: int | None = None) -> float:
    """Return the minimum start interval in seconds; `qps` wins over `rpm`."""

    if qps is not None and qps > 0:
        return 1.0 / qps
    if rpm is not None and rpm > 0:
        return 60.0 / rpm
    return 0.0


@dataclass(slots=True)
class RateLimiter:
    """Per-provider minimum-interval limiter with FIFO waiters.

    This behaves like a token bucket of capacity one that refills every
    `min_interval_seconds`.
    """

    min_interval_seconds: float = 0.0
    clock: Callable[[], float] = monotonic
    sleeper: Callable[[float], Awaitable[None]] = asyncio.sleep
    poll_interval_seconds: float = 1.0
    name: str = "provider"
    run_logger: RunLogger | None = None
    _next_allowed_at: float = 0.0
    _lock: asyncio.Lock | None = None
    _lock_loop: asyncio.AbstractEventLoop | None = None
    granted: int = field(default=0)

    @classmethod
    def from_rate(
        cls,
        rpm: int | None = None,
        qps: int | None = None,
        **kwargs: object,
    ) -> RateLimiter:
        return cls(min_interval_seconds=interval_from_rate(rpm=rpm, qps=qps), **kwargs)

    def _get_lock(self) -> asyncio.Lock:
        loop = asyncio.get_running_loop()
        if self._lock is None or self._lock_loop is not loop:
            self._lock = asyncio.Lock()
            self._lock_loop = loop
        return self._lock

    async def acquire(self, token: CancellationToken | None = None) -> None:
        """Suspend until the provider has a free start slot.

        Raises:
            CancellationRequested: If `token` is canceled before a slot is granted.
        """

        if token is not None:
            token.raise_if_canceled()
        if self.min_interval_seconds <= 0.0:
            self.granted += 1
            return

        waited = False
        async with self._get_lock():
            while True:
                if token is not None:
                    token.raise_if_canceled()
                wait_seconds = self._next_allowed_at - self.clock()
                if wait_seconds <= 0.0:
                    break
                if not waited and self.run_logger is not None:
                    self.run_logger.debug(
                        "rate_limit_wait", provider=self.name, wait_seconds=f"{wait_seconds:.3f}"
                    )
                waited = True
                await self.sleeper(min(wait_seconds, self.poll_interval_seconds))
            self._next_allowed_at = self.clock() + self.min_interval_seconds
            self.granted += 1


class RateLimiterRegistry:
    """Hand out one shared `RateLimiter` per provider identity."""

    def __init__(
        self,
        *,
        clock: Callable[[], float] = monotonic,
        sleeper: Callable[[float], Awaitable[None]] = asyncio.sleep,
        poll_interval_seconds: float = 1.0,
        run_logger: RunLogger | None = None,
    ) -> None:
        self._clock = clock
        self._sleeper = sleeper
        self._poll_interval_seconds = poll_interval_seconds
        self._run_logger = run_logger
        self._limiters: dict[str, RateLimiter] = {}

    def limiter_for(self, key: str, rpm: int | None = None, qps: int | None = None) -> RateLimiter:
        """Return the limiter for `key`, creating it from `rpm`/`qps` on first use."""

        limiter = self._limiters.get(key)
        if limiter is None:
            limiter = RateLimiter.from_rate(
                rpm=rpm,
                qps=qps,
                clock=self._clock,
                sleeper=self._sleeper,
                poll_interval_seconds=self._poll_interval_seconds,
                name=key,
                run_logger=self._run_logger,
            )
            self._limiters[key] = limiter
        return limiter

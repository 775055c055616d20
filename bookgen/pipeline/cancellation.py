"""Cooperative cancellation for task runs.

A run shares one `CancellationToken` with every suspension point it owns: the
pause loop, rate-limiter waits, and the checks around each backend call. The
token is a polled flag; nothing is interrupted preemptively.
"""

from __future__ import annotations

import asyncio
from collections.abc import Awaitable, Callable

from ..errors import CancellationRequested


class CancellationToken:
    """Shared flag requesting cooperative termination of a run."""

    __slots__ = ("_canceled",)

    def __init__(self) -> None:
        self._canceled = False

    @property
    def is_canceled(self) -> bool:
        return self._canceled

    def cancel(self) -> None:
        """Request cancellation; idempotent."""

        self._canceled = True

    def raise_if_canceled(self) -> None:
        """Raise `CancellationRequested` when cancellation has been requested."""

        if self._canceled:
            raise CancellationRequested("Run was canceled.")

    async def sleep(
        self,
        seconds: float,
        *,
        poll_interval_seconds: float = 1.0,
        sleeper: Callable[[float], Awaitable[None]] = asyncio.sleep,
    ) -> None:
        """Sleep for `seconds`, observing cancellation at least every poll interval."""

        remaining = max(0.0, seconds)
        step = poll_interval_seconds if poll_interval_seconds > 0 else remaining
        while True:
            self.raise_if_canceled()
            if remaining <= 0.0:
                return
            delay = min(remaining, step)
            await sleeper(delay)
            remaining -= delay

"""Shared cool-down window for every request issued by one client.

A 429 from the API engages the gate for ``retry_after`` plus a margin; every
request consults it before its next attempt. Waiters are not queued: once the
deadline passes they all proceed at once.

Reads take a snapshot of a single attribute and never lock, while writers
serialize on a dedicated mutex. An attempt that waits on the gate and later
engages it therefore never holds anything it has to upgrade.
"""

from __future__ import annotations

import asyncio
import logging
import threading
import time
from typing import Awaitable, Callable

from .exceptions import AsharaCancelledError

logger = logging.getLogger(__name__)


class _BaseRateGate:
    def __init__(self, *, clock: Callable[[], float] = time.monotonic) -> None:
        self._clock = clock
        self._deadline: float | None = None
        self._write_lock = threading.Lock()

    @property
    def deadline(self) -> float | None:
        return self._deadline

    @property
    def engaged(self) -> bool:
        return self.remaining() > 0

    def remaining(self) -> float:
        deadline = self._deadline
        if deadline is None:
            return 0.0
        return max(0.0, deadline - self._clock())

    def mark_unavailable(self, seconds: float) -> float:
        """Close the gate for at least ``seconds`` and return the deadline.

        A deadline already further in the future is kept.
        """
        if seconds < 0:
            raise ValueError("seconds must be non-negative")
        with self._write_lock:
            candidate = self._clock() + seconds
            if self._deadline is None or candidate > self._deadline:
                self._deadline = candidate
            deadline = self._deadline
        logger.warning("Rate gate closed for %.2fs", seconds)
        return deadline

    def reset(self) -> None:
        with self._write_lock:
            self._deadline = None


class RateGate(_BaseRateGate):
    """Gate for threads sharing a synchronous client."""

    def __init__(
        self,
        *,
        clock: Callable[[], float] = time.monotonic,
        sleep: Callable[[float], None] = time.sleep,
    ) -> None:
        super().__init__(clock=clock)
        self._sleep = sleep

    def wait(self, cancel_event: threading.Event | None = None) -> float:
        """Block until the gate opens; return the seconds spent waiting."""
        waited = 0.0
        while True:
            remaining = self.remaining()
            if remaining <= 0:
                return waited
            logger.debug("Waiting %.2fs for rate gate", remaining)
            if cancel_event is None:
                self._sleep(remaining)
            elif cancel_event.wait(remaining):
                raise AsharaCancelledError("Request cancelled while waiting for rate limit")
            waited += remaining


class AsyncRateGate(_BaseRateGate):
    """Gate for tasks sharing an asynchronous client."""

    def __init__(
        self,
        *,
        clock: Callable[[], float] = time.monotonic,
        sleep: Callable[[float], Awaitable[None]] = asyncio.sleep,
    ) -> None:
        super().__init__(clock=clock)
        self._sleep = sleep

    async def wait(self) -> float:
        waited = 0.0
        while True:
            remaining = self.remaining()
            if remaining <= 0:
                return waited
            logger.debug("Waiting %.2fs for rate gate", remaining)
            await self._sleep(remaining)
            waited += remaining

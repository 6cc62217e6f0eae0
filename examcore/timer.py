"""Deadline countdown for an active exam session."""
import asyncio
import contextlib
import logging
import math
from datetime import datetime
from typing import Callable, Optional

from engine import TICK_SECONDS
from examcore.database import utcnow

logger = logging.getLogger(__name__)


class DeadlineTimer:
    """
    Cooperative countdown towards an absolute deadline.

    Remaining time is always recomputed from the deadline, never decremented,
    so it cannot drift and a reload cannot extend it. `on_expire` fires exactly
    once, after which no further ticks are scheduled.

    Use as an async context manager to own the recurring schedule:

        async with DeadlineTimer(deadline, on_expire) as timer:
            ...
    """

    def __init__(
        self,
        deadline: datetime,
        on_expire: Callable[[], None],
        clock: Callable[[], datetime] = utcnow,
        interval: float = TICK_SECONDS,
    ):
        self.deadline = deadline
        self.interval = interval
        self._on_expire = on_expire
        self._clock = clock
        self._last: Optional[int] = None
        self._fired = False
        self._cancelled = False
        self._task: Optional[asyncio.Task] = None

    @property
    def fired(self) -> bool:
        return self._fired

    @property
    def cancelled(self) -> bool:
        return self._cancelled

    def remaining(self, now: Optional[datetime] = None) -> int:
        """Whole seconds left, never negative and never increasing."""
        now = now or self._clock()
        seconds = max(0, math.ceil((self.deadline - now).total_seconds()))
        if self._last is not None:
            seconds = min(seconds, self._last)
        self._last = seconds
        return seconds

    def tick(self) -> int:
        """One countdown step. Fires on_expire when the deadline is reached."""
        if self._cancelled or self._fired:
            return self._last or 0
        left = self.remaining()
        if left == 0:
            self._fired = True
            logger.info("Deadline reached, expiring session")
            self._on_expire()
        return left

    async def run(self):
        while not (self._cancelled or self._fired):
            left = self.tick()
            if left == 0:
                break
            await asyncio.sleep(min(self.interval, left))

    def start(self) -> asyncio.Task:
        if self._task is None:
            self._task = asyncio.get_running_loop().create_task(self.run())
        return self._task

    def cancel(self):
        """Tear down the schedule. Safe to call more than once."""
        self._cancelled = True
        if self._task is not None and not self._task.done():
            self._task.cancel()

    async def __aenter__(self) -> "DeadlineTimer":
        self.start()
        return self

    async def __aexit__(self, exc_type, exc, tb):
        self.cancel()
        if self._task is not None:
            with contextlib.suppress(asyncio.CancelledError):
                await self._task

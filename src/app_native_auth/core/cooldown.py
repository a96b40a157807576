"""Resend cooldown for out-of-band one-time codes.

After a code has been dispatched the user must wait :attr:`ResendCooldown.duration`
seconds before asking for another one.  The countdown is an ``asyncio`` task
owned by the orchestrator instance; it only ever mutates its own counter.
"""

from __future__ import annotations

import asyncio
import contextlib
import logging
from typing import Final

from app_native_auth.core.clock import Sleeper, default_sleep

_LOG = logging.getLogger("app-native-auth.core.cooldown")

DEFAULT_DURATION: Final[int] = 60


class ResendCooldown:
    """Integer countdown ticking once per *interval* seconds."""

    def __init__(
        self,
        duration: int = DEFAULT_DURATION,
        *,
        interval: float = 1.0,
        sleep: Sleeper = default_sleep,
    ) -> None:
        if duration < 0:
            raise ValueError("cooldown duration must not be negative")
        self.duration = duration
        self.interval = interval
        self._sleep = sleep
        self._remaining = 0
        self._task: asyncio.Task[None] | None = None

    @property
    def remaining(self) -> int:
        return self._remaining

    @property
    def active(self) -> bool:
        return self._remaining > 0

    def start(self) -> None:
        """Start (or restart) the countdown from :attr:`duration`."""
        self.cancel()
        self._remaining = self.duration
        if self._remaining > 0:
            self._task = asyncio.get_running_loop().create_task(self._run())
        _LOG.debug("Resend cooldown started (%ss)", self.duration)

    def cancel(self) -> None:
        """Stop the countdown and clear the remaining time."""
        if self._task is not None and not self._task.done():
            self._task.cancel()
        self._task = None
        self._remaining = 0

    async def wait(self) -> None:
        """Suspend until the current countdown (if any) has reached zero."""
        task = self._task
        if task is None:
            return
        with contextlib.suppress(asyncio.CancelledError):
            await task

    async def _run(self) -> None:
        while self._remaining > 0:
            await self._sleep(self.interval)
            self._remaining -= 1
        self._task = None
        _LOG.debug("Resend cooldown elapsed")

"""Clock and sleep abstractions for testable time handling in the flow core.

This module defines a `Clock` protocol representing callables that return the
current UNIX timestamp as ``float`` and a `Sleeper` protocol for awaitable
delays.  All time-based decisions inside the core package (token expiry,
resend cooldown, scheduled restarts) MUST depend on an injected ``Clock`` or
``Sleeper`` rather than calling ``time.time()`` or ``asyncio.sleep()``
directly.

Example
-------
>>> from app_native_auth.core.clock import default_clock
>>> now = default_clock()
>>> isinstance(now, float)
True
"""

from __future__ import annotations

import asyncio
import time
from typing import Awaitable, Protocol, runtime_checkable


@runtime_checkable
class Clock(Protocol):
    """Callable protocol returning *seconds* since the UNIX epoch."""

    def __call__(self) -> float: ...


@runtime_checkable
class Sleeper(Protocol):
    """Callable protocol suspending the caller for *seconds*."""

    def __call__(self, seconds: float) -> Awaitable[None]: ...


def default_clock() -> float:
    """Default implementation that delegates to ``time.time()``.

    Returns
    -------
    float
        Seconds since the UNIX epoch.
    """
    return time.time()


async def default_sleep(seconds: float) -> None:
    """Default implementation that delegates to ``asyncio.sleep()``."""
    await asyncio.sleep(seconds)

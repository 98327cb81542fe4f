"""Injectable time sources, so every delay can be faked in tests."""

from __future__ import annotations

import asyncio
from collections.abc import Awaitable, Callable
from datetime import UTC, datetime

type Sleep = Callable[[float], Awaitable[None]]
type MonotonicClock = Callable[[], float]
type WallClock = Callable[[], datetime]


def utcnow() -> datetime:
    return datetime.now(tz=UTC)


async def real_sleep(seconds: float) -> None:
    if seconds > 0:
        await asyncio.sleep(seconds)

"""Cooperative wait helpers shared by every polling loop.

All suspension points in the orchestrator go through these three waits. State is
published by plain attribute writes and observed by polling, so a change becomes
visible to a waiter within one tick (block_while) or one poll (wait_until).
"""

from __future__ import annotations

import asyncio
from dataclasses import dataclass
from typing import Callable

Predicate = Callable[[], bool]

TICK_S = 0.1
POLL_S = 1.0


async def wait_tick(tick_s: float = TICK_S) -> None:
    """Yield to the scheduler for one tick."""
    await asyncio.sleep(tick_s)


async def wait_until(predicate: Predicate, timeout: int, poll_s: float = POLL_S) -> bool:
    """Poll `predicate` once per poll period for up to `timeout` polls.

    Returns True as soon as the predicate holds, False once the window runs out.
    Running out is not an error; callers re-check whatever they care about.
    """
    if predicate():
        return True
    for _ in range(max(0, timeout)):
        await asyncio.sleep(poll_s)
        if predicate():
            return True
    return False


async def block_while(predicate: Predicate, tick_s: float = TICK_S) -> None:
    """Yield every tick while `predicate` holds. No timeout: the predicate must resolve."""
    while predicate():
        await asyncio.sleep(tick_s)


@dataclass(frozen=True)
class Cadence:
    """The wait helpers bound to one tick / poll configuration."""

    tick_s: float = TICK_S
    poll_s: float = POLL_S

    async def tick(self) -> None:
        await wait_tick(self.tick_s)

    async def wait_until(self, predicate: Predicate, timeout: int) -> bool:
        return await wait_until(predicate, timeout, self.poll_s)

    async def block_while(self, predicate: Predicate) -> None:
        await block_while(predicate, self.tick_s)

    async def sleep_ticks(self, ticks: int) -> None:
        for _ in range(ticks):
            await wait_tick(self.tick_s)

"""Timers and background emissions.

Everything time-based in rxkit (debounce, delay, repeat, intervals,
liveness) goes through a Timer, so tests can swap the event loop clock
for a deterministic fake.

Emissions started from plain callbacks (timer ticks, emitter ``next``
calls) run as tasks. They are tracked here until done so they are never
garbage-collected mid-flight.
"""

from __future__ import annotations

import asyncio
from typing import Any, Awaitable, Callable, Protocol, TypeVar

T = TypeVar("T")


class TimerHandle(Protocol):
    def cancel(self) -> None: ...


class Timer(Protocol):
    """Schedules a callback after a delay in seconds."""

    def call_later(self, delay: float, callback: Callable[[], Any]) -> TimerHandle: ...


class LoopTimer:
    """Default timer: the running asyncio event loop."""

    __slots__ = ()

    def call_later(self, delay: float, callback: Callable[[], Any]) -> TimerHandle:
        return asyncio.get_running_loop().call_later(delay, callback)

    def __repr__(self) -> str:
        return "LoopTimer()"


default_timer: Timer = LoopTimer()

# Emissions running in the background, awaiting completion.
_background: set[asyncio.Task] = set()


def spawn(awaitable: Awaitable[T]) -> asyncio.Task[T]:
    """Run an awaitable as a tracked task. The task may be awaited or ignored."""
    task = asyncio.ensure_future(awaitable)
    _background.add(task)
    task.add_done_callback(_background.discard)
    return task


async def drain() -> None:
    """Wait until every background emission (including ones they spawn) is done."""
    loop = asyncio.get_running_loop()
    while tasks := [task for task in _background if task.get_loop() is loop]:
        await asyncio.gather(*tasks, return_exceptions=True)


def get_pending_count() -> int:
    """Number of background emissions in flight. Useful for testing."""
    return len(_background)

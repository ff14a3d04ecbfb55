"""Higher-order helpers the stream core is built on.

- debounce(run, delay): a delayed, cancelable wrapper with clear/flush/pending.
- create_awaiter(): a future paired with external resolve/reject handles.
- wait_for_next(subject, condition, delay): the first matching value, or TIMEOUT.
"""

from __future__ import annotations

import asyncio
from typing import Any, Callable, Generic, TypeVar

from rxkit._scheduling import Timer, TimerHandle, default_timer

T = TypeVar("T")


class _Timeout:
    def __repr__(self) -> str:
        return "TIMEOUT"


TIMEOUT = _Timeout()


class Debounced:
    """Callable returned by debounce().

    Each call cancels the pending run and schedules a new one with the
    latest arguments, so only the last call in a burst runs.
    """

    __slots__ = ("_run", "_delay", "_timer", "_handle", "_last_run")

    def __init__(self, run: Callable[..., Any], delay: float, timer: Timer) -> None:
        self._run = run
        self._delay = delay
        self._timer = timer
        self._handle: TimerHandle | None = None
        self._last_run: Callable[[], None] | None = None

    def __call__(self, *args: Any, **kwargs: Any) -> None:
        self._cancel()

        def _exec() -> None:
            self._handle = None
            self._last_run = None
            self._run(*args, **kwargs)

        self._last_run = _exec
        self._handle = self._timer.call_later(self._delay, _exec)

    def _cancel(self) -> None:
        if self._handle is not None:
            self._handle.cancel()
            self._handle = None

    def clear(self) -> None:
        """Drop the pending run without executing it."""
        self._cancel()
        self._last_run = None

    def flush(self) -> None:
        """Execute the pending run now, if any."""
        self._cancel()
        last_run, self._last_run = self._last_run, None
        if last_run is not None:
            last_run()

    def pending(self) -> bool:
        return self._last_run is not None


def debounce(run: Callable[..., Any], delay: float = 1.0, *, timer: Timer | None = None) -> Debounced:
    """Delay run until `delay` seconds pass without another call.

    Usage:
        save = debounce(lambda text: store.write(text), 0.5)
        save("a")
        save("ab")   # only "ab" is written, half a second later
        save.flush() # ...or right now
    """
    return Debounced(run, delay, timer or default_timer)


class Awaiter(Generic[T]):
    """External resolve/reject handles for a future. Calls after settlement are ignored."""

    __slots__ = ("_future",)

    def __init__(self, future: asyncio.Future[T]) -> None:
        self._future = future

    def resolve(self, value: T) -> None:
        if not self._future.done():
            self._future.set_result(value)

    def reject(self, error: BaseException) -> None:
        if not self._future.done():
            self._future.set_exception(error)


def create_awaiter() -> tuple[asyncio.Future[T], Awaiter[T]]:
    """Create a future on the running loop together with its Awaiter."""
    future: asyncio.Future[T] = asyncio.get_running_loop().create_future()
    return future, Awaiter(future)


async def wait_for_next(
    subject,
    condition: Callable[[T], bool],
    delay: float | None = None,
    *,
    timer: Timer | None = None,
) -> T | _Timeout:
    """Wait for the first value from subject that passes condition.

    Returns TIMEOUT if `delay` seconds pass first. With delay=None, waits forever.
    """
    future, awaiter = create_awaiter()

    def _on_value(value: T) -> None:
        if condition(value):
            awaiter.resolve(value)

    unsubscribe = subject.subscribe(_on_value)
    handle = None
    if delay is not None:
        handle = (timer or default_timer).call_later(delay, lambda: awaiter.resolve(TIMEOUT))
    try:
        return await future
    finally:
        unsubscribe()
        if handle is not None:
            handle.cancel()

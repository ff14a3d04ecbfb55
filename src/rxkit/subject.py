"""Subject and BehaviorSubject — hot publish points for application code.

A Subject is a single EventEmitter with one well-known key. Awaiting
next(data) waits for every subscriber, which gives the producer natural
backpressure.

The chain methods (map, filter, ...) are shortcuts for
to_observer().map(...), etc.
"""

from __future__ import annotations

import asyncio
from typing import Any, Awaitable, Callable, Generic, Sequence, TypeVar

from rxkit._scheduling import Timer, spawn
from rxkit.emitter import EventEmitter
from rxkit.observer import SPLIT_FLUSH_DELAY, Disconnect, IteratorContext, Observer

T = TypeVar("T")
U = TypeVar("U")

SUBJECT_EVENT = "subject"


class Subject(Generic[T]):
    """Multicast publish point without a retained value."""

    def __init__(self, *, timer: Timer | None = None) -> None:
        self._emitter = EventEmitter()
        self._timer = timer

    @property
    def has_listeners(self) -> bool:
        return self._emitter.has_listeners

    def subscribe(self, callback: Callable[[T], Any]) -> Disconnect:
        """Register callback. Returns a function that removes it."""
        self._emitter.subscribe(SUBJECT_EVENT, callback)
        return lambda: self._emitter.unsubscribe(SUBJECT_EVENT, callback)

    def once(self, callback: Callable[[T], Any]) -> Disconnect:
        return self._emitter.once(SUBJECT_EVENT, callback)

    def unsubscribe_all(self) -> None:
        self._emitter.unsubscribe_all()

    async def next(self, data: T) -> None:
        """Deliver data to the current subscribers and wait for them to settle."""
        await self._emitter.emit(SUBJECT_EVENT, data)

    def to_observer(self) -> Observer[T]:
        """An Observer view over this subject. Subscribes on first connect."""
        unsubscribe: Disconnect | None = None

        def _release() -> None:
            if unsubscribe is not None:
                unsubscribe()

        observer: Observer[T] = Observer(_release, timer=self._timer)

        def _attach() -> None:
            nonlocal unsubscribe
            unsubscribe = self.subscribe(observer.emit)

        observer._on_connect(_attach)
        return observer

    # ─── Chain shortcuts ─────────────────────────────────────────────────

    def map(self, callbackfn: Callable[[T], U]) -> Observer[U]:
        return self.to_observer().map(callbackfn)

    def flat_map(self, callbackfn: Callable[[T], Sequence[U] | U]) -> Observer[U]:
        return self.to_observer().flat_map(callbackfn)

    def reduce(self, callbackfn: Callable[[U, T], U], begin: U) -> Observer[U]:
        return self.to_observer().reduce(callbackfn, begin)

    def map_async(
        self,
        callbackfn: Callable[[T], Awaitable[U]],
        fallbackfn: Callable[[Exception], Any] | None = None,
    ) -> Observer[U]:
        return self.to_observer().map_async(callbackfn, fallbackfn)

    def filter(self, callbackfn: Callable[[T], bool]) -> Observer[T]:
        return self.to_observer().filter(callbackfn)

    def tap(self, callbackfn: Callable[[T], Any]) -> Observer[T]:
        return self.to_observer().tap(callbackfn)

    def operator(self, callbackfn: Callable[[Observer[T]], Observer[U]]) -> Observer[U]:
        return self.to_observer().operator(callbackfn)

    def split(self, window: float = SPLIT_FLUSH_DELAY) -> Observer[tuple]:
        return self.to_observer().split(window)

    def debounce(self, delay: float = 1.0) -> Observer[T]:
        return self.to_observer().debounce(delay)

    def delay(self, delay: float = 1.0) -> Observer[T]:
        return self.to_observer().delay(delay)

    def repeat(self, interval: float = 1.0) -> Observer[T]:
        return self.to_observer().repeat(interval)

    def merge(self, observer: Observer[U]) -> Observer[T | U]:
        return self.to_observer().merge(observer)

    def to_future(self) -> asyncio.Future[T]:
        return self.to_observer().to_future()

    def to_iterator_context(self) -> IteratorContext[T]:
        return self.to_observer().to_iterator_context()

    def __repr__(self) -> str:
        return f"{type(self).__name__}({self._emitter!r})"


class BehaviorSubject(Subject[T]):
    """A Subject that remembers the last published value.

    subscribe()/once() only see future values. Observers built with
    to_observer() receive the current value right after they connect,
    unless it is None or a newer value reaches them first.
    """

    def __init__(self, data: T | None = None, *, timer: Timer | None = None) -> None:
        super().__init__(timer=timer)
        self._data = data
        self._version = 0

    @property
    def data(self) -> T | None:
        return self._data

    async def next(self, data: T) -> None:
        self._data = data
        self._version += 1
        await super().next(data)

    def to_observer(self) -> Observer[T]:
        observer = super().to_observer()

        def _replay() -> None:
            version = self._version

            async def _deliver() -> None:
                # a newer next() already reached the observer
                if self._version != version or self._data is None:
                    return
                await observer.emit(self._data)

            spawn(_deliver())

        observer._on_connect(_replay)
        return observer

    def __repr__(self) -> str:
        return f"BehaviorSubject({self._data!r})"

"""Sources — factories and combinators that produce Observers.

Emitter-based factories hand the emitter a `next(value)` function. It
schedules the emission as a task and returns it: await it for
backpressure, or ignore it from plain callbacks such as timer ticks. If
the emitter returns a callable, that is the teardown, run when the
observer disposes.

    ticks = Source.create(lambda next: start_ticker(on_tick=next))
"""

from __future__ import annotations

import asyncio
import logging
from typing import Any, Awaitable, Callable, Sequence, TypeVar

from rxkit._arrays import chunk, deep_flat
from rxkit._scheduling import Timer, TimerHandle, default_timer, spawn
from rxkit.observer import Disconnect, Observer
from rxkit.protocols import TBehaviorSubject, TSubject
from rxkit.subject import Subject

logger = logging.getLogger("rxkit.source")

T = TypeVar("T")
U = TypeVar("U")

Next = Callable[[T], "asyncio.Task[None]"]
Emitter = Callable[[Next], Any]


def _teardown_of(result: Any) -> Callable[[], None] | None:
    return result if callable(result) else None


def _next_of(observer: Observer[T]) -> Next:
    return lambda value: spawn(observer.emit(value))


def _release_all(disconnects: list[Disconnect]) -> Callable[[], None]:
    def _teardown() -> None:
        for disconnect in disconnects:
            disconnect()

    return _teardown


def _forward_errors(sources: Sequence[Observer[Any]], target: Observer[Any]) -> list[Disconnect]:
    return [source.on_error(target.emit_error) for source in sources]


class Unicast(Observer[T]):
    """Every connection gets its own fresh Observer from factory()."""

    is_unicasted = True

    def __init__(self, factory: Callable[[], Observer[T]], *, timer: Timer | None = None) -> None:
        super().__init__(timer=timer)
        self._factory = factory
        self._instances: list[Observer[T]] = []

    @property
    def has_listeners(self) -> bool:
        return bool(self._instances)

    def connect(self, callbackfn: Callable[[T], Any]) -> Disconnect:
        instance = self._factory()
        self._instances.append(instance)
        stop_errors = instance.on_error(self.emit_error)
        disconnect = instance.connect(callbackfn)
        released = False

        def release() -> None:
            nonlocal released
            if released:
                return
            released = True
            stop_errors()
            disconnect()
            self._instances.remove(instance)

        return release

    async def emit(self, data: T) -> None:
        await asyncio.gather(*(instance.emit(data) for instance in list(self._instances)))

    def unsubscribe(self) -> None:
        instances, self._instances = self._instances, []
        for instance in instances:
            instance.unsubscribe()
        super().unsubscribe()


class Multicast(Observer[T]):
    """All connections share one Observer from factory(), created on first connect.

    The shared instance is reference-counted: when the last connection is
    released it is dropped, and the next connection builds a new one.
    share() keeps it alive instead.
    """

    is_multicasted = True

    def __init__(self, factory: Callable[[], Observer[T]], *, timer: Timer | None = None) -> None:
        super().__init__(timer=timer)
        self._factory = factory
        self._ref: Observer[T] | None = None
        self._ref_count = 0

    @property
    def ref_count(self) -> int:
        return self._ref_count

    @property
    def has_listeners(self) -> bool:
        return self._ref_count > 0

    def get_ref(self) -> Observer[T] | None:
        """The shared instance, or None if there is none yet. Never creates one."""
        return self._ref

    def _ensure_ref(self) -> Observer[T]:
        if self._ref is None:
            self._ref = self._factory()
            self._ref.on_error(self.emit_error)
            if self._is_shared:
                self._ref.share()
            logger.debug("Multicast created shared instance %r", self._ref)
        return self._ref

    def connect(self, callbackfn: Callable[[T], Any]) -> Disconnect:
        disconnect = self._ensure_ref().connect(callbackfn)
        self._ref_count += 1
        released = False

        def release() -> None:
            nonlocal released
            if released:
                return
            released = True
            disconnect()
            self._ref_count -= 1
            if self._ref_count == 0 and not self._is_shared:
                logger.debug("Multicast released shared instance %r", self._ref)
                self._ref = None

        return release

    async def emit(self, data: T) -> None:
        if self._ref is not None:
            await self._ref.emit(data)

    def share(self) -> Multicast[T]:
        super().share()
        if self._ref is not None:
            self._ref.share()
        return self

    def unsubscribe(self) -> None:
        ref, self._ref = self._ref, None
        self._ref_count = 0
        if ref is not None:
            ref.unsubscribe()
        super().unsubscribe()


class Source:
    """Namespace of observer factories and combinators."""

    @staticmethod
    def create_cold(emitter: Emitter, *, timer: Timer | None = None) -> Observer[T]:
        """Run emitter(next) when the first listener connects; tear it down on dispose."""
        teardown: Callable[[], None] | None = None

        def _release() -> None:
            if teardown is not None:
                teardown()

        observer: Observer[T] = Observer(_release, timer=timer)

        def _start() -> None:
            nonlocal teardown
            teardown = _teardown_of(emitter(_next_of(observer)))

        observer._on_connect(_start)
        return observer

    create = create_cold

    @staticmethod
    def create_hot(emitter: Emitter, *, timer: Timer | None = None) -> Observer[T]:
        """Run emitter(next) right away, whether or not anyone listens."""
        teardown: Callable[[], None] | None = None

        def _release() -> None:
            if teardown is not None:
                teardown()

        observer: Observer[T] = Observer(_release, timer=timer)
        teardown = _teardown_of(emitter(_next_of(observer)))
        return observer

    @staticmethod
    def unicast(factory: Callable[[], Observer[T]], *, timer: Timer | None = None) -> Unicast[T]:
        return Unicast(factory, timer=timer)

    @staticmethod
    def multicast(factory: Callable[[], Observer[T]], *, timer: Timer | None = None) -> Multicast[T]:
        return Multicast(factory, timer=timer)

    @staticmethod
    def merge(observers: Sequence[Observer[Any]], *, timer: Timer | None = None) -> Observer[Any]:
        """Forward every value of every observer, unmodified.

        Each source keeps its own order; there is no order between sources.
        """

        def _emitter(next: Next) -> Callable[[], None]:
            disconnects = _forward_errors(observers, merged)
            disconnects += [observer.connect(next) for observer in observers]
            return _release_all(disconnects)

        merged: Observer[Any] = Source.create_cold(_emitter, timer=timer)
        return merged

    @staticmethod
    def join(
        observers: Sequence[Observer[Any]],
        *,
        race: bool = False,
        buffer: Sequence[Any] | None = None,
        timer: Timer | None = None,
    ) -> Observer[tuple]:
        """Combine the latest value of every observer into a tuple.

        race=False: first emits once every observer has emitted, then on
        every value from any of them. race=True: emits from the first value
        on; slots not yet filled hold their `buffer` default (or None).
        """

        def _emitter(next: Next) -> Callable[[], None]:
            latest = list(buffer or [])
            latest.extend([None] * (len(observers) - len(latest)))
            visited: set[int] = set()

            def _listen(index: int) -> Callable[[Any], Any]:
                def _handler(value: Any) -> Any:
                    latest[index] = value
                    visited.add(index)
                    if race or len(visited) == len(observers):
                        return next(tuple(latest))
                    return None

                return _handler

            disconnects = _forward_errors(observers, joined)
            disconnects += [observer.connect(_listen(index)) for index, observer in enumerate(observers)]
            return _release_all(disconnects)

        joined: Observer[tuple] = Source.create_cold(_emitter, timer=timer)
        return joined

    @staticmethod
    def pipe(
        target: Observer[T],
        emitter: Callable[[Subject[T], Next], Any],
        *,
        timer: Timer | None = None,
    ) -> Observer[U]:
        """Reshape target through emitter(subject, next).

        On connect, target's values are fed into a private subject; the
        emitter subscribes to it and calls next with whatever it derives.
        """

        def _emitter(next: Next) -> Callable[[], None]:
            subject: Subject[T] = Subject(timer=timer)
            teardown = _teardown_of(emitter(subject, next))
            stop_errors = _forward_errors([target], piped)
            disconnect = target.connect(subject.next)

            def _teardown() -> None:
                disconnect()
                _release_all(stop_errors)()
                subject.unsubscribe_all()
                if teardown is not None:
                    teardown()

            return _teardown

        piped: Observer[U] = Source.create_cold(_emitter, timer=timer)
        return piped

    @staticmethod
    def from_value(data: T | Callable[[], T], *, timer: Timer | None = None) -> Observer[T]:
        """Emit data once on connect. A callable is invoked at that point."""

        def _emitter(next: Next) -> None:
            next(data() if callable(data) else data)

        return Source.create_cold(_emitter, timer=timer)

    @staticmethod
    def from_array(data: Sequence[Any], *, timer: Timer | None = None) -> Observer[tuple]:
        """Emit the (deep-flattened) items of data in batches of up to 20."""

        def _emitter(next: Next) -> None:
            async def _run() -> None:
                for batch in chunk(deep_flat(data)):
                    await next(batch)

            spawn(_run())

        return Source.create_cold(_emitter, timer=timer)

    @staticmethod
    def from_promise(
        callbackfn: Callable[[], Awaitable[T]],
        fallbackfn: Callable[[Exception], Any] | None = None,
        *,
        timer: Timer | None = None,
    ) -> Observer[T]:
        """Await callbackfn() on connect and emit its result once.

        On error, fallbackfn(error) is called instead of emitting; without a
        fallback the error goes out through emit_error(), failing any
        pending to_future().
        """

        def _emitter(next: Next) -> None:
            async def _run() -> None:
                try:
                    value = await callbackfn()
                except Exception as error:
                    if fallbackfn is None:
                        await promised.emit_error(error)
                        return
                    logger.debug("from_promise fallback", exc_info=True)
                    fallbackfn(error)
                    return
                await next(value)

            spawn(_run())

        promised: Observer[T] = Source.create_cold(_emitter, timer=timer)
        return promised

    @staticmethod
    def from_interval(delay: float, *, timer: Timer | None = None) -> Observer[int]:
        """Emit 0, 1, 2, ... every `delay` seconds while connected."""
        clock = timer or default_timer

        def _emitter(next: Next) -> Callable[[], None]:
            counter = 0
            handle: TimerHandle | None = None

            def _tick() -> None:
                nonlocal counter, handle
                handle = clock.call_later(delay, _tick)
                value, counter = counter, counter + 1
                next(value)

            handle = clock.call_later(delay, _tick)
            return lambda: handle.cancel()

        return Source.create_cold(_emitter, timer=clock)

    @staticmethod
    def from_delay(delay: float, *, timer: Timer | None = None) -> Observer[None]:
        """Emit None once, `delay` seconds after connect."""
        clock = timer or default_timer

        def _emitter(next: Next) -> Callable[[], None]:
            handle = clock.call_later(delay, lambda: next(None))
            return handle.cancel

        return Source.create_cold(_emitter, timer=clock)

    @staticmethod
    def from_subject(subject: TSubject[T], *, timer: Timer | None = None) -> Observer[T]:
        """Observer over any subject; subscribes on connect, unsubscribes on dispose."""

        def _emitter(next: Next) -> Disconnect:
            return subject.subscribe(next)

        return Source.create_cold(_emitter, timer=timer)

    @staticmethod
    def from_behavior_subject(subject: TBehaviorSubject[T], *, timer: Timer | None = None) -> Observer[T]:
        """Like from_subject, but first replays subject.data unless it is None."""

        def _emitter(next: Next) -> Disconnect:
            if subject.data is not None:
                next(subject.data)
            return subject.subscribe(next)

        return Source.create_cold(_emitter, timer=timer)

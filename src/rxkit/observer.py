"""Observer — the subscription and lifecycle unit of a stream.

An Observer is cold: it does nothing until its first listener connects.
Connecting fires its connect hooks, which is where a derived observer
subscribes to its parent (or a source starts producing). When the last
listener disconnects and the observer is not shared, it disposes: the
dispose callback releases the upstream subscription, which may in turn
dispose the parent. Disposal walks up an unused chain, never down.

Every transformation (map, filter, ...) returns a new Observer that
exclusively owns the disconnect function of its subscription to `self`.

Errors travel on a separate channel: emit_error() reaches on_error()
listeners and every derived observer, so to_future() callers see them.
"""

from __future__ import annotations

import asyncio
import logging
from collections import deque
from typing import Any, AsyncIterator, Awaitable, Callable, Generic, Iterable, Sequence, TypeVar

from rxkit._arrays import BATCH_SIZE, chunk, deep_flat
from rxkit._scheduling import Timer, TimerHandle, default_timer, spawn
from rxkit.emitter import EventEmitter
from rxkit.hof import create_awaiter, debounce

logger = logging.getLogger("rxkit.observer")

T = TypeVar("T")
U = TypeVar("U")

Disconnect = Callable[[], None]

OBSERVER_EVENT = "observer"
OBSERVER_ERROR_EVENT = "observer.error"

# Quiet window after which split() flushes a partial batch.
SPLIT_FLUSH_DELAY = 0.1


async def _emit_all(observer: Observer[Any], values: Iterable[Any]) -> None:
    for value in values:
        await observer.emit(value)


class Observer(Generic[T]):
    """A lazily connected, reference-disposed stream of values."""

    def __init__(self, dispose: Callable[[], None] | None = None, *, timer: Timer | None = None) -> None:
        self._dispose_fn = dispose
        self._broadcast = EventEmitter()
        self._timer: Timer = timer or default_timer
        self._is_shared = False
        self._disposed = False
        self._connect_hooks: list[Callable[[], None]] = []
        self._disconnect_hooks: list[Callable[[], None]] = []

    @property
    def is_shared(self) -> bool:
        return self._is_shared

    @property
    def has_listeners(self) -> bool:
        return bool(self._broadcast.get_listeners(OBSERVER_EVENT))

    @property
    def disposed(self) -> bool:
        return self._disposed

    @property
    def timer(self) -> Timer:
        return self._timer

    # ─── Lifecycle hooks (internal) ──────────────────────────────────────

    def _on_connect(self, fn: Callable[[], None]) -> None:
        """Run fn once, when a listener connects. Used to subscribe upstream lazily."""
        self._connect_hooks.append(fn)

    def _on_disconnect(self, fn: Callable[[], None]) -> None:
        """Run fn once, when this observer disposes."""
        self._disconnect_hooks.append(fn)

    def _fire_connect(self) -> None:
        hooks, self._connect_hooks = self._connect_hooks, []
        for hook in hooks:
            hook()

    def _try_dispose(self) -> None:
        if self._disposed or self._is_shared or self.has_listeners:
            return
        self._dispose()

    def _dispose(self) -> None:
        self._disposed = True
        self._connect_hooks.clear()
        logger.debug("Disposed %r", self)
        if self._dispose_fn is not None:
            self._dispose_fn()
        hooks, self._disconnect_hooks = self._disconnect_hooks, []
        for hook in hooks:
            hook()

    def _make_disconnect(self, callbackfn: Callable[[T], Any]) -> Disconnect:
        connected = True

        def disconnect() -> None:
            nonlocal connected
            if not connected:
                return
            connected = False
            self._broadcast.unsubscribe(OBSERVER_EVENT, callbackfn)
            self._try_dispose()

        return disconnect

    def _derive(self, make_handler: Callable[[Observer[U]], Callable[[T], Any]]) -> Observer[U]:
        """Create a child observer fed by handler. The child owns the upstream subscription."""
        upstream: list[Disconnect] = []

        def _release() -> None:
            while upstream:
                upstream.pop()()

        child: Observer[U] = Observer(_release, timer=self._timer)
        handler = make_handler(child)

        def _attach() -> None:
            upstream.append(self.on_error(child.emit_error))
            upstream.append(self.connect(handler))

        child._on_connect(_attach)
        return child

    # ─── Subscription ────────────────────────────────────────────────────

    async def emit(self, data: T) -> None:
        """Push data to every listener. Resolves once they have all settled."""
        await self._broadcast.emit(OBSERVER_EVENT, data)

    async def emit_error(self, error: BaseException) -> None:
        """Push error to every error listener; derived observers pass it on.

        An error nobody listens for is logged, not raised.
        """
        if not self._broadcast.get_listeners(OBSERVER_ERROR_EVENT):
            logger.error("Unhandled error in %r", self, exc_info=error)
            return
        await self._broadcast.emit(OBSERVER_ERROR_EVENT, error)

    def on_error(self, callbackfn: Callable[[BaseException], Any]) -> Disconnect:
        """Listen for errors. Error listeners never keep the observer connected."""
        self._broadcast.subscribe(OBSERVER_ERROR_EVENT, callbackfn)
        return lambda: self._broadcast.unsubscribe(OBSERVER_ERROR_EVENT, callbackfn)

    def connect(self, callbackfn: Callable[[T], Any]) -> Disconnect:
        """Listen to every value. Returns a function that disconnects (idempotent).

        The first connection subscribes upstream. Disconnecting the last
        listener disposes the observer unless it is shared.
        """
        if self._disposed:
            logger.warning("connect() on disposed %r; the listener will not receive upstream values", self)
        self._broadcast.subscribe(OBSERVER_EVENT, callbackfn)
        self._fire_connect()
        return self._make_disconnect(callbackfn)

    def once(self, callbackfn: Callable[[T], Any]) -> Disconnect:
        """Listen to the next value only."""

        def _wrapper(value: T) -> Any:
            disconnect()
            return callbackfn(value)

        disconnect = self.connect(_wrapper)
        return disconnect

    def share(self) -> Observer[T]:
        """Keep the upstream subscription alive even with no listeners."""
        self._is_shared = True
        return self

    def unsubscribe(self) -> None:
        """Drop every listener and dispose, shared or not."""
        self._broadcast.unsubscribe_all()
        if not self._disposed:
            self._dispose()

    # ─── Transformations ─────────────────────────────────────────────────

    def map(self, callbackfn: Callable[[T], U]) -> Observer[U]:
        return self._derive(lambda child: lambda value: child.emit(callbackfn(value)))

    def flat_map(self, callbackfn: Callable[[T], Sequence[U] | U]) -> Observer[U]:
        """Like map, but list/tuple results are emitted one item at a time."""

        def _make(child: Observer[U]) -> Callable[[T], Any]:
            def _handler(value: T) -> Awaitable[None]:
                result = callbackfn(value)
                if isinstance(result, (list, tuple)):
                    return _emit_all(child, result)
                return child.emit(result)

            return _handler

        return self._derive(_make)

    def filter(self, callbackfn: Callable[[T], bool]) -> Observer[T]:
        return self._derive(lambda child: lambda value: child.emit(value) if callbackfn(value) else None)

    def reduce(self, callbackfn: Callable[[U, T], U], begin: U) -> Observer[U]:
        """Emit the running accumulation after every value."""
        acc = begin

        def _make(child: Observer[U]) -> Callable[[T], Any]:
            def _handler(value: T) -> Awaitable[None]:
                nonlocal acc
                acc = callbackfn(acc, value)
                return child.emit(acc)

            return _handler

        return self._derive(_make)

    def tap(self, callbackfn: Callable[[T], Any]) -> Observer[T]:
        def _make(child: Observer[T]) -> Callable[[T], Any]:
            def _handler(value: T) -> Awaitable[None]:
                callbackfn(value)
                return child.emit(value)

            return _handler

        return self._derive(_make)

    def map_async(
        self,
        callbackfn: Callable[[T], Awaitable[U]],
        fallbackfn: Callable[[Exception], Any] | None = None,
    ) -> Observer[U]:
        """Await callbackfn per value. Calls run one at a time, so output order is input order.

        If callbackfn raises and fallbackfn is given, fallbackfn(error) is
        called and nothing is emitted. Without it the error propagates to
        whoever awaited the upstream emission.
        """
        lock = asyncio.Lock()

        def _make(child: Observer[U]) -> Callable[[T], Any]:
            async def _handler(value: T) -> None:
                async with lock:
                    try:
                        result = await callbackfn(value)
                    except Exception as error:
                        if fallbackfn is None:
                            raise
                        logger.debug("map_async fallback for %r", value, exc_info=True)
                        fallbackfn(error)
                        return
                    await child.emit(result)

            return _handler

        return self._derive(_make)

    def split(self, window: float = SPLIT_FLUSH_DELAY) -> Observer[tuple]:
        """Re-emit values in batches of up to BATCH_SIZE.

        List/tuple values are deep-flattened into the buffer. Full batches go
        out immediately; a partial batch goes out once no value has arrived
        for `window` seconds.
        """
        buffer: list[Any] = []

        def _make(child: Observer[tuple]) -> Callable[[T], Any]:
            def _flush() -> None:
                if buffer:
                    batch = tuple(buffer)
                    buffer.clear()
                    spawn(child.emit(batch))

            flush_later = debounce(_flush, window, timer=self._timer)
            child._on_disconnect(flush_later.clear)

            def _handler(value: T) -> Awaitable[None] | None:
                buffer.extend(deep_flat(value) if isinstance(value, (list, tuple)) else [value])
                full = len(buffer) - len(buffer) % BATCH_SIZE
                batches = list(chunk(buffer[:full]))
                del buffer[:full]
                if buffer:
                    flush_later()
                else:
                    flush_later.clear()
                if batches:
                    return _emit_all(child, batches)
                return None

            return _handler

        return self._derive(_make)

    def debounce(self, delay: float = 1.0) -> Observer[T]:
        """Emit only the last value of each burst, `delay` seconds after it."""

        def _make(child: Observer[T]) -> Callable[[T], Any]:
            emit_later = debounce(lambda value: spawn(child.emit(value)), delay, timer=self._timer)
            child._on_disconnect(emit_later.clear)
            return emit_later

        return self._derive(_make)

    def delay(self, delay: float = 1.0) -> Observer[T]:
        """Emit every value `delay` seconds later."""

        def _make(child: Observer[T]) -> Callable[[T], Any]:
            handles: set[TimerHandle] = set()

            def _handler(value: T) -> None:
                def _fire() -> None:
                    handles.discard(handle)
                    spawn(child.emit(value))

                handle = self._timer.call_later(delay, _fire)
                handles.add(handle)

            def _cancel_all() -> None:
                for handle in handles:
                    handle.cancel()
                handles.clear()

            child._on_disconnect(_cancel_all)
            return _handler

        return self._derive(_make)

    def repeat(self, interval: float = 1.0) -> Observer[T]:
        """Forward each value, then re-emit it every `interval` seconds until the next one."""

        def _make(child: Observer[T]) -> Callable[[T], Any]:
            handle: TimerHandle | None = None

            def _cancel() -> None:
                nonlocal handle
                if handle is not None:
                    handle.cancel()
                    handle = None

            def _handler(value: T) -> Awaitable[None]:
                nonlocal handle
                _cancel()

                def _tick() -> None:
                    nonlocal handle
                    handle = self._timer.call_later(interval, _tick)
                    spawn(child.emit(value))

                handle = self._timer.call_later(interval, _tick)
                return child.emit(value)

            child._on_disconnect(_cancel)
            return _handler

        return self._derive(_make)

    def merge(self, observer: Observer[U]) -> Observer[T | U]:
        """Forward every value from self and observer, unmodified."""
        upstream: list[Disconnect] = []

        def _release() -> None:
            while upstream:
                upstream.pop()()

        child: Observer[T | U] = Observer(_release, timer=self._timer)

        def _attach() -> None:
            for parent in (self, observer):
                upstream.append(parent.on_error(child.emit_error))
                upstream.append(parent.connect(child.emit))

        child._on_connect(_attach)
        return child

    def operator(self, callbackfn: Callable[[Observer[T]], Observer[U]]) -> Observer[U]:
        """Apply a stream transform, e.g. Operator.take(3)."""
        return callbackfn(self)

    # ─── Consumption ─────────────────────────────────────────────────────

    def to_future(self) -> asyncio.Future[T]:
        """A future resolved with the next value, or failed by the next error.

        Cancelling it disconnects.
        """
        future, awaiter = create_awaiter()
        stop_errors = self.on_error(awaiter.reject)
        disconnect = self.once(awaiter.resolve)

        def _release(_: asyncio.Future[T]) -> None:
            stop_errors()
            disconnect()

        future.add_done_callback(_release)
        return future

    def to_iterator_context(self) -> IteratorContext[T]:
        """Bridge to pull consumption. Connects immediately; see IteratorContext."""
        return IteratorContext(self)

    def __repr__(self) -> str:
        state = "disposed" if self._disposed else ("connected" if self.has_listeners else "idle")
        shared = ", shared" if self._is_shared else ""
        return f"{type(self).__name__}({state}{shared})"


class IteratorContext(Generic[T]):
    """Buffers an observer's values for an async generator.

    Usage:
        context = observer.to_iterator_context()
        async for value in context.iterate():
            if value == "stop":
                context.done()

    done() disconnects. The generator still yields whatever was buffered,
    then ends.
    """

    def __init__(self, observer: Observer[T]) -> None:
        self._buffer: deque[T] = deque()
        self._wakeup = asyncio.Event()
        self._done = False
        self._disconnect = observer.connect(self._push)

    def _push(self, value: T) -> None:
        self._buffer.append(value)
        self._wakeup.set()

    async def iterate(self) -> AsyncIterator[T]:
        while True:
            while self._buffer:
                yield self._buffer.popleft()
            if self._done:
                return
            self._wakeup.clear()
            await self._wakeup.wait()

    def done(self) -> None:
        if self._done:
            return
        self._done = True
        self._disconnect()
        self._wakeup.set()

"""Keyed multi-listener pub/sub — the substrate every other primitive uses.

Listeners are plain callables. A listener may return an awaitable; emit()
awaits all of them together, so a producer that awaits emit() waits for
its slowest consumer.
"""

from __future__ import annotations

import asyncio
import inspect
from typing import Any, Awaitable, Callable, Hashable

EventKey = Hashable
Listener = Callable[..., Any]


class EventEmitter:
    """Mapping of event key -> ordered listeners. Delivery follows subscription order."""

    __slots__ = ("_events",)

    def __init__(self) -> None:
        self._events: dict[EventKey, list[Listener]] = {}

    @property
    def has_listeners(self) -> bool:
        """True if any key has at least one listener."""
        return any(self._events.values())

    def get_listeners(self, key: EventKey) -> tuple[Listener, ...]:
        """Read-only snapshot of the listeners for key."""
        return tuple(self._events.get(key, ()))

    def subscribe(self, key: EventKey, callback: Listener) -> None:
        """Append callback. The same callback may be registered more than once."""
        self._events.setdefault(key, []).append(callback)

    def unsubscribe(self, key: EventKey, callback: Listener) -> None:
        """Remove the first registration of callback. Unknown callbacks are ignored."""
        listeners = self._events.get(key)
        if not listeners:
            return
        for index, listener in enumerate(listeners):
            if listener is callback:
                del listeners[index]
                break
        if not listeners:
            del self._events[key]

    def unsubscribe_all(self) -> None:
        self._events.clear()

    def once(self, key: EventKey, callback: Listener) -> Callable[[], None]:
        """Register callback for a single delivery. Returns a function that cancels it."""

        def _wrapper(*args: Any) -> Any:
            self.unsubscribe(key, _wrapper)
            return callback(*args)

        self.subscribe(key, _wrapper)
        return lambda: self.unsubscribe(key, _wrapper)

    async def emit(self, key: EventKey, *args: Any) -> None:
        """Call every listener registered for key at call time.

        Resolves once every awaitable a listener returned has settled.
        """
        pending: list[Awaitable[Any]] = []
        try:
            for listener in self.get_listeners(key):
                result = listener(*args)
                if inspect.isawaitable(result):
                    pending.append(result)
        except BaseException:
            for awaitable in pending:
                if inspect.iscoroutine(awaitable):
                    awaitable.close()
            raise
        if len(pending) == 1:
            await pending[0]
        elif pending:
            await asyncio.gather(*pending)

    def __repr__(self) -> str:
        counts = {key: len(listeners) for key, listeners in self._events.items()}
        return f"EventEmitter({counts!r})"

"""Structural interfaces for observers and subjects.

TObservable is the chainable, read-only surface. TObserver adds the
subscription lifecycle (connect/once/share/unsubscribe).
"""

from __future__ import annotations

from typing import Any, Awaitable, Callable, Protocol, Sequence, TypeVar, runtime_checkable

T = TypeVar("T")
U = TypeVar("U")

Disconnect = Callable[[], None]


@runtime_checkable
class TObservable(Protocol[T]):
    def map(self, callbackfn: Callable[[T], U]) -> TObserver[U]: ...

    def flat_map(self, callbackfn: Callable[[T], Sequence[U]]) -> TObserver[U]: ...

    def reduce(self, callbackfn: Callable[[U, T], U], begin: U) -> TObserver[U]: ...

    def map_async(
        self,
        callbackfn: Callable[[T], Awaitable[U]],
        fallbackfn: Callable[[Exception], Any] | None = None,
    ) -> TObserver[U]: ...

    def filter(self, callbackfn: Callable[[T], bool]) -> TObserver[T]: ...

    def tap(self, callbackfn: Callable[[T], Any]) -> TObserver[T]: ...

    def operator(self, callbackfn: Callable[[TObserver[T]], TObserver[U]]) -> TObserver[U]: ...

    def split(self, window: float = ...) -> TObserver[tuple]: ...

    def debounce(self, delay: float = ...) -> TObserver[T]: ...

    def delay(self, delay: float = ...) -> TObserver[T]: ...

    def repeat(self, interval: float = ...) -> TObserver[T]: ...

    def merge(self, observer: TObserver[U]) -> TObserver[T | U]: ...

    def to_future(self) -> Awaitable[T]: ...

    def to_iterator_context(self) -> Any: ...


@runtime_checkable
class TObserver(TObservable[T], Protocol[T]):
    def connect(self, callbackfn: Callable[[T], Any]) -> Disconnect: ...

    def once(self, callbackfn: Callable[[T], Any]) -> Disconnect: ...

    def share(self) -> TObserver[T]: ...

    def unsubscribe(self) -> None: ...

    def on_error(self, callbackfn: Callable[[BaseException], Any]) -> Disconnect: ...


@runtime_checkable
class TSubject(Protocol[T]):
    def subscribe(self, callback: Callable[[T], Any]) -> Disconnect: ...

    def once(self, callback: Callable[[T], Any]) -> Disconnect: ...

    async def next(self, data: T) -> None: ...


@runtime_checkable
class TBehaviorSubject(TSubject[T], Protocol[T]):
    @property
    def data(self) -> T | None: ...

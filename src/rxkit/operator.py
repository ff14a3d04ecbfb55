"""Operators — reusable stream transforms for Observer.operator().

Each factory returns a function Observer[T] -> Observer[U]:

    Source.from_interval(1).operator(Operator.skip(1)).operator(Operator.take(3))

Operator state (counters, buffers) lives in the closure, so one applied
operator counts across everything that flows through its result.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass
from typing import Any, Callable, Generic, Sequence, TypeVar

from rxkit._scheduling import Timer
from rxkit.hof import debounce
from rxkit.observer import Observer
from rxkit.source import Source

logger = logging.getLogger("rxkit.operator")

T = TypeVar("T")
V = TypeVar("V")

Transform = Callable[[Observer[Any]], Observer[Any]]

_UNSET = object()


@dataclass(frozen=True, slots=True)
class Counted(Generic[T]):
    """A value together with its 1-based position in the stream."""

    value: T
    count: int


class Operator:
    """Namespace of operator factories."""

    @staticmethod
    def take(count: int) -> Transform:
        """Forward the first `count` values, then nothing."""

        def _apply(target: Observer[T]) -> Observer[T]:
            seen = 0

            def _check(_: T) -> bool:
                nonlocal seen
                seen += 1
                return seen <= count

            return target.filter(_check)

        return _apply

    @staticmethod
    def skip(count: int) -> Transform:
        """Drop the first `count` values."""

        def _apply(target: Observer[T]) -> Observer[T]:
            seen = 0

            def _check(_: T) -> bool:
                nonlocal seen
                seen += 1
                return seen > count

            return target.filter(_check)

        return _apply

    @staticmethod
    def pair(by: int = 1) -> Transform:
        """Emit (earlier, current), where earlier arrived `by` values before current."""

        def _apply(target: Observer[T]) -> Observer[tuple[T, T]]:
            window: list[T] = []

            def _step(value: T) -> list[tuple[T, T]]:
                window.append(value)
                if len(window) > by + 1:
                    del window[0]
                if len(window) == by + 1:
                    return [(window[0], window[-1])]
                return []

            return target.flat_map(_step)

        return _apply

    @staticmethod
    def group(by: int) -> Transform:
        """Batch every `by` consecutive values into one list."""

        def _apply(target: Observer[T]) -> Observer[list[T]]:
            batch: list[T] = []

            def _step(value: T) -> list[list[T]]:
                batch.append(value)
                if len(batch) < by:
                    return []
                ready = batch[:]
                batch.clear()
                return [ready]

            return target.flat_map(_step)

        return _apply

    @staticmethod
    def stride_tricks(stride_size: int, step: int | None = None) -> Transform:
        """Turn each emitted sequence into its windows of `stride_size` items.

        Windows start every `step` items (default: stride_size, no overlap).
        Only full-length windows are produced.
        """
        step = step or stride_size

        def _windows(items: Sequence[T]) -> tuple[tuple[T, ...], ...]:
            items = tuple(items)
            return tuple(
                items[start:start + stride_size]
                for start in range(0, len(items) - stride_size + 1, step)
            )

        return lambda target: target.map(_windows)

    @staticmethod
    def distinct(get_compare_value: Callable[[T], V] | None = None) -> Transform:
        """Suppress a value when it compares equal to the one right before it."""
        key = get_compare_value or (lambda value: value)

        def _apply(target: Observer[T]) -> Observer[T]:
            last: Any = _UNSET

            def _check(value: T) -> bool:
                nonlocal last
                current = key(value)
                if last is not _UNSET and current == last:
                    return False
                last = current
                return True

            return target.filter(_check)

        return _apply

    @staticmethod
    def liveness(fallbackfn: Callable[[], Any], wait_for: float = 10.0, *, timer: Timer | None = None) -> Transform:
        """Watchdog: call fallbackfn once if no value arrives within `wait_for` seconds of the last one.

        Values pass through unchanged. The watchdog re-arms on every value
        and is cleared when the resulting observer disposes.
        """

        def _apply(target: Observer[T]) -> Observer[T]:
            clock = timer or target.timer

            def _timed_out() -> None:
                logger.info("No emission for %.3fs, calling liveness fallback", wait_for)
                fallbackfn()

            def _emitter(next: Callable[[T], Any]) -> Callable[[], None]:
                watchdog = debounce(_timed_out, wait_for, timer=clock)

                def _handler(value: T) -> Any:
                    watchdog()
                    return next(value)

                stop_errors = target.on_error(watched.emit_error)
                disconnect = target.connect(_handler)

                def _teardown() -> None:
                    watchdog.clear()
                    stop_errors()
                    disconnect()

                return _teardown

            watched: Observer[T] = Source.create_cold(_emitter, timer=clock)
            return watched

        return _apply

    @staticmethod
    def count() -> Transform:
        """Emit Counted(value, n) with a 1-based running count."""

        def _apply(target: Observer[T]) -> Observer[Counted[T]]:
            total = 0

            def _wrap(value: T) -> Counted[T]:
                nonlocal total
                total += 1
                return Counted(value, total)

            return target.map(_wrap)

        return _apply

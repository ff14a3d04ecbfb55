"""Shared test fixtures for rxkit."""

from __future__ import annotations

import itertools
from typing import Any, Callable

import pytest


class FakeHandle:
    def __init__(self, when: float, seq: int, callback: Callable[[], Any]) -> None:
        self.when = when
        self.seq = seq
        self.callback = callback
        self.cancelled = False

    def cancel(self) -> None:
        self.cancelled = True


class FakeTimer:
    """Deterministic Timer: callbacks only run inside advance()."""

    def __init__(self) -> None:
        self.now = 0.0
        self._handles: list[FakeHandle] = []
        self._seq = itertools.count()

    def call_later(self, delay: float, callback: Callable[[], Any]) -> FakeHandle:
        handle = FakeHandle(self.now + delay, next(self._seq), callback)
        self._handles.append(handle)
        return handle

    @property
    def pending(self) -> int:
        return sum(1 for handle in self._handles if not handle.cancelled)

    def advance(self, seconds: float) -> None:
        """Move the clock forward, running due callbacks in time order."""
        deadline = self.now + seconds
        while True:
            due = [h for h in self._handles if not h.cancelled and h.when <= deadline]
            if not due:
                break
            handle = min(due, key=lambda h: (h.when, h.seq))
            self._handles.remove(handle)
            self.now = handle.when
            handle.callback()
        self.now = deadline


@pytest.fixture
def timer() -> FakeTimer:
    return FakeTimer()

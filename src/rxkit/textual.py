"""Textual integration for rxkit streams. Opt-in — requires textual.

Widget effects driven by an Observer or Subject are only safe while the
app is running and its widget tree is queryable. Every bridge here:

- skips the effect while the app is stopped or inside pause(app),
- marshals deliveries from other threads through app.call_from_thread,
- swallows NoMatches raised by widget queries mid-rebuild.
"""

from __future__ import annotations

import logging
import threading
from contextlib import contextmanager
from typing import Any, Callable

from textual.css.query import NoMatches

from rxkit.observer import Disconnect, Observer
from rxkit.protocols import TSubject

logger = logging.getLogger("rxkit.textual")

# ids of apps currently inside pause(); an id is present only within its context.
_paused: set[int] = set()


@contextmanager
def pause(app):
    """Suspend bridged effects, e.g. while widgets are replaced."""
    _paused.add(id(app))
    try:
        yield
    finally:
        _paused.discard(id(app))


def is_safe(app) -> bool:
    """Is the widget tree in a queryable state?"""
    return bool(app.is_running) and id(app) not in _paused


def _bridge(app, effect: Callable[[Any], Any]) -> Callable[[Any], None]:
    owner = threading.get_ident()

    def _apply(value: Any) -> None:
        try:
            effect(value)
        except NoMatches:
            logger.debug("Skipped effect for %r: widget not mounted", value)

    def _deliver(value: Any) -> None:
        if not is_safe(app):
            return
        if threading.get_ident() == owner:
            _apply(value)
        else:
            app.call_from_thread(_apply, value)

    return _deliver


def connect(app, observer: Observer[Any], effect: Callable[[Any], Any]) -> Disconnect:
    """observer.connect(effect), guarded for Textual widgets."""
    return observer.connect(_bridge(app, effect))


def subscribe(app, subject: TSubject[Any], effect: Callable[[Any], Any]) -> Disconnect:
    """subject.subscribe(effect), guarded for Textual widgets."""
    return subject.subscribe(_bridge(app, effect))

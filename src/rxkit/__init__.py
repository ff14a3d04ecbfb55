"""rxkit: push-based reactive event streams for asyncio."""

from importlib.metadata import version as _version

__version__ = _version("rxkit")

from rxkit._scheduling import LoopTimer, Timer, drain, get_pending_count
from rxkit.emitter import EventEmitter
from rxkit.hof import TIMEOUT, Awaiter, create_awaiter, debounce, wait_for_next
from rxkit.observer import IteratorContext, Observer
from rxkit.subject import BehaviorSubject, Subject
from rxkit.source import Multicast, Source, Unicast
from rxkit.operator import Counted, Operator
from rxkit.protocols import TBehaviorSubject, TObservable, TObserver, TSubject
# textual NOT auto-imported — opt-in only

__all__ = [
    "EventEmitter",
    "Subject",
    "BehaviorSubject",
    "Observer",
    "IteratorContext",
    "Operator",
    "Counted",
    "Source",
    "Unicast",
    "Multicast",
    "TObserver",
    "TObservable",
    "TSubject",
    "TBehaviorSubject",
    "Timer",
    "LoopTimer",
    "debounce",
    "create_awaiter",
    "Awaiter",
    "wait_for_next",
    "TIMEOUT",
    "drain",
    "get_pending_count",
]

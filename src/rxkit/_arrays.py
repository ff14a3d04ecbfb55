"""Array helpers shared by Observer.split and Source.from_array."""

from __future__ import annotations

from typing import Any, Iterable, Iterator, Sequence

# Fixed batch size for split() and from_array().
BATCH_SIZE = 20


def deep_flat(items: Iterable[Any]) -> list[Any]:
    """Flatten nested lists/tuples into one list. Other values are leaves."""
    result: list[Any] = []
    for item in items:
        if isinstance(item, (list, tuple)):
            result.extend(deep_flat(item))
        else:
            result.append(item)
    return result


def chunk(items: Sequence[Any], size: int = BATCH_SIZE) -> Iterator[tuple[Any, ...]]:
    for start in range(0, len(items), size):
        yield tuple(items[start:start + size])

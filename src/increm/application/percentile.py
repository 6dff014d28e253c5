"""
Relative priority ranking.

Pure computation module with no I/O. Two rounding conventions coexist and
are kept as distinct operations:

- ``percentile``: integer, used by queue and shield logic.
- ``fine_percentile``: one decimal, used by relative-priority sliders and the
  card shield.
"""

import math
from collections.abc import Iterable
from typing import Protocol


class Ranked(Protocol):
    id: str
    priority: int


def round_half_up(value: float, digits: int = 0) -> float:
    """Round like ``Math.round``: halves go up, not to even."""
    factor = 10**digits
    return math.floor(value * factor + 0.5) / factor


def _sorted_by_priority(items: Iterable[Ranked]) -> list[Ranked]:
    # sorted() is stable: equal priorities keep their original order
    return sorted(items, key=lambda x: x.priority)


def _rank_fraction(items: list[Ranked], item_id: str) -> float | None:
    if not items:
        return None
    ordered = _sorted_by_priority(items)
    for index, item in enumerate(ordered):
        if item.id == item_id:
            return (index + 1) / len(ordered)
    return None


def percentile(items: list[Ranked], item_id: str) -> int | None:
    """
    Integer percentile (1-100) of ``item_id`` within ``items``.

    Lower priority values rank first. Returns None if the list is empty or
    the id is absent.
    """
    fraction = _rank_fraction(items, item_id)
    if fraction is None:
        return None
    return int(round_half_up(fraction * 100))


def fine_percentile(items: list[Ranked], item_id: str) -> float | None:
    """Same as ``percentile`` but rounded to one decimal."""
    fraction = _rank_fraction(items, item_id)
    if fraction is None:
        return None
    return round_half_up(fraction * 100, 1)


def calculate_all_percentiles(items: list[Ranked]) -> dict[str, int]:
    """Integer percentile for every item in a single sort."""
    ordered = _sorted_by_priority(items)
    total = len(ordered)
    return {
        item.id: int(round_half_up((index + 1) / total * 100))
        for index, item in enumerate(ordered)
    }

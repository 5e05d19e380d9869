"""
Nearest element to a target in a sorted sequence.

Used by the closest-update locator, where one (route, stop) pair can hold
hundreds of predicted departures per day.  A bisect finds the insertion point
of the target; only the elements immediately around that point can be the
closest one, so at most three comparisons follow.
"""

import bisect
from collections.abc import Callable, Sequence
from typing import TypeVar

T = TypeVar("T")


def nearest(
    items: Sequence[T],
    target: float,
    key: Callable[[T], float],
) -> tuple[T, float] | None:
    """
    Return (item, |key(item) - target|) for the item closest to target.

    `items` must already be sorted ascending by `key`.  Returns None for an
    empty sequence.  On a tie the item with the lower index wins, so the
    result is deterministic for a given sequence.
    """
    if not items:
        return None

    pos = bisect.bisect_left(items, target, key=key)

    best: T | None = None
    best_delta = float("inf")
    for i in (pos - 1, pos, pos + 1):
        if i < 0 or i >= len(items):
            continue
        delta = abs(key(items[i]) - target)
        if delta < best_delta:
            best, best_delta = items[i], delta

    return best, best_delta

"""
Trip-id match-rate statistics between the live feed and the static schedule.

Answers "how many feed trips would each key strategy reconcile?" so operators
can tell whether exact, normalized or fuzzy matching is doing the work.
"""

from collections.abc import Iterable
from typing import Any

from realtime.feed_cache import FeedCache
from realtime.trip_ids import fuzzy_key, normalize_trip_id, parse_trip_id_components

MAX_MATCHED_PAIRS = 10


def _percentage(count: int, total: int) -> str:
    if total == 0:
        return "0.0%"
    return f"{count / total * 100:.1f}%"


def describe_trip_id(trip_id: str) -> dict[str, Any]:
    components = parse_trip_id_components(trip_id)
    return {
        "full": trip_id,
        "normalized": normalize_trip_id(trip_id),
        "fuzzy_key": fuzzy_key(trip_id),
        "components": None if components is None else {
            "service_code": components.service_code,
            "line": components.line,
            "time": components.time,
            "time_seconds": components.time_seconds,
        },
    }


def match_statistics(
    cache: FeedCache,
    static_trip_ids: Iterable[str],
    sample_size: int = 5,
) -> dict[str, Any]:
    """
    Compare every feed trip_id against the static trip ids under the three
    key strategies.  Percentages are relative to the number of feed trips.

    When several static ids share a normalized id or fuzzy key, the last one
    seen is reported as the partner, mirroring the feed-side indexes.
    """
    static_ids = list(static_trip_ids)
    static_set = set(static_ids)
    static_by_normalized = {normalize_trip_id(t): t for t in static_ids}
    static_by_fuzzy: dict[str, str] = {}
    for t in static_ids:
        key = fuzzy_key(t)
        if key is not None:
            static_by_fuzzy[key] = t

    rt_ids = list(cache.raw_id_index)
    exact: list[str] = []
    normalized: list[dict[str, str]] = []
    fuzzy: list[dict[str, str]] = []

    for rt_id in rt_ids:
        if rt_id in static_set:
            exact.append(rt_id)
        partner = static_by_normalized.get(normalize_trip_id(rt_id))
        if partner is not None:
            normalized.append({"rt": rt_id, "db": partner})
        key = fuzzy_key(rt_id)
        if key is not None and key in static_by_fuzzy:
            fuzzy.append({"rt": rt_id, "db": static_by_fuzzy[key], "fuzzy_key": key})

    total = len(rt_ids)
    return {
        "rt_trip_count": total,
        "db_trip_count": len(static_set),
        "exact_matches": len(exact),
        "exact_match_percentage": _percentage(len(exact), total),
        "normalized_matches": len(normalized),
        "normalized_match_percentage": _percentage(len(normalized), total),
        "fuzzy_matches": len(fuzzy),
        "fuzzy_match_percentage": _percentage(len(fuzzy), total),
        "sample_rt_trip_ids": [describe_trip_id(t) for t in rt_ids[:sample_size]],
        "exact_matched_trips": exact[:MAX_MATCHED_PAIRS],
        "normalized_matched_trips": normalized[:MAX_MATCHED_PAIRS],
        "fuzzy_matched_trips": fuzzy[:MAX_MATCHED_PAIRS],
    }


def line_match_counts(cache: FeedCache, static_trip_ids: Iterable[str]) -> dict[str, int]:
    """How many of a subset of static trips (e.g. one line) each strategy resolves."""
    exact = normalized = fuzzy = 0
    for trip_id in static_trip_ids:
        if cache.by_raw_id(trip_id) is not None:
            exact += 1
        if cache.by_normalized_id(normalize_trip_id(trip_id)) is not None:
            normalized += 1
        if cache.by_fuzzy_key(fuzzy_key(trip_id)) is not None:
            fuzzy += 1
    return {"exact_matches": exact, "normalized_matches": normalized, "fuzzy_matches": fuzzy}


def trip_update_details(cache: FeedCache, limit: int = 5) -> list[dict[str, Any]]:
    """First few indexed trip updates, trimmed for display."""
    return [
        {
            "trip_id": tu.trip_id,
            "route_id": tu.route_id,
            "direction_id": tu.direction_id,
            "delay": tu.delay,
            "stop_ids": list(tu.stop_times_by_stop_id)[:3],
            "stop_sequences": list(tu.stop_times_by_sequence)[:3],
        }
        for tu in cache.trip_updates[:limit]
    ]

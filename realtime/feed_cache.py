"""
In-memory snapshot of one GTFS-RT trip-updates feed, indexed for lookup.

A FeedCache is built wholesale from one decoded FeedMessage and never mutated
afterwards.  The poller publishes each new snapshot through a FeedCacheHandle
by swapping a single reference, so readers always see one complete snapshot.

Indexes held by a snapshot:
  trip_updates          canonical tuple of TripUpdateIndex records
  raw_id_index          raw trip_id         → position in trip_updates
  normalized_id_index   normalized trip_id  → position in trip_updates
  fuzzy_key_index       fuzzy key           → position in trip_updates
  by_route_stop_time    (route_id, stop_id, 5-min window) → StopTimeUpdate
  by_route_stop         (route_id, stop_id) → StopTimeUpdates sorted by departure_time

The three trip-keyed indexes are single-valued: when several feed entities
collapse to the same key, the last one in feed order wins.
"""

import logging
from collections.abc import Mapping
from dataclasses import dataclass, field
from datetime import datetime
from types import MappingProxyType

from google.transit import gtfs_realtime_pb2

from realtime.nearest import nearest
from realtime.trip_ids import fuzzy_key, normalize_trip_id, time_window

logger = logging.getLogger(__name__)

# Default tolerance for the route/stop proximity lookup
DEFAULT_MAX_DELTA_SECONDS = 900


@dataclass(frozen=True)
class StopTimeUpdate:
    """Arrival/departure prediction for one (trip, stop).  Any subset may be set."""
    arrival_time: int | None = None     # epoch seconds
    arrival_delay: int | None = None    # seconds, positive = late
    departure_time: int | None = None   # epoch seconds
    departure_delay: int | None = None  # seconds, positive = late


@dataclass(frozen=True)
class TripUpdateIndex:
    trip_id: str
    route_id: str | None = None
    direction_id: int | None = None
    delay: int | None = None  # trip-level delay in seconds, positive = late
    stop_times_by_stop_id: Mapping[str, StopTimeUpdate] = field(default_factory=dict)
    stop_times_by_sequence: Mapping[int, StopTimeUpdate] = field(default_factory=dict)


@dataclass(frozen=True)
class FeedCache:
    fetched_at: datetime
    entity_count: int
    trip_updates_count: int
    trip_updates: tuple[TripUpdateIndex, ...]
    raw_id_index: Mapping[str, int]
    normalized_id_index: Mapping[str, int]
    fuzzy_key_index: Mapping[str, int]
    by_route_stop_time: Mapping[tuple[str, str, int], StopTimeUpdate]
    by_route_stop: Mapping[tuple[str, str], tuple[StopTimeUpdate, ...]]

    def _record(self, index: Mapping[str, int], key: str | None) -> TripUpdateIndex | None:
        if key is None:
            return None
        pos = index.get(key)
        return self.trip_updates[pos] if pos is not None else None

    def by_raw_id(self, trip_id: str) -> TripUpdateIndex | None:
        return self._record(self.raw_id_index, trip_id)

    def by_normalized_id(self, normalized_id: str) -> TripUpdateIndex | None:
        return self._record(self.normalized_id_index, normalized_id)

    def by_fuzzy_key(self, key: str | None) -> TripUpdateIndex | None:
        return self._record(self.fuzzy_key_index, key)

    def match_trip(self, trip_id: str) -> TripUpdateIndex | None:
        """
        Find the feed's update for a static trip_id.

        Tries the raw id, then the normalized id, then the fuzzy key; the
        first hit wins.  A fuzzy hit may belong to another trip of the same
        line starting within the same 5 minutes; no tie-breaking is attempted.
        """
        return (
            self.by_raw_id(trip_id)
            or self.by_normalized_id(normalize_trip_id(trip_id))
            or self.by_fuzzy_key(fuzzy_key(trip_id))
        )

    def by_route_stop_window(self, route_id: str, stop_id: str, epoch: int) -> StopTimeUpdate | None:
        return self.by_route_stop_time.get((route_id, stop_id, time_window(epoch)))

    def age_seconds(self, now: datetime) -> int:
        return round((now - self.fetched_at).total_seconds())


class FeedCacheHandle:
    """
    Owner of the currently published FeedCache.

    Constructed once at startup and passed to whichever component needs to
    read the snapshot.  publish() replaces the reference in one assignment;
    the previous snapshot stays valid for anyone still holding it.
    """

    def __init__(self, cache: FeedCache | None = None):
        self._cache = cache

    def get(self) -> FeedCache | None:
        return self._cache

    def publish(self, cache: FeedCache) -> None:
        self._cache = cache


def decode_feed(payload: bytes) -> gtfs_realtime_pb2.FeedMessage:
    """Parse raw protobuf bytes into a FeedMessage.  Raises on malformed input."""
    feed = gtfs_realtime_pb2.FeedMessage()
    feed.ParseFromString(payload)
    return feed


def _stop_time_update(stu) -> StopTimeUpdate:
    arrival_time = arrival_delay = departure_time = departure_delay = None
    if stu.HasField("arrival"):
        if stu.arrival.HasField("time"):
            arrival_time = int(stu.arrival.time)
        if stu.arrival.HasField("delay"):
            arrival_delay = stu.arrival.delay
    if stu.HasField("departure"):
        if stu.departure.HasField("time"):
            departure_time = int(stu.departure.time)
        if stu.departure.HasField("delay"):
            departure_delay = stu.departure.delay
    return StopTimeUpdate(
        arrival_time=arrival_time,
        arrival_delay=arrival_delay,
        departure_time=departure_time,
        departure_delay=departure_delay,
    )


def build_feed_cache(feed: gtfs_realtime_pb2.FeedMessage, fetched_at: datetime) -> FeedCache:
    """
    Index every trip update in `feed` into a new FeedCache.

    Entities without a trip update or with an empty trip_id are skipped.
    Stop-time updates carrying a stop_id, a route_id (from the trip
    descriptor) and an absolute departure time are also indexed by route/stop
    for the proximity fallback.  Nothing is published here; an exception
    leaves the caller's current snapshot untouched.

    Every index is frozen (read-only mapping views, tuples, frozen records)
    before the snapshot is returned.
    """
    trip_updates: list[TripUpdateIndex] = []
    raw_id_index: dict[str, int] = {}
    normalized_id_index: dict[str, int] = {}
    fuzzy_key_index: dict[str, int] = {}
    by_route_stop_time: dict[tuple[str, str, int], StopTimeUpdate] = {}
    by_route_stop: dict[tuple[str, str], list[StopTimeUpdate]] = {}

    for entity in feed.entity:
        if not entity.HasField("trip_update"):
            continue
        tu = entity.trip_update
        trip_id = tu.trip.trip_id
        if not trip_id:
            continue

        route_id = tu.trip.route_id or None
        by_stop_id: dict[str, StopTimeUpdate] = {}
        by_sequence: dict[int, StopTimeUpdate] = {}

        for stu in tu.stop_time_update:
            update = _stop_time_update(stu)

            if stu.stop_id:
                by_stop_id[stu.stop_id] = update
                if route_id and update.departure_time is not None:
                    key = (route_id, stu.stop_id, time_window(update.departure_time))
                    by_route_stop_time[key] = update
                    by_route_stop.setdefault((route_id, stu.stop_id), []).append(update)

            if stu.HasField("stop_sequence"):
                by_sequence[stu.stop_sequence] = update

        pos = len(trip_updates)
        trip_updates.append(TripUpdateIndex(
            trip_id=trip_id,
            route_id=route_id,
            direction_id=tu.trip.direction_id if tu.trip.HasField("direction_id") else None,
            delay=tu.delay if tu.HasField("delay") else None,
            stop_times_by_stop_id=MappingProxyType(by_stop_id),
            stop_times_by_sequence=MappingProxyType(by_sequence),
        ))
        raw_id_index[trip_id] = pos
        normalized_id_index[normalize_trip_id(trip_id)] = pos
        key = fuzzy_key(trip_id)
        if key is not None:
            fuzzy_key_index[key] = pos

    return FeedCache(
        fetched_at=fetched_at,
        entity_count=len(feed.entity),
        trip_updates_count=len(trip_updates),
        trip_updates=tuple(trip_updates),
        raw_id_index=MappingProxyType(raw_id_index),
        normalized_id_index=MappingProxyType(normalized_id_index),
        fuzzy_key_index=MappingProxyType(fuzzy_key_index),
        by_route_stop_time=MappingProxyType(by_route_stop_time),
        by_route_stop=MappingProxyType({
            pair: tuple(sorted(updates, key=lambda u: u.departure_time))
            for pair, updates in by_route_stop.items()
        }),
    )


def find_closest_update(
    cache: FeedCache,
    route_id: str,
    stop_id: str,
    target_epoch: int,
    max_delta_seconds: int = DEFAULT_MAX_DELTA_SECONDS,
) -> StopTimeUpdate | None:
    """
    Return the route/stop update whose departure is nearest to target_epoch,
    or None when nothing lies within max_delta_seconds.
    """
    updates = cache.by_route_stop.get((route_id, stop_id))
    if not updates:
        return None
    found = nearest(updates, target_epoch, key=lambda u: u.departure_time)
    if found is None:
        return None
    update, delta = found
    if delta > max_delta_seconds:
        logger.debug(
            "No RT update within %ds for route=%s stop=%s (closest %ds).",
            max_delta_seconds, route_id, stop_id, delta,
        )
        return None
    return update

"""
Departure estimation: scheduled departures adjusted by the best real-time
signal available in the current FeedCache.

Resolution order for one candidate (first applicable wins):

  1. Trip match: the feed's update for the candidate's trip, found by raw
     trip_id, then normalized id, then fuzzy key.
       a. Stop-level update (by stop_sequence, else stop_id):
            absolute departure time  → used as is (midnight rollover applied)
            departure delay          → theoretical + delay
       b. No stop-level update but a trip-level delay → theoretical + delay
  2. Proximity: the route/stop update whose departure lies closest to the
     theoretical time, within 15 minutes; applied as in 1a.
  3. Theoretical schedule, not flagged as real-time.

A stop-level update that carries neither a departure time nor a departure
delay ends the search: the candidate keeps its theoretical time.

Everything here is a pure function of (cache snapshot, candidate, now) and
never raises on missing or malformed real-time data.
"""

import logging
import math
from dataclasses import dataclass
from datetime import datetime
from typing import Literal

from departures.service_day import (
    format_clock,
    hms_to_seconds,
    local_midnight,
    seconds_since_midnight,
)
from realtime.feed_cache import FeedCache, StopTimeUpdate, find_closest_update

logger = logging.getLogger(__name__)

PROXIMITY_TOLERANCE_SECONDS = 900
# An RT time more than this far before "now" is taken to be after midnight
MIDNIGHT_ROLLOVER_SECONDS = 3600
SECONDS_PER_DAY = 86400

DepartureSource = Literal["trip_stop", "trip_delay", "proximity", "schedule"]


@dataclass(frozen=True)
class ScheduledDeparture:
    """One stop_times row for the requested stop/direction, from the static store."""
    trip_id: str
    service_id: str
    departure_time: str  # HH:MM:SS, may exceed 24:00:00
    stop_id: str
    stop_sequence: int | None = None


@dataclass(frozen=True)
class Departure:
    minutes: int
    time: str                 # HH:MM local
    realtime: bool
    delay_minutes: int | None
    seconds: int              # final departure, seconds after local midnight
    source: DepartureSource = "schedule"


def _round_half_up(value: float) -> int:
    return math.floor(value + 0.5)


def _apply_stop_update(
    stu: StopTimeUpdate,
    theoretical: int,
    now: datetime,
    now_seconds: int,
) -> tuple[int, int] | None:
    """(final_seconds, delay_minutes) from a stop-level update, or None if it has no departure data."""
    if stu.departure_time is not None:
        rt_seconds = seconds_since_midnight(datetime.fromtimestamp(stu.departure_time, tz=now.tzinfo))
        if rt_seconds < now_seconds - MIDNIGHT_ROLLOVER_SECONDS:
            rt_seconds += SECONDS_PER_DAY
        return rt_seconds, _round_half_up((rt_seconds - theoretical) / 60)
    if stu.departure_delay is not None:
        return theoretical + stu.departure_delay, _round_half_up(stu.departure_delay / 60)
    return None


def _resolve_realtime(
    cache: FeedCache,
    candidate: ScheduledDeparture,
    route_id: str,
    theoretical: int,
    now: datetime,
    now_seconds: int,
) -> tuple[int, int, DepartureSource] | None:
    stu: StopTimeUpdate | None = None
    source: DepartureSource = "trip_stop"

    trip = cache.match_trip(candidate.trip_id)
    if trip is not None:
        stu = trip.stop_times_by_sequence.get(candidate.stop_sequence)
        if stu is None:
            stu = trip.stop_times_by_stop_id.get(candidate.stop_id)
        if stu is None and trip.delay is not None:
            return theoretical + trip.delay, _round_half_up(trip.delay / 60), "trip_delay"

    if stu is None:
        theoretical_epoch = int(local_midnight(now).timestamp()) + theoretical
        stu = find_closest_update(
            cache, route_id, candidate.stop_id, theoretical_epoch, PROXIMITY_TOLERANCE_SECONDS,
        )
        source = "proximity"

    if stu is None:
        return None
    applied = _apply_stop_update(stu, theoretical, now, now_seconds)
    if applied is None:
        return None
    final_seconds, delay_minutes = applied
    return final_seconds, delay_minutes, source


def estimate_departure(
    cache: FeedCache | None,
    candidate: ScheduledDeparture,
    route_id: str,
    now: datetime,
) -> Departure:
    """Estimate one departure.  cache=None (no feed yet) gives the theoretical time."""
    now_seconds = seconds_since_midnight(now)
    theoretical = hms_to_seconds(candidate.departure_time)

    resolved = None
    if cache is not None:
        resolved = _resolve_realtime(cache, candidate, route_id, theoretical, now, now_seconds)

    if resolved is None:
        final_seconds, delay_minutes, source, realtime = theoretical, None, "schedule", False
    else:
        final_seconds, delay_minutes, source = resolved
        realtime = True
        logger.debug(
            "trip=%s stop=%s: %s → %s via %s",
            candidate.trip_id, candidate.stop_id,
            candidate.departure_time, format_clock(final_seconds), source,
        )

    return Departure(
        minutes=_round_half_up((final_seconds - now_seconds) / 60),
        time=format_clock(final_seconds),
        realtime=realtime,
        delay_minutes=delay_minutes,
        seconds=final_seconds,
        source=source,
    )


def next_departures(
    cache: FeedCache | None,
    candidates: list[ScheduledDeparture],
    route_id: str,
    now: datetime,
    limit: int = 3,
) -> list[Departure]:
    """Estimate every candidate, drop those already gone, soonest first, at most `limit`."""
    estimated = [estimate_departure(cache, c, route_id, now) for c in candidates]
    upcoming = [d for d in estimated if d.minutes >= 0]
    upcoming.sort(key=lambda d: d.minutes)
    return upcoming[:limit]

"""
Static schedule queries used to build departure candidates.

Directions are addressed by a composite id "route_id|direction_id|headsign"
(direction_id may be empty) because operators reuse direction_id values
across headsigns.  Stops may be given as a parent station; they are resolved
to the platform stop_ids that actually carry stop_times.
"""

import logging
import math
import re
from dataclasses import dataclass
from typing import Any

from sqlalchemy import case, func, or_
from sqlalchemy.orm import Query, Session

from db.models import Route, ServiceCalendar, ServiceCalendarDate, Stop, StopTime, Trip
from departures.estimator import ScheduledDeparture
from departures.service_day import hms_to_seconds

logger = logging.getLogger(__name__)

MAX_NEARBY_STOPS = 20
MAX_DIRECTIONS = 30
_DIRECTION_SCAN_LIMIT = 200


@dataclass(frozen=True)
class Direction:
    route_id: str
    direction_id: int | None
    headsign: str

    @property
    def key(self) -> str:
        return f"{self.route_id}|{'' if self.direction_id is None else self.direction_id}|{self.headsign}"


def parse_direction_id(direction_id: str) -> Direction:
    """Parse 'route_id|direction_id|headsign'.  Raises ValueError on a malformed id."""
    parts = direction_id.split("|", 2)
    if len(parts) < 3:
        raise ValueError(f"Invalid direction id: {direction_id!r}")
    route_id, dir_part, headsign = parts
    return Direction(
        route_id=route_id,
        direction_id=int(dir_part) if dir_part != "" else None,
        headsign=headsign,
    )


def _natural_key(text: str) -> list:
    """Sort key that orders 'A2' before 'A10'."""
    return [int(tok) if tok.isdigit() else tok.casefold() for tok in re.split(r"(\d+)", text)]


def _line_name(route: Route) -> str:
    return route.route_short_name or route.route_long_name or route.route_id


def _haversine_metres(lat1: float, lon1: float, lat2: float, lon2: float) -> float:
    """Great-circle distance between two (lat, lon) points in metres."""
    r = 6_371_000
    phi1, phi2 = math.radians(lat1), math.radians(lat2)
    dphi = math.radians(lat2 - lat1)
    dlambda = math.radians(lon2 - lon1)
    a = math.sin(dphi / 2) ** 2 + math.cos(phi1) * math.cos(phi2) * math.sin(dlambda / 2) ** 2
    return 2 * r * math.asin(math.sqrt(a))


def resolve_stop_ids(session: Session, stop_id: str) -> list[str]:
    """
    stop_ids carrying stop_times for `stop_id`.

    A stop with stop_times resolves to itself; otherwise its child platforms
    (parent_station = stop_id, location_type 0 or NULL) are returned.
    """
    direct = session.query(StopTime.id).filter(StopTime.stop_id == stop_id).first()
    if direct is not None:
        return [stop_id]
    children = (
        session.query(Stop.stop_id)
        .filter(
            Stop.parent_station == stop_id,
            or_(Stop.location_type.is_(None), Stop.location_type == 0),
        )
        .all()
    )
    return [row[0] for row in children]


def active_service_ids(session: Session, service_date: str, weekday: str) -> list[str]:
    """
    service_ids running on service_date (YYYYMMDD): calendar.txt entries for
    that weekday and date range, then calendar_dates additions/removals.
    """
    weekday_column = getattr(ServiceCalendar, weekday)
    rows = (
        session.query(ServiceCalendar.service_id)
        .filter(
            weekday_column.is_(True),
            ServiceCalendar.start_date <= service_date,
            ServiceCalendar.end_date >= service_date,
        )
        .all()
    )
    service_ids = {row[0] for row in rows}

    exceptions = (
        session.query(ServiceCalendarDate.service_id, ServiceCalendarDate.exception_type)
        .filter(ServiceCalendarDate.date == service_date)
        .all()
    )
    for service_id, exception_type in exceptions:
        if exception_type == 1:
            service_ids.add(service_id)
        elif exception_type == 2:
            service_ids.discard(service_id)

    return sorted(service_ids)


def _direction_query(session: Session, stop_ids: list[str], direction: Direction, *columns) -> Query:
    query = (
        session.query(*columns)
        .join(Trip, Trip.trip_id == StopTime.trip_id)
        .filter(
            StopTime.stop_id.in_(stop_ids),
            Trip.route_id == direction.route_id,
            Trip.trip_headsign == direction.headsign,
        )
    )
    if direction.direction_id is not None:
        query = query.filter(Trip.direction_id == direction.direction_id)
    return query


def direction_exists(session: Session, stop_ids: list[str], direction: Direction) -> bool:
    return _direction_query(session, stop_ids, direction, StopTime.id).first() is not None


def candidate_departures(
    session: Session,
    stop_ids: list[str],
    direction: Direction,
) -> list[ScheduledDeparture]:
    """All scheduled departures at the stops for this direction, any service, by time."""
    rows = (
        _direction_query(
            session, stop_ids, direction,
            StopTime.trip_id, Trip.service_id, StopTime.departure_time,
            StopTime.stop_id, StopTime.stop_sequence,
        )
        .all()
    )
    candidates = [
        ScheduledDeparture(
            trip_id=trip_id,
            service_id=service_id,
            departure_time=departure_time,
            stop_id=stop_id,
            stop_sequence=stop_sequence,
        )
        for trip_id, service_id, departure_time, stop_id, stop_sequence in rows
    ]
    # String order breaks for "9:05:00" vs "10:00:00"; sort numerically
    candidates.sort(key=lambda c: hms_to_seconds(c.departure_time))
    return candidates


def list_directions(session: Session, stop_ids: list[str]) -> list[dict[str, str]]:
    """Distinct (route, direction, headsign) served at the stops, by line then headsign."""
    rows = (
        session.query(Route, Trip.direction_id, Trip.trip_headsign)
        .select_from(StopTime)
        .join(Trip, Trip.trip_id == StopTime.trip_id)
        .join(Route, Route.route_id == Trip.route_id)
        .filter(
            StopTime.stop_id.in_(stop_ids),
            Trip.trip_headsign.isnot(None),
            func.trim(Trip.trip_headsign) != "",
        )
        .distinct()
        .limit(_DIRECTION_SCAN_LIMIT)
        .all()
    )

    seen: set[str] = set()
    directions: list[dict[str, str]] = []
    for route, direction_id, headsign in rows:
        key = Direction(route.route_id, direction_id, headsign).key
        if key in seen:
            continue
        seen.add(key)
        directions.append({"id": key, "headsign": headsign, "line": _line_name(route)})

    directions.sort(key=lambda d: (_natural_key(d["line"]), d["headsign"].casefold()))
    return directions[:MAX_DIRECTIONS]


def _line_headsigns(session: Session, stop_ids: list[str]) -> dict[str, list[dict[str, str]]]:
    rows = (
        session.query(StopTime.stop_id, Route, Trip.trip_headsign)
        .join(Trip, Trip.trip_id == StopTime.trip_id)
        .join(Route, Route.route_id == Trip.route_id)
        .filter(
            StopTime.stop_id.in_(stop_ids),
            Trip.trip_headsign.isnot(None),
            func.trim(Trip.trip_headsign) != "",
        )
        .distinct()
        .all()
    )
    by_stop: dict[str, list[dict[str, str]]] = {}
    for stop_id, route, headsign in rows:
        entry = {"line": _line_name(route), "headsign": headsign}
        existing = by_stop.setdefault(stop_id, [])
        if entry not in existing:
            existing.append(entry)
    for entries in by_stop.values():
        entries.sort(key=lambda d: (_natural_key(d["line"]), d["headsign"].casefold()))
    return by_stop


def nearby_stops(session: Session, lat: float, lon: float, radius_m: float) -> list[dict[str, Any]]:
    """Stops within radius_m of (lat, lon), closest first, with the lines/headsigns they serve."""
    in_range = []
    for stop in session.query(Stop).all():
        distance = _haversine_metres(lat, lon, stop.stop_lat, stop.stop_lon)
        if distance <= radius_m:
            in_range.append((distance, stop))
    in_range.sort(key=lambda pair: pair[0])
    in_range = in_range[:MAX_NEARBY_STOPS]

    directions = _line_headsigns(session, [stop.stop_id for _, stop in in_range])
    return [
        {
            "id": stop.stop_id,
            "name": stop.stop_name,
            "distance": round(distance, 1),
            "directions": directions.get(stop.stop_id, []),
        }
        for distance, stop in in_range
    ]


def search_stops(session: Session, query: str, limit: int = 10) -> list[dict[str, str]]:
    """
    Stops whose name contains `query`, collapsed to their parent station.

    Names starting with the query rank first, then alphabetical.
    """
    term = query.strip()
    term_lower = term.lower()
    rows = (
        session.query(Stop)
        .filter(Stop.stop_name.ilike(f"%{term}%"))
        .order_by(
            case((Stop.stop_name.ilike(f"{term}%"), 0), else_=1),
            Stop.stop_name,
        )
        .limit(limit * 3)  # headroom for parent deduplication
        .all()
    )

    parent_ids = {
        s.parent_station for s in rows
        if s.parent_station and s.location_type in (0, None)
    }
    parents = {}
    if parent_ids:
        parents = {
            p.stop_id: p
            for p in session.query(Stop).filter(Stop.stop_id.in_(parent_ids)).all()
        }

    seen: set[str] = set()
    results: list[dict[str, str]] = []
    for stop in rows:
        if stop.location_type == 1:
            target, kind = stop, "station"
        elif stop.parent_station:
            target, kind = parents.get(stop.parent_station), "station"
        else:
            target, kind = stop, "platform"

        if target is not None and target.stop_id not in seen:
            seen.add(target.stop_id)
            results.append({"id": target.stop_id, "name": target.stop_name, "kind": kind})
        if len(results) >= limit:
            break

    results.sort(key=lambda r: (0 if r["name"].lower().startswith(term_lower) else 1, r["name"].casefold()))
    return results[:limit]

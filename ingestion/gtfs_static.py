"""
Downloads and parses the operator's GTFS static feed into the local database.

Feed contents used:
  stops.txt          → Stop (incl. location_type / parent_station)
  routes.txt         → Route
  trips.txt          → Trip
  stop_times.txt     → StopTime
  calendar.txt       → ServiceCalendar      (optional)
  calendar_dates.txt → ServiceCalendarDate  (optional)
"""

import io
import logging
import zipfile

import httpx
import pandas as pd
from sqlalchemy.orm import Session

from config import DATA_DIR, GTFS_STATIC_URL
from db.models import (
    Route, ServiceCalendar, ServiceCalendarDate, Stop, StopTime, Trip,
)

logger = logging.getLogger(__name__)

GTFS_ZIP_PATH = DATA_DIR / "gtfs_static.zip"

REQUIRED_FILES = ("stops.txt", "routes.txt", "trips.txt", "stop_times.txt")


def _optional_int(value: str) -> int | None:
    value = value.strip()
    return int(value) if value else None


async def download_gtfs_zip(url: str = GTFS_STATIC_URL) -> bytes:
    """Download GTFS zip from the given URL and cache it to disk."""
    if not url:
        raise ValueError("GTFS_STATIC_URL is not configured. Set it in your .env file.")
    logger.info("Downloading GTFS static feed from %s", url)
    async with httpx.AsyncClient(timeout=60) as client:
        response = await client.get(url, follow_redirects=True)
        response.raise_for_status()
    GTFS_ZIP_PATH.write_bytes(response.content)
    logger.info("Saved GTFS zip to %s (%d bytes)", GTFS_ZIP_PATH, len(response.content))
    return response.content


def parse_and_store(zip_bytes: bytes, session: Session) -> dict[str, int]:
    """
    Extract GTFS zip and replace the stored schedule with its contents.

    Returns the number of rows loaded per table.  Raises ValueError when a
    required file is missing from the archive.
    """
    counts: dict[str, int] = {}
    with zipfile.ZipFile(io.BytesIO(zip_bytes)) as zf:
        names = zf.namelist()
        logger.info("GTFS zip contains: %s", names)
        missing = [f for f in REQUIRED_FILES if f not in names]
        if missing:
            raise ValueError(f"GTFS zip is missing required files: {', '.join(missing)}")

        def read(filename: str) -> pd.DataFrame:
            with zf.open(filename) as f:
                return pd.read_csv(f, dtype=str, encoding="utf-8-sig").fillna("")

        # Children first so deletes don't trip foreign keys on PostgreSQL
        session.query(StopTime).delete()
        session.query(Trip).delete()
        # Optional tables too, or a feed that drops them keeps stale services
        session.query(ServiceCalendarDate).delete()
        session.query(ServiceCalendar).delete()

        counts["stops"] = _parse_stops(read("stops.txt"), session)
        counts["routes"] = _parse_routes(read("routes.txt"), session)
        counts["trips"] = _parse_trips(read("trips.txt"), session)
        counts["stop_times"] = _parse_stop_times(read("stop_times.txt"), session)

        if "calendar.txt" in names:
            counts["calendar"] = _parse_calendar(read("calendar.txt"), session)
        if "calendar_dates.txt" in names:
            counts["calendar_dates"] = _parse_calendar_dates(read("calendar_dates.txt"), session)

    session.commit()
    logger.info("GTFS static data committed to database.")
    return counts


def _parse_stops(df: pd.DataFrame, session: Session) -> int:
    session.query(Stop).delete()
    for _, row in df.iterrows():
        session.add(Stop(
            stop_id=row["stop_id"],
            stop_name=row["stop_name"],
            stop_lat=float(row["stop_lat"] or 0),
            stop_lon=float(row["stop_lon"] or 0),
            location_type=_optional_int(row.get("location_type", "")),
            parent_station=row.get("parent_station", "") or None,
            platform_code=row.get("platform_code", "") or None,
        ))
    logger.info("Loaded %d stops.", len(df))
    return len(df)


def _parse_routes(df: pd.DataFrame, session: Session) -> int:
    session.query(Route).delete()
    for _, row in df.iterrows():
        session.add(Route(
            route_id=row["route_id"],
            route_short_name=row.get("route_short_name", ""),
            route_long_name=row.get("route_long_name", ""),
            route_type=_optional_int(row.get("route_type", "")),
        ))
    logger.info("Loaded %d routes.", len(df))
    return len(df)


def _parse_trips(df: pd.DataFrame, session: Session) -> int:
    session.flush()  # ensure route rows from _parse_routes are visible
    valid_routes = {r[0] for r in session.query(Route.route_id).all()}
    skipped = 0
    for _, row in df.iterrows():
        if row["route_id"] not in valid_routes:
            skipped += 1
            continue
        session.add(Trip(
            trip_id=row["trip_id"],
            route_id=row["route_id"],
            service_id=row["service_id"],
            trip_headsign=row.get("trip_headsign", ""),
            direction_id=_optional_int(row.get("direction_id", "")),
        ))
    if skipped:
        logger.warning("Skipped %d trips with invalid route_id.", skipped)
    logger.info("Loaded %d trips.", len(df) - skipped)
    return len(df) - skipped


def _parse_stop_times(df: pd.DataFrame, session: Session) -> int:
    session.flush()  # ensure trip/stop rows from prior parsers are visible
    # The feed occasionally references trips or stops it doesn't define.
    # SQLite silently ignores FK violations; PostgreSQL raises immediately.
    valid_trips = {r[0] for r in session.query(Trip.trip_id).all()}
    valid_stops = {r[0] for r in session.query(Stop.stop_id).all()}
    records = []
    skipped = 0
    for _, row in df.iterrows():
        if row["trip_id"] not in valid_trips or row["stop_id"] not in valid_stops:
            skipped += 1
            continue
        records.append(StopTime(
            trip_id=row["trip_id"],
            arrival_time=row["arrival_time"],
            departure_time=row["departure_time"] or row["arrival_time"],
            stop_id=row["stop_id"],
            stop_sequence=int(row["stop_sequence"]),
        ))
    if skipped:
        logger.warning("Skipped %d stop_times with invalid trip_id or stop_id.", skipped)
    session.bulk_save_objects(records)
    logger.info("Loaded %d stop times.", len(records))
    return len(records)


def _parse_calendar(df: pd.DataFrame, session: Session) -> int:
    for _, row in df.iterrows():
        session.add(ServiceCalendar(
            service_id=row["service_id"],
            monday=row["monday"] == "1",
            tuesday=row["tuesday"] == "1",
            wednesday=row["wednesday"] == "1",
            thursday=row["thursday"] == "1",
            friday=row["friday"] == "1",
            saturday=row["saturday"] == "1",
            sunday=row["sunday"] == "1",
            start_date=row["start_date"],
            end_date=row["end_date"],
        ))
    logger.info("Loaded %d calendar entries.", len(df))
    return len(df)


def _parse_calendar_dates(df: pd.DataFrame, session: Session) -> int:
    for _, row in df.iterrows():
        session.add(ServiceCalendarDate(
            service_id=row["service_id"],
            date=row["date"],
            exception_type=int(row["exception_type"]),
        ))
    logger.info("Loaded %d calendar date exceptions.", len(df))
    return len(df)


async def refresh_static_data(session: Session) -> dict[str, int]:
    """Download and ingest a fresh copy of GTFS static data."""
    zip_bytes = await download_gtfs_zip()
    return parse_and_store(zip_bytes, session)

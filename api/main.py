"""
FastAPI application entry point.

On startup:
  1. Initialise the database schema.
  2. Start GTFS-RT polling from the configured source (GTFS_RT_URL or
     GTFS_RT_PATH): one immediate fetch, then every GTFS_RT_POLL_SECONDS.
  3. Schedule the GTFS static refresh every GTFS_REFRESH_HOURS
     (only when GTFS_STATIC_URL is set).

Endpoints:
  GET  /health
  GET  /stops/near?lat=&lon=&radius=
  GET  /stops/search?q=&limit=
  GET  /stops/{stop_id}/directions
  GET  /stops/{stop_id}/next?direction_id=&limit=&debug=
  GET  /rt/status
  GET  /rt/debug?line=
  POST /ingest/gtfs-static

Run with:  uvicorn api.main:app
"""

import logging
from contextlib import asynccontextmanager
from datetime import datetime
from typing import Any
from zoneinfo import ZoneInfo

from apscheduler.schedulers.asyncio import AsyncIOScheduler
from fastapi import Depends, FastAPI, HTTPException, Query, Security
from fastapi.middleware.cors import CORSMiddleware
from fastapi.security import APIKeyHeader
from sqlalchemy import func
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import Session

from api.schemas import (
    DirectionOption,
    HealthResponse,
    IngestResponse,
    NextDeparturesResponse,
    RtStatusResponse,
    StopNear,
    StopSearchResult,
)
from config import (
    CORS_ORIGINS,
    DEFAULT_DEPARTURE_LIMIT,
    GTFS_REFRESH_HOURS,
    GTFS_RT_HEADERS_JSON,
    GTFS_RT_PATH,
    GTFS_RT_POLL_SECONDS,
    GTFS_RT_URL,
    GTFS_STATIC_URL,
    INGEST_API_KEY,
    LOCAL_TIMEZONE,
    NEARBY_RADIUS_METRES,
    SERVICE_DAY_START_HOUR,
)
from db.models import Route, Stop, Trip
from db.session import SessionLocal, get_session, init_db, schedule_loaded
from departures.estimator import next_departures
from departures.schedule import (
    active_service_ids,
    candidate_departures,
    direction_exists,
    list_directions,
    nearby_stops,
    parse_direction_id,
    resolve_stop_ids,
    search_stops,
)
from departures.service_day import (
    format_yyyymmdd,
    hms_to_seconds,
    seconds_since_midnight,
    service_day_start,
    weekday_name,
)
from ingestion.gtfs_static import refresh_static_data
from realtime.diagnostics import line_match_counts, match_statistics, trip_update_details
from realtime.feed_cache import FeedCacheHandle
from realtime.poller import RealtimePoller, RealtimeSource

logging.basicConfig(level=logging.INFO)
logger = logging.getLogger(__name__)

_ingest_key_header = APIKeyHeader(name="X-API-Key", auto_error=False)


def _require_ingest_key(key: str | None = Security(_ingest_key_header)) -> None:
    """
    Optional API-key guard for the ingest endpoint.

    If INGEST_API_KEY is not set the endpoint is open (local dev / testing).
    If it is set, the request must include the matching X-API-Key header.
    """
    if not INGEST_API_KEY:
        return  # no key configured → open
    if key != INGEST_API_KEY:
        raise HTTPException(status_code=401, detail="Invalid or missing X-API-Key header.")


scheduler = AsyncIOScheduler()

# One cache handle per process; the poller is its only writer.
cache_handle = FeedCacheHandle()
poller = RealtimePoller(
    source=RealtimeSource.from_settings(GTFS_RT_URL, GTFS_RT_PATH, GTFS_RT_HEADERS_JSON),
    handle=cache_handle,
    interval_seconds=GTFS_RT_POLL_SECONDS,
    scheduler=scheduler,
)


def get_poller() -> RealtimePoller:
    """Dependency returning the process-wide poller (overridable in tests)."""
    return poller


def _now() -> datetime:
    """Current local wall-clock time, in LOCAL_TIMEZONE when configured."""
    if LOCAL_TIMEZONE:
        return datetime.now(ZoneInfo(LOCAL_TIMEZONE))
    return datetime.now()


def _require_schedule(session: Session) -> None:
    if not schedule_loaded(session):
        raise HTTPException(
            status_code=500,
            detail={"error": "GTFS_DB_MISSING", "message": "GTFS schedule missing: run the static ingest first."},
        )


def _db_error(exc: SQLAlchemyError) -> HTTPException:
    logger.error("Database error: %s", exc, exc_info=True)
    return HTTPException(status_code=500, detail={"error": "DB_ERROR", "message": f"Database error: {exc}"})


async def _daily_gtfs_refresh() -> None:
    """
    Scheduled job: refresh GTFS static data.

    Opens its own DB session because APScheduler jobs run outside FastAPI's
    DI system.  Exceptions are caught and logged so a transient network
    failure cannot crash the scheduler process.
    """
    logger.info("Daily GTFS static refresh starting.")
    db = SessionLocal()
    try:
        counts = await refresh_static_data(db)
        logger.info("Daily GTFS static refresh complete: %s", counts)
    except Exception as exc:
        logger.error("Daily GTFS static refresh failed: %s", exc, exc_info=True)
    finally:
        db.close()


@asynccontextmanager
async def lifespan(app: FastAPI):
    # Startup
    init_db()
    logger.info("Database initialised.")

    if GTFS_STATIC_URL:
        scheduler.add_job(
            _daily_gtfs_refresh,
            "interval",
            hours=GTFS_REFRESH_HOURS,
            id="daily_gtfs_refresh",
        )

    await poller.start()
    scheduler.start()
    logger.info("Scheduler started.")

    yield

    # Shutdown
    poller.stop()
    if scheduler.running:
        scheduler.shutdown()


app = FastAPI(
    title="Next Departures",
    description="Next bus/tram departures per stop and direction, adjusted with GTFS-RT trip updates.",
    version="0.1.0",
    lifespan=lifespan,
)

app.add_middleware(
    CORSMiddleware,
    allow_origins=CORS_ORIGINS,
    allow_methods=["GET", "POST"],
    allow_headers=["*"],
)


@app.get("/health", response_model=HealthResponse)
async def health(
    session: Session = Depends(get_session),
    rt: RealtimePoller = Depends(get_poller),
) -> HealthResponse:
    """Liveness + data-freshness check."""
    return {
        "status": "ok",
        "timestamp": datetime.utcnow().isoformat(),
        "gtfs": {
            "stops": session.query(func.count(Stop.stop_id)).scalar() or 0,
            "trips": session.query(func.count(Trip.trip_id)).scalar() or 0,
            "routes": session.query(func.count(Route.route_id)).scalar() or 0,
        },
        "gtfs_rt": {
            "enabled": rt.enabled,
            "state": rt.state,
            "cache_present": rt.get_cache() is not None,
        },
    }


@app.get("/stops/near", response_model=list[StopNear])
async def stops_near(
    lat: float = Query(..., ge=-90, le=90),
    lon: float = Query(..., ge=-180, le=180),
    radius: float = Query(NEARBY_RADIUS_METRES, gt=0, description="Search radius in metres"),
    session: Session = Depends(get_session),
) -> list[StopNear]:
    """Stops within `radius` metres, closest first, with the lines serving them."""
    _require_schedule(session)
    try:
        return nearby_stops(session, lat, lon, radius)
    except SQLAlchemyError as exc:
        raise _db_error(exc)


@app.get("/stops/search", response_model=list[StopSearchResult])
async def stops_search(
    q: str = Query(..., min_length=2, description="Stop name substring to search"),
    limit: int = Query(10, ge=1, le=20),
    session: Session = Depends(get_session),
) -> list[StopSearchResult]:
    """Search stops by name, collapsing platforms to their parent station."""
    if len(q.strip()) < 2:
        raise HTTPException(status_code=422, detail="Query must contain at least 2 characters.")
    _require_schedule(session)
    try:
        return search_stops(session, q, limit)
    except SQLAlchemyError as exc:
        raise _db_error(exc)


@app.get("/stops/{stop_id}/directions", response_model=list[DirectionOption])
async def stop_directions(
    stop_id: str,
    session: Session = Depends(get_session),
) -> list[DirectionOption]:
    """Directions (line + headsign) served at a stop or its platforms."""
    _require_schedule(session)
    try:
        stop_ids = resolve_stop_ids(session, stop_id)
        directions = list_directions(session, stop_ids) if stop_ids else []
    except SQLAlchemyError as exc:
        raise _db_error(exc)
    if not directions:
        raise HTTPException(status_code=404, detail=f"No direction found for stop '{stop_id}'.")
    return directions


@app.get(
    "/stops/{stop_id}/next",
    response_model=NextDeparturesResponse,
    response_model_exclude_none=True,
)
async def stop_next_departures(
    stop_id: str,
    direction_id: str | None = Query(None, description="Direction id as returned by /stops/{stop_id}/directions"),
    limit: int = Query(DEFAULT_DEPARTURE_LIMIT, ge=1, le=10),
    debug: bool = Query(False),
    session: Session = Depends(get_session),
    rt: RealtimePoller = Depends(get_poller),
) -> NextDeparturesResponse:
    """
    Next departures at a stop for one direction.

    Scheduled departures of the current service day are adjusted with the
    latest GTFS-RT snapshot when one matches; otherwise the theoretical time
    is returned with realtime=false.
    """
    if not direction_id:
        raise HTTPException(status_code=400, detail="direction_id is required.")
    try:
        direction = parse_direction_id(direction_id)
    except ValueError as exc:
        raise HTTPException(status_code=400, detail=str(exc))

    _require_schedule(session)

    now = _now()
    service_start = service_day_start(now, SERVICE_DAY_START_HOUR)
    service_date = format_yyyymmdd(service_start)
    weekday = weekday_name(service_start)
    now_seconds = seconds_since_midnight(now)

    try:
        stop_ids = resolve_stop_ids(session, stop_id)
        if not stop_ids:
            raise HTTPException(status_code=404, detail=f"Stop '{stop_id}' not found.")
        if not direction_exists(session, stop_ids, direction):
            raise HTTPException(
                status_code=404,
                detail=f"Direction '{direction_id}' does not exist for stop '{stop_id}'.",
            )
        active = active_service_ids(session, service_date, weekday)
        candidates = candidate_departures(session, stop_ids, direction)
    except SQLAlchemyError as exc:
        raise _db_error(exc)

    active_set = set(active)
    in_service = [c for c in candidates if c.service_id in active_set]
    upcoming = [c for c in in_service if hms_to_seconds(c.departure_time) > now_seconds]

    cache = rt.get_cache()
    departures = next_departures(cache, upcoming, direction.route_id, now, limit)

    response: dict[str, Any] = {
        "stop_id": stop_id,
        "direction_id": direction_id,
        "departures": [
            {
                "minutes": d.minutes,
                "time": d.time,
                "realtime": d.realtime,
                "delay_minutes": d.delay_minutes,
            }
            for d in departures
        ],
        "rt_age_seconds": cache.age_seconds(datetime.now()) if cache is not None else None,
    }

    if debug:
        response["debug"] = {
            "now_local": now.isoformat(),
            "service_day_start": service_start.isoformat(),
            "service_date": service_date,
            "weekday": weekday,
            "active_service_ids": active[:20],
            "active_service_ids_count": len(active),
            "resolved_stop_ids": stop_ids,
            "parsed_direction": {
                "route_id": direction.route_id,
                "direction_id": direction.direction_id,
                "headsign": direction.headsign,
            },
            "candidates_before_filter": len(candidates),
            "candidates_after_service_filter": len(in_service),
            "candidates_after_time_filter": len(upcoming),
            "sources": [d.source for d in departures],
            "rt_cache": {
                "enabled": cache is not None,
                "age_seconds": cache.age_seconds(datetime.now()) if cache else None,
                "trip_updates_count": cache.trip_updates_count if cache else None,
            },
        }

    return response


@app.get("/rt/status", response_model=RtStatusResponse)
async def rt_status(rt: RealtimePoller = Depends(get_poller)) -> RtStatusResponse:
    """Whether GTFS-RT is enabled, where it comes from, and how fresh the cache is."""
    return rt.status()


@app.get("/rt/debug")
async def rt_debug(
    line: str | None = Query(None, description="Route short name to break match counts down for"),
    session: Session = Depends(get_session),
    rt: RealtimePoller = Depends(get_poller),
) -> dict[str, Any]:
    """Trip-id match rates between the live feed and the static schedule."""
    cache = rt.get_cache()
    if cache is None:
        return {"error": "No RT cache available"}

    try:
        static_ids = [row[0] for row in session.query(Trip.trip_id).all()]
        line_ids: list[str] = []
        if line:
            line_ids = [
                row[0]
                for row in session.query(Trip.trip_id)
                .join(Route, Route.route_id == Trip.route_id)
                .filter(Route.route_short_name == line)
                .limit(20)
                .all()
            ]
    except SQLAlchemyError as exc:
        raise _db_error(exc)

    result = match_statistics(cache, static_ids)
    result["rt_details"] = trip_update_details(cache)
    if line:
        result["line"] = {"name": line, "trip_count": len(line_ids), **line_match_counts(cache, line_ids)}
    return result


@app.post("/ingest/gtfs-static", response_model=IngestResponse)
async def trigger_gtfs_ingest(
    session: Session = Depends(get_session),
    _: None = Depends(_require_ingest_key),
) -> IngestResponse:
    """Manually trigger a GTFS static data refresh (in production this runs on a schedule)."""
    try:
        counts = await refresh_static_data(session)
    except ValueError as exc:
        raise HTTPException(status_code=409, detail=str(exc))
    return {
        "status": "ok",
        "message": f"GTFS static data refreshed: {counts.get('stop_times', 0)} stop times loaded.",
        "counts": counts,
    }

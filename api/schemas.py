from __future__ import annotations
from typing import Any, Literal
from pydantic import BaseModel


# ---------------------------------------------------------------------------
# GET /stops/*
# ---------------------------------------------------------------------------

class StopDirection(BaseModel):
    line: str
    headsign: str


class StopNear(BaseModel):
    id: str
    name: str
    distance: float
    directions: list[StopDirection]


class StopSearchResult(BaseModel):
    id: str
    name: str
    kind: Literal["station", "platform"]


class DirectionOption(BaseModel):
    id: str         # "route_id|direction_id|headsign"
    headsign: str
    line: str


class Departure(BaseModel):
    minutes: int
    time: str
    realtime: bool
    delay_minutes: int | None = None


class NextDeparturesResponse(BaseModel):
    stop_id: str
    direction_id: str
    departures: list[Departure]
    rt_age_seconds: int | None = None
    debug: dict[str, Any] | None = None


# ---------------------------------------------------------------------------
# GET /rt/*
# ---------------------------------------------------------------------------

class RtStatusResponse(BaseModel):
    enabled: bool
    source: Literal["url", "file"] | None
    url: str | None = None
    path: str | None = None
    fetched_at: str | None = None
    age_seconds: int | None = None
    entity_count: int | None = None
    trip_updates_count: int | None = None
    last_error: str | None = None


# ---------------------------------------------------------------------------
# GET /health
# ---------------------------------------------------------------------------

class GtfsStats(BaseModel):
    stops: int
    trips: int
    routes: int


class GtfsRtStats(BaseModel):
    enabled: bool
    state: Literal["stopped", "polling"]
    cache_present: bool


class HealthResponse(BaseModel):
    status: Literal["ok"]
    timestamp: str
    gtfs: GtfsStats
    gtfs_rt: GtfsRtStats


# ---------------------------------------------------------------------------
# POST /ingest/*
# ---------------------------------------------------------------------------

class IngestResponse(BaseModel):
    status: Literal["ok"]
    message: str
    counts: dict[str, int]

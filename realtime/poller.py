"""
Polls the configured GTFS-RT trip-updates source and republishes the cache.

Exactly one source is active for the life of the process:
  - "url"  : fetched with httpx, optional extra headers from GTFS_RT_HEADERS_JSON
  - "file" : a local FeedMessage snapshot, re-read on every tick

Each tick loads the payload, decodes it, builds a fresh FeedCache and
publishes it through the shared FeedCacheHandle.  Any failure on the way is
logged and kept as `last_error`; the previously published cache stays in
place and the next tick runs on schedule (fixed interval, no backoff).

States:  stopped --start()--> polling --stop()--> stopped
"""

import asyncio
import json
import logging
from dataclasses import dataclass, field
from datetime import datetime
from pathlib import Path
from typing import Any, Literal

import httpx
from apscheduler.schedulers.asyncio import AsyncIOScheduler

from realtime.feed_cache import FeedCache, FeedCacheHandle, build_feed_cache, decode_feed

logger = logging.getLogger(__name__)

SourceKind = Literal["url", "file"]

POLL_JOB_ID = "gtfs_rt_poll"
FETCH_TIMEOUT_SECONDS = 15


def parse_headers(headers_json: str) -> dict[str, str]:
    """Decode the extra-headers JSON object.  Malformed input is logged and ignored."""
    if not headers_json:
        return {}
    try:
        headers = json.loads(headers_json)
    except json.JSONDecodeError as exc:
        logger.error("Failed to parse GTFS_RT_HEADERS_JSON: %s", exc)
        return {}
    if not isinstance(headers, dict):
        logger.error("GTFS_RT_HEADERS_JSON must be a JSON object, got %s.", type(headers).__name__)
        return {}
    return {str(k): str(v) for k, v in headers.items()}


def _read_snapshot(path: Path) -> bytes:
    if not path.exists():
        raise FileNotFoundError(f"File not found: {path}")
    return path.read_bytes()


@dataclass(frozen=True)
class RealtimeSource:
    kind: SourceKind
    location: str  # URL or filesystem path
    headers: dict[str, str] = field(default_factory=dict)

    @classmethod
    def from_settings(cls, url: str, path: str, headers_json: str = "") -> "RealtimeSource | None":
        """Pick the active source; the URL wins when both are configured."""
        if url:
            return cls(kind="url", location=url, headers=parse_headers(headers_json))
        if path:
            return cls(kind="file", location=path)
        return None


class RealtimePoller:
    """Single writer of the FeedCacheHandle."""

    def __init__(
        self,
        source: RealtimeSource | None,
        handle: FeedCacheHandle,
        interval_seconds: int,
        scheduler: AsyncIOScheduler | None = None,
    ):
        self.source = source
        self.handle = handle
        self.interval_seconds = interval_seconds
        self.scheduler = scheduler
        self.last_error: str | None = None
        self._running = False

    @property
    def enabled(self) -> bool:
        return self.source is not None

    @property
    def state(self) -> Literal["stopped", "polling"]:
        return "polling" if self._running else "stopped"

    def get_cache(self) -> FeedCache | None:
        return self.handle.get()

    async def load_payload(self) -> bytes:
        """Read the raw feed bytes from the configured source."""
        if self.source.kind == "url":
            headers = {**self.source.headers, "Accept": "application/x-protobuf"}
            async with httpx.AsyncClient(timeout=FETCH_TIMEOUT_SECONDS) as client:
                response = await client.get(self.source.location, headers=headers)
                response.raise_for_status()
            return response.content

        # Off the event loop: a FIFO or network mount can stall the read
        return await asyncio.to_thread(_read_snapshot, Path(self.source.location))

    async def poll_once(self) -> bool:
        """
        Run one fetch → decode → build → publish cycle.

        Returns True when a new snapshot was published.  Never raises: a
        failure is logged and recorded in last_error and the current
        snapshot is kept.
        """
        if self.source is None:
            return False
        try:
            payload = await self.load_payload()
            feed = decode_feed(payload)
            cache = build_feed_cache(feed, fetched_at=datetime.now())
        except Exception as exc:
            self.last_error = str(exc) or exc.__class__.__name__
            logger.error(
                "Error loading/parsing GTFS-RT (%s: %s): %s",
                self.source.kind, self.source.location, self.last_error,
            )
            return False

        self.handle.publish(cache)
        self.last_error = None
        logger.info(
            "Updated RT cache: %d trip updates from %d entities (%s: %s).",
            cache.trip_updates_count, cache.entity_count,
            self.source.kind, self.source.location,
        )
        return True

    async def start(self) -> None:
        """Fetch once immediately, then keep polling every interval_seconds."""
        if self.source is None:
            logger.info("Neither GTFS_RT_URL nor GTFS_RT_PATH configured, RT disabled.")
            return
        if self._running:
            return

        logger.info(
            "Starting RT polling every %ds from %s: %s",
            self.interval_seconds, self.source.kind, self.source.location,
        )
        self._running = True
        await self.poll_once()

        if self.scheduler is not None and self.interval_seconds > 0:
            self.scheduler.add_job(
                self.poll_once,
                "interval",
                seconds=self.interval_seconds,
                id=POLL_JOB_ID,
                replace_existing=True,
            )
        elif self.interval_seconds <= 0:
            logger.info("RT periodic polling disabled (GTFS_RT_POLL_SECONDS=0), startup fetch only.")

    def stop(self) -> None:
        """Stop scheduling fetches.  The last published cache stays readable."""
        if not self._running:
            return
        if self.scheduler is not None and self.scheduler.get_job(POLL_JOB_ID):
            self.scheduler.remove_job(POLL_JOB_ID)
        self._running = False
        logger.info("RT polling stopped.")

    def status(self, now: datetime | None = None) -> dict[str, Any]:
        """Read-only summary for the /rt/status endpoint."""
        if self.source is None:
            return {"enabled": False, "source": None}

        status: dict[str, Any] = {
            "enabled": True,
            "source": self.source.kind,
            "url": self.source.location if self.source.kind == "url" else None,
            "path": self.source.location if self.source.kind == "file" else None,
            "last_error": self.last_error,
        }
        cache = self.handle.get()
        if cache is None:
            status.update(fetched_at=None, age_seconds=None, entity_count=0, trip_updates_count=0)
            return status

        status.update(
            fetched_at=cache.fetched_at.isoformat(),
            age_seconds=cache.age_seconds(now or datetime.now()),
            entity_count=cache.entity_count,
            trip_updates_count=cache.trip_updates_count,
        )
        return status

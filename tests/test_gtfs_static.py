"""
Tests for ingestion.gtfs_static.parse_and_store using an in-memory GTFS zip
and an in-memory SQLite database.  No network access.
"""

import io
import zipfile
from unittest.mock import AsyncMock, patch

import pytest
from sqlalchemy import create_engine
from sqlalchemy.orm import sessionmaker
from sqlalchemy.pool import StaticPool

from db.models import Base, Route, ServiceCalendar, ServiceCalendarDate, Stop, StopTime, Trip
from ingestion.gtfs_static import download_gtfs_zip, parse_and_store, refresh_static_data


STOPS = (
    "stop_id,stop_name,stop_lat,stop_lon,location_type,parent_station,platform_code\n"
    "STATION,Gare Centrale,45.0,5.0,1,,\n"
    "P1,Gare Centrale Quai A,45.0001,5.0,0,STATION,A\n"
)
ROUTES = (
    "route_id,route_short_name,route_long_name,route_type\n"
    "R1,2,Ligne 2,0\n"
)
TRIPS = (
    "route_id,service_id,trip_id,trip_headsign,direction_id\n"
    "R1,WD,T1,Centre,0\n"
    "R1,WD,T2,Airport,\n"
    "GHOST,WD,T3,Nowhere,0\n"
)
STOP_TIMES = (
    "trip_id,arrival_time,departure_time,stop_id,stop_sequence\n"
    "T1,08:00:00,08:00:30,P1,1\n"
    "T2,25:10:00,,P1,1\n"
    "T3,09:00:00,09:00:00,P1,1\n"
    "T1,08:05:00,08:05:00,MISSING,2\n"
)
CALENDAR = (
    "service_id,monday,tuesday,wednesday,thursday,friday,saturday,sunday,start_date,end_date\n"
    "WD,1,1,1,1,1,0,0,20260101,20261231\n"
)
CALENDAR_DATES = (
    "service_id,date,exception_type\n"
    "WD,20260210,2\n"
)


def _zip(files: dict[str, str], bom: bool = False) -> bytes:
    buf = io.BytesIO()
    with zipfile.ZipFile(buf, "w") as zf:
        for name, content in files.items():
            data = content.encode("utf-8")
            zf.writestr(name, (b"\xef\xbb\xbf" + data) if bom else data)
    return buf.getvalue()


FULL_FEED = {
    "stops.txt": STOPS,
    "routes.txt": ROUTES,
    "trips.txt": TRIPS,
    "stop_times.txt": STOP_TIMES,
    "calendar.txt": CALENDAR,
    "calendar_dates.txt": CALENDAR_DATES,
}


@pytest.fixture
def db_session():
    engine = create_engine(
        "sqlite:///:memory:",
        connect_args={"check_same_thread": False},
        poolclass=StaticPool,
    )
    Base.metadata.create_all(engine)
    TestSession = sessionmaker(bind=engine)
    session = TestSession()
    yield session
    session.close()
    engine.dispose()


# ---------------------------------------------------------------------------
# parse_and_store
# ---------------------------------------------------------------------------

class TestParseAndStore:
    def test_counts(self, db_session):
        counts = parse_and_store(_zip(FULL_FEED), db_session)
        assert counts == {
            "stops": 2,
            "routes": 1,
            "trips": 2,
            "stop_times": 2,
            "calendar": 1,
            "calendar_dates": 1,
        }

    def test_stop_fields(self, db_session):
        parse_and_store(_zip(FULL_FEED), db_session)
        station = db_session.get(Stop, "STATION")
        platform = db_session.get(Stop, "P1")
        assert station.location_type == 1
        assert station.parent_station is None
        assert platform.parent_station == "STATION"
        assert platform.platform_code == "A"

    def test_trip_direction_optional(self, db_session):
        parse_and_store(_zip(FULL_FEED), db_session)
        assert db_session.get(Trip, "T1").direction_id == 0
        assert db_session.get(Trip, "T2").direction_id is None

    def test_invalid_references_skipped(self, db_session):
        parse_and_store(_zip(FULL_FEED), db_session)
        assert db_session.get(Trip, "T3") is None
        assert db_session.query(StopTime).filter(StopTime.stop_id == "MISSING").count() == 0

    def test_departure_defaults_to_arrival(self, db_session):
        parse_and_store(_zip(FULL_FEED), db_session)
        st = db_session.query(StopTime).filter(StopTime.trip_id == "T2").one()
        assert st.departure_time == "25:10:00"

    def test_calendar(self, db_session):
        parse_and_store(_zip(FULL_FEED), db_session)
        wd = db_session.get(ServiceCalendar, "WD")
        assert wd.monday is True
        assert wd.saturday is False
        assert wd.start_date == "20260101"
        exception = db_session.query(ServiceCalendarDate).one()
        assert exception.exception_type == 2

    def test_calendar_files_optional(self, db_session):
        files = {k: v for k, v in FULL_FEED.items() if not k.startswith("calendar")}
        counts = parse_and_store(_zip(files), db_session)
        assert "calendar" not in counts
        assert "calendar_dates" not in counts

    def test_byte_order_mark_stripped(self, db_session):
        parse_and_store(_zip(FULL_FEED, bom=True), db_session)
        assert db_session.get(Stop, "STATION") is not None

    def test_missing_required_file(self, db_session):
        files = {k: v for k, v in FULL_FEED.items() if k != "stop_times.txt"}
        with pytest.raises(ValueError, match="stop_times.txt"):
            parse_and_store(_zip(files), db_session)

    def test_reimport_replaces(self, db_session):
        parse_and_store(_zip(FULL_FEED), db_session)
        parse_and_store(_zip(FULL_FEED), db_session)
        assert db_session.query(Stop).count() == 2
        assert db_session.query(Route).count() == 1
        assert db_session.query(StopTime).count() == 2

    def test_reimport_without_calendar_clears_old_services(self, db_session):
        parse_and_store(_zip(FULL_FEED), db_session)
        files = {k: v for k, v in FULL_FEED.items() if not k.startswith("calendar")}
        parse_and_store(_zip(files), db_session)
        assert db_session.query(ServiceCalendar).count() == 0
        assert db_session.query(ServiceCalendarDate).count() == 0
        assert db_session.query(Trip).count() > 0


# ---------------------------------------------------------------------------
# download / refresh
# ---------------------------------------------------------------------------

class TestRefresh:

    @pytest.mark.anyio
    async def test_download_requires_url(self):
        with pytest.raises(ValueError, match="GTFS_STATIC_URL"):
            await download_gtfs_zip("")

    @pytest.mark.anyio
    async def test_refresh_downloads_then_parses(self, db_session):
        with patch("ingestion.gtfs_static.download_gtfs_zip", new_callable=AsyncMock,
                   return_value=_zip(FULL_FEED)) as mock_download:
            counts = await refresh_static_data(db_session)
        mock_download.assert_awaited_once()
        assert counts["stop_times"] == 2

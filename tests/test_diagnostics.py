"""
Unit tests for realtime.diagnostics.
"""

from datetime import datetime

from google.transit import gtfs_realtime_pb2

from realtime.diagnostics import (
    describe_trip_id,
    line_match_counts,
    match_statistics,
    trip_update_details,
)
from realtime.feed_cache import build_feed_cache


def _cache(*trip_ids: str):
    feed = gtfs_realtime_pb2.FeedMessage()
    feed.header.gtfs_realtime_version = "2.0"
    for i, trip_id in enumerate(trip_ids):
        entity = feed.entity.add()
        entity.id = str(i)
        entity.trip_update.trip.trip_id = trip_id
        entity.trip_update.trip.route_id = "R1"
        stu = entity.trip_update.stop_time_update.add()
        stu.stop_id = "S1"
        stu.stop_sequence = 1
        stu.departure.delay = 60
    return build_feed_cache(feed, fetched_at=datetime(2026, 2, 9, 14, 0))


class TestDescribeTripId:
    def test_well_formed(self):
        info = describe_trip_id("1306_1000002_B_5_144800")
        assert info["normalized"] == "1000002_B_5_144800"
        assert info["fuzzy_key"] == "1000002_B_53280"
        assert info["components"]["line"] == "B"

    def test_unparseable(self):
        info = describe_trip_id("plain")
        assert info["fuzzy_key"] is None
        assert info["components"] is None


class TestMatchStatistics:
    def test_counts_per_strategy(self):
        cache = _cache(
            "1_100_A_1_080000",   # exact
            "2_100_A_1_090000",   # normalized only
            "3_100_A_2_100100",   # fuzzy only
            "4_999_Z_1_120000",   # nothing
        )
        static = ["1_100_A_1_080000", "9_100_A_1_090000", "9_100_A_1_100000"]
        stats = match_statistics(cache, static)

        assert stats["rt_trip_count"] == 4
        assert stats["db_trip_count"] == 3
        assert stats["exact_matches"] == 1
        assert stats["exact_match_percentage"] == "25.0%"
        # the exact match also matches by normalized id and fuzzy key
        assert stats["normalized_matches"] == 2
        assert stats["fuzzy_matches"] == 3
        assert stats["fuzzy_match_percentage"] == "75.0%"
        assert {"rt": "2_100_A_1_090000", "db": "9_100_A_1_090000"} in stats["normalized_matched_trips"]

    def test_empty_feed(self):
        stats = match_statistics(_cache(), ["T1"])
        assert stats["rt_trip_count"] == 0
        assert stats["exact_match_percentage"] == "0.0%"

    def test_sample_size(self):
        cache = _cache(*[f"T{i}" for i in range(8)])
        assert len(match_statistics(cache, [], sample_size=3)["sample_rt_trip_ids"]) == 3

    def test_matched_lists_capped(self):
        ids = [f"T{i}" for i in range(15)]
        stats = match_statistics(_cache(*ids), ids)
        assert stats["exact_matches"] == 15
        assert len(stats["exact_matched_trips"]) == 10


class TestLineMatchCounts:
    def test_counts(self):
        cache = _cache("1_100_A_1_080000", "2_100_A_1_090000")
        counts = line_match_counts(cache, ["1_100_A_1_080000", "9_100_A_1_090000", "9_100_A_1_110000"])
        assert counts == {"exact_matches": 1, "normalized_matches": 2, "fuzzy_matches": 2}


class TestTripUpdateDetails:
    def test_trimmed(self):
        details = trip_update_details(_cache("T1", "T2", "T3"), limit=2)
        assert len(details) == 2
        assert details[0] == {
            "trip_id": "T1",
            "route_id": "R1",
            "direction_id": None,
            "delay": None,
            "stop_ids": ["S1"],
            "stop_sequences": [1],
        }

"""
Unit tests for realtime.trip_ids, pure functions, no fixtures needed.
"""

from realtime.trip_ids import (
    TIME_WINDOW_SECONDS,
    TripIdComponents,
    fuzzy_key,
    normalize_trip_id,
    parse_trip_id_components,
    time_window,
)


# ---------------------------------------------------------------------------
# normalize_trip_id
# ---------------------------------------------------------------------------

class TestNormalizeTripId:
    def test_strips_first_segment(self):
        assert normalize_trip_id("1306_1000002_B_5_144800") == "1000002_B_5_144800"

    def test_no_underscore_unchanged(self):
        assert normalize_trip_id("ABC") == "ABC"

    def test_leading_underscore(self):
        assert normalize_trip_id("_tail") == "tail"

    def test_trailing_underscore_gives_empty(self):
        assert normalize_trip_id("head_") == ""

    def test_empty_string(self):
        assert normalize_trip_id("") == ""

    def test_only_first_underscore_consumed(self):
        # Applying twice strips a second segment: callers normalize once
        once = normalize_trip_id("a_b_c")
        assert once == "b_c"
        assert normalize_trip_id(once) == "c"

    def test_prefix_variants_collapse(self):
        assert normalize_trip_id("99_1000002_B_5_144800") == normalize_trip_id("77_1000002_B_5_144800")


# ---------------------------------------------------------------------------
# parse_trip_id_components
# ---------------------------------------------------------------------------

class TestParseTripIdComponents:
    def test_well_formed(self):
        assert parse_trip_id_components("1306_1000002_B_5_144800") == TripIdComponents(
            service_code="1000002", line="B", time="144800", time_seconds=53280,
        )

    def test_hours_past_midnight(self):
        components = parse_trip_id_components("1_42_T2_0_251000")
        assert components.time_seconds == 25 * 3600 + 10 * 60

    def test_too_few_segments(self):
        assert parse_trip_id_components("1306_1000002_B_144800") is None

    def test_non_numeric_prefix(self):
        assert parse_trip_id_components("X_1000002_B_5_144800") is None

    def test_short_time(self):
        assert parse_trip_id_components("1306_1000002_B_5_1448") is None

    def test_trailing_garbage(self):
        assert parse_trip_id_components("1306_1000002_B_5_144800x") is None

    def test_plain_id(self):
        assert parse_trip_id_components("trip-42") is None


# ---------------------------------------------------------------------------
# time_window / fuzzy_key
# ---------------------------------------------------------------------------

class TestTimeWindow:
    def test_exact_boundary(self):
        assert time_window(600) == 600

    def test_rounds_down(self):
        assert time_window(899) == 600

    def test_zero(self):
        assert time_window(0) == 0

    def test_window_width(self):
        assert time_window(TIME_WINDOW_SECONDS - 1) == 0
        assert time_window(TIME_WINDOW_SECONDS) == TIME_WINDOW_SECONDS


class TestFuzzyKey:
    def test_well_formed(self):
        # 14:48:00 = 53280s, already on a 5-minute boundary
        assert fuzzy_key("1306_1000002_B_5_144800") == "1000002_B_53280"

    def test_same_window_same_key(self):
        # 14:46:10 and 14:49:59 fall into the 14:45 bucket
        assert fuzzy_key("1_7_A_1_144610") == fuzzy_key("2_7_A_9_144959") == "7_A_53100"

    def test_variant_ignored(self):
        assert fuzzy_key("1_7_A_1_144800") == fuzzy_key("1_7_A_2_144800")

    def test_different_line_different_key(self):
        assert fuzzy_key("1_7_A_1_144800") != fuzzy_key("1_7_B_1_144800")

    def test_adjacent_window_different_key(self):
        assert fuzzy_key("1_7_A_1_144459") != fuzzy_key("1_7_A_1_144500")

    def test_unparseable_returns_none(self):
        assert fuzzy_key("not-a-trip") is None

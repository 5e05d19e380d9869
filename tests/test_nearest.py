"""
Unit tests for realtime.nearest.nearest.
"""

from realtime.nearest import nearest


def _identity(x):
    return x


class TestNearest:
    def test_empty_returns_none(self):
        assert nearest([], 10, key=_identity) is None

    def test_single_item(self):
        assert nearest([100], 40, key=_identity) == (100, 60)

    def test_exact_hit(self):
        assert nearest([10, 20, 30], 20, key=_identity) == (20, 0)

    def test_between_picks_closer(self):
        assert nearest([10, 20, 30], 24, key=_identity) == (20, 4)
        assert nearest([10, 20, 30], 26, key=_identity) == (30, 4)

    def test_before_first(self):
        assert nearest([10, 20, 30], -5, key=_identity) == (10, 15)

    def test_after_last(self):
        assert nearest([10, 20, 30], 1000, key=_identity) == (30, 970)

    def test_tie_prefers_lower_index(self):
        assert nearest([10, 20], 15, key=_identity) == (10, 5)

    def test_key_function(self):
        items = [{"t": 100, "id": "a"}, {"t": 200, "id": "b"}, {"t": 300, "id": "c"}]
        item, delta = nearest(items, 260, key=lambda i: i["t"])
        assert item["id"] == "c"
        assert delta == 40

    def test_duplicates(self):
        items = [("x", 50), ("y", 50), ("z", 90)]
        item, delta = nearest(items, 50, key=lambda i: i[1])
        assert item == ("x", 50)
        assert delta == 0

    def test_matches_linear_scan(self):
        items = [3, 8, 15, 15, 22, 40, 41, 77]
        for target in range(-5, 90):
            best = min(items, key=lambda v: abs(v - target))
            _, delta = nearest(items, target, key=_identity)
            assert delta == abs(best - target)

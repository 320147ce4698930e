# tests/unit/test_location.py
"""Tests for location samples and update throttling."""

import pytest

from tracking.location import (
    LocationSample,
    LocationThrottle,
    is_valid_coordinate,
    should_apply_update,
)


class TestLocationSample:
    """Tests for the sample type."""

    def test_from_dict(self):
        sample = LocationSample.from_dict({"lat": 1, "lng": 2.5, "accuracy": 8, "updatedAt": 99})
        assert sample == LocationSample(1.0, 2.5, 8.0, 99)

    @pytest.mark.parametrize("data", [None, {}, {"lat": 1}, {"lat": "1", "lng": 2}, {"lat": True, "lng": 2}])
    def test_from_dict_rejects_missing_coordinates(self, data):
        assert LocationSample.from_dict(data) is None

    def test_to_dict_omits_unknowns(self):
        assert LocationSample(1.0, 2.0).to_dict() == {"lat": 1.0, "lng": 2.0}

    def test_validity(self):
        assert is_valid_coordinate(0, 0)
        assert not is_valid_coordinate(float("nan"), 0)
        assert not is_valid_coordinate(0, float("-inf"))
        assert not is_valid_coordinate(None, 0)


class TestShouldApplyUpdate:
    """Tests for the throttle rule."""

    def test_first_fix_always_applies(self):
        assert should_apply_update(None, LocationSample(1.0, 1.0))

    def test_small_quick_move_dropped(self):
        prev = LocationSample(1.0, 1.0, 10.0, 0)
        assert not should_apply_update(prev, LocationSample(1.000001, 1.0, 10.0, 500))

    def test_real_move_applies(self):
        prev = LocationSample(1.0, 1.0, 10.0, 0)
        assert should_apply_update(prev, LocationSample(1.0001, 1.0, 10.0, 100))

    def test_slow_enough_applies(self):
        prev = LocationSample(1.0, 1.0, 10.0, 0)
        assert should_apply_update(prev, LocationSample(1.0, 1.0, 10.0, 700))

    def test_accuracy_gain_applies(self):
        prev = LocationSample(1.0, 1.0, 10.0, 0)
        assert should_apply_update(prev, LocationSample(1.0, 1.0, 7.9, 100))
        assert not should_apply_update(prev, LocationSample(1.0, 1.0, 8.0, 100))

    def test_explicit_elapsed_wins(self):
        prev = LocationSample(1.0, 1.0, None, 0)
        assert not should_apply_update(prev, LocationSample(1.0, 1.0, None, 5000), elapsed_ms=100)


class TestLocationThrottle:
    """Tests for per-player throttling of inbound frames."""

    def test_per_player_memory(self):
        throttle = LocationThrottle()
        sample = LocationSample(1.0, 1.0)
        assert throttle.accept("a", sample, received_at_ms=1000)
        assert not throttle.accept("a", sample, received_at_ms=1200)
        assert throttle.accept("b", sample, received_at_ms=1200)
        assert throttle.accept("a", sample, received_at_ms=1800)

    def test_clear(self):
        throttle = LocationThrottle()
        sample = LocationSample(1.0, 1.0)
        throttle.accept("a", sample, received_at_ms=1000)
        throttle.clear()
        assert throttle.accept("a", sample, received_at_ms=1001)

# tests/unit/test_battle_zone.py
"""Tests for the shrinking battle zone and distance helpers."""

import numpy as np
import pytest

from tracking.battle_zone import (
    distances_from,
    get_battle_zone_radius_meters,
    haversine_meters,
    is_inside_zone,
    players_outside_zone,
)

CHASE_SECONDS = 600
DEADLINE = 10_000_000
START = DEADLINE - CHASE_SECONDS * 1000


def radius_at(elapsed_ratio):
    return get_battle_zone_radius_meters(DEADLINE, CHASE_SECONDS, START + round(elapsed_ratio * CHASE_SECONDS * 1000))


class TestRadius:
    """Tests for get_battle_zone_radius_meters."""

    def test_inactive_without_deadline_or_duration(self):
        assert get_battle_zone_radius_meters(None, 600, 0) is None
        assert get_battle_zone_radius_meters(DEADLINE, 0, 0) is None
        assert get_battle_zone_radius_meters(DEADLINE, -5, 0) is None
        assert get_battle_zone_radius_meters(DEADLINE, None, 0) is None

    def test_full_radius_before_and_at_start(self):
        assert get_battle_zone_radius_meters(DEADLINE, CHASE_SECONDS, START - 1) == 1000
        assert radius_at(0) == 1000

    def test_holds_until_seventy_percent(self):
        assert radius_at(0.5) == 1000
        assert radius_at(0.7) == 1000

    @pytest.mark.parametrize("chase_seconds", [1, 7, 11, 13, 29, 37, 61, 97, 301, 599, 601, 1234, 4999])
    def test_full_radius_at_seventy_percent_for_any_duration(self, chase_seconds):
        deadline = 1_700_000_000_000
        at_threshold = deadline - chase_seconds * 300
        assert get_battle_zone_radius_meters(deadline, chase_seconds, at_threshold) == 1000
        assert get_battle_zone_radius_meters(deadline, chase_seconds, at_threshold + 1) < 1000

    def test_seventy_percent_sweep(self):
        deadline = 10_000_000
        for chase_seconds in range(1, 5000):
            now = deadline - 0.3 * chase_seconds * 1000
            assert get_battle_zone_radius_meters(deadline, chase_seconds, now) == 1000, chase_seconds

    def test_linear_shrink(self):
        assert radius_at(0.85) == pytest.approx(550.0)
        assert radius_at(0.94) == pytest.approx(280.0)

    def test_minimum_at_and_after_deadline(self):
        assert radius_at(1.0) == 100
        assert get_battle_zone_radius_meters(DEADLINE, CHASE_SECONDS, DEADLINE + 60_000) == 100

    def test_never_increases(self):
        radii = [radius_at(step / 100) for step in range(0, 121)]
        assert all(a >= b for a, b in zip(radii, radii[1:]))


class TestDistances:
    """Tests for haversine helpers."""

    def test_zero_distance(self):
        assert haversine_meters(51.5, -0.12, 51.5, -0.12) == 0

    def test_one_degree_of_latitude(self):
        assert haversine_meters(0, 0, 1, 0) == pytest.approx(111_195, rel=1e-3)

    def test_vectorised_matches_scalar(self):
        center = (48.8566, 2.3522)
        points = np.array([[48.8606, 2.3376], [48.8530, 2.3499]])
        expected = [haversine_meters(center[0], center[1], lat, lng) for lat, lng in points]
        assert distances_from(center, points) == pytest.approx(expected)

    def test_vectorised_empty(self):
        assert distances_from((0, 0), np.zeros((0, 2))).size == 0

    def test_is_inside_zone(self):
        assert is_inside_zone((0, 0), (0.001, 0), 200)
        assert not is_inside_zone((0, 0), (0.01, 0), 200)


class TestPlayersOutsideZone:
    """Tests for roster-wide boundary checks."""

    def test_reports_only_players_outside(self):
        positions = [("near", 0.0005, 0.0), ("far", 0.02, 0.0), ("edge", 0.0, 0.0)]
        assert players_outside_zone((0.0, 0.0), 500, positions) == ["far"]

    def test_skips_players_without_valid_position(self):
        positions = [("none", None, None), ("nan", float("nan"), 0.0), ("far", 1.0, 1.0)]
        assert players_outside_zone((0.0, 0.0), 100, positions) == ["far"]

    def test_empty_roster(self):
        assert players_outside_zone((0.0, 0.0), 100, []) == []

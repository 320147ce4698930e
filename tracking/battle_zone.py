"""Shrinking battle-zone boundary and great-circle distance helpers."""
import math
from fractions import Fraction
from typing import Iterable, List, Optional, Tuple

import numpy as np

EARTH_RADIUS_M = 6371e3

BATTLE_ZONE_INITIAL_RADIUS_M = 1000.0
BATTLE_ZONE_MIN_RADIUS_M = 100.0
# Fraction of the chase that must elapse before the zone starts shrinking.
SHRINK_START_ELAPSED_RATIO = Fraction(7, 10)


def haversine_meters(lat1: float, lng1: float, lat2: float, lng2: float) -> float:
    """Great-circle distance between two WGS84 points in meters."""
    p1 = math.radians(lat1)
    p2 = math.radians(lat2)
    dp = math.radians(lat2 - lat1)
    dl = math.radians(lng2 - lng1)
    a = math.sin(dp / 2) ** 2 + math.cos(p1) * math.cos(p2) * math.sin(dl / 2) ** 2
    c = 2 * math.atan2(math.sqrt(a), math.sqrt(1 - a))
    return EARTH_RADIUS_M * c


def get_battle_zone_radius_meters(
    phase_ends_at: Optional[float],
    chase_seconds: Optional[float],
    now: float,
    initial_radius_m: float = BATTLE_ZONE_INITIAL_RADIUS_M,
    min_radius_m: float = BATTLE_ZONE_MIN_RADIUS_M,
) -> Optional[float]:
    """Current boundary radius for a chase ending at ``phase_ends_at``.

    Args:
        phase_ends_at: Chase deadline in epoch milliseconds.
        chase_seconds: Total chase duration in seconds.
        now: Current time in epoch milliseconds.

    Returns:
        The radius in meters, or None when geofencing is inactive (no
        deadline or a non-positive duration).
    """
    if phase_ends_at is None or chase_seconds is None or chase_seconds <= 0:
        return None

    total_ms = chase_seconds * 1000.0
    elapsed = now - (phase_ends_at - total_ms)

    if elapsed <= 0:
        return initial_radius_m
    if elapsed >= total_ms:
        return min_radius_m

    # Compared in whole milliseconds so the 70 % mark is inclusive for any duration
    ratio = SHRINK_START_ELAPSED_RATIO
    if round(elapsed) * ratio.denominator <= total_ms * ratio.numerator:
        return initial_radius_m

    shrink_start_ms = total_ms * float(ratio)
    shrink_duration_ms = total_ms - shrink_start_ms
    progress = min(1.0, max(0.0, (elapsed - shrink_start_ms) / shrink_duration_ms))
    return initial_radius_m - progress * (initial_radius_m - min_radius_m)


def is_inside_zone(center: Tuple[float, float], point: Tuple[float, float], radius_m: float) -> bool:
    """Check whether ``point`` lies within ``radius_m`` of ``center``."""
    return haversine_meters(center[0], center[1], point[0], point[1]) <= radius_m


def distances_from(center: Tuple[float, float], points: np.ndarray) -> np.ndarray:
    """Vectorised haversine from ``center`` to an (N, 2) array of lat/lng rows."""
    if points.size == 0:
        return np.zeros(0)
    lat1 = np.radians(center[0])
    lat2 = np.radians(points[:, 0])
    dp = lat2 - lat1
    dl = np.radians(points[:, 1] - center[1])
    a = np.sin(dp / 2) ** 2 + np.cos(lat1) * np.cos(lat2) * np.sin(dl / 2) ** 2
    return EARTH_RADIUS_M * 2 * np.arctan2(np.sqrt(a), np.sqrt(1 - a))


def players_outside_zone(
    center: Tuple[float, float],
    radius_m: float,
    positions: Iterable[Tuple[str, float, float]],
) -> List[str]:
    """Return ids of players whose position lies outside the boundary.

    Args:
        center: Zone center as (lat, lng), normally the basecamp.
        radius_m: Current boundary radius.
        positions: (player_id, lat, lng) triples; non-finite rows are skipped.
    """
    ids = []
    coords = []
    for player_id, lat, lng in positions:
        if lat is None or lng is None or not (math.isfinite(lat) and math.isfinite(lng)):
            continue
        ids.append(player_id)
        coords.append((lat, lng))

    if not ids:
        return []

    distances = distances_from(center, np.asarray(coords, dtype=float))
    return [pid for pid, dist in zip(ids, distances) if dist > radius_m]

"""Location samples and the rules for when a new fix is worth applying."""
import math
import time
from dataclasses import dataclass
from typing import Any, Dict, Optional

# Below this lat/lng delta (about 1 m) a fix counts as "not moved".
MIN_LOCATION_DELTA = 0.00001
MIN_LOCATION_UPDATE_MS = 700
ACCURACY_IMPROVEMENT_METERS = 2.0


def now_ms() -> int:
    """Current wall-clock time in epoch milliseconds."""
    return int(time.time() * 1000)


@dataclass(frozen=True)
class LocationSample:
    """A single position fix."""
    lat: float
    lng: float
    accuracy: Optional[float] = None
    captured_at_ms: Optional[int] = None

    @property
    def is_valid(self) -> bool:
        return is_valid_coordinate(self.lat, self.lng)

    def to_dict(self) -> Dict[str, Any]:
        """Wire form used by UPDATE_LOCATION and location:update."""
        data: Dict[str, Any] = {"lat": self.lat, "lng": self.lng}
        if self.accuracy is not None:
            data["accuracy"] = self.accuracy
        if self.captured_at_ms is not None:
            data["updatedAt"] = self.captured_at_ms
        return data

    @classmethod
    def from_dict(cls, data: Any) -> Optional['LocationSample']:
        """Build a sample from a wire dict, or None if it lacks coordinates."""
        if not isinstance(data, dict):
            return None
        lat = data.get("lat")
        lng = data.get("lng")
        if not is_valid_coordinate(lat, lng):
            return None
        accuracy = data.get("accuracy")
        captured = data.get("updatedAt", data.get("capturedAtMs"))
        return cls(
            lat=float(lat),
            lng=float(lng),
            accuracy=float(accuracy) if _is_number(accuracy) else None,
            captured_at_ms=int(captured) if _is_number(captured) else None,
        )


def _is_number(value: Any) -> bool:
    return isinstance(value, (int, float)) and not isinstance(value, bool)


def is_valid_coordinate(lat: Any, lng: Any) -> bool:
    """True when both values are real, finite numbers."""
    return (
        _is_number(lat) and _is_number(lng)
        and math.isfinite(lat) and math.isfinite(lng)
    )


def should_apply_update(
    previous: Optional[LocationSample],
    candidate: LocationSample,
    elapsed_ms: Optional[float] = None
) -> bool:
    """Decide whether a new fix replaces the previous one.

    A fix is dropped only when it barely moved, arrived too soon, and did not
    improve accuracy. ``elapsed_ms`` defaults to the gap between the two
    samples' capture times; a non-positive gap never counts as "too soon".
    """
    if previous is None:
        return True

    if elapsed_ms is None:
        elapsed_ms = (candidate.captured_at_ms or 0) - (previous.captured_at_ms or 0)

    lat_diff = abs(candidate.lat - previous.lat)
    lng_diff = abs(candidate.lng - previous.lng)
    accuracy_improved = (
        candidate.accuracy is not None
        and previous.accuracy is not None
        and candidate.accuracy + ACCURACY_IMPROVEMENT_METERS < previous.accuracy
    )

    is_small_move = lat_diff < MIN_LOCATION_DELTA and lng_diff < MIN_LOCATION_DELTA
    is_too_soon = 0 < elapsed_ms < MIN_LOCATION_UPDATE_MS

    return not (is_small_move and is_too_soon and not accuracy_improved)


class LocationThrottle:
    """Per-player memory of the last applied fix for inbound position frames."""

    def __init__(self):
        self._last: Dict[str, LocationSample] = {}
        self._last_seen_ms: Dict[str, int] = {}

    def accept(self, player_id: str, sample: LocationSample, received_at_ms: Optional[int] = None) -> bool:
        """Record ``sample`` for ``player_id`` if it passes the throttle."""
        received = received_at_ms if received_at_ms is not None else now_ms()
        previous = self._last.get(player_id)
        elapsed = received - self._last_seen_ms[player_id] if previous is not None else None
        if not should_apply_update(previous, sample, elapsed):
            return False
        self._last[player_id] = sample
        self._last_seen_ms[player_id] = received
        return True

    def clear(self):
        self._last.clear()
        self._last_seen_ms.clear()

"""Cumulative distance, speed and step estimates from a stream of position fixes."""
from dataclasses import dataclass
from typing import Optional

from tracking.battle_zone import haversine_meters
from tracking.location import LocationSample, now_ms


STEP_LENGTH_M = 0.75
# GPS jitter floor: smaller increments are not counted as movement.
MIN_MOVE_M = 1.5


@dataclass(frozen=True)
class MovementStats:
    """Snapshot of movement for one tracking session."""
    cumulative_distance_meters: float = 0.0
    max_speed_kmh: float = 0.0
    estimated_steps: int = 0


class MovementTracker:
    """Accumulates movement stats while tracking is enabled.

    Updates received while tracking is off are dropped silently. Turning
    tracking off, or calling reset_stats(), zeroes every accumulator.
    """

    def __init__(self, tracking: bool = False):
        self._tracking = tracking
        self._distance_m = 0.0
        self._max_speed_kmh = 0.0
        self._steps = 0
        self._prev: Optional[LocationSample] = None
        self._prev_time_ms: Optional[float] = None

    @property
    def tracking(self) -> bool:
        return self._tracking

    def set_tracking(self, enabled: bool):
        """Enable or disable recording. Disabling discards the session."""
        if not enabled:
            self.reset_stats()
        self._tracking = enabled

    def reset_stats(self):
        """Zero all accumulators and forget the previous fix."""
        self._distance_m = 0.0
        self._max_speed_kmh = 0.0
        self._steps = 0
        self._prev = None
        self._prev_time_ms = None

    def on_location_update(self, sample: LocationSample) -> bool:
        """Fold a new fix into the stats.

        Returns:
            True if the fix added distance, False otherwise.
        """
        if not self._tracking:
            return False
        if not sample.is_valid:
            return False

        now = sample.captured_at_ms if sample.captured_at_ms is not None else now_ms()
        prev = self._prev
        prev_time = self._prev_time_ms
        moved = False

        if prev is not None and prev_time is not None:
            dist = haversine_meters(prev.lat, prev.lng, sample.lat, sample.lng)
            dt = (now - prev_time) / 1000.0

            if dist >= MIN_MOVE_M and dt > 0:
                self._distance_m += dist
                self._steps = round(self._distance_m / STEP_LENGTH_M)

                speed_kmh = round(dist / dt * 3.6, 1)
                if speed_kmh > self._max_speed_kmh:
                    self._max_speed_kmh = speed_kmh
                moved = True

        self._prev = sample
        self._prev_time_ms = now
        return moved

    def get_stats(self) -> MovementStats:
        return MovementStats(
            cumulative_distance_meters=self._distance_m,
            max_speed_kmh=self._max_speed_kmh,
            estimated_steps=self._steps,
        )

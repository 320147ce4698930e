"""Positioning-service collaborators.

The session controller only needs two things from a positioning service: a
single fix (bounded by the service's own timeout) and a periodic watch. Device
GPS lives outside this package; ``ReplayLocationProvider`` feeds a recorded
track, which is what the terminal client and the tests use.
"""
import asyncio
import json
import logging
from abc import ABC, abstractmethod
from enum import IntEnum
from pathlib import Path
from typing import Callable, List, Optional, Sequence

from tracking.location import LocationSample, now_ms

logger = logging.getLogger(__name__)

LocationCallback = Callable[[LocationSample], None]


class GeolocationErrorCode(IntEnum):
    """Error codes reported by positioning services."""
    PERMISSION_DENIED = 1
    POSITION_UNAVAILABLE = 2
    TIMEOUT = 3


class GeolocationError(Exception):
    """A position fix could not be obtained."""

    def __init__(self, code: GeolocationErrorCode, message: str = ""):
        super().__init__(message or code.name.replace("_", " ").lower())
        self.code = code


class LocationProvider(ABC):
    """Source of position fixes."""

    @abstractmethod
    async def get_current_location(self) -> LocationSample:
        """Return one fix or raise GeolocationError."""

    @abstractmethod
    def start_watching(self, interval_seconds: float, callback: LocationCallback) -> None:
        """Invoke ``callback`` with each new fix until stop_watching()."""

    @abstractmethod
    def stop_watching(self) -> None:
        """Stop a running watch. Safe to call when not watching."""

    @property
    @abstractmethod
    def is_watching(self) -> bool:
        """True while a watch is active."""


class ReplayLocationProvider(LocationProvider):
    """Replays a fixed list of fixes, one per watch interval."""

    def __init__(self, samples: Sequence[LocationSample], loop_track: bool = False,
                 fix_timeout: float = 25.0):
        self._samples: List[LocationSample] = list(samples)
        self._loop_track = loop_track
        self._fix_timeout = fix_timeout
        self._index = 0
        self._task: Optional[asyncio.Task] = None

    @classmethod
    def from_file(cls, path: str, loop_track: bool = False) -> 'ReplayLocationProvider':
        """Load a JSON track: a list of ``{"lat", "lng", "accuracy"?}`` objects."""
        raw = json.loads(Path(path).read_text(encoding="utf-8"))
        if isinstance(raw, dict):
            raw = raw.get("samples", [])
        samples = []
        for item in raw:
            sample = LocationSample.from_dict(item)
            if sample is None:
                logger.warning("Skipping invalid track point: %r", item)
                continue
            samples.append(sample)
        return cls(samples, loop_track=loop_track)

    def _next_sample(self) -> Optional[LocationSample]:
        if not self._samples:
            return None
        if self._index >= len(self._samples):
            if not self._loop_track:
                return None
            self._index = 0
        sample = self._samples[self._index]
        self._index += 1
        # Stamp replayed fixes with the time they are delivered
        return LocationSample(sample.lat, sample.lng, sample.accuracy, now_ms())

    async def get_current_location(self) -> LocationSample:
        try:
            return await asyncio.wait_for(self._fix(), timeout=self._fix_timeout)
        except asyncio.TimeoutError:
            raise GeolocationError(GeolocationErrorCode.TIMEOUT)

    async def _fix(self) -> LocationSample:
        if not self._samples:
            raise GeolocationError(GeolocationErrorCode.POSITION_UNAVAILABLE)
        index = min(self._index, len(self._samples) - 1)
        sample = self._samples[index]
        return LocationSample(sample.lat, sample.lng, sample.accuracy, now_ms())

    def start_watching(self, interval_seconds: float, callback: LocationCallback) -> None:
        if self._task is not None:
            self.stop_watching()
        self._task = asyncio.create_task(self._watch_loop(interval_seconds, callback))

    def stop_watching(self) -> None:
        if self._task is not None:
            self._task.cancel()
            self._task = None

    @property
    def is_watching(self) -> bool:
        return self._task is not None and not self._task.done()

    async def _watch_loop(self, interval_seconds: float, callback: LocationCallback):
        while True:
            sample = self._next_sample()
            if sample is None:
                logger.info("Replay track exhausted")
                return
            try:
                callback(sample)
            except Exception:
                logger.exception("Location callback failed")
            await asyncio.sleep(interval_seconds)

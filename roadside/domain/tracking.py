"""
Live position -> distance / speed / ETA derivation.

A ``PositionSampler`` is fed the provider's position reports for one
request.  It keeps a bounded trail of *retained* samples:

* samples not strictly newer than the last one seen raise ``StaleSample``;
* samples that moved less than ``min_delta_deg`` (~11 m) from the last
  retained one are treated as GPS jitter and not retained;
* the trail holds at most ``history_size`` samples, oldest evicted first.

Speed comes from the two most recent retained samples.  Once the provider
has not moved for longer than ``stale_after`` the speed (and so the ETA)
becomes indeterminate, surfaced as "calculating".
"""

from __future__ import annotations

from collections import deque
from dataclasses import dataclass
from datetime import datetime, timedelta
from typing import Optional

from .distance import bearing_deg, format_distance, format_eta, haversine_km
from .entities import Coordinate, as_utc
from .errors import StaleSample


@dataclass(frozen=True)
class PositionSample:
    latitude: float
    longitude: float
    captured_at: datetime

    @property
    def coordinate(self) -> Coordinate:
        return Coordinate(self.latitude, self.longitude)


@dataclass(frozen=True)
class EtaEstimate:
    distance_km: Optional[float] = None
    speed_kmh: Optional[float] = None
    eta_minutes: Optional[float] = None
    bearing_deg: Optional[float] = None

    @property
    def is_calculating(self) -> bool:
        return self.eta_minutes is None

    @property
    def distance_text(self) -> Optional[str]:
        return None if self.distance_km is None else format_distance(self.distance_km)

    @property
    def eta_text(self) -> str:
        return "calculating" if self.eta_minutes is None else format_eta(self.eta_minutes)


class PositionSampler:
    def __init__(
        self,
        destination: Optional[Coordinate],
        history_size: int = 15,
        min_delta_deg: float = 0.0001,
        stale_after: timedelta = timedelta(seconds=120),
    ):
        self.destination = destination
        self.min_delta_deg = min_delta_deg
        self.stale_after = stale_after
        self._history: deque[PositionSample] = deque(maxlen=history_size)
        self._last_seen_at: Optional[datetime] = None

    @property
    def latest(self) -> Optional[PositionSample]:
        return self._history[-1] if self._history else None

    @property
    def last_seen_at(self) -> Optional[datetime]:
        return self._last_seen_at

    def trail(self) -> list[Coordinate]:
        return [s.coordinate for s in self._history]

    def record(self, sample: PositionSample) -> bool:
        """Add *sample*; return ``True`` when it was retained in the trail."""
        captured_at = as_utc(sample.captured_at)
        if self._last_seen_at is not None and captured_at <= self._last_seen_at:
            raise StaleSample(
                f"sample at {captured_at.isoformat()} is not newer than "
                f"{self._last_seen_at.isoformat()}"
            )
        self._last_seen_at = captured_at

        previous = self.latest
        if previous is not None and self._is_jitter(previous, sample):
            return False

        self._history.append(
            PositionSample(sample.latitude, sample.longitude, captured_at)
        )
        return True

    def _is_jitter(self, previous: PositionSample, sample: PositionSample) -> bool:
        return (
            abs(sample.latitude - previous.latitude) < self.min_delta_deg
            and abs(sample.longitude - previous.longitude) < self.min_delta_deg
        )

    def speed_kmh(self, now: Optional[datetime] = None) -> Optional[float]:
        """Instantaneous speed, or ``None`` with no signal or a stale one."""
        if len(self._history) < 2:
            return None

        prev, last = self._history[-2], self._history[-1]
        reference = as_utc(now) if now is not None else self._last_seen_at
        if reference is not None and reference - last.captured_at > self.stale_after:
            return None

        hours = (last.captured_at - prev.captured_at).total_seconds() / 3600
        if hours <= 0:
            return None
        speed = haversine_km(
            prev.latitude, prev.longitude, last.latitude, last.longitude
        ) / hours
        return speed if speed > 0 else None

    def estimate(self, now: Optional[datetime] = None) -> EtaEstimate:
        last = self.latest
        if last is None or self.destination is None:
            return EtaEstimate()

        distance = haversine_km(
            last.latitude,
            last.longitude,
            self.destination.latitude,
            self.destination.longitude,
        )
        bearing = bearing_deg(
            last.latitude,
            last.longitude,
            self.destination.latitude,
            self.destination.longitude,
        )
        speed = self.speed_kmh(now)
        eta = distance / speed * 60 if speed else None
        return EtaEstimate(
            distance_km=distance,
            speed_kmh=speed,
            eta_minutes=eta,
            bearing_deg=bearing,
        )

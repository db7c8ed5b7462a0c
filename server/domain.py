"""Value types for check-in telemetry, places and integrity results.

Everything here is immutable: a fix is consumed as received, a place is read
from the storage layer and never mutated, and a result is built fresh for
every scoring call.
"""

import datetime
import math
from dataclasses import dataclass, field
from typing import Optional


@dataclass(frozen=True)
class PositionFix:
    """One GPS fix reported by a device.

    ``speed`` (m/s) and ``heading`` (degrees clockwise from north) are only
    present when the device reports them directly.
    """

    latitude: float
    longitude: float
    accuracy: float  # metres, 1-sigma horizontal uncertainty
    timestamp: datetime.datetime
    speed: Optional[float] = None
    heading: Optional[float] = None

    def to_dict(self) -> dict:
        data = {
            "latitude": self.latitude,
            "longitude": self.longitude,
            "accuracy": self.accuracy,
            "timestamp": self.timestamp.isoformat(),
        }
        if self.speed is not None:
            data["speed"] = self.speed
        if self.heading is not None:
            data["heading"] = self.heading
        return data


@dataclass(frozen=True)
class WifiObservation:
    ssids: frozenset[str] = frozenset()


@dataclass(frozen=True)
class MotionSample:
    """Accelerometer-like triple; only its magnitude is used for scoring."""

    x: float
    y: float
    z: float

    @property
    def magnitude(self) -> float:
        return math.sqrt(self.x * self.x + self.y * self.y + self.z * self.z)


@dataclass(frozen=True)
class Place:
    """A check-in venue as supplied by the storage layer."""

    id: str
    latitude: float
    longitude: float
    geofence_radius: float  # metres
    wifi_ssids: frozenset[str] = frozenset()
    name: Optional[str] = None

    @classmethod
    def from_dict(cls, data: dict) -> "Place":
        location = data.get("location") or data
        return cls(
            id=str(data["id"]),
            latitude=float(location["latitude"]),
            longitude=float(location["longitude"]),
            geofence_radius=float(data["geofence_radius"]),
            wifi_ssids=frozenset(data.get("wifi_ssids") or ()),
            name=data.get("name"),
        )


@dataclass(frozen=True)
class IntegrityBreakdown:
    distance: int = 0
    wifi: int = 0
    time: int = 0
    accuracy: int = 0
    speed: int = 0

    @property
    def total(self) -> int:
        return self.distance + self.wifi + self.time + self.accuracy + self.speed

    def to_dict(self) -> dict:
        return {
            "distance": self.distance,
            "wifi": self.wifi,
            "time": self.time,
            "accuracy": self.accuracy,
            "speed": self.speed,
        }


@dataclass(frozen=True)
class IntegrityDetails:
    """Raw measurements behind each sub-score, kept for diagnostics."""

    distance_meters: float
    matched_ssids: tuple[str, ...]
    time_diff_ms: int
    gps_accuracy: float
    motion_magnitude: float

    def to_dict(self) -> dict:
        return {
            "distance_meters": self.distance_meters,
            "matched_ssids": list(self.matched_ssids),
            "time_diff_ms": self.time_diff_ms,
            "gps_accuracy": self.gps_accuracy,
            "motion_magnitude": self.motion_magnitude,
        }


@dataclass(frozen=True)
class IntegrityResult:
    valid: bool
    score: int
    breakdown: IntegrityBreakdown
    details: IntegrityDetails = field(compare=False)

    def to_dict(self) -> dict:
        return {
            "valid": self.valid,
            "score": self.score,
            "breakdown": self.breakdown.to_dict(),
            "details": self.details.to_dict(),
        }

"""Check-in integrity scoring: five independent factors summed into a trust score.

Factors (each clamped to its cap, then summed):
1. Distance  (0-40) - proximity to the place, with a narrow decay band
                      just outside the geofence for GPS slop
2. Wi-Fi     (0-25) - observed SSIDs that match the place's registered ones
3. Time      (0-15) - agreement between device timestamp and server clock
4. Accuracy  (0-10) - reported GPS uncertainty
5. Speed     (0-10) - motion magnitude; vehicular motion scores nothing

A check-in is valid when the total reaches the pass threshold (60/100).
Scoring is pure: no I/O, no shared state, safe to call from any thread.
Input is assumed to have passed validation.validate_check_in.
"""

import datetime
import logging
import math
from dataclasses import dataclass, fields
from typing import Optional

from sqlalchemy.orm import Session

from domain import (
    IntegrityBreakdown,
    IntegrityDetails,
    IntegrityResult,
    MotionSample,
    Place,
    PositionFix,
    WifiObservation,
)
from errors import ConfigError
from geo import haversine_m
from models import Config

logger = logging.getLogger(__name__)

# ---------------------------------------------------------------------------
# Configuration
# ---------------------------------------------------------------------------

# Per-factor caps; total can never exceed 100 whatever the tuning
DISTANCE_MAX_POINTS = 40
WIFI_MAX_POINTS = 25
TIME_MAX_POINTS = 15
ACCURACY_MAX_POINTS = 10
SPEED_MAX_POINTS = 10

PASS_THRESHOLD = 60

# Distance: (max distance m, points) checked in order while inside the fence
DISTANCE_TIERS = ((20.0, 40), (30.0, 35), (40.0, 30))
DISTANCE_FENCE_POINTS = 25         # inside the fence but beyond every tier
DISTANCE_BUFFER_M = 20.0           # decay band just outside the fence
DISTANCE_BUFFER_POINTS = 20        # points at the fence edge, decaying to 0

WIFI_POINTS_PER_MATCH = 12

TIME_FULL_WINDOW_MS = 60_000       # full points within one minute
TIME_DECAY_WINDOW_MS = 120_000     # then linear decay to zero over two more

# Accuracy: (max accuracy m, points)
ACCURACY_TIERS = ((10.0, 10), (20.0, 8), (30.0, 6), (50.0, 4))

# Motion: (magnitude strictly below, points)
MOTION_TIERS = ((0.5, 10), (1.5, 8), (3.0, 5))

# Policy: clients that report no motion get the benefit of the doubt.
# This weakens anti-spoofing for motion-less clients and is kept tunable.
MOTION_ABSENT_POINTS = 5


@dataclass(frozen=True)
class ScoringConfig:
    pass_threshold: int = PASS_THRESHOLD
    distance_tiers: tuple = DISTANCE_TIERS
    distance_fence_points: int = DISTANCE_FENCE_POINTS
    distance_buffer_m: float = DISTANCE_BUFFER_M
    distance_buffer_points: int = DISTANCE_BUFFER_POINTS
    wifi_points_per_match: int = WIFI_POINTS_PER_MATCH
    time_full_window_ms: int = TIME_FULL_WINDOW_MS
    time_decay_window_ms: int = TIME_DECAY_WINDOW_MS
    accuracy_tiers: tuple = ACCURACY_TIERS
    motion_tiers: tuple = MOTION_TIERS
    motion_absent_points: int = MOTION_ABSENT_POINTS

    @classmethod
    def from_overrides(cls, overrides: dict) -> "ScoringConfig":
        """Build a config from string values as stored in the Config table.

        Unknown keys are ignored; missing keys keep their defaults.
        """
        kwargs = {}
        for f in fields(cls):
            if f.name not in overrides:
                continue
            raw = overrides[f.name]
            try:
                if f.name.endswith("_tiers"):
                    kwargs[f.name] = _parse_tiers(raw)
                elif f.name == "distance_buffer_m":
                    kwargs[f.name] = float(raw)
                else:
                    kwargs[f.name] = int(float(raw))
            except (TypeError, ValueError) as e:
                raise ConfigError(f"Invalid value for {f.name!r}: {raw!r}") from e
        return cls(**kwargs)


DEFAULT_CONFIG = ScoringConfig()


def _parse_tiers(raw: str) -> tuple:
    """Parse "20:40,30:35" into ((20.0, 40), (30.0, 35)), sorted by limit."""
    tiers = []
    for part in str(raw).split(","):
        part = part.strip()
        if not part:
            continue
        limit, points = part.split(":")
        tiers.append((float(limit), int(points)))
    if not tiers:
        raise ValueError("empty tier list")
    return tuple(sorted(tiers))


def load_scoring_config(db: Session) -> ScoringConfig:
    """Read scoring thresholds from the Config table, falling back to module defaults."""
    names = [f.name for f in fields(ScoringConfig)]
    rows = db.query(Config).filter(Config.key.in_(names)).all()
    overrides = {row.key: row.value for row in rows}
    config = ScoringConfig.from_overrides(overrides)
    if config != DEFAULT_CONFIG:
        logger.info("Scoring config overrides active: %s", _diff_from_default(config))
    return config


def _diff_from_default(config: ScoringConfig) -> dict:
    return {
        f.name: getattr(config, f.name)
        for f in fields(ScoringConfig)
        if getattr(config, f.name) != getattr(DEFAULT_CONFIG, f.name)
    }


def _clamp(points: int, cap: int) -> int:
    return max(0, min(cap, int(points)))


# ---------------------------------------------------------------------------
# Factor 1: Distance
# ---------------------------------------------------------------------------

def score_distance(distance_m: float, geofence_radius: float, config: ScoringConfig = DEFAULT_CONFIG) -> int:
    """Tiered bonus inside the fence, linear decay in the buffer band, else 0."""
    if distance_m <= geofence_radius:
        for limit, points in config.distance_tiers:
            if distance_m <= limit:
                return _clamp(points, DISTANCE_MAX_POINTS)
        return _clamp(config.distance_fence_points, DISTANCE_MAX_POINTS)

    buffer_m = config.distance_buffer_m
    if buffer_m > 0 and distance_m <= geofence_radius + buffer_m:
        overshoot = (distance_m - geofence_radius) / buffer_m
        points = math.floor(config.distance_buffer_points * (1 - overshoot))
        return _clamp(points, DISTANCE_MAX_POINTS)

    return 0


# ---------------------------------------------------------------------------
# Factor 2: Wi-Fi
# ---------------------------------------------------------------------------

def match_ssids(wifi: Optional[WifiObservation], place: Place) -> tuple[str, ...]:
    """SSIDs seen by the device that the place has registered, sorted."""
    if wifi is None or not wifi.ssids or not place.wifi_ssids:
        return ()
    return tuple(sorted(set(wifi.ssids) & set(place.wifi_ssids)))


def score_wifi(matched_count: int, config: ScoringConfig = DEFAULT_CONFIG) -> int:
    return _clamp(matched_count * config.wifi_points_per_match, WIFI_MAX_POINTS)


# ---------------------------------------------------------------------------
# Factor 3: Time consistency
# ---------------------------------------------------------------------------

def time_diff_ms(fix_time: datetime.datetime, server_time: datetime.datetime) -> int:
    """Absolute clock difference in whole milliseconds."""
    return abs(server_time - fix_time) // datetime.timedelta(milliseconds=1)


def score_time(diff_ms: int, config: ScoringConfig = DEFAULT_CONFIG) -> int:
    full = config.time_full_window_ms
    decay = config.time_decay_window_ms
    if diff_ms <= full:
        return TIME_MAX_POINTS
    if decay > 0 and diff_ms <= full + decay:
        return _clamp(math.floor(TIME_MAX_POINTS * (1 - (diff_ms - full) / decay)), TIME_MAX_POINTS)
    return 0


# ---------------------------------------------------------------------------
# Factor 4: GPS accuracy
# ---------------------------------------------------------------------------

def score_accuracy(accuracy_m: float, config: ScoringConfig = DEFAULT_CONFIG) -> int:
    for limit, points in config.accuracy_tiers:
        if accuracy_m <= limit:
            return _clamp(points, ACCURACY_MAX_POINTS)
    return 0


# ---------------------------------------------------------------------------
# Factor 5: Speed / motion
# ---------------------------------------------------------------------------

def score_motion(motion: Optional[MotionSample], config: ScoringConfig = DEFAULT_CONFIG) -> int:
    if motion is None:
        return _clamp(config.motion_absent_points, SPEED_MAX_POINTS)
    magnitude = motion.magnitude
    for limit, points in config.motion_tiers:
        if magnitude < limit:
            return _clamp(points, SPEED_MAX_POINTS)
    # Vehicular motion: likely a drive-by
    return 0


# ---------------------------------------------------------------------------
# Combined score
# ---------------------------------------------------------------------------

def verify_integrity(
    fix: PositionFix,
    place: Place,
    wifi: Optional[WifiObservation] = None,
    motion: Optional[MotionSample] = None,
    server_time: Optional[datetime.datetime] = None,
    config: ScoringConfig = DEFAULT_CONFIG,
) -> IntegrityResult:
    """Score a validated fix against a place.

    Always returns a complete breakdown, including for rejected check-ins,
    so callers can show why a check-in failed.
    """
    if server_time is None:
        server_time = datetime.datetime.now(datetime.timezone.utc)
    elif server_time.tzinfo is None:
        server_time = server_time.replace(tzinfo=datetime.timezone.utc)

    distance_m = haversine_m(fix.latitude, fix.longitude, place.latitude, place.longitude)
    matched = match_ssids(wifi, place)
    diff_ms = time_diff_ms(fix.timestamp, server_time)

    breakdown = IntegrityBreakdown(
        distance=score_distance(distance_m, place.geofence_radius, config),
        wifi=score_wifi(len(matched), config),
        time=score_time(diff_ms, config),
        accuracy=score_accuracy(fix.accuracy, config),
        speed=score_motion(motion, config),
    )
    details = IntegrityDetails(
        distance_meters=distance_m,
        matched_ssids=matched,
        time_diff_ms=diff_ms,
        gps_accuracy=fix.accuracy,
        motion_magnitude=motion.magnitude if motion is not None else 0.0,
    )

    score = breakdown.total
    result = IntegrityResult(
        valid=score >= config.pass_threshold,
        score=score,
        breakdown=breakdown,
        details=details,
    )
    logger.debug(
        "Integrity place=%s distance=%.1fm score=%d %s",
        place.id, distance_m, score, breakdown.to_dict(),
    )
    return result

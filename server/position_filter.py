"""Position smoothing for successive noisy GPS fixes.

Two interchangeable strategies share the ``update(fix) -> fix`` / ``reset()``
interface:

- KalmanFilter: velocity-augmented 2D state, predict/correct per fix.
- MovingAverageFilter: recency- and accuracy-weighted average over a short
  window; cheaper, meant for near-stationary devices.

Filters hold per-session mutable state and do no locking. One instance
belongs to one tracking session (see tracking.TrackingSession).
"""

import collections
import datetime
import logging
import math
from dataclasses import dataclass, replace
from typing import Optional, Protocol

from domain import PositionFix
from errors import SingularMatrixError
from geo import metres_to_lat_degrees, metres_to_lon_degrees
from matrix import SINGULAR_EPSILON, Matrix2

logger = logging.getLogger(__name__)

DEFAULT_PROCESS_NOISE = 0.5        # m^2/s added to each positional variance per second
DEFAULT_WINDOW_SIZE = 5

FILTER_KINDS = ("kalman", "moving-average")


class PositionFilter(Protocol):
    def update(self, fix: PositionFix) -> PositionFix: ...

    def reset(self) -> None: ...


# ---------------------------------------------------------------------------
# Kalman filter
# ---------------------------------------------------------------------------

@dataclass(frozen=True)
class KalmanState:
    latitude: float
    longitude: float
    velocity_north: float          # m/s
    velocity_east: float           # m/s
    covariance: Matrix2            # m^2
    timestamp: datetime.datetime   # last accepted fix


class KalmanFilter:
    """Linear Kalman filter over (lat, lon) with a carried velocity.

    Uninitialized until the first fix, which seeds the state directly.
    Later fixes go through predict (advance by velocity, inflate covariance)
    and correct (blend in the measurement by the Kalman gain).
    """

    def __init__(self, process_noise: float = DEFAULT_PROCESS_NOISE):
        if process_noise < 0:
            raise ValueError(f"process_noise must be >= 0, got {process_noise}")
        self.process_noise = process_noise
        self._state: Optional[KalmanState] = None
        self._last_output: Optional[PositionFix] = None

    @property
    def state(self) -> Optional[KalmanState]:
        return self._state

    @property
    def initialized(self) -> bool:
        return self._state is not None

    def current_position(self) -> Optional[tuple[float, float]]:
        if self._state is None:
            return None
        return self._state.latitude, self._state.longitude

    def reset(self) -> None:
        self._state = None
        self._last_output = None

    def update(self, fix: PositionFix) -> PositionFix:
        if self._state is None:
            variance = fix.accuracy ** 2
            self._state = KalmanState(
                latitude=fix.latitude,
                longitude=fix.longitude,
                velocity_north=0.0,
                velocity_east=0.0,
                covariance=Matrix2.diagonal(variance),
                timestamp=fix.timestamp,
            )
            self._last_output = fix
            return fix

        dt = (fix.timestamp - self._state.timestamp).total_seconds()
        if dt <= 0:
            # Out-of-order or duplicate fix: keep the current estimate
            logger.debug("Ignoring fix with non-increasing timestamp (dt=%.3fs)", dt)
            return self._last_output

        predicted = self._predict(dt)
        corrected = self._correct(predicted, fix)
        # Commit only once both steps have produced a complete state
        self._state = replace(corrected, timestamp=fix.timestamp)

        cov = self._state.covariance
        self._last_output = PositionFix(
            latitude=self._state.latitude,
            longitude=self._state.longitude,
            accuracy=math.sqrt(max(0.0, cov.trace / 2)),
            timestamp=fix.timestamp,
            speed=fix.speed,
            heading=fix.heading,
        )
        return self._last_output

    def _predict(self, dt: float) -> KalmanState:
        state = self._state
        latitude = state.latitude + metres_to_lat_degrees(state.velocity_north * dt)
        longitude = state.longitude + metres_to_lon_degrees(state.velocity_east * dt, state.latitude)
        # P' = P + Q, no off-diagonal process noise
        covariance = state.covariance + Matrix2.diagonal(self.process_noise * dt)
        return replace(state, latitude=latitude, longitude=longitude, covariance=covariance)

    def _correct(self, predicted: KalmanState, fix: PositionFix) -> KalmanState:
        measurement_noise = Matrix2.diagonal(fix.accuracy ** 2)
        innovation_cov = predicted.covariance + measurement_noise
        try:
            gain = predicted.covariance @ innovation_cov.inverse(SINGULAR_EPSILON)
        except SingularMatrixError:
            logger.warning(
                "Singular innovation covariance (det=%.3g), keeping prediction",
                innovation_cov.determinant,
            )
            return predicted

        d_lat, d_lon = gain.apply(
            fix.latitude - predicted.latitude,
            fix.longitude - predicted.longitude,
        )
        covariance = (Matrix2.identity() - gain) @ predicted.covariance

        velocity_north, velocity_east = predicted.velocity_north, predicted.velocity_east
        # Reported speed beats a position-derivative estimate
        if fix.speed is not None and fix.heading is not None:
            heading = math.radians(fix.heading)
            velocity_north = fix.speed * math.cos(heading)
            velocity_east = fix.speed * math.sin(heading)

        return replace(
            predicted,
            latitude=predicted.latitude + d_lat,
            longitude=predicted.longitude + d_lon,
            velocity_north=velocity_north,
            velocity_east=velocity_east,
            covariance=covariance,
        )


# ---------------------------------------------------------------------------
# Moving average filter
# ---------------------------------------------------------------------------

class MovingAverageFilter:
    """Weighted average of the last ``window_size`` fixes.

    weight = recency * 1 / (accuracy + 1), recency running 1/N .. N/N from
    the oldest to the newest fix in the window.
    """

    def __init__(self, window_size: int = DEFAULT_WINDOW_SIZE):
        if window_size < 1:
            raise ValueError(f"window_size must be >= 1, got {window_size}")
        self.window_size = window_size
        self._window: collections.deque[PositionFix] = collections.deque(maxlen=window_size)

    def __len__(self) -> int:
        return len(self._window)

    def reset(self) -> None:
        self._window.clear()

    def update(self, fix: PositionFix) -> PositionFix:
        self._window.append(fix)

        n = len(self._window)
        total_weight = lat_sum = lon_sum = acc_sum = 0.0
        for i, m in enumerate(self._window):
            weight = ((i + 1) / n) * (1 / (m.accuracy + 1))
            lat_sum += m.latitude * weight
            lon_sum += m.longitude * weight
            acc_sum += m.accuracy * weight
            total_weight += weight

        return PositionFix(
            latitude=lat_sum / total_weight,
            longitude=lon_sum / total_weight,
            accuracy=acc_sum / total_weight,
            timestamp=fix.timestamp,
            speed=fix.speed,
            heading=fix.heading,
        )


def make_filter(kind: str = "kalman", **kwargs) -> PositionFilter:
    """Construct a filter by name ("kalman" or "moving-average")."""
    if kind == "kalman":
        return KalmanFilter(**kwargs)
    if kind in ("moving-average", "moving_average"):
        return MovingAverageFilter(**kwargs)
    raise ValueError(f"Unknown filter kind {kind!r}; expected one of {FILTER_KINDS}")

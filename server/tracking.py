"""Per-session ownership of a position filter.

A TrackingSession belongs to one user/device flow. It is created and held by
the caller (request handler, websocket connection, CLI run), never stored in
a module-level registry, so two users can never feed the same filter.
"""

import logging
import threading
from dataclasses import dataclass, field
from typing import Optional

from domain import PositionFix
from position_filter import PositionFilter, make_filter

logger = logging.getLogger(__name__)


@dataclass
class TrackingSession:
    user_id: str
    device_id: Optional[str] = None
    filter: PositionFilter = field(default_factory=make_filter)
    updates: int = 0
    _lock: threading.Lock = field(default_factory=threading.Lock, repr=False, compare=False)

    @classmethod
    def create(cls, user_id: str, device_id: Optional[str] = None, kind: str = "kalman", **filter_kwargs):
        return cls(user_id=user_id, device_id=device_id, filter=make_filter(kind, **filter_kwargs))

    def smooth(self, fix: PositionFix) -> PositionFix:
        """Feed one fix through this session's filter, serialised per session."""
        with self._lock:
            smoothed = self.filter.update(fix)
            self.updates += 1
        return smoothed

    def reset(self) -> None:
        with self._lock:
            self.filter.reset()
            self.updates = 0
        logger.debug("Tracking session reset user=%s device=%s", self.user_id, self.device_id)

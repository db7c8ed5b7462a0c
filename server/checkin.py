"""Check-in verification pipeline.

    validate -> (smooth, when a tracking session is supplied) -> score -> key

The caller owns everything with side effects: looking up the Place, holding
the TrackingSession, and persisting the outcome under its idempotency key.
"""

import datetime
import logging
from dataclasses import dataclass
from typing import Any, Optional

from domain import IntegrityResult, Place, PositionFix
from errors import CheckInValidationError
from idempotency import DEFAULT_DERIVER, IdempotencyKeyDeriver
from integrity import DEFAULT_CONFIG, ScoringConfig, verify_integrity
from tracking import TrackingSession
from validation import validate_check_in

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class CheckInOutcome:
    idempotency_key: str
    user_id: str
    place_id: str
    result: IntegrityResult
    scored_fix: PositionFix
    threshold: int
    server_time: datetime.datetime

    @property
    def status(self) -> str:
        return "approved" if self.result.valid else "rejected"

    def to_dict(self) -> dict:
        return {
            "success": self.result.valid,
            "check_in": {
                "id": self.idempotency_key,
                "user_id": self.user_id,
                "place_id": self.place_id,
                "status": self.status,
                "integrity_score": self.result.score,
                "created_at": self.server_time.isoformat(),
            },
            "integrity": {
                "score": self.result.score,
                "breakdown": self.result.breakdown.to_dict(),
                "details": self.result.details.to_dict(),
                "threshold": self.threshold,
            },
            "position": self.scored_fix.to_dict(),
        }


def verify_check_in(
    raw: Any,
    place: Place,
    session: Optional[TrackingSession] = None,
    config: ScoringConfig = DEFAULT_CONFIG,
    deriver: Optional[IdempotencyKeyDeriver] = None,
    server_time: Optional[datetime.datetime] = None,
) -> CheckInOutcome:
    """Run a raw check-in payload through the full pipeline.

    Raises CheckInValidationError carrying every field error when the payload
    is malformed; otherwise always returns an outcome, approved or not.
    """
    if server_time is None:
        server_time = datetime.datetime.now(datetime.timezone.utc)
    elif server_time.tzinfo is None:
        server_time = server_time.replace(tzinfo=datetime.timezone.utc)

    validation = validate_check_in(raw, now=server_time)
    if not validation.ok:
        logger.warning(
            "Check-in rejected by validation: %d errors (%s)",
            len(validation.errors), ", ".join(e.field for e in validation.errors),
        )
        raise CheckInValidationError(validation.errors)
    checkin = validation.value

    fix = checkin.fix
    if session is not None:
        fix = session.smooth(fix)

    result = verify_integrity(
        fix,
        place,
        wifi=checkin.wifi,
        motion=checkin.motion,
        server_time=server_time,
        config=config,
    )
    key = (deriver or DEFAULT_DERIVER).derive(checkin.user_id, checkin.place_id, checkin.timestamp)

    logger.info(
        "Check-in scored user=%s place=%s score=%d/%d %s key=%s",
        checkin.user_id, checkin.place_id, result.score, config.pass_threshold,
        "approved" if result.valid else "rejected", key,
    )
    return CheckInOutcome(
        idempotency_key=key,
        user_id=checkin.user_id,
        place_id=checkin.place_id,
        result=result,
        scored_fix=fix,
        threshold=config.pass_threshold,
        server_time=server_time,
    )

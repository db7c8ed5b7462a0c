"""Validation of raw check-in payloads before they reach the scorer.

Every violation is reported, not just the first, so the caller can return a
complete error list. Nothing is silently corrected.
"""

import datetime
import logging
from dataclasses import dataclass, field
from typing import Annotated, Any, Optional

from pydantic import BaseModel, Field, ValidationError, ValidationInfo, field_validator

from domain import MotionSample, PositionFix, WifiObservation

logger = logging.getLogger(__name__)

MAX_ACCURACY_M = 1000.0
MAX_CLOCK_SKEW = datetime.timedelta(hours=24)
MAX_ID_LENGTH = 128
MAX_SSIDS = 50
DEFAULT_USER_ID = "user-anonymous"

FiniteFloat = Annotated[float, Field(strict=True, allow_inf_nan=False)]
# Printable ids only; control characters never reach keys or logs
Identifier = Annotated[
    str,
    Field(strict=True, min_length=1, max_length=MAX_ID_LENGTH, pattern=r"^[^\x00-\x1f\x7f]+$"),
]



# ---------------------------------------------------------------------------
# Pydantic schemas
# ---------------------------------------------------------------------------

class LocationIn(BaseModel):
    latitude: Annotated[FiniteFloat, Field(ge=-90, le=90)]
    longitude: Annotated[FiniteFloat, Field(ge=-180, le=180)]
    accuracy: Annotated[FiniteFloat, Field(ge=0, le=MAX_ACCURACY_M)]
    speed: Optional[Annotated[FiniteFloat, Field(ge=0)]] = None
    heading: Optional[Annotated[FiniteFloat, Field(ge=0, le=360)]] = None


class WifiIn(BaseModel):
    ssids: list[Annotated[str, Field(strict=True)]] = Field(default_factory=list, max_length=MAX_SSIDS)


class MotionIn(BaseModel):
    x: FiniteFloat
    y: FiniteFloat
    z: FiniteFloat


class CheckInRequest(BaseModel):
    place_id: Identifier
    user_id: Optional[Identifier] = None
    location: LocationIn
    wifi: Optional[WifiIn] = None
    motion: Optional[MotionIn] = None
    timestamp: datetime.datetime = Field(..., description="ISO 8601 timestamp from the device")

    @field_validator("place_id", "user_id")
    @classmethod
    def not_blank(cls, v: Optional[str]) -> Optional[str]:
        if v is not None and not v.strip():
            raise ValueError("must not be blank")
        return v

    @field_validator("timestamp")
    @classmethod
    def within_clock_skew(cls, v: datetime.datetime, info: ValidationInfo) -> datetime.datetime:
        if v.tzinfo is None:
            v = v.replace(tzinfo=datetime.timezone.utc)
        now = (info.context or {}).get("now") or datetime.datetime.now(datetime.timezone.utc)
        try:
            v = v.astimezone(datetime.timezone.utc)
            skew = abs(now - v)
        except OverflowError:
            # Parses, but its UTC equivalent falls outside the datetime range
            raise ValueError("timestamp out of range") from None
        if skew > MAX_CLOCK_SKEW:
            raise ValueError(f"must be within {MAX_CLOCK_SKEW} of server time {now.isoformat()}")
        return v


# ---------------------------------------------------------------------------
# Result types
# ---------------------------------------------------------------------------

@dataclass(frozen=True)
class FieldError:
    field: str
    message: str

    def to_dict(self) -> dict:
        return {"field": self.field, "message": self.message}


@dataclass(frozen=True)
class ValidatedCheckIn:
    user_id: str
    place_id: str
    fix: PositionFix
    wifi: Optional[WifiObservation]
    motion: Optional[MotionSample]

    @property
    def timestamp(self) -> datetime.datetime:
        return self.fix.timestamp


@dataclass(frozen=True)
class ValidationResult:
    value: Optional[ValidatedCheckIn] = None
    errors: list[FieldError] = field(default_factory=list)

    @property
    def ok(self) -> bool:
        return self.value is not None and not self.errors


# ---------------------------------------------------------------------------
# Validation entry point
# ---------------------------------------------------------------------------

def validate_check_in(raw: Any, now: Optional[datetime.datetime] = None) -> ValidationResult:
    """Validate a raw check-in payload (decoded JSON).

    ``now`` pins the server clock for the timestamp skew check.
    """
    if now is not None and now.tzinfo is None:
        now = now.replace(tzinfo=datetime.timezone.utc)
    try:
        req = CheckInRequest.model_validate(raw, context={"now": now})
    except ValidationError as e:
        errors = [_field_error(err) for err in e.errors()]
        logger.debug("Check-in payload rejected with %d errors", len(errors))
        return ValidationResult(errors=errors)
    return ValidationResult(value=_to_domain(req))


def _field_error(err: dict) -> FieldError:
    loc = ".".join(str(part) for part in err.get("loc", ())) or "body"
    return FieldError(field=loc, message=err.get("msg", "invalid value"))


def _to_domain(req: CheckInRequest) -> ValidatedCheckIn:
    loc = req.location
    fix = PositionFix(
        latitude=loc.latitude,
        longitude=loc.longitude,
        accuracy=loc.accuracy,
        timestamp=req.timestamp,
        speed=loc.speed,
        heading=loc.heading,
    )
    wifi = WifiObservation(ssids=frozenset(req.wifi.ssids)) if req.wifi is not None else None
    motion = MotionSample(req.motion.x, req.motion.y, req.motion.z) if req.motion is not None else None
    return ValidatedCheckIn(
        user_id=req.user_id or DEFAULT_USER_ID,
        place_id=req.place_id,
        fix=fix,
        wifi=wifi,
        motion=motion,
    )

from datetime import datetime, date, time, timedelta, timezone
from enum import Enum
from typing import Any, List, Optional, Union

from pydantic import BaseModel, ConfigDict, Field, field_validator, model_validator

MAX_BREAK_MINUTES = 480


def _as_utc(value: datetime) -> datetime:
    if value.tzinfo is None:
        return value.replace(tzinfo=timezone.utc)
    try:
        return value.astimezone(timezone.utc)
    except OverflowError:
        raise ValueError("timestamp out of range")


def minutes_to_hm(total_minutes: int) -> str:
    sign = "-" if total_minutes < 0 else ""
    hours, minutes = divmod(abs(total_minutes), 60)
    return f"{sign}{hours}h {minutes}m"


def _escape(value: str) -> str:
    return value.replace("\\", "\\\\").replace("+", "\\+")


class PunchAction(str, Enum):
    CLOCK_IN = "clock_in"
    BREAK_OUT = "break_out"
    BREAK_IN = "break_in"
    CLOCK_OUT = "clock_out"


class StaffKey(BaseModel):
    """Identity of a staff member as seen by shifts and punches.

    Either field may be missing. Equality covers both fields, so an account id
    never collides with an identical PIN and two PINs under the same account
    stay distinct. With neither field set, the key is the shared unknown bucket.
    """

    model_config = ConfigDict(frozen=True)

    account_id: Optional[str] = None
    pin: Optional[str] = None

    @property
    def kind(self) -> str:
        if self.account_id is not None and self.pin is not None:
            return "account+pin"
        if self.account_id is not None:
            return "account"
        if self.pin is not None:
            return "pin"
        return "unknown"

    def __str__(self) -> str:
        parts = []
        if self.account_id is not None:
            parts.append(f"account:{_escape(self.account_id)}")
        if self.pin is not None:
            parts.append(f"pin:{_escape(self.pin)}")
        return "+".join(parts) or "unknown"


class ScheduledShift(BaseModel):
    staff_user_id: str
    staff_pin: Optional[str] = None
    staff_label: Optional[str] = None
    starts_at: datetime
    ends_at: datetime
    break_minutes: int = Field(default=0, ge=0, le=MAX_BREAK_MINUTES)

    @field_validator("staff_user_id")
    @classmethod
    def staff_user_id_not_blank(cls, value: str) -> str:
        value = value.strip()
        if not value:
            raise ValueError("Missing staff_user_id")
        return value

    @field_validator("starts_at", "ends_at")
    @classmethod
    def normalize_timestamp(cls, value: datetime) -> datetime:
        return _as_utc(value)

    @model_validator(mode="after")
    def ends_after_start(self):
        if self.ends_at <= self.starts_at:
            raise ValueError("ends_at must be after starts_at")
        return self


class PunchEvent(BaseModel):
    staff_user_id: Optional[str] = None
    staff_pin: Optional[str] = None
    staff_label: Optional[str] = None
    action: PunchAction
    at: datetime

    @field_validator("at")
    @classmethod
    def normalize_timestamp(cls, value: datetime) -> datetime:
        return _as_utc(value)


class ReconciliationWindow(BaseModel):
    """Half-open reporting window ``[start, end)``."""

    start: datetime
    end: datetime

    @field_validator("start", "end")
    @classmethod
    def normalize_timestamp(cls, value: datetime) -> datetime:
        return _as_utc(value)

    @model_validator(mode="after")
    def end_after_start(self):
        if self.end <= self.start:
            raise ValueError("end must be after start")
        return self

    def contains(self, moment: datetime) -> bool:
        return self.start <= moment < self.end

    @classmethod
    def week_of(cls, day: date) -> "ReconciliationWindow":
        monday = day - timedelta(days=day.weekday())
        start = datetime.combine(monday, time(0, 0), tzinfo=timezone.utc)
        return cls(start=start, end=start + timedelta(days=7))


# Punch reconstruction states

class Idle(BaseModel):
    model_config = ConfigDict(frozen=True)


class Working(BaseModel):
    model_config = ConfigDict(frozen=True)

    segment_start: datetime


class OnBreak(BaseModel):
    model_config = ConfigDict(frozen=True)

    segment_start: datetime
    break_start: datetime


ReconstructorState = Union[Idle, Working, OnBreak]


class VarianceRow(BaseModel):
    staff_key: str
    staff_user_id: Optional[str] = None
    staff_pin: Optional[str] = None
    staff_label: Optional[str] = None
    label: Optional[str] = None
    scheduled_minutes: int = Field(ge=0)
    actual_minutes: int = Field(ge=0)
    variance_minutes: int

    @property
    def scheduled_hm(self) -> str:
        return minutes_to_hm(self.scheduled_minutes)

    @property
    def actual_hm(self) -> str:
        return minutes_to_hm(self.actual_minutes)

    @property
    def variance_hm(self) -> str:
        return minutes_to_hm(self.variance_minutes)


class VarianceReport(BaseModel):
    window: ReconciliationWindow
    rows: List[VarianceRow]


class ReportRequest(BaseModel):
    window: ReconciliationWindow
    # raw rows; malformed entries are skipped by the engine
    shifts: List[Any] = Field(default_factory=list)
    punches: List[Any] = Field(default_factory=list)

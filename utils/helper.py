import logging
from datetime import datetime, timedelta, timezone
from typing import Any, List, Optional

from pydantic import BaseModel

from models.schema import PunchEvent, ReconciliationWindow, ScheduledShift, StaffKey

MS_PER_MINUTE = 60000
MAX_SHIFT_ROWS = 5000
MAX_PUNCH_ROWS = 20000

# In-memory shift and time clock ledgers
mock_shifts: List[dict] = []
mock_punches: List[dict] = []


def is_row(row: Any) -> bool:
    return isinstance(row, (dict, BaseModel))


def row_value(row: Any, name: str) -> Any:
    if isinstance(row, dict):
        return row.get(name)
    return getattr(row, name, None)


def clean_text(value: Any) -> Optional[str]:
    if value is None:
        return None
    value = str(value).strip()
    return value or None


def staff_key_for(row: Any) -> StaffKey:
    return StaffKey(
        account_id=clean_text(row_value(row, "staff_user_id")),
        pin=clean_text(row_value(row, "staff_pin")),
    )


def label_for(row: Any) -> Optional[str]:
    for name in ("staff_label", "staff_user_id", "staff_pin"):
        value = clean_text(row_value(row, name))
        if value:
            return value
    return None


def parse_timestamp(value: Any) -> Optional[datetime]:
    """Parse an ISO instant or datetime into an aware UTC datetime, or None."""
    if isinstance(value, datetime):
        parsed = value
    elif isinstance(value, str) and value.strip():
        text = value.strip()
        if text.endswith(("Z", "z")):
            text = text[:-1] + "+00:00"
        try:
            parsed = datetime.fromisoformat(text)
        except ValueError:
            return None
    else:
        return None
    if parsed.tzinfo is None:
        return parsed.replace(tzinfo=timezone.utc)
    try:
        return parsed.astimezone(timezone.utc)
    except OverflowError:
        return None


def round_minutes(delta: timedelta) -> int:
    # half-up on whole milliseconds
    ms = delta // timedelta(milliseconds=1)
    return (ms + MS_PER_MINUTE // 2) // MS_PER_MINUTE


def diff_minutes(start: datetime, end: datetime) -> int:
    return max(0, round_minutes(end - start))


def insert_shift(shift: ScheduledShift) -> None:
    mock_shifts.append(shift.model_dump())


def insert_punch(punch: PunchEvent) -> None:
    record = punch.model_dump()
    record["action"] = punch.action.value
    mock_punches.append(record)
    logging.info(f"Recorded {record['action']} punch for {staff_key_for(record)}")


def get_shifts_in_window(window: ReconciliationWindow) -> List[dict]:
    shifts = []
    for shift in mock_shifts:
        starts_at = parse_timestamp(shift.get("starts_at"))
        if starts_at is not None and window.contains(starts_at):
            shifts.append(shift)
    shifts.sort(key=lambda x: parse_timestamp(x["starts_at"]))
    return shifts[:MAX_SHIFT_ROWS]


def get_punches_in_window(window: ReconciliationWindow) -> List[dict]:
    punches = []
    for punch in mock_punches:
        at = parse_timestamp(punch.get("at"))
        if at is not None and window.contains(at):
            punches.append(punch)
    return punches[:MAX_PUNCH_ROWS]

import logging
import math
from datetime import datetime
from typing import Any, Dict, Iterable, List, Optional, Tuple

from models.schema import (
    Idle,
    OnBreak,
    PunchAction,
    ReconciliationWindow,
    ReconstructorState,
    StaffKey,
    VarianceReport,
    VarianceRow,
    Working,
)
from utils.helper import (
    clean_text,
    diff_minutes,
    is_row,
    label_for,
    parse_timestamp,
    round_minutes,
    row_value,
    staff_key_for,
)


class StaffIndex:
    """First-seen identity fields and display label per staff key."""

    def __init__(self) -> None:
        self._meta: Dict[StaffKey, Dict[str, Optional[str]]] = {}

    def observe(self, key: StaffKey, row: Any) -> None:
        if key in self._meta:
            return
        self._meta[key] = {
            "staff_user_id": key.account_id,
            "staff_pin": key.pin,
            "staff_label": clean_text(row_value(row, "staff_label")),
            "label": label_for(row),
        }

    def keys(self) -> List[StaffKey]:
        return list(self._meta)

    def meta(self, key: StaffKey) -> Dict[str, Optional[str]]:
        return self._meta.get(key, {
            "staff_user_id": key.account_id,
            "staff_pin": key.pin,
            "staff_label": None,
            "label": None,
        })


def _break_minutes(shift: Any) -> int:
    value = row_value(shift, "break_minutes")
    if isinstance(value, bool) or not isinstance(value, (int, float)) or not math.isfinite(value):
        return 0
    # half up, like interval minutes
    return max(0, math.floor(value + 0.5))


def aggregate_scheduled_minutes(
    shifts: Iterable[Any], window: ReconciliationWindow, index: Optional[StaffIndex] = None
) -> Dict[StaffKey, int]:
    scheduled: Dict[StaffKey, int] = {}
    for shift in shifts:
        if not is_row(shift):
            logging.warning(f"Skipping shift that is not a row: {shift!r}")
            continue
        key = staff_key_for(shift)
        if index is not None:
            index.observe(key, shift)

        starts_at = parse_timestamp(row_value(shift, "starts_at"))
        ends_at = parse_timestamp(row_value(shift, "ends_at"))
        if starts_at is None or ends_at is None:
            logging.warning(f"Skipping shift with unparsable timestamps: {row_value(shift, 'starts_at')!r} - {row_value(shift, 'ends_at')!r}")
            continue
        if not window.contains(starts_at):
            continue

        minutes = max(0, round_minutes(ends_at - starts_at) - _break_minutes(shift))
        scheduled[key] = scheduled.get(key, 0) + minutes
    return scheduled


def prepare_punches(punches: Iterable[Any], window: ReconciliationWindow) -> List[Tuple[datetime, str]]:
    """Parse, window-filter and time-sort punches for one staff key."""
    prepared = []
    for punch in punches:
        at = parse_timestamp(row_value(punch, "at"))
        if at is None:
            logging.warning(f"Skipping punch with unparsable timestamp: {row_value(punch, 'at')!r}")
            continue
        if not window.contains(at):
            continue
        action = row_value(punch, "action")
        if isinstance(action, PunchAction):
            action = action.value
        prepared.append((at, action))
    prepared.sort(key=lambda x: x[0])
    return prepared


def step(state: ReconstructorState, action: str, at: datetime) -> Tuple[ReconstructorState, int]:
    """Apply one punch. Returns the next state and the minutes it credits."""
    if action == PunchAction.CLOCK_IN.value:
        # an open segment is dropped, not credited
        return Working(segment_start=at), 0

    if action == PunchAction.BREAK_OUT.value:
        if isinstance(state, Working):
            return OnBreak(segment_start=state.segment_start, break_start=at), 0
        return state, 0

    if action == PunchAction.BREAK_IN.value:
        if isinstance(state, OnBreak):
            return Working(segment_start=at), diff_minutes(state.segment_start, state.break_start)
        return state, 0

    if action == PunchAction.CLOCK_OUT.value:
        if isinstance(state, Working):
            return Idle(), diff_minutes(state.segment_start, at)
        if isinstance(state, OnBreak):
            return Idle(), diff_minutes(state.segment_start, state.break_start)
        return state, 0

    logging.debug(f"Ignoring unknown punch action: {action!r}")
    return state, 0


def finalize(state: ReconstructorState, window: ReconciliationWindow) -> int:
    if isinstance(state, Working):
        return diff_minutes(state.segment_start, window.end)
    if isinstance(state, OnBreak):
        return diff_minutes(state.segment_start, state.break_start)
    return 0


def reconstruct_minutes(prepared: List[Tuple[datetime, str]], window: ReconciliationWindow) -> int:
    state: ReconstructorState = Idle()
    total = 0
    for at, action in prepared:
        state, credited = step(state, action, at)
        total += credited
    return total + finalize(state, window)


def compute_actual_minutes(punches: Iterable[Any], window: ReconciliationWindow) -> int:
    return reconstruct_minutes(prepare_punches(punches, window), window)


def aggregate_actual_minutes(
    punches: Iterable[Any], window: ReconciliationWindow, index: Optional[StaffIndex] = None
) -> Dict[StaffKey, int]:
    by_staff: Dict[StaffKey, List[Any]] = {}
    for punch in punches:
        if not is_row(punch):
            logging.warning(f"Skipping punch that is not a row: {punch!r}")
            continue
        key = staff_key_for(punch)
        by_staff.setdefault(key, []).append(punch)
        if index is not None:
            index.observe(key, punch)

    actual: Dict[StaffKey, int] = {}
    for key, entries in by_staff.items():
        actual[key] = compute_actual_minutes(entries, window)
    return actual


def build_variance_rows(
    scheduled: Dict[StaffKey, int], actual: Dict[StaffKey, int], index: StaffIndex
) -> List[VarianceRow]:
    rows = []
    for key in set(scheduled) | set(actual) | set(index.keys()):
        meta = index.meta(key)
        scheduled_minutes = scheduled.get(key, 0)
        actual_minutes = actual.get(key, 0)
        rows.append(VarianceRow(
            staff_key=str(key),
            staff_user_id=meta["staff_user_id"],
            staff_pin=meta["staff_pin"],
            staff_label=meta["staff_label"],
            label=meta["label"],
            scheduled_minutes=scheduled_minutes,
            actual_minutes=actual_minutes,
            variance_minutes=actual_minutes - scheduled_minutes,
        ))

    rows.sort(key=lambda r: ((r.label or r.staff_key).lower(), r.staff_key))
    return rows


def build_variance_report(
    window: ReconciliationWindow, shifts: Iterable[Any], punches: Iterable[Any]
) -> VarianceReport:
    index = StaffIndex()
    scheduled = aggregate_scheduled_minutes(shifts, window, index)
    actual = aggregate_actual_minutes(punches, window, index)
    rows = build_variance_rows(scheduled, actual, index)
    logging.info(f"Variance report for {window.start.isoformat()} - {window.end.isoformat()}: {len(rows)} rows")
    return VarianceReport(window=window, rows=rows)

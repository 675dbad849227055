import logging
from typing import Optional

from fastapi import BackgroundTasks, FastAPI, HTTPException
from pydantic import ValidationError

from main import build_variance_report
from models.schema import PunchEvent, ReconciliationWindow, ReportRequest, ScheduledShift, VarianceReport
from utils.helper import get_punches_in_window, get_shifts_in_window, insert_punch, insert_shift, parse_timestamp

app = FastAPI()


@app.post("/punch")
def receive_punch(punch: PunchEvent, background_tasks: BackgroundTasks):
    background_tasks.add_task(insert_punch, punch)
    return {"status": "Punch received, processing in background."}


@app.post("/payroll/shifts")
def create_shift(shift: ScheduledShift):
    insert_shift(shift)
    return {"ok": True}


def _run_report(window: ReconciliationWindow, shifts, punches) -> VarianceReport:
    try:
        return build_variance_report(window, shifts, punches)
    except Exception:
        logging.exception("Failed to build variance report")
        raise HTTPException(status_code=500, detail="Failed to load report")


@app.get("/payroll/report", response_model=VarianceReport)
def payroll_report(start: Optional[str] = None, end: Optional[str] = None):
    start_at = parse_timestamp(start)
    end_at = parse_timestamp(end)
    if start_at is None or end_at is None:
        raise HTTPException(status_code=400, detail="Missing start/end")
    try:
        window = ReconciliationWindow(start=start_at, end=end_at)
    except ValidationError:
        raise HTTPException(status_code=400, detail="end must be after start")

    return _run_report(window, get_shifts_in_window(window), get_punches_in_window(window))


@app.post("/payroll/report", response_model=VarianceReport)
def payroll_report_from_rows(request: ReportRequest):
    return _run_report(request.window, request.shifts, request.punches)

from fastapi.testclient import TestClient

from Background.task import app
from utils.helper import mock_punches, mock_shifts

client = TestClient(app)

WINDOW = {"start": "2025-07-21T00:00:00Z", "end": "2025-07-28T00:00:00Z"}


def setup_function():
    mock_shifts.clear()
    mock_punches.clear()


def record_punch(action, at, staff_user_id="u1"):
    response = client.post("/punch", json={"staff_user_id": staff_user_id, "action": action, "at": at})
    assert response.status_code == 200
    return response


def test_report_from_recorded_punches_and_shifts():
    response = client.post("/payroll/shifts", json={
        "staff_user_id": "u1",
        "staff_label": "Dana",
        "starts_at": "2025-07-21T09:00:00Z",
        "ends_at": "2025-07-21T17:30:00Z",
        "break_minutes": 30,
    })
    assert response.status_code == 200

    record_punch("clock_in", "2025-07-21T09:00:00Z")
    record_punch("break_out", "2025-07-21T12:00:00Z")
    record_punch("break_in", "2025-07-21T12:30:00Z")
    record_punch("clock_out", "2025-07-21T17:00:00Z")
    assert len(mock_punches) == 4

    response = client.get("/payroll/report", params=WINDOW)
    assert response.status_code == 200
    rows = response.json()["rows"]
    assert len(rows) == 1
    assert rows[0]["label"] == "Dana"
    assert rows[0]["scheduled_minutes"] == 480
    assert rows[0]["actual_minutes"] == 450
    assert rows[0]["variance_minutes"] == -30


def test_report_ignores_ledger_rows_outside_window():
    record_punch("clock_in", "2025-07-14T09:00:00Z")
    record_punch("clock_out", "2025-07-14T17:00:00Z")
    response = client.get("/payroll/report", params=WINDOW)
    assert response.status_code == 200
    assert response.json()["rows"] == []


def test_report_requires_start_and_end():
    response = client.get("/payroll/report", params={"start": WINDOW["start"]})
    assert response.status_code == 400
    assert response.json()["detail"] == "Missing start/end"

    response = client.get("/payroll/report", params={"start": "soon", "end": WINDOW["end"]})
    assert response.status_code == 400


def test_report_rejects_inverted_window():
    response = client.get("/payroll/report", params={"start": WINDOW["end"], "end": WINDOW["start"]})
    assert response.status_code == 400
    assert response.json()["detail"] == "end must be after start"


def test_report_from_request_body_skips_malformed_rows():
    response = client.post("/payroll/report", json={
        "window": WINDOW,
        "shifts": [{"staff_pin": "4321", "starts_at": "bad", "ends_at": "worse", "break_minutes": 0}],
        "punches": [
            {"staff_pin": "4321", "action": "clock_in", "at": "2025-07-22T10:00:00Z"},
            {"staff_pin": "4321", "action": "clock_out", "at": "not a time"},
        ],
    })
    assert response.status_code == 200
    rows = response.json()["rows"]
    assert len(rows) == 1
    assert rows[0]["staff_key"] == "pin:4321"
    assert rows[0]["scheduled_minutes"] == 0
    # open segment runs to the end of the window
    assert rows[0]["actual_minutes"] == (6 * 24 - 10) * 60


def test_invalid_punch_is_rejected():
    response = client.post("/punch", json={"staff_user_id": "u1", "action": "nap", "at": "2025-07-21T09:00:00Z"})
    assert response.status_code == 422
    assert mock_punches == []


def test_invalid_shift_is_rejected():
    response = client.post("/payroll/shifts", json={
        "staff_user_id": "u1",
        "starts_at": "2025-07-21T17:00:00Z",
        "ends_at": "2025-07-21T09:00:00Z",
    })
    assert response.status_code == 422

    response = client.post("/payroll/shifts", json={
        "staff_user_id": "u1",
        "starts_at": "2025-07-21T09:00:00Z",
        "ends_at": "2025-07-21T17:00:00Z",
        "break_minutes": 500,
    })
    assert response.status_code == 422
    assert mock_shifts == []


def test_report_body_tolerates_rows_that_are_not_objects():
    response = client.post("/payroll/report", json={
        "window": WINDOW,
        "shifts": ["oops"],
        "punches": [None, 7, {"staff_user_id": "u1", "action": "clock_in", "at": "2025-07-27T20:00:00Z"}],
    })
    assert response.status_code == 200
    rows = response.json()["rows"]
    assert len(rows) == 1
    assert rows[0]["staff_key"] == "account:u1"
    assert rows[0]["actual_minutes"] == 240


def test_report_rejects_out_of_range_start():
    response = client.get("/payroll/report", params={"start": "0001-01-01T00:00:00+01:00", "end": WINDOW["end"]})
    assert response.status_code == 400
    assert response.json()["detail"] == "Missing start/end"

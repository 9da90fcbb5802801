from datetime import date, datetime

import pytest
from fastapi import HTTPException

from caseledger_calendar import (
    deadline_events,
    events_for_date,
    filter_events,
    month_grid,
    month_stats,
    normalize_event_dates,
    upcoming_events,
)
from caseledger_types import CalendarEvent, Deadline


def _evt(title, start, **kw):
    return CalendarEvent(title=title, start_date=start, end_date=start, **kw)


def test_month_grid_pads_before_first_day():
    weeks = month_grid(2026, 10)
    assert weeks[0] == [None, None, None, None, date(2026, 10, 1), date(2026, 10, 2), date(2026, 10, 3)]
    assert len(weeks) == 5
    assert weeks[-1][-1] == date(2026, 10, 31)


def test_month_grid_invalid_month():
    with pytest.raises(ValueError):
        month_grid(2026, 0)


def test_normalize_event_dates():
    assert normalize_event_dates("2026-10-01T09:00:00") == ("2026-10-01T09:00:00", "2026-10-01T09:00:00")
    assert normalize_event_dates("2026-10-01T09:00:00", "2026-10-01T10:00:00")[1] == "2026-10-01T10:00:00"
    with pytest.raises(HTTPException) as exc:
        normalize_event_dates("2026-10-01T09:00:00", "2026-09-30T09:00:00")
    assert exc.value.status_code == 400


def test_events_for_date_and_filter():
    events = [
        _evt("Hearing", "2026-10-05T09:00:00", event_type="court", description="Motion to compel"),
        _evt("Client call", "2026-10-05T15:00:00"),
        _evt("Deposition", "2026-10-06T09:00:00", event_type="deposition"),
    ]
    assert [e.title for e in events_for_date(events, date(2026, 10, 5))] == ["Hearing", "Client call"]
    assert [e.title for e in filter_events(events, search="compel")] == ["Hearing"]
    assert [e.title for e in filter_events(events, event_type="deposition")] == ["Deposition"]
    assert len(filter_events(events, search="", event_type="all")) == 3


def test_upcoming_and_stats():
    now = datetime(2026, 10, 5, 12, 0)
    events = [
        _evt("Old", "2026-10-01T09:00:00", priority="high"),
        _evt("Far", "2026-12-01T09:00:00"),
        _evt("Soon", "2026-10-06T09:00:00", priority="high"),
    ]
    assert [e.title for e in upcoming_events(events, now)] == ["Soon", "Far"]
    assert month_stats(events, now) == {"totalEvents": 3, "thisMonth": 2, "highPriority": 2}


def test_deadline_events_skip_completed():
    deadlines = [
        Deadline(id="dl_1", case_id="c", title="Open", due_date="2026-11-01", priority="urgent"),
        Deadline(id="dl_2", case_id="c", title="Done", due_date="2026-11-02", status="completed"),
    ]
    [event] = deadline_events(deadlines)
    assert event.id == "deadline_dl_1"
    assert event.event_type == "deadline"
    assert event.priority == "high"
    assert event.start_date == event.end_date == "2026-11-01"

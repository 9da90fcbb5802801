"""
CaseLedger calendar helpers.

Month grid layout, event filtering and the projection of case deadlines
into calendar events. Pure functions; the store owns persistence.
"""

from __future__ import annotations

import calendar
from datetime import date, datetime
from typing import Any, Dict, List, Optional, Tuple

from fastapi import HTTPException, status

from caseledger_analytics import parse_ts
from caseledger_types import CalendarEvent, Deadline, DeadlineStatus, EventPriority, EventType

UPCOMING_LIMIT = 5

# Deadline priority 'urgent' has no event equivalent
_DEADLINE_PRIORITY = {
    "low": EventPriority.LOW.value,
    "medium": EventPriority.MEDIUM.value,
    "high": EventPriority.HIGH.value,
    "urgent": EventPriority.HIGH.value,
}


def month_grid(year: int, month: int) -> List[List[Optional[date]]]:
    """Weeks of the month, Sunday first. Days outside the month are None."""
    if not 1 <= month <= 12:
        raise ValueError(f"Month must be 1-12, got {month}")
    cal = calendar.Calendar(firstweekday=calendar.SUNDAY)
    return [
        [date(year, month, d) if d else None for d in week]
        for week in cal.monthdayscalendar(year, month)
    ]


def normalize_event_dates(start_date: str, end_date: Optional[str] = None) -> Tuple[str, str]:
    """End defaults to start. An end before the start is a 400."""
    start = parse_ts(start_date)
    if not end_date:
        return start_date, start_date
    if parse_ts(end_date) < start:
        raise HTTPException(
            status_code=status.HTTP_400_BAD_REQUEST,
            detail={"code": "VALIDATION_ERROR", "message": "End date must be on or after the start date"},
        )
    return start_date, end_date


def events_for_date(events: List[CalendarEvent], day: date) -> List[CalendarEvent]:
    return [e for e in events if parse_ts(e.start_date).date() == day]


def filter_events(events: List[CalendarEvent], search: str = "",
                  event_type: str = "all") -> List[CalendarEvent]:
    """Case-insensitive search over title and description, plus an optional type filter."""
    term = (search or "").lower()
    out = []
    for e in events:
        matches_search = term in (e.title or "").lower() or term in (e.description or "").lower()
        matches_type = event_type in ("", "all", None) or e.event_type == event_type
        if matches_search and matches_type:
            out.append(e)
    return out


def upcoming_events(events: List[CalendarEvent], now: Optional[datetime] = None,
                    limit: int = UPCOMING_LIMIT) -> List[CalendarEvent]:
    now = now or datetime.utcnow()
    future = [e for e in events if parse_ts(e.start_date) >= now]
    return sorted(future, key=lambda e: parse_ts(e.start_date))[:limit]


def month_stats(events: List[CalendarEvent], now: Optional[datetime] = None) -> Dict[str, int]:
    now = now or datetime.utcnow()
    this_month = 0
    for e in events:
        start = parse_ts(e.start_date)
        if start.year == now.year and start.month == now.month:
            this_month += 1
    return {
        "totalEvents": len(events),
        "thisMonth": this_month,
        "highPriority": sum(1 for e in events if e.priority == EventPriority.HIGH.value),
    }


def deadline_events(deadlines: List[Deadline]) -> List[CalendarEvent]:
    """Pending case deadlines shown as read-only 'deadline' events."""
    return [
        CalendarEvent(
            id=f"deadline_{d.id}",
            user_id=d.user_id,
            case_id=d.case_id,
            title=d.title,
            description=d.description or "",
            start_date=d.due_date,
            end_date=d.due_date,
            event_type=EventType.DEADLINE.value,
            priority=_DEADLINE_PRIORITY.get(d.priority, EventPriority.MEDIUM.value),
            reminder_minutes=24 * 60,
            created_at=d.created_at,
        )
        for d in deadlines
        if d.status == DeadlineStatus.PENDING.value
    ]


def month_view(year: int, month: int, events: List[CalendarEvent]) -> Dict[str, Any]:
    """Grid plus the events falling on each day, keyed by ISO date."""
    grid = month_grid(year, month)
    by_day: Dict[str, List[Dict[str, Any]]] = {}
    for week in grid:
        for day in week:
            if day is None:
                continue
            todays = events_for_date(events, day)
            if todays:
                by_day[day.isoformat()] = [e.to_ui() for e in todays]
    return {
        "year": year,
        "month": month,
        "weeks": [[d.isoformat() if d else None for d in week] for week in grid],
        "events": by_day,
    }

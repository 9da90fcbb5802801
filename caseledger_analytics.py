"""
CaseLedger analytics.

Pure aggregation over case and negotiation records for the dashboard,
the analytics view, the client roster and the /users/stats endpoint.
Nothing here touches the database; callers pass records in.
"""

from __future__ import annotations

import math
import re
from collections import OrderedDict
from datetime import datetime
from typing import Any, Dict, Iterable, List, Optional

from caseledger_types import (
    CLOSED_STATUSES,
    Case,
    CaseStatus,
    Negotiation,
    NegotiationStatus,
)

HIGH_VALUE_THRESHOLD = 100_000
DEADLINE_WINDOW_DAYS = 7
RECENT_CASES = 3

TIME_RANGES = {"3months": 3, "6months": 6, "12months": 12}

# Fixed scores shown on the analytics view
PERFORMANCE_METRICS = {
    "negotiationSuccess": 87,
    "clientSatisfaction": 94,
    "documentProcessing": 92,
    "responseTime": 89,
}


def parse_ts(value: Optional[str]) -> Optional[datetime]:
    """ISO date or datetime (with or without 'Z') to a naive UTC datetime."""
    if not value:
        return None
    dt = datetime.fromisoformat(value.replace("Z", "+00:00"))
    if dt.tzinfo is not None:
        dt = dt.replace(tzinfo=None) - dt.utcoffset()
    return dt


def days_until(value: Optional[str], now: datetime) -> Optional[int]:
    """Whole days until `value`, rounded up. Negative once it has passed."""
    dt = parse_ts(value)
    if dt is None:
        return None
    return math.ceil((dt - now).total_seconds() / 86400)


def month_keys(now: datetime, months: int) -> List[str]:
    """The last `months` calendar months ending with now's, oldest first, as 'YYYY-MM'."""
    keys = []
    year, month = now.year, now.month
    for _ in range(months):
        keys.append(f"{year:04d}-{month:02d}")
        month -= 1
        if month == 0:
            year, month = year - 1, 12
    return list(reversed(keys))


def _month_label(key: str) -> str:
    return datetime.strptime(key, "%Y-%m").strftime("%b")


# ============================================================================
# DASHBOARD
# ============================================================================

def insights(cases: List[Case], documents_by_case: Dict[str, int]) -> List[str]:
    """Up to three practice recommendations for the dashboard."""
    recs = []
    case_types = {c.case_type for c in cases if c.case_type}
    if len(case_types) == 1:
        recs.append("Consider diversifying case types")
    without_docs = [c for c in cases if not documents_by_case.get(c.id)]
    if without_docs:
        recs.append(f"{len(without_docs)} cases need documents")
    investigating = [c for c in cases if c.status == CaseStatus.INVESTIGATING.value]
    if len(investigating) > 3:
        recs.append("Advance investigating cases to negotiation")
    if not recs:
        recs = ["Use AI Negotiator for settlements", "Review case timelines regularly"]
    return recs[:3]


def dashboard_summary(cases: List[Case], now: Optional[datetime] = None,
                      documents_by_case: Optional[Dict[str, int]] = None) -> Dict[str, Any]:
    """
    Headline numbers for the dashboard. `cases` is newest first.

    Deadline buckets use the case's next_deadline: upcoming when it is
    1 to 7 days out (rounded up), overdue once it has passed.
    """
    now = now or datetime.utcnow()
    total = len(cases)
    settled = sum(1 for c in cases if c.status == CaseStatus.SETTLED.value)

    upcoming, overdue, pending = [], [], 0
    for c in cases:
        due = parse_ts(c.next_deadline)
        if due is None:
            continue
        if due > now:
            pending += 1
        if due < now:
            overdue.append(c)
        days = days_until(c.next_deadline, now)
        if 0 < days <= DEADLINE_WINDOW_DAYS:
            upcoming.append(c)

    return {
        "totalCases": total,
        "activeCases": sum(1 for c in cases if c.status not in CLOSED_STATUSES),
        "totalValue": sum(c.estimated_value or 0 for c in cases),
        "settledCases": settled,
        "successRate": round(settled / total * 100) if total else 0,
        "pendingDeadlines": pending,
        "negotiatingCases": [c.to_ui() for c in cases if c.status == CaseStatus.NEGOTIATING.value],
        "highValueCases": [c.to_ui() for c in cases if (c.estimated_value or 0) > HIGH_VALUE_THRESHOLD],
        "upcomingDeadlines": [c.to_ui() for c in upcoming],
        "overdueDeadlines": [c.to_ui() for c in overdue],
        "averageValue": round(sum(c.estimated_value or 0 for c in cases) / total) if total else 0,
        "recentCases": [c.to_ui() for c in cases[:RECENT_CASES]],
        "insights": insights(cases, documents_by_case or {}),
    }


# ============================================================================
# ANALYTICS VIEW
# ============================================================================

def average_settlement_days(cases: Iterable[Case]) -> int:
    durations = []
    for c in cases:
        if c.status != CaseStatus.SETTLED.value:
            continue
        opened, closed = parse_ts(c.created_at), parse_ts(c.updated_at)
        if opened and closed:
            durations.append((closed - opened).total_seconds() / 86400)
    return round(sum(durations) / len(durations)) if durations else 0


def monthly_series(cases: List[Case], now: datetime, months: int) -> List[Dict[str, Any]]:
    buckets: "OrderedDict[str, Dict[str, Any]]" = OrderedDict(
        (key, {"month": _month_label(key), "key": key, "cases": 0, "settlements": 0, "revenue": 0.0})
        for key in month_keys(now, months)
    )
    for c in cases:
        created = parse_ts(c.created_at)
        if created and created.strftime("%Y-%m") in buckets:
            buckets[created.strftime("%Y-%m")]["cases"] += 1
        if c.status == CaseStatus.SETTLED.value:
            settled_at = parse_ts(c.updated_at)
            if settled_at and settled_at.strftime("%Y-%m") in buckets:
                bucket = buckets[settled_at.strftime("%Y-%m")]
                bucket["settlements"] += 1
                bucket["revenue"] += c.settlement_amount or 0
    return list(buckets.values())


def cases_by_type(cases: Iterable[Case]) -> List[Dict[str, Any]]:
    counts: "OrderedDict[str, Dict[str, Any]]" = OrderedDict()
    for c in cases:
        entry = counts.setdefault(c.case_type or "other", {"type": c.case_type or "other", "count": 0, "value": 0.0})
        entry["count"] += 1
        entry["value"] += c.settlement_amount or 0
    return list(counts.values())


def negotiation_success_rate(negotiations: List[Negotiation]) -> float:
    if not negotiations:
        return 0.0
    accepted = sum(1 for n in negotiations if n.status == NegotiationStatus.ACCEPTED.value)
    return round(accepted / len(negotiations) * 100, 1)


def case_analytics(cases: List[Case], negotiations: List[Negotiation],
                   time_range: str = "6months", now: Optional[datetime] = None) -> Dict[str, Any]:
    """Everything the analytics view renders. Unknown time ranges raise ValueError."""
    if time_range not in TIME_RANGES:
        raise ValueError(f"Unknown time range '{time_range}'. Valid: {', '.join(TIME_RANGES)}")
    now = now or datetime.utcnow()
    total = len(cases)
    settled = [c for c in cases if c.status == CaseStatus.SETTLED.value]
    settlements = [c.settlement_amount for c in cases if c.settlement_amount and c.settlement_amount > 0]
    return {
        "timeRange": time_range,
        "totalCases": total,
        "activeCases": sum(1 for c in cases if c.status not in CLOSED_STATUSES),
        "settledCases": len(settled),
        "totalSettlements": sum(settlements),
        "avgSettlementTime": average_settlement_days(settled),
        "successRate": round(len(settled) / total * 100, 1) if total else 0.0,
        "monthlyData": monthly_series(cases, now, TIME_RANGES[time_range]),
        "casesByType": cases_by_type(cases),
        "negotiationSuccessRate": negotiation_success_rate(negotiations),
        "performanceMetrics": dict(PERFORMANCE_METRICS),
    }


# ============================================================================
# USER STATS
# ============================================================================

def user_overview_stats(cases: List[Case], documents_total: int = 0) -> Dict[str, Any]:
    settled_amounts = [c.settlement_amount for c in cases
                       if c.status == CaseStatus.SETTLED.value and c.settlement_amount]
    return {
        "totalCases": len(cases),
        "activeCases": sum(1 for c in cases if c.status not in CLOSED_STATUSES),
        "settledCases": sum(1 for c in cases if c.status == CaseStatus.SETTLED.value),
        "closedCases": sum(1 for c in cases if c.status == CaseStatus.CLOSED.value),
        "totalSettlements": sum(settled_amounts),
        "avgSettlement": round(sum(settled_amounts) / len(settled_amounts), 2) if settled_amounts else 0,
        "totalDocuments": documents_total,
    }


def monthly_case_counts(cases: List[Case], now: Optional[datetime] = None,
                        months: int = 12) -> List[Dict[str, Any]]:
    """Cases opened per month over the last `months` months; empty months omitted."""
    now = now or datetime.utcnow()
    keys = set(month_keys(now, months))
    counts: Dict[str, int] = {}
    for c in cases:
        created = parse_ts(c.created_at)
        if created and created.strftime("%Y-%m") in keys:
            counts[created.strftime("%Y-%m")] = counts.get(created.strftime("%Y-%m"), 0) + 1
    return [{"month": k, "count": counts[k]} for k in sorted(counts)]


def case_type_distribution(cases: List[Case]) -> List[Dict[str, Any]]:
    counts: Dict[str, int] = {}
    for c in cases:
        counts[c.case_type] = counts.get(c.case_type, 0) + 1
    return [{"caseType": t, "count": n}
            for t, n in sorted(counts.items(), key=lambda kv: (-kv[1], kv[0]))]


def settlement_trends(cases: List[Case], now: Optional[datetime] = None,
                      months: int = 12) -> List[Dict[str, Any]]:
    now = now or datetime.utcnow()
    keys = set(month_keys(now, months))
    trends: Dict[str, Dict[str, Any]] = {}
    for c in cases:
        if c.status != CaseStatus.SETTLED.value:
            continue
        settled_at = parse_ts(c.updated_at)
        if not settled_at or settled_at.strftime("%Y-%m") not in keys:
            continue
        key = settled_at.strftime("%Y-%m")
        entry = trends.setdefault(key, {"month": key, "settledCount": 0, "totalAmount": 0.0})
        entry["settledCount"] += 1
        entry["totalAmount"] += c.settlement_amount or 0
    return [trends[k] for k in sorted(trends)]


# ============================================================================
# CLIENTS
# ============================================================================

def client_id(name: str) -> str:
    """URL-safe handle for a client, derived from the name on their cases."""
    return re.sub(r"[^a-z0-9]+", "-", name.strip().lower()).strip("-") or "unknown-client"


def client_roster(cases: List[Case], search: str = "") -> List[Dict[str, Any]]:
    """
    Clients grouped from case records, newest client first.

    There is no client table: a client is every case sharing a client name
    (trimmed). Contact details come from the most recent case that has them.
    Settlement totals only count settled cases.
    """
    clients: Dict[str, Dict[str, Any]] = OrderedDict()
    for c in sorted(cases, key=lambda c: c.created_at or "", reverse=True):
        name = (c.client_name or "").strip() or "Unknown Client"
        key = client_id(name)
        entry = clients.get(key)
        if entry is None:
            entry = clients[key] = {
                "id": key, "name": name, "email": "", "phone": "",
                "createdAt": c.created_at, "totalCases": 0, "activeCases": 0,
                "totalSettlements": 0.0,
            }
        entry["email"] = entry["email"] or c.client_email or ""
        entry["phone"] = entry["phone"] or c.client_phone or ""
        if c.created_at and (not entry["createdAt"] or c.created_at < entry["createdAt"]):
            entry["createdAt"] = c.created_at
        entry["totalCases"] += 1
        if c.status not in CLOSED_STATUSES:
            entry["activeCases"] += 1
        if c.status == CaseStatus.SETTLED.value:
            entry["totalSettlements"] += c.settlement_amount or 0

    roster = list(clients.values())
    term = search.strip().lower()
    if term:
        roster = [e for e in roster
                  if term in e["name"].lower() or term in e["email"].lower() or term in e["phone"]]
    return roster


def client_summary(roster: List[Dict[str, Any]]) -> Dict[str, Any]:
    return {
        "totalClients": len(roster),
        "activeCases": sum(e["activeCases"] for e in roster),
        "totalSettlements": sum(e["totalSettlements"] for e in roster),
    }


def client_detail(cases: List[Case], cid: str) -> Optional[Dict[str, Any]]:
    """One roster entry plus that client's cases, or None for an unknown id."""
    for entry in client_roster(cases):
        if entry["id"] == cid:
            own = [c for c in cases if client_id((c.client_name or "").strip() or "Unknown Client") == cid]
            own.sort(key=lambda c: c.created_at or "", reverse=True)
            return {"client": entry, "cases": [c.to_ui() for c in own]}
    return None

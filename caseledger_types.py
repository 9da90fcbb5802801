#!/usr/bin/env python3
"""
CaseLedger Type Definitions
============================
Enums and record types for the CaseLedger case manager.

Every record has two shapes:
  - persistence shape (snake_case), as stored in SQLite rows
  - UI shape (camelCase), as returned to the single-page app

Usage:
    from caseledger_types import Case, CaseStatus, snake_to_camel
    case = Case.from_db(row)
    payload = case.to_ui()

Version: 1.0
"""

from __future__ import annotations

import json
import re
import uuid
from dataclasses import dataclass, field, fields
from datetime import datetime
from enum import Enum
from typing import Any, Dict, List, Optional


# ============================================================================
# ENUMS
# ============================================================================

class CaseType(str, Enum):
    """Practice area of a case."""
    PERSONAL_INJURY = "personal_injury"
    AUTO_ACCIDENT = "auto_accident"
    WORKERS_COMP = "workers_comp"
    MEDICAL_MALPRACTICE = "medical_malpractice"
    OTHER = "other"


class CaseStatus(str, Enum):
    """Lifecycle status of a case."""
    NEW = "new"
    INVESTIGATING = "investigating"
    NEGOTIATING = "negotiating"
    SETTLED = "settled"
    LITIGATION = "litigation"
    CLOSED = "closed"


CLOSED_STATUSES = (CaseStatus.SETTLED.value, CaseStatus.CLOSED.value)


class Priority(str, Enum):
    LOW = "low"
    MEDIUM = "medium"
    HIGH = "high"
    URGENT = "urgent"


class UserRole(str, Enum):
    USER = "user"
    ADMIN = "admin"


class NoteType(str, Enum):
    GENERAL = "general"
    PHONE_CALL = "phone_call"
    MEETING = "meeting"
    COURT = "court"
    RESEARCH = "research"


class DeadlineStatus(str, Enum):
    PENDING = "pending"
    COMPLETED = "completed"


class DocumentCategory(str, Enum):
    """Filing category of an uploaded document."""
    MEDICAL = "medical"
    POLICE_REPORT = "police_report"
    INSURANCE = "insurance"
    CORRESPONDENCE = "correspondence"
    EVIDENCE = "evidence"
    OTHER = "other"


class NegotiationStatus(str, Enum):
    PENDING = "pending"
    COUNTERED = "countered"
    ACCEPTED = "accepted"
    REJECTED = "rejected"


FINAL_NEGOTIATION_STATUSES = (NegotiationStatus.ACCEPTED.value, NegotiationStatus.REJECTED.value)


class NegotiationMessageType(str, Enum):
    DEMAND = "demand"
    OFFER = "offer"
    COUNTER = "counter"
    ACCEPTANCE = "acceptance"
    REJECTION = "rejection"


class Sender(str, Enum):
    ATTORNEY = "attorney"
    INSURANCE = "insurance"


class AssistantMessageType(str, Enum):
    """Author of a line in the negotiator chat panel."""
    USER = "user"
    AI = "ai"
    SYSTEM = "system"


class EventType(str, Enum):
    MEETING = "meeting"
    COURT = "court"
    DEADLINE = "deadline"
    CONSULTATION = "consultation"
    DEPOSITION = "deposition"
    OTHER = "other"


class EventPriority(str, Enum):
    LOW = "low"
    MEDIUM = "medium"
    HIGH = "high"


# ============================================================================
# NAME CONVERSION
# ============================================================================

_CAMEL_BOUNDARY = re.compile(r"(?<!^)(?=[A-Z])")


def snake_to_camel(name: str) -> str:
    """'case_number' -> 'caseNumber'."""
    head, *rest = name.split("_")
    return head + "".join(part[:1].upper() + part[1:] for part in rest)


def camel_to_snake(name: str) -> str:
    """'caseNumber' -> 'case_number'."""
    return _CAMEL_BOUNDARY.sub("_", name).lower()


def new_id(prefix: str) -> str:
    return f"{prefix}_{uuid.uuid4().hex[:12]}"


def utcnow_iso() -> str:
    return datetime.utcnow().isoformat()


# ============================================================================
# RECORD BASE
# ============================================================================

class Record:
    """
    Conversion mixin for flat dataclass records.

    JSON_FIELDS are stored as TEXT columns and decoded on read.
    BOOL_FIELDS are stored as 0/1 integers.
    HIDDEN_FIELDS never leave the service in the UI shape.
    """

    JSON_FIELDS: tuple = ()
    BOOL_FIELDS: tuple = ()
    HIDDEN_FIELDS: tuple = ()

    @classmethod
    def field_names(cls) -> List[str]:
        return [f.name for f in fields(cls)]

    @classmethod
    def from_db(cls, row: Any):
        """Build from a sqlite3.Row or snake_case dict. Unknown columns are ignored."""
        data = dict(row)
        kwargs: Dict[str, Any] = {}
        for name in cls.field_names():
            if name not in data:
                continue
            value = data[name]
            if name in cls.JSON_FIELDS and isinstance(value, str):
                value = json.loads(value) if value else None
            elif name in cls.BOOL_FIELDS and value is not None:
                value = bool(value)
            kwargs[name] = value
        return cls(**kwargs)

    def to_db(self) -> Dict[str, Any]:
        out: Dict[str, Any] = {}
        for name in self.field_names():
            value = getattr(self, name)
            if name in self.JSON_FIELDS and value is not None:
                value = json.dumps(value)
            elif name in self.BOOL_FIELDS and value is not None:
                value = int(bool(value))
            out[name] = value
        return out

    def to_ui(self) -> Dict[str, Any]:
        return {
            snake_to_camel(name): getattr(self, name)
            for name in self.field_names()
            if name not in self.HIDDEN_FIELDS
        }

    @classmethod
    def from_ui(cls, payload: Dict[str, Any]) -> Dict[str, Any]:
        """
        Convert a (possibly partial) camelCase payload to snake_case.
        Only keys that name a field of this record are kept, so the
        result is safe to hand to an UPDATE.
        """
        known = set(cls.field_names())
        out: Dict[str, Any] = {}
        for key, value in payload.items():
            name = camel_to_snake(key)
            if name in known and name not in cls.HIDDEN_FIELDS:
                out[name] = value
        return out


# ============================================================================
# ENTITIES
# ============================================================================

@dataclass
class User(Record):
    """An attorney or staff account."""
    id: str = field(default_factory=lambda: new_id("usr"))
    email: str = ""
    password_hash: str = ""
    first_name: str = ""
    last_name: str = ""
    role: str = UserRole.USER.value
    firm_name: Optional[str] = None
    phone: Optional[str] = None
    created_at: str = field(default_factory=utcnow_iso)
    updated_at: Optional[str] = None
    last_login: Optional[str] = None
    is_active: bool = True

    BOOL_FIELDS = ("is_active",)
    HIDDEN_FIELDS = ("password_hash",)

    @property
    def full_name(self) -> str:
        return f"{self.first_name} {self.last_name}".strip()


@dataclass
class Case(Record):
    """A personal-injury matter."""
    id: str = field(default_factory=lambda: new_id("case"))
    user_id: str = ""
    case_number: str = ""
    title: str = ""
    client_name: str = ""
    client_email: Optional[str] = None
    client_phone: Optional[str] = None
    case_type: str = CaseType.PERSONAL_INJURY.value
    status: str = CaseStatus.NEW.value
    priority: str = Priority.MEDIUM.value
    description: Optional[str] = None
    incident_date: Optional[str] = None
    statute_of_limitations: Optional[str] = None
    estimated_value: float = 0.0
    current_offer: Optional[float] = None
    settlement_amount: Optional[float] = None
    settlement_goal: Optional[float] = None
    insurance_company: Optional[str] = None
    insurance_adjuster: Optional[str] = None
    claim_number: Optional[str] = None
    assigned_attorney: Optional[str] = None
    next_deadline: Optional[str] = None
    created_at: str = field(default_factory=utcnow_iso)
    updated_at: str = field(default_factory=utcnow_iso)

    @property
    def is_active(self) -> bool:
        return self.status not in CLOSED_STATUSES


@dataclass
class CaseNote(Record):
    id: str = field(default_factory=lambda: new_id("note"))
    case_id: str = ""
    user_id: str = ""
    note: str = ""
    note_type: str = NoteType.GENERAL.value
    created_at: str = field(default_factory=utcnow_iso)


@dataclass
class Deadline(Record):
    id: str = field(default_factory=lambda: new_id("dl"))
    case_id: str = ""
    user_id: str = ""
    title: str = ""
    description: Optional[str] = None
    due_date: str = ""
    priority: str = Priority.MEDIUM.value
    deadline_type: Optional[str] = None
    status: str = DeadlineStatus.PENDING.value
    created_at: str = field(default_factory=utcnow_iso)


@dataclass
class Document(Record):
    """Metadata for an uploaded file. The bytes live on disk under stored_name."""
    id: str = field(default_factory=lambda: new_id("doc"))
    case_id: str = ""
    user_id: str = ""
    file_name: str = ""
    stored_name: str = ""
    file_type: str = "application/octet-stream"
    file_size: int = 0
    category: str = DocumentCategory.OTHER.value
    description: Optional[str] = None
    extracted_text: Optional[str] = None
    ai_analysis: Optional[str] = None
    hash_sha256: str = ""
    public_url: str = ""
    uploaded_at: str = field(default_factory=utcnow_iso)

    HIDDEN_FIELDS = ("stored_name",)


@dataclass
class NegotiationMessage(Record):
    id: str = field(default_factory=lambda: new_id("nmsg"))
    negotiation_id: str = ""
    type: str = NegotiationMessageType.DEMAND.value
    amount: Optional[float] = None
    message: str = ""
    sender: str = Sender.ATTORNEY.value
    timestamp: str = field(default_factory=utcnow_iso)
    ai_generated: bool = False

    BOOL_FIELDS = ("ai_generated",)


@dataclass
class Negotiation(Record):
    """Offer/demand exchange with an insurer for one case."""
    id: str = field(default_factory=lambda: new_id("neg"))
    case_id: str = ""
    user_id: str = ""
    insurance_company: str = ""
    current_offer: float = 0.0
    demand_amount: float = 0.0
    status: str = NegotiationStatus.PENDING.value
    created_at: str = field(default_factory=utcnow_iso)
    updated_at: str = field(default_factory=utcnow_iso)
    messages: List[NegotiationMessage] = field(default_factory=list)

    def to_db(self) -> Dict[str, Any]:
        out = super().to_db()
        out.pop("messages")
        return out

    def to_ui(self) -> Dict[str, Any]:
        out = super().to_ui()
        out["messages"] = [m.to_ui() for m in self.messages]
        return out


@dataclass
class AssistantMessage(Record):
    """One line of the negotiator chat panel."""
    id: str = field(default_factory=lambda: new_id("amsg"))
    case_id: str = ""
    user_id: str = ""
    type: str = AssistantMessageType.USER.value
    content: str = ""
    metadata: Optional[Dict[str, Any]] = None
    timestamp: str = field(default_factory=utcnow_iso)

    JSON_FIELDS = ("metadata",)


@dataclass
class AIAnalysis(Record):
    """Settlement analysis produced by the simulated assistant."""
    case_strength: int = 5            # 1 – 10
    recommended_settlement: float = 0.0
    key_factors: List[str] = field(default_factory=list)
    risks: List[str] = field(default_factory=list)
    opportunities: List[str] = field(default_factory=list)
    similar_cases: List[str] = field(default_factory=list)
    confidence: float = 0.0           # 0.0 – 1.0

    JSON_FIELDS = ("key_factors", "risks", "opportunities", "similar_cases")


@dataclass
class CalendarEvent(Record):
    id: str = field(default_factory=lambda: new_id("evt"))
    user_id: str = ""
    case_id: Optional[str] = None
    title: str = ""
    description: str = ""
    start_date: str = ""
    end_date: str = ""
    event_type: str = EventType.MEETING.value
    location: str = ""
    attendees: str = ""
    priority: str = EventPriority.MEDIUM.value
    reminder_minutes: int = 15
    created_at: str = field(default_factory=utcnow_iso)


def default_preferences() -> Dict[str, Any]:
    """Preferences returned before a user saves any."""
    return {
        "theme": "light",
        "notifications": {"email": True, "deadlines": True, "caseUpdates": True},
        "dashboard": {
            "showRecentCases": True,
            "showUpcomingDeadlines": True,
            "showRecentActivity": True,
        },
        "dateFormat": "MM/DD/YYYY",
        "timeFormat": "12h",
    }


def default_firm_settings(firm_name: Optional[str] = None) -> Dict[str, Any]:
    return {
        "firmName": firm_name or "",
        "address": "",
        "phone": "",
        "email": "",
        "website": "",
        "billingRate": 0,
        "currency": "USD",
        "timezone": "UTC",
    }


def merge_settings(base: Dict[str, Any], updates: Dict[str, Any]) -> Dict[str, Any]:
    """
    Merge `updates` into `base` in place and return it.

    Nested dicts merge one level deep. None never overwrites a stored value,
    so a client sending `"notifications": null` keeps the saved toggles.
    """
    for key, value in updates.items():
        if value is None:
            continue
        if isinstance(value, dict) and isinstance(base.get(key), dict):
            base[key].update({k: v for k, v in value.items() if v is not None})
        else:
            base[key] = value
    return base

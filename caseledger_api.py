#!/usr/bin/env python3
"""
CaseLedger API
===============
FastAPI service behind the CaseLedger single-page app: accounts, cases,
documents, negotiations, the negotiator chat panel, analytics, calendar
clients and user settings. Every case-scoped resource belongs to one user.

Usage:
    uvicorn caseledger_api:app --host 0.0.0.0 --port 8080

Requires:
    pip install fastapi uvicorn pydantic reportlab PyJWT passlib

Version: 1.0
"""

from __future__ import annotations

import base64
import binascii
import logging
from collections import Counter
from datetime import datetime
from typing import Dict, List, Optional
from urllib.parse import quote

from fastapi import Depends, FastAPI, HTTPException, Path, Query, status
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import Response
from pydantic import BaseModel, ConfigDict, Field, field_validator
from pydantic.alias_generators import to_camel

import caseledger_analytics as analytics
import caseledger_assistant as assistant
import caseledger_auth as auth
import caseledger_calendar as cal
import caseledger_docs as docs
from caseledger_auth import AuthContext, get_current_user, require_role
from caseledger_config import config
from caseledger_store import Store, get_store
from caseledger_types import (
    AssistantMessageType,
    CalendarEvent,
    CaseStatus,
    CaseType,
    DocumentCategory,
    EventPriority,
    EventType,
    NegotiationMessageType,
    NoteType,
    Priority,
    Sender,
    UserRole,
)

logger = logging.getLogger("cl-api")


ALLOWED_MIME_TYPES = {
    "application/pdf",
    "application/msword",
    "application/vnd.openxmlformats-officedocument.wordprocessingml.document",
    "application/vnd.ms-excel",
    "application/vnd.openxmlformats-officedocument.spreadsheetml.sheet",
    "text/plain",
    "image/jpeg",
    "image/png",
    "image/gif",
    "image/webp",
}


def _iso(v: Optional[str]) -> Optional[str]:
    if v in (None, ""):
        return None
    try:
        analytics.parse_ts(v)
    except ValueError:
        raise ValueError(f"'{v}' is not an ISO 8601 date")
    return v


def _not_null(v):
    if v is None:
        raise ValueError("Field may be omitted but not null")
    return v


def _bad_request(message: str, code: str = "VALIDATION_ERROR") -> HTTPException:
    return HTTPException(
        status_code=status.HTTP_400_BAD_REQUEST,
        detail={"code": code, "message": message},
    )


# ============================================================================
# REQUEST / RESPONSE MODELS
# ============================================================================

class CamelModel(BaseModel):
    """Accepts camelCase from the UI and snake_case from scripts."""
    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True)


class RegisterRequest(CamelModel):
    email: str = Field(..., min_length=3, max_length=320)
    password: str = Field(..., min_length=config.MIN_PASSWORD_LENGTH, max_length=256)
    first_name: str = Field(..., min_length=1, max_length=100)
    last_name: str = Field(..., min_length=1, max_length=100)
    firm_name: Optional[str] = Field(None, max_length=200)
    phone: Optional[str] = Field(None, max_length=30)

    @field_validator("email")
    @classmethod
    def validate_email(cls, v: str) -> str:
        v = v.strip().lower()
        if "@" not in v or "." not in v.split("@")[-1]:
            raise ValueError("Please provide a valid email")
        return v


class LoginRequest(CamelModel):
    email: str = Field(..., min_length=3, max_length=320)
    password: str = Field(..., min_length=1)


class ProfileUpdate(CamelModel):
    first_name: Optional[str] = Field(None, min_length=1, max_length=100)
    last_name: Optional[str] = Field(None, min_length=1, max_length=100)
    firm_name: Optional[str] = Field(None, max_length=200)
    phone: Optional[str] = Field(None, max_length=30)

    @field_validator("first_name", "last_name")
    @classmethod
    def reject_null(cls, v):
        return _not_null(v)


class PasswordChange(CamelModel):
    current_password: str = Field(..., min_length=1)
    new_password: str = Field(..., min_length=config.MIN_PASSWORD_LENGTH, max_length=256)


class CaseCreate(CamelModel):
    title: Optional[str] = Field(None, max_length=300)
    client_name: str = Field(..., min_length=1, max_length=200)
    client_email: Optional[str] = Field(None, max_length=320)
    client_phone: Optional[str] = Field(None, max_length=30)
    case_type: CaseType = CaseType.PERSONAL_INJURY
    status: CaseStatus = CaseStatus.NEW
    priority: Priority = Priority.MEDIUM
    description: Optional[str] = Field(None, max_length=10000)
    incident_date: Optional[str] = None
    estimated_value: float = Field(0.0, ge=0)
    current_offer: Optional[float] = Field(None, ge=0)
    settlement_goal: Optional[float] = Field(None, ge=0)
    insurance_company: Optional[str] = Field(None, max_length=200)
    insurance_adjuster: Optional[str] = Field(None, max_length=200)
    claim_number: Optional[str] = Field(None, max_length=100)
    assigned_attorney: Optional[str] = Field(None, max_length=200)

    @field_validator("incident_date")
    @classmethod
    def validate_incident_date(cls, v: Optional[str]) -> Optional[str]:
        return _iso(v)


class CaseUpdate(CamelModel):
    title: Optional[str] = Field(None, min_length=1, max_length=300)
    client_name: Optional[str] = Field(None, min_length=1, max_length=200)
    client_email: Optional[str] = Field(None, max_length=320)
    client_phone: Optional[str] = Field(None, max_length=30)
    case_type: Optional[CaseType] = None
    status: Optional[CaseStatus] = None
    priority: Optional[Priority] = None
    description: Optional[str] = Field(None, max_length=10000)
    incident_date: Optional[str] = None
    estimated_value: Optional[float] = Field(None, ge=0)
    current_offer: Optional[float] = Field(None, ge=0)
    settlement_amount: Optional[float] = Field(None, ge=0)
    settlement_goal: Optional[float] = Field(None, ge=0)
    insurance_company: Optional[str] = Field(None, max_length=200)
    insurance_adjuster: Optional[str] = Field(None, max_length=200)
    claim_number: Optional[str] = Field(None, max_length=100)
    assigned_attorney: Optional[str] = Field(None, max_length=200)

    @field_validator("incident_date")
    @classmethod
    def validate_incident_date(cls, v: Optional[str]) -> Optional[str]:
        return _iso(v)

    @field_validator("title", "client_name", "case_type", "status", "priority", "estimated_value")
    @classmethod
    def reject_null(cls, v):
        return _not_null(v)


class NoteCreate(CamelModel):
    note: str = Field(..., min_length=1, max_length=10000)
    note_type: NoteType = NoteType.GENERAL


class DeadlineCreate(CamelModel):
    title: str = Field(..., min_length=1, max_length=300)
    due_date: str
    description: Optional[str] = Field(None, max_length=5000)
    priority: Priority = Priority.MEDIUM
    deadline_type: Optional[str] = Field(None, max_length=100)

    @field_validator("due_date")
    @classmethod
    def validate_due_date(cls, v: str) -> str:
        if not _iso(v):
            raise ValueError("Due date is required")
        return v


class DocumentUpload(CamelModel):
    file_name: str = Field(..., min_length=1, max_length=255)
    file_type: str = Field(..., min_length=1, max_length=200)
    content: str = Field(..., min_length=1, description="File bytes, base64 encoded")
    category: DocumentCategory = DocumentCategory.OTHER
    description: Optional[str] = Field(None, max_length=2000)
    extracted_text: Optional[str] = None


class DocumentUpdate(CamelModel):
    category: Optional[DocumentCategory] = None
    description: Optional[str] = Field(None, max_length=2000)

    @field_validator("category")
    @classmethod
    def reject_null(cls, v):
        return _not_null(v)


class NegotiationCreate(CamelModel):
    case_id: str
    demand_amount: float = Field(..., gt=0)
    message: str = Field("", max_length=10000)
    insurance_company: Optional[str] = Field(None, max_length=200)
    ai_generated: bool = False


class NegotiationMessageCreate(CamelModel):
    type: NegotiationMessageType
    amount: Optional[float] = None
    message: str = Field("", max_length=10000)
    sender: Optional[Sender] = None
    ai_generated: bool = False


class ChatRequest(CamelModel):
    case_id: str
    message: str = Field(..., min_length=1, max_length=5000)
    demand_amount: Optional[float] = Field(None, ge=0)
    current_offer: Optional[float] = Field(None, ge=0)


class AnalysisRequest(CamelModel):
    case_id: str
    demand_amount: Optional[float] = Field(None, ge=0)
    current_offer: Optional[float] = Field(None, ge=0)


class DemandLetterRequest(CamelModel):
    case_id: Optional[str] = None
    demand_amount: Optional[float] = Field(None, ge=0)
    current_offer: Optional[float] = Field(None, ge=0)


class EventCreate(CamelModel):
    title: str = Field(..., min_length=1, max_length=300)
    description: str = Field("", max_length=5000)
    start_date: str
    end_date: Optional[str] = None
    event_type: EventType = EventType.MEETING
    location: str = Field("", max_length=300)
    attendees: str = Field("", max_length=1000)
    case_id: Optional[str] = None
    priority: EventPriority = EventPriority.MEDIUM
    reminder_minutes: int = Field(15, ge=0, le=60 * 24 * 14)

    @field_validator("start_date")
    @classmethod
    def validate_start(cls, v: str) -> str:
        if not _iso(v):
            raise ValueError("Start date is required")
        return v

    @field_validator("end_date")
    @classmethod
    def validate_end(cls, v: Optional[str]) -> Optional[str]:
        return _iso(v)


class EventUpdate(CamelModel):
    title: Optional[str] = Field(None, min_length=1, max_length=300)
    description: Optional[str] = Field(None, max_length=5000)
    start_date: Optional[str] = None
    end_date: Optional[str] = None
    event_type: Optional[EventType] = None
    location: Optional[str] = Field(None, max_length=300)
    attendees: Optional[str] = Field(None, max_length=1000)
    case_id: Optional[str] = None
    priority: Optional[EventPriority] = None
    reminder_minutes: Optional[int] = Field(None, ge=0, le=60 * 24 * 14)

    @field_validator("start_date", "end_date")
    @classmethod
    def validate_dates(cls, v: Optional[str]) -> Optional[str]:
        return _iso(v)

    @field_validator("title", "description", "event_type", "location", "attendees", "priority",
                     "reminder_minutes")
    @classmethod
    def reject_null(cls, v):
        return _not_null(v)


class PreferencesUpdate(CamelModel):
    theme: Optional[str] = Field(None, pattern="^(light|dark|system)$")
    notifications: Optional[Dict[str, bool]] = None
    dashboard: Optional[Dict[str, bool]] = None
    date_format: Optional[str] = Field(None, max_length=20)
    time_format: Optional[str] = Field(None, pattern="^(12h|24h)$")


class FirmSettingsUpdate(CamelModel):
    firm_name: Optional[str] = Field(None, max_length=200)
    address: Optional[str] = Field(None, max_length=500)
    phone: Optional[str] = Field(None, max_length=30)
    email: Optional[str] = Field(None, max_length=320)
    website: Optional[str] = Field(None, max_length=300)
    billing_rate: Optional[float] = Field(None, ge=0)
    currency: Optional[str] = Field(None, pattern="^[A-Z]{3}$")
    timezone: Optional[str] = Field(None, min_length=1, max_length=64)


class HealthResponse(BaseModel):
    service: str = "caseledger"
    status: str = "healthy"
    uptime_seconds: float = 0.0


# ============================================================================
# FASTAPI APP
# ============================================================================

app = FastAPI(
    title="CaseLedger API",
    description="Case management for personal injury practices",
    version="1.0.0",
)

# In production, set CORS_ORIGINS to the deployed UI origin(s)
_allowed_origins = config.CORS_ORIGINS.split(",")

app.add_middleware(
    CORSMiddleware,
    allow_origins=_allowed_origins if _allowed_origins != ["*"] else ["*"],
    allow_credentials=True if _allowed_origins != ["*"] else False,
    allow_methods=["*"],
    allow_headers=["*"],
)


@app.get("/health", response_model=HealthResponse)
async def health(store: Store = Depends(get_store)):
    """Liveness plus uptime."""
    uptime = (datetime.utcnow() - store.start_time).total_seconds()
    return HealthResponse(uptime_seconds=round(uptime, 1))


@app.get("/ready")
async def ready(store: Store = Depends(get_store)):
    """Readiness check. Returns 200 once the database answers."""
    return {"ready": store.ping()}


# ============================================================================
# AUTH
# ============================================================================

@app.post("/api/auth/register", status_code=status.HTTP_201_CREATED)
async def register(req: RegisterRequest, store: Store = Depends(get_store)):
    user, token = auth.register(
        store, req.email, req.password, req.first_name, req.last_name,
        firm_name=req.firm_name, phone=req.phone,
    )
    return {"message": "User registered successfully", "user": user.to_ui(), "token": token}


@app.post("/api/auth/login")
async def login(req: LoginRequest, store: Store = Depends(get_store)):
    user, token = auth.login(store, req.email, req.password)
    return {"message": "Login successful", "user": user.to_ui(), "token": token}


@app.post("/api/auth/logout")
async def logout(ctx: AuthContext = Depends(get_current_user), store: Store = Depends(get_store)):
    auth.logout(store, ctx.token)
    return {"message": "Logout successful"}


@app.get("/api/auth/me")
async def me(ctx: AuthContext = Depends(get_current_user)):
    return {"user": ctx.user.to_ui()}


@app.put("/api/auth/profile")
async def update_profile(
    req: ProfileUpdate,
    ctx: AuthContext = Depends(get_current_user),
    store: Store = Depends(get_store),
):
    user = store.update_user(ctx.user.id, req.model_dump(exclude_unset=True))
    return {"message": "Profile updated successfully", "user": user.to_ui()}


@app.put("/api/auth/password")
async def change_password(
    req: PasswordChange,
    ctx: AuthContext = Depends(get_current_user),
    store: Store = Depends(get_store),
):
    revoked = auth.change_password(store, ctx, req.current_password, req.new_password)
    return {"message": "Password changed successfully", "sessionsRevoked": revoked}


@app.get("/api/auth/verify")
async def verify(ctx: AuthContext = Depends(get_current_user)):
    return {"valid": True, "user": {"id": ctx.user.id, "email": ctx.user.email}}


# ============================================================================
# CASES
# ============================================================================

@app.get("/api/cases")
async def list_cases(
    page: int = Query(1, ge=1),
    limit: int = Query(20, ge=1, le=100),
    status_filter: Optional[CaseStatus] = Query(None, alias="status"),
    priority: Optional[Priority] = None,
    case_type: Optional[CaseType] = Query(None, alias="caseType"),
    search: Optional[str] = Query(None, max_length=200),
    ctx: AuthContext = Depends(get_current_user),
    store: Store = Depends(get_store),
):
    """List the user's cases, newest first, with filters and pagination."""
    cases, total = store.list_cases(
        ctx.user.id,
        status_filter=status_filter.value if status_filter else None,
        priority=priority.value if priority else None,
        case_type=case_type.value if case_type else None,
        search=search,
        page=page,
        limit=limit,
    )
    return {
        "cases": [c.to_ui() for c in cases],
        "pagination": {"page": page, "limit": limit, "total": total, "pages": -(-total // limit)},
    }


@app.get("/api/cases/stats/overview")
async def case_stats(ctx: AuthContext = Depends(get_current_user), store: Store = Depends(get_store)):
    stats = store.case_stats(ctx.user.id)
    return {
        "stats": {
            "totalCases": stats["total_cases"],
            "openCases": stats["open_cases"],
            "settledCases": stats["settled_cases"],
            "closedCases": stats["closed_cases"],
            "totalSettlements": stats["total_settlements"],
            "avgSettlement": stats["avg_settlement"],
        },
        "upcomingDeadlines": store.upcoming_deadlines(ctx.user.id, limit=5),
    }


@app.post("/api/cases", status_code=status.HTTP_201_CREATED)
async def create_case(
    req: CaseCreate,
    ctx: AuthContext = Depends(get_current_user),
    store: Store = Depends(get_store),
):
    case = store.create_case(ctx.user.id, req.model_dump(mode="json", exclude_none=True))
    return {"message": "Case created successfully", "case": case.to_ui()}


@app.get("/api/cases/{case_id}")
async def get_case(case_id: str, ctx: AuthContext = Depends(get_current_user),
                   store: Store = Depends(get_store)):
    """Case detail with its notes, deadlines and documents."""
    case = store.require_case(case_id, ctx.user.id)
    payload = case.to_ui()
    payload["notes"] = [n.to_ui() for n in store.list_notes(case_id)]
    payload["deadlines"] = [d.to_ui() for d in store.list_deadlines(case_id)]
    payload["documents"] = [d.to_ui() for d in store.list_documents(ctx.user.id, case_id=case_id)]
    return {"case": payload}


@app.put("/api/cases/{case_id}")
async def update_case(
    case_id: str,
    req: CaseUpdate,
    ctx: AuthContext = Depends(get_current_user),
    store: Store = Depends(get_store),
):
    case = store.update_case(case_id, ctx.user.id, req.model_dump(mode="json", exclude_unset=True))
    return {"message": "Case updated successfully", "case": case.to_ui()}


@app.delete("/api/cases/{case_id}")
async def delete_case(case_id: str, ctx: AuthContext = Depends(get_current_user),
                      store: Store = Depends(get_store)):
    store.delete_case(case_id, ctx.user.id)
    return {"message": "Case deleted successfully"}


@app.post("/api/cases/{case_id}/notes", status_code=status.HTTP_201_CREATED)
async def add_case_note(
    case_id: str,
    req: NoteCreate,
    ctx: AuthContext = Depends(get_current_user),
    store: Store = Depends(get_store),
):
    if not req.note.strip():
        raise _bad_request("Note content is required")
    note = store.add_note(case_id, ctx.user.id, req.note, req.note_type.value)
    return {"message": "Note added successfully", "note": note.to_ui()}


@app.post("/api/cases/{case_id}/deadlines", status_code=status.HTTP_201_CREATED)
async def add_case_deadline(
    case_id: str,
    req: DeadlineCreate,
    ctx: AuthContext = Depends(get_current_user),
    store: Store = Depends(get_store),
):
    deadline = store.add_deadline(
        case_id, ctx.user.id, req.title, req.due_date,
        description=req.description, priority=req.priority.value,
        deadline_type=req.deadline_type,
    )
    return {"message": "Deadline added successfully", "deadline": deadline.to_ui()}


@app.post("/api/cases/{case_id}/deadlines/{deadline_id}/complete")
async def complete_case_deadline(
    case_id: str,
    deadline_id: str,
    ctx: AuthContext = Depends(get_current_user),
    store: Store = Depends(get_store),
):
    deadline = store.complete_deadline(case_id, deadline_id, ctx.user.id)
    return {"message": "Deadline completed", "deadline": deadline.to_ui()}


@app.get("/api/cases/{case_id}/summary.pdf")
async def case_summary_pdf(case_id: str, ctx: AuthContext = Depends(get_current_user),
                           store: Store = Depends(get_store)):
    """
    Case summary as a PDF.

    Returns: application/pdf
    """
    case = store.require_case(case_id, ctx.user.id)
    documents = store.list_documents(ctx.user.id, case_id=case_id)
    analysis = assistant.analyze_settlement(case, None, case.current_offer, len(documents))
    pdf_bytes = docs.generate_case_summary(
        case,
        notes=store.list_notes(case_id),
        deadlines=store.list_deadlines(case_id),
        documents=documents,
        analysis=analysis,
        firm=store.get_firm_settings(ctx.user.id)["firmName"],
    )
    store.audit("doc.summary.generated", {"case_id": case_id}, actor=ctx.user.id)
    filename = f"CaseLedger_summary_{case.case_number}.pdf"
    return Response(
        content=pdf_bytes,
        media_type="application/pdf",
        headers={"Content-Disposition": f'attachment; filename="{filename}"'},
    )


@app.get("/api/templates")
async def get_templates(ctx: AuthContext = Depends(get_current_user)):
    """PDF templates the case and negotiator screens can render."""
    return {"templates": docs.list_templates()}


# ============================================================================
# DOCUMENTS
# ============================================================================

@app.post("/api/documents/upload/{case_id}", status_code=status.HTTP_201_CREATED)
async def upload_document(
    case_id: str,
    req: DocumentUpload,
    ctx: AuthContext = Depends(get_current_user),
    store: Store = Depends(get_store),
):
    """
    Upload one file to a case. Body carries the bytes base64-encoded.
    Plain-text uploads get their text extracted for analysis.
    """
    if req.file_type not in ALLOWED_MIME_TYPES:
        raise _bad_request(f"File type '{req.file_type}' is not allowed")
    try:
        content = base64.b64decode(req.content, validate=True)
    except (binascii.Error, ValueError):
        raise _bad_request("File content must be valid base64")
    if not content:
        raise _bad_request("File is empty")
    if len(content) > config.MAX_FILE_SIZE:
        raise HTTPException(
            status_code=status.HTTP_413_REQUEST_ENTITY_TOO_LARGE,
            detail={
                "code": "VALIDATION_ERROR",
                "message": f"File exceeds the {config.MAX_FILE_SIZE // (1024 * 1024)}MB limit",
            },
        )
    extracted = req.extracted_text
    if extracted is None and req.file_type == "text/plain":
        extracted = content.decode("utf-8", errors="replace")

    doc = store.add_document(
        case_id, ctx.user.id, req.file_name, req.file_type, content,
        category=req.category.value, description=req.description, extracted_text=extracted,
    )
    logger.info(f"Document uploaded: {doc.id} ({doc.file_size} bytes) to case {case_id}")
    return {"message": "Document uploaded successfully", "document": doc.to_ui()}


@app.get("/api/documents")
async def list_documents(
    case_id: Optional[str] = Query(None, alias="caseId"),
    category: Optional[str] = None,
    search: Optional[str] = Query(None, max_length=200),
    ctx: AuthContext = Depends(get_current_user),
    store: Store = Depends(get_store),
):
    documents = store.list_documents(ctx.user.id, case_id=case_id, category=category, search=search)
    return {"documents": [d.to_ui() for d in documents]}


@app.get("/api/documents/stats/overview")
async def document_stats(ctx: AuthContext = Depends(get_current_user), store: Store = Depends(get_store)):
    return store.document_stats(ctx.user.id)


@app.get("/api/documents/case/{case_id}")
async def case_documents(case_id: str, ctx: AuthContext = Depends(get_current_user),
                         store: Store = Depends(get_store)):
    store.require_case(case_id, ctx.user.id)
    return {"documents": [d.to_ui() for d in store.list_documents(ctx.user.id, case_id=case_id)]}


@app.get("/api/documents/download/{document_id}")
async def download_document(document_id: str, ctx: AuthContext = Depends(get_current_user),
                            store: Store = Depends(get_store)):
    doc = store.require_document(document_id, ctx.user.id)
    return Response(
        content=store.read_document(doc),
        media_type=doc.file_type,
        headers={"Content-Disposition": f"attachment; filename*=UTF-8''{quote(doc.file_name)}"},
    )


@app.put("/api/documents/{document_id}")
async def update_document(
    document_id: str,
    req: DocumentUpdate,
    ctx: AuthContext = Depends(get_current_user),
    store: Store = Depends(get_store),
):
    doc = store.update_document(document_id, ctx.user.id, req.model_dump(mode="json", exclude_unset=True))
    return {"message": "Document updated successfully", "document": doc.to_ui()}


@app.delete("/api/documents/{document_id}")
async def delete_document(document_id: str, ctx: AuthContext = Depends(get_current_user),
                          store: Store = Depends(get_store)):
    store.delete_document(document_id, ctx.user.id)
    return {"message": "Document deleted successfully"}


@app.post("/api/documents/{document_id}/analyze")
async def analyze_document(document_id: str, ctx: AuthContext = Depends(get_current_user),
                           store: Store = Depends(get_store)):
    """Summarize a document's extracted text and keep the result on the document."""
    doc = store.require_document(document_id, ctx.user.id)
    if not doc.extracted_text:
        raise _bad_request("No extracted text available for analysis")
    await assistant.reply_delay()
    summary = assistant.summarize_document(doc.file_name, doc.extracted_text)
    store.set_document_analysis(document_id, summary)
    doc.ai_analysis = summary
    return {"analysis": summary, "document": doc.to_ui()}


# ============================================================================
# NEGOTIATIONS
# ============================================================================

@app.post("/api/negotiations", status_code=status.HTTP_201_CREATED)
async def create_negotiation(
    req: NegotiationCreate,
    ctx: AuthContext = Depends(get_current_user),
    store: Store = Depends(get_store),
):
    neg = store.create_negotiation(
        req.case_id, ctx.user.id, req.demand_amount, message=req.message,
        insurance_company=req.insurance_company, ai_generated=req.ai_generated,
    )
    return {"message": "Negotiation started", "negotiation": neg.to_ui()}


@app.get("/api/negotiations")
async def list_negotiations(
    case_id: Optional[str] = Query(None, alias="caseId"),
    ctx: AuthContext = Depends(get_current_user),
    store: Store = Depends(get_store),
):
    return {"negotiations": [n.to_ui() for n in store.list_negotiations(ctx.user.id, case_id=case_id)]}


@app.get("/api/negotiations/{negotiation_id}")
async def get_negotiation(negotiation_id: str, ctx: AuthContext = Depends(get_current_user),
                          store: Store = Depends(get_store)):
    return {"negotiation": store.require_negotiation(negotiation_id, ctx.user.id).to_ui()}


@app.post("/api/negotiations/{negotiation_id}/messages", status_code=status.HTTP_201_CREATED)
async def add_negotiation_message(
    negotiation_id: str,
    req: NegotiationMessageCreate,
    ctx: AuthContext = Depends(get_current_user),
    store: Store = Depends(get_store),
):
    neg = store.add_negotiation_message(
        negotiation_id, ctx.user.id, req.type.value, message=req.message, amount=req.amount,
        sender=req.sender.value if req.sender else None, ai_generated=req.ai_generated,
    )
    return {"message": "Message added", "negotiation": neg.to_ui()}


# ============================================================================
# NEGOTIATOR CHAT
# ============================================================================

@app.post("/api/negotiator/chat")
async def negotiator_chat(
    req: ChatRequest,
    ctx: AuthContext = Depends(get_current_user),
    store: Store = Depends(get_store),
):
    """Record the user's message and answer it with the simulated assistant."""
    case = store.require_case(req.case_id, ctx.user.id)
    current_offer = req.current_offer if req.current_offer is not None else case.current_offer
    user_msg = store.add_assistant_message(
        case.id, ctx.user.id, AssistantMessageType.USER.value, req.message.strip(),
        metadata={"caseId": case.id},
    )
    await assistant.reply_delay()
    reply = assistant.negotiation_reply(req.message, case, req.demand_amount, current_offer)
    ai_msg = store.add_assistant_message(
        case.id, ctx.user.id, AssistantMessageType.AI.value, reply,
        metadata={"caseId": case.id, "action": "chat", "intent": assistant.classify_message(req.message)},
    )
    return {"messages": [user_msg.to_ui(), ai_msg.to_ui()]}


@app.get("/api/negotiator/messages/{case_id}")
async def negotiator_messages(case_id: str, ctx: AuthContext = Depends(get_current_user),
                              store: Store = Depends(get_store)):
    store.require_case(case_id, ctx.user.id)
    return {"messages": [m.to_ui() for m in store.list_assistant_messages(case_id, ctx.user.id)]}


@app.post("/api/negotiator/analysis")
async def negotiator_analysis(
    req: AnalysisRequest,
    ctx: AuthContext = Depends(get_current_user),
    store: Store = Depends(get_store),
):
    case = store.require_case(req.case_id, ctx.user.id)
    current_offer = req.current_offer if req.current_offer is not None else case.current_offer
    documents_count = len(store.list_documents(ctx.user.id, case_id=case.id))
    await assistant.reply_delay()
    analysis = assistant.analyze_settlement(case, req.demand_amount, current_offer, documents_count)
    msg = store.add_assistant_message(
        case.id, ctx.user.id, AssistantMessageType.AI.value,
        assistant.format_analysis(case, analysis),
        metadata={"caseId": case.id, "action": "settlement_analysis"},
    )
    return {"analysis": analysis.to_ui(), "message": msg.to_ui()}


def _demand_letter_inputs(req: DemandLetterRequest, ctx: AuthContext, store: Store):
    if not req.case_id or not req.demand_amount:
        raise _bad_request(assistant.DEMAND_LETTER_REQUIRED)
    case = store.require_case(req.case_id, ctx.user.id)
    current_offer = req.current_offer if req.current_offer is not None else case.current_offer
    return case, current_offer


@app.post("/api/negotiator/demand-letter")
async def negotiator_demand_letter(
    req: DemandLetterRequest,
    ctx: AuthContext = Depends(get_current_user),
    store: Store = Depends(get_store),
):
    case, current_offer = _demand_letter_inputs(req, ctx, store)
    await assistant.reply_delay()
    letter = assistant.draft_demand_letter(case, req.demand_amount, current_offer,
                                           attorney=ctx.user.full_name)
    msg = store.add_assistant_message(
        case.id, ctx.user.id, AssistantMessageType.AI.value,
        f"**Generated Demand Letter:**\n\n{letter}",
        metadata={"caseId": case.id, "action": "demand_letter", "amount": req.demand_amount},
    )
    return {"letter": letter, "message": msg.to_ui()}


@app.post("/api/negotiator/demand-letter.pdf")
async def negotiator_demand_letter_pdf(
    req: DemandLetterRequest,
    ctx: AuthContext = Depends(get_current_user),
    store: Store = Depends(get_store),
):
    """
    Demand letter as a PDF.

    Returns: application/pdf
    """
    case, current_offer = _demand_letter_inputs(req, ctx, store)
    pdf_bytes = docs.generate_demand_letter(
        case, req.demand_amount, current_offer,
        attorney=ctx.user.full_name, firm=store.get_firm_settings(ctx.user.id)["firmName"],
    )
    store.audit("doc.demand_letter.generated", {
        "case_id": case.id, "demand": req.demand_amount,
    }, actor=ctx.user.id)
    filename = f"CaseLedger_demand_{case.case_number}.pdf"
    return Response(
        content=pdf_bytes,
        media_type="application/pdf",
        headers={"Content-Disposition": f'attachment; filename="{filename}"'},
    )


# ============================================================================
# ANALYTICS
# ============================================================================

@app.get("/api/analytics")
async def get_analytics(
    time_range: str = Query("6months", alias="timeRange"),
    ctx: AuthContext = Depends(get_current_user),
    store: Store = Depends(get_store),
):
    try:
        return analytics.case_analytics(
            store.all_cases(ctx.user.id),
            store.list_negotiations(ctx.user.id),
            time_range=time_range,
        )
    except ValueError as e:
        raise _bad_request(str(e))


# ============================================================================
# USERS
# ============================================================================

@app.get("/api/users/dashboard")
async def user_dashboard(ctx: AuthContext = Depends(get_current_user), store: Store = Depends(get_store)):
    cases = store.all_cases(ctx.user.id)
    documents_by_case = Counter(d.case_id for d in store.list_documents(ctx.user.id))
    stats = store.case_stats(ctx.user.id)
    return {
        "summary": analytics.dashboard_summary(cases, documents_by_case=documents_by_case),
        "stats": {
            "totalCases": stats["total_cases"],
            "openCases": stats["open_cases"],
            "settledCases": stats["settled_cases"],
            "closedCases": stats["closed_cases"],
            "totalSettlements": stats["total_settlements"],
        },
        "upcomingDeadlines": store.upcoming_deadlines(ctx.user.id, limit=5),
        "recentActivity": store.recent_activity(ctx.user.id, limit=10),
    }


@app.get("/api/users/activity")
async def user_activity(
    activity_type: Optional[str] = Query(None, alias="type"),
    page: int = Query(1, ge=1),
    limit: int = Query(20, ge=1, le=100),
    ctx: AuthContext = Depends(get_current_user),
    store: Store = Depends(get_store),
):
    if activity_type and activity_type not in Store.ACTIVITY_TYPES:
        raise _bad_request(f"Activity type must be one of: {', '.join(Store.ACTIVITY_TYPES)}")
    activities = store.recent_activity(ctx.user.id, activity_type=activity_type, page=page, limit=limit)
    return {
        "activities": activities,
        "pagination": {"page": page, "limit": limit, "hasMore": len(activities) == limit},
    }


@app.get("/api/users/preferences")
async def get_preferences(ctx: AuthContext = Depends(get_current_user), store: Store = Depends(get_store)):
    return {"preferences": store.get_preferences(ctx.user.id)}


@app.put("/api/users/preferences")
async def update_preferences(
    req: PreferencesUpdate,
    ctx: AuthContext = Depends(get_current_user),
    store: Store = Depends(get_store),
):
    updates = req.model_dump(by_alias=True, exclude_unset=True)
    if not updates:
        raise _bad_request("At least one preference must be provided")
    prefs = store.save_preferences(ctx.user.id, updates)
    return {"message": "Preferences updated successfully", "preferences": prefs}


@app.get("/api/users/firm")
async def get_firm_settings(ctx: AuthContext = Depends(get_current_user), store: Store = Depends(get_store)):
    return {"firm": store.get_firm_settings(ctx.user.id)}


@app.put("/api/users/firm")
async def update_firm_settings(
    req: FirmSettingsUpdate,
    ctx: AuthContext = Depends(get_current_user),
    store: Store = Depends(get_store),
):
    updates = req.model_dump(by_alias=True, exclude_none=True)
    if not updates:
        raise _bad_request("At least one firm setting must be provided")
    firm = store.save_firm_settings(ctx.user.id, updates)
    return {"message": "Firm settings updated successfully", "firm": firm}


@app.get("/api/users/stats")
async def user_stats(ctx: AuthContext = Depends(get_current_user), store: Store = Depends(get_store)):
    cases = store.all_cases(ctx.user.id)
    return {
        "overview": analytics.user_overview_stats(cases, len(store.list_documents(ctx.user.id))),
        "monthlyCases": analytics.monthly_case_counts(cases),
        "caseTypes": analytics.case_type_distribution(cases),
        "settlementTrends": analytics.settlement_trends(cases),
    }


@app.get("/api/users/admin/all")
async def admin_all_users(
    page: int = Query(1, ge=1),
    limit: int = Query(20, ge=1, le=100),
    search: Optional[str] = Query(None, max_length=200),
    ctx: AuthContext = Depends(require_role(UserRole.ADMIN.value)),
    store: Store = Depends(get_store),
):
    users, total = store.list_users(search=search, page=page, limit=limit)
    return {
        "users": [u.to_ui() for u in users],
        "pagination": {"page": page, "limit": limit, "total": total, "pages": -(-total // limit)},
    }


# ============================================================================
# CLIENTS
# ============================================================================

@app.get("/api/clients")
async def list_clients(
    search: str = Query("", max_length=200),
    ctx: AuthContext = Depends(get_current_user),
    store: Store = Depends(get_store),
):
    """Clients derived from the user's cases, with per-client case and settlement totals."""
    roster = analytics.client_roster(store.all_cases(ctx.user.id), search=search)
    return {"clients": roster, "summary": analytics.client_summary(roster)}


@app.get("/api/clients/{client_id}")
async def get_client(client_id: str, ctx: AuthContext = Depends(get_current_user),
                     store: Store = Depends(get_store)):
    detail = analytics.client_detail(store.all_cases(ctx.user.id), client_id)
    if detail is None:
        raise HTTPException(
            status_code=status.HTTP_404_NOT_FOUND,
            detail={"code": "NOT_FOUND", "message": "Client not found or you do not have permission"},
        )
    return detail


# ============================================================================
# CALENDAR
# ============================================================================

def _calendar_events(store: Store, user_id: str, include_deadlines: bool,
                     start: Optional[str] = None, end: Optional[str] = None) -> List[CalendarEvent]:
    events = store.list_events(user_id, start=start, end=end)
    if include_deadlines:
        for e in cal.deadline_events(store.all_deadlines(user_id)):
            if (not start or e.start_date >= start) and (not end or e.start_date <= end):
                events.append(e)
        events.sort(key=lambda e: analytics.parse_ts(e.start_date))
    return events


@app.get("/api/calendar/events")
async def list_calendar_events(
    start: Optional[str] = None,
    end: Optional[str] = None,
    search: str = Query("", max_length=200),
    event_type: str = Query("all", alias="type"),
    include_deadlines: bool = Query(True, alias="includeDeadlines"),
    ctx: AuthContext = Depends(get_current_user),
    store: Store = Depends(get_store),
):
    events = _calendar_events(store, ctx.user.id, include_deadlines, start, end)
    filtered = cal.filter_events(events, search=search, event_type=event_type)
    return {
        "events": [e.to_ui() for e in filtered],
        "stats": cal.month_stats(events),
    }


@app.post("/api/calendar/events", status_code=status.HTTP_201_CREATED)
async def create_calendar_event(
    req: EventCreate,
    ctx: AuthContext = Depends(get_current_user),
    store: Store = Depends(get_store),
):
    start, end = cal.normalize_event_dates(req.start_date, req.end_date)
    data = req.model_dump(mode="json")
    data.update(start_date=start, end_date=end, user_id=ctx.user.id)
    event = store.create_event(CalendarEvent(**data))
    return {"message": "Event created successfully", "event": event.to_ui()}


@app.put("/api/calendar/events/{event_id}")
async def update_calendar_event(
    event_id: str,
    req: EventUpdate,
    ctx: AuthContext = Depends(get_current_user),
    store: Store = Depends(get_store),
):
    existing = store.require_event(event_id, ctx.user.id)
    updates = req.model_dump(mode="json", exclude_unset=True)
    if "start_date" in updates or "end_date" in updates:
        start = updates.get("start_date") or existing.start_date
        end = updates.get("end_date") or existing.end_date
        updates["start_date"], updates["end_date"] = cal.normalize_event_dates(start, end)
    event = store.update_event(event_id, ctx.user.id, updates)
    return {"message": "Event updated successfully", "event": event.to_ui()}


@app.delete("/api/calendar/events/{event_id}")
async def delete_calendar_event(event_id: str, ctx: AuthContext = Depends(get_current_user),
                                store: Store = Depends(get_store)):
    store.delete_event(event_id, ctx.user.id)
    return {"message": "Event deleted successfully"}


@app.get("/api/calendar/month/{year}/{month}")
async def calendar_month(
    year: int = Path(..., ge=1, le=9999),
    month: int = Path(...),
    include_deadlines: bool = Query(True, alias="includeDeadlines"),
    ctx: AuthContext = Depends(get_current_user),
    store: Store = Depends(get_store),
):
    if not 1 <= month <= 12:
        raise _bad_request("Month must be between 1 and 12")
    events = _calendar_events(store, ctx.user.id, include_deadlines)
    return cal.month_view(year, month, events)


@app.get("/api/calendar/upcoming")
async def calendar_upcoming(
    limit: int = Query(cal.UPCOMING_LIMIT, ge=1, le=50),
    include_deadlines: bool = Query(True, alias="includeDeadlines"),
    ctx: AuthContext = Depends(get_current_user),
    store: Store = Depends(get_store),
):
    events = _calendar_events(store, ctx.user.id, include_deadlines)
    return {"events": [e.to_ui() for e in cal.upcoming_events(events, limit=limit)]}


if __name__ == "__main__":
    import uvicorn

    uvicorn.run("caseledger_api:app", host="0.0.0.0", port=8080)

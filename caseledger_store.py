#!/usr/bin/env python3
"""
CaseLedger Store
=================
SQLite-backed persistent store for users, sessions, cases, notes,
deadlines, documents, negotiations, negotiator chat, calendar events,
preferences and firm settings. Survives restarts.

Usage:
    from caseledger_store import Store
    store = Store("/tmp/caseledger.db", "/tmp/uploads")
    case = store.create_case(user_id, {"title": "...", ...})

Version: 1.0
"""

from __future__ import annotations

import hashlib
import json
import logging
import random
import sqlite3
import uuid
from contextlib import contextmanager
from datetime import datetime, timedelta
from pathlib import Path
from typing import Any, Dict, List, Optional, Tuple

from fastapi import HTTPException, status

from caseledger_config import config
from caseledger_types import (
    AssistantMessage,
    CLOSED_STATUSES,
    Case,
    CaseNote,
    CaseStatus,
    CalendarEvent,
    Deadline,
    DeadlineStatus,
    Document,
    FINAL_NEGOTIATION_STATUSES,
    Negotiation,
    NegotiationMessage,
    NegotiationMessageType,
    NegotiationStatus,
    User,
    default_firm_settings,
    default_preferences,
    merge_settings,
    new_id,
    utcnow_iso,
)

logger = logging.getLogger("cl-store")


SCHEMA = """
    CREATE TABLE IF NOT EXISTS users (
        id              TEXT PRIMARY KEY,
        email           TEXT UNIQUE NOT NULL,
        password_hash   TEXT NOT NULL,
        first_name      TEXT NOT NULL,
        last_name       TEXT NOT NULL,
        role            TEXT NOT NULL DEFAULT 'user',
        firm_name       TEXT,
        phone           TEXT,
        created_at      TEXT NOT NULL,
        updated_at      TEXT,
        last_login      TEXT,
        is_active       INTEGER NOT NULL DEFAULT 1
    );

    CREATE TABLE IF NOT EXISTS sessions (
        id          TEXT PRIMARY KEY,
        user_id     TEXT NOT NULL,
        token       TEXT UNIQUE NOT NULL,
        expires_at  TEXT NOT NULL,
        created_at  TEXT NOT NULL,
        FOREIGN KEY (user_id) REFERENCES users(id) ON DELETE CASCADE
    );

    CREATE TABLE IF NOT EXISTS cases (
        id                      TEXT PRIMARY KEY,
        user_id                 TEXT NOT NULL,
        case_number             TEXT UNIQUE NOT NULL,
        title                   TEXT NOT NULL,
        client_name             TEXT NOT NULL,
        client_email            TEXT,
        client_phone            TEXT,
        case_type               TEXT NOT NULL,
        status                  TEXT NOT NULL DEFAULT 'new',
        priority                TEXT NOT NULL DEFAULT 'medium',
        description             TEXT,
        incident_date           TEXT,
        statute_of_limitations  TEXT,
        estimated_value         REAL NOT NULL DEFAULT 0,
        current_offer           REAL,
        settlement_amount       REAL,
        settlement_goal         REAL,
        insurance_company       TEXT,
        insurance_adjuster      TEXT,
        claim_number            TEXT,
        assigned_attorney       TEXT,
        next_deadline           TEXT,
        created_at              TEXT NOT NULL,
        updated_at              TEXT NOT NULL,
        FOREIGN KEY (user_id) REFERENCES users(id) ON DELETE CASCADE
    );

    CREATE TABLE IF NOT EXISTS case_notes (
        id          TEXT PRIMARY KEY,
        case_id     TEXT NOT NULL,
        user_id     TEXT NOT NULL,
        note        TEXT NOT NULL,
        note_type   TEXT NOT NULL DEFAULT 'general',
        created_at  TEXT NOT NULL,
        FOREIGN KEY (case_id) REFERENCES cases(id) ON DELETE CASCADE
    );

    CREATE TABLE IF NOT EXISTS deadlines (
        id              TEXT PRIMARY KEY,
        case_id         TEXT NOT NULL,
        user_id         TEXT NOT NULL,
        title           TEXT NOT NULL,
        description     TEXT,
        due_date        TEXT NOT NULL,
        priority        TEXT NOT NULL DEFAULT 'medium',
        deadline_type   TEXT,
        status          TEXT NOT NULL DEFAULT 'pending',
        created_at      TEXT NOT NULL,
        FOREIGN KEY (case_id) REFERENCES cases(id) ON DELETE CASCADE
    );

    CREATE TABLE IF NOT EXISTS documents (
        id              TEXT PRIMARY KEY,
        case_id         TEXT NOT NULL,
        user_id         TEXT NOT NULL,
        file_name       TEXT NOT NULL,
        stored_name     TEXT NOT NULL,
        file_type       TEXT NOT NULL,
        file_size       INTEGER NOT NULL DEFAULT 0,
        category        TEXT NOT NULL DEFAULT 'other',
        description     TEXT,
        extracted_text  TEXT,
        ai_analysis     TEXT,
        hash_sha256     TEXT NOT NULL DEFAULT '',
        public_url      TEXT NOT NULL DEFAULT '',
        uploaded_at     TEXT NOT NULL,
        FOREIGN KEY (case_id) REFERENCES cases(id) ON DELETE CASCADE
    );

    CREATE TABLE IF NOT EXISTS negotiations (
        id                  TEXT PRIMARY KEY,
        case_id             TEXT NOT NULL,
        user_id             TEXT NOT NULL,
        insurance_company   TEXT NOT NULL DEFAULT '',
        current_offer       REAL NOT NULL DEFAULT 0,
        demand_amount       REAL NOT NULL DEFAULT 0,
        status              TEXT NOT NULL DEFAULT 'pending',
        created_at          TEXT NOT NULL,
        updated_at          TEXT NOT NULL,
        FOREIGN KEY (case_id) REFERENCES cases(id) ON DELETE CASCADE
    );

    CREATE TABLE IF NOT EXISTS negotiation_messages (
        id              TEXT PRIMARY KEY,
        negotiation_id  TEXT NOT NULL,
        type            TEXT NOT NULL,
        amount          REAL,
        message         TEXT NOT NULL DEFAULT '',
        sender          TEXT NOT NULL,
        timestamp       TEXT NOT NULL,
        ai_generated    INTEGER NOT NULL DEFAULT 0,
        FOREIGN KEY (negotiation_id) REFERENCES negotiations(id) ON DELETE CASCADE
    );

    CREATE TABLE IF NOT EXISTS assistant_messages (
        id          TEXT PRIMARY KEY,
        case_id     TEXT NOT NULL,
        user_id     TEXT NOT NULL,
        type        TEXT NOT NULL,
        content     TEXT NOT NULL,
        metadata    TEXT,
        timestamp   TEXT NOT NULL,
        FOREIGN KEY (case_id) REFERENCES cases(id) ON DELETE CASCADE
    );

    CREATE TABLE IF NOT EXISTS calendar_events (
        id                  TEXT PRIMARY KEY,
        user_id             TEXT NOT NULL,
        case_id             TEXT,
        title               TEXT NOT NULL,
        description         TEXT NOT NULL DEFAULT '',
        start_date          TEXT NOT NULL,
        end_date            TEXT NOT NULL,
        event_type          TEXT NOT NULL DEFAULT 'meeting',
        location            TEXT NOT NULL DEFAULT '',
        attendees           TEXT NOT NULL DEFAULT '',
        priority            TEXT NOT NULL DEFAULT 'medium',
        reminder_minutes    INTEGER NOT NULL DEFAULT 15,
        created_at          TEXT NOT NULL,
        FOREIGN KEY (user_id) REFERENCES users(id) ON DELETE CASCADE,
        FOREIGN KEY (case_id) REFERENCES cases(id) ON DELETE SET NULL
    );

    CREATE TABLE IF NOT EXISTS preferences (
        user_id     TEXT PRIMARY KEY,
        data        TEXT NOT NULL,
        updated_at  TEXT NOT NULL,
        FOREIGN KEY (user_id) REFERENCES users(id) ON DELETE CASCADE
    );

    CREATE TABLE IF NOT EXISTS firm_settings (
        user_id     TEXT PRIMARY KEY,
        data        TEXT NOT NULL,
        updated_at  TEXT NOT NULL,
        FOREIGN KEY (user_id) REFERENCES users(id) ON DELETE CASCADE
    );

    CREATE TABLE IF NOT EXISTS audit_log (
        audit_id    TEXT PRIMARY KEY,
        action      TEXT NOT NULL,
        actor       TEXT NOT NULL DEFAULT 'system',
        detail      TEXT NOT NULL DEFAULT '{}',
        timestamp   TEXT NOT NULL
    );

    CREATE INDEX IF NOT EXISTS idx_cases_user ON cases(user_id, created_at);
    CREATE INDEX IF NOT EXISTS idx_deadlines_case ON deadlines(case_id, due_date);
    CREATE INDEX IF NOT EXISTS idx_documents_case ON documents(case_id);
    CREATE INDEX IF NOT EXISTS idx_negotiations_case ON negotiations(case_id);
    CREATE INDEX IF NOT EXISTS idx_events_user ON calendar_events(user_id, start_date);
"""

CASE_UPDATABLE = {
    "title", "client_name", "client_email", "client_phone", "case_type", "status",
    "priority", "description", "incident_date", "estimated_value", "current_offer",
    "settlement_amount", "settlement_goal", "insurance_company", "insurance_adjuster",
    "claim_number", "assigned_attorney",
}

USER_UPDATABLE = {"first_name", "last_name", "firm_name", "phone"}

DOCUMENT_UPDATABLE = {"category", "description"}

EVENT_UPDATABLE = {
    "title", "description", "start_date", "end_date", "event_type", "location",
    "attendees", "case_id", "priority", "reminder_minutes",
}


def _not_found(what: str) -> HTTPException:
    return HTTPException(
        status_code=status.HTTP_404_NOT_FOUND,
        detail={
            "code": "NOT_FOUND",
            "message": f"{what} not found or you do not have permission to access it",
        },
    )


def _bad_request(message: str) -> HTTPException:
    return HTTPException(
        status_code=status.HTTP_400_BAD_REQUEST,
        detail={"code": "VALIDATION_ERROR", "message": message},
    )


def generate_case_number(case_type: str, year: Optional[int] = None) -> str:
    """'auto_accident' -> 'AUTO-ACCIDENT-2026-042'."""
    prefix = case_type.upper().replace("_", "-")
    year = year or datetime.utcnow().year
    return f"{prefix}-{year}-{random.randint(0, 999):03d}"


def statute_of_limitations(incident_date: Optional[str], years: Optional[int] = None) -> Optional[str]:
    """Incident date plus the limitation period (365-day years). None when no incident date."""
    if not incident_date:
        return None
    years = config.STATUTE_YEARS if years is None else years
    incident = datetime.fromisoformat(incident_date.replace("Z", ""))
    return (incident + timedelta(days=365 * years)).date().isoformat()


class Store:
    """Case data access over one SQLite file plus an upload directory."""

    CASE_NUMBER_ATTEMPTS = 20

    def __init__(self, db_path: Optional[str] = None, upload_dir: Optional[str] = None):
        self.db_path = db_path or config.DB_PATH
        self.upload_dir = Path(upload_dir or config.UPLOAD_DIR)
        self.upload_dir.mkdir(parents=True, exist_ok=True)
        self.start_time = datetime.utcnow()
        self._init_db()

    # ── Connection handling ──

    def _get_db(self) -> sqlite3.Connection:
        """Open a connection with WAL mode and foreign keys enabled."""
        conn = sqlite3.connect(self.db_path, check_same_thread=False, timeout=10)
        conn.row_factory = sqlite3.Row
        conn.execute("PRAGMA journal_mode=WAL")
        conn.execute("PRAGMA foreign_keys=ON")
        return conn

    @contextmanager
    def _db(self):
        """Connection scope: commit on success, rollback and 500 on sqlite errors."""
        conn = None
        try:
            conn = self._get_db()
            yield conn
        except sqlite3.Error as e:
            logger.error(f"Database error: {e}")
            if conn:
                conn.rollback()
            raise HTTPException(
                status_code=500,
                detail={"code": "DB_ERROR", "message": "Database operation failed"},
            )
        finally:
            if conn:
                conn.close()

    def _init_db(self):
        """Apply the schema; idempotent."""
        with self._db() as conn:
            conn.executescript(SCHEMA)
            conn.commit()
        logger.info(f"Database ready: {self.db_path}")

    def ping(self) -> bool:
        with self._db() as conn:
            conn.execute("SELECT 1").fetchone()
        return True

    # ── Audit ──

    def audit(self, action: str, detail: Dict[str, Any] = None, actor: str = "system"):
        with self._db() as conn:
            conn.execute(
                "INSERT INTO audit_log (audit_id, action, actor, detail, timestamp) VALUES (?, ?, ?, ?, ?)",
                (new_id("aud"), action, actor, json.dumps(detail or {}), utcnow_iso()),
            )
            conn.commit()

    def get_audit_log(self, action: Optional[str] = None, limit: int = 100) -> List[Dict[str, Any]]:
        query = "SELECT * FROM audit_log"
        params: list = []
        if action:
            query += " WHERE action = ?"
            params.append(action)
        query += " ORDER BY timestamp DESC LIMIT ?"
        params.append(limit)
        with self._db() as conn:
            rows = conn.execute(query, params).fetchall()
        return [{**dict(r), "detail": json.loads(r["detail"])} for r in rows]

    # ── Users ──

    def create_user(self, user: User) -> User:
        row = user.to_db()
        cols = ", ".join(row)
        marks = ", ".join("?" for _ in row)
        with self._db() as conn:
            conn.execute(f"INSERT INTO users ({cols}) VALUES ({marks})", list(row.values()))
            conn.commit()
        self.audit("user.registered", {"user_id": user.id, "email": user.email}, actor=user.id)
        return user

    def get_user(self, user_id: str) -> Optional[User]:
        with self._db() as conn:
            row = conn.execute("SELECT * FROM users WHERE id = ?", (user_id,)).fetchone()
        return User.from_db(row) if row else None

    def get_user_by_email(self, email: str) -> Optional[User]:
        with self._db() as conn:
            row = conn.execute(
                "SELECT * FROM users WHERE LOWER(email) = ?", (email.lower().strip(),)
            ).fetchone()
        return User.from_db(row) if row else None

    def update_user(self, user_id: str, updates: Dict[str, Any]) -> User:
        sets = []
        params: list = []
        for k, v in updates.items():
            if k in USER_UPDATABLE:
                sets.append(f"{k} = ?")
                params.append(v)
        if not sets:
            raise _bad_request("At least one field must be provided for update")
        sets.append("updated_at = ?")
        params.extend([utcnow_iso(), user_id])
        with self._db() as conn:
            conn.execute(f"UPDATE users SET {', '.join(sets)} WHERE id = ?", params)
            conn.commit()
        return self.get_user(user_id)

    def set_password(self, user_id: str, password_hash: str):
        with self._db() as conn:
            conn.execute(
                "UPDATE users SET password_hash = ?, updated_at = ? WHERE id = ?",
                (password_hash, utcnow_iso(), user_id),
            )
            conn.commit()
        self.audit("user.password_changed", {"user_id": user_id}, actor=user_id)

    def touch_login(self, user_id: str):
        with self._db() as conn:
            conn.execute("UPDATE users SET last_login = ? WHERE id = ?", (utcnow_iso(), user_id))
            conn.commit()

    def list_users(self, search: Optional[str] = None, page: int = 1,
                   limit: int = 20) -> Tuple[List[User], int]:
        where = ""
        params: list = []
        if search:
            where = " WHERE email LIKE ? OR first_name LIKE ? OR last_name LIKE ? OR firm_name LIKE ?"
            term = f"%{search}%"
            params = [term, term, term, term]
        with self._db() as conn:
            total = conn.execute(f"SELECT COUNT(*) FROM users{where}", params).fetchone()[0]
            rows = conn.execute(
                f"SELECT * FROM users{where} ORDER BY created_at DESC LIMIT ? OFFSET ?",
                params + [limit, (page - 1) * limit],
            ).fetchall()
        return [User.from_db(r) for r in rows], total

    # ── Sessions ──

    def create_session(self, user_id: str, token: str, expires_at: datetime) -> str:
        sid = str(uuid.uuid4())
        with self._db() as conn:
            conn.execute(
                "INSERT INTO sessions (id, user_id, token, expires_at, created_at) VALUES (?, ?, ?, ?, ?)",
                (sid, user_id, token, expires_at.isoformat(), utcnow_iso()),
            )
            conn.commit()
        return sid

    def get_session(self, token: str) -> Optional[Dict[str, Any]]:
        """Return the session for a token only while it is unexpired."""
        with self._db() as conn:
            row = conn.execute(
                "SELECT * FROM sessions WHERE token = ? AND expires_at > ?",
                (token, utcnow_iso()),
            ).fetchone()
        return dict(row) if row else None

    def delete_session(self, token: str):
        with self._db() as conn:
            conn.execute("DELETE FROM sessions WHERE token = ?", (token,))
            conn.commit()

    def delete_other_sessions(self, user_id: str, keep_token: str) -> int:
        with self._db() as conn:
            cur = conn.execute(
                "DELETE FROM sessions WHERE user_id = ? AND token != ?", (user_id, keep_token)
            )
            conn.commit()
            return cur.rowcount

    # ── Cases ──

    def _unique_case_number(self, conn: sqlite3.Connection, case_type: str) -> str:
        for _ in range(self.CASE_NUMBER_ATTEMPTS):
            number = generate_case_number(case_type)
            taken = conn.execute(
                "SELECT 1 FROM cases WHERE case_number = ?", (number,)
            ).fetchone()
            if not taken:
                return number
        # Fall back to a longer suffix once the 3-digit space is crowded
        return f"{generate_case_number(case_type)}-{uuid.uuid4().hex[:4].upper()}"

    def create_case(self, user_id: str, data: Dict[str, Any]) -> Case:
        """Create a case from snake_case fields. Number and limitation date are derived."""
        fields_in = {k: v for k, v in data.items() if k in CASE_UPDATABLE and v is not None}
        case = Case(user_id=user_id, **fields_in)
        if not case.title:
            case.title = f"{case.client_name} - {case.case_type.replace('_', ' ').title()}"
        case.statute_of_limitations = statute_of_limitations(case.incident_date)
        with self._db() as conn:
            case.case_number = self._unique_case_number(conn, case.case_type)
            row = case.to_db()
            cols = ", ".join(row)
            marks = ", ".join("?" for _ in row)
            conn.execute(f"INSERT INTO cases ({cols}) VALUES ({marks})", list(row.values()))
            conn.commit()
        self.audit("case.created", {"case_id": case.id, "case_number": case.case_number}, actor=user_id)
        logger.info(f"Case created: {case.case_number} ({case.id})")
        return case

    def get_case(self, case_id: str, user_id: str) -> Optional[Case]:
        with self._db() as conn:
            row = conn.execute(
                "SELECT * FROM cases WHERE id = ? AND user_id = ?", (case_id, user_id)
            ).fetchone()
        return Case.from_db(row) if row else None

    def require_case(self, case_id: str, user_id: str) -> Case:
        case = self.get_case(case_id, user_id)
        if not case:
            raise _not_found("Case")
        return case

    def list_cases(
        self,
        user_id: str,
        status_filter: Optional[str] = None,
        priority: Optional[str] = None,
        case_type: Optional[str] = None,
        search: Optional[str] = None,
        page: int = 1,
        limit: int = 20,
    ) -> Tuple[List[Case], int]:
        where = " WHERE user_id = ?"
        params: list = [user_id]
        if status_filter:
            where += " AND status = ?"
            params.append(status_filter)
        if priority:
            where += " AND priority = ?"
            params.append(priority)
        if case_type:
            where += " AND case_type = ?"
            params.append(case_type)
        if search:
            where += " AND (title LIKE ? OR client_name LIKE ? OR case_number LIKE ?)"
            term = f"%{search}%"
            params.extend([term, term, term])
        with self._db() as conn:
            total = conn.execute(f"SELECT COUNT(*) FROM cases{where}", params).fetchone()[0]
            rows = conn.execute(
                f"SELECT * FROM cases{where} ORDER BY created_at DESC LIMIT ? OFFSET ?",
                params + [limit, (page - 1) * limit],
            ).fetchall()
        return [Case.from_db(r) for r in rows], total

    def all_cases(self, user_id: str) -> List[Case]:
        with self._db() as conn:
            rows = conn.execute(
                "SELECT * FROM cases WHERE user_id = ? ORDER BY created_at DESC", (user_id,)
            ).fetchall()
        return [Case.from_db(r) for r in rows]

    def update_case(self, case_id: str, user_id: str, updates: Dict[str, Any]) -> Case:
        existing = self.require_case(case_id, user_id)
        sets = []
        params: list = []
        for k, v in updates.items():
            if k in CASE_UPDATABLE:
                sets.append(f"{k} = ?")
                params.append(v)
        if not sets:
            raise _bad_request("At least one field must be provided for update")
        if "incident_date" in updates and updates["incident_date"] != existing.incident_date:
            sets.append("statute_of_limitations = ?")
            params.append(statute_of_limitations(updates["incident_date"]))
        sets.append("updated_at = ?")
        params.extend([utcnow_iso(), case_id])
        with self._db() as conn:
            conn.execute(f"UPDATE cases SET {', '.join(sets)} WHERE id = ?", params)
            conn.commit()
        self.audit("case.updated", {"case_id": case_id, "fields": sorted(updates)}, actor=user_id)
        return self.get_case(case_id, user_id)

    def delete_case(self, case_id: str, user_id: str):
        self.require_case(case_id, user_id)
        with self._db() as conn:
            stored = [r["stored_name"] for r in conn.execute(
                "SELECT stored_name FROM documents WHERE case_id = ?", (case_id,)
            ).fetchall()]
            conn.execute("DELETE FROM cases WHERE id = ?", (case_id,))
            conn.commit()
        for name in stored:
            (self.upload_dir / name).unlink(missing_ok=True)
        self.audit("case.deleted", {"case_id": case_id, "documents_removed": len(stored)}, actor=user_id)

    def case_stats(self, user_id: str) -> Dict[str, Any]:
        """Status counts and settlement totals for the case list header."""
        with self._db() as conn:
            row = conn.execute(
                """SELECT
                       COUNT(*) AS total_cases,
                       COUNT(CASE WHEN status NOT IN (?, ?) THEN 1 END) AS open_cases,
                       COUNT(CASE WHEN status = ? THEN 1 END) AS settled_cases,
                       COUNT(CASE WHEN status = ? THEN 1 END) AS closed_cases,
                       COALESCE(SUM(settlement_amount), 0) AS total_settlements,
                       COALESCE(AVG(settlement_amount), 0) AS avg_settlement
                   FROM cases WHERE user_id = ?""",
                (*CLOSED_STATUSES, CaseStatus.SETTLED.value, CaseStatus.CLOSED.value, user_id),
            ).fetchone()
        stats = dict(row)
        stats["total_settlements"] = round(stats["total_settlements"], 2)
        stats["avg_settlement"] = round(stats["avg_settlement"], 2)
        return stats

    # ── Notes ──

    def add_note(self, case_id: str, user_id: str, note: str, note_type: str = "general") -> CaseNote:
        self.require_case(case_id, user_id)
        record = CaseNote(case_id=case_id, user_id=user_id, note=note.strip(), note_type=note_type)
        with self._db() as conn:
            conn.execute(
                "INSERT INTO case_notes (id, case_id, user_id, note, note_type, created_at) VALUES (?, ?, ?, ?, ?, ?)",
                (record.id, case_id, user_id, record.note, note_type, record.created_at),
            )
            conn.commit()
        return record

    def list_notes(self, case_id: str) -> List[CaseNote]:
        with self._db() as conn:
            rows = conn.execute(
                "SELECT * FROM case_notes WHERE case_id = ? ORDER BY created_at DESC", (case_id,)
            ).fetchall()
        return [CaseNote.from_db(r) for r in rows]

    # ── Deadlines ──

    def _sync_next_deadline(self, conn: sqlite3.Connection, case_id: str):
        conn.execute(
            """UPDATE cases SET next_deadline = (
                   SELECT MIN(due_date) FROM deadlines WHERE case_id = ? AND status = ?
               ) WHERE id = ?""",
            (case_id, DeadlineStatus.PENDING.value, case_id),
        )

    def add_deadline(self, case_id: str, user_id: str, title: str, due_date: str,
                     description: Optional[str] = None, priority: str = "medium",
                     deadline_type: Optional[str] = None) -> Deadline:
        self.require_case(case_id, user_id)
        record = Deadline(case_id=case_id, user_id=user_id, title=title.strip(),
                          description=description, due_date=due_date,
                          priority=priority, deadline_type=deadline_type)
        row = record.to_db()
        with self._db() as conn:
            conn.execute(
                f"INSERT INTO deadlines ({', '.join(row)}) VALUES ({', '.join('?' for _ in row)})",
                list(row.values()),
            )
            self._sync_next_deadline(conn, case_id)
            conn.commit()
        return record

    def complete_deadline(self, case_id: str, deadline_id: str, user_id: str) -> Deadline:
        self.require_case(case_id, user_id)
        with self._db() as conn:
            row = conn.execute(
                "SELECT * FROM deadlines WHERE id = ? AND case_id = ?", (deadline_id, case_id)
            ).fetchone()
            if not row:
                raise _not_found("Deadline")
            conn.execute(
                "UPDATE deadlines SET status = ? WHERE id = ?",
                (DeadlineStatus.COMPLETED.value, deadline_id),
            )
            self._sync_next_deadline(conn, case_id)
            conn.commit()
        record = Deadline.from_db(row)
        record.status = DeadlineStatus.COMPLETED.value
        return record

    def list_deadlines(self, case_id: str) -> List[Deadline]:
        with self._db() as conn:
            rows = conn.execute(
                "SELECT * FROM deadlines WHERE case_id = ? ORDER BY due_date ASC", (case_id,)
            ).fetchall()
        return [Deadline.from_db(r) for r in rows]

    def all_deadlines(self, user_id: str) -> List[Deadline]:
        with self._db() as conn:
            rows = conn.execute(
                "SELECT * FROM deadlines WHERE user_id = ? ORDER BY due_date ASC", (user_id,)
            ).fetchall()
        return [Deadline.from_db(r) for r in rows]

    def upcoming_deadlines(self, user_id: str, limit: int = 5) -> List[Dict[str, Any]]:
        """Pending deadlines due after now, with their case number and title."""
        with self._db() as conn:
            rows = conn.execute(
                """SELECT d.*, c.case_number, c.title AS case_title
                   FROM deadlines d JOIN cases c ON d.case_id = c.id
                   WHERE d.user_id = ? AND d.status = ? AND d.due_date > ?
                   ORDER BY d.due_date ASC LIMIT ?""",
                (user_id, DeadlineStatus.PENDING.value, utcnow_iso(), limit),
            ).fetchall()
        results = []
        for r in rows:
            item = Deadline.from_db(r).to_ui()
            item["caseNumber"] = r["case_number"]
            item["caseTitle"] = r["case_title"]
            results.append(item)
        return results

    # ── Documents ──

    def add_document(self, case_id: str, user_id: str, file_name: str, file_type: str,
                     content: bytes, category: str = "other", description: Optional[str] = None,
                     extracted_text: Optional[str] = None,
                     ai_analysis: Optional[str] = None) -> Document:
        """Write the bytes to the upload directory and record the metadata."""
        self.require_case(case_id, user_id)
        doc = Document(case_id=case_id, user_id=user_id, file_name=file_name,
                       file_type=file_type, file_size=len(content), category=category,
                       description=description, extracted_text=extracted_text,
                       ai_analysis=ai_analysis)
        suffix = Path(file_name).suffix.lower()
        doc.stored_name = f"{uuid.uuid4().hex}{suffix}"
        doc.hash_sha256 = hashlib.sha256(content).hexdigest()
        doc.public_url = f"/api/documents/download/{doc.id}"
        (self.upload_dir / doc.stored_name).write_bytes(content)

        row = doc.to_db()
        try:
            with self._db() as conn:
                conn.execute(
                    f"INSERT INTO documents ({', '.join(row)}) VALUES ({', '.join('?' for _ in row)})",
                    list(row.values()),
                )
                conn.commit()
        except HTTPException:
            (self.upload_dir / doc.stored_name).unlink(missing_ok=True)
            raise
        self.audit("document.uploaded", {
            "document_id": doc.id, "case_id": case_id, "file_name": file_name,
            "file_size": doc.file_size, "category": category,
        }, actor=user_id)
        return doc

    def get_document(self, document_id: str, user_id: str) -> Optional[Document]:
        with self._db() as conn:
            row = conn.execute(
                """SELECT d.* FROM documents d JOIN cases c ON d.case_id = c.id
                   WHERE d.id = ? AND c.user_id = ?""",
                (document_id, user_id),
            ).fetchone()
        return Document.from_db(row) if row else None

    def require_document(self, document_id: str, user_id: str) -> Document:
        doc = self.get_document(document_id, user_id)
        if not doc:
            raise _not_found("Document")
        return doc

    def read_document(self, doc: Document) -> bytes:
        path = self.upload_dir / doc.stored_name
        if not path.exists():
            raise HTTPException(
                status_code=status.HTTP_404_NOT_FOUND,
                detail={"code": "NOT_FOUND",
                        "message": "The requested file could not be found on the server"},
            )
        return path.read_bytes()

    def list_documents(self, user_id: str, case_id: Optional[str] = None,
                       category: Optional[str] = None,
                       search: Optional[str] = None) -> List[Document]:
        query = """SELECT d.* FROM documents d JOIN cases c ON d.case_id = c.id
                   WHERE c.user_id = ?"""
        params: list = [user_id]
        if case_id:
            query += " AND d.case_id = ?"
            params.append(case_id)
        if category and category != "all":
            query += " AND d.category = ?"
            params.append(category)
        if search:
            query += " AND (LOWER(d.file_name) LIKE ? OR LOWER(COALESCE(d.ai_analysis, '')) LIKE ?)"
            term = f"%{search.lower()}%"
            params.extend([term, term])
        query += " ORDER BY d.uploaded_at DESC"
        with self._db() as conn:
            rows = conn.execute(query, params).fetchall()
        return [Document.from_db(r) for r in rows]

    def update_document(self, document_id: str, user_id: str, updates: Dict[str, Any]) -> Document:
        self.require_document(document_id, user_id)
        sets = []
        params: list = []
        for k, v in updates.items():
            if k in DOCUMENT_UPDATABLE:
                sets.append(f"{k} = ?")
                params.append(v)
        if not sets:
            raise _bad_request("At least one field must be provided for update")
        params.append(document_id)
        with self._db() as conn:
            conn.execute(f"UPDATE documents SET {', '.join(sets)} WHERE id = ?", params)
            conn.commit()
        return self.get_document(document_id, user_id)

    def set_document_analysis(self, document_id: str, analysis: str):
        with self._db() as conn:
            conn.execute("UPDATE documents SET ai_analysis = ? WHERE id = ?", (analysis, document_id))
            conn.commit()

    def delete_document(self, document_id: str, user_id: str):
        doc = self.require_document(document_id, user_id)
        (self.upload_dir / doc.stored_name).unlink(missing_ok=True)
        with self._db() as conn:
            conn.execute("DELETE FROM documents WHERE id = ?", (document_id,))
            conn.commit()
        self.audit("document.deleted", {
            "document_id": document_id, "case_id": doc.case_id, "file_name": doc.file_name,
        }, actor=user_id)

    def document_stats(self, user_id: str) -> Dict[str, Any]:
        with self._db() as conn:
            total, storage = conn.execute(
                """SELECT COUNT(*), COALESCE(SUM(d.file_size), 0)
                   FROM documents d JOIN cases c ON d.case_id = c.id WHERE c.user_id = ?""",
                (user_id,),
            ).fetchone()
            by_category = {
                r[0]: r[1] for r in conn.execute(
                    """SELECT d.category, COUNT(*) FROM documents d JOIN cases c ON d.case_id = c.id
                       WHERE c.user_id = ? GROUP BY d.category""",
                    (user_id,),
                ).fetchall()
            }
            recent = conn.execute(
                """SELECT d.id, d.file_name, d.category, d.uploaded_at, c.case_number, c.title AS case_title
                   FROM documents d JOIN cases c ON d.case_id = c.id
                   WHERE c.user_id = ? ORDER BY d.uploaded_at DESC LIMIT 10""",
                (user_id,),
            ).fetchall()
        return {
            "totalDocuments": total,
            "totalStorageUsed": storage,
            "byCategory": by_category,
            "recentDocuments": [
                {
                    "id": r["id"], "fileName": r["file_name"], "category": r["category"],
                    "uploadedAt": r["uploaded_at"], "caseNumber": r["case_number"],
                    "caseTitle": r["case_title"],
                }
                for r in recent
            ],
        }

    # ── Negotiations ──

    def _load_messages(self, conn: sqlite3.Connection, negotiation_id: str) -> List[NegotiationMessage]:
        rows = conn.execute(
            "SELECT * FROM negotiation_messages WHERE negotiation_id = ? ORDER BY timestamp ASC, rowid ASC",
            (negotiation_id,),
        ).fetchall()
        return [NegotiationMessage.from_db(r) for r in rows]

    def _insert_message(self, conn: sqlite3.Connection, msg: NegotiationMessage):
        row = msg.to_db()
        conn.execute(
            f"INSERT INTO negotiation_messages ({', '.join(row)}) VALUES ({', '.join('?' for _ in row)})",
            list(row.values()),
        )

    def create_negotiation(self, case_id: str, user_id: str, demand_amount: float,
                           message: str = "", insurance_company: Optional[str] = None,
                           ai_generated: bool = False) -> Negotiation:
        """Open a negotiation with an initial attorney demand."""
        case = self.require_case(case_id, user_id)
        if demand_amount <= 0:
            raise _bad_request("Demand amount must be greater than zero")
        neg = Negotiation(
            case_id=case_id, user_id=user_id,
            insurance_company=insurance_company or case.insurance_company or "",
            current_offer=case.current_offer or 0.0,
            demand_amount=demand_amount,
        )
        opening = NegotiationMessage(
            negotiation_id=neg.id, type=NegotiationMessageType.DEMAND.value,
            amount=demand_amount, sender="attorney", ai_generated=ai_generated,
            message=message or f"Initial demand of ${demand_amount:,.2f} on behalf of {case.client_name}.",
        )
        neg.messages.append(opening)
        row = neg.to_db()
        with self._db() as conn:
            conn.execute(
                f"INSERT INTO negotiations ({', '.join(row)}) VALUES ({', '.join('?' for _ in row)})",
                list(row.values()),
            )
            self._insert_message(conn, opening)
            if case.status in (CaseStatus.NEW.value, CaseStatus.INVESTIGATING.value):
                conn.execute(
                    "UPDATE cases SET status = ?, updated_at = ? WHERE id = ?",
                    (CaseStatus.NEGOTIATING.value, utcnow_iso(), case_id),
                )
            conn.commit()
        self.audit("negotiation.created", {
            "negotiation_id": neg.id, "case_id": case_id, "demand": demand_amount,
        }, actor=user_id)
        return neg

    def get_negotiation(self, negotiation_id: str, user_id: str) -> Optional[Negotiation]:
        with self._db() as conn:
            row = conn.execute(
                "SELECT * FROM negotiations WHERE id = ? AND user_id = ?", (negotiation_id, user_id)
            ).fetchone()
            if not row:
                return None
            neg = Negotiation.from_db(row)
            neg.messages = self._load_messages(conn, negotiation_id)
        return neg

    def require_negotiation(self, negotiation_id: str, user_id: str) -> Negotiation:
        neg = self.get_negotiation(negotiation_id, user_id)
        if not neg:
            raise _not_found("Negotiation")
        return neg

    def list_negotiations(self, user_id: str, case_id: Optional[str] = None) -> List[Negotiation]:
        query = "SELECT * FROM negotiations WHERE user_id = ?"
        params: list = [user_id]
        if case_id:
            query += " AND case_id = ?"
            params.append(case_id)
        query += " ORDER BY created_at DESC"
        with self._db() as conn:
            rows = conn.execute(query, params).fetchall()
            results = []
            for r in rows:
                neg = Negotiation.from_db(r)
                neg.messages = self._load_messages(conn, neg.id)
                results.append(neg)
        return results

    def add_negotiation_message(self, negotiation_id: str, user_id: str, msg_type: str,
                                message: str = "", amount: Optional[float] = None,
                                sender: Optional[str] = None,
                                ai_generated: bool = False) -> Negotiation:
        """
        Append a message and apply its effect:
          offer      -> current_offer = amount, status pending
          counter    -> demand_amount = amount, status countered
          demand     -> demand_amount = amount
          acceptance -> status accepted, case settled at current_offer
          rejection  -> status rejected
        """
        neg = self.require_negotiation(negotiation_id, user_id)
        if neg.status in FINAL_NEGOTIATION_STATUSES:
            raise _bad_request(f"Cannot add messages to a {neg.status} negotiation")
        money_types = (
            NegotiationMessageType.OFFER.value,
            NegotiationMessageType.COUNTER.value,
            NegotiationMessageType.DEMAND.value,
        )
        if msg_type in money_types and (amount is None or amount <= 0):
            raise _bad_request(f"A {msg_type} requires an amount greater than zero")

        if sender is None:
            sender = "insurance" if msg_type == NegotiationMessageType.OFFER.value else "attorney"
        msg = NegotiationMessage(negotiation_id=negotiation_id, type=msg_type, amount=amount,
                                 message=message.strip(), sender=sender, ai_generated=ai_generated)
        now = utcnow_iso()
        case_updates: Dict[str, Any] = {}

        if msg_type == NegotiationMessageType.OFFER.value:
            neg.current_offer = amount
            neg.status = NegotiationStatus.PENDING.value
            case_updates["current_offer"] = amount
        elif msg_type == NegotiationMessageType.COUNTER.value:
            neg.demand_amount = amount
            neg.status = NegotiationStatus.COUNTERED.value
        elif msg_type == NegotiationMessageType.DEMAND.value:
            neg.demand_amount = amount
        elif msg_type == NegotiationMessageType.ACCEPTANCE.value:
            neg.status = NegotiationStatus.ACCEPTED.value
            msg.amount = neg.current_offer
            case_updates["status"] = CaseStatus.SETTLED.value
            case_updates["settlement_amount"] = neg.current_offer
        elif msg_type == NegotiationMessageType.REJECTION.value:
            neg.status = NegotiationStatus.REJECTED.value

        with self._db() as conn:
            self._insert_message(conn, msg)
            conn.execute(
                """UPDATE negotiations SET current_offer = ?, demand_amount = ?, status = ?, updated_at = ?
                   WHERE id = ?""",
                (neg.current_offer, neg.demand_amount, neg.status, now, negotiation_id),
            )
            if case_updates:
                sets = ", ".join(f"{k} = ?" for k in case_updates)
                conn.execute(
                    f"UPDATE cases SET {sets}, updated_at = ? WHERE id = ?",
                    (*case_updates.values(), now, neg.case_id),
                )
            conn.commit()
        neg.updated_at = now
        neg.messages.append(msg)
        self.audit("negotiation.message", {
            "negotiation_id": negotiation_id, "type": msg_type, "amount": msg.amount,
            "status": neg.status,
        }, actor=user_id)
        return neg

    # ── Negotiator chat ──

    def add_assistant_message(self, case_id: str, user_id: str, msg_type: str, content: str,
                              metadata: Optional[Dict[str, Any]] = None) -> AssistantMessage:
        msg = AssistantMessage(case_id=case_id, user_id=user_id, type=msg_type,
                               content=content, metadata=metadata)
        row = msg.to_db()
        with self._db() as conn:
            conn.execute(
                f"INSERT INTO assistant_messages ({', '.join(row)}) VALUES ({', '.join('?' for _ in row)})",
                list(row.values()),
            )
            conn.commit()
        return msg

    def list_assistant_messages(self, case_id: str, user_id: str) -> List[AssistantMessage]:
        with self._db() as conn:
            rows = conn.execute(
                """SELECT * FROM assistant_messages WHERE case_id = ? AND user_id = ?
                   ORDER BY timestamp ASC, rowid ASC""",
                (case_id, user_id),
            ).fetchall()
        return [AssistantMessage.from_db(r) for r in rows]

    # ── Calendar ──

    def create_event(self, event: CalendarEvent) -> CalendarEvent:
        if event.case_id:
            self.require_case(event.case_id, event.user_id)
        row = event.to_db()
        with self._db() as conn:
            conn.execute(
                f"INSERT INTO calendar_events ({', '.join(row)}) VALUES ({', '.join('?' for _ in row)})",
                list(row.values()),
            )
            conn.commit()
        return event

    def get_event(self, event_id: str, user_id: str) -> Optional[CalendarEvent]:
        with self._db() as conn:
            row = conn.execute(
                "SELECT * FROM calendar_events WHERE id = ? AND user_id = ?", (event_id, user_id)
            ).fetchone()
        return CalendarEvent.from_db(row) if row else None

    def require_event(self, event_id: str, user_id: str) -> CalendarEvent:
        event = self.get_event(event_id, user_id)
        if not event:
            raise _not_found("Event")
        return event

    def list_events(self, user_id: str, start: Optional[str] = None,
                    end: Optional[str] = None) -> List[CalendarEvent]:
        query = "SELECT * FROM calendar_events WHERE user_id = ?"
        params: list = [user_id]
        if start:
            query += " AND start_date >= ?"
            params.append(start)
        if end:
            query += " AND start_date <= ?"
            params.append(end)
        query += " ORDER BY start_date ASC"
        with self._db() as conn:
            rows = conn.execute(query, params).fetchall()
        return [CalendarEvent.from_db(r) for r in rows]

    def update_event(self, event_id: str, user_id: str, updates: Dict[str, Any]) -> CalendarEvent:
        self.require_event(event_id, user_id)
        if updates.get("case_id"):
            self.require_case(updates["case_id"], user_id)
        sets = []
        params: list = []
        for k, v in updates.items():
            if k in EVENT_UPDATABLE:
                sets.append(f"{k} = ?")
                params.append(v)
        if not sets:
            raise _bad_request("At least one field must be provided for update")
        params.append(event_id)
        with self._db() as conn:
            conn.execute(f"UPDATE calendar_events SET {', '.join(sets)} WHERE id = ?", params)
            conn.commit()
        return self.get_event(event_id, user_id)

    def delete_event(self, event_id: str, user_id: str):
        self.require_event(event_id, user_id)
        with self._db() as conn:
            conn.execute("DELETE FROM calendar_events WHERE id = ?", (event_id,))
            conn.commit()

    # ── Preferences ──

    def _load_settings(self, table: str, user_id: str, defaults: Dict[str, Any]) -> Dict[str, Any]:
        with self._db() as conn:
            row = conn.execute(f"SELECT data FROM {table} WHERE user_id = ?", (user_id,)).fetchone()
        if row:
            merge_settings(defaults, json.loads(row["data"]))
        return defaults

    def _save_settings(self, table: str, user_id: str, data: Dict[str, Any]):
        with self._db() as conn:
            conn.execute(
                f"""INSERT INTO {table} (user_id, data, updated_at) VALUES (?, ?, ?)
                    ON CONFLICT(user_id) DO UPDATE SET data = excluded.data, updated_at = excluded.updated_at""",
                (user_id, json.dumps(data), utcnow_iso()),
            )
            conn.commit()

    def get_preferences(self, user_id: str) -> Dict[str, Any]:
        return self._load_settings("preferences", user_id, default_preferences())

    def save_preferences(self, user_id: str, updates: Dict[str, Any]) -> Dict[str, Any]:
        """Merge updates over the stored preferences (nested dicts merge one level deep)."""
        prefs = merge_settings(self.get_preferences(user_id), updates)
        self._save_settings("preferences", user_id, prefs)
        return prefs

    # ── Firm settings ──

    def get_firm_settings(self, user_id: str) -> Dict[str, Any]:
        """Stored firm profile, falling back to the firm name on the account."""
        user = self.get_user(user_id)
        defaults = default_firm_settings(user.firm_name if user else None)
        return self._load_settings("firm_settings", user_id, defaults)

    def save_firm_settings(self, user_id: str, updates: Dict[str, Any]) -> Dict[str, Any]:
        settings = merge_settings(self.get_firm_settings(user_id), updates)
        self._save_settings("firm_settings", user_id, settings)
        self.audit("firm.updated", {"user_id": user_id, "fields": sorted(updates)}, actor=user_id)
        return settings

    # ── Activity ──

    ACTIVITY_TYPES = ("note", "document", "case", "deadline")

    def recent_activity(self, user_id: str, activity_type: Optional[str] = None,
                        page: int = 1, limit: int = 20) -> List[Dict[str, Any]]:
        """Notes, documents, cases and deadlines as one feed, newest first."""
        parts = {
            "note": """SELECT 'note' AS type, n.id, n.note AS content, n.note_type AS subtype,
                              n.created_at AS created_at, c.case_number, c.title AS case_title, c.id AS case_id
                       FROM case_notes n JOIN cases c ON n.case_id = c.id WHERE n.user_id = ?""",
            "document": """SELECT 'document' AS type, d.id, d.file_name AS content, d.category AS subtype,
                                  d.uploaded_at AS created_at, c.case_number, c.title AS case_title,
                                  c.id AS case_id
                           FROM documents d JOIN cases c ON d.case_id = c.id WHERE d.user_id = ?""",
            "case": """SELECT 'case' AS type, id, title AS content, case_type AS subtype, created_at,
                              case_number, title AS case_title, id AS case_id
                       FROM cases WHERE user_id = ?""",
            "deadline": """SELECT 'deadline' AS type, d.id, d.title AS content, d.priority AS subtype,
                                  d.created_at AS created_at, c.case_number, c.title AS case_title, c.id AS case_id
                           FROM deadlines d JOIN cases c ON d.case_id = c.id WHERE d.user_id = ?""",
        }
        selected = [activity_type] if activity_type else list(self.ACTIVITY_TYPES)
        union = " UNION ALL ".join(parts[t] for t in selected)
        query = f"SELECT * FROM ({union}) ORDER BY created_at DESC LIMIT ? OFFSET ?"
        params = [user_id] * len(selected) + [limit, (page - 1) * limit]
        with self._db() as conn:
            rows = conn.execute(query, params).fetchall()
        return [
            {
                "type": r["type"], "id": r["id"], "content": r["content"],
                "subtype": r["subtype"], "createdAt": r["created_at"],
                "caseNumber": r["case_number"], "caseTitle": r["case_title"],
                "caseId": r["case_id"],
            }
            for r in rows
        ]


_store: Optional[Store] = None


def get_store() -> Store:
    """FastAPI dependency. The store is created on first use."""
    global _store
    if _store is None:
        _store = Store()
    return _store

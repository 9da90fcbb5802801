#!/usr/bin/env python3
"""
CaseLedger Document Generator
==============================
Renders case data to PDF with reportlab.

Templates:
  1. Demand Letter   - settlement demand to the insurer
  2. Case Summary    - one-file overview of a case for the attorney

Usage:
    from caseledger_docs import generate_demand_letter
    pdf_bytes = generate_demand_letter(case, demand_amount=150000)

Version: 1.0
"""

from __future__ import annotations

import io
from datetime import datetime, timedelta
from typing import Any, Callable, Dict, List, Optional
from xml.sax.saxutils import escape

from reportlab.lib.colors import HexColor
from reportlab.lib.enums import TA_CENTER, TA_JUSTIFY
from reportlab.lib.pagesizes import letter
from reportlab.lib.styles import ParagraphStyle, getSampleStyleSheet
from reportlab.lib.units import inch
from reportlab.platypus import (
    HRFlowable, Paragraph, SimpleDocTemplate, Spacer, Table, TableStyle,
)

from caseledger_types import AIAnalysis, Case, CaseNote, Deadline, Document


# ── Colors ──
NAVY        = HexColor("#1e3a5f")
TEXT_DARK   = HexColor("#1a1a1a")
TEXT_LIGHT  = HexColor("#6e7681")
BORDER      = HexColor("#d0d7de")
PANEL       = HexColor("#f6f8fa")


def _build_styles():
    """Paragraph styles shared by every template."""
    base = getSampleStyleSheet()
    return {
        "brand": ParagraphStyle(
            "brand", parent=base["Normal"], fontName="Helvetica-Bold",
            fontSize=18, textColor=NAVY, leading=22, spaceAfter=4,
        ),
        "tagline": ParagraphStyle(
            "tagline", parent=base["Normal"], fontName="Helvetica",
            fontSize=8, textColor=TEXT_LIGHT, leading=10, spaceAfter=14,
        ),
        "subject": ParagraphStyle(
            "subject", parent=base["Normal"], fontName="Helvetica-Bold",
            fontSize=12, textColor=TEXT_DARK, spaceBefore=10, spaceAfter=10,
        ),
        "section": ParagraphStyle(
            "section", parent=base["Normal"], fontName="Helvetica-Bold",
            fontSize=11, textColor=NAVY, spaceBefore=12, spaceAfter=6,
        ),
        "body": ParagraphStyle(
            "body", parent=base["Normal"], fontName="Helvetica",
            fontSize=11, textColor=TEXT_DARK, leading=16, spaceAfter=10,
            alignment=TA_JUSTIFY,
        ),
        "bullet": ParagraphStyle(
            "bullet", parent=base["Normal"], fontName="Helvetica",
            fontSize=10, textColor=TEXT_DARK, leading=14, leftIndent=24,
            bulletIndent=12, spaceAfter=3,
        ),
        "signature": ParagraphStyle(
            "signature", parent=base["Normal"], fontName="Helvetica-Bold",
            fontSize=11, textColor=NAVY, spaceAfter=2,
        ),
        "footer": ParagraphStyle(
            "footer", parent=base["Normal"], fontName="Helvetica",
            fontSize=8, textColor=TEXT_LIGHT, alignment=TA_CENTER,
        ),
        "meta_label": ParagraphStyle(
            "meta_label", parent=base["Normal"], fontName="Helvetica",
            fontSize=9, textColor=TEXT_LIGHT,
        ),
        "meta_value": ParagraphStyle(
            "meta_value", parent=base["Normal"], fontName="Helvetica-Bold",
            fontSize=10, textColor=TEXT_DARK,
        ),
    }


def _money(amount: Optional[float]) -> str:
    return f"${amount or 0:,.2f}"


def _long_date(value: Optional[str]) -> str:
    if not value:
        return "N/A"
    try:
        return datetime.fromisoformat(value.replace("Z", "")).strftime("%B %d, %Y")
    except ValueError:
        return value


def _add_header(story, styles, firm: str):
    story.append(Paragraph(escape(firm or "CaseLedger"), styles["brand"]))
    story.append(Paragraph("Personal Injury Case Management", styles["tagline"]))
    story.append(HRFlowable(width="100%", thickness=1.5, color=NAVY, spaceAfter=14))


def _add_case_meta(story, styles, case: Case):
    """Case reference table (number, client, carrier, claim)."""
    rows = [
        ["Case Number", case.case_number or "N/A", "Date", datetime.utcnow().strftime("%B %d, %Y")],
        ["Client", case.client_name, "Incident Date", _long_date(case.incident_date)],
        ["Insurer", case.insurance_company or "N/A", "Claim Number", case.claim_number or "N/A"],
        ["Case Type", case.case_type.replace("_", " ").title(), "Status", case.status.title()],
    ]
    meta = Table(
        [
            [Paragraph(escape(str(cell)), styles["meta_label" if i % 2 == 0 else "meta_value"])
             for i, cell in enumerate(row)]
            for row in rows
        ],
        colWidths=[1.2 * inch, 2.3 * inch, 1.2 * inch, 2.3 * inch],
    )
    meta.setStyle(TableStyle([
        ("BACKGROUND", (0, 0), (-1, -1), PANEL),
        ("BOX", (0, 0), (-1, -1), 0.5, BORDER),
        ("INNERGRID", (0, 0), (-1, -1), 0.5, BORDER),
        ("TOPPADDING", (0, 0), (-1, -1), 6),
        ("BOTTOMPADDING", (0, 0), (-1, -1), 6),
        ("LEFTPADDING", (0, 0), (-1, -1), 8),
        ("VALIGN", (0, 0), (-1, -1), "TOP"),
    ]))
    story.append(meta)
    story.append(Spacer(1, 14))


def _add_footer(story, styles, case: Case):
    story.append(Spacer(1, 24))
    story.append(HRFlowable(width="100%", thickness=0.5, color=BORDER, spaceAfter=8))
    story.append(Paragraph(
        "Confidential settlement communication. Inadmissible to prove liability "
        "under applicable rules of evidence.",
        styles["footer"],
    ))
    story.append(Paragraph(
        f"Case Ref: {escape(case.case_number or case.id)} | "
        f"Generated: {datetime.utcnow().strftime('%Y-%m-%d %H:%M UTC')}",
        styles["footer"],
    ))


def _bullets(story, styles, items: List[str]):
    for item in items:
        story.append(Paragraph(escape(item), styles["bullet"], bulletText="•"))


# ============================================================================
# TEMPLATES
# ============================================================================

def _build_demand_letter(case: Case, demand_amount: float, current_offer: Optional[float] = None,
                         attorney: str = "", firm: str = "") -> list:
    styles = _build_styles()
    story: list = []
    _add_header(story, styles, firm)
    _add_case_meta(story, styles, case)

    story.append(Paragraph(
        f"Re: Settlement Demand on behalf of {escape(case.client_name)}", styles["subject"],
    ))
    story.append(Paragraph("Dear Claims Representative:", styles["body"]))
    story.append(Paragraph(
        f"This firm represents <b>{escape(case.client_name)}</b> in connection with injuries "
        f"sustained on <b>{_long_date(case.incident_date)}</b>. We write to present our "
        f"client's demand for settlement.",
        styles["body"],
    ))
    if case.description:
        story.append(Paragraph(escape(case.description), styles["body"]))
    if current_offer:
        story.append(Paragraph(
            f"We have considered your offer of <b>{_money(current_offer)}</b>. It does not "
            f"fairly compensate our client for the damages documented in this file.",
            styles["body"],
        ))
    story.append(Paragraph(
        f"Our client demands <b>{_money(demand_amount)}</b> in full and final settlement.",
        styles["body"],
    ))
    respond_by = (datetime.utcnow() + timedelta(days=30)).strftime("%B %d, %Y")
    story.append(Paragraph(
        f"Please respond in writing no later than <b>{respond_by}</b>. Absent a reasonable "
        f"response we will advise our client regarding further action.",
        styles["body"],
    ))
    story.append(Spacer(1, 12))
    story.append(Paragraph("Sincerely,", styles["body"]))
    story.append(Paragraph(escape(attorney or case.assigned_attorney or "Attorney for Claimant"),
                           styles["signature"]))
    _add_footer(story, styles, case)
    return story


def _build_case_summary(case: Case, notes: List[CaseNote] = (), deadlines: List[Deadline] = (),
                        documents: List[Document] = (), analysis: Optional[AIAnalysis] = None,
                        firm: str = "") -> list:
    styles = _build_styles()
    story: list = []
    _add_header(story, styles, firm)
    story.append(Paragraph(f"Case Summary: {escape(case.title)}", styles["subject"]))
    _add_case_meta(story, styles, case)

    story.append(Paragraph("Financials", styles["section"]))
    _bullets(story, styles, [
        f"Estimated value: {_money(case.estimated_value)}",
        f"Current offer: {_money(case.current_offer)}",
        f"Settlement goal: {_money(case.settlement_goal)}",
        f"Settlement amount: {_money(case.settlement_amount)}",
        f"Statute of limitations: {_long_date(case.statute_of_limitations)}",
    ])

    if case.description:
        story.append(Paragraph("Description", styles["section"]))
        story.append(Paragraph(escape(case.description), styles["body"]))

    if deadlines:
        story.append(Paragraph("Deadlines", styles["section"]))
        _bullets(story, styles, [
            f"{_long_date(d.due_date)}: {d.title} ({d.priority}, {d.status})" for d in deadlines
        ])

    if documents:
        story.append(Paragraph("Documents", styles["section"]))
        _bullets(story, styles, [
            f"{d.file_name} [{d.category.replace('_', ' ')}] {d.file_size:,} bytes" for d in documents
        ])

    if notes:
        story.append(Paragraph("Recent Notes", styles["section"]))
        _bullets(story, styles, [
            f"{_long_date(n.created_at)} ({n.note_type.replace('_', ' ')}): {n.note}" for n in notes[:10]
        ])

    if analysis is not None:
        story.append(Paragraph("Settlement Analysis", styles["section"]))
        _bullets(story, styles, [
            f"Case strength: {analysis.case_strength}/10",
            f"Recommended settlement: {_money(analysis.recommended_settlement)}",
            *[f"Risk: {r}" for r in analysis.risks],
            *[f"Opportunity: {o}" for o in analysis.opportunities],
        ])

    _add_footer(story, styles, case)
    return story


TEMPLATES: Dict[str, Dict[str, Any]] = {
    "demand_letter": {
        "name": "Demand Letter",
        "description": "Settlement demand addressed to the insurance carrier",
        "builder": _build_demand_letter,
    },
    "case_summary": {
        "name": "Case Summary",
        "description": "Overview of a case with deadlines, documents and notes",
        "builder": _build_case_summary,
    },
}


def _render(template: str, case: Case, story: list) -> bytes:
    buffer = io.BytesIO()
    doc = SimpleDocTemplate(
        buffer,
        pagesize=letter,
        leftMargin=0.75 * inch,
        rightMargin=0.75 * inch,
        topMargin=0.6 * inch,
        bottomMargin=0.6 * inch,
        title=f"{TEMPLATES[template]['name']} - {case.case_number}",
        author="CaseLedger",
    )
    doc.build(story)
    pdf_bytes = buffer.getvalue()
    buffer.close()
    return pdf_bytes


def generate_demand_letter(case: Case, demand_amount: float, current_offer: Optional[float] = None,
                           attorney: str = "", firm: str = "") -> bytes:
    """Demand letter PDF. Returns the bytes, ready to stream."""
    if not demand_amount or demand_amount <= 0:
        raise ValueError("Demand amount must be greater than zero")
    builder: Callable[..., list] = TEMPLATES["demand_letter"]["builder"]
    story = builder(case, demand_amount, current_offer, attorney=attorney, firm=firm)
    return _render("demand_letter", case, story)


def generate_case_summary(case: Case, notes: List[CaseNote] = (), deadlines: List[Deadline] = (),
                          documents: List[Document] = (), analysis: Optional[AIAnalysis] = None,
                          firm: str = "") -> bytes:
    story = TEMPLATES["case_summary"]["builder"](
        case, list(notes), list(deadlines), list(documents), analysis, firm=firm,
    )
    return _render("case_summary", case, story)


def list_templates() -> list:
    """Template keys, names and descriptions for the UI picker."""
    return [
        {"key": key, "name": info["name"], "description": info["description"]}
        for key, info in TEMPLATES.items()
    ]

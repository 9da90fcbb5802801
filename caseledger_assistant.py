#!/usr/bin/env python3
"""
CaseLedger Negotiation Assistant
=================================
Simulated settlement assistant for the negotiator chat panel.

Replies are canned text picked by keyword; every number is a fixed share
of the case's estimated value. Nothing here calls an inference service.

Usage:
    from caseledger_assistant import negotiation_reply, analyze_settlement
    text = negotiation_reply("they sent a lowball offer", case, 150000, 40000)

Version: 1.0
"""

from __future__ import annotations

import asyncio
import logging
import re
from datetime import datetime, timedelta
from typing import Dict, List, Optional

from fastapi import HTTPException, status

from caseledger_config import config
from caseledger_types import AIAnalysis, Case, CaseType, Priority

logger = logging.getLogger("cl-assistant")


# ============================================================================
# SETTLEMENT FIGURES
# ============================================================================

RECOMMENDED_SHARE = 0.75
FLOOR_SHARE = 0.60
CEILING_SHARE = 0.90
OPENING_DEMAND_SHARE = 1.50

DEMAND_LETTER_REQUIRED = (
    "Please select a case and enter a demand amount before generating a demand letter."
)

# First matching group wins.
KEYWORD_GROUPS = [
    ("acceptance", ("accept",)),
    ("counter", ("counter",)),
    ("offer", ("offer", "lowball", "low")),
    ("settlement", ("settle", "settlement", "range")),
    ("demand", ("demand", "letter")),
    ("timeline", ("deadline", "timeline", "time")),
    ("damages", ("medical", "injur")),
]


def _money(amount: Optional[float]) -> str:
    return f"${amount or 0:,.0f}"


def base_value(case: Case, demand_amount: Optional[float] = None) -> float:
    """The estimated value, or the value implied by the demand when none is set."""
    if case.estimated_value:
        return float(case.estimated_value)
    if demand_amount:
        return float(demand_amount) / OPENING_DEMAND_SHARE
    return 0.0


def settlement_figures(case: Case, demand_amount: Optional[float] = None,
                       current_offer: Optional[float] = None) -> Dict[str, float]:
    value = base_value(case, demand_amount)
    ceiling = round(value * CEILING_SHARE, 2)
    if demand_amount and current_offer:
        counter = round((demand_amount + current_offer) / 2, 2)
    else:
        counter = ceiling
    return {
        "estimatedValue": value,
        "recommended": round(value * RECOMMENDED_SHARE, 2),
        "floor": round(value * FLOOR_SHARE, 2),
        "ceiling": ceiling,
        "openingDemand": round(value * OPENING_DEMAND_SHARE, 2),
        "counter": counter,
    }


def classify_message(message: str) -> str:
    text = (message or "").lower()
    for intent, keywords in KEYWORD_GROUPS:
        if any(k in text for k in keywords):
            return intent
    return "general"


# ============================================================================
# CHAT REPLIES
# ============================================================================

def negotiation_reply(message: str, case: Case, demand_amount: Optional[float] = None,
                      current_offer: Optional[float] = None) -> str:
    """Canned reply for one chat message about `case`."""
    intent = classify_message(message)
    f = settlement_figures(case, demand_amount, current_offer)
    insurer = case.insurance_company or "the insurer"
    logger.info(f"Assistant reply for {case.case_number}: intent={intent}")

    if intent == "acceptance":
        if current_offer and current_offer >= f["floor"]:
            return (
                f"The current offer of {_money(current_offer)} is at or above the recommended floor "
                f"of {_money(f['floor'])}. Accepting is reasonable if {case.client_name} agrees. "
                f"Confirm the release terms, lien payoffs and payment timeline in writing before signing."
            )
        return (
            f"I would not accept yet. The offer of {_money(current_offer)} is below the floor of "
            f"{_money(f['floor'])} for a case valued at {_money(f['estimatedValue'])}. "
            f"Counter first and let {insurer} move."
        )

    if intent == "counter":
        return (
            f"Recommended counteroffer: {_money(f['counter'])}. "
            f"Anchor on documented damages, keep the number above the recommended settlement of "
            f"{_money(f['recommended'])}, and give {insurer} a firm response date."
        )

    if intent == "offer":
        if not current_offer:
            return (
                f"No offer is on file yet. When {insurer} responds, compare it to the floor of "
                f"{_money(f['floor'])} and the recommended settlement of {_money(f['recommended'])}."
            )
        share = current_offer / f["estimatedValue"] * 100 if f["estimatedValue"] else 0
        verdict = "a lowball" if current_offer < f["floor"] else "within the acceptable range"
        return (
            f"The offer of {_money(current_offer)} is {share:.0f}% of estimated value, which is {verdict}. "
            f"Floor {_money(f['floor'])}, recommended {_money(f['recommended'])}, ceiling {_money(f['ceiling'])}. "
            f"Suggested counter: {_money(f['counter'])}."
        )

    if intent == "settlement":
        return (
            f"Settlement range for {case.case_number}: {_money(f['floor'])} to {_money(f['ceiling'])}, "
            f"with {_money(f['recommended'])} as the target. "
            f"Anything under {_money(f['floor'])} should be countered."
        )

    if intent == "demand":
        demand = demand_amount or f["openingDemand"]
        return (
            f"Open with a demand of {_money(demand)}. Itemize medical specials, lost wages and "
            f"general damages, attach supporting records, and give {insurer} 30 days to respond. "
            f"Use the demand letter action to draft it."
        )

    if intent == "timeline":
        sol = case.statute_of_limitations or "not set"
        return (
            f"Statute of limitations: {sol}. Most carriers answer a demand in 30 to 45 days; "
            f"expect two or three rounds of offers. Calendar a litigation decision point at least "
            f"90 days before the limitation date."
        )

    if intent == "damages":
        return (
            "Build damages from the medical record: treatment dates, providers, billed and paid "
            "amounts, and future care. Gaps in treatment are the first thing an adjuster will "
            "challenge, so explain them up front."
        )

    return (
        f"For {case.client_name}'s case the working numbers are: target {_money(f['recommended'])}, "
        f"floor {_money(f['floor'])}, opening demand {_money(f['openingDemand'])}. "
        f"Ask about offers, counters, settlement range, demand letters, deadlines or damages."
    )


async def reply_delay():
    """Pause before a reply, as the chat panel expects a short think time."""
    if config.ASSISTANT_REPLY_DELAY > 0:
        await asyncio.sleep(config.ASSISTANT_REPLY_DELAY)


# ============================================================================
# SETTLEMENT ANALYSIS
# ============================================================================

SIMILAR_CASES = {
    CaseType.AUTO_ACCIDENT.value: [
        "Rear-end collision, soft tissue injury: settled at 72% of demand",
        "Intersection collision, fractured wrist: settled at 78% of demand",
    ],
    CaseType.PERSONAL_INJURY.value: [
        "Premises slip and fall, knee surgery: settled at 70% of demand",
        "Dog bite, scarring: settled at 65% of demand",
    ],
    CaseType.WORKERS_COMP.value: [
        "Warehouse back injury: settled at 68% of demand",
        "Repetitive strain claim: settled at 60% of demand",
    ],
    CaseType.MEDICAL_MALPRACTICE.value: [
        "Delayed diagnosis: settled at 80% of demand after expert review",
        "Surgical error: settled at 85% of demand before trial",
    ],
}


def analyze_settlement(case: Case, demand_amount: Optional[float] = None,
                       current_offer: Optional[float] = None,
                       documents_count: int = 0) -> AIAnalysis:
    """Score the case 1..10 from a few fixed rules and attach the standard range."""
    f = settlement_figures(case, demand_amount, current_offer)
    strength = 5
    factors: List[str] = []
    risks: List[str] = []
    opportunities: List[str] = []

    if case.priority in (Priority.HIGH.value, Priority.URGENT.value):
        strength += 1
        factors.append(f"Case marked {case.priority} priority")
    elif case.priority == Priority.LOW.value:
        strength -= 1
        risks.append("Low priority case with limited damages")

    if case.insurance_company:
        strength += 1
        factors.append(f"Carrier identified: {case.insurance_company}")
    else:
        risks.append("No insurance carrier on file")

    if current_offer and f["estimatedValue"]:
        ratio = current_offer / f["estimatedValue"]
        if ratio >= FLOOR_SHARE:
            strength += 1
            opportunities.append("Current offer already within the settlement range")
        elif ratio < 0.3:
            strength -= 1
            risks.append("Offer far below estimated value; litigation may be needed")
        else:
            opportunities.append(f"Room to negotiate up toward {_money(f['recommended'])}")
    else:
        opportunities.append("No offer yet; the opening demand sets the anchor")

    if documents_count >= 3:
        strength += 1
        factors.append(f"{documents_count} supporting documents on file")
    elif documents_count == 0:
        strength -= 1
        risks.append("No supporting documents uploaded")

    if case.statute_of_limitations:
        days_left = (datetime.fromisoformat(case.statute_of_limitations) - datetime.utcnow()).days
        if days_left < 90:
            risks.append(f"Statute of limitations in {max(days_left, 0)} days")

    strength = max(1, min(10, strength))
    return AIAnalysis(
        case_strength=strength,
        recommended_settlement=f["recommended"],
        key_factors=factors,
        risks=risks,
        opportunities=opportunities,
        similar_cases=SIMILAR_CASES.get(case.case_type, []),
        confidence=round(0.5 + strength * 0.04, 2),
    )


def format_analysis(case: Case, analysis: AIAnalysis) -> str:
    lines = [
        "**Settlement Analysis:**",
        "",
        f"Case {case.case_number} strength: {analysis.case_strength}/10 "
        f"(confidence {analysis.confidence:.0%})",
        f"Recommended settlement: {_money(analysis.recommended_settlement)}",
    ]
    for title, items in (("Key factors", analysis.key_factors), ("Risks", analysis.risks),
                         ("Opportunities", analysis.opportunities)):
        if items:
            lines.append(f"{title}:")
            lines.extend(f"  - {item}" for item in items)
    return "\n".join(lines)


# ============================================================================
# DEMAND LETTER
# ============================================================================

def draft_demand_letter(case: Optional[Case], demand_amount: Optional[float],
                        current_offer: Optional[float] = None,
                        attorney: str = "") -> str:
    """Plain-text demand letter. Raises 400 without a case or demand amount."""
    if case is None or not demand_amount:
        raise HTTPException(
            status_code=status.HTTP_400_BAD_REQUEST,
            detail={"code": "VALIDATION_ERROR", "message": DEMAND_LETTER_REQUIRED},
        )
    today = datetime.utcnow()
    respond_by = (today + timedelta(days=30)).strftime("%B %d, %Y")
    insurer = case.insurance_company or "Claims Department"
    lines = [
        today.strftime("%B %d, %Y"),
        "",
        insurer,
    ]
    if case.insurance_adjuster:
        lines.append(f"Attn: {case.insurance_adjuster}")
    lines += [
        "",
        f"Re: {case.client_name}",
        f"Our file: {case.case_number}",
    ]
    if case.claim_number:
        lines.append(f"Claim number: {case.claim_number}")
    if case.incident_date:
        lines.append(f"Date of incident: {case.incident_date}")
    lines += [
        "",
        "Dear Claims Representative:",
        "",
        f"This firm represents {case.client_name} for injuries sustained in the incident referenced above.",
    ]
    if case.description:
        lines += ["", case.description.strip()]
    if current_offer:
        lines += ["", f"We have reviewed your offer of {_money(current_offer)}. It does not "
                      f"reflect the damages our client has suffered."]
    lines += [
        "",
        f"Our client demands {_money(demand_amount)} in full settlement of this claim.",
        f"Please respond in writing by {respond_by}. If we do not receive a reasonable response "
        f"by that date we will advise our client on further action, including filing suit.",
        "",
        "Sincerely,",
        "",
        attorney or case.assigned_attorney or "Attorney for Claimant",
    ]
    return "\n".join(lines)


# ============================================================================
# DOCUMENT SUMMARY
# ============================================================================

LEGAL_TERMS = (
    "negligence", "liability", "damages", "settlement", "injury", "diagnosis",
    "treatment", "policy", "claim", "coverage", "plaintiff", "defendant",
)

_DATE_PATTERN = re.compile(r"\b(\d{4}-\d{2}-\d{2}|\d{1,2}/\d{1,2}/\d{2,4})\b")


def summarize_document(file_name: str, text: str) -> str:
    """Short canned analysis of a document's extracted text."""
    words = len(text.split())
    dates = list(dict.fromkeys(_DATE_PATTERN.findall(text)))
    lowered = text.lower()
    terms = [t for t in LEGAL_TERMS if t in lowered]
    parts = [f"Summary of {file_name}: {words} words."]
    if dates:
        parts.append(f"Dates referenced: {', '.join(dates[:5])}.")
    if terms:
        parts.append(f"Key terms: {', '.join(terms)}.")
    else:
        parts.append("No key legal terms found.")
    return " ".join(parts)

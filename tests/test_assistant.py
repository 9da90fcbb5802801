import pytest
from fastapi import HTTPException

from caseledger_assistant import (
    DEMAND_LETTER_REQUIRED,
    analyze_settlement,
    classify_message,
    draft_demand_letter,
    negotiation_reply,
    settlement_figures,
    summarize_document,
)
from caseledger_types import Case


@pytest.fixture
def case():
    return Case(case_number="PERSONAL-INJURY-2026-001", client_name="Sam Ortiz",
                estimated_value=100000, insurance_company="Harbor Insurance", priority="high")


@pytest.mark.parametrize("message, intent", [
    ("Should I accept their counter offer?", "acceptance"),
    ("What counter should we send?", "counter"),
    ("This is a LOWBALL number", "offer"),
    ("What's a fair settlement range", "settlement"),
    ("Help me draft a letter", "demand"),
    ("What is the timeline here?", "timeline"),
    ("Her medical bills keep growing", "damages"),
    ("hello there", "general"),
])
def test_classify_message(message, intent):
    assert classify_message(message) == intent


def test_settlement_figures(case):
    f = settlement_figures(case)
    assert (f["recommended"], f["floor"], f["ceiling"], f["openingDemand"]) == (75000, 60000, 90000, 150000)
    assert f["counter"] == 90000
    assert settlement_figures(case, demand_amount=150000, current_offer=50000)["counter"] == 100000


def test_value_implied_by_demand_when_unset():
    f = settlement_figures(Case(estimated_value=0), demand_amount=30000)
    assert f["recommended"] == 15000


def test_reply_mentions_numbers(case):
    reply = negotiation_reply("what settlement range is realistic?", case)
    assert "$60,000" in reply and "$90,000" in reply

    accept = negotiation_reply("should we accept?", case, current_offer=80000)
    assert "reasonable" in accept


def test_analysis_strong_case(case):
    analysis = analyze_settlement(case, current_offer=70000, documents_count=3)
    assert analysis.case_strength == 9
    assert analysis.recommended_settlement == 75000
    assert analysis.confidence == pytest.approx(0.86)
    assert analysis.similar_cases


def test_analysis_weak_case():
    weak = Case(estimated_value=100000, priority="low")
    analysis = analyze_settlement(weak, current_offer=10000, documents_count=0)
    assert analysis.case_strength == 2
    assert "No insurance carrier on file" in analysis.risks


def test_demand_letter(case):
    letter = draft_demand_letter(case, 150000, current_offer=40000, attorney="Dana Reyes")
    assert "Sam Ortiz" in letter
    assert "$150,000" in letter
    assert "$40,000" in letter
    assert letter.rstrip().endswith("Dana Reyes")


@pytest.mark.parametrize("args", [(None, 1000), ("case", None), ("case", 0)])
def test_demand_letter_needs_case_and_amount(case, args):
    target = case if args[0] == "case" else None
    with pytest.raises(HTTPException) as exc:
        draft_demand_letter(target, args[1])
    assert exc.value.status_code == 400
    assert exc.value.detail["message"] == DEMAND_LETTER_REQUIRED


def test_summarize_document():
    summary = summarize_document("police.txt", "Report dated 03/14/2025. Driver cited for negligence. 03/14/2025")
    assert "police.txt" in summary
    assert summary.count("03/14/2025") == 1
    assert "negligence" in summary

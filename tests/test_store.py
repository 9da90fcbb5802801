import re

import pytest
from fastapi import HTTPException

from caseledger_store import generate_case_number, statute_of_limitations
from caseledger_types import User


@pytest.fixture
def user(store):
    return store.create_user(User(email="owner@example.com", password_hash="x", first_name="O", last_name="W"))


def test_case_number_format():
    assert re.match(r"^WORKERS-COMP-2026-\d{3}$", generate_case_number("workers_comp", 2026))


def test_statute_of_limitations():
    assert statute_of_limitations("2024-01-15") == "2026-01-14"
    assert statute_of_limitations("2024-01-15T08:30:00Z") == "2026-01-14"
    assert statute_of_limitations(None) is None
    assert statute_of_limitations("2024-01-15", years=3) == "2027-01-14"


def test_case_numbers_unique(store, user, monkeypatch):
    numbers = iter([7, 7, 8])
    monkeypatch.setattr("caseledger_store.random.randint", lambda a, b: next(numbers))
    first = store.create_case(user.id, {"client_name": "A", "case_type": "other"})
    second = store.create_case(user.id, {"client_name": "B", "case_type": "other"})
    assert first.case_number.endswith("-007")
    assert second.case_number.endswith("-008")


def test_require_case_is_scoped_to_owner(store, user):
    case = store.create_case(user.id, {"client_name": "A"})
    with pytest.raises(HTTPException) as exc:
        store.require_case(case.id, "usr_someoneelse")
    assert exc.value.status_code == 404


def test_next_deadline_tracks_earliest_pending(store, user):
    case = store.create_case(user.id, {"client_name": "A"})
    late = store.add_deadline(case.id, user.id, "Late", "2030-05-01")
    early = store.add_deadline(case.id, user.id, "Early", "2030-03-01")
    assert store.get_case(case.id, user.id).next_deadline == "2030-03-01"
    store.complete_deadline(case.id, early.id, user.id)
    assert store.get_case(case.id, user.id).next_deadline == "2030-05-01"
    store.complete_deadline(case.id, late.id, user.id)
    assert store.get_case(case.id, user.id).next_deadline is None


def test_upcoming_deadlines_join_case(store, user):
    case = store.create_case(user.id, {"client_name": "A", "title": "A v. B"})
    store.add_deadline(case.id, user.id, "Past", "2001-01-01")
    store.add_deadline(case.id, user.id, "Future", "2030-01-01")
    [upcoming] = store.upcoming_deadlines(user.id)
    assert upcoming["title"] == "Future"
    assert upcoming["caseTitle"] == "A v. B"


def test_negotiation_requires_amount_for_counter(store, user):
    case = store.create_case(user.id, {"client_name": "A"})
    neg = store.create_negotiation(case.id, user.id, 50000)
    with pytest.raises(HTTPException) as exc:
        store.add_negotiation_message(neg.id, user.id, "counter", amount=-5)
    assert exc.value.status_code == 400


def test_rejection_leaves_case_open(store, user):
    case = store.create_case(user.id, {"client_name": "A", "status": "investigating"})
    neg = store.create_negotiation(case.id, user.id, 50000)
    neg = store.add_negotiation_message(neg.id, user.id, "rejection", message="No deal")
    assert neg.status == "rejected"
    assert store.get_case(case.id, user.id).status == "negotiating"


def test_preferences_persist(store, user):
    assert store.get_preferences(user.id)["theme"] == "light"
    store.save_preferences(user.id, {"dashboard": {"showRecentCases": False}})
    prefs = store.get_preferences(user.id)
    assert prefs["dashboard"]["showRecentCases"] is False
    assert prefs["dashboard"]["showUpcomingDeadlines"] is True


def test_delete_case_unlinks_events(store, user):
    from caseledger_types import CalendarEvent

    case = store.create_case(user.id, {"client_name": "A"})
    event = store.create_event(CalendarEvent(user_id=user.id, case_id=case.id, title="Hearing",
                                             start_date="2030-01-01T09:00:00", end_date="2030-01-01T10:00:00"))
    store.delete_case(case.id, user.id)
    assert store.get_event(event.id, user.id).case_id is None


def test_audit_log(store, user):
    store.create_case(user.id, {"client_name": "A"})
    actions = [a["action"] for a in store.get_audit_log()]
    assert "case.created" in actions
    assert "user.registered" in actions
    [created] = store.get_audit_log(action="case.created")
    assert created["actor"] == user.id


def test_preferences_ignore_null(store, user):
    store.save_preferences(user.id, {"notifications": {"email": False}})
    prefs = store.save_preferences(user.id, {"notifications": None, "theme": None})
    assert prefs["notifications"]["email"] is False
    assert prefs["theme"] == "light"


def test_firm_settings_default_to_account_firm(store):
    owner = store.create_user(User(email="firm@example.com", password_hash="x", first_name="F",
                                   last_name="M", firm_name="Okafor Legal"))
    assert store.get_firm_settings(owner.id)["firmName"] == "Okafor Legal"
    store.save_firm_settings(owner.id, {"currency": "EUR"})
    settings = store.get_firm_settings(owner.id)
    assert settings["currency"] == "EUR"
    assert settings["firmName"] == "Okafor Legal"
    assert store.get_audit_log(action="firm.updated")[0]["actor"] == owner.id

import json

from caseledger_types import (
    AssistantMessage,
    Case,
    Negotiation,
    NegotiationMessage,
    User,
    camel_to_snake,
    default_preferences,
    merge_settings,
    snake_to_camel,
)


def test_name_conversion():
    assert snake_to_camel("statute_of_limitations") == "statuteOfLimitations"
    assert snake_to_camel("id") == "id"
    assert camel_to_snake("caseNumber") == "case_number"
    assert camel_to_snake("hashSha256") == "hash_sha256"


def test_from_ui_keeps_only_known_fields():
    partial = Case.from_ui({"clientName": "Ann", "estimatedValue": 5000, "bogusField": 1})
    assert partial == {"client_name": "Ann", "estimated_value": 5000}


def test_hidden_fields_stay_private():
    user = User(email="a@b.co", password_hash="secret-hash")
    assert "passwordHash" not in user.to_ui()
    assert User.from_ui({"passwordHash": "x"}) == {}
    assert user.to_db()["password_hash"] == "secret-hash"


def test_db_shape_encodes_bools_and_json():
    msg = NegotiationMessage(ai_generated=True)
    assert msg.to_db()["ai_generated"] == 1
    row = {"id": "amsg_1", "case_id": "c", "user_id": "u", "type": "ai", "content": "hi",
           "metadata": json.dumps({"action": "chat"}), "timestamp": "2026-01-01T00:00:00", "extra": 1}
    restored = AssistantMessage.from_db(row)
    assert restored.metadata == {"action": "chat"}


def test_negotiation_nests_messages_in_ui_only():
    neg = Negotiation(case_id="c", demand_amount=1000)
    neg.messages.append(NegotiationMessage(negotiation_id=neg.id, amount=1000))
    assert "messages" not in neg.to_db()
    assert neg.to_ui()["messages"][0]["amount"] == 1000


def test_case_is_active():
    assert Case(status="negotiating").is_active
    assert not Case(status="settled").is_active
    assert not Case(status="closed").is_active


def test_merge_settings_skips_null():
    base = default_preferences()
    merge_settings(base, {"theme": "dark", "notifications": {"email": False, "deadlines": None},
                          "dashboard": None})
    assert base["theme"] == "dark"
    assert base["notifications"] == {"email": False, "deadlines": True, "caseUpdates": True}
    assert base["dashboard"] == default_preferences()["dashboard"]

import re

import pytest


def test_health(client):
    resp = client.get("/health")
    assert resp.status_code == 200
    assert resp.json()["service"] == "caseledger"
    assert client.get("/ready").json() == {"ready": True}


def test_create_case_derives_number_and_statute(case):
    assert re.match(r"^AUTO-ACCIDENT-\d{4}-\d{3}$", case["caseNumber"])
    assert case["statuteOfLimitations"] == "2027-03-10"
    assert case["status"] == "new"
    assert case["title"] == "Maria Lopez - Auto Accident"


def test_create_case_requires_client_name(client, auth_headers):
    resp = client.post("/api/cases", headers=auth_headers, json={"caseType": "other"})
    assert resp.status_code == 422


def test_create_case_rejects_unknown_type(client, auth_headers):
    resp = client.post("/api/cases", headers=auth_headers, json={"clientName": "X", "caseType": "divorce"})
    assert resp.status_code == 422


def test_list_cases_filters_and_paginates(client, auth_headers, case):
    for i in range(3):
        client.post("/api/cases", headers=auth_headers, json={
            "clientName": f"Client {i}", "caseType": "workers_comp", "status": "investigating",
        })
    resp = client.get("/api/cases", headers=auth_headers, params={"limit": 2})
    body = resp.json()
    assert len(body["cases"]) == 2
    assert body["pagination"] == {"page": 1, "limit": 2, "total": 4, "pages": 2}

    resp = client.get("/api/cases", headers=auth_headers, params={"caseType": "auto_accident"})
    assert [c["id"] for c in resp.json()["cases"]] == [case["id"]]

    resp = client.get("/api/cases", headers=auth_headers, params={"status": "investigating"})
    assert resp.json()["pagination"]["total"] == 3

    resp = client.get("/api/cases", headers=auth_headers, params={"search": "Lopez"})
    assert resp.json()["pagination"]["total"] == 1


def test_list_cases_limit_capped(client, auth_headers):
    assert client.get("/api/cases", headers=auth_headers, params={"limit": 500}).status_code == 422


def test_case_detail_includes_children(client, auth_headers, case):
    client.post(f"/api/cases/{case['id']}/notes", headers=auth_headers,
                json={"note": "Called adjuster", "noteType": "phone_call"})
    client.post(f"/api/cases/{case['id']}/deadlines", headers=auth_headers,
                json={"title": "Send records", "dueDate": "2030-02-01"})
    resp = client.get(f"/api/cases/{case['id']}", headers=auth_headers)
    detail = resp.json()["case"]
    assert detail["notes"][0]["note"] == "Called adjuster"
    assert detail["deadlines"][0]["title"] == "Send records"
    assert detail["nextDeadline"] == "2030-02-01"
    assert detail["documents"] == []


def test_other_user_cannot_see_case(client, other_headers, case):
    resp = client.get(f"/api/cases/{case['id']}", headers=other_headers)
    assert resp.status_code == 404
    assert "not found" in resp.json()["detail"]["message"]
    assert client.put(f"/api/cases/{case['id']}", headers=other_headers, json={"title": "x"}).status_code == 404
    assert client.delete(f"/api/cases/{case['id']}", headers=other_headers).status_code == 404


def test_update_case_recomputes_statute(client, auth_headers, case):
    resp = client.put(f"/api/cases/{case['id']}", headers=auth_headers,
                      json={"incidentDate": "2024-01-15", "status": "investigating"})
    assert resp.status_code == 200
    updated = resp.json()["case"]
    assert updated["statuteOfLimitations"] == "2026-01-14"
    assert updated["status"] == "investigating"


def test_update_case_empty_body(client, auth_headers, case):
    assert client.put(f"/api/cases/{case['id']}", headers=auth_headers, json={}).status_code == 400


def test_delete_case(client, auth_headers, case):
    assert client.delete(f"/api/cases/{case['id']}", headers=auth_headers).status_code == 200
    assert client.get(f"/api/cases/{case['id']}", headers=auth_headers).status_code == 404


def test_complete_deadline_moves_next_deadline(client, auth_headers, case):
    first = client.post(f"/api/cases/{case['id']}/deadlines", headers=auth_headers,
                        json={"title": "Demand due", "dueDate": "2030-03-01", "priority": "urgent"}).json()
    client.post(f"/api/cases/{case['id']}/deadlines", headers=auth_headers,
                json={"title": "Mediation", "dueDate": "2030-05-01"})
    resp = client.post(f"/api/cases/{case['id']}/deadlines/{first['deadline']['id']}/complete",
                       headers=auth_headers)
    assert resp.json()["deadline"]["status"] == "completed"
    detail = client.get(f"/api/cases/{case['id']}", headers=auth_headers).json()["case"]
    assert detail["nextDeadline"] == "2030-05-01"


def test_case_stats_overview(client, auth_headers, case):
    client.put(f"/api/cases/{case['id']}", headers=auth_headers,
               json={"status": "settled", "settlementAmount": 80000})
    client.post("/api/cases", headers=auth_headers, json={"clientName": "Open Case"})
    stats = client.get("/api/cases/stats/overview", headers=auth_headers).json()["stats"]
    assert stats["totalCases"] == 2
    assert stats["openCases"] == 1
    assert stats["settledCases"] == 1
    assert stats["totalSettlements"] == 80000


def test_case_summary_pdf(client, auth_headers, case):
    resp = client.get(f"/api/cases/{case['id']}/summary.pdf", headers=auth_headers)
    assert resp.status_code == 200
    assert resp.headers["content-type"] == "application/pdf"
    assert resp.content.startswith(b"%PDF")


@pytest.mark.parametrize("field", ["clientName", "title", "caseType", "status", "priority", "estimatedValue"])
def test_update_case_rejects_null_for_required_field(client, auth_headers, case, field):
    resp = client.put(f"/api/cases/{case['id']}", headers=auth_headers, json={field: None})
    assert resp.status_code == 422
    unchanged = client.get(f"/api/cases/{case['id']}", headers=auth_headers).json()["case"]
    assert unchanged["clientName"] == "Maria Lopez"
    assert unchanged["estimatedValue"] == 100000


def test_update_case_null_clears_optional_field(client, auth_headers, case):
    resp = client.put(f"/api/cases/{case['id']}", headers=auth_headers, json={"claimNumber": None})
    assert resp.status_code == 200
    assert resp.json()["case"]["claimNumber"] is None


def test_delete_case_removes_children(client, store, auth_headers, case):
    cid = case["id"]
    client.post(f"/api/cases/{cid}/notes", headers=auth_headers, json={"note": "Intake call"})
    client.post(f"/api/cases/{cid}/deadlines", headers=auth_headers,
                json={"title": "Records request", "dueDate": "2030-01-01"})
    neg = client.post("/api/negotiations", headers=auth_headers,
                      json={"caseId": cid, "demandAmount": 150000}).json()["negotiation"]
    client.post(f"/api/negotiations/{neg['id']}/messages", headers=auth_headers,
                json={"type": "offer", "amount": 40000})
    client.post("/api/negotiator/chat", headers=auth_headers, json={"caseId": cid, "message": "offer?"})

    assert client.delete(f"/api/cases/{cid}", headers=auth_headers).status_code == 200

    assert store.list_notes(cid) == []
    assert store.list_deadlines(cid) == []
    with store._db() as conn:
        for table in ("negotiations", "assistant_messages"):
            assert conn.execute(f"SELECT COUNT(*) FROM {table} WHERE case_id = ?", (cid,)).fetchone()[0] == 0
        orphans = conn.execute("SELECT COUNT(*) FROM negotiation_messages WHERE negotiation_id = ?",
                               (neg["id"],)).fetchone()[0]
    assert orphans == 0
    assert client.get(f"/api/negotiations/{neg['id']}", headers=auth_headers).status_code == 404

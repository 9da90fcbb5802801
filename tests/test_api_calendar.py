import pytest


def _event(client, headers, **overrides):
    body = {"title": "Client meeting", "startDate": "2030-01-10T10:00:00", "priority": "high"}
    body.update(overrides)
    return client.post("/api/calendar/events", headers=headers, json=body)


def test_end_defaults_to_start(client, auth_headers):
    resp = _event(client, auth_headers)
    assert resp.status_code == 201
    event = resp.json()["event"]
    assert event["endDate"] == event["startDate"] == "2030-01-10T10:00:00"
    assert event["eventType"] == "meeting"
    assert event["reminderMinutes"] == 15


def test_end_before_start_rejected(client, auth_headers):
    resp = _event(client, auth_headers, endDate="2030-01-09T10:00:00")
    assert resp.status_code == 400


def test_invalid_date_rejected(client, auth_headers):
    assert _event(client, auth_headers, startDate="next tuesday").status_code == 422


def test_event_linked_to_foreign_case(client, other_headers, case):
    assert _event(client, other_headers, caseId=case["id"]).status_code == 404


def test_list_search_and_type_filter(client, auth_headers):
    _event(client, auth_headers, title="Deposition of Dr. Kim", eventType="deposition")
    _event(client, auth_headers, title="Strategy call", description="Discuss deposition prep")
    _event(client, auth_headers, title="Lunch")

    found = client.get("/api/calendar/events", headers=auth_headers, params={"search": "DEPOSITION"}).json()
    assert sorted(e["title"] for e in found["events"]) == ["Deposition of Dr. Kim", "Strategy call"]

    typed = client.get("/api/calendar/events", headers=auth_headers, params={"type": "deposition"}).json()
    assert [e["title"] for e in typed["events"]] == ["Deposition of Dr. Kim"]
    assert typed["stats"]["totalEvents"] == 3
    assert typed["stats"]["highPriority"] == 3


def test_deadlines_appear_as_events(client, auth_headers, case):
    client.post(f"/api/cases/{case['id']}/deadlines", headers=auth_headers,
                json={"title": "File motion", "dueDate": "2030-01-15", "priority": "urgent"})
    events = client.get("/api/calendar/events", headers=auth_headers).json()["events"]
    [deadline] = [e for e in events if e["eventType"] == "deadline"]
    assert deadline["title"] == "File motion"
    assert deadline["priority"] == "high"
    assert deadline["caseId"] == case["id"]

    without = client.get("/api/calendar/events", headers=auth_headers,
                         params={"includeDeadlines": "false"}).json()["events"]
    assert without == []


def test_month_view(client, auth_headers):
    _event(client, auth_headers)
    view = client.get("/api/calendar/month/2030/1", headers=auth_headers).json()
    assert view["weeks"][0][:2] == [None, None]
    assert view["weeks"][0][2] == "2030-01-01"
    assert [e["title"] for e in view["events"]["2030-01-10"]] == ["Client meeting"]


def test_month_out_of_range(client, auth_headers):
    assert client.get("/api/calendar/month/2030/13", headers=auth_headers).status_code == 400


def test_update_and_delete(client, auth_headers, other_headers):
    event = _event(client, auth_headers).json()["event"]
    resp = client.put(f"/api/calendar/events/{event['id']}", headers=auth_headers,
                      json={"endDate": "2030-01-10T11:30:00", "location": "Suite 400"})
    assert resp.json()["event"]["location"] == "Suite 400"
    assert resp.json()["event"]["endDate"] == "2030-01-10T11:30:00"

    bad = client.put(f"/api/calendar/events/{event['id']}", headers=auth_headers,
                     json={"startDate": "2030-01-11T09:00:00"})
    assert bad.status_code == 400

    assert client.delete(f"/api/calendar/events/{event['id']}", headers=other_headers).status_code == 404
    assert client.delete(f"/api/calendar/events/{event['id']}", headers=auth_headers).status_code == 200


def test_upcoming(client, auth_headers):
    _event(client, auth_headers, title="Past", startDate="2001-01-01T09:00:00")
    _event(client, auth_headers, title="Later", startDate="2031-01-01T09:00:00")
    _event(client, auth_headers, title="Sooner", startDate="2030-06-01T09:00:00")
    upcoming = client.get("/api/calendar/upcoming", headers=auth_headers).json()["events"]
    assert [e["title"] for e in upcoming] == ["Sooner", "Later"]


def test_month_year_out_of_range(client, auth_headers):
    assert client.get("/api/calendar/month/0/1", headers=auth_headers).status_code == 422
    assert client.get("/api/calendar/month/10000/1", headers=auth_headers).status_code == 422


@pytest.mark.parametrize("field", ["title", "eventType", "priority", "reminderMinutes", "location"])
def test_update_event_rejects_null_for_required_field(client, auth_headers, field):
    event = _event(client, auth_headers).json()["event"]
    resp = client.put(f"/api/calendar/events/{event['id']}", headers=auth_headers, json={field: None})
    assert resp.status_code == 422


def test_update_event_null_case_unlinks(client, auth_headers, case):
    event = _event(client, auth_headers, caseId=case["id"]).json()["event"]
    resp = client.put(f"/api/calendar/events/{event['id']}", headers=auth_headers, json={"caseId": None})
    assert resp.status_code == 200
    assert resp.json()["event"]["caseId"] is None

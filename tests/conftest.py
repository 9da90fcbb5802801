import pytest
from fastapi.testclient import TestClient

from caseledger_api import app
from caseledger_store import Store, get_store


@pytest.fixture
def store(tmp_path):
    return Store(str(tmp_path / "caseledger.db"), str(tmp_path / "uploads"))


@pytest.fixture
def client(store):
    app.dependency_overrides[get_store] = lambda: store
    with TestClient(app) as c:
        yield c
    app.dependency_overrides.clear()


def register(client, email="attorney@example.com", password="secret123", **extra):
    payload = {
        "email": email,
        "password": password,
        "firstName": "Dana",
        "lastName": "Reyes",
        "firmName": "Reyes Injury Law",
    }
    payload.update(extra)
    resp = client.post("/api/auth/register", json=payload)
    assert resp.status_code == 201, resp.text
    return resp.json()


def bearer(token):
    return {"Authorization": f"Bearer {token}"}


@pytest.fixture
def account(client):
    return register(client)


@pytest.fixture
def auth_headers(account):
    return bearer(account["token"])


@pytest.fixture
def other_headers(client):
    return bearer(register(client, email="other@example.com")["token"])


@pytest.fixture
def case(client, auth_headers):
    resp = client.post("/api/cases", headers=auth_headers, json={
        "clientName": "Maria Lopez",
        "caseType": "auto_accident",
        "priority": "high",
        "incidentDate": "2025-03-10",
        "estimatedValue": 100000,
        "insuranceCompany": "Acme Mutual",
        "claimNumber": "AM-5521",
    })
    assert resp.status_code == 201, resp.text
    return resp.json()["case"]

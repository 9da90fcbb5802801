from datetime import datetime, timedelta

import jwt

from caseledger_config import config
from conftest import bearer, register


def test_register_returns_user_and_token(client):
    body = register(client, email="New.User@Example.com")
    assert body["user"]["email"] == "new.user@example.com"
    assert body["user"]["firmName"] == "Reyes Injury Law"
    assert "passwordHash" not in body["user"]
    assert body["token"]


def test_register_duplicate_email_conflicts(client, account):
    resp = client.post("/api/auth/register", json={
        "email": "attorney@example.com", "password": "another1",
        "firstName": "A", "lastName": "B",
    })
    assert resp.status_code == 409
    assert resp.json()["detail"]["code"] == "CONFLICT"


def test_register_short_password_rejected(client):
    resp = client.post("/api/auth/register", json={
        "email": "short@example.com", "password": "abc", "firstName": "A", "lastName": "B",
    })
    assert resp.status_code == 422


def test_login_and_me(client, account):
    resp = client.post("/api/auth/login", json={"email": "attorney@example.com", "password": "secret123"})
    assert resp.status_code == 200
    token = resp.json()["token"]
    me = client.get("/api/auth/me", headers=bearer(token))
    assert me.status_code == 200
    assert me.json()["user"]["lastLogin"] is not None


def test_login_wrong_password(client, account):
    resp = client.post("/api/auth/login", json={"email": "attorney@example.com", "password": "wrongpass"})
    assert resp.status_code == 401


def test_login_unknown_email(client):
    resp = client.post("/api/auth/login", json={"email": "nobody@example.com", "password": "secret123"})
    assert resp.status_code == 401


def test_login_disabled_account(client, store, account):
    with store._db() as conn:
        conn.execute("UPDATE users SET is_active = 0 WHERE id = ?", (account["user"]["id"],))
        conn.commit()
    resp = client.post("/api/auth/login", json={"email": "attorney@example.com", "password": "secret123"})
    assert resp.status_code == 401


def test_missing_header(client):
    resp = client.get("/api/auth/me")
    assert resp.status_code == 401
    assert resp.json()["detail"]["code"] == "UNAUTHORIZED"


def test_malformed_token(client):
    resp = client.get("/api/auth/me", headers=bearer("not-a-jwt"))
    assert resp.status_code == 401
    assert resp.json()["detail"]["code"] == "INVALID_TOKEN"


def test_expired_token(client, account):
    past = datetime.utcnow() - timedelta(days=1)
    token = jwt.encode(
        {"sub": account["user"]["id"], "email": "attorney@example.com", "exp": past},
        config.JWT_SECRET, algorithm=config.JWT_ALGORITHM,
    )
    resp = client.get("/api/auth/me", headers=bearer(token))
    assert resp.status_code == 401
    assert resp.json()["detail"]["code"] == "TOKEN_EXPIRED"


def test_logout_revokes_session(client, auth_headers):
    assert client.post("/api/auth/logout", headers=auth_headers).status_code == 200
    resp = client.get("/api/auth/me", headers=auth_headers)
    assert resp.status_code == 401
    assert resp.json()["detail"]["code"] == "INVALID_TOKEN"


def test_verify(client, account, auth_headers):
    resp = client.get("/api/auth/verify", headers=auth_headers)
    assert resp.json() == {"valid": True, "user": {"id": account["user"]["id"], "email": "attorney@example.com"}}


def test_update_profile(client, auth_headers):
    resp = client.put("/api/auth/profile", headers=auth_headers, json={"firmName": "Reyes & Co", "phone": "555-0100"})
    assert resp.status_code == 200
    assert resp.json()["user"]["firmName"] == "Reyes & Co"
    assert resp.json()["user"]["phone"] == "555-0100"


def test_update_profile_requires_a_field(client, auth_headers):
    resp = client.put("/api/auth/profile", headers=auth_headers, json={})
    assert resp.status_code == 400


def test_change_password_revokes_other_sessions(client, auth_headers):
    second = client.post("/api/auth/login", json={"email": "attorney@example.com", "password": "secret123"})
    second_headers = bearer(second.json()["token"])

    resp = client.put("/api/auth/password", headers=auth_headers, json={
        "currentPassword": "secret123", "newPassword": "newsecret456",
    })
    assert resp.status_code == 200
    assert resp.json()["sessionsRevoked"] == 1

    assert client.get("/api/auth/me", headers=auth_headers).status_code == 200
    assert client.get("/api/auth/me", headers=second_headers).status_code == 401
    relogin = client.post("/api/auth/login", json={"email": "attorney@example.com", "password": "newsecret456"})
    assert relogin.status_code == 200


def test_change_password_wrong_current(client, auth_headers):
    resp = client.put("/api/auth/password", headers=auth_headers, json={
        "currentPassword": "wrong-one", "newPassword": "newsecret456",
    })
    assert resp.status_code == 400


def test_admin_route_requires_admin(client, store, account, auth_headers):
    assert client.get("/api/users/admin/all", headers=auth_headers).status_code == 403

    with store._db() as conn:
        conn.execute("UPDATE users SET role = 'admin' WHERE id = ?", (account["user"]["id"],))
        conn.commit()
    resp = client.get("/api/users/admin/all", headers=auth_headers)
    assert resp.status_code == 200
    assert resp.json()["pagination"]["total"] == 1
    assert resp.json()["users"][0]["email"] == "attorney@example.com"


def test_update_profile_rejects_null_name(client, auth_headers):
    resp = client.put("/api/auth/profile", headers=auth_headers, json={"firstName": None})
    assert resp.status_code == 422
    assert client.get("/api/auth/me", headers=auth_headers).json()["user"]["firstName"] == "Dana"

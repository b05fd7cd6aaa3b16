from datetime import timedelta

from portal import models
from portal.auth import create_refresh_token

from conftest import PASSWORD, auth_headers, token_from


def _register(client, **overrides):
    body = {
        "full_name": "Riley Learner",
        "email": "riley@example.com",
        "password": "Secret123",
        "phone": "+919876543210",
        "user_type": "student",
    }
    body.update(overrides)
    return client.post("/api/auth/register", json=body)


def test_register_verify_and_login(client, outbox):
    r = _register(client)
    assert r.status_code == 201
    assert r.json()["success"] is True
    assert outbox[-1]["to"] == "riley@example.com"

    # unverified accounts cannot sign in
    r = client.post("/api/auth/login", json={"email": "riley@example.com", "password": "Secret123"})
    assert r.status_code == 401
    assert "verify" in r.json()["message"].lower()

    token = token_from(outbox[-1], "verify-email")
    r = client.get(f"/api/auth/verify-email/{token}")
    assert r.status_code == 200
    # one-shot: a second use fails
    assert client.get(f"/api/auth/verify-email/{token}").status_code == 400
    assert any("Welcome" in m["subject"] for m in outbox)

    r = client.post("/api/auth/login", json={"email": "RILEY@example.com", "password": "Secret123"})
    assert r.status_code == 200
    body = r.json()
    assert body["token"] and body["refresh_token"]
    assert "password_hash" not in body["user"]
    assert "email_verification_token" not in body["user"]

    me = client.get("/api/auth/me", headers={"Authorization": f"Bearer {body['token']}"})
    assert me.status_code == 200
    assert me.json()["data"]["email"] == "riley@example.com"


def test_register_rejects_duplicates_and_weak_passwords(client):
    assert _register(client).status_code == 201
    dup = _register(client, email="Riley@Example.com")
    assert dup.status_code == 400
    assert dup.json()["message"] == "Email is already registered"

    weak = _register(client, email="other@example.com", password="alllowercase1")
    assert weak.status_code == 400
    body = weak.json()
    assert body["message"] == "Validation failed"
    assert body["errors"][0]["field"] == "password"


def test_register_cannot_claim_admin(client):
    r = _register(client, user_type="admin")
    assert r.status_code == 400


def test_wrong_password_and_unknown_email_look_the_same(client, make_user):
    user = make_user()
    unknown = client.post("/api/auth/login", json={"email": "nobody@example.com", "password": PASSWORD})
    wrong = client.post("/api/auth/login", json={"email": user.email, "password": "Nope1234"})
    assert unknown.status_code == wrong.status_code == 401
    assert unknown.json()["message"] == wrong.json()["message"] == "Invalid credentials"


def test_lockout_after_five_failures(client, make_user, db):
    user = make_user()
    for _ in range(5):
        r = client.post("/api/auth/login", json={"email": user.email, "password": "Wrong1234"})
        assert r.status_code == 401

    # even the right password is refused while locked
    r = client.post("/api/auth/login", json={"email": user.email, "password": PASSWORD})
    assert r.status_code == 401
    assert "locked" in r.json()["message"]

    db.refresh(user)
    assert user.login_attempts == 6
    assert user.is_locked()

    # a locked identity is refused on protected routes too
    assert client.get("/api/auth/me", headers=auth_headers(user)).status_code == 401


def test_expired_lock_restarts_the_count(client, make_user, db):
    user = make_user(login_attempts=5, lock_until=models.utcnow() - timedelta(minutes=1))
    r = client.post("/api/auth/login", json={"email": user.email, "password": "Wrong1234"})
    assert r.status_code == 401
    db.refresh(user)
    assert user.login_attempts == 1
    assert user.lock_until is None


def test_successful_login_resets_attempts(client, make_user, db):
    user = make_user(login_attempts=3)
    r = client.post("/api/auth/login", json={"email": user.email, "password": PASSWORD})
    assert r.status_code == 200
    db.refresh(user)
    assert user.login_attempts == 0
    assert user.last_login is not None


def test_state_messages_only_after_password_match(client, make_user):
    user = make_user(is_blocked=True)
    wrong = client.post("/api/auth/login", json={"email": user.email, "password": "Wrong1234"})
    assert wrong.json()["message"] == "Invalid credentials"
    right = client.post("/api/auth/login", json={"email": user.email, "password": PASSWORD})
    assert right.status_code == 401
    assert right.json()["message"] == "User account is blocked"


def test_protected_route_token_failures(client, make_user):
    assert client.get("/api/auth/me").status_code == 401
    r = client.get("/api/auth/me", headers={"Authorization": "Bearer not-a-jwt"})
    assert r.status_code == 401
    assert r.json()["message"] == "Not authorized to access this route"

    user = make_user()
    # refresh tokens are not access tokens
    r = client.get("/api/auth/me", headers={"Authorization": f"Bearer {create_refresh_token(user)}"})
    assert r.status_code == 401


def test_deactivated_user_is_rejected(client, make_user):
    user = make_user(is_active=False)
    r = client.get("/api/auth/me", headers=auth_headers(user))
    assert r.status_code == 401
    assert r.json()["message"] == "User account is deactivated"


def test_refresh_issues_new_access_token(client, make_user):
    user = make_user()
    r = client.post("/api/auth/refresh", json={"refresh_token": create_refresh_token(user)})
    assert r.status_code == 200
    token = r.json()["token"]
    assert client.get("/api/auth/me", headers={"Authorization": f"Bearer {token}"}).status_code == 200


def test_password_reset_flow(client, make_user, outbox, db):
    user = make_user(login_attempts=5, lock_until=models.utcnow() + timedelta(hours=1))
    same = client.post("/api/auth/password-reset", json={"email": "ghost@example.com"})
    r = client.post("/api/auth/password-reset", json={"email": user.email})
    assert r.status_code == same.status_code == 200
    assert r.json()["message"] == same.json()["message"]
    assert len(outbox) == 1

    token = token_from(outbox[-1], "reset-password")
    r = client.post(f"/api/auth/reset-password/{token}", json={"new_password": "Brand9new"})
    assert r.status_code == 200
    assert client.post(f"/api/auth/reset-password/{token}", json={"new_password": "Again9new"}).status_code == 400

    db.refresh(user)
    assert not user.is_locked()
    r = client.post("/api/auth/login", json={"email": user.email, "password": "Brand9new"})
    assert r.status_code == 200


def test_change_password(client, make_user):
    user = make_user()
    headers = auth_headers(user)
    bad = client.put("/api/auth/password", json={"current_password": "Wrong1234", "new_password": "Fresh123"}, headers=headers)
    assert bad.status_code == 400
    ok = client.put("/api/auth/password", json={"current_password": PASSWORD, "new_password": "Fresh123"}, headers=headers)
    assert ok.status_code == 200
    r = client.post("/api/auth/login", json={"email": user.email, "password": "Fresh123"})
    assert r.status_code == 200


def test_auth_routes_are_rate_limited(client, monkeypatch):
    from portal.config import settings

    monkeypatch.setattr(settings, "RATE_LIMIT_MAX_REQUESTS", 2)
    for _ in range(2):
        client.post("/api/auth/login", json={"email": "x@example.com", "password": "Whatever1"})
    r = client.post("/api/auth/login", json={"email": "x@example.com", "password": "Whatever1"})
    assert r.status_code == 429
    assert int(r.headers["Retry-After"]) >= 1
    # other routes are unaffected
    assert client.get("/health").status_code == 200

from sqlmodel import Session

from portal.database import engine
from portal.services import NotificationService

from conftest import auth_headers


def _notify(user, **kwargs):
    with Session(engine) as session:
        return NotificationService(session).create_and_send(
            user.id, kwargs.pop("title", "Hello"), kwargs.pop("message", "World"), **kwargs
        ).id


def test_in_app_delivery_and_live_drain(client, student):
    nid = _notify(student)
    headers = auth_headers(student)
    data = client.get(f"/api/notifications/{nid}", headers=headers).json()["data"]
    assert data["status"] == "sent"
    assert data["channels"]["in_app"]["sent"] is True
    assert data["delivery_attempts"][0]["channel"] == "in_app"

    live = client.get("/api/notifications/live", headers=headers).json()["data"]
    assert [n["id"] for n in live] == [nid]
    # draining removes the pushes
    assert client.get("/api/notifications/live", headers=headers).json()["data"] == []


def test_email_channel_honours_preferences(client, make_user, outbox):
    opted_out = make_user(preferences={"email_notifications": False})
    nid = _notify(opted_out, channels={"in_app": False, "email": True})
    data = client.get(f"/api/notifications/{nid}", headers=auth_headers(opted_out)).json()["data"]
    assert data["status"] == "failed"
    assert data["delivery_attempts"][0]["error"] == "disabled by recipient preference"
    assert outbox == []

    opted_in = make_user()
    _notify(opted_in, title="Digest", channels={"email": True})
    assert outbox[-1]["to"] == opted_in.email


def test_unconfigured_channels_fail_without_blocking_others(client, student):
    nid = _notify(student, channels={"in_app": True, "sms": True})
    data = client.get(f"/api/notifications/{nid}", headers=auth_headers(student)).json()["data"]
    assert data["status"] == "sent"
    assert data["channels"]["sms"]["sent"] is False


def test_read_state_is_monotonic(client, student):
    first = _notify(student)
    _notify(student)
    headers = auth_headers(student)
    assert client.get("/api/notifications/unread-count", headers=headers).json()["data"]["unread_count"] == 2

    r = client.put(f"/api/notifications/{first}/read", headers=headers)
    read_at = r.json()["data"]["read_at"]
    assert r.json()["data"]["is_read"] is True
    again = client.put(f"/api/notifications/{first}/read", headers=headers).json()["data"]
    assert again["read_at"] == read_at

    r = client.put("/api/notifications/read-all", headers=headers)
    assert r.json()["data"]["updated"] == 1
    listing = client.get("/api/notifications", params={"is_read": "false"}, headers=headers).json()
    assert listing["data"] == []
    assert listing["unread_count"] == 0


def test_notifications_are_private(client, student, make_user):
    nid = _notify(student)
    stranger = make_user()
    assert client.get(f"/api/notifications/{nid}", headers=auth_headers(stranger)).status_code == 403
    assert client.delete(f"/api/notifications/{nid}", headers=auth_headers(stranger)).status_code == 403
    assert client.delete(f"/api/notifications/{nid}", headers=auth_headers(student)).status_code == 200
    assert client.get(f"/api/notifications/{nid}", headers=auth_headers(student)).status_code == 404


def test_admin_broadcast(client, admin, make_user):
    users = [make_user(), make_user(), make_user(is_active=False)]
    body = {"recipient_type": "all", "title": "Maintenance", "message": "Back soon"}
    assert client.post("/api/notifications", json=body, headers=auth_headers(users[0])).status_code == 403

    r = client.post("/api/notifications", json=body, headers=auth_headers(admin))
    assert r.status_code == 201
    result = r.json()["data"]
    # two active users plus the admin; the deactivated account is skipped
    assert result["recipients"] == 3
    assert result["sent"] == 3
    inbox = client.get("/api/notifications", headers=auth_headers(users[1])).json()["data"]
    assert inbox[0]["batch_id"] == result["batch_id"]


def test_single_recipient_needs_an_id(client, admin):
    r = client.post("/api/notifications", json={"title": "Hi", "message": "there"}, headers=auth_headers(admin))
    assert r.status_code == 400
    r = client.post("/api/notifications", json={"recipient_id": 9999, "title": "Hi", "message": "there"},
                    headers=auth_headers(admin))
    assert r.status_code == 404


def test_unknown_type_filter(client, student):
    r = client.get("/api/notifications", params={"type": "bogus"}, headers=auth_headers(student))
    assert r.status_code == 400

from portal import models

from conftest import auth_headers, course_payload, job_payload


def test_user_listing_is_admin_only(client, admin, make_user):
    make_user(user_type="employer", full_name="Casey Hiring")
    make_user(user_type="student")
    assert client.get("/api/users", headers=auth_headers(make_user())).status_code == 403

    r = client.get("/api/users", params={"user_type": "employer"}, headers=auth_headers(admin))
    body = r.json()
    assert [u["full_name"] for u in body["data"]] == ["Casey Hiring"]
    assert "password_hash" not in body["data"][0]

    r = client.get("/api/users", params={"search": "casey"}, headers=auth_headers(admin))
    assert r.json()["pagination"]["total_items"] == 1


def test_users_read_and_edit_themselves(client, make_user):
    me, other = make_user(), make_user()
    headers = auth_headers(me)
    assert client.get(f"/api/users/{me.id}", headers=headers).status_code == 200
    assert client.get(f"/api/users/{other.id}", headers=headers).status_code == 403

    r = client.put(f"/api/users/{me.id}", json={"skills": ["python"], "full_name": "New Name"}, headers=headers)
    assert r.json()["data"]["full_name"] == "New Name"
    assert client.put(f"/api/users/{me.id}", json={"role": "admin"}, headers=headers).status_code == 403


def test_only_super_admin_grants_super_admin(client, admin, make_user):
    target = make_user()
    r = client.put(f"/api/users/{target.id}", json={"role": "super_admin"}, headers=auth_headers(admin))
    assert r.status_code == 403
    root = make_user(role="super_admin", user_type="admin")
    r = client.put(f"/api/users/{target.id}", json={"role": "super_admin"}, headers=auth_headers(root))
    assert r.json()["data"]["role"] == "super_admin"


def test_unlock_and_deactivate(client, admin, make_user, db):
    locked = make_user(login_attempts=5, lock_until=models.utcnow().replace(year=2999))
    r = client.post(f"/api/users/{locked.id}/unlock", headers=auth_headers(admin))
    assert r.json()["data"]["is_locked"] is False

    assert client.delete(f"/api/users/{admin.id}", headers=auth_headers(admin)).status_code == 400
    assert client.delete(f"/api/users/{locked.id}", headers=auth_headers(admin)).status_code == 200
    db.refresh(locked)
    assert locked.is_active is False


def test_overview_and_reconcile(client, admin, instructor, employer, jobseeker, db):
    client.post("/api/courses", json=course_payload(), headers=auth_headers(instructor))
    job = client.post("/api/jobs", json=job_payload(), headers=auth_headers(employer)).json()["data"]
    client.post("/api/applications", json={"job_id": job["id"]}, headers=auth_headers(jobseeker))

    analyst = auth_headers(instructor)
    assert client.get("/api/analytics/overview", headers=analyst).status_code == 403
    data = client.get("/api/analytics/overview", headers=auth_headers(admin)).json()["data"]
    assert data["users"]["by_type"]["employer"] == 2
    assert data["applications"]["submitted"] == 1

    # drift the counter, then let reconcile restore it
    stored = db.get(models.Job, job["id"])
    stored.current_applications = 7
    db.add(stored)
    db.commit()
    assert client.post("/api/analytics/reconcile", headers=auth_headers(employer)).status_code == 403
    result = client.post("/api/analytics/reconcile", headers=auth_headers(admin)).json()["data"]
    assert result["corrected"] == 1
    assert result["changes"][0] == {"entity": "job", "id": job["id"], "field": "current_applications", "before": 7, "after": 1}
    db.refresh(stored)
    assert stored.current_applications == 1

from portal import models

from conftest import auth_headers, course_payload


def _paid_course(client, instructor, **overrides):
    body = course_payload(pricing_type="paid", price_amount=1000, **overrides)
    r = client.post("/api/courses", json=body, headers=auth_headers(instructor))
    assert r.status_code == 201, r.text
    return r.json()["data"]


def _pay(client, user, course_id, **extra):
    body = {
        "payment_type": "course_enrollment",
        "entity_type": "Course",
        "entity_id": course_id,
        "payment_method": "upi",
        "payment_gateway": "razorpay",
        **extra,
    }
    return client.post("/api/payments", json=body, headers=auth_headers(user))


def _set_status(client, actor, payment_id, status):
    return client.put(f"/api/payments/{payment_id}/status", json={"status": status}, headers=auth_headers(actor))


def _complete(client, actor, payment_id):
    assert _set_status(client, actor, payment_id, "processing").status_code == 200
    r = _set_status(client, actor, payment_id, "completed")
    assert r.status_code == 200, r.text
    return r


def test_course_payment_uses_course_price(client, instructor, student):
    course = _paid_course(client, instructor, discount_percentage=10)
    r = _pay(client, student, course["id"], amount_original=1, amount_tax=18)
    assert r.status_code == 201
    payment = r.json()["data"]
    assert payment["amount_original"] == 1000
    assert payment["amount_discount"] == 100
    assert payment["amount_final"] == 918
    assert payment["status"] == "pending"
    assert payment["transaction_id"].startswith("TXN")
    assert payment["invoice_number"].startswith("INV-")


def test_free_course_cannot_be_paid_for(client, instructor, student):
    r = client.post("/api/courses", json=course_payload(), headers=auth_headers(instructor))
    assert _pay(client, student, r.json()["data"]["id"]).status_code == 400


def test_status_changes_need_manage_payments(client, instructor, student, make_user):
    course = _paid_course(client, instructor)
    payment = _pay(client, student, course["id"]).json()["data"]
    assert _set_status(client, student, payment["id"], "completed").status_code == 403
    clerk = make_user(permissions=["manage_payments"])
    assert _set_status(client, clerk, payment["id"], "processing").status_code == 200


def test_completion_links_enrollment_and_notifies(client, instructor, student, admin, db):
    course = _paid_course(client, instructor)
    enrollment = client.post(f"/api/courses/{course['id']}/enroll", headers=auth_headers(student)).json()["data"]
    assert enrollment["payment"]["status"] == "pending"

    payment = _pay(client, student, course["id"]).json()["data"]
    r = _complete(client, admin, payment["id"])
    data = r.json()["data"]
    assert data["status"] == "completed"
    assert data["completed_at"] is not None
    assert data["amount_final"] == 1000

    stored = db.get(models.Enrollment, enrollment["id"])
    assert stored.payment["status"] == "completed"
    assert stored.payment["payment_id"] == payment["id"]
    titles = [n["title"] for n in client.get("/api/notifications", headers=auth_headers(student)).json()["data"]]
    assert "Payment successful" in titles


def test_invalid_status_transition(client, instructor, student, admin):
    course = _paid_course(client, instructor)
    payment = _pay(client, student, course["id"]).json()["data"]
    assert _set_status(client, admin, payment["id"], "completed").status_code == 400
    assert _set_status(client, admin, payment["id"], "failed").status_code == 200
    assert _set_status(client, admin, payment["id"], "completed").status_code == 400


def test_refunds_respect_the_ceiling(client, instructor, student, admin):
    course = _paid_course(client, instructor)
    payment = _pay(client, student, course["id"]).json()["data"]
    pid = payment["id"]

    early = client.post(f"/api/payments/{pid}/refunds", json={"amount": 10}, headers=auth_headers(student))
    assert early.status_code == 400
    _complete(client, admin, pid)

    too_much = client.post(f"/api/payments/{pid}/refunds", json={"amount": 1500}, headers=auth_headers(student))
    assert too_much.status_code == 400

    first = client.post(f"/api/payments/{pid}/refunds", json={"amount": 600, "reason": "partial"}, headers=auth_headers(student))
    second = client.post(f"/api/payments/{pid}/refunds", json={"amount": 600}, headers=auth_headers(student))
    assert first.status_code == second.status_code == 201
    first_id, second_id = first.json()["data"]["id"], second.json()["data"]["id"]

    # only staff process refunds
    url = f"/api/payments/{pid}/refunds/{first_id}"
    assert client.put(url, json={"status": "completed"}, headers=auth_headers(student)).status_code == 403
    assert client.put(url, json={"status": "completed"}, headers=auth_headers(admin)).status_code == 200
    data = client.get(f"/api/payments/{pid}", headers=auth_headers(student)).json()["data"]
    assert data["status"] == "partially_refunded"
    assert data["total_refunded"] == 600
    assert data["net_amount"] == 400

    # completing the second would refund more than was paid
    r = client.put(f"/api/payments/{pid}/refunds/{second_id}", json={"status": "completed"}, headers=auth_headers(admin))
    assert r.status_code == 400


def test_full_refund_marks_payment_refunded(client, instructor, student, admin):
    course = _paid_course(client, instructor)
    pid = _pay(client, student, course["id"]).json()["data"]["id"]
    _complete(client, admin, pid)
    refund_id = client.post(f"/api/payments/{pid}/refunds", json={"amount": 1000}, headers=auth_headers(student)).json()["data"]["id"]
    client.put(f"/api/payments/{pid}/refunds/{refund_id}", json={"status": "processing"}, headers=auth_headers(admin))
    client.put(f"/api/payments/{pid}/refunds/{refund_id}", json={"status": "completed"}, headers=auth_headers(admin))
    data = client.get(f"/api/payments/{pid}", headers=auth_headers(admin)).json()["data"]
    assert data["status"] == "refunded"
    assert data["net_amount"] == 0


def test_payment_visibility_and_report(client, instructor, student, make_user, admin):
    course = _paid_course(client, instructor)
    pid = _pay(client, student, course["id"]).json()["data"]["id"]
    other = make_user()
    _pay(client, other, course["id"])

    assert client.get(f"/api/payments/{pid}", headers=auth_headers(other)).status_code == 403
    mine = client.get("/api/payments", headers=auth_headers(student)).json()
    assert mine["pagination"]["total_items"] == 1
    everyone = client.get("/api/payments", headers=auth_headers(admin)).json()
    assert everyone["pagination"]["total_items"] == 2

    assert client.get("/api/payments/report", headers=auth_headers(student)).status_code == 403
    analyst = make_user(permissions=["view_analytics"])
    report = client.get("/api/payments/report", headers=auth_headers(analyst)).json()["data"]
    assert report["total_count"] == 2
    assert report["items"][0]["status"] == "pending"

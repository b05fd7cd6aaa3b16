from datetime import timedelta

from portal import models

from conftest import auth_headers, job_payload


def _post_job(client, employer, **overrides):
    r = client.post("/api/jobs", json=job_payload(**overrides), headers=auth_headers(employer))
    assert r.status_code == 201, r.text
    return r.json()["data"]


def _apply(client, applicant, job_id, **extra):
    return client.post("/api/applications", json={"job_id": job_id, **extra}, headers=auth_headers(applicant))


def test_only_employers_post_jobs(client, employer, jobseeker):
    assert client.post("/api/jobs", json=job_payload(), headers=auth_headers(jobseeker)).status_code == 403
    job = _post_job(client, employer)
    assert job["slug"].startswith("backend-engineer-")
    assert job["employer_id"] == employer.id


def test_job_validation(client, employer):
    r = client.post("/api/jobs", json=job_payload(experience_min=5, experience_max=2), headers=auth_headers(employer))
    assert r.status_code == 400
    r = client.post("/api/jobs", json=job_payload(salary_min=100, salary_max=10), headers=auth_headers(employer))
    assert r.status_code == 400


def test_public_listing_hides_closed_and_expired(client, employer):
    _post_job(client, employer)
    _post_job(client, employer, title="Paused Role", status="paused")
    _post_job(client, employer, title="Old Posting", application_deadline=(models.utcnow() - timedelta(days=1)).isoformat())
    titles = [j["title"] for j in client.get("/api/jobs").json()["data"]]
    assert titles == ["Backend Engineer"]


def test_listing_filters(client, employer):
    _post_job(client, employer, skills_required=["go"], work_mode="hybrid", location_city="Berlin")
    _post_job(client, employer, title="Data Engineer", skills_required=["python", "spark"])
    r = client.get("/api/jobs", params={"skills": "python"})
    assert [j["title"] for j in r.json()["data"]] == ["Data Engineer"]
    r = client.get("/api/jobs", params={"location": "berl"})
    assert [j["location_city"] for j in r.json()["data"]] == ["Berlin"]
    # LIKE wildcards in a search term match literally
    assert client.get("/api/jobs", params={"search": "%"}).json()["data"] == []


def test_view_counts_and_internal_notes(client, employer, jobseeker):
    job = _post_job(client, employer, internal_notes="budget approved")
    public = client.get(f"/api/jobs/{job['id']}", headers=auth_headers(jobseeker)).json()["data"]
    assert "internal_notes" not in public
    owner = client.get(f"/api/jobs/{job['id']}", headers=auth_headers(employer)).json()["data"]
    assert owner["internal_notes"] == "budget approved"
    assert owner["stats_views"] == 2


def test_apply_and_duplicate(client, employer, jobseeker, outbox, db):
    job = _post_job(client, employer)
    r = _apply(client, jobseeker, job["id"], cover_letter="Hello")
    assert r.status_code == 201
    data = r.json()["data"]
    assert data["status"] == "submitted"
    assert data["status_history"] == []
    assert "internal_notes" not in data
    assert any(m["to"] == jobseeker.email for m in outbox)

    dup = _apply(client, jobseeker, job["id"])
    assert dup.status_code == 400
    stored = db.get(models.Job, job["id"])
    assert stored.current_applications == 1
    assert stored.stats_applications == 1


def test_employer_cannot_apply(client, employer):
    job = _post_job(client, employer)
    assert _apply(client, employer, job["id"]).status_code == 403


def test_required_screening_questions(client, employer, jobseeker):
    job = _post_job(client, employer, screening_questions=[{"question": "Notice period?", "type": "text"}])
    qid = job["screening_questions"][0]["id"]
    assert job["screening_questions"][0]["is_required"] is True
    missing = _apply(client, jobseeker, job["id"])
    assert missing.status_code == 400
    assert missing.json()["errors"][0]["field"] == f"screening_responses.{qid}"
    ok = _apply(client, jobseeker, job["id"], screening_responses=[{"question_id": qid, "answer": "30 days"}])
    assert ok.status_code == 201
    assert ok.json()["data"]["screening_responses"][0]["question"] == "Notice period?"


def test_optional_screening_questions_may_be_skipped(client, employer, jobseeker):
    questions = [
        {"question": "Portfolio link?", "type": "text", "is_required": False},
        {"question": "Can you relocate?", "type": "yes_no", "options": ["yes", "no"]},
    ]
    job = _post_job(client, employer, screening_questions=questions)
    stored = job["screening_questions"]
    assert [q["is_required"] for q in stored] == [False, True]
    assert stored[1]["options"] == ["yes", "no"]

    skipped_required = _apply(client, jobseeker, job["id"], screening_responses=[{"question_id": stored[0]["id"], "answer": "x"}])
    assert skipped_required.status_code == 400
    r = _apply(client, jobseeker, job["id"], screening_responses=[{"question_id": stored[1]["id"], "answer": "yes"}])
    assert r.status_code == 201, r.text


def test_capacity_limit(client, employer, make_user):
    job = _post_job(client, employer, max_applications=1)
    assert _apply(client, make_user(user_type="jobseeker"), job["id"]).status_code == 201
    r = _apply(client, make_user(user_type="jobseeker"), job["id"])
    assert r.status_code == 400
    assert r.json()["message"] == "Application limit reached for this job"


def test_status_pipeline_and_history(client, employer, jobseeker, db):
    job = _post_job(client, employer)
    app_id = _apply(client, jobseeker, job["id"]).json()["data"]["id"]
    url = f"/api/applications/{app_id}"
    headers = auth_headers(employer)

    r = client.put(url, json={"status": "shortlisted", "reason": "Strong CV"}, headers=headers)
    assert r.status_code == 200
    history = r.json()["data"]["status_history"]
    assert [h["status"] for h in history] == ["shortlisted"]
    assert history[0]["changed_by"] == employer.id

    # backwards moves are refused
    assert client.put(url, json={"status": "under_review"}, headers=headers).status_code == 400
    # on_hold can resume anywhere in the pipeline
    client.put(url, json={"status": "on_hold"}, headers=headers)
    r = client.put(url, json={"status": "screening"}, headers=headers)
    assert r.status_code == 200
    client.put(url, json={"status": "selected"}, headers=headers)
    assert client.put(url, json={"status": "rejected"}, headers=headers).status_code == 400

    stored = db.get(models.Job, job["id"])
    assert stored.stats_shortlisted == 1
    assert stored.stats_hired == 1


def test_update_field_allow_lists(client, employer, jobseeker):
    job = _post_job(client, employer)
    app_id = _apply(client, jobseeker, job["id"]).json()["data"]["id"]
    url = f"/api/applications/{app_id}"

    r = client.put(url, json={"status": "shortlisted"}, headers=auth_headers(jobseeker))
    assert r.status_code == 403
    r = client.put(url, json={"cover_letter": "Updated"}, headers=auth_headers(employer))
    assert r.status_code == 403
    r = client.put(url, json={"notes": "orphan note"}, headers=auth_headers(employer))
    assert r.status_code == 400

    r = client.put(url, json={"evaluation": {"technical_score": 80, "experience_score": 60, "skills_match": 50}},
                   headers=auth_headers(employer))
    assert r.json()["data"]["evaluation"]["overall_score"] == 49


def test_withdraw_and_reapply(client, employer, jobseeker, db):
    job = _post_job(client, employer, max_applications=1)
    app_id = _apply(client, jobseeker, job["id"]).json()["data"]["id"]
    r = client.put(f"/api/applications/{app_id}", json={"withdrawal": {"reason": "Took another offer"}},
                   headers=auth_headers(jobseeker))
    assert r.json()["data"]["status"] == "withdrawn"

    # the job is at capacity, but a reapplication replaces the old row
    again = _apply(client, jobseeker, job["id"])
    assert again.status_code == 201
    assert again.json()["data"]["status"] == "submitted"
    assert db.get(models.Job, job["id"]).current_applications == 1


def test_interview_schedule_and_complete(client, employer, jobseeker):
    job = _post_job(client, employer)
    app_id = _apply(client, jobseeker, job["id"]).json()["data"]["id"]
    headers = auth_headers(employer)
    client.put(f"/api/applications/{app_id}", json={"status": "shortlisted"}, headers=headers)

    when = (models.utcnow() + timedelta(days=2)).isoformat()
    assert client.post(f"/api/applications/{app_id}/schedule-interview", json={"type": "video", "scheduled_date": when},
                       headers=auth_headers(jobseeker)).status_code == 403
    r = client.post(f"/api/applications/{app_id}/schedule-interview", json={"type": "video", "scheduled_date": when},
                    headers=headers)
    assert r.status_code == 201
    interview_id = r.json()["data"]["id"]
    assert (r.json()["data"]["type"], r.json()["data"]["status"]) == ("video", "scheduled")
    data = client.get(f"/api/applications/{app_id}", headers=headers).json()["data"]
    assert data["status"] == "interview_scheduled"

    url = f"/api/applications/{app_id}/interviews/{interview_id}"
    early = client.put(url, json={"feedback": {"rating": 8}}, headers=headers)
    assert early.status_code == 400
    r = client.put(url, json={"status": "completed", "feedback": {"rating": 8, "recommendation": "hire"}}, headers=headers)
    assert r.status_code == 200
    assert r.json()["data"]["feedback"]["recommendation"] == "hire"
    data = client.get(f"/api/applications/{app_id}", headers=headers).json()["data"]
    assert data["status"] == "interviewed"


def test_offer_and_response(client, employer, jobseeker):
    job = _post_job(client, employer)
    app_id = _apply(client, jobseeker, job["id"]).json()["data"]["id"]
    url = f"/api/applications/{app_id}"
    assert client.post(f"{url}/offer-response", json={"status": "accepted"}, headers=auth_headers(jobseeker)).status_code == 400

    client.put(url, json={"offer": {"salary": {"amount": 80000, "currency": "INR"}}}, headers=auth_headers(employer))
    assert client.post(f"{url}/offer-response", json={"status": "accepted"}, headers=auth_headers(employer)).status_code == 403
    r = client.post(f"{url}/offer-response", json={"status": "accepted"}, headers=auth_headers(jobseeker))
    assert r.json()["data"]["offer"]["response"]["status"] == "accepted"
    assert client.post(f"{url}/offer-response", json={"status": "rejected"}, headers=auth_headers(jobseeker)).status_code == 400


def test_listing_scopes(client, employer, jobseeker, make_user):
    job = _post_job(client, employer)
    _apply(client, jobseeker, job["id"])
    _apply(client, make_user(user_type="jobseeker"), job["id"])

    own = client.get("/api/applications", headers=auth_headers(jobseeker)).json()
    assert own["pagination"]["total_items"] == 1
    received = client.get("/api/applications", headers=auth_headers(employer)).json()
    assert received["pagination"]["total_items"] == 2
    stats = client.get(f"/api/jobs/{job['id']}/applications/stats", headers=auth_headers(employer)).json()["data"]
    assert stats["by_status"]["submitted"] == 2
    assert client.get(f"/api/jobs/{job['id']}/applications", headers=auth_headers(jobseeker)).status_code == 403


def test_delete_application_decrements_counters(client, employer, jobseeker, db):
    job = _post_job(client, employer)
    app_id = _apply(client, jobseeker, job["id"]).json()["data"]["id"]
    assert client.delete(f"/api/applications/{app_id}", headers=auth_headers(employer)).status_code == 403
    assert client.delete(f"/api/applications/{app_id}", headers=auth_headers(jobseeker)).status_code == 200
    stored = db.get(models.Job, job["id"])
    assert stored.current_applications == 0
    assert stored.stats_applications == 0


def test_delete_job_with_applications_closes_it(client, employer, jobseeker, db):
    job = _post_job(client, employer)
    _apply(client, jobseeker, job["id"])
    client.delete(f"/api/jobs/{job['id']}", headers=auth_headers(employer))
    assert db.get(models.Job, job["id"]).status == "closed"
    # closed jobs read as missing to the public
    assert client.get(f"/api/jobs/{job['id']}").status_code == 404

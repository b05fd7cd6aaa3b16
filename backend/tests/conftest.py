"""Shared fixtures: a throw-away SQLite file, upload dir and console mailer.

Environment variables are set before `portal` is imported so that the
engine and settings pick them up.
"""

import itertools
import os
import re
import tempfile
from pathlib import Path

import pytest

_TMP = Path(tempfile.mkdtemp(prefix="portal-tests-"))
os.environ["ENV"] = "test"
os.environ["DATABASE_URL"] = f"sqlite:///{_TMP / 'test.db'}"
os.environ["UPLOAD_DIR"] = str(_TMP / "uploads")
os.environ["MAIL_BACKEND"] = "console"
os.environ["RATE_LIMIT_MAX_REQUESTS"] = "10000"
os.environ["FRONTEND_URL"] = "http://frontend.test"

from fastapi.testclient import TestClient  # noqa: E402
from sqlmodel import Session  # noqa: E402

from portal import models  # noqa: E402
from portal.auth import create_access_token, hash_password  # noqa: E402
from portal.database import create_db_and_tables, drop_db_and_tables, engine  # noqa: E402
from portal.main import app, rate_limiter  # noqa: E402
from portal.utils.mailer import get_mailer  # noqa: E402
from portal.utils.push import push_hub  # noqa: E402

PASSWORD = "Passw0rd"
_emails = itertools.count(1)

LONG_DESCRIPTION = (
    "A hands-on course that walks through the fundamentals step by step, "
    "with exercises after every lesson."
)
JOB_DESCRIPTION = (
    "We are looking for an engineer to build and operate our backend services. "
    "You will own features end to end, from design to production support."
)


@pytest.fixture(autouse=True)
def reset_state():
    """Fresh tables, empty outbox, empty push queues and rate-limit windows per test."""
    drop_db_and_tables()
    create_db_and_tables()
    push_hub.clear()
    get_mailer().clear()
    rate_limiter.reset()
    yield


@pytest.fixture
def client():
    return TestClient(app)


@pytest.fixture
def db():
    with Session(engine) as session:
        yield session


@pytest.fixture
def outbox():
    return get_mailer().outbox


@pytest.fixture
def make_user(db):
    """Factory for verified users; keyword arguments override model fields."""
    def _make(user_type="student", role="user", permissions=None, password=PASSWORD, **fields):
        n = next(_emails)
        user = models.User(
            full_name=fields.pop("full_name", f"Test User {n}"),
            email=fields.pop("email", f"user{n}@example.com"),
            password_hash=hash_password(password),
            phone=fields.pop("phone", "+15550000000"),
            user_type=user_type,
            role=role,
            permissions=permissions or [],
            is_email_verified=fields.pop("is_email_verified", True),
            **fields,
        )
        db.add(user)
        db.commit()
        db.refresh(user)
        return user
    return _make


def auth_headers(user):
    return {"Authorization": f"Bearer {create_access_token(user)}"}


def token_from(mail: dict, kind: str) -> str:
    """Pull the raw one-shot token out of a verification or reset e-mail."""
    match = re.search(rf"/{kind}/([0-9a-f]+)", mail["html"])
    assert match, f"no {kind} link in {mail['subject']!r}"
    return match.group(1)


def course_payload(**overrides):
    payload = {
        "title": "Python From Scratch",
        "description": LONG_DESCRIPTION,
        "category": "web-development",
        "level": "beginner",
        "duration_hours": 8,
        "duration_weeks": 2,
        "pricing_type": "free",
        "status": "published",
        "modules": [
            {
                "title": "Basics",
                "order": 1,
                "lessons": [
                    {"title": "Variables", "type": "video", "order": 1, "duration": 10},
                    {"title": "Loops", "type": "text", "order": 2, "duration": 15},
                ],
            },
        ],
    }
    payload.update(overrides)
    return payload


def job_payload(**overrides):
    payload = {
        "title": "Backend Engineer",
        "description": JOB_DESCRIPTION,
        "department": "Engineering",
        "category": "engineering",
        "job_type": "full-time",
        "work_mode": "remote",
        "location_city": "Pune",
        "experience_min": 1,
        "experience_max": 4,
        "experience_level": "mid",
        "skills_required": ["python", "sql"],
        "salary_min": 50000,
        "salary_max": 90000,
        "status": "active",
    }
    payload.update(overrides)
    return payload


@pytest.fixture
def instructor(make_user):
    return make_user(user_type="employer", permissions=["manage_courses"], full_name="Ivy Instructor")


@pytest.fixture
def student(make_user):
    return make_user(user_type="student", full_name="Sam Student")


@pytest.fixture
def employer(make_user):
    return make_user(user_type="employer", full_name="Erin Employer", company={"name": "Acme"})


@pytest.fixture
def jobseeker(make_user):
    return make_user(user_type="jobseeker", full_name="Jo Seeker")


@pytest.fixture
def admin(make_user):
    return make_user(user_type="admin", role="admin", full_name="Ada Admin")

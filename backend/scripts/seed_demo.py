"""CLI script to seed demo accounts, a published course and an open job.

Usage: python scripts/seed_demo.py [--password PASSWORD]
"""
import argparse
import pathlib
import sys

# Ensure `backend/` is on sys.path so `portal` imports work when running this script directly
ROOT = pathlib.Path(__file__).resolve().parents[1]
if str(ROOT) not in sys.path:
    sys.path.insert(0, str(ROOT))

from sqlmodel import Session  # noqa: E402

from portal import models, repositories  # noqa: E402
from portal.auth import hash_password  # noqa: E402
from portal.database import create_db_and_tables, engine  # noqa: E402
from portal.schemas import CourseCreate, JobCreate  # noqa: E402
from portal.services import CourseService, JobService  # noqa: E402

DEMO_USERS = [
    # key, full name, user type, role, permissions
    ("admin", "Demo Admin", "admin", "admin", []),
    ("instructor", "Demo Instructor", "employer", "user", ["manage_courses"]),
    ("employer", "Demo Employer", "employer", "user", []),
    ("student", "Demo Student", "student", "user", []),
    ("jobseeker", "Demo Jobseeker", "jobseeker", "user", []),
]

DEMO_COURSE = {
    "title": "Practical Python for Beginners",
    "description": "Learn Python by building small tools: variables, loops, functions and files, "
                   "with a short quiz at the end of every module.",
    "category": "web-development",
    "level": "beginner",
    "duration_hours": 12,
    "duration_weeks": 4,
    "pricing_type": "free",
    "status": "published",
    "modules": [
        {"title": "Getting started", "order": 1, "lessons": [
            {"title": "Installing Python", "type": "video", "order": 1, "duration": 8},
            {"title": "Your first script", "type": "text", "order": 2, "duration": 12},
        ]},
        {"title": "Control flow", "order": 2, "lessons": [
            {"title": "Conditionals", "type": "video", "order": 1, "duration": 15},
            {"title": "Loops", "type": "video", "order": 2, "duration": 15},
        ]},
    ],
    "quizzes": [{"title": "Basics check", "questions": [
        {"question": "Which keyword defines a function?", "type": "short_answer", "correct_answer": "def"},
        {"question": "Lists are mutable.", "type": "true_false", "correct_answer": "true"},
    ]}],
}

DEMO_JOB = {
    "title": "Junior Backend Developer",
    "description": "Join a small product team building REST APIs in Python. You will write endpoints, "
                   "tests and migrations, and pair with senior engineers on code review.",
    "department": "Engineering",
    "category": "engineering",
    "job_type": "full-time",
    "work_mode": "hybrid",
    "location_city": "Bengaluru",
    "experience_min": 0,
    "experience_max": 2,
    "experience_level": "entry",
    "skills_required": ["python", "sql", "git"],
    "salary_min": 400000,
    "salary_max": 700000,
    "status": "active",
    "screening_questions": [{"question": "Earliest start date?", "type": "text"}],
}


def main(password: str):
    """Create the demo rows; existing accounts are reused so reruns are safe."""
    create_db_and_tables()
    with Session(engine) as session:
        users = repositories.UserRepository(session)
        accounts = {}
        for key, full_name, user_type, role, permissions in DEMO_USERS:
            email = f"{key}@demo.local"
            user = users.get_by_email(email)
            if user is None:
                user = models.User(
                    full_name=full_name,
                    email=email,
                    password_hash=hash_password(password),
                    phone="+919800000000",
                    user_type=user_type,
                    role=role,
                    permissions=permissions,
                    is_email_verified=True,
                    registration_source="seed",
                )
                users.save(user)
                print(f"Created {user_type} {email}")
            else:
                print(f"Exists  {user_type} {email}")
            accounts[key] = user

        courses = repositories.CourseRepository(session)
        if courses.get_by_slug("practical-python-for-beginners") is None:
            course = CourseService(session).create(accounts["instructor"], CourseCreate(**DEMO_COURSE))
            print(f"Created course {course.id}: {course.title}")
        else:
            print("Demo course already present")

        if not any(j.title == DEMO_JOB["title"] for j in repositories.JobRepository(session).all()):
            job = JobService(session).create(accounts["employer"], JobCreate(**DEMO_JOB))
            print(f"Created job {job.id}: {job.title}")
        else:
            print("Demo job already present")
    print(f"Done. All demo accounts use the password {password!r}.")


if __name__ == '__main__':
    parser = argparse.ArgumentParser()
    parser.add_argument('--password', default='Demo1234', help='Password for every demo account')
    args = parser.parse_args()
    main(password=args.password)

"""Turn ORM rows into the plain dicts returned in the response envelope.

Secrets never leave through here: `public_user` drops the password hash
and both one-shot token hashes with their expiries.
"""

from typing import Optional

from . import models

_USER_PRIVATE = {
    "password_hash",
    "email_verification_token",
    "email_verification_expire",
    "reset_password_token",
    "reset_password_expire",
}


def public_user(user: models.User) -> dict:
    data = user.model_dump(exclude=_USER_PRIVATE)
    data["is_locked"] = user.is_locked()
    return data


def _strip_answers(quizzes):
    out = []
    for quiz in quizzes or []:
        quiz = dict(quiz)
        quiz["questions"] = [
            {k: v for k, v in q.items() if k not in ("correct_answer", "explanation")}
            for q in quiz.get("questions") or []
        ]
        out.append(quiz)
    return out


def course_out(course: models.Course, include_answers: bool = False) -> dict:
    data = course.model_dump()
    data["total_lessons"] = course.total_lessons
    data["total_duration"] = course.total_duration
    if not include_answers:
        data["quizzes"] = _strip_answers(course.quizzes)
    return data


def course_summary(course: models.Course) -> dict:
    return {
        "id": course.id,
        "title": course.title,
        "slug": course.slug,
        "category": course.category,
        "level": course.level,
        "thumbnail": course.thumbnail,
        "pricing_type": course.pricing_type,
        "price_amount": course.price_amount,
        "currency": course.currency,
        "average_rating": course.average_rating,
        "total_enrollments": course.total_enrollments,
    }


def quiz_progress_out(progress: models.QuizProgress) -> dict:
    data = progress.model_dump(exclude={"enrollment_id"})
    data["attempts"] = [a.model_dump(exclude={"quiz_progress_id"}) for a in progress.attempts]
    return data


def enrollment_out(enrollment: models.Enrollment, detailed: bool = True) -> dict:
    data = enrollment.model_dump()
    data["completed_lessons"] = [
        {"lesson_id": c.lesson_id, "completed_at": c.completed_at, "time_spent": c.time_spent}
        for c in enrollment.completed_lessons
    ]
    if detailed:
        data["quiz_progress"] = [quiz_progress_out(p) for p in enrollment.quiz_progress]
        data["submissions"] = [s.model_dump() for s in enrollment.submissions]
    return data


def job_out(job: models.Job, include_internal: bool = False) -> dict:
    data = job.model_dump()
    if not include_internal:
        data.pop("internal_notes", None)
    data["is_open"] = job.closed_reason() is None
    return data


def job_summary(job: Optional[models.Job]) -> Optional[dict]:
    if job is None:
        return None
    return {
        "id": job.id,
        "title": job.title,
        "company": job.company,
        "location_city": job.location_city,
        "job_type": job.job_type,
        "status": job.status,
    }


def application_out(application: models.Application, include_internal: bool = True) -> dict:
    data = application.model_dump()
    data["status_history"] = [h.model_dump(exclude={"application_id"}) for h in application.status_history]
    data["interviews"] = [i.model_dump(exclude={"application_id"}) for i in application.interviews]
    if not include_internal:
        for key in ("internal_notes", "evaluation", "tags", "priority"):
            data.pop(key, None)
    return data


def payment_out(payment: models.Payment) -> dict:
    data = payment.model_dump()
    data["refunds"] = [r.model_dump(exclude={"payment_id"}) for r in payment.refunds]
    data["total_refunded"] = payment.total_refunded
    data["net_amount"] = payment.net_amount
    return data


def notification_out(notification: models.Notification) -> dict:
    data = notification.model_dump()
    data["delivery_status"] = notification.delivery_status
    return data


def file_out(stored: models.StoredFile) -> dict:
    return stored.model_dump(exclude={"path"})

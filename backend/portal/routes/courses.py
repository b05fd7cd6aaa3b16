"""Course catalog plus the enrollment lifecycle nested under each course."""

from typing import Optional

from fastapi import APIRouter, Depends, Query
from sqlmodel import Session

from .. import models
from ..auth import get_current_user, get_optional_user, require_user_types
from ..database import get_session
from ..responses import envelope
from ..schemas import (
    CourseCreate,
    CourseUpdate,
    EnrollmentStatusIn,
    FeedbackIn,
    GradeIn,
    ProgressIn,
    QuizAttemptIn,
    SubmissionIn,
)
from ..serializers import course_out, course_summary, enrollment_out, quiz_progress_out
from ..services import CourseService, EnrollmentService
from ..utils.pagination import PageParams, page_params

router = APIRouter()
students = require_user_types("student")


@router.get("")
def list_courses(
    search: Optional[str] = None,
    category: Optional[str] = None,
    level: Optional[str] = None,
    pricing: Optional[str] = None,
    status: Optional[str] = "published",
    instructor: Optional[int] = None,
    min_price: Optional[float] = None,
    max_price: Optional[float] = None,
    min_rating: Optional[float] = None,
    max_rating: Optional[float] = None,
    duration: Optional[str] = None,
    params: PageParams = Depends(page_params(12)),
    viewer: Optional[models.User] = Depends(get_optional_user),
    db: Session = Depends(get_session),
):
    if viewer is None or not viewer.is_admin:
        status = "published"
    items, pagination = CourseService(db).list(
        params, search=search, category=category, level=level, pricing=pricing, status=status,
        instructor=instructor, min_price=min_price, max_price=max_price,
        min_rating=min_rating, max_rating=max_rating, duration=duration,
    )
    return envelope([course_summary(c) for c in items], pagination=pagination)


@router.get("/featured")
def featured_courses(limit: int = Query(6, ge=1, le=50), db: Session = Depends(get_session)):
    return envelope([course_summary(c) for c in CourseService(db).featured(limit)])


@router.get("/popular")
def popular_courses(
    period: int = Query(30, ge=1, le=365),
    limit: int = Query(10, ge=1, le=50),
    db: Session = Depends(get_session),
):
    return envelope([course_summary(c) for c in CourseService(db).popular(period, limit)])


@router.get("/{course_id}")
def get_course(
    course_id: int,
    viewer: Optional[models.User] = Depends(get_optional_user),
    db: Session = Depends(get_session),
):
    svc = CourseService(db)
    course, enrollment, related = svc.get(course_id, viewer)
    data = course_out(course, include_answers=svc.can_see_answers(viewer, course))
    data["enrollment"] = enrollment_out(enrollment, detailed=False) if enrollment else None
    data["related_courses"] = [course_summary(c) for c in related]
    return envelope(data)


@router.post("", status_code=201)
def create_course(payload: CourseCreate, actor: models.User = Depends(get_current_user), db: Session = Depends(get_session)):
    course = CourseService(db).create(actor, payload)
    return envelope(course_out(course, include_answers=True), message="Course created")


@router.put("/{course_id}")
def update_course(
    course_id: int,
    payload: CourseUpdate,
    actor: models.User = Depends(get_current_user),
    db: Session = Depends(get_session),
):
    course = CourseService(db).update(actor, course_id, payload)
    return envelope(course_out(course, include_answers=True), message="Course updated")


@router.delete("/{course_id}")
def delete_course(course_id: int, actor: models.User = Depends(get_current_user), db: Session = Depends(get_session)):
    outcome = CourseService(db).delete(actor, course_id)
    if outcome == "archived":
        return envelope(message="Course has active enrollments and was archived")
    return envelope(message="Course deleted")


@router.get("/{course_id}/enrollments")
def course_enrollments(
    course_id: int,
    status: Optional[str] = None,
    params: PageParams = Depends(page_params(20)),
    actor: models.User = Depends(get_current_user),
    db: Session = Depends(get_session),
):
    items, pagination = CourseService(db).enrollments(actor, course_id, params, status)
    return envelope([enrollment_out(e, detailed=False) for e in items], pagination=pagination)


@router.get("/{course_id}/analytics")
def course_analytics(course_id: int, actor: models.User = Depends(get_current_user), db: Session = Depends(get_session)):
    return envelope(CourseService(db).analytics(actor, course_id))


@router.post("/{course_id}/enroll", status_code=201)
def enroll(course_id: int, student: models.User = Depends(students), db: Session = Depends(get_session)):
    enrollment = EnrollmentService(db).enroll(student, course_id)
    return envelope(enrollment_out(enrollment), message="Successfully enrolled in course")


@router.get("/{course_id}/progress")
def get_progress(course_id: int, student: models.User = Depends(get_current_user), db: Session = Depends(get_session)):
    progress = EnrollmentService(db).get_progress(student, course_id)
    progress["enrollment"] = enrollment_out(progress["enrollment"])
    return envelope(progress)


@router.post("/{course_id}/progress")
def record_progress(
    course_id: int,
    payload: ProgressIn,
    student: models.User = Depends(get_current_user),
    db: Session = Depends(get_session),
):
    enrollment = EnrollmentService(db).record_progress(student, course_id, payload.lesson_id, payload.time_spent)
    return envelope(enrollment_out(enrollment), message="Progress updated")


@router.post("/{course_id}/quizzes/{quiz_id}/attempts", status_code=201)
def attempt_quiz(
    course_id: int,
    quiz_id: str,
    payload: QuizAttemptIn,
    student: models.User = Depends(get_current_user),
    db: Session = Depends(get_session),
):
    answers = [a.model_dump() for a in payload.answers]
    attempt, progress = EnrollmentService(db).attempt_quiz(student, course_id, quiz_id, answers, payload.time_spent)
    return envelope({
        "attempt": attempt.model_dump(exclude={"quiz_progress_id"}),
        "quiz_progress": quiz_progress_out(progress),
    })


@router.post("/{course_id}/assignments/{assignment_id}/submissions", status_code=201)
def submit_assignment(
    course_id: int,
    assignment_id: str,
    payload: SubmissionIn,
    student: models.User = Depends(get_current_user),
    db: Session = Depends(get_session),
):
    submission = EnrollmentService(db).submit_assignment(student, course_id, assignment_id, payload)
    return envelope(submission.model_dump(), message="Assignment submitted")


@router.put("/{course_id}/submissions/{submission_id}/grade")
def grade_submission(
    course_id: int,
    submission_id: int,
    payload: GradeIn,
    actor: models.User = Depends(get_current_user),
    db: Session = Depends(get_session),
):
    submission = EnrollmentService(db).grade_submission(actor, course_id, submission_id, payload.score, payload.feedback)
    return envelope(submission.model_dump(), message="Submission graded")


@router.post("/{course_id}/feedback")
def leave_feedback(
    course_id: int,
    payload: FeedbackIn,
    student: models.User = Depends(get_current_user),
    db: Session = Depends(get_session),
):
    enrollment = EnrollmentService(db).leave_feedback(student, course_id, payload)
    return envelope(enrollment_out(enrollment, detailed=False), message="Thank you for your feedback")


@router.post("/{course_id}/drop")
def drop_course(course_id: int, student: models.User = Depends(get_current_user), db: Session = Depends(get_session)):
    enrollment = EnrollmentService(db).drop(student, course_id)
    return envelope(enrollment_out(enrollment, detailed=False), message="You have dropped this course")


@router.put("/{course_id}/enrollments/{enrollment_id}/status")
def set_enrollment_status(
    course_id: int,
    enrollment_id: int,
    payload: EnrollmentStatusIn,
    actor: models.User = Depends(get_current_user),
    db: Session = Depends(get_session),
):
    enrollment = EnrollmentService(db).set_status(actor, course_id, enrollment_id, payload.status)
    return envelope(enrollment_out(enrollment, detailed=False), message="Enrollment status updated")

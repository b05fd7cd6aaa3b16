"""Enrollment lifecycle: enroll, progress, completion, quizzes, assignments.

Status moves are restricted to:

    active    -> dropped      (student)
    active    -> suspended    (instructor or admin)
    suspended -> active       (instructor or admin)
    active    -> completed    (only through the completion check)

A dropped enrollment is reactivated in place when the student enrolls
again; the course enrollment counter only changes when a row is created.
"""

import logging
import math
import re
import uuid
from datetime import timedelta
from typing import List, Optional

from sqlalchemy.orm.attributes import flag_modified
from sqlmodel import Session

from .. import models, repositories
from ..config import settings
from ..errors import Conflict, InvalidArgument, NotFound
from ..policies import authorize
from ..utils import email_templates
from ..utils.mailer import send_email
from .notifications import NotificationService

logger = logging.getLogger("portal.api")

GRADE_BANDS = ((95, "A+"), (90, "A"), (85, "B+"), (80, "B"), (75, "C+"), (70, "C"), (60, "D"))
_SPACES = re.compile(r"\s+")


def grade_letter(score: float) -> str:
    for floor, letter in GRADE_BANDS:
        if score >= floor:
            return letter
    return "F"


def _normalize_answer(value) -> str:
    return _SPACES.sub(" ", str(value if value is not None else "")).strip().casefold()


def grade_quiz(quiz: dict, answers: List[dict]):
    """Grade `answers` against the stored questions.

    Returns `(score, percentage, graded_answers)`; matching ignores case and
    surrounding or repeated whitespace and every question carries its own
    points.
    """
    questions = quiz.get("questions") or []
    given = {a["question_index"]: a.get("answer") for a in answers}
    total_points = 0.0
    score = 0.0
    graded = []
    for index, question in enumerate(questions):
        points = float(question.get("points", 1) or 0)
        total_points += points
        answer = given.get(index)
        correct = answer is not None and _normalize_answer(answer) == _normalize_answer(question.get("correct_answer"))
        if correct:
            score += points
        graded.append({"question_index": index, "answer": answer, "is_correct": correct, "points": points if correct else 0})
    percentage = round(100 * score / total_points, 2) if total_points else 0
    return score, percentage, graded


class EnrollmentService:
    def __init__(self, session: Session):
        self.session = session
        self.repo = repositories.EnrollmentRepository(session)
        self.course_repo = repositories.CourseRepository(session)
        self.notifications = NotificationService(session)

    def _course(self, course_id: int) -> models.Course:
        course = self.course_repo.get(course_id)
        if course is None:
            raise NotFound("Course not found")
        return course

    def _own_enrollment(self, student: models.User, course_id: int, usable: bool = True) -> models.Enrollment:
        enrollment = self.repo.get_for(student.id, course_id)
        if enrollment is None:
            raise NotFound("You are not enrolled in this course")
        if usable and enrollment.status not in ("active", "completed"):
            raise InvalidArgument(f"Enrollment is {enrollment.status}")
        return enrollment

    def enroll(self, student: models.User, course_id: int) -> models.Enrollment:
        course = self._course(course_id)
        if course.status != "published" or not course.is_active:
            raise InvalidArgument("Course is not available for enrollment")
        existing = self.repo.get_for(student.id, course.id)
        if existing is not None and existing.status in ("active", "completed"):
            raise Conflict("Already enrolled in this course")
        if existing is not None and existing.status == "suspended":
            raise InvalidArgument("Your enrollment in this course is suspended")
        now = models.utcnow()
        if course.enrollment_start_date and now < course.enrollment_start_date:
            raise InvalidArgument("Enrollment for this course has not started yet")
        if course.enrollment_end_date and now > course.enrollment_end_date:
            raise InvalidArgument("Enrollment period for this course has ended")
        if course.enrollment_limit and self.repo.count_for_course(course.id, ("active", "completed")) >= course.enrollment_limit:
            raise InvalidArgument("Course enrollment limit reached")

        payment = {"status": "free", "amount": 0, "currency": course.currency}
        if course.pricing_type == "paid":
            payment = {"status": "pending", "amount": course.price_amount, "currency": course.currency}

        if existing is not None:
            existing.status = "active"
            existing.enrollment_date = now
            existing.last_accessed_at = now
            enrollment = self.repo.save(existing)
            logger.info("enrollment %s reactivated", enrollment.id)
        else:
            enrollment = models.Enrollment(student_id=student.id, course_id=course.id, payment=payment)
            course.total_enrollments += 1
            self.session.add(course)
            self.repo.add(enrollment)
            self.repo.commit("Already enrolled in this course")
            self.session.refresh(enrollment)

        subject, html = email_templates.course_enrollment(
            student.full_name, course.title, f"{settings.FRONTEND_URL}/courses/{course.id}"
        )
        send_email(student.email, subject, html)
        self.notifications.create_and_send(
            student.id,
            "Enrollment confirmed",
            f"You are now enrolled in {course.title}.",
            type="course_enrollment",
            category="success",
            entity_type="Course",
            entity_id=course.id,
        )
        return enrollment

    def record_progress(self, student: models.User, course_id: int, lesson_id: str, time_spent: int = 0):
        course = self._course(course_id)
        enrollment = self._own_enrollment(student, course.id)
        position = course.lesson_position(lesson_id)
        if position is None:
            raise NotFound("Lesson not found in this course")
        now = models.utcnow()
        done = {c.lesson_id: c for c in enrollment.completed_lessons}
        if lesson_id in done:
            done[lesson_id].time_spent += time_spent
        else:
            completion = models.LessonCompletion(lesson_id=lesson_id, time_spent=time_spent, completed_at=now)
            enrollment.completed_lessons.append(completion)
            done[lesson_id] = completion
        enrollment.total_time_spent += time_spent
        enrollment.last_accessed_at = now

        mi, li = position
        modules = course.modules or []
        lessons = modules[mi].get("lessons") or []
        if li + 1 < len(lessons):
            enrollment.current_module_index, enrollment.current_lesson_index = mi, li + 1
        elif mi + 1 < len(modules):
            enrollment.current_module_index, enrollment.current_lesson_index = mi + 1, 0
        else:
            enrollment.current_module_index, enrollment.current_lesson_index = mi, li

        module_id = modules[mi].get("id")
        finished = {m.get("module_id") for m in enrollment.completed_modules or []}
        if module_id not in finished and all(lesson.get("id") in done for lesson in lessons):
            enrollment.completed_modules = list(enrollment.completed_modules or []) + [
                {"module_id": module_id, "completed_at": now.isoformat()}
            ]
            flag_modified(enrollment, "completed_modules")

        total = course.total_lessons
        # halves round up
        enrollment.completion_percentage = math.floor(100 * len(done) / total + 0.5) if total else 0
        completed_now = self._check_completion(enrollment, course)
        self.repo.save(enrollment)
        if completed_now:
            self._announce_completion(student, course, enrollment)
        return enrollment

    def _check_completion(self, enrollment: models.Enrollment, course: models.Course) -> bool:
        if enrollment.status != "active" or enrollment.completion_percentage < course.completion_threshold:
            return False
        enrollment.status = "completed"
        enrollment.completed_at = models.utcnow()
        self._grade(enrollment, course)
        self._maybe_issue_certificate(enrollment, course)
        self.session.add(enrollment)
        self.session.flush()
        self._recompute_completion_rate(course)
        logger.info("enrollment %s completed", enrollment.id)
        return True

    def _grade(self, enrollment: models.Enrollment, course: models.Course) -> None:
        best = [p.best_percentage for p in enrollment.quiz_progress]
        overall = sum(best) / len(best) if best else enrollment.completion_percentage
        enrollment.overall_score = round(overall, 2)
        enrollment.final_grade = grade_letter(overall)

    def _maybe_issue_certificate(self, enrollment: models.Enrollment, course: models.Course) -> bool:
        certificate = course.certificate or {}
        if enrollment.status != "completed" or enrollment.certificate_issued or not certificate.get("is_available"):
            return False
        criteria = certificate.get("criteria") or {}
        minimum = criteria.get("minimum_quiz_score", 70)
        progress = {p.quiz_id: p for p in enrollment.quiz_progress}
        for quiz in course.quizzes or []:
            p = progress.get(quiz.get("id"))
            if p is None or p.best_percentage < minimum:
                return False
        graded = sum(1 for s in enrollment.submissions if s.score is not None)
        if graded < criteria.get("required_assignments", 0):
            return False
        enrollment.certificate_issued = True
        enrollment.certificate_id = f"CERT-{course.id}-{uuid.uuid4().hex[:12].upper()}"
        enrollment.certificate_issued_at = models.utcnow()
        return True

    def _recompute_completion_rate(self, course: models.Course) -> None:
        total = self.repo.count_for_course(course.id)
        completed = self.repo.count_for_course(course.id, ("completed",))
        course.completion_rate = round(100 * completed / total, 2) if total else 0
        self.session.add(course)

    def _announce_completion(self, student: models.User, course: models.Course, enrollment: models.Enrollment) -> None:
        self.notifications.create_and_send(
            student.id,
            "Course completed",
            f"Congratulations on completing {course.title}!",
            type="course_completion",
            category="success",
            entity_type="Course",
            entity_id=course.id,
        )
        if enrollment.certificate_issued:
            self._announce_certificate(student.id, course, enrollment)

    def _announce_certificate(self, student_id: int, course: models.Course, enrollment: models.Enrollment) -> None:
        self.notifications.create_and_send(
            student_id,
            "Certificate issued",
            f"Your certificate for {course.title} is ready ({enrollment.certificate_id}).",
            type="certificate_issued",
            category="success",
            entity_type="Course",
            entity_id=course.id,
        )

    def get_progress(self, student: models.User, course_id: int) -> dict:
        course = self._course(course_id)
        enrollment = self._own_enrollment(student, course.id, usable=False)
        return {
            "enrollment": enrollment,
            "total_lessons": course.total_lessons,
            "completed_lessons": len(enrollment.completed_lessons),
            "completion_threshold": course.completion_threshold,
        }

    def attempt_quiz(self, student: models.User, course_id: int, quiz_id: str, answers: List[dict], time_spent: int = 0):
        course = self._course(course_id)
        enrollment = self._own_enrollment(student, course.id)
        quiz = course.find_quiz(quiz_id)
        if quiz is None:
            raise NotFound("Quiz not found")
        progress = next((p for p in enrollment.quiz_progress if p.quiz_id == quiz_id), None)
        if progress is None:
            progress = models.QuizProgress(quiz_id=quiz_id)
            enrollment.quiz_progress.append(progress)
        if progress.total_attempts >= (quiz.get("max_attempts") or 3):
            raise InvalidArgument("Maximum attempts reached for this quiz")
        score, percentage, graded = grade_quiz(quiz, answers)
        passed = percentage >= models.QUIZ_PASS_PERCENTAGE
        now = models.utcnow()
        attempt = models.QuizAttempt(
            attempt_number=progress.total_attempts + 1,
            started_at=now - timedelta(minutes=time_spent),
            submitted_at=now,
            answers=graded,
            score=score,
            percentage=percentage,
            passed=passed,
            time_spent=time_spent,
        )
        progress.attempts.append(attempt)
        progress.total_attempts += 1
        if score > progress.best_score:
            progress.best_score = score
            progress.best_percentage = percentage
        progress.passed = progress.passed or passed
        enrollment.last_accessed_at = now
        issued = self._maybe_issue_certificate(enrollment, course)
        self.repo.save(enrollment)
        self.session.refresh(progress)
        if issued:
            self._announce_certificate(student.id, course, enrollment)
        return attempt, progress

    def submit_assignment(self, student: models.User, course_id: int, assignment_id: str, data) -> models.AssignmentSubmission:
        course = self._course(course_id)
        enrollment = self._own_enrollment(student, course.id)
        if course.find_assignment(assignment_id) is None:
            raise NotFound("Assignment not found")
        submission = models.AssignmentSubmission(
            assignment_id=assignment_id,
            text_submission=data.text_submission,
            files=data.files,
        )
        enrollment.submissions.append(submission)
        enrollment.last_accessed_at = models.utcnow()
        self.repo.save(enrollment)
        self.session.refresh(submission)
        return submission

    def grade_submission(self, actor: models.User, course_id: int, submission_id: int, score: float, feedback: Optional[str]):
        course = self._course(course_id)
        authorize(actor, "manage", "course", course)
        submission = self.repo.get_submission(submission_id)
        if submission is None or submission.enrollment.course_id != course.id:
            raise NotFound("Submission not found")
        assignment = course.find_assignment(submission.assignment_id) or {}
        max_score = assignment.get("max_score", 100)
        if score > max_score:
            raise InvalidArgument(f"Score cannot exceed the maximum score of {max_score}")
        submission.score = score
        submission.feedback = feedback
        submission.graded_at = models.utcnow()
        submission.graded_by = actor.id
        enrollment = submission.enrollment
        issued = self._maybe_issue_certificate(enrollment, course)
        self.session.add(submission)
        self.repo.save(enrollment)
        self.session.refresh(submission)
        self.notifications.create_and_send(
            enrollment.student_id,
            "Assignment graded",
            f"Your submission for {assignment.get('title', 'an assignment')} in {course.title} was graded: {score}/{max_score}.",
            type="other",
            entity_type="Course",
            entity_id=course.id,
            sender_id=actor.id,
        )
        if issued:
            self._announce_certificate(enrollment.student_id, course, enrollment)
        return submission

    def leave_feedback(self, student: models.User, course_id: int, data) -> models.Enrollment:
        course = self._course(course_id)
        enrollment = self._own_enrollment(student, course.id)
        enrollment.feedback_rating = data.rating
        enrollment.feedback_review = data.review
        enrollment.would_recommend = data.would_recommend
        enrollment.feedback_date = models.utcnow()
        self.session.add(enrollment)
        self.session.flush()
        ratings = [e.feedback_rating for e in self.repo.for_course(course.id) if e.feedback_rating is not None]
        course.total_ratings = len(ratings)
        course.average_rating = round(sum(ratings) / len(ratings), 2) if ratings else 0
        self.session.add(course)
        return self.repo.save(enrollment)

    def drop(self, student: models.User, course_id: int) -> models.Enrollment:
        enrollment = self._own_enrollment(student, course_id, usable=False)
        if enrollment.status != "active":
            raise InvalidArgument("Only active enrollments can be dropped")
        enrollment.status = "dropped"
        return self.repo.save(enrollment)

    def set_status(self, actor: models.User, course_id: int, enrollment_id: int, status: str) -> models.Enrollment:
        course = self._course(course_id)
        authorize(actor, "manage", "course", course)
        enrollment = self.repo.get(enrollment_id)
        if enrollment is None or enrollment.course_id != course.id:
            raise NotFound("Enrollment not found")
        allowed = {("active", "suspended"), ("suspended", "active")}
        if (enrollment.status, status) not in allowed:
            raise InvalidArgument(f"Cannot change enrollment status from {enrollment.status} to {status}")
        enrollment.status = status
        return self.repo.save(enrollment)

    def link_payment(self, payment: models.Payment) -> Optional[models.Enrollment]:
        """Attach a completed course payment to the payer's enrollment, if any."""
        enrollment = self.repo.get_for(payment.user_id, payment.entity_id)
        if enrollment is None:
            return None
        enrollment.payment = {
            "payment_id": payment.id,
            "amount": payment.amount_final,
            "currency": payment.currency,
            "status": "completed",
            "paid_at": (payment.completed_at or models.utcnow()).isoformat(),
        }
        self.session.add(enrollment)
        return enrollment

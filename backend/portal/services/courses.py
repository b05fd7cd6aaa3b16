"""Course catalog service: CRUD, listing filters and instructor analytics."""

import logging
from datetime import timedelta
from typing import List, Optional

from sqlmodel import Session, select
from sqlalchemy import or_

from .. import models, repositories
from ..errors import Conflict, InvalidArgument, NotFound
from ..policies import allows, authorize
from ..repositories import like
from ..schemas import sent_fields
from ..utils.pagination import PageParams, paginate, resolve_sort
from ..utils.text import new_id, slugify, with_ids

logger = logging.getLogger("portal.api")

COURSE_SORTS = {
    "title": models.Course.title,
    "created_at": models.Course.created_at,
    "updated_at": models.Course.updated_at,
    "price": models.Course.price_amount,
    "rating": models.Course.average_rating,
    "enrollments": models.Course.total_enrollments,
    "completion_rate": models.Course.completion_rate,
}
DURATIONS = {"short": (None, 10), "medium": (11, 30), "long": (31, None)}
DEFAULT_CRITERIA = {"completion_percentage": 100, "minimum_quiz_score": 70, "required_assignments": 0}


def normalize_modules(modules: List[dict]) -> List[dict]:
    """Give every module and lesson an id and keep both levels sorted by `order`."""
    out = []
    for module in sorted(modules, key=lambda m: m.get("order", 0)):
        module = dict(module)
        module["id"] = module.get("id") or new_id()
        lessons = []
        for lesson in sorted(module.get("lessons") or [], key=lambda lesson: lesson.get("order", 0)):
            lesson = dict(lesson)
            lesson["id"] = lesson.get("id") or new_id()
            lessons.append(lesson)
        module["lessons"] = lessons
        out.append(module)
    return out


def _certificate(value: Optional[dict]) -> dict:
    value = dict(value or {"is_available": True})
    value["criteria"] = {**DEFAULT_CRITERIA, **(value.get("criteria") or {})}
    return value


class CourseService:
    def __init__(self, session: Session):
        self.session = session
        self.repo = repositories.CourseRepository(session)
        self.enrollment_repo = repositories.EnrollmentRepository(session)

    def get_or_404(self, course_id: int) -> models.Course:
        course = self.repo.get(course_id)
        if course is None:
            raise NotFound("Course not found")
        return course

    def _apply(self, course: models.Course, fields: dict) -> None:
        if "modules" in fields and fields["modules"] is not None:
            fields["modules"] = normalize_modules(fields["modules"])
        for key in ("quizzes", "assignments"):
            if fields.get(key) is not None:
                fields[key] = with_ids(fields[key])
        if "certificate" in fields and fields["certificate"] is not None:
            fields["certificate"] = _certificate(fields["certificate"])
        if "title" in fields and fields["title"]:
            slug = slugify(fields["title"])
            existing = self.repo.get_by_slug(slug)
            if existing is not None and existing.id != course.id:
                raise Conflict("Course with this title already exists")
            course.slug = slug
        for key, value in fields.items():
            if value is None and key not in ("discount_percentage", "discount_valid_until", "enrollment_limit"):
                continue
            setattr(course, key, value)
        if course.pricing_type == "free":
            course.price_amount = 0
        elif course.price_amount < 1:
            raise InvalidArgument("Price must be greater than 0 for paid courses")
        if course.enrollment_start_date and course.enrollment_end_date and course.enrollment_end_date <= course.enrollment_start_date:
            raise InvalidArgument("Enrollment end date must be after the start date")

    def create(self, actor: models.User, data) -> models.Course:
        authorize(actor, "create", "course")
        fields = sent_fields(data)
        course = models.Course(
            title=data.title,
            slug=slugify(data.title),
            description=data.description,
            category=data.category,
            level=data.level,
            duration_hours=data.duration_hours,
            duration_weeks=data.duration_weeks,
            instructors=[{"user_id": actor.id, "role": "primary", "bio": None}],
            certificate=_certificate(None),
        )
        self._apply(course, fields)
        self.repo.save(course, "Course with this title already exists")
        logger.info("course %s created by %s", course.id, actor.id)
        return course

    def update(self, actor: models.User, course_id: int, data) -> models.Course:
        course = self.get_or_404(course_id)
        authorize(actor, "manage", "course", course)
        self._apply(course, sent_fields(data))
        return self.repo.save(course, "Course with this title already exists")

    def delete(self, actor: models.User, course_id: int) -> str:
        """Archive a course that has active or completed enrollments, otherwise delete it."""
        course = self.get_or_404(course_id)
        authorize(actor, "manage", "course", course)
        if self.enrollment_repo.count_for_course(course.id, ("active", "completed")):
            course.status = "archived"
            course.is_active = False
            self.repo.save(course)
            return "archived"
        for enrollment in self.enrollment_repo.for_course(course.id):
            self.session.delete(enrollment)
        self.session.flush()
        self.repo.delete(course)
        return "deleted"

    def _instructor_course_ids(self, instructor_id: int) -> List[int]:
        return [c.id for c in self.repo.all() if instructor_id in c.instructor_ids]

    def list(self, params: PageParams, search=None, category=None, level=None, pricing=None,
             status="published", instructor=None, min_price=None, max_price=None,
             min_rating=None, max_rating=None, duration=None):
        stmt = select(models.Course).where(models.Course.is_active == True)  # noqa: E712
        if status:
            if status not in models.COURSE_STATUSES:
                raise InvalidArgument(f"Unknown course status '{status}'")
            stmt = stmt.where(models.Course.status == status)
        if search:
            pattern = like(search)
            stmt = stmt.where(or_(
                models.Course.title.ilike(pattern, escape="\\"),
                models.Course.description.ilike(pattern, escape="\\"),
                models.Course.short_description.ilike(pattern, escape="\\"),
            ))
        if category:
            stmt = stmt.where(models.Course.category == category)
        if level:
            stmt = stmt.where(models.Course.level == level)
        if pricing:
            stmt = stmt.where(models.Course.pricing_type == pricing)
        if instructor is not None:
            stmt = stmt.where(models.Course.id.in_(self._instructor_course_ids(instructor)))
        if min_price is not None:
            stmt = stmt.where(models.Course.price_amount >= min_price)
        if max_price is not None:
            stmt = stmt.where(models.Course.price_amount <= max_price)
        if min_rating is not None:
            stmt = stmt.where(models.Course.average_rating >= min_rating)
        if max_rating is not None:
            stmt = stmt.where(models.Course.average_rating <= max_rating)
        if duration:
            if duration not in DURATIONS:
                raise InvalidArgument("duration must be one of short, medium, long")
            low, high = DURATIONS[duration]
            if low is not None:
                stmt = stmt.where(models.Course.duration_hours >= low)
            if high is not None:
                stmt = stmt.where(models.Course.duration_hours <= high)
        order = resolve_sort(params.sort, COURSE_SORTS) or [models.Course.created_at.desc()]
        return paginate(self.session, stmt, params, order)

    def _published(self):
        return select(models.Course).where(
            models.Course.status == "published",
            models.Course.is_active == True,  # noqa: E712
        )

    def featured(self, limit: int = 6) -> List[models.Course]:
        stmt = (
            self._published()
            .where(models.Course.average_rating >= 4, models.Course.total_enrollments >= 10)
            .order_by(models.Course.average_rating.desc(), models.Course.total_enrollments.desc())
            .limit(limit)
        )
        return list(self.session.exec(stmt).all())

    def popular(self, period: int = 30, limit: int = 10) -> List[models.Course]:
        since = models.utcnow() - timedelta(days=period)
        stmt = (
            self._published()
            .where(models.Course.created_at >= since)
            .order_by(models.Course.total_enrollments.desc(), models.Course.average_rating.desc())
            .limit(limit)
        )
        return list(self.session.exec(stmt).all())

    def get(self, course_id: int, viewer: Optional[models.User] = None):
        """Return `(course, viewer_enrollment, related_courses)`.

        Unpublished courses read as missing to anyone but their instructors
        and admins.
        """
        course = self.get_or_404(course_id)
        if course.status != "published" and not (viewer and allows(viewer, "view_unpublished", "course", course)):
            raise NotFound("Course not found")
        enrollment = None
        if viewer is not None:
            found = self.enrollment_repo.get_for(viewer.id, course.id)
            if found is not None and found.status in ("active", "completed"):
                enrollment = found
        return course, enrollment, self.repo.related(course)

    def can_see_answers(self, viewer: Optional[models.User], course: models.Course) -> bool:
        return viewer is not None and allows(viewer, "view_unpublished", "course", course)

    def enrollments(self, actor: models.User, course_id: int, params: PageParams, status: Optional[str] = None):
        course = self.get_or_404(course_id)
        authorize(actor, "manage", "course", course)
        stmt = select(models.Enrollment).where(models.Enrollment.course_id == course.id)
        if status:
            stmt = stmt.where(models.Enrollment.status == status)
        sorts = {"enrollment_date": models.Enrollment.enrollment_date,
                 "completion_percentage": models.Enrollment.completion_percentage,
                 "last_accessed_at": models.Enrollment.last_accessed_at}
        order = resolve_sort(params.sort, sorts) or [models.Enrollment.enrollment_date.desc()]
        return paginate(self.session, stmt, params, order)

    def analytics(self, actor: models.User, course_id: int) -> dict:
        course = self.get_or_404(course_id)
        authorize(actor, "manage", "course", course)
        enrollments = self.enrollment_repo.for_course(course.id)
        by_status = {s: 0 for s in models.ENROLLMENT_STATUSES}
        for e in enrollments:
            by_status[e.status] = by_status.get(e.status, 0) + 1
        total = len(enrollments)
        quizzes = []
        for quiz in course.quizzes or []:
            progress = [p for e in enrollments for p in e.quiz_progress if p.quiz_id == quiz.get("id")]
            quizzes.append({
                "quiz_id": quiz.get("id"),
                "title": quiz.get("title"),
                "participants": len(progress),
                "total_attempts": sum(p.total_attempts for p in progress),
                "pass_rate": round(100 * sum(1 for p in progress if p.passed) / len(progress), 2) if progress else 0,
                "average_best_percentage": round(sum(p.best_percentage for p in progress) / len(progress), 2) if progress else 0,
            })
        recent_cutoff = models.utcnow() - timedelta(days=30)
        return {
            "course_id": course.id,
            "total_enrollments": total,
            "enrollments_by_status": by_status,
            "enrollments_last_30_days": sum(1 for e in enrollments if e.enrollment_date >= recent_cutoff),
            "average_completion_percentage": round(sum(e.completion_percentage for e in enrollments) / total, 2) if total else 0,
            "average_time_spent": round(sum(e.total_time_spent for e in enrollments) / total, 2) if total else 0,
            "completion_rate": course.completion_rate,
            "average_rating": course.average_rating,
            "total_ratings": course.total_ratings,
            "certificates_issued": sum(1 for e in enrollments if e.certificate_issued),
            "quizzes": quizzes,
        }

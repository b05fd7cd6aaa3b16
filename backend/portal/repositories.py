"""Repository classes encapsulating database operations.

Each repository is small and focused on a single aggregate (users,
courses, enrollments, jobs, applications, payments, notifications,
files). Repositories return SQLModel objects; `save` commits and
refreshes, while `add` only stages so that a service can commit a row
together with counter updates on other aggregates.
"""

from datetime import datetime
from typing import Iterable, List, Optional

from sqlalchemy import func, or_
from sqlalchemy.exc import IntegrityError
from sqlmodel import Session, select

from . import models
from .errors import Conflict
from .utils.text import escape_like


def like(term: str) -> str:
    return f"%{escape_like(term.strip())}%"


class BaseRepository:
    model = None
    conflict_message = "Duplicate field value entered"

    def __init__(self, session: Session):
        self.session = session

    def get(self, pk):
        """Get a row by primary key."""
        return self.session.get(self.model, pk)

    def add(self, obj):
        self.session.add(obj)
        return obj

    def commit(self, message: Optional[str] = None) -> None:
        """Commit the unit of work; a uniqueness violation becomes `Conflict`."""
        try:
            self.session.commit()
        except IntegrityError:
            self.session.rollback()
            raise Conflict(message or self.conflict_message)

    def save(self, obj, message: Optional[str] = None):
        """Persist `obj` and return the refreshed instance."""
        if hasattr(obj, "updated_at"):
            obj.updated_at = models.utcnow()
        self.session.add(obj)
        self.commit(message)
        self.session.refresh(obj)
        return obj

    def delete(self, obj) -> None:
        self.session.delete(obj)
        self.commit()

    def count_by(self, column) -> dict:
        """Return `{value: count}` grouped on `column`."""
        stmt = select(column, func.count()).group_by(column)
        return {value: n for value, n in self.session.exec(stmt).all()}


class UserRepository(BaseRepository):
    """CRUD operations for `User` objects."""
    model = models.User
    conflict_message = "Email is already registered"

    def get_by_email(self, email: str) -> Optional[models.User]:
        stmt = select(models.User).where(models.User.email == email.strip().lower())
        return self.session.exec(stmt).first()

    def get_by_verification_hash(self, token_hash: str, now: datetime) -> Optional[models.User]:
        stmt = select(models.User).where(
            models.User.email_verification_token == token_hash,
            models.User.email_verification_expire > now,
        )
        return self.session.exec(stmt).first()

    def get_by_reset_hash(self, token_hash: str, now: datetime) -> Optional[models.User]:
        stmt = select(models.User).where(
            models.User.reset_password_token == token_hash,
            models.User.reset_password_expire > now,
        )
        return self.session.exec(stmt).first()

    def query(self, user_type=None, role=None, is_active=None, search=None):
        stmt = select(models.User)
        if user_type:
            stmt = stmt.where(models.User.user_type == user_type)
        if role:
            stmt = stmt.where(models.User.role == role)
        if is_active is not None:
            stmt = stmt.where(models.User.is_active == is_active)
        if search:
            pattern = like(search)
            stmt = stmt.where(or_(
                models.User.full_name.ilike(pattern, escape="\\"),
                models.User.email.ilike(pattern, escape="\\"),
            ))
        return stmt

    def active_ids(self) -> List[int]:
        stmt = select(models.User.id).where(models.User.is_active == True)  # noqa: E712
        return list(self.session.exec(stmt).all())

    def count_since(self, since: datetime) -> int:
        stmt = select(func.count()).select_from(models.User).where(models.User.created_at >= since)
        return self.session.exec(stmt).one()


class CourseRepository(BaseRepository):
    model = models.Course
    conflict_message = "Course with this title already exists"

    def get_by_slug(self, slug: str) -> Optional[models.Course]:
        return self.session.exec(select(models.Course).where(models.Course.slug == slug)).first()

    def all(self) -> List[models.Course]:
        return list(self.session.exec(select(models.Course)).all())

    def related(self, course: models.Course, limit: int = 6) -> List[models.Course]:
        stmt = (
            select(models.Course)
            .where(
                models.Course.category == course.category,
                models.Course.id != course.id,
                models.Course.status == "published",
                models.Course.is_active == True,  # noqa: E712
            )
            .order_by(models.Course.average_rating.desc(), models.Course.total_enrollments.desc())
            .limit(limit)
        )
        return list(self.session.exec(stmt).all())


class EnrollmentRepository(BaseRepository):
    model = models.Enrollment

    def get_for(self, student_id: int, course_id: int) -> Optional[models.Enrollment]:
        stmt = select(models.Enrollment).where(
            models.Enrollment.student_id == student_id,
            models.Enrollment.course_id == course_id,
        )
        return self.session.exec(stmt).first()

    def for_course(self, course_id: int, statuses: Optional[Iterable[str]] = None) -> List[models.Enrollment]:
        stmt = select(models.Enrollment).where(models.Enrollment.course_id == course_id)
        if statuses:
            stmt = stmt.where(models.Enrollment.status.in_(list(statuses)))
        return list(self.session.exec(stmt).all())

    def count_for_course(self, course_id: int, statuses: Optional[Iterable[str]] = None) -> int:
        stmt = select(func.count()).select_from(models.Enrollment).where(models.Enrollment.course_id == course_id)
        if statuses:
            stmt = stmt.where(models.Enrollment.status.in_(list(statuses)))
        return self.session.exec(stmt).one()

    def get_submission(self, submission_id: int) -> Optional[models.AssignmentSubmission]:
        return self.session.get(models.AssignmentSubmission, submission_id)


class JobRepository(BaseRepository):
    model = models.Job
    conflict_message = "A job with this slug already exists"

    def all(self) -> List[models.Job]:
        return list(self.session.exec(select(models.Job)).all())


class ApplicationRepository(BaseRepository):
    model = models.Application
    conflict_message = "You have already applied for this job"

    def get_for(self, applicant_id: int, job_id: int) -> Optional[models.Application]:
        stmt = select(models.Application).where(
            models.Application.applicant_id == applicant_id,
            models.Application.job_id == job_id,
        )
        return self.session.exec(stmt).first()

    def for_job(self, job_id: int) -> List[models.Application]:
        stmt = select(models.Application).where(models.Application.job_id == job_id)
        return list(self.session.exec(stmt).all())

    def count_for_job(self, job_id: int) -> int:
        stmt = select(func.count()).select_from(models.Application).where(models.Application.job_id == job_id)
        return self.session.exec(stmt).one()


class PaymentRepository(BaseRepository):
    model = models.Payment

    def get_refund(self, payment_id: int, refund_id: int) -> Optional[models.Refund]:
        refund = self.session.get(models.Refund, refund_id)
        if refund is None or refund.payment_id != payment_id:
            return None
        return refund

    def completed(self) -> List[models.Payment]:
        stmt = select(models.Payment).where(
            models.Payment.status.in_(["completed", "partially_refunded", "refunded"])
        )
        return list(self.session.exec(stmt).all())

    def between(self, start: Optional[datetime] = None, end: Optional[datetime] = None) -> List[models.Payment]:
        stmt = select(models.Payment)
        if start:
            stmt = stmt.where(models.Payment.created_at >= start)
        if end:
            stmt = stmt.where(models.Payment.created_at <= end)
        return list(self.session.exec(stmt.order_by(models.Payment.created_at)).all())


class NotificationRepository(BaseRepository):
    model = models.Notification

    def unread_count(self, recipient_id: int) -> int:
        stmt = select(func.count()).select_from(models.Notification).where(
            models.Notification.recipient_id == recipient_id,
            models.Notification.is_read == False,  # noqa: E712
        )
        return self.session.exec(stmt).one()

    def unread_for(self, recipient_id: int) -> List[models.Notification]:
        stmt = select(models.Notification).where(
            models.Notification.recipient_id == recipient_id,
            models.Notification.is_read == False,  # noqa: E712
        )
        return list(self.session.exec(stmt).all())


class FileRepository(BaseRepository):
    model = models.StoredFile

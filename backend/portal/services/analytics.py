"""Platform overview figures and counter reconciliation."""

import logging
from datetime import timedelta

from sqlmodel import Session

from .. import models, repositories

logger = logging.getLogger("portal.api")


class AnalyticsService:
    def __init__(self, session: Session):
        self.session = session
        self.users = repositories.UserRepository(session)
        self.courses = repositories.CourseRepository(session)
        self.enrollments = repositories.EnrollmentRepository(session)
        self.jobs = repositories.JobRepository(session)
        self.applications = repositories.ApplicationRepository(session)
        self.payments = repositories.PaymentRepository(session)

    def overview(self) -> dict:
        gross = refunded = 0.0
        for payment in self.payments.completed():
            gross += payment.amount_final
            refunded += payment.total_refunded
        users_by_type = self.users.count_by(models.User.user_type)
        return {
            "users": {"total": sum(users_by_type.values()), "by_type": users_by_type},
            "courses": self.courses.count_by(models.Course.status),
            "enrollments": self.enrollments.count_by(models.Enrollment.status),
            "jobs": self.jobs.count_by(models.Job.status),
            "applications": self.applications.count_by(models.Application.status),
            "revenue": {"gross": round(gross, 2), "refunded": round(refunded, 2), "net": round(gross - refunded, 2)},
            "signups_last_30_days": self.users.count_since(models.utcnow() - timedelta(days=30)),
        }

    def reconcile(self) -> dict:
        """Recompute denormalized counters from the rows they count.

        Job `current_applications`/`stats_applications` and course
        `total_enrollments` are rewritten; every correction is reported.
        """
        changes = []
        for job in self.jobs.all():
            actual = self.applications.count_for_job(job.id)
            for field in ("current_applications", "stats_applications"):
                before = getattr(job, field)
                if before != actual:
                    setattr(job, field, actual)
                    changes.append({"entity": "job", "id": job.id, "field": field, "before": before, "after": actual})
            self.session.add(job)
        for course in self.courses.all():
            actual = self.enrollments.count_for_course(course.id)
            if course.total_enrollments != actual:
                changes.append({"entity": "course", "id": course.id, "field": "total_enrollments",
                                "before": course.total_enrollments, "after": actual})
                course.total_enrollments = actual
            self.session.add(course)
        self.users.commit()
        if changes:
            logger.warning("reconcile corrected %d counter(s)", len(changes))
        return {"corrected": len(changes), "changes": changes}

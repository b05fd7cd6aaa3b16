"""Job postings: CRUD, public search and per-job application views."""

import logging
from typing import Optional

from sqlalchemy import String, cast, or_
from sqlmodel import Session, select

from .. import models, repositories
from ..errors import InvalidArgument, NotFound
from ..policies import allows, authorize
from ..repositories import like
from ..schemas import sent_fields
from ..utils.pagination import PageParams, paginate, resolve_sort
from ..utils.text import escape_like, job_slug, with_ids

logger = logging.getLogger("portal.api")

JOB_SORTS = {
    "created_at": models.Job.created_at,
    "salary": models.Job.salary_min,
    "deadline": models.Job.application_deadline,
    "views": models.Job.stats_views,
    "applications": models.Job.stats_applications,
    "title": models.Job.title,
}


class JobService:
    def __init__(self, session: Session):
        self.session = session
        self.repo = repositories.JobRepository(session)
        self.application_repo = repositories.ApplicationRepository(session)

    def get_or_404(self, job_id: int) -> models.Job:
        job = self.repo.get(job_id)
        if job is None:
            raise NotFound("Job not found")
        return job

    def list(self, params: PageParams, search=None, category=None, job_type=None, work_mode=None,
             location=None, experience_level=None, skills=None, min_salary=None, max_salary=None):
        now = models.utcnow()
        stmt = select(models.Job).where(
            models.Job.status == "active",
            models.Job.is_active == True,  # noqa: E712
            or_(models.Job.application_deadline == None, models.Job.application_deadline >= now),  # noqa: E711
        )
        if search:
            pattern = like(search)
            stmt = stmt.where(or_(
                models.Job.title.ilike(pattern, escape="\\"),
                models.Job.description.ilike(pattern, escape="\\"),
                models.Job.department.ilike(pattern, escape="\\"),
            ))
        if category:
            stmt = stmt.where(models.Job.category == category)
        if job_type:
            stmt = stmt.where(models.Job.job_type == job_type)
        if work_mode:
            stmt = stmt.where(models.Job.work_mode == work_mode)
        if location:
            pattern = like(location)
            stmt = stmt.where(or_(
                models.Job.location_city.ilike(pattern, escape="\\"),
                models.Job.location_state.ilike(pattern, escape="\\"),
                models.Job.location_country.ilike(pattern, escape="\\"),
            ))
        if experience_level:
            stmt = stmt.where(models.Job.experience_level == experience_level)
        if skills:
            wanted = [s.strip() for s in skills.split(",") if s.strip()]
            # skills are stored as a JSON array of strings; match whole quoted entries
            stmt = stmt.where(or_(*[
                cast(models.Job.skills_required, String).ilike(f'%"{escape_like(s)}"%', escape="\\") for s in wanted
            ]))
        if min_salary is not None:
            stmt = stmt.where(models.Job.salary_max >= min_salary)
        if max_salary is not None:
            stmt = stmt.where(models.Job.salary_min <= max_salary)
        order = resolve_sort(params.sort, JOB_SORTS) or [models.Job.created_at.desc()]
        return paginate(self.session, stmt, params, order)

    def view(self, job_id: int, viewer: Optional[models.User] = None):
        """Return `(job, can_manage)` and count the view.

        Jobs that are not active read as missing to anyone but their owner
        and admins.
        """
        job = self.get_or_404(job_id)
        can_manage = viewer is not None and allows(viewer, "manage", "job", job)
        if job.status != "active" and not can_manage:
            raise NotFound("Job not found")
        job.stats_views += 1
        self.session.add(job)
        self.repo.commit()
        self.session.refresh(job)
        return job, can_manage

    def create(self, actor: models.User, data) -> models.Job:
        fields = sent_fields(data)
        if "screening_questions" in fields:
            fields["screening_questions"] = with_ids(fields["screening_questions"])
        fields = {k: v for k, v in fields.items() if v is not None}
        job = models.Job(slug=job_slug(data.title), employer_id=actor.id, **fields)
        self.repo.save(job)
        logger.info("job %s created by %s", job.id, actor.id)
        return job

    def update(self, actor: models.User, job_id: int, data) -> models.Job:
        job = self.get_or_404(job_id)
        authorize(actor, "manage", "job", job)
        fields = sent_fields(data)
        if fields.get("screening_questions") is not None:
            fields["screening_questions"] = with_ids(fields["screening_questions"])
        nullable = {"application_deadline", "salary_min", "salary_max", "max_applications", "internal_notes", "start_date"}
        for key, value in fields.items():
            if value is None and key not in nullable:
                continue
            setattr(job, key, value)
        if fields.get("title"):
            job.slug = job_slug(job.title)
        if job.experience_max < job.experience_min:
            raise InvalidArgument("Maximum experience must be greater than or equal to minimum experience")
        if job.salary_min is not None and job.salary_max is not None and job.salary_max < job.salary_min:
            raise InvalidArgument("Maximum salary must be greater than or equal to minimum salary")
        return self.repo.save(job)

    def delete(self, actor: models.User, job_id: int) -> str:
        """Close a job that has applications, otherwise delete it."""
        job = self.get_or_404(job_id)
        authorize(actor, "manage", "job", job)
        if self.application_repo.count_for_job(job.id):
            job.status = "closed"
            job.is_active = False
            self.repo.save(job)
            return "closed"
        self.repo.delete(job)
        return "deleted"

    def applications(self, actor: models.User, job_id: int, params: PageParams, status: Optional[str] = None):
        job = self.get_or_404(job_id)
        authorize(actor, "manage", "job", job)
        stmt = select(models.Application).where(models.Application.job_id == job.id)
        if status:
            stmt = stmt.where(models.Application.status == status)
        sorts = {"applied_at": models.Application.application_date, "updated_at": models.Application.updated_at,
                 "status": models.Application.status}
        order = resolve_sort(params.sort, sorts) or [models.Application.application_date.desc()]
        return paginate(self.session, stmt, params, order)

    def application_stats(self, actor: models.User, job_id: int) -> dict:
        job = self.get_or_404(job_id)
        authorize(actor, "manage", "job", job)
        by_status = {s: 0 for s in models.APPLICATION_STATUSES}
        for application in self.application_repo.for_job(job.id):
            by_status[application.status] += 1
        return {
            "job_id": job.id,
            "total": sum(by_status.values()),
            "by_status": by_status,
            "views": job.stats_views,
            "applications": job.stats_applications,
            "shortlisted": job.stats_shortlisted,
            "interviewed": job.stats_interviewed,
            "hired": job.stats_hired,
        }

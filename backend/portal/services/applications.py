"""Application pipeline: create, role-gated updates, interviews, offers.

Status transitions:

* pipeline stages move forward only (skipping stages is allowed):
  submitted > under_review > screening > shortlisted > interview_scheduled
  > interviewed > technical_round > final_round > selected
* `rejected` and `on_hold` are reachable from any non-terminal state
* `on_hold` may resume to any pipeline stage
* `withdrawn` is only set through the applicant's withdrawal
* `selected`, `rejected` and `withdrawn` are terminal

Every accepted change appends one `ApplicationStatusChange`; creating an
application appends none.
"""

import logging
import math
import uuid
from typing import Optional

from sqlalchemy.orm.attributes import flag_modified
from sqlmodel import Session, select

from .. import models, repositories
from ..errors import Conflict, Forbidden, InvalidArgument, NotFound
from ..policies import authorize
from ..utils import email_templates
from ..utils.mailer import send_email
from ..utils.pagination import PageParams, paginate, resolve_sort
from .notifications import NotificationService

logger = logging.getLogger("portal.api")

APPLICANT_FIELDS = {"cover_letter", "withdrawal"}
REVIEWER_FIELDS = {"status", "reason", "notes", "evaluation", "offer", "priority", "internal_notes", "tags"}
EVALUATION_WEIGHTS = {
    "technical_score": 0.30,
    "experience_score": 0.25,
    "education_score": 0.15,
    "skills_match": 0.20,
    "cultural_fit_score": 0.10,
}
STAT_COUNTERS = {"shortlisted": "stats_shortlisted", "interviewed": "stats_interviewed", "selected": "stats_hired"}
APPLICATION_SORTS = {
    "applied_at": models.Application.application_date,
    "updated_at": models.Application.updated_at,
    "status": models.Application.status,
}
CAPACITY_REASON = "Application limit reached for this job"


def check_transition(current: str, new: str) -> None:
    """Raise `InvalidArgument` unless `current -> new` is an allowed move."""
    if current in models.APPLICATION_TERMINAL:
        raise InvalidArgument(f"Cannot change the status of a {current} application")
    if new == "withdrawn":
        raise InvalidArgument("Use the withdrawal field to withdraw an application")
    if new in ("rejected", "on_hold"):
        return
    pipeline = models.APPLICATION_PIPELINE
    if new in pipeline and (current == "on_hold" or pipeline.index(new) > pipeline.index(current)):
        return
    raise InvalidArgument(f"Invalid status transition from {current} to {new}")


def overall_score(evaluation: dict) -> int:
    """Weighted evaluation score, rounded to a whole number with halves going up."""
    weighted = sum((evaluation.get(k) or 0) * w for k, w in EVALUATION_WEIGHTS.items())
    return math.floor(weighted + 0.5)


class ApplicationService:
    def __init__(self, session: Session):
        self.session = session
        self.repo = repositories.ApplicationRepository(session)
        self.job_repo = repositories.JobRepository(session)
        self.user_repo = repositories.UserRepository(session)
        self.notifications = NotificationService(session)

    def get_or_404(self, application_id: int) -> models.Application:
        application = self.repo.get(application_id)
        if application is None:
            raise NotFound("Application not found")
        return application

    def _record(self, application: models.Application, status: str, actor: models.User,
                reason: Optional[str] = None, notes: Optional[str] = None) -> None:
        application.status = status
        application.status_history.append(models.ApplicationStatusChange(
            status=status, changed_by=actor.id, reason=reason, notes=notes,
        ))
        counter = STAT_COUNTERS.get(status)
        if counter:
            job = self.job_repo.get(application.job_id)
            if job is not None:
                setattr(job, counter, getattr(job, counter) + 1)
                self.session.add(job)

    def transition(self, application: models.Application, new: str, actor: models.User,
                   reason: Optional[str] = None, notes: Optional[str] = None) -> bool:
        """Apply a status change; setting the current status again is a no-op."""
        if new == application.status:
            return False
        check_transition(application.status, new)
        self._record(application, new, actor, reason, notes)
        return True

    def create(self, applicant: models.User, data) -> models.Application:
        job = self.job_repo.get(data.job_id)
        if job is None:
            raise NotFound("Job not found")
        existing = self.repo.get_for(applicant.id, job.id)
        reapply = existing is not None and existing.is_withdrawn and existing.can_reapply
        if existing is not None and not reapply:
            raise Conflict("You have already applied for this job")
        reason = job.closed_reason()
        # a reapplication replaces its old row, so it never exceeds the cap
        if reason and not (reapply and reason == CAPACITY_REASON):
            raise InvalidArgument(reason)

        answers = {r.question_id: r.answer for r in data.screening_responses}
        missing = [
            {"field": f"screening_responses.{q.get('id')}", "message": "This question is required", "value": None}
            for q in job.screening_questions or []
            if q.get("is_required", True) and not (answers.get(q.get("id")) or "").strip()
        ]
        if missing:
            raise InvalidArgument("Please answer all required screening questions", errors=missing)
        questions = {q.get("id"): q.get("question") for q in job.screening_questions or []}

        if reapply:
            self.session.delete(existing)
            self.session.flush()
        else:
            job.current_applications += 1
            job.stats_applications += 1
            self.session.add(job)
        application = models.Application(
            applicant_id=applicant.id,
            job_id=job.id,
            employer_id=job.employer_id,
            cover_letter=data.cover_letter,
            documents=data.documents,
            screening_responses=[
                {"question_id": qid, "question": questions.get(qid), "answer": answer}
                for qid, answer in answers.items()
            ],
            source=data.source,
            referred_by=data.referred_by,
        )
        self.repo.add(application)
        self.repo.commit("You have already applied for this job")
        self.session.refresh(application)
        logger.info("application %s created for job %s", application.id, job.id)

        self.notifications.create_and_send(
            job.employer_id,
            "New job application",
            f"{applicant.full_name} applied for {job.title}.",
            type="job_application",
            entity_type="Application",
            entity_id=application.id,
        )
        company = (job.company or {}).get("name") or "the employer"
        subject, html = email_templates.job_application(applicant.full_name, job.title, company)
        send_email(applicant.email, subject, html)
        return application

    def list_for(self, actor: models.User, params: PageParams, status: Optional[str] = None, job_id: Optional[int] = None):
        stmt = select(models.Application)
        if not actor.is_admin:
            if actor.user_type == "employer":
                stmt = stmt.where(models.Application.employer_id == actor.id)
            else:
                stmt = stmt.where(models.Application.applicant_id == actor.id)
        if status:
            stmt = stmt.where(models.Application.status == status)
        if job_id is not None:
            stmt = stmt.where(models.Application.job_id == job_id)
        order = resolve_sort(params.sort, APPLICATION_SORTS) or [models.Application.application_date.desc()]
        return paginate(self.session, stmt, params, order)

    def get(self, actor: models.User, application_id: int) -> models.Application:
        application = self.get_or_404(application_id)
        authorize(actor, "read", "application", application)
        return application

    def is_reviewer(self, actor: models.User, application: models.Application) -> bool:
        return actor.is_admin or actor.id == application.employer_id

    def update(self, actor: models.User, application_id: int, data) -> models.Application:
        application = self.get_or_404(application_id)
        authorize(actor, "update", "application", application)
        fields = data.model_dump(exclude_unset=True)
        allowed = REVIEWER_FIELDS if self.is_reviewer(actor, application) else APPLICANT_FIELDS
        denied = set(fields) - allowed
        if denied:
            raise Forbidden(f"Not allowed to update fields: {', '.join(sorted(denied))}")
        if ("reason" in fields or "notes" in fields) and "status" not in fields:
            raise InvalidArgument("reason and notes can only accompany a status change")

        old_status = application.status
        if "cover_letter" in fields:
            if application.status in models.APPLICATION_TERMINAL:
                raise InvalidArgument(f"Cannot edit a {application.status} application")
            application.cover_letter = fields["cover_letter"]
        if data.withdrawal is not None:
            self._withdraw(application, actor, data.withdrawal)
        if data.status is not None:
            self.transition(application, data.status, actor, data.reason, data.notes)
        if data.evaluation is not None:
            evaluation = {**(application.evaluation or {}), **data.evaluation.model_dump(exclude_none=True)}
            evaluation["overall_score"] = overall_score(evaluation)
            evaluation["evaluated_by"] = actor.id
            evaluation["evaluated_at"] = models.utcnow().isoformat()
            application.evaluation = evaluation
        if data.offer is not None:
            if application.status in ("rejected", "withdrawn"):
                raise InvalidArgument(f"Cannot make an offer on a {application.status} application")
            offer = data.offer.model_dump(mode="json")
            offer["offered_date"] = models.utcnow().isoformat()
            offer["response"] = {"status": "pending", "response_date": None}
            application.offer = offer
        for key in ("priority", "internal_notes", "tags"):
            if key in fields:
                setattr(application, key, fields[key])
        self.repo.save(application)

        if application.status != old_status and application.status != "withdrawn":
            job = self.job_repo.get(application.job_id)
            self.notifications.create_and_send(
                application.applicant_id,
                "Application status updated",
                f"Your application for {job.title if job else 'a job'} is now {application.status.replace('_', ' ')}.",
                type="application_status",
                entity_type="Application",
                entity_id=application.id,
                sender_id=actor.id,
            )
        return application

    def _withdraw(self, application: models.Application, actor: models.User, withdrawal) -> None:
        if application.is_withdrawn:
            raise InvalidArgument("Application has already been withdrawn")
        if application.status in models.APPLICATION_TERMINAL:
            raise InvalidArgument(f"Cannot withdraw a {application.status} application")
        application.is_withdrawn = True
        application.withdrawn_at = models.utcnow()
        application.withdrawal_reason = withdrawal.reason
        application.can_reapply = withdrawal.can_reapply
        self._record(application, "withdrawn", actor, withdrawal.reason)

    def respond_to_offer(self, actor: models.User, application_id: int, data) -> models.Application:
        application = self.get_or_404(application_id)
        authorize(actor, "respond", "application", application)
        offer = dict(application.offer or {})
        if not offer.get("is_offered"):
            raise InvalidArgument("No offer has been made for this application")
        current = (offer.get("response") or {}).get("status", "pending")
        if current not in ("pending", "negotiating"):
            raise InvalidArgument(f"Offer has already been {current}")
        offer["response"] = {
            "status": data.status,
            "response_date": models.utcnow().isoformat(),
            "counter_offer": data.counter_offer,
            "rejection_reason": data.rejection_reason,
        }
        application.offer = offer
        self.repo.save(application)
        self.notifications.create_and_send(
            application.employer_id,
            "Offer response received",
            f"The candidate has {data.status} the offer.",
            type="application_status",
            entity_type="Application",
            entity_id=application.id,
            sender_id=actor.id,
        )
        return application

    def schedule_interview(self, actor: models.User, application_id: int, data) -> models.Interview:
        application = self.get_or_404(application_id)
        authorize(actor, "review", "application", application)
        if application.status in models.APPLICATION_TERMINAL:
            raise InvalidArgument(f"Cannot schedule an interview for a {application.status} application")
        interview = models.Interview(**data.model_dump())
        application.interviews.append(interview)
        if application.status in ("shortlisted", "under_review"):
            self._record(application, "interview_scheduled", actor, "Interview scheduled")
        self.repo.save(application)
        self.session.refresh(interview)
        self.notifications.create_and_send(
            application.applicant_id,
            "Interview scheduled",
            f"A {interview.type.replace('_', ' ')} interview has been scheduled for {interview.scheduled_date:%Y-%m-%d %H:%M} UTC.",
            type="interview_scheduled",
            category="info",
            priority="high",
            channels={"in_app": True, "email": True},
            entity_type="Application",
            entity_id=application.id,
            sender_id=actor.id,
        )
        return interview

    def update_interview(self, actor: models.User, application_id: int, interview_id: int, data) -> models.Interview:
        application = self.get_or_404(application_id)
        authorize(actor, "review", "application", application)
        interview = next((i for i in application.interviews if i.id == interview_id), None)
        if interview is None:
            raise NotFound("Interview not found")
        fields = data.model_dump(exclude_unset=True)
        new_status = fields.get("status")
        if new_status is not None:
            if interview.status not in ("scheduled", "rescheduled"):
                raise InvalidArgument(f"Cannot change a {interview.status} interview")
            if new_status == "rescheduled" and data.scheduled_date is None:
                raise InvalidArgument("A new scheduled_date is required to reschedule")
        if data.feedback is not None and (new_status or interview.status) != "completed":
            raise InvalidArgument("Feedback can only be recorded for a completed interview")
        if data.scheduled_date is not None:
            interview.scheduled_date = data.scheduled_date
        if data.feedback is not None:
            interview.feedback = data.feedback.model_dump(exclude_none=True)
        for key in ("notes", "recording_url"):
            if key in fields:
                setattr(interview, key, fields[key])
        if new_status is not None:
            interview.status = new_status
            if new_status == "completed" and application.status == "interview_scheduled":
                self._record(application, "interviewed", actor, "Interview completed")
        self.session.add(interview)
        self.repo.save(application)
        self.session.refresh(interview)
        return interview

    def add_communication(self, actor: models.User, application_id: int, data) -> dict:
        application = self.get_or_404(application_id)
        authorize(actor, "read", "application", application)
        entry = {
            "id": uuid.uuid4().hex[:24],
            "type": data.type,
            "direction": data.direction,
            "subject": data.subject,
            "content": data.content,
            "sent_by": actor.id,
            "sent_at": models.utcnow().isoformat(),
        }
        application.communications = list(application.communications or []) + [entry]
        flag_modified(application, "communications")
        self.repo.save(application)
        return entry

    def delete(self, actor: models.User, application_id: int) -> None:
        """Delete the row and decrement the job counters in one commit."""
        application = self.get_or_404(application_id)
        authorize(actor, "delete", "application", application)
        job = self.job_repo.get(application.job_id)
        if job is not None:
            job.current_applications = max(0, job.current_applications - 1)
            job.stats_applications = max(0, job.stats_applications - 1)
            self.session.add(job)
        self.session.delete(application)
        self.repo.commit()
        logger.info("application %s deleted by %s", application_id, actor.id)

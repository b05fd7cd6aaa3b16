"""Job applications and their interview/offer sub-resources."""

from typing import Optional

from fastapi import APIRouter, Depends
from sqlmodel import Session

from .. import models
from ..auth import get_current_user, require_user_types
from ..database import get_session
from ..responses import envelope
from ..schemas import ApplicationCreate, ApplicationUpdate, CommunicationIn, InterviewIn, InterviewUpdate, OfferResponseIn
from ..serializers import application_out, job_summary
from ..services import ApplicationService
from ..utils.pagination import PageParams, page_params

router = APIRouter()
applicants = require_user_types("jobseeker", "student")


def _out(svc: ApplicationService, actor: models.User, application: models.Application) -> dict:
    data = application_out(application, include_internal=svc.is_reviewer(actor, application))
    data["job"] = job_summary(svc.job_repo.get(application.job_id))
    return data


@router.get("")
def list_applications(
    status: Optional[str] = None,
    job_id: Optional[int] = None,
    params: PageParams = Depends(page_params(10)),
    actor: models.User = Depends(get_current_user),
    db: Session = Depends(get_session),
):
    svc = ApplicationService(db)
    items, pagination = svc.list_for(actor, params, status=status, job_id=job_id)
    return envelope([_out(svc, actor, a) for a in items], pagination=pagination)


@router.get("/{application_id}")
def get_application(application_id: int, actor: models.User = Depends(get_current_user), db: Session = Depends(get_session)):
    svc = ApplicationService(db)
    return envelope(_out(svc, actor, svc.get(actor, application_id)))


@router.post("", status_code=201)
def create_application(payload: ApplicationCreate, actor: models.User = Depends(applicants), db: Session = Depends(get_session)):
    svc = ApplicationService(db)
    application = svc.create(actor, payload)
    return envelope(_out(svc, actor, application), message="Application submitted successfully")


@router.put("/{application_id}")
def update_application(
    application_id: int,
    payload: ApplicationUpdate,
    actor: models.User = Depends(get_current_user),
    db: Session = Depends(get_session),
):
    svc = ApplicationService(db)
    application = svc.update(actor, application_id, payload)
    return envelope(_out(svc, actor, application), message="Application updated")


@router.post("/{application_id}/offer-response")
def respond_to_offer(
    application_id: int,
    payload: OfferResponseIn,
    actor: models.User = Depends(get_current_user),
    db: Session = Depends(get_session),
):
    svc = ApplicationService(db)
    application = svc.respond_to_offer(actor, application_id, payload)
    return envelope(_out(svc, actor, application), message="Offer response recorded")


@router.post("/{application_id}/schedule-interview", status_code=201)
def schedule_interview(
    application_id: int,
    payload: InterviewIn,
    actor: models.User = Depends(get_current_user),
    db: Session = Depends(get_session),
):
    interview = ApplicationService(db).schedule_interview(actor, application_id, payload)
    return envelope(interview.model_dump(exclude={"application_id"}), message="Interview scheduled")


@router.put("/{application_id}/interviews/{interview_id}")
def update_interview(
    application_id: int,
    interview_id: int,
    payload: InterviewUpdate,
    actor: models.User = Depends(get_current_user),
    db: Session = Depends(get_session),
):
    interview = ApplicationService(db).update_interview(actor, application_id, interview_id, payload)
    return envelope(interview.model_dump(exclude={"application_id"}), message="Interview updated")


@router.post("/{application_id}/communications", status_code=201)
def add_communication(
    application_id: int,
    payload: CommunicationIn,
    actor: models.User = Depends(get_current_user),
    db: Session = Depends(get_session),
):
    return envelope(ApplicationService(db).add_communication(actor, application_id, payload))


@router.delete("/{application_id}")
def delete_application(application_id: int, actor: models.User = Depends(get_current_user), db: Session = Depends(get_session)):
    ApplicationService(db).delete(actor, application_id)
    return envelope(message="Application deleted")

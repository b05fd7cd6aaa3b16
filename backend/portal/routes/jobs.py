from typing import Optional

from fastapi import APIRouter, Depends
from sqlmodel import Session

from .. import models
from ..auth import get_current_user, get_optional_user, require_user_types
from ..database import get_session
from ..responses import envelope
from ..schemas import JobCreate, JobUpdate
from ..serializers import application_out, job_out
from ..services import JobService
from ..utils.pagination import PageParams, page_params

router = APIRouter()
employers = require_user_types("employer")


@router.get("")
def list_jobs(
    search: Optional[str] = None,
    category: Optional[str] = None,
    job_type: Optional[str] = None,
    work_mode: Optional[str] = None,
    location: Optional[str] = None,
    experience_level: Optional[str] = None,
    skills: Optional[str] = None,
    min_salary: Optional[float] = None,
    max_salary: Optional[float] = None,
    params: PageParams = Depends(page_params(10)),
    db: Session = Depends(get_session),
):
    items, pagination = JobService(db).list(
        params, search=search, category=category, job_type=job_type, work_mode=work_mode,
        location=location, experience_level=experience_level, skills=skills,
        min_salary=min_salary, max_salary=max_salary,
    )
    return envelope([job_out(j) for j in items], pagination=pagination)


@router.get("/{job_id}")
def get_job(job_id: int, viewer: Optional[models.User] = Depends(get_optional_user), db: Session = Depends(get_session)):
    job, can_manage = JobService(db).view(job_id, viewer)
    return envelope(job_out(job, include_internal=can_manage))


@router.post("", status_code=201)
def create_job(payload: JobCreate, actor: models.User = Depends(employers), db: Session = Depends(get_session)):
    job = JobService(db).create(actor, payload)
    return envelope(job_out(job, include_internal=True), message="Job posted")


@router.put("/{job_id}")
def update_job(job_id: int, payload: JobUpdate, actor: models.User = Depends(get_current_user), db: Session = Depends(get_session)):
    job = JobService(db).update(actor, job_id, payload)
    return envelope(job_out(job, include_internal=True), message="Job updated")


@router.delete("/{job_id}")
def delete_job(job_id: int, actor: models.User = Depends(get_current_user), db: Session = Depends(get_session)):
    if JobService(db).delete(actor, job_id) == "closed":
        return envelope(message="Job has applications and was closed")
    return envelope(message="Job deleted")


@router.get("/{job_id}/applications")
def job_applications(
    job_id: int,
    status: Optional[str] = None,
    params: PageParams = Depends(page_params(20)),
    actor: models.User = Depends(get_current_user),
    db: Session = Depends(get_session),
):
    items, pagination = JobService(db).applications(actor, job_id, params, status)
    return envelope([application_out(a) for a in items], pagination=pagination)


@router.get("/{job_id}/applications/stats")
def job_application_stats(job_id: int, actor: models.User = Depends(get_current_user), db: Session = Depends(get_session)):
    return envelope(JobService(db).application_stats(actor, job_id))

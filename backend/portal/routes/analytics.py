from fastapi import APIRouter, Depends
from sqlmodel import Session

from .. import models
from ..auth import require_permission, require_roles
from ..database import get_session
from ..models import ADMIN_ROLES
from ..responses import envelope
from ..services import AnalyticsService

router = APIRouter()


@router.get("/overview")
def overview(_: models.User = Depends(require_permission("view_analytics")), db: Session = Depends(get_session)):
    return envelope(AnalyticsService(db).overview())


@router.post("/reconcile")
def reconcile(_: models.User = Depends(require_roles(*ADMIN_ROLES)), db: Session = Depends(get_session)):
    result = AnalyticsService(db).reconcile()
    return envelope(result, message=f"Reconciled {result['corrected']} record(s)")

from typing import Optional

from fastapi import APIRouter, Depends, Query
from sqlmodel import Session

from .. import models
from ..auth import get_current_user, require_roles
from ..database import get_session
from ..models import ADMIN_ROLES
from ..responses import envelope
from ..schemas import NotificationCreate
from ..serializers import notification_out
from ..services import NotificationService
from ..utils.pagination import PageParams, page_params

router = APIRouter()


@router.get("")
def list_notifications(
    is_read: Optional[bool] = None,
    type: Optional[str] = None,
    params: PageParams = Depends(page_params(20)),
    user: models.User = Depends(get_current_user),
    db: Session = Depends(get_session),
):
    svc = NotificationService(db)
    items, pagination = svc.list_for(user, params, is_read=is_read, type=type)
    return envelope(
        [notification_out(n) for n in items],
        pagination=pagination,
        unread_count=svc.unread_count(user),
    )


@router.get("/unread-count")
def unread_count(user: models.User = Depends(get_current_user), db: Session = Depends(get_session)):
    return envelope({"unread_count": NotificationService(db).unread_count(user)})


@router.get("/live")
def live_notifications(
    limit: Optional[int] = Query(None, ge=1, le=100),
    user: models.User = Depends(get_current_user),
    db: Session = Depends(get_session),
):
    """Drain the in-app pushes queued for the caller since the last poll."""
    return envelope(NotificationService(db).live(user, limit))


@router.put("/read-all")
def mark_all_read(user: models.User = Depends(get_current_user), db: Session = Depends(get_session)):
    changed = NotificationService(db).mark_all_read(user)
    return envelope({"updated": changed}, message="All notifications marked as read")


@router.post("", status_code=201)
def send_notification(
    payload: NotificationCreate,
    sender: models.User = Depends(require_roles(*ADMIN_ROLES)),
    db: Session = Depends(get_session),
):
    result = NotificationService(db).broadcast(sender, payload)
    return envelope(result, message=f"Notification sent to {result['recipients']} recipient(s)")


@router.get("/{notification_id}")
def get_notification(notification_id: int, user: models.User = Depends(get_current_user), db: Session = Depends(get_session)):
    return envelope(notification_out(NotificationService(db).get(user, notification_id)))


@router.put("/{notification_id}/read")
def mark_read(notification_id: int, user: models.User = Depends(get_current_user), db: Session = Depends(get_session)):
    return envelope(notification_out(NotificationService(db).mark_read(user, notification_id)))


@router.delete("/{notification_id}")
def delete_notification(notification_id: int, user: models.User = Depends(get_current_user), db: Session = Depends(get_session)):
    NotificationService(db).delete(user, notification_id)
    return envelope(message="Notification deleted")

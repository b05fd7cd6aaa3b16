from typing import Optional

from fastapi import APIRouter, Depends
from sqlmodel import Session

from .. import models
from ..auth import get_current_user, require_roles
from ..database import get_session
from ..models import ADMIN_ROLES
from ..responses import envelope
from ..schemas import UserUpdate
from ..serializers import public_user
from ..services import UserService
from ..utils.pagination import PageParams, page_params

router = APIRouter()
admin_only = require_roles(*ADMIN_ROLES)


@router.get("")
def list_users(
    user_type: Optional[str] = None,
    role: Optional[str] = None,
    is_active: Optional[bool] = None,
    search: Optional[str] = None,
    params: PageParams = Depends(page_params(10)),
    _: models.User = Depends(admin_only),
    db: Session = Depends(get_session),
):
    items, pagination = UserService(db).list(params, user_type=user_type, role=role, is_active=is_active, search=search)
    return envelope([public_user(u) for u in items], pagination=pagination)


@router.get("/{user_id}")
def get_user(user_id: int, actor: models.User = Depends(get_current_user), db: Session = Depends(get_session)):
    return envelope(public_user(UserService(db).get(actor, user_id)))


@router.put("/{user_id}")
def update_user(user_id: int, payload: UserUpdate, actor: models.User = Depends(get_current_user), db: Session = Depends(get_session)):
    return envelope(public_user(UserService(db).update(actor, user_id, payload)), message="User updated")


@router.post("/{user_id}/unlock")
def unlock_user(user_id: int, _: models.User = Depends(admin_only), db: Session = Depends(get_session)):
    return envelope(public_user(UserService(db).unlock(user_id)), message="Account unlocked")


@router.delete("/{user_id}")
def deactivate_user(user_id: int, actor: models.User = Depends(admin_only), db: Session = Depends(get_session)):
    UserService(db).deactivate(actor, user_id)
    return envelope(message="User account deactivated")

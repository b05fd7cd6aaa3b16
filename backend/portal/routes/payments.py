from datetime import datetime
from typing import Optional

from fastapi import APIRouter, Depends
from sqlmodel import Session

from .. import models
from ..auth import get_current_user, require_permission
from ..database import get_session
from ..models import naive_utc
from ..responses import envelope
from ..schemas import PaymentCreate, PaymentStatusIn, RefundIn, RefundStatusIn
from ..serializers import payment_out
from ..services import PaymentService
from ..utils.pagination import PageParams, page_params

router = APIRouter()


@router.get("")
def list_payments(
    status: Optional[str] = None,
    payment_type: Optional[str] = None,
    user_id: Optional[int] = None,
    start_date: Optional[datetime] = None,
    end_date: Optional[datetime] = None,
    params: PageParams = Depends(page_params(10)),
    actor: models.User = Depends(get_current_user),
    db: Session = Depends(get_session),
):
    items, pagination = PaymentService(db).list_for(
        actor, params, status=status, payment_type=payment_type, user_id=user_id,
        start=naive_utc(start_date), end=naive_utc(end_date),
    )
    return envelope([payment_out(p) for p in items], pagination=pagination)


@router.get("/report")
def payment_report(
    start_date: Optional[datetime] = None,
    end_date: Optional[datetime] = None,
    _: models.User = Depends(require_permission("view_analytics")),
    db: Session = Depends(get_session),
):
    return envelope(PaymentService(db).report(naive_utc(start_date), naive_utc(end_date)))


@router.get("/{payment_id}")
def get_payment(payment_id: int, actor: models.User = Depends(get_current_user), db: Session = Depends(get_session)):
    return envelope(payment_out(PaymentService(db).get(actor, payment_id)))


@router.post("", status_code=201)
def create_payment(payload: PaymentCreate, actor: models.User = Depends(get_current_user), db: Session = Depends(get_session)):
    payment = PaymentService(db).create(actor, payload)
    return envelope(payment_out(payment), message="Payment created")


@router.put("/{payment_id}/status")
def update_payment_status(
    payment_id: int,
    payload: PaymentStatusIn,
    actor: models.User = Depends(get_current_user),
    db: Session = Depends(get_session),
):
    payment = PaymentService(db).update_status(actor, payment_id, payload)
    return envelope(payment_out(payment), message="Payment status updated")


@router.post("/{payment_id}/refunds", status_code=201)
def request_refund(
    payment_id: int,
    payload: RefundIn,
    actor: models.User = Depends(get_current_user),
    db: Session = Depends(get_session),
):
    refund = PaymentService(db).request_refund(actor, payment_id, payload)
    return envelope(refund.model_dump(exclude={"payment_id"}), message="Refund requested")


@router.put("/{payment_id}/refunds/{refund_id}")
def update_refund(
    payment_id: int,
    refund_id: int,
    payload: RefundStatusIn,
    actor: models.User = Depends(get_current_user),
    db: Session = Depends(get_session),
):
    refund = PaymentService(db).update_refund(actor, payment_id, refund_id, payload)
    return envelope(refund.model_dump(exclude={"payment_id"}), message="Refund updated")

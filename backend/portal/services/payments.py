"""Payments and the refund sub-ledger.

Payment status moves:

    pending    -> processing | failed | cancelled
    processing -> completed | failed | cancelled

Refund status moves:

    pending    -> processing | completed | failed
    processing -> completed | failed

A refund may never push the completed refund total above the payment's
final amount; the ceiling is checked when a refund is requested and again
when it completes. Once refunds complete, the payment status is derived
from their sum (`partially_refunded` or `refunded`).
"""

import logging
import uuid
from collections import defaultdict
from datetime import datetime
from typing import Optional

from sqlmodel import Session, select

from .. import models, repositories
from ..errors import InvalidArgument, NotFound
from ..policies import allows, authorize
from ..utils.pagination import PageParams, paginate, resolve_sort
from .enrollments import EnrollmentService
from .notifications import NotificationService

logger = logging.getLogger("portal.payments")

PAYMENT_TRANSITIONS = {
    "pending": {"processing", "failed", "cancelled"},
    "processing": {"completed", "failed", "cancelled"},
}
REFUND_TRANSITIONS = {
    "pending": {"processing", "completed", "failed"},
    "processing": {"completed", "failed"},
}
REFUNDABLE = ("completed", "partially_refunded")
EPSILON = 1e-9
PAYMENT_SORTS = {
    "created_at": models.Payment.created_at,
    "amount": models.Payment.amount_final,
    "status": models.Payment.status,
}


def _ref(prefix: str) -> str:
    return f"{prefix}{uuid.uuid4().hex[:16].upper()}"


def _invoice_number(now: datetime) -> str:
    return f"INV-{now:%Y%m%d}-{uuid.uuid4().hex[:8].upper()}"


class PaymentService:
    def __init__(self, session: Session):
        self.session = session
        self.repo = repositories.PaymentRepository(session)
        self.notifications = NotificationService(session)

    def get_or_404(self, payment_id: int) -> models.Payment:
        payment = self.repo.get(payment_id)
        if payment is None:
            raise NotFound("Payment not found")
        return payment

    def _price(self, data):
        """Return `(description, original, discount, currency)` for the paid entity."""
        if data.entity_type == "Course":
            course = self.session.get(models.Course, data.entity_id)
            if course is None:
                raise NotFound("Course not found")
            if course.pricing_type != "paid":
                raise InvalidArgument("This course is free")
            discount = data.amount_discount
            pct = course.discount_percentage
            if pct and (course.discount_valid_until is None or course.discount_valid_until > models.utcnow()):
                discount = max(discount, round(course.price_amount * pct / 100, 2))
            return course.title, course.price_amount, discount, course.currency
        if data.entity_type == "Job" and self.session.get(models.Job, data.entity_id) is None:
            raise NotFound("Job not found")
        if data.amount_original is None:
            raise InvalidArgument("amount_original is required for this payment")
        return f"{data.payment_type.replace('_', ' ')} #{data.entity_id}", data.amount_original, data.amount_discount, data.currency or "INR"

    def create(self, actor: models.User, data) -> models.Payment:
        description, original, discount, currency = self._price(data)
        final = round(original - discount + data.amount_tax, 2)
        if final < 0:
            raise InvalidArgument("Discount cannot exceed the payable amount")
        now = models.utcnow()
        payment = models.Payment(
            user_id=actor.id,
            transaction_id=_ref("TXN"),
            order_id=_ref("ORD"),
            invoice_number=_invoice_number(now),
            invoice_date=now,
            invoice_items=[{"description": description, "quantity": 1, "unit_price": original, "total": original}],
            payment_type=data.payment_type,
            entity_type=data.entity_type,
            entity_id=data.entity_id,
            amount_original=original,
            amount_discount=discount,
            amount_tax=data.amount_tax,
            amount_final=final,
            currency=currency,
            payment_method=data.payment_method,
            payment_gateway=data.payment_gateway,
            billing_details=data.billing_details,
            discount=data.discount,
        )
        self.repo.save(payment)
        logger.info("payment %s created for %s %s amount=%.2f", payment.transaction_id, payment.entity_type, payment.entity_id, final)
        return payment

    def list_for(self, actor: models.User, params: PageParams, status=None, payment_type=None,
                 user_id=None, start: Optional[datetime] = None, end: Optional[datetime] = None):
        stmt = select(models.Payment)
        if allows(actor, "update_status", "payment"):
            if user_id is not None:
                stmt = stmt.where(models.Payment.user_id == user_id)
        else:
            stmt = stmt.where(models.Payment.user_id == actor.id)
        if status:
            stmt = stmt.where(models.Payment.status == status)
        if payment_type:
            stmt = stmt.where(models.Payment.payment_type == payment_type)
        if start:
            stmt = stmt.where(models.Payment.created_at >= start)
        if end:
            stmt = stmt.where(models.Payment.created_at <= end)
        order = resolve_sort(params.sort, PAYMENT_SORTS) or [models.Payment.created_at.desc()]
        return paginate(self.session, stmt, params, order)

    def get(self, actor: models.User, payment_id: int) -> models.Payment:
        payment = self.get_or_404(payment_id)
        authorize(actor, "read", "payment", payment)
        return payment

    def update_status(self, actor: models.User, payment_id: int, data) -> models.Payment:
        payment = self.get_or_404(payment_id)
        authorize(actor, "update_status", "payment", payment)
        if data.status not in PAYMENT_TRANSITIONS.get(payment.status, ()):
            raise InvalidArgument(f"Cannot change payment status from {payment.status} to {data.status}")
        now = models.utcnow()
        payment.status = data.status
        if data.gateway_transaction_id:
            payment.gateway_transaction_id = data.gateway_transaction_id
        if data.status == "completed":
            payment.completed_at = now
            if payment.entity_type == "Course":
                EnrollmentService(self.session).link_payment(payment)
        elif data.status == "failed":
            payment.failed_at = now
            payment.failure = data.error.model_dump() if data.error else {"message": "Payment failed"}
        self.repo.save(payment)
        logger.info("payment %s -> %s", payment.transaction_id, payment.status)

        if data.status in ("completed", "failed"):
            ok = data.status == "completed"
            self.notifications.create_and_send(
                payment.user_id,
                "Payment successful" if ok else "Payment failed",
                f"Your payment of {payment.amount_final:.2f} {payment.currency} "
                + ("was received." if ok else "could not be processed."),
                type="payment_success" if ok else "payment_failed",
                category="success" if ok else "error",
                entity_type="Payment",
                entity_id=payment.id,
            )
        return payment

    def request_refund(self, actor: models.User, payment_id: int, data) -> models.Refund:
        payment = self.get_or_404(payment_id)
        authorize(actor, "refund", "payment", payment)
        if payment.status not in REFUNDABLE:
            raise InvalidArgument("Only completed payments can be refunded")
        available = round(payment.amount_final - payment.total_refunded, 2)
        if data.amount > available + EPSILON:
            raise InvalidArgument(f"Refund amount exceeds the refundable balance of {available:.2f}")
        refund = models.Refund(refund_id=_ref("RFD"), amount=data.amount, reason=data.reason, notes=data.notes)
        payment.refunds.append(refund)
        self.repo.save(payment)
        self.session.refresh(refund)
        logger.info("refund %s requested on %s amount=%.2f", refund.refund_id, payment.transaction_id, refund.amount)
        return refund

    def update_refund(self, actor: models.User, payment_id: int, refund_id: int, data) -> models.Refund:
        payment = self.get_or_404(payment_id)
        authorize(actor, "process_refund", "payment", payment)
        refund = self.repo.get_refund(payment.id, refund_id)
        if refund is None:
            raise NotFound("Refund not found")
        if data.status not in REFUND_TRANSITIONS.get(refund.status, ()):
            raise InvalidArgument(f"Cannot change refund status from {refund.status} to {data.status}")
        if data.status == "completed":
            available = payment.amount_final - payment.total_refunded
            if refund.amount > available + EPSILON:
                raise InvalidArgument(f"Refund amount exceeds the refundable balance of {available:.2f}")
        refund.status = data.status
        refund.processed_by = actor.id
        if data.status in ("completed", "failed"):
            refund.processed_at = models.utcnow()
        if data.gateway_refund_id:
            refund.gateway_refund_id = data.gateway_refund_id
        if data.notes:
            refund.notes = data.notes
        if data.status == "completed":
            refunded = payment.total_refunded
            payment.status = "refunded" if refunded >= payment.amount_final - EPSILON else "partially_refunded"
        self.session.add(refund)
        self.repo.save(payment)
        self.session.refresh(refund)
        logger.info("refund %s -> %s (payment %s now %s)", refund.refund_id, refund.status, payment.transaction_id, payment.status)
        return refund

    def report(self, start: Optional[datetime] = None, end: Optional[datetime] = None) -> dict:
        """Count and sum payments grouped by day and status."""
        rows = defaultdict(lambda: {"count": 0, "total": 0.0})
        for payment in self.repo.between(start, end):
            key = (payment.created_at.date().isoformat(), payment.status)
            rows[key]["count"] += 1
            rows[key]["total"] = round(rows[key]["total"] + payment.amount_final, 2)
        items = [
            {"date": day, "status": status, **values}
            for (day, status), values in sorted(rows.items())
        ]
        return {
            "items": items,
            "total_count": sum(r["count"] for r in items),
            "total_amount": round(sum(r["total"] for r in items), 2),
        }

"""Notification dispatcher.

`create_and_send` persists a notification first and then fans it out to
each enabled channel. Every channel is tracked independently
(`enabled`, `sent`, `sent_at`) and every delivery try is appended to
`delivery_attempts`. The notification ends up `sent` when at least one
channel delivered, `failed` otherwise.
"""

import logging
import uuid
from typing import Iterable, List, Optional

from fastapi.encoders import jsonable_encoder
from sqlalchemy.orm.attributes import flag_modified
from sqlmodel import Session, select

from .. import models, repositories
from ..errors import InvalidArgument, NotFound
from ..policies import authorize
from ..serializers import notification_out
from ..utils import email_templates
from ..utils.mailer import send_email
from ..utils.pagination import PageParams, paginate
from ..utils.push import push_hub

logger = logging.getLogger("portal.notifications")


def _channels(enabled: Optional[dict]) -> dict:
    enabled = enabled or {"in_app": True}
    return {
        name: {"enabled": bool(enabled.get(name)), "sent": False, "sent_at": None}
        for name in models.NOTIFICATION_CHANNELS
    }


class NotificationService:
    def __init__(self, session: Session):
        self.session = session
        self.repo = repositories.NotificationRepository(session)
        self.user_repo = repositories.UserRepository(session)

    def create_and_send(
        self,
        recipient_id: int,
        title: str,
        message: str,
        type: str = "other",
        category: str = "info",
        priority: str = "medium",
        channels: Optional[dict] = None,
        entity_type: Optional[str] = None,
        entity_id: Optional[int] = None,
        action: Optional[dict] = None,
        sender_id: Optional[int] = None,
        batch_id: Optional[str] = None,
        recipient_type: str = "user",
        expires_at=None,
        extra: Optional[dict] = None,
    ) -> models.Notification:
        """Persist one notification and deliver it over its enabled channels."""
        notification = models.Notification(
            recipient_id=recipient_id,
            recipient_type=recipient_type,
            title=title[:200],
            message=message[:1000],
            type=type,
            category=category,
            priority=priority,
            entity_type=entity_type,
            entity_id=entity_id,
            channels=_channels(channels),
            action=action or {},
            sender_id=sender_id,
            sender_type="user" if sender_id else "system",
            batch_id=batch_id,
            expires_at=expires_at,
            extra=extra or {},
        )
        self.repo.save(notification)
        self._deliver(notification)
        return notification

    def _deliver(self, notification: models.Notification) -> None:
        recipient = self.user_repo.get(notification.recipient_id)
        now = models.utcnow()
        channels = notification.channels
        for name, state in channels.items():
            if not state.get("enabled"):
                continue
            ok, error = self._send_channel(name, notification, recipient)
            if ok:
                state["sent"] = True
                state["sent_at"] = now.isoformat()
            notification.delivery_attempts.append(
                {"channel": name, "attempted_at": now.isoformat(), "success": ok, "error": error}
            )
        notification.status = "sent" if any(c.get("sent") for c in channels.values()) else "failed"
        flag_modified(notification, "channels")
        flag_modified(notification, "delivery_attempts")
        self.repo.save(notification)
        if notification.status == "failed":
            logger.warning("notification %s not delivered on any channel", notification.id)

    def _send_channel(self, name: str, notification: models.Notification, recipient: Optional[models.User]):
        if name == "in_app":
            push_hub.publish(notification.recipient_id, jsonable_encoder(notification_out(notification)))
            return True, None
        if name == "email":
            if recipient is None:
                return False, "recipient not found"
            if (recipient.preferences or {}).get("email_notifications") is False:
                return False, "disabled by recipient preference"
            subject, html = email_templates.notification(notification.title, notification.message)
            if send_email(recipient.email, subject, html, text=notification.message):
                return True, None
            return False, "email delivery failed"
        return False, "channel not configured"

    def broadcast(self, sender: models.User, data) -> dict:
        """Send `data` to one user or, for `recipient_type == "all"`, every active user."""
        if data.recipient_type == "all":
            recipients: Iterable[int] = self.user_repo.active_ids()
        else:
            if self.user_repo.get(data.recipient_id) is None:
                raise NotFound("Recipient not found")
            recipients = [data.recipient_id]
        batch_id = uuid.uuid4().hex
        created: List[models.Notification] = []
        for rid in recipients:
            created.append(self.create_and_send(
                rid,
                data.title,
                data.message,
                type=data.type,
                category=data.category,
                priority=data.priority,
                channels=data.channels.model_dump(),
                action=data.action,
                sender_id=sender.id,
                batch_id=batch_id,
                recipient_type=data.recipient_type,
                expires_at=data.expires_at,
            ))
        logger.info("broadcast %s sent to %d recipient(s)", batch_id, len(created))
        return {
            "batch_id": batch_id,
            "recipients": len(created),
            "sent": sum(1 for n in created if n.status == "sent"),
            "failed": sum(1 for n in created if n.status == "failed"),
        }

    def list_for(self, user: models.User, params: PageParams, is_read: Optional[bool] = None, type: Optional[str] = None):
        stmt = select(models.Notification).where(models.Notification.recipient_id == user.id)
        if is_read is not None:
            stmt = stmt.where(models.Notification.is_read == is_read)
        if type:
            if type not in models.NOTIFICATION_TYPES:
                raise InvalidArgument(f"Unknown notification type '{type}'")
            stmt = stmt.where(models.Notification.type == type)
        order = [models.Notification.created_at.desc(), models.Notification.id.desc()]
        return paginate(self.session, stmt, params, order)

    def get(self, user: models.User, notification_id: int) -> models.Notification:
        notification = self.repo.get(notification_id)
        if notification is None:
            raise NotFound("Notification not found")
        authorize(user, "read", "notification", notification)
        return notification

    def unread_count(self, user: models.User) -> int:
        return self.repo.unread_count(user.id)

    def _mark(self, notification: models.Notification, now) -> bool:
        if notification.is_read:
            return False
        notification.is_read = True
        notification.read_at = now
        notification.status = "read"
        return True

    def mark_read(self, user: models.User, notification_id: int) -> models.Notification:
        notification = self.get(user, notification_id)
        if self._mark(notification, models.utcnow()):
            self.repo.save(notification)
        return notification

    def mark_all_read(self, user: models.User) -> int:
        now = models.utcnow()
        changed = 0
        for notification in self.repo.unread_for(user.id):
            changed += self._mark(notification, now)
            self.session.add(notification)
        self.repo.commit()
        return changed

    def delete(self, user: models.User, notification_id: int) -> None:
        notification = self.repo.get(notification_id)
        if notification is None:
            raise NotFound("Notification not found")
        authorize(user, "delete", "notification", notification)
        self.repo.delete(notification)

    def live(self, user: models.User, limit: Optional[int] = None) -> list:
        return push_hub.drain(user.id, limit)

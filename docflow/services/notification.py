"""
Document Approval Workflow Engine
Notification Service.

NotificationService writes and reads the in-app notification outbox.
Workflow transitions publish a WorkflowEvent through a NotificationHook;
the default InAppNotificationHook turns each event into one Notification
row per recipient, added to the caller's transaction (the transition
commits them together). Delivery beyond the outbox is external.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass
from datetime import datetime, timezone
from typing import Protocol

from sqlalchemy import func, or_, select, update

from docflow.models import db
from docflow.models.notification import Notification

logger = logging.getLogger(__name__)


# ── Events ───────────────────────────────────────────────────────────────────

_SEVERITY_BY_EVENT = {
    "APPROVED": "success",
    "REJECTED": "error",
    "EXPIRED": "error",
    "CANCELLED": "warning",
    "STEP_STUCK": "warning",
    "TASK_OVERDUE": "warning",
}


@dataclass(frozen=True)
class WorkflowEvent:
    instance_id: int
    event_type: str
    recipients: tuple[str, ...]
    title: str = ""
    message: str = ""
    task_id: int | None = None


class NotificationHook(Protocol):
    def emit(self, event: WorkflowEvent) -> None:
        ...


class InAppNotificationHook:
    """Persist events as Notification rows inside the current transaction."""

    def emit(self, event: WorkflowEvent) -> None:
        if not event.recipients:
            return
        NotificationService.broadcast(
            title=event.title or f"Workflow {event.instance_id}: {event.event_type}",
            message=event.message,
            event_type=event.event_type,
            severity=_SEVERITY_BY_EVENT.get(event.event_type, "info"),
            instance_id=event.instance_id,
            task_id=event.task_id,
            recipients=event.recipients,
            commit=False,
        )
        logger.debug(
            "Queued %s notification(s) for instance %s",
            len(event.recipients), event.instance_id,
            extra={"instance_id": event.instance_id, "event_type": event.event_type},
        )


class NotificationService:
    """Stateless service class for notification operations."""

    # ── Create ────────────────────────────────────────────────────────────

    @staticmethod
    def create(*, recipient, title, event_type, message="", severity="info",
               instance_id=None, task_id=None, commit=True):
        notif = Notification(
            recipient=recipient,
            title=title,
            message=message,
            event_type=event_type,
            severity=severity,
            instance_id=instance_id,
            task_id=task_id,
        )
        db.session.add(notif)
        if commit:
            db.session.commit()
        return notif

    @staticmethod
    def broadcast(*, recipients, title, event_type, message="", severity="info",
                  instance_id=None, task_id=None, commit=True):
        """One notification per distinct recipient."""
        notifications = []
        for r in dict.fromkeys(recipients):
            notif = Notification(
                recipient=r,
                title=title,
                message=message,
                event_type=event_type,
                severity=severity,
                instance_id=instance_id,
                task_id=task_id,
            )
            db.session.add(notif)
            notifications.append(notif)
        if commit:
            db.session.commit()
        return notifications

    # ── Query ─────────────────────────────────────────────────────────────

    @staticmethod
    def list_for_recipient(recipient, unread_only=False, limit=50, offset=0):
        """Notifications for a recipient, newest first. Returns (items, total)."""
        stmt = select(Notification).where(Notification.recipient == recipient)
        if unread_only:
            stmt = stmt.where(Notification.is_read.is_(False))
        total = db.session.execute(
            select(func.count()).select_from(stmt.subquery())
        ).scalar_one()
        items = db.session.execute(
            stmt.order_by(Notification.created_at.desc(), Notification.id.desc())
            .offset(offset).limit(limit)
        ).scalars().all()
        return items, total

    @staticmethod
    def unread_count(recipient):
        return db.session.execute(
            select(func.count(Notification.id)).where(
                Notification.recipient == recipient,
                or_(Notification.is_read.is_(False), Notification.is_read.is_(None)),
            )
        ).scalar_one()

    # ── Actions ───────────────────────────────────────────────────────────

    @staticmethod
    def mark_read(notification_id, recipient):
        """Mark one of the recipient's notifications as read; None if not theirs."""
        notif = db.session.get(Notification, notification_id)
        if notif is None or notif.recipient != recipient:
            return None
        notif.mark_read()
        db.session.commit()
        return notif

    @staticmethod
    def mark_all_read(recipient):
        result = db.session.execute(
            update(Notification)
            .where(Notification.recipient == recipient, Notification.is_read.is_(False))
            .values(is_read=True, read_at=datetime.now(timezone.utc))
            .execution_options(synchronize_session=False)
        )
        db.session.commit()
        return result.rowcount

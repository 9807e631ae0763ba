"""
Document Approval Workflow Engine
Notification outbox model.

One row per recipient per workflow event, written in the same transaction
as the transition that caused it. Delivery (mail, chat, push) is done by an
external consumer that reads unsent rows.
"""

from datetime import datetime, timezone

from docflow.models import db


NOTIFICATION_SEVERITIES = {"info", "warning", "error", "success"}


class Notification(db.Model):
    __tablename__ = "notifications"
    __table_args__ = (
        db.Index("ix_notification_recipient_read", "recipient", "is_read"),
    )

    id = db.Column(db.Integer, primary_key=True)
    recipient = db.Column(db.String(150), nullable=False, index=True)
    event_type = db.Column(db.String(30), nullable=False, comment="TASK_ASSIGNED / APPROVED / TASK_OVERDUE / ...")
    title = db.Column(db.String(300), nullable=False)
    message = db.Column(db.Text, default="")
    severity = db.Column(db.String(20), default="info")

    # Source entity
    instance_id = db.Column(
        db.Integer, db.ForeignKey("workflow_instances.id", ondelete="CASCADE"), nullable=True, index=True,
    )
    task_id = db.Column(db.Integer, nullable=True)

    is_read = db.Column(db.Boolean, default=False)
    read_at = db.Column(db.DateTime(timezone=True), nullable=True)
    created_at = db.Column(db.DateTime(timezone=True), default=lambda: datetime.now(timezone.utc))

    def mark_read(self, at=None):
        self.is_read = True
        self.read_at = at or datetime.now(timezone.utc)

    def to_dict(self):
        return {
            "id": self.id,
            "recipient": self.recipient,
            "event_type": self.event_type,
            "title": self.title,
            "message": self.message,
            "severity": self.severity,
            "instance_id": self.instance_id,
            "task_id": self.task_id,
            "is_read": self.is_read,
            "read_at": self.read_at.isoformat() if self.read_at else None,
            "created_at": self.created_at.isoformat() if self.created_at else None,
        }

    def __repr__(self):
        return f"<Notification {self.id}: {self.event_type} → {self.recipient}>"

from __future__ import annotations

from ..extensions import db
from academy.time_utils import to_utc_z, utcnow

NOTIFICATION_TYPES = (
    "subscription_activated",
    "subscription_cancelled",
    "subscription_expired",
    "subscription_expiring",
    "payment_refunded",
    "system_announcement",
    "other",
)
PRIORITIES = ("low", "medium", "high")


class Notification(db.Model):
    """In-app notification. Written after the domain change it reports has committed."""
    __tablename__ = "notifications"
    __table_args__ = (
        db.Index("ix_notifications_recipient_read", "recipient_id", "read"),
        db.Index("ix_notifications_related", "related_model", "related_id"),
        {"sqlite_autoincrement": True},
    )

    id = db.Column(db.Integer, primary_key=True)
    recipient_id = db.Column(db.Integer, db.ForeignKey("users.id"), nullable=False, index=True)
    notification_type = db.Column(db.String(32), nullable=False)
    title = db.Column(db.String(160), nullable=False)
    message = db.Column(db.Text, nullable=False)
    related_model = db.Column(db.String(32), nullable=True)
    related_id = db.Column(db.Integer, nullable=True)
    priority = db.Column(db.String(8), nullable=False, default="medium")
    read = db.Column(db.Boolean, nullable=False, default=False)
    created_at = db.Column(db.DateTime, nullable=False, default=utcnow, server_default=db.func.now())

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "recipient_id": self.recipient_id,
            "type": self.notification_type,
            "title": self.title,
            "message": self.message,
            "related": {"model": self.related_model, "id": self.related_id} if self.related_model else None,
            "priority": self.priority,
            "read": self.read,
            "created_at": to_utc_z(self.created_at),
        }

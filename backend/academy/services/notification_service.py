# Overview: Fire-and-forget notification dispatch for subscription lifecycle events.

"""
Notification dispatch

Notifications are informed, never consulted: dispatch runs only after the
domain write it reports has committed, and a failure here is rolled back and
logged without reaching the caller.
"""

from __future__ import annotations

from datetime import datetime, timedelta

from flask import current_app

from ..extensions import db
from ..errors import NotFoundError
from ..models import Notification, Subscription
from ..models.notifications import NOTIFICATION_TYPES
from ..models.subscriptions import STATUS_ACTIVE
from academy.time_utils import utcnow


SUBSCRIPTION_MESSAGES = {
    "subscription_activated": ("Subscription active", "Your {plan} subscription is now active until {end}."),
    "subscription_cancelled": ("Subscription cancelled", "Your {plan} subscription has been cancelled."),
    "subscription_expired": ("Subscription expired", "Your {plan} subscription expired on {end}."),
    "subscription_expiring": ("Subscription expiring soon", "Your {plan} subscription ends on {end}. Renew to keep training."),
    "payment_refunded": ("Payment refunded", "A refund was issued for your {plan} subscription."),
}


def dispatch(
    *,
    recipient_id: int,
    notification_type: str,
    title: str,
    message: str,
    related_model: str | None = None,
    related_id: int | None = None,
    priority: str = "medium",
) -> Notification | None:
    """
    Persist one notification. Never raises.

    Returns the notification, or None when it could not be written.
    """
    if notification_type not in NOTIFICATION_TYPES:
        notification_type = "other"
    try:
        notification = Notification(
            recipient_id=recipient_id,
            notification_type=notification_type,
            title=title,
            message=message,
            related_model=related_model,
            related_id=related_id,
            priority=priority,
            created_at=utcnow(),
        )
        db.session.add(notification)
        db.session.commit()
        return notification
    except Exception:
        db.session.rollback()
        current_app.logger.warning(
            "Failed to dispatch %s notification to user %s", notification_type, recipient_id, exc_info=True
        )
        return None


def notify_subscription_event(subscription: Subscription, notification_type: str) -> Notification | None:
    """Render and dispatch a lifecycle notification for a committed subscription change."""
    try:
        title, template = SUBSCRIPTION_MESSAGES[notification_type]
        message = template.format(
            plan=subscription.plan.name if subscription.plan else "academy",
            end=subscription.end_date.date().isoformat(),
        )
        recipient_id = subscription.student_id
        subscription_id = subscription.id
    except Exception:
        db.session.rollback()
        current_app.logger.warning("Failed to render %s notification", notification_type, exc_info=True)
        return None

    return dispatch(
        recipient_id=recipient_id,
        notification_type=notification_type,
        title=title,
        message=message,
        related_model="Subscription",
        related_id=subscription_id,
        priority="high" if notification_type in ("subscription_expired", "subscription_expiring") else "medium",
    )


def notify_expiring_subscriptions(within_days: int | None = None, now: datetime | None = None) -> int:
    """
    Remind students whose active subscription ends within the window.

    Idempotent: a subscription that already has an expiring reminder is skipped.
    Returns the number of reminders sent.
    """
    now = now or utcnow()
    if within_days is None:
        within_days = current_app.config.get("EXPIRING_SOON_DAYS", 30)

    already_notified = db.select(Notification.related_id).where(
        Notification.related_model == "Subscription",
        Notification.notification_type == "subscription_expiring",
        Notification.related_id.is_not(None),
    )
    candidates = (
        db.session.query(Subscription)
        .filter(
            Subscription.status == STATUS_ACTIVE,
            Subscription.end_date >= now,
            Subscription.end_date <= now + timedelta(days=within_days),
            Subscription.id.not_in(already_notified),
        )
        .order_by(Subscription.end_date.asc())
        .all()
    )

    sent = 0
    for subscription in candidates:
        if notify_subscription_event(subscription, "subscription_expiring"):
            sent += 1
    return sent


def list_notifications(user_id: int, unread_only: bool = False) -> list[Notification]:
    query = db.session.query(Notification).filter_by(recipient_id=user_id)
    if unread_only:
        query = query.filter_by(read=False)
    return query.order_by(Notification.created_at.desc(), Notification.id.desc()).all()


def mark_read(notification_id: int, user_id: int) -> Notification:
    notification = db.session.query(Notification).filter_by(id=notification_id, recipient_id=user_id).first()
    if not notification:
        raise NotFoundError(f"Notification {notification_id} not found")
    notification.read = True
    db.session.commit()
    return notification

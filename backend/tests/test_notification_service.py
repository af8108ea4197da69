import pytest

from academy.extensions import db
from academy.models import Notification
from academy.services import notification_service, subscription_service


class ExplodingNotification:
    def __init__(self, **kwargs):
        raise RuntimeError("notification store unavailable")


def test_dispatch_persists(student):
    notification = notification_service.dispatch(
        recipient_id=student.id,
        notification_type="system_announcement",
        title="Pitch closed",
        message="Training moves indoors today.",
    )

    assert notification.id is not None
    assert notification.read is False


def test_unknown_type_stored_as_other(student):
    notification = notification_service.dispatch(
        recipient_id=student.id, notification_type="carrier_pigeon", title="Hi", message="Coo"
    )
    assert notification.notification_type == "other"


def test_dispatch_failure_never_raises(monkeypatch, student):
    monkeypatch.setattr(notification_service, "Notification", ExplodingNotification)

    assert notification_service.dispatch(
        recipient_id=student.id, notification_type="other", title="x", message="y"
    ) is None


def test_failed_notification_does_not_undo_cancel(monkeypatch, make_plan, make_subscription):
    subscription = make_subscription(make_plan())
    monkeypatch.setattr(notification_service, "Notification", ExplodingNotification)

    cancelled = subscription_service.cancel_subscription(subscription.id)

    assert cancelled.status == "cancelled"
    assert subscription_service.get_subscription(subscription.id).status == "cancelled"
    assert db.session.query(Notification).count() == 0


def test_cancel_notifies_student(make_plan, make_subscription, student):
    subscription = make_subscription(make_plan())
    subscription_service.cancel_subscription(subscription.id)

    notes = notification_service.list_notifications(student.id)
    assert [n.notification_type for n in notes] == ["subscription_cancelled"]
    assert notes[0].related_id == subscription.id


def test_expiring_reminders_sent_once(make_active_subscription, student):
    soon = make_active_subscription(duration_value=10, duration_unit="days")
    make_active_subscription(duration_value=1, duration_unit="years")

    assert notification_service.notify_expiring_subscriptions(within_days=14) == 1
    assert notification_service.notify_expiring_subscriptions(within_days=14) == 0

    reminders = db.session.query(Notification).filter_by(notification_type="subscription_expiring").all()
    assert [n.related_id for n in reminders] == [soon.id]
    assert reminders[0].priority == "high"


def test_mark_read_scoped_to_recipient(student, other_student):
    notification = notification_service.dispatch(
        recipient_id=student.id, notification_type="other", title="x", message="y"
    )

    with pytest.raises(LookupError):
        notification_service.mark_read(notification.id, other_student.id)

    assert notification_service.mark_read(notification.id, student.id).read is True
    assert notification_service.list_notifications(student.id, unread_only=True) == []

from datetime import datetime, timedelta

import pytest

from academy.errors import NotFoundError, InvalidStateError, EntitlementExhausted
from academy.extensions import db
from academy.models import Subscription, Notification
from academy.services import subscription_service, transaction_service
from academy.validation import ValidationError
from academy.time_utils import utcnow


JAN_15 = datetime(2024, 1, 15, 9, 0)


def _pay(subscription, now=None):
    transaction_service.record_payment(subscription.id, subscription.amount_due_cents, "cash", now=now)
    return subscription_service.get_subscription(subscription.id)


# =============================================================================
# CREATION
# =============================================================================

def test_end_date_from_plan_duration(make_plan, make_subscription):
    plan = make_plan(duration_value=1, duration_unit="months")

    subscription = make_subscription(plan, start_date=JAN_15, now=JAN_15)

    assert subscription.end_date == datetime(2024, 2, 15, 9, 0)
    assert subscription.status == "pending"
    assert subscription.payment_status == "pending"
    assert subscription.remaining_sessions == 4
    assert subscription.amount_due_cents == 10000


def test_explicit_end_date_kept(make_plan, make_subscription):
    plan = make_plan()
    subscription = make_subscription(plan, start_date=JAN_15, end_date=datetime(2024, 6, 30), now=JAN_15)
    assert subscription.end_date == datetime(2024, 6, 30)


def test_end_before_start_rejected(make_plan, make_subscription):
    plan = make_plan()
    with pytest.raises(ValidationError):
        make_subscription(plan, start_date=JAN_15, end_date=JAN_15 - timedelta(days=1), now=JAN_15)


def test_unlimited_plan_has_null_remaining(make_plan, make_subscription):
    subscription = make_subscription(make_plan(max_sessions=None))
    assert subscription.remaining_sessions is None


def test_unknown_plan_and_student(make_plan, make_subscription, student):
    with pytest.raises(NotFoundError):
        subscription_service.create_subscription(student_id=student.id, plan_id=999, payment_method="cash")
    with pytest.raises(NotFoundError):
        make_subscription(make_plan(), student_id=999)


def test_staff_account_is_not_a_student(make_plan, make_subscription, coach):
    with pytest.raises(NotFoundError):
        make_subscription(make_plan(), student_id=coach.id)


def test_archived_plan_not_subscribable(make_plan, make_subscription):
    plan = make_plan(is_active=False)
    with pytest.raises(ValidationError):
        make_subscription(plan)


def test_invalid_payment_method(make_plan, make_subscription):
    with pytest.raises(ValidationError):
        make_subscription(make_plan(), payment_method="bitcoin")


# =============================================================================
# DERIVED STATE
# =============================================================================

def test_active_subscription_reads_expired_after_end_date(make_plan, make_subscription):
    subscription = _pay(make_subscription(make_plan(), start_date=JAN_15, now=JAN_15), now=JAN_15)
    after_end = datetime(2024, 2, 16)

    assert subscription.status == "active"
    assert subscription.effective_status(JAN_15 + timedelta(days=1)) == "active"
    assert subscription.effective_status(after_end) == "expired"
    assert subscription.is_active_at(after_end) is False
    assert subscription.days_remaining_at(after_end) == 0
    assert subscription.days_remaining_at(datetime(2024, 2, 14, 21, 0)) == 1


def test_is_active_requires_sessions_left(make_active_subscription):
    subscription = make_active_subscription(max_sessions=1)
    subscription_service.deduct_session(subscription.id)

    subscription = subscription_service.get_subscription(subscription.id)
    assert subscription.status == "active"
    assert subscription.remaining_sessions == 0
    assert subscription.is_active_at() is False


def test_list_by_effective_status(make_plan, make_subscription):
    plan = make_plan()
    overdue = _pay(make_subscription(plan, start_date=JAN_15, now=JAN_15), now=JAN_15)
    current = _pay(make_subscription(plan))
    pending = make_subscription(plan)

    assert {s.id for s in subscription_service.list_subscriptions(status="expired")} == {overdue.id}
    assert {s.id for s in subscription_service.list_subscriptions(status="active")} == {current.id}
    assert {s.id for s in subscription_service.list_subscriptions(status="pending")} == {pending.id}

    with pytest.raises(ValidationError):
        subscription_service.list_subscriptions(status="paused")


def test_load_details_is_explicit(make_active_subscription):
    subscription = make_active_subscription()

    plain = subscription.to_dict()
    assert "plan" not in plain and "transactions" not in plain

    details = subscription_service.load_subscription_details(subscription)
    assert details["plan"]["id"] == subscription.plan_id
    assert details["student"]["id"] == subscription.student_id
    assert [t["type"] for t in details["transactions"]] == ["payment"]


# =============================================================================
# CANCEL / RENEW / EXPIRE
# =============================================================================

def test_cancel_pending_and_active(make_plan, make_subscription):
    plan = make_plan()
    pending = make_subscription(plan)
    active = _pay(make_subscription(plan))

    cancelled = subscription_service.cancel_subscription(pending.id, reason="Moved away")
    assert cancelled.status == "cancelled"
    assert cancelled.cancel_reason == "Moved away"
    assert cancelled.cancelled_at is not None

    assert subscription_service.cancel_subscription(active.id).status == "cancelled"


def test_cancel_twice_is_invalid_state(make_plan, make_subscription):
    subscription = make_subscription(make_plan())
    subscription_service.cancel_subscription(subscription.id)

    with pytest.raises(InvalidStateError):
        subscription_service.cancel_subscription(subscription.id)


def test_cannot_cancel_lazily_expired(make_plan, make_subscription):
    subscription = _pay(make_subscription(make_plan(), start_date=JAN_15, now=JAN_15), now=JAN_15)

    with pytest.raises(InvalidStateError):
        subscription_service.cancel_subscription(subscription.id, now=datetime(2024, 3, 1))

    assert db.session.get(Subscription, subscription.id).status == "active"


def test_cancel_unknown():
    with pytest.raises(NotFoundError):
        subscription_service.cancel_subscription(12345)


def test_renew_within_window_creates_new_subscription(make_plan, make_subscription):
    subscription = _pay(make_subscription(make_plan(), start_date=JAN_15, now=JAN_15), now=JAN_15)
    original_end = subscription.end_date

    renewed = subscription_service.renew_subscription(subscription.id, now=datetime(2024, 2, 1))

    assert renewed.id != subscription.id
    assert renewed.renewed_from_id == subscription.id
    assert renewed.status == "pending"
    assert renewed.start_date == original_end
    assert renewed.end_date == datetime(2024, 3, 15, 9, 0)
    assert renewed.remaining_sessions == 4

    assert subscription_service.get_subscription(subscription.id).end_date == original_end


def test_renew_after_expiry_starts_now(make_plan, make_subscription):
    subscription = _pay(make_subscription(make_plan(), start_date=JAN_15, now=JAN_15), now=JAN_15)
    now = datetime(2024, 3, 1)

    renewed = subscription_service.renew_subscription(subscription.id, now=now)

    assert renewed.start_date == now


def test_renew_outside_window_or_wrong_status(make_plan, make_subscription):
    plan = make_plan(duration_value=1, duration_unit="years")
    active = _pay(make_subscription(plan, start_date=JAN_15, now=JAN_15), now=JAN_15)

    with pytest.raises(InvalidStateError):
        subscription_service.renew_subscription(active.id, now=datetime(2024, 6, 1))

    pending = make_subscription(plan, start_date=JAN_15, now=JAN_15)
    with pytest.raises(InvalidStateError):
        subscription_service.renew_subscription(pending.id, now=datetime(2025, 1, 10))


def test_expire_sweep_flips_once_and_notifies(make_plan, make_subscription, student):
    plan = make_plan()
    overdue = _pay(make_subscription(plan, start_date=JAN_15, now=JAN_15), now=JAN_15)
    current = _pay(make_subscription(plan))

    assert subscription_service.expire_overdue_subscriptions() == [overdue.id]
    assert subscription_service.expire_overdue_subscriptions() == []

    assert subscription_service.get_subscription(overdue.id).status == "expired"
    assert subscription_service.get_subscription(current.id).status == "active"

    expired_notes = db.session.query(Notification).filter_by(
        recipient_id=student.id, notification_type="subscription_expired"
    ).all()
    assert [n.related_id for n in expired_notes] == [overdue.id]


def test_admin_correction_of_remaining_sessions(make_active_subscription):
    subscription = make_active_subscription()

    updated = subscription_service.update_subscription(subscription.id, patch={"remaining_sessions": 10, "notes": "Bonus"})
    assert updated.remaining_sessions == 10
    assert updated.notes == "Bonus"

    with pytest.raises(ValidationError):
        subscription_service.update_subscription(subscription.id, patch={"remaining_sessions": -1})


def test_admin_correction_racing_a_deduction_is_invalid_state(make_active_subscription):
    subscription = subscription_service.get_subscription(make_active_subscription().id)
    loaded_version = subscription.version_id

    # Another writer bumps the row; the loaded object keeps the old version
    db.session.query(Subscription).filter_by(id=subscription.id).update(
        {
            Subscription.remaining_sessions: Subscription.remaining_sessions - 1,
            Subscription.version_id: Subscription.version_id + 1,
        },
        synchronize_session=False,
    )
    assert subscription.version_id == loaded_version

    with pytest.raises(InvalidStateError):
        subscription_service.update_subscription(subscription.id, patch={"notes": "Late edit"})

    reloaded = subscription_service.get_subscription(subscription.id)
    assert reloaded.notes is None
    assert reloaded.remaining_sessions == 4


# =============================================================================
# ENTITLEMENT CONSUMPTION
# =============================================================================

def test_n_deductions_then_exhausted(make_active_subscription):
    subscription = make_active_subscription(max_sessions=3)

    for expected in (2, 1, 0):
        assert subscription_service.deduct_session(subscription.id).remaining_sessions == expected

    with pytest.raises(EntitlementExhausted) as excinfo:
        subscription_service.deduct_session(subscription.id)

    assert excinfo.value.subscription_id == subscription.id
    assert subscription_service.get_subscription(subscription.id).remaining_sessions == 0


def test_unlimited_plan_never_exhausts(make_active_subscription):
    subscription = make_active_subscription(max_sessions=None)

    for _ in range(10):
        assert subscription_service.deduct_session(subscription.id).remaining_sessions is None


def test_deduct_requires_active(make_plan, make_subscription):
    plan = make_plan()

    pending = make_subscription(plan)
    with pytest.raises(InvalidStateError):
        subscription_service.deduct_session(pending.id)
    assert subscription_service.get_subscription(pending.id).remaining_sessions == 4

    cancelled = _pay(make_subscription(plan))
    subscription_service.cancel_subscription(cancelled.id)
    with pytest.raises(InvalidStateError):
        subscription_service.deduct_session(cancelled.id)
    assert subscription_service.get_subscription(cancelled.id).remaining_sessions == 4


def test_deduct_rejected_when_lazily_expired(make_plan, make_subscription):
    subscription = _pay(make_subscription(make_plan(), start_date=JAN_15, now=JAN_15), now=JAN_15)

    with pytest.raises(InvalidStateError):
        subscription_service.deduct_session(subscription.id)
    assert subscription_service.get_subscription(subscription.id).remaining_sessions == 4


def test_deduct_before_start_rejected(make_plan, make_subscription):
    future = utcnow() + timedelta(days=10)
    subscription = _pay(make_subscription(make_plan(), start_date=future))

    with pytest.raises(InvalidStateError, match="not started"):
        subscription_service.deduct_session(subscription.id)


def test_deduct_unknown_subscription():
    with pytest.raises(NotFoundError):
        subscription_service.deduct_session(777)

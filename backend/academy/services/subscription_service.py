# Overview: Service-layer operations for subscriptions; encapsulates business logic and database work.

"""
Subscription Lifecycle Service

STATE MACHINE:
    pending --(payment completed)--> active --(cancel)--> cancelled
    pending --(cancel)--> cancelled
    active --(now > end_date)--> expired

DESIGN PRINCIPLES:
- end_date is computed once at creation from the plan duration (unless given)
- remaining_sessions starts at plan.max_sessions (NULL = unlimited) and only
  decreases through a conditional decrement; admin correction is the only
  other writer
- Expiry is evaluated lazily on every read (effective_status); the sweep in
  expire_overdue_subscriptions only rewrites the stored status
- Every state change is a conditional UPDATE whose WHERE clause carries the
  precondition, so concurrent requests cannot both pass a check
- Notifications are sent after commit and can never undo the write
"""

from __future__ import annotations

from datetime import datetime

from flask import current_app
from sqlalchemy.orm.exc import StaleDataError

from ..extensions import db
from ..errors import NotFoundError, InvalidStateError, EntitlementExhausted
from ..models import Subscription, Transaction
from ..models.subscriptions import (
    STATUS_PENDING,
    STATUS_ACTIVE,
    STATUS_CANCELLED,
    STATUS_EXPIRED,
    SUBSCRIPTION_STATUSES,
    PAYMENT_PENDING,
)
from ..validation import ValidationError, enforce_payment_method, coerce_int
from . import auth_service, catalog_service, notification_service
from .concurrency import conditional_update
from academy.time_utils import utcnow, add_duration


# =============================================================================
# CREATION
# =============================================================================

def create_subscription(
    *,
    student_id: int,
    plan_id: int,
    payment_method: str,
    start_date: datetime | None = None,
    end_date: datetime | None = None,
    discount_code: str | None = None,
    auto_renew: bool = False,
    notes: str | None = None,
    user_id: int | None = None,
    renewed_from_id: int | None = None,
    now: datetime | None = None,
) -> Subscription:
    """
    Create a pending subscription for a student.

    Args:
        student_id: Owning student (must exist and be active)
        plan_id: Plan to subscribe to (must exist and be active)
        payment_method: credit_card, debit_card, paypal, bank_transfer, cash, other
        start_date: Defaults to now
        end_date: Defaults to start_date + plan duration
        discount_code: Optional plan discount; one use is redeemed
        user_id: Acting user (attribution)

    Returns:
        Subscription in 'pending' status

    Raises:
        NotFoundError: student or plan missing
        ValidationError: bad payment method, archived plan, bad dates, invalid discount code
    """
    now = now or utcnow()
    enforce_payment_method(payment_method)

    student = auth_service.get_student(student_id)
    plan = catalog_service.get_plan(plan_id)
    if not plan.is_active:
        raise ValidationError(f"Subscription plan {plan.id} is not available for new subscriptions")

    start = start_date or now
    end = end_date or add_duration(start, plan.duration_value, plan.duration_unit)
    if end <= start:
        raise ValidationError("end_date must be after start_date")

    amount_due = plan.price_cents
    discount_fields = {}
    try:
        if discount_code:
            discount = catalog_service.redeem_discount(plan, discount_code, now)
            saved = catalog_service.discount_amount_cents(plan.price_cents, discount.percentage)
            amount_due = plan.price_cents - saved
            discount_fields = {
                "discount_code": discount.code,
                "discount_percentage": discount.percentage,
                "discount_amount_saved_cents": saved,
            }

        subscription = Subscription(
            student_id=student.id,
            plan_id=plan.id,
            start_date=start,
            end_date=end,
            status=STATUS_PENDING,
            payment_status=PAYMENT_PENDING,
            payment_method=payment_method,
            auto_renew=bool(auto_renew),
            currency=plan.currency,
            amount_due_cents=amount_due,
            amount_paid_cents=0,
            remaining_sessions=plan.max_sessions,
            notes=notes,
            renewed_from_id=renewed_from_id,
            created_by_user_id=user_id,
            created_at=now,
            updated_at=now,
            **discount_fields,
        )
        db.session.add(subscription)
        db.session.commit()
    except Exception:
        db.session.rollback()
        raise

    current_app.logger.info(
        "Created subscription %s (student=%s plan=%s end=%s)",
        subscription.id, student.id, plan.id, end.isoformat(),
    )
    return subscription


# =============================================================================
# QUERIES
# =============================================================================

def get_subscription(subscription_id: int) -> Subscription:
    subscription = db.session.get(Subscription, subscription_id)
    if not subscription:
        raise NotFoundError(f"Subscription {subscription_id} not found")
    return subscription


def list_subscriptions(
    status: str | None = None,
    student_id: int | None = None,
    plan_id: int | None = None,
    now: datetime | None = None,
) -> list[Subscription]:
    """
    List subscriptions, newest first.

    The status filter uses the effective status: an 'active' row whose end
    date has passed is listed under 'expired', not 'active'.
    """
    now = now or utcnow()
    query = db.session.query(Subscription)

    if status is not None:
        if status not in SUBSCRIPTION_STATUSES:
            raise ValidationError(f"status must be one of {list(SUBSCRIPTION_STATUSES)}")
        if status == STATUS_ACTIVE:
            query = query.filter(Subscription.status == STATUS_ACTIVE, Subscription.end_date >= now)
        elif status == STATUS_EXPIRED:
            query = query.filter(db.or_(
                Subscription.status == STATUS_EXPIRED,
                db.and_(Subscription.status == STATUS_ACTIVE, Subscription.end_date < now),
            ))
        else:
            query = query.filter(Subscription.status == status)

    if student_id is not None:
        query = query.filter(Subscription.student_id == student_id)
    if plan_id is not None:
        query = query.filter(Subscription.plan_id == plan_id)

    return query.order_by(Subscription.created_at.desc(), Subscription.id.desc()).all()


def load_subscription_details(subscription: Subscription, now: datetime | None = None) -> dict:
    """
    Explicit join step: subscription plus plan and student summaries and its ledger.

    Plain reads never expand references; callers opt into this.
    """
    data = subscription.to_dict(now)
    data["plan"] = subscription.plan.to_summary() if subscription.plan else None
    data["student"] = subscription.student.to_summary() if subscription.student else None
    transactions = (
        db.session.query(Transaction)
        .filter_by(subscription_id=subscription.id)
        .order_by(Transaction.created_at.asc(), Transaction.id.asc())
        .all()
    )
    data["transactions"] = [t.to_dict() for t in transactions]
    return data


# =============================================================================
# STATE TRANSITIONS
# =============================================================================

def _transition(subscription_id: int, from_statuses: tuple[str, ...], values: dict, now: datetime, *, require_current: bool) -> int:
    """
    Conditional status change. Returns matched row count (0 or 1), no commit.

    require_current: an 'active' row must also still be inside its date range.
    """
    query = db.session.query(Subscription).filter(
        Subscription.id == subscription_id,
        Subscription.status.in_(from_statuses),
    )
    if require_current and STATUS_ACTIVE in from_statuses:
        query = query.filter(db.or_(
            Subscription.status != STATUS_ACTIVE,
            Subscription.end_date >= now,
        ))
    values = dict(values)
    values[Subscription.version_id] = Subscription.version_id + 1
    values[Subscription.updated_at] = now
    return conditional_update(query, values)


def activate_in_transaction(subscription: Subscription, now: datetime) -> bool:
    """
    Move a pending subscription to active inside the caller's transaction.

    Returns True if this call performed the transition.
    """
    matched = _transition(
        subscription.id,
        (STATUS_PENDING,),
        {Subscription.status: STATUS_ACTIVE},
        now,
        require_current=False,
    )
    return matched == 1


def cancel_subscription(
    subscription_id: int,
    reason: str | None = None,
    user_id: int | None = None,
    now: datetime | None = None,
) -> Subscription:
    """
    Cancel an active or pending subscription (terminal).

    Raises:
        NotFoundError: unknown subscription
        InvalidStateError: already cancelled or expired (including lazily expired)
    """
    now = now or utcnow()
    subscription = get_subscription(subscription_id)

    if not subscription.can_be_cancelled(now):
        raise InvalidStateError(
            f"Subscription {subscription_id} is {subscription.effective_status(now)} and cannot be cancelled"
        )

    try:
        matched = _transition(
            subscription_id,
            (STATUS_ACTIVE, STATUS_PENDING),
            {
                Subscription.status: STATUS_CANCELLED,
                Subscription.cancelled_at: now,
                Subscription.cancel_reason: (reason or "").strip()[:255] or None,
            },
            now,
            require_current=True,
        )
        if matched:
            db.session.commit()
        else:
            db.session.rollback()
    except Exception:
        db.session.rollback()
        raise

    db.session.refresh(subscription)
    if not matched:
        # Lost a race with a concurrent cancel or the expiry sweep
        raise InvalidStateError(
            f"Subscription {subscription_id} is {subscription.effective_status(now)} and cannot be cancelled"
        )
    current_app.logger.info("Cancelled subscription %s by user %s", subscription_id, user_id)
    notification_service.notify_subscription_event(subscription, "subscription_cancelled")
    return subscription


def renew_subscription(
    subscription_id: int,
    payment_method: str | None = None,
    user_id: int | None = None,
    now: datetime | None = None,
) -> Subscription:
    """
    Create a new pending subscription for the same student and plan.

    Allowed when the subscription is active or expired and now is within
    RENEWAL_WINDOW_DAYS of its end date (before or after). The old row is
    never modified. The new one starts at the old end date, or now if that
    has already passed.

    Raises:
        InvalidStateError: outside the renewal window or wrong status
    """
    now = now or utcnow()
    window = current_app.config.get("RENEWAL_WINDOW_DAYS", 30)
    previous = get_subscription(subscription_id)

    if not previous.can_be_renewed(now, window_days=window):
        raise InvalidStateError(
            f"Subscription {subscription_id} can only be renewed while active or expired "
            f"and within {window} days of its end date"
        )

    start = previous.end_date if previous.end_date > now else now
    renewed = create_subscription(
        student_id=previous.student_id,
        plan_id=previous.plan_id,
        payment_method=payment_method or previous.payment_method,
        start_date=start,
        auto_renew=previous.auto_renew,
        user_id=user_id,
        renewed_from_id=previous.id,
        now=now,
    )
    current_app.logger.info("Renewed subscription %s as %s", previous.id, renewed.id)
    return renewed


def expire_overdue_subscriptions(now: datetime | None = None) -> list[int]:
    """
    Sweep: rewrite stored status of overdue active subscriptions to expired.

    Safe to run concurrently with itself; each row flips at most once.
    Returns the ids that this call expired.
    """
    now = now or utcnow()
    candidate_ids = [
        row.id for row in db.session.query(Subscription.id).filter(
            Subscription.status == STATUS_ACTIVE,
            Subscription.end_date < now,
        ).all()
    ]

    expired_ids = []
    try:
        for subscription_id in candidate_ids:
            query = db.session.query(Subscription).filter(
                Subscription.id == subscription_id,
                Subscription.status == STATUS_ACTIVE,
                Subscription.end_date < now,
            )
            matched = conditional_update(query, {
                Subscription.status: STATUS_EXPIRED,
                Subscription.version_id: Subscription.version_id + 1,
                Subscription.updated_at: now,
            })
            if matched:
                expired_ids.append(subscription_id)
        db.session.commit()
    except Exception:
        db.session.rollback()
        raise

    if expired_ids:
        current_app.logger.info("Expired %d overdue subscriptions", len(expired_ids))
    for subscription_id in expired_ids:
        notification_service.notify_subscription_event(
            get_subscription(subscription_id), "subscription_expired"
        )
    return expired_ids


def update_subscription(subscription_id: int, *, patch: dict, user_id: int | None = None) -> Subscription:
    """
    Administrative update: notes, auto_renew, or a remaining_sessions correction.

    Dates, status and amounts are not editable here; they move only through
    the lifecycle operations and the transaction ledger.

    Raises:
        NotFoundError: unknown subscription
        ValidationError: negative remaining_sessions
        InvalidStateError: the row changed underneath (e.g. a concurrent deduction); reload and retry
    """
    subscription = get_subscription(subscription_id)

    if "remaining_sessions" in patch:
        remaining = patch["remaining_sessions"]
        if remaining is not None:
            remaining = coerce_int("remaining_sessions", remaining)
            if remaining < 0:
                raise ValidationError("remaining_sessions must be >= 0 (or null for unlimited)")

    try:
        if "notes" in patch:
            subscription.notes = patch["notes"]
        if "auto_renew" in patch:
            subscription.auto_renew = bool(patch["auto_renew"])
        if "remaining_sessions" in patch:
            current_app.logger.info(
                "Admin %s corrected remaining_sessions of subscription %s: %s -> %s",
                user_id, subscription_id, subscription.remaining_sessions, remaining,
            )
            subscription.remaining_sessions = remaining
        db.session.commit()
    except StaleDataError:
        db.session.rollback()
        raise InvalidStateError(f"Subscription {subscription_id} was modified concurrently; reload and retry")
    except Exception:
        db.session.rollback()
        raise
    return subscription


# =============================================================================
# ENTITLEMENT CONSUMPTION
# =============================================================================

def deduct_session_in_transaction(subscription_id: int, now: datetime | None = None) -> tuple[Subscription, bool]:
    """
    Consume one session unit inside the caller's transaction (no commit).

    The decrement is a single conditional UPDATE
    (remaining_sessions > 0 AND status = active AND end_date >= now); a zero
    match is rejected, never clamped.

    Returns:
        (subscription, deducted) where deducted is False for unlimited plans

    Raises:
        NotFoundError: unknown subscription
        InvalidStateError: subscription not active (pending, cancelled, expired, not started)
        EntitlementExhausted: no sessions left
    """
    now = now or utcnow()
    subscription = get_subscription(subscription_id)

    status = subscription.effective_status(now)
    if status != STATUS_ACTIVE:
        raise InvalidStateError(f"Subscription {subscription_id} is {status}; sessions cannot be deducted")
    if now < subscription.start_date:
        raise InvalidStateError(f"Subscription {subscription_id} has not started yet")

    if subscription.remaining_sessions is None:
        return subscription, False

    query = db.session.query(Subscription).filter(
        Subscription.id == subscription_id,
        Subscription.status == STATUS_ACTIVE,
        Subscription.end_date >= now,
        Subscription.remaining_sessions > 0,
    )
    matched = conditional_update(query, {
        Subscription.remaining_sessions: Subscription.remaining_sessions - 1,
        Subscription.version_id: Subscription.version_id + 1,
        Subscription.updated_at: now,
    })

    db.session.refresh(subscription)
    if matched == 1:
        return subscription, True

    # Precondition failed: work out which one against the persisted row
    status = subscription.effective_status(now)
    if status != STATUS_ACTIVE:
        raise InvalidStateError(f"Subscription {subscription_id} is {status}; sessions cannot be deducted")
    if subscription.remaining_sessions is None:
        return subscription, False
    raise EntitlementExhausted(subscription_id)


def deduct_session(subscription_id: int, now: datetime | None = None) -> Subscription:
    """
    Consume one session unit and commit.

    Unlimited plans (remaining_sessions NULL) succeed without mutation.
    See deduct_session_in_transaction for the error contract.
    """
    try:
        subscription, deducted = deduct_session_in_transaction(subscription_id, now)
        db.session.commit()
    except Exception:
        db.session.rollback()
        raise

    if deducted:
        current_app.logger.debug(
            "Deducted session from subscription %s (remaining=%s)",
            subscription_id, subscription.remaining_sessions,
        )
    return subscription

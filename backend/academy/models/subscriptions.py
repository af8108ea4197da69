from __future__ import annotations

import math
from datetime import datetime, timedelta

from ..extensions import db
from academy.time_utils import to_utc_z, utcnow

STATUS_PENDING = "pending"
STATUS_ACTIVE = "active"
STATUS_CANCELLED = "cancelled"
STATUS_EXPIRED = "expired"
SUBSCRIPTION_STATUSES = (STATUS_PENDING, STATUS_ACTIVE, STATUS_CANCELLED, STATUS_EXPIRED)

PAYMENT_PENDING = "pending"
PAYMENT_PAID = "paid"
PAYMENT_FAILED = "failed"
PAYMENT_REFUNDED = "refunded"
PAYMENT_STATUSES = (PAYMENT_PENDING, PAYMENT_PAID, PAYMENT_FAILED, PAYMENT_REFUNDED)


class Subscription(db.Model):
    """
    A student's purchase of a plan, with its own date range and session balance.

    LIFECYCLE:
    - pending -> active (payment recorded)
    - active/pending -> cancelled (terminal)
    - active -> expired (terminal, time-driven)

    end_date is set once at creation. remaining_sessions NULL means unlimited;
    it only decreases through a conditional decrement and is never negative.
    Derived values (is_active, days_remaining) are computed on access, never stored.
    """
    __tablename__ = "subscriptions"
    __table_args__ = (
        db.Index("ix_subscriptions_dates", "start_date", "end_date"),
        db.Index("ix_subscriptions_student_status", "student_id", "status"),
        db.CheckConstraint("remaining_sessions IS NULL OR remaining_sessions >= 0", name="ck_subscriptions_remaining_nonneg"),
        {"sqlite_autoincrement": True},
    )

    id = db.Column(db.Integer, primary_key=True)
    student_id = db.Column(db.Integer, db.ForeignKey("users.id"), nullable=False, index=True)
    plan_id = db.Column(db.Integer, db.ForeignKey("subscription_plans.id"), nullable=False, index=True)

    start_date = db.Column(db.DateTime, nullable=False)
    end_date = db.Column(db.DateTime, nullable=False)

    status = db.Column(db.String(16), nullable=False, default=STATUS_PENDING, index=True)
    payment_status = db.Column(db.String(16), nullable=False, default=PAYMENT_PENDING)
    payment_method = db.Column(db.String(32), nullable=False)
    auto_renew = db.Column(db.Boolean, nullable=False, default=False)

    # Amounts in cents
    currency = db.Column(db.String(3), nullable=False, default="USD")
    amount_due_cents = db.Column(db.Integer, nullable=False, default=0)
    amount_paid_cents = db.Column(db.Integer, nullable=False, default=0)

    # Discount snapshot
    discount_code = db.Column(db.String(64), nullable=True)
    discount_percentage = db.Column(db.Float, nullable=True)
    discount_amount_saved_cents = db.Column(db.Integer, nullable=True)

    remaining_sessions = db.Column(db.Integer, nullable=True)  # NULL = unlimited

    notes = db.Column(db.Text, nullable=True)
    cancelled_at = db.Column(db.DateTime, nullable=True)
    cancel_reason = db.Column(db.String(255), nullable=True)

    renewed_from_id = db.Column(db.Integer, db.ForeignKey("subscriptions.id"), nullable=True, index=True)
    created_by_user_id = db.Column(db.Integer, db.ForeignKey("users.id"), nullable=True)
    version_id = db.Column(db.Integer, nullable=False, default=1)

    created_at = db.Column(db.DateTime, nullable=False, default=utcnow, server_default=db.func.now())
    updated_at = db.Column(db.DateTime, nullable=False, default=utcnow, onupdate=utcnow)

    student = db.relationship("User", foreign_keys=[student_id], backref=db.backref("subscriptions", lazy=True))
    plan = db.relationship("SubscriptionPlan", backref=db.backref("subscriptions", lazy=True))
    renewed_from = db.relationship("Subscription", remote_side=[id])
    __mapper_args__ = {"version_id_col": version_id}

    def __repr__(self) -> str:
        return f"<Subscription id={self.id} student_id={self.student_id} plan_id={self.plan_id} status={self.status}>"

    # -------------------------------------------------------------------------
    # Derived state (pure functions of stored columns and "now")
    # -------------------------------------------------------------------------

    def effective_status(self, now: datetime | None = None) -> str:
        """Stored status, except an overdue 'active' row reads as 'expired'."""
        now = now or utcnow()
        if self.status == STATUS_ACTIVE and now > self.end_date:
            return STATUS_EXPIRED
        return self.status

    def is_active_at(self, now: datetime | None = None) -> bool:
        now = now or utcnow()
        return (
            self.status == STATUS_ACTIVE
            and self.start_date <= now <= self.end_date
            and (self.remaining_sessions is None or self.remaining_sessions > 0)
        )

    def days_remaining_at(self, now: datetime | None = None) -> int:
        now = now or utcnow()
        if self.status != STATUS_ACTIVE or now > self.end_date:
            return 0
        return math.ceil((self.end_date - now) / timedelta(days=1))

    def can_be_cancelled(self, now: datetime | None = None) -> bool:
        return self.effective_status(now) in (STATUS_ACTIVE, STATUS_PENDING)

    def can_be_renewed(self, now: datetime | None = None, window_days: int = 30) -> bool:
        now = now or utcnow()
        if self.effective_status(now) not in (STATUS_ACTIVE, STATUS_EXPIRED):
            return False
        return abs(self.end_date - now) <= timedelta(days=window_days)

    def to_dict(self, now: datetime | None = None) -> dict:
        now = now or utcnow()
        discount = None
        if self.discount_code:
            discount = {
                "code": self.discount_code,
                "percentage": self.discount_percentage,
                "amount_saved_cents": self.discount_amount_saved_cents,
            }
        return {
            "id": self.id,
            "student_id": self.student_id,
            "plan_id": self.plan_id,
            "start_date": to_utc_z(self.start_date),
            "end_date": to_utc_z(self.end_date),
            "status": self.status,
            "effective_status": self.effective_status(now),
            "payment_status": self.payment_status,
            "payment_method": self.payment_method,
            "auto_renew": self.auto_renew,
            "currency": self.currency,
            "amount_due_cents": self.amount_due_cents,
            "amount_paid_cents": self.amount_paid_cents,
            "discount_applied": discount,
            "remaining_sessions": self.remaining_sessions,
            "notes": self.notes,
            "cancelled_at": to_utc_z(self.cancelled_at) if self.cancelled_at else None,
            "cancel_reason": self.cancel_reason,
            "renewed_from_id": self.renewed_from_id,
            "created_by_user_id": self.created_by_user_id,
            "is_active": self.is_active_at(now),
            "days_remaining": self.days_remaining_at(now),
            "version_id": self.version_id,
            "created_at": to_utc_z(self.created_at),
            "updated_at": to_utc_z(self.updated_at),
        }

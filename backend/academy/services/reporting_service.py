# Overview: Read-only reporting over the transaction ledger and subscriptions.

from __future__ import annotations

from datetime import datetime, timedelta

from flask import current_app
from sqlalchemy import func

from ..extensions import db
from ..models import Subscription, SubscriptionPlan, Transaction
from ..models.subscriptions import STATUS_ACTIVE, SUBSCRIPTION_STATUSES
from ..models.transactions import TYPE_PAYMENT, TYPE_REFUND, TXN_COMPLETED, TXN_REFUNDED
from ..validation import ValidationError
from academy.time_utils import utcnow, to_utc_z


MAX_REPORT_DAYS = 366


def revenue_report(days: int = 30, now: datetime | None = None) -> dict:
    """
    Payments and refunds over the last `days` days, grouped by day and plan.

    A payment that was later refunded still counts as gross; the refund row
    counts against it, so net reflects what the academy kept.
    """
    if days < 1 or days > MAX_REPORT_DAYS:
        raise ValidationError(f"days must be between 1 and {MAX_REPORT_DAYS}")

    now = now or utcnow()
    start = now - timedelta(days=days)

    rows = (
        db.session.query(
            Transaction.created_at,
            Transaction.transaction_type,
            Transaction.amount_cents,
            SubscriptionPlan.name.label("plan_name"),
        )
        .join(Subscription, Subscription.id == Transaction.subscription_id)
        .join(SubscriptionPlan, SubscriptionPlan.id == Subscription.plan_id)
        .filter(
            Transaction.created_at >= start,
            Transaction.created_at <= now,
            Transaction.transaction_type.in_((TYPE_PAYMENT, TYPE_REFUND)),
            Transaction.status.in_((TXN_COMPLETED, TXN_REFUNDED)),
        )
        .order_by(Transaction.created_at.asc())
        .all()
    )

    grouped: dict[tuple[str, str], dict] = {}
    for row in rows:
        key = (row.created_at.date().isoformat(), row.plan_name)
        bucket = grouped.setdefault(key, {
            "date": key[0],
            "plan_name": key[1],
            "gross_cents": 0,
            "refunds_cents": 0,
            "payment_count": 0,
            "refund_count": 0,
        })
        if row.transaction_type == TYPE_PAYMENT:
            bucket["gross_cents"] += row.amount_cents
            bucket["payment_count"] += 1
        else:
            bucket["refunds_cents"] += row.amount_cents
            bucket["refund_count"] += 1

    report_rows = []
    for key in sorted(grouped):
        bucket = grouped[key]
        bucket["net_cents"] = bucket["gross_cents"] - bucket["refunds_cents"]
        report_rows.append(bucket)

    gross = sum(r["gross_cents"] for r in report_rows)
    refunds = sum(r["refunds_cents"] for r in report_rows)
    return {
        "start": to_utc_z(start),
        "end": to_utc_z(now),
        "days": days,
        "rows": report_rows,
        "totals": {
            "gross_cents": gross,
            "refunds_cents": refunds,
            "net_cents": gross - refunds,
            "payment_count": sum(r["payment_count"] for r in report_rows),
            "refund_count": sum(r["refund_count"] for r in report_rows),
        },
    }


def active_subscriptions_report(now: datetime | None = None) -> dict:
    """Effective-active counts per plan plus stored-status totals."""
    now = now or utcnow()
    within_days = current_app.config.get("EXPIRING_SOON_DAYS", 30)

    effectively_active = db.and_(
        Subscription.status == STATUS_ACTIVE,
        Subscription.end_date >= now,
    )

    by_plan_rows = (
        db.session.query(
            SubscriptionPlan.id,
            SubscriptionPlan.name,
            func.count(Subscription.id).label("active_count"),
        )
        .join(Subscription, Subscription.plan_id == SubscriptionPlan.id)
        .filter(effectively_active)
        .group_by(SubscriptionPlan.id, SubscriptionPlan.name)
        .order_by(SubscriptionPlan.name.asc())
        .all()
    )

    expiring_soon = (
        db.session.query(func.count(Subscription.id))
        .filter(effectively_active, Subscription.end_date <= now + timedelta(days=within_days))
        .scalar()
    )

    by_status = {s: 0 for s in SUBSCRIPTION_STATUSES}
    for status, count in (
        db.session.query(Subscription.status, func.count(Subscription.id))
        .group_by(Subscription.status)
        .all()
    ):
        by_status[status] = int(count)

    by_plan = [
        {"plan_id": row.id, "plan_name": row.name, "active_count": int(row.active_count)}
        for row in by_plan_rows
    ]
    return {
        "as_of": to_utc_z(now),
        "total_active": sum(p["active_count"] for p in by_plan),
        "expiring_within_days": within_days,
        "expiring_soon": int(expiring_soon or 0),
        "by_plan": by_plan,
        "by_status": by_status,
    }

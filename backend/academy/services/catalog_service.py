# Overview: Service-layer operations for the plan catalog and sport categories.

"""
Plan Catalog Service

Plans are the purchasable templates subscriptions are created from.

INVARIANTS:
- name unique, price_cents >= 0, duration_value >= 1, at least one sport category
- updates re-validate the merged state, not just the patch
- a plan with active subscriptions cannot be deleted; a plan referenced only by
  historical subscriptions is archived instead of removed
- discount redemption is a conditional increment, so current_uses never passes max_uses
"""

from __future__ import annotations

import re
from datetime import datetime
from decimal import Decimal, ROUND_HALF_UP

from flask import current_app
from sqlalchemy.exc import IntegrityError

from ..extensions import db
from ..errors import NotFoundError
from ..models import SportCategory, SubscriptionPlan, PlanDiscount, Subscription
from ..models.subscriptions import STATUS_ACTIVE
from ..validation import (
    ValidationError,
    ConflictError,
    enforce_rules_plan,
    normalize_discounts,
    coerce_int,
)
from .concurrency import conditional_update
from academy.time_utils import utcnow


PLAN_MUTABLE_FIELDS = {
    "name", "description", "price_cents", "currency", "duration_value", "duration_unit",
    "max_sessions", "trial_period_days", "allowed_coach_sessions", "level",
    "cancellation_policy", "refund_policy", "is_active",
}
PLAN_REQUIRED_FIELDS = {"name", "price_cents", "duration_value", "duration_unit"}


# =============================================================================
# SPORT CATEGORIES
# =============================================================================

def slugify(value: str) -> str:
    slug = re.sub(r"[^a-z0-9]+", "-", value.lower()).strip("-")
    return slug or "category"


def create_category(name: str, icon: str | None = None) -> SportCategory:
    name = (name or "").strip()
    if len(name) < 2 or len(name) > 50:
        raise ValidationError("A sport category name must have between 2 and 50 characters")

    slug = slugify(name)
    exists = db.session.query(SportCategory).filter(
        db.or_(SportCategory.name == name, SportCategory.slug == slug)
    ).first()
    if exists:
        raise ConflictError(f"Sport category already exists: {name}")

    category = SportCategory(name=name, slug=slug, icon=icon or "SportsSoccer", is_active=True)
    db.session.add(category)
    try:
        db.session.commit()
    except IntegrityError:
        db.session.rollback()
        raise ConflictError(f"Sport category already exists: {name}")
    return category


def list_categories(active_only: bool = False) -> list[SportCategory]:
    query = db.session.query(SportCategory)
    if active_only:
        query = query.filter_by(is_active=True)
    return query.order_by(SportCategory.name.asc()).all()


def _resolve_categories(raw_ids) -> list[SportCategory]:
    if not isinstance(raw_ids, list) or not raw_ids:
        raise ValidationError("Subscription plan must be associated with at least one sport category")
    ids = {coerce_int("sport_category_ids", v) for v in raw_ids}
    categories = db.session.query(SportCategory).filter(SportCategory.id.in_(ids)).all()
    missing = ids - {c.id for c in categories}
    if missing:
        raise ValidationError(f"Unknown sport categories: {sorted(missing)}")
    return categories


def _normalize_features(raw) -> list[str]:
    if raw is None:
        return []
    if not isinstance(raw, list) or not all(isinstance(f, str) for f in raw):
        raise ValidationError("features must be a list of strings")
    return [f.strip() for f in raw if f.strip()]


# =============================================================================
# PLANS
# =============================================================================

def _ensure_unique_name(name: str, exclude_id: int | None = None) -> None:
    query = db.session.query(SubscriptionPlan.id).filter(SubscriptionPlan.name == name)
    if exclude_id is not None:
        query = query.filter(SubscriptionPlan.id != exclude_id)
    if query.first():
        raise ValidationError(f"A subscription plan named {name!r} already exists")


def create_plan(*, patch: dict, user_id: int | None = None) -> SubscriptionPlan:
    """
    Create a plan from a validated patch dict.

    The patch may carry the non-column keys sport_category_ids, discounts and features.

    Raises:
        ValidationError: missing/invalid fields, unknown categories, duplicate name
    """
    missing = sorted(f for f in PLAN_REQUIRED_FIELDS if patch.get(f) is None)
    if missing:
        raise ValidationError(f"Missing required fields: {', '.join(missing)}")

    fields = {k: v for k, v in patch.items() if k in PLAN_MUTABLE_FIELDS}
    fields.setdefault("currency", current_app.config.get("DEFAULT_CURRENCY", "USD"))
    enforce_rules_plan(fields)
    _ensure_unique_name(fields["name"])

    categories = _resolve_categories(patch.get("sport_category_ids"))
    discounts = normalize_discounts(patch.get("discounts"))

    plan = SubscriptionPlan(
        **fields,
        features=_normalize_features(patch.get("features")),
        created_by_user_id=user_id,
        updated_by_user_id=user_id,
    )
    plan.sport_categories = categories
    plan.discounts = [PlanDiscount(**d) for d in discounts]

    db.session.add(plan)
    try:
        db.session.commit()
    except IntegrityError:
        db.session.rollback()
        raise ValidationError(f"A subscription plan named {fields['name']!r} already exists")
    return plan


def get_plan(plan_id: int) -> SubscriptionPlan:
    plan = db.session.get(SubscriptionPlan, plan_id)
    if not plan:
        raise NotFoundError(f"Subscription plan {plan_id} not found")
    return plan


def list_plans(active_only: bool = False, category_id: int | None = None) -> list[SubscriptionPlan]:
    query = db.session.query(SubscriptionPlan)
    if active_only:
        query = query.filter(SubscriptionPlan.is_active.is_(True))
    if category_id is not None:
        query = query.filter(SubscriptionPlan.sport_categories.any(SportCategory.id == category_id))
    return query.order_by(SubscriptionPlan.price_cents.asc(), SubscriptionPlan.id.asc()).all()


def update_plan(plan_id: int, *, patch: dict, user_id: int | None = None) -> SubscriptionPlan:
    """
    Merge mutable fields into the plan and re-validate the merged state.

    Discounts, when supplied, replace the list; codes kept across the update
    keep their current_uses unless the payload sets it.
    """
    plan = get_plan(plan_id)

    merged = {k: getattr(plan, k) for k in PLAN_MUTABLE_FIELDS}
    merged.update({k: v for k, v in patch.items() if k in PLAN_MUTABLE_FIELDS})
    enforce_rules_plan(merged)
    if merged["name"] != plan.name:
        _ensure_unique_name(merged["name"], exclude_id=plan.id)

    for key, value in merged.items():
        if getattr(plan, key) != value:
            setattr(plan, key, value)

    if "sport_category_ids" in patch:
        plan.sport_categories = _resolve_categories(patch["sport_category_ids"])

    if "features" in patch:
        plan.features = _normalize_features(patch["features"])

    if "discounts" in patch:
        existing = {d.code: d for d in plan.discounts}
        incoming = normalize_discounts(patch["discounts"])
        raw_by_code = {
            str(item.get("code") or "").strip(): item
            for item in patch["discounts"] or []
        }
        replacement = []
        for data in incoming:
            current = existing.get(data["code"])
            if current is not None:
                if "current_uses" not in raw_by_code.get(data["code"], {}):
                    data["current_uses"] = current.current_uses
                for key, value in data.items():
                    setattr(current, key, value)
                replacement.append(current)
            else:
                replacement.append(PlanDiscount(**data))
        plan.discounts = replacement

    plan.updated_by_user_id = user_id
    try:
        db.session.commit()
    except IntegrityError:
        db.session.rollback()
        raise ValidationError(f"A subscription plan named {merged['name']!r} already exists")
    return plan


def delete_plan(plan_id: int) -> dict:
    """
    Remove a plan from the catalog.

    The active-subscription check is best-effort against concurrent creation.

    Returns:
        {"deleted": True} when the row was removed, or
        {"deleted": False, "archived": True} when historical subscriptions still reference it

    Raises:
        NotFoundError: unknown plan
        ConflictError: plan has active subscriptions
    """
    plan = get_plan(plan_id)

    active_count = db.session.query(Subscription).filter_by(plan_id=plan.id, status=STATUS_ACTIVE).count()
    if active_count > 0:
        raise ConflictError(
            f"This plan cannot be deleted because it has {active_count} active subscriptions"
        )

    referenced = db.session.query(Subscription.id).filter_by(plan_id=plan.id).first()
    if referenced:
        plan.is_active = False
        db.session.commit()
        current_app.logger.info("Archived plan %s (still referenced by subscriptions)", plan.id)
        return {"deleted": False, "archived": True}

    db.session.delete(plan)
    db.session.commit()
    current_app.logger.info("Deleted plan %s", plan_id)
    return {"deleted": True, "archived": False}


# =============================================================================
# DISCOUNTS
# =============================================================================

def is_discount_valid(plan: SubscriptionPlan, code: str | None, now: datetime | None = None) -> bool:
    """True iff the code exists, is not past valid_until and has uses left."""
    if not code:
        return False
    discount = plan.find_discount(code)
    if not discount:
        return False

    now = now or utcnow()
    if discount.valid_until is not None and now > discount.valid_until:
        return False

    if discount.max_uses is not None and discount.current_uses >= discount.max_uses:
        return False

    return True


def discount_amount_cents(price_cents: int, percentage: float) -> int:
    saved = Decimal(price_cents) * Decimal(str(percentage)) / Decimal(100)
    return int(saved.quantize(Decimal("1"), rounding=ROUND_HALF_UP))


def get_discounted_price(plan: SubscriptionPlan, code: str | None, now: datetime | None = None) -> int:
    """
    Price in cents after applying the code, or the full price if the code is not valid.

    Rounded to the cent (two decimals of the currency amount).
    """
    if not is_discount_valid(plan, code, now):
        return plan.price_cents
    discount = plan.find_discount(code)
    return plan.price_cents - discount_amount_cents(plan.price_cents, discount.percentage)


def redeem_discount(plan: SubscriptionPlan, code: str, now: datetime | None = None) -> PlanDiscount:
    """
    Consume one use of a discount code inside the caller's transaction (no commit).

    The increment is conditional on the code still being valid, so two
    concurrent redemptions of the last use cannot both succeed.

    Raises:
        ValidationError: unknown, expired or exhausted code
    """
    now = now or utcnow()
    discount = plan.find_discount(code)
    if discount is None or not is_discount_valid(plan, code, now):
        raise ValidationError(f"Discount code {code!r} is not valid for this plan")

    query = db.session.query(PlanDiscount).filter(
        PlanDiscount.id == discount.id,
        db.or_(PlanDiscount.valid_until.is_(None), PlanDiscount.valid_until >= now),
        db.or_(PlanDiscount.max_uses.is_(None), PlanDiscount.current_uses < PlanDiscount.max_uses),
    )
    matched = conditional_update(query, {PlanDiscount.current_uses: PlanDiscount.current_uses + 1})
    if matched == 0:
        raise ValidationError(f"Discount code {code!r} is no longer available")

    db.session.refresh(discount)
    return discount

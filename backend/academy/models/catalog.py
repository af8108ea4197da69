from __future__ import annotations

from ..extensions import db
from academy.time_utils import to_utc_z, utcnow


plan_sport_categories = db.Table(
    "plan_sport_categories",
    db.Column("plan_id", db.Integer, db.ForeignKey("subscription_plans.id"), primary_key=True),
    db.Column("sport_category_id", db.Integer, db.ForeignKey("sport_categories.id"), primary_key=True),
)


class SportCategory(db.Model):
    """A sport taught at the academy (football, swimming, ...)."""
    __tablename__ = "sport_categories"
    __table_args__ = {"sqlite_autoincrement": True}

    id = db.Column(db.Integer, primary_key=True)
    name = db.Column(db.String(50), nullable=False, unique=True)
    slug = db.Column(db.String(64), nullable=False, unique=True, index=True)
    icon = db.Column(db.String(64), nullable=False, default="SportsSoccer")
    is_active = db.Column(db.Boolean, nullable=False, default=True)
    created_at = db.Column(db.DateTime, nullable=False, default=utcnow, server_default=db.func.now())

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "name": self.name,
            "slug": self.slug,
            "icon": self.icon,
            "is_active": self.is_active,
            "created_at": to_utc_z(self.created_at),
        }


class SubscriptionPlan(db.Model):
    """
    Purchasable subscription template.

    Price is stored in cents. max_sessions NULL means unlimited sessions.
    Plans referenced by subscriptions are archived (is_active=False), never
    physically removed.
    """
    __tablename__ = "subscription_plans"
    __table_args__ = (
        db.Index("ix_subscription_plans_active_price", "is_active", "price_cents"),
        {"sqlite_autoincrement": True},
    )

    id = db.Column(db.Integer, primary_key=True)
    name = db.Column(db.String(100), nullable=False, unique=True)
    description = db.Column(db.Text, nullable=True)

    # Authoritative storage in cents
    price_cents = db.Column(db.Integer, nullable=False)
    currency = db.Column(db.String(3), nullable=False, default="USD")

    duration_value = db.Column(db.Integer, nullable=False)
    duration_unit = db.Column(db.String(8), nullable=False)  # days, weeks, months, years

    max_sessions = db.Column(db.Integer, nullable=True)  # NULL = unlimited
    trial_period_days = db.Column(db.Integer, nullable=False, default=0)
    allowed_coach_sessions = db.Column(db.Integer, nullable=False, default=0)
    level = db.Column(db.String(16), nullable=False, default="all")
    features = db.Column(db.JSON, nullable=False, default=list)

    cancellation_policy = db.Column(db.Text, nullable=True)
    refund_policy = db.Column(db.Text, nullable=True)

    is_active = db.Column(db.Boolean, nullable=False, default=True, index=True)

    created_by_user_id = db.Column(db.Integer, db.ForeignKey("users.id"), nullable=True)
    updated_by_user_id = db.Column(db.Integer, db.ForeignKey("users.id"), nullable=True)
    version_id = db.Column(db.Integer, nullable=False, default=1)

    created_at = db.Column(db.DateTime, nullable=False, default=utcnow, server_default=db.func.now())
    updated_at = db.Column(db.DateTime, nullable=False, default=utcnow, onupdate=utcnow)

    sport_categories = db.relationship(
        "SportCategory",
        secondary=plan_sport_categories,
        lazy="selectin",
        backref=db.backref("plans", lazy=True),
    )
    discounts = db.relationship(
        "PlanDiscount",
        back_populates="plan",
        cascade="all, delete-orphan",
        lazy="selectin",
        order_by="PlanDiscount.id",
    )
    __mapper_args__ = {"version_id_col": version_id}

    def __repr__(self) -> str:
        return f"<SubscriptionPlan id={self.id} name={self.name!r}>"

    def find_discount(self, code: str) -> "PlanDiscount | None":
        for discount in self.discounts:
            if discount.code == code:
                return discount
        return None

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "name": self.name,
            "description": self.description,
            "price": {"amount_cents": self.price_cents, "currency": self.currency},
            "duration": {"value": self.duration_value, "unit": self.duration_unit},
            "max_sessions": self.max_sessions,
            "trial_period_days": self.trial_period_days,
            "allowed_coach_sessions": self.allowed_coach_sessions,
            "level": self.level,
            "features": list(self.features or []),
            "cancellation_policy": self.cancellation_policy,
            "refund_policy": self.refund_policy,
            "is_active": self.is_active,
            "sport_category_ids": [c.id for c in self.sport_categories],
            "discounts": [d.to_dict() for d in self.discounts],
            "created_by_user_id": self.created_by_user_id,
            "updated_by_user_id": self.updated_by_user_id,
            "version_id": self.version_id,
            "created_at": to_utc_z(self.created_at),
            "updated_at": to_utc_z(self.updated_at),
        }

    def to_summary(self) -> dict:
        return {
            "id": self.id,
            "name": self.name,
            "price": {"amount_cents": self.price_cents, "currency": self.currency},
            "duration": {"value": self.duration_value, "unit": self.duration_unit},
        }


class PlanDiscount(db.Model):
    """
    Discount code attached to a plan.

    current_uses only grows through a conditional increment, never past max_uses.
    """
    __tablename__ = "plan_discounts"
    __table_args__ = (
        db.UniqueConstraint("plan_id", "code", name="uq_plan_discounts_plan_code"),
        db.CheckConstraint("current_uses >= 0", name="ck_plan_discounts_uses_nonneg"),
        {"sqlite_autoincrement": True},
    )

    id = db.Column(db.Integer, primary_key=True)
    plan_id = db.Column(db.Integer, db.ForeignKey("subscription_plans.id"), nullable=False, index=True)
    code = db.Column(db.String(64), nullable=False)
    percentage = db.Column(db.Float, nullable=False)
    valid_until = db.Column(db.DateTime, nullable=True)
    max_uses = db.Column(db.Integer, nullable=True)  # NULL = no cap
    current_uses = db.Column(db.Integer, nullable=False, default=0)

    plan = db.relationship("SubscriptionPlan", back_populates="discounts")

    def to_dict(self) -> dict:
        return {
            "code": self.code,
            "percentage": self.percentage,
            "valid_until": to_utc_z(self.valid_until) if self.valid_until else None,
            "max_uses": self.max_uses,
            "current_uses": self.current_uses,
        }

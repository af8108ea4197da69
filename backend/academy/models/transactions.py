from __future__ import annotations

from ..extensions import db
from academy.time_utils import to_utc_z, utcnow

TYPE_PAYMENT = "payment"
TYPE_REFUND = "refund"
TYPE_ADJUSTMENT = "adjustment"
TRANSACTION_TYPES = (TYPE_PAYMENT, TYPE_REFUND, TYPE_ADJUSTMENT)

TXN_PENDING = "pending"
TXN_COMPLETED = "completed"
TXN_FAILED = "failed"
TXN_REFUNDED = "refunded"
TXN_DISPUTED = "disputed"
TRANSACTION_STATUSES = (TXN_PENDING, TXN_COMPLETED, TXN_FAILED, TXN_REFUNDED, TXN_DISPUTED)

PAYMENT_GATEWAYS = ("stripe", "paypal", "manual", "other")


class Transaction(db.Model):
    """
    Append-only ledger of money movements tied to a subscription.

    TRANSACTION TYPES:
    - payment: money received
    - refund: money returned; refunded_transaction_id points at the original
    - adjustment: manual correction

    Refunds never mutate amounts of the original; the only permitted change to
    an existing row is the single completed -> refunded status flip (and the
    invoice fields, which are derived from transaction_id).
    """
    __tablename__ = "transactions"
    __table_args__ = (
        db.Index("ix_transactions_created", "created_at"),
        db.Index("ix_transactions_subscription_created", "subscription_id", "created_at"),
        db.CheckConstraint("amount_cents >= 0", name="ck_transactions_amount_nonneg"),
        {"sqlite_autoincrement": True},
    )

    id = db.Column(db.Integer, primary_key=True)

    # Public identifier (TRX-<epochMillis>-<rand>); uniqueness enforced here, not by the generator
    transaction_id = db.Column(db.String(64), nullable=False, unique=True, index=True)

    student_id = db.Column(db.Integer, db.ForeignKey("users.id"), nullable=False, index=True)
    subscription_id = db.Column(db.Integer, db.ForeignKey("subscriptions.id"), nullable=False, index=True)

    transaction_type = db.Column(db.String(16), nullable=False, index=True)
    amount_cents = db.Column(db.Integer, nullable=False)
    currency = db.Column(db.String(3), nullable=False, default="USD")
    payment_method = db.Column(db.String(32), nullable=False)
    payment_gateway = db.Column(db.String(16), nullable=False, default="manual")
    status = db.Column(db.String(16), nullable=False, default=TXN_PENDING, index=True)

    notes = db.Column(db.String(255), nullable=True)
    refunded_transaction_id = db.Column(db.Integer, db.ForeignKey("transactions.id"), nullable=True, index=True)

    invoice_id = db.Column(db.String(80), nullable=True)
    invoice_url = db.Column(db.String(255), nullable=True)

    created_by_user_id = db.Column(db.Integer, db.ForeignKey("users.id"), nullable=True)
    created_at = db.Column(db.DateTime, nullable=False, default=utcnow, server_default=db.func.now())
    updated_at = db.Column(db.DateTime, nullable=False, default=utcnow, onupdate=utcnow)

    subscription = db.relationship("Subscription", backref=db.backref("transactions", lazy=True))
    student = db.relationship("User", foreign_keys=[student_id])
    refunded_transaction = db.relationship("Transaction", remote_side=[id], backref=db.backref("refunds", lazy=True))

    def __repr__(self) -> str:
        return f"<Transaction {self.transaction_id} type={self.transaction_type} status={self.status}>"

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "transaction_id": self.transaction_id,
            "student_id": self.student_id,
            "subscription_id": self.subscription_id,
            "type": self.transaction_type,
            "amount_cents": self.amount_cents,
            "currency": self.currency,
            "payment_method": self.payment_method,
            "payment_gateway": self.payment_gateway,
            "status": self.status,
            "notes": self.notes,
            "refunded_transaction_id": self.refunded_transaction_id,
            "invoice_id": self.invoice_id,
            "invoice_url": self.invoice_url,
            "created_by_user_id": self.created_by_user_id,
            "created_at": to_utc_z(self.created_at),
            "updated_at": to_utc_z(self.updated_at),
        }

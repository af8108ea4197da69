# Overview: Service-layer operations for the transaction ledger; encapsulates business logic and database work.

"""
Transaction Ledger Service

Payments, refunds and adjustments recorded against a subscription.

DESIGN PRINCIPLES:
- Append-only: a refund is a new row pointing at the original via
  refunded_transaction_id; the original only flips completed -> refunded
- transaction_id is generated as TRX-<epochMillis>-<0..9999> when absent;
  the unique constraint, not the generator, guarantees uniqueness, and a
  collision surfaces as ConflictError
- record_payment is the only path that activates a pending subscription
- Refund row and original status flip commit together; the flip is a
  compare-and-set (status = 'completed'), so a transaction is refunded at most once
"""

from __future__ import annotations

import secrets
import time
from datetime import datetime

from flask import current_app
from sqlalchemy.exc import IntegrityError

from ..extensions import db
from ..errors import NotFoundError, InvalidStateError
from ..models import Transaction, Subscription
from ..models.subscriptions import (
    STATUS_PENDING,
    STATUS_ACTIVE,
    PAYMENT_PAID,
    PAYMENT_REFUNDED,
)
from ..models.transactions import (
    TYPE_PAYMENT,
    TYPE_REFUND,
    TRANSACTION_TYPES,
    TXN_COMPLETED,
    TXN_PENDING,
    TXN_REFUNDED,
    TRANSACTION_STATUSES,
    PAYMENT_GATEWAYS,
)
from ..validation import (
    ValidationError,
    ConflictError,
    enforce_payment_method,
    enforce_amount,
    coerce_int,
)
from . import notification_service, subscription_service
from .concurrency import conditional_update, lock_for_update
from academy.time_utils import utcnow


def generate_transaction_id(now: datetime | None = None) -> str:
    """TRX-<epochMillis>-<0..9999>. Not unique by itself; storage enforces uniqueness."""
    millis = int((now.timestamp() if now else time.time()) * 1000)
    return f"TRX-{millis}-{secrets.randbelow(10000)}"


def _validate_gateway(gateway: str) -> str:
    if gateway not in PAYMENT_GATEWAYS:
        raise ValidationError(f"Invalid payment gateway: {gateway}. Must be one of {list(PAYMENT_GATEWAYS)}")
    return gateway


def _commit_new_transaction() -> None:
    try:
        db.session.commit()
    except IntegrityError:
        db.session.rollback()
        raise ConflictError("Transaction id already exists")
    except Exception:
        db.session.rollback()
        raise


# =============================================================================
# QUERIES
# =============================================================================

def get_transaction(transaction_id: str) -> Transaction:
    """Look up by public transaction_id (TRX-...)."""
    txn = db.session.query(Transaction).filter_by(transaction_id=transaction_id).first()
    if not txn:
        raise NotFoundError(f"Transaction {transaction_id} not found")
    return txn


def list_transactions(
    status: str | None = None,
    subscription_id: int | None = None,
    student_id: int | None = None,
) -> list[Transaction]:
    query = db.session.query(Transaction)
    if status is not None:
        if status not in TRANSACTION_STATUSES:
            raise ValidationError(f"status must be one of {list(TRANSACTION_STATUSES)}")
        query = query.filter(Transaction.status == status)
    if subscription_id is not None:
        query = query.filter(Transaction.subscription_id == subscription_id)
    if student_id is not None:
        query = query.filter(Transaction.student_id == student_id)
    return query.order_by(Transaction.created_at.desc(), Transaction.id.desc()).all()


# =============================================================================
# CREATION
# =============================================================================

def create_transaction(subscription_id: int, data: dict, user_id: int | None = None) -> Transaction:
    """
    Record a ledger entry with the supplied status. No subscription state change.

    data keys: type, amount_cents, payment_method, and optionally
    transaction_id, currency, payment_gateway, status, notes.

    Raises:
        NotFoundError: unknown subscription
        ValidationError: invalid fields
        ConflictError: transaction_id already used
    """
    subscription = subscription_service.get_subscription(subscription_id)

    txn_type = data.get("type")
    if txn_type not in TRANSACTION_TYPES:
        raise ValidationError(f"type must be one of {list(TRANSACTION_TYPES)}")
    if txn_type == TYPE_REFUND:
        raise ValidationError("Refunds are created through the refund operation")

    amount = enforce_amount(data.get("amount_cents"), allow_zero=True)

    status = data.get("status") or TXN_PENDING
    if status not in TRANSACTION_STATUSES:
        raise ValidationError(f"status must be one of {list(TRANSACTION_STATUSES)}")

    transaction_id = (data.get("transaction_id") or "").strip() or generate_transaction_id()

    txn = Transaction(
        transaction_id=transaction_id,
        student_id=subscription.student_id,
        subscription_id=subscription.id,
        transaction_type=txn_type,
        amount_cents=amount,
        currency=(data.get("currency") or subscription.currency).upper(),
        payment_method=enforce_payment_method(data.get("payment_method")),
        payment_gateway=_validate_gateway(data.get("payment_gateway") or "manual"),
        status=status,
        notes=data.get("notes"),
        created_by_user_id=user_id,
        created_at=utcnow(),
    )
    db.session.add(txn)
    _commit_new_transaction()
    return txn


def record_payment(
    subscription_id: int,
    amount_cents: int,
    payment_method: str,
    *,
    currency: str | None = None,
    payment_gateway: str = "manual",
    transaction_id: str | None = None,
    notes: str | None = None,
    user_id: int | None = None,
    now: datetime | None = None,
) -> tuple[Transaction, Subscription]:
    """
    Record a completed payment and activate the subscription if it was pending.

    A zero amount is accepted only when nothing is due (free plan or full discount).

    Returns:
        (payment transaction, refreshed subscription)

    Raises:
        NotFoundError: unknown subscription
        ValidationError: bad amount, method, gateway or currency
        InvalidStateError: subscription cancelled, expired or past its end date
        ConflictError: transaction_id already used
    """
    now = now or utcnow()
    amount = enforce_amount(amount_cents, allow_zero=True)
    enforce_payment_method(payment_method)
    _validate_gateway(payment_gateway)

    subscription = lock_for_update(db.session.query(Subscription).filter_by(id=subscription_id)).first()
    if not subscription:
        raise NotFoundError(f"Subscription {subscription_id} not found")

    status = subscription.effective_status(now)
    if status not in (STATUS_PENDING, STATUS_ACTIVE):
        db.session.rollback()
        raise InvalidStateError(f"Cannot record a payment for a {status} subscription")
    if now > subscription.end_date:
        db.session.rollback()
        raise InvalidStateError(f"Subscription {subscription.id} ended on {subscription.end_date.date().isoformat()}")
    if amount == 0 and subscription.amount_due_cents > 0:
        db.session.rollback()
        raise ValidationError("amount_cents must be positive while an amount is due")

    currency = (currency or subscription.currency).upper()
    if currency != subscription.currency:
        db.session.rollback()
        raise ValidationError(f"Payment currency {currency} does not match subscription currency {subscription.currency}")

    payment = Transaction(
        transaction_id=(transaction_id or "").strip() or generate_transaction_id(now),
        student_id=subscription.student_id,
        subscription_id=subscription.id,
        transaction_type=TYPE_PAYMENT,
        amount_cents=amount,
        currency=currency,
        payment_method=payment_method,
        payment_gateway=payment_gateway,
        status=TXN_COMPLETED,
        notes=notes,
        created_by_user_id=user_id,
        created_at=now,
    )

    try:
        db.session.add(payment)

        # Payment fields, guarded against a concurrent cancel/expiry
        guard = db.session.query(Subscription).filter(
            Subscription.id == subscription.id,
            Subscription.status.in_((STATUS_PENDING, STATUS_ACTIVE)),
            Subscription.end_date >= now,
        )
        matched = conditional_update(guard, {
            Subscription.amount_paid_cents: Subscription.amount_paid_cents + amount,
            Subscription.payment_status: PAYMENT_PAID,
            Subscription.version_id: Subscription.version_id + 1,
            Subscription.updated_at: now,
        })
        if matched == 0:
            db.session.rollback()
            db.session.refresh(subscription)
            raise InvalidStateError(
                f"Cannot record a payment for a {subscription.effective_status(now)} subscription"
            )

        activated = subscription_service.activate_in_transaction(subscription, now)
        db.session.commit()
    except IntegrityError:
        db.session.rollback()
        raise ConflictError("Transaction id already exists")
    except InvalidStateError:
        raise
    except Exception:
        db.session.rollback()
        raise

    db.session.refresh(subscription)
    current_app.logger.info(
        "Recorded payment %s of %s cents for subscription %s%s",
        payment.transaction_id, amount, subscription.id, " (activated)" if activated else "",
    )
    if activated:
        notification_service.notify_subscription_event(subscription, "subscription_activated")
    return payment, subscription


# =============================================================================
# REFUNDS
# =============================================================================

def process_refund(
    transaction_id: str,
    amount_cents: int | None = None,
    reason: str | None = None,
    user_id: int | None = None,
    now: datetime | None = None,
) -> Transaction:
    """
    Refund a completed transaction.

    Creates a completed 'refund' row referencing the original and flips the
    original to 'refunded' in the same database transaction. The flip is a
    conditional update on status = 'completed'; if it matches nothing the whole
    unit is rolled back and no refund row exists.

    Args:
        transaction_id: Public id of the original (TRX-...)
        amount_cents: Defaults to the original amount

    Raises:
        NotFoundError: original missing
        InvalidStateError: original not completed, or is itself a refund
        ValidationError: refund amount not positive or above the original amount
    """
    now = now or utcnow()
    original = get_transaction(transaction_id)

    if original.transaction_type == TYPE_REFUND:
        raise InvalidStateError("Refund transactions cannot be refunded")
    if original.status != TXN_COMPLETED:
        raise InvalidStateError(
            f"Only completed transactions can be refunded (transaction {transaction_id} is {original.status})"
        )

    refund_amount = original.amount_cents if amount_cents is None else coerce_int("amount_cents", amount_cents)
    if refund_amount <= 0:
        raise ValidationError("Refund amount must be positive")
    if refund_amount > original.amount_cents:
        raise ValidationError("Refund amount cannot exceed the original transaction amount")

    try:
        flipped = conditional_update(
            db.session.query(Transaction).filter(
                Transaction.id == original.id,
                Transaction.status == TXN_COMPLETED,
            ),
            {Transaction.status: TXN_REFUNDED, Transaction.updated_at: now},
        )
        if flipped == 0:
            db.session.rollback()
            raise InvalidStateError(f"Transaction {transaction_id} has already been refunded")

        refund = Transaction(
            transaction_id=generate_transaction_id(now),
            student_id=original.student_id,
            subscription_id=original.subscription_id,
            transaction_type=TYPE_REFUND,
            amount_cents=refund_amount,
            currency=original.currency,
            payment_method=original.payment_method,
            payment_gateway=original.payment_gateway,
            status=TXN_COMPLETED,
            notes=(reason or "Refund processed")[:255],
            refunded_transaction_id=original.id,
            created_by_user_id=user_id,
            created_at=now,
        )
        db.session.add(refund)

        subscription_values = {
            Subscription.version_id: Subscription.version_id + 1,
            Subscription.updated_at: now,
        }
        if original.transaction_type == TYPE_PAYMENT:
            subscription_values[Subscription.amount_paid_cents] = Subscription.amount_paid_cents - refund_amount
            subscription_values[Subscription.payment_status] = PAYMENT_REFUNDED
        conditional_update(
            db.session.query(Subscription).filter(Subscription.id == original.subscription_id),
            subscription_values,
        )

        db.session.commit()
    except IntegrityError:
        db.session.rollback()
        raise ConflictError("Transaction id already exists")
    except InvalidStateError:
        raise
    except Exception:
        db.session.rollback()
        raise

    db.session.refresh(original)
    current_app.logger.info(
        "Refunded %s cents of transaction %s as %s", refund_amount, transaction_id, refund.transaction_id
    )
    subscription = db.session.get(Subscription, refund.subscription_id)
    if subscription is not None:
        notification_service.notify_subscription_event(subscription, "payment_refunded")
    return refund


# =============================================================================
# INVOICES
# =============================================================================

def invoice_identifiers(transaction_id: str) -> tuple[str, str]:
    """Deterministic invoice id and url for a transaction id."""
    invoice_id = f"INV-{transaction_id}"
    return invoice_id, f"/invoices/{invoice_id}"


def generate_invoice(transaction_id: str) -> dict:
    """
    Attach invoice identifiers to a transaction. Idempotent.
    """
    txn = get_transaction(transaction_id)
    invoice_id, invoice_url = invoice_identifiers(txn.transaction_id)

    if txn.invoice_id != invoice_id or txn.invoice_url != invoice_url:
        txn.invoice_id = invoice_id
        txn.invoice_url = invoice_url
        try:
            db.session.commit()
        except Exception:
            db.session.rollback()
            raise

    return {"invoice_id": invoice_id, "invoice_url": invoice_url}

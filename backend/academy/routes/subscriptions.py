# Overview: Flask API routes for subscriptions, payments and session deduction; parses input and returns JSON responses.

"""
Subscription Lifecycle API Routes

DESIGN:
- Create (pending) -> pay (active) -> deduct sessions -> cancel / expire
- Renewal creates a new subscription; the old one is never modified
- Payments are posted here and recorded in the transaction ledger

SECURITY:
- Students may read, create, cancel and renew only their own subscriptions
- Payments, deductions and admin corrections are staff-only
"""

from flask import Blueprint, request, jsonify, g, current_app

from ..errors import NotFoundError, InvalidStateError, EntitlementExhausted, PermissionDeniedError
from ..models.auth import ROLE_ADMIN, ROLE_STUDENT
from ..services import subscription_service, transaction_service
from ..validation import ValidationError, ConflictError, coerce_datetime, coerce_int
from ..decorators import require_auth, require_role, ensure_self_or_staff, STAFF_ROLES


subscriptions_bp = Blueprint("subscriptions", __name__, url_prefix="/api/subscriptions")


def _exhausted_response(e: EntitlementExhausted):
    return jsonify({
        "error": str(e),
        "code": "entitlement_exhausted",
        "subscription_id": e.subscription_id,
    }), 409


def _optional_datetime(data: dict, key: str):
    value = data.get(key)
    return coerce_datetime(key, value) if value is not None else None


# =============================================================================
# QUERIES
# =============================================================================

@subscriptions_bp.get("")
@require_auth
def list_subscriptions_route():
    """
    Query params:
    - status: pending/active/cancelled/expired (effective status)
    - student_id, plan_id: int (optional)

    Students always get only their own subscriptions.
    """
    student_id = request.args.get("student_id", type=int)
    if g.current_user.role == ROLE_STUDENT:
        student_id = g.current_user.id

    try:
        subscriptions = subscription_service.list_subscriptions(
            status=request.args.get("status"),
            student_id=student_id,
            plan_id=request.args.get("plan_id", type=int),
        )
        return jsonify({"subscriptions": [s.to_dict() for s in subscriptions]}), 200
    except ValidationError as e:
        return jsonify({"error": str(e)}), 400


@subscriptions_bp.get("/students/<int:student_id>")
@require_auth
def student_subscriptions_route(student_id: int):
    try:
        ensure_self_or_staff(student_id)
        subscriptions = subscription_service.list_subscriptions(
            status=request.args.get("status"),
            student_id=student_id,
        )
        return jsonify({"subscriptions": [s.to_dict() for s in subscriptions]}), 200
    except PermissionDeniedError as e:
        return jsonify({"error": str(e)}), 403
    except ValidationError as e:
        return jsonify({"error": str(e)}), 400


@subscriptions_bp.get("/<int:subscription_id>")
@require_auth
def get_subscription_route(subscription_id: int):
    """
    Query params:
    - details: true to include plan, student and transactions
    """
    try:
        subscription = subscription_service.get_subscription(subscription_id)
        ensure_self_or_staff(subscription.student_id)
    except NotFoundError as e:
        return jsonify({"error": str(e)}), 404
    except PermissionDeniedError as e:
        return jsonify({"error": str(e)}), 403

    if request.args.get("details", "false").lower() == "true":
        return jsonify(subscription_service.load_subscription_details(subscription)), 200
    return jsonify(subscription.to_dict()), 200


@subscriptions_bp.get("/<int:subscription_id>/transactions")
@require_auth
def subscription_transactions_route(subscription_id: int):
    try:
        subscription = subscription_service.get_subscription(subscription_id)
        ensure_self_or_staff(subscription.student_id)
    except NotFoundError as e:
        return jsonify({"error": str(e)}), 404
    except PermissionDeniedError as e:
        return jsonify({"error": str(e)}), 403

    transactions = transaction_service.list_transactions(subscription_id=subscription.id)
    return jsonify({"transactions": [t.to_dict() for t in transactions]}), 200


# =============================================================================
# LIFECYCLE
# =============================================================================

@subscriptions_bp.post("")
@require_auth
def create_subscription_route():
    """
    Create a pending subscription.

    Request body:
    {
        "student_id": 12,          (students may omit; defaults to themselves)
        "plan_id": 3,
        "payment_method": "credit_card",
        "start_date": "2024-01-15T00:00:00Z",  (optional)
        "discount_code": "SAVE10",  (optional)
        "auto_renew": false,
        "notes": "..."
    }
    """
    data = request.get_json(silent=True) or {}

    try:
        student_id = data.get("student_id")
        if student_id is None and g.current_user.role == ROLE_STUDENT:
            student_id = g.current_user.id
        if student_id is None or data.get("plan_id") is None or not data.get("payment_method"):
            raise ValidationError("student_id, plan_id and payment_method are required")
        student_id = coerce_int("student_id", student_id)
        ensure_self_or_staff(student_id)

        subscription = subscription_service.create_subscription(
            student_id=student_id,
            plan_id=coerce_int("plan_id", data.get("plan_id")),
            payment_method=data.get("payment_method"),
            start_date=_optional_datetime(data, "start_date"),
            end_date=_optional_datetime(data, "end_date"),
            discount_code=data.get("discount_code"),
            auto_renew=bool(data.get("auto_renew", False)),
            notes=data.get("notes"),
            user_id=g.current_user.id,
        )
        return jsonify(subscription.to_dict()), 201
    except ValidationError as e:
        return jsonify({"error": str(e)}), 400
    except PermissionDeniedError as e:
        return jsonify({"error": str(e)}), 403
    except NotFoundError as e:
        return jsonify({"error": str(e)}), 404
    except Exception:
        current_app.logger.exception("Failed to create subscription")
        return jsonify({"error": "Internal server error"}), 500


@subscriptions_bp.patch("/<int:subscription_id>")
@require_auth
@require_role(ROLE_ADMIN)
def update_subscription_route(subscription_id: int):
    """Admin corrections: notes, auto_renew, remaining_sessions."""
    data = request.get_json(silent=True) or {}
    unknown = set(data) - {"notes", "auto_renew", "remaining_sessions"}
    if unknown:
        return jsonify({"error": f"Field not allowed: {sorted(unknown)[0]}"}), 400

    try:
        subscription = subscription_service.update_subscription(
            subscription_id, patch=data, user_id=g.current_user.id
        )
        return jsonify(subscription.to_dict()), 200
    except NotFoundError as e:
        return jsonify({"error": str(e)}), 404
    except ValidationError as e:
        return jsonify({"error": str(e)}), 400
    except InvalidStateError as e:
        return jsonify({"error": str(e)}), 409
    except Exception:
        current_app.logger.exception("Failed to update subscription %s", subscription_id)
        return jsonify({"error": "Internal server error"}), 500


@subscriptions_bp.post("/<int:subscription_id>/cancel")
@require_auth
def cancel_subscription_route(subscription_id: int):
    """Request body: {"reason": "..."} (optional)"""
    data = request.get_json(silent=True) or {}

    try:
        subscription = subscription_service.get_subscription(subscription_id)
        ensure_self_or_staff(subscription.student_id)
        subscription = subscription_service.cancel_subscription(
            subscription_id, reason=data.get("reason"), user_id=g.current_user.id
        )
        return jsonify(subscription.to_dict()), 200
    except NotFoundError as e:
        return jsonify({"error": str(e)}), 404
    except PermissionDeniedError as e:
        return jsonify({"error": str(e)}), 403
    except InvalidStateError as e:
        return jsonify({"error": str(e)}), 409
    except Exception:
        current_app.logger.exception("Failed to cancel subscription %s", subscription_id)
        return jsonify({"error": "Internal server error"}), 500


@subscriptions_bp.post("/<int:subscription_id>/renew")
@require_auth
def renew_subscription_route(subscription_id: int):
    """Request body: {"payment_method": "cash"} (optional, defaults to the previous one)"""
    data = request.get_json(silent=True) or {}

    try:
        subscription = subscription_service.get_subscription(subscription_id)
        ensure_self_or_staff(subscription.student_id)
        renewed = subscription_service.renew_subscription(
            subscription_id, payment_method=data.get("payment_method"), user_id=g.current_user.id
        )
        return jsonify(renewed.to_dict()), 201
    except NotFoundError as e:
        return jsonify({"error": str(e)}), 404
    except PermissionDeniedError as e:
        return jsonify({"error": str(e)}), 403
    except InvalidStateError as e:
        return jsonify({"error": str(e)}), 409
    except ValidationError as e:
        return jsonify({"error": str(e)}), 400
    except Exception:
        current_app.logger.exception("Failed to renew subscription %s", subscription_id)
        return jsonify({"error": "Internal server error"}), 500


@subscriptions_bp.post("/<int:subscription_id>/deduct-session")
@require_auth
@require_role(*STAFF_ROLES)
def deduct_session_route(subscription_id: int):
    """
    Consume one session.

    Returns:
        200: Deducted (or unlimited plan, unchanged)
        404: Unknown subscription
        409: Not active, or no sessions left (code: entitlement_exhausted)
    """
    try:
        subscription = subscription_service.deduct_session(subscription_id)
        return jsonify(subscription.to_dict()), 200
    except NotFoundError as e:
        return jsonify({"error": str(e)}), 404
    except EntitlementExhausted as e:
        return _exhausted_response(e)
    except InvalidStateError as e:
        return jsonify({"error": str(e)}), 409
    except Exception:
        current_app.logger.exception("Failed to deduct session from subscription %s", subscription_id)
        return jsonify({"error": "Internal server error"}), 500


# =============================================================================
# LEDGER ENTRIES
# =============================================================================

@subscriptions_bp.post("/<int:subscription_id>/payments")
@require_auth
@require_role(*STAFF_ROLES)
def record_payment_route(subscription_id: int):
    """
    Record a completed payment; activates a pending subscription.

    Request body:
    {
        "amount_cents": 10000,
        "payment_method": "cash",
        "currency": "USD",            (optional, must match the subscription)
        "payment_gateway": "manual",  (optional)
        "transaction_id": "...",      (optional)
        "notes": "..."
    }
    """
    data = request.get_json(silent=True) or {}

    try:
        if data.get("amount_cents") is None or not data.get("payment_method"):
            raise ValidationError("amount_cents and payment_method are required")

        payment, subscription = transaction_service.record_payment(
            subscription_id,
            coerce_int("amount_cents", data.get("amount_cents")),
            data.get("payment_method"),
            currency=data.get("currency"),
            payment_gateway=data.get("payment_gateway") or "manual",
            transaction_id=data.get("transaction_id"),
            notes=data.get("notes"),
            user_id=g.current_user.id,
        )
        return jsonify({
            "transaction": payment.to_dict(),
            "subscription": subscription.to_dict(),
        }), 201
    except ValidationError as e:
        return jsonify({"error": str(e)}), 400
    except NotFoundError as e:
        return jsonify({"error": str(e)}), 404
    except (InvalidStateError, ConflictError) as e:
        return jsonify({"error": str(e)}), 409
    except Exception:
        current_app.logger.exception("Failed to record payment for subscription %s", subscription_id)
        return jsonify({"error": "Internal server error"}), 500


@subscriptions_bp.post("/<int:subscription_id>/transactions")
@require_auth
@require_role(ROLE_ADMIN)
def create_transaction_route(subscription_id: int):
    """
    Record a raw ledger entry (payment or adjustment) with the supplied status.

    No subscription state change; use /payments to activate.
    """
    data = request.get_json(silent=True) or {}

    try:
        txn = transaction_service.create_transaction(subscription_id, data, user_id=g.current_user.id)
        return jsonify(txn.to_dict()), 201
    except ValidationError as e:
        return jsonify({"error": str(e)}), 400
    except NotFoundError as e:
        return jsonify({"error": str(e)}), 404
    except ConflictError as e:
        return jsonify({"error": str(e)}), 409
    except Exception:
        current_app.logger.exception("Failed to create transaction for subscription %s", subscription_id)
        return jsonify({"error": "Internal server error"}), 500

# Overview: Flask API routes for the transaction ledger; parses input and returns JSON responses.

from flask import Blueprint, request, jsonify, g, current_app

from ..errors import NotFoundError, InvalidStateError, PermissionDeniedError
from ..models.auth import ROLE_ADMIN, ROLE_STUDENT
from ..services import transaction_service
from ..validation import ValidationError, ConflictError, coerce_int
from ..decorators import require_auth, require_role, ensure_self_or_staff


transactions_bp = Blueprint("transactions", __name__, url_prefix="/api/transactions")


@transactions_bp.get("")
@require_auth
def list_transactions_route():
    """
    Query params:
    - status, subscription_id, student_id (optional)

    Students always get only their own transactions.
    """
    student_id = request.args.get("student_id", type=int)
    if g.current_user.role == ROLE_STUDENT:
        student_id = g.current_user.id

    try:
        transactions = transaction_service.list_transactions(
            status=request.args.get("status"),
            subscription_id=request.args.get("subscription_id", type=int),
            student_id=student_id,
        )
        return jsonify({"transactions": [t.to_dict() for t in transactions]}), 200
    except ValidationError as e:
        return jsonify({"error": str(e)}), 400


@transactions_bp.get("/<transaction_id>")
@require_auth
def get_transaction_route(transaction_id: str):
    try:
        txn = transaction_service.get_transaction(transaction_id)
        ensure_self_or_staff(txn.student_id)
        return jsonify(txn.to_dict()), 200
    except NotFoundError as e:
        return jsonify({"error": str(e)}), 404
    except PermissionDeniedError as e:
        return jsonify({"error": str(e)}), 403


@transactions_bp.post("/<transaction_id>/refund")
@require_auth
@require_role(ROLE_ADMIN)
def refund_transaction_route(transaction_id: str):
    """
    Refund a completed transaction (full amount unless amount_cents is given).

    Request body:
    {
        "amount_cents": 5000,  (optional)
        "reason": "..."        (optional)
    }

    Returns:
        201: Refund transaction created, original marked refunded
        400: Amount not positive or above the original
        404: Unknown transaction
        409: Original not completed, already refunded, or itself a refund
    """
    data = request.get_json(silent=True) or {}

    try:
        amount = data.get("amount_cents")
        refund = transaction_service.process_refund(
            transaction_id,
            amount_cents=coerce_int("amount_cents", amount) if amount is not None else None,
            reason=data.get("reason"),
            user_id=g.current_user.id,
        )
        original = transaction_service.get_transaction(transaction_id)
        return jsonify({"refund": refund.to_dict(), "original": original.to_dict()}), 201
    except ValidationError as e:
        return jsonify({"error": str(e)}), 400
    except NotFoundError as e:
        return jsonify({"error": str(e)}), 404
    except (InvalidStateError, ConflictError) as e:
        return jsonify({"error": str(e)}), 409
    except Exception:
        current_app.logger.exception("Failed to refund transaction %s", transaction_id)
        return jsonify({"error": "Internal server error"}), 500


@transactions_bp.post("/<transaction_id>/invoice")
@require_auth
def invoice_route(transaction_id: str):
    """Attach (or re-read) the invoice identifiers. Idempotent."""
    try:
        txn = transaction_service.get_transaction(transaction_id)
        ensure_self_or_staff(txn.student_id)
        invoice = transaction_service.generate_invoice(transaction_id)
        return jsonify(invoice), 200
    except NotFoundError as e:
        return jsonify({"error": str(e)}), 404
    except PermissionDeniedError as e:
        return jsonify({"error": str(e)}), 403
    except Exception:
        current_app.logger.exception("Failed to generate invoice for %s", transaction_id)
        return jsonify({"error": "Internal server error"}), 500

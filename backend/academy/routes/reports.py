from flask import Blueprint, jsonify, request

from ..models.auth import ROLE_ADMIN
from ..services import reporting_service
from ..validation import ValidationError
from ..decorators import require_auth, require_role


reports_bp = Blueprint("reports", __name__, url_prefix="/api/reports")


@reports_bp.get("/revenue")
@require_auth
@require_role(ROLE_ADMIN)
def revenue_report():
    days = request.args.get("days", default=30, type=int)

    try:
        report = reporting_service.revenue_report(days=days)
        return jsonify(report), 200
    except ValidationError as exc:
        return jsonify({"error": str(exc)}), 400


@reports_bp.get("/subscriptions")
@require_auth
@require_role(ROLE_ADMIN)
def subscriptions_report():
    return jsonify(reporting_service.active_subscriptions_report()), 200

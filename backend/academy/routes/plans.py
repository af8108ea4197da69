# Overview: Flask API routes for the plan catalog and sport categories; parses input and returns JSON responses.

"""
Plan catalog routes.

SECURITY: All routes require authentication.
- Reads are open to every role
- Writes (plans, categories) are admin-only
"""

from flask import Blueprint, request, jsonify, g, current_app

from ..errors import NotFoundError
from ..models import SubscriptionPlan
from ..models.auth import ROLE_ADMIN
from ..services import catalog_service
from ..services.catalog_service import PLAN_MUTABLE_FIELDS, PLAN_REQUIRED_FIELDS
from ..validation import (
    ModelValidationPolicy,
    validate_payload,
    ValidationError,
    ConflictError,
)
from ..decorators import require_auth, require_role

PLAN_POLICY = ModelValidationPolicy(
    writable_fields=set(PLAN_MUTABLE_FIELDS),
    required_on_create=set(PLAN_REQUIRED_FIELDS),
    extra_fields={"sport_category_ids", "discounts", "features"},
)

plans_bp = Blueprint("plans", __name__, url_prefix="/api/plans")
categories_bp = Blueprint("categories", __name__, url_prefix="/api/catalog/categories")


def _bool_arg(name: str) -> bool:
    return request.args.get(name, "false").lower() == "true"


# =============================================================================
# SPORT CATEGORIES
# =============================================================================

@categories_bp.get("")
@require_auth
def list_categories_route():
    categories = catalog_service.list_categories(active_only=_bool_arg("active_only"))
    return jsonify({"categories": [c.to_dict() for c in categories]}), 200


@categories_bp.post("")
@require_auth
@require_role(ROLE_ADMIN)
def create_category_route():
    data = request.get_json(silent=True) or {}
    try:
        category = catalog_service.create_category(data.get("name"), data.get("icon"))
        return jsonify(category.to_dict()), 201
    except ValidationError as e:
        return jsonify({"error": str(e)}), 400
    except ConflictError as e:
        return jsonify({"error": str(e)}), 409
    except Exception:
        current_app.logger.exception("Failed to create sport category")
        return jsonify({"error": "Internal server error"}), 500


# =============================================================================
# PLANS
# =============================================================================

@plans_bp.get("")
@require_auth
def list_plans_route():
    """
    Query params:
    - active_only: true/false (default false)
    - category_id: int (optional)
    """
    plans = catalog_service.list_plans(
        active_only=_bool_arg("active_only"),
        category_id=request.args.get("category_id", type=int),
    )
    return jsonify({"plans": [p.to_dict() for p in plans]}), 200


@plans_bp.get("/<int:plan_id>")
@require_auth
def get_plan_route(plan_id: int):
    try:
        return jsonify(catalog_service.get_plan(plan_id).to_dict()), 200
    except NotFoundError as e:
        return jsonify({"error": str(e)}), 404


@plans_bp.post("")
@require_auth
@require_role(ROLE_ADMIN)
def create_plan_route():
    """
    Create a plan.

    Request body:
    {
        "name": "Football Monthly",
        "price_cents": 10000,
        "currency": "USD",
        "duration_value": 1,
        "duration_unit": "months",
        "max_sessions": 8,            (optional, null = unlimited)
        "sport_category_ids": [1],
        "discounts": [{"code": "SAVE10", "percentage": 10, "valid_until": "...", "max_uses": 50}]
    }
    """
    payload = request.get_json(silent=True) or {}

    try:
        patch = validate_payload(model=SubscriptionPlan, payload=payload, policy=PLAN_POLICY, partial=False)
        plan = catalog_service.create_plan(patch=patch, user_id=g.current_user.id)
        return jsonify(plan.to_dict()), 201
    except ValidationError as e:
        return jsonify({"error": str(e)}), 400
    except Exception:
        current_app.logger.exception("Failed to create plan")
        return jsonify({"error": "Internal server error"}), 500


@plans_bp.patch("/<int:plan_id>")
@require_auth
@require_role(ROLE_ADMIN)
def update_plan_route(plan_id: int):
    payload = request.get_json(silent=True) or {}

    try:
        patch = validate_payload(model=SubscriptionPlan, payload=payload, policy=PLAN_POLICY, partial=True)
        plan = catalog_service.update_plan(plan_id, patch=patch, user_id=g.current_user.id)
        return jsonify(plan.to_dict()), 200
    except NotFoundError as e:
        return jsonify({"error": str(e)}), 404
    except ValidationError as e:
        return jsonify({"error": str(e)}), 400
    except Exception:
        current_app.logger.exception("Failed to update plan %s", plan_id)
        return jsonify({"error": "Internal server error"}), 500


@plans_bp.delete("/<int:plan_id>")
@require_auth
@require_role(ROLE_ADMIN)
def delete_plan_route(plan_id: int):
    try:
        result = catalog_service.delete_plan(plan_id)
        return jsonify(result), 200
    except NotFoundError as e:
        return jsonify({"error": str(e)}), 404
    except ConflictError as e:
        return jsonify({"error": str(e)}), 409
    except Exception:
        current_app.logger.exception("Failed to delete plan %s", plan_id)
        return jsonify({"error": "Internal server error"}), 500


@plans_bp.get("/<int:plan_id>/price")
@require_auth
def plan_price_route(plan_id: int):
    """Quote the price for an optional discount code (no redemption)."""
    code = request.args.get("code")
    try:
        plan = catalog_service.get_plan(plan_id)
    except NotFoundError as e:
        return jsonify({"error": str(e)}), 404

    return jsonify({
        "plan_id": plan.id,
        "code": code,
        "discount_valid": catalog_service.is_discount_valid(plan, code),
        "original_price": {"amount_cents": plan.price_cents, "currency": plan.currency},
        "price": {"amount_cents": catalog_service.get_discounted_price(plan, code), "currency": plan.currency},
    }), 200

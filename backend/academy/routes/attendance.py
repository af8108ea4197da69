# Overview: Flask API routes for attendance; parses input and returns JSON responses.

from flask import Blueprint, request, jsonify, g, current_app

from ..errors import NotFoundError, InvalidStateError, EntitlementExhausted, PermissionDeniedError
from ..services import attendance_service
from ..validation import ValidationError, ConflictError, coerce_datetime, coerce_int
from ..decorators import require_auth, require_role, ensure_self_or_staff, STAFF_ROLES


attendance_bp = Blueprint("attendance", __name__, url_prefix="/api/attendance")


@attendance_bp.post("")
@require_auth
@require_role(*STAFF_ROLES)
def record_attendance_route():
    """
    Record attendance; present/late against a subscription consumes one session.

    Request body:
    {
        "student_id": 12,
        "session_date": "2024-03-01T17:00:00Z",
        "status": "present",
        "subscription_id": 7,  (optional)
        "notes": "..."
    }
    """
    data = request.get_json(silent=True) or {}

    try:
        missing = [k for k in ("student_id", "session_date", "status") if data.get(k) is None]
        if missing:
            raise ValidationError(f"Missing required fields: {', '.join(missing)}")

        subscription_id = data.get("subscription_id")
        record = attendance_service.record_attendance(
            student_id=coerce_int("student_id", data["student_id"]),
            session_date=coerce_datetime("session_date", data["session_date"]),
            status=data["status"],
            subscription_id=coerce_int("subscription_id", subscription_id) if subscription_id is not None else None,
            notes=data.get("notes"),
            user_id=g.current_user.id,
        )
        return jsonify(record.to_dict()), 201
    except ValidationError as e:
        return jsonify({"error": str(e)}), 400
    except NotFoundError as e:
        return jsonify({"error": str(e)}), 404
    except EntitlementExhausted as e:
        return jsonify({
            "error": str(e),
            "code": "entitlement_exhausted",
            "subscription_id": e.subscription_id,
        }), 409
    except (InvalidStateError, ConflictError) as e:
        return jsonify({"error": str(e)}), 409
    except Exception:
        current_app.logger.exception("Failed to record attendance")
        return jsonify({"error": "Internal server error"}), 500


@attendance_bp.get("/students/<int:student_id>/stats")
@require_auth
def attendance_stats_route(student_id: int):
    try:
        ensure_self_or_staff(student_id)
        return jsonify(attendance_service.compute_attendance_stats(student_id)), 200
    except PermissionDeniedError as e:
        return jsonify({"error": str(e)}), 403
    except NotFoundError as e:
        return jsonify({"error": str(e)}), 404

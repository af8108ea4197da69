# Overview: Flask API routes for auth operations; parses input and returns JSON responses.

"""
Authentication API routes

- Self-registration as student (approved) or coach (pending admin approval)
- Admins are created from the CLI and approve pending coaches
- Session management with token-based auth
"""

from flask import Blueprint, request, jsonify, current_app, g

from ..errors import AuthenticationError, NotFoundError
from ..models.auth import ROLE_ADMIN, ROLE_COACH, ROLE_STUDENT
from ..services import auth_service
from ..services import session_service
from ..services.auth_service import PasswordValidationError
from ..validation import ValidationError, ConflictError
from ..decorators import require_auth, require_role


auth_bp = Blueprint("auth", __name__, url_prefix="/api/auth")

SELF_REGISTER_ROLES = (ROLE_STUDENT, ROLE_COACH)


@auth_bp.post("/register")
def register_route():
    """
    Register a student or coach account.

    Request body: {"name": "...", "email": "...", "password": "...", "phone": "...", "role": "student"}

    Coaches cannot log in until an admin approves them.
    """
    data = request.get_json(silent=True) or {}

    try:
        role = data.get("role") or ROLE_STUDENT
        if role not in SELF_REGISTER_ROLES:
            raise ValidationError(f"role must be one of {list(SELF_REGISTER_ROLES)}")
        user = auth_service.create_user(
            name=data.get("name"),
            email=data.get("email"),
            password=data.get("password"),
            phone=data.get("phone"),
            role=role,
        )
        return jsonify({"user": user.to_dict(), "message": "Registration successful"}), 201
    except PasswordValidationError as e:
        return jsonify({"error": str(e)}), 400
    except ValidationError as e:
        return jsonify({"error": str(e)}), 400
    except ConflictError as e:
        return jsonify({"error": str(e)}), 409
    except Exception:
        current_app.logger.exception("Failed to register user")
        return jsonify({"error": "Internal server error"}), 500


@auth_bp.post("/login")
def login_route():
    """
    Authenticate user and create session token.

    Token must be included in Authorization header for protected routes.
    """
    try:
        data = request.get_json(silent=True) or {}
        email = data.get("email")
        password = data.get("password")

        if not all([email, password]):
            return jsonify({"error": "email and password required"}), 400

        user = auth_service.authenticate(email, password)

        session, token = session_service.create_session(
            user_id=user.id,
            user_agent=request.headers.get("User-Agent"),
            ip_address=request.remote_addr,
        )

        return jsonify({
            "user": user.to_dict(),
            "token": token,
            "session": session.to_dict(),
            "message": "Login successful"
        }), 200

    except AuthenticationError as e:
        return jsonify({"error": str(e)}), 401
    except Exception:
        current_app.logger.exception("Failed to login user")
        return jsonify({"error": "Internal server error"}), 500


@auth_bp.post("/logout")
def logout_route():
    """
    Revoke session token (logout).

    Expects Authorization header: Bearer <token>
    """
    try:
        auth_header = request.headers.get("Authorization")
        if not auth_header or not auth_header.startswith("Bearer "):
            return jsonify({"error": "Authorization header required"}), 401

        token = auth_header.split(" ", 1)[1]

        if not session_service.revoke_session(token, reason="User logout"):
            return jsonify({"error": "Invalid or expired token"}), 401

        return jsonify({"message": "Logout successful"}), 200

    except Exception:
        current_app.logger.exception("Failed to logout user")
        return jsonify({"error": "Internal server error"}), 500


@auth_bp.get("/me")
@require_auth
def me_route():
    return jsonify({"user": g.current_user.to_dict()}), 200


@auth_bp.get("/users/pending")
@require_auth
@require_role(ROLE_ADMIN)
def pending_users_route():
    users = auth_service.list_pending_users()
    return jsonify({"users": [u.to_dict() for u in users]}), 200


@auth_bp.post("/users/<int:user_id>/approve")
@require_auth
@require_role(ROLE_ADMIN)
def approve_user_route(user_id: int):
    try:
        user = auth_service.approve_user(user_id, approved_by=g.current_user.id)
        return jsonify({"user": user.to_dict()}), 200
    except NotFoundError as e:
        return jsonify({"error": str(e)}), 404
    except Exception:
        current_app.logger.exception("Failed to approve user %s", user_id)
        return jsonify({"error": "Internal server error"}), 500

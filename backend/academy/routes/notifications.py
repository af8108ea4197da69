# Overview: Flask API routes for the current user's notifications.

from flask import Blueprint, request, jsonify, g

from ..errors import NotFoundError
from ..services import notification_service
from ..decorators import require_auth


notifications_bp = Blueprint("notifications", __name__, url_prefix="/api/notifications")


@notifications_bp.get("")
@require_auth
def list_notifications_route():
    """Query params: unread_only=true/false"""
    unread_only = request.args.get("unread_only", "false").lower() == "true"
    notifications = notification_service.list_notifications(g.current_user.id, unread_only=unread_only)
    return jsonify({"notifications": [n.to_dict() for n in notifications]}), 200


@notifications_bp.post("/<int:notification_id>/read")
@require_auth
def mark_read_route(notification_id: int):
    try:
        notification = notification_service.mark_read(notification_id, g.current_user.id)
        return jsonify(notification.to_dict()), 200
    except NotFoundError as e:
        return jsonify({"error": str(e)}), 404

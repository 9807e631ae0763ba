"""
Notification Blueprint: the current principal's workflow notifications.

Routes:
  GET    /api/v1/notifications                 – list (?unread=true&limit=&offset=)
  GET    /api/v1/notifications/unread-count
  POST   /api/v1/notifications/<nid>/read
  POST   /api/v1/notifications/read-all
"""

from flask import Blueprint, jsonify, request

from docflow.blueprints import page_params, register_error_handlers
from docflow.services.notification import NotificationService
from docflow.utils.errors import E, api_error
from docflow.utils.helpers import current_principal

notification_bp = Blueprint("notifications", __name__, url_prefix="/api/v1/notifications")
register_error_handlers(notification_bp)


@notification_bp.route("", methods=["GET"])
def list_notifications():
    limit, offset = page_params()
    items, total = NotificationService.list_for_recipient(
        current_principal(),
        unread_only=request.args.get("unread") == "true",
        limit=limit,
        offset=offset,
    )
    return jsonify({"items": [n.to_dict() for n in items], "total": total})


@notification_bp.route("/unread-count", methods=["GET"])
def unread_count():
    return jsonify({"unread_count": NotificationService.unread_count(current_principal())})


@notification_bp.route("/<int:nid>/read", methods=["POST"])
def mark_read(nid):
    notif = NotificationService.mark_read(nid, current_principal())
    if notif is None:
        return api_error(E.NOT_FOUND, "Notification not found")
    return jsonify(notif.to_dict())


@notification_bp.route("/read-all", methods=["POST"])
def mark_all_read():
    return jsonify({"marked": NotificationService.mark_all_read(current_principal())})

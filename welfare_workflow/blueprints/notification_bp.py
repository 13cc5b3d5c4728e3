"""
Welfare Case Workflow Engine
Notification blueprint — the calling user's in-app inbox.

Provides:
    GET  /api/v1/notifications                 ?unread_only=true&limit=&offset=
    GET  /api/v1/notifications/unread-count
    PUT  /api/v1/notifications/<id>/read
    PUT  /api/v1/notifications/read-all
"""

from __future__ import annotations

import logging

from flask import Blueprint, g, jsonify, request

from welfare_workflow.blueprints import paginate_args, register_error_handlers
from welfare_workflow.middleware.identity import require_identity
from welfare_workflow.services.notification import NotificationService

logger = logging.getLogger(__name__)

notification_bp = Blueprint("notifications", __name__, url_prefix="/api/v1")
register_error_handlers(notification_bp)


@notification_bp.route("/notifications", methods=["GET"])
@require_identity
def list_notifications():
    unread_only = request.args.get("unread_only", "false").lower() in ("1", "true", "yes")
    limit, offset = paginate_args()
    items, total = NotificationService.list_for_user(
        g.current_user.id, unread_only=unread_only, limit=limit, offset=offset,
    )
    return jsonify({
        "items": [n.to_dict() for n in items],
        "total": total,
        "unread_count": NotificationService.unread_count(g.current_user.id),
    })


@notification_bp.route("/notifications/unread-count", methods=["GET"])
@require_identity
def unread_count():
    return jsonify({"unread_count": NotificationService.unread_count(g.current_user.id)})


@notification_bp.route("/notifications/<int:nid>/read", methods=["PUT"])
@require_identity
def mark_read(nid):
    notif = NotificationService.mark_read(nid, g.current_user.id)
    return jsonify(notif.to_dict())


@notification_bp.route("/notifications/read-all", methods=["PUT"])
@require_identity
def mark_all_read():
    count = NotificationService.mark_all_read(g.current_user.id)
    return jsonify({"marked_read": count})

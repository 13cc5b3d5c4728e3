"""
Welfare Case Workflow Engine
Executive level blueprint — the rungs of the executive sign-off ladder.

Endpoints:
  GET/POST        /api/v1/executive-levels
  GET             /api/v1/executive-levels/active
  PUT             /api/v1/executive-levels/reorder
  GET/PUT/DELETE  /api/v1/executive-levels/<id>
"""

from __future__ import annotations

from flask import Blueprint, g, jsonify, request

from welfare_workflow.blueprints import register_error_handlers
from welfare_workflow.middleware.identity import require_identity, require_privileged
from welfare_workflow.services import catalog_admin
from welfare_workflow.utils.errors import E, api_error

executive_level_bp = Blueprint("executive_levels", __name__, url_prefix="/api/v1")
register_error_handlers(executive_level_bp)


@executive_level_bp.route("/executive-levels", methods=["GET"])
@require_identity
def list_levels():
    items = catalog_admin.list_levels()
    return jsonify({"items": items, "total": len(items)})


@executive_level_bp.route("/executive-levels/active", methods=["GET"])
@require_identity
def list_active_levels():
    """Active levels in traversal order."""
    items = catalog_admin.list_levels(active_only=True)
    return jsonify({"items": items, "total": len(items)})


@executive_level_bp.route("/executive-levels/<int:level_id>", methods=["GET"])
@require_identity
def get_level(level_id):
    return jsonify(catalog_admin.get_level(level_id))


@executive_level_bp.route("/executive-levels", methods=["POST"])
@require_identity
@require_privileged
def create_level():
    data = request.get_json(silent=True)
    if not isinstance(data, dict):
        return api_error(E.VALIDATION_REQUIRED, "JSON body is required")
    return jsonify(catalog_admin.create_level(data, actor_id=g.current_user.id)), 201


@executive_level_bp.route("/executive-levels/<int:level_id>", methods=["PUT"])
@require_identity
@require_privileged
def update_level(level_id):
    data = request.get_json(silent=True)
    if not isinstance(data, dict):
        return api_error(E.VALIDATION_REQUIRED, "JSON body is required")
    return jsonify(catalog_admin.update_level(level_id, data, actor_id=g.current_user.id))


@executive_level_bp.route("/executive-levels/<int:level_id>", methods=["DELETE"])
@require_identity
@require_privileged
def delete_level(level_id):
    catalog_admin.delete_level(level_id, actor_id=g.current_user.id)
    return jsonify({"deleted": True, "id": level_id})


@executive_level_bp.route("/executive-levels/reorder", methods=["PUT"])
@require_identity
@require_privileged
def reorder_levels():
    data = request.get_json(silent=True) or {}
    items = catalog_admin.reorder_levels(data.get("items"), actor_id=g.current_user.id)
    return jsonify({"items": items, "total": len(items)})

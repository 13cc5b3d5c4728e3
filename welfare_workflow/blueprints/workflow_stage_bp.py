"""
Welfare Case Workflow Engine
Workflow stage catalog blueprint.

Endpoint groups:
  Stages        GET/POST            /api/v1/workflow-stages
                GET/PUT/DELETE      /api/v1/workflow-stages/<id>
                POST                /api/v1/workflow-stages/<id>/restore
                PUT                 /api/v1/workflow-stages/reorder
  Role grants   PUT                 /api/v1/workflow-stages/<id>/roles
                DELETE              /api/v1/workflow-stages/<id>/roles/<role_id>
  User grants   PUT                 /api/v1/workflow-stages/<id>/users
                DELETE              /api/v1/workflow-stages/<id>/users/<user_id>
  Effective     GET                 /api/v1/workflow-stages/<id>/permissions

Reads need any authenticated user; writes need an administrator role.
"""

from __future__ import annotations

import logging

from flask import Blueprint, g, jsonify, request

from welfare_workflow.blueprints import register_error_handlers
from welfare_workflow.middleware.identity import require_identity, require_privileged
from welfare_workflow.services import catalog_admin
from welfare_workflow.utils.errors import E, api_error

logger = logging.getLogger(__name__)

workflow_stage_bp = Blueprint("workflow_stages", __name__, url_prefix="/api/v1")
register_error_handlers(workflow_stage_bp)


def _json_body():
    data = request.get_json(silent=True)
    if not isinstance(data, dict):
        return None
    return data


# ═════════════════════════════════════════════════════════════════════════════
# Stages
# ═════════════════════════════════════════════════════════════════════════════


@workflow_stage_bp.route("/workflow-stages", methods=["GET"])
@require_identity
def list_stages():
    """List stages in pipeline order. ?case_type_id= & ?active_only=true"""
    active_only = request.args.get("active_only", "false").lower() in ("1", "true", "yes")
    case_type_id = request.args.get("case_type_id", type=int)
    items = catalog_admin.list_stages(case_type_id=case_type_id, active_only=active_only)
    return jsonify({"items": items, "total": len(items)})


@workflow_stage_bp.route("/workflow-stages/<int:stage_id>", methods=["GET"])
@require_identity
def get_stage(stage_id):
    return jsonify(catalog_admin.get_stage(stage_id))


@workflow_stage_bp.route("/workflow-stages", methods=["POST"])
@require_identity
@require_privileged
def create_stage():
    data = _json_body()
    if data is None:
        return api_error(E.VALIDATION_REQUIRED, "JSON body is required")
    return jsonify(catalog_admin.create_stage(data, actor_id=g.current_user.id)), 201


@workflow_stage_bp.route("/workflow-stages/<int:stage_id>", methods=["PUT"])
@require_identity
@require_privileged
def update_stage(stage_id):
    data = _json_body()
    if data is None:
        return api_error(E.VALIDATION_REQUIRED, "JSON body is required")
    return jsonify(catalog_admin.update_stage(stage_id, data, actor_id=g.current_user.id))


@workflow_stage_bp.route("/workflow-stages/<int:stage_id>", methods=["DELETE"])
@require_identity
@require_privileged
def delete_stage(stage_id):
    """Soft delete; cases already on the stage keep pointing at it."""
    return jsonify(catalog_admin.deactivate_stage(stage_id, actor_id=g.current_user.id))


@workflow_stage_bp.route("/workflow-stages/<int:stage_id>/restore", methods=["POST"])
@require_identity
@require_privileged
def restore_stage(stage_id):
    return jsonify(catalog_admin.restore_stage(stage_id, actor_id=g.current_user.id))


@workflow_stage_bp.route("/workflow-stages/reorder", methods=["PUT"])
@require_identity
@require_privileged
def reorder_stages():
    data = _json_body() or {}
    items = catalog_admin.reorder_stages(data.get("items"), actor_id=g.current_user.id)
    return jsonify({"items": items, "total": len(items)})


# ═════════════════════════════════════════════════════════════════════════════
# Grants
# ═════════════════════════════════════════════════════════════════════════════


@workflow_stage_bp.route("/workflow-stages/<int:stage_id>/roles", methods=["PUT"])
@require_identity
@require_privileged
def upsert_role_grant(stage_id):
    data = _json_body()
    if data is None:
        return api_error(E.VALIDATION_REQUIRED, "JSON body is required")
    return jsonify(catalog_admin.upsert_role_grant(stage_id, data, actor_id=g.current_user.id))


@workflow_stage_bp.route("/workflow-stages/<int:stage_id>/roles/<int:role_id>", methods=["DELETE"])
@require_identity
@require_privileged
def delete_role_grant(stage_id, role_id):
    catalog_admin.delete_role_grant(stage_id, role_id, actor_id=g.current_user.id)
    return jsonify({"deleted": True, "stage_id": stage_id, "role_id": role_id})


@workflow_stage_bp.route("/workflow-stages/<int:stage_id>/users", methods=["PUT"])
@require_identity
@require_privileged
def upsert_user_grant(stage_id):
    data = _json_body()
    if data is None:
        return api_error(E.VALIDATION_REQUIRED, "JSON body is required")
    return jsonify(catalog_admin.upsert_user_grant(stage_id, data, actor_id=g.current_user.id))


@workflow_stage_bp.route("/workflow-stages/<int:stage_id>/users/<int:user_id>", methods=["DELETE"])
@require_identity
@require_privileged
def delete_user_grant(stage_id, user_id):
    catalog_admin.delete_user_grant(stage_id, user_id, actor_id=g.current_user.id)
    return jsonify({"deleted": True, "stage_id": stage_id, "user_id": user_id})


@workflow_stage_bp.route("/workflow-stages/<int:stage_id>/permissions", methods=["GET"])
@require_identity
def my_permissions(stage_id):
    """Effective permission set of the calling user on this stage."""
    return jsonify(catalog_admin.stage_permissions_for(stage_id, g.current_user.id))

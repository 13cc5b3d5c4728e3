"""
Welfare Case Workflow Engine
Case workflow blueprint — transitions and per-case read models.

Endpoint groups:
  Generic transition      POST /api/v1/cases/<id>/workflow-action
  Specialised transitions POST /api/v1/cases/<id>/welfare-approve | welfare-reject |
                               zi-approve | zi-reject | executive-approve |
                               executive-rework | welfare-forward-rework |
                               resubmit-welfare
  Read models             POST /api/v1/cases/<id>/reconcile
                          GET  /api/v1/cases/<id>/available-actions
                          GET  /api/v1/cases/<id>/status-history
                          GET  /api/v1/cases/<id>/comments
                          GET  /api/v1/cases/status-diagnostics

The service layer owns every commit; nothing here touches db.session.
"""

from __future__ import annotations

import logging

from flask import Blueprint, g, jsonify, request

from welfare_workflow.blueprints import register_error_handlers
from welfare_workflow.middleware.identity import require_identity, require_privileged
from welfare_workflow.services import transition_engine as engine
from welfare_workflow.services.diagnostics import status_diagnostics
from welfare_workflow.services.status_sync import reconcile_case
from welfare_workflow.utils.errors import E, api_error

logger = logging.getLogger(__name__)

case_workflow_bp = Blueprint("case_workflow", __name__, url_prefix="/api/v1")
register_error_handlers(case_workflow_bp)


def _comments() -> str | None:
    data = request.get_json(silent=True) or {}
    comments = data.get("comments")
    if comments is not None and not isinstance(comments, str):
        return None
    return comments


# ═════════════════════════════════════════════════════════════════════════════
# Transitions
# ═════════════════════════════════════════════════════════════════════════════


@case_workflow_bp.route("/cases/<int:case_id>/workflow-action", methods=["POST"])
@require_identity
def workflow_action(case_id):
    """Approve or reject the case at its current stage."""
    data = request.get_json(silent=True) or {}
    action = (data.get("action") or "").strip()
    if not action:
        return api_error(E.VALIDATION_REQUIRED, "action is required")
    if action not in ("approve", "reject"):
        return api_error(E.VALIDATION_INVALID, 'Invalid action. Must be "approve" or "reject"')

    result = engine.apply_transition(case_id, action, g.current_user.id, _comments())
    return jsonify(result.to_dict())


def _specialised(name: str):
    transition = engine.SPECIALISED_TRANSITIONS[name]

    @require_identity
    def view(case_id):
        result = transition(case_id, g.current_user.id, _comments())
        return jsonify(result.to_dict())

    view.__name__ = f"{name}_view"
    view.__doc__ = transition.__doc__
    return view


for _name in engine.SPECIALISED_TRANSITIONS:
    case_workflow_bp.add_url_rule(
        f"/cases/<int:case_id>/{_name.replace('_', '-')}",
        endpoint=_name,
        view_func=_specialised(_name),
        methods=["POST"],
    )


# ═════════════════════════════════════════════════════════════════════════════
# Read models
# ═════════════════════════════════════════════════════════════════════════════


@case_workflow_bp.route("/cases/<int:case_id>/reconcile", methods=["POST"])
@require_identity
def reconcile(case_id):
    """Force the status/stage consistency check (normally implicit on read)."""
    case = reconcile_case(case_id)
    return jsonify(case.to_dict())


@case_workflow_bp.route("/cases/<int:case_id>/available-actions", methods=["GET"])
@require_identity
def available_actions(case_id):
    return jsonify(engine.available_actions(case_id, g.current_user.id))


@case_workflow_bp.route("/cases/<int:case_id>/status-history", methods=["GET"])
@require_identity
def status_history(case_id):
    rows = engine.list_status_history(case_id)
    return jsonify({"items": [r.to_dict() for r in rows], "total": len(rows)})


@case_workflow_bp.route("/cases/<int:case_id>/comments", methods=["GET"])
@require_identity
def comments(case_id):
    rows = engine.list_comments(case_id, g.current_user.id)
    return jsonify({"items": [c.to_dict() for c in rows], "total": len(rows)})


@case_workflow_bp.route("/cases/status-diagnostics", methods=["GET"])
@require_identity
@require_privileged
def diagnostics():
    """Statuses in use plus cases whose status is outside their stage's set."""
    return jsonify(status_diagnostics())

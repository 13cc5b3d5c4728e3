"""
PermissionResolver — effective per-stage action set for a user.

Resolution order:
    1. Superuser → view on every stage; approve/reject on every stage except
       the non-approval ones (draft, assignment, counseling, finance), which
       have no review step. Every other field is whatever anyone at all has
       been granted on that stage.
    2. Role grants on the stage, OR-ed across all of the user's roles.
    3. The user's own grant, overriding field by field wherever the field is
       non-NULL (an explicit False revokes a role-granted True and vice versa).
    4. Anything not granted is denied.

``can_create_case_in_stage`` / ``can_fill_case_in_stage`` add the stage's
capability flag on top. A NULL flag (catalog row that predates the column)
degrades to the user's general ``cases:create`` / ``cases:update`` permission
instead of failing closed.
"""

from __future__ import annotations

import logging

from flask import current_app

from welfare_workflow.core.exceptions import ForbiddenError
from welfare_workflow.models import db
from welfare_workflow.models.auth import Role, RolePermission, User
from welfare_workflow.models.workflow import STAGE_PERMISSION_FIELDS, WorkflowStage
from welfare_workflow.services.stage_catalog import role_grants, stage_grant_union, user_grant

logger = logging.getLogger(__name__)

# Action → permission field
ACTION_FIELDS = {
    "view": "can_view",
    "edit": "can_edit",
    "update": "can_edit",
    "delete": "can_delete",
    "approve": "can_approve",
    "reject": "can_reject",
    "review": "can_review",
    "create_case": "can_create_case",
    "fill_case": "can_fill_case",
}

NON_APPROVAL_STAGE_KEYS = (
    "draft", "case_assignment", "assignment", "counselor", "counseling",
    "finance", "finance_disbursement", "disbursement",
)


def _empty() -> dict[str, bool]:
    return {field: False for field in STAGE_PERMISSION_FIELDS}


def is_superuser(role_names: list[str]) -> bool:
    superusers = current_app.config["SUPERUSER_ROLES"]
    return any((name or "").strip() in superusers for name in role_names)


def is_non_approval_stage(stage: WorkflowStage) -> bool:
    key = (stage.stage_key or "").lower()
    name = (stage.stage_name or "").lower()
    return any(k in key or k in name for k in NON_APPROVAL_STAGE_KEYS)


def effective_permissions(user: User, stage: WorkflowStage | None) -> dict[str, bool]:
    """Merged permission set for (*user*, *stage*)."""
    role_names = user.role_names

    if is_superuser(role_names):
        if stage is None:
            return _empty() | {"can_view": True}
        perms = stage_grant_union(stage.id)
        perms["can_view"] = True
        reviewable = not is_non_approval_stage(stage)
        perms["can_approve"] = reviewable
        perms["can_reject"] = reviewable
        return perms

    perms = _empty()
    if stage is None:
        return perms

    for grant in role_grants(stage.id, role_names):
        for field in STAGE_PERMISSION_FIELDS:
            if getattr(grant, field):
                perms[field] = True

    override = user_grant(stage.id, user.id)
    if override is not None:
        for field in STAGE_PERMISSION_FIELDS:
            value = getattr(override, field)
            if value is not None:
                perms[field] = bool(value)

    return perms


def can(user: User, stage: WorkflowStage | None, action: str) -> bool:
    field = ACTION_FIELDS.get(action)
    if field is None:
        return False
    return effective_permissions(user, stage)[field]


def authorize(user: User, stage: WorkflowStage | None, action: str) -> None:
    """Raise ``ForbiddenError`` unless *user* may perform *action* on *stage*."""
    if not can(user, stage, action):
        stage_label = stage.stage_name if stage is not None else "unknown stage"
        logger.info(
            "Denied %s on stage %s for user %s", action, stage_label, user.id,
            extra={"action": action, "actor_id": user.id, "stage_id": stage.id if stage else None},
        )
        raise ForbiddenError(action, f"You do not have permission to {action} at stage '{stage_label}'")


def has_general_permission(user: User, resource: str, action: str) -> bool:
    """Role-level (non-stage) permission such as ``cases:create``."""
    role_names = user.role_names
    if not role_names:
        return False
    hit = (
        db.session.query(RolePermission.id)
        .join(Role, RolePermission.role_id == Role.id)
        .filter(
            Role.name.in_(role_names),
            Role.is_active.is_(True),
            RolePermission.resource == resource,
            RolePermission.action == action,
        )
        .first()
    )
    return hit is not None


def can_create_case_in_stage(user: User, stage: WorkflowStage | None) -> bool:
    if is_superuser(user.role_names):
        return True
    general = has_general_permission(user, "cases", "create")
    if stage is None or not stage.is_active or stage.can_create_case is None:
        return general
    if stage.can_create_case and can(user, stage, "view"):
        return True
    return general


def can_fill_case_in_stage(user: User, stage: WorkflowStage | None) -> bool:
    if is_superuser(user.role_names):
        return True
    if stage is None or not stage.is_active:
        return False
    if stage.can_fill_case is None:
        return has_general_permission(user, "cases", "update")
    if not stage.can_fill_case:
        return False
    return can(user, stage, "view")

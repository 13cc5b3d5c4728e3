"""
Catalog administration — workflow stages, stage grants and executive levels.

Centralises every ORM mutation of the catalog so that blueprints remain
HTTP-only. Each public function owns its transaction and writes one audit
row per change.

Catalog edits land while cases are in flight; the engine re-reads the
catalog per transition, so nothing here needs to touch cases. The one
exception is deleting an executive level, which is refused while any case
still sits on it.
"""

from __future__ import annotations

import logging
from decimal import Decimal, InvalidOperation

from sqlalchemy.exc import IntegrityError

from welfare_workflow.core.exceptions import (
    CatalogMisconfiguredError,
    ConflictError,
    NotFoundError,
    ValidationError,
)
from welfare_workflow.models import db
from welfare_workflow.models.audit import write_audit
from welfare_workflow.models.auth import Role, User
from welfare_workflow.models.case import Case
from welfare_workflow.models.workflow import (
    SLA_UNITS,
    STAGE_PERMISSION_FIELDS,
    CaseType,
    ExecutiveLevel,
    WorkflowStage,
    WorkflowStageRole,
    WorkflowStageUser,
)
from welfare_workflow.services.stage_permissions import effective_permissions

logger = logging.getLogger(__name__)

STAGE_MUTABLE_FIELDS = (
    "stage_name", "stage_key", "description", "sort_order", "case_type_id",
    "next_stage_id", "auto_advance_on_approve", "requires_comments_on_reject",
    "can_create_case", "can_fill_case", "associated_statuses", "sla_value", "sla_unit",
)
LEVEL_MUTABLE_FIELDS = ("level_number", "level_name", "description", "sort_order", "is_active")


def _commit(resource: str, field: str, value) -> None:
    """Commit, translating a unique-constraint race into ConflictError."""
    try:
        db.session.commit()
    except IntegrityError as exc:
        db.session.rollback()
        raise ConflictError(resource, field, str(value)) from exc


# ═════════════════════════════════════════════════════════════════════════════
# Validation
# ═════════════════════════════════════════════════════════════════════════════


def _clean_statuses(value) -> list[str]:
    if value is None:
        return []
    if not isinstance(value, list):
        raise ValidationError("associated_statuses must be a list", details={"associated_statuses": "list"})
    cleaned = []
    for item in value:
        if not isinstance(item, str) or not item.strip():
            raise ValidationError(
                "associated_statuses entries must be non-empty strings",
                details={"associated_statuses": item},
            )
        if item.strip() not in cleaned:
            cleaned.append(item.strip())
    return cleaned


def _clean_int(data: dict, field: str, *, minimum: int | None = None) -> int | None:
    value = data.get(field)
    if value is None:
        return None
    if isinstance(value, bool):
        raise ValidationError(f"{field} must be an integer", details={field: value})
    try:
        number = int(value)
    except (TypeError, ValueError) as exc:
        raise ValidationError(f"{field} must be an integer", details={field: value}) from exc
    if minimum is not None and number < minimum:
        raise ValidationError(f"{field} must be >= {minimum}", details={field: value})
    return number


def _check_successor(stage_id: int | None, next_stage_id: int | None) -> None:
    """The explicit successor must exist, be active and not loop back."""
    if next_stage_id is None:
        return
    if stage_id is not None and next_stage_id == stage_id:
        raise ValidationError("A stage cannot be its own next stage", details={"next_stage_id": next_stage_id})
    target = db.session.get(WorkflowStage, next_stage_id)
    if target is None:
        raise ValidationError("next_stage_id does not reference an existing stage",
                              details={"next_stage_id": next_stage_id})
    if not target.is_active:
        raise CatalogMisconfiguredError(
            f"Next stage '{target.stage_key}' is inactive and would never be reached", stage_id=stage_id,
        )

    seen = {next_stage_id}
    cursor = target
    while cursor is not None and cursor.next_stage_id is not None:
        if cursor.next_stage_id == stage_id or cursor.next_stage_id in seen:
            raise CatalogMisconfiguredError("next_stage_id would create a successor cycle", stage_id=stage_id)
        seen.add(cursor.next_stage_id)
        cursor = db.session.get(WorkflowStage, cursor.next_stage_id)


def _parse_order(items, loader) -> list[tuple]:
    """Validate a reorder payload completely before anything is touched."""
    if not isinstance(items, list) or not items:
        raise ValidationError("items must be a non-empty list", details={"items": "required"})
    parsed = []
    for item in items:
        if not isinstance(item, dict):
            raise ValidationError("each item must be an object with id and sort_order")
        item_id = _clean_int(item, "id")
        sort_order = _clean_int(item, "sort_order", minimum=0)
        if item_id is None or sort_order is None:
            raise ValidationError("each item needs id and sort_order", details={"item": item})
        parsed.append((loader(item_id), sort_order))
    return parsed


def _validate_stage(data: dict, *, stage: WorkflowStage | None = None) -> dict:
    """Normalise a create/update payload. Only keys present in *data* are returned."""
    partial = stage is not None
    clean: dict = {}

    for field in ("stage_name", "stage_key"):
        if field in data or not partial:
            value = (data.get(field) or "").strip()
            if not value:
                raise ValidationError(f"{field} is required", details={field: "required"})
            if len(value) > (100 if field == "stage_name" else 50):
                raise ValidationError(f"{field} is too long", details={field: value})
            clean[field] = value.lower() if field == "stage_key" else value

    if "stage_key" in clean:
        clash = WorkflowStage.query.filter(WorkflowStage.stage_key == clean["stage_key"])
        if partial:
            clash = clash.filter(WorkflowStage.id != stage.id)
        if clash.first() is not None:
            raise ConflictError("WorkflowStage", "stage_key", clean["stage_key"])

    if "sort_order" in data:
        clean["sort_order"] = _clean_int(data, "sort_order", minimum=0) or 0

    if "case_type_id" in data:
        case_type_id = _clean_int(data, "case_type_id")
        if case_type_id is not None and db.session.get(CaseType, case_type_id) is None:
            raise ValidationError("case_type_id does not reference a case type",
                                  details={"case_type_id": case_type_id})
        clean["case_type_id"] = case_type_id

    if "next_stage_id" in data:
        next_stage_id = _clean_int(data, "next_stage_id")
        _check_successor(stage.id if partial else None, next_stage_id)
        clean["next_stage_id"] = next_stage_id

    if "associated_statuses" in data:
        clean["associated_statuses"] = _clean_statuses(data["associated_statuses"])

    if "sla_value" in data:
        raw = data["sla_value"]
        if raw is None:
            clean["sla_value"] = None
        else:
            try:
                clean["sla_value"] = Decimal(str(raw))
            except InvalidOperation as exc:
                raise ValidationError("sla_value must be a number", details={"sla_value": raw}) from exc
            if clean["sla_value"] < 0:
                raise ValidationError("sla_value must be >= 0", details={"sla_value": raw})

    if "sla_unit" in data:
        unit = data["sla_unit"]
        if unit is not None and unit not in SLA_UNITS:
            raise ValidationError(f"sla_unit must be one of {sorted(SLA_UNITS)}", details={"sla_unit": unit})
        clean["sla_unit"] = unit

    for flag in ("auto_advance_on_approve", "requires_comments_on_reject", "can_create_case", "can_fill_case"):
        if flag in data:
            clean[flag] = None if data[flag] is None else bool(data[flag])

    if "description" in data:
        clean["description"] = data["description"]
    return clean


# ═════════════════════════════════════════════════════════════════════════════
# Workflow stages
# ═════════════════════════════════════════════════════════════════════════════


def _get_stage(stage_id: int) -> WorkflowStage:
    stage = db.session.get(WorkflowStage, stage_id)
    if stage is None:
        raise NotFoundError("WorkflowStage", stage_id)
    return stage


def list_stages(case_type_id: int | None = None, active_only: bool = False) -> list[dict]:
    """Stages in pipeline order.

    Args:
        case_type_id: When given, only stages scoped to that type or generic.
        active_only: Hide soft-deleted stages.
    """
    q = WorkflowStage.query
    if active_only:
        q = q.filter(WorkflowStage.is_active.is_(True))
    if case_type_id is not None:
        q = q.filter(db.or_(WorkflowStage.case_type_id.is_(None), WorkflowStage.case_type_id == case_type_id))
    return [s.to_dict() for s in q.order_by(WorkflowStage.sort_order, WorkflowStage.id).all()]


def get_stage(stage_id: int) -> dict:
    return _get_stage(stage_id).to_dict(include_grants=True)


def create_stage(data: dict, actor_id: int | None = None) -> dict:
    """Create a stage.

    Raises:
        ValidationError: Missing name/key or malformed fields.
        ConflictError: ``stage_key`` already taken.
        CatalogMisconfiguredError: ``next_stage_id`` is inactive or loops.
    """
    clean = _validate_stage(data)
    clean.setdefault("associated_statuses", [])
    if "sort_order" not in clean:
        highest = db.session.query(db.func.max(WorkflowStage.sort_order)).scalar()
        clean["sort_order"] = (highest or 0) + 1

    stage = WorkflowStage(**clean)
    db.session.add(stage)
    db.session.flush()
    write_audit(entity_type="workflow_stage", entity_id=stage.id, action="workflow_stage.create",
                actor_user_id=actor_id, diff={k: str(v) for k, v in clean.items()})
    _commit("WorkflowStage", "stage_key", clean["stage_key"])
    logger.info("WorkflowStage created id=%s key=%s", stage.id, stage.stage_key, extra={"stage_id": stage.id})
    return stage.to_dict()


def update_stage(stage_id: int, data: dict, actor_id: int | None = None) -> dict:
    """Apply a partial update. Renaming, re-targeting and status-set edits are all allowed mid-flight."""
    stage = _get_stage(stage_id)
    clean = _validate_stage(data, stage=stage)

    diff = {}
    for field in STAGE_MUTABLE_FIELDS:
        if field in clean and getattr(stage, field) != clean[field]:
            diff[field] = {"old": str(getattr(stage, field)), "new": str(clean[field])}
            setattr(stage, field, clean[field])

    if diff:
        write_audit(entity_type="workflow_stage", entity_id=stage.id, action="workflow_stage.update",
                    actor_user_id=actor_id, diff=diff)
        _commit("WorkflowStage", "stage_key", stage.stage_key)
        logger.info("WorkflowStage updated id=%s fields=%s", stage.id, sorted(diff), extra={"stage_id": stage.id})
    return stage.to_dict()


def _set_stage_active(stage_id: int, active: bool, actor_id: int | None) -> dict:
    stage = _get_stage(stage_id)
    if stage.is_active == active:
        return stage.to_dict()
    stage.is_active = active
    action = "workflow_stage.restore" if active else "workflow_stage.deactivate"
    write_audit(entity_type="workflow_stage", entity_id=stage.id, action=action, actor_user_id=actor_id)
    db.session.commit()
    logger.info("WorkflowStage %s id=%s", "restored" if active else "deactivated", stage.id,
                extra={"stage_id": stage.id})
    return stage.to_dict()


def deactivate_stage(stage_id: int, actor_id: int | None = None) -> dict:
    """Soft delete. Cases already on the stage keep their pointer."""
    return _set_stage_active(stage_id, False, actor_id)


def restore_stage(stage_id: int, actor_id: int | None = None) -> dict:
    return _set_stage_active(stage_id, True, actor_id)


def reorder_stages(items: list[dict], actor_id: int | None = None) -> list[dict]:
    """Bulk rewrite of ``sort_order``: ``[{"id": 3, "sort_order": 1}, ...]``."""
    changes = {}
    for stage, sort_order in _parse_order(items, _get_stage):
        if stage.sort_order != sort_order:
            changes[stage.id] = {"old": stage.sort_order, "new": sort_order}
            stage.sort_order = sort_order

    if changes:
        write_audit(entity_type="workflow_stage", entity_id="*", action="workflow_stage.reorder",
                    actor_user_id=actor_id, diff={str(k): v for k, v in changes.items()})
        db.session.commit()
        logger.info("WorkflowStages reordered: %d changed", len(changes))
    return list_stages()


# ── Stage grants ─────────────────────────────────────────────────────────────


def _grant_fields(data: dict, *, nullable: bool) -> dict:
    fields = {}
    for field in STAGE_PERMISSION_FIELDS:
        if field not in data:
            continue
        value = data[field]
        if value is None and not nullable:
            raise ValidationError(f"{field} cannot be null on a role grant", details={field: None})
        fields[field] = None if value is None else bool(value)
    return fields


def upsert_role_grant(stage_id: int, data: dict, actor_id: int | None = None) -> dict:
    """Create or update the (stage, role) grant. Unspecified fields keep their value."""
    stage = _get_stage(stage_id)
    role_id = _clean_int(data, "role_id")
    if role_id is None:
        raise ValidationError("role_id is required", details={"role_id": "required"})
    if db.session.get(Role, role_id) is None:
        raise NotFoundError("Role", role_id)
    fields = _grant_fields(data, nullable=False)

    grant = WorkflowStageRole.query.filter_by(workflow_stage_id=stage.id, role_id=role_id).first()
    if grant is None:
        grant = WorkflowStageRole(workflow_stage_id=stage.id, role_id=role_id)
        db.session.add(grant)
    for field, value in fields.items():
        setattr(grant, field, value)
    db.session.flush()

    write_audit(entity_type="workflow_stage", entity_id=stage.id, action="workflow_stage.grant_role",
                actor_user_id=actor_id, diff={"role_id": role_id, **grant.grant_dict()})
    _commit("WorkflowStageRole", "role_id", role_id)
    return grant.to_dict()


def delete_role_grant(stage_id: int, role_id: int, actor_id: int | None = None) -> None:
    grant = WorkflowStageRole.query.filter_by(workflow_stage_id=stage_id, role_id=role_id).first()
    if grant is None:
        raise NotFoundError("WorkflowStageRole", f"{stage_id}/{role_id}")
    db.session.delete(grant)
    write_audit(entity_type="workflow_stage", entity_id=stage_id, action="workflow_stage.revoke_role",
                actor_user_id=actor_id, diff={"role_id": role_id})
    db.session.commit()


def upsert_user_grant(stage_id: int, data: dict, actor_id: int | None = None) -> dict:
    """Create or update a user override. ``null`` fields inherit from role grants."""
    stage = _get_stage(stage_id)
    user_id = _clean_int(data, "user_id")
    if user_id is None:
        raise ValidationError("user_id is required", details={"user_id": "required"})
    if db.session.get(User, user_id) is None:
        raise NotFoundError("User", user_id)
    fields = _grant_fields(data, nullable=True)

    grant = WorkflowStageUser.query.filter_by(workflow_stage_id=stage.id, user_id=user_id).first()
    if grant is None:
        grant = WorkflowStageUser(workflow_stage_id=stage.id, user_id=user_id)
        db.session.add(grant)
    for field, value in fields.items():
        setattr(grant, field, value)
    db.session.flush()

    write_audit(entity_type="workflow_stage", entity_id=stage.id, action="workflow_stage.grant_user",
                actor_user_id=actor_id, diff={"user_id": user_id, **grant.grant_dict()})
    _commit("WorkflowStageUser", "user_id", user_id)
    return grant.to_dict()


def delete_user_grant(stage_id: int, user_id: int, actor_id: int | None = None) -> None:
    grant = WorkflowStageUser.query.filter_by(workflow_stage_id=stage_id, user_id=user_id).first()
    if grant is None:
        raise NotFoundError("WorkflowStageUser", f"{stage_id}/{user_id}")
    db.session.delete(grant)
    write_audit(entity_type="workflow_stage", entity_id=stage_id, action="workflow_stage.revoke_user",
                actor_user_id=actor_id, diff={"user_id": user_id})
    db.session.commit()


def stage_permissions_for(stage_id: int, user_id: int) -> dict:
    stage = _get_stage(stage_id)
    user = db.session.get(User, user_id)
    if user is None:
        raise NotFoundError("User", user_id)
    return {"stage_id": stage.id, "user_id": user.id, "permissions": effective_permissions(user, stage)}


# ═════════════════════════════════════════════════════════════════════════════
# Executive levels
# ═════════════════════════════════════════════════════════════════════════════


def _get_level(level_id: int) -> ExecutiveLevel:
    level = db.session.get(ExecutiveLevel, level_id)
    if level is None:
        raise NotFoundError("ExecutiveLevel", level_id)
    return level


def _validate_level(data: dict, *, level: ExecutiveLevel | None = None) -> dict:
    partial = level is not None
    clean: dict = {}

    if "level_number" in data or not partial:
        number = _clean_int(data, "level_number", minimum=1)
        if number is None:
            raise ValidationError("level_number is required", details={"level_number": "required"})
        clash = ExecutiveLevel.query.filter(ExecutiveLevel.level_number == number)
        if partial:
            clash = clash.filter(ExecutiveLevel.id != level.id)
        if clash.first() is not None:
            raise ConflictError("ExecutiveLevel", "level_number", str(number))
        clean["level_number"] = number

    if "level_name" in data or not partial:
        name = (data.get("level_name") or "").strip()
        if not name:
            raise ValidationError("level_name is required", details={"level_name": "required"})
        clean["level_name"] = name

    if "sort_order" in data:
        clean["sort_order"] = _clean_int(data, "sort_order", minimum=0) or 0
    if "is_active" in data:
        clean["is_active"] = bool(data["is_active"])
    if "description" in data:
        clean["description"] = data["description"]
    return clean


def _cases_on_level(level_number: int) -> int:
    return Case.query.filter(Case.current_executive_level == level_number).count()


def list_levels(active_only: bool = False) -> list[dict]:
    q = ExecutiveLevel.query
    if active_only:
        q = q.filter(ExecutiveLevel.is_active.is_(True))
    return [lvl.to_dict() for lvl in q.order_by(ExecutiveLevel.sort_order, ExecutiveLevel.level_number).all()]


def get_level(level_id: int) -> dict:
    return _get_level(level_id).to_dict()


def create_level(data: dict, actor_id: int | None = None) -> dict:
    clean = _validate_level(data)
    clean.setdefault("sort_order", clean["level_number"])
    level = ExecutiveLevel(**clean)
    db.session.add(level)
    db.session.flush()
    write_audit(entity_type="executive_level", entity_id=level.id, action="executive_level.create",
                actor_user_id=actor_id, diff={k: str(v) for k, v in clean.items()})
    _commit("ExecutiveLevel", "level_number", clean["level_number"])
    logger.info("ExecutiveLevel created number=%s", level.level_number, extra={"executive_level": level.level_number})
    return level.to_dict()


def update_level(level_id: int, data: dict, actor_id: int | None = None) -> dict:
    """Partial update.

    Renumbering a level that cases sit on would strand them, so it is
    refused the same way delete is.
    """
    level = _get_level(level_id)
    clean = _validate_level(data, level=level)

    if "level_number" in clean and clean["level_number"] != level.level_number:
        occupied = _cases_on_level(level.level_number)
        if occupied:
            raise ValidationError(
                f"Cannot renumber level {level.level_number}: {occupied} case(s) are at this level",
                details={"cases": occupied},
            )

    diff = {}
    for field in LEVEL_MUTABLE_FIELDS:
        if field in clean and getattr(level, field) != clean[field]:
            diff[field] = {"old": str(getattr(level, field)), "new": str(clean[field])}
            setattr(level, field, clean[field])
    if diff:
        write_audit(entity_type="executive_level", entity_id=level.id, action="executive_level.update",
                    actor_user_id=actor_id, diff=diff)
        _commit("ExecutiveLevel", "level_number", level.level_number)
    return level.to_dict()


def delete_level(level_id: int, actor_id: int | None = None) -> None:
    """Hard delete; refused while any case sits on this level."""
    level = _get_level(level_id)
    occupied = _cases_on_level(level.level_number)
    if occupied:
        raise ValidationError(
            f"Cannot delete level {level.level_number}: {occupied} case(s) are currently at this level",
            details={"cases": occupied},
        )
    number = level.level_number
    db.session.delete(level)
    write_audit(entity_type="executive_level", entity_id=level_id, action="executive_level.delete",
                actor_user_id=actor_id, diff={"level_number": number})
    db.session.commit()
    logger.info("ExecutiveLevel deleted number=%s", number, extra={"executive_level": number})


def reorder_levels(items: list[dict], actor_id: int | None = None) -> list[dict]:
    """Bulk rewrite of ``sort_order``; traversal order follows immediately."""
    changes = {}
    for level, sort_order in _parse_order(items, _get_level):
        if level.sort_order != sort_order:
            changes[level.level_number] = {"old": level.sort_order, "new": sort_order}
            level.sort_order = sort_order
    if changes:
        write_audit(entity_type="executive_level", entity_id="*", action="executive_level.reorder",
                    actor_user_id=actor_id, diff={str(k): v for k, v in changes.items()})
        db.session.commit()
    return list_levels()

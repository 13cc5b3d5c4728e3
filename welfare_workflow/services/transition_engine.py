"""
TransitionEngine — one approve / reject / rework action, end to end.

Every transition runs the same pipeline:

    1. load case + actor (NotFoundError)
    2. guard: source status / current stage (InvalidStateError),
       permission or role (ForbiddenError), required comment and
       checklist completeness (ValidationError)
    3. compute next status + stage (StageResolver / ExecutiveLadder)
    4. write status + stage via the synchronizer, append StatusHistory,
       CaseComment and AuditLog, commit once
    5. dispatch notifications after the commit (best effort)

Design decisions:
    - All-or-nothing: steps 4's writes share one transaction; any failure
      rolls the whole transition back. A concurrent write to the same case
      trips the ``version_id`` check and surfaces as ConflictError.
    - An unresolvable successor stage never fails the transition. The
      status and history are still written, the stage pointer stays put
      and the gap is logged for the operator.
    - The catalog is loaded fresh for every transition.

Usage:
    from welfare_workflow.services.transition_engine import apply_transition

    result = apply_transition(case_id=7, action="approve", actor_id=3)
    result.new_status, result.new_stage_id, result.executive_level
"""

from __future__ import annotations

import logging
import re
from contextlib import contextmanager
from typing import NamedTuple

from flask import current_app
from sqlalchemy import distinct, func
from sqlalchemy.orm.exc import StaleDataError

from welfare_workflow.core.exceptions import (
    ConflictError,
    ForbiddenError,
    InvalidStateError,
    NotFoundError,
    ValidationError,
)
from welfare_workflow.models import db
from welfare_workflow.models.audit import write_audit
from welfare_workflow.models.auth import User
from welfare_workflow.models.case import Case, CaseComment, StatusHistory
from welfare_workflow.models.checklist import ChecklistItem, ChecklistResponse
from welfare_workflow.models.workflow import ExecutiveLevel, WorkflowStage
from welfare_workflow.services import executive_ladder as ladder
from welfare_workflow.services.notification import NotificationService, PendingNotification
from welfare_workflow.services.stage_catalog import (
    StageCatalog,
    active_executive_levels,
    is_executive_stage,
    user_ids_with_capability,
    user_ids_with_roles,
)
from welfare_workflow.services.stage_permissions import (
    authorize,
    can_create_case_in_stage,
    can_fill_case_in_stage,
    effective_permissions,
)
from welfare_workflow.services.status_sync import reconcile_case, sync_case_stage

logger = logging.getLogger(__name__)


# ── Role sets for the specialised transitions ───────────────────────────────
# Privileged roles (config PRIVILEGED_ROLES) are always allowed on top.

WELFARE_ROLES = frozenset({"welfare_reviewer", "welfare"})
ZI_ROLES = frozenset({"ZI"})
RESUBMIT_ROLES = frozenset({"dcm", "Deputy Counseling Manager", "ZI"})
FINANCE_ROLES = frozenset({"finance"})

_LADDER_LEVEL_RE = re.compile(r"_(\d+)$")


class TransitionResult(NamedTuple):
    new_status: str
    new_stage_id: int | None
    executive_level: int | None
    message: str

    def to_dict(self) -> dict:
        return self._asdict()


class _Outcome(NamedTuple):
    """What a transition decided, before anything is written."""

    new_status: str
    new_level: int | None
    target_stage: WorkflowStage | None   # None + resolve=False → keep pointer
    resolve: bool
    message: str


# ═════════════════════════════════════════════════════════════════════════════
# Guards
# ═════════════════════════════════════════════════════════════════════════════


def _load_case(case_id: int, heal: bool = True) -> Case:
    """Load the case; by default a drifted status is healed (and committed) first."""
    if heal:
        return reconcile_case(case_id)
    case = db.session.get(Case, case_id)
    if case is None:
        raise NotFoundError("Case", case_id)
    return case


def _load_actor(actor_id: int) -> User:
    actor = db.session.get(User, actor_id)
    if actor is None or not actor.is_active:
        raise NotFoundError("User", actor_id)
    return actor


def _is_privileged(actor: User) -> bool:
    return bool(set(actor.role_names) & current_app.config["PRIVILEGED_ROLES"])


def _require_roles(actor: User, allowed: frozenset[str], action: str, who: str) -> None:
    if _is_privileged(actor):
        return
    held = {name.lower() for name in actor.role_names}
    if not held & {name.lower() for name in allowed}:
        raise ForbiddenError(action, f"Only {who} or an administrator can {action.replace('_', ' ')} cases")


def _require_comment(comments: str | None, why: str) -> str:
    text = (comments or "").strip()
    if not text:
        raise ValidationError(f"Comments are required when {why}", details={"comments": "required"})
    return text


def _require_status(case: Case, expected: str, action: str) -> None:
    if case.status != expected:
        raise InvalidStateError(
            f"Cannot {action.replace('_', ' ')}: case status is '{case.status}', expected '{expected}'",
            current=case.status,
            expected=expected,
        )


def _require_current_stage(case: Case, catalog: StageCatalog) -> WorkflowStage:
    if case.current_workflow_stage_id is None:
        raise InvalidStateError("Case has no workflow stage assigned", current=case.status)
    stage = catalog.get(case.current_workflow_stage_id, include_inactive=True)
    if stage is None:
        raise NotFoundError("WorkflowStage", case.current_workflow_stage_id)
    if not stage.is_active:
        raise InvalidStateError(
            f"Current workflow stage '{stage.stage_name}' is inactive",
            current=case.status,
            expected="an active workflow stage",
        )
    return stage


def checklist_progress(case_id: int) -> tuple[int, int]:
    """(filled, total) active checklist items for the case."""
    total = ChecklistItem.query.filter_by(is_active=True).count()
    filled = (
        db.session.query(func.count(distinct(ChecklistResponse.checklist_item_id)))
        .join(ChecklistItem, ChecklistResponse.checklist_item_id == ChecklistItem.id)
        .filter(ChecklistResponse.case_id == case_id, ChecklistItem.is_active.is_(True))
        .scalar()
    ) or 0
    return filled, total


def _require_complete_checklist(case_id: int) -> None:
    filled, total = checklist_progress(case_id)
    if total == 0 or filled >= total:
        return
    details = {"filled": filled, "total": total}
    if filled == 0:
        raise ValidationError("Submit the checklist and then click on approve button", details=details)
    raise ValidationError(
        f"Checklist incomplete. Please fill all checklist items before approving "
        f"({filled}/{total} completed)",
        details=details,
    )


def _current_level(case: Case) -> int:
    """Ladder rung the case sits on; legacy rows only carry it in the status."""
    if case.current_executive_level is not None:
        return case.current_executive_level
    match = _LADDER_LEVEL_RE.search(case.status or "")
    if match is None:
        raise InvalidStateError(
            "Case is awaiting executive approval but carries no executive level",
            current=case.status,
        )
    return int(match.group(1))


def _level_name(level_number: int | None) -> str:
    if level_number is None:
        return "Executive Management"
    level = ExecutiveLevel.query.filter_by(level_number=level_number).first()
    return level.level_name if level else f"Executive Level {level_number}"


# ═════════════════════════════════════════════════════════════════════════════
# Persistence
# ═════════════════════════════════════════════════════════════════════════════


@contextmanager
def _atomic(case_id: int):
    """Commit on success; roll back everything on any failure."""
    try:
        yield
        db.session.commit()
    except StaleDataError as exc:
        db.session.rollback()
        logger.warning("Concurrent update lost on case %s", case_id, extra={"case_id": case_id})
        raise ConflictError("Case", "version_id", str(case_id)) from exc
    except Exception:
        db.session.rollback()
        raise


def _write(
    case: Case,
    actor: User,
    catalog: StageCatalog,
    outcome: _Outcome,
    *,
    action: str,
    comments: str | None,
    comment_type: str | None,
    comment_visible: bool = True,
    comment_level: int | None = None,
) -> None:
    from_status = case.status
    from_stage_id = case.current_workflow_stage_id
    case.current_executive_level = outcome.new_level

    if outcome.target_stage is not None or outcome.resolve:
        stage = sync_case_stage(
            case, outcome.new_status,
            actor=actor, action=action,
            preferred_stage=outcome.target_stage, catalog=catalog,
        )
        if stage is None:
            logger.warning(
                "Catalog gap during %s: no stage for %s", action, outcome.new_status,
                extra={"case_id": case.id, "action": action, "to_status": outcome.new_status},
            )
    else:
        case.status = outcome.new_status

    db.session.add(StatusHistory(
        case_id=case.id,
        from_status=from_status,
        to_status=case.status,
        changed_by=actor.id,
        comments=comments or outcome.message,
    ))
    if comment_type:
        db.session.add(CaseComment(
            case_id=case.id,
            user_id=actor.id,
            comment=comments or outcome.message,
            comment_type=comment_type,
            is_visible_to_assignee=comment_visible,
            executive_level=comment_level,
        ))
    write_audit(
        entity_type="case",
        entity_id=case.id,
        action=f"case.{action}",
        actor_user_id=actor.id,
        diff={
            "status": {"old": from_status, "new": case.status},
            "stage_id": {"old": from_stage_id, "new": case.current_workflow_stage_id},
            "executive_level": case.current_executive_level,
        },
    )


def _run(
    case: Case,
    actor: User,
    catalog: StageCatalog,
    outcome: _Outcome,
    recipients,
    *,
    action: str,
    comments: str | None = None,
    comment_type: str | None = None,
    comment_visible: bool = True,
    comment_level: int | None = None,
) -> TransitionResult:
    """Write the outcome atomically, then notify."""
    from_status = case.status
    with _atomic(case.id):
        _write(
            case, actor, catalog, outcome,
            action=action, comments=comments, comment_type=comment_type,
            comment_visible=comment_visible, comment_level=comment_level,
        )
        pending = [n for n in recipients(case) if n.user_id != actor.id]

    logger.info(
        "Case %s %s: %s → %s", case.case_number, action, from_status, case.status,
        extra={
            "case_id": case.id,
            "action": action,
            "from_status": from_status,
            "to_status": case.status,
            "stage_id": case.current_workflow_stage_id,
            "executive_level": case.current_executive_level,
            "actor_id": actor.id,
        },
    )
    NotificationService.dispatch(pending)
    return TransitionResult(
        new_status=case.status,
        new_stage_id=case.current_workflow_stage_id,
        executive_level=case.current_executive_level,
        message=outcome.message,
    )


# ── Notification recipients ─────────────────────────────────────────────────


def _to_assignee(case: Case, title: str, message: str, severity: str) -> list[PendingNotification]:
    if case.assigned_counselor_id is None:
        return []
    return [PendingNotification(case.assigned_counselor_id, case.id, title, message, severity)]


def _to_users(user_ids, case: Case, title: str, message: str, severity: str) -> list[PendingNotification]:
    return [PendingNotification(uid, case.id, title, message, severity) for uid in sorted(user_ids)]


def _executives_at(level_number: int) -> set[int]:
    """Active executives on *level_number*, whether the role is primary or extra."""
    executives = user_ids_with_roles({current_app.config["EXECUTIVE_ROLE"]})
    if not executives:
        return set()
    rows = (
        db.session.query(User.id)
        .filter(User.id.in_(executives), User.executive_level == level_number)
        .all()
    )
    return {uid for (uid,) in rows}


# ═════════════════════════════════════════════════════════════════════════════
# Generic approve / reject on the current stage
# ═════════════════════════════════════════════════════════════════════════════


def _successor(catalog: StageCatalog, stage: WorkflowStage, case_type_id: int | None) -> WorkflowStage | None:
    return (
        catalog.explicit_successor(stage, case_type_id)
        or catalog.next_after(stage, case_type_id, prefer_specific=True)
    )


def _entry_status(stage: WorkflowStage) -> tuple[str, int | None]:
    """(status, level) for a case entering *stage*; starts the ladder on the executive stage."""
    status = stage.canonical_status or f"submitted_to_{stage.stage_key}"
    if is_executive_stage(stage):
        step = ladder.enter(active_executive_levels())
        if step is not None:
            return step.new_status, step.new_level
    return status, None


def _ladder_outcome(case: Case, catalog: StageCatalog, stage: WorkflowStage) -> tuple[_Outcome, int, ladder.LadderStep]:
    level = _current_level(case)
    step = ladder.advance(level, active_executive_levels())
    from_name = _level_name(level)

    if step.exits:
        finance = catalog.finance_stage()
        if finance is None:
            logger.warning("No finance/disbursement stage configured", extra={"case_id": case.id})
        message = f"Case approved by {from_name} and moved to finance disbursement"
        return _Outcome(step.new_status, step.new_level, finance, False, message), level, step

    message = f"Case approved by {from_name} and forwarded to {_level_name(step.new_level)}"
    return _Outcome(step.new_status, step.new_level, stage, False, message), level, step


def _approve(case: Case, actor: User, catalog: StageCatalog, stage: WorkflowStage, comments: str | None):
    on_ladder = case.current_executive_level is not None or (
        ladder.is_on_ladder(case.status) and _LADDER_LEVEL_RE.search(case.status) is not None
    )
    if is_executive_stage(stage) and on_ladder:
        ladder.check_actor_level(actor.role_names, actor.executive_level, _current_level(case))
        outcome, level, step = _ladder_outcome(case, catalog, stage)

        def recipients(c):
            out = _to_assignee(c, f"Case Approved by {_level_name(level)}",
                               f"Case {c.case_number} has been approved. {outcome.message}", "success")
            if step.exits:
                out += _to_users(user_ids_with_roles(FINANCE_ROLES), c, "Case Ready for Disbursement",
                                 f"Case {c.case_number} has cleared every executive level.", "success")
            else:
                out += _to_users(_executives_at(step.new_level), c,
                                 f"Case Ready for {_level_name(step.new_level)} Review",
                                 f"Case {c.case_number} is ready for your review.", "info")
            return out

        return _run(case, actor, catalog, outcome, recipients,
                    action="executive_approved" if step.exits else "executive_level_approved",
                    comments=comments, comment_type="approval", comment_level=level)

    nxt = _successor(catalog, stage, case.case_type_id)
    if nxt is None:
        logger.warning(
            "No successor stage after %s; recording approval without moving", stage.stage_key,
            extra={"case_id": case.id, "stage_id": stage.id},
        )
        outcome = _Outcome(case.status, case.current_executive_level, None, False,
                           f"Case approved at {stage.stage_name}; no next stage configured")
        new_stage_id = None
    else:
        status, level = _entry_status(nxt)
        outcome = _Outcome(status, level, nxt, False, f"Case approved and forwarded to {nxt.stage_name}")
        new_stage_id = nxt.id

    def recipients(c):
        out = _to_assignee(c, "Case Approved", f"Case {c.case_number} has been approved. {outcome.message}", "success")
        if new_stage_id is not None:
            out += _to_users(user_ids_with_capability(new_stage_id, ("can_view", "can_approve")), c,
                             f"Case Ready for {nxt.stage_name}",
                             f"Case {c.case_number} has been approved and is ready for your review.", "info")
        return out

    return _run(case, actor, catalog, outcome, recipients, action="approved",
                comments=comments, comment_type="approval")


def _reject(case: Case, actor: User, catalog: StageCatalog, stage: WorkflowStage, comments: str | None):
    target = catalog.assignment_stage()
    if target is not None:
        status = target.canonical_status or "assigned"
    else:
        target = catalog.first()
        status = target.canonical_status or "draft"
    outcome = _Outcome(status, None, target, False, f"Case rejected and sent back to {target.stage_name}")

    def recipients(c):
        out = _to_assignee(c, "Case Rejected", f"Case {c.case_number} has been rejected. {outcome.message}", "warning")
        out += _to_users(user_ids_with_capability(target.id, ("can_view", "can_edit")), c,
                         "Case Returned for Rework",
                         f"Case {c.case_number} was rejected at {stage.stage_name} and needs attention.", "warning")
        return out

    return _run(case, actor, catalog, outcome, recipients, action="rejected",
                comments=comments, comment_type="rejection")


def apply_transition(case_id: int, action: str, actor_id: int, comments: str | None = None) -> TransitionResult:
    """Run *action* for *actor_id* against the case's current stage.

    ``approve`` / ``reject`` act generically on whatever stage the case is
    on. Any other action name must be one of ``SPECIALISED_TRANSITIONS``.
    """
    if action in SPECIALISED_TRANSITIONS:
        return SPECIALISED_TRANSITIONS[action](case_id, actor_id, comments)
    if action not in ("approve", "reject"):
        raise ValidationError(
            f"Unknown action '{action}'",
            details={"action": sorted(("approve", "reject", *SPECIALISED_TRANSITIONS))},
        )

    case = _load_case(case_id)
    actor = _load_actor(actor_id)
    catalog = StageCatalog.load()
    stage = _require_current_stage(case, catalog)

    authorize(actor, stage, action)
    try:
        if action == "reject":
            if stage.requires_comments_on_reject is not False:
                comments = _require_comment(comments, "rejecting a case")
            return _reject(case, actor, catalog, stage, comments)
        return _approve(case, actor, catalog, stage, comments)
    except Exception:
        # guards above may have touched the identity map before raising
        db.session.rollback()
        raise


# ═════════════════════════════════════════════════════════════════════════════
# Specialised transitions (fixed source / target statuses)
# ═════════════════════════════════════════════════════════════════════════════


def welfare_approve(case_id: int, actor_id: int, comments: str | None = None) -> TransitionResult:
    """submitted_to_welfare → submitted_to_zi, gated on a complete checklist."""
    actor = _load_actor(actor_id)
    _require_roles(actor, WELFARE_ROLES, "welfare_approve", "welfare reviewers")
    case = _load_case(case_id)
    _require_status(case, "submitted_to_welfare", "welfare_approve")
    _require_complete_checklist(case.id)

    catalog = StageCatalog.load()
    zonal = catalog.zonal_stage()
    outcome = _Outcome("submitted_to_zi", None, zonal, zonal is None, "Case approved by welfare and forwarded to ZI")

    def recipients(c):
        return (
            _to_assignee(c, "Case Approved by Welfare",
                         f"Case {c.case_number} has been approved by the welfare department.", "success")
            + _to_users(user_ids_with_roles(ZI_ROLES), c, "Case Ready for ZI Review",
                        f"Case {c.case_number} has been approved by welfare and is ready for ZI review.", "info")
        )

    return _run(case, actor, catalog, outcome, recipients, action="welfare_approved",
                comments=comments, comment_type="approval")


def welfare_reject(case_id: int, actor_id: int, comments: str | None = None) -> TransitionResult:
    """submitted_to_welfare → welfare_rejected (back to counseling)."""
    actor = _load_actor(actor_id)
    _require_roles(actor, WELFARE_ROLES, "welfare_reject", "welfare reviewers")
    comments = _require_comment(comments, "rejecting a case")
    case = _load_case(case_id)
    _require_status(case, "submitted_to_welfare", "welfare_reject")

    catalog = StageCatalog.load()
    outcome = _Outcome("welfare_rejected", None, None, True, "Case rejected by welfare")

    def recipients(c):
        return _to_assignee(c, "Case Rejected by Welfare",
                            f"Case {c.case_number} has been rejected by welfare: {comments}", "error")

    return _run(case, actor, catalog, outcome, recipients, action="welfare_rejected",
                comments=comments, comment_type="rejection")


def zi_approve(case_id: int, actor_id: int, comments: str | None = None) -> TransitionResult:
    """submitted_to_zi → the ZI stage's successor (entering the ladder if executive)."""
    actor = _load_actor(actor_id)
    _require_roles(actor, ZI_ROLES, "zi_approve", "ZI users")
    case = _load_case(case_id)
    _require_status(case, "submitted_to_zi", "zi_approve")

    catalog = StageCatalog.load()
    current = catalog.get(case.current_workflow_stage_id) or catalog.zonal_stage()
    nxt = _successor(catalog, current, case.case_type_id) if current is not None else None
    if nxt is None:
        logger.warning("No stage after ZI review; recording approval without moving", extra={"case_id": case.id})
        outcome = _Outcome(case.status, None, None, False, "Case approved by ZI; no next stage configured")
    else:
        status, level = _entry_status(nxt)
        outcome = _Outcome(status, level, nxt, False, f"Case approved by ZI and forwarded to {nxt.stage_name}")

    def recipients(c):
        out = _to_assignee(c, "Case Approved by ZI", f"Case {c.case_number} has been approved by ZI.", "success")
        if nxt is not None:
            if c.current_executive_level is not None:
                out += _to_users(_executives_at(c.current_executive_level), c,
                                 f"Case Ready for {_level_name(c.current_executive_level)} Review",
                                 f"Case {c.case_number} is ready for your review.", "info")
            else:
                out += _to_users(user_ids_with_capability(nxt.id, ("can_view", "can_approve")), c,
                                 f"Case Ready for {nxt.stage_name}",
                                 f"Case {c.case_number} has been approved by ZI.", "info")
        return out

    return _run(case, actor, catalog, outcome, recipients, action="zi_approved",
                comments=comments, comment_type="approval")


def zi_reject(case_id: int, actor_id: int, comments: str | None = None) -> TransitionResult:
    """submitted_to_zi → submitted_to_welfare."""
    actor = _load_actor(actor_id)
    _require_roles(actor, ZI_ROLES, "zi_reject", "ZI users")
    comments = _require_comment(comments, "rejecting a case")
    case = _load_case(case_id)
    _require_status(case, "submitted_to_zi", "zi_reject")

    catalog = StageCatalog.load()
    outcome = _Outcome("submitted_to_welfare", None, None, True, "Case rejected by ZI and returned to welfare")

    def recipients(c):
        return _to_users(user_ids_with_roles(WELFARE_ROLES), c, "Case Rejected by ZI",
                         f"Case {c.case_number} was rejected by ZI: {comments}", "warning")

    return _run(case, actor, catalog, outcome, recipients, action="zi_rejected",
                comments=comments, comment_type="rejection")


def executive_approve(case_id: int, actor_id: int, comments: str | None = None) -> TransitionResult:
    """Climb one rung; the last rung exits to finance disbursement."""
    actor = _load_actor(actor_id)
    _require_roles(actor, frozenset({current_app.config["EXECUTIVE_ROLE"]}), "executive_approve",
                   "executive management")
    case = _load_case(case_id)
    ladder.require_on_ladder(case.status)
    ladder.check_actor_level(actor.role_names, actor.executive_level, _current_level(case))

    catalog = StageCatalog.load()
    stage = catalog.get(case.current_workflow_stage_id) or catalog.executive_stage()
    outcome, level, step = _ladder_outcome(case, catalog, stage)

    def recipients(c):
        out = _to_assignee(c, f"Case Approved by {_level_name(level)}",
                           f"Case {c.case_number} has been approved by {_level_name(level)}.", "success")
        if step.exits:
            out += _to_users(user_ids_with_roles(FINANCE_ROLES), c, "Case Ready for Disbursement",
                             f"Case {c.case_number} has been approved by all executive levels.", "success")
        else:
            out += _to_users(_executives_at(step.new_level), c,
                             f"Case Ready for {_level_name(step.new_level)} Review",
                             f"Case {c.case_number} has been approved by {_level_name(level)}.", "info")
        return out

    return _run(case, actor, catalog, outcome, recipients,
                action="executive_approved" if step.exits else "executive_level_approved",
                comments=comments, comment_type="approval", comment_level=level)


def executive_rework(case_id: int, actor_id: int, comments: str | None = None) -> TransitionResult:
    """Ladder → welfare stage with ``welfare_processing_rework``.

    The requesting level stays on the case until welfare forwards the rework;
    the comment is internal (hidden from the assignee).
    """
    actor = _load_actor(actor_id)
    _require_roles(actor, frozenset({current_app.config["EXECUTIVE_ROLE"]}), "executive_rework",
                   "executive management")
    comments = _require_comment(comments, "sending a case for rework")
    case = _load_case(case_id)
    ladder.require_on_ladder(case.status)
    level = _current_level(case)
    ladder.check_actor_level(actor.role_names, actor.executive_level, level)

    catalog = StageCatalog.load()
    step = ladder.rework(level)
    level_name = _level_name(level)
    outcome = _Outcome(step.new_status, step.new_level, None, True, f"Case sent for rework by {level_name}")

    def recipients(c):
        return _to_users(user_ids_with_roles(WELFARE_ROLES), c, f"Case Requires Rework - {level_name}",
                         f"Case {c.case_number} has been sent for rework by {level_name}. "
                         f"Please review and forward to the assignee.", "warning")

    return _run(case, actor, catalog, outcome, recipients, action="executive_rework",
                comments=f"Case sent for rework by {level_name}: {comments}",
                comment_type="rework", comment_visible=False, comment_level=level)


def welfare_forward_rework(case_id: int, actor_id: int, comments: str | None = None) -> TransitionResult:
    """welfare_processing_rework → welfare_rejected; leaves the ladder for good."""
    actor = _load_actor(actor_id)
    _require_roles(actor, WELFARE_ROLES, "welfare_forward_rework", "welfare reviewers")
    comments = _require_comment(comments, "forwarding rework")
    case = _load_case(case_id)
    _require_status(case, ladder.REWORK_STATUS, "welfare_forward_rework")

    catalog = StageCatalog.load()
    case.last_welfare_comment = comments
    outcome = _Outcome("welfare_rejected", None, None, True, "Rework forwarded to the assignee by welfare")

    def recipients(c):
        return _to_assignee(c, "Case Requires Rework",
                            f"Case {c.case_number} requires rework: {comments}", "warning")

    return _run(case, actor, catalog, outcome, recipients, action="welfare_forward_rework",
                comments=comments, comment_type="rework")


def resubmit_to_welfare(case_id: int, actor_id: int, comments: str | None = None) -> TransitionResult:
    """welfare_rejected → submitted_to_welfare, by the assignee (or an admin)."""
    actor = _load_actor(actor_id)
    _require_roles(actor, RESUBMIT_ROLES, "resubmit_welfare", "the case manager")
    case = _load_case(case_id)
    if not _is_privileged(actor) and case.assigned_counselor_id != actor.id:
        raise ForbiddenError("resubmit_welfare", "You can only resubmit cases assigned to you")
    _require_status(case, "welfare_rejected", "resubmit_welfare")

    catalog = StageCatalog.load()
    outcome = _Outcome("submitted_to_welfare", None, None, True, "Case resubmitted to welfare")

    def recipients(c):
        return _to_users(user_ids_with_roles(WELFARE_ROLES), c, "Case Resubmitted",
                         f"Case {c.case_number} has been resubmitted for welfare review.", "info")

    return _run(case, actor, catalog, outcome, recipients, action="resubmitted_to_welfare",
                comments=comments, comment_type="note" if comments else None)


SPECIALISED_TRANSITIONS = {
    "welfare_approve": welfare_approve,
    "welfare_reject": welfare_reject,
    "zi_approve": zi_approve,
    "zi_reject": zi_reject,
    "executive_approve": executive_approve,
    "executive_rework": executive_rework,
    "welfare_forward_rework": welfare_forward_rework,
    "resubmit_welfare": resubmit_to_welfare,
}


# ═════════════════════════════════════════════════════════════════════════════
# Read models
# ═════════════════════════════════════════════════════════════════════════════


def available_actions(case_id: int, actor_id: int) -> dict:
    """The actor's effective permission set on the case's current stage.

    ``needs_reconcile`` reports a drifted status that this read has just healed.
    """
    case = _load_case(case_id, heal=False)
    before = case.status
    case = reconcile_case(case_id)
    actor = _load_actor(actor_id)
    stage = case.current_stage
    perms = effective_permissions(actor, stage)

    level_ok = True
    if is_executive_stage(stage) and case.current_executive_level is not None:
        try:
            ladder.check_actor_level(actor.role_names, actor.executive_level, case.current_executive_level)
        except ForbiddenError:
            level_ok = False
            perms["can_approve"] = False

    return {
        "case_id": case.id,
        "status": case.status,
        "stage": stage.to_dict() if stage else None,
        "executive_level": case.current_executive_level,
        "executive_level_match": level_ok,
        "needs_reconcile": case.status != before,
        "permissions": perms,
        "can_create_case": can_create_case_in_stage(actor, stage),
        "can_fill_case": can_fill_case_in_stage(actor, stage),
    }


def list_status_history(case_id: int) -> list[StatusHistory]:
    case = _load_case(case_id, heal=False)
    return case.status_history.all()


def list_comments(case_id: int, actor_id: int) -> list[CaseComment]:
    """Comments visible to the actor; internal rework notes are hidden from the assignee."""
    case = _load_case(case_id)
    actor = _load_actor(actor_id)
    comments = case.comments.all()
    if case.assigned_counselor_id == actor.id and not _is_privileged(actor):
        comments = [c for c in comments if c.is_visible_to_assignee]
    return comments

"""
StatusStageSynchronizer — keep ``Case.status`` inside its stage's status set.

Rule: whenever ``current_workflow_stage_id`` is set, ``status`` is one
of that stage's ``associated_statuses``. Stage status sets are edited at
runtime, so the rule is enforced on every read and write path rather
than assumed:

    reconcile(case)          read path: detect drift and self-heal (flush only)
    reconcile_case(case_id)  same, committed; used by the HTTP read surface
    sync_case_stage(...)     write path: move the stage pointer and align the
                             status in one step, appending workflow history

Guards on self-heal:
    - ``finance_disbursement`` is terminal; it is never downgraded.
    - A heal to "assigned" on an unassigned case picks "draft" (or the first
      non-"assigned" status) instead, so a heal never implies an assignment
      that did not happen.
"""

from __future__ import annotations

import logging
from datetime import datetime, timezone

from welfare_workflow.core.exceptions import NotFoundError
from welfare_workflow.models import db
from welfare_workflow.models.audit import write_audit
from welfare_workflow.models.auth import User
from welfare_workflow.models.case import Case
from welfare_workflow.models.workflow import WorkflowStage
from welfare_workflow.services.stage_catalog import StageCatalog, effective_statuses
from welfare_workflow.services.stage_resolver import resolve_stage_for_status

logger = logging.getLogger(__name__)

TERMINAL_STATUS = "finance_disbursement"


# ── Pure decisions ───────────────────────────────────────────────────────────

def heal_status(statuses: list[str], status: str | None, has_assignee: bool) -> str | None:
    """Return the corrected status, or ``None`` when no correction applies."""
    if not statuses or not status:
        return None
    if status == TERMINAL_STATUS or status in statuses:
        return None

    corrected = statuses[0]
    if corrected == "assigned" and not has_assignee:
        if "draft" in statuses:
            corrected = "draft"
        else:
            corrected = next((s for s in statuses if s != "assigned"), "draft")
    return corrected if corrected != status else None


def align_status(statuses: list[str], requested: str | None, current: str | None) -> str | None:
    """Pick the status a case should carry on entering a stage.

    The requested status wins when the stage accepts it; otherwise the current
    status is kept if the stage accepts it; otherwise the canonical status.
    A stage with no configured statuses accepts the requested status as-is.
    """
    if not statuses:
        return requested or current
    if requested and requested in statuses:
        return requested
    if current in statuses:
        return current
    return statuses[0]


# ── Read path ────────────────────────────────────────────────────────────────

def reconcile(case: Case) -> Case:
    """Self-heal a drifted status. Flushes but does not commit.

    Idempotent: a consistent case issues no write.
    """
    if case.current_workflow_stage_id is None:
        return case
    stage = db.session.get(WorkflowStage, case.current_workflow_stage_id)
    if stage is None or not stage.is_active:
        return case

    corrected = heal_status(effective_statuses(stage), case.status, case.assigned_counselor_id is not None)
    if corrected is None:
        return case

    previous = case.status
    case.status = corrected
    write_audit(
        entity_type="case",
        entity_id=case.id,
        action="case.reconcile",
        diff={"status": {"old": previous, "new": corrected}, "stage_id": stage.id},
    )
    logger.info(
        "Reconciled case status %s → %s for stage %s",
        previous, corrected, stage.stage_key,
        extra={"case_id": case.id, "from_status": previous, "to_status": corrected, "stage_id": stage.id},
    )
    return case


def reconcile_case(case_id: int) -> Case:
    """Load, reconcile and commit (only when something changed)."""
    case = db.session.get(Case, case_id)
    if case is None:
        raise NotFoundError("Case", case_id)
    before = case.status
    reconcile(case)
    if case.status != before:
        db.session.commit()
    return case


# ── Write path ───────────────────────────────────────────────────────────────

def _history_entry(stage: WorkflowStage, actor: User | None, action: str) -> dict:
    return {
        "stage_id": stage.id,
        "stage_name": stage.stage_name,
        "entered_at": datetime.now(timezone.utc).isoformat(),
        "entered_by": actor.id if actor else None,
        "entered_by_name": actor.full_name if actor else None,
        "action": action,
    }


def sync_case_stage(
    case: Case,
    new_status: str,
    *,
    actor: User | None = None,
    action: str = "status_changed",
    preferred_stage: WorkflowStage | None = None,
    catalog: StageCatalog | None = None,
) -> WorkflowStage | None:
    """Move *case* to the stage for *new_status* and align its status.

    ``preferred_stage`` skips resolution. When no stage is resolvable the
    status is still written and the stage pointer is left untouched.

    Returns the stage the case now sits on (``None`` if unresolved).
    """
    catalog = catalog if catalog is not None else StageCatalog.load()
    stage = preferred_stage or resolve_stage_for_status(
        new_status, case.case_type_id, case.current_workflow_stage_id, catalog=catalog,
    )
    if stage is None:
        logger.warning(
            "No workflow stage for status=%s; keeping stage pointer", new_status,
            extra={"case_id": case.id, "to_status": new_status},
        )
        case.status = new_status
        return None

    if new_status == TERMINAL_STATUS:
        final_status = TERMINAL_STATUS
    else:
        final_status = align_status(effective_statuses(stage), new_status, case.status)
    if case.current_workflow_stage_id == stage.id and case.status == final_status:
        return stage

    case.status = final_status
    if case.current_workflow_stage_id != stage.id:
        case.current_workflow_stage_id = stage.id
        case.current_stage_entered_at = datetime.now(timezone.utc)
        case.sla_status = "on_time"
    # Reassign (never mutate in place) so the JSON column is marked dirty
    case.workflow_history = list(case.workflow_history or []) + [_history_entry(stage, actor, action)]
    return stage

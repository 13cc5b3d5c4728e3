"""
Status diagnostics — operational read model over case / stage consistency.

Lists every status currently stored on cases and flags cases whose status
is not a member of their stage's configured status set. Used to audit the
self-healing path; nothing here writes.
"""

from __future__ import annotations

from flask import current_app
from sqlalchemy import func

from welfare_workflow.models import db
from welfare_workflow.models.case import Case
from welfare_workflow.models.workflow import WorkflowStage
from welfare_workflow.services.stage_catalog import active_executive_levels, effective_statuses


def statuses_in_use() -> list[str]:
    """Distinct case statuses; NULL and empty strings are reported as ``"NULL"``."""
    label = func.coalesce(func.nullif(Case.status, ""), "NULL")
    rows = db.session.query(label).distinct().order_by(label).all()
    return [status for (status,) in rows]


def inconsistent_cases() -> list[dict]:
    """Cases on an active stage with a configured status set they are not in.

    A case with no status counts as ``draft``. Stages with an empty status
    set accept anything and never flag.
    """
    stages = (
        WorkflowStage.query
        .filter_by(is_active=True)
        .order_by(WorkflowStage.sort_order, WorkflowStage.id)
        .all()
    )
    levels = active_executive_levels()
    allowed = {s.id: (s, effective_statuses(s, levels)) for s in stages}

    flagged = []
    cases = (
        Case.query
        .filter(Case.current_workflow_stage_id.isnot(None))
        .order_by(Case.id)
        .all()
    )
    for case in cases:
        entry = allowed.get(case.current_workflow_stage_id)
        if entry is None:
            continue
        stage, statuses = entry
        status = case.status or "draft"
        if statuses and status not in statuses:
            flagged.append({
                "id": case.id,
                "case_number": case.case_number,
                "status": status,
                "stage_id": stage.id,
                "stage_name": stage.stage_name,
                "stage_key": stage.stage_key,
                "stage_associated_statuses": statuses,
            })
    return flagged


def status_diagnostics() -> dict:
    stages = (
        WorkflowStage.query
        .filter_by(is_active=True)
        .order_by(WorkflowStage.sort_order, WorkflowStage.id)
        .all()
    )
    flagged = inconsistent_cases()
    limit = current_app.config["DIAGNOSTICS_PREVIEW_LIMIT"]
    return {
        "statuses_in_cases": statuses_in_use(),
        "workflow_stages": [
            {
                "id": s.id,
                "stage_name": s.stage_name,
                "stage_key": s.stage_key,
                "sort_order": s.sort_order,
                "associated_statuses": s.statuses,
            }
            for s in stages
        ],
        "inconsistent_cases_preview": flagged[:limit],
        "inconsistent_count": len(flagged),
    }

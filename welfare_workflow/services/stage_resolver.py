"""
StageResolver — map a target status to a concrete workflow stage.

Resolution is a prioritised rule list: each strategy is a pure function
``(catalog, query) -> WorkflowStage | None`` and the first non-None answer
wins.

    1. membership   — a stage whose associated_statuses contains the status
    2. pattern      — legacy status-name regex → stage-key substring table
    3. sequence     — next stage by sort_order after the current stage
    4. first stage  — overall first active stage (initial / unset state)

``None`` comes back only when the catalog has no applicable active stage.
Callers treat that as "keep the prior stage pointer", never as a failure.
"""

from __future__ import annotations

import logging
import re
from typing import Callable, NamedTuple

from welfare_workflow.models.workflow import WorkflowStage
from welfare_workflow.services.stage_catalog import StageCatalog

logger = logging.getLogger(__name__)


class StageQuery(NamedTuple):
    status: str
    case_type_id: int | None = None
    current_stage_id: int | None = None


# Catalogs migrated from the fixed-status era have empty associated_statuses;
# these rows keep them routable.
STATUS_STAGE_PATTERNS: tuple[tuple[re.Pattern, tuple[str, ...]], ...] = (
    (re.compile(r"^draft$"), ("draft", "draft_stage")),
    (re.compile(r"^assigned$"), ("assigned", "case_assignment", "assignment")),
    (re.compile(r"^(in_counseling|cover_letter_generated|welfare_rejected)$"), ("counselor", "counseling")),
    (re.compile(r"^(submitted_to_welfare|welfare_processing_rework)$"), ("welfare", "welfare_review", "review")),
    (re.compile(r"^(submitted_to_zi|submitted_to_zi_review|zi_approved|zi_rejected)$"),
     ("zi", "zonal", "zi_stage", "zi_review")),
    (re.compile(r"^submitted_to_kg_review$"), ("kg", "kg_review", "kg_stage")),
    (re.compile(r"^submitted_to_operations_lead$"), ("operations_lead", "ops_lead", "operations")),
    (re.compile(r"^submitted_to_executive(_\d+)?$"), ("executive", "executive_approval", "approval")),
    (re.compile(r"^welfare_approved$"), ("welfare", "welfare_review", "review")),
    # stays on the executive stage while the ladder is still climbing
    (re.compile(r"^executive_approved$"), ("executive", "executive_approval", "approval")),
    (re.compile(r"^finance_disbursement$"), ("finance", "finance_disbursement", "disbursement")),
)


def by_membership(catalog: StageCatalog, query: StageQuery) -> WorkflowStage | None:
    return catalog.find_by_status(query.status, query.case_type_id)


def by_pattern(catalog: StageCatalog, query: StageQuery) -> WorkflowStage | None:
    for pattern, keys in STATUS_STAGE_PATTERNS:
        if not pattern.match(query.status or ""):
            continue
        for key in keys:
            stage = catalog.find_by_key(key, query.case_type_id)
            if stage is not None:
                return stage
    return None


def by_sequence(catalog: StageCatalog, query: StageQuery) -> WorkflowStage | None:
    current = catalog.get(query.current_stage_id, include_inactive=True)
    if current is None:
        return None
    return catalog.next_after(current, query.case_type_id)


def by_first_stage(catalog: StageCatalog, query: StageQuery) -> WorkflowStage | None:
    return catalog.first(query.case_type_id, any_type=False)


Strategy = Callable[[StageCatalog, StageQuery], "WorkflowStage | None"]

STRATEGIES: tuple[tuple[str, Strategy], ...] = (
    ("membership", by_membership),
    ("pattern", by_pattern),
    ("sequence", by_sequence),
    ("first_stage", by_first_stage),
)


def resolve_stage_for_status(
    status: str,
    case_type_id: int | None = None,
    current_stage_id: int | None = None,
    catalog: StageCatalog | None = None,
) -> WorkflowStage | None:
    """Resolve *status* to a stage, or ``None`` for an empty catalog."""
    catalog = catalog if catalog is not None else StageCatalog.load()
    query = StageQuery(status, case_type_id, current_stage_id)
    for name, strategy in STRATEGIES:
        stage = strategy(catalog, query)
        if stage is not None:
            logger.debug("Resolved status=%s to stage=%s via %s", status, stage.stage_key, name)
            return stage
    logger.warning("No workflow stage resolvable for status=%s (case_type=%s)", status, case_type_id)
    return None

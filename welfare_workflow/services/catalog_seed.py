"""
Default workflow catalog: the seven-stage welfare pipeline plus four
executive levels.

Safe to run multiple times: existing stage keys and level numbers are
skipped, never overwritten. Flushes only; the caller commits.
"""

import logging

from welfare_workflow.models import db
from welfare_workflow.models.workflow import ExecutiveLevel, WorkflowStage

logger = logging.getLogger(__name__)

DEFAULT_STAGES = (
    {
        "stage_key": "draft",
        "stage_name": "Draft",
        "description": "Case intake before assignment",
        "associated_statuses": ["draft"],
        "can_create_case": True,
    },
    {
        "stage_key": "case_assignment",
        "stage_name": "Case Assignment",
        "description": "Case assigned to a counselor",
        "associated_statuses": ["assigned"],
    },
    {
        "stage_key": "counseling",
        "stage_name": "Counseling",
        "description": "Counseling form and cover letter",
        "associated_statuses": ["in_counseling", "cover_letter_generated", "welfare_rejected"],
        "can_fill_case": True,
    },
    {
        "stage_key": "welfare_review",
        "stage_name": "Welfare Review",
        "description": "Welfare department review and checklist",
        "associated_statuses": ["submitted_to_welfare", "welfare_processing_rework", "welfare_approved"],
    },
    {
        "stage_key": "zi_review",
        "stage_name": "ZI Review",
        "description": "Zonal in-charge review",
        "associated_statuses": ["submitted_to_zi", "submitted_to_zi_review"],
    },
    {
        "stage_key": "executive_approval",
        "stage_name": "Executive Approval",
        "description": "Sequential sign-off by the executive levels",
        "associated_statuses": ["submitted_to_executive", "executive_approved"],
    },
    {
        "stage_key": "finance_disbursement",
        "stage_name": "Finance Disbursement",
        "description": "Approved cases awaiting disbursement",
        "associated_statuses": ["finance_disbursement"],
    },
)

DEFAULT_LEVEL_COUNT = 4
_ORDINALS = ("First", "Second", "Third", "Fourth")


def seed_default_catalog() -> tuple[int, int]:
    """Insert missing default stages and executive levels.

    Returns:
        (stages_created, levels_created)
    """
    stages_created = 0
    for order, spec in enumerate(DEFAULT_STAGES, start=1):
        if WorkflowStage.query.filter_by(stage_key=spec["stage_key"]).first() is None:
            db.session.add(WorkflowStage(sort_order=order, is_active=True, **spec))
            stages_created += 1

    levels_created = 0
    for number in range(1, DEFAULT_LEVEL_COUNT + 1):
        if ExecutiveLevel.query.filter_by(level_number=number).first() is None:
            db.session.add(ExecutiveLevel(
                level_number=number,
                level_name=f"Executive Level {number}",
                description=f"{_ORDINALS[number - 1]} level executive approval",
                sort_order=number,
                is_active=True,
            ))
            levels_created += 1

    if stages_created or levels_created:
        db.session.flush()
        logger.info("Seeded %d workflow stages and %d executive levels", stages_created, levels_created)
    return stages_created, levels_created

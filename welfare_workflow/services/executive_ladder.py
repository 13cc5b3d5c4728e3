"""
ExecutiveLadder — sequential multi-level sign-off inside the executive stage.

The ladder is a second, finer-grained sequence the case climbs without
moving its stage pointer. Active ``ExecutiveLevel`` rows, ordered by
``sort_order``, are the rungs.

    enter     → first rung, status ``submitted_to_executive_<n>``
    advance   → next rung (stage unchanged), or exit on the last rung:
                level cleared, status ``finance_disbursement``, stage moves
                to the finance/disbursement stage
    rework    → leave the ladder for the welfare stage with status
                ``welfare_processing_rework``; the requesting level is kept
                until welfare forwards the rework to the assignee

An actor holding the executive role may only act on a case sitting on their
own rung; privileged roles bypass the check.
"""

from __future__ import annotations

from typing import NamedTuple

from flask import current_app

from welfare_workflow.core.exceptions import ForbiddenError, InvalidStateError
from welfare_workflow.models.workflow import ExecutiveLevel
from welfare_workflow.services.stage_catalog import LADDER_STATUS_PREFIX, ladder_status

EXIT_STATUS = "finance_disbursement"
REWORK_STATUS = "welfare_processing_rework"


class LadderStep(NamedTuple):
    new_status: str
    new_level: int | None
    exits: bool = False


def enter(levels: list[ExecutiveLevel]) -> LadderStep | None:
    """Step onto the first active rung; ``None`` when the ladder is empty."""
    if not levels:
        return None
    first = levels[0]
    return LadderStep(ladder_status(first.level_number), first.level_number)


def advance(current_level: int, levels: list[ExecutiveLevel]) -> LadderStep:
    """Approve at *current_level*.

    A rung deactivated while a case sat on it is no longer in *levels*; the
    case then continues at the first active rung numbered above it.
    """
    numbers = [level.level_number for level in levels]
    if current_level in numbers:
        idx = numbers.index(current_level)
        upcoming = levels[idx + 1:]
    else:
        upcoming = [level for level in levels if level.level_number > current_level]

    if not upcoming:
        return LadderStep(EXIT_STATUS, None, exits=True)
    nxt = upcoming[0]
    return LadderStep(ladder_status(nxt.level_number), nxt.level_number)


def rework(current_level: int | None) -> LadderStep:
    return LadderStep(REWORK_STATUS, current_level)


def is_on_ladder(status: str | None) -> bool:
    return bool(status) and status.startswith(LADDER_STATUS_PREFIX)


def check_actor_level(role_names: list[str], actor_level: int | None, case_level: int | None) -> None:
    """Enforce that an executive acts only on their own rung."""
    if set(role_names) & current_app.config["PRIVILEGED_ROLES"]:
        return
    if current_app.config["EXECUTIVE_ROLE"] not in role_names:
        return
    if case_level is None or actor_level != case_level:
        raise ForbiddenError(
            "executive_approve",
            f"Case is at executive level {case_level}; you are assigned level {actor_level}",
        )


def require_on_ladder(status: str | None) -> None:
    if not is_on_ladder(status):
        raise InvalidStateError(
            f"Case is not awaiting executive approval (status={status})",
            current=status,
            expected=f"{LADDER_STATUS_PREFIX}_<level>",
        )

"""
StageCatalog — per-transition snapshot of the configured workflow stages.

Stages are edited by administrators while cases are in flight, so nothing
here is cached across calls: every transition calls ``StageCatalog.load()``
and works against that fresh snapshot. The staleness window is one
transition.

Stage-key lookups are case-insensitive substring matches, mirroring how
operators name stages ("welfare_review", "ZI Review", "finance_disbursement").
"""

from __future__ import annotations

from welfare_workflow.models import db
from welfare_workflow.models.auth import Role, User, UserRole
from welfare_workflow.models.workflow import (
    STAGE_PERMISSION_FIELDS,
    ExecutiveLevel,
    WorkflowStage,
    WorkflowStageRole,
    WorkflowStageUser,
)

# ── Stage categories (by stage_key substring) ───────────────────────────────

EXECUTIVE_KEYS = ("executive",)
FINANCE_KEYS = ("finance", "disbursement")
ASSIGNMENT_KEYS = ("assignment", "assign")
ZONAL_KEYS = ("zi", "zonal")
WELFARE_KEYS = ("welfare",)


def key_matches(stage: WorkflowStage, keys, exclude=()) -> bool:
    stage_key = (stage.stage_key or "").lower()
    if any(x in stage_key for x in exclude):
        return False
    return any(k in stage_key for k in keys)


def is_executive_stage(stage: WorkflowStage | None) -> bool:
    return stage is not None and key_matches(stage, EXECUTIVE_KEYS)


def applies_to_case_type(stage: WorkflowStage, case_type_id: int | None) -> bool:
    """A stage applies when it is generic or scoped to the case's type.

    An untyped case sees every stage.
    """
    if case_type_id is None:
        return True
    return stage.case_type_id is None or stage.case_type_id == case_type_id


def _ranking(case_type_id: int | None):
    """Sort key: stages scoped to the case's type first, then sort order.

    An untyped case ranks generic stages first instead.
    """
    if case_type_id is None:
        return lambda s: (s.case_type_id is not None, s.sort_order, s.id)
    return lambda s: (s.case_type_id is None, s.sort_order, s.id)


class StageCatalog:
    """Ordered view of the active stages, loaded once per transition."""

    def __init__(self, stages: list[WorkflowStage]):
        self._stages = sorted(stages, key=lambda s: (s.sort_order, s.id))
        self._by_id = {s.id: s for s in self._stages}

    @classmethod
    def load(cls) -> StageCatalog:
        return cls(WorkflowStage.query.filter_by(is_active=True).all())

    def __len__(self):
        return len(self._stages)

    def __iter__(self):
        return iter(self._stages)

    @property
    def is_empty(self) -> bool:
        return not self._stages

    # ── Lookup ────────────────────────────────────────────────────────────

    def get(self, stage_id: int | None, include_inactive: bool = False) -> WorkflowStage | None:
        if stage_id is None:
            return None
        stage = self._by_id.get(stage_id)
        if stage is None and include_inactive:
            stage = db.session.get(WorkflowStage, stage_id)
        return stage

    def for_case_type(self, case_type_id: int | None) -> list[WorkflowStage]:
        return [s for s in self._stages if applies_to_case_type(s, case_type_id)]

    def first(self, case_type_id: int | None = None, any_type: bool = True) -> WorkflowStage | None:
        """First active stage by sort order (optionally filtered to a case type)."""
        pool = self._stages if any_type else self.for_case_type(case_type_id)
        return pool[0] if pool else None

    def find_by_keys(self, keys, exclude=(), case_type_id: int | None = None,
                     any_type: bool = True) -> WorkflowStage | None:
        pool = self._stages if any_type else self.for_case_type(case_type_id)
        for stage in pool:
            if key_matches(stage, keys, exclude):
                return stage
        return None

    def find_by_key(self, key: str, case_type_id: int | None) -> WorkflowStage | None:
        """Applicable stage whose key contains *key*; generic stages rank last."""
        matches = [s for s in self.for_case_type(case_type_id) if key_matches(s, (key,))]
        if not matches:
            return None
        matches.sort(key=_ranking(case_type_id))
        return matches[0]

    def find_by_status(self, status: str, case_type_id: int | None) -> WorkflowStage | None:
        """Active stage whose status set contains *status*.

        Case-type-specific matches win over generic ones; ties break on
        ascending sort order.
        """
        matches = [
            s for s in self.for_case_type(case_type_id)
            if status in s.statuses
        ]
        if not matches:
            return None
        matches.sort(key=_ranking(case_type_id))
        return matches[0]

    def next_after(self, stage: WorkflowStage, case_type_id: int | None,
                   prefer_specific: bool = False) -> WorkflowStage | None:
        """Next applicable stage with a higher sort order than *stage*."""
        later = [
            s for s in self.for_case_type(case_type_id)
            if s.sort_order > stage.sort_order
        ]
        if not later:
            return None
        if prefer_specific:
            later.sort(key=_ranking(case_type_id))
        return later[0]

    def explicit_successor(self, stage: WorkflowStage, case_type_id: int | None) -> WorkflowStage | None:
        """The stage's ``next_stage_id`` target, if still active and applicable."""
        target = self.get(stage.next_stage_id)
        if target is None or not applies_to_case_type(target, case_type_id):
            return None
        return target

    # ── Named stages ──────────────────────────────────────────────────────

    def executive_stage(self) -> WorkflowStage | None:
        return self.find_by_keys(EXECUTIVE_KEYS)

    def finance_stage(self) -> WorkflowStage | None:
        return self.find_by_keys(FINANCE_KEYS)

    def assignment_stage(self) -> WorkflowStage | None:
        return self.find_by_keys(ASSIGNMENT_KEYS, exclude=("draft",))

    def zonal_stage(self) -> WorkflowStage | None:
        return self.find_by_keys(ZONAL_KEYS)

    def welfare_stage(self) -> WorkflowStage | None:
        return self.find_by_keys(WELFARE_KEYS)


# ── Executive levels ─────────────────────────────────────────────────────────

def active_executive_levels() -> list[ExecutiveLevel]:
    """Active ladder rungs in traversal order."""
    return (
        ExecutiveLevel.query
        .filter_by(is_active=True)
        .order_by(ExecutiveLevel.sort_order, ExecutiveLevel.level_number)
        .all()
    )


# ── Permission grants ────────────────────────────────────────────────────────

def role_grants(stage_id: int, role_names: list[str]) -> list[WorkflowStageRole]:
    """Grants on *stage_id* held by any of the (active) named roles."""
    if not role_names:
        return []
    return (
        WorkflowStageRole.query
        .join(Role, WorkflowStageRole.role_id == Role.id)
        .filter(
            WorkflowStageRole.workflow_stage_id == stage_id,
            Role.name.in_(role_names),
            Role.is_active.is_(True),
        )
        .all()
    )


def user_grant(stage_id: int, user_id: int) -> WorkflowStageUser | None:
    return WorkflowStageUser.query.filter_by(workflow_stage_id=stage_id, user_id=user_id).first()


def stage_grant_union(stage_id: int) -> dict[str, bool]:
    """Each permission field granted to anyone on the stage (active roles or users)."""
    grants = (
        WorkflowStageRole.query
        .join(Role, WorkflowStageRole.role_id == Role.id)
        .filter(WorkflowStageRole.workflow_stage_id == stage_id, Role.is_active.is_(True))
        .all()
    )
    grants += WorkflowStageUser.query.filter_by(workflow_stage_id=stage_id).all()
    return {
        field: any(getattr(g, field) is True for g in grants)
        for field in STAGE_PERMISSION_FIELDS
    }


def user_ids_with_capability(stage_id: int, fields: tuple[str, ...]) -> set[int]:
    """Active users holding any of *fields* on the stage via role or user grant.

    A user grant with an explicit ``False`` for every requested field removes
    a user that would otherwise qualify through a role grant.
    """
    role_ids = [
        g.role_id for g in WorkflowStageRole.query.filter_by(workflow_stage_id=stage_id).all()
        if any(getattr(g, f) for f in fields)
    ]
    granted: set[int] = set()
    if role_ids:
        role_names = [r.name for r in Role.query.filter(Role.id.in_(role_ids), Role.is_active.is_(True)).all()]
        via_junction = (
            db.session.query(UserRole.user_id)
            .filter(UserRole.role_id.in_(role_ids), UserRole.is_active.is_(True))
            .all()
        )
        granted.update(uid for (uid,) in via_junction)
        if role_names:
            via_column = db.session.query(User.id).filter(User.role.in_(role_names)).all()
            granted.update(uid for (uid,) in via_column)

    for grant in WorkflowStageUser.query.filter_by(workflow_stage_id=stage_id).all():
        values = [getattr(grant, f) for f in fields]
        if any(v is True for v in values):
            granted.add(grant.user_id)
        elif all(v is False for v in values):
            granted.discard(grant.user_id)

    if not granted:
        return set()
    active = db.session.query(User.id).filter(User.id.in_(granted), User.is_active.is_(True)).all()
    return {uid for (uid,) in active}


def user_ids_with_roles(role_names) -> set[int]:
    """Active users holding any of *role_names* (junction table or primary role)."""
    names = list(role_names)
    if not names:
        return set()
    via_column = (
        db.session.query(User.id)
        .filter(User.role.in_(names), User.is_active.is_(True))
        .all()
    )
    via_junction = (
        db.session.query(UserRole.user_id)
        .join(Role, UserRole.role_id == Role.id)
        .join(User, UserRole.user_id == User.id)
        .filter(
            Role.name.in_(names), Role.is_active.is_(True),
            UserRole.is_active.is_(True), User.is_active.is_(True),
        )
        .all()
    )
    return {uid for (uid,) in via_column} | {uid for (uid,) in via_junction}


# ── Ladder statuses ──────────────────────────────────────────────────────────

LADDER_STATUS_PREFIX = "submitted_to_executive"


def ladder_status(level_number: int) -> str:
    return f"{LADDER_STATUS_PREFIX}_{level_number}"


def effective_statuses(stage: WorkflowStage, levels: list[ExecutiveLevel] | None = None) -> list[str]:
    """The stage's status set, widened on the executive stage by one
    ``submitted_to_executive_<n>`` entry per active ladder rung.

    Rungs are added and renumbered at runtime; listing them on the stage
    by hand would let reconciliation pull a mid-ladder case back to rung 1.
    """
    statuses = stage.statuses
    if not is_executive_stage(stage):
        return statuses
    levels = levels if levels is not None else active_executive_levels()
    rungs = [ladder_status(level.level_number) for level in levels]
    return statuses + [s for s in rungs if s not in statuses]

"""
Welfare Case Workflow Engine
Workflow catalog models.

Models:
    - CaseType: classification a stage can be scoped to
    - WorkflowStage: one configurable stage of the case pipeline
    - ExecutiveLevel: one rung of the executive sign-off ladder
    - WorkflowStageRole: per-(stage, role) permission grant
    - WorkflowStageUser: per-(stage, user) override grant

The catalog is edited by administrators while cases are in flight, so the
engine re-reads it on every transition instead of caching it.
"""

from datetime import datetime, timezone

from welfare_workflow.models import db


# ── Constants ────────────────────────────────────────────────────────────────

# Field order matters: it is the order the permission set is serialised in.
STAGE_PERMISSION_FIELDS = (
    "can_view",
    "can_edit",
    "can_delete",
    "can_approve",
    "can_reject",
    "can_review",
    "can_create_case",
    "can_fill_case",
)

SLA_UNITS = {"hours", "days", "business_days", "weeks", "months"}


class CaseType(db.Model):
    __tablename__ = "case_types"

    id = db.Column(db.Integer, primary_key=True)
    name = db.Column(db.String(100), unique=True, nullable=False)
    description = db.Column(db.Text)
    is_active = db.Column(db.Boolean, default=True)

    def to_dict(self):
        return {
            "id": self.id,
            "name": self.name,
            "description": self.description,
            "is_active": self.is_active,
        }

    def __repr__(self):
        return f"<CaseType {self.id}: {self.name}>"


class WorkflowStage(db.Model):
    """
    One stage of the case pipeline.

    ``sort_order`` defines the default linear path; ``next_stage_id`` overrides
    it. ``associated_statuses`` is an ordered list whose first entry is the
    stage's canonical status.
    """

    __tablename__ = "workflow_stages"
    __table_args__ = (
        db.Index("idx_workflow_stages_sort", "sort_order"),
        db.Index("idx_workflow_stages_active", "is_active"),
    )

    id = db.Column(db.Integer, primary_key=True)
    stage_name = db.Column(db.String(100), nullable=False)
    stage_key = db.Column(db.String(50), unique=True, nullable=False)
    description = db.Column(db.Text)
    sort_order = db.Column(db.Integer, nullable=False, default=0)
    is_active = db.Column(db.Boolean, default=True)
    case_type_id = db.Column(
        db.Integer, db.ForeignKey("case_types.id", ondelete="SET NULL"), nullable=True,
        comment="NULL = applies to all case types",
    )
    next_stage_id = db.Column(
        db.Integer, db.ForeignKey("workflow_stages.id", ondelete="SET NULL"), nullable=True,
        comment="Explicit successor; overrides sort_order lookup",
    )
    auto_advance_on_approve = db.Column(db.Boolean, default=True)
    requires_comments_on_reject = db.Column(db.Boolean, default=True)
    # NULL = catalog row predates the capability columns
    can_create_case = db.Column(db.Boolean, nullable=True, default=False)
    can_fill_case = db.Column(db.Boolean, nullable=True, default=False)
    associated_statuses = db.Column(db.JSON, default=list, comment="Ordered; first entry is canonical")
    sla_value = db.Column(db.Numeric(10, 2), nullable=True)
    sla_unit = db.Column(db.String(20), nullable=True)
    created_at = db.Column(db.DateTime(timezone=True), default=lambda: datetime.now(timezone.utc))
    updated_at = db.Column(db.DateTime(timezone=True), default=lambda: datetime.now(timezone.utc),
                           onupdate=lambda: datetime.now(timezone.utc))

    # Relationships
    case_type = db.relationship("CaseType")
    next_stage = db.relationship("WorkflowStage", remote_side=[id])
    role_grants = db.relationship(
        "WorkflowStageRole", back_populates="stage", lazy="dynamic", cascade="all, delete-orphan"
    )
    user_grants = db.relationship(
        "WorkflowStageUser", back_populates="stage", lazy="dynamic", cascade="all, delete-orphan"
    )

    @property
    def statuses(self) -> list[str]:
        return list(self.associated_statuses or [])

    @property
    def canonical_status(self) -> str | None:
        statuses = self.statuses
        return statuses[0] if statuses else None

    def to_dict(self, include_grants=False):
        d = {
            "id": self.id,
            "stage_name": self.stage_name,
            "stage_key": self.stage_key,
            "description": self.description,
            "sort_order": self.sort_order,
            "is_active": self.is_active,
            "case_type_id": self.case_type_id,
            "case_type_name": self.case_type.name if self.case_type else None,
            "next_stage_id": self.next_stage_id,
            "auto_advance_on_approve": self.auto_advance_on_approve,
            "requires_comments_on_reject": self.requires_comments_on_reject,
            "can_create_case": self.can_create_case,
            "can_fill_case": self.can_fill_case,
            "associated_statuses": self.statuses,
            "sla_value": float(self.sla_value) if self.sla_value is not None else None,
            "sla_unit": self.sla_unit,
            "created_at": self.created_at.isoformat() if self.created_at else None,
            "updated_at": self.updated_at.isoformat() if self.updated_at else None,
        }
        if include_grants:
            d["roles"] = [g.to_dict() for g in self.role_grants.all()]
            d["users"] = [g.to_dict() for g in self.user_grants.all()]
        return d

    def __repr__(self):
        return f"<WorkflowStage {self.id}: {self.stage_key} (order={self.sort_order})>"


class ExecutiveLevel(db.Model):
    """One rung of the executive ladder; traversed by ``sort_order``."""

    __tablename__ = "executive_levels"

    id = db.Column(db.Integer, primary_key=True)
    level_number = db.Column(db.Integer, unique=True, nullable=False)
    level_name = db.Column(db.String(100), nullable=False)
    description = db.Column(db.Text)
    sort_order = db.Column(db.Integer, nullable=False, default=0)
    is_active = db.Column(db.Boolean, default=True)
    created_at = db.Column(db.DateTime(timezone=True), default=lambda: datetime.now(timezone.utc))
    updated_at = db.Column(db.DateTime(timezone=True), default=lambda: datetime.now(timezone.utc),
                           onupdate=lambda: datetime.now(timezone.utc))

    def to_dict(self):
        return {
            "id": self.id,
            "level_number": self.level_number,
            "level_name": self.level_name,
            "description": self.description,
            "sort_order": self.sort_order,
            "is_active": self.is_active,
        }

    def __repr__(self):
        return f"<ExecutiveLevel {self.level_number}: {self.level_name}>"


class _StageGrantMixin:
    """Shared capability columns for role and user grants."""

    def grant_dict(self) -> dict:
        return {field: getattr(self, field) for field in STAGE_PERMISSION_FIELDS}


class WorkflowStageRole(_StageGrantMixin, db.Model):
    __tablename__ = "workflow_stage_roles"
    __table_args__ = (
        db.UniqueConstraint("workflow_stage_id", "role_id", name="uq_stage_role"),
    )

    id = db.Column(db.Integer, primary_key=True)
    workflow_stage_id = db.Column(
        db.Integer, db.ForeignKey("workflow_stages.id", ondelete="CASCADE"), nullable=False, index=True,
    )
    role_id = db.Column(
        db.Integer, db.ForeignKey("roles.id", ondelete="CASCADE"), nullable=False, index=True,
    )
    can_view = db.Column(db.Boolean, default=True)
    can_edit = db.Column(db.Boolean, default=False)
    can_delete = db.Column(db.Boolean, default=False)
    can_approve = db.Column(db.Boolean, default=False)
    can_reject = db.Column(db.Boolean, default=False)
    can_review = db.Column(db.Boolean, default=False)
    can_create_case = db.Column(db.Boolean, default=False)
    can_fill_case = db.Column(db.Boolean, default=False)
    created_at = db.Column(db.DateTime(timezone=True), default=lambda: datetime.now(timezone.utc))

    stage = db.relationship("WorkflowStage", back_populates="role_grants")
    role = db.relationship("Role")

    def to_dict(self):
        d = {
            "id": self.id,
            "workflow_stage_id": self.workflow_stage_id,
            "role_id": self.role_id,
            "role_name": self.role.name if self.role else None,
        }
        d.update(self.grant_dict())
        return d


class WorkflowStageUser(_StageGrantMixin, db.Model):
    """User-specific override. A NULL field inherits the role grant."""

    __tablename__ = "workflow_stage_users"
    __table_args__ = (
        db.UniqueConstraint("workflow_stage_id", "user_id", name="uq_stage_user"),
    )

    id = db.Column(db.Integer, primary_key=True)
    workflow_stage_id = db.Column(
        db.Integer, db.ForeignKey("workflow_stages.id", ondelete="CASCADE"), nullable=False, index=True,
    )
    user_id = db.Column(
        db.Integer, db.ForeignKey("users.id", ondelete="CASCADE"), nullable=False, index=True,
    )
    can_view = db.Column(db.Boolean, nullable=True)
    can_edit = db.Column(db.Boolean, nullable=True)
    can_delete = db.Column(db.Boolean, nullable=True)
    can_approve = db.Column(db.Boolean, nullable=True)
    can_reject = db.Column(db.Boolean, nullable=True)
    can_review = db.Column(db.Boolean, nullable=True)
    can_create_case = db.Column(db.Boolean, nullable=True)
    can_fill_case = db.Column(db.Boolean, nullable=True)
    created_at = db.Column(db.DateTime(timezone=True), default=lambda: datetime.now(timezone.utc))

    stage = db.relationship("WorkflowStage", back_populates="user_grants")
    user = db.relationship("User")

    def to_dict(self):
        d = {
            "id": self.id,
            "workflow_stage_id": self.workflow_stage_id,
            "user_id": self.user_id,
            "user_name": self.user.full_name if self.user else None,
        }
        d.update(self.grant_dict())
        return d

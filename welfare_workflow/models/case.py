"""
Welfare Case Workflow Engine
Case domain models.

Models:
    - Case: the welfare case the engine moves through the pipeline
    - StatusHistory: immutable, append-only from→to status log
    - CaseComment: reviewer comments attached to transitions
"""

from datetime import datetime, timezone

from welfare_workflow.models import db


# ── Constants ────────────────────────────────────────────────────────────────

COMMENT_TYPES = {"general", "rejection", "approval", "note", "rework"}
SLA_STATUSES = {"on_time", "warning", "breached"}


class Case(db.Model):
    """
    Welfare case.

    ``status`` is a free-form string validated against the current stage's
    ``associated_statuses`` rather than a closed enum. ``version_id`` is an
    optimistic concurrency token: a write against a stale row raises
    ``StaleDataError`` at flush time.
    """

    __tablename__ = "cases"
    __table_args__ = (
        db.Index("idx_cases_status", "status"),
        db.Index("idx_cases_stage", "current_workflow_stage_id"),
    )

    id = db.Column(db.Integer, primary_key=True)
    case_number = db.Column(db.String(50), unique=True, nullable=False)
    case_type_id = db.Column(db.Integer, db.ForeignKey("case_types.id", ondelete="SET NULL"), nullable=True)
    status = db.Column(db.String(100), default="draft")
    current_workflow_stage_id = db.Column(
        db.Integer, db.ForeignKey("workflow_stages.id", ondelete="SET NULL"), nullable=True,
    )
    current_executive_level = db.Column(
        db.Integer, nullable=True, comment="Ladder rung while inside the executive stage",
    )
    assigned_counselor_id = db.Column(db.Integer, db.ForeignKey("users.id", ondelete="SET NULL"), nullable=True)
    created_by = db.Column(db.Integer, db.ForeignKey("users.id", ondelete="SET NULL"), nullable=True)
    workflow_history = db.Column(db.JSON, default=list, comment="Append-only [{stage_id, action, ...}]")
    current_stage_entered_at = db.Column(db.DateTime(timezone=True), nullable=True)
    sla_status = db.Column(db.String(20), default="on_time")
    last_welfare_comment = db.Column(db.Text, nullable=True)
    version_id = db.Column(db.Integer, nullable=False, default=1)
    created_at = db.Column(db.DateTime(timezone=True), default=lambda: datetime.now(timezone.utc))
    updated_at = db.Column(db.DateTime(timezone=True), default=lambda: datetime.now(timezone.utc),
                           onupdate=lambda: datetime.now(timezone.utc))

    __mapper_args__ = {"version_id_col": version_id}

    # Relationships
    case_type = db.relationship("CaseType")
    current_stage = db.relationship("WorkflowStage", foreign_keys=[current_workflow_stage_id])
    assignee = db.relationship("User", foreign_keys=[assigned_counselor_id])
    status_history = db.relationship(
        "StatusHistory", back_populates="case", lazy="dynamic",
        order_by="StatusHistory.id", cascade="all, delete-orphan",
    )
    comments = db.relationship(
        "CaseComment", back_populates="case", lazy="dynamic",
        order_by="CaseComment.id", cascade="all, delete-orphan",
    )

    def to_dict(self):
        stage = self.current_stage
        return {
            "id": self.id,
            "case_number": self.case_number,
            "case_type_id": self.case_type_id,
            "status": self.status,
            "current_workflow_stage_id": self.current_workflow_stage_id,
            "current_stage_name": stage.stage_name if stage else None,
            "current_executive_level": self.current_executive_level,
            "assigned_counselor_id": self.assigned_counselor_id,
            "workflow_history": list(self.workflow_history or []),
            "current_stage_entered_at": (
                self.current_stage_entered_at.isoformat() if self.current_stage_entered_at else None
            ),
            "sla_status": self.sla_status,
            "last_welfare_comment": self.last_welfare_comment,
            "version_id": self.version_id,
            "created_at": self.created_at.isoformat() if self.created_at else None,
            "updated_at": self.updated_at.isoformat() if self.updated_at else None,
        }

    def __repr__(self):
        return f"<Case {self.case_number}: {self.status}>"


class StatusHistory(db.Model):
    """Immutable audit row; one per transition. Never updated or deleted."""

    __tablename__ = "status_history"

    id = db.Column(db.Integer, primary_key=True)
    case_id = db.Column(db.Integer, db.ForeignKey("cases.id", ondelete="CASCADE"), nullable=False, index=True)
    from_status = db.Column(db.String(100), nullable=True)
    to_status = db.Column(db.String(100), nullable=False)
    changed_by = db.Column(db.Integer, db.ForeignKey("users.id", ondelete="SET NULL"), nullable=True)
    comments = db.Column(db.Text, nullable=True)
    created_at = db.Column(
        db.DateTime(timezone=True), nullable=False, default=lambda: datetime.now(timezone.utc),
    )

    case = db.relationship("Case", back_populates="status_history")
    actor = db.relationship("User")

    def to_dict(self):
        return {
            "id": self.id,
            "case_id": self.case_id,
            "from_status": self.from_status,
            "to_status": self.to_status,
            "changed_by": self.changed_by,
            "changed_by_name": self.actor.full_name if self.actor else None,
            "comments": self.comments,
            "created_at": self.created_at.isoformat() if self.created_at else None,
        }

    def __repr__(self):
        return f"<StatusHistory {self.id}: {self.from_status} → {self.to_status}>"


class CaseComment(db.Model):
    __tablename__ = "case_comments"

    id = db.Column(db.Integer, primary_key=True)
    case_id = db.Column(db.Integer, db.ForeignKey("cases.id", ondelete="CASCADE"), nullable=False, index=True)
    user_id = db.Column(db.Integer, db.ForeignKey("users.id", ondelete="SET NULL"), nullable=True)
    comment = db.Column(db.Text, nullable=False)
    comment_type = db.Column(db.String(20), default="general", comment="general | rejection | approval | note | rework")
    is_visible_to_assignee = db.Column(db.Boolean, default=True)
    executive_level = db.Column(db.Integer, nullable=True, comment="Level that requested rework")
    created_at = db.Column(db.DateTime(timezone=True), default=lambda: datetime.now(timezone.utc))

    case = db.relationship("Case", back_populates="comments")
    author = db.relationship("User")

    def to_dict(self):
        return {
            "id": self.id,
            "case_id": self.case_id,
            "user_id": self.user_id,
            "user_name": self.author.full_name if self.author else None,
            "comment": self.comment,
            "comment_type": self.comment_type,
            "is_visible_to_assignee": self.is_visible_to_assignee,
            "executive_level": self.executive_level,
            "created_at": self.created_at.isoformat() if self.created_at else None,
        }

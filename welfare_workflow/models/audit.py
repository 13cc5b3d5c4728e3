"""
Welfare Case Workflow Engine
Audit trail.

Every committed transition, every read-path status repair and every catalog
edit leaves exactly one ``AuditLog`` row. Rows are never updated or deleted.

Action names are ``<entity_type>.<verb>``:

    case.approved, case.rejected, case.executive_level_approved,
    case.reconcile, workflow_stage.create, executive_level.delete, ...
"""

import json
from datetime import datetime, timezone

from welfare_workflow.models import db

AUDITED_ENTITIES = frozenset({"case", "workflow_stage", "executive_level"})


class AuditLog(db.Model):
    __tablename__ = "audit_logs"
    __table_args__ = (
        db.Index("idx_audit_entity", "entity_type", "entity_id"),
        db.Index("idx_audit_action", "action"),
        db.Index("idx_audit_ts", "timestamp"),
    )

    id = db.Column(db.Integer, primary_key=True)
    entity_type = db.Column(db.String(30), nullable=False)
    # String so bulk operations can record "*"
    entity_id = db.Column(db.String(36), nullable=False)
    action = db.Column(db.String(60), nullable=False)
    actor_user_id = db.Column(
        db.Integer,
        db.ForeignKey("users.id", ondelete="SET NULL"),
        nullable=True,
        index=True,
        comment="NULL when the engine repaired a case on its own",
    )
    diff_json = db.Column(db.Text, default="{}")
    timestamp = db.Column(
        db.DateTime(timezone=True), nullable=False,
        default=lambda: datetime.now(timezone.utc),
    )

    @property
    def diff(self) -> dict:
        return json.loads(self.diff_json) if self.diff_json else {}

    def __repr__(self):
        return f"<AuditLog {self.action} {self.entity_type}/{self.entity_id}>"


def write_audit(
    *,
    entity_type: str,
    entity_id,
    action: str,
    actor_user_id: int | None = None,
    diff: dict | None = None,
) -> AuditLog:
    """Add one audit row to the caller's transaction (flush, never commit)."""
    if entity_type not in AUDITED_ENTITIES:
        raise ValueError(f"Unknown audit entity type: {entity_type}")
    entry = AuditLog(
        entity_type=entity_type,
        entity_id=str(entity_id),
        action=action,
        actor_user_id=actor_user_id,
        diff_json=json.dumps(diff or {}, default=str),
    )
    db.session.add(entry)
    db.session.flush()
    return entry

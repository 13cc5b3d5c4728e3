"""welfare_workflow_initial

Create the workflow catalog, case, checklist, notification and audit tables.

Revision ID: 7c1e2a9d4b10
Revises:
Create Date: 2026-10-19 09:00:00.000000
"""

from alembic import op
import sqlalchemy as sa
from sqlalchemy import inspect as sa_inspect


# revision identifiers, used by Alembic.
revision = "7c1e2a9d4b10"
down_revision = None
branch_labels = None
depends_on = None


def _ts(name, nullable=True):
    return sa.Column(name, sa.DateTime(timezone=True), nullable=nullable)


def upgrade():
    bind = op.get_bind()
    existing = set(sa_inspect(bind).get_table_names())

    # ── Identity ─────────────────────────────────────────────────────────
    if "roles" not in existing:
        op.create_table(
            "roles",
            sa.Column("id", sa.Integer(), nullable=False),
            sa.Column("name", sa.String(length=100), nullable=False),
            sa.Column("display_name", sa.String(length=200), nullable=True),
            sa.Column("description", sa.Text(), nullable=True),
            sa.Column("is_active", sa.Boolean(), nullable=True),
            sa.Column("created_at", sa.DateTime(), nullable=True),
            sa.PrimaryKeyConstraint("id"),
            sa.UniqueConstraint("name"),
        )

    if "role_permissions" not in existing:
        op.create_table(
            "role_permissions",
            sa.Column("id", sa.Integer(), nullable=False),
            sa.Column("role_id", sa.Integer(), nullable=False),
            sa.Column("resource", sa.String(length=50), nullable=False),
            sa.Column("action", sa.String(length=30), nullable=False),
            sa.ForeignKeyConstraint(["role_id"], ["roles.id"], ondelete="CASCADE"),
            sa.PrimaryKeyConstraint("id"),
            sa.UniqueConstraint("role_id", "resource", "action", name="uq_role_permission"),
        )

    if "users" not in existing:
        op.create_table(
            "users",
            sa.Column("id", sa.Integer(), nullable=False),
            sa.Column("email", sa.String(length=200), nullable=False),
            sa.Column("full_name", sa.String(length=200), nullable=True),
            sa.Column("role", sa.String(length=100), nullable=True),
            sa.Column("executive_level", sa.Integer(), nullable=True),
            sa.Column("is_active", sa.Boolean(), nullable=True),
            sa.Column("created_at", sa.DateTime(), nullable=True),
            sa.Column("updated_at", sa.DateTime(), nullable=True),
            sa.PrimaryKeyConstraint("id"),
            sa.UniqueConstraint("email"),
        )

    if "user_roles" not in existing:
        op.create_table(
            "user_roles",
            sa.Column("id", sa.Integer(), nullable=False),
            sa.Column("user_id", sa.Integer(), nullable=False),
            sa.Column("role_id", sa.Integer(), nullable=False),
            sa.Column("is_active", sa.Boolean(), nullable=True),
            sa.Column("assigned_at", sa.DateTime(), nullable=True),
            sa.ForeignKeyConstraint(["role_id"], ["roles.id"], ondelete="CASCADE"),
            sa.ForeignKeyConstraint(["user_id"], ["users.id"], ondelete="CASCADE"),
            sa.PrimaryKeyConstraint("id"),
            sa.UniqueConstraint("user_id", "role_id", name="uq_user_role"),
        )

    # ── Workflow catalog ─────────────────────────────────────────────────
    if "case_types" not in existing:
        op.create_table(
            "case_types",
            sa.Column("id", sa.Integer(), nullable=False),
            sa.Column("name", sa.String(length=100), nullable=False),
            sa.Column("description", sa.Text(), nullable=True),
            sa.Column("is_active", sa.Boolean(), nullable=True),
            sa.PrimaryKeyConstraint("id"),
            sa.UniqueConstraint("name"),
        )

    if "workflow_stages" not in existing:
        op.create_table(
            "workflow_stages",
            sa.Column("id", sa.Integer(), nullable=False),
            sa.Column("stage_name", sa.String(length=100), nullable=False),
            sa.Column("stage_key", sa.String(length=50), nullable=False),
            sa.Column("description", sa.Text(), nullable=True),
            sa.Column("sort_order", sa.Integer(), nullable=False, server_default="0"),
            sa.Column("is_active", sa.Boolean(), nullable=True),
            sa.Column("case_type_id", sa.Integer(), nullable=True),
            sa.Column("next_stage_id", sa.Integer(), nullable=True),
            sa.Column("auto_advance_on_approve", sa.Boolean(), nullable=True),
            sa.Column("requires_comments_on_reject", sa.Boolean(), nullable=True),
            sa.Column("can_create_case", sa.Boolean(), nullable=True),
            sa.Column("can_fill_case", sa.Boolean(), nullable=True),
            sa.Column("associated_statuses", sa.JSON(), nullable=True),
            sa.Column("sla_value", sa.Numeric(precision=10, scale=2), nullable=True),
            sa.Column("sla_unit", sa.String(length=20), nullable=True),
            _ts("created_at"),
            _ts("updated_at"),
            sa.ForeignKeyConstraint(["case_type_id"], ["case_types.id"], ondelete="SET NULL"),
            sa.ForeignKeyConstraint(["next_stage_id"], ["workflow_stages.id"], ondelete="SET NULL"),
            sa.PrimaryKeyConstraint("id"),
            sa.UniqueConstraint("stage_key"),
        )
        op.create_index("idx_workflow_stages_sort", "workflow_stages", ["sort_order"])
        op.create_index("idx_workflow_stages_active", "workflow_stages", ["is_active"])

    if "executive_levels" not in existing:
        op.create_table(
            "executive_levels",
            sa.Column("id", sa.Integer(), nullable=False),
            sa.Column("level_number", sa.Integer(), nullable=False),
            sa.Column("level_name", sa.String(length=100), nullable=False),
            sa.Column("description", sa.Text(), nullable=True),
            sa.Column("sort_order", sa.Integer(), nullable=False, server_default="0"),
            sa.Column("is_active", sa.Boolean(), nullable=True),
            _ts("created_at"),
            _ts("updated_at"),
            sa.PrimaryKeyConstraint("id"),
            sa.UniqueConstraint("level_number"),
        )

    grant_columns = (
        "can_view", "can_edit", "can_delete", "can_approve",
        "can_reject", "can_review", "can_create_case", "can_fill_case",
    )

    if "workflow_stage_roles" not in existing:
        op.create_table(
            "workflow_stage_roles",
            sa.Column("id", sa.Integer(), nullable=False),
            sa.Column("workflow_stage_id", sa.Integer(), nullable=False),
            sa.Column("role_id", sa.Integer(), nullable=False),
            *[sa.Column(name, sa.Boolean(), nullable=True) for name in grant_columns],
            _ts("created_at"),
            sa.ForeignKeyConstraint(["workflow_stage_id"], ["workflow_stages.id"], ondelete="CASCADE"),
            sa.ForeignKeyConstraint(["role_id"], ["roles.id"], ondelete="CASCADE"),
            sa.PrimaryKeyConstraint("id"),
            sa.UniqueConstraint("workflow_stage_id", "role_id", name="uq_stage_role"),
        )
        op.create_index("ix_workflow_stage_roles_workflow_stage_id", "workflow_stage_roles", ["workflow_stage_id"])
        op.create_index("ix_workflow_stage_roles_role_id", "workflow_stage_roles", ["role_id"])

    if "workflow_stage_users" not in existing:
        op.create_table(
            "workflow_stage_users",
            sa.Column("id", sa.Integer(), nullable=False),
            sa.Column("workflow_stage_id", sa.Integer(), nullable=False),
            sa.Column("user_id", sa.Integer(), nullable=False),
            *[sa.Column(name, sa.Boolean(), nullable=True) for name in grant_columns],
            _ts("created_at"),
            sa.ForeignKeyConstraint(["workflow_stage_id"], ["workflow_stages.id"], ondelete="CASCADE"),
            sa.ForeignKeyConstraint(["user_id"], ["users.id"], ondelete="CASCADE"),
            sa.PrimaryKeyConstraint("id"),
            sa.UniqueConstraint("workflow_stage_id", "user_id", name="uq_stage_user"),
        )
        op.create_index("ix_workflow_stage_users_workflow_stage_id", "workflow_stage_users", ["workflow_stage_id"])
        op.create_index("ix_workflow_stage_users_user_id", "workflow_stage_users", ["user_id"])

    # ── Cases ────────────────────────────────────────────────────────────
    if "cases" not in existing:
        op.create_table(
            "cases",
            sa.Column("id", sa.Integer(), nullable=False),
            sa.Column("case_number", sa.String(length=50), nullable=False),
            sa.Column("case_type_id", sa.Integer(), nullable=True),
            sa.Column("status", sa.String(length=100), nullable=True),
            sa.Column("current_workflow_stage_id", sa.Integer(), nullable=True),
            sa.Column("current_executive_level", sa.Integer(), nullable=True),
            sa.Column("assigned_counselor_id", sa.Integer(), nullable=True),
            sa.Column("created_by", sa.Integer(), nullable=True),
            sa.Column("workflow_history", sa.JSON(), nullable=True),
            _ts("current_stage_entered_at"),
            sa.Column("sla_status", sa.String(length=20), nullable=True),
            sa.Column("last_welfare_comment", sa.Text(), nullable=True),
            sa.Column("version_id", sa.Integer(), nullable=False, server_default="1"),
            _ts("created_at"),
            _ts("updated_at"),
            sa.ForeignKeyConstraint(["case_type_id"], ["case_types.id"], ondelete="SET NULL"),
            sa.ForeignKeyConstraint(["current_workflow_stage_id"], ["workflow_stages.id"], ondelete="SET NULL"),
            sa.ForeignKeyConstraint(["assigned_counselor_id"], ["users.id"], ondelete="SET NULL"),
            sa.ForeignKeyConstraint(["created_by"], ["users.id"], ondelete="SET NULL"),
            sa.PrimaryKeyConstraint("id"),
            sa.UniqueConstraint("case_number"),
        )
        op.create_index("idx_cases_status", "cases", ["status"])
        op.create_index("idx_cases_stage", "cases", ["current_workflow_stage_id"])

    if "status_history" not in existing:
        op.create_table(
            "status_history",
            sa.Column("id", sa.Integer(), nullable=False),
            sa.Column("case_id", sa.Integer(), nullable=False),
            sa.Column("from_status", sa.String(length=100), nullable=True),
            sa.Column("to_status", sa.String(length=100), nullable=False),
            sa.Column("changed_by", sa.Integer(), nullable=True),
            sa.Column("comments", sa.Text(), nullable=True),
            _ts("created_at", nullable=False),
            sa.ForeignKeyConstraint(["case_id"], ["cases.id"], ondelete="CASCADE"),
            sa.ForeignKeyConstraint(["changed_by"], ["users.id"], ondelete="SET NULL"),
            sa.PrimaryKeyConstraint("id"),
        )
        op.create_index("ix_status_history_case_id", "status_history", ["case_id"])

    if "case_comments" not in existing:
        op.create_table(
            "case_comments",
            sa.Column("id", sa.Integer(), nullable=False),
            sa.Column("case_id", sa.Integer(), nullable=False),
            sa.Column("user_id", sa.Integer(), nullable=True),
            sa.Column("comment", sa.Text(), nullable=False),
            sa.Column("comment_type", sa.String(length=20), nullable=True),
            sa.Column("is_visible_to_assignee", sa.Boolean(), nullable=True),
            sa.Column("executive_level", sa.Integer(), nullable=True),
            _ts("created_at"),
            sa.ForeignKeyConstraint(["case_id"], ["cases.id"], ondelete="CASCADE"),
            sa.ForeignKeyConstraint(["user_id"], ["users.id"], ondelete="SET NULL"),
            sa.PrimaryKeyConstraint("id"),
        )
        op.create_index("ix_case_comments_case_id", "case_comments", ["case_id"])

    # ── Welfare checklist ────────────────────────────────────────────────
    if "welfare_checklist_categories" not in existing:
        op.create_table(
            "welfare_checklist_categories",
            sa.Column("id", sa.Integer(), nullable=False),
            sa.Column("category_name", sa.String(length=200), nullable=False),
            sa.Column("sort_order", sa.Integer(), nullable=True),
            sa.Column("is_active", sa.Boolean(), nullable=True),
            sa.PrimaryKeyConstraint("id"),
        )

    if "welfare_checklist_items" not in existing:
        op.create_table(
            "welfare_checklist_items",
            sa.Column("id", sa.Integer(), nullable=False),
            sa.Column("category_id", sa.Integer(), nullable=False),
            sa.Column("form_section", sa.String(length=200), nullable=False),
            sa.Column("checklist_detail", sa.Text(), nullable=True),
            sa.Column("sort_order", sa.Integer(), nullable=True),
            sa.Column("is_active", sa.Boolean(), nullable=True),
            sa.ForeignKeyConstraint(
                ["category_id"], ["welfare_checklist_categories.id"], ondelete="CASCADE",
            ),
            sa.PrimaryKeyConstraint("id"),
        )

    if "welfare_checklist_responses" not in existing:
        op.create_table(
            "welfare_checklist_responses",
            sa.Column("id", sa.Integer(), nullable=False),
            sa.Column("case_id", sa.Integer(), nullable=False),
            sa.Column("checklist_item_id", sa.Integer(), nullable=False),
            sa.Column("properly_filled", sa.String(length=1), nullable=True),
            sa.Column("comments", sa.Text(), nullable=True),
            sa.Column("filled_by", sa.Integer(), nullable=True),
            _ts("created_at"),
            sa.ForeignKeyConstraint(["case_id"], ["cases.id"], ondelete="CASCADE"),
            sa.ForeignKeyConstraint(
                ["checklist_item_id"], ["welfare_checklist_items.id"], ondelete="CASCADE",
            ),
            sa.ForeignKeyConstraint(["filled_by"], ["users.id"], ondelete="SET NULL"),
            sa.PrimaryKeyConstraint("id"),
            sa.UniqueConstraint("case_id", "checklist_item_id", name="uq_checklist_response_case_item"),
        )
        op.create_index("ix_welfare_checklist_responses_case_id", "welfare_checklist_responses", ["case_id"])

    # ── Notifications & audit ────────────────────────────────────────────
    if "notifications" not in existing:
        op.create_table(
            "notifications",
            sa.Column("id", sa.Integer(), nullable=False),
            sa.Column("user_id", sa.Integer(), nullable=False),
            sa.Column("case_id", sa.Integer(), nullable=True),
            sa.Column("title", sa.String(length=300), nullable=False),
            sa.Column("message", sa.Text(), nullable=True),
            sa.Column("severity", sa.String(length=20), nullable=True),
            sa.Column("is_read", sa.Boolean(), nullable=True),
            _ts("read_at"),
            _ts("created_at"),
            sa.ForeignKeyConstraint(["user_id"], ["users.id"], ondelete="CASCADE"),
            sa.ForeignKeyConstraint(["case_id"], ["cases.id"], ondelete="CASCADE"),
            sa.PrimaryKeyConstraint("id"),
        )
        op.create_index("ix_notifications_user_id", "notifications", ["user_id"])
        op.create_index("ix_notifications_case_id", "notifications", ["case_id"])

    if "audit_logs" not in existing:
        op.create_table(
            "audit_logs",
            sa.Column("id", sa.Integer(), nullable=False),
            sa.Column("entity_type", sa.String(length=30), nullable=False),
            sa.Column("entity_id", sa.String(length=36), nullable=False),
            sa.Column("action", sa.String(length=60), nullable=False),
            sa.Column("actor_user_id", sa.Integer(), nullable=True),
            sa.Column("diff_json", sa.Text(), nullable=True),
            _ts("timestamp", nullable=False),
            sa.ForeignKeyConstraint(["actor_user_id"], ["users.id"], ondelete="SET NULL"),
            sa.PrimaryKeyConstraint("id"),
        )
        op.create_index("idx_audit_entity", "audit_logs", ["entity_type", "entity_id"])
        op.create_index("idx_audit_action", "audit_logs", ["action"])
        op.create_index("idx_audit_ts", "audit_logs", ["timestamp"])
        op.create_index("ix_audit_logs_actor_user_id", "audit_logs", ["actor_user_id"])


def downgrade():
    for table in (
        "audit_logs", "notifications",
        "welfare_checklist_responses", "welfare_checklist_items", "welfare_checklist_categories",
        "case_comments", "status_history", "cases",
        "workflow_stage_users", "workflow_stage_roles", "executive_levels", "workflow_stages",
        "case_types", "user_roles", "users", "role_permissions", "roles",
    ):
        op.drop_table(table)

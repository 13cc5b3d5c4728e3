"""
Status/stage synchronisation tests.

Tests cover:
  - heal_status / align_status decision rules
  - reconcile(): self-heal with audit, idempotency, terminal guard,
    ladder statuses on the executive stage
  - sync_case_stage(): pointer move, history append, catalog gap
"""
from welfare_workflow.models import db
from welfare_workflow.models.audit import AuditLog
from welfare_workflow.services.status_sync import (
    align_status,
    heal_status,
    reconcile,
    reconcile_case,
    sync_case_stage,
)


# ═════════════════════════════════════════════════════════════════════════
# PURE DECISIONS
# ═════════════════════════════════════════════════════════════════════════

class TestHealStatus:
    def test_member_status_untouched(self):
        assert heal_status(["submitted_to_zi", "submitted_to_zi_review"], "submitted_to_zi_review", True) is None

    def test_drifted_status_heals_to_canonical(self):
        assert heal_status(["submitted_to_zi", "submitted_to_zi_review"], "zi_approved", True) == "submitted_to_zi"

    def test_finance_is_never_downgraded(self):
        assert heal_status(["submitted_to_welfare"], "finance_disbursement", True) is None

    def test_empty_set_or_status_is_left_alone(self):
        assert heal_status([], "anything", True) is None
        assert heal_status(["draft"], None, True) is None

    def test_unassigned_case_not_healed_to_assigned(self):
        assert heal_status(["assigned", "draft"], "in_counseling", False) == "draft"
        assert heal_status(["assigned", "reopened"], "in_counseling", False) == "reopened"
        assert heal_status(["assigned"], "in_counseling", False) == "draft"

    def test_assigned_case_heals_to_assigned(self):
        assert heal_status(["assigned"], "in_counseling", True) == "assigned"


class TestAlignStatus:
    def test_requested_status_wins_when_accepted(self):
        assert align_status(["a", "b"], "b", "a") == "b"

    def test_current_status_kept_when_requested_is_foreign(self):
        assert align_status(["a", "b"], "x", "b") == "b"

    def test_canonical_when_neither_fits(self):
        assert align_status(["a", "b"], "x", "y") == "a"

    def test_unconfigured_stage_accepts_request(self):
        assert align_status([], "x", "y") == "x"


# ═════════════════════════════════════════════════════════════════════════
# READ PATH
# ═════════════════════════════════════════════════════════════════════════

class TestReconcile:
    def test_drifted_case_is_healed_and_audited(self, catalog, make_case):
        case = make_case(catalog["zi_review"], status="in_counseling")
        reconcile(case)
        assert case.status == "submitted_to_zi"
        log = AuditLog.query.filter_by(action="case.reconcile", entity_id=str(case.id)).one()
        assert log.diff["status"] == {"old": "in_counseling", "new": "submitted_to_zi"}

    def test_draft_case_on_welfare_review_heals_to_submitted(self, catalog, make_case, make_user):
        stage = catalog["welfare_review"]
        stage.associated_statuses = ["submitted_to_welfare", "welfare_processing_rework"]
        counselor = make_user(role="dcm")
        case = make_case(stage, status="draft", assigned_counselor_id=counselor.id)

        reconcile(case)

        assert case.status == "submitted_to_welfare"
        assert AuditLog.query.filter_by(action="case.reconcile", entity_id=str(case.id)).count() == 1

    def test_consistent_case_is_a_no_op(self, catalog, make_case):
        case = make_case(catalog["zi_review"], status="submitted_to_zi_review")
        reconcile(case)
        reconcile(case)
        assert case.status == "submitted_to_zi_review"
        assert AuditLog.query.filter_by(action="case.reconcile").count() == 0

    def test_ladder_status_is_consistent_on_executive_stage(self, catalog, make_case):
        case = make_case(catalog["executive_approval"], status="submitted_to_executive_3",
                         current_executive_level=3)
        reconcile(case)
        assert case.status == "submitted_to_executive_3"

    def test_finance_case_on_stale_stage_is_kept(self, catalog, make_case):
        case = make_case(catalog["welfare_review"], status="finance_disbursement")
        reconcile(case)
        assert case.status == "finance_disbursement"

    def test_case_on_inactive_stage_is_skipped(self, catalog, make_case):
        case = make_case(catalog["counseling"], status="garbage")
        catalog["counseling"].is_active = False
        db.session.flush()
        reconcile(case)
        assert case.status == "garbage"

    def test_status_set_edited_mid_flight(self, catalog, make_case):
        case = make_case(catalog["zi_review"], status="submitted_to_zi_review")
        catalog["zi_review"].associated_statuses = ["zi_pending"]
        db.session.flush()
        healed = reconcile_case(case.id)
        assert healed.status == "zi_pending"


# ═════════════════════════════════════════════════════════════════════════
# WRITE PATH
# ═════════════════════════════════════════════════════════════════════════

class TestSyncCaseStage:
    def test_moves_pointer_and_appends_history(self, catalog, make_case, make_user):
        actor = make_user(role="welfare_reviewer")
        case = make_case(catalog["welfare_review"], status="submitted_to_welfare")

        stage = sync_case_stage(case, "submitted_to_zi", actor=actor, action="welfare_approved")

        assert stage.id == catalog["zi_review"].id
        assert case.current_workflow_stage_id == catalog["zi_review"].id
        assert case.status == "submitted_to_zi"
        assert case.current_stage_entered_at is not None
        entry = case.workflow_history[-1]
        assert entry["stage_id"] == stage.id
        assert entry["entered_by"] == actor.id
        assert entry["action"] == "welfare_approved"

    def test_foreign_status_aligned_to_canonical(self, catalog, make_case):
        case = make_case(catalog["counseling"], status="in_counseling")
        sync_case_stage(case, "something_else", preferred_stage=catalog["zi_review"])
        assert case.status == "submitted_to_zi"

    def test_same_stage_same_status_writes_no_history(self, catalog, make_case):
        case = make_case(catalog["zi_review"], status="submitted_to_zi")
        sync_case_stage(case, "submitted_to_zi")
        assert case.workflow_history in (None, [])

    def test_catalog_gap_keeps_pointer(self, make_case):
        case = make_case(None, status="draft")
        assert sync_case_stage(case, "submitted_to_zi") is None
        assert case.status == "submitted_to_zi"
        assert case.current_workflow_stage_id is None

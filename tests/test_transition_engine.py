"""
Transition engine tests.

Tests cover:
  - Generic approve/reject on the current stage (permission, comments,
    successor lookup, ladder entry, catalog gaps)
  - Executive ladder climb 1 → 4 → finance disbursement
  - Welfare checklist gate
  - Specialised transitions: welfare, ZI, executive rework, resubmission
  - Optimistic concurrency and best-effort notification delivery
  - available_actions / comment visibility read models
"""
import pytest
from sqlalchemy import text
from sqlalchemy.exc import SQLAlchemyError

from welfare_workflow.core.exceptions import (
    ConflictError,
    ForbiddenError,
    InvalidStateError,
    ValidationError,
)
from welfare_workflow.models import db
from welfare_workflow.models.audit import AuditLog
from welfare_workflow.models.case import Case, CaseComment, StatusHistory
from welfare_workflow.models.checklist import ChecklistCategory, ChecklistItem, ChecklistResponse
from welfare_workflow.models.notification import Notification
from welfare_workflow.models.workflow import ExecutiveLevel
from welfare_workflow.services import transition_engine as engine
from welfare_workflow.services.notification import NotificationService


EXEC = "Executive Management"


@pytest.fixture()
def people(catalog, make_user):
    users = {
        "counselor": make_user(role="dcm", full_name="Case Manager"),
        "welfare": make_user(role="welfare_reviewer", full_name="Welfare Reviewer"),
        "zi": make_user(role="ZI", full_name="Zonal Incharge"),
        "finance": make_user(role="finance", full_name="Finance Officer"),
        "admin": make_user(role="admin", full_name="Admin"),
        "outsider": make_user(role="visitor", full_name="Visitor"),
    }
    for level in (1, 2, 3, 4):
        users[f"exec{level}"] = make_user(role=EXEC, executive_level=level, full_name=f"Executive {level}")
    db.session.commit()
    return users


@pytest.fixture()
def new_case(make_case, catalog, people):
    def _new(stage_key, status, level=None, **kw):
        case = make_case(
            catalog[stage_key], status=status,
            current_executive_level=level,
            assigned_counselor_id=people["counselor"].id,
            **kw,
        )
        db.session.commit()
        return case
    return _new


def _checklist(case, total, filled):
    cat = ChecklistCategory(category_name="Eligibility")
    db.session.add(cat)
    db.session.flush()
    items = [ChecklistItem(category_id=cat.id, form_section=f"Section {i}", sort_order=i) for i in range(total)]
    db.session.add_all(items)
    db.session.flush()
    for item in items[:filled]:
        db.session.add(ChecklistResponse(case_id=case.id, checklist_item_id=item.id, properly_filled="Y"))
    db.session.commit()


def _fresh(case_id):
    db.session.expire_all()
    return db.session.get(Case, case_id)


# ═════════════════════════════════════════════════════════════════════════
# GENERIC APPROVE
# ═════════════════════════════════════════════════════════════════════════

class TestGenericApprove:
    def test_draft_to_assignment(self, catalog, people, new_case, grant):
        grant(catalog["draft"], "admin", can_view=True, can_approve=True)
        case = new_case("draft", "draft")

        result = engine.apply_transition(case.id, "approve", people["admin"].id)

        assert result.new_status == "assigned"
        assert result.new_stage_id == catalog["case_assignment"].id
        assert result.executive_level is None
        assert result.message == "Case approved and forwarded to Case Assignment"
        case = _fresh(case.id)
        assert case.current_workflow_stage_id == catalog["case_assignment"].id
        assert case.workflow_history[-1]["action"] == "approved"
        history = StatusHistory.query.filter_by(case_id=case.id).one()
        assert (history.from_status, history.to_status) == ("draft", "assigned")
        assert AuditLog.query.filter_by(action="case.approved", entity_id=str(case.id)).count() == 1

    def test_without_permission_is_forbidden(self, people, new_case):
        case = new_case("draft", "draft")
        with pytest.raises(ForbiddenError):
            engine.apply_transition(case.id, "approve", people["outsider"].id)
        assert _fresh(case.id).status == "draft"
        assert StatusHistory.query.count() == 0

    def test_explicit_next_stage_wins(self, catalog, people, new_case, grant):
        catalog["draft"].next_stage_id = catalog["counseling"].id
        grant(catalog["draft"], "admin", can_view=True, can_approve=True)
        case = new_case("draft", "draft")

        result = engine.apply_transition(case.id, "approve", people["admin"].id)
        assert result.new_stage_id == catalog["counseling"].id
        assert result.new_status == "in_counseling"

    def test_zi_approval_enters_ladder(self, catalog, people, new_case, grant):
        grant(catalog["zi_review"], "ZI", can_view=True, can_approve=True)
        case = new_case("zi_review", "submitted_to_zi")

        result = engine.apply_transition(case.id, "approve", people["zi"].id)

        assert result.new_status == "submitted_to_executive_1"
        assert result.executive_level == 1
        assert result.new_stage_id == catalog["executive_approval"].id
        notified = {n.user_id for n in Notification.query.filter_by(case_id=case.id).all()}
        assert people["counselor"].id in notified
        assert people["zi"].id not in notified

    def test_stage_without_statuses_gets_generated_status(self, catalog, people, new_case, grant):
        catalog["case_assignment"].associated_statuses = []
        grant(catalog["draft"], "admin", can_view=True, can_approve=True)
        case = new_case("draft", "draft")

        result = engine.apply_transition(case.id, "approve", people["admin"].id)
        assert result.new_status == "submitted_to_case_assignment"

    def test_last_stage_records_approval_without_moving(self, catalog, people, new_case, grant):
        grant(catalog["finance_disbursement"], "finance", can_view=True, can_approve=True)
        case = new_case("finance_disbursement", "finance_disbursement")

        result = engine.apply_transition(case.id, "approve", people["finance"].id)

        assert result.new_status == "finance_disbursement"
        assert result.new_stage_id == catalog["finance_disbursement"].id
        assert "no next stage configured" in result.message
        assert StatusHistory.query.filter_by(case_id=case.id).count() == 1

    def test_generic_approve_on_ladder_checks_level(self, catalog, people, new_case, grant):
        grant(catalog["executive_approval"], EXEC, can_view=True, can_approve=True)
        case = new_case("executive_approval", "submitted_to_executive_2", level=2)

        with pytest.raises(ForbiddenError, match="executive level 2"):
            engine.apply_transition(case.id, "approve", people["exec1"].id)

        result = engine.apply_transition(case.id, "approve", people["exec2"].id)
        assert result.new_status == "submitted_to_executive_3"
        assert result.executive_level == 3
        assert result.new_stage_id == catalog["executive_approval"].id

    def test_unknown_action(self, people, new_case):
        case = new_case("draft", "draft")
        with pytest.raises(ValidationError, match="Unknown action"):
            engine.apply_transition(case.id, "escalate", people["admin"].id)

    def test_dispatches_specialised_action_names(self, people, new_case):
        case = new_case("welfare_review", "submitted_to_welfare")
        result = engine.apply_transition(case.id, "welfare_approve", people["welfare"].id)
        assert result.new_status == "submitted_to_zi"


# ═════════════════════════════════════════════════════════════════════════
# GENERIC REJECT
# ═════════════════════════════════════════════════════════════════════════

class TestGenericReject:
    def test_requires_comments(self, catalog, people, new_case, grant):
        grant(catalog["zi_review"], "ZI", can_view=True, can_reject=True)
        case = new_case("zi_review", "submitted_to_zi")
        with pytest.raises(ValidationError, match="Comments are required when rejecting a case"):
            engine.apply_transition(case.id, "reject", people["zi"].id, comments="   ")

    def test_returns_to_assignment(self, catalog, people, new_case, grant):
        grant(catalog["zi_review"], "ZI", can_view=True, can_reject=True)
        case = new_case("zi_review", "submitted_to_zi")

        result = engine.apply_transition(case.id, "reject", people["zi"].id, comments="Missing documents")

        assert result.new_status == "assigned"
        assert result.new_stage_id == catalog["case_assignment"].id
        assert result.message == "Case rejected and sent back to Case Assignment"
        comment = CaseComment.query.filter_by(case_id=case.id).one()
        assert comment.comment_type == "rejection"
        assert comment.comment == "Missing documents"

    def test_reject_clears_executive_level(self, catalog, people, new_case, grant):
        grant(catalog["executive_approval"], EXEC, can_view=True, can_reject=True)
        case = new_case("executive_approval", "submitted_to_executive_1", level=1)
        result = engine.apply_transition(case.id, "reject", people["exec1"].id, comments="No")
        assert result.executive_level is None

    def test_stage_may_waive_comments(self, catalog, people, new_case, grant):
        catalog["zi_review"].requires_comments_on_reject = False
        grant(catalog["zi_review"], "ZI", can_view=True, can_reject=True)
        case = new_case("zi_review", "submitted_to_zi")
        result = engine.apply_transition(case.id, "reject", people["zi"].id)
        assert result.new_status == "assigned"

    def test_without_assignment_stage_returns_to_first(self, catalog, people, new_case, grant):
        catalog["case_assignment"].is_active = False
        grant(catalog["zi_review"], "ZI", can_view=True, can_reject=True)
        case = new_case("zi_review", "submitted_to_zi")
        result = engine.apply_transition(case.id, "reject", people["zi"].id, comments="Start over")
        assert result.new_status == "draft"
        assert result.new_stage_id == catalog["draft"].id

    def test_case_on_inactive_stage(self, catalog, people, new_case):
        case = new_case("zi_review", "submitted_to_zi")
        catalog["zi_review"].is_active = False
        db.session.commit()
        with pytest.raises(InvalidStateError, match="inactive"):
            engine.apply_transition(case.id, "reject", people["zi"].id, comments="x")


# ═════════════════════════════════════════════════════════════════════════
# EXECUTIVE LADDER
# ═════════════════════════════════════════════════════════════════════════

class TestExecutiveLadder:
    def test_full_climb_to_finance(self, catalog, people, new_case):
        case = new_case("executive_approval", "submitted_to_executive_1", level=1)
        exec_stage_id = catalog["executive_approval"].id

        for level in (1, 2, 3):
            result = engine.executive_approve(case.id, people[f"exec{level}"].id)
            assert result.new_status == f"submitted_to_executive_{level + 1}"
            assert result.executive_level == level + 1
            assert result.new_stage_id == exec_stage_id

        result = engine.executive_approve(case.id, people["exec4"].id)
        assert result.new_status == "finance_disbursement"
        assert result.executive_level is None
        assert result.new_stage_id == catalog["finance_disbursement"].id
        assert AuditLog.query.filter_by(action="case.executive_approved").count() == 1
        assert AuditLog.query.filter_by(action="case.executive_level_approved").count() == 3

    def test_next_level_executives_are_notified(self, people, new_case):
        case = new_case("executive_approval", "submitted_to_executive_1", level=1)
        engine.executive_approve(case.id, people["exec1"].id)
        titles = [n.title for n in Notification.query.filter_by(user_id=people["exec2"].id).all()]
        assert titles == ["Case Ready for Executive Level 2 Review"]
        assert Notification.query.filter_by(user_id=people["exec3"].id).count() == 0

    def test_exit_notifies_finance(self, people, new_case):
        case = new_case("executive_approval", "submitted_to_executive_4", level=4)
        engine.executive_approve(case.id, people["exec4"].id)
        assert Notification.query.filter_by(user_id=people["finance"].id).count() == 1

    def test_wrong_level_is_forbidden(self, people, new_case):
        case = new_case("executive_approval", "submitted_to_executive_1", level=1)
        with pytest.raises(ForbiddenError, match="level 1; you are assigned level 2"):
            engine.executive_approve(case.id, people["exec2"].id)

    def test_non_executive_is_forbidden(self, people, new_case):
        case = new_case("executive_approval", "submitted_to_executive_1", level=1)
        with pytest.raises(ForbiddenError):
            engine.executive_approve(case.id, people["welfare"].id)

    def test_admin_bypasses_level_check(self, people, new_case):
        case = new_case("executive_approval", "submitted_to_executive_3", level=3)
        result = engine.executive_approve(case.id, people["admin"].id)
        assert result.executive_level == 4

    def test_not_on_ladder(self, people, new_case):
        case = new_case("zi_review", "submitted_to_zi")
        with pytest.raises(InvalidStateError):
            engine.executive_approve(case.id, people["exec1"].id)

    def test_legacy_case_without_level_column(self, people, new_case):
        case = new_case("executive_approval", "submitted_to_executive_3")
        result = engine.executive_approve(case.id, people["exec3"].id)
        assert result.new_status == "submitted_to_executive_4"

    def test_deactivated_level_is_skipped(self, people, new_case):
        ExecutiveLevel.query.filter_by(level_number=2).one().is_active = False
        case = new_case("executive_approval", "submitted_to_executive_1", level=1)
        result = engine.executive_approve(case.id, people["exec1"].id)
        assert result.executive_level == 3

    def test_exit_without_finance_stage_keeps_pointer(self, catalog, people, new_case):
        catalog["finance_disbursement"].is_active = False
        case = new_case("executive_approval", "submitted_to_executive_4", level=4)
        result = engine.executive_approve(case.id, people["exec4"].id)
        assert result.new_status == "finance_disbursement"
        assert result.executive_level is None
        assert result.new_stage_id == catalog["executive_approval"].id

    def test_exit_writes_disbursement_status_whatever_the_finance_set(self, catalog, people, new_case):
        catalog["finance_disbursement"].associated_statuses = ["disbursement_pending"]
        case = new_case("executive_approval", "submitted_to_executive_4", level=4)

        result = engine.executive_approve(case.id, people["exec4"].id)

        assert result.new_status == "finance_disbursement"
        assert result.new_stage_id == catalog["finance_disbursement"].id
        case = _fresh(case.id)
        assert case.status == "finance_disbursement"
        assert case.current_workflow_stage_id == catalog["finance_disbursement"].id

    def test_executive_role_held_as_extra_role_is_notified(self, make_user, people, new_case):
        deputy = make_user(role="staff", executive_level=2, extra_roles=[EXEC], full_name="Deputy Executive")
        db.session.commit()
        case = new_case("executive_approval", "submitted_to_executive_1", level=1)

        engine.executive_approve(case.id, people["exec1"].id)

        titles = [n.title for n in Notification.query.filter_by(user_id=deputy.id).all()]
        assert titles == ["Case Ready for Executive Level 2 Review"]


# ═════════════════════════════════════════════════════════════════════════
# WELFARE / ZI
# ═════════════════════════════════════════════════════════════════════════

class TestWelfareChecklist:
    def test_nothing_filled(self, people, new_case):
        case = new_case("welfare_review", "submitted_to_welfare")
        _checklist(case, total=10, filled=0)
        with pytest.raises(ValidationError, match="Submit the checklist and then click on approve button") as exc:
            engine.welfare_approve(case.id, people["welfare"].id)
        assert exc.value.details == {"filled": 0, "total": 10}

    def test_partially_filled(self, people, new_case):
        case = new_case("welfare_review", "submitted_to_welfare")
        _checklist(case, total=10, filled=4)
        with pytest.raises(ValidationError) as exc:
            engine.welfare_approve(case.id, people["welfare"].id)
        assert str(exc.value) == (
            "Checklist incomplete. Please fill all checklist items before approving (4/10 completed)"
        )
        assert _fresh(case.id).status == "submitted_to_welfare"

    def test_complete_checklist_moves_to_zi(self, catalog, people, new_case):
        case = new_case("welfare_review", "submitted_to_welfare")
        _checklist(case, total=3, filled=3)

        result = engine.welfare_approve(case.id, people["welfare"].id, comments="All verified")

        assert result.new_status == "submitted_to_zi"
        assert result.new_stage_id == catalog["zi_review"].id
        zi_titles = [n.title for n in Notification.query.filter_by(user_id=people["zi"].id).all()]
        assert zi_titles == ["Case Ready for ZI Review"]


class TestWelfareAndZI:
    def test_welfare_approve_requires_welfare_role(self, people, new_case):
        case = new_case("welfare_review", "submitted_to_welfare")
        with pytest.raises(ForbiddenError, match="Only welfare reviewers"):
            engine.welfare_approve(case.id, people["zi"].id)

    def test_welfare_approve_wrong_status(self, people, new_case):
        case = new_case("counseling", "in_counseling")
        with pytest.raises(InvalidStateError) as exc:
            engine.welfare_approve(case.id, people["welfare"].id)
        assert exc.value.current == "in_counseling"
        assert exc.value.expected == "submitted_to_welfare"

    def test_welfare_reject_returns_to_counseling(self, catalog, people, new_case):
        case = new_case("welfare_review", "submitted_to_welfare")
        result = engine.welfare_reject(case.id, people["welfare"].id, comments="Income proof missing")
        assert result.new_status == "welfare_rejected"
        assert result.new_stage_id == catalog["counseling"].id
        notif = Notification.query.filter_by(user_id=people["counselor"].id).one()
        assert notif.severity == "error"

    def test_welfare_reject_requires_comments(self, people, new_case):
        case = new_case("welfare_review", "submitted_to_welfare")
        with pytest.raises(ValidationError):
            engine.welfare_reject(case.id, people["welfare"].id)

    def test_zi_approve_enters_ladder(self, catalog, people, new_case):
        case = new_case("zi_review", "submitted_to_zi")
        result = engine.zi_approve(case.id, people["zi"].id)
        assert result.new_status == "submitted_to_executive_1"
        assert result.executive_level == 1
        assert result.new_stage_id == catalog["executive_approval"].id
        assert Notification.query.filter_by(user_id=people["exec1"].id).count() == 1

    def test_zi_reject_returns_to_welfare(self, catalog, people, new_case):
        case = new_case("zi_review", "submitted_to_zi")
        result = engine.zi_reject(case.id, people["zi"].id, comments="Recheck")
        assert result.new_status == "submitted_to_welfare"
        assert result.new_stage_id == catalog["welfare_review"].id

    def test_drifted_status_is_healed_before_the_status_guard(self, catalog, people, new_case):
        case = new_case("welfare_review", "draft")

        result = engine.welfare_approve(case.id, people["welfare"].id)

        assert result.new_status == "submitted_to_zi"
        assert result.new_stage_id == catalog["zi_review"].id
        heal = AuditLog.query.filter_by(action="case.reconcile", entity_id=str(case.id)).one()
        assert heal.diff["status"] == {"old": "draft", "new": "submitted_to_welfare"}
        history = StatusHistory.query.filter_by(case_id=case.id).one()
        assert (history.from_status, history.to_status) == ("submitted_to_welfare", "submitted_to_zi")


# ═════════════════════════════════════════════════════════════════════════
# REWORK LOOP
# ═════════════════════════════════════════════════════════════════════════

class TestRework:
    def test_executive_rework_keeps_level_and_hides_comment(self, catalog, people, new_case):
        case = new_case("executive_approval", "submitted_to_executive_2", level=2)

        result = engine.executive_rework(case.id, people["exec2"].id, comments="Verify bank details")

        assert result.new_status == "welfare_processing_rework"
        assert result.new_stage_id == catalog["welfare_review"].id
        assert result.executive_level == 2
        comment = CaseComment.query.filter_by(case_id=case.id).one()
        assert comment.comment_type == "rework"
        assert comment.is_visible_to_assignee is False
        assert comment.executive_level == 2
        assert comment.comment == "Case sent for rework by Executive Level 2: Verify bank details"

    def test_rework_comment_hidden_from_assignee_only(self, people, new_case):
        case = new_case("executive_approval", "submitted_to_executive_2", level=2)
        engine.executive_rework(case.id, people["exec2"].id, comments="Verify bank details")

        assert engine.list_comments(case.id, people["counselor"].id) == []
        assert len(engine.list_comments(case.id, people["welfare"].id)) == 1
        assert len(engine.list_comments(case.id, people["admin"].id)) == 1

    def test_forward_rework_clears_level(self, catalog, people, new_case):
        case = new_case("welfare_review", "welfare_processing_rework", level=2)

        result = engine.welfare_forward_rework(case.id, people["welfare"].id, comments="Please fix bank details")

        assert result.new_status == "welfare_rejected"
        assert result.new_stage_id == catalog["counseling"].id
        assert result.executive_level is None
        assert _fresh(case.id).last_welfare_comment == "Please fix bank details"

    def test_resubmit_by_assignee(self, catalog, people, new_case):
        case = new_case("counseling", "welfare_rejected")
        result = engine.resubmit_to_welfare(case.id, people["counselor"].id)
        assert result.new_status == "submitted_to_welfare"
        assert result.new_stage_id == catalog["welfare_review"].id

    def test_resubmit_by_someone_else(self, people, make_user, new_case):
        other = make_user(role="dcm")
        db.session.commit()
        case = new_case("counseling", "welfare_rejected")
        with pytest.raises(ForbiddenError, match="assigned to you"):
            engine.resubmit_to_welfare(case.id, other.id)


# ═════════════════════════════════════════════════════════════════════════
# CONCURRENCY & NOTIFICATION FAILURE
# ═════════════════════════════════════════════════════════════════════════

class TestAtomicity:
    def test_stale_version_is_a_conflict(self, catalog, people, new_case, grant):
        grant(catalog["draft"], "admin", can_view=True, can_approve=True)
        case = new_case("draft", "draft")
        assert case.version_id == 1
        # another writer bumps the row inside the same transaction window
        db.session.execute(text("UPDATE cases SET version_id = version_id + 1 WHERE id = :id"), {"id": case.id})

        with pytest.raises(ConflictError) as exc:
            engine.apply_transition(case.id, "approve", people["admin"].id)
        assert exc.value.field == "version_id"
        assert StatusHistory.query.count() == 0

    def test_notification_failure_does_not_undo_transition(self, monkeypatch, people, new_case):
        def boom(**kwargs):
            raise SQLAlchemyError("notifications table is locked")

        monkeypatch.setattr(NotificationService, "notify", staticmethod(boom))
        case = new_case("welfare_review", "submitted_to_welfare")

        result = engine.welfare_approve(case.id, people["welfare"].id)

        assert result.new_status == "submitted_to_zi"
        assert _fresh(case.id).status == "submitted_to_zi"
        assert Notification.query.count() == 0

    def test_unexpected_notification_error_is_contained(self, monkeypatch, people, new_case):
        def boom(**kwargs):
            raise RuntimeError("mail relay unavailable")

        monkeypatch.setattr(NotificationService, "notify", staticmethod(boom))
        case = new_case("zi_review", "submitted_to_zi")

        result = engine.zi_approve(case.id, people["zi"].id)

        assert result.new_status == "submitted_to_executive_1"
        assert _fresh(case.id).status == "submitted_to_executive_1"
        assert Notification.query.count() == 0


# ═════════════════════════════════════════════════════════════════════════
# READ MODELS
# ═════════════════════════════════════════════════════════════════════════

class TestAvailableActions:
    def test_level_mismatch_blocks_approve(self, catalog, people, new_case, grant):
        grant(catalog["executive_approval"], EXEC, can_view=True, can_approve=True)
        case = new_case("executive_approval", "submitted_to_executive_2", level=2)

        mine = engine.available_actions(case.id, people["exec2"].id)
        theirs = engine.available_actions(case.id, people["exec1"].id)

        assert mine["permissions"]["can_approve"] is True
        assert mine["executive_level_match"] is True
        assert theirs["permissions"]["can_approve"] is False
        assert theirs["executive_level_match"] is False

    def test_drifted_status_is_healed_on_read(self, catalog, people, new_case):
        case = new_case("zi_review", "in_counseling")
        data = engine.available_actions(case.id, people["zi"].id)
        assert data["needs_reconcile"] is True
        assert data["status"] == "submitted_to_zi"
        assert data["stage"]["stage_key"] == "zi_review"

    def test_status_history_is_ordered(self, people, new_case):
        case = new_case("welfare_review", "submitted_to_welfare")
        engine.welfare_approve(case.id, people["welfare"].id)
        engine.zi_reject(case.id, people["zi"].id, comments="Recheck")
        rows = engine.list_status_history(case.id)
        assert [r.to_status for r in rows] == ["submitted_to_zi", "submitted_to_welfare"]

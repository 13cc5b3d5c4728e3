"""
Stage resolution unit tests.

Tests cover:
  - Membership lookup, including case-type-specific precedence
  - Legacy status-name patterns for catalogs without status sets
  - Sort-order sequence and first-stage fallbacks
  - Empty catalog → None
"""
from welfare_workflow.models import db
from welfare_workflow.models.workflow import CaseType, WorkflowStage
from welfare_workflow.services.stage_catalog import StageCatalog, effective_statuses
from welfare_workflow.services.stage_resolver import StageQuery, by_pattern, resolve_stage_for_status


def _stage(key, order, statuses=None, **kw):
    stage = WorkflowStage(
        stage_key=key, stage_name=key.replace("_", " ").title(), sort_order=order,
        associated_statuses=statuses or [], is_active=kw.pop("is_active", True), **kw,
    )
    db.session.add(stage)
    db.session.flush()
    return stage


# ═════════════════════════════════════════════════════════════════════════
# MEMBERSHIP
# ═════════════════════════════════════════════════════════════════════════

class TestMembership:
    def test_status_in_stage_set(self, catalog):
        stage = resolve_stage_for_status("submitted_to_zi")
        assert stage.id == catalog["zi_review"].id

    def test_non_canonical_member(self, catalog):
        stage = resolve_stage_for_status("welfare_rejected")
        assert stage.stage_key == "counseling"

    def test_executive_approved_stays_on_executive(self, catalog):
        assert resolve_stage_for_status("executive_approved").stage_key == "executive_approval"

    def test_case_type_specific_wins(self, catalog):
        ct = CaseType(name="Medical")
        db.session.add(ct)
        db.session.flush()
        specific = _stage("medical_zi", 50, ["submitted_to_zi"], case_type_id=ct.id)

        assert resolve_stage_for_status("submitted_to_zi", case_type_id=ct.id).id == specific.id
        # untyped cases see every stage; the generic one sorts first
        assert resolve_stage_for_status("submitted_to_zi").id == catalog["zi_review"].id

    def test_stage_for_other_type_is_ignored(self, catalog):
        medical = CaseType(name="Medical")
        housing = CaseType(name="Housing")
        db.session.add_all([medical, housing])
        db.session.flush()
        _stage("medical_only", 0, ["medical_intake"], case_type_id=medical.id)

        stage = resolve_stage_for_status("medical_intake", case_type_id=housing.id)
        assert stage.stage_key == "draft"

    def test_inactive_stage_never_matches(self, catalog):
        catalog["zi_review"].is_active = False
        db.session.flush()
        stage = resolve_stage_for_status("submitted_to_zi")
        assert stage.stage_key == "draft"


# ═════════════════════════════════════════════════════════════════════════
# PATTERN FALLBACK
# ═════════════════════════════════════════════════════════════════════════

class TestPattern:
    def test_legacy_catalog_without_status_sets(self):
        _stage("draft", 1)
        zi = _stage("zi_review", 2)
        _stage("finance_disbursement", 3)

        assert resolve_stage_for_status("zi_approved").id == zi.id
        assert resolve_stage_for_status("finance_disbursement").stage_key == "finance_disbursement"

    def test_numbered_ladder_status_maps_to_executive(self, catalog):
        stage = resolve_stage_for_status("submitted_to_executive_3")
        assert stage.stage_key == "executive_approval"

    def test_pattern_with_no_matching_key(self):
        _stage("draft", 1)
        result = by_pattern(StageCatalog.load(), StageQuery("submitted_to_kg_review"))
        assert result is None


# ═════════════════════════════════════════════════════════════════════════
# SEQUENCE / FIRST STAGE
# ═════════════════════════════════════════════════════════════════════════

class TestFallbacks:
    def test_unknown_status_moves_to_next_stage(self, catalog):
        stage = resolve_stage_for_status("something_new", current_stage_id=catalog["counseling"].id)
        assert stage.stage_key == "welfare_review"

    def test_unknown_status_without_current_stage(self, catalog):
        assert resolve_stage_for_status("something_new").stage_key == "draft"

    def test_sequence_from_inactive_current_stage(self, catalog):
        catalog["counseling"].is_active = False
        db.session.flush()
        stage = resolve_stage_for_status("something_new", current_stage_id=catalog["counseling"].id)
        assert stage.stage_key == "welfare_review"

    def test_empty_catalog_returns_none(self):
        assert resolve_stage_for_status("draft") is None


# ═════════════════════════════════════════════════════════════════════════
# EFFECTIVE STATUS SET
# ═════════════════════════════════════════════════════════════════════════

class TestEffectiveStatuses:
    def test_executive_stage_gains_one_status_per_level(self, catalog):
        statuses = effective_statuses(catalog["executive_approval"])
        assert statuses[:2] == ["submitted_to_executive", "executive_approved"]
        assert {"submitted_to_executive_1", "submitted_to_executive_4"} <= set(statuses)

    def test_other_stages_unchanged(self, catalog):
        assert effective_statuses(catalog["zi_review"]) == ["submitted_to_zi", "submitted_to_zi_review"]

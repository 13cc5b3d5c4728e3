"""Notification inbox, health probe and CLI command tests."""
import pytest

from welfare_workflow.models import db
from welfare_workflow.models.workflow import ExecutiveLevel, WorkflowStage
from welfare_workflow.services.notification import NotificationService, PendingNotification


@pytest.fixture()
def inbox(make_user):
    owner = make_user(role="dcm")
    other = make_user(role="dcm")
    NotificationService.dispatch([
        PendingNotification(owner.id, None, "Case Approved", "WC-1 approved", "success"),
        PendingNotification(owner.id, None, "Case Rejected", "WC-2 rejected", "warning"),
        PendingNotification(owner.id, None, "Case Rejected", "duplicate is dropped", "warning"),
        PendingNotification(other.id, None, "Case Approved", "WC-3 approved", "success"),
    ])
    return owner, other


# ═════════════════════════════════════════════════════════════════════════
# INBOX
# ═════════════════════════════════════════════════════════════════════════

class TestInbox:
    def test_list_newest_first(self, client, inbox, auth_headers):
        owner, _ = inbox
        res = client.get("/api/v1/notifications", headers=auth_headers(owner))
        assert res.status_code == 200
        data = res.get_json()
        assert data["total"] == 2
        assert data["unread_count"] == 2
        assert [n["title"] for n in data["items"]] == ["Case Rejected", "Case Approved"]

    def test_mark_read(self, client, inbox, auth_headers):
        owner, _ = inbox
        nid = client.get("/api/v1/notifications", headers=auth_headers(owner)).get_json()["items"][0]["id"]

        res = client.put(f"/api/v1/notifications/{nid}/read", headers=auth_headers(owner))
        assert res.status_code == 200
        assert res.get_json()["is_read"] is True
        assert res.get_json()["read_at"] is not None

        res = client.get("/api/v1/notifications/unread-count", headers=auth_headers(owner))
        assert res.get_json() == {"unread_count": 1}

        res = client.get("/api/v1/notifications?unread_only=true", headers=auth_headers(owner))
        assert res.get_json()["total"] == 1

    def test_cannot_read_someone_elses(self, client, inbox, auth_headers):
        owner, other = inbox
        nid = client.get("/api/v1/notifications", headers=auth_headers(owner)).get_json()["items"][0]["id"]
        res = client.put(f"/api/v1/notifications/{nid}/read", headers=auth_headers(other))
        assert res.status_code == 404

    def test_mark_all_read(self, client, inbox, auth_headers):
        owner, other = inbox
        res = client.put("/api/v1/notifications/read-all", headers=auth_headers(owner))
        assert res.get_json() == {"marked_read": 2}
        assert NotificationService.unread_count(owner.id) == 0
        assert NotificationService.unread_count(other.id) == 1

    def test_pagination(self, client, inbox, auth_headers):
        owner, _ = inbox
        res = client.get("/api/v1/notifications?limit=1&offset=1", headers=auth_headers(owner))
        data = res.get_json()
        assert data["total"] == 2
        assert [n["title"] for n in data["items"]] == ["Case Approved"]

    def test_dispatch_skips_missing_recipient(self):
        assert NotificationService.dispatch([PendingNotification(None, None, "Orphan")]) == 0


# ═════════════════════════════════════════════════════════════════════════
# HEALTH
# ═════════════════════════════════════════════════════════════════════════

class TestHealth:
    def test_ready(self, client):
        res = client.get("/api/v1/health/ready")
        assert res.status_code == 200
        assert res.get_json() == {"status": "ok"}

    def test_live_reports_catalog_gaps(self, client):
        res = client.get("/api/v1/health/live")
        assert res.status_code == 200
        catalog = res.get_json()["checks"]["workflow_catalog"]
        assert catalog["status"] == "degraded"
        assert "no executive stage" in catalog["gaps"]
        assert "no active executive levels" in catalog["gaps"]

    def test_live_with_seeded_catalog(self, client, catalog):
        db.session.commit()
        res = client.get("/api/v1/health/live")
        checks = res.get_json()["checks"]
        assert checks["database"]["status"] == "ok"
        assert checks["workflow_catalog"] == {
            "status": "ok",
            "active_stages": 7,
            "active_executive_levels": 4,
            "gaps": [],
        }


# ═════════════════════════════════════════════════════════════════════════
# CLI
# ═════════════════════════════════════════════════════════════════════════

class TestCli:
    def test_seed_workflow_is_idempotent(self, app):
        runner = app.test_cli_runner()
        result = runner.invoke(args=["seed-workflow"])
        assert result.exit_code == 0
        assert WorkflowStage.query.count() == 7
        assert ExecutiveLevel.query.count() == 4

        result = runner.invoke(args=["seed-workflow"])
        assert result.exit_code == 0
        assert WorkflowStage.query.count() == 7

    def test_reconcile_cases(self, app, catalog, make_case):
        case = make_case(catalog["zi_review"], status="in_counseling", assigned_counselor_id=None)
        db.session.commit()
        result = app.test_cli_runner().invoke(args=["reconcile-cases"])
        assert result.exit_code == 0
        db.session.expire_all()
        assert case.status == "submitted_to_zi"

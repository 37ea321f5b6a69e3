"""
Workflow engine tests.

Tests cover:
  - Initial state of new records (draft, first step)
  - Approve through every step → approved, one history row per transition
  - Reject requires a comment, works at any step and is terminal
  - Refused actions append no history
  - Refusals: terminal record, no workflow, step flag disabled, unknown action
  - History write failure leaves the status change committed
"""
import pytest

from qpd.models import db
from qpd.models.record import ProcessRecord, WorkflowHistory
from qpd.services import workflow_engine


def _act(client, record_id, action, comments=None, user="reviewer-1"):
    payload = {"action": action}
    if comments is not None:
        payload["comments"] = comments
    return client.post(
        f"/api/v1/records/{record_id}/workflow", json=payload,
        headers={"X-User-Id": user},
    )


@pytest.fixture()
def record(make_record):
    return make_record()["record"]


# ═════════════════════════════════════════════════════════════════════════
# HAPPY PATH
# ═════════════════════════════════════════════════════════════════════════

class TestApprovalPath:
    def test_new_record_starts_at_first_step(self, capa_process, record):
        first = capa_process["workflow_steps"][0]
        assert record["current_status"] == "draft"
        assert record["current_step_id"] == first["id"]
        assert record["current_step_name"] == "Initial Review"
        assert record["workflow"]["state"] == "active"
        assert record["workflow"]["can_approve"] is True
        assert record["workflow"]["next_step"]["step_name"] == "QA Final Approval"

    def test_creation_writes_no_history(self, client, record):
        res = client.get(f"/api/v1/records/{record['id']}/history")
        assert res.status_code == 200
        assert res.get_json()["total"] == 0

    def test_approve_all_steps(self, client, capa_process, record):
        first, second = capa_process["workflow_steps"]

        res = _act(client, record["id"], "approve")
        assert res.status_code == 200
        data = res.get_json()
        assert data["previous_status"] == "draft"
        assert data["new_status"] == "in_progress"
        assert data["from_step"]["id"] == first["id"]
        assert data["to_step"]["id"] == second["id"]
        assert data["history_recorded"] is True
        assert data["warnings"] == []

        res = _act(client, record["id"], "approve", user="qa-lead")
        data = res.get_json()
        assert data["new_status"] == "approved"
        assert data["to_step"] is None
        assert data["record"]["current_step_id"] is None

        history = client.get(f"/api/v1/records/{record['id']}/history").get_json()
        assert history["total"] == 2
        first_row, second_row = history["items"]
        assert first_row["action"] == "approve"
        assert first_row["from_step_name"] == "Initial Review"
        assert first_row["to_step_name"] == "QA Final Approval"
        assert first_row["performed_by"] == "reviewer-1"
        assert second_row["to_step_id"] is None
        assert second_row["performed_by"] == "qa-lead"

    def test_workflow_state_endpoint(self, client, record):
        _act(client, record["id"], "approve")
        res = client.get(f"/api/v1/records/{record['id']}/workflow")
        assert res.status_code == 200
        data = res.get_json()
        assert data["status"] == "in_progress"
        assert data["current_step"]["step_name"] == "QA Final Approval"
        assert data["next_step"] is None

    def test_step_order_gaps_are_followed(self, client, capa_process, record):
        client.post(f"/api/v1/processes/{capa_process['id']}/steps", json={
            "step_name": "Effectiveness Check", "step_order": 10,
        })
        _act(client, record["id"], "approve")
        data = _act(client, record["id"], "approve").get_json()
        assert data["new_status"] == "in_progress"
        assert data["to_step"]["step_name"] == "Effectiveness Check"


# ═════════════════════════════════════════════════════════════════════════
# REJECTION
# ═════════════════════════════════════════════════════════════════════════

class TestRejection:
    def test_reject_requires_comment(self, client, record):
        for comments in (None, "", "   "):
            res = _act(client, record["id"], "reject", comments=comments)
            assert res.status_code == 422
            assert "comments" in res.get_json()["details"]

        res = client.get(f"/api/v1/records/{record['id']}")
        assert res.get_json()["current_status"] == "draft"

    def test_reject_is_terminal(self, client, record):
        res = _act(client, record["id"], "reject", comments="Insufficient root cause")
        assert res.status_code == 200
        data = res.get_json()
        assert data["new_status"] == "rejected"
        assert data["record"]["current_step_id"] is None

        history = client.get(f"/api/v1/records/{record['id']}/history").get_json()["items"]
        assert history[0]["comments"] == "Insufficient root cause"
        assert history[0]["to_step_id"] is None

        res = _act(client, record["id"], "approve")
        assert res.status_code == 409
        body = res.get_json()
        assert body["code"] == "ERR_WORKFLOW_COMPLETE"
        assert body["details"]["current_status"] == "rejected"

    def test_second_reject_refused_without_history(self, client, record):
        _act(client, record["id"], "reject", comments="Insufficient root cause")

        res = _act(client, record["id"], "reject", comments="Again")
        assert res.status_code == 409
        assert res.get_json()["code"] == "ERR_WORKFLOW_COMPLETE"
        assert WorkflowHistory.query.filter_by(record_id=record["id"]).count() == 1

    def test_reject_at_last_step(self, client, capa_process, record):
        second = capa_process["workflow_steps"][1]
        _act(client, record["id"], "approve")

        res = _act(client, record["id"], "reject", comments="Evidence incomplete")
        assert res.status_code == 200
        data = res.get_json()
        assert data["from_step"]["id"] == second["id"]
        assert data["new_status"] == "rejected"
        assert data["record"]["current_step_id"] is None

        history = client.get(f"/api/v1/records/{record['id']}/history").get_json()["items"]
        assert [h["action"] for h in history] == ["approve", "reject"]
        assert history[1]["from_step_name"] == "QA Final Approval"
        assert history[1]["comments"] == "Evidence incomplete"

        assert _act(client, record["id"], "approve").status_code == 409
        assert WorkflowHistory.query.filter_by(record_id=record["id"]).count() == 2


# ═════════════════════════════════════════════════════════════════════════
# REFUSALS
# ═════════════════════════════════════════════════════════════════════════

class TestRefusals:
    def test_approved_record_refuses_actions(self, client, record):
        _act(client, record["id"], "approve")
        _act(client, record["id"], "approve")
        res = _act(client, record["id"], "reject", comments="late")
        assert res.status_code == 409
        assert res.get_json()["code"] == "ERR_WORKFLOW_COMPLETE"

        assert _act(client, record["id"], "approve").status_code == 409
        assert WorkflowHistory.query.filter_by(record_id=record["id"]).count() == 2

    def test_process_without_steps(self, client, investigation_process):
        res = client.post(
            f"/api/v1/processes/{investigation_process['id']}/records",
            json={"record_title": "Look into it"},
        )
        assert res.status_code == 201
        rec = res.get_json()["record"]
        assert rec["current_status"] == "draft"
        assert rec["current_step_id"] is None
        assert rec["workflow"]["state"] == "no_workflow"

        res = _act(client, rec["id"], "approve")
        assert res.status_code == 409
        assert res.get_json()["code"] == "ERR_NO_ACTIVE_WORKFLOW"

    def test_step_disallows_reject(self, client, capa_process, record):
        step_id = capa_process["workflow_steps"][0]["id"]
        client.put(f"/api/v1/steps/{step_id}", json={"can_reject": False})

        res = _act(client, record["id"], "reject", comments="no")
        assert res.status_code == 409
        assert res.get_json()["code"] == "ERR_ACTION_NOT_PERMITTED"

    def test_step_disallows_approve(self, client, capa_process, record):
        step_id = capa_process["workflow_steps"][0]["id"]
        client.put(f"/api/v1/steps/{step_id}", json={"can_approve": False})

        res = _act(client, record["id"], "approve")
        assert res.status_code == 409
        assert res.get_json()["code"] == "ERR_ACTION_NOT_PERMITTED"

    def test_unknown_action(self, client, record):
        res = _act(client, record["id"], "escalate")
        assert res.status_code == 422

    def test_missing_action(self, client, record):
        res = client.post(f"/api/v1/records/{record['id']}/workflow", json={})
        assert res.status_code == 400

    def test_unknown_record(self, client):
        res = _act(client, 9999, "approve")
        assert res.status_code == 404


# ═════════════════════════════════════════════════════════════════════════
# BEST-EFFORT HISTORY
# ═════════════════════════════════════════════════════════════════════════

class TestHistoryFailure:
    def test_status_survives_history_failure(self, client, record, monkeypatch):
        def _broken_history(**kwargs):
            kwargs["performed_by"] = None  # NOT NULL violation at commit
            return WorkflowHistory(**kwargs)

        monkeypatch.setattr(workflow_engine, "WorkflowHistory", _broken_history)

        res = _act(client, record["id"], "approve")
        assert res.status_code == 200
        data = res.get_json()
        assert data["new_status"] == "in_progress"
        assert data["history_recorded"] is False
        assert data["warnings"] == ["Failed to save workflow history"]

        stored = db.session.get(ProcessRecord, record["id"])
        assert stored.current_status == "in_progress"
        assert WorkflowHistory.query.filter_by(record_id=record["id"]).count() == 0


# ═════════════════════════════════════════════════════════════════════════
# SERVICE LEVEL
# ═════════════════════════════════════════════════════════════════════════

class TestNavigation:
    def test_first_and_next_step(self, capa_process):
        first = workflow_engine.first_step(capa_process["id"])
        assert first.step_name == "Initial Review"
        second = workflow_engine.next_step(first)
        assert second.step_name == "QA Final Approval"
        assert workflow_engine.next_step(second) is None

    def test_initial_state_without_steps(self, investigation_process):
        assert workflow_engine.initial_state(investigation_process["id"]) == ("draft", None)

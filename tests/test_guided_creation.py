"""
Guided creation tests.

Tests cover:
  - Stage sequence with and without the tasks stage
  - Completion predicates gating advance (title, required fields)
  - Identifier generated on entering basic_info, unique across open sessions,
    and kept on commit
  - Discovery pre-fill of title and recognised fields
  - Commit: record + values + pending link, single use
  - Source link auto-resolution on commit
"""
from datetime import date

import pytest

from qpd.models import db
from qpd.models.record import ProcessRecord, RecordFieldValue, RecordLink
from qpd.services import guided_creation, record_service


def _start(client, process_id, **payload):
    res = client.post(f"/api/v1/processes/{process_id}/guided-sessions", json=payload)
    assert res.status_code == 201, res.get_json()
    return res.get_json()


def _next(client, sid):
    return client.post(f"/api/v1/guided-sessions/{sid}/next")


def _patch(client, sid, payload):
    return client.patch(f"/api/v1/guided-sessions/{sid}", json=payload)


def _walk_to_review(client, sid, title="Deviation in line B", values=None):
    """Advance a fresh session to review, filling what each stage needs."""
    assert _next(client, sid).status_code == 200            # → basic_info
    assert _patch(client, sid, {"record_title": title}).status_code == 200
    assert _next(client, sid).status_code == 200            # → detailed_form
    if values:
        assert _patch(client, sid, {"values": values}).status_code == 200
    state = None
    while True:
        res = _next(client, sid)
        assert res.status_code == 200, res.get_json()
        state = res.get_json()
        if state["current_stage"] == "review":
            return state


# ═════════════════════════════════════════════════════════════════════════
# STAGES
# ═════════════════════════════════════════════════════════════════════════

class TestStages:
    def test_start_on_overview(self, client, capa_process):
        state = _start(client, capa_process["id"])
        assert state["current_stage"] == "overview"
        assert [s["id"] for s in state["stages"]] == [
            "overview", "basic_info", "detailed_form", "tasks", "review",
        ]
        assert state["can_go_back"] is False
        assert state["can_advance"] is True
        assert state["can_commit"] is False
        assert state["record_identifier"] is None
        assert state["missing_required"] == ["description"]

    def test_tasks_stage_absent_when_disabled(self, client, capa_process):
        client.put(f"/api/v1/processes/{capa_process['id']}",
                   json={"sub_entity_config": {"tasks_enabled": False}})
        state = _start(client, capa_process["id"])
        assert "tasks" not in [s["id"] for s in state["stages"]]

        res = _patch(client, state["id"], {"tasks": [{"title": "Retrain staff"}]})
        assert res.status_code == 422

    def test_identifier_generated_on_basic_info(self, client, capa_process):
        sid = _start(client, capa_process["id"])["id"]
        state = _next(client, sid).get_json()
        assert state["current_stage"] == "basic_info"
        identifier = state["record_identifier"]
        assert identifier.startswith("CAPA-")

        client.post(f"/api/v1/guided-sessions/{sid}/previous")
        state = _next(client, sid).get_json()
        assert state["record_identifier"] == identifier

    def test_open_sessions_never_share_an_identifier(self, client, capa_process,
                                                     field_ids, monkeypatch):
        draws = iter("AAAA" + "AAAA" + "BBBB")
        monkeypatch.setattr(record_service.secrets, "choice", lambda alphabet: next(draws))

        first = _start(client, capa_process["id"])["id"]
        second = _start(client, capa_process["id"])["id"]
        assert _next(client, first).get_json()["record_identifier"] == "CAPA-AAAA"
        assert _next(client, second).get_json()["record_identifier"] == "CAPA-BBBB"
        monkeypatch.undo()

        values = {str(field_ids["description"]): "x"}
        for sid in (first, second):
            client.post(f"/api/v1/guided-sessions/{sid}/previous")
            _walk_to_review(client, sid, values=values)
        for sid in (first, second):
            assert client.post(f"/api/v1/guided-sessions/{sid}/commit").status_code == 201
        assert sorted(r.record_identifier for r in ProcessRecord.query) == [
            "CAPA-AAAA", "CAPA-BBBB",
        ]

    def test_process_without_fields_completes_detailed_form(self, client,
                                                             investigation_process):
        sid = _start(client, investigation_process["id"])["id"]
        _next(client, sid)
        _patch(client, sid, {"record_title": "Root cause"})
        state = _next(client, sid).get_json()
        assert state["current_stage"] == "detailed_form"
        assert state["fields"] == []
        stages = {s["id"]: s for s in state["stages"]}
        assert stages["detailed_form"]["complete"] is True

        res = _next(client, sid)
        assert res.status_code == 200
        assert res.get_json()["current_stage"] == "tasks"

    def test_title_required_to_leave_basic_info(self, client, capa_process):
        sid = _start(client, capa_process["id"])["id"]
        _next(client, sid)
        _patch(client, sid, {"record_title": "   "})

        res = _next(client, sid)
        assert res.status_code == 409
        body = res.get_json()
        assert body["code"] == "ERR_STAGE_INCOMPLETE"
        assert body["details"]["stage"] == "basic_info"

    def test_required_fields_gate_detailed_form(self, client, capa_process, field_ids):
        sid = _start(client, capa_process["id"])["id"]
        _next(client, sid)
        _patch(client, sid, {"record_title": "Leak"})
        _next(client, sid)

        res = _next(client, sid)
        assert res.status_code == 409
        assert res.get_json()["details"]["missing_fields"] == ["description"]

        _patch(client, sid, {"values": {str(field_ids["description"]): "Leak in tank 4"}})
        state = _next(client, sid).get_json()
        assert state["current_stage"] == "tasks"

    def test_cannot_go_back_from_first_stage(self, client, capa_process):
        sid = _start(client, capa_process["id"])["id"]
        res = client.post(f"/api/v1/guided-sessions/{sid}/previous")
        assert res.status_code == 422

    def test_review_is_last(self, client, capa_process, field_ids):
        sid = _start(client, capa_process["id"])["id"]
        state = _walk_to_review(client, sid, values={str(field_ids["description"]): "x"})
        assert state["can_commit"] is True
        assert state["can_advance"] is False
        assert _next(client, sid).status_code == 422

    def test_invalid_value_rejected(self, client, capa_process, field_ids):
        sid = _start(client, capa_process["id"])["id"]
        res = _patch(client, sid, {"values": {str(field_ids["severity"]): "Enormous"}})
        assert res.status_code == 422

    def test_fields_carry_guidance(self, client, capa_process):
        state = _start(client, capa_process["id"])
        guidance = {f["field_name"]: f["guidance"] for f in state["fields"]}
        assert guidance["description"].startswith("Describe the issue in detail")
        assert guidance["target_completion_date"].startswith("Set realistic")

    def test_unknown_process(self, client):
        res = client.post("/api/v1/processes/9999/guided-sessions", json={})
        assert res.status_code == 404

    def test_unknown_session(self, client):
        assert client.get("/api/v1/guided-sessions/9999").status_code == 404


class TestTasks:
    def test_tasks_are_cleaned(self, client, capa_process):
        sid = _start(client, capa_process["id"])["id"]
        res = _patch(client, sid, {"tasks": [
            {"title": "  Retrain staff  ", "priority": "high", "assigned_to": "u1"},
            {"title": "Update SOP"},
        ]})
        assert res.status_code == 200
        tasks = res.get_json()["tasks"]
        assert tasks[0]["title"] == "Retrain staff"
        assert tasks[0]["priority"] == "high"
        assert tasks[1]["priority"] == "medium"

    def test_task_without_title(self, client, capa_process):
        sid = _start(client, capa_process["id"])["id"]
        res = _patch(client, sid, {"tasks": [{"priority": "low"}]})
        assert res.status_code == 422
        assert "tasks[0]" in res.get_json()["details"]


# ═════════════════════════════════════════════════════════════════════════
# DISCOVERY PRE-FILL
# ═════════════════════════════════════════════════════════════════════════

class TestDiscoveryPrefill:
    ANSWERS = {
        "situation_type": "quality_issue",
        "impact_severity": "regulatory_compliance",
        "action_type": "both",
        "urgency": "immediate",
    }

    def test_prefill(self, capa_process, field_ids):
        state = guided_creation.start_session(
            capa_process["id"], created_by="u1",
            discovery_answers=self.ANSWERS, today=date(2026, 1, 1),
        )
        assert state["record_title"] == "Quality issue or deviation detected"
        values = state["values"]
        assert values[str(field_ids["severity"])] == "High"
        assert values[str(field_ids["target_completion_date"])] == "2026-01-08"
        assert values[str(field_ids["description"])] == (
            "Situation: Quality issue or deviation detected. "
            "Impact: Regulatory/compliance concern. "
            "Action needed: Both corrective and preventive actions."
        )
        assert state["discovery"] == self.ANSWERS
        assert state["missing_required"] == []

    def test_invalid_answers(self, client, capa_process):
        res = client.post(f"/api/v1/processes/{capa_process['id']}/guided-sessions",
                          json={"discovery": {"urgency": "yesterday"}})
        assert res.status_code == 422


# ═════════════════════════════════════════════════════════════════════════
# COMMIT
# ═════════════════════════════════════════════════════════════════════════

class TestCommit:
    def test_commit_creates_record(self, client, capa_process, field_ids,
                                   investigation_process):
        sid = _start(client, capa_process["id"])["id"]
        _patch(client, sid, {"linked_process_id": investigation_process["id"]})
        review = _walk_to_review(client, sid, values={
            str(field_ids["description"]): "Leak in tank 4",
            str(field_ids["severity"]): "Critical",
        })

        res = client.post(f"/api/v1/guided-sessions/{sid}/commit")
        assert res.status_code == 201
        body = res.get_json()
        assert body["warnings"] == []
        rec = body["record"]
        assert rec["record_identifier"] == review["record_identifier"]
        assert rec["record_title"] == "Deviation in line B"
        assert rec["current_status"] == "draft"
        assert rec["current_step_name"] == "Initial Review"
        assert body["session"]["committed_record_id"] == rec["id"]
        assert body["session"]["can_commit"] is False

        stored = {v.field_id: v.field_value
                  for v in RecordFieldValue.query.filter_by(record_id=rec["id"])}
        assert stored == {
            field_ids["description"]: "Leak in tank 4",
            field_ids["severity"]: "Critical",
        }
        link = RecordLink.query.filter_by(source_record_id=rec["id"]).one()
        assert link.target_process_id == investigation_process["id"]
        assert link.is_pending

    def test_commit_only_from_review(self, client, capa_process):
        sid = _start(client, capa_process["id"])["id"]
        res = client.post(f"/api/v1/guided-sessions/{sid}/commit")
        assert res.status_code == 409
        assert ProcessRecord.query.count() == 0

    def test_commit_rechecks_required_fields(self, client, capa_process, field_ids):
        sid = _start(client, capa_process["id"])["id"]
        _walk_to_review(client, sid, values={str(field_ids["description"]): "x"})
        client.put(f"/api/v1/fields/{field_ids['severity']}", json={"is_required": True})

        res = client.post(f"/api/v1/guided-sessions/{sid}/commit")
        assert res.status_code == 409
        assert res.get_json()["details"]["missing_fields"] == ["severity"]

    def test_commit_once(self, client, capa_process, field_ids):
        sid = _start(client, capa_process["id"])["id"]
        _walk_to_review(client, sid, values={str(field_ids["description"]): "x"})
        assert client.post(f"/api/v1/guided-sessions/{sid}/commit").status_code == 201

        assert client.post(f"/api/v1/guided-sessions/{sid}/commit").status_code == 409
        assert _patch(client, sid, {"record_title": "again"}).status_code == 409
        assert ProcessRecord.query.count() == 1

    def test_commit_resolves_source_link(self, client, make_record, investigation_process):
        source = make_record(linked_process_id=investigation_process["id"])["record"]
        link_id = client.get(f"/api/v1/records/{source['id']}/links").get_json()["outgoing"][0]["id"]

        sid = _start(client, investigation_process["id"], source_link_id=link_id)["id"]
        _walk_to_review(client, sid, title="Why did tank 4 leak?")
        body = client.post(f"/api/v1/guided-sessions/{sid}/commit").get_json()
        assert body["warnings"] == []

        link = db.session.get(RecordLink, link_id)
        assert link.target_record_id == body["record"]["id"]
        assert link.resolved_at is not None

    def test_source_link_for_other_process(self, client, make_record, capa_process,
                                           investigation_process):
        source = make_record(linked_process_id=investigation_process["id"])["record"]
        link_id = client.get(f"/api/v1/records/{source['id']}/links").get_json()["outgoing"][0]["id"]
        res = client.post(f"/api/v1/processes/{capa_process['id']}/guided-sessions",
                          json={"source_link_id": link_id})
        assert res.status_code == 422

    @pytest.mark.parametrize("bad", ["7", 1.5, True])
    def test_source_link_must_be_integer(self, client, capa_process, bad):
        res = client.post(f"/api/v1/processes/{capa_process['id']}/guided-sessions",
                          json={"source_link_id": bad})
        assert res.status_code == 400

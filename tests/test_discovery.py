"""
Discovery questionnaire tests: question catalogue, answer validation,
process recommendation and field pre-fill mapping.
"""
from datetime import date

import pytest

from qpd.core.exceptions import ValidationError
from qpd.models.process import ProcessField
from qpd.services import discovery


class TestQuestions:
    def test_question_endpoint(self, client):
        res = client.get("/api/v1/discovery/questions")
        assert res.status_code == 200
        questions = res.get_json()["questions"]
        assert [q["id"] for q in questions] == [
            "situation_type", "impact_severity", "action_type", "urgency",
        ]
        assert len(questions[0]["options"]) == 5
        assert len(questions[1]["options"]) == 6

    def test_validate_answers(self):
        assert discovery.validate_answers(None) == {}
        assert discovery.validate_answers({"urgency": "immediate"}) == {"urgency": "immediate"}
        with pytest.raises(ValidationError) as exc:
            discovery.validate_answers({"mood": "happy", "urgency": "soon"})
        assert set(exc.value.details) == {"mood", "urgency"}


class TestRecommendation:
    def test_recommends_capa_process(self, client, investigation_process, capa_process):
        res = client.post("/api/v1/discovery/recommendation", json={
            "answers": {"situation_type": "customer_complaint"},
        })
        assert res.status_code == 200
        data = res.get_json()
        assert data["process"]["id"] == capa_process["id"]
        assert "strongly recommended" in data["recommendation"]

    def test_falls_back_to_first_active_process(self, client, investigation_process):
        data = client.post("/api/v1/discovery/recommendation", json={"answers": {}}).get_json()
        assert data["process"]["name"] == "Investigation"

    def test_no_processes(self, client):
        data = client.post("/api/v1/discovery/recommendation", json={"answers": {}}).get_json()
        assert data["process"] is None

    def test_answers_required(self, client):
        res = client.post("/api/v1/discovery/recommendation", json={})
        assert res.status_code == 400

    @pytest.mark.parametrize("answers,fragment", [
        ({"situation_type": "quality_issue"}, "strongly recommended"),
        ({"situation_type": "audit_finding", "action_type": "corrective"},
         "immediate correction"),
        ({"situation_type": "risk_assessment", "action_type": "unsure"},
         "structured framework"),
    ])
    def test_recommendation_text(self, answers, fragment):
        assert fragment in discovery.recommendation_text(answers)


class TestPrefill:
    def _fields(self):
        return [
            ProcessField(id=1, field_name="Issue_Description", field_type="textarea"),
            ProcessField(id=2, field_name="severity_level", field_type="select",
                         field_options='["critical", "major", "minor"]'),
            ProcessField(id=3, field_name="due_date", field_type="date"),
            ProcessField(id=4, field_name="owner", field_type="text"),
        ]

    def test_prefill_maps_known_fields(self):
        answers = {"impact_severity": "product_safety", "urgency": "next_month",
                   "situation_type": "audit_finding"}
        values = discovery.prefill_values(self._fields(), answers, today=date(2026, 3, 1))
        assert values[1] == "Situation: Internal audit finding. Impact: Affects product quality/safety."
        assert values[2] == "critical"
        assert values[3] == "2026-03-31"
        assert 4 not in values

    def test_severity_without_matching_option(self):
        answers = {"impact_severity": "process_efficiency"}
        fields = [ProcessField(id=2, field_name="severity", field_type="select",
                               field_options='["Major", "Minor"]')]
        assert discovery.prefill_values(fields, answers) == {}

    def test_title_from_situation(self):
        assert discovery.prefill_title({"situation_type": "risk_assessment"}) == \
            "Risk assessment follow-up"
        assert discovery.prefill_title({}) == ""

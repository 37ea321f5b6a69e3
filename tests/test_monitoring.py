"""Tests for monitoring and plumbing: health checks, request timing,
error envelopes, logging formatters, change signals and configuration."""

import json
import logging

import pytest
from flask import g

from qpd.config import ProductionConfig
from qpd.middleware.logging_config import JSONFormatter, ReadableFormatter, RequestContextFilter
from qpd.services.events import emit, process_changed, record_changed


# ── Health Endpoints ────────────────────────────────────────────────────


class TestHealthEndpoints:
    """Health check endpoint tests."""

    def test_health_basic(self, client, capa_process):
        """GET /api/v1/health reports every table with its row count."""
        res = client.get("/api/v1/health")
        assert res.status_code == 200
        data = res.get_json()
        assert data["status"] == "healthy"
        assert data["tables"]["processes"] == {"status": "ok", "count": 1}
        assert data["tables"]["workflow_steps"]["count"] == 2

    def test_health_ready(self, client):
        res = client.get("/api/v1/health/ready")
        assert res.status_code == 200
        assert res.get_json()["status"] == "ok"

    def test_health_live(self, client):
        res = client.get("/api/v1/health/live")
        assert res.status_code == 200
        data = res.get_json()
        assert data["checks"]["database"]["status"] == "ok"
        assert data["checks"]["app"]["testing"] is True


# ── Request Timing ──────────────────────────────────────────────────────


class TestRequestTiming:
    def test_duration_header_present(self, client):
        """Every response should have X-Request-Duration-Ms header."""
        res = client.get("/api/v1/processes")
        assert "X-Request-Duration-Ms" in res.headers
        assert float(res.headers["X-Request-Duration-Ms"]) >= 0

    def test_custom_request_id_passthrough(self, client):
        res = client.get("/api/v1/health", headers={"X-Request-ID": "test-123"})
        assert res.headers["X-Request-ID"] == "test-123"


# ── Error envelopes ─────────────────────────────────────────────────────


class TestErrorResponses:
    def test_unknown_route(self, client):
        res = client.get("/api/v1/nothing-here")
        assert res.status_code == 404
        assert res.get_json()["code"] == "ERR_NOT_FOUND"

    def test_method_not_allowed(self, client):
        res = client.patch("/api/v1/processes", json={})
        assert res.status_code == 405

    def test_non_json_body(self, client):
        res = client.post("/api/v1/processes", data="name=CAPA",
                          content_type="application/x-www-form-urlencoded")
        assert res.status_code == 415


# ── Logging ─────────────────────────────────────────────────────────────


class TestJSONFormatter:
    def test_includes_extra_keys(self):
        record = logging.LogRecord(
            "qpd.services.workflow_engine", logging.INFO, __file__, 10,
            "Workflow %s record=%s", ("approve", 7), None,
        )
        record.record_id = 7
        record.action = "approve"
        entry = json.loads(JSONFormatter().format(record))
        assert entry["message"] == "Workflow approve record=7"
        assert entry["record_id"] == 7
        assert entry["action"] == "approve"
        assert "process_id" not in entry


class TestReadableFormatter:
    def test_context_tag(self):
        record = logging.LogRecord(
            "qpd.services.record_service", logging.INFO, __file__, 10,
            "ProcessRecord created", (), None,
        )
        record.record_id = 7
        record.process_id = 3
        line = ReadableFormatter().format(record)
        assert line.endswith("ProcessRecord created [process=3 record=7]")

    def test_plain_line_without_context(self):
        record = logging.LogRecord("qpd", logging.WARNING, __file__, 1, "hello", (), None)
        assert ReadableFormatter().format(record).endswith("qpd: hello")


class TestRequestContextFilter:
    def test_stamps_request_id_and_user(self, app):
        record = logging.LogRecord("qpd", logging.INFO, __file__, 1, "x", (), None)
        with app.test_request_context(headers={"X-User-Id": "qa-lead"}):
            g.request_id = "req-42"
            assert RequestContextFilter().filter(record) is True
        assert record.request_id == "req-42"
        assert record.user_id == "qa-lead"

    def test_outside_request(self):
        record = logging.LogRecord("qpd", logging.INFO, __file__, 1, "x", (), None)
        RequestContextFilter().filter(record)
        assert not hasattr(record, "request_id")


# ── Change signals ──────────────────────────────────────────────────────


class TestSignals:
    def test_process_changes_are_emitted(self, client):
        seen = []

        def _receiver(sender, **extra):
            seen.append((sender, extra["change"]))

        process_changed.connect(_receiver)
        try:
            pid = client.post("/api/v1/processes", json={"name": "CAPA"}).get_json()["id"]
            client.delete(f"/api/v1/processes/{pid}")
        finally:
            process_changed.disconnect(_receiver)
        assert seen == [(pid, "created"), (pid, "deactivated")]

    def test_failing_receiver_is_logged(self, caplog):
        def _broken(sender, **extra):
            raise RuntimeError("boom")

        record_changed.connect(_broken)
        try:
            with caplog.at_level(logging.ERROR, logger="qpd.services.events"):
                emit(record_changed, 1, action="approve")
        finally:
            record_changed.disconnect(_broken)
        assert "record-changed" in caplog.text


# ── Configuration ───────────────────────────────────────────────────────


class TestConfig:
    def test_production_requires_database_url(self, monkeypatch):
        monkeypatch.setattr(ProductionConfig, "SQLALCHEMY_DATABASE_URI", None)
        with pytest.raises(RuntimeError):
            ProductionConfig()

    def test_testing_defaults(self, app):
        assert app.config["TESTING"] is True
        assert app.config["DEFAULT_USER_ID"] == "test-user"
        assert app.config["RECORD_ID_DEFAULT_PREFIX"] == "REC"

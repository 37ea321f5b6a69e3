"""
Shared pytest fixtures for the Quality Process Designer test suite.

Provides:
    - app: Flask application (session-scoped)
    - _setup_db: Database table creation/teardown (session-scoped)
    - session: Per-test DB cleanup w/ rollback + recreate (autouse)
    - client: Flask test client (function-scoped)
    - capa_process: CAPA process with three fields and two workflow steps
    - investigation_process: Follow-on process used as a link target
    - make_record: factory that quick-creates a record via the API
"""

import pytest

from qpd import create_app
from qpd.models import db as _db


# ── App & DB fixtures ────────────────────────────────────────────────────


@pytest.fixture(scope="session")
def app():
    """Create the Flask application once per test session."""
    application = create_app("testing")
    return application


@pytest.fixture(scope="session")
def _setup_db(app):
    """Create all tables at session start, drop at end."""
    with app.app_context():
        _db.create_all()
    yield
    with app.app_context():
        _db.drop_all()


@pytest.fixture(autouse=True)
def session(app, _setup_db):
    """Per-test: open app context, rollback after test, recreate tables."""
    with app.app_context():
        yield
        _db.session.rollback()
        _db.drop_all()
        _db.create_all()


@pytest.fixture()
def client(app):
    """Flask test client."""
    return app.test_client()


# ── Convenience fixtures ─────────────────────────────────────────────────


def _post(client, url, payload):
    res = client.post(url, json=payload)
    assert res.status_code == 201, res.get_json()
    return res.get_json()


@pytest.fixture()
def capa_process(client):
    """Create a CAPA process via the API and return its detail payload.

    Fields (display order): description (textarea, required),
    severity (select Critical/High/Medium/Low), target_completion_date (date).
    Steps: 1 Initial Review (quality_reviewer), 2 QA Final Approval (qa_final_approver).
    """
    proc = _post(client, "/api/v1/processes", {
        "name": "CAPA",
        "description": "Corrective and Preventive Action",
        "tag": "Quality",
        "record_id_prefix": "capa",
    })
    pid = proc["id"]
    _post(client, f"/api/v1/processes/{pid}/fields", {
        "field_name": "description",
        "field_label": "Issue Description",
        "field_type": "textarea",
        "is_required": True,
    })
    _post(client, f"/api/v1/processes/{pid}/fields", {
        "field_name": "severity",
        "field_label": "Severity",
        "field_type": "select",
        "field_options": ["Critical", "High", "Medium", "Low"],
    })
    _post(client, f"/api/v1/processes/{pid}/fields", {
        "field_name": "target_completion_date",
        "field_label": "Target Completion Date",
        "field_type": "date",
    })
    _post(client, f"/api/v1/processes/{pid}/steps", {
        "step_name": "Initial Review",
        "required_role": "quality_reviewer",
    })
    _post(client, f"/api/v1/processes/{pid}/steps", {
        "step_name": "QA Final Approval",
        "required_role": "qa_final_approver",
    })
    res = client.get(f"/api/v1/processes/{pid}")
    assert res.status_code == 200
    return res.get_json()


@pytest.fixture()
def investigation_process(client):
    """A second, step-less process that CAPA records can trigger."""
    return _post(client, "/api/v1/processes", {
        "name": "Investigation",
        "tag": "Quality",
        "record_id_prefix": "INV",
    })


@pytest.fixture()
def field_ids(capa_process):
    """Map field_name → field id for the CAPA process."""
    return {f["field_name"]: f["id"] for f in capa_process["fields"]}


@pytest.fixture()
def make_record(client, capa_process, field_ids):
    """Factory: quick-create a CAPA record and return the response body."""

    def _make(title="Deviation in line B", values=None, **extra):
        if values is None:
            values = {str(field_ids["description"]): "Temperature out of range"}
        payload = {"record_title": title, "values": values, **extra}
        return _post(client, f"/api/v1/processes/{capa_process['id']}/records", payload)

    return _make

"""
Field engine unit tests: ordering, rendering, type checks, requiredness
and value persistence.
"""
import pytest

from qpd.core.exceptions import NotFoundError, ValidationError
from qpd.models import db
from qpd.models.process import ProcessField
from qpd.services import field_engine


def _field(fid, name, ftype="text", required=False, order=0, options=None):
    return ProcessField(
        id=fid,
        process_id=1,
        field_name=name,
        field_label=name.replace("_", " ").title(),
        field_type=ftype,
        is_required=required,
        display_order=order,
        field_options=options,
    )


@pytest.fixture()
def fields():
    return [
        _field(3, "target_date", "date", order=2),
        _field(1, "description", "textarea", required=True, order=0),
        _field(2, "severity", "select", order=1, options='["High", "Low"]'),
        _field(4, "reviewer_email", "email", order=2),
    ]


class TestRendering:
    def test_sort_by_display_order_then_id(self, fields):
        ordered = field_engine.sort_fields(fields)
        assert [f.id for f in ordered] == [1, 2, 3, 4]

    def test_render_with_values(self, fields):
        rendered = field_engine.render_fields(fields, {1: "Leak", "2": "High"})
        assert rendered[0]["value"] == "Leak"
        assert rendered[0]["required"] is True
        assert rendered[1]["value"] == "High"
        assert rendered[1]["options"] == ["High", "Low"]
        assert rendered[2]["value"] == ""
        assert rendered[2]["options"] == []
        assert rendered[3]["input"] == "email"

    def test_render_without_values(self, fields):
        assert all(r["value"] == "" for r in field_engine.render_fields(fields))


class TestValidation:
    @pytest.mark.parametrize("ftype,value", [
        ("number", "12.5"),
        ("number", "-3"),
        ("date", "2026-01-31"),
        ("checkbox", "true"),
        ("checkbox", "false"),
        ("email", "qa.lead@acme-pharma.com"),
        ("url", "https://acme-pharma.com/sop/12"),
        ("text", "anything"),
        ("number", ""),
        ("date", "   "),
    ])
    def test_valid_values(self, ftype, value):
        assert field_engine.validate_value(_field(1, "f", ftype), value) is None

    @pytest.mark.parametrize("ftype,value", [
        ("number", "twelve"),
        ("date", "31/01/2026"),
        ("checkbox", "yes"),
        ("email", "not-an-email"),
        ("url", "ftp://files"),
    ])
    def test_invalid_values(self, ftype, value):
        assert field_engine.validate_value(_field(1, "f", ftype), value)

    def test_select_must_be_declared_option(self):
        field = _field(1, "severity", "select", options='["High", "Low"]')
        assert field_engine.validate_value(field, "High") is None
        assert "High, Low" in field_engine.validate_value(field, "Medium")

    def test_whitespace_does_not_satisfy_required(self, fields):
        missing = field_engine.missing_required(fields, {"1": "   "})
        assert [f.field_name for f in missing] == ["description"]
        assert field_engine.missing_required(fields, {1: "Leak"}) == []

    def test_validate_values_collects_errors(self, fields):
        with pytest.raises(ValidationError) as exc:
            field_engine.validate_values(
                fields, {"2": "Medium", "3": "tomorrow", "99": "x"}, require_all=True,
            )
        details = exc.value.details
        assert set(details) == {"severity", "target_date", "99", "description"}
        assert details["description"] == "is required"

    def test_validate_values_passes(self, fields):
        field_engine.validate_values(fields, {"1": "Leak", "2": "Low"}, require_all=True)


class TestPersistence:
    def test_save_and_read_values(self, make_record, field_ids):
        from qpd.models.record import ProcessRecord

        record_id = make_record()["record"]["id"]
        record = db.session.get(ProcessRecord, record_id)
        field_engine.save_values(record, {
            str(field_ids["severity"]): "High",
            str(field_ids["description"]): "Updated text",
        })

        values = field_engine.get_values(record_id)
        assert values[field_ids["severity"]] == "High"
        assert values[field_ids["description"]] == "Updated text"
        assert field_engine.get_value(record_id, field_ids["target_completion_date"]) == ""

    def test_empty_value_removes_row(self, make_record, field_ids):
        from qpd.models.record import ProcessRecord, RecordFieldValue

        record_id = make_record(values={
            str(field_ids["description"]): "Leak",
            str(field_ids["severity"]): "Low",
        })["record"]["id"]
        record = db.session.get(ProcessRecord, record_id)
        field_engine.save_values(record, {str(field_ids["severity"]): ""})

        rows = RecordFieldValue.query.filter_by(record_id=record_id).all()
        assert [r.field_id for r in rows] == [field_ids["description"]]

    def test_repeated_writes_keep_one_row(self, make_record, field_ids):
        from qpd.models.record import ProcessRecord, RecordFieldValue

        record_id = make_record()["record"]["id"]
        record = db.session.get(ProcessRecord, record_id)
        severity = field_ids["severity"]
        field_engine.save_values(record, {str(severity): "High"})
        field_engine.save_values(record, {str(severity): "Low"})

        rows = RecordFieldValue.query.filter_by(record_id=record_id, field_id=severity)
        assert rows.count() == 1
        assert rows.one().field_value == "Low"

    def test_unknown_field_rejected(self, make_record):
        from qpd.models.record import ProcessRecord

        record = db.session.get(ProcessRecord, make_record()["record"]["id"])
        with pytest.raises(ValidationError):
            field_engine.stage_values(record, {"9999": "x"})

    def test_get_values_unknown_record(self):
        with pytest.raises(NotFoundError):
            field_engine.get_values(9999)

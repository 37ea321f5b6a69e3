"""
Dynamic Field Engine - typed form fields over string-valued storage.

Given the ProcessField definitions of a process, this module:
  - orders fields for rendering and validation (display_order ascending)
  - describes each field's input semantics for the client
  - validates raw string values against the field type at the API boundary
  - applies the required-field rule (present and non-blank after trimming)
  - upserts RecordFieldValue rows, one per (record, field)

Storage never interprets types: every value is kept as the string the
client sent.  Empty values are not stored; a field with no row reads as "".
"""

import logging
import re
from datetime import date

from email_validator import EmailNotValidError, validate_email

from qpd.core.exceptions import NotFoundError, ValidationError
from qpd.models import db
from qpd.models.process import ProcessField
from qpd.models.record import ProcessRecord, RecordFieldValue

logger = logging.getLogger(__name__)

CHECKBOX_VALUES = ("true", "false")

_URL_RE = re.compile(r"^https?://[^\s/$.?#][^\s]*$", re.IGNORECASE)


# ──────────────────────────────────────────────────────────────────────────────
# Ordering and rendering
# ──────────────────────────────────────────────────────────────────────────────

def sort_fields(fields) -> list[ProcessField]:
    """Return fields ordered by display_order (id breaks ties)."""
    return sorted(fields, key=lambda f: (f.display_order or 0, f.id or 0))


def _value_for(values: dict, field: ProcessField) -> str:
    """Look up a field's value in a mapping keyed by int or str field id."""
    if field.id in values:
        raw = values[field.id]
    else:
        raw = values.get(str(field.id))
    return "" if raw is None else str(raw)


def render_fields(fields, values: dict | None = None) -> list[dict]:
    """Describe fields in display order, each with its current value.

    Args:
        fields: ProcessField rows (any order).
        values: Known values keyed by field id (edit mode); missing → "".

    Returns:
        List of dicts: field_id, field_name, label, field_type, input,
        required, options, value.
    """
    values = values or {}
    rendered = []
    for field in sort_fields(fields):
        rendered.append({
            "field_id": field.id,
            "field_name": field.field_name,
            "label": field.field_label,
            "field_type": field.field_type,
            "input": field.field_type,
            "required": field.is_required,
            "options": field.options if field.field_type == "select" else [],
            "value": _value_for(values, field),
        })
    return rendered


# ──────────────────────────────────────────────────────────────────────────────
# Validation
# ──────────────────────────────────────────────────────────────────────────────

def is_satisfied(value) -> bool:
    """A required field is satisfied when its value is non-blank."""
    return value is not None and str(value).strip() != ""


def missing_required(fields, values: dict) -> list[ProcessField]:
    """Return required fields without a satisfying value, in display order."""
    return [
        f for f in sort_fields(fields)
        if f.is_required and not is_satisfied(_value_for(values, f))
    ]


def validate_value(field: ProcessField, value) -> str | None:
    """Check a raw value against the field type.

    Returns:
        None when the value fits, otherwise an error message.
        Empty values always fit; requiredness is checked separately.
    """
    if not is_satisfied(value):
        return None
    text = str(value).strip()
    ftype = field.field_type

    if ftype == "number":
        try:
            float(text)
        except ValueError:
            return "must be a number"
    elif ftype == "date":
        try:
            date.fromisoformat(text)
        except ValueError:
            return "must be an ISO date (YYYY-MM-DD)"
    elif ftype == "select":
        options = field.options
        if text not in options:
            return f"must be one of: {', '.join(options)}"
    elif ftype == "checkbox":
        if text not in CHECKBOX_VALUES:
            return "must be 'true' or 'false'"
    elif ftype == "email":
        try:
            validate_email(text, check_deliverability=False)
        except EmailNotValidError:
            return "must be an email address"
    elif ftype == "url":
        if not _URL_RE.match(text):
            return "must be an http(s) URL"
    return None


def validate_values(fields, values: dict, require_all: bool = False) -> None:
    """Validate a mapping of field id → value against the given fields.

    Args:
        fields: The ProcessField rows the values belong to.
        values: Mapping keyed by field id (int or str).
        require_all: Also enforce the required-field rule.

    Raises:
        ValidationError: with ``details`` keyed by field_name.
    """
    by_id = {f.id: f for f in fields}
    errors = {}

    for key, raw in values.items():
        field = by_id.get(_as_field_id(key))
        if field is None:
            errors[str(key)] = "unknown field for this process"
            continue
        problem = validate_value(field, raw)
        if problem:
            errors[field.field_name] = problem

    if require_all:
        for field in missing_required(fields, values):
            errors.setdefault(field.field_name, "is required")

    if errors:
        raise ValidationError("Invalid field values", details=errors)


def _as_field_id(key):
    try:
        return int(key)
    except (TypeError, ValueError):
        return None


# ──────────────────────────────────────────────────────────────────────────────
# Persistence
# ──────────────────────────────────────────────────────────────────────────────

def stage_values(record: ProcessRecord, values: dict) -> list[RecordFieldValue]:
    """Add upserts for ``values`` to the session without committing.

    Non-empty values are inserted or updated in place.  An empty value is
    not stored; if a row already exists for it, the row is removed so that
    "no row" keeps meaning "empty".

    Raises:
        ValidationError: if a key is not a field of the record's process.
    """
    fields = {f.id: f for f in record.process.fields}
    existing = {
        v.field_id: v
        for v in RecordFieldValue.query.filter_by(record_id=record.id).all()
    }

    written = []
    for key, raw in values.items():
        field_id = _as_field_id(key)
        if field_id not in fields:
            raise ValidationError(
                "Invalid field values",
                details={str(key): "unknown field for this process"},
            )
        value = "" if raw is None else str(raw)
        row = existing.get(field_id)

        if not is_satisfied(value):
            if row is not None:
                db.session.delete(row)
                del existing[field_id]
            continue

        if row is not None:
            row.field_value = value
        else:
            row = RecordFieldValue(record=record, field=fields[field_id], field_value=value)
            db.session.add(row)
            existing[field_id] = row
        written.append(row)
    return written


def save_values(record: ProcessRecord, values: dict) -> list[dict]:
    """Upsert field values for a record and commit.

    Returns:
        Serialized rows that now hold a value from ``values``.
    """
    rows = stage_values(record, values)
    db.session.commit()
    logger.info(
        "RecordFieldValues upserted record=%s count=%s", record.id, len(rows),
    )
    return [r.to_dict() for r in rows]


def get_value(record_id: int, field_id: int) -> str:
    """Return the stored value for (record, field), or "" if there is none."""
    row = RecordFieldValue.query.filter_by(record_id=record_id, field_id=field_id).first()
    if row is None or row.field_value is None:
        return ""
    return row.field_value


def get_values(record_id: int) -> dict[int, str]:
    """Return all stored values of a record keyed by field id."""
    if db.session.get(ProcessRecord, record_id) is None:
        raise NotFoundError(resource="ProcessRecord", resource_id=record_id)
    rows = RecordFieldValue.query.filter_by(record_id=record_id).all()
    return {r.field_id: r.field_value or "" for r in rows}

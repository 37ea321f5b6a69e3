"""
Record service layer - creation, reads and edits of ProcessRecords.

Creation follows a primary/secondary write policy:

  primary    the ProcessRecord row (status draft, first workflow step,
             generated identifier).  Failure aborts the request.
  secondary  field values and the optional pending RecordLink.  Each is
             committed on its own; a failure is logged, rolled back and
             returned in ``warnings`` while the record stays committed.

Status and current step are never edited here; see workflow_engine.
"""

import logging
import secrets
from datetime import datetime, timezone

from flask import current_app

from qpd.core.exceptions import ConflictError, NotFoundError, ValidationError
from qpd.models import db
from qpd.models.guided import GuidedSession
from qpd.models.process import Process
from qpd.models.record import RECORD_STATUSES, ProcessRecord, RecordLink
from qpd.services import field_engine, record_links, workflow_engine
from qpd.services.events import emit, record_changed
from qpd.utils.helpers import commit_best_effort

logger = logging.getLogger(__name__)

# No 0/O, 1/I
IDENTIFIER_ALPHABET = "ABCDEFGHJKLMNPQRSTUVWXYZ23456789"
IDENTIFIER_LENGTH = 4
_MAX_IDENTIFIER_ATTEMPTS = 20


# ──────────────────────────────────────────────────────────────────────────────
# Identifiers
# ──────────────────────────────────────────────────────────────────────────────

def identifier_prefix(process: Process) -> str:
    return process.record_id_prefix or current_app.config["RECORD_ID_DEFAULT_PREFIX"]


def generate_record_identifier(prefix: str) -> str:
    """Return ``<prefix>-XXXX`` drawn from IDENTIFIER_ALPHABET.

    Re-draws while the identifier is already taken by a record or reserved
    by a guided session that has not committed yet.
    """
    for _ in range(_MAX_IDENTIFIER_ATTEMPTS):
        code = "".join(secrets.choice(IDENTIFIER_ALPHABET) for _ in range(IDENTIFIER_LENGTH))
        identifier = f"{prefix}-{code}"
        if ProcessRecord.query.filter_by(record_identifier=identifier).first():
            continue
        if GuidedSession.query.filter_by(record_identifier=identifier).first():
            continue
        return identifier
    raise ConflictError(
        resource="ProcessRecord", field="record_identifier", value=prefix,
        message=f"Could not allocate a free record identifier for prefix {prefix!r}",
    )


# ──────────────────────────────────────────────────────────────────────────────
# Lookups
# ──────────────────────────────────────────────────────────────────────────────

def get_record_or_404(record_id: int) -> ProcessRecord:
    record = db.session.get(ProcessRecord, record_id)
    if not record:
        raise NotFoundError(resource="ProcessRecord", resource_id=record_id)
    return record


def _summary(record: ProcessRecord) -> dict:
    d = record.to_dict()
    d["process_name"] = record.process.name if record.process else None
    d["current_step_name"] = record.current_step.step_name if record.current_step else None
    return d


def get_record(record_id: int) -> dict:
    """Record with its process name, current step, rendered fields and actions."""
    record = get_record_or_404(record_id)
    values = {v.field_id: v.field_value or "" for v in record.field_values}
    d = _summary(record)
    d["current_step"] = record.current_step.to_dict() if record.current_step else None
    d["fields"] = field_engine.render_fields(record.process.fields, values)
    d["workflow"] = workflow_engine.available_actions(record)
    return d


def list_records(process_id: int | None = None, status: str | None = None):
    """Records newest first, optionally filtered.

    Returns:
        A query ordered by ``created_at`` descending; callers paginate.
    """
    q = ProcessRecord.query
    if process_id is not None:
        q = q.filter(ProcessRecord.process_id == process_id)
    if status:
        if status not in RECORD_STATUSES:
            raise ValidationError(
                f"Invalid status: {status}",
                details={"status": f"must be one of {sorted(RECORD_STATUSES)}"},
            )
        q = q.filter(ProcessRecord.current_status == status)
    return q.order_by(ProcessRecord.created_at.desc(), ProcessRecord.id.desc())


def serialize_records(records) -> list[dict]:
    return [_summary(r) for r in records]


# ──────────────────────────────────────────────────────────────────────────────
# Creation
# ──────────────────────────────────────────────────────────────────────────────

def check_linked_process(process_id: int, linked_process_id) -> int | None:
    """Validate the follow-on process choice; None means no link."""
    if linked_process_id is None:
        return None
    if isinstance(linked_process_id, bool) or not isinstance(linked_process_id, int):
        raise ValidationError(
            "linked_process_id must be an integer",
            details={"linked_process_id": str(linked_process_id)},
        )
    if linked_process_id == process_id:
        raise ValidationError(
            "A record cannot link to its own process",
            details={"linked_process_id": linked_process_id},
        )
    target = db.session.get(Process, linked_process_id)
    if target is None:
        raise NotFoundError(resource="Process", resource_id=linked_process_id)
    if not target.is_active:
        raise ValidationError(
            "Cannot link to an inactive process",
            details={"linked_process_id": linked_process_id},
        )
    return linked_process_id


def build_record(
    process: Process,
    title: str,
    created_by: str,
    identifier: str | None = None,
    assigned_to: str | None = None,
) -> ProcessRecord:
    """Validate and return an unsaved record in the process's initial state."""
    title = (title or "").strip()
    if not title:
        raise ValidationError("Record title is required", details={"record_title": "required"})
    if not process.is_active:
        raise ValidationError(
            "Cannot create records for an inactive process",
            details={"process_id": process.id},
        )
    if identifier and ProcessRecord.query.filter_by(record_identifier=identifier).first():
        raise ConflictError(resource="ProcessRecord", field="record_identifier", value=identifier)

    status, step = workflow_engine.initial_state(process.id)
    return ProcessRecord(
        process_id=process.id,
        record_title=title,
        record_identifier=identifier or generate_record_identifier(identifier_prefix(process)),
        current_status=status,
        current_step_id=step.id if step else None,
        created_by=created_by,
        assigned_to=assigned_to or None,
    )


def write_secondaries(
    record: ProcessRecord,
    values: dict,
    linked_process_id: int | None = None,
    source_link: RecordLink | None = None,
) -> list[str]:
    """Best-effort writes that follow a committed record.

    Returns:
        Warning messages, one per failed write.
    """
    warnings = []

    if values:
        field_engine.stage_values(record, values)
        warning = commit_best_effort("field values")
        if warning:
            warnings.append(warning)

    if linked_process_id is not None:
        db.session.add(RecordLink(source_record_id=record.id, target_process_id=linked_process_id))
        warning = commit_best_effort("record link")
        if warning:
            warnings.append(warning)

    if source_link is not None:
        try:
            record_links.stage_resolution(source_link, record.id)
        except (ConflictError, NotFoundError, ValidationError) as exc:
            logger.warning("Link %s not resolved: %s", source_link.id, exc)
            warnings.append(f"Failed to resolve link: {exc}")
        else:
            warning = commit_best_effort("link resolution")
            if warning:
                warnings.append(warning)

    if warnings:
        logger.warning(
            "Record %s created with %s secondary failure(s): %s",
            record.id, len(warnings), "; ".join(warnings),
            extra={"record_id": record.id},
        )
    return warnings


def create_record(
    process_id: int,
    title: str,
    values: dict,
    created_by: str,
    assigned_to: str | None = None,
    linked_process_id: int | None = None,
) -> dict:
    """Quick-create a record outside the guided wizard.

    Args:
        process_id: Owning process.
        title: Record title (required, trimmed).
        values: Field id → string value; type-checked and required-checked.
        created_by: Acting user id.
        assigned_to: Optional assignee user id.
        linked_process_id: Optional follow-on process (pending link).

    Returns:
        {"record": dict, "warnings": [str, ...]}
    """
    process = db.session.get(Process, process_id)
    if not process:
        raise NotFoundError(resource="Process", resource_id=process_id)
    values = values or {}
    field_engine.validate_values(process.fields, values, require_all=True)
    linked_process_id = check_linked_process(process.id, linked_process_id)

    record = build_record(process, title, created_by, assigned_to=assigned_to)
    db.session.add(record)
    db.session.commit()
    logger.info(
        "ProcessRecord created id=%s process=%s identifier=%s",
        record.id, process.id, record.record_identifier,
        extra={"record_id": record.id, "process_id": process.id, "user_id": created_by},
    )

    warnings = write_secondaries(record, values, linked_process_id)
    emit(record_changed, record.id, action="created", status=record.current_status)
    return {"record": get_record(record.id), "warnings": warnings}


# ──────────────────────────────────────────────────────────────────────────────
# Edits
# ──────────────────────────────────────────────────────────────────────────────

def update_record(record_id: int, data: dict) -> dict:
    """Edit title / assignee.

    Raises:
        ValidationError: on an empty title, or an attempt to change the
            identifier, status or current step.
    """
    record = get_record_or_404(record_id)

    if "record_identifier" in data and data["record_identifier"] != record.record_identifier:
        raise ValidationError(
            "record_identifier cannot be changed",
            details={"record_identifier": "immutable"},
        )
    for locked in ("current_status", "current_step_id"):
        if locked in data and data[locked] != getattr(record, locked):
            raise ValidationError(
                f"{locked} is changed only through workflow actions",
                details={locked: "use the workflow endpoint"},
            )

    if "record_title" in data:
        title = (data.get("record_title") or "").strip()
        if not title:
            raise ValidationError("Record title is required", details={"record_title": "required"})
        record.record_title = title
    if "assigned_to" in data:
        record.assigned_to = data.get("assigned_to") or None

    record.updated_at = datetime.now(timezone.utc)
    db.session.commit()
    logger.info("ProcessRecord updated id=%s", record.id, extra={"record_id": record.id})
    return get_record(record.id)


def update_record_values(record_id: int, values: dict) -> dict:
    """Type-check and upsert field values of an existing record.

    A required field may not be cleared.
    """
    record = get_record_or_404(record_id)
    fields = record.process.fields
    field_engine.validate_values(fields, values)

    by_id = {f.id: f for f in fields}
    cleared = {}
    for key, raw in values.items():
        field = by_id.get(int(key))
        if field.is_required and not field_engine.is_satisfied(raw):
            cleared[field.field_name] = "is required"
    if cleared:
        raise ValidationError("Invalid field values", details=cleared)

    field_engine.stage_values(record, values)
    record.updated_at = datetime.now(timezone.utc)
    db.session.commit()
    logger.info("ProcessRecord values updated id=%s count=%s", record.id, len(values),
                extra={"record_id": record.id})
    return get_record(record.id)

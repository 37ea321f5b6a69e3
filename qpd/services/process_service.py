"""
Process configuration service layer.

Centralises all ORM queries and mutations for Process, ProcessField and
WorkflowStep so that blueprints remain HTTP-only.  Every db.session.commit()
in this module is intentional and owns the transaction for its operation.

Every committed mutation emits ``process_changed`` so that subscribers
(e.g. a cached sidebar) can refresh.
"""

import json
import logging
from collections import OrderedDict

from sqlalchemy import func, or_

from qpd.core.exceptions import ConflictError, NotFoundError, ValidationError
from qpd.models import db
from qpd.models.process import (
    DEFAULT_STEP_ROLE,
    FIELD_TYPES,
    USER_ROLES,
    Process,
    ProcessField,
    SubEntityConfig,
    WorkflowStep,
    parse_field_options,
)
from qpd.models.record import ProcessRecord, WorkflowHistory
from qpd.services.events import emit, process_changed

logger = logging.getLogger(__name__)

UNTAGGED = "Untagged"


# ──────────────────────────────────────────────────────────────────────────────
# Lookups
# ──────────────────────────────────────────────────────────────────────────────

def get_process_or_404(process_id: int) -> Process:
    process = db.session.get(Process, process_id)
    if not process:
        raise NotFoundError(resource="Process", resource_id=process_id)
    return process


def _get_field(field_id: int) -> ProcessField:
    field = db.session.get(ProcessField, field_id)
    if not field:
        raise NotFoundError(resource="ProcessField", resource_id=field_id)
    return field


def _get_step(step_id: int) -> WorkflowStep:
    step = db.session.get(WorkflowStep, step_id)
    if not step:
        raise NotFoundError(resource="WorkflowStep", resource_id=step_id)
    return step


def _record_counts() -> dict[int, int]:
    rows = (
        db.session.query(ProcessRecord.process_id, func.count(ProcessRecord.id))
        .group_by(ProcessRecord.process_id)
        .all()
    )
    return {pid: count for pid, count in rows}


def _require_object(data, what: str) -> None:
    if not isinstance(data, dict):
        raise ValidationError(f"Each {what} must be an object", details={what: type(data).__name__})


def _as_bool(data: dict, key: str, default: bool) -> bool:
    value = data.get(key, default)
    if not isinstance(value, bool):
        raise ValidationError(
            f"{key} must be a boolean",
            details={key: f"got {type(value).__name__}"},
        )
    return value


def _required_text(data: dict, key: str) -> str:
    value = data.get(key)
    if not isinstance(value, str) or not value.strip():
        raise ValidationError(f"{key} is required", details={key: "required"})
    return value.strip()


# ──────────────────────────────────────────────────────────────────────────────
# Processes
# ──────────────────────────────────────────────────────────────────────────────

def list_processes(include_inactive: bool = False) -> list[dict]:
    """Return processes ordered by name, each with its ``record_count``."""
    q = Process.query
    if not include_inactive:
        q = q.filter_by(is_active=True)
    counts = _record_counts()
    items = []
    for p in q.order_by(Process.name, Process.id).all():
        d = p.to_dict()
        d["record_count"] = counts.get(p.id, 0)
        items.append(d)
    return items


def list_processes_by_tag() -> list[dict]:
    """Group active processes by tag for the sidebar.

    Tags are sorted alphabetically; untagged processes come last under
    ``"Untagged"``.

    Returns:
        [{"tag": str, "processes": [dict, ...]}, ...]
    """
    groups: dict[str, list[dict]] = OrderedDict()
    untagged = []
    for d in list_processes():
        tag = (d["tag"] or "").strip()
        if tag:
            groups.setdefault(tag, []).append(d)
        else:
            untagged.append(d)

    result = [{"tag": tag, "processes": groups[tag]} for tag in sorted(groups, key=str.lower)]
    if untagged:
        result.append({"tag": UNTAGGED, "processes": untagged})
    return result


def list_linkable_processes(process_id: int) -> list[dict]:
    """Active processes a record of ``process_id`` may trigger (all but itself)."""
    get_process_or_404(process_id)
    items = (
        Process.query
        .filter(Process.is_active.is_(True), Process.id != process_id)
        .order_by(Process.name, Process.id)
        .all()
    )
    return [p.to_dict() for p in items]


def get_process(process_id: int) -> dict:
    """Process with fields (display order) and steps (step order)."""
    process = get_process_or_404(process_id)
    d = process.to_dict(include_children=True)
    d["record_count"] = process.records.count()
    return d


def apply_process_attrs(process: Process, data: dict) -> None:
    """Copy recognised keys of ``data`` onto ``process`` with validation."""
    if "name" in data:
        process.name = _required_text(data, "name")
    if "description" in data:
        process.description = data.get("description") or ""
    if "is_active" in data:
        process.is_active = _as_bool(data, "is_active", True)
    if "tag" in data:
        process.tag = (data.get("tag") or "").strip() or None
    if "record_id_prefix" in data:
        process.record_id_prefix = (data.get("record_id_prefix") or "").strip().upper() or None
    if "ai_suggestion" in data:
        process.ai_suggestion = data.get("ai_suggestion") or None
    if "sub_entity_config" in data:
        raw = data.get("sub_entity_config")
        process.sub_entity_config = SubEntityConfig.from_raw(raw).to_json() if raw is not None else None


def create_process(data: dict, created_by: str) -> dict:
    """Create a process.  ``name`` is required.

    Raises:
        ValidationError: if the name is missing or a JSON blob is malformed.
    """
    process = Process(name=_required_text(data, "name"), created_by=created_by)
    apply_process_attrs(process, data)
    db.session.add(process)
    db.session.commit()
    logger.info("Process created id=%s name=%r", process.id, process.name,
                extra={"process_id": process.id, "user_id": created_by})
    emit(process_changed, process.id, change="created")
    return process.to_dict(include_children=True)


def update_process(process_id: int, data: dict) -> dict:
    """Partial update of a process's scalar attributes."""
    process = get_process_or_404(process_id)
    apply_process_attrs(process, data)
    db.session.commit()
    logger.info("Process updated id=%s", process_id, extra={"process_id": process_id})
    emit(process_changed, process.id, change="updated")
    return process.to_dict(include_children=True)


def deactivate_process(process_id: int) -> dict:
    """Soft-delete: processes are never removed, only hidden."""
    process = get_process_or_404(process_id)
    process.is_active = False
    db.session.commit()
    logger.info("Process deactivated id=%s", process_id, extra={"process_id": process_id})
    emit(process_changed, process.id, change="deactivated")
    return process.to_dict()


# ──────────────────────────────────────────────────────────────────────────────
# Fields
# ──────────────────────────────────────────────────────────────────────────────

def _check_field_type(field_type: str) -> str:
    if field_type not in FIELD_TYPES:
        raise ValidationError(
            f"Invalid field_type: {field_type}",
            details={"field_type": f"must be one of {sorted(FIELD_TYPES)}"},
        )
    return field_type


def _encode_options(raw) -> str | None:
    options = parse_field_options(raw)
    return json.dumps(options) if options else None


def _encode_rules(raw) -> str | None:
    if raw in (None, "", {}):
        return None
    if isinstance(raw, str):
        try:
            raw = json.loads(raw)
        except json.JSONDecodeError as exc:
            raise ValidationError(
                "validation_rules must be a JSON object",
                details={"validation_rules": str(exc)},
            ) from exc
    if not isinstance(raw, dict):
        raise ValidationError(
            "validation_rules must be an object",
            details={"validation_rules": f"got {type(raw).__name__}"},
        )
    return json.dumps(raw)


def _ensure_unique_field_name(process_id: int, field_name: str, exclude_id: int | None = None):
    q = ProcessField.query.filter_by(process_id=process_id, field_name=field_name)
    if exclude_id is not None:
        q = q.filter(ProcessField.id != exclude_id)
    if q.first():
        raise ConflictError(resource="ProcessField", field="field_name", value=field_name)


def _as_int(value, default: int) -> int:
    if value is None:
        return default
    if isinstance(value, bool) or not isinstance(value, int):
        raise ValidationError(
            "display_order must be an integer",
            details={"display_order": str(value)},
        )
    return value


def list_fields(process_id: int) -> list[dict]:
    process = get_process_or_404(process_id)
    return [f.to_dict() for f in process.fields]


def build_field(process_id: int, data: dict, display_order: int) -> ProcessField:
    """Validate ``data`` and return an unsaved ProcessField."""
    _require_object(data, "field")
    field_type = _check_field_type(data.get("field_type") or "text")
    return ProcessField(
        process_id=process_id,
        field_name=_required_text(data, "field_name"),
        field_label=_required_text(data, "field_label"),
        field_type=field_type,
        is_required=_as_bool(data, "is_required", False),
        display_order=_as_int(data.get("display_order"), display_order),
        field_options=_encode_options(data.get("field_options")),
        validation_rules=_encode_rules(data.get("validation_rules")),
    )


def add_field(process_id: int, data: dict) -> dict:
    """Append a field to a process.

    ``display_order`` defaults to the current field count.

    Raises:
        ValidationError: missing name/label or unknown field_type.
        ConflictError: field_name already used in this process.
    """
    process = get_process_or_404(process_id)
    field = build_field(process.id, data, display_order=len(process.fields))
    _ensure_unique_field_name(process.id, field.field_name)

    process.fields.append(field)
    db.session.commit()
    logger.info("ProcessField created id=%s process=%s", field.id, process.id,
                extra={"process_id": process.id})
    emit(process_changed, process.id, change="field_added")
    return field.to_dict()


def update_field(field_id: int, data: dict) -> dict:
    field = _get_field(field_id)

    if "field_name" in data:
        name = _required_text(data, "field_name")
        _ensure_unique_field_name(field.process_id, name, exclude_id=field.id)
        field.field_name = name
    if "field_label" in data:
        field.field_label = _required_text(data, "field_label")
    if "field_type" in data:
        field.field_type = _check_field_type(data["field_type"])
    if "is_required" in data:
        field.is_required = _as_bool(data, "is_required", False)
    if "display_order" in data:
        field.display_order = _as_int(data["display_order"], field.display_order)
    if "field_options" in data:
        field.field_options = _encode_options(data["field_options"])
    if "validation_rules" in data:
        field.validation_rules = _encode_rules(data["validation_rules"])

    db.session.commit()
    logger.info("ProcessField updated id=%s", field_id, extra={"process_id": field.process_id})
    emit(process_changed, field.process_id, change="field_updated")
    return field.to_dict()


def delete_field(field_id: int) -> None:
    """Delete a field; its RecordFieldValue rows are removed with it."""
    field = _get_field(field_id)
    process_id = field.process_id
    db.session.delete(field)
    db.session.commit()
    logger.info("ProcessField deleted id=%s process=%s", field_id, process_id,
                extra={"process_id": process_id})
    emit(process_changed, process_id, change="field_deleted")


# ──────────────────────────────────────────────────────────────────────────────
# Workflow steps
# ──────────────────────────────────────────────────────────────────────────────

def _check_role(role: str) -> str:
    if role not in USER_ROLES:
        raise ValidationError(
            f"Invalid required_role: {role}",
            details={"required_role": f"must be one of {sorted(USER_ROLES)}"},
        )
    return role


def _check_step_order(value) -> int:
    if isinstance(value, bool) or not isinstance(value, int) or value < 1:
        raise ValidationError(
            "step_order must be a positive integer",
            details={"step_order": "must be >= 1"},
        )
    return value


def _ensure_unique_step_order(process_id: int, order: int, exclude_id: int | None = None):
    q = WorkflowStep.query.filter_by(process_id=process_id, step_order=order)
    if exclude_id is not None:
        q = q.filter(WorkflowStep.id != exclude_id)
    if q.first():
        raise ConflictError(resource="WorkflowStep", field="step_order", value=order)


def list_steps(process_id: int) -> list[dict]:
    process = get_process_or_404(process_id)
    return [s.to_dict() for s in process.workflow_steps]


def build_step(process_id: int, data: dict, step_order: int) -> WorkflowStep:
    """Validate ``data`` and return an unsaved WorkflowStep."""
    _require_object(data, "step")
    return WorkflowStep(
        process_id=process_id,
        step_name=_required_text(data, "step_name"),
        step_order=_check_step_order(data.get("step_order", step_order)),
        required_role=_check_role(data.get("required_role") or DEFAULT_STEP_ROLE),
        can_approve=_as_bool(data, "can_approve", True),
        can_reject=_as_bool(data, "can_reject", True),
    )


def add_step(process_id: int, data: dict) -> dict:
    """Append a workflow step.

    ``step_order`` defaults to one past the current maximum.

    Raises:
        ValidationError: missing name, non-positive order, unknown role.
        ConflictError: step_order already used in this process.
    """
    process = get_process_or_404(process_id)
    current_max = (
        db.session.query(func.max(WorkflowStep.step_order))
        .filter(WorkflowStep.process_id == process.id)
        .scalar()
    ) or 0
    step = build_step(process.id, data, step_order=current_max + 1)
    _ensure_unique_step_order(process.id, step.step_order)

    process.workflow_steps.append(step)
    db.session.commit()
    logger.info("WorkflowStep created id=%s process=%s order=%s", step.id, process.id,
                step.step_order, extra={"process_id": process.id})
    emit(process_changed, process.id, change="step_added")
    return step.to_dict()


def update_step(step_id: int, data: dict) -> dict:
    step = _get_step(step_id)

    if "step_name" in data:
        step.step_name = _required_text(data, "step_name")
    if "step_order" in data:
        order = _check_step_order(data["step_order"])
        _ensure_unique_step_order(step.process_id, order, exclude_id=step.id)
        step.step_order = order
    if "required_role" in data:
        step.required_role = _check_role(data["required_role"])
    if "can_approve" in data:
        step.can_approve = _as_bool(data, "can_approve", True)
    if "can_reject" in data:
        step.can_reject = _as_bool(data, "can_reject", True)

    db.session.commit()
    logger.info("WorkflowStep updated id=%s", step_id, extra={"process_id": step.process_id})
    emit(process_changed, step.process_id, change="step_updated")
    return step.to_dict()


def delete_step(step_id: int) -> None:
    """Delete a workflow step that no record sits on or has passed through.

    Raises:
        ConflictError: if any record's current step is this step, or any
            workflow history row references it.
    """
    step = _get_step(step_id)
    in_use = ProcessRecord.query.filter_by(current_step_id=step.id).count()
    if in_use:
        raise ConflictError(
            resource="WorkflowStep", field="current_step_id", value=step.id,
            message=f"Workflow step {step.id} is the current step of {in_use} record(s)",
        )
    in_history = WorkflowHistory.query.filter(
        or_(WorkflowHistory.from_step_id == step.id, WorkflowHistory.to_step_id == step.id)
    ).count()
    if in_history:
        raise ConflictError(
            resource="WorkflowStep", field="workflow_history", value=step.id,
            message=f"Workflow step {step.id} is referenced by {in_history} history entries",
        )
    process_id = step.process_id
    db.session.delete(step)
    db.session.commit()
    logger.info("WorkflowStep deleted id=%s process=%s", step_id, process_id,
                extra={"process_id": process_id})
    emit(process_changed, process_id, change="step_deleted")

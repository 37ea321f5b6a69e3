"""
Process templates - Process, ProcessField, WorkflowStep.

A Process is the reusable template for one category of quality record
(e.g. CAPA).  It owns an ordered set of typed form fields and an ordered
sequence of approval steps.  Processes are never hard-deleted; they are
soft-deactivated through ``is_active``.

JSON blobs (``field_options``, ``validation_rules``, ``sub_entity_config``)
are stored as opaque text and parsed at the application boundary with
``parse_field_options`` / ``SubEntityConfig``.
"""

import json
from dataclasses import dataclass
from datetime import datetime, timezone

from qpd.core.exceptions import ValidationError
from qpd.models import db

# ── Constants ─────────────────────────────────────────────────────────────────

FIELD_TYPES = frozenset({
    "text", "textarea", "number", "date",
    "select", "checkbox", "email", "url",
})

USER_ROLES = frozenset({
    "admin",
    "quality_manager",
    "quality_reviewer",
    "initiator",
    "qa_final_approver",
})

DEFAULT_STEP_ROLE = "quality_reviewer"


def _utcnow():
    return datetime.now(timezone.utc)


# ── JSON boundary helpers ─────────────────────────────────────────────────────

def parse_field_options(raw) -> list[str]:
    """Return select options as a list of strings.

    Options arrive either as a list or as a JSON-encoded list string
    (the way the wizard stored them).  ``None`` / empty means no options.

    Raises:
        ValidationError: if the value is not a list once decoded.
    """
    if raw is None or raw == "":
        return []
    if isinstance(raw, str):
        try:
            raw = json.loads(raw)
        except (json.JSONDecodeError, TypeError) as exc:
            raise ValidationError(
                "field_options must be a JSON list",
                details={"field_options": str(exc)},
            ) from exc
    if not isinstance(raw, list):
        raise ValidationError(
            "field_options must be a list",
            details={"field_options": f"got {type(raw).__name__}"},
        )
    return [str(o) for o in raw]


@dataclass(frozen=True)
class SubEntityConfig:
    """Optional auxiliary features attached to a process.

    Absent configuration means tasks are enabled.
    """

    tasks_enabled: bool = True

    @classmethod
    def from_raw(cls, raw) -> "SubEntityConfig":
        if raw is None or raw == "":
            return cls()
        if isinstance(raw, str):
            try:
                raw = json.loads(raw)
            except (json.JSONDecodeError, TypeError) as exc:
                raise ValidationError(
                    "sub_entity_config must be a JSON object",
                    details={"sub_entity_config": str(exc)},
                ) from exc
        if not isinstance(raw, dict):
            raise ValidationError(
                "sub_entity_config must be an object",
                details={"sub_entity_config": f"got {type(raw).__name__}"},
            )
        tasks_enabled = raw.get("tasks_enabled", True)
        if not isinstance(tasks_enabled, bool):
            raise ValidationError(
                "sub_entity_config.tasks_enabled must be a boolean",
                details={"sub_entity_config": "tasks_enabled"},
            )
        return cls(tasks_enabled=tasks_enabled)

    def to_dict(self) -> dict:
        return {"tasks_enabled": self.tasks_enabled}

    def to_json(self) -> str:
        return json.dumps(self.to_dict())


# ── Process ───────────────────────────────────────────────────────────────────

class Process(db.Model):
    """Named, versionless template of fields + workflow steps."""

    __tablename__ = "processes"

    id = db.Column(db.Integer, primary_key=True)
    name = db.Column(db.String(200), nullable=False)
    description = db.Column(db.Text, default="")
    is_active = db.Column(db.Boolean, nullable=False, default=True)
    tag = db.Column(db.String(100), nullable=True, comment="Free-text sidebar grouping")
    record_id_prefix = db.Column(db.String(20), nullable=True, comment="e.g. CAPA")
    ai_suggestion = db.Column(db.Text, nullable=True)
    sub_entity_config = db.Column(db.Text, nullable=True, comment='JSON: {"tasks_enabled": bool}')
    created_by = db.Column(db.String(64), nullable=False)
    created_at = db.Column(db.DateTime(timezone=True), default=_utcnow)
    updated_at = db.Column(db.DateTime(timezone=True), default=_utcnow, onupdate=_utcnow)

    fields = db.relationship(
        "ProcessField",
        backref="process",
        cascade="all, delete-orphan",
        order_by="ProcessField.display_order",
        lazy="select",
    )
    workflow_steps = db.relationship(
        "WorkflowStep",
        backref="process",
        cascade="all, delete-orphan",
        order_by="WorkflowStep.step_order",
        lazy="select",
    )

    __table_args__ = (
        db.Index("ix_processes_active_name", "is_active", "name"),
    )

    @property
    def sub_entities(self) -> SubEntityConfig:
        return SubEntityConfig.from_raw(self.sub_entity_config)

    def to_dict(self, include_children=False):
        d = {
            "id": self.id,
            "name": self.name,
            "description": self.description or "",
            "is_active": self.is_active,
            "tag": self.tag,
            "record_id_prefix": self.record_id_prefix,
            "ai_suggestion": self.ai_suggestion,
            "sub_entity_config": self.sub_entities.to_dict(),
            "created_by": self.created_by,
            "created_at": self.created_at.isoformat() if self.created_at else None,
            "updated_at": self.updated_at.isoformat() if self.updated_at else None,
        }
        if include_children:
            d["fields"] = [f.to_dict() for f in self.fields]
            d["workflow_steps"] = [s.to_dict() for s in self.workflow_steps]
        return d

    def __repr__(self):
        return f"<Process {self.id}: {self.name}>"


# ── ProcessField ──────────────────────────────────────────────────────────────

class ProcessField(db.Model):
    """One typed form field of a process."""

    __tablename__ = "process_fields"

    id = db.Column(db.Integer, primary_key=True)
    process_id = db.Column(
        db.Integer,
        db.ForeignKey("processes.id", ondelete="CASCADE"),
        nullable=False,
        index=True,
    )
    field_name = db.Column(db.String(100), nullable=False, comment="Machine key, unique per process")
    field_label = db.Column(db.String(200), nullable=False)
    field_type = db.Column(
        db.String(20), nullable=False, default="text",
        comment="text | textarea | number | date | select | checkbox | email | url",
    )
    is_required = db.Column(db.Boolean, nullable=False, default=False)
    display_order = db.Column(db.Integer, nullable=False, default=0)
    field_options = db.Column(db.Text, nullable=True, comment="JSON list of option strings")
    validation_rules = db.Column(db.Text, nullable=True, comment="JSON object, not interpreted")
    created_at = db.Column(db.DateTime(timezone=True), default=_utcnow)

    values = db.relationship(
        "RecordFieldValue",
        backref="field",
        cascade="all, delete-orphan",
        passive_deletes=True,
        lazy="dynamic",
    )

    __table_args__ = (
        db.UniqueConstraint("process_id", "field_name", name="uq_process_fields_name"),
    )

    @property
    def options(self) -> list[str]:
        return parse_field_options(self.field_options)

    @property
    def rules(self) -> dict:
        try:
            parsed = json.loads(self.validation_rules) if self.validation_rules else {}
        except (json.JSONDecodeError, TypeError):
            return {}
        return parsed if isinstance(parsed, dict) else {}

    def to_dict(self):
        return {
            "id": self.id,
            "process_id": self.process_id,
            "field_name": self.field_name,
            "field_label": self.field_label,
            "field_type": self.field_type,
            "is_required": self.is_required,
            "display_order": self.display_order,
            "field_options": self.options,
            "validation_rules": self.rules,
            "created_at": self.created_at.isoformat() if self.created_at else None,
        }

    def __repr__(self):
        return f"<ProcessField {self.id}: {self.field_name} ({self.field_type})>"


# ── WorkflowStep ──────────────────────────────────────────────────────────────

class WorkflowStep(db.Model):
    """One stage of a process's linear approval sequence."""

    __tablename__ = "workflow_steps"

    id = db.Column(db.Integer, primary_key=True)
    process_id = db.Column(
        db.Integer,
        db.ForeignKey("processes.id", ondelete="CASCADE"),
        nullable=False,
        index=True,
    )
    step_name = db.Column(db.String(200), nullable=False)
    step_order = db.Column(db.Integer, nullable=False)
    required_role = db.Column(
        db.String(30), nullable=False, default=DEFAULT_STEP_ROLE,
        comment="admin | quality_manager | quality_reviewer | initiator | qa_final_approver",
    )
    can_approve = db.Column(db.Boolean, nullable=False, default=True)
    can_reject = db.Column(db.Boolean, nullable=False, default=True)
    created_at = db.Column(db.DateTime(timezone=True), default=_utcnow)

    __table_args__ = (
        db.UniqueConstraint("process_id", "step_order", name="uq_workflow_steps_order"),
    )

    def to_dict(self):
        return {
            "id": self.id,
            "process_id": self.process_id,
            "step_name": self.step_name,
            "step_order": self.step_order,
            "required_role": self.required_role,
            "can_approve": self.can_approve,
            "can_reject": self.can_reject,
            "created_at": self.created_at.isoformat() if self.created_at else None,
        }

    def __repr__(self):
        return f"<WorkflowStep {self.id}: #{self.step_order} {self.step_name}>"

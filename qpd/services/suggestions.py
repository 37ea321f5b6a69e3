"""
Suggestion intake - turns an AI-generated process outline into a Process.

The model call itself lives outside this service.  Two payload shapes are
accepted:

  generate-from-description:
      {"suggested_fields": [...], "suggested_workflow": [...], "ai_explanation": "..."}

  parse-SOP-document (adds a name and description):
      {"suggested_name": "...", "suggested_description": "...",
       "suggested_fields": [...], "suggested_workflow": [...], "ai_explanation": "..."}

Suggestions are advisory: missing lists are empty, items without a machine
name are dropped, unknown field types become ``text`` and unknown roles
become the default reviewer role.  The user may edit anything before
``create_process_from_suggestion`` commits it.
"""

import logging
from dataclasses import asdict, dataclass, field

from qpd.core.exceptions import ValidationError
from qpd.models import db
from qpd.models.process import DEFAULT_STEP_ROLE, FIELD_TYPES, USER_ROLES, Process
from qpd.services import process_service
from qpd.services.events import emit, process_changed

logger = logging.getLogger(__name__)


@dataclass
class SuggestedField:
    field_name: str
    field_label: str
    field_type: str = "text"
    is_required: bool = False
    field_options: list[str] = field(default_factory=list)
    reason: str = ""


@dataclass
class SuggestedStep:
    step_name: str
    required_role: str = DEFAULT_STEP_ROLE
    can_approve: bool = True
    can_reject: bool = True
    reason: str = ""


@dataclass
class ProcessSuggestion:
    name: str = ""
    description: str = ""
    fields: list[SuggestedField] = field(default_factory=list)
    steps: list[SuggestedStep] = field(default_factory=list)
    explanation: str = ""

    def to_dict(self) -> dict:
        return asdict(self)


def _label_from_name(name: str) -> str:
    return name.replace("_", " ").strip().title()


def _as_list(value) -> list:
    return value if isinstance(value, list) else []


def _flag(value, default: bool) -> bool:
    if isinstance(value, bool):
        return value
    if isinstance(value, str) and value.strip().lower() in ("true", "false"):
        return value.strip().lower() == "true"
    return default


def _parse_field(item) -> SuggestedField | None:
    if not isinstance(item, dict):
        return None
    name = str(item.get("field_name") or "").strip()
    if not name:
        return None
    field_type = item.get("field_type")
    if field_type not in FIELD_TYPES:
        field_type = "text"
    options = [str(o) for o in _as_list(item.get("field_options"))]
    return SuggestedField(
        field_name=name,
        field_label=str(item.get("field_label") or "").strip() or _label_from_name(name),
        field_type=field_type,
        is_required=_flag(item.get("is_required"), False),
        field_options=options if field_type == "select" else [],
        reason=str(item.get("reason") or ""),
    )


def _parse_step(item) -> SuggestedStep | None:
    if not isinstance(item, dict):
        return None
    name = str(item.get("step_name") or "").strip()
    if not name:
        return None
    role = item.get("required_role")
    if role not in USER_ROLES:
        role = DEFAULT_STEP_ROLE
    return SuggestedStep(
        step_name=name,
        required_role=role,
        can_approve=_flag(item.get("can_approve"), True),
        can_reject=_flag(item.get("can_reject"), True),
        reason=str(item.get("reason") or ""),
    )


def parse_suggestion(payload) -> ProcessSuggestion:
    """Normalise a raw suggestion payload.

    Raises:
        ValidationError: if the payload is not a JSON object.
    """
    if not isinstance(payload, dict):
        raise ValidationError(
            "Suggestion payload must be an object",
            details={"payload": f"got {type(payload).__name__}"},
        )
    fields = [f for f in map(_parse_field, _as_list(payload.get("suggested_fields"))) if f]
    steps = [s for s in map(_parse_step, _as_list(payload.get("suggested_workflow"))) if s]
    return ProcessSuggestion(
        name=str(payload.get("suggested_name") or "").strip(),
        description=str(payload.get("suggested_description") or "").strip(),
        fields=fields,
        steps=steps,
        explanation=str(payload.get("ai_explanation") or ""),
    )


def create_process_from_suggestion(data: dict, created_by: str) -> dict:
    """Create a process with its fields and steps in one transaction.

    Args:
        data: {"name", "description", "tag"?, "record_id_prefix"?,
               "fields": [...], "steps": [...], "explanation"?}
               Field and step items use the same keys as the suggestion.
        created_by: Acting user id.

    Returns:
        The new process with fields and workflow_steps.

    Raises:
        ValidationError: missing name, invalid item, or duplicate
            field_name within the submitted fields.
    """
    process = Process(created_by=created_by)
    process_service.apply_process_attrs(process, {
        "name": data.get("name"),
        "description": data.get("description") or "",
        "tag": data.get("tag"),
        "record_id_prefix": data.get("record_id_prefix"),
        "ai_suggestion": data.get("explanation") or data.get("ai_explanation"),
        "sub_entity_config": data.get("sub_entity_config"),
    })
    seen_names = set()
    for index, item in enumerate(_as_list(data.get("fields"))):
        field_row = process_service.build_field(None, item, display_order=index)
        if field_row.field_name in seen_names:
            raise ValidationError(
                "Duplicate field_name in suggestion",
                details={"field_name": field_row.field_name},
            )
        seen_names.add(field_row.field_name)
        field_row.display_order = index
        process.fields.append(field_row)

    for index, item in enumerate(_as_list(data.get("steps"))):
        step = process_service.build_step(None, item, step_order=index + 1)
        step.step_order = index + 1
        process.workflow_steps.append(step)

    db.session.add(process)
    db.session.commit()
    logger.info(
        "Process created from suggestion id=%s fields=%s steps=%s",
        process.id, len(seen_names), len(_as_list(data.get("steps"))),
        extra={"process_id": process.id, "user_id": created_by},
    )
    emit(process_changed, process.id, change="created")
    return process.to_dict(include_children=True)

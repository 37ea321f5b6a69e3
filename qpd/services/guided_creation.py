"""
Guided Creation Orchestrator - server-side wizard that produces one record.

Stages (linear pointer, moved only by advance / go_back):

    overview → basic_info → detailed_form → [tasks] → review

    tasks is present only when the process's SubEntityConfig enables it.

Completion predicates gate ``advance``:
    overview, tasks, review   always complete
    basic_info                trimmed record_title is non-empty
    detailed_form             no required field is missing a value

The record identifier is generated the first time the session enters
basic_info and never changes afterwards.  ``commit_session`` is reachable
only from review and follows the record_service primary/secondary write
policy; the session is marked committed in the same commit as the record.

Usage:
    from qpd.services import guided_creation

    state = guided_creation.start_session(process_id=3, created_by="user-1",
                                          discovery_answers={"situation_type": "quality_issue"})
    guided_creation.update_session(state["id"], {"record_title": "Deviation in line B"})
    guided_creation.advance(state["id"])
"""

import logging
from datetime import date

from qpd.core.exceptions import (
    ConflictError,
    NotFoundError,
    StageIncompleteError,
    ValidationError,
)
from qpd.models import db
from qpd.models.guided import GuidedSession
from qpd.models.process import Process
from qpd.models.record import RecordLink
from qpd.services import discovery, field_engine, record_links, record_service
from qpd.services.events import emit, record_changed

logger = logging.getLogger(__name__)

STAGE_INFO = {
    "overview": {
        "title": "Process Overview",
        "description": "Understand what this process will help you accomplish",
    },
    "basic_info": {
        "title": "Basic Information",
        "description": "Provide a clear title and description for your record",
    },
    "detailed_form": {
        "title": "Detailed Information",
        "description": "Complete the specific fields required for this process",
    },
    "tasks": {
        "title": "Tasks",
        "description": "Plan the follow-up tasks for this record",
    },
    "review": {
        "title": "Review & Submit",
        "description": "Review your information before creating the record",
    },
}

FIELD_GUIDANCE = {
    "issue_name": "Provide a clear, concise title that summarizes the issue or opportunity. "
                  "Example: 'Temperature deviation in storage area B'",
    "description": "Describe the issue in detail: What happened? When? Where? Who was "
                   "involved? What was the impact?",
    "root_cause_analysis": "Use tools like 5-Why analysis or fishbone diagram to identify the "
                           "underlying cause. Don't just describe symptoms.",
    "corrective_action": "What immediate actions will fix the current problem? Be specific "
                         "about who, what, when, and how.",
    "preventive_action": "What systemic changes will prevent this issue from recurring? "
                         "Consider process, training, or system improvements.",
    "severity": "Consider patient safety, regulatory impact, and business risk when "
                "assessing severity.",
    "target_completion_date": "Set realistic but urgent timelines. Critical issues should "
                              "have completion dates within 30 days.",
}
FIELD_GUIDANCE["title"] = FIELD_GUIDANCE["issue_name"]
FIELD_GUIDANCE["root_cause"] = FIELD_GUIDANCE["root_cause_analysis"]
FIELD_GUIDANCE["severity_level"] = FIELD_GUIDANCE["severity"]

TASK_PRIORITIES = ("high", "medium", "low")


# ──────────────────────────────────────────────────────────────────────────────
# Helpers
# ──────────────────────────────────────────────────────────────────────────────

def _get_session(session_id: int) -> GuidedSession:
    session = db.session.get(GuidedSession, session_id)
    if not session:
        raise NotFoundError(resource="GuidedSession", resource_id=session_id)
    return session


def _ensure_open(session: GuidedSession) -> None:
    if session.is_committed:
        raise ConflictError(
            resource="GuidedSession", field="committed_record_id",
            value=session.committed_record_id,
            message=f"Guided session {session.id} was already committed "
                    f"as record {session.committed_record_id}",
        )


def stages_for(process: Process) -> list[str]:
    stages = ["overview", "basic_info", "detailed_form"]
    if process.sub_entities.tasks_enabled:
        stages.append("tasks")
    stages.append("review")
    return stages


def _current_stage(session: GuidedSession, stages: list[str]) -> str:
    # Stage list may shrink if tasks are disabled mid-session
    index = min(session.stage_index, len(stages) - 1)
    return stages[index]


def field_guidance(field, process_name: str) -> str:
    text = FIELD_GUIDANCE.get(field.field_name.lower())
    if text:
        return text
    return f"Complete this field with accurate information relevant to your {process_name} process."


def _missing_fields(session: GuidedSession) -> list:
    return field_engine.missing_required(session.process.fields, session.answers or {})


def stage_complete(session: GuidedSession, stage: str) -> bool:
    if stage == "basic_info":
        return bool((session.record_title or "").strip())
    if stage == "detailed_form":
        return not _missing_fields(session)
    return True


def _require_complete(session: GuidedSession, stage: str) -> None:
    if stage == "basic_info" and not stage_complete(session, stage):
        raise StageIncompleteError(
            stage, "record title is required", details={"record_title": "required"},
        )
    if stage == "detailed_form":
        missing = _missing_fields(session)
        if missing:
            raise StageIncompleteError(
                stage,
                f"{len(missing)} required field(s) missing",
                details={"missing_fields": [f.field_name for f in missing]},
            )


def _clean_tasks(tasks) -> list[dict]:
    if not isinstance(tasks, list):
        raise ValidationError("tasks must be a list", details={"tasks": type(tasks).__name__})
    cleaned, errors = [], {}
    for index, task in enumerate(tasks):
        if not isinstance(task, dict) or not str(task.get("title") or "").strip():
            errors[f"tasks[{index}]"] = "title is required"
            continue
        priority = task.get("priority") or "medium"
        if priority not in TASK_PRIORITIES:
            errors[f"tasks[{index}]"] = f"priority must be one of {', '.join(TASK_PRIORITIES)}"
            continue
        cleaned.append({
            "title": str(task["title"]).strip(),
            "description": str(task.get("description") or ""),
            "assigned_to": task.get("assigned_to") or None,
            "due_date": task.get("due_date") or None,
            "priority": priority,
        })
    if errors:
        raise ValidationError("Invalid tasks", details=errors)
    return cleaned


# ──────────────────────────────────────────────────────────────────────────────
# Read side
# ──────────────────────────────────────────────────────────────────────────────

def describe_session(session: GuidedSession) -> dict:
    """Client-facing state: stages, completion flags, fields with guidance."""
    process = session.process
    stages = stages_for(process)
    current = _current_stage(session, stages)
    index = stages.index(current)
    values = session.answers or {}

    fields = field_engine.render_fields(process.fields, values)
    by_id = {f.id: f for f in process.fields}
    for rendered in fields:
        rendered["guidance"] = field_guidance(by_id[rendered["field_id"]], process.name)

    d = session.to_dict()
    d.update({
        "process": process.to_dict(),
        "stages": [
            {"id": s, **STAGE_INFO[s], "complete": stage_complete(session, s)}
            for s in stages
        ],
        "current_stage": current,
        "stage_index": index,
        "can_go_back": index > 0 and not session.is_committed,
        "can_advance": (
            index < len(stages) - 1
            and stage_complete(session, current)
            and not session.is_committed
        ),
        "can_commit": current == "review" and not session.is_committed,
        "fields": fields,
        "missing_required": [f.field_name for f in _missing_fields(session)],
        "linked_process_name": session.linked_process.name if session.linked_process else None,
    })
    return d


def get_session(session_id: int) -> dict:
    return describe_session(_get_session(session_id))


# ──────────────────────────────────────────────────────────────────────────────
# Mutations
# ──────────────────────────────────────────────────────────────────────────────

def _check_source_link(process_id: int, source_link_id) -> RecordLink:
    link = record_links.get_link_or_404(source_link_id)
    if not link.is_pending:
        raise ConflictError(
            resource="RecordLink", field="target_record_id", value=link.target_record_id,
            message=f"RecordLink {link.id} is already resolved",
        )
    if link.target_process_id != process_id:
        raise ValidationError(
            "Link targets a different process",
            details={"source_link_id": link.id, "target_process_id": link.target_process_id},
        )
    return link


def start_session(
    process_id: int,
    created_by: str,
    discovery_answers: dict | None = None,
    source_link_id: int | None = None,
    today: date | None = None,
) -> dict:
    """Open a wizard run on the overview stage.

    Args:
        process_id: Process the record will belong to (must be active).
        created_by: Acting user id; becomes the record's creator.
        discovery_answers: Optional questionnaire answers used to pre-fill.
        source_link_id: Pending RecordLink this run fulfils.
        today: Reference date for pre-filled target dates.
    """
    process = db.session.get(Process, process_id)
    if not process:
        raise NotFoundError(resource="Process", resource_id=process_id)
    if not process.is_active:
        raise ValidationError(
            "Cannot create records for an inactive process",
            details={"process_id": process_id},
        )
    if source_link_id is not None:
        _check_source_link(process.id, source_link_id)

    answers = discovery.validate_answers(discovery_answers)
    prefilled = discovery.prefill_values(process.fields, answers, today=today) if answers else {}

    session = GuidedSession(
        process_id=process.id,
        stage_index=0,
        record_title=discovery.prefill_title(answers) if answers else "",
        answers={str(k): v for k, v in prefilled.items()},
        tasks=[],
        discovery=dict(answers),
        source_link_id=source_link_id,
        created_by=created_by,
    )
    db.session.add(session)
    db.session.commit()
    logger.info(
        "GuidedSession started id=%s process=%s prefilled=%s",
        session.id, process.id, len(prefilled),
        extra={"process_id": process.id, "user_id": created_by},
    )
    return describe_session(session)


def update_session(session_id: int, data: dict) -> dict:
    """Apply wizard edits: record_title, values, linked_process_id, tasks.

    ``values`` are merged into the stored answers after a type check.
    """
    session = _get_session(session_id)
    _ensure_open(session)

    if "record_title" in data:
        session.record_title = str(data.get("record_title") or "")
    if "values" in data:
        values = data.get("values") or {}
        if not isinstance(values, dict):
            raise ValidationError("values must be an object", details={"values": type(values).__name__})
        field_engine.validate_values(session.process.fields, values)
        merged = dict(session.answers or {})
        merged.update({str(k): "" if v is None else str(v) for k, v in values.items()})
        session.answers = merged
    if "linked_process_id" in data:
        session.linked_process_id = record_service.check_linked_process(
            session.process_id, data.get("linked_process_id"),
        )
    if "tasks" in data:
        if not session.process.sub_entities.tasks_enabled:
            raise ValidationError(
                "Tasks are not enabled for this process", details={"tasks": "disabled"},
            )
        session.tasks = _clean_tasks(data.get("tasks"))

    db.session.commit()
    logger.info("GuidedSession updated id=%s", session.id, extra={"process_id": session.process_id})
    return describe_session(session)


def advance(session_id: int) -> dict:
    """Move to the next stage if the current one is complete.

    Raises:
        StageIncompleteError: current stage predicate is false.
        ValidationError: already on the final stage.
    """
    session = _get_session(session_id)
    _ensure_open(session)
    stages = stages_for(session.process)
    current = _current_stage(session, stages)
    index = stages.index(current)

    if index == len(stages) - 1:
        raise ValidationError(
            "Review is the final stage; commit the session instead",
            details={"stage": current},
        )
    _require_complete(session, current)

    target = stages[index + 1]
    session.stage_index = index + 1
    if target == "basic_info" and not session.record_identifier:
        session.record_identifier = record_service.generate_record_identifier(
            record_service.identifier_prefix(session.process),
        )
    db.session.commit()
    logger.info("GuidedSession %s advanced %s -> %s", session.id, current, target)
    return describe_session(session)


def go_back(session_id: int) -> dict:
    session = _get_session(session_id)
    _ensure_open(session)
    stages = stages_for(session.process)
    index = stages.index(_current_stage(session, stages))
    if index == 0:
        raise ValidationError("Already at the first stage", details={"stage": stages[0]})
    session.stage_index = index - 1
    db.session.commit()
    return describe_session(session)


def commit_session(session_id: int) -> dict:
    """Create the record from a session on the review stage.

    Returns:
        {"record": dict, "session": dict, "warnings": [str, ...]}

    Raises:
        ConflictError: the session was already committed.
        StageIncompleteError: not on review, or an earlier predicate no
            longer holds (e.g. a field became required meanwhile).
    """
    session = _get_session(session_id)
    _ensure_open(session)
    process = session.process
    stages = stages_for(process)
    current = _current_stage(session, stages)
    if current != "review":
        raise StageIncompleteError(current, "commit is only available from the review stage")
    for stage in stages:
        _require_complete(session, stage)

    source_link = None
    if session.source_link_id is not None:
        source_link = db.session.get(RecordLink, session.source_link_id)

    # Primary write: record + committed flag, one commit
    record = record_service.build_record(
        process, session.record_title, session.created_by,
        identifier=session.record_identifier,
    )
    db.session.add(record)
    db.session.flush()
    session.record_identifier = record.record_identifier
    session.committed_record_id = record.id
    db.session.commit()
    logger.info(
        "ProcessRecord created id=%s process=%s identifier=%s via guided session %s",
        record.id, process.id, record.record_identifier, session.id,
        extra={"record_id": record.id, "process_id": process.id, "user_id": session.created_by},
    )

    field_ids = {f.id for f in process.fields}
    values = {
        int(k): v for k, v in (session.answers or {}).items()
        if int(k) in field_ids
    }
    warnings = record_service.write_secondaries(
        record, values,
        linked_process_id=session.linked_process_id,
        source_link=source_link,
    )
    emit(record_changed, record.id, action="created", status=record.current_status)

    return {
        "record": record_service.get_record(record.id),
        "session": describe_session(session),
        "warnings": warnings,
    }

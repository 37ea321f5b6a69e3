"""
Workflow Engine - linear approval state machine for ProcessRecords.

Owns every change of a record's (current_status, current_step) pair and the
matching WorkflowHistory entry.

States:
    draft ─approve─▶ in_progress ─approve─▶ ... ─approve (last step)─▶ approved
      │                  │
      └──────reject──────┴──▶ rejected

    approved | rejected | completed are terminal.
    A record whose process has no steps has "no active workflow".

The status write is the primary write.  The history append is committed
separately; if it fails, the status change stands and the result carries
``history_recorded: False`` plus a warning.

Usage:
    from qpd.services.workflow_engine import perform_action

    result = perform_action(record_id=7, action="reject",
                            performed_by="user-1", comments="incomplete data")
"""

import logging
from datetime import datetime, timezone

from qpd.core.exceptions import (
    ActionNotPermittedError,
    NoActiveWorkflowError,
    NotFoundError,
    ValidationError,
    WorkflowCompleteError,
)
from qpd.models import db
from qpd.models.process import WorkflowStep
from qpd.models.record import ProcessRecord, WorkflowHistory
from qpd.services.events import emit, record_changed
from qpd.utils.helpers import commit_best_effort

logger = logging.getLogger(__name__)

ACTIONS = ("approve", "reject")


# ──────────────────────────────────────────────────────────────────────────────
# Step navigation
# ──────────────────────────────────────────────────────────────────────────────

def first_step(process_id: int) -> WorkflowStep | None:
    """Lowest step_order step of a process, or None if it defines no steps."""
    return (
        WorkflowStep.query
        .filter_by(process_id=process_id)
        .order_by(WorkflowStep.step_order, WorkflowStep.id)
        .first()
    )


def next_step(step: WorkflowStep) -> WorkflowStep | None:
    """Step with the minimum step_order strictly greater than ``step``'s."""
    return (
        WorkflowStep.query
        .filter(
            WorkflowStep.process_id == step.process_id,
            WorkflowStep.step_order > step.step_order,
        )
        .order_by(WorkflowStep.step_order, WorkflowStep.id)
        .first()
    )


def initial_state(process_id: int) -> tuple[str, WorkflowStep | None]:
    """Status and current step a new record of the process starts in."""
    return "draft", first_step(process_id)


# ──────────────────────────────────────────────────────────────────────────────
# Read side
# ──────────────────────────────────────────────────────────────────────────────

def _get_record(record_id: int) -> ProcessRecord:
    record = db.session.get(ProcessRecord, record_id)
    if not record:
        raise NotFoundError(resource="ProcessRecord", resource_id=record_id)
    return record


def _workflow_state(record: ProcessRecord) -> str:
    if record.is_terminal:
        return "terminal"
    if record.current_step_id is None:
        return "no_workflow"
    return "active"


def available_actions(record: ProcessRecord) -> dict:
    """
    Describe what the workflow allows on a record right now.

    Returns:
        {"state": "active" | "terminal" | "no_workflow",
         "current_step": dict|None, "next_step": dict|None,
         "can_approve": bool, "can_reject": bool}
    """
    state = _workflow_state(record)
    step = record.current_step if state == "active" else None
    upcoming = next_step(step) if step else None
    return {
        "state": state,
        "status": record.current_status,
        "current_step": step.to_dict() if step else None,
        "next_step": upcoming.to_dict() if upcoming else None,
        "can_approve": bool(step and step.can_approve),
        "can_reject": bool(step and step.can_reject),
    }


def get_history(record_id: int) -> list[dict]:
    """Chronological WorkflowHistory rows of a record, with step names."""
    _get_record(record_id)
    rows = (
        WorkflowHistory.query
        .filter_by(record_id=record_id)
        .order_by(WorkflowHistory.performed_at, WorkflowHistory.id)
        .all()
    )
    return [r.to_dict() for r in rows]


# ──────────────────────────────────────────────────────────────────────────────
# Transitions
# ──────────────────────────────────────────────────────────────────────────────

def _check_transition(record: ProcessRecord, action: str, comments: str | None) -> WorkflowStep:
    """Raise the matching TransitionError unless ``action`` may run now."""
    if action not in ACTIONS:
        raise ValidationError(
            f"Unknown workflow action: {action}",
            details={"action": f"must be one of {', '.join(ACTIONS)}"},
        )

    state = _workflow_state(record)
    if state == "terminal":
        raise WorkflowCompleteError(
            record.id, action, record.current_status, "workflow already complete",
        )
    if state == "no_workflow":
        raise NoActiveWorkflowError(
            record.id, action, record.current_status, "no active workflow",
        )

    step = record.current_step
    if action == "approve" and not step.can_approve:
        raise ActionNotPermittedError(
            record.id, action, record.current_status,
            f"step '{step.step_name}' does not allow approval",
        )
    if action == "reject":
        if not step.can_reject:
            raise ActionNotPermittedError(
                record.id, action, record.current_status,
                f"step '{step.step_name}' does not allow rejection",
            )
        if not (comments or "").strip():
            raise ValidationError(
                "A comment is required to reject a record",
                details={"comments": "required for reject"},
            )
    return step


def perform_action(
    record_id: int,
    action: str,
    performed_by: str,
    comments: str | None = None,
) -> dict:
    """
    Approve or reject the record's current step.

    Args:
        record_id: ProcessRecord id.
        action: "approve" or "reject".
        performed_by: Acting user id (stored in history).
        comments: Free text; mandatory and non-blank for "reject".

    Returns:
        {"record": dict, "action", "previous_status", "new_status",
         "from_step": dict|None, "to_step": dict|None,
         "history_recorded": bool, "warnings": list[str]}

    Raises:
        NotFoundError, ValidationError,
        NoActiveWorkflowError, WorkflowCompleteError, ActionNotPermittedError
    """
    record = _get_record(record_id)
    from_step = _check_transition(record, action, comments)
    previous_status = record.current_status

    # 1. Compute target state
    if action == "approve":
        to_step = next_step(from_step)
        new_status = "in_progress" if to_step else "approved"
    else:
        to_step = None
        new_status = "rejected"

    # 2. Primary write: record state
    record.current_status = new_status
    record.current_step_id = to_step.id if to_step else None
    record.updated_at = datetime.now(timezone.utc)
    db.session.commit()

    logger.info(
        "Workflow %s record=%s %s -> %s by=%s",
        action, record.id, previous_status, new_status, performed_by,
        extra={"record_id": record.id, "action": action, "user_id": performed_by},
    )

    # 3. Secondary write: history append
    warnings = []
    db.session.add(WorkflowHistory(
        record_id=record.id,
        from_step_id=from_step.id,
        to_step_id=to_step.id if to_step else None,
        action=action,
        comments=(comments or "").strip() or None,
        performed_by=performed_by,
    ))
    warning = commit_best_effort("workflow history")
    if warning:
        warnings.append(warning)

    emit(record_changed, record.id, action=action, status=new_status)

    return {
        "record": record.to_dict(),
        "action": action,
        "previous_status": previous_status,
        "new_status": new_status,
        "from_step": from_step.to_dict(),
        "to_step": to_step.to_dict() if to_step else None,
        "history_recorded": warning is None,
        "warnings": warnings,
    }

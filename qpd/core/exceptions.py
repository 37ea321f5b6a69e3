"""
Platform-wide exception hierarchy.

Services raise these types; the application factory registers one handler
per type so every blueprint gets the same HTTP status codes and error body.

Usage:
    from qpd.core.exceptions import NotFoundError, ValidationError

    raise NotFoundError(resource="Process", resource_id=42)
    raise ValidationError("Record title is required", details={"record_title": "empty"})
"""


class NotFoundError(Exception):
    """Raised when a requested process, record, field, step or link does not exist.

    Args:
        resource: Human-readable entity name (e.g. "Process", "ProcessRecord").
        resource_id: The PK that was looked up.
    """

    def __init__(self, resource: str, resource_id: int | str | None = None) -> None:
        self.resource = resource
        self.resource_id = resource_id
        msg = f"{resource}"
        if resource_id is not None:
            msg += f" id={resource_id}"
        msg += " not found"
        super().__init__(msg)


class ValidationError(Exception):
    """Raised when input is well-formed but violates a business rule.

    Examples: empty record title, missing required field, reject without a
    comment, a value that does not fit its field type.

    Maps to HTTP 422.

    Args:
        message: Human-readable explanation of what failed.
        details: Optional field-level breakdown, keyed by field name.
    """

    def __init__(self, message: str, details: dict | None = None) -> None:
        self.details = details or {}
        super().__init__(message)


class ConflictError(Exception):
    """Raised when an operation would violate a uniqueness or lifecycle constraint.

    Maps to HTTP 409.

    Args:
        resource: Model name.
        field: The constrained field.
        value: The conflicting value.
        message: Optional override for the generated message.
    """

    def __init__(
        self,
        resource: str,
        field: str,
        value: str | int | None = None,
        message: str | None = None,
    ) -> None:
        self.resource = resource
        self.field = field
        self.value = value
        super().__init__(message or f"{resource} with {field}={value!r} already exists")


# ── Workflow transition errors ───────────────────────────────────────────────


class TransitionError(Exception):
    """Base for refused workflow actions.  Maps to HTTP 409.

    Non-retryable: repeating the same action on the same record state
    yields the same refusal.
    """

    code = "ERR_TRANSITION"

    def __init__(self, record_id: int, action: str, status: str, reason: str) -> None:
        self.record_id = record_id
        self.action = action
        self.current_status = status
        self.reason = reason
        super().__init__(f"Cannot '{action}' record {record_id} (status={status}): {reason}")


class NoActiveWorkflowError(TransitionError):
    """The record has no current step (its process defines no workflow steps)."""

    code = "ERR_NO_ACTIVE_WORKFLOW"


class WorkflowCompleteError(TransitionError):
    """The record is approved, rejected or completed and accepts no more actions."""

    code = "ERR_WORKFLOW_COMPLETE"


class ActionNotPermittedError(TransitionError):
    """The current step does not allow this action (can_approve / can_reject is false)."""

    code = "ERR_ACTION_NOT_PERMITTED"


class StageIncompleteError(Exception):
    """Raised when the guided wizard is asked to move past an incomplete stage.

    Maps to HTTP 409.
    """

    code = "ERR_STAGE_INCOMPLETE"

    def __init__(self, stage: str, reason: str, details: dict | None = None) -> None:
        self.stage = stage
        self.reason = reason
        self.details = details or {}
        super().__init__(f"Stage '{stage}' is not complete: {reason}")

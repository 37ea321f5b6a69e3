"""Standardised API error responses.

Usage
-----
    from qpd.utils.errors import api_error, E

    return api_error(E.NOT_FOUND, "Process not found")
    return api_error(E.VALIDATION_REQUIRED, "record_title is required")
    return api_error(E.NO_ACTIVE_WORKFLOW, str(exc), details={"record_id": 7})
"""

from __future__ import annotations

from flask import jsonify


# ── Error code constants ──────────────────────────────────────────────
class E:
    """Machine-readable error code constants (``ERR_`` prefix)."""

    # Malformed input – HTTP 400
    VALIDATION_REQUIRED = "ERR_VALIDATION_REQUIRED"
    VALIDATION_INVALID = "ERR_VALIDATION_INVALID"

    # Business-rule failure – HTTP 422
    VALIDATION_RULE = "ERR_VALIDATION_RULE"

    # Not-found – HTTP 404
    NOT_FOUND = "ERR_NOT_FOUND"

    # Conflict / duplicate – HTTP 409
    CONFLICT_DUPLICATE = "ERR_CONFLICT_DUPLICATE"
    CONFLICT_STATE = "ERR_CONFLICT_STATE"

    # Workflow refusals – HTTP 409
    TRANSITION = "ERR_TRANSITION"
    NO_ACTIVE_WORKFLOW = "ERR_NO_ACTIVE_WORKFLOW"
    WORKFLOW_COMPLETE = "ERR_WORKFLOW_COMPLETE"
    ACTION_NOT_PERMITTED = "ERR_ACTION_NOT_PERMITTED"
    STAGE_INCOMPLETE = "ERR_STAGE_INCOMPLETE"

    # Server – HTTP 500
    DATABASE = "ERR_DATABASE"
    INTERNAL = "ERR_INTERNAL"


# ── Default HTTP status mapping ───────────────────────────────────────
_DEFAULT_STATUS: dict[str, int] = {
    E.VALIDATION_REQUIRED: 400,
    E.VALIDATION_INVALID: 400,
    E.VALIDATION_RULE: 422,
    E.NOT_FOUND: 404,
    E.CONFLICT_DUPLICATE: 409,
    E.CONFLICT_STATE: 409,
    E.TRANSITION: 409,
    E.NO_ACTIVE_WORKFLOW: 409,
    E.WORKFLOW_COMPLETE: 409,
    E.ACTION_NOT_PERMITTED: 409,
    E.STAGE_INCOMPLETE: 409,
    E.DATABASE: 500,
    E.INTERNAL: 500,
}


def api_error(
    code: str,
    message: str,
    *,
    status: int | None = None,
    details: dict | None = None,
):
    """Return a standard JSON error response.

    Parameters
    ----------
    code : str
        Machine-readable error code (use ``E.*`` constants).
    message : str
        Human-readable explanation for developers / UI.
    status : int, optional
        HTTP status override.  Falls back to ``_DEFAULT_STATUS[code]``,
        then to ``400``.
    details : dict, optional
        Extra structured payload (field errors, blocking ids, ...).

    Returns
    -------
    tuple[Response, int]
        ``(jsonify(body), http_status)`` – drop-in for Flask views.
    """

    http_status = status or _DEFAULT_STATUS.get(code, 400)

    body: dict = {
        "error": message,
        "code": code,
    }
    if details:
        body["details"] = details

    return jsonify(body), http_status


def register_error_handlers(app):
    """Map the service exception hierarchy to JSON error responses."""
    import logging

    from sqlalchemy.exc import SQLAlchemyError

    from qpd.core.exceptions import (
        ConflictError,
        NotFoundError,
        StageIncompleteError,
        TransitionError,
        ValidationError,
    )
    from qpd.models import db

    logger = logging.getLogger(__name__)

    @app.errorhandler(NotFoundError)
    def _not_found(exc):
        return api_error(E.NOT_FOUND, str(exc))

    @app.errorhandler(ValidationError)
    def _validation(exc):
        return api_error(E.VALIDATION_RULE, str(exc), details=exc.details)

    @app.errorhandler(ConflictError)
    def _conflict(exc):
        return api_error(E.CONFLICT_DUPLICATE, str(exc), details={"field": exc.field})

    @app.errorhandler(TransitionError)
    def _transition(exc):
        return api_error(
            exc.code,
            str(exc),
            status=409,
            details={
                "record_id": exc.record_id,
                "action": exc.action,
                "current_status": exc.current_status,
            },
        )

    @app.errorhandler(StageIncompleteError)
    def _stage(exc):
        return api_error(
            E.STAGE_INCOMPLETE, str(exc),
            details={"stage": exc.stage, **exc.details},
        )

    @app.errorhandler(SQLAlchemyError)
    def _database(exc):
        db.session.rollback()
        logger.exception("Unhandled database error")
        return api_error(E.DATABASE, "Database error")

    @app.errorhandler(404)
    def _route_not_found(e):
        from flask import request
        return api_error(E.NOT_FOUND, f"Not found: {request.path}")

    @app.errorhandler(405)
    def _method_not_allowed(e):
        return api_error(E.VALIDATION_INVALID, "Method not allowed", status=405)

    @app.errorhandler(500)
    def _server_error(e):
        logger.error("500 error: %s", e, exc_info=True)
        return api_error(E.INTERNAL, "Internal server error")

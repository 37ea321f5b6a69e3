"""Shared request and persistence helpers.

current_user_id:       identity of the caller (X-User-Id header or configured default)
json_body:             parsed JSON object body, {} when absent or not an object
commit_best_effort:    commit a secondary write, reporting instead of raising
"""
import logging

from flask import current_app, request
from sqlalchemy.exc import SQLAlchemyError

from qpd.models import db

logger = logging.getLogger(__name__)

USER_HEADER = "X-User-Id"


def current_user_id() -> str:
    """Return the acting user's id for audit columns.

    There is no authentication layer: the caller declares itself through
    ``X-User-Id``; absent that, ``DEFAULT_USER_ID`` from config is used.
    """
    user_id = (request.headers.get(USER_HEADER) or "").strip()
    return user_id or current_app.config["DEFAULT_USER_ID"]


def json_body() -> dict:
    """Return the request JSON object, or an empty dict."""
    data = request.get_json(silent=True)
    return data if isinstance(data, dict) else {}


# ── Database commit helper ───────────────────────────────────────────────────

def commit_best_effort(what: str) -> str | None:
    """Commit a secondary write whose failure must not undo the primary one.

    Returns:
        None on success.
        A human-readable warning on failure; the session is rolled back so
        only the uncommitted secondary changes are discarded.

    Usage::

        warning = commit_best_effort("field values")
        if warning:
            warnings.append(warning)
    """
    try:
        db.session.commit()
        return None
    except SQLAlchemyError:
        db.session.rollback()
        logger.exception("Secondary write failed: %s", what)
        return f"Failed to save {what}"

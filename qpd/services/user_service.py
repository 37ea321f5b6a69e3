"""
User Service - profile directory for record actors.
"""

import logging

from email_validator import EmailNotValidError, validate_email

from qpd.core.exceptions import ConflictError, ValidationError
from qpd.models import db
from qpd.models.process import USER_ROLES
from qpd.models.user import UserProfile

logger = logging.getLogger(__name__)

DEFAULT_ROLE = "initiator"


def _check_role(role: str) -> str:
    if role not in USER_ROLES:
        raise ValidationError(f"Invalid role: {role}", details={"role": sorted(USER_ROLES)})
    return role


def list_users(role: str | None = None) -> list[dict]:
    """Profiles ordered by full name, optionally limited to one role."""
    q = UserProfile.query
    if role:
        q = q.filter_by(role=_check_role(role))
    return [u.to_dict() for u in q.order_by(UserProfile.full_name, UserProfile.id).all()]


def create_user(
    user_id: str,
    full_name: str,
    email: str,
    role: str | None = None,
    department: str | None = None,
) -> dict:
    """Create a user profile.

    Raises:
        ValidationError: unknown role or malformed email.
        ConflictError: a profile already exists for ``user_id``.
    """
    role = _check_role(role or DEFAULT_ROLE)
    try:
        email = validate_email(email.strip(), check_deliverability=False).normalized
    except EmailNotValidError as e:
        raise ValidationError(f"Invalid email: {e}", details={"email": str(e)})

    user_id = user_id.strip()
    if UserProfile.query.filter_by(user_id=user_id).first():
        raise ConflictError(resource="UserProfile", field="user_id", value=user_id)

    profile = UserProfile(
        user_id=user_id,
        full_name=full_name.strip(),
        email=email,
        role=role,
        department=(department or "").strip() or None,
    )
    db.session.add(profile)
    db.session.commit()
    logger.info("UserProfile created id=%s user_id=%s role=%s", profile.id, user_id, role)
    return profile.to_dict()

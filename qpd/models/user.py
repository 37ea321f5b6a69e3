"""User profiles - display names and roles for record actors."""

from datetime import datetime, timezone

from qpd.models import db


def _utcnow():
    return datetime.now(timezone.utc)


class UserProfile(db.Model):
    """Profile of a user referenced by ``created_by`` / ``performed_by``.

    ``user_id`` is the opaque identity string carried in ``X-User-Id``;
    nothing in the core enforces that actors have a profile.
    """

    __tablename__ = "user_profiles"

    id = db.Column(db.Integer, primary_key=True)
    user_id = db.Column(db.String(64), nullable=False, unique=True)
    full_name = db.Column(db.String(200), nullable=False)
    email = db.Column(db.String(255), nullable=False)
    role = db.Column(db.String(30), nullable=False, default="initiator")
    department = db.Column(db.String(200), nullable=True)
    created_at = db.Column(db.DateTime(timezone=True), default=_utcnow)
    updated_at = db.Column(db.DateTime(timezone=True), default=_utcnow, onupdate=_utcnow)

    def to_dict(self):
        return {
            "id": self.id,
            "user_id": self.user_id,
            "full_name": self.full_name,
            "email": self.email,
            "role": self.role,
            "department": self.department,
            "created_at": self.created_at.isoformat() if self.created_at else None,
        }

    def __repr__(self):
        return f"<UserProfile {self.user_id}: {self.full_name} ({self.role})>"

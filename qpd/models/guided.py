"""Guided record creation - server-side wizard state."""

from datetime import datetime, timezone

from qpd.models import db


def _utcnow():
    return datetime.now(timezone.utc)


class GuidedSession(db.Model):
    """One run of the guided creation wizard for a process.

    ``stage_index`` points into the stage list computed from the process
    (the tasks stage only exists when the process enables tasks).
    ``answers`` maps field id (as string) to the raw string value.
    """

    __tablename__ = "guided_sessions"

    id = db.Column(db.Integer, primary_key=True)
    process_id = db.Column(
        db.Integer,
        db.ForeignKey("processes.id", ondelete="CASCADE"),
        nullable=False,
        index=True,
    )
    stage_index = db.Column(db.Integer, nullable=False, default=0)
    record_title = db.Column(db.String(500), default="")
    record_identifier = db.Column(db.String(40), nullable=True, index=True)
    answers = db.Column(db.JSON, default=dict)
    tasks = db.Column(db.JSON, default=list)
    discovery = db.Column(db.JSON, default=dict)
    linked_process_id = db.Column(
        db.Integer,
        db.ForeignKey("processes.id", ondelete="SET NULL"),
        nullable=True,
    )
    source_link_id = db.Column(
        db.Integer,
        db.ForeignKey("record_links.id", ondelete="SET NULL"),
        nullable=True,
        comment="Pending link this session fulfils (follow-on creation)",
    )
    committed_record_id = db.Column(
        db.Integer,
        db.ForeignKey("process_records.id", ondelete="SET NULL"),
        nullable=True,
    )
    created_by = db.Column(db.String(64), nullable=False)
    created_at = db.Column(db.DateTime(timezone=True), default=_utcnow)
    updated_at = db.Column(db.DateTime(timezone=True), default=_utcnow, onupdate=_utcnow)

    process = db.relationship("Process", foreign_keys=[process_id])
    linked_process = db.relationship("Process", foreign_keys=[linked_process_id])

    @property
    def is_committed(self) -> bool:
        return self.committed_record_id is not None

    def to_dict(self):
        return {
            "id": self.id,
            "process_id": self.process_id,
            "stage_index": self.stage_index,
            "record_title": self.record_title or "",
            "record_identifier": self.record_identifier,
            "values": dict(self.answers or {}),
            "tasks": list(self.tasks or []),
            "discovery": dict(self.discovery or {}),
            "linked_process_id": self.linked_process_id,
            "source_link_id": self.source_link_id,
            "committed_record_id": self.committed_record_id,
            "created_by": self.created_by,
            "created_at": self.created_at.isoformat() if self.created_at else None,
            "updated_at": self.updated_at.isoformat() if self.updated_at else None,
        }

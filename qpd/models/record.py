"""
Record-side models - ProcessRecord, RecordFieldValue, WorkflowHistory, RecordLink.

Business rules:
- A ProcessRecord's (current_status, current_step_id) pair is mutated only by
  the workflow engine; field edits only bump ``updated_at``.
- RecordFieldValue stores every value as an opaque string, one row per
  (record, field).  Type parsing happens at the API boundary.
- WorkflowHistory is APPEND-ONLY - rows are never updated or deleted.
- RecordLink with ``target_record_id IS NULL`` is pending; once resolved the
  target is immutable.
"""

from datetime import datetime, timezone

from qpd.models import db

# ── Constants ─────────────────────────────────────────────────────────────────

RECORD_STATUSES = frozenset({"draft", "in_progress", "approved", "rejected", "completed"})

TERMINAL_STATUSES = frozenset({"approved", "rejected", "completed"})


def _utcnow():
    return datetime.now(timezone.utc)


# ── ProcessRecord ─────────────────────────────────────────────────────────────

class ProcessRecord(db.Model):
    """One instance of a Process moving through its workflow."""

    __tablename__ = "process_records"

    id = db.Column(db.Integer, primary_key=True)
    process_id = db.Column(
        db.Integer,
        db.ForeignKey("processes.id", ondelete="CASCADE"),
        nullable=False,
        index=True,
    )
    record_title = db.Column(db.String(500), nullable=False)
    record_identifier = db.Column(
        db.String(40), nullable=True, unique=True,
        comment="<prefix>-<4 chars>; assigned once, immutable",
    )
    current_status = db.Column(
        db.String(20), nullable=False, default="draft",
        comment="draft | in_progress | approved | rejected | completed",
    )
    current_step_id = db.Column(
        db.Integer,
        db.ForeignKey("workflow_steps.id", ondelete="SET NULL"),
        nullable=True,
    )
    created_by = db.Column(db.String(64), nullable=False)
    assigned_to = db.Column(db.String(64), nullable=True)
    created_at = db.Column(db.DateTime(timezone=True), default=_utcnow)
    updated_at = db.Column(db.DateTime(timezone=True), default=_utcnow, onupdate=_utcnow)

    process = db.relationship("Process", backref=db.backref("records", lazy="dynamic"))
    current_step = db.relationship("WorkflowStep", foreign_keys=[current_step_id])
    field_values = db.relationship(
        "RecordFieldValue",
        backref="record",
        cascade="all, delete-orphan",
        passive_deletes=True,
        lazy="select",
    )

    __table_args__ = (
        db.Index("ix_process_records_process_status", "process_id", "current_status"),
        db.Index("ix_process_records_created", "created_at"),
    )

    @property
    def is_terminal(self) -> bool:
        return self.current_status in TERMINAL_STATUSES

    def to_dict(self):
        return {
            "id": self.id,
            "process_id": self.process_id,
            "record_title": self.record_title,
            "record_identifier": self.record_identifier,
            "current_status": self.current_status,
            "current_step_id": self.current_step_id,
            "created_by": self.created_by,
            "assigned_to": self.assigned_to,
            "created_at": self.created_at.isoformat() if self.created_at else None,
            "updated_at": self.updated_at.isoformat() if self.updated_at else None,
        }

    def __repr__(self):
        return f"<ProcessRecord {self.id}: {self.record_title!r} [{self.current_status}]>"


# ── RecordFieldValue ──────────────────────────────────────────────────────────

class RecordFieldValue(db.Model):
    """String value of one ProcessField for one ProcessRecord."""

    __tablename__ = "record_field_values"

    id = db.Column(db.Integer, primary_key=True)
    record_id = db.Column(
        db.Integer,
        db.ForeignKey("process_records.id", ondelete="CASCADE"),
        nullable=False,
    )
    field_id = db.Column(
        db.Integer,
        db.ForeignKey("process_fields.id", ondelete="CASCADE"),
        nullable=False,
    )
    field_value = db.Column(db.Text, nullable=True)
    created_at = db.Column(db.DateTime(timezone=True), default=_utcnow)
    updated_at = db.Column(db.DateTime(timezone=True), default=_utcnow, onupdate=_utcnow)

    __table_args__ = (
        db.UniqueConstraint("record_id", "field_id", name="uq_record_field_values_pair"),
        db.Index("ix_rfv_record", "record_id"),
    )

    def to_dict(self):
        return {
            "id": self.id,
            "record_id": self.record_id,
            "field_id": self.field_id,
            "field_value": self.field_value,
            "created_at": self.created_at.isoformat() if self.created_at else None,
            "updated_at": self.updated_at.isoformat() if self.updated_at else None,
        }


# ── WorkflowHistory ───────────────────────────────────────────────────────────

class WorkflowHistory(db.Model):
    """Immutable audit entry, one per workflow transition."""

    __tablename__ = "workflow_history"

    id = db.Column(db.Integer, primary_key=True)
    record_id = db.Column(
        db.Integer,
        db.ForeignKey("process_records.id", ondelete="CASCADE"),
        nullable=False,
        index=True,
    )
    from_step_id = db.Column(
        db.Integer,
        db.ForeignKey("workflow_steps.id", ondelete="RESTRICT"),
        nullable=True,
    )
    to_step_id = db.Column(
        db.Integer,
        db.ForeignKey("workflow_steps.id", ondelete="RESTRICT"),
        nullable=True,
    )
    action = db.Column(db.String(30), nullable=False, comment="approve | reject")
    comments = db.Column(db.Text, nullable=True, comment="Mandatory when action=reject")
    performed_by = db.Column(db.String(64), nullable=False)
    performed_at = db.Column(db.DateTime(timezone=True), nullable=False, default=_utcnow)

    from_step = db.relationship("WorkflowStep", foreign_keys=[from_step_id])
    to_step = db.relationship("WorkflowStep", foreign_keys=[to_step_id])

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "record_id": self.record_id,
            "from_step_id": self.from_step_id,
            "from_step_name": self.from_step.step_name if self.from_step else None,
            "to_step_id": self.to_step_id,
            "to_step_name": self.to_step.step_name if self.to_step else None,
            "action": self.action,
            "comments": self.comments,
            "performed_by": self.performed_by,
            "performed_at": self.performed_at.isoformat() if self.performed_at else None,
        }

    def __repr__(self) -> str:
        return f"<WorkflowHistory #{self.id} record={self.record_id} {self.action}>"


# ── RecordLink ────────────────────────────────────────────────────────────────

class RecordLink(db.Model):
    """Directed edge: source record triggers a record in the target process."""

    __tablename__ = "record_links"

    id = db.Column(db.Integer, primary_key=True)
    source_record_id = db.Column(
        db.Integer,
        db.ForeignKey("process_records.id", ondelete="CASCADE"),
        nullable=False,
        index=True,
    )
    target_process_id = db.Column(
        db.Integer,
        db.ForeignKey("processes.id", ondelete="CASCADE"),
        nullable=False,
        index=True,
    )
    target_record_id = db.Column(
        db.Integer,
        db.ForeignKey("process_records.id", ondelete="SET NULL"),
        nullable=True,
        index=True,
        comment="NULL while pending",
    )
    created_at = db.Column(db.DateTime(timezone=True), default=_utcnow)
    resolved_at = db.Column(db.DateTime(timezone=True), nullable=True)

    source_record = db.relationship("ProcessRecord", foreign_keys=[source_record_id])
    target_record = db.relationship("ProcessRecord", foreign_keys=[target_record_id])
    target_process = db.relationship("Process", foreign_keys=[target_process_id])

    @property
    def is_pending(self) -> bool:
        return self.target_record_id is None

    def to_dict(self):
        return {
            "id": self.id,
            "source_record_id": self.source_record_id,
            "target_process_id": self.target_process_id,
            "target_record_id": self.target_record_id,
            "is_pending": self.is_pending,
            "created_at": self.created_at.isoformat() if self.created_at else None,
            "resolved_at": self.resolved_at.isoformat() if self.resolved_at else None,
        }

    def __repr__(self):
        return f"<RecordLink {self.id}: {self.source_record_id} -> process {self.target_process_id}>"

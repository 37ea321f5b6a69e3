"""initial_quality_process_schema

Creates the quality process tables:
  - processes, process_fields, workflow_steps    -- process definitions
  - process_records, record_field_values         -- record instances + values
  - workflow_history                             -- one row per transition
  - record_links                                 -- source record -> target process
  - guided_sessions                              -- wizard state
  - user_profiles                                -- user directory

Tables created conditionally to support databases that already received them
via db.create_all() in a development environment.

Revision ID: 5c1e7a9d2b40
Revises:
Create Date: 2026-10-18 09:12:44.118305
"""
from alembic import op
import sqlalchemy as sa
from sqlalchemy import inspect as sa_inspect


# revision identifiers, used by Alembic.
revision = '5c1e7a9d2b40'
down_revision = None
branch_labels = None
depends_on = None


def upgrade():
    bind = op.get_bind()
    inspector = sa_inspect(bind)
    existing = set(inspector.get_table_names())

    # ── Process ───────────────────────────────────────────────────────────
    if "processes" not in existing:
        op.create_table(
            "processes",
            sa.Column("id", sa.Integer(), nullable=False),
            sa.Column("name", sa.String(length=200), nullable=False),
            sa.Column("description", sa.Text(), nullable=True),
            sa.Column("is_active", sa.Boolean(), nullable=False, server_default=sa.true()),
            sa.Column("tag", sa.String(length=100), nullable=True,
                      comment="Free-text sidebar grouping"),
            sa.Column("record_id_prefix", sa.String(length=20), nullable=True,
                      comment="e.g. CAPA"),
            sa.Column("ai_suggestion", sa.Text(), nullable=True),
            sa.Column("sub_entity_config", sa.Text(), nullable=True,
                      comment='JSON: {"tasks_enabled": bool}'),
            sa.Column("created_by", sa.String(length=64), nullable=False),
            sa.Column("created_at", sa.DateTime(timezone=True), nullable=True),
            sa.Column("updated_at", sa.DateTime(timezone=True), nullable=True),
            sa.PrimaryKeyConstraint("id"),
        )
        op.create_index("ix_processes_active_name", "processes", ["is_active", "name"])

    # ── ProcessField ──────────────────────────────────────────────────────
    if "process_fields" not in existing:
        op.create_table(
            "process_fields",
            sa.Column("id", sa.Integer(), nullable=False),
            sa.Column("process_id", sa.Integer(), nullable=False),
            sa.Column("field_name", sa.String(length=100), nullable=False,
                      comment="Machine key, unique per process"),
            sa.Column("field_label", sa.String(length=200), nullable=False),
            sa.Column(
                "field_type", sa.String(length=20), nullable=False,
                server_default="text",
                comment="text | textarea | number | date | select | checkbox | email | url",
            ),
            sa.Column("is_required", sa.Boolean(), nullable=False, server_default=sa.false()),
            sa.Column("display_order", sa.Integer(), nullable=False, server_default="0"),
            sa.Column("field_options", sa.Text(), nullable=True,
                      comment="JSON list of option strings"),
            sa.Column("validation_rules", sa.Text(), nullable=True,
                      comment="JSON object, not interpreted"),
            sa.Column("created_at", sa.DateTime(timezone=True), nullable=True),
            sa.ForeignKeyConstraint(["process_id"], ["processes.id"], ondelete="CASCADE"),
            sa.PrimaryKeyConstraint("id"),
            sa.UniqueConstraint("process_id", "field_name", name="uq_process_fields_name"),
        )
        op.create_index("ix_process_fields_process_id", "process_fields", ["process_id"])

    # ── WorkflowStep ──────────────────────────────────────────────────────
    if "workflow_steps" not in existing:
        op.create_table(
            "workflow_steps",
            sa.Column("id", sa.Integer(), nullable=False),
            sa.Column("process_id", sa.Integer(), nullable=False),
            sa.Column("step_name", sa.String(length=200), nullable=False),
            sa.Column("step_order", sa.Integer(), nullable=False),
            sa.Column(
                "required_role", sa.String(length=30), nullable=False,
                server_default="quality_reviewer",
                comment="admin | quality_manager | quality_reviewer | initiator | qa_final_approver",
            ),
            sa.Column("can_approve", sa.Boolean(), nullable=False, server_default=sa.true()),
            sa.Column("can_reject", sa.Boolean(), nullable=False, server_default=sa.true()),
            sa.Column("created_at", sa.DateTime(timezone=True), nullable=True),
            sa.ForeignKeyConstraint(["process_id"], ["processes.id"], ondelete="CASCADE"),
            sa.PrimaryKeyConstraint("id"),
            sa.UniqueConstraint("process_id", "step_order", name="uq_workflow_steps_order"),
        )
        op.create_index("ix_workflow_steps_process_id", "workflow_steps", ["process_id"])

    # ── ProcessRecord ─────────────────────────────────────────────────────
    if "process_records" not in existing:
        op.create_table(
            "process_records",
            sa.Column("id", sa.Integer(), nullable=False),
            sa.Column("process_id", sa.Integer(), nullable=False),
            sa.Column("record_title", sa.String(length=500), nullable=False),
            sa.Column("record_identifier", sa.String(length=40), nullable=True,
                      comment="<prefix>-<4 chars>; assigned once, immutable"),
            sa.Column(
                "current_status", sa.String(length=20), nullable=False,
                server_default="draft",
                comment="draft | in_progress | approved | rejected | completed",
            ),
            sa.Column("current_step_id", sa.Integer(), nullable=True),
            sa.Column("created_by", sa.String(length=64), nullable=False),
            sa.Column("assigned_to", sa.String(length=64), nullable=True),
            sa.Column("created_at", sa.DateTime(timezone=True), nullable=True),
            sa.Column("updated_at", sa.DateTime(timezone=True), nullable=True),
            sa.ForeignKeyConstraint(["process_id"], ["processes.id"], ondelete="CASCADE"),
            sa.ForeignKeyConstraint(["current_step_id"], ["workflow_steps.id"], ondelete="SET NULL"),
            sa.PrimaryKeyConstraint("id"),
            sa.UniqueConstraint("record_identifier"),
        )
        op.create_index("ix_process_records_process_id", "process_records", ["process_id"])
        op.create_index(
            "ix_process_records_process_status", "process_records",
            ["process_id", "current_status"],
        )
        op.create_index("ix_process_records_created", "process_records", ["created_at"])

    # ── RecordFieldValue ──────────────────────────────────────────────────
    if "record_field_values" not in existing:
        op.create_table(
            "record_field_values",
            sa.Column("id", sa.Integer(), nullable=False),
            sa.Column("record_id", sa.Integer(), nullable=False),
            sa.Column("field_id", sa.Integer(), nullable=False),
            sa.Column("field_value", sa.Text(), nullable=True),
            sa.Column("created_at", sa.DateTime(timezone=True), nullable=True),
            sa.Column("updated_at", sa.DateTime(timezone=True), nullable=True),
            sa.ForeignKeyConstraint(["record_id"], ["process_records.id"], ondelete="CASCADE"),
            sa.ForeignKeyConstraint(["field_id"], ["process_fields.id"], ondelete="CASCADE"),
            sa.PrimaryKeyConstraint("id"),
            sa.UniqueConstraint("record_id", "field_id", name="uq_record_field_values_pair"),
        )
        op.create_index("ix_rfv_record", "record_field_values", ["record_id"])

    # ── WorkflowHistory ───────────────────────────────────────────────────
    if "workflow_history" not in existing:
        op.create_table(
            "workflow_history",
            sa.Column("id", sa.Integer(), nullable=False),
            sa.Column("record_id", sa.Integer(), nullable=False),
            sa.Column("from_step_id", sa.Integer(), nullable=True),
            sa.Column("to_step_id", sa.Integer(), nullable=True),
            sa.Column("action", sa.String(length=30), nullable=False,
                      comment="approve | reject"),
            sa.Column("comments", sa.Text(), nullable=True,
                      comment="Mandatory when action=reject"),
            sa.Column("performed_by", sa.String(length=64), nullable=False),
            sa.Column("performed_at", sa.DateTime(timezone=True), nullable=False),
            sa.ForeignKeyConstraint(["record_id"], ["process_records.id"], ondelete="CASCADE"),
            sa.ForeignKeyConstraint(["from_step_id"], ["workflow_steps.id"], ondelete="RESTRICT"),
            sa.ForeignKeyConstraint(["to_step_id"], ["workflow_steps.id"], ondelete="RESTRICT"),
            sa.PrimaryKeyConstraint("id"),
        )
        op.create_index("ix_workflow_history_record_id", "workflow_history", ["record_id"])

    # ── RecordLink ────────────────────────────────────────────────────────
    if "record_links" not in existing:
        op.create_table(
            "record_links",
            sa.Column("id", sa.Integer(), nullable=False),
            sa.Column("source_record_id", sa.Integer(), nullable=False),
            sa.Column("target_process_id", sa.Integer(), nullable=False),
            sa.Column("target_record_id", sa.Integer(), nullable=True,
                      comment="NULL while pending"),
            sa.Column("created_at", sa.DateTime(timezone=True), nullable=True),
            sa.Column("resolved_at", sa.DateTime(timezone=True), nullable=True),
            sa.ForeignKeyConstraint(["source_record_id"], ["process_records.id"], ondelete="CASCADE"),
            sa.ForeignKeyConstraint(["target_process_id"], ["processes.id"], ondelete="CASCADE"),
            sa.ForeignKeyConstraint(["target_record_id"], ["process_records.id"], ondelete="SET NULL"),
            sa.PrimaryKeyConstraint("id"),
        )
        op.create_index("ix_record_links_source_record_id", "record_links", ["source_record_id"])
        op.create_index("ix_record_links_target_process_id", "record_links", ["target_process_id"])
        op.create_index("ix_record_links_target_record_id", "record_links", ["target_record_id"])

    # ── GuidedSession ─────────────────────────────────────────────────────
    if "guided_sessions" not in existing:
        op.create_table(
            "guided_sessions",
            sa.Column("id", sa.Integer(), nullable=False),
            sa.Column("process_id", sa.Integer(), nullable=False),
            sa.Column("stage_index", sa.Integer(), nullable=False, server_default="0"),
            sa.Column("record_title", sa.String(length=500), nullable=True),
            sa.Column("record_identifier", sa.String(length=40), nullable=True),
            sa.Column("answers", sa.JSON(), nullable=True),
            sa.Column("tasks", sa.JSON(), nullable=True),
            sa.Column("discovery", sa.JSON(), nullable=True),
            sa.Column("linked_process_id", sa.Integer(), nullable=True),
            sa.Column("source_link_id", sa.Integer(), nullable=True),
            sa.Column("committed_record_id", sa.Integer(), nullable=True),
            sa.Column("created_by", sa.String(length=64), nullable=False),
            sa.Column("created_at", sa.DateTime(timezone=True), nullable=True),
            sa.Column("updated_at", sa.DateTime(timezone=True), nullable=True),
            sa.ForeignKeyConstraint(["process_id"], ["processes.id"], ondelete="CASCADE"),
            sa.ForeignKeyConstraint(["linked_process_id"], ["processes.id"], ondelete="SET NULL"),
            sa.ForeignKeyConstraint(["source_link_id"], ["record_links.id"], ondelete="SET NULL"),
            sa.ForeignKeyConstraint(
                ["committed_record_id"], ["process_records.id"], ondelete="SET NULL",
            ),
            sa.PrimaryKeyConstraint("id"),
        )
        op.create_index("ix_guided_sessions_process_id", "guided_sessions", ["process_id"])
        op.create_index("ix_guided_sessions_record_identifier", "guided_sessions",
                        ["record_identifier"])

    # ── UserProfile ───────────────────────────────────────────────────────
    if "user_profiles" not in existing:
        op.create_table(
            "user_profiles",
            sa.Column("id", sa.Integer(), nullable=False),
            sa.Column("user_id", sa.String(length=64), nullable=False),
            sa.Column("full_name", sa.String(length=200), nullable=False),
            sa.Column("email", sa.String(length=255), nullable=False),
            sa.Column("role", sa.String(length=30), nullable=False, server_default="initiator"),
            sa.Column("department", sa.String(length=200), nullable=True),
            sa.Column("created_at", sa.DateTime(timezone=True), nullable=True),
            sa.Column("updated_at", sa.DateTime(timezone=True), nullable=True),
            sa.PrimaryKeyConstraint("id"),
            sa.UniqueConstraint("user_id"),
        )


def downgrade():
    for table in (
        "user_profiles",
        "guided_sessions",
        "record_links",
        "workflow_history",
        "record_field_values",
        "process_records",
        "workflow_steps",
        "process_fields",
        "processes",
    ):
        op.drop_table(table)

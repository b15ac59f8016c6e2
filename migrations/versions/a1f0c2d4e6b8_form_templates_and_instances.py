"""form_templates_and_instances

Creates the form engine tables:
  - form_templates          — template header + JSON section/item definition
  - form_template_versions  — structure snapshot per published version
  - form_instances          — response sets bound to a template snapshot

Tables created conditionally (IF NOT EXISTS semantics) to support idempotent
execution against databases that already received these tables via db.create_all().

Revision ID: a1f0c2d4e6b8
Revises:
Create Date: 2026-10-19 09:12:44.318702
"""
from alembic import op
import sqlalchemy as sa
from sqlalchemy import inspect as sa_inspect


# revision identifiers, used by Alembic.
revision = 'a1f0c2d4e6b8'
down_revision = None
branch_labels = None
depends_on = None


def upgrade():
    bind = op.get_bind()
    inspector = sa_inspect(bind)
    existing = set(inspector.get_table_names())

    # ── FormTemplate ──────────────────────────────────────────────────────
    if "form_templates" not in existing:
        op.create_table(
            "form_templates",
            sa.Column("id", sa.Integer(), nullable=False),
            sa.Column("name", sa.String(length=200), nullable=False),
            sa.Column("description", sa.Text(), nullable=True),
            sa.Column(
                "category", sa.String(length=30), nullable=False,
                server_default="ASSESSMENT",
                comment="ASSESSMENT | VISIT_NOTE | CLIENT_PROFILE | STAFF_PROFILE",
            ),
            sa.Column(
                "status", sa.String(length=20), nullable=False,
                server_default="DRAFT",
                comment="DRAFT | ACTIVE (no way back to DRAFT)",
            ),
            sa.Column("version", sa.Integer(), nullable=False, server_default="1"),
            sa.Column("is_enabled", sa.Boolean(), nullable=False, server_default=sa.false()),
            sa.Column(
                "scoring_method", sa.String(length=20), nullable=False,
                server_default="SUM", comment="SUM | AVERAGE",
            ),
            sa.Column("max_score", sa.Float(), nullable=True),
            sa.Column(
                "definition", sa.JSON(), nullable=True,
                comment="Sections with nested items; ids are stable strings.",
            ),
            sa.Column("created_by", sa.String(length=100), nullable=True),
            sa.Column("published_at", sa.DateTime(timezone=True), nullable=True),
            sa.Column("created_at", sa.DateTime(timezone=True), nullable=True),
            sa.Column("updated_at", sa.DateTime(timezone=True), nullable=True),
            sa.PrimaryKeyConstraint("id"),
        )
        op.create_index(
            "ix_form_templates_category_status", "form_templates", ["category", "status"],
        )

    # ── FormTemplateVersion ───────────────────────────────────────────────
    if "form_template_versions" not in existing:
        op.create_table(
            "form_template_versions",
            sa.Column("id", sa.Integer(), nullable=False),
            sa.Column("template_id", sa.Integer(), nullable=False),
            sa.Column("version", sa.Integer(), nullable=False),
            sa.Column("snapshot", sa.JSON(), nullable=False),
            sa.Column("created_at", sa.DateTime(timezone=True), nullable=True),
            sa.ForeignKeyConstraint(["template_id"], ["form_templates.id"], ondelete="CASCADE"),
            sa.PrimaryKeyConstraint("id"),
            sa.UniqueConstraint("template_id", "version", name="uq_form_template_version"),
        )

    # ── FormInstance ──────────────────────────────────────────────────────
    if "form_instances" not in existing:
        op.create_table(
            "form_instances",
            sa.Column("id", sa.Integer(), nullable=False),
            sa.Column("template_id", sa.Integer(), nullable=False),
            sa.Column("template_version", sa.Integer(), nullable=False),
            sa.Column(
                "snapshot", sa.JSON(), nullable=False,
                comment="Template structure the responses were filled against.",
            ),
            sa.Column(
                "status", sa.String(length=20), nullable=False,
                server_default="IN_PROGRESS", comment="IN_PROGRESS | COMPLETED",
            ),
            sa.Column("subject_ref", sa.String(length=100), nullable=True),
            sa.Column("responses", sa.JSON(), nullable=True),
            sa.Column("total_score", sa.Float(), nullable=True),
            sa.Column("score_summary", sa.JSON(), nullable=True),
            sa.Column("corrects_instance_id", sa.Integer(), nullable=True),
            sa.Column("started_by", sa.String(length=100), nullable=True),
            sa.Column("last_draft_saved_at", sa.DateTime(timezone=True), nullable=True),
            sa.Column("completed_at", sa.DateTime(timezone=True), nullable=True),
            sa.Column("created_at", sa.DateTime(timezone=True), nullable=True),
            sa.Column("updated_at", sa.DateTime(timezone=True), nullable=True),
            sa.ForeignKeyConstraint(["template_id"], ["form_templates.id"], ondelete="RESTRICT"),
            sa.ForeignKeyConstraint(
                ["corrects_instance_id"], ["form_instances.id"], ondelete="SET NULL",
            ),
            sa.PrimaryKeyConstraint("id"),
        )
        op.create_index(
            "ix_form_instances_template", "form_instances", ["template_id", "status"],
        )
        op.create_index("ix_form_instances_subject", "form_instances", ["subject_ref"])


def downgrade():
    op.drop_table("form_instances")
    op.drop_table("form_template_versions")
    op.drop_table("form_templates")

"""Baseline schema for jobs, outputs, progress, credits and notifications.

Revision ID: 5a1f0c7e2b94
Revises:
Create Date: 2026-10-19
"""

from __future__ import annotations

import sqlalchemy as sa
from alembic import op
from sqlalchemy.dialects import postgresql

revision = "5a1f0c7e2b94"
down_revision = None
branch_labels = None
depends_on = None

_ISO_NOW = sa.text("""to_char((now() AT TIME ZONE 'UTC'), 'YYYY-MM-DD"T"HH24:MI:SS"Z"')""")


def upgrade() -> None:
  """Upgrade schema."""
  op.create_table(
    "jobs",
    sa.Column("job_id", sa.String(), nullable=False),
    sa.Column("owner_id", sa.String(), nullable=True),
    sa.Column("stage", sa.String(), nullable=False),
    sa.Column("title", sa.Text(), nullable=True),
    sa.Column("document_metadata", postgresql.JSONB(astext_type=sa.Text()), server_default=sa.text("'{}'::jsonb"), nullable=False),
    sa.Column("full_text", sa.Text(), nullable=False),
    sa.Column("source_object_key", sa.String(), nullable=True),
    sa.Column("last_error", sa.Text(), nullable=True),
    sa.Column("error_reason", sa.String(), nullable=True),
    sa.Column("image_errors", postgresql.JSONB(astext_type=sa.Text()), server_default=sa.text("'[]'::jsonb"), nullable=False),
    sa.Column("retry_count", sa.Integer(), server_default="0", nullable=False),
    sa.Column("created_at", sa.String(), server_default=_ISO_NOW, nullable=False),
    sa.Column("updated_at", sa.String(), server_default=_ISO_NOW, nullable=False),
    sa.Column("completed_at", sa.String(), nullable=True),
    sa.PrimaryKeyConstraint("job_id"),
  )
  op.create_index(op.f("ix_jobs_owner_id"), "jobs", ["owner_id"], unique=False)
  op.create_index(op.f("ix_jobs_stage"), "jobs", ["stage"], unique=False)

  op.create_table(
    "artifacts",
    sa.Column("artifact_id", sa.String(), nullable=False),
    sa.Column("job_id", sa.String(), nullable=False),
    sa.Column("artifact_type", sa.String(), nullable=False),
    sa.Column("content", sa.Text(), nullable=False),
    sa.Column("tokens_used", sa.Integer(), nullable=True),
    sa.Column("generation_seconds", sa.Float(), nullable=True),
    sa.Column("created_at", sa.String(), server_default=_ISO_NOW, nullable=False),
    sa.ForeignKeyConstraint(["job_id"], ["jobs.job_id"], ondelete="CASCADE"),
    sa.PrimaryKeyConstraint("artifact_id"),
    sa.UniqueConstraint("job_id", "artifact_type", name="ux_artifacts_job_type"),
  )
  op.create_index(op.f("ix_artifacts_job_id"), "artifacts", ["job_id"], unique=False)

  op.create_table(
    "hero_images",
    sa.Column("image_id", sa.String(), nullable=False),
    sa.Column("job_id", sa.String(), nullable=False),
    sa.Column("image_url", sa.Text(), nullable=False),
    sa.Column("object_key", sa.String(), nullable=False),
    sa.Column("prompt", sa.Text(), nullable=False),
    sa.Column("created_at", sa.String(), server_default=_ISO_NOW, nullable=False),
    sa.ForeignKeyConstraint(["job_id"], ["jobs.job_id"], ondelete="CASCADE"),
    sa.PrimaryKeyConstraint("image_id"),
    sa.UniqueConstraint("job_id"),
  )

  op.create_table(
    "section_images",
    sa.Column("image_id", sa.String(), nullable=False),
    sa.Column("artifact_id", sa.String(), nullable=False),
    sa.Column("section_number", sa.Integer(), nullable=False),
    sa.Column("section_title", sa.Text(), nullable=False),
    sa.Column("image_url", sa.Text(), nullable=False),
    sa.Column("object_key", sa.String(), nullable=False),
    sa.Column("prompt", sa.Text(), nullable=False),
    sa.Column("created_at", sa.String(), server_default=_ISO_NOW, nullable=False),
    sa.ForeignKeyConstraint(["artifact_id"], ["artifacts.artifact_id"], ondelete="CASCADE"),
    sa.PrimaryKeyConstraint("image_id"),
    sa.UniqueConstraint("artifact_id", "section_number", name="ux_section_images_artifact_section"),
  )
  op.create_index(op.f("ix_section_images_artifact_id"), "section_images", ["artifact_id"], unique=False)

  op.create_table(
    "job_progress",
    sa.Column("job_id", sa.String(), nullable=False),
    sa.Column("stage", sa.String(), nullable=False),
    sa.Column("current", sa.Integer(), nullable=False),
    sa.Column("total", sa.Integer(), nullable=False),
    sa.Column("message", sa.Text(), nullable=False),
    sa.Column("complete", sa.Boolean(), server_default="false", nullable=False),
    sa.Column("error", sa.String(), nullable=True),
    sa.Column("updated_at", sa.DateTime(timezone=True), server_default=sa.text("now()"), nullable=False),
    sa.PrimaryKeyConstraint("job_id"),
  )

  op.create_table(
    "credit_accounts",
    sa.Column("owner_id", sa.String(), nullable=False),
    sa.Column("balance", sa.BigInteger(), server_default="0", nullable=False),
    sa.Column("updated_at", sa.DateTime(timezone=True), server_default=sa.text("now()"), nullable=False),
    sa.CheckConstraint("balance >= 0", name="ck_credit_accounts_balance_non_negative"),
    sa.PrimaryKeyConstraint("owner_id"),
  )

  op.create_table(
    "ledger_entries",
    sa.Column("id", postgresql.UUID(as_uuid=True), nullable=False),
    sa.Column("owner_id", sa.String(), nullable=False),
    sa.Column("delta", sa.Integer(), nullable=False),
    sa.Column("balance_after", sa.BigInteger(), nullable=False),
    sa.Column("category", sa.String(), nullable=False),
    sa.Column("job_id", sa.String(), nullable=True),
    sa.Column("description", sa.Text(), nullable=True),
    sa.Column("created_at", sa.DateTime(timezone=True), server_default=sa.text("now()"), nullable=False),
    sa.PrimaryKeyConstraint("id"),
  )
  op.create_index(op.f("ix_ledger_entries_owner_id"), "ledger_entries", ["owner_id"], unique=False)
  op.create_index(op.f("ix_ledger_entries_job_id"), "ledger_entries", ["job_id"], unique=False)
  op.create_index("ux_ledger_entries_job_debit", "ledger_entries", ["job_id"], unique=True, postgresql_where=sa.text("category = 'debit-for-job'"))

  op.create_table(
    "notifications",
    sa.Column("id", postgresql.UUID(as_uuid=True), nullable=False),
    sa.Column("user_id", sa.String(), nullable=False),
    sa.Column("notification_type", sa.String(), nullable=False),
    sa.Column("title", sa.String(), nullable=False),
    sa.Column("body", sa.Text(), nullable=False),
    sa.Column("data_json", postgresql.JSONB(astext_type=sa.Text()), nullable=False),
    sa.Column("read", sa.Boolean(), server_default="false", nullable=False),
    sa.Column("created_at", sa.DateTime(timezone=True), server_default=sa.text("now()"), nullable=True),
    sa.PrimaryKeyConstraint("id"),
  )
  op.create_index(op.f("ix_notifications_user_id"), "notifications", ["user_id"], unique=False)
  op.create_index(op.f("ix_notifications_notification_type"), "notifications", ["notification_type"], unique=False)


def downgrade() -> None:
  """Downgrade schema."""
  op.drop_index(op.f("ix_notifications_notification_type"), table_name="notifications")
  op.drop_index(op.f("ix_notifications_user_id"), table_name="notifications")
  op.drop_table("notifications")
  op.drop_index("ux_ledger_entries_job_debit", table_name="ledger_entries")
  op.drop_index(op.f("ix_ledger_entries_job_id"), table_name="ledger_entries")
  op.drop_index(op.f("ix_ledger_entries_owner_id"), table_name="ledger_entries")
  op.drop_table("ledger_entries")
  op.drop_table("credit_accounts")
  op.drop_table("job_progress")
  op.drop_index(op.f("ix_section_images_artifact_id"), table_name="section_images")
  op.drop_table("section_images")
  op.drop_table("hero_images")
  op.drop_index(op.f("ix_artifacts_job_id"), table_name="artifacts")
  op.drop_table("artifacts")
  op.drop_index(op.f("ix_jobs_stage"), table_name="jobs")
  op.drop_index(op.f("ix_jobs_owner_id"), table_name="jobs")
  op.drop_table("jobs")

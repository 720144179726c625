from __future__ import annotations

import datetime

from sqlalchemy import Boolean, DateTime, Float, ForeignKey, Integer, String, Text, UniqueConstraint, func, text
from sqlalchemy.dialects.postgresql import JSONB
from sqlalchemy.orm import Mapped, mapped_column

from app.core.database import Base

_ISO_NOW = text("""to_char((now() AT TIME ZONE 'UTC'), 'YYYY-MM-DD"T"HH24:MI:SS"Z"')""")


class Job(Base):
  __tablename__ = "jobs"

  job_id: Mapped[str] = mapped_column(String, primary_key=True)
  owner_id: Mapped[str | None] = mapped_column(String, nullable=True, index=True)
  stage: Mapped[str] = mapped_column(String, nullable=False, index=True)
  title: Mapped[str | None] = mapped_column(Text, nullable=True)
  document_metadata: Mapped[dict] = mapped_column(JSONB, nullable=False, default=dict, server_default=text("'{}'::jsonb"))
  full_text: Mapped[str] = mapped_column(Text, nullable=False, default="")
  source_object_key: Mapped[str | None] = mapped_column(String, nullable=True)
  last_error: Mapped[str | None] = mapped_column(Text, nullable=True)
  error_reason: Mapped[str | None] = mapped_column(String, nullable=True)
  image_errors: Mapped[list] = mapped_column(JSONB, nullable=False, default=list, server_default=text("'[]'::jsonb"))
  retry_count: Mapped[int] = mapped_column(Integer, nullable=False, default=0, server_default="0")
  created_at: Mapped[str] = mapped_column(String, nullable=False, server_default=_ISO_NOW)
  updated_at: Mapped[str] = mapped_column(String, nullable=False, server_default=_ISO_NOW)
  completed_at: Mapped[str | None] = mapped_column(String, nullable=True)


class Artifact(Base):
  __tablename__ = "artifacts"
  __table_args__ = (UniqueConstraint("job_id", "artifact_type", name="ux_artifacts_job_type"),)

  artifact_id: Mapped[str] = mapped_column(String, primary_key=True)
  job_id: Mapped[str] = mapped_column(ForeignKey("jobs.job_id", ondelete="CASCADE"), nullable=False, index=True)
  artifact_type: Mapped[str] = mapped_column(String, nullable=False)
  content: Mapped[str] = mapped_column(Text, nullable=False)
  tokens_used: Mapped[int | None] = mapped_column(Integer, nullable=True)
  generation_seconds: Mapped[float | None] = mapped_column(Float, nullable=True)
  created_at: Mapped[str] = mapped_column(String, nullable=False, server_default=_ISO_NOW)


class HeroImage(Base):
  __tablename__ = "hero_images"

  image_id: Mapped[str] = mapped_column(String, primary_key=True)
  job_id: Mapped[str] = mapped_column(ForeignKey("jobs.job_id", ondelete="CASCADE"), nullable=False, unique=True)
  image_url: Mapped[str] = mapped_column(Text, nullable=False)
  object_key: Mapped[str] = mapped_column(String, nullable=False)
  prompt: Mapped[str] = mapped_column(Text, nullable=False)
  created_at: Mapped[str] = mapped_column(String, nullable=False, server_default=_ISO_NOW)


class SectionImage(Base):
  __tablename__ = "section_images"
  __table_args__ = (UniqueConstraint("artifact_id", "section_number", name="ux_section_images_artifact_section"),)

  image_id: Mapped[str] = mapped_column(String, primary_key=True)
  artifact_id: Mapped[str] = mapped_column(ForeignKey("artifacts.artifact_id", ondelete="CASCADE"), nullable=False, index=True)
  section_number: Mapped[int] = mapped_column(Integer, nullable=False)
  section_title: Mapped[str] = mapped_column(Text, nullable=False)
  image_url: Mapped[str] = mapped_column(Text, nullable=False)
  object_key: Mapped[str] = mapped_column(String, nullable=False)
  prompt: Mapped[str] = mapped_column(Text, nullable=False)
  created_at: Mapped[str] = mapped_column(String, nullable=False, server_default=_ISO_NOW)


class JobProgress(Base):
  """Durable mirror of the latest progress snapshot per job."""

  __tablename__ = "job_progress"

  job_id: Mapped[str] = mapped_column(String, primary_key=True)
  stage: Mapped[str] = mapped_column(String, nullable=False)
  current: Mapped[int] = mapped_column(Integer, nullable=False, default=0)
  total: Mapped[int] = mapped_column(Integer, nullable=False, default=0)
  message: Mapped[str] = mapped_column(Text, nullable=False, default="")
  complete: Mapped[bool] = mapped_column(Boolean, nullable=False, default=False, server_default="false")
  error: Mapped[str | None] = mapped_column(String, nullable=True)
  updated_at: Mapped[datetime.datetime] = mapped_column(DateTime(timezone=True), nullable=False, server_default=func.now(), onupdate=func.now())

"""Storage interfaces for jobs and their generated outputs."""

from __future__ import annotations

from typing import Any, Protocol

from app.jobs.models import ArtifactRecord, HeroImageRecord, JobOutputs, JobRecord, JobStage, SectionImageRecord


class JobsRepository(Protocol):
  """Repository contract for job and output persistence."""

  async def create_job(self, record: JobRecord) -> None:
    """Persist an initial job record."""

  async def get_job(self, job_id: str) -> JobRecord | None:
    """Fetch a job by identifier."""

  async def update_job(self, job_id: str, *, stage: JobStage | None = None, last_error: str | None = None, error_reason: str | None = None, clear_error: bool = False, image_errors: list[str] | None = None, retry_count: int | None = None, completed_at: str | None = None) -> JobRecord | None:
    """Apply a partial update and return the updated record."""

  async def save_artifact(self, record: ArtifactRecord) -> ArtifactRecord:
    """Insert a text artifact; returns the stored row (existing row on conflict)."""

  async def save_hero_image(self, record: HeroImageRecord) -> HeroImageRecord:
    """Insert the job's hero image."""

  async def save_section_image(self, record: SectionImageRecord) -> SectionImageRecord:
    """Insert an illustration for one artifact section."""

  async def get_outputs(self, job_id: str) -> JobOutputs:
    """Load every output row recorded for a job."""


def job_update_fields(*, stage: JobStage | None, last_error: str | None, error_reason: str | None, clear_error: bool, image_errors: list[str] | None, retry_count: int | None, completed_at: str | None) -> dict[str, Any]:
  """Collect the non-empty fields of a partial job update."""
  fields: dict[str, Any] = {}
  if stage is not None:
    fields["stage"] = stage
  if clear_error:
    fields["last_error"] = None
    fields["error_reason"] = None
  if last_error is not None:
    fields["last_error"] = last_error
  if error_reason is not None:
    fields["error_reason"] = error_reason
  if image_errors is not None:
    fields["image_errors"] = list(image_errors)
  if retry_count is not None:
    fields["retry_count"] = retry_count
  if completed_at is not None:
    fields["completed_at"] = completed_at
  return fields

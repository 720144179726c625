"""Storage interface for the durable progress mirror."""

from __future__ import annotations

from typing import Protocol

from app.jobs.models import ProgressSnapshot


class ProgressRepository(Protocol):
  """Keeps exactly one snapshot per job."""

  async def upsert_progress(self, job_id: str, snapshot: ProgressSnapshot) -> None:
    """Insert or overwrite the job's snapshot."""

  async def get_progress(self, job_id: str) -> ProgressSnapshot | None:
    """Return the stored snapshot, if any."""

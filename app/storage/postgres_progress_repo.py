"""Postgres-backed durable progress snapshots."""

from __future__ import annotations

from sqlalchemy import func
from sqlalchemy.dialects.postgresql import insert

from app.core.database import require_session_factory
from app.jobs.models import ProgressSnapshot
from app.schema.jobs import JobProgress
from app.storage.progress_repo import ProgressRepository


class PostgresProgressRepository(ProgressRepository):
  """Upsert one row per job so the latest snapshot always wins."""

  def __init__(self) -> None:
    self._session_factory = require_session_factory()

  async def upsert_progress(self, job_id: str, snapshot: ProgressSnapshot) -> None:
    values = {"stage": snapshot.stage, "current": snapshot.current, "total": snapshot.total, "message": snapshot.message, "complete": snapshot.complete, "error": snapshot.error}
    async with self._session_factory() as session:
      stmt = insert(JobProgress).values(job_id=job_id, **values).on_conflict_do_update(index_elements=[JobProgress.job_id], set_={**values, "updated_at": func.now()})
      await session.execute(stmt)
      await session.commit()

  async def get_progress(self, job_id: str) -> ProgressSnapshot | None:
    async with self._session_factory() as session:
      row = await session.get(JobProgress, job_id)
      if row is None:
        return None
      updated_at = row.updated_at.timestamp() if row.updated_at is not None else None
      return ProgressSnapshot(stage=row.stage, current=row.current, total=row.total, message=row.message, complete=row.complete, error=row.error, updated_at=updated_at)  # type: ignore[arg-type]

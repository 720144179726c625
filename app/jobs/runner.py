"""Background execution of pipeline runs with a terminal-state guarantee."""

from __future__ import annotations

import asyncio
import logging

from app.jobs.models import JobStage, ProgressSnapshot
from app.jobs.pipeline import JobPipelineCoordinator
from app.jobs.progress import ProgressPublisher
from app.notifications.contracts import JobEvent, NotificationSink
from app.storage.jobs_repo import JobsRepository

logger = logging.getLogger(__name__)

_CRASH_MESSAGE = "Processing stopped unexpectedly. Retry the job to continue."


class JobAlreadyRunningError(RuntimeError):
  """Raised when a second run is requested for a job that is still running."""


class PipelineRunner:
  """Spawns one background task per job run and owns its error boundary.

  The caller gets control back immediately; the spawned task alone is responsible
  for the job reaching a terminal state.
  """

  def __init__(self, coordinator: JobPipelineCoordinator, *, jobs_repo: JobsRepository, publisher: ProgressPublisher, notifications: NotificationSink) -> None:
    self._coordinator = coordinator
    self._jobs_repo = jobs_repo
    self._publisher = publisher
    self._notifications = notifications
    self._tasks: dict[str, asyncio.Task[None]] = {}
    # Jobs reserved by a caller that is still preparing the run.
    self._claims: set[str] = set()

  def is_running(self, job_id: str) -> bool:
    if job_id in self._claims:
      return True
    task = self._tasks.get(job_id)
    return task is not None and not task.done()

  def claim(self, job_id: str) -> None:
    """Reserve the job for a run about to be spawned; no await may sit between check and reserve."""
    if self.is_running(job_id):
      raise JobAlreadyRunningError(f"Job {job_id} is already running.")
    self._claims.add(job_id)

  def release(self, job_id: str) -> None:
    """Drop a reservation whose run will not be spawned."""
    self._claims.discard(job_id)

  def spawn(self, job_id: str, *, start_stage: JobStage = JobStage.CREATED, claimed: bool = False) -> asyncio.Task[None]:
    if not claimed and self.is_running(job_id):
      raise JobAlreadyRunningError(f"Job {job_id} is already running.")
    self._claims.discard(job_id)
    task = asyncio.create_task(self._run_guarded(job_id, start_stage), name=f"pipeline:{job_id}")
    self._tasks[job_id] = task
    task.add_done_callback(lambda finished: self._forget(job_id, finished))
    return task

  async def wait_idle(self, timeout: float | None = None) -> None:
    """Wait for in-flight runs, e.g. during shutdown or in tests."""
    pending = [task for task in self._tasks.values() if not task.done()]
    if not pending:
      return
    _done, still_running = await asyncio.wait(pending, timeout=timeout)
    if still_running:
      logger.warning("Shutdown with %s pipeline runs still in flight", len(still_running))

  def _forget(self, job_id: str, task: asyncio.Task[None]) -> None:
    if self._tasks.get(job_id) is task:
      del self._tasks[job_id]
    if task.cancelled():
      logger.warning("Pipeline task cancelled job_id=%s", job_id)

  async def _run_guarded(self, job_id: str, start_stage: JobStage) -> None:
    try:
      await self._coordinator.run(job_id, start_stage=start_stage)
    except Exception:  # noqa: BLE001
      logger.error("Pipeline run escaped its coordinator job_id=%s", job_id, exc_info=True)
      await self._force_terminal(job_id)

  async def _force_terminal(self, job_id: str) -> None:
    """Last-resort failure recording so no observer waits forever."""
    owner_id: str | None = None
    title = "your document"
    try:
      job = await self._jobs_repo.update_job(job_id, stage=JobStage.FAILED, last_error=_CRASH_MESSAGE, error_reason="internal-error")
      if job is not None:
        owner_id = job.owner_id
        title = job.title or title
    except Exception:  # noqa: BLE001
      logger.error("Could not mark job failed job_id=%s", job_id, exc_info=True)

    await self._publisher.publish(job_id, ProgressSnapshot(stage="failed", current=0, total=0, message=_CRASH_MESSAGE, complete=True, error="internal-error"))
    await self._notifications.notify(JobEvent(event_type="job_failed", owner_id=owner_id, job_id=job_id, data={"title": title, "error": _CRASH_MESSAGE}))

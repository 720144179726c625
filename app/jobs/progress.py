"""Latest-wins job progress with an ephemeral map mirrored to durable storage."""

from __future__ import annotations

import asyncio
import logging
import time
from collections import defaultdict
from collections.abc import AsyncIterator, Callable

from app.jobs.models import ProgressSnapshot
from app.storage.progress_repo import ProgressRepository

logger = logging.getLogger(__name__)


class ProgressPublisher:
  """Publishes per-job snapshots to memory first and durable storage second.

  The in-memory map is the fast path for pollers on this instance; the durable mirror
  lets other instances and late observers read progress after a restart.
  """

  def __init__(self, durable_store: ProgressRepository, *, clock: Callable[[], float] = time.monotonic) -> None:
    self._durable_store = durable_store
    self._clock = clock
    self._snapshots: dict[str, ProgressSnapshot] = {}
    self._published_at: dict[str, float] = {}
    # Publish order per job, and the newest position already mirrored durably.
    self._sequence: dict[str, int] = {}
    self._durable_sequence: dict[str, int] = {}
    self._durable_locks: defaultdict[str, asyncio.Lock] = defaultdict(asyncio.Lock)

  async def publish(self, job_id: str, snapshot: ProgressSnapshot) -> None:
    """Overwrite the current snapshot for a job; durable write failures are logged only.

    Durable writes for one job run one at a time and always carry the newest snapshot,
    so a slow earlier write can never land on top of a later one.
    """
    sequence = self._sequence.get(job_id, 0) + 1
    self._sequence[job_id] = sequence
    self._snapshots[job_id] = snapshot
    self._published_at[job_id] = self._clock()

    async with self._durable_locks[job_id]:
      if self._durable_sequence.get(job_id, 0) >= sequence:
        return
      latest_sequence = self._sequence.get(job_id, sequence)
      latest = self._snapshots.get(job_id, snapshot)
      try:
        await self._durable_store.upsert_progress(job_id, latest)
      except Exception:  # noqa: BLE001
        logger.warning("Durable progress write failed job_id=%s stage=%s", job_id, latest.stage, exc_info=True)
        return
      self._durable_sequence[job_id] = latest_sequence

  def peek(self, job_id: str) -> ProgressSnapshot | None:
    return self._snapshots.get(job_id)

  async def peek_durable(self, job_id: str) -> ProgressSnapshot | None:
    return await self._durable_store.get_progress(job_id)

  async def current(self, job_id: str) -> ProgressSnapshot | None:
    """Return the ephemeral snapshot, falling back to the durable copy."""
    snapshot = self.peek(job_id)
    if snapshot is not None:
      return snapshot
    return await self.peek_durable(job_id)

  def sweep(self, retention_seconds: float) -> int:
    """Evict completed snapshots older than the retention window from memory."""
    cutoff = self._clock() - retention_seconds
    expired = [job_id for job_id, snapshot in self._snapshots.items() if snapshot.complete and self._published_at.get(job_id, 0.0) <= cutoff]
    for job_id in expired:
      self._snapshots.pop(job_id, None)
      self._published_at.pop(job_id, None)
      self._sequence.pop(job_id, None)
      self._durable_sequence.pop(job_id, None)
      lock = self._durable_locks.get(job_id)
      if lock is not None and not lock.locked():
        del self._durable_locks[job_id]
    if expired:
      logger.debug("Evicted %s completed progress snapshots", len(expired))
    return len(expired)


async def poll_progress(publisher: ProgressPublisher, job_id: str, *, interval_seconds: float = 1.0) -> AsyncIterator[ProgressSnapshot]:
  """Yield each new snapshot until one reports completion.

  Completion is the only way this generator ends on its own; a job with no snapshot
  yet simply keeps the caller waiting.
  """
  last_seen: ProgressSnapshot | None = None
  while True:
    snapshot = await publisher.current(job_id)
    if snapshot is not None and snapshot != last_seen:
      last_seen = snapshot
      yield snapshot
      if snapshot.complete:
        return
    await asyncio.sleep(interval_seconds)

"""Bounded-concurrency execution of independent generation tasks."""

from __future__ import annotations

import asyncio
import logging
from collections.abc import Awaitable, Callable, Sequence
from dataclasses import dataclass, field
from typing import Any, Generic, TypeVar

logger = logging.getLogger(__name__)

DEFAULT_CONCURRENCY = 3

ResultT = TypeVar("ResultT")


@dataclass(frozen=True)
class GenerationTask:
  """One unit of generation work, e.g. a section illustration."""

  target_id: str
  prompt: str
  destination: str
  context: dict[str, Any] = field(default_factory=dict, hash=False, compare=False)


@dataclass(frozen=True)
class TaskFailure:
  """A task that raised, paired with the raised error."""

  task: GenerationTask
  error: BaseException


@dataclass(frozen=True)
class BatchResult(Generic[ResultT]):
  """Outcome of a batch run; successes keep submission order."""

  successes: list[tuple[GenerationTask, ResultT]]
  failures: list[TaskFailure]

  @property
  def completed(self) -> int:
    return len(self.successes) + len(self.failures)


ProgressCallback = Callable[[int], Awaitable[None] | None]


async def _notify_progress(on_progress: ProgressCallback | None, completed: int) -> None:
  """Invoke the progress callback; its failures never affect the batch."""
  if on_progress is None:
    return
  try:
    outcome = on_progress(completed)
    if asyncio.iscoroutine(outcome):
      await outcome
  except Exception:  # noqa: BLE001
    logger.warning("Batch progress callback failed at completed=%s", completed, exc_info=True)


async def run_batched(tasks: Sequence[GenerationTask], *, handler: Callable[[GenerationTask], Awaitable[ResultT]], concurrency: int = DEFAULT_CONCURRENCY, on_progress: ProgressCallback | None = None) -> BatchResult[ResultT]:
  """Run tasks in sequential groups of ``concurrency``.

  Every task in a group starts together and the next group starts only after each
  member has finished. A failing task is recorded and never cancels its siblings.
  The progress callback receives the running count of finished tasks (succeeded or
  failed) each time a task finishes.
  """
  if concurrency < 1:
    raise ValueError("concurrency must be at least 1")

  successes: list[tuple[GenerationTask, ResultT]] = []
  failures: list[TaskFailure] = []
  completed = 0

  async def _run_one(task: GenerationTask) -> ResultT:
    nonlocal completed
    try:
      return await handler(task)
    finally:
      completed += 1
      await _notify_progress(on_progress, completed)

  for start in range(0, len(tasks), concurrency):
    group = tasks[start : start + concurrency]
    # Await the whole group; exceptions come back as values.
    outcomes = await asyncio.gather(*(_run_one(task) for task in group), return_exceptions=True)
    for task, outcome in zip(group, outcomes, strict=True):
      if isinstance(outcome, asyncio.CancelledError):
        raise outcome
      if isinstance(outcome, BaseException):
        logger.warning("Generation task failed target_id=%s error_type=%s", task.target_id, type(outcome).__name__)
        failures.append(TaskFailure(task=task, error=outcome))
      else:
        successes.append((task, outcome))

  logger.info("Batch finished total=%s succeeded=%s failed=%s", len(tasks), len(successes), len(failures))
  return BatchResult(successes=successes, failures=failures)

from __future__ import annotations

import asyncio

import pytest

from app.jobs.batch import GenerationTask, run_batched


def _tasks(count: int) -> list[GenerationTask]:
  return [GenerationTask(target_id=f"task-{index}", prompt=f"prompt {index}", destination=f"out/{index}.webp") for index in range(1, count + 1)]


@pytest.mark.anyio
async def test_groups_run_sequentially_and_failures_do_not_cancel_siblings() -> None:
  """Seven tasks at concurrency three run as 3, 3, 1 and one failure stays isolated."""
  in_flight = 0
  group = 0
  group_of: dict[str, int] = {}

  async def _handler(task: GenerationTask) -> str:
    nonlocal in_flight, group
    # A task starting with nothing in flight opens a new group.
    if in_flight == 0:
      group += 1
    in_flight += 1
    group_of[task.target_id] = group
    await asyncio.sleep(0)
    in_flight -= 1
    if task.target_id == "task-4":
      raise RuntimeError("provider exploded")
    return task.destination

  progress: list[int] = []
  result = await run_batched(_tasks(7), handler=_handler, concurrency=3, on_progress=progress.append)

  assert [task.target_id for task, _ in result.successes] == ["task-1", "task-2", "task-3", "task-5", "task-6", "task-7"]
  assert [failure.task.target_id for failure in result.failures] == ["task-4"]
  assert isinstance(result.failures[0].error, RuntimeError)
  assert result.completed == 7
  sizes = [list(group_of.values()).count(index) for index in range(1, group + 1)]
  assert sizes == [3, 3, 1]
  assert group_of == {"task-1": 1, "task-2": 1, "task-3": 1, "task-4": 2, "task-5": 2, "task-6": 2, "task-7": 3}
  # Progress counts every finished task, failed ones included.
  assert progress == [1, 2, 3, 4, 5, 6, 7]


@pytest.mark.anyio
async def test_next_group_waits_for_slowest_member() -> None:
  finished: list[str] = []
  events: list[str] = []

  async def _handler(task: GenerationTask) -> None:
    events.append(f"start:{task.target_id}")
    if task.target_id == "task-1":
      await asyncio.sleep(0.01)
    finished.append(task.target_id)
    events.append(f"end:{task.target_id}")

  await run_batched(_tasks(3), handler=_handler, concurrency=2)

  assert events.index("end:task-1") < events.index("start:task-3")


@pytest.mark.anyio
async def test_progress_callback_errors_are_ignored() -> None:
  async def _handler(task: GenerationTask) -> str:
    return task.target_id

  async def _broken_callback(_completed: int) -> None:
    raise ValueError("observer failed")

  result = await run_batched(_tasks(2), handler=_handler, concurrency=2, on_progress=_broken_callback)

  assert len(result.successes) == 2
  assert result.failures == []


@pytest.mark.anyio
async def test_empty_batch_and_invalid_concurrency() -> None:
  async def _handler(task: GenerationTask) -> None:
    raise AssertionError("should not run")

  result = await run_batched([], handler=_handler)
  assert result.completed == 0

  with pytest.raises(ValueError):
    await run_batched(_tasks(1), handler=_handler, concurrency=0)

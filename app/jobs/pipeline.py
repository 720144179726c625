"""Staged generation pipeline for one job.

Stages run strictly in order; concurrency only exists inside a stage. Text stages
are fatal on failure, image stages are not. Every run ends with exactly one terminal
progress snapshot and exactly one notification.
"""

from __future__ import annotations

import asyncio
import logging
import time
from collections.abc import Awaitable, Callable
from dataclasses import dataclass
from typing import TypeVar

from app.ai import prompts
from app.ai.images import convert_to_webp
from app.ai.providers.base import ImageGenerator, ProviderError, TextGenerator
from app.jobs.batch import DEFAULT_CONCURRENCY, GenerationTask, run_batched
from app.jobs.errors import JobNotFoundError
from app.jobs.models import DERIVED_ARTIFACTS, SUMMARY_ARTIFACT, ArtifactRecord, ArtifactType, ErrorReason, HeroImageRecord, JobOutputs, JobRecord, JobStage, ProgressSnapshot, SectionImageRecord
from app.jobs.progress import ProgressPublisher
from app.notifications.contracts import JobEvent, NotificationSink
from app.services.ledger import CreditLedger, InsufficientFundsError
from app.services.sections import parse_markdown_sections
from app.services.storage_client import ObjectStore
from app.storage.jobs_repo import JobsRepository
from app.utils.ids import generate_record_id, now_iso

logger = logging.getLogger(__name__)

_ARTIFACT_LABELS: dict[ArtifactType, str] = {"summary": "plain-language summary", "business_narrative": "business narrative", "golden_circle": "golden circle"}
_WEBP_CACHE_CONTROL = "public, max-age=31536000, immutable"

RecordT = TypeVar("RecordT", HeroImageRecord, SectionImageRecord)


class StageFailure(Exception):
  """A fatal stage error carrying the user-facing message and structured reason."""

  def __init__(self, message: str, *, reason: ErrorReason) -> None:
    super().__init__(message)
    self.message = message
    self.reason = reason


@dataclass
class _RunState:
  """Mutable bookkeeping for one coordinator run."""

  job: JobRecord
  image_errors: list[str]


class JobPipelineCoordinator:
  """Drives a job from its start stage to Completed or Failed."""

  def __init__(
    self,
    *,
    jobs_repo: JobsRepository,
    ledger: CreditLedger,
    publisher: ProgressPublisher,
    notifications: NotificationSink,
    text_generator: TextGenerator,
    image_generator: ImageGenerator,
    object_store: ObjectStore,
    job_cost: int,
    image_concurrency: int = DEFAULT_CONCURRENCY,
    image_encoder: Callable[[bytes], bytes] = convert_to_webp,
  ) -> None:
    self._jobs_repo = jobs_repo
    self._ledger = ledger
    self._publisher = publisher
    self._notifications = notifications
    self._text_generator = text_generator
    self._image_generator = image_generator
    self._object_store = object_store
    self._job_cost = job_cost
    self._image_concurrency = image_concurrency
    self._image_encoder = image_encoder

  async def run(self, job_id: str, *, start_stage: JobStage = JobStage.CREATED) -> JobRecord:
    """Run every stage after ``start_stage`` and return the final job record."""
    job = await self._jobs_repo.get_job(job_id)
    if job is None:
      raise JobNotFoundError(job_id)

    state = _RunState(job=job, image_errors=[])
    stages: list[tuple[JobStage, Callable[[_RunState], Awaitable[None]]]] = [
      (JobStage.TEXT_SUMMARY_DONE, self._run_text_summary),
      (JobStage.DERIVED_ARTIFACTS_DONE, self._run_derived_artifacts),
      (JobStage.HERO_IMAGE_DONE, self._run_hero_image),
      (JobStage.SECTION_IMAGES_DONE, self._run_section_images),
    ]
    logger.info("Pipeline starting job_id=%s start_stage=%s", job_id, start_stage.value)

    try:
      for target_stage, stage_runner in stages:
        if target_stage.ordinal <= start_stage.ordinal:
          continue
        await stage_runner(state)
        await self._advance(state, target_stage)
      return await self._complete(state)
    except StageFailure as failure:
      return await self._fail(state, failure.message, failure.reason)
    except Exception:  # noqa: BLE001
      logger.error("Pipeline crashed job_id=%s stage=%s", job_id, state.job.stage.value, exc_info=True)
      return await self._fail(state, "An unexpected error interrupted processing.", "internal-error")

  async def _publish(self, job_id: str, snapshot: ProgressSnapshot) -> None:
    await self._publisher.publish(job_id, snapshot)

  async def _advance(self, state: _RunState, stage: JobStage) -> None:
    """Move the job forward; backwards writes are refused."""
    if stage.ordinal <= state.job.stage.ordinal:
      return
    updated = await self._jobs_repo.update_job(state.job.job_id, stage=stage, image_errors=state.image_errors)
    if updated is None:
      raise JobNotFoundError(state.job.job_id)
    state.job = updated
    logger.info("Job advanced job_id=%s stage=%s", updated.job_id, stage.value)

  async def _run_text_summary(self, state: _RunState) -> None:
    job = state.job
    outputs = await self._jobs_repo.get_outputs(job.job_id)
    if outputs.artifact(SUMMARY_ARTIFACT) is not None:
      return

    await self._publish(job.job_id, ProgressSnapshot(stage="text_summary", current=0, total=1, message="Generating plain-language summary"))
    started = time.monotonic()
    try:
      result = await self._text_generator.generate_text(prompts.summary_prompt(title=_title(job), full_text=job.full_text))
    except ProviderError as exc:
      logger.warning("Summary generation failed job_id=%s error_type=%s", job.job_id, type(exc).__name__)
      raise StageFailure("The summary could not be generated.", reason="provider-error") from exc
    elapsed = time.monotonic() - started

    # Charge once the first paid output exists, before it is stored.
    if job.owner_id is not None:
      try:
        await self._ledger.debit(job.owner_id, self._job_cost, job.job_id)
      except InsufficientFundsError as exc:
        raise StageFailure(f"Insufficient credits: {exc.amount} required, {exc.balance} available.", reason="insufficient-funds") from exc

    await self._jobs_repo.save_artifact(ArtifactRecord(artifact_id=generate_record_id(), job_id=job.job_id, artifact_type=SUMMARY_ARTIFACT, content=result.content, tokens_used=result.tokens_used, generation_seconds=elapsed))
    await self._publish(job.job_id, ProgressSnapshot(stage="text_summary", current=1, total=1, message="Summary ready"))

  async def _run_derived_artifacts(self, state: _RunState) -> None:
    job = state.job
    outputs = await self._jobs_repo.get_outputs(job.job_id)
    summary = outputs.artifact(SUMMARY_ARTIFACT)
    if summary is None:
      raise StageFailure("The summary is missing; retry the job.", reason="internal-error")

    missing = [artifact_type for artifact_type in DERIVED_ARTIFACTS if outputs.artifact(artifact_type) is None]
    done = len(DERIVED_ARTIFACTS) - len(missing)
    if not missing:
      return

    await self._publish(job.job_id, ProgressSnapshot(stage="artifacts", current=done, total=len(DERIVED_ARTIFACTS), message="Generating business artifacts"))

    async def _generate(artifact_type: ArtifactType) -> ArtifactRecord:
      started = time.monotonic()
      result = await self._text_generator.generate_text(prompts.derived_artifact_prompt(artifact_type, title=_title(job), summary=summary.content))
      return ArtifactRecord(artifact_id=generate_record_id(), job_id=job.job_id, artifact_type=artifact_type, content=result.content, tokens_used=result.tokens_used, generation_seconds=time.monotonic() - started)

    outcomes = await asyncio.gather(*(_generate(artifact_type) for artifact_type in missing), return_exceptions=True)

    # Keep every sibling that succeeded so a retry only regenerates the failures.
    failed: list[ArtifactType] = []
    for artifact_type, outcome in zip(missing, outcomes, strict=True):
      if isinstance(outcome, asyncio.CancelledError):
        raise outcome
      if isinstance(outcome, BaseException):
        logger.warning("Artifact generation failed job_id=%s artifact_type=%s error_type=%s", job.job_id, artifact_type, type(outcome).__name__)
        failed.append(artifact_type)
        continue
      await self._jobs_repo.save_artifact(outcome)
      done += 1
      await self._publish(job.job_id, ProgressSnapshot(stage="artifacts", current=done, total=len(DERIVED_ARTIFACTS), message=f"Generated {_ARTIFACT_LABELS[artifact_type]}"))

    if failed:
      labels = ", ".join(_ARTIFACT_LABELS[artifact_type] for artifact_type in failed)
      raise StageFailure(f"Could not generate: {labels}.", reason="provider-error")

  async def _run_hero_image(self, state: _RunState) -> None:
    job = state.job
    outputs = await self._jobs_repo.get_outputs(job.job_id)
    if outputs.hero_image is not None:
      return

    await self._publish(job.job_id, ProgressSnapshot(stage="hero_image", current=0, total=1, message="Generating cover image"))
    summary = outputs.artifact(SUMMARY_ARTIFACT)
    prompt = prompts.hero_image_prompt(title=_title(job), summary=summary.content if summary else "")
    object_name = f"jobs/{job.job_id}/hero/{generate_record_id()}.webp"
    try:
      image_url = await self._store_image(prompt, object_name)
      await self._save_or_cleanup(object_name, self._jobs_repo.save_hero_image(HeroImageRecord(image_id=generate_record_id(), job_id=job.job_id, image_url=image_url, object_key=object_name, prompt=prompt)))
    except Exception as exc:  # noqa: BLE001
      # Images are decorative; the job still completes without one.
      logger.warning("Hero image failed job_id=%s error_type=%s", job.job_id, type(exc).__name__, exc_info=True)
      state.image_errors.append("Cover image could not be generated.")
      await self._publish(job.job_id, ProgressSnapshot(stage="hero_image", current=0, total=1, message="Cover image unavailable"))
      return

    await self._publish(job.job_id, ProgressSnapshot(stage="hero_image", current=1, total=1, message="Cover image ready"))

  async def _run_section_images(self, state: _RunState) -> None:
    job = state.job
    outputs = await self._jobs_repo.get_outputs(job.job_id)
    tasks, total = _build_section_tasks(job, outputs)
    already_done = total - len(tasks)
    if not tasks:
      return

    await self._publish(job.job_id, ProgressSnapshot(stage="section_images", current=already_done, total=total, message=f"{already_done} of {total} images"))

    async def _on_progress(completed: int) -> None:
      done = already_done + completed
      await self._publish(job.job_id, ProgressSnapshot(stage="section_images", current=done, total=total, message=f"{done} of {total} images"))

    async def _handle(task: GenerationTask) -> SectionImageRecord:
      image_url = await self._store_image(task.prompt, task.destination)
      record = SectionImageRecord(
        image_id=generate_record_id(),
        artifact_id=task.context["artifact_id"],
        section_number=task.context["section_number"],
        section_title=task.context["section_title"],
        image_url=image_url,
        object_key=task.destination,
        prompt=task.prompt,
      )
      return await self._save_or_cleanup(task.destination, self._jobs_repo.save_section_image(record))

    result = await run_batched(tasks, handler=_handle, concurrency=self._image_concurrency, on_progress=_on_progress)
    if result.failures:
      state.image_errors.append(f"{len(result.failures)} of {total} section images could not be generated.")

  async def _complete(self, state: _RunState) -> JobRecord:
    job = state.job
    data: dict[str, object] = {"title": _title(job)}
    if state.image_errors:
      # Completion still fires; the counts let the notice mention the missing images.
      data["failed"], data["total"] = await self._image_totals(job)
    event = JobEvent(event_type="job_completed", owner_id=job.owner_id, job_id=job.job_id, data=data)

    updated = await self._jobs_repo.update_job(job.job_id, stage=JobStage.COMPLETED, image_errors=state.image_errors, completed_at=now_iso())
    state.job = updated or job
    message = "Processing complete" if not state.image_errors else "Processing complete; some images are missing"
    await self._publish(job.job_id, ProgressSnapshot(stage="completed", current=1, total=1, message=message, complete=True))
    await self._notifications.notify(event)
    logger.info("Pipeline completed job_id=%s image_errors=%s", job.job_id, len(state.image_errors))
    return state.job

  async def _fail(self, state: _RunState, message: str, reason: ErrorReason) -> JobRecord:
    """Record a terminal failure; every step is attempted even if an earlier one errors."""
    job = state.job
    logger.warning("Pipeline failed job_id=%s stage=%s reason=%s", job.job_id, job.stage.value, reason)
    try:
      updated = await self._jobs_repo.update_job(job.job_id, stage=JobStage.FAILED, last_error=message, error_reason=reason, image_errors=state.image_errors)
      if updated is not None:
        state.job = updated
    except Exception:  # noqa: BLE001
      logger.error("Failed to persist failure state job_id=%s", job.job_id, exc_info=True)

    await self._publish(job.job_id, ProgressSnapshot(stage="failed", current=0, total=0, message=message, complete=True, error=reason))
    await self._notifications.notify(JobEvent(event_type="job_failed", owner_id=job.owner_id, job_id=job.job_id, data={"title": _title(job), "error": message}))
    return state.job

  async def _store_image(self, prompt: str, object_name: str) -> str:
    raw = await self._image_generator.generate_image(prompt)
    encoded = self._image_encoder(raw)
    return await self._object_store.upload_bytes(encoded, object_name, content_type="image/webp", cache_control=_WEBP_CACHE_CONTROL)

  async def _save_or_cleanup(self, object_name: str, save: Awaitable[RecordT]) -> RecordT:
    """Await a row insert and delete this attempt's upload unless its row is the one stored.

    Object keys are unique per attempt, so a competing writer's object is never touched.
    """
    try:
      stored = await save
    except Exception:
      await self._delete_orphan(object_name)
      raise
    if stored.object_key != object_name:
      logger.info("Another writer stored this image first; discarding object %s", object_name)
      await self._delete_orphan(object_name)
    return stored

  async def _delete_orphan(self, object_name: str) -> None:
    try:
      await self._object_store.delete(object_name)
    except Exception:  # noqa: BLE001
      logger.error("Failed to delete orphaned object %s", object_name, exc_info=True)

  async def _image_totals(self, job: JobRecord) -> tuple[int, int]:
    """Count missing images (cover included) against the number expected."""
    outputs = await self._jobs_repo.get_outputs(job.job_id)
    tasks, total = _build_section_tasks(job, outputs)
    missing = len(tasks) + (1 if outputs.hero_image is None else 0)
    return missing, total + 1


def _title(job: JobRecord) -> str:
  return job.title or "Untitled Document"


def _build_section_tasks(job: JobRecord, outputs: JobOutputs) -> tuple[list[GenerationTask], int]:
  """Return tasks for sections still lacking an image, plus the total section count."""
  tasks: list[GenerationTask] = []
  total = 0
  for artifact in outputs.artifacts:
    for section in parse_markdown_sections(artifact.content):
      total += 1
      if outputs.has_section_image(artifact.artifact_id, section.number):
        continue
      tasks.append(
        GenerationTask(
          target_id=f"{artifact.artifact_type}:{section.number}",
          prompt=prompts.section_image_prompt(title=_title(job), section_title=section.title, section_content=section.content),
          destination=f"jobs/{job.job_id}/sections/{artifact.artifact_id}/{section.number}-{generate_record_id()}.webp",
          context={"artifact_id": artifact.artifact_id, "section_number": section.number, "section_title": section.title},
        )
      )
  return tasks, total

"""Resume failed or stalled jobs from their first missing output."""

from __future__ import annotations

import logging

from app.jobs.errors import JobNotFoundError, JobNotRetryableError
from app.jobs.models import DERIVED_ARTIFACTS, SUMMARY_ARTIFACT, JobOutputs, JobStage, ProgressSnapshot
from app.jobs.progress import ProgressPublisher
from app.jobs.runner import JobAlreadyRunningError, PipelineRunner
from app.services.sections import parse_markdown_sections
from app.storage.jobs_repo import JobsRepository

logger = logging.getLogger(__name__)


def resolve_resume_stage(outputs: JobOutputs) -> JobStage:
  """Return the last stage whose outputs are all present.

  The stored stage field is not consulted: a crash can leave outputs written for a
  stage the job row never advanced past.
  """
  if outputs.artifact(SUMMARY_ARTIFACT) is None:
    return JobStage.CREATED
  if any(outputs.artifact(artifact_type) is None for artifact_type in DERIVED_ARTIFACTS):
    return JobStage.TEXT_SUMMARY_DONE
  if outputs.hero_image is None:
    return JobStage.DERIVED_ARTIFACTS_DONE
  for artifact in outputs.artifacts:
    for section in parse_markdown_sections(artifact.content):
      if not outputs.has_section_image(artifact.artifact_id, section.number):
        return JobStage.HERO_IMAGE_DONE
  return JobStage.SECTION_IMAGES_DONE


class ResumableRetryDriver:
  """Re-enters the pipeline at the first stage with missing output."""

  def __init__(self, *, jobs_repo: JobsRepository, runner: PipelineRunner, publisher: ProgressPublisher) -> None:
    self._jobs_repo = jobs_repo
    self._runner = runner
    self._publisher = publisher

  async def retry(self, job_id: str) -> JobStage:
    # Reserve before the first await so a concurrent retry sees this one.
    try:
      self._runner.claim(job_id)
    except JobAlreadyRunningError as exc:
      raise JobNotRetryableError("Job is still running.") from exc

    try:
      job = await self._jobs_repo.get_job(job_id)
      if job is None:
        raise JobNotFoundError(job_id)
      if job.stage == JobStage.COMPLETED:
        raise JobNotRetryableError("Job has already completed.")

      outputs = await self._jobs_repo.get_outputs(job_id)
      resume_stage = resolve_resume_stage(outputs)
      # The only sanctioned backwards stage write: rewind to what the outputs prove.
      await self._jobs_repo.update_job(job_id, stage=resume_stage, clear_error=True, image_errors=[], retry_count=job.retry_count + 1)
      await self._publisher.publish(job_id, ProgressSnapshot(stage="queued", current=0, total=1, message="Retry queued"))
    except BaseException:
      self._runner.release(job_id)
      raise

    logger.info("Retrying job_id=%s previous_stage=%s resume_stage=%s attempt=%s", job_id, job.stage.value, resume_stage.value, job.retry_count + 1)
    self._runner.spawn(job_id, start_stage=resume_stage, claimed=True)
    return resume_stage

"""Entry points behind the HTTP surface: submit, observe, retry and credits."""

from __future__ import annotations

import logging

from starlette.concurrency import run_in_threadpool

from app.core.security import CredentialResolution
from app.jobs.errors import JobNotFoundError
from app.jobs.models import JobOutputs, JobRecord, JobStage, ProgressSnapshot
from app.jobs.progress import ProgressPublisher
from app.jobs.retry import ResumableRetryDriver
from app.jobs.runner import PipelineRunner
from app.services.admission import AdmissionController, AdmissionDeniedError
from app.services.document_parser import DocumentParseError, ParsedDocument, parse_document
from app.services.ledger import CreditLedger
from app.services.storage_client import ObjectStore
from app.storage.jobs_repo import JobsRepository
from app.storage.ledger_repo import LedgerEntryRecord
from app.utils.ids import generate_job_id, now_iso

logger = logging.getLogger(__name__)


class PipelineService:
  """Coordinates admission, persistence and background execution for requests."""

  def __init__(
    self,
    *,
    admission: AdmissionController,
    ledger: CreditLedger,
    jobs_repo: JobsRepository,
    publisher: ProgressPublisher,
    runner: PipelineRunner,
    retry_driver: ResumableRetryDriver,
    object_store: ObjectStore,
    job_cost: int,
  ) -> None:
    self._admission = admission
    self._ledger = ledger
    self._jobs_repo = jobs_repo
    self._publisher = publisher
    self._runner = runner
    self._retry_driver = retry_driver
    self._object_store = object_store
    self._job_cost = job_cost

  async def submit(self, document: bytes, *, filename: str | None, source_key: str, credentials: CredentialResolution) -> str:
    """Admit, parse and persist an upload, then start processing in the background."""
    await self._admission.ensure_admitted(source_key=source_key, credentials=credentials, estimated_cost=self._job_cost)

    try:
      parsed: ParsedDocument = await run_in_threadpool(parse_document, document)
    except DocumentParseError as exc:
      raise AdmissionDeniedError("parse-error", str(exc)) from exc

    job_id = generate_job_id()
    source_object_key = f"jobs/{job_id}/source.pdf"
    await self._object_store.upload_bytes(document, source_object_key, content_type="application/pdf")

    created_at = now_iso()
    metadata = parsed.metadata()
    if filename:
      metadata["filename"] = filename
    record = JobRecord(
      job_id=job_id,
      owner_id=credentials.owner_id if credentials.is_identified else None,
      stage=JobStage.CREATED,
      created_at=created_at,
      updated_at=created_at,
      title=parsed.title,
      document_metadata=metadata,
      full_text=parsed.full_text,
      source_object_key=source_object_key,
    )
    try:
      await self._jobs_repo.create_job(record)
    except Exception:
      # Without a job row nothing references the upload; remove it.
      logger.error("Job creation failed; removing uploaded source object=%s", source_object_key, exc_info=True)
      try:
        await self._object_store.delete(source_object_key)
      except Exception:  # noqa: BLE001
        logger.error("Failed to delete orphaned source object=%s", source_object_key, exc_info=True)
      raise

    await self._publisher.publish(job_id, ProgressSnapshot(stage="queued", current=0, total=1, message="Queued for processing"))
    self._runner.spawn(job_id)
    logger.info("Job submitted job_id=%s owner_id=%s anonymous=%s", job_id, record.owner_id, record.owner_id is None)
    return job_id

  async def get_progress(self, job_id: str) -> ProgressSnapshot:
    """Return the latest snapshot, preferring this instance's in-memory copy."""
    snapshot = await self._publisher.current(job_id)
    if snapshot is None:
      raise JobNotFoundError(job_id)
    return snapshot

  async def get_job(self, job_id: str) -> JobRecord:
    job = await self._jobs_repo.get_job(job_id)
    if job is None:
      raise JobNotFoundError(job_id)
    return job

  async def get_job_detail(self, job_id: str, *, credentials: CredentialResolution) -> tuple[JobRecord, JobOutputs]:
    """Return a job with its stored artifacts and images, for its owner only."""
    job = await self.get_job(job_id)
    _ensure_job_access(job, credentials)
    outputs = await self._jobs_repo.get_outputs(job_id)
    return job, outputs

  async def retry(self, job_id: str, *, source_key: str, credentials: CredentialResolution) -> JobStage:
    """Re-admit a retry and resume the job from its first missing output."""
    job = await self.get_job(job_id)
    _ensure_job_access(job, credentials)

    # Anonymous jobs are never charged, and a charged job must not be blocked by the credit gate.
    if job.owner_id is None or await self._ledger.has_job_debit(job_id):
      estimated_cost = 0
    else:
      estimated_cost = self._job_cost
    await self._admission.ensure_admitted(source_key=source_key, credentials=credentials, estimated_cost=estimated_cost)
    return await self._retry_driver.retry(job_id)

  async def balance(self, owner_id: str) -> int:
    return await self._ledger.balance(owner_id)

  async def credit_history(self, owner_id: str, *, limit: int = 50) -> list[LedgerEntryRecord]:
    return await self._ledger.entries(owner_id, limit=limit)

  async def grant_credits(self, owner_id: str, amount: int, reason: str) -> int:
    """Apply a purchase authorised by the payment processor callback."""
    return await self._ledger.credit(owner_id, amount, reason, category="credit-grant")

  async def adjust_credits(self, owner_id: str, amount: int, reason: str) -> int:
    return await self._ledger.credit(owner_id, amount, reason, category="admin-adjustment")


def _ensure_job_access(job: JobRecord, credentials: CredentialResolution) -> None:
  """Only the owner may act on an owned job; anonymous jobs stay open to anyone holding the id."""
  if job.owner_id is None or credentials.owner_id == job.owner_id:
    return
  if credentials.status == "invalid":
    raise AdmissionDeniedError("auth-failed", "Authentication failed. Sign in again and retry.")
  raise AdmissionDeniedError("forbidden", "You do not have access to this job.")

from __future__ import annotations

from typing import Any, Literal

from pydantic import BaseModel, ConfigDict, Field, StrictInt, StrictStr

from app.jobs.models import JobOutputs, JobRecord, ProgressSnapshot
from app.notifications.in_app_repo import InAppNotificationRecord
from app.storage.ledger_repo import LedgerEntryRecord


class SubmitJobResponse(BaseModel):
  """Returned as soon as a submission is admitted and persisted."""

  job_id: str
  stage: str = "created"


class ProgressResponse(BaseModel):
  """Latest progress snapshot for a job."""

  job_id: str
  stage: Literal["queued", "text_summary", "artifacts", "hero_image", "section_images", "completed", "failed"]
  current: int
  total: int
  message: str
  complete: bool
  error: str | None = None

  @classmethod
  def from_snapshot(cls, job_id: str, snapshot: ProgressSnapshot) -> ProgressResponse:
    return cls(job_id=job_id, **snapshot.to_dict())


class RetryResponse(BaseModel):
  """Returned when a retry is admitted and the job resumes in the background."""

  job_id: str
  resume_stage: str


class BalanceResponse(BaseModel):
  owner_id: str
  balance: int


class SectionImageResponse(BaseModel):
  section_number: int
  section_title: str
  image_url: str


class ArtifactResponse(BaseModel):
  artifact_id: str
  artifact_type: str
  content: str
  tokens_used: int | None = None
  section_images: list[SectionImageResponse] = Field(default_factory=list)


class JobDetailResponse(BaseModel):
  """A job with everything generated for it so far."""

  job_id: str
  stage: str
  title: str | None = None
  metadata: dict[str, Any] = Field(default_factory=dict)
  last_error: str | None = None
  error_reason: str | None = None
  image_errors: list[str] = Field(default_factory=list)
  retry_count: int = 0
  created_at: str
  completed_at: str | None = None
  hero_image_url: str | None = None
  artifacts: list[ArtifactResponse] = Field(default_factory=list)

  @classmethod
  def from_records(cls, job: JobRecord, outputs: JobOutputs) -> JobDetailResponse:
    artifacts = []
    for artifact in outputs.artifacts:
      images = sorted((image for image in outputs.section_images if image.artifact_id == artifact.artifact_id), key=lambda image: image.section_number)
      artifacts.append(
        ArtifactResponse(
          artifact_id=artifact.artifact_id,
          artifact_type=artifact.artifact_type,
          content=artifact.content,
          tokens_used=artifact.tokens_used,
          section_images=[SectionImageResponse(section_number=image.section_number, section_title=image.section_title, image_url=image.image_url) for image in images],
        )
      )
    return cls(
      job_id=job.job_id,
      stage=job.stage.value,
      title=job.title,
      metadata=job.document_metadata,
      last_error=job.last_error,
      error_reason=job.error_reason,
      image_errors=job.image_errors,
      retry_count=job.retry_count,
      created_at=job.created_at,
      completed_at=job.completed_at,
      hero_image_url=outputs.hero_image.image_url if outputs.hero_image else None,
      artifacts=artifacts,
    )


class CreditTransactionResponse(BaseModel):
  entry_id: str
  delta: int
  balance_after: int
  category: str
  job_id: str | None = None
  description: str | None = None
  created_at: str | None = None

  @classmethod
  def from_entry(cls, entry: LedgerEntryRecord) -> CreditTransactionResponse:
    return cls(entry_id=entry.entry_id, delta=entry.delta, balance_after=entry.balance_after, category=entry.category, job_id=entry.job_id, description=entry.description, created_at=entry.created_at)


class CreditsResponse(BaseModel):
  """The caller's balance and most recent ledger entries, newest first."""

  owner_id: str
  balance: int
  transactions: list[CreditTransactionResponse]


class GrantCreditsRequest(BaseModel):
  """Credit purchase forwarded by the payment processor callback."""

  model_config = ConfigDict(extra="forbid")

  owner_id: StrictStr = Field(min_length=1, max_length=128)
  amount: StrictInt = Field(gt=0, le=1_000_000)
  reason: StrictStr = Field(min_length=1, max_length=255)


class AdjustCreditsRequest(BaseModel):
  """Manual balance correction; negative amounts are allowed."""

  model_config = ConfigDict(extra="forbid")

  owner_id: StrictStr = Field(min_length=1, max_length=128)
  amount: StrictInt = Field(ge=-1_000_000, le=1_000_000)
  reason: StrictStr = Field(min_length=1, max_length=255)


class NotificationResponse(BaseModel):
  id: str
  notification_type: str
  title: str
  body: str
  data: dict[str, Any]
  read: bool
  created_at: str | None = None

  @classmethod
  def from_record(cls, record: InAppNotificationRecord) -> NotificationResponse:
    return cls(id=record.notification_id, notification_type=record.notification_type, title=record.title, body=record.body, data=record.data, read=record.read, created_at=record.created_at)


class NotificationListResponse(BaseModel):
  notifications: list[NotificationResponse]
  unread_count: int


class MarkAllReadResponse(BaseModel):
  updated: int

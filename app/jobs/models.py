"""Domain models for document synthesis jobs."""

from __future__ import annotations

import enum
from dataclasses import dataclass, field
from typing import Any, Literal


class JobStage(str, enum.Enum):
  """Pipeline stages in the order a job moves through them."""

  CREATED = "created"
  TEXT_SUMMARY_DONE = "text_summary_done"
  DERIVED_ARTIFACTS_DONE = "derived_artifacts_done"
  HERO_IMAGE_DONE = "hero_image_done"
  SECTION_IMAGES_DONE = "section_images_done"
  COMPLETED = "completed"
  FAILED = "failed"

  @property
  def ordinal(self) -> int:
    """Position in the forward sequence; Failed sorts after everything."""
    return _STAGE_ORDER[self]

  @property
  def is_terminal(self) -> bool:
    return self in (JobStage.COMPLETED, JobStage.FAILED)


_STAGE_ORDER = {
  JobStage.CREATED: 0,
  JobStage.TEXT_SUMMARY_DONE: 1,
  JobStage.DERIVED_ARTIFACTS_DONE: 2,
  JobStage.HERO_IMAGE_DONE: 3,
  JobStage.SECTION_IMAGES_DONE: 4,
  JobStage.COMPLETED: 5,
  JobStage.FAILED: 6,
}

ArtifactType = Literal["summary", "business_narrative", "golden_circle"]
SUMMARY_ARTIFACT: ArtifactType = "summary"
DERIVED_ARTIFACTS: tuple[ArtifactType, ...] = ("business_narrative", "golden_circle")

ErrorReason = Literal["provider-error", "insufficient-funds", "internal-error"]
ProgressPhase = Literal["queued", "text_summary", "artifacts", "hero_image", "section_images", "completed", "failed"]


@dataclass
class JobRecord:
  """Represents one uploaded document and its generation state."""

  job_id: str
  owner_id: str | None
  stage: JobStage
  created_at: str
  updated_at: str
  title: str | None = None
  document_metadata: dict[str, Any] = field(default_factory=dict)
  full_text: str = ""
  source_object_key: str | None = None
  last_error: str | None = None
  error_reason: ErrorReason | None = None
  image_errors: list[str] = field(default_factory=list)
  retry_count: int = 0
  completed_at: str | None = None


@dataclass(frozen=True)
class ArtifactRecord:
  """A persisted text artifact produced for a job."""

  artifact_id: str
  job_id: str
  artifact_type: ArtifactType
  content: str
  tokens_used: int | None = None
  generation_seconds: float | None = None
  created_at: str | None = None


@dataclass(frozen=True)
class HeroImageRecord:
  """The single cover image generated for a job."""

  image_id: str
  job_id: str
  image_url: str
  object_key: str
  prompt: str
  created_at: str | None = None


@dataclass(frozen=True)
class SectionImageRecord:
  """An illustration generated for one section of a text artifact."""

  image_id: str
  artifact_id: str
  section_number: int
  section_title: str
  image_url: str
  object_key: str
  prompt: str
  created_at: str | None = None


@dataclass(frozen=True)
class JobOutputs:
  """Everything persisted for a job, used to derive where a retry resumes."""

  artifacts: tuple[ArtifactRecord, ...] = ()
  hero_image: HeroImageRecord | None = None
  section_images: tuple[SectionImageRecord, ...] = ()

  def artifact(self, artifact_type: ArtifactType) -> ArtifactRecord | None:
    for artifact in self.artifacts:
      if artifact.artifact_type == artifact_type:
        return artifact
    return None

  def has_section_image(self, artifact_id: str, section_number: int) -> bool:
    return any(image.artifact_id == artifact_id and image.section_number == section_number for image in self.section_images)


@dataclass(frozen=True)
class ProgressSnapshot:
  """Point-in-time progress for a job, overwritten on every publish."""

  stage: ProgressPhase
  current: int
  total: int
  message: str
  complete: bool = False
  error: str | None = None
  updated_at: float | None = None

  def to_dict(self) -> dict[str, Any]:
    return {"stage": self.stage, "current": self.current, "total": self.total, "message": self.message, "complete": self.complete, "error": self.error}

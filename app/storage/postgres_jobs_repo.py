"""Postgres-backed repository for jobs and their outputs using SQLAlchemy."""

from __future__ import annotations

from sqlalchemy import select
from sqlalchemy.dialects.postgresql import insert

from app.core.database import require_session_factory
from app.jobs.models import ArtifactRecord, HeroImageRecord, JobOutputs, JobRecord, JobStage, SectionImageRecord
from app.schema.jobs import Artifact, HeroImage, Job, SectionImage
from app.storage.jobs_repo import JobsRepository, job_update_fields
from app.utils.ids import now_iso


class PostgresJobsRepository(JobsRepository):
  """Persist jobs, artifacts and images to Postgres using SQLAlchemy."""

  def __init__(self) -> None:
    self._session_factory = require_session_factory()

  async def create_job(self, record: JobRecord) -> None:
    async with self._session_factory() as session:
      job = Job(
        job_id=record.job_id,
        owner_id=record.owner_id,
        stage=record.stage.value,
        title=record.title,
        document_metadata=record.document_metadata,
        full_text=record.full_text,
        source_object_key=record.source_object_key,
        image_errors=list(record.image_errors),
        retry_count=record.retry_count,
        created_at=record.created_at,
        updated_at=record.updated_at,
      )
      session.add(job)
      await session.commit()

  async def get_job(self, job_id: str) -> JobRecord | None:
    async with self._session_factory() as session:
      row = await session.get(Job, job_id)
      if row is None:
        return None
      return self._model_to_record(row)

  async def update_job(self, job_id: str, *, stage: JobStage | None = None, last_error: str | None = None, error_reason: str | None = None, clear_error: bool = False, image_errors: list[str] | None = None, retry_count: int | None = None, completed_at: str | None = None) -> JobRecord | None:
    fields = job_update_fields(stage=stage, last_error=last_error, error_reason=error_reason, clear_error=clear_error, image_errors=image_errors, retry_count=retry_count, completed_at=completed_at)
    async with self._session_factory() as session:
      row = await session.get(Job, job_id, with_for_update=True)
      if row is None:
        return None
      for key, value in fields.items():
        setattr(row, key, value.value if isinstance(value, JobStage) else value)
      row.updated_at = now_iso()
      await session.commit()
      return self._model_to_record(row)

  async def save_artifact(self, record: ArtifactRecord) -> ArtifactRecord:
    async with self._session_factory() as session:
      stmt = (
        insert(Artifact)
        .values(artifact_id=record.artifact_id, job_id=record.job_id, artifact_type=record.artifact_type, content=record.content, tokens_used=record.tokens_used, generation_seconds=record.generation_seconds)
        .on_conflict_do_nothing(constraint="ux_artifacts_job_type")
      )
      await session.execute(stmt)
      await session.commit()
      # Re-read so a concurrent writer's row wins and callers see the stored id.
      result = await session.execute(select(Artifact).where(Artifact.job_id == record.job_id, Artifact.artifact_type == record.artifact_type))
      return self._artifact_to_record(result.scalar_one())

  async def save_hero_image(self, record: HeroImageRecord) -> HeroImageRecord:
    async with self._session_factory() as session:
      stmt = insert(HeroImage).values(image_id=record.image_id, job_id=record.job_id, image_url=record.image_url, object_key=record.object_key, prompt=record.prompt).on_conflict_do_nothing(index_elements=[HeroImage.job_id])
      await session.execute(stmt)
      await session.commit()
      row = (await session.execute(select(HeroImage).where(HeroImage.job_id == record.job_id))).scalar_one()
      return self._hero_to_record(row)

  async def save_section_image(self, record: SectionImageRecord) -> SectionImageRecord:
    async with self._session_factory() as session:
      stmt = (
        insert(SectionImage)
        .values(image_id=record.image_id, artifact_id=record.artifact_id, section_number=record.section_number, section_title=record.section_title, image_url=record.image_url, object_key=record.object_key, prompt=record.prompt)
        .on_conflict_do_nothing(constraint="ux_section_images_artifact_section")
      )
      await session.execute(stmt)
      await session.commit()
      # The first writer for a section wins; callers compare object keys to spot a lost race.
      result = await session.execute(select(SectionImage).where(SectionImage.artifact_id == record.artifact_id, SectionImage.section_number == record.section_number))
      return self._section_to_record(result.scalar_one())

  async def get_outputs(self, job_id: str) -> JobOutputs:
    async with self._session_factory() as session:
      artifact_rows = (await session.execute(select(Artifact).where(Artifact.job_id == job_id).order_by(Artifact.created_at))).scalars().all()
      hero_row = (await session.execute(select(HeroImage).where(HeroImage.job_id == job_id))).scalar_one_or_none()
      artifact_ids = [row.artifact_id for row in artifact_rows]
      section_rows = []
      if artifact_ids:
        section_rows = (await session.execute(select(SectionImage).where(SectionImage.artifact_id.in_(artifact_ids)))).scalars().all()

      hero_image = self._hero_to_record(hero_row) if hero_row is not None else None
      section_images = tuple(self._section_to_record(row) for row in section_rows)
      return JobOutputs(artifacts=tuple(self._artifact_to_record(row) for row in artifact_rows), hero_image=hero_image, section_images=section_images)

  @staticmethod
  def _artifact_to_record(row: Artifact) -> ArtifactRecord:
    return ArtifactRecord(artifact_id=row.artifact_id, job_id=row.job_id, artifact_type=row.artifact_type, content=row.content, tokens_used=row.tokens_used, generation_seconds=row.generation_seconds, created_at=row.created_at)  # type: ignore[arg-type]

  @staticmethod
  def _hero_to_record(row: HeroImage) -> HeroImageRecord:
    return HeroImageRecord(image_id=row.image_id, job_id=row.job_id, image_url=row.image_url, object_key=row.object_key, prompt=row.prompt, created_at=row.created_at)

  @staticmethod
  def _section_to_record(row: SectionImage) -> SectionImageRecord:
    return SectionImageRecord(image_id=row.image_id, artifact_id=row.artifact_id, section_number=row.section_number, section_title=row.section_title, image_url=row.image_url, object_key=row.object_key, prompt=row.prompt, created_at=row.created_at)

  @staticmethod
  def _model_to_record(row: Job) -> JobRecord:
    return JobRecord(
      job_id=row.job_id,
      owner_id=row.owner_id,
      stage=JobStage(row.stage),
      created_at=row.created_at,
      updated_at=row.updated_at,
      title=row.title,
      document_metadata=dict(row.document_metadata or {}),
      full_text=row.full_text,
      source_object_key=row.source_object_key,
      last_error=row.last_error,
      error_reason=row.error_reason,  # type: ignore[arg-type]
      image_errors=list(row.image_errors or []),
      retry_count=row.retry_count,
      completed_at=row.completed_at,
    )

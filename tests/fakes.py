"""In-memory test doubles for repositories, providers and storage."""

from __future__ import annotations

import itertools
from dataclasses import replace

from app.ai.providers.base import ProviderError, TextResult
from app.jobs.models import ArtifactRecord, HeroImageRecord, JobOutputs, JobRecord, JobStage, ProgressSnapshot, SectionImageRecord
from app.jobs.pipeline import JobPipelineCoordinator
from app.jobs.progress import ProgressPublisher
from app.jobs.retry import ResumableRetryDriver
from app.jobs.runner import PipelineRunner
from app.notifications.contracts import JobEvent
from app.notifications.in_app_repo import InAppNotificationEntry, InAppNotificationRecord
from app.notifications.service import NotificationService
from app.services.admission import AdmissionController, FixedWindowRateLimiter
from app.services.factory import ServiceGraph
from app.services.ledger import CreditLedger
from app.services.submissions import PipelineService
from app.storage.jobs_repo import job_update_fields
from app.storage.ledger_repo import LedgerCategory, LedgerEntryRecord

SUMMARY_MARKDOWN = "Intro text.\n\n## Problem\nWhat hurts.\n\n## Solution\nHow it is fixed.\n"
DERIVED_MARKDOWN = "## Why\nPurpose.\n\n## How\nProcess.\n"

# Markers that select one prompt kind in FakeTextGenerator(fail_markers=...).
SUMMARY_MARKER = "Explain this document"
NARRATIVE_MARKER = "business narrative"
GOLDEN_CIRCLE_MARKER = "Golden Circle framework"

# Summary and both derived artifacts carry two sections each.
SECTION_IMAGE_COUNT = 6


def make_job(job_id: str = "job-1", *, owner_id: str | None = "user-1", stage: JobStage = JobStage.CREATED, **overrides: object) -> JobRecord:
  record = JobRecord(job_id=job_id, owner_id=owner_id, stage=stage, created_at="2026-01-01T00:00:00Z", updated_at="2026-01-01T00:00:00Z", title="Widget Sorter", full_text="A machine that sorts widgets.")
  return replace(record, **overrides)


class InMemoryJobsRepo:
  """Jobs repository keeping rows in dictionaries and recording every stage written."""

  def __init__(self) -> None:
    self.jobs: dict[str, JobRecord] = {}
    self.artifacts: dict[tuple[str, str], ArtifactRecord] = {}
    self.hero_images: dict[str, HeroImageRecord] = {}
    self.section_images: dict[tuple[str, int], SectionImageRecord] = {}
    self.stage_history: dict[str, list[JobStage]] = {}
    self.fail_create = False

  async def create_job(self, record: JobRecord) -> None:
    if self.fail_create:
      raise RuntimeError("database unavailable")
    self.jobs[record.job_id] = record
    self.stage_history[record.job_id] = [record.stage]

  async def get_job(self, job_id: str) -> JobRecord | None:
    return self.jobs.get(job_id)

  async def update_job(self, job_id: str, *, stage: JobStage | None = None, last_error: str | None = None, error_reason: str | None = None, clear_error: bool = False, image_errors: list[str] | None = None, retry_count: int | None = None, completed_at: str | None = None) -> JobRecord | None:
    record = self.jobs.get(job_id)
    if record is None:
      return None
    fields = job_update_fields(stage=stage, last_error=last_error, error_reason=error_reason, clear_error=clear_error, image_errors=image_errors, retry_count=retry_count, completed_at=completed_at)
    updated = replace(record, **fields)
    self.jobs[job_id] = updated
    if stage is not None:
      self.stage_history.setdefault(job_id, []).append(stage)
    return updated

  async def save_artifact(self, record: ArtifactRecord) -> ArtifactRecord:
    key = (record.job_id, record.artifact_type)
    return self.artifacts.setdefault(key, record)

  async def save_hero_image(self, record: HeroImageRecord) -> HeroImageRecord:
    return self.hero_images.setdefault(record.job_id, record)

  async def save_section_image(self, record: SectionImageRecord) -> SectionImageRecord:
    return self.section_images.setdefault((record.artifact_id, record.section_number), record)

  async def get_outputs(self, job_id: str) -> JobOutputs:
    artifacts = tuple(artifact for (owner, _type), artifact in self.artifacts.items() if owner == job_id)
    artifact_ids = {artifact.artifact_id for artifact in artifacts}
    section_images = tuple(image for image in self.section_images.values() if image.artifact_id in artifact_ids)
    return JobOutputs(artifacts=artifacts, hero_image=self.hero_images.get(job_id), section_images=section_images)


class InMemoryLedgerRepo:
  """Ledger repository with compare-and-set semantics over a dictionary."""

  def __init__(self, balances: dict[str, int] | None = None) -> None:
    self.balances: dict[str, int] = dict(balances or {})
    self.entries: list[LedgerEntryRecord] = []
    self._ids = itertools.count(1)

  async def get_balance(self, owner_id: str) -> int:
    return self.balances.get(owner_id, 0)

  async def apply_entry(self, owner_id: str, *, expected_balance: int, delta: int, category: LedgerCategory, job_id: str | None = None, description: str | None = None) -> LedgerEntryRecord | None:
    if self.balances.get(owner_id, 0) != expected_balance:
      return None
    if category == "debit-for-job" and any(entry.job_id == job_id and entry.category == "debit-for-job" for entry in self.entries):
      return None
    new_balance = expected_balance + delta
    self.balances[owner_id] = new_balance
    entry = LedgerEntryRecord(entry_id=f"entry-{next(self._ids)}", owner_id=owner_id, delta=delta, balance_after=new_balance, category=category, job_id=job_id, description=description)
    self.entries.append(entry)
    return entry

  async def find_job_debit(self, job_id: str) -> LedgerEntryRecord | None:
    for entry in self.entries:
      if entry.job_id == job_id and entry.category == "debit-for-job":
        return entry
    return None

  async def list_entries(self, owner_id: str, *, limit: int = 50) -> list[LedgerEntryRecord]:
    return [entry for entry in reversed(self.entries) if entry.owner_id == owner_id][:limit]


class InMemoryProgressRepo:
  def __init__(self) -> None:
    self.rows: dict[str, ProgressSnapshot] = {}
    self.fail_writes = False

  async def upsert_progress(self, job_id: str, snapshot: ProgressSnapshot) -> None:
    if self.fail_writes:
      raise RuntimeError("progress table unavailable")
    self.rows[job_id] = snapshot

  async def get_progress(self, job_id: str) -> ProgressSnapshot | None:
    return self.rows.get(job_id)


class InMemoryObjectStore:
  def __init__(self) -> None:
    self.objects: dict[str, bytes] = {}
    self.deleted: list[str] = []

  async def upload_bytes(self, data: bytes, object_name: str, *, content_type: str, cache_control: str | None = None) -> str:
    self.objects[object_name] = data
    return f"https://assets.test/{object_name}"

  async def delete(self, object_name: str) -> None:
    self.objects.pop(object_name, None)
    self.deleted.append(object_name)


class FakeTextGenerator:
  """Returns canned markdown; prompts containing a configured marker fail."""

  def __init__(self, *, fail_markers: tuple[str, ...] = ()) -> None:
    self.prompts: list[str] = []
    self.fail_markers = fail_markers

  async def generate_text(self, prompt: str) -> TextResult:
    self.prompts.append(prompt)
    if any(marker in prompt for marker in self.fail_markers):
      raise ProviderError("model unavailable")
    if "Plain-language summary:" in prompt:
      return TextResult(content=DERIVED_MARKDOWN, tokens_used=42)
    return TextResult(content=SUMMARY_MARKDOWN, tokens_used=100)


class FakeImageGenerator:
  """Returns fixed bytes; calls whose ordinal is in ``fail_calls`` raise."""

  def __init__(self, *, fail_calls: set[int] | None = None, fail_all: bool = False) -> None:
    self.calls = 0
    self.fail_calls = fail_calls or set()
    self.fail_all = fail_all

  async def generate_image(self, prompt: str) -> bytes:
    self.calls += 1
    if self.fail_all or self.calls in self.fail_calls:
      raise ProviderError("image model unavailable")
    return b"image-bytes"


class RecordingNotifications:
  def __init__(self) -> None:
    self.events: list[JobEvent] = []

  async def notify(self, event: JobEvent) -> None:
    self.events.append(event)

  def types(self) -> list[str]:
    return [event.event_type for event in self.events]


class InMemoryInAppRepo:
  """Notification inbox keyed by user, newest first on read."""

  def __init__(self) -> None:
    self.rows: list[tuple[str, InAppNotificationRecord]] = []
    self._ids = itertools.count(1)

  async def insert(self, entry: InAppNotificationEntry) -> None:
    notification_id = f"00000000-0000-0000-0000-{next(self._ids):012d}"
    record = InAppNotificationRecord(notification_id=notification_id, notification_type=entry.notification_type, title=entry.title, body=entry.body, data=entry.data, read=False, created_at=f"2026-01-01T00:00:{len(self.rows):02d}Z")
    self.rows.append((entry.user_id, record))

  async def list_for_user(self, user_id: str, *, unread_only: bool = False, limit: int = 20, offset: int = 0) -> list[InAppNotificationRecord]:
    records = [record for owner, record in reversed(self.rows) if owner == user_id and not (unread_only and record.read)]
    return records[offset : offset + limit]

  async def count_unread(self, user_id: str) -> int:
    return sum(1 for owner, record in self.rows if owner == user_id and not record.read)

  async def mark_read(self, user_id: str, notification_id: str) -> bool:
    for index, (owner, record) in enumerate(self.rows):
      if owner == user_id and record.notification_id == notification_id:
        self.rows[index] = (owner, replace(record, read=True))
        return True
    return False

  async def mark_all_read(self, user_id: str) -> int:
    updated = 0
    for index, (owner, record) in enumerate(self.rows):
      if owner == user_id and not record.read:
        self.rows[index] = (owner, replace(record, read=True))
        updated += 1
    return updated


class RecordingPublisher(ProgressPublisher):
  """Progress publisher that also keeps every snapshot it was given."""

  def __init__(self) -> None:
    super().__init__(InMemoryProgressRepo())
    self.history: list[ProgressSnapshot] = []

  async def publish(self, job_id: str, snapshot: ProgressSnapshot) -> None:
    self.history.append(snapshot)
    await super().publish(job_id, snapshot)


class PipelineHarness:
  """The full service graph wired to in-memory collaborators."""

  def __init__(self, *, balance: int = 30, text: FakeTextGenerator | None = None, images: FakeImageGenerator | None = None, jobs_repo: InMemoryJobsRepo | None = None) -> None:
    self.jobs_repo = jobs_repo or InMemoryJobsRepo()
    self.ledger_repo = InMemoryLedgerRepo({"user-1": balance})
    self.ledger = CreditLedger(self.ledger_repo)
    self.publisher = RecordingPublisher()
    self.notifications = RecordingNotifications()
    self.text = text or FakeTextGenerator()
    self.images = images or FakeImageGenerator()
    self.store = InMemoryObjectStore()
    self.inbox = InMemoryInAppRepo()
    self.notification_service = NotificationService(in_app_repo=self.inbox)
    self.coordinator = JobPipelineCoordinator(
      jobs_repo=self.jobs_repo,
      ledger=self.ledger,
      publisher=self.publisher,
      notifications=self.notifications,
      text_generator=self.text,
      image_generator=self.images,
      object_store=self.store,
      job_cost=10,
      image_concurrency=3,
      image_encoder=lambda raw: raw,
    )
    self.runner = PipelineRunner(self.coordinator, jobs_repo=self.jobs_repo, publisher=self.publisher, notifications=self.notifications)
    self.retry_driver = ResumableRetryDriver(jobs_repo=self.jobs_repo, runner=self.runner, publisher=self.publisher)
    self.admission = AdmissionController(
      source_limiter=FixedWindowRateLimiter(max_requests=5, window_seconds=60),
      identity_limiter=FixedWindowRateLimiter(max_requests=10, window_seconds=3600),
      ledger=self.ledger,
    )
    self.service = PipelineService(
      admission=self.admission,
      ledger=self.ledger,
      jobs_repo=self.jobs_repo,
      publisher=self.publisher,
      runner=self.runner,
      retry_driver=self.retry_driver,
      object_store=self.store,
      job_cost=10,
    )

  def service_graph(self) -> ServiceGraph:
    return ServiceGraph(service=self.service, admission=self.admission, publisher=self.publisher, runner=self.runner, storage=self.store, notifications=self.notification_service)

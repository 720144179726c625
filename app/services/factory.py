"""Wire repositories, providers and services into one request-facing graph."""

from __future__ import annotations

from dataclasses import dataclass

from app.ai.providers import GeminiTextGenerator, ImagenImageGenerator
from app.config import Settings
from app.jobs.pipeline import JobPipelineCoordinator
from app.jobs.progress import ProgressPublisher
from app.jobs.retry import ResumableRetryDriver
from app.jobs.runner import PipelineRunner
from app.notifications.factory import build_notification_service
from app.notifications.service import NotificationService
from app.services.admission import AdmissionController, FixedWindowRateLimiter
from app.services.ledger import CreditLedger
from app.services.storage_client import StorageClient, build_storage_client
from app.services.submissions import PipelineService
from app.storage.postgres_jobs_repo import PostgresJobsRepository
from app.storage.postgres_ledger_repo import PostgresLedgerRepository
from app.storage.postgres_progress_repo import PostgresProgressRepository


@dataclass(frozen=True)
class ServiceGraph:
  """Long-lived components shared by every request on one instance."""

  service: PipelineService
  admission: AdmissionController
  publisher: ProgressPublisher
  runner: PipelineRunner
  storage: StorageClient
  notifications: NotificationService


def build_service_graph(settings: Settings) -> ServiceGraph:
  """Construct the production component graph from settings."""
  if not settings.pg_dsn:
    raise RuntimeError("DOCSYNTH_PG_DSN must be set to run the service.")
  if not settings.gemini_api_key:
    raise RuntimeError("GEMINI_API_KEY must be set to run the service.")

  jobs_repo = PostgresJobsRepository()
  notifications = build_notification_service(settings)
  ledger = CreditLedger(PostgresLedgerRepository(), notifications=notifications, low_credit_threshold=settings.low_credit_threshold)
  publisher = ProgressPublisher(PostgresProgressRepository())
  storage = build_storage_client(settings)

  admission = AdmissionController(
    source_limiter=FixedWindowRateLimiter(max_requests=settings.rate_limit_source_max, window_seconds=settings.rate_limit_source_window_seconds),
    identity_limiter=FixedWindowRateLimiter(max_requests=settings.rate_limit_identity_max, window_seconds=settings.rate_limit_identity_window_seconds),
    ledger=ledger,
  )
  coordinator = JobPipelineCoordinator(
    jobs_repo=jobs_repo,
    ledger=ledger,
    publisher=publisher,
    notifications=notifications,
    text_generator=GeminiTextGenerator(api_key=settings.gemini_api_key, model=settings.text_model),
    image_generator=ImagenImageGenerator(api_key=settings.gemini_api_key, model=settings.image_model),
    object_store=storage,
    job_cost=settings.job_cost,
    image_concurrency=settings.image_batch_concurrency,
  )
  runner = PipelineRunner(coordinator, jobs_repo=jobs_repo, publisher=publisher, notifications=notifications)
  retry_driver = ResumableRetryDriver(jobs_repo=jobs_repo, runner=runner, publisher=publisher)
  service = PipelineService(
    admission=admission,
    ledger=ledger,
    jobs_repo=jobs_repo,
    publisher=publisher,
    runner=runner,
    retry_driver=retry_driver,
    object_store=storage,
    job_cost=settings.job_cost,
  )
  return ServiceGraph(service=service, admission=admission, publisher=publisher, runner=runner, storage=storage, notifications=notifications)

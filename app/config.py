"""Application configuration loaded from environment variables."""

from __future__ import annotations

import os
from dataclasses import dataclass
from functools import lru_cache


@dataclass(frozen=True)
class Settings:
  """Typed settings for the DocSynth service."""

  environment: str
  allowed_origins: tuple[str, ...]
  debug: bool
  log_dir: str
  log_max_bytes: int
  log_backup_count: int
  log_http_4xx: bool
  pg_dsn: str | None
  pg_connect_timeout: int
  gcp_project_id: str | None
  firebase_project_id: str | None
  firebase_service_account_json_path: str | None
  gemini_api_key: str | None
  text_model: str
  image_model: str
  storage_bucket: str
  gcs_storage_host: str | None
  public_asset_base_url: str | None
  job_cost: int
  low_credit_threshold: int
  rate_limit_source_max: int
  rate_limit_source_window_seconds: int
  rate_limit_identity_max: int
  rate_limit_identity_window_seconds: int
  rate_limit_sweep_interval_seconds: int
  image_batch_concurrency: int
  progress_poll_interval_seconds: float
  progress_retention_seconds: int
  max_upload_bytes: int
  task_secret: str | None
  notifications_enabled: bool


@dataclass(frozen=True)
class DatabaseSettings:
  """Typed settings for database connectivity."""

  debug: bool
  pg_dsn: str | None
  pg_connect_timeout: int


def _parse_origins(raw: str | None) -> tuple[str, ...]:
  if not raw:
    raise ValueError("DOCSYNTH_ALLOWED_ORIGINS must be set to one or more origins.")

  origins = [origin.strip() for origin in raw.split(",") if origin.strip()]

  if not origins:
    raise ValueError("DOCSYNTH_ALLOWED_ORIGINS must include at least one origin.")

  if "*" in origins:
    raise ValueError("DOCSYNTH_ALLOWED_ORIGINS must not include wildcard origins.")

  return tuple(origins)


def _parse_bool(raw: str | None, *, default: bool = False) -> bool:
  """Parse a boolean-ish string from environment variables."""

  if raw is None:
    return default

  normalized = raw.strip().lower()
  return normalized in {"1", "true", "yes", "on"}


def _parse_positive_int(name: str, default: str) -> int:
  value = int(os.getenv(name, default))
  if value <= 0:
    raise ValueError(f"{name} must be a positive integer.")
  return value


@lru_cache(maxsize=1)
def get_settings() -> Settings:
  """Load settings once per process."""

  environment = os.getenv("DOCSYNTH_ENV", "development").lower()

  # Toggle verbose error output and diagnostics in non-production environments.
  debug = _parse_bool(os.getenv("DOCSYNTH_DEBUG"))

  log_max_bytes = _parse_positive_int("DOCSYNTH_LOG_MAX_BYTES", "5242880")  # 5MB default
  log_backup_count = int(os.getenv("DOCSYNTH_LOG_BACKUP_COUNT", "10"))
  if log_backup_count < 0:
    raise ValueError("DOCSYNTH_LOG_BACKUP_COUNT must be zero or a positive integer.")

  # Allow opt-in logging of 4xx HTTPExceptions for diagnostics.
  log_http_4xx = _parse_bool(os.getenv("DOCSYNTH_LOG_HTTP_4XX"))

  # Credits charged once per job after the text summary succeeds.
  job_cost = _parse_positive_int("DOCSYNTH_JOB_COST", "10")
  low_credit_threshold = int(os.getenv("DOCSYNTH_LOW_CREDIT_THRESHOLD", "20"))
  if low_credit_threshold < 0:
    raise ValueError("DOCSYNTH_LOW_CREDIT_THRESHOLD must be zero or a positive integer.")

  progress_poll_interval_seconds = float(os.getenv("DOCSYNTH_PROGRESS_POLL_INTERVAL_SECONDS", "1.0"))
  if progress_poll_interval_seconds <= 0:
    raise ValueError("DOCSYNTH_PROGRESS_POLL_INTERVAL_SECONDS must be positive.")

  return Settings(
    environment=environment,
    allowed_origins=_parse_origins(os.getenv("DOCSYNTH_ALLOWED_ORIGINS")),
    debug=debug,
    log_dir=(os.getenv("DOCSYNTH_LOG_DIR") or "logs").strip(),
    log_max_bytes=log_max_bytes,
    log_backup_count=log_backup_count,
    log_http_4xx=log_http_4xx,
    pg_dsn=os.getenv("DOCSYNTH_PG_DSN") or os.getenv("DATABASE_URL"),
    pg_connect_timeout=_parse_positive_int("DOCSYNTH_PG_CONNECT_TIMEOUT", "5"),
    gcp_project_id=_optional_str(os.getenv("GCP_PROJECT_ID")),
    firebase_project_id=_optional_str(os.getenv("FIREBASE_PROJECT_ID")),
    firebase_service_account_json_path=_optional_str(os.getenv("FIREBASE_SERVICE_ACCOUNT_JSON_PATH")),
    gemini_api_key=_optional_str(os.getenv("GEMINI_API_KEY")),
    text_model=(os.getenv("DOCSYNTH_TEXT_MODEL") or "gemini-2.5-flash").strip(),
    image_model=(os.getenv("DOCSYNTH_IMAGE_MODEL") or "imagen-4.0-generate-001").strip(),
    storage_bucket=os.getenv("DOCSYNTH_STORAGE_BUCKET", "docsynth-assets"),
    gcs_storage_host=_optional_str(os.getenv("GCS_STORAGE_HOST")),
    public_asset_base_url=_optional_str(os.getenv("DOCSYNTH_PUBLIC_ASSET_BASE_URL")),
    job_cost=job_cost,
    low_credit_threshold=low_credit_threshold,
    rate_limit_source_max=_parse_positive_int("DOCSYNTH_RATE_LIMIT_SOURCE_MAX", "5"),
    rate_limit_source_window_seconds=_parse_positive_int("DOCSYNTH_RATE_LIMIT_SOURCE_WINDOW_SECONDS", "60"),
    rate_limit_identity_max=_parse_positive_int("DOCSYNTH_RATE_LIMIT_IDENTITY_MAX", "10"),
    rate_limit_identity_window_seconds=_parse_positive_int("DOCSYNTH_RATE_LIMIT_IDENTITY_WINDOW_SECONDS", "3600"),
    rate_limit_sweep_interval_seconds=_parse_positive_int("DOCSYNTH_RATE_LIMIT_SWEEP_INTERVAL_SECONDS", "300"),
    image_batch_concurrency=_parse_positive_int("DOCSYNTH_IMAGE_BATCH_CONCURRENCY", "3"),
    progress_poll_interval_seconds=progress_poll_interval_seconds,
    progress_retention_seconds=_parse_positive_int("DOCSYNTH_PROGRESS_RETENTION_SECONDS", "3600"),
    max_upload_bytes=_parse_positive_int("DOCSYNTH_MAX_UPLOAD_BYTES", str(10 * 1024 * 1024)),
    task_secret=_optional_str(os.getenv("DOCSYNTH_TASK_SECRET")),
    notifications_enabled=_parse_bool(os.getenv("DOCSYNTH_NOTIFICATIONS_ENABLED"), default=True),
  )


@lru_cache(maxsize=1)
def get_database_settings() -> DatabaseSettings:
  """Load database settings without requiring web-runtime configuration like CORS."""
  # Keep database configuration isolated so migrations and offline scripts don't require unrelated env vars.
  debug = _parse_bool(os.getenv("DOCSYNTH_DEBUG"))
  pg_connect_timeout = _parse_positive_int("DOCSYNTH_PG_CONNECT_TIMEOUT", "5")
  pg_dsn = os.getenv("DOCSYNTH_PG_DSN") or os.getenv("DATABASE_URL")
  return DatabaseSettings(debug=debug, pg_dsn=pg_dsn, pg_connect_timeout=pg_connect_timeout)


def _optional_str(raw: str | None) -> str | None:
  if raw is None:
    return None
  value = raw.strip()
  if value == "":
    return None
  return value

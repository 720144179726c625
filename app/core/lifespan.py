import asyncio
import contextlib
import logging
from collections.abc import AsyncIterator
from contextlib import asynccontextmanager
from urllib.parse import urlparse

from app.core.database import dispose_engine
from app.core.firebase import initialize_firebase
from app.core.logging import _initialize_logging
from app.services.factory import ServiceGraph, build_service_graph
from fastapi import FastAPI

_SHUTDOWN_DRAIN_SECONDS = 30.0


@asynccontextmanager
async def lifespan(app: FastAPI) -> AsyncIterator[None]:
  """Initialize logging and shared services, then tear them down on shutdown."""
  from app.config import get_settings

  # Load settings for startup initialization.
  settings = get_settings()
  # Create a module logger for lifespan events.
  logger = logging.getLogger("app.core.lifespan")

  # Initialize logging with configured settings.
  _initialize_logging(settings)
  logger.info("Startup environment=%s database=%s", settings.environment, _redact_dsn(settings.pg_dsn))

  # Initialize Firebase before handling requests.
  initialize_firebase()

  graph = build_service_graph(settings)
  app.state.services = graph

  # Ensure the asset bucket exists before jobs begin uploading.
  try:
    await graph.storage.ensure_bucket()
    logger.info("Asset bucket ensured: %s", graph.storage.bucket_name)
  except Exception as exc:  # noqa: BLE001
    logger.warning("Failed to ensure asset bucket at startup: %s", exc)

  sweeper = asyncio.create_task(_sweep_forever(graph, interval_seconds=settings.rate_limit_sweep_interval_seconds, retention_seconds=settings.progress_retention_seconds), name="state-sweeper")
  try:
    yield
  finally:
    sweeper.cancel()
    with contextlib.suppress(asyncio.CancelledError):
      await sweeper
    # Give in-flight runs a chance to reach a terminal state before exit.
    await graph.runner.wait_idle(timeout=_SHUTDOWN_DRAIN_SECONDS)
    await dispose_engine()
    logger.info("Shutdown complete.")


async def _sweep_forever(graph: ServiceGraph, *, interval_seconds: float, retention_seconds: float) -> None:
  """Periodically evict expired rate-limit windows and finished progress snapshots."""
  logger = logging.getLogger("app.core.lifespan")
  while True:
    await asyncio.sleep(interval_seconds)
    try:
      evicted_windows = graph.admission.sweep()
      evicted_snapshots = graph.publisher.sweep(retention_seconds)
    except Exception:  # noqa: BLE001
      logger.error("State sweep failed", exc_info=True)
      continue
    if evicted_windows or evicted_snapshots:
      logger.debug("Swept windows=%s snapshots=%s", evicted_windows, evicted_snapshots)


def _redact_dsn(raw: str | None) -> str:
  """Redact credentials from a DSN while keeping host/db visible."""
  # Provide a stable placeholder when the DSN is missing.
  if not raw:
    return "<unset>"

  # Parse the DSN so we can safely strip credentials.
  parsed = urlparse(raw)
  # Guard against malformed DSNs without a scheme.
  if not parsed.scheme:
    return "<invalid>"

  # Build a sanitized netloc with username and host metadata only.
  user = parsed.username or ""
  host = parsed.hostname or ""
  port = f":{parsed.port}" if parsed.port else ""
  netloc = f"{user}@{host}{port}" if user else f"{host}{port}"
  # Preserve the database name when available.
  database = parsed.path.lstrip("/")
  path = f"/{database}" if database else ""
  return f"{parsed.scheme}://{netloc}{path}"

"""Shared FastAPI dependencies for service access and internal auth."""

from __future__ import annotations

import hmac
import logging

from fastapi import Depends, Header, HTTPException, Request, status

from app.config import Settings, get_settings
from app.jobs.progress import ProgressPublisher
from app.notifications.service import NotificationService
from app.services.factory import ServiceGraph
from app.services.submissions import PipelineService

logger = logging.getLogger(__name__)


def get_service_graph(request: Request) -> ServiceGraph:
  """Return the component graph built during startup."""
  graph = getattr(request.app.state, "services", None)
  if graph is None:
    raise HTTPException(status_code=status.HTTP_503_SERVICE_UNAVAILABLE, detail="Service is starting up.")
  return graph


def get_pipeline_service(graph: ServiceGraph = Depends(get_service_graph)) -> PipelineService:  # noqa: B008
  return graph.service


def get_progress_publisher(graph: ServiceGraph = Depends(get_service_graph)) -> ProgressPublisher:  # noqa: B008
  return graph.publisher


def get_notification_service(graph: ServiceGraph = Depends(get_service_graph)) -> NotificationService:  # noqa: B008
  return graph.notifications


async def require_task_secret(x_task_secret: str | None = Header(default=None), settings: Settings = Depends(get_settings)) -> None:  # noqa: B008
  """Authorize trusted internal callers such as the payment processor callback."""
  expected = settings.task_secret
  if not expected:
    logger.error("Internal endpoint called but DOCSYNTH_TASK_SECRET is not configured.")
    raise HTTPException(status_code=status.HTTP_503_SERVICE_UNAVAILABLE, detail="Internal endpoints are disabled.")
  # Constant-time comparison.
  if not x_task_secret or not hmac.compare_digest(x_task_secret, expected):
    raise HTTPException(status_code=status.HTTP_401_UNAUTHORIZED, detail="Invalid task secret.")

"""Notification orchestration for pipeline and ledger events."""

from __future__ import annotations

import logging

from app.notifications.contracts import JobEvent, NotificationSink
from app.notifications.in_app_repo import InAppNotificationEntry, InAppNotificationRecord, InAppNotificationRepository
from app.notifications.in_app_templates import render_in_app_template

logger = logging.getLogger(__name__)


class NotificationService(NotificationSink):
  """Renders job events into in-app notifications for their owners."""

  def __init__(self, *, in_app_repo: InAppNotificationRepository, enabled: bool = True) -> None:
    self._in_app_repo = in_app_repo
    self._enabled = enabled

  async def notify(self, event: JobEvent) -> None:
    """Persist an in-app notification; delivery failures are logged, never raised."""
    if not self._enabled:
      return

    # Anonymous jobs have nobody to notify; the progress stream is their only channel.
    if event.owner_id is None:
      logger.info("Skipping notification for anonymous job event_type=%s job_id=%s", event.event_type, event.job_id)
      return

    data = dict(event.data)
    if event.job_id is not None:
      data.setdefault("job_id", event.job_id)

    try:
      title, body = render_in_app_template(template_id=_template_for(event.event_type, data), data=data)
      entry = InAppNotificationEntry(user_id=event.owner_id, notification_type=event.event_type, title=title, body=body, data=data)
      await self._in_app_repo.insert(entry)
    except Exception as exc:  # noqa: BLE001
      logger.error("In-app notification delivery failed event_type=%s job_id=%s error=%s", event.event_type, event.job_id, exc, exc_info=True)

  async def list_notifications(self, user_id: str, *, unread_only: bool = False, limit: int = 20, offset: int = 0) -> list[InAppNotificationRecord]:
    return await self._in_app_repo.list_for_user(user_id, unread_only=unread_only, limit=limit, offset=offset)

  async def unread_count(self, user_id: str) -> int:
    return await self._in_app_repo.count_unread(user_id)

  async def mark_read(self, user_id: str, notification_id: str) -> bool:
    return await self._in_app_repo.mark_read(user_id, notification_id)

  async def mark_all_read(self, user_id: str) -> int:
    """Mark the user's whole inbox read and return how many notifications changed."""
    updated = await self._in_app_repo.mark_all_read(user_id)
    logger.info("Marked notifications read user_id=%s count=%s", user_id, updated)
    return updated


def _template_for(event_type: str, data: dict) -> str:
  # A completion with missing images gets a wording that says so.
  if event_type == "job_completed" and data.get("failed"):
    return "images_incomplete"
  return event_type

"""In-app notification inbox endpoints."""

from __future__ import annotations

from fastapi import APIRouter, Depends, HTTPException, Query, status

from app.api.deps import get_notification_service
from app.api.models import MarkAllReadResponse, NotificationListResponse, NotificationResponse
from app.core.security import Identity, require_identity
from app.notifications.service import NotificationService

router = APIRouter()


@router.get("", response_model=NotificationListResponse)
async def list_notifications(
  identity: Identity = Depends(require_identity),  # noqa: B008
  notifications: NotificationService = Depends(get_notification_service),  # noqa: B008
  limit: int = Query(20, ge=1, le=100),  # noqa: B008
  offset: int = Query(0, ge=0),  # noqa: B008
  unread_only: bool = Query(False),  # noqa: B008
) -> NotificationListResponse:
  """
  Poll for the caller's notifications, newest first.

  - **limit**: Max number of notifications to return.
  - **offset**: Number of notifications to skip (for pagination).
  - **unread_only**: Only return notifications not yet marked read.
  """
  records = await notifications.list_notifications(identity.user_id, unread_only=unread_only, limit=limit, offset=offset)
  unread = await notifications.unread_count(identity.user_id)
  return NotificationListResponse(notifications=[NotificationResponse.from_record(record) for record in records], unread_count=unread)


@router.post("/read-all", response_model=MarkAllReadResponse)
async def mark_all_read(
  identity: Identity = Depends(require_identity),  # noqa: B008
  notifications: NotificationService = Depends(get_notification_service),  # noqa: B008
) -> MarkAllReadResponse:
  """Mark every notification in the caller's inbox read."""
  updated = await notifications.mark_all_read(identity.user_id)
  return MarkAllReadResponse(updated=updated)


@router.post("/{notification_id}/read", status_code=status.HTTP_204_NO_CONTENT)
async def mark_read(
  notification_id: str,
  identity: Identity = Depends(require_identity),  # noqa: B008
  notifications: NotificationService = Depends(get_notification_service),  # noqa: B008
) -> None:
  """Mark one notification read; other users' notifications are reported as missing."""
  if not await notifications.mark_read(identity.user_id, notification_id):
    raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail="Notification not found.")

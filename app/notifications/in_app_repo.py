"""Repository helpers for in-app notifications."""

from __future__ import annotations

import logging
import uuid
from dataclasses import dataclass
from typing import Any

from sqlalchemy import desc, func, select, update
from sqlalchemy.ext.asyncio import AsyncSession

from app.core.database import get_session_factory
from app.schema.notifications import InAppNotification

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class InAppNotificationEntry:
  """Capture a single in-app notification entry."""

  user_id: str
  notification_type: str
  title: str
  body: str
  data: dict


@dataclass(frozen=True)
class InAppNotificationRecord:
  """A stored notification as shown in the user's inbox."""

  notification_id: str
  notification_type: str
  title: str
  body: str
  data: dict[str, Any]
  read: bool
  created_at: str | None = None


class InAppNotificationRepository:
  """Persist in-app notifications to Postgres."""

  async def insert(self, entry: InAppNotificationEntry) -> None:
    """Insert a new in-app notification row."""
    session_factory = get_session_factory()
    if session_factory is None:
      return
    async with session_factory() as session:
      await self._insert_with_session(session=session, entry=entry)

  async def _insert_with_session(self, *, session: AsyncSession, entry: InAppNotificationEntry) -> None:
    record = InAppNotification(user_id=entry.user_id, notification_type=entry.notification_type, title=entry.title, body=entry.body, data_json=entry.data, read=False)
    session.add(record)
    await session.commit()

  async def list_for_user(self, user_id: str, *, unread_only: bool = False, limit: int = 20, offset: int = 0) -> list[InAppNotificationRecord]:
    """Return a page of the user's notifications, newest first."""
    session_factory = get_session_factory()
    if session_factory is None:
      return []
    query = select(InAppNotification).where(InAppNotification.user_id == user_id)
    if unread_only:
      query = query.where(InAppNotification.read.is_(False))
    query = query.order_by(desc(InAppNotification.created_at)).limit(limit).offset(offset)
    async with session_factory() as session:
      result = await session.execute(query)
      return [_to_record(row) for row in result.scalars().all()]

  async def count_unread(self, user_id: str) -> int:
    session_factory = get_session_factory()
    if session_factory is None:
      return 0
    async with session_factory() as session:
      result = await session.execute(select(func.count()).select_from(InAppNotification).where(InAppNotification.user_id == user_id, InAppNotification.read.is_(False)))
      return int(result.scalar_one())

  async def mark_read(self, user_id: str, notification_id: str) -> bool:
    """Mark one of the user's notifications read; False when it does not exist for them."""
    try:
      parsed_id = uuid.UUID(notification_id)
    except ValueError:
      return False
    session_factory = get_session_factory()
    if session_factory is None:
      return False
    async with session_factory() as session:
      result = await session.execute(update(InAppNotification).where(InAppNotification.id == parsed_id, InAppNotification.user_id == user_id).values(read=True))
      await session.commit()
      return result.rowcount > 0

  async def mark_all_read(self, user_id: str) -> int:
    """Mark every unread notification for the user read and return how many changed."""
    session_factory = get_session_factory()
    if session_factory is None:
      return 0
    async with session_factory() as session:
      result = await session.execute(update(InAppNotification).where(InAppNotification.user_id == user_id, InAppNotification.read.is_(False)).values(read=True))
      await session.commit()
      return result.rowcount


class NullInAppNotificationRepository(InAppNotificationRepository):
  """No-op repository when persistence is unavailable."""

  async def insert(self, entry: InAppNotificationEntry) -> None:
    logger.debug("In-app notification persistence disabled; dropping notification_type=%s", entry.notification_type)

  async def list_for_user(self, user_id: str, *, unread_only: bool = False, limit: int = 20, offset: int = 0) -> list[InAppNotificationRecord]:
    return []

  async def count_unread(self, user_id: str) -> int:
    return 0

  async def mark_read(self, user_id: str, notification_id: str) -> bool:
    return False

  async def mark_all_read(self, user_id: str) -> int:
    return 0


def _to_record(row: InAppNotification) -> InAppNotificationRecord:
  created_at = row.created_at.isoformat() if row.created_at is not None else None
  return InAppNotificationRecord(notification_id=str(row.id), notification_type=row.notification_type, title=row.title, body=row.body, data=dict(row.data_json or {}), read=bool(row.read), created_at=created_at)

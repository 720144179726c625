"""Contracts for user notification delivery."""

from __future__ import annotations

from dataclasses import dataclass, field
from typing import Any, Literal, Protocol

JobEventType = Literal["job_completed", "job_failed", "low_credits"]


@dataclass(frozen=True)
class JobEvent:
  """A user-facing event emitted by the pipeline or the ledger."""

  event_type: JobEventType
  owner_id: str | None
  job_id: str | None = None
  data: dict[str, Any] = field(default_factory=dict)


class NotificationSink(Protocol):
  """Delivery contract for pipeline outcomes; implementations must never raise."""

  async def notify(self, event: JobEvent) -> None:
    """Deliver an event on a best-effort basis."""

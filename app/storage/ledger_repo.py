"""Storage interfaces for credit balances and ledger entries."""

from __future__ import annotations

from dataclasses import dataclass
from typing import Literal, Protocol

LedgerCategory = Literal["debit-for-job", "credit-grant", "admin-adjustment"]


@dataclass(frozen=True)
class LedgerEntryRecord:
  """One immutable ledger line."""

  entry_id: str
  owner_id: str
  delta: int
  balance_after: int
  category: LedgerCategory
  job_id: str | None = None
  description: str | None = None
  created_at: str | None = None


class LedgerRepository(Protocol):
  """Repository contract for balances and their append-only log."""

  async def get_balance(self, owner_id: str) -> int:
    """Return the stored balance; a missing account reads as zero."""

  async def apply_entry(self, owner_id: str, *, expected_balance: int, delta: int, category: LedgerCategory, job_id: str | None = None, description: str | None = None) -> LedgerEntryRecord | None:
    """Atomically move the balance from ``expected_balance`` by ``delta`` and append an entry.

    Returns None when the stored balance no longer equals ``expected_balance`` (or a
    debit for the same job already exists); nothing is written in that case.
    """

  async def find_job_debit(self, job_id: str) -> LedgerEntryRecord | None:
    """Return the debit recorded for a job, if any."""

  async def list_entries(self, owner_id: str, *, limit: int = 50) -> list[LedgerEntryRecord]:
    """Return the newest entries for an owner."""

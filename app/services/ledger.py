"""Credit balances with an append-only transaction log."""

from __future__ import annotations

import asyncio
import logging
from collections import defaultdict

from app.notifications.contracts import JobEvent, NotificationSink
from app.storage.ledger_repo import LedgerCategory, LedgerEntryRecord, LedgerRepository

logger = logging.getLogger(__name__)

# Conditional writes lose only to a concurrent writer on the same owner; retry a few times.
MAX_WRITE_ATTEMPTS = 5


class InsufficientFundsError(RuntimeError):
  """Raised when a debit would drive a balance below zero."""

  def __init__(self, owner_id: str, *, balance: int, amount: int) -> None:
    super().__init__(f"Insufficient credits: balance {balance}, required {amount}.")
    self.owner_id = owner_id
    self.balance = balance
    self.amount = amount


class LedgerConflictError(RuntimeError):
  """Raised when a conditional write keeps losing to concurrent writers."""


class CreditLedger:
  """Check, debit and credit owner balances.

  Every mutation re-reads the balance immediately before a conditional write and
  appends exactly one ledger entry in the same transaction. Debits are keyed by job,
  so a job is charged at most once however many times its paid stage is reached.
  """

  def __init__(self, repo: LedgerRepository, *, notifications: NotificationSink | None = None, low_credit_threshold: int = 0) -> None:
    self._repo = repo
    self._notifications = notifications
    self._low_credit_threshold = low_credit_threshold
    self._locks: defaultdict[str, asyncio.Lock] = defaultdict(asyncio.Lock)

  async def balance(self, owner_id: str) -> int:
    return await self._repo.get_balance(owner_id)

  async def entries(self, owner_id: str, *, limit: int = 50) -> list[LedgerEntryRecord]:
    return await self._repo.list_entries(owner_id, limit=limit)

  async def has_job_debit(self, job_id: str) -> bool:
    return await self._repo.find_job_debit(job_id) is not None

  async def debit(self, owner_id: str, amount: int, job_id: str) -> int:
    """Charge ``amount`` for ``job_id`` and return the new balance."""
    if amount <= 0:
      raise ValueError("Debit amount must be positive.")

    async with self._locks[owner_id]:
      # A retried job that was already charged must not pay twice.
      existing = await self._repo.find_job_debit(job_id)
      if existing is not None:
        logger.info("Job already charged job_id=%s owner_id=%s", job_id, owner_id)
        return await self._repo.get_balance(owner_id)

      for _attempt in range(MAX_WRITE_ATTEMPTS):
        current = await self._repo.get_balance(owner_id)
        if current - amount < 0:
          raise InsufficientFundsError(owner_id, balance=current, amount=amount)

        entry = await self._repo.apply_entry(owner_id, expected_balance=current, delta=-amount, category="debit-for-job", job_id=job_id, description=f"Processing charge for job {job_id}")
        if entry is not None:
          logger.info("Debited owner_id=%s amount=%s job_id=%s balance_after=%s", owner_id, amount, job_id, entry.balance_after)
          await self._maybe_warn_low_balance(owner_id, entry.balance_after)
          return entry.balance_after

        # Either the balance moved or another writer charged this job first.
        existing = await self._repo.find_job_debit(job_id)
        if existing is not None:
          return await self._repo.get_balance(owner_id)

    raise LedgerConflictError(f"Could not debit owner {owner_id} after {MAX_WRITE_ATTEMPTS} attempts.")

  async def credit(self, owner_id: str, amount: int, reason: str, *, category: LedgerCategory = "credit-grant") -> int:
    """Add ``amount`` (negative only for admin adjustments) and return the new balance."""
    if category == "debit-for-job":
      raise ValueError("Use debit() for job charges.")
    if amount == 0:
      raise ValueError("Credit amount must be non-zero.")
    if amount < 0 and category != "admin-adjustment":
      raise ValueError("Only admin adjustments may reduce a balance.")

    async with self._locks[owner_id]:
      for _attempt in range(MAX_WRITE_ATTEMPTS):
        current = await self._repo.get_balance(owner_id)
        if current + amount < 0:
          raise InsufficientFundsError(owner_id, balance=current, amount=-amount)

        entry = await self._repo.apply_entry(owner_id, expected_balance=current, delta=amount, category=category, description=reason)
        if entry is not None:
          logger.info("Credited owner_id=%s amount=%s category=%s balance_after=%s", owner_id, amount, category, entry.balance_after)
          return entry.balance_after

    raise LedgerConflictError(f"Could not credit owner {owner_id} after {MAX_WRITE_ATTEMPTS} attempts.")

  async def _maybe_warn_low_balance(self, owner_id: str, balance: int) -> None:
    if self._notifications is None or balance >= self._low_credit_threshold:
      return
    await self._notifications.notify(JobEvent(event_type="low_credits", owner_id=owner_id, data={"balance": balance}))

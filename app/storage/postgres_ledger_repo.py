"""Postgres-backed credit ledger using conditional updates."""

from __future__ import annotations

import logging
import uuid

from sqlalchemy import select, update
from sqlalchemy.dialects.postgresql import insert
from sqlalchemy.exc import IntegrityError

from app.core.database import require_session_factory
from app.schema.credits import CreditAccount, LedgerEntry
from app.storage.ledger_repo import LedgerCategory, LedgerEntryRecord, LedgerRepository

logger = logging.getLogger(__name__)


class PostgresLedgerRepository(LedgerRepository):
  """Persist balances and entries in one transaction per mutation."""

  def __init__(self) -> None:
    self._session_factory = require_session_factory()

  async def get_balance(self, owner_id: str) -> int:
    async with self._session_factory() as session:
      result = await session.execute(select(CreditAccount.balance).where(CreditAccount.owner_id == owner_id))
      balance = result.scalar_one_or_none()
      return int(balance or 0)

  async def apply_entry(self, owner_id: str, *, expected_balance: int, delta: int, category: LedgerCategory, job_id: str | None = None, description: str | None = None) -> LedgerEntryRecord | None:
    new_balance = expected_balance + delta
    if new_balance < 0:
      raise ValueError("Ledger entries must not drive a balance negative.")

    async with self._session_factory() as session:
      try:
        # Compare-and-swap on the balance read by the caller.
        stmt = update(CreditAccount).where(CreditAccount.owner_id == owner_id, CreditAccount.balance == expected_balance).values(balance=new_balance).returning(CreditAccount.balance)
        swapped = (await session.execute(stmt)).scalar_one_or_none()
        if swapped is None and expected_balance == 0:
          # First entry for this owner: create the account row unless someone beat us to it.
          created = insert(CreditAccount).values(owner_id=owner_id, balance=new_balance).on_conflict_do_nothing(index_elements=[CreditAccount.owner_id]).returning(CreditAccount.balance)
          swapped = (await session.execute(created)).scalar_one_or_none()
        if swapped is None:
          await session.rollback()
          return None

        entry = LedgerEntry(id=uuid.uuid4(), owner_id=owner_id, delta=delta, balance_after=new_balance, category=category, job_id=job_id, description=description)
        session.add(entry)
        await session.commit()
      except IntegrityError:
        # The partial unique index rejects a second debit for the same job.
        await session.rollback()
        logger.info("Ledger entry rejected by constraint owner_id=%s job_id=%s category=%s", owner_id, job_id, category)
        return None

      return self._entry_to_record(entry)

  async def find_job_debit(self, job_id: str) -> LedgerEntryRecord | None:
    async with self._session_factory() as session:
      result = await session.execute(select(LedgerEntry).where(LedgerEntry.job_id == job_id, LedgerEntry.category == "debit-for-job"))
      row = result.scalar_one_or_none()
      return self._entry_to_record(row) if row is not None else None

  async def list_entries(self, owner_id: str, *, limit: int = 50) -> list[LedgerEntryRecord]:
    async with self._session_factory() as session:
      result = await session.execute(select(LedgerEntry).where(LedgerEntry.owner_id == owner_id).order_by(LedgerEntry.created_at.desc()).limit(limit))
      return [self._entry_to_record(row) for row in result.scalars().all()]

  @staticmethod
  def _entry_to_record(row: LedgerEntry) -> LedgerEntryRecord:
    created_at = row.created_at.isoformat() if row.created_at is not None else None
    return LedgerEntryRecord(entry_id=str(row.id), owner_id=row.owner_id, delta=row.delta, balance_after=row.balance_after, category=row.category, job_id=row.job_id, description=row.description, created_at=created_at)  # type: ignore[arg-type]

from __future__ import annotations

import asyncio

import pytest

from app.services.ledger import CreditLedger, InsufficientFundsError, LedgerConflictError
from tests.fakes import InMemoryLedgerRepo, RecordingNotifications


@pytest.mark.anyio
async def test_missing_account_reads_as_zero() -> None:
  ledger = CreditLedger(InMemoryLedgerRepo())

  assert await ledger.balance("nobody") == 0


@pytest.mark.anyio
async def test_debit_appends_one_entry_with_balance_after() -> None:
  repo = InMemoryLedgerRepo({"user-1": 30})
  ledger = CreditLedger(repo)

  new_balance = await ledger.debit("user-1", 10, "job-1")

  assert new_balance == 20
  assert await ledger.balance("user-1") == 20
  [entry] = repo.entries
  assert (entry.delta, entry.balance_after, entry.category, entry.job_id) == (-10, 20, "debit-for-job", "job-1")


@pytest.mark.anyio
async def test_debit_is_charged_at_most_once_per_job() -> None:
  repo = InMemoryLedgerRepo({"user-1": 30})
  ledger = CreditLedger(repo)

  await ledger.debit("user-1", 10, "job-1")
  second = await ledger.debit("user-1", 10, "job-1")

  assert second == 20
  assert len(repo.entries) == 1
  assert await ledger.has_job_debit("job-1") is True
  assert await ledger.has_job_debit("job-2") is False


@pytest.mark.anyio
async def test_debit_below_zero_raises_and_writes_nothing() -> None:
  repo = InMemoryLedgerRepo({"user-1": 5})
  ledger = CreditLedger(repo)

  with pytest.raises(InsufficientFundsError) as excinfo:
    await ledger.debit("user-1", 10, "job-1")

  assert (excinfo.value.balance, excinfo.value.amount) == (5, 10)
  assert repo.entries == []
  assert await ledger.balance("user-1") == 5


@pytest.mark.anyio
async def test_concurrent_debits_never_overdraw() -> None:
  repo = InMemoryLedgerRepo({"user-1": 25})
  ledger = CreditLedger(repo)

  outcomes = await asyncio.gather(*(ledger.debit("user-1", 10, f"job-{index}") for index in range(3)), return_exceptions=True)

  charged = [outcome for outcome in outcomes if isinstance(outcome, int)]
  refused = [outcome for outcome in outcomes if isinstance(outcome, InsufficientFundsError)]
  assert len(charged) == 2
  assert len(refused) == 1
  assert await ledger.balance("user-1") == 5
  assert sum(entry.delta for entry in repo.entries) == -20


@pytest.mark.anyio
async def test_credit_grant_and_admin_adjustment() -> None:
  repo = InMemoryLedgerRepo()
  ledger = CreditLedger(repo)

  assert await ledger.credit("user-1", 50, "purchase") == 50
  assert await ledger.credit("user-1", -20, "correction", category="admin-adjustment") == 30
  assert [entry.category for entry in await ledger.entries("user-1")] == ["admin-adjustment", "credit-grant"]


@pytest.mark.anyio
async def test_credit_rejects_negative_grants_and_overdrawing_adjustments() -> None:
  ledger = CreditLedger(InMemoryLedgerRepo({"user-1": 10}))

  with pytest.raises(ValueError):
    await ledger.credit("user-1", -5, "refund")
  with pytest.raises(ValueError):
    await ledger.credit("user-1", 0, "noop")
  with pytest.raises(InsufficientFundsError):
    await ledger.credit("user-1", -11, "too much", category="admin-adjustment")


@pytest.mark.anyio
async def test_low_balance_notification_after_debit() -> None:
  notifications = RecordingNotifications()
  ledger = CreditLedger(InMemoryLedgerRepo({"user-1": 25}), notifications=notifications, low_credit_threshold=20)

  await ledger.debit("user-1", 10, "job-1")

  [event] = notifications.events
  assert event.event_type == "low_credits"
  assert event.owner_id == "user-1"
  assert event.data == {"balance": 15}


@pytest.mark.anyio
async def test_persistent_write_conflicts_surface_as_errors() -> None:
  class AlwaysConflictingRepo(InMemoryLedgerRepo):
    async def apply_entry(self, owner_id: str, **kwargs: object) -> None:
      return None

  ledger = CreditLedger(AlwaysConflictingRepo({"user-1": 30}))

  with pytest.raises(LedgerConflictError):
    await ledger.debit("user-1", 10, "job-1")

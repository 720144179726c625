from __future__ import annotations

import pytest

from app.core.security import ANONYMOUS, INVALID, CredentialResolution, Identity
from app.services.admission import AdmissionController, AdmissionDeniedError, FixedWindowRateLimiter
from app.services.ledger import CreditLedger
from tests.fakes import InMemoryLedgerRepo


class FakeClock:
  def __init__(self, now: float = 0.0) -> None:
    self.now = now

  def __call__(self) -> float:
    return self.now


def _member(user_id: str = "user-1", email: str | None = "Member@Example.com") -> CredentialResolution:
  return CredentialResolution(status="authenticated", identity=Identity(user_id=user_id, email=email.lower() if email else None))


def _controller(*, balances: dict[str, int] | None = None, source_max: int = 5, identity_max: int = 10, clock: FakeClock | None = None) -> AdmissionController:
  clock = clock or FakeClock()
  return AdmissionController(
    source_limiter=FixedWindowRateLimiter(max_requests=source_max, window_seconds=60, clock=clock),
    identity_limiter=FixedWindowRateLimiter(max_requests=identity_max, window_seconds=3600, clock=clock),
    ledger=CreditLedger(InMemoryLedgerRepo(balances)),
  )


def test_fixed_window_allows_exactly_max_then_resets_on_expiry() -> None:
  clock = FakeClock()
  limiter = FixedWindowRateLimiter(max_requests=5, window_seconds=60, clock=clock)

  assert all(limiter.hit("10.0.0.1") for _ in range(5))
  assert limiter.hit("10.0.0.1") is False

  # Still inside the window one tick before expiry.
  clock.now = 59.9
  assert limiter.hit("10.0.0.1") is False

  clock.now = 60.0
  assert limiter.hit("10.0.0.1") is True


def test_fixed_window_tracks_keys_independently_and_sweeps_expired() -> None:
  clock = FakeClock()
  limiter = FixedWindowRateLimiter(max_requests=1, window_seconds=10, clock=clock)

  assert limiter.hit("a") is True
  assert limiter.hit("b") is True
  assert limiter.hit("a") is False
  assert len(limiter) == 2

  clock.now = 10.0
  assert limiter.sweep() == 2
  assert len(limiter) == 0


@pytest.mark.anyio
async def test_invalid_credentials_are_rejected_before_rate_windows() -> None:
  controller = _controller(source_max=1)

  decision = await controller.admit(source_key="10.0.0.1", credentials=INVALID, estimated_cost=10)

  assert decision.allowed is False
  assert decision.reason == "auth-failed"
  # The rejected request did not consume the source window.
  assert (await controller.admit(source_key="10.0.0.1", credentials=ANONYMOUS, estimated_cost=10)).allowed is True


@pytest.mark.anyio
async def test_anonymous_requests_skip_the_credit_check() -> None:
  controller = _controller()

  decision = await controller.admit(source_key="10.0.0.1", credentials=ANONYMOUS, estimated_cost=10)

  assert decision.allowed is True


@pytest.mark.anyio
async def test_source_window_denies_sixth_request() -> None:
  controller = _controller(balances={"user-1": 100})

  for _ in range(5):
    assert (await controller.admit(source_key="10.0.0.1", credentials=_member(), estimated_cost=10)).allowed is True

  decision = await controller.admit(source_key="10.0.0.1", credentials=_member(), estimated_cost=10)
  assert decision.reason == "rate-limited"


@pytest.mark.anyio
async def test_identity_window_is_keyed_by_email_across_sources() -> None:
  controller = _controller(balances={"user-1": 100}, identity_max=2)

  assert (await controller.admit(source_key="10.0.0.1", credentials=_member(), estimated_cost=10)).allowed is True
  assert (await controller.admit(source_key="10.0.0.2", credentials=_member(), estimated_cost=10)).allowed is True

  decision = await controller.admit(source_key="10.0.0.3", credentials=_member(), estimated_cost=10)
  assert decision.allowed is False
  assert decision.reason == "rate-limited"


@pytest.mark.anyio
async def test_identified_caller_below_cost_is_denied_for_funds() -> None:
  controller = _controller(balances={"user-1": 9})

  decision = await controller.admit(source_key="10.0.0.1", credentials=_member(), estimated_cost=10)

  assert decision.allowed is False
  assert decision.reason == "insufficient-funds"
  assert "10" in (decision.message or "")


@pytest.mark.anyio
async def test_zero_cost_skips_the_balance_gate() -> None:
  controller = _controller(balances={})

  decision = await controller.admit(source_key="10.0.0.1", credentials=_member(), estimated_cost=0)

  assert decision.allowed is True


@pytest.mark.anyio
async def test_ensure_admitted_raises_with_reason() -> None:
  controller = _controller()

  with pytest.raises(AdmissionDeniedError) as excinfo:
    await controller.ensure_admitted(source_key="10.0.0.1", credentials=INVALID, estimated_cost=10)

  assert excinfo.value.reason == "auth-failed"

"""Admission gating: credential checks, rate windows and the credit pre-flight."""

from __future__ import annotations

import logging
import time
from collections.abc import Callable
from dataclasses import dataclass
from typing import Literal

from app.core.security import CredentialResolution
from app.services.ledger import CreditLedger

logger = logging.getLogger(__name__)

DenialReason = Literal["auth-failed", "rate-limited", "insufficient-funds", "forbidden", "not-found", "not-retryable", "parse-error"]


class AdmissionDeniedError(Exception):
  """Raised when a request is refused before any work starts."""

  def __init__(self, reason: DenialReason, message: str) -> None:
    super().__init__(message)
    self.reason = reason
    self.message = message


@dataclass(frozen=True)
class AdmissionDecision:
  """Allow, or deny with a structured reason."""

  allowed: bool
  reason: DenialReason | None = None
  message: str | None = None


ALLOW = AdmissionDecision(allowed=True)


class FixedWindowRateLimiter:
  """Counts hits per key inside fixed windows that reset entirely on expiry."""

  def __init__(self, *, max_requests: int, window_seconds: float, clock: Callable[[], float] = time.monotonic) -> None:
    if max_requests < 1:
      raise ValueError("max_requests must be at least 1")
    if window_seconds <= 0:
      raise ValueError("window_seconds must be positive")
    self.max_requests = max_requests
    self.window_seconds = window_seconds
    self._clock = clock
    # key -> (window_start, count)
    self._windows: dict[str, tuple[float, int]] = {}

  def hit(self, key: str) -> bool:
    """Record a request and report whether it fits in the current window."""
    now = self._clock()
    window_start, count = self._windows.get(key, (now, 0))
    if now - window_start >= self.window_seconds:
      window_start, count = now, 0
    if count >= self.max_requests:
      self._windows[key] = (window_start, count)
      return False
    self._windows[key] = (window_start, count + 1)
    return True

  def sweep(self) -> int:
    """Drop keys whose window has expired."""
    now = self._clock()
    stale = [key for key, (window_start, _count) in self._windows.items() if now - window_start >= self.window_seconds]
    for key in stale:
      del self._windows[key]
    return len(stale)

  def __len__(self) -> int:
    return len(self._windows)


class AdmissionController:
  """Decides whether a submission may start.

  Checks run cheapest first: credential validity, the per-source window, the
  per-identity window, then (for identified callers only) the ledger balance.
  """

  def __init__(self, *, source_limiter: FixedWindowRateLimiter, identity_limiter: FixedWindowRateLimiter, ledger: CreditLedger) -> None:
    self._source_limiter = source_limiter
    self._identity_limiter = identity_limiter
    self._ledger = ledger

  async def admit(self, *, source_key: str, credentials: CredentialResolution, estimated_cost: int) -> AdmissionDecision:
    # Bad credentials never fall back to anonymous; that would create an ownerless job.
    if credentials.status == "invalid":
      logger.info("Admission denied reason=auth-failed source=%s", source_key)
      return AdmissionDecision(allowed=False, reason="auth-failed", message="Authentication failed. Sign in again and retry.")

    if not self._source_limiter.hit(source_key):
      logger.info("Admission denied reason=rate-limited scope=source source=%s", source_key)
      return AdmissionDecision(allowed=False, reason="rate-limited", message="Too many requests from this address. Try again later.")

    identity = credentials.identity if credentials.is_identified else None
    if identity is not None:
      identity_key = identity.email or identity.user_id
      if not self._identity_limiter.hit(identity_key):
        logger.info("Admission denied reason=rate-limited scope=identity owner_id=%s", identity.user_id)
        return AdmissionDecision(allowed=False, reason="rate-limited", message="Too many requests for this account. Try again later.")

      if estimated_cost > 0:
        balance = await self._ledger.balance(identity.user_id)
        if balance < estimated_cost:
          logger.info("Admission denied reason=insufficient-funds owner_id=%s balance=%s cost=%s", identity.user_id, balance, estimated_cost)
          return AdmissionDecision(allowed=False, reason="insufficient-funds", message=f"Insufficient credits: {estimated_cost} required, {balance} available.")

    return ALLOW

  async def ensure_admitted(self, *, source_key: str, credentials: CredentialResolution, estimated_cost: int) -> None:
    """Raise :class:`AdmissionDeniedError` unless the request is admitted."""
    decision = await self.admit(source_key=source_key, credentials=credentials, estimated_cost=estimated_cost)
    if not decision.allowed:
      raise AdmissionDeniedError(decision.reason or "forbidden", decision.message or "Request denied.")

  def sweep(self) -> int:
    """Evict expired rate windows from both limiters."""
    return self._source_limiter.sweep() + self._identity_limiter.sweep()

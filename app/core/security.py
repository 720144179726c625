from __future__ import annotations

import logging
from dataclasses import dataclass
from typing import Annotated, Any, Literal

from app.core.firebase import verify_id_token
from fastapi import Depends, HTTPException, Request, status
from fastapi.security import HTTPAuthorizationCredentials, HTTPBearer
from starlette.concurrency import run_in_threadpool

logger = logging.getLogger(__name__)

# Anonymous submissions are allowed, so a missing header must not short-circuit with 403.
security_scheme = HTTPBearer(auto_error=False)

CredentialStatus = Literal["anonymous", "authenticated", "invalid"]


@dataclass(frozen=True)
class Identity:
  """Verified caller identity derived from token claims."""

  user_id: str
  email: str | None
  is_admin: bool = False


@dataclass(frozen=True)
class CredentialResolution:
  """Outcome of resolving the caller's credentials.

  ``invalid`` means credentials were supplied but could not be verified; callers must
  reject such requests rather than fall back to anonymous handling.
  """

  status: CredentialStatus
  identity: Identity | None = None

  @property
  def is_identified(self) -> bool:
    return self.status == "authenticated" and self.identity is not None

  @property
  def owner_id(self) -> str | None:
    return self.identity.user_id if self.identity is not None else None


ANONYMOUS = CredentialResolution(status="anonymous")
INVALID = CredentialResolution(status="invalid")


def _identity_from_claims(claims: dict[str, Any]) -> Identity | None:
  user_id = claims.get("uid") or claims.get("user_id")
  if not user_id:
    return None
  email = claims.get("email")
  normalized_email = str(email).strip().lower() if email else None
  return Identity(user_id=str(user_id), email=normalized_email, is_admin=bool(claims.get("admin")))


async def resolve_credentials(token: Annotated[HTTPAuthorizationCredentials | None, Depends(security_scheme)]) -> CredentialResolution:
  """Verify an optional bearer token without raising on failure."""
  if token is None or not token.credentials:
    return ANONYMOUS

  decoded_claims = await run_in_threadpool(verify_id_token, token.credentials)
  if not decoded_claims:
    return INVALID

  identity = _identity_from_claims(decoded_claims)
  if identity is None:
    logger.warning("Verified token is missing a subject claim.")
    return INVALID

  return CredentialResolution(status="authenticated", identity=identity)


async def require_identity(credentials: CredentialResolution = Depends(resolve_credentials)) -> Identity:  # noqa: B008
  """Require a verified caller identity."""
  if not credentials.is_identified or credentials.identity is None:
    raise HTTPException(status_code=status.HTTP_401_UNAUTHORIZED, detail="Invalid authentication credentials", headers={"WWW-Authenticate": "Bearer"})
  return credentials.identity


async def require_admin(identity: Identity = Depends(require_identity)) -> Identity:  # noqa: B008
  """Require the admin custom claim for ledger adjustments."""
  if not identity.is_admin:
    raise HTTPException(status_code=status.HTTP_403_FORBIDDEN, detail="Not enough permissions")
  return identity


def source_key_for(request: Request) -> str:
  """Return the request's network source for rate gating."""
  # Honor the first forwarded hop when running behind a load balancer.
  forwarded = request.headers.get("x-forwarded-for")
  if forwarded:
    first_hop = forwarded.split(",")[0].strip()
    if first_hop:
      return first_hop
  if request.client is not None and request.client.host:
    return request.client.host
  return "unknown"

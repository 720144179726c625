"""Credit balance, purchase callback and admin adjustment endpoints."""

import logging

from fastapi import APIRouter, Depends, HTTPException, Query, status

from app.api.deps import get_pipeline_service, require_task_secret
from app.api.models import AdjustCreditsRequest, BalanceResponse, CreditsResponse, CreditTransactionResponse, GrantCreditsRequest
from app.core.security import Identity, require_admin, require_identity
from app.services.submissions import PipelineService

router = APIRouter()
internal_router = APIRouter()
admin_router = APIRouter()
logger = logging.getLogger("app.api.routes.credits")


@router.get("", response_model=CreditsResponse)
async def get_credits(  # noqa: B008
  identity: Identity = Depends(require_identity),  # noqa: B008
  service: PipelineService = Depends(get_pipeline_service),  # noqa: B008
  limit: int = Query(50, ge=1, le=200),  # noqa: B008
) -> CreditsResponse:
  """Return the caller's balance and recent credit transactions."""
  balance = await service.balance(identity.user_id)
  entries = await service.credit_history(identity.user_id, limit=limit)
  return CreditsResponse(owner_id=identity.user_id, balance=balance, transactions=[CreditTransactionResponse.from_entry(entry) for entry in entries])


@internal_router.post("/credits/grant", response_model=BalanceResponse, dependencies=[Depends(require_task_secret)])
async def grant_credits(  # noqa: B008
  payload: GrantCreditsRequest,
  service: PipelineService = Depends(get_pipeline_service),  # noqa: B008
) -> BalanceResponse:
  """Apply a purchase confirmed by the payment processor."""
  balance = await service.grant_credits(payload.owner_id, payload.amount, payload.reason)
  logger.info("Credits granted owner_id=%s amount=%s", payload.owner_id, payload.amount)
  return BalanceResponse(owner_id=payload.owner_id, balance=balance)


@admin_router.post("/credits/adjust", response_model=BalanceResponse)
async def adjust_credits(  # noqa: B008
  payload: AdjustCreditsRequest,
  admin: Identity = Depends(require_admin),  # noqa: B008
  service: PipelineService = Depends(get_pipeline_service),  # noqa: B008
) -> BalanceResponse:
  """Correct a balance manually; the change is recorded as an admin adjustment."""
  if payload.amount == 0:
    raise HTTPException(status_code=status.HTTP_400_BAD_REQUEST, detail="Adjustment amount must be non-zero.")

  balance = await service.adjust_credits(payload.owner_id, payload.amount, f"{payload.reason} (by {admin.user_id})")
  logger.info("Credits adjusted owner_id=%s amount=%s admin=%s", payload.owner_id, payload.amount, admin.user_id)
  return BalanceResponse(owner_id=payload.owner_id, balance=balance)

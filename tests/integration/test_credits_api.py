from __future__ import annotations

import pytest
from httpx import ASGITransport, AsyncClient

from app.api.deps import get_service_graph
from app.core.security import CredentialResolution, Identity, resolve_credentials
from app.main import app
from tests.fakes import PipelineHarness


@pytest.fixture
def harness() -> PipelineHarness:
  return PipelineHarness(balance=30)


@pytest.fixture
async def client(harness: PipelineHarness):
  graph = harness.service_graph()
  app.dependency_overrides[get_service_graph] = lambda: graph
  async with AsyncClient(transport=ASGITransport(app=app), base_url="http://test") as client:
    yield client
  app.dependency_overrides.clear()


def _as(user_id: str, *, is_admin: bool = False) -> None:
  credentials = CredentialResolution(status="authenticated", identity=Identity(user_id=user_id, email=f"{user_id}@example.com", is_admin=is_admin))
  app.dependency_overrides[resolve_credentials] = lambda: credentials


@pytest.mark.anyio
async def test_balance_requires_identity(client: AsyncClient) -> None:
  response = await client.get("/v1/credits")

  assert response.status_code == 401


@pytest.mark.anyio
async def test_balance_for_signed_in_user(client: AsyncClient) -> None:
  _as("user-1")

  response = await client.get("/v1/credits")

  assert response.status_code == 200
  assert response.json() == {"owner_id": "user-1", "balance": 30, "transactions": []}


@pytest.mark.anyio
async def test_grant_requires_the_task_secret(client: AsyncClient, harness: PipelineHarness) -> None:
  payload = {"owner_id": "user-2", "amount": 50, "reason": "purchase pi_123"}

  denied = await client.post("/internal/credits/grant", json=payload, headers={"X-Task-Secret": "wrong"})
  granted = await client.post("/internal/credits/grant", json=payload, headers={"X-Task-Secret": "test-task-secret"})

  assert denied.status_code == 401
  assert granted.status_code == 200
  assert granted.json()["balance"] == 50
  assert [entry.category for entry in harness.ledger_repo.entries] == ["credit-grant"]


@pytest.mark.anyio
async def test_grant_rejects_non_positive_amounts(client: AsyncClient) -> None:
  response = await client.post("/internal/credits/grant", json={"owner_id": "user-2", "amount": -5, "reason": "refund"}, headers={"X-Task-Secret": "test-task-secret"})

  assert response.status_code == 422


@pytest.mark.anyio
async def test_adjustment_requires_admin_claim(client: AsyncClient) -> None:
  _as("user-1")

  response = await client.post("/admin/credits/adjust", json={"owner_id": "user-1", "amount": 100, "reason": "goodwill"})

  assert response.status_code == 403


@pytest.mark.anyio
async def test_admin_can_reduce_a_balance_but_not_below_zero(client: AsyncClient, harness: PipelineHarness) -> None:
  _as("admin-1", is_admin=True)

  reduced = await client.post("/admin/credits/adjust", json={"owner_id": "user-1", "amount": -20, "reason": "chargeback"})
  overdrawn = await client.post("/admin/credits/adjust", json={"owner_id": "user-1", "amount": -20, "reason": "chargeback"})

  assert reduced.status_code == 200
  assert reduced.json()["balance"] == 10
  assert overdrawn.status_code == 402
  assert harness.ledger_repo.entries[-1].category == "admin-adjustment"


@pytest.mark.anyio
async def test_credits_include_recent_transactions(client: AsyncClient, harness: PipelineHarness) -> None:
  await harness.ledger.credit("user-1", 20, "purchase pi_456")
  await harness.ledger.debit("user-1", 10, "job-1")
  await harness.ledger.credit("user-2", 5, "someone else")
  _as("user-1")

  response = await client.get("/v1/credits")
  limited = await client.get("/v1/credits", params={"limit": 1})

  assert response.status_code == 200
  body = response.json()
  assert body["balance"] == 40
  assert [(item["delta"], item["category"], item["job_id"]) for item in body["transactions"]] == [(-10, "debit-for-job", "job-1"), (20, "credit-grant", None)]
  assert body["transactions"][0]["balance_after"] == 40
  assert len(limited.json()["transactions"]) == 1

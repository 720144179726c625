from __future__ import annotations

import json
from dataclasses import replace

import pytest
from httpx import ASGITransport, AsyncClient

from app.api.deps import get_service_graph
from app.config import get_settings
from app.core.security import INVALID, CredentialResolution, Identity, resolve_credentials
from app.jobs.models import JobStage, ProgressSnapshot
from app.main import app
from app.services.document_parser import ParsedDocument
from tests.fakes import PipelineHarness, make_job

PDF_BYTES = b"%PDF-1.7 fake"
PARSED = ParsedDocument(title="Widget Sorter", full_text="A machine that sorts widgets.")


@pytest.fixture
def harness(monkeypatch: pytest.MonkeyPatch) -> PipelineHarness:
  harness = PipelineHarness(balance=30)
  monkeypatch.setattr("app.services.submissions.parse_document", lambda _data: PARSED)
  return harness


@pytest.fixture
async def client(harness: PipelineHarness):
  graph = harness.service_graph()
  app.dependency_overrides[get_service_graph] = lambda: graph
  async with AsyncClient(transport=ASGITransport(app=app), base_url="http://test") as client:
    yield client
  app.dependency_overrides.clear()


def _as(credentials: CredentialResolution) -> None:
  app.dependency_overrides[resolve_credentials] = lambda: credentials


def _member(user_id: str = "user-1", *, is_admin: bool = False) -> CredentialResolution:
  return CredentialResolution(status="authenticated", identity=Identity(user_id=user_id, email=f"{user_id}@example.com", is_admin=is_admin))


@pytest.mark.anyio
async def test_anonymous_submission_is_accepted_and_processed(client: AsyncClient, harness: PipelineHarness) -> None:
  response = await client.post("/v1/jobs", files={"document": ("widget.pdf", PDF_BYTES, "application/pdf")})

  assert response.status_code == 202
  job_id = response.json()["job_id"]
  assert response.headers["x-request-id"]

  await harness.runner.wait_idle(timeout=5)
  progress = await client.get(f"/v1/jobs/{job_id}/progress")
  assert progress.status_code == 200
  assert progress.json()["stage"] == "completed"
  assert progress.json()["complete"] is True


@pytest.mark.anyio
async def test_invalid_token_is_rejected_without_creating_a_job(client: AsyncClient, harness: PipelineHarness) -> None:
  _as(INVALID)

  response = await client.post("/v1/jobs", files={"document": ("widget.pdf", PDF_BYTES, "application/pdf")})

  assert response.status_code == 401
  assert response.json()["detail"]["error"] == "auth-failed"
  assert harness.jobs_repo.jobs == {}


@pytest.mark.anyio
async def test_insufficient_credits_return_402(client: AsyncClient, harness: PipelineHarness) -> None:
  harness.ledger_repo.balances["user-1"] = 3
  _as(_member())

  response = await client.post("/v1/jobs", files={"document": ("widget.pdf", PDF_BYTES, "application/pdf")})

  assert response.status_code == 402
  assert response.json()["detail"]["error"] == "insufficient-funds"


@pytest.mark.anyio
async def test_sixth_submission_from_one_source_is_rate_limited(client: AsyncClient, harness: PipelineHarness) -> None:
  statuses = []
  for _ in range(6):
    response = await client.post("/v1/jobs", files={"document": ("widget.pdf", PDF_BYTES, "application/pdf")})
    statuses.append(response.status_code)
  await harness.runner.wait_idle(timeout=5)

  assert statuses == [202, 202, 202, 202, 202, 429]


@pytest.mark.anyio
async def test_oversized_upload_is_rejected(client: AsyncClient, harness: PipelineHarness) -> None:
  app.dependency_overrides[get_settings] = lambda: replace(get_settings(), max_upload_bytes=4)

  response = await client.post("/v1/jobs", files={"document": ("widget.pdf", PDF_BYTES, "application/pdf")})

  assert response.status_code == 413
  assert harness.jobs_repo.jobs == {}


@pytest.mark.anyio
async def test_unknown_job_progress_is_404(client: AsyncClient) -> None:
  response = await client.get("/v1/jobs/missing/progress")

  assert response.status_code == 404
  assert response.json()["detail"]["error"] == "not-found"


@pytest.mark.anyio
async def test_progress_stream_ends_with_completion(client: AsyncClient, harness: PipelineHarness) -> None:
  await harness.publisher.publish("job-1", ProgressSnapshot(stage="completed", current=1, total=1, message="Processing complete", complete=True))

  response = await client.get("/v1/jobs/job-1/progress/stream")

  assert response.status_code == 200
  assert response.headers["content-type"].startswith("text/event-stream")
  events = [line.removeprefix("data: ") for line in response.text.splitlines() if line.startswith("data: ")]
  assert [json.loads(event)["stage"] for event in events] == ["completed"]


@pytest.mark.anyio
async def test_retry_endpoint_resumes_failed_job(client: AsyncClient, harness: PipelineHarness) -> None:
  await harness.jobs_repo.create_job(make_job(stage=JobStage.FAILED))
  _as(_member())

  response = await client.post("/v1/jobs/job-1/retry")
  await harness.runner.wait_idle(timeout=5)

  assert response.status_code == 202
  assert response.json() == {"job_id": "job-1", "resume_stage": "created"}
  assert (await harness.jobs_repo.get_job("job-1")).stage == JobStage.COMPLETED


@pytest.mark.anyio
async def test_retry_of_completed_job_conflicts(client: AsyncClient, harness: PipelineHarness) -> None:
  await harness.jobs_repo.create_job(make_job(stage=JobStage.COMPLETED))
  _as(_member())

  response = await client.post("/v1/jobs/job-1/retry")

  assert response.status_code == 409
  assert response.json()["detail"]["error"] == "not-retryable"


@pytest.mark.anyio
async def test_retry_by_another_user_is_forbidden(client: AsyncClient, harness: PipelineHarness) -> None:
  await harness.jobs_repo.create_job(make_job(stage=JobStage.FAILED))
  _as(_member("intruder"))

  response = await client.post("/v1/jobs/job-1/retry")

  assert response.status_code == 403


@pytest.mark.anyio
async def test_job_detail_returns_artifacts_and_image_urls(client: AsyncClient, harness: PipelineHarness) -> None:
  await harness.jobs_repo.create_job(make_job())
  await harness.coordinator.run("job-1")
  _as(_member())

  response = await client.get("/v1/jobs/job-1")

  assert response.status_code == 200
  body = response.json()
  assert body["stage"] == "completed"
  assert body["title"] == "Widget Sorter"
  assert body["hero_image_url"].startswith("https://assets.test/jobs/job-1/hero/")
  assert {artifact["artifact_type"] for artifact in body["artifacts"]} == {"summary", "business_narrative", "golden_circle"}
  for artifact in body["artifacts"]:
    assert [image["section_number"] for image in artifact["section_images"]] == [1, 2]
    assert all(image["image_url"].startswith("https://assets.test/") for image in artifact["section_images"])
  assert "full_text" not in body


@pytest.mark.anyio
async def test_job_detail_is_hidden_from_other_users(client: AsyncClient, harness: PipelineHarness) -> None:
  await harness.jobs_repo.create_job(make_job(stage=JobStage.FAILED))

  _as(_member("intruder"))
  forbidden = await client.get("/v1/jobs/job-1")
  _as(INVALID)
  invalid = await client.get("/v1/jobs/job-1")
  missing = await client.get("/v1/jobs/missing")

  assert forbidden.status_code == 403
  assert invalid.status_code == 401
  assert missing.status_code == 404


@pytest.mark.anyio
async def test_anonymous_job_detail_is_readable_by_id(client: AsyncClient, harness: PipelineHarness) -> None:
  await harness.jobs_repo.create_job(make_job(owner_id=None, stage=JobStage.FAILED, last_error="The summary could not be generated.", error_reason="provider-error"))

  response = await client.get("/v1/jobs/job-1")

  assert response.status_code == 200
  assert response.json()["stage"] == "failed"
  assert response.json()["error_reason"] == "provider-error"
  assert response.json()["artifacts"] == []

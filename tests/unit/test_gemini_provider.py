from __future__ import annotations

from types import SimpleNamespace
from unittest.mock import AsyncMock, MagicMock

import httpx
import pytest

from app.ai.providers.base import ProviderError
from app.ai.providers.gemini import GeminiTextGenerator, ImagenImageGenerator
from app.jobs.models import JobStage
from tests.fakes import PipelineHarness, make_job


@pytest.fixture
def genai_client(monkeypatch: pytest.MonkeyPatch) -> MagicMock:
  client = MagicMock()
  client.aio.models.generate_content = AsyncMock()
  client.aio.models.generate_images = AsyncMock()
  monkeypatch.setattr("app.ai.providers.gemini.genai.Client", lambda **_kwargs: client)
  return client


@pytest.mark.anyio
async def test_text_transport_errors_become_provider_errors(genai_client: MagicMock) -> None:
  genai_client.aio.models.generate_content.side_effect = httpx.ConnectError("connection refused")
  generator = GeminiTextGenerator(api_key="test-key", model="gemini-test")

  with pytest.raises(ProviderError):
    await generator.generate_text("Explain this document")


@pytest.mark.anyio
async def test_image_timeouts_become_provider_errors(genai_client: MagicMock) -> None:
  genai_client.aio.models.generate_images.side_effect = httpx.ReadTimeout("timed out")
  generator = ImagenImageGenerator(api_key="test-key", model="imagen-test")

  with pytest.raises(ProviderError):
    await generator.generate_image("A cover image")


@pytest.mark.anyio
async def test_text_result_carries_token_usage(genai_client: MagicMock) -> None:
  genai_client.aio.models.generate_content.return_value = SimpleNamespace(text="## Why\nPurpose.", usage_metadata=SimpleNamespace(total_token_count=17))
  generator = GeminiTextGenerator(api_key="test-key", model="gemini-test")

  result = await generator.generate_text("Explain this document")

  assert result.content == "## Why\nPurpose."
  assert result.tokens_used == 17


@pytest.mark.anyio
async def test_network_failure_during_summary_fails_job_as_provider_error(genai_client: MagicMock) -> None:
  genai_client.aio.models.generate_content.side_effect = httpx.ConnectError("connection refused")
  harness = PipelineHarness(text=GeminiTextGenerator(api_key="test-key", model="gemini-test"))
  await harness.jobs_repo.create_job(make_job())

  final = await harness.coordinator.run("job-1")

  assert final.stage == JobStage.FAILED
  assert final.error_reason == "provider-error"
  assert "connection refused" not in (final.last_error or "")
  # Nothing was produced, so nothing was charged.
  assert await harness.ledger.balance("user-1") == 30

"""Gemini and Imagen generation using the google-genai SDK."""

from __future__ import annotations

import asyncio
import logging
import random
from collections.abc import Awaitable, Callable
from typing import Any, TypeVar

import httpx
from google import genai
from google.genai import errors, types

from app.ai.providers.base import ImageGenerator, ProviderError, TextGenerator, TextResult

logger = logging.getLogger(__name__)

T = TypeVar("T")

_MAX_ATTEMPTS = 3
_BASE_DELAY_SECONDS = 1.0


async def _with_backoff(func: Callable[..., Awaitable[T]], *args: Any, **kwargs: Any) -> T:
  """Retry rate-limited calls with jittered exponential backoff."""
  for attempt in range(_MAX_ATTEMPTS):
    try:
      return await func(*args, **kwargs)
    except errors.APIError as exc:
      if exc.code != 429 or attempt == _MAX_ATTEMPTS - 1:
        raise
      delay = _BASE_DELAY_SECONDS * (2**attempt) + random.uniform(0, 1)
      logger.warning("Gemini rate limited; retrying in %.1fs (attempt %s)", delay, attempt + 1)
      await asyncio.sleep(delay)
  raise ProviderError("Gemini retries exhausted.")


class GeminiTextGenerator(TextGenerator):
  """Text generation backed by a Gemini model."""

  def __init__(self, *, api_key: str, model: str) -> None:
    self.model = model
    self._client = genai.Client(api_key=api_key)

  async def generate_text(self, prompt: str) -> TextResult:
    try:
      # Use the async client to avoid blocking the asyncio event loop.
      response = await _with_backoff(self._client.aio.models.generate_content, model=self.model, contents=prompt)
    except errors.APIError as exc:
      raise ProviderError(f"Text generation failed with status {exc.code}.") from exc
    except httpx.HTTPError as exc:
      raise ProviderError(f"Text generation request failed: {type(exc).__name__}.") from exc

    text = response.text
    if not text or not text.strip():
      raise ProviderError("Text generation returned an empty response.")

    tokens_used = None
    if response.usage_metadata:
      tokens_used = response.usage_metadata.total_token_count
    logger.info("Gemini text generated model=%s chars=%s tokens=%s", self.model, len(text), tokens_used)
    return TextResult(content=text, tokens_used=tokens_used)


class ImagenImageGenerator(ImageGenerator):
  """Image generation backed by an Imagen model."""

  def __init__(self, *, api_key: str, model: str, aspect_ratio: str = "16:9") -> None:
    self.model = model
    self._aspect_ratio = aspect_ratio
    self._client = genai.Client(api_key=api_key)

  async def generate_image(self, prompt: str) -> bytes:
    config = types.GenerateImagesConfig(number_of_images=1, aspect_ratio=self._aspect_ratio)
    try:
      response = await _with_backoff(self._client.aio.models.generate_images, model=self.model, prompt=prompt, config=config)
    except errors.APIError as exc:
      raise ProviderError(f"Image generation failed with status {exc.code}.") from exc
    except httpx.HTTPError as exc:
      raise ProviderError(f"Image generation request failed: {type(exc).__name__}.") from exc

    for generated in response.generated_images or []:
      if generated.image is not None and generated.image.image_bytes:
        return generated.image.image_bytes

    raise ProviderError("Image generation returned no image data.")

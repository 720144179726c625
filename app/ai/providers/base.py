"""Provider contracts for text and image generation."""

from __future__ import annotations

from dataclasses import dataclass
from typing import Protocol


class ProviderError(RuntimeError):
  """Raised when a generation provider fails or returns unusable output."""


@dataclass(frozen=True)
class TextResult:
  """Generated text with optional usage accounting."""

  content: str
  tokens_used: int | None = None


class TextGenerator(Protocol):
  """Produces markdown text from a prompt."""

  async def generate_text(self, prompt: str) -> TextResult:
    """Return generated text or raise :class:`ProviderError`."""


class ImageGenerator(Protocol):
  """Produces raw image bytes from a prompt."""

  async def generate_image(self, prompt: str) -> bytes:
    """Return encoded image bytes or raise :class:`ProviderError`."""

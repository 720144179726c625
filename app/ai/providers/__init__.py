"""Provider implementations."""

from app.ai.providers.base import ImageGenerator, ProviderError, TextGenerator, TextResult
from app.ai.providers.gemini import GeminiTextGenerator, ImagenImageGenerator

__all__ = ["GeminiTextGenerator", "ImageGenerator", "ImagenImageGenerator", "ProviderError", "TextGenerator", "TextResult"]

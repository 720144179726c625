"""Prompt builders for each generation stage."""

from __future__ import annotations

from app.jobs.models import ArtifactType

# Providers see at most this much of the source document.
MAX_SOURCE_CHARS = 60_000
MAX_SECTION_CHARS = 1_500

_SECTION_RULE = "Structure the answer as markdown with 4 to 6 sections, each introduced by a level-2 header (`## Title`). Do not use level-1 headers."

_ARTIFACT_INSTRUCTIONS: dict[ArtifactType, str] = {
  "summary": "Explain this document in plain language a curious 15-year-old could follow. Cover what problem it addresses, how the solution works and why it matters.",
  "business_narrative": "Write a business narrative for this invention: the market problem, who would buy it, how it creates value and the commercial risks.",
  "golden_circle": "Describe this invention using the Golden Circle framework: why it exists, how it works differently and what it concretely is.",
}

_IMAGE_STYLE = "Style: clean editorial illustration, soft lighting, no text, no logos, no watermarks."


def summary_prompt(*, title: str, full_text: str) -> str:
  body = full_text[:MAX_SOURCE_CHARS]
  return f"{_ARTIFACT_INSTRUCTIONS['summary']}\n{_SECTION_RULE}\n\nTitle: {title}\n\nDocument:\n{body}"


def derived_artifact_prompt(artifact_type: ArtifactType, *, title: str, summary: str) -> str:
  """Derived artifacts build on the plain-language summary, not the raw document."""
  return f"{_ARTIFACT_INSTRUCTIONS[artifact_type]}\n{_SECTION_RULE}\n\nTitle: {title}\n\nPlain-language summary:\n{summary}"


def hero_image_prompt(*, title: str, summary: str) -> str:
  return f"A single cover image capturing the core idea of '{title}'. Context: {summary[:MAX_SECTION_CHARS]}\n{_IMAGE_STYLE}"


def section_image_prompt(*, title: str, section_title: str, section_content: str) -> str:
  return f"Illustrate the section '{section_title}' of '{title}'. Key points: {section_content[:MAX_SECTION_CHARS]}\n{_IMAGE_STYLE}"

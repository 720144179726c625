from __future__ import annotations

from app.services.sections import parse_markdown_sections


def test_splits_level_two_headers_and_ignores_preamble() -> None:
  markdown = "Preamble that is skipped.\n\n## First\nAlpha line.\n### Detail\nNested.\n\n## Second\nBeta line.\n"

  sections = parse_markdown_sections(markdown)

  assert [(section.number, section.title) for section in sections] == [(1, "First"), (2, "Second")]
  assert sections[0].content == "Alpha line.\n### Detail\nNested."
  assert sections[1].content == "Beta line."


def test_no_headers_yields_no_sections() -> None:
  assert parse_markdown_sections("Just a paragraph.\n# Top level only\n") == []

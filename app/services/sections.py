"""Split generated markdown into illustratable sections."""

from __future__ import annotations

import re
from dataclasses import dataclass

_SECTION_HEADER = re.compile(r"^##\s+(.+)$")


@dataclass(frozen=True)
class ParsedSection:
  """A level-2 markdown section; numbers start at 1."""

  number: int
  title: str
  content: str


def parse_markdown_sections(markdown: str) -> list[ParsedSection]:
  """Return each ``## `` section with the body text that follows it.

  Text before the first header is ignored; deeper headers stay inside the body.
  """
  sections: list[ParsedSection] = []
  title: str | None = None
  body: list[str] = []

  for line in markdown.splitlines():
    match = _SECTION_HEADER.match(line)
    if match:
      if title is not None:
        sections.append(ParsedSection(number=len(sections) + 1, title=title, content="\n".join(body).strip()))
      title = match.group(1).strip()
      body = []
    elif title is not None:
      body.append(line)

  if title is not None:
    sections.append(ParsedSection(number=len(sections) + 1, title=title, content="\n".join(body).strip()))

  return sections

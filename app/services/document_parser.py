"""PDF text extraction and front-page metadata heuristics."""

from __future__ import annotations

import logging
import re
from dataclasses import asdict, dataclass
from typing import Any

import fitz  # PyMuPDF

logger = logging.getLogger(__name__)

_DATE = r"(\w+\.?\s+\d{1,2},?\s+\d{4})"

_TITLE_PATTERN = re.compile(r"(?:Title:|Patent Title:)\s*(.+?)(?:\n|Inventors?:|Abstract:)", re.IGNORECASE)
_INVENTOR_PATTERNS = (
  re.compile(r"\(\s*72\s*\)\s*Inventors?:\s*([^\n]+?)(?:\n|$)", re.IGNORECASE),
  re.compile(r"Inventors?:\s*([^\n]+?)(?:\n|$)", re.IGNORECASE),
)
_ASSIGNEE_PATTERNS = (
  re.compile(r"\(\s*73\s*\)\s*Assignee:\s*([^\n]+?)(?:\n|$)", re.IGNORECASE),
  re.compile(r"Assignee:\s*([^\n]+?)(?:\n|$)", re.IGNORECASE),
  re.compile(r"Assignee[:\s]+([^(\n]+?)(?:\([A-Z]{2}\)|$)", re.IGNORECASE | re.MULTILINE),
)
_PATENT_NUMBER_PATTERNS = (
  re.compile(r"(?:Patent\s+No\.?|US)\s*[:\s]*([A-Z]{2}\s*\d{1,2}[,\s]*\d{3}[,\s]*\d{3}\s*[A-Z]\d?)", re.IGNORECASE),
  re.compile(r"(?:\(\s*10\s*\)|Patent\s+Number):\s*([A-Z]{2}[\s\d,]+[A-Z]\d?)", re.IGNORECASE),
  re.compile(r"US(\d{7,10})[A-Z]\d?", re.IGNORECASE),
)
_APPLICATION_NUMBER_PATTERNS = (
  re.compile(r"(?:Appl\.?\s+No\.?|Application\s+No\.?)[\s:]*(\d{2}/\d{3},?\d{3})", re.IGNORECASE),
  re.compile(r"Serial\s+No\.?:\s*(\d+)", re.IGNORECASE),
)
_CLASSIFICATION_PATTERNS = (
  re.compile(r"(?:CPC|IPC|Int\.?\s*Cl\.?)[\s:]*([A-H]\d{2}[A-Z]\s*\d+/\d+(?:[;\s]+[A-H]\d{2}[A-Z]\s*\d+/\d+)*)", re.IGNORECASE),
  re.compile(r"(?:CPC|Classification):\s*([^\n]{10,100})", re.IGNORECASE),
)
_FILING_DATE_PATTERN = re.compile(r"Filed:\s*" + _DATE, re.IGNORECASE)
_ISSUE_DATE_PATTERN = re.compile(r"(?:Date of Patent|Patent No\.|Pub\. No\.).*?" + _DATE, re.IGNORECASE)
_COUNTRY_SUFFIX = re.compile(r"\s*,?\s*\([A-Z]{2}\)\s*$")
_STATE_SUFFIX = re.compile(r"\s*,\s*[A-Z]{2}\s*$")


class DocumentParseError(ValueError):
  """Raised when an upload cannot be read as a text-bearing PDF."""


@dataclass(frozen=True)
class ParsedDocument:
  """Extracted text plus best-effort bibliographic metadata."""

  title: str
  full_text: str
  inventors: str | None = None
  assignee: str | None = None
  filing_date: str | None = None
  issue_date: str | None = None
  patent_number: str | None = None
  application_number: str | None = None
  classification: str | None = None

  def metadata(self) -> dict[str, Any]:
    """Return metadata fields without the title and body text."""
    payload = asdict(self)
    payload.pop("title")
    payload.pop("full_text")
    return payload


def _first_match(patterns: tuple[re.Pattern[str], ...], text: str) -> str | None:
  for pattern in patterns:
    match = pattern.search(text)
    if match and match.group(1):
      return match.group(1).strip()
  return None


def _extract_title(text: str) -> str:
  match = _TITLE_PATTERN.search(text)
  if match:
    return match.group(1).strip()
  # Front pages usually put the title on the second substantial line.
  lines = [line.strip() for line in text.splitlines() if len(line.strip()) > 10]
  if len(lines) > 1:
    return lines[1]
  if lines:
    return lines[0]
  return "Untitled Document"


def _extract_assignee(text: str) -> str | None:
  for pattern in _ASSIGNEE_PATTERNS:
    match = pattern.search(text)
    if not match or not match.group(1):
      continue
    candidate = _COUNTRY_SUFFIX.sub("", match.group(1).strip())
    candidate = _STATE_SUFFIX.sub("", candidate)
    candidate = re.sub(r"\s*,\s*c/o.+$", "", candidate, flags=re.IGNORECASE)
    candidate = candidate.replace("*", "").strip()
    # Reject fragments that are clearly not an organisation name.
    if 2 <= len(candidate) <= 100 and not candidate.isdigit():
      return candidate
  return None


def extract_metadata(text: str) -> ParsedDocument:
  """Apply the metadata heuristics to already-extracted text."""
  inventors = _first_match(_INVENTOR_PATTERNS, text)
  if inventors:
    inventors = _COUNTRY_SUFFIX.sub("", inventors).strip()
  patent_number = _first_match(_PATENT_NUMBER_PATTERNS, text)
  if patent_number:
    patent_number = re.sub(r"\s+", " ", patent_number)
  classification = _first_match(_CLASSIFICATION_PATTERNS, text)
  filing_date = _FILING_DATE_PATTERN.search(text)
  issue_date = _ISSUE_DATE_PATTERN.search(text)
  return ParsedDocument(
    title=_extract_title(text),
    full_text=text,
    inventors=inventors,
    assignee=_extract_assignee(text),
    filing_date=filing_date.group(1).strip() if filing_date else None,
    issue_date=issue_date.group(1).strip() if issue_date else None,
    patent_number=patent_number,
    application_number=_first_match(_APPLICATION_NUMBER_PATTERNS, text),
    classification=classification[:200] if classification else None,
  )


def parse_document(data: bytes) -> ParsedDocument:
  """Extract text from PDF bytes and derive metadata.

  Blocking; call through a threadpool from async code.
  """
  if not data:
    raise DocumentParseError("Uploaded document is empty.")

  try:
    with fitz.open(stream=data, filetype="pdf") as doc:
      text = "\n".join(page.get_text() for page in doc)
  except (RuntimeError, ValueError) as exc:
    logger.info("PDF open failed error_type=%s", type(exc).__name__)
    raise DocumentParseError("Uploaded file is not a readable PDF.") from exc

  if not text.strip():
    raise DocumentParseError("No extractable text found in the document.")

  parsed = extract_metadata(text)
  logger.info("Parsed document chars=%s has_title=%s has_number=%s", len(text), bool(parsed.title), bool(parsed.patent_number))
  return parsed

from __future__ import annotations

import fitz
import pytest

from app.services.document_parser import DocumentParseError, extract_metadata, parse_document

FRONT_PAGE = """Patent No.: US 10,123,456 B2
United States Patent
Title: Widget sorting apparatus
Inventors: Jane Doe, Springfield (US)
(73) Assignee: Acme Corp., Springfield, IL (US)
Appl. No.: 12/345,678
Filed: Jan. 5, 2020
Date of Patent: Mar. 3, 2021
Int. Cl.: G06F 16/00
"""


def _pdf_bytes(text: str | None) -> bytes:
  doc = fitz.open()
  page = doc.new_page()
  if text:
    page.insert_text((72, 72), text)
  data = doc.tobytes()
  doc.close()
  return data


def test_extract_metadata_reads_front_page_fields() -> None:
  parsed = extract_metadata(FRONT_PAGE)

  assert parsed.title == "Widget sorting apparatus"
  assert parsed.inventors == "Jane Doe, Springfield"
  assert parsed.assignee == "Acme Corp., Springfield"
  assert parsed.patent_number == "US 10,123,456 B2"
  assert parsed.application_number == "12/345,678"
  assert parsed.filing_date == "Jan. 5, 2020"
  assert parsed.issue_date == "Mar. 3, 2021"
  assert parsed.classification == "G06F 16/00"
  assert "title" not in parsed.metadata()
  assert parsed.metadata()["assignee"] == "Acme Corp., Springfield"


def test_title_falls_back_to_second_substantial_line() -> None:
  parsed = extract_metadata("ACME RESEARCH LABS\nSelf-balancing conveyor belt\nshort\n")

  assert parsed.title == "Self-balancing conveyor belt"
  assert parsed.inventors is None
  assert parsed.patent_number is None


def test_title_defaults_when_nothing_usable() -> None:
  assert extract_metadata("tiny\n").title == "Untitled Document"


def test_parse_document_extracts_pdf_text() -> None:
  parsed = parse_document(_pdf_bytes("Title: Widget sorting apparatus\nInventors: Jane Doe"))

  assert parsed.title == "Widget sorting apparatus"
  assert "Jane Doe" in parsed.full_text


@pytest.mark.parametrize("data", [b"", _pdf_bytes(None)])
def test_parse_document_rejects_empty_or_textless_uploads(data: bytes) -> None:
  with pytest.raises(DocumentParseError):
    parse_document(data)

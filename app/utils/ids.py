"""Identifier utilities."""

from __future__ import annotations

import uuid
from datetime import UTC, datetime


def generate_job_id() -> str:
  """Return a new job identifier."""
  return str(uuid.uuid4())


def generate_record_id() -> str:
  """Return an identifier for artifact and image rows."""
  return str(uuid.uuid4())


def now_iso() -> str:
  """Return the current UTC time in the string form stored on job rows."""
  return datetime.now(UTC).strftime("%Y-%m-%dT%H:%M:%SZ")

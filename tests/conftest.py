"""Shared pytest configuration."""

from __future__ import annotations

import os

import pytest

# Ensure required settings are available before any test imports the app.
os.environ.setdefault("DOCSYNTH_ALLOWED_ORIGINS", "http://localhost")
os.environ.setdefault("DOCSYNTH_TASK_SECRET", "test-task-secret")
os.environ.setdefault("DOCSYNTH_LOG_DIR", "/tmp/docsynth-test-logs")


@pytest.fixture
def anyio_backend() -> str:
  return "asyncio"

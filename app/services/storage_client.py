"""Object storage helper for uploaded documents and generated images."""

from __future__ import annotations

import os
from typing import Protocol
from urllib.parse import urlparse, urlunparse

from app.config import Settings
from google.auth.credentials import AnonymousCredentials
from google.cloud import storage
from starlette.concurrency import run_in_threadpool


class ObjectStore(Protocol):
  """Minimal object storage contract used by the pipeline."""

  async def upload_bytes(self, data: bytes, object_name: str, *, content_type: str, cache_control: str | None = None) -> str:
    """Store bytes and return a URL clients can fetch."""

  async def delete(self, object_name: str) -> None:
    """Remove an object; used to undo uploads whose database row was not written."""


class StorageClient(ObjectStore):
  """Thin wrapper over GCS and emulator access."""

  def __init__(self, settings: Settings) -> None:
    self._bucket_name = settings.storage_bucket
    self._storage_host = settings.gcs_storage_host
    self._public_base_url = settings.public_asset_base_url
    # Ensure emulator endpoint is visible to the SDK in local development.
    if self._storage_host:
      emulator_endpoint = _normalize_emulator_endpoint(self._storage_host)
      os.environ["GCS_STORAGE_EMULATOR_HOST"] = emulator_endpoint
      self._client = storage.Client(project=settings.gcp_project_id or "local-dev", credentials=AnonymousCredentials(), client_options={"api_endpoint": emulator_endpoint})
    else:
      self._client = storage.Client(project=settings.gcp_project_id)

  @property
  def bucket_name(self) -> str:
    return self._bucket_name

  async def ensure_bucket(self) -> None:
    """Create the default bucket when missing in local/dev flows."""
    # Keep production startup side-effect free; only auto-create in emulator mode.
    if not self._storage_host:
      return
    bucket = self._client.bucket(self._bucket_name)

    def _create_if_missing() -> None:
      if not bucket.exists(client=self._client):
        self._client.create_bucket(bucket)

    await run_in_threadpool(_create_if_missing)

  async def upload_bytes(self, data: bytes, object_name: str, *, content_type: str, cache_control: str | None = None) -> str:
    bucket = self._client.bucket(self._bucket_name)
    blob = bucket.blob(object_name)
    if cache_control:
      blob.cache_control = cache_control
    blob.content_type = content_type
    await run_in_threadpool(blob.upload_from_string, data, content_type)
    return self.public_url(object_name)

  async def delete(self, object_name: str) -> None:
    bucket = self._client.bucket(self._bucket_name)
    blob = bucket.blob(object_name)
    await run_in_threadpool(blob.delete)

  def public_url(self, object_name: str) -> str:
    if self._public_base_url:
      return f"{self._public_base_url.rstrip('/')}/{object_name}"
    if self._storage_host:
      return f"{_normalize_emulator_endpoint(self._storage_host)}/{self._bucket_name}/{object_name}"
    return f"https://storage.googleapis.com/{self._bucket_name}/{object_name}"


def build_storage_client(settings: Settings) -> StorageClient:
  """Create a storage client instance with environment-aware credentials."""
  return StorageClient(settings)


def _normalize_emulator_endpoint(raw_endpoint: str) -> str:
  """Normalize emulator endpoint so the SDK receives scheme+host+port only."""
  parsed = urlparse(raw_endpoint)
  if not parsed.scheme or not parsed.netloc:
    return raw_endpoint.rstrip("/")
  return urlunparse((parsed.scheme, parsed.netloc, "", "", "", "")).rstrip("/")

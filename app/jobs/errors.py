"""Errors raised by job lookup and retry."""

from __future__ import annotations


class JobNotFoundError(LookupError):
  """Raised when a job id does not exist."""

  def __init__(self, job_id: str) -> None:
    super().__init__(f"Job {job_id} not found.")
    self.job_id = job_id


class JobNotRetryableError(RuntimeError):
  """Raised when a retry is requested for a finished or running job."""

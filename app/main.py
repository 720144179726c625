from __future__ import annotations

from fastapi import FastAPI, HTTPException
from fastapi.exceptions import RequestValidationError
from fastapi.middleware.cors import CORSMiddleware

from app.api.routes import credits, jobs, notifications
from app.config import get_settings
from app.core.exceptions import (
  admission_denied_exception_handler,
  global_exception_handler,
  http_exception_handler,
  insufficient_funds_exception_handler,
  job_not_found_exception_handler,
  job_not_retryable_exception_handler,
  request_validation_exception_handler,
)
from app.core.lifespan import lifespan
from app.core.middleware import RequestLoggingMiddleware, SecurityHeadersMiddleware
from app.jobs.errors import JobNotFoundError, JobNotRetryableError
from app.jobs.runner import JobAlreadyRunningError
from app.services.admission import AdmissionDeniedError
from app.services.ledger import InsufficientFundsError

settings = get_settings()

app = FastAPI(lifespan=lifespan, docs_url=None, redoc_url=None, openapi_url=None)

app.add_middleware(CORSMiddleware, allow_origins=settings.allowed_origins, allow_credentials=True, allow_methods=["GET", "POST", "OPTIONS"], allow_headers=["content-type", "authorization"], expose_headers=["content-length", "x-request-id"])


# Add exception handlers
app.add_exception_handler(Exception, global_exception_handler)
app.add_exception_handler(HTTPException, http_exception_handler)
app.add_exception_handler(RequestValidationError, request_validation_exception_handler)
app.add_exception_handler(AdmissionDeniedError, admission_denied_exception_handler)
app.add_exception_handler(JobNotFoundError, job_not_found_exception_handler)
app.add_exception_handler(JobNotRetryableError, job_not_retryable_exception_handler)
app.add_exception_handler(JobAlreadyRunningError, job_not_retryable_exception_handler)
app.add_exception_handler(InsufficientFundsError, insufficient_funds_exception_handler)

# Add middleware
app.add_middleware(RequestLoggingMiddleware)
app.add_middleware(SecurityHeadersMiddleware)


@app.get("/health", include_in_schema=False)
async def health_check() -> dict[str, str]:
  """Return a simple health status."""
  return {"status": "ok", "version": "0.1.0"}


app.include_router(jobs.router, prefix="/v1/jobs", tags=["jobs"])
app.include_router(credits.router, prefix="/v1/credits", tags=["credits"])
app.include_router(notifications.router, prefix="/v1/notifications", tags=["notifications"])
app.include_router(credits.internal_router, prefix="/internal", tags=["internal"])
app.include_router(credits.admin_router, prefix="/admin", tags=["admin"])

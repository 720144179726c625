import logging
from typing import Any

from app.jobs.errors import JobNotFoundError
from app.services.admission import AdmissionDeniedError, DenialReason
from app.services.ledger import InsufficientFundsError
from fastapi import HTTPException, Request, status
from fastapi.exceptions import RequestValidationError
from fastapi.responses import JSONResponse

_REASON_STATUS: dict[DenialReason, int] = {
  "auth-failed": status.HTTP_401_UNAUTHORIZED,
  "insufficient-funds": status.HTTP_402_PAYMENT_REQUIRED,
  "forbidden": status.HTTP_403_FORBIDDEN,
  "not-found": status.HTTP_404_NOT_FOUND,
  "not-retryable": status.HTTP_409_CONFLICT,
  "parse-error": status.HTTP_422_UNPROCESSABLE_ENTITY,
  "rate-limited": status.HTTP_429_TOO_MANY_REQUESTS,
}


def _coerce_json_safe(value: Any) -> Any:
  """Convert unsupported values into JSON-safe primitives for error responses."""
  if value is None or isinstance(value, bool | int | float | str):
    return value
  if isinstance(value, dict):
    return {str(key): _coerce_json_safe(item) for key, item in value.items()}
  if isinstance(value, list | tuple | set):
    return [_coerce_json_safe(item) for item in value]
  if isinstance(value, BaseException):
    error_message = str(value)
    if error_message:
      return f"{type(value).__name__}: {error_message}"
    return type(value).__name__
  return str(value)


def _error_payload(detail: Any, *, request_id: str | None = None) -> dict[str, Any]:
  """Build a safe error payload that avoids leaking internal details to clients."""
  payload: dict[str, Any] = {"detail": detail}
  # Attach a request id so support can correlate client reports to server logs.
  if request_id:
    payload["requestId"] = request_id
  return payload


def _sanitize_validation_errors(errors: list[dict[str, Any]]) -> list[dict[str, Any]]:
  """Return validation errors without raw input payloads."""
  sanitized: list[dict[str, Any]] = []
  for error in errors:
    scrubbed = {key: value for key, value in error.items() if key != "input"}
    if "ctx" in scrubbed and isinstance(scrubbed["ctx"], dict):
      scrubbed_ctx = dict(scrubbed["ctx"])
      scrubbed_ctx.pop("input", None)
      scrubbed["ctx"] = scrubbed_ctx

    sanitized.append(_coerce_json_safe(scrubbed))

  return sanitized


def _denial_response(request: Request, *, status_code: int, reason: str, message: str) -> JSONResponse:
  request_id = getattr(request.state, "request_id", None)
  return JSONResponse(status_code=status_code, content=_error_payload({"error": reason, "message": message}, request_id=request_id))


async def global_exception_handler(request: Request, exc: Exception) -> JSONResponse:
  """Global exception handler to catch unhandled errors."""
  logger = logging.getLogger("uvicorn.error")
  request_id = getattr(request.state, "request_id", None)
  logger.error("Global exception request_id=%s path=%s error_type=%s", request_id, request.url.path, type(exc).__name__, exc_info=True)
  return JSONResponse(status_code=status.HTTP_500_INTERNAL_SERVER_ERROR, content=_error_payload("Internal Server Error", request_id=request_id))


async def request_validation_exception_handler(request: Request, exc: RequestValidationError) -> JSONResponse:
  """Log request validation errors for debugging without leaking payloads."""
  request_id = getattr(request.state, "request_id", None)
  sanitized_errors = _sanitize_validation_errors(list(exc.errors()))
  logger = logging.getLogger("uvicorn.error")
  logger.warning("Request validation failed request_id=%s path=%s method=%s errors=%s", request_id, request.url.path, request.method, sanitized_errors)
  return JSONResponse(status_code=status.HTTP_422_UNPROCESSABLE_ENTITY, content=_error_payload(sanitized_errors, request_id=request_id))


async def http_exception_handler(request: Request, exc: HTTPException) -> JSONResponse:
  """Handle FastAPI HTTPExceptions while avoiding leaking internal diagnostics."""
  from app.config import get_settings

  settings = get_settings()
  request_id = getattr(request.state, "request_id", None)
  # Log 5xx HTTPExceptions with a traceback for diagnostics; do not expose `exc.detail` to callers.
  if exc.status_code >= 500:
    logger = logging.getLogger("uvicorn.error")
    logger.error("HTTPException request_id=%s path=%s status_code=%s detail=%s", request_id, request.url.path, exc.status_code, exc.detail, exc_info=True)
    return JSONResponse(status_code=exc.status_code, content=_error_payload("Internal Server Error", request_id=request_id))

  if settings.log_http_4xx:
    logger = logging.getLogger("uvicorn.error")
    logger.warning("HTTPException request_id=%s path=%s status_code=%s detail=%s", request_id, request.url.path, exc.status_code, exc.detail)

  # Preserve 4xx details for client-correctable errors.
  return JSONResponse(status_code=exc.status_code, content=_error_payload(exc.detail, request_id=request_id), headers=exc.headers)


async def admission_denied_exception_handler(request: Request, exc: AdmissionDeniedError) -> JSONResponse:
  """Map structured denial reasons onto HTTP statuses."""
  status_code = _REASON_STATUS.get(exc.reason, status.HTTP_403_FORBIDDEN)
  return _denial_response(request, status_code=status_code, reason=exc.reason, message=exc.message)


async def job_not_found_exception_handler(request: Request, exc: JobNotFoundError) -> JSONResponse:
  return _denial_response(request, status_code=status.HTTP_404_NOT_FOUND, reason="not-found", message="Job not found.")


async def job_not_retryable_exception_handler(request: Request, exc: Exception) -> JSONResponse:
  return _denial_response(request, status_code=status.HTTP_409_CONFLICT, reason="not-retryable", message=str(exc))


async def insufficient_funds_exception_handler(request: Request, exc: InsufficientFundsError) -> JSONResponse:
  return _denial_response(request, status_code=status.HTTP_402_PAYMENT_REQUIRED, reason="insufficient-funds", message=str(exc))

import json
import logging
from collections.abc import AsyncIterator

from fastapi import APIRouter, Depends, File, HTTPException, Request, UploadFile, status
from fastapi.responses import StreamingResponse

from app.api.deps import get_pipeline_service, get_progress_publisher
from app.api.models import JobDetailResponse, ProgressResponse, RetryResponse, SubmitJobResponse
from app.config import Settings, get_settings
from app.core.security import CredentialResolution, resolve_credentials, source_key_for
from app.jobs.progress import ProgressPublisher, poll_progress
from app.services.submissions import PipelineService

router = APIRouter()
logger = logging.getLogger("app.api.routes.jobs")

# Define file defaults once to avoid inline function calls.
DOCUMENT_FIELD = File(...)


@router.post("", response_model=SubmitJobResponse, status_code=status.HTTP_202_ACCEPTED)
async def submit_job(  # noqa: B008
  request: Request,
  document: UploadFile = DOCUMENT_FIELD,
  settings: Settings = Depends(get_settings),  # noqa: B008
  credentials: CredentialResolution = Depends(resolve_credentials),  # noqa: B008
  service: PipelineService = Depends(get_pipeline_service),  # noqa: B008
) -> SubmitJobResponse:
  """Admit a document and start processing it in the background."""
  # Read one byte past the limit so oversized uploads are detected without buffering them whole.
  data = await document.read(settings.max_upload_bytes + 1)
  if len(data) > settings.max_upload_bytes:
    raise HTTPException(status_code=status.HTTP_413_REQUEST_ENTITY_TOO_LARGE, detail=f"Document exceeds {settings.max_upload_bytes} bytes.")

  job_id = await service.submit(data, filename=document.filename, source_key=source_key_for(request), credentials=credentials)
  return SubmitJobResponse(job_id=job_id)


@router.get("/{job_id}", response_model=JobDetailResponse)
async def get_job(  # noqa: B008
  job_id: str,
  credentials: CredentialResolution = Depends(resolve_credentials),  # noqa: B008
  service: PipelineService = Depends(get_pipeline_service),  # noqa: B008
) -> JobDetailResponse:
  """Return a job with its artifacts and image URLs; owned jobs are visible to their owner only."""
  job, outputs = await service.get_job_detail(job_id, credentials=credentials)
  return JobDetailResponse.from_records(job, outputs)


@router.get("/{job_id}/progress", response_model=ProgressResponse)
async def get_progress(  # noqa: B008
  job_id: str,
  service: PipelineService = Depends(get_pipeline_service),  # noqa: B008
) -> ProgressResponse:
  """Return the latest progress snapshot for a job."""
  snapshot = await service.get_progress(job_id)
  return ProgressResponse.from_snapshot(job_id, snapshot)


@router.get("/{job_id}/progress/stream")
async def stream_progress(  # noqa: B008
  job_id: str,
  settings: Settings = Depends(get_settings),  # noqa: B008
  service: PipelineService = Depends(get_pipeline_service),  # noqa: B008
  publisher: ProgressPublisher = Depends(get_progress_publisher),  # noqa: B008
) -> StreamingResponse:
  """Stream progress snapshots as server-sent events until the job finishes."""
  # Fail fast with 404 instead of holding a stream open for an unknown job.
  await service.get_progress(job_id)

  async def _events() -> AsyncIterator[str]:
    async for snapshot in poll_progress(publisher, job_id, interval_seconds=settings.progress_poll_interval_seconds):
      payload = ProgressResponse.from_snapshot(job_id, snapshot).model_dump()
      yield f"event: progress\ndata: {json.dumps(payload)}\n\n"

  return StreamingResponse(_events(), media_type="text/event-stream", headers={"Cache-Control": "no-cache"})


@router.post("/{job_id}/retry", response_model=RetryResponse, status_code=status.HTTP_202_ACCEPTED)
async def retry_job(  # noqa: B008
  job_id: str,
  request: Request,
  credentials: CredentialResolution = Depends(resolve_credentials),  # noqa: B008
  service: PipelineService = Depends(get_pipeline_service),  # noqa: B008
) -> RetryResponse:
  """Resume a failed or stalled job from its first missing output."""
  resume_stage = await service.retry(job_id, source_key=source_key_for(request), credentials=credentials)
  return RetryResponse(job_id=job_id, resume_stage=resume_stage.value)

from __future__ import annotations

import logging
from typing import Any, Dict, List

from fastapi import Depends, FastAPI, Header, HTTPException, Request, Response
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse

from .configuration import build_public_config, configure_logging, cors_origins, get_settings
from .exceptions import PDFSummarizerError, QueueUnavailableError
from .job_manager import JobManager
from .middleware import RateLimiter
from .models import (
    DocumentDetail,
    DocumentSummary,
    DownloadUrlResponse,
    JobStatusResponse,
    PublicConfig,
    SummaryResponse,
    UploadCompleteRequest,
    UploadUrlRequest,
    UploadUrlResponse,
    UsageResponse,
)
from .utils import is_valid_user_id

settings = get_settings()
configure_logging(settings.app.log_level)
logger = logging.getLogger(__name__)

app = FastAPI(title=settings.app.name, version="0.1.0")

app.add_middleware(
    CORSMiddleware,
    allow_origins=cors_origins(settings),
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)

job_manager = JobManager.from_settings(settings)
upload_limiter = RateLimiter(requests_per_minute=settings.limits.uploads_per_minute)


@app.exception_handler(PDFSummarizerError)
async def service_error_handler(request: Request, exc: PDFSummarizerError) -> JSONResponse:
    if exc.status_code >= 500:
        logger.error("%s %s failed: %s", request.method, request.url.path, exc.message)
    return JSONResponse(status_code=exc.status_code, content={"detail": exc.message})


def get_job_manager() -> JobManager:
    return job_manager


def get_upload_limiter() -> RateLimiter:
    return upload_limiter


def get_user_id(x_user_id: str = Header(..., alias="X-User-Id")) -> str:
    """Identity of the caller, set by the upstream authentication layer."""
    user_id = x_user_id.strip()
    if not is_valid_user_id(user_id):
        raise HTTPException(status_code=400, detail="Invalid X-User-Id header")
    return user_id


def enforce_upload_rate_limit(
    user_id: str = Depends(get_user_id),
    limiter: RateLimiter = Depends(get_upload_limiter),
) -> str:
    if len(limiter.requests) > 10_000:
        limiter.cleanup()
    if not limiter.is_allowed(user_id):
        raise HTTPException(status_code=429, detail="Too many uploads; slow down")
    return user_id


@app.get("/healthz")
def healthcheck() -> Dict[str, str]:
    return {"status": "ok"}


@app.get("/readyz")
def readiness(manager: JobManager = Depends(get_job_manager)) -> JSONResponse:
    checks: Dict[str, Any] = {
        "database": manager.database.ping(),
        "queue": manager.queue.ping(),
        "storage": manager.storage.is_configured(),
    }
    if checks["queue"]:
        try:
            checks["queued_jobs"] = manager.queue.pending_count()
        except QueueUnavailableError:
            checks["queue"] = False
    ready = checks["database"] and checks["queue"]
    return JSONResponse(status_code=200 if ready else 503, content={"ready": ready, **checks})


@app.get("/config", response_model=PublicConfig)
def get_public_config() -> PublicConfig:
    return build_public_config(settings)


@app.post("/uploads", response_model=UploadUrlResponse)
def create_upload_url(
    request: UploadUrlRequest,
    user_id: str = Depends(enforce_upload_rate_limit),
    manager: JobManager = Depends(get_job_manager),
) -> UploadUrlResponse:
    return manager.request_upload(user_id, request)


@app.post("/documents", response_model=DocumentSummary, status_code=202)
def register_document(
    request: UploadCompleteRequest,
    user_id: str = Depends(enforce_upload_rate_limit),
    manager: JobManager = Depends(get_job_manager),
) -> DocumentSummary:
    return manager.register_upload(user_id, request)


@app.get("/documents", response_model=List[DocumentSummary])
def list_documents(
    user_id: str = Depends(get_user_id),
    manager: JobManager = Depends(get_job_manager),
) -> List[DocumentSummary]:
    return manager.list_documents(user_id)


@app.get("/documents/{document_id}", response_model=DocumentDetail)
def get_document(
    document_id: str,
    user_id: str = Depends(get_user_id),
    manager: JobManager = Depends(get_job_manager),
) -> DocumentDetail:
    return manager.get_document(user_id, document_id)


@app.get("/documents/{document_id}/status", response_model=JobStatusResponse)
def document_status(
    document_id: str,
    user_id: str = Depends(get_user_id),
    manager: JobManager = Depends(get_job_manager),
) -> JobStatusResponse:
    return manager.get_status(user_id, document_id)


@app.get("/documents/{document_id}/summary", response_model=SummaryResponse)
def document_summary(
    document_id: str,
    user_id: str = Depends(get_user_id),
    manager: JobManager = Depends(get_job_manager),
) -> SummaryResponse:
    return manager.get_summary(user_id, document_id)


@app.get("/documents/{document_id}/download", response_model=DownloadUrlResponse)
def document_download(
    document_id: str,
    user_id: str = Depends(get_user_id),
    manager: JobManager = Depends(get_job_manager),
) -> DownloadUrlResponse:
    return manager.get_download_url(user_id, document_id)


@app.post("/documents/{document_id}/retry", response_model=JobStatusResponse, status_code=202)
def retry_document(
    document_id: str,
    user_id: str = Depends(get_user_id),
    manager: JobManager = Depends(get_job_manager),
) -> JobStatusResponse:
    return manager.retry(user_id, document_id)


@app.delete("/documents/{document_id}", status_code=204)
def delete_document(
    document_id: str,
    user_id: str = Depends(get_user_id),
    manager: JobManager = Depends(get_job_manager),
) -> Response:
    manager.delete_document(user_id, document_id)
    return Response(status_code=204)


@app.get("/usage", response_model=UsageResponse)
def usage(
    user_id: str = Depends(get_user_id),
    manager: JobManager = Depends(get_job_manager),
) -> UsageResponse:
    return manager.get_usage(user_id)

"""
Document and summary-job lifecycle management.

This module manages the end-to-end lifecycle of a summarized document:
- Issuing presigned upload URLs
- Registering completed uploads and enqueueing summary jobs
- Status, summary and download lookups for the owning user
- Manual retries of failed jobs and document deletion
- Monthly upload quota accounting

The JobManager coordinates the database, object storage and job queue; the
actual summarization runs in the worker process.
"""

from __future__ import annotations

import logging
from datetime import timedelta
from typing import Any, Dict, Optional
from uuid import uuid4

from omegaconf import DictConfig

from .database import SummaryDatabase
from .exceptions import (
    DocumentNotFoundError,
    InvalidUploadError,
    JobStateError,
    QueueUnavailableError,
    QuotaExceededError,
    StorageError,
)
from .job_queue import SummaryQueue
from .models import (
    DocumentDetail,
    DocumentSummary,
    DownloadUrlResponse,
    JobEvent,
    JobStatus,
    JobStatusResponse,
    SummaryJobPayload,
    SummaryResponse,
    UploadCompleteRequest,
    UploadUrlRequest,
    UploadUrlResponse,
    UsageResponse,
)
from .storage import StorageService
from .utils import display_title, is_pdf_filename, month_start, utcnow

logger = logging.getLogger(__name__)


class JobManager:
    """
    Central coordinator used by the HTTP layer.

    Ownership:
        Documents belonging to another user are reported as not found, so
        document ids cannot be discovered across accounts.

    Attributes:
        database: Persistence for documents, jobs and summaries
        storage: Object storage for uploads
        queue: Broker-backed summary queue
    """

    def __init__(
        self,
        database: SummaryDatabase,
        storage: StorageService,
        queue: SummaryQueue,
        settings: DictConfig,
    ) -> None:
        self.database = database
        self.storage = storage
        self.queue = queue
        self.max_upload_bytes: int = settings.storage.max_upload_bytes
        self.allowed_content_types = set(settings.storage.allowed_content_types)
        self.upload_url_expiration: int = settings.storage.upload_url_expiration
        self.download_url_expiration: int = settings.storage.download_url_expiration
        self.summaries_per_month: int = settings.limits.summaries_per_month
        # a processing job older than the rq job timeout has lost its worker
        self.stale_after = timedelta(seconds=settings.queue.job_timeout)

    @classmethod
    def from_settings(cls, settings: DictConfig) -> "JobManager":
        return cls(
            database=SummaryDatabase(settings.database.path),
            storage=StorageService.from_settings(settings),
            queue=SummaryQueue.from_settings(settings),
            settings=settings,
        )

    def _validate_pdf(self, filename: str, content_type: Optional[str] = None) -> None:
        if not is_pdf_filename(filename):
            raise InvalidUploadError("Only PDF uploads are supported")
        if content_type is not None and content_type not in self.allowed_content_types:
            raise InvalidUploadError(f"Unsupported content type: {content_type}")

    def _validate_size(self, size: Optional[int]) -> None:
        if size is not None and size > self.max_upload_bytes:
            raise InvalidUploadError(f"File exceeds the {self.max_upload_bytes} byte upload limit")

    def _check_quota(self, user_id: str) -> None:
        used = self.database.count_usage_since(user_id, month_start(utcnow()))
        if used >= self.summaries_per_month:
            raise QuotaExceededError(
                f"Monthly limit of {self.summaries_per_month} summaries reached"
            )

    def _is_stale(self, record: Dict[str, Any]) -> bool:
        started_at = record["started_at"]
        return (
            record["status"] == JobStatus.PROCESSING
            and started_at is not None
            and started_at < utcnow() - self.stale_after
        )

    def _get_owned(self, user_id: str, document_id: str) -> Dict[str, Any]:
        record = self.database.get_document(document_id)
        if not record or record["user_id"] != user_id:
            raise DocumentNotFoundError("Document not found")
        return record

    def request_upload(self, user_id: str, request: UploadUrlRequest) -> UploadUrlResponse:
        """
        Issue a presigned URL the client uploads the PDF to directly.

        Raises:
            InvalidUploadError: Not a PDF or larger than the upload limit
            QuotaExceededError: Monthly summary quota already used
            StorageError: Storage is not configured or unreachable
        """
        self._validate_pdf(request.filename, request.content_type)
        self._validate_size(request.size)
        self._check_quota(user_id)

        key = self.storage.build_upload_key(user_id, request.filename)
        upload_url = self.storage.create_upload_url(
            key, request.content_type, expiration=self.upload_url_expiration
        )
        return UploadUrlResponse(
            upload_url=upload_url,
            headers={"Content-Type": request.content_type},
            file_key=key,
            file_url=self.storage.object_url(key),
            expires_in=self.upload_url_expiration,
        )

    def register_upload(self, user_id: str, request: UploadCompleteRequest) -> DocumentSummary:
        """
        Record a finished upload and enqueue its summary job.

        This method:
        1. Validates the file name and, for bucket uploads, that the key is
           inside the user's prefix and the object exists within the size limit
        2. Checks the monthly quota
        3. Creates the document and its pending job
        4. Pushes ``{document_id, file_url, user_id}`` onto the queue

        Raises:
            QueueUnavailableError: The broker rejected the job; the job is
                left failed so it can be retried later
        """
        self._validate_pdf(request.filename)

        size_bytes: Optional[int] = None
        if request.file_key:
            if not self.storage.is_configured():
                raise InvalidUploadError("File uploads are not configured; supply file_url")
            if not request.file_key.startswith(self.storage.user_prefix(user_id)):
                raise InvalidUploadError("File key does not belong to this user")
            metadata = self.storage.head(request.file_key)
            if metadata is None:
                raise InvalidUploadError("Uploaded file not found in storage")
            size_bytes = metadata["size"]
            self._validate_size(size_bytes)
            file_key: Optional[str] = request.file_key
            file_url = self.storage.object_url(request.file_key)
        else:
            file_url = str(request.file_url)
            if not file_url.startswith(("https://", "http://")):
                raise InvalidUploadError("file_url must be an http(s) URL")
            file_key = None

        self._check_quota(user_id)

        now = utcnow()
        document_id = uuid4().hex
        self.database.create_document(
            {
                "id": document_id,
                "user_id": user_id,
                "title": request.title or display_title(request.filename),
                "filename": request.filename,
                "file_key": file_key,
                "file_url": file_url,
                "size_bytes": size_bytes,
                "created_at": now,
            },
            {
                "id": uuid4().hex,
                "status": JobStatus.PENDING.value,
                "events": [{"timestamp": now, "message": "Upload registered."}],
            },
        )
        logger.info("Registered document %s for user %s", document_id, user_id)

        self._enqueue(SummaryJobPayload(document_id=document_id, file_url=file_url, user_id=user_id), attempt=1)
        return self._to_summary(self.database.get_document(document_id))

    def _enqueue(self, payload: SummaryJobPayload, attempt: int) -> None:
        try:
            self.queue.enqueue(payload, attempt=attempt)
        except QueueUnavailableError:
            self.database.fail_job(payload.document_id, "Job could not be queued")
            self.database.add_job_event(payload.document_id, "Enqueue failed.")
            raise
        self.database.add_job_event(payload.document_id, "Summary job queued.")

    def list_documents(self, user_id: str) -> list[DocumentSummary]:
        return [self._to_summary(record) for record in self.database.list_documents(user_id)]

    def get_document(self, user_id: str, document_id: str) -> DocumentDetail:
        record = self._get_owned(user_id, document_id)
        summary = self.database.get_summary(document_id)
        return DocumentDetail(
            **self._to_summary(record).model_dump(),
            file_url=record["file_url"],
            size_bytes=record["size_bytes"],
            attempts=record["attempts"],
            started_at=record["started_at"],
            finished_at=record["finished_at"],
            events=[JobEvent(**event) for event in record["events"]],
            summary=SummaryResponse(**summary) if summary else None,
        )

    def get_status(self, user_id: str, document_id: str) -> JobStatusResponse:
        record = self._get_owned(user_id, document_id)
        return JobStatusResponse(
            document_id=record["id"],
            status=record["status"],
            attempts=record["attempts"],
            error=record["error"],
            summary_available=record["summary_available"],
            updated_at=record["updated_at"],
        )

    def get_summary(self, user_id: str, document_id: str) -> SummaryResponse:
        record = self._get_owned(user_id, document_id)
        summary = self.database.get_summary(document_id)
        if summary is None:
            raise JobStateError(f"Summary is not available while the job is {record['status'].value}")
        return SummaryResponse(**summary)

    def get_download_url(self, user_id: str, document_id: str) -> DownloadUrlResponse:
        record = self._get_owned(user_id, document_id)
        if not record["file_key"]:
            return DownloadUrlResponse(url=record["file_url"], expires_in=0)
        url = self.storage.create_download_url(record["file_key"], expiration=self.download_url_expiration)
        return DownloadUrlResponse(url=url, expires_in=self.download_url_expiration)

    def retry(self, user_id: str, document_id: str) -> JobStatusResponse:
        """
        Re-enqueue a failed job, or a processing job whose worker has been
        gone for longer than the queue job timeout.

        Raises:
            JobStateError: The job is pending, completed or still being processed
        """
        record = self._get_owned(user_id, document_id)
        if not self.database.reset_job(document_id, stale_before=utcnow() - self.stale_after):
            raise JobStateError(f"Only failed jobs can be retried (job is {record['status'].value})")
        self.database.add_job_event(document_id, "Retry requested.")
        payload = SummaryJobPayload(document_id=document_id, file_url=record["file_url"], user_id=user_id)
        self._enqueue(payload, attempt=record["attempts"] + 1)
        return self.get_status(user_id, document_id)

    def delete_document(self, user_id: str, document_id: str) -> None:
        """
        Delete a document, its job, summary and stored file.

        Raises:
            JobStateError: The worker is currently processing the document
        """
        record = self._get_owned(user_id, document_id)
        if record["status"] == JobStatus.PROCESSING and not self._is_stale(record):
            raise JobStateError("Document is being processed; try again once it finishes")

        self.database.delete_document(document_id)
        if record["file_key"] and self.storage.is_configured():
            try:
                self.storage.delete(record["file_key"])
            except StorageError as exc:
                logger.warning("Stored file for %s was not removed: %s", document_id, exc)
        logger.info("Deleted document %s", document_id)

    def get_usage(self, user_id: str) -> UsageResponse:
        period_start = month_start(utcnow())
        return UsageResponse(
            user_id=user_id,
            summaries_used=self.database.count_usage_since(user_id, period_start),
            summaries_limit=self.summaries_per_month,
            period_start=period_start,
        )

    def _to_summary(self, record: Dict[str, Any]) -> DocumentSummary:
        return DocumentSummary(
            id=record["id"],
            title=record["title"],
            filename=record["filename"],
            status=record["status"],
            created_at=record["created_at"],
            updated_at=record["updated_at"],
            error=record["error"],
            summary_available=record["summary_available"],
        )

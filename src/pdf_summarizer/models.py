from __future__ import annotations

from datetime import datetime
from enum import Enum
from typing import Dict, List, Optional

from pydantic import BaseModel, Field, model_validator


class JobStatus(str, Enum):
    PENDING = "pending"
    PROCESSING = "processing"
    COMPLETED = "completed"
    FAILED = "failed"


class JobEvent(BaseModel):
    timestamp: datetime
    message: str


class UploadUrlRequest(BaseModel):
    filename: str = Field(min_length=1, max_length=255)
    content_type: str = "application/pdf"
    size: Optional[int] = Field(default=None, gt=0)


class UploadUrlResponse(BaseModel):
    upload_url: str
    method: str = "PUT"
    headers: Dict[str, str]
    file_key: str
    file_url: str
    expires_in: int


class UploadCompleteRequest(BaseModel):
    filename: str = Field(min_length=1, max_length=255)
    title: Optional[str] = Field(default=None, max_length=200)
    file_key: Optional[str] = None
    file_url: Optional[str] = None

    @model_validator(mode="after")
    def _exactly_one_location(self) -> "UploadCompleteRequest":
        if bool(self.file_key) == bool(self.file_url):
            raise ValueError("Provide exactly one of file_key or file_url")
        return self


class SummaryJobPayload(BaseModel):
    """Record pushed onto the queue for the worker."""

    document_id: str
    file_url: str
    user_id: str


class DocumentSummary(BaseModel):
    id: str
    title: str
    filename: str
    status: JobStatus
    created_at: datetime
    updated_at: datetime
    error: Optional[str] = None
    summary_available: bool = False


class SummaryResponse(BaseModel):
    document_id: str
    content: str
    model: str
    word_count: int
    page_count: int
    truncated: bool = False
    created_at: datetime


class DocumentDetail(DocumentSummary):
    file_url: str
    size_bytes: Optional[int] = None
    attempts: int = 0
    started_at: Optional[datetime] = None
    finished_at: Optional[datetime] = None
    events: List[JobEvent]
    summary: Optional[SummaryResponse] = None


class JobStatusResponse(BaseModel):
    document_id: str
    status: JobStatus
    attempts: int
    error: Optional[str] = None
    summary_available: bool = False
    updated_at: datetime


class DownloadUrlResponse(BaseModel):
    url: str
    expires_in: int


class UsageResponse(BaseModel):
    user_id: str
    summaries_used: int
    summaries_limit: int
    period_start: datetime


class PublicConfig(BaseModel):
    max_upload_bytes: int
    allowed_content_types: List[str]
    summaries_per_month: int
    model: str

"""Shared exceptions for the PDF summarizer service."""

from __future__ import annotations


class PDFSummarizerError(Exception):
    """Base class for errors surfaced to API clients."""

    status_code = 500

    def __init__(self, message: str) -> None:
        super().__init__(message)
        self.message = message


class InvalidUploadError(PDFSummarizerError):
    """Raised when an upload request or uploaded file is not acceptable."""

    status_code = 400


class DocumentNotFoundError(PDFSummarizerError):
    status_code = 404


class JobStateError(PDFSummarizerError):
    """Raised when an operation is not allowed in the job's current state."""

    status_code = 409


class QuotaExceededError(PDFSummarizerError):
    status_code = 429


class ExtractionError(PDFSummarizerError):
    """Raised when no usable text can be read from a PDF."""

    status_code = 422


class StorageError(PDFSummarizerError):
    """Raised when object storage cannot be reached or the file is missing."""

    status_code = 502


class SummarizationError(PDFSummarizerError):
    """Raised when the summarization API fails or returns nothing usable."""

    status_code = 502


class QueueUnavailableError(PDFSummarizerError):
    status_code = 503

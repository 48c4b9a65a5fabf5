"""
PDF Summarizer - upload PDFs and get AI-generated summaries

This package provides a FastAPI web service and a background worker that
together turn uploaded PDF documents into markdown summaries:

- Presigned uploads straight to object storage
- A Redis-backed job queue fed on upload completion
- A single worker that downloads, extracts, summarizes and stores
- Status polling, summary retrieval, retries and deletion per user

Key Components:
    - main: FastAPI application and HTTP endpoint definitions
    - job_manager: Document and job lifecycle coordinator
    - worker: Queue consumer running the summary pipeline
    - job_queue: rq queue wrapper used to enqueue summary jobs
    - database: SQLite persistence for documents, jobs and summaries
    - storage: S3 presigned URLs and file downloads
    - extraction: PDF text extraction
    - summarizer: OpenAI chat completions client
    - configuration: Settings loading and logging setup

Usage:
    Run the API server with:
        uvicorn pdf_summarizer.main:app --reload --host 0.0.0.0 --port 8000

    Run the worker with:
        pdf-summarizer-worker
"""
from __future__ import annotations

__all__ = ["__version__"]

__version__ = "0.1.0"

"""
Background worker that turns uploaded PDFs into summaries.

A single rq worker process consumes the summary queue one job at a time:

1. claim the job (pending -> processing)
2. download the uploaded file
3. extract its text
4. call the summarization API
5. store the summary and mark the job completed

Run it with:
    pdf-summarizer-worker

Or, to drain the queue and exit:
    pdf-summarizer-worker --burst
"""

from __future__ import annotations

import argparse
import logging
from typing import Any, Dict, Optional

from omegaconf import DictConfig
from rq import Worker

from .configuration import configure_logging, get_settings
from .database import SummaryDatabase
from .exceptions import ExtractionError, StorageError, SummarizationError
from .extraction import extract_text
from .job_queue import SummaryQueue
from .models import SummaryJobPayload
from .storage import StorageService
from .summarizer import Summarizer

logger = logging.getLogger(__name__)

EXPECTED_FAILURES = (StorageError, ExtractionError, SummarizationError)


class SummaryPipeline:
    """
    Download, extract, summarize and store for one job.

    Attributes:
        database: Shared SQLite persistence
        storage: Object storage used to fetch the uploaded file
        summarizer: Summarization API client
        max_upload_bytes: Files larger than this are rejected
        max_input_chars: Extracted text is truncated to this length
    """

    def __init__(
        self,
        database: SummaryDatabase,
        storage: StorageService,
        summarizer: Summarizer,
        max_upload_bytes: Optional[int] = None,
        max_input_chars: Optional[int] = None,
    ) -> None:
        self.database = database
        self.storage = storage
        self.summarizer = summarizer
        self.max_upload_bytes = max_upload_bytes
        self.max_input_chars = max_input_chars

    @classmethod
    def from_settings(cls, settings: DictConfig) -> "SummaryPipeline":
        return cls(
            database=SummaryDatabase(settings.database.path),
            storage=StorageService.from_settings(settings),
            summarizer=Summarizer.from_settings(settings),
            max_upload_bytes=settings.storage.max_upload_bytes,
            max_input_chars=settings.summarizer.max_input_chars,
        )

    def run(self, payload: SummaryJobPayload) -> Dict[str, Any]:
        """
        Process one job.

        Returns:
            A small result dict stored by rq: the document id and final status

        Raises:
            Exception: Unexpected errors are re-raised after the job is marked
                failed, so rq keeps the traceback in its failed registry
        """
        document_id = payload.document_id
        if not self.database.claim_job(document_id):
            logger.info("Skipping document %s: job is not pending", document_id)
            return {"document_id": document_id, "status": "skipped"}

        self.database.add_job_event(document_id, "Worker started processing.")
        try:
            document = self.database.get_document(document_id)
            title = document["title"] if document else None

            data = self.storage.download(payload.file_url, max_bytes=self.max_upload_bytes)
            self.database.add_job_event(document_id, f"Downloaded file ({len(data)} bytes).")

            extracted = extract_text(data, max_chars=self.max_input_chars)
            self.database.add_job_event(
                document_id,
                f"Extracted {extracted.char_count} characters from {extracted.page_count} pages.",
            )

            result = self.summarizer.summarize(extracted.text, title=title)
            self.database.complete_job(
                document_id,
                {
                    "content": result.content,
                    "model": result.model,
                    "word_count": result.word_count,
                    "page_count": extracted.page_count,
                    "char_count": extracted.char_count,
                    "truncated": extracted.truncated,
                },
            )
            self.database.add_job_event(document_id, "Summary generated.")
        except EXPECTED_FAILURES as exc:
            logger.warning("Summary job for %s failed: %s", document_id, exc)
            self.database.fail_job(document_id, exc.message)
            self.database.add_job_event(document_id, f"Summary failed: {exc.message}")
            return {"document_id": document_id, "status": "failed"}
        except Exception as exc:
            logger.exception("Unexpected error while summarizing %s", document_id)
            self.database.fail_job(document_id, "Internal error while generating the summary")
            self.database.add_job_event(document_id, f"Summary failed: {type(exc).__name__}")
            raise

        logger.info("Summary job for %s completed", document_id)
        return {"document_id": document_id, "status": "completed"}


_pipeline: Optional[SummaryPipeline] = None


def get_pipeline() -> SummaryPipeline:
    global _pipeline
    if _pipeline is None:
        _pipeline = SummaryPipeline.from_settings(get_settings())
    return _pipeline


def process_summary_job(payload: Dict[str, Any]) -> Dict[str, Any]:
    """rq entry point for summary jobs."""
    return get_pipeline().run(SummaryJobPayload.model_validate(payload))


def run_worker(burst: bool = False, settings: Optional[DictConfig] = None) -> bool:
    """
    Start a single rq worker on the summary queue.

    One worker process handles one job at a time, which is the only
    concurrency the pipeline relies on.
    """
    settings = settings or get_settings()
    summary_queue = SummaryQueue.from_settings(settings)
    worker = Worker([summary_queue.queue], connection=summary_queue.connection)
    logger.info("Worker %s listening on queue %s", worker.name, summary_queue.name)
    return worker.work(burst=burst, with_scheduler=False)


def main(argv: Optional[list[str]] = None) -> None:
    parser = argparse.ArgumentParser(description="Run the PDF summary worker.")
    parser.add_argument("--burst", action="store_true", help="exit once the queue is empty")
    args = parser.parse_args(argv)

    settings = get_settings()
    configure_logging(settings.app.log_level)
    run_worker(burst=args.burst, settings=settings)


if __name__ == "__main__":
    main()

"""
Redis-backed summary job queue.

Jobs are plain rq jobs that call ``pdf_summarizer.worker.process_summary_job``
with a serialized ``SummaryJobPayload``. The function is referenced by import
path so the API process never imports the worker's heavy dependencies.
"""

from __future__ import annotations

import logging
from typing import Optional

from omegaconf import DictConfig
from redis import Redis
from redis.exceptions import RedisError
from rq import Queue

from .exceptions import QueueUnavailableError
from .models import SummaryJobPayload

logger = logging.getLogger(__name__)

TASK_PATH = "pdf_summarizer.worker.process_summary_job"


class SummaryQueue:
    def __init__(
        self,
        redis_url: str,
        name: str = "pdf-summaries",
        job_timeout: int = 600,
        result_ttl: int = 86400,
        connection: Optional[Redis] = None,
    ) -> None:
        self.connection = connection or Redis.from_url(redis_url)
        self.name = name
        self.job_timeout = job_timeout
        self.result_ttl = result_ttl
        self._queue = Queue(name, connection=self.connection)

    @classmethod
    def from_settings(cls, settings: DictConfig) -> "SummaryQueue":
        return cls(
            redis_url=settings.queue.redis_url,
            name=settings.queue.name,
            job_timeout=settings.queue.job_timeout,
            result_ttl=settings.queue.result_ttl,
        )

    @property
    def queue(self) -> Queue:
        return self._queue

    def enqueue(self, payload: SummaryJobPayload, attempt: int = 1) -> str:
        """
        Push a summary job onto the queue.

        Args:
            payload: Job record for the worker
            attempt: 1-based attempt number, used to keep rq job ids unique
                across manual retries

        Returns:
            The rq job id

        Raises:
            QueueUnavailableError: If the broker cannot be reached
        """
        job_id = f"summary-{payload.document_id}-{attempt}"
        try:
            job = self._queue.enqueue(
                TASK_PATH,
                payload.model_dump(),
                job_id=job_id,
                job_timeout=self.job_timeout,
                result_ttl=self.result_ttl,
                failure_ttl=self.result_ttl,
                description=f"Summarize document {payload.document_id}",
            )
        except RedisError as exc:
            logger.error("Failed to enqueue %s: %s", job_id, exc)
            raise QueueUnavailableError("Job queue is unavailable") from exc
        logger.info("Enqueued %s for user %s", job.id, payload.user_id)
        return job.id

    def ping(self) -> bool:
        try:
            return bool(self.connection.ping())
        except RedisError:
            return False

    def pending_count(self) -> int:
        try:
            return self._queue.count
        except RedisError as exc:
            raise QueueUnavailableError("Job queue is unavailable") from exc

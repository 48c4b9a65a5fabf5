"""
SQLite database for documents, summary jobs and summaries.

Each uploaded document has exactly one job row, which the API polls and the
worker advances through pending -> processing -> completed/failed. Summaries
are stored in their own table keyed by document.
"""

import json
import sqlite3
from contextlib import contextmanager
from datetime import datetime
from pathlib import Path
from typing import Any, Dict, List, Optional

from .models import JobStatus
from .utils import ensure_directory, utcnow


DEFAULT_DB_PATH = Path("data/summaries.db")


def _serialize_datetime(dt: Optional[datetime]) -> Optional[str]:
    """Serialize datetime to ISO format string."""
    return dt.isoformat() if dt else None


def _deserialize_datetime(s: Optional[str]) -> Optional[datetime]:
    """Deserialize ISO format string to datetime."""
    if not s:
        return None
    return datetime.fromisoformat(s)


class SummaryDatabase:
    """
    SQLite persistence shared by the API process and the worker.

    Every public method opens its own connection, so one instance can be used
    from FastAPI's threadpool and from the worker process concurrently. WAL mode
    lets the status endpoint read while the worker writes.
    """

    def __init__(self, db_path: Path = DEFAULT_DB_PATH):
        self.db_path = Path(db_path)
        ensure_directory(self.db_path.parent)
        self._init_db()

    @contextmanager
    def _get_connection(self):
        """Get a database connection with proper settings."""
        conn = sqlite3.connect(str(self.db_path), timeout=30.0)
        conn.row_factory = sqlite3.Row
        conn.execute("PRAGMA journal_mode=WAL")
        conn.execute("PRAGMA foreign_keys=ON")
        try:
            yield conn
            conn.commit()
        except Exception:
            conn.rollback()
            raise
        finally:
            conn.close()

    def _init_db(self) -> None:
        """Initialize database schema."""
        with self._get_connection() as conn:
            conn.execute("""
                CREATE TABLE IF NOT EXISTS documents (
                    id TEXT PRIMARY KEY,
                    user_id TEXT NOT NULL,
                    title TEXT NOT NULL,
                    filename TEXT NOT NULL,
                    file_key TEXT,
                    file_url TEXT NOT NULL,
                    size_bytes INTEGER,
                    created_at TEXT NOT NULL,
                    updated_at TEXT NOT NULL
                )
            """)

            conn.execute("""
                CREATE TABLE IF NOT EXISTS jobs (
                    id TEXT PRIMARY KEY,
                    document_id TEXT NOT NULL UNIQUE
                        REFERENCES documents(id) ON DELETE CASCADE,
                    user_id TEXT NOT NULL,
                    status TEXT NOT NULL,
                    attempts INTEGER NOT NULL DEFAULT 0,
                    error TEXT,
                    events TEXT,
                    created_at TEXT NOT NULL,
                    updated_at TEXT NOT NULL,
                    started_at TEXT,
                    finished_at TEXT
                )
            """)

            conn.execute("""
                CREATE TABLE IF NOT EXISTS summaries (
                    document_id TEXT PRIMARY KEY
                        REFERENCES documents(id) ON DELETE CASCADE,
                    content TEXT NOT NULL,
                    model TEXT NOT NULL,
                    word_count INTEGER NOT NULL,
                    page_count INTEGER NOT NULL,
                    char_count INTEGER NOT NULL,
                    truncated INTEGER NOT NULL DEFAULT 0,
                    created_at TEXT NOT NULL
                )
            """)

            conn.execute("""
                CREATE TABLE IF NOT EXISTS usage (
                    id INTEGER PRIMARY KEY AUTOINCREMENT,
                    user_id TEXT NOT NULL,
                    document_id TEXT NOT NULL,
                    created_at TEXT NOT NULL
                )
            """)

            conn.execute("""
                CREATE INDEX IF NOT EXISTS idx_documents_user_created
                ON documents(user_id, created_at DESC)
            """)

            conn.execute("""
                CREATE INDEX IF NOT EXISTS idx_jobs_status
                ON jobs(status)
            """)

            conn.execute("""
                CREATE INDEX IF NOT EXISTS idx_usage_user_created
                ON usage(user_id, created_at)
            """)

    def ping(self) -> bool:
        with self._get_connection() as conn:
            conn.execute("SELECT 1").fetchone()
        return True

    def create_document(self, document: Dict[str, Any], job: Dict[str, Any]) -> None:
        """
        Insert a document, its pending job and a usage record in a single
        transaction.

        The usage record has no foreign key, so deleting the document does
        not give the quota back.

        Args:
            document: Document fields (id, user_id, title, filename, file_key,
                file_url, size_bytes, created_at)
            job: Job fields (id, status, events)
        """
        created_at = _serialize_datetime(document["created_at"])
        with self._get_connection() as conn:
            conn.execute("""
                INSERT INTO documents (
                    id, user_id, title, filename, file_key, file_url,
                    size_bytes, created_at, updated_at
                ) VALUES (?, ?, ?, ?, ?, ?, ?, ?, ?)
            """, (
                document["id"],
                document["user_id"],
                document["title"],
                document["filename"],
                document.get("file_key"),
                document["file_url"],
                document.get("size_bytes"),
                created_at,
                created_at,
            ))
            conn.execute("""
                INSERT INTO jobs (
                    id, document_id, user_id, status, attempts, events,
                    created_at, updated_at
                ) VALUES (?, ?, ?, ?, 0, ?, ?, ?)
            """, (
                job["id"],
                document["id"],
                document["user_id"],
                job.get("status", JobStatus.PENDING.value),
                json.dumps([
                    {"timestamp": _serialize_datetime(e["timestamp"]), "message": e["message"]}
                    for e in job.get("events", [])
                ]),
                created_at,
                created_at,
            ))
            conn.execute(
                "INSERT INTO usage (user_id, document_id, created_at) VALUES (?, ?, ?)",
                (document["user_id"], document["id"], created_at),
            )

    def get_document(self, document_id: str) -> Optional[Dict[str, Any]]:
        """
        Retrieve a document together with its job state.

        Returns:
            Document data dictionary or None if not found
        """
        with self._get_connection() as conn:
            row = conn.execute("""
                SELECT d.*, j.id AS job_id, j.status, j.attempts, j.error, j.events,
                       j.updated_at AS job_updated_at, j.started_at, j.finished_at,
                       s.document_id IS NOT NULL AS summary_available
                FROM documents d
                JOIN jobs j ON j.document_id = d.id
                LEFT JOIN summaries s ON s.document_id = d.id
                WHERE d.id = ?
            """, (document_id,)).fetchone()

            if not row:
                return None

            return self._row_to_dict(row)

    def list_documents(self, user_id: str) -> List[Dict[str, Any]]:
        """
        List a user's documents ordered by creation time (newest first).
        """
        with self._get_connection() as conn:
            rows = conn.execute("""
                SELECT d.*, j.id AS job_id, j.status, j.attempts, j.error, j.events,
                       j.updated_at AS job_updated_at, j.started_at, j.finished_at,
                       s.document_id IS NOT NULL AS summary_available
                FROM documents d
                JOIN jobs j ON j.document_id = d.id
                LEFT JOIN summaries s ON s.document_id = d.id
                WHERE d.user_id = ?
                ORDER BY d.created_at DESC
            """, (user_id,)).fetchall()

            return [self._row_to_dict(row) for row in rows]

    def count_usage_since(self, user_id: str, since: datetime) -> int:
        """Count documents a user registered since ``since``, deleted ones included."""
        with self._get_connection() as conn:
            row = conn.execute(
                "SELECT COUNT(*) AS total FROM usage WHERE user_id = ? AND created_at >= ?",
                (user_id, _serialize_datetime(since)),
            ).fetchone()
            return int(row["total"])

    def claim_job(self, document_id: str) -> bool:
        """
        Move a pending job to processing.

        Returns:
            True if this caller now owns the job, False if it was not pending
            (already claimed, finished, or the document was deleted)
        """
        now = _serialize_datetime(utcnow())
        with self._get_connection() as conn:
            cursor = conn.execute("""
                UPDATE jobs
                SET status = ?, attempts = attempts + 1, error = NULL,
                    started_at = ?, finished_at = NULL, updated_at = ?
                WHERE document_id = ? AND status = ?
            """, (JobStatus.PROCESSING.value, now, now, document_id, JobStatus.PENDING.value))
            return cursor.rowcount > 0

    def complete_job(self, document_id: str, summary: Dict[str, Any]) -> None:
        """
        Store the summary and mark the job completed in one transaction.

        Args:
            document_id: The document the summary belongs to
            summary: content, model, word_count, page_count, char_count, truncated
        """
        now = _serialize_datetime(utcnow())
        with self._get_connection() as conn:
            conn.execute("""
                INSERT OR REPLACE INTO summaries (
                    document_id, content, model, word_count, page_count,
                    char_count, truncated, created_at
                ) VALUES (?, ?, ?, ?, ?, ?, ?, ?)
            """, (
                document_id,
                summary["content"],
                summary["model"],
                summary["word_count"],
                summary["page_count"],
                summary["char_count"],
                int(bool(summary.get("truncated"))),
                now,
            ))
            conn.execute("""
                UPDATE jobs SET status = ?, error = NULL, finished_at = ?, updated_at = ?
                WHERE document_id = ?
            """, (JobStatus.COMPLETED.value, now, now, document_id))
            conn.execute("UPDATE documents SET updated_at = ? WHERE id = ?", (now, document_id))

    def fail_job(self, document_id: str, error: str) -> None:
        now = _serialize_datetime(utcnow())
        with self._get_connection() as conn:
            conn.execute("""
                UPDATE jobs SET status = ?, error = ?, finished_at = ?, updated_at = ?
                WHERE document_id = ?
            """, (JobStatus.FAILED.value, error, now, now, document_id))

    def reset_job(self, document_id: str, stale_before: Optional[datetime] = None) -> bool:
        """
        Return a failed job to pending so it can be enqueued again.

        Args:
            document_id: The document whose job to reset
            stale_before: When given, a processing job whose worker started
                before this time is treated as abandoned and reset as well

        Returns:
            True if the job was failed (or stale) and is now pending
        """
        now = _serialize_datetime(utcnow())
        with self._get_connection() as conn:
            cursor = conn.execute("""
                UPDATE jobs SET status = ?, error = NULL, started_at = NULL,
                    finished_at = NULL, updated_at = ?
                WHERE document_id = ?
                  AND (status = ? OR (status = ? AND started_at < ?))
            """, (
                JobStatus.PENDING.value,
                now,
                document_id,
                JobStatus.FAILED.value,
                JobStatus.PROCESSING.value,
                _serialize_datetime(stale_before),
            ))
            return cursor.rowcount > 0

    def add_job_event(self, document_id: str, message: str) -> None:
        """
        Add an event to a job's event log.

        Args:
            document_id: The document whose job to update
            message: Event message
        """
        with self._get_connection() as conn:
            row = conn.execute(
                "SELECT events FROM jobs WHERE document_id = ?", (document_id,)
            ).fetchone()

            if not row:
                return

            now = _serialize_datetime(utcnow())
            events = json.loads(row["events"] or "[]")
            events.append({"timestamp": now, "message": message})

            conn.execute(
                "UPDATE jobs SET events = ?, updated_at = ? WHERE document_id = ?",
                (json.dumps(events), now, document_id)
            )

    def get_summary(self, document_id: str) -> Optional[Dict[str, Any]]:
        with self._get_connection() as conn:
            row = conn.execute(
                "SELECT * FROM summaries WHERE document_id = ?", (document_id,)
            ).fetchone()

            if not row:
                return None

            return {
                "document_id": row["document_id"],
                "content": row["content"],
                "model": row["model"],
                "word_count": row["word_count"],
                "page_count": row["page_count"],
                "char_count": row["char_count"],
                "truncated": bool(row["truncated"]),
                "created_at": _deserialize_datetime(row["created_at"]),
            }

    def delete_document(self, document_id: str) -> bool:
        """
        Delete a document; its job and summary go with it.

        Returns:
            True if deleted, False if not found
        """
        with self._get_connection() as conn:
            cursor = conn.execute("DELETE FROM documents WHERE id = ?", (document_id,))
            return cursor.rowcount > 0

    def _row_to_dict(self, row: sqlite3.Row) -> Dict[str, Any]:
        """Convert a joined document/job row to a dictionary."""
        events = [
            {
                "timestamp": _deserialize_datetime(e["timestamp"]),
                "message": e["message"],
            }
            for e in json.loads(row["events"] or "[]")
        ]

        return {
            "id": row["id"],
            "user_id": row["user_id"],
            "title": row["title"],
            "filename": row["filename"],
            "file_key": row["file_key"],
            "file_url": row["file_url"],
            "size_bytes": row["size_bytes"],
            "created_at": _deserialize_datetime(row["created_at"]),
            "updated_at": max(
                _deserialize_datetime(row["updated_at"]),
                _deserialize_datetime(row["job_updated_at"]),
            ),
            "job_id": row["job_id"],
            "status": JobStatus(row["status"]),
            "attempts": row["attempts"],
            "error": row["error"],
            "started_at": _deserialize_datetime(row["started_at"]),
            "finished_at": _deserialize_datetime(row["finished_at"]),
            "summary_available": bool(row["summary_available"]),
            "events": events,
        }

"""
Tests for configuration, storage, extraction, database and helpers.
"""

import time
from datetime import timedelta

import httpx
import pytest
from omegaconf.errors import ConfigKeyError
from pypdf.errors import DependencyError

from pdf_summarizer import extraction

from pdf_summarizer.configuration import build_public_config, cors_origins, load_settings
from pdf_summarizer.exceptions import ExtractionError, StorageError, SummarizationError
from pdf_summarizer.extraction import extract_text, normalize_whitespace
from pdf_summarizer.middleware import RateLimiter
from pdf_summarizer.models import JobStatus
from pdf_summarizer.storage import StorageService
from pdf_summarizer.summarizer import Summarizer
from pdf_summarizer.utils import display_title, is_valid_user_id, month_start, sanitize_filename, utcnow

from conftest import encrypt_pdf, make_pdf


class TestConfiguration:
    def test_defaults_and_environment(self, monkeypatch):
        monkeypatch.setenv("OPENAI_MODEL", "gpt-summaries")
        monkeypatch.setenv("SUMMARIES_PER_MONTH", "7")
        settings = load_settings()

        assert settings.summarizer.model == "gpt-summaries"
        assert settings.limits.summaries_per_month == 7
        assert settings.storage.max_upload_bytes == 32 * 1024 * 1024
        assert settings.queue.name == "pdf-summaries"

    def test_overrides_merge(self):
        settings = load_settings({"queue": {"job_timeout": 30}})
        assert settings.queue.job_timeout == 30
        assert settings.queue.result_ttl == 86400

    def test_unknown_override_rejected(self):
        with pytest.raises(ConfigKeyError):
            load_settings({"queue": {"no_such_option": 1}})

    def test_public_config(self, settings):
        public = build_public_config(settings)
        assert public.max_upload_bytes == 1024 * 1024
        assert public.summaries_per_month == 3

    def test_cors_origins_split(self):
        settings = load_settings({"app": {"cors_origins": "https://a.example, https://b.example"}})
        assert cors_origins(settings) == ["https://a.example", "https://b.example"]


class TestExtraction:
    def test_extracts_text_and_page_count(self, sample_pdf):
        extracted = extract_text(sample_pdf)
        assert extracted.page_count == 1
        assert "Quarterly report" in extracted.text
        assert extracted.char_count == len(extracted.text)
        assert extracted.truncated is False

    def test_truncates(self, sample_pdf):
        extracted = extract_text(sample_pdf, max_chars=9)
        assert extracted.text == "Quarterly"
        assert extracted.truncated is True
        assert extracted.char_count > 9

    def test_rejects_non_pdf(self):
        with pytest.raises(ExtractionError):
            extract_text(b"hello")

    def test_rejects_pdf_without_text(self):
        with pytest.raises(ExtractionError, match="No extractable text"):
            extract_text(make_pdf([]))

    def test_accepts_junk_before_header(self):
        extracted = extract_text(make_pdf(["Text after a mail gateway banner."], prefix=b"\r\n\x00\x00junk\n"))
        assert "Text after a mail gateway banner." in extracted.text

    def test_rejects_header_past_first_kilobyte(self, sample_pdf):
        with pytest.raises(ExtractionError, match="not a PDF"):
            extract_text(b" " * 1024 + sample_pdf)

    def test_opens_pdf_encrypted_with_empty_user_password(self, sample_pdf):
        extracted = extract_text(encrypt_pdf(sample_pdf))
        assert "Revenue grew by twelve percent" in extracted.text

    def test_rejects_password_protected_pdf(self, sample_pdf):
        with pytest.raises(ExtractionError, match="password protected"):
            extract_text(encrypt_pdf(sample_pdf, user_password="secret"))

    def test_pypdf_errors_become_extraction_errors(self, monkeypatch, sample_pdf):
        def missing_dependency(stream):
            raise DependencyError("cryptography>=3.1 is required for AES algorithm")

        monkeypatch.setattr(extraction, "PdfReader", missing_dependency)
        with pytest.raises(ExtractionError, match="could not be read"):
            extract_text(sample_pdf)

    def test_normalize_whitespace(self):
        assert normalize_whitespace("  a \t b \n\n\n\n c  ") == "a b\n\nc"


class TestStorage:
    def test_key_round_trip(self, storage):
        key = storage.build_upload_key("user_1", "Annual Report.PDF")
        assert key.startswith("uploads/user_1/")
        assert key.endswith("/annual-report.pdf")
        assert storage.key_from_url(storage.object_url(key)) == key

    def test_key_from_other_bucket_is_none(self, storage):
        assert storage.key_from_url("s3://other-bucket/uploads/x.pdf") is None
        assert storage.key_from_url("https://test-bucket/uploads/x.pdf") is None

    def test_head_missing_object(self, storage):
        assert storage.head("uploads/none.pdf") is None

    def test_s3_download(self, storage, s3_client):
        s3_client.put("uploads/u/1/a.pdf", b"%PDF-data")
        assert storage.download("s3://test-bucket/uploads/u/1/a.pdf") == b"%PDF-data"

    def test_http_download(self):
        def handler(request):
            if request.url.path == "/ok.pdf":
                return httpx.Response(200, content=b"%PDF-remote")
            return httpx.Response(404)

        http_client = httpx.Client(transport=httpx.MockTransport(handler))
        storage = StorageService(bucket="", http_client=http_client)

        assert storage.download("https://files.example.com/ok.pdf") == b"%PDF-remote"
        with pytest.raises(StorageError, match="HTTP 404"):
            storage.download("https://files.example.com/missing.pdf")

    def test_download_size_limit(self, storage, s3_client):
        s3_client.put("uploads/u/1/a.pdf", b"x" * 100)
        with pytest.raises(StorageError, match="byte limit"):
            storage.download("s3://test-bucket/uploads/u/1/a.pdf", max_bytes=10)

        body = s3_client.bodies[0]
        assert body.bytes_read == 0
        assert body.closed

    def test_s3_download_stops_reading_past_limit(self, monkeypatch, storage, s3_client):
        s3_client.put("uploads/u/1/a.pdf", b"x" * 100)
        get_object = s3_client.get_object

        def understated_length(Bucket, Key):
            response = get_object(Bucket=Bucket, Key=Key)
            response["ContentLength"] = 5
            return response

        monkeypatch.setattr(s3_client, "get_object", understated_length)
        with pytest.raises(StorageError, match="byte limit"):
            storage.download("s3://test-bucket/uploads/u/1/a.pdf", max_bytes=10)
        assert s3_client.bodies[0].bytes_read == 11

    def test_http_download_stops_streaming_past_limit(self):
        sent = []

        def chunks():
            for index in range(1000):
                sent.append(index)
                yield b"x" * 1024

        def handler(request):
            return httpx.Response(200, content=chunks())

        storage = StorageService(bucket="", http_client=httpx.Client(transport=httpx.MockTransport(handler)))
        with pytest.raises(StorageError, match="byte limit"):
            storage.download("https://files.example.com/huge.pdf", max_bytes=10)
        assert len(sent) <= 2

    def test_http_download_rejects_declared_length(self):
        sent = []

        def chunks():
            sent.append(1)
            yield b"x" * 1024

        def handler(request):
            return httpx.Response(200, headers={"Content-Length": "5000000"}, content=chunks())

        storage = StorageService(bucket="", http_client=httpx.Client(transport=httpx.MockTransport(handler)))
        with pytest.raises(StorageError, match="byte limit"):
            storage.download("https://files.example.com/huge.pdf", max_bytes=1024)
        assert sent == []

    def test_unsupported_scheme(self, storage):
        with pytest.raises(StorageError, match="Unsupported"):
            storage.download("ftp://files.example.com/a.pdf")

    def test_unconfigured_bucket(self):
        storage = StorageService(bucket="")
        assert storage.is_configured() is False
        with pytest.raises(StorageError):
            storage.create_upload_url("uploads/a.pdf", "application/pdf")


class TestSummarizer:
    def test_requires_api_key(self):
        with pytest.raises(SummarizationError, match="OPENAI_API_KEY"):
            Summarizer(api_key=None, model="gpt-test").summarize("text")

    def test_returns_markdown_and_word_count(self, openai_client):
        openai_client.completions.content = "# Title\n\nShort summary here."
        result = Summarizer(api_key=None, model="gpt-test", client=openai_client).summarize("text", title="Doc")

        assert result.content == "# Title\n\nShort summary here."
        assert result.word_count == 5
        assert openai_client.completions.calls[0]["messages"][0]["role"] == "system"


class TestDatabase:
    def _create(self, database, document_id="doc1", user_id="user_1"):
        now = utcnow()
        database.create_document(
            {
                "id": document_id,
                "user_id": user_id,
                "title": "Doc",
                "filename": "doc.pdf",
                "file_url": "s3://test-bucket/doc.pdf",
                "created_at": now,
            },
            {"id": f"job-{document_id}", "events": [{"timestamp": now, "message": "created"}]},
        )

    def test_job_state_transitions(self, database):
        self._create(database)
        assert database.get_document("doc1")["status"] == JobStatus.PENDING

        assert database.reset_job("doc1") is False
        assert database.claim_job("doc1") is True
        assert database.claim_job("doc1") is False

        database.fail_job("doc1", "broken")
        record = database.get_document("doc1")
        assert record["status"] == JobStatus.FAILED
        assert record["error"] == "broken"

        assert database.reset_job("doc1") is True
        assert database.claim_job("doc1") is True
        assert database.get_document("doc1")["attempts"] == 2

    def test_delete_cascades(self, database):
        self._create(database)
        database.claim_job("doc1")
        database.complete_job("doc1", {
            "content": "summary",
            "model": "m",
            "word_count": 1,
            "page_count": 1,
            "char_count": 10,
        })
        assert database.get_summary("doc1")["content"] == "summary"

        assert database.delete_document("doc1") is True
        assert database.get_summary("doc1") is None
        assert database.get_document("doc1") is None
        assert database.delete_document("doc1") is False

    def test_count_usage_since(self, database):
        self._create(database, "a")
        self._create(database, "b")
        self._create(database, "c", user_id="user_2")
        assert database.count_usage_since("user_1", month_start(utcnow())) == 2

    def test_usage_survives_document_deletion(self, database):
        self._create(database, "a")
        assert database.delete_document("a") is True
        assert database.count_usage_since("user_1", month_start(utcnow())) == 1

    def test_reset_stale_processing_job(self, database):
        self._create(database)
        database.claim_job("doc1")
        cutoff = utcnow() - timedelta(minutes=10)

        assert database.reset_job("doc1") is False
        assert database.reset_job("doc1", stale_before=cutoff) is False

        with database._get_connection() as conn:
            conn.execute(
                "UPDATE jobs SET started_at = ? WHERE document_id = ?",
                ((utcnow() - timedelta(hours=1)).isoformat(), "doc1"),
            )
        assert database.reset_job("doc1", stale_before=cutoff) is True

        record = database.get_document("doc1")
        assert record["status"] == JobStatus.PENDING
        assert record["started_at"] is None

    def test_add_event_for_unknown_document_is_ignored(self, database):
        database.add_job_event("missing", "hello")
        assert database.get_document("missing") is None


class TestHelpers:
    def test_sanitize_filename(self):
        assert sanitize_filename("Q3 Report (final).PDF") == "q3-report-final.pdf"
        assert sanitize_filename("@#$.pdf") == "document.pdf"
        assert sanitize_filename("C:\\Users\\me\\notes.pdf") == "notes.pdf"

    def test_display_title(self):
        assert display_title("annual_report-2024.pdf") == "annual report 2024"

    def test_user_id_validation(self):
        assert is_valid_user_id("user_2abc@example.com")
        assert not is_valid_user_id("")
        assert not is_valid_user_id("has space")

    def test_rate_limiter_cleanup(self):
        limiter = RateLimiter(requests_per_minute=1)
        limiter.requests["old"] = (1, time.monotonic() - 120)
        assert limiter.is_allowed("new") is True
        limiter.cleanup()
        assert list(limiter.requests) == ["new"]

    def test_rate_limiter_blocks(self):
        limiter = RateLimiter(requests_per_minute=2)
        assert limiter.is_allowed("u")
        assert limiter.is_allowed("u")
        assert not limiter.is_allowed("u")
        assert limiter.is_allowed("v")
        limiter.reset()
        assert limiter.is_allowed("u")

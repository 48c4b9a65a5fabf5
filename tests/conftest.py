"""
Pytest configuration and fixtures for PDF Summarizer tests.
"""

import io
import os
import shutil
import tempfile
from types import SimpleNamespace

import pytest
from botocore.exceptions import ClientError
from fastapi.testclient import TestClient
from pypdf import PdfReader, PdfWriter

# Set test environment variables before importing the app
_TEST_DATA_DIR = tempfile.mkdtemp(prefix="pdf_summarizer_test_")
os.environ["DATABASE_PATH"] = os.path.join(_TEST_DATA_DIR, "app.db")
os.environ["S3_BUCKET_NAME"] = "test-bucket"
os.environ["REDIS_URL"] = "redis://localhost:6379/15"
os.environ.pop("OPENAI_API_KEY", None)

from pdf_summarizer.configuration import load_settings
from pdf_summarizer.database import SummaryDatabase
from pdf_summarizer.exceptions import QueueUnavailableError
from pdf_summarizer.job_manager import JobManager
from pdf_summarizer.main import app, get_job_manager, get_upload_limiter
from pdf_summarizer.middleware import RateLimiter
from pdf_summarizer.storage import StorageService
from pdf_summarizer.summarizer import Summarizer
from pdf_summarizer.worker import SummaryPipeline

TEST_BUCKET = "test-bucket"
SUMMARY_MARKDOWN = "# Quarterly report\n## Overview\nRevenue grew.\n## Key points\n- Growth\n## Conclusion\nGood quarter."


def make_pdf(lines, prefix=b""):
    """Build a small single-page PDF whose text pypdf can extract.

    ``prefix`` is written ahead of the header; xref offsets account for it.
    """
    def escape(value):
        return value.replace("\\", "\\\\").replace("(", "\\(").replace(")", "\\)")

    operations = "".join(f"({escape(line)}) Tj T* " for line in lines)
    stream = f"BT /F1 12 Tf 14 TL 72 720 Td {operations}ET".encode("latin-1")
    page_extra = b" /Contents 4 0 R" if lines else b""

    objects = [
        b"<< /Type /Catalog /Pages 2 0 R >>",
        b"<< /Type /Pages /Kids [3 0 R] /Count 1 >>",
        b"<< /Type /Page /Parent 2 0 R /MediaBox [0 0 612 792]"
        b" /Resources << /Font << /F1 5 0 R >> >>" + page_extra + b" >>",
        b"<< /Length " + str(len(stream)).encode() + b" >>\nstream\n" + stream + b"\nendstream",
        b"<< /Type /Font /Subtype /Type1 /BaseFont /Helvetica >>",
    ]

    output = io.BytesIO()
    output.write(prefix)
    output.write(b"%PDF-1.4\n")
    offsets = []
    for number, body in enumerate(objects, start=1):
        offsets.append(output.tell())
        output.write(f"{number} 0 obj\n".encode() + body + b"\nendobj\n")

    xref_offset = output.tell()
    output.write(f"xref\n0 {len(objects) + 1}\n".encode())
    output.write(b"0000000000 65535 f \n")
    for offset in offsets:
        output.write(f"{offset:010d} 00000 n \n".encode())
    output.write(
        f"trailer\n<< /Size {len(objects) + 1} /Root 1 0 R >>\nstartxref\n{xref_offset}\n%%EOF\n".encode()
    )
    return output.getvalue()


def encrypt_pdf(data, user_password="", owner_password="owner-secret"):
    """AES-128 encrypt a PDF; an empty user password opens without prompting."""
    writer = PdfWriter(clone_from=PdfReader(io.BytesIO(data)))
    writer.encrypt(user_password=user_password, owner_password=owner_password, algorithm="AES-128")
    output = io.BytesIO()
    writer.write(output)
    return output.getvalue()


class FakeBody(io.BytesIO):
    """Streaming body that records how many bytes were read."""

    def __init__(self, data):
        super().__init__(data)
        self.bytes_read = 0

    def read(self, size=-1):
        chunk = super().read(size)
        self.bytes_read += len(chunk)
        return chunk


class FakeS3Client:
    """In-memory stand-in for the boto3 S3 client calls the service makes."""

    def __init__(self):
        self.objects = {}
        self.bodies = []

    def put(self, key, data, content_type="application/pdf"):
        self.objects[key] = (data, content_type)

    def generate_presigned_url(self, operation, Params, ExpiresIn):
        return f"https://{Params['Bucket']}.s3.test/{Params['Key']}?op={operation}&expires={ExpiresIn}"

    def head_object(self, Bucket, Key):
        if Key not in self.objects:
            raise ClientError({"Error": {"Code": "404", "Message": "Not Found"}}, "HeadObject")
        data, content_type = self.objects[Key]
        return {"ContentLength": len(data), "ContentType": content_type}

    def get_object(self, Bucket, Key):
        if Key not in self.objects:
            raise ClientError({"Error": {"Code": "NoSuchKey", "Message": "Not Found"}}, "GetObject")
        data = self.objects[Key][0]
        body = FakeBody(data)
        self.bodies.append(body)
        return {"Body": body, "ContentLength": len(data)}

    def delete_object(self, Bucket, Key):
        self.objects.pop(Key, None)


class FakeQueue:
    """Records enqueued payloads instead of talking to Redis."""

    def __init__(self):
        self.jobs = []
        self.available = True
        self.count_error = False

    def enqueue(self, payload, attempt=1):
        if not self.available:
            raise QueueUnavailableError("Job queue is unavailable")
        job_id = f"summary-{payload.document_id}-{attempt}"
        self.jobs.append((job_id, payload))
        return job_id

    def ping(self):
        return self.available

    def pending_count(self):
        if self.count_error:
            raise QueueUnavailableError("Job queue is unavailable")
        return len(self.jobs)


class FakeCompletions:
    def __init__(self):
        self.calls = []
        self.content = SUMMARY_MARKDOWN
        self.error = None

    def create(self, **kwargs):
        self.calls.append(kwargs)
        if self.error is not None:
            raise self.error
        message = SimpleNamespace(content=self.content)
        return SimpleNamespace(choices=[SimpleNamespace(message=message)], model="gpt-test")


class FakeOpenAI:
    def __init__(self):
        self.completions = FakeCompletions()
        self.chat = SimpleNamespace(completions=self.completions)


@pytest.fixture(scope="session", autouse=True)
def test_dirs():
    """Cleanup the session data directory after all tests."""
    yield _TEST_DATA_DIR
    shutil.rmtree(_TEST_DATA_DIR, ignore_errors=True)


@pytest.fixture
def settings(tmp_path):
    return load_settings({
        "database": {"path": str(tmp_path / "summaries.db")},
        "storage": {"bucket": TEST_BUCKET, "max_upload_bytes": 1024 * 1024},
        "limits": {"summaries_per_month": 3, "uploads_per_minute": 100},
    })


@pytest.fixture
def s3_client():
    return FakeS3Client()


@pytest.fixture
def storage(s3_client):
    return StorageService(bucket=TEST_BUCKET, client=s3_client)


@pytest.fixture
def fake_queue():
    return FakeQueue()


@pytest.fixture
def database(settings):
    return SummaryDatabase(settings.database.path)


@pytest.fixture
def manager(database, storage, fake_queue, settings):
    return JobManager(database=database, storage=storage, queue=fake_queue, settings=settings)


@pytest.fixture
def openai_client():
    return FakeOpenAI()


@pytest.fixture
def pipeline(database, storage, openai_client, settings):
    summarizer = Summarizer(api_key=None, model="gpt-test", client=openai_client)
    return SummaryPipeline(
        database=database,
        storage=storage,
        summarizer=summarizer,
        max_upload_bytes=settings.storage.max_upload_bytes,
        max_input_chars=settings.summarizer.max_input_chars,
    )


@pytest.fixture
def limiter():
    return RateLimiter(requests_per_minute=100)


@pytest.fixture
def client(manager, limiter):
    """Create a test client wired to the in-memory queue and storage."""
    app.dependency_overrides[get_job_manager] = lambda: manager
    app.dependency_overrides[get_upload_limiter] = lambda: limiter
    with TestClient(app) as test_client:
        yield test_client
    app.dependency_overrides.clear()


@pytest.fixture
def user_headers():
    return {"X-User-Id": "user_123"}


@pytest.fixture
def sample_pdf():
    return make_pdf([
        "Quarterly report for the third quarter.",
        "Revenue grew by twelve percent compared to last year.",
        "The board approved the new product roadmap.",
    ])


@pytest.fixture
def upload_pdf(client, s3_client, user_headers, sample_pdf):
    """Run the presigned upload flow and return the registered document JSON."""
    def _upload(filename="report.pdf", data=None, headers=None):
        headers = headers or user_headers
        response = client.post("/uploads", json={"filename": filename}, headers=headers)
        assert response.status_code == 200, response.text
        file_key = response.json()["file_key"]
        s3_client.put(file_key, data if data is not None else sample_pdf)

        response = client.post(
            "/documents",
            json={"filename": filename, "file_key": file_key},
            headers=headers,
        )
        assert response.status_code == 202, response.text
        return response.json()

    return _upload

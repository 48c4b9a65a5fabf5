"""
Object storage for uploaded PDFs.

This module provides functionality for:
- Building per-user storage keys for uploads
- Generating presigned URLs for direct browser uploads and downloads
- Fetching uploaded files for the worker, from S3 or a plain HTTP(S) URL
- Removing objects when a document is deleted

The S3 bucket name is configured via the S3_BUCKET_NAME environment variable.
When no bucket is configured, storage-backed operations raise StorageError.
"""

from __future__ import annotations

import logging
from typing import Any, Dict, Optional
from urllib.parse import urlparse
from uuid import uuid4

import boto3
import httpx
from botocore.config import Config
from botocore.exceptions import BotoCoreError, ClientError
from omegaconf import DictConfig

from .exceptions import StorageError
from .utils import sanitize_filename

logger = logging.getLogger(__name__)

S3_SCHEME = "s3"


class StorageService:
    """
    Thin wrapper around an S3 bucket.

    Attributes:
        bucket: Target bucket name, empty when storage is not configured
        upload_prefix: Key prefix under which user uploads are placed
    """

    def __init__(
        self,
        bucket: str,
        region: Optional[str] = None,
        endpoint_url: Optional[str] = None,
        upload_prefix: str = "uploads",
        download_timeout: float = 60.0,
        client: Any = None,
        http_client: Optional[httpx.Client] = None,
    ) -> None:
        self.bucket = bucket or ""
        self.region = region
        self.endpoint_url = endpoint_url
        self.upload_prefix = upload_prefix.strip("/")
        self.download_timeout = download_timeout
        self._client = client
        self._http_client = http_client

    @classmethod
    def from_settings(cls, settings: DictConfig) -> "StorageService":
        storage = settings.storage
        return cls(
            bucket=storage.bucket,
            region=storage.region,
            endpoint_url=storage.endpoint_url,
            upload_prefix=storage.upload_prefix,
            download_timeout=storage.download_timeout,
        )

    def _get_client(self):
        """
        Get or create the S3 client.

        Note:
            Credentials are not checked here; credential errors surface on the
            first real request.
        """
        if not self.bucket:
            raise StorageError("Object storage is not configured")
        if self._client is None:
            try:
                self._client = boto3.client(
                    "s3",
                    region_name=self.region,
                    endpoint_url=self.endpoint_url,
                    config=Config(signature_version="s3v4"),
                )
            except BotoCoreError as exc:
                logger.warning("Failed to create S3 client: %s", exc)
                raise StorageError("Object storage is unavailable") from exc
        return self._client

    def is_configured(self) -> bool:
        return bool(self.bucket)

    def user_prefix(self, user_id: str) -> str:
        return f"{self.upload_prefix}/{user_id}/"

    def build_upload_key(self, user_id: str, filename: str) -> str:
        return f"{self.user_prefix(user_id)}{uuid4().hex}/{sanitize_filename(filename)}"

    def object_url(self, key: str) -> str:
        return f"{S3_SCHEME}://{self.bucket}/{key}"

    def key_from_url(self, file_url: str) -> Optional[str]:
        """Return the object key for an ``s3://`` URL in this bucket, else None."""
        parsed = urlparse(file_url)
        if parsed.scheme != S3_SCHEME or parsed.netloc != self.bucket:
            return None
        return parsed.path.lstrip("/") or None

    def create_upload_url(self, key: str, content_type: str, expiration: int = 900) -> str:
        """
        Generate a presigned PUT URL for a direct client upload.

        The client must send the same Content-Type header that was signed.
        """
        client = self._get_client()
        try:
            url = client.generate_presigned_url(
                "put_object",
                Params={"Bucket": self.bucket, "Key": key, "ContentType": content_type},
                ExpiresIn=expiration,
            )
        except (BotoCoreError, ClientError) as exc:
            logger.error("Failed to generate upload URL for %s: %s", key, exc)
            raise StorageError("Could not create upload URL") from exc
        logger.info("Generated upload URL for %s (expires in %ss)", key, expiration)
        return url

    def create_download_url(self, key: str, expiration: int = 3600) -> str:
        client = self._get_client()
        try:
            url = client.generate_presigned_url(
                "get_object",
                Params={"Bucket": self.bucket, "Key": key},
                ExpiresIn=expiration,
            )
        except (BotoCoreError, ClientError) as exc:
            logger.error("Failed to generate download URL for %s: %s", key, exc)
            raise StorageError("Could not create download URL") from exc
        return url

    def head(self, key: str) -> Optional[Dict[str, Any]]:
        """
        Look up object metadata.

        Returns:
            Dict with ``size`` and ``content_type``, or None if the object is missing
        """
        client = self._get_client()
        try:
            response = client.head_object(Bucket=self.bucket, Key=key)
        except ClientError as exc:
            code = str(exc.response.get("Error", {}).get("Code", ""))
            if code in {"404", "NoSuchKey", "NotFound"}:
                return None
            logger.error("S3 head_object failed for %s: %s", key, exc)
            raise StorageError("Could not read uploaded file metadata") from exc
        except BotoCoreError as exc:
            raise StorageError("Object storage is unavailable") from exc
        return {
            "size": int(response.get("ContentLength", 0)),
            "content_type": response.get("ContentType"),
        }

    def download(self, file_url: str, max_bytes: Optional[int] = None) -> bytes:
        """
        Fetch file contents from ``s3://`` or ``http(s)://`` URLs.

        The body is read in chunks and abandoned as soon as it grows past
        ``max_bytes``.

        Raises:
            StorageError: If the file cannot be fetched or exceeds ``max_bytes``
        """
        scheme = urlparse(file_url).scheme
        if scheme == S3_SCHEME:
            return self._download_s3(file_url, max_bytes)
        if scheme in {"http", "https"}:
            return self._download_http(file_url, max_bytes)
        raise StorageError(f"Unsupported file URL scheme: {scheme or 'none'}")

    @staticmethod
    def _too_large(max_bytes: int) -> StorageError:
        return StorageError(f"File is larger than the {max_bytes} byte limit")

    def _download_s3(self, file_url: str, max_bytes: Optional[int]) -> bytes:
        key = self.key_from_url(file_url)
        if key is None:
            raise StorageError("File URL does not point at the configured bucket")
        client = self._get_client()
        try:
            logger.info("Downloading s3://%s/%s", self.bucket, key)
            response = client.get_object(Bucket=self.bucket, Key=key)
            body = response["Body"]
            try:
                if max_bytes is None:
                    return body.read()
                if response.get("ContentLength", 0) > max_bytes:
                    raise self._too_large(max_bytes)
                data = body.read(max_bytes + 1)
                if len(data) > max_bytes:
                    raise self._too_large(max_bytes)
                return data
            finally:
                body.close()
        except ClientError as exc:
            logger.error("S3 download failed for %s: %s", key, exc)
            raise StorageError("Uploaded file could not be downloaded") from exc
        except BotoCoreError as exc:
            raise StorageError("Object storage is unavailable") from exc

    def _download_http(self, file_url: str, max_bytes: Optional[int]) -> bytes:
        client = self._http_client or httpx.Client(timeout=self.download_timeout, follow_redirects=True)
        try:
            logger.info("Downloading %s", file_url)
            with client.stream("GET", file_url) as response:
                response.raise_for_status()
                declared = response.headers.get("Content-Length")
                if max_bytes is not None and declared and declared.isdigit() and int(declared) > max_bytes:
                    raise self._too_large(max_bytes)

                buffer = bytearray()
                for chunk in response.iter_bytes():
                    buffer.extend(chunk)
                    if max_bytes is not None and len(buffer) > max_bytes:
                        raise self._too_large(max_bytes)
                return bytes(buffer)
        except httpx.HTTPStatusError as exc:
            raise StorageError(f"File download failed with HTTP {exc.response.status_code}") from exc
        except httpx.HTTPError as exc:
            raise StorageError(f"File download failed: {exc}") from exc
        finally:
            if self._http_client is None:
                client.close()

    def delete(self, key: str) -> None:
        client = self._get_client()
        try:
            client.delete_object(Bucket=self.bucket, Key=key)
            logger.info("Deleted s3://%s/%s", self.bucket, key)
        except (BotoCoreError, ClientError) as exc:
            logger.error("S3 delete failed for %s: %s", key, exc)
            raise StorageError("Could not delete stored file") from exc

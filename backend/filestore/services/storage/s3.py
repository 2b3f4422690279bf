"""S3-compatible storage: presigned PUT per upload with bounded retry, HeadObject verification.

Imported only when STORAGE_BACKEND=s3 (avoids boto3 in local mode).
"""
from __future__ import annotations

import logging
import time
from urllib.parse import quote

import httpx

from filestore.core.exceptions import BackendDeleteError, BackendUploadError, StorageBackendError, StorageConfigError
from filestore.core.logging import log_event
from filestore.core.metrics import observe_backend
from filestore.services.hashing import compute_digest
from filestore.services.storage.base import S3StorageConfig, StorageBackend, StorageBackendKind, StorageResult
from filestore.services.storage.keys import generate_key

logger = logging.getLogger(__name__)

_NOT_FOUND_CODES = ("404", "NoSuchKey", "NotFound")


def _get_client(config: S3StorageConfig):
    import boto3
    return boto3.client(
        "s3",
        region_name=config.region,
        endpoint_url=config.endpoint_url,
        aws_access_key_id=config.access_key_id,
        aws_secret_access_key=config.secret_access_key,
    )


def _error_code(exc: Exception) -> str | None:
    resp = getattr(exc, "response", None)
    if isinstance(resp, dict):
        return resp.get("Error", {}).get("Code")
    return None


class S3Storage(StorageBackend):
    """S3 backend: uploads go through a presigned PUT URL (httpx), everything else through boto3."""

    def __init__(
        self,
        config: S3StorageConfig,
        client=None,
        http_client: httpx.Client | None = None,
        sleep=time.sleep,
    ) -> None:
        if not config.bucket:
            raise StorageConfigError("S3 storage requires s3_bucket to be set")
        if config.max_attempts < 1:
            raise StorageConfigError("upload_max_attempts must be at least 1")
        self._config = config
        self._bucket = config.bucket
        self._client = client if client is not None else _get_client(config)
        self._http = http_client if http_client is not None else httpx.Client(timeout=60.0)
        self._sleep = sleep

    @property
    def kind(self) -> StorageBackendKind:
        return StorageBackendKind.S3

    def upload(
        self,
        data: bytes,
        size_hint: int,
        original_filename: str,
        content_type: str | None,
        logical_path: str,
    ) -> StorageResult:
        if not data:
            return StorageResult.failure(self.kind, "file is empty", original_filename)
        start = time.perf_counter()
        key = generate_key(original_filename, logical_path, date_partitioned=self._config.date_partitioning)
        content_type = content_type or "application/octet-stream"
        try:
            upload_url = self._client.generate_presigned_url(
                "put_object",
                Params={"Bucket": self._bucket, "Key": key, "ContentType": content_type},
                ExpiresIn=self._config.upload_url_ttl_seconds,
            )
        except Exception as e:
            raise BackendUploadError(f"Could not obtain upload credential: {e}", self.kind, key) from e
        self._put_with_retry(upload_url, data, content_type, key)
        try:
            meta = self._head(key)
        except Exception as e:
            self._discard(key)
            raise BackendUploadError(f"Upload could not be verified: {e}", self.kind, key) from e
        if meta is None or meta.get("ContentLength") != len(data):
            self._discard(key)
            raise BackendUploadError("Upload verification failed: size mismatch or object missing", self.kind, key)
        observe_backend(self.kind.value, "upload", time.perf_counter() - start)
        log_event(logger, "object_stored", backend=self.kind.value, bucket=self._bucket, key=key, size=len(data))
        return StorageResult.ok(
            backend=self.kind,
            key=key,
            url=self.resolve_url(key),
            original_filename=original_filename,
            size=len(data),
            content_type=content_type,
            digest=compute_digest(data),
            logical_path=logical_path,
        )

    def _put_with_retry(self, upload_url: str, data: bytes, content_type: str, key: str) -> None:
        attempts = self._config.max_attempts
        for attempt in range(1, attempts + 1):
            try:
                r = self._http.put(upload_url, content=data, headers={"Content-Type": content_type})
                r.raise_for_status()
                return
            except httpx.HTTPError as e:
                if attempt == attempts:
                    log_event(
                        logger, "upload_failed", logging.ERROR,
                        backend=self.kind.value, key=key, attempts=attempts, error=str(e),
                    )
                    raise BackendUploadError(
                        f"Upload failed after {attempts} attempts: {e}", self.kind, key
                    ) from e
                backoff = self._config.backoff_seconds * attempt
                logger.warning("Upload attempt %d/%d for %s failed (%s); retrying in %.1fs",
                               attempt, attempts, key, e, backoff)
                self._sleep(backoff)

    def _head(self, key: str) -> dict | None:
        try:
            return self._client.head_object(Bucket=self._bucket, Key=key)
        except Exception as e:
            if _error_code(e) in _NOT_FOUND_CODES:
                return None
            raise

    def _discard(self, key: str) -> None:
        try:
            self._client.delete_object(Bucket=self._bucket, Key=key)
        except Exception as e:
            log_event(
                logger, "orphaned_object", logging.ERROR,
                backend=self.kind.value, bucket=self._bucket, key=key, error=str(e),
            )

    def delete(self, key: str) -> bool:
        if not key or not key.strip():
            logger.warning("Delete skipped: empty key")
            return False
        try:
            if self._head(key) is None:
                return False
            self._client.delete_object(Bucket=self._bucket, Key=key)
        except Exception as e:
            raise BackendDeleteError(f"Failed to delete object: {e}", self.kind, key) from e
        log_event(logger, "object_deleted", backend=self.kind.value, bucket=self._bucket, key=key)
        return True

    def resolve_url(self, key: str) -> str | None:
        if not key or not key.strip():
            return None
        if self._config.signed_urls:
            return self._client.generate_presigned_url(
                "get_object",
                Params={"Bucket": self._bucket, "Key": key},
                ExpiresIn=self._config.signed_url_ttl_seconds,
            )
        protocol = "https" if self._config.use_https else "http"
        return f"{protocol}://{self._domain()}/{quote(key)}"

    def exists(self, key: str) -> bool:
        if not key or not key.strip():
            return False
        try:
            return self._head(key) is not None
        except Exception as e:
            raise StorageBackendError(f"Existence check failed: {e}", self.kind, key) from e

    def diagnostic_info(self) -> str:
        return (
            f"s3 object storage [bucket: {self._bucket}, domain: {self._domain()}, "
            f"region: {self._config.region}, signed_urls: {self._config.signed_urls}]"
        )

    def _domain(self) -> str:
        domain = self._config.public_domain
        if domain:
            # Domain may be configured with a scheme
            return domain.split("://", 1)[-1].rstrip("/")
        if self._config.endpoint_url:
            endpoint = self._config.endpoint_url.split("://", 1)[-1].rstrip("/")
            return f"{endpoint}/{self._bucket}"
        return f"{self._bucket}.s3.{self._config.region}.amazonaws.com"

    def close(self) -> None:
        self._http.close()

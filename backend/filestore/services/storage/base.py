"""Storage backend interface: upload, delete, resolve URL, exists. Implementations: local (disk) or S3."""
from __future__ import annotations

from abc import ABC, abstractmethod
from dataclasses import dataclass
from enum import Enum

from pydantic import BaseModel, ConfigDict


class StorageBackendKind(str, Enum):
    LOCAL = "local"
    S3 = "s3"  # any S3-compatible store (AWS, MinIO, Qiniu Kodo, OSS gateway)

    @classmethod
    def from_code(cls, code: str | None) -> StorageBackendKind | None:
        """Case-insensitive lookup; None for unknown or empty codes."""
        if not code or not code.strip():
            return None
        try:
            return cls(code.strip().lower())
        except ValueError:
            return None

    @property
    def is_cloud(self) -> bool:
        return self is not StorageBackendKind.LOCAL


class LocalStorageConfig(BaseModel):
    model_config = ConfigDict(frozen=True)

    root_path: str = "./uploads"
    url_prefix: str = "/uploads"
    date_partitioning: bool = True


class S3StorageConfig(BaseModel):
    model_config = ConfigDict(frozen=True)

    bucket: str
    region: str = "us-east-1"
    endpoint_url: str | None = None
    access_key_id: str | None = None
    secret_access_key: str | None = None
    public_domain: str | None = None
    use_https: bool = True
    signed_urls: bool = False
    signed_url_ttl_seconds: int = 3600
    upload_url_ttl_seconds: int = 300
    max_attempts: int = 3
    backoff_seconds: float = 1.0
    date_partitioning: bool = True


@dataclass
class StorageResult:
    """Outcome of one backend upload attempt."""

    success: bool
    backend: StorageBackendKind
    key: str | None = None
    url: str | None = None
    original_filename: str | None = None
    size: int = 0
    content_type: str | None = None
    digest: str | None = None
    logical_path: str | None = None
    error: str | None = None

    @classmethod
    def ok(
        cls,
        backend: StorageBackendKind,
        key: str,
        url: str | None,
        original_filename: str,
        size: int,
        content_type: str | None,
        digest: str,
        logical_path: str,
    ) -> StorageResult:
        return cls(
            success=True,
            backend=backend,
            key=key,
            url=url,
            original_filename=original_filename,
            size=size,
            content_type=content_type,
            digest=digest,
            logical_path=logical_path,
        )

    @classmethod
    def failure(cls, backend: StorageBackendKind, error: str, original_filename: str | None = None) -> StorageResult:
        return cls(success=False, backend=backend, error=error, original_filename=original_filename)


class StorageBackend(ABC):
    """Abstract storage medium. One instance is chosen at startup and injected where needed."""

    @property
    @abstractmethod
    def kind(self) -> StorageBackendKind:
        ...

    @abstractmethod
    def upload(
        self,
        data: bytes,
        size_hint: int,
        original_filename: str,
        content_type: str | None,
        logical_path: str,
    ) -> StorageResult:
        """Write data under a fresh key derived from logical_path.

        Success is reported only after the write is verified. Raise BackendUploadError on I/O failure.
        """
        ...

    @abstractmethod
    def delete(self, key: str) -> bool:
        """Remove the object. False if key is empty, invalid or already gone; raise BackendDeleteError on failure."""
        ...

    @abstractmethod
    def resolve_url(self, key: str) -> str | None:
        """Public (or signed) URL for key; None for an empty or invalid key."""
        ...

    @abstractmethod
    def exists(self, key: str) -> bool:
        ...

    @abstractmethod
    def diagnostic_info(self) -> str:
        """Active configuration summary for logs and health output. Never includes secrets."""
        ...

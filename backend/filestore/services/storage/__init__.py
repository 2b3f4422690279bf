"""Storage backend factory: local (disk) or S3. S3 backend is loaded only when STORAGE_BACKEND=s3 (no boto3 in local)."""
from __future__ import annotations

from typing import TYPE_CHECKING

from filestore.core.exceptions import StorageConfigError
from filestore.services.storage.base import StorageBackend, StorageBackendKind, StorageResult
from filestore.services.storage.local import LocalStorage

if TYPE_CHECKING:
    from filestore.core.config import Settings

__all__ = ["StorageBackend", "StorageBackendKind", "StorageResult", "LocalStorage", "get_storage"]


def get_storage(settings: Settings | None = None) -> StorageBackend:
    """Build the configured storage backend. Avoids importing boto3 when backend is local."""
    if settings is None:
        from filestore.core.config import get_settings
        settings = get_settings()
    kind = StorageBackendKind.from_code(settings.storage_backend)
    if kind is StorageBackendKind.S3:
        from filestore.services.storage.s3 import S3Storage
        return S3Storage(settings.s3_storage_config())
    if kind is StorageBackendKind.LOCAL:
        return LocalStorage(settings.local_storage_config())
    raise StorageConfigError(f"Unsupported storage backend: {settings.storage_backend}")

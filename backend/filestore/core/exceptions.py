"""Storage error taxonomy. Backend errors carry backend kind, operation and key for diagnostics."""
from __future__ import annotations


class StorageError(Exception):
    """Base for every error raised by the file storage core."""


class StorageConfigError(StorageError):
    """Backend cannot be built from the active configuration."""


class FileValidationError(StorageError):
    """Upload rejected before any I/O (size, type, filename)."""

    def __init__(self, reason: str) -> None:
        super().__init__(reason)
        self.reason = reason


class FileRecordNotFoundError(StorageError):
    def __init__(self, file_id: int) -> None:
        super().__init__(f"File not found: {file_id}")
        self.file_id = file_id


class StorageBackendError(StorageError):
    """I/O or credential failure on the storage medium."""

    operation = "unknown"

    def __init__(self, message: str, backend: object = None, key: str | None = None) -> None:
        super().__init__(message)
        self.backend = backend
        self.key = key

    def __str__(self) -> str:
        msg = super().__str__()
        parts = []
        if self.backend is not None:
            parts.append(f"backend={getattr(self.backend, 'value', self.backend)}")
        parts.append(f"operation={self.operation}")
        if self.key:
            parts.append(f"key={self.key}")
        return f"{msg} [{', '.join(parts)}]"


class BackendUploadError(StorageBackendError):
    operation = "upload"


class BackendDeleteError(StorageBackendError):
    operation = "delete"


class PersistenceError(StorageError):
    """Metadata write failed after a successful backend upload.

    The object at ``key`` was rolled back unless ``rollback_error`` is set, in
    which case it is an orphan that needs manual cleanup.
    """

    def __init__(self, message: str, key: str, rollback_error: Exception | None = None) -> None:
        super().__init__(message)
        self.key = key
        self.rollback_error = rollback_error

    @property
    def orphaned(self) -> bool:
        return self.rollback_error is not None

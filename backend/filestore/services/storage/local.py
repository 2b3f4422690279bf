"""Local disk storage: date-partitioned keys under a root directory, atomic writes, empty-dir pruning."""
import logging
import os
import tempfile
import time
from pathlib import Path

from filestore.core.exceptions import BackendDeleteError, BackendUploadError, StorageConfigError
from filestore.core.logging import log_event
from filestore.core.metrics import observe_backend
from filestore.services.hashing import compute_digest
from filestore.services.storage.base import LocalStorageConfig, StorageBackend, StorageBackendKind, StorageResult
from filestore.services.storage.keys import generate_key

logger = logging.getLogger(__name__)

_WRITE_ATTEMPTS = 3


class LocalStorage(StorageBackend):
    """Disk storage: objects live at <root>/<key>; URLs are <url_prefix>/<key>."""

    def __init__(self, config: LocalStorageConfig) -> None:
        if not config.root_path or not config.root_path.strip():
            raise StorageConfigError("Local storage requires root_path to be set")
        self._config = config
        self._root = Path(config.root_path).expanduser().resolve()
        try:
            self._root.mkdir(parents=True, exist_ok=True)
        except OSError as e:
            raise StorageConfigError(f"Cannot create storage root {self._root}: {e}") from e
        if not os.access(self._root, os.W_OK):
            raise StorageConfigError(f"Storage root is not writable: {self._root}")
        self._url_prefix = _normalize_url_prefix(config.url_prefix)

    @property
    def kind(self) -> StorageBackendKind:
        return StorageBackendKind.LOCAL

    @property
    def root(self) -> Path:
        return self._root

    def path_for(self, key: str | None) -> Path | None:
        """Absolute path for key, or None if key is empty or escapes the root."""
        if not key or not key.strip() or key.startswith(("/", "\\")):
            return None
        path = (self._root / key).resolve()
        if path == self._root or self._root not in path.parents:
            return None
        return path

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
        target = self._root / key
        try:
            self._write_atomic(target, data)
            written = target.stat().st_size
        except OSError as e:
            log_event(logger, "upload_failed", logging.ERROR, backend=self.kind.value, key=key, error=str(e))
            raise BackendUploadError(f"Failed to write file: {e}", self.kind, key) from e
        if written != len(data):
            target.unlink(missing_ok=True)
            raise BackendUploadError(
                f"Short write: expected {len(data)} bytes, found {written}", self.kind, key
            )
        if size_hint and size_hint != written:
            logger.warning("Declared size %s differs from written size %s for %s", size_hint, written, key)
        observe_backend(self.kind.value, "upload", time.perf_counter() - start)
        log_event(logger, "object_stored", backend=self.kind.value, key=key, size=written)
        return StorageResult.ok(
            backend=self.kind,
            key=key,
            url=self.resolve_url(key),
            original_filename=original_filename,
            size=written,
            content_type=content_type,
            digest=compute_digest(data),
            logical_path=logical_path,
        )

    def _write_atomic(self, target: Path, data: bytes) -> None:
        """Temp file in the target directory, fsync, rename into place.

        A concurrent delete may prune the partition directory between mkdir and mkstemp;
        that surfaces as FileNotFoundError and the directory is recreated.
        """
        for attempt in range(1, _WRITE_ATTEMPTS + 1):
            target.parent.mkdir(parents=True, exist_ok=True)
            try:
                fd, tmp_name = tempfile.mkstemp(dir=target.parent, prefix=".upload-", suffix=".part")
            except FileNotFoundError:
                if attempt == _WRITE_ATTEMPTS:
                    raise
                logger.debug("Partition %s vanished before write; recreating", target.parent)
                continue
            try:
                with os.fdopen(fd, "wb") as fh:
                    fh.write(data)
                    fh.flush()
                    os.fsync(fh.fileno())
                os.replace(tmp_name, target)
            except BaseException:
                Path(tmp_name).unlink(missing_ok=True)
                raise
            return

    def delete(self, key: str) -> bool:
        path = self.path_for(key)
        if path is None:
            logger.warning("Delete skipped: empty or invalid key %r", key)
            return False
        try:
            path.unlink()
        except FileNotFoundError:
            return False
        except OSError as e:
            raise BackendDeleteError(f"Failed to delete file: {e}", self.kind, key) from e
        self._prune_empty_dirs(path.parent)
        log_event(logger, "object_deleted", backend=self.kind.value, key=key)
        return True

    def resolve_url(self, key: str) -> str | None:
        if self.path_for(key) is None:
            return None
        return f"{self._url_prefix}/{key}"

    def exists(self, key: str) -> bool:
        path = self.path_for(key)
        return path is not None and path.is_file()

    def diagnostic_info(self) -> str:
        return (
            f"local disk storage [root: {self._root}, url_prefix: {self._url_prefix}, "
            f"date_partitioning: {self._config.date_partitioning}]"
        )

    def usage(self) -> dict:
        """File count and total bytes under the root (skips in-flight temp files)."""
        count = 0
        total = 0
        for p in self._root.rglob("*"):
            if p.is_file() and not p.name.startswith(".upload-"):
                count += 1
                total += p.stat().st_size
        return {"file_count": count, "total_bytes": total}

    def _prune_empty_dirs(self, directory: Path) -> None:
        # Stop at the root; a concurrent upload may repopulate a directory at any time.
        while directory != self._root and self._root in directory.parents:
            try:
                directory.rmdir()
            except OSError:
                return
            logger.debug("Removed empty directory %s", directory)
            directory = directory.parent


def _normalize_url_prefix(prefix: str | None) -> str:
    prefix = (prefix or "/uploads").strip()
    if "://" not in prefix and not prefix.startswith("/"):
        prefix = "/" + prefix
    return prefix.rstrip("/")

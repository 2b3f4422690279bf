"""File record manager: upload -> persist metadata -> compensate on persistence failure.

Also owns the record lifecycle: soft delete, restore, permanent delete (backend first), purge and
integrity checks. Backend calls run in a worker thread so retries and backoff never block the loop.
"""
from __future__ import annotations

import asyncio
import logging
from collections.abc import Iterable
from datetime import datetime, timedelta, timezone

from sqlalchemy import or_, select, update
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.ext.asyncio import AsyncSession

from filestore.core.exceptions import (
    BackendDeleteError,
    BackendUploadError,
    FileRecordNotFoundError,
    FileValidationError,
    PersistenceError,
    StorageError,
)
from filestore.core.logging import log_event
from filestore.core.metrics import record_delete, record_upload
from filestore.db.models import FileRecord, FileStatus, utcnow
from filestore.schemas import BatchUploadError, BatchUploadResult, FileVO, IntegrityReport, UploadRequest
from filestore.services.storage.base import StorageBackend, StorageResult
from filestore.services.storage.keys import key_basename, normalize_logical_path
from filestore.services.upload_validation import UploadPolicies, UploadPolicy, ensure_valid, file_extension

logger = logging.getLogger(__name__)


def _check_logical_path(logical_path: str | None) -> None:
    try:
        normalize_logical_path(logical_path)
    except ValueError as e:
        raise FileValidationError(str(e)) from e


class FileRecordService:
    """Coordinates one storage backend with the file metadata table for a single session."""

    def __init__(self, db: AsyncSession, storage: StorageBackend, policies: UploadPolicies) -> None:
        self._db = db
        self._storage = storage
        self._policies = policies

    @property
    def backend(self) -> str:
        return self._storage.kind.value

    # ----- Upload -----

    async def upload(
        self,
        request: UploadRequest,
        *,
        uploader_id: str | None = None,
        client_ip: str | None = None,
        is_public: bool = True,
        policy: UploadPolicy | None = None,
    ) -> FileVO:
        policy = policy or self._policies.for_path(request.logical_path)
        # Limits apply to the bytes actually received, never to the declared size
        size = len(request.content)
        if request.size is not None and request.size != size:
            logger.warning("Declared size %s for %s differs from payload size %s",
                           request.size, request.filename, size)
        try:
            ensure_valid(request.filename, size, policy)
            _check_logical_path(request.logical_path)
        except FileValidationError as e:
            record_upload(self.backend, "rejected")
            log_event(logger, "upload_rejected", filename=request.filename, reason=e.reason)
            raise

        try:
            result = await asyncio.to_thread(
                self._storage.upload,
                request.content,
                size,
                request.filename,
                request.content_type,
                request.logical_path,
            )
        except BackendUploadError:
            record_upload(self.backend, "failed")
            raise
        if not result.success or not result.key:
            record_upload(self.backend, "failed")
            raise BackendUploadError(result.error or "upload failed", self._storage.kind)

        record = self._build_record(result, uploader_id, client_ip, is_public)
        try:
            self._db.add(record)
            await self._db.commit()
        except SQLAlchemyError as e:
            try:
                await self._db.rollback()
            except SQLAlchemyError as rollback_exc:
                logger.error("Session rollback after failed commit also failed for %s: %s", result.key, rollback_exc)
            await self._compensate(result.key, e)
            # _compensate raises when the rollback itself fails; reaching here means the object is gone
            record_upload(self.backend, "rolled_back")
            raise PersistenceError(f"Failed to save file record: {e}", result.key) from e

        record_upload(self.backend, "committed", result.size)
        log_event(
            logger, "upload_committed",
            file_id=record.id, backend=self.backend, key=result.key,
            size=result.size, uploader_id=uploader_id, client_ip=client_ip,
        )
        return FileVO.from_record(record)

    async def upload_image(self, request: UploadRequest, **kwargs) -> FileVO:
        """Upload restricted to image/* content types, under the image policy."""
        if not (request.content_type or "").lower().startswith("image/"):
            record_upload(self.backend, "rejected")
            raise FileValidationError("only image files can be uploaded")
        kwargs.setdefault("policy", self._policies.image)
        return await self.upload(request, **kwargs)

    async def upload_many(self, requests: Iterable[UploadRequest], **kwargs) -> BatchUploadResult:
        """Upload each file independently; failures are collected, never raised."""
        out = BatchUploadResult()
        for req in requests:
            try:
                out.files.append(await self.upload(req, **kwargs))
            except StorageError as e:
                logger.warning("Batch upload of %s failed: %s", req.filename, e)
                out.errors.append(BatchUploadError(filename=req.filename, reason=str(e)))
        if out.partial:
            log_event(logger, "batch_upload_partial", succeeded=len(out.files), failed=len(out.errors))
        return out

    def _build_record(
        self,
        result: StorageResult,
        uploader_id: str | None,
        client_ip: str | None,
        is_public: bool,
    ) -> FileRecord:
        return FileRecord(
            original_name=result.original_filename or key_basename(result.key),
            file_name=key_basename(result.key),
            storage_key=result.key,
            storage_backend=result.backend.value,
            storage_path=result.logical_path,
            file_url=result.url,
            file_extension=file_extension(result.original_filename) or None,
            file_size=result.size,
            mime_type=result.content_type,
            content_md5=result.digest,
            uploader_id=uploader_id,
            upload_ip=client_ip,
            is_public=is_public,
            download_count=0,
            status=FileStatus.ACTIVE.value,
        )

    async def _compensate(self, key: str, cause: Exception) -> None:
        """Remove the object written for a record that could not be saved."""
        try:
            await asyncio.to_thread(self._storage.delete, key)
        except Exception as rollback_error:
            record_upload(self.backend, "failed")
            log_event(
                logger, "orphaned_object", logging.ERROR,
                backend=self.backend, key=key, error=str(rollback_error), cause=str(cause),
            )
            raise PersistenceError(
                f"Failed to save file record: {cause}; rollback of {key} also failed",
                key,
                rollback_error=rollback_error,
            ) from cause
        log_event(logger, "upload_rolled_back", logging.WARNING, backend=self.backend, key=key, cause=str(cause))

    # ----- Lookups -----

    async def _get_record(self, file_id: int) -> FileRecord:
        record = await self._db.get(FileRecord, file_id)
        if record is None:
            raise FileRecordNotFoundError(file_id)
        return record

    async def get_file(self, file_id: int) -> FileVO:
        record = await self._get_record(file_id)
        if not record.is_active:
            raise FileRecordNotFoundError(file_id)
        return FileVO.from_record(record, url=self._url_for(record))

    async def get_url(self, file_id: int) -> str | None:
        record = await self._db.get(FileRecord, file_id)
        if record is None or not record.is_active:
            return None
        return self._url_for(record)

    async def list_files(
        self,
        *,
        uploader_id: str | None = None,
        status: FileStatus | None = FileStatus.ACTIVE,
        category: str | None = None,
        keyword: str | None = None,
        offset: int = 0,
        limit: int = 50,
    ) -> list[FileVO]:
        """Newest first. category is "image", "document" or a single extension; keyword matches names and remark.

        status=None lists every record regardless of status.
        """
        stmt = select(FileRecord)
        if status is not None:
            stmt = stmt.where(FileRecord.status == FileStatus(status).value)
        if uploader_id:
            stmt = stmt.where(FileRecord.uploader_id == uploader_id)
        if category and category.strip():
            extensions = self._category_extensions(category)
            stmt = stmt.where(FileRecord.file_extension.in_(sorted(extensions)))
        if keyword and keyword.strip():
            pattern = f"%{keyword.strip()}%"
            stmt = stmt.where(or_(
                FileRecord.original_name.ilike(pattern),
                FileRecord.file_name.ilike(pattern),
                FileRecord.remark.ilike(pattern),
            ))
        stmt = (
            stmt.order_by(FileRecord.created_at.desc(), FileRecord.id.desc())
            .offset(max(offset, 0))
            .limit(max(min(limit, 500), 1))
        )
        rows = await self._db.execute(stmt)
        return [FileVO.from_record(r, url=self._url_for(r) if r.is_active else None) for r in rows.scalars().all()]

    def _category_extensions(self, category: str) -> frozenset[str]:
        name = category.strip().lower()
        if name == "image":
            return self._policies.image.allowed_extensions
        if name == "document":
            return self._policies.document.allowed_extensions
        return frozenset({name.lstrip(".")})

    def _url_for(self, record: FileRecord) -> str | None:
        if record.storage_backend == self.backend:
            return self._storage.resolve_url(record.storage_key)
        return record.file_url

    # ----- Lifecycle -----

    async def update_file_info(
        self, file_id: int, original_name: str | None = None, remark: str | None = None
    ) -> FileVO:
        record = await self._get_record(file_id)
        if not record.is_active:
            raise FileRecordNotFoundError(file_id)
        if original_name and original_name.strip():
            record.original_name = original_name.strip()
        if remark is not None:
            record.remark = remark
        await self._db.commit()
        return FileVO.from_record(record, url=self._url_for(record))

    async def increment_download_count(self, file_id: int) -> bool:
        result = await self._db.execute(
            update(FileRecord)
            .where(FileRecord.id == file_id, FileRecord.status == FileStatus.ACTIVE.value)
            .values(download_count=FileRecord.download_count + 1)
        )
        await self._db.commit()
        return result.rowcount > 0

    async def delete(self, file_id: int, permanent: bool = False) -> bool:
        if permanent:
            return await self.permanent_delete(file_id)
        return await self.soft_delete(file_id)

    async def soft_delete(self, file_id: int) -> bool:
        """Mark the record deleted. The backend object is left untouched."""
        record = await self._get_record(file_id)
        if not record.is_active:
            return True
        record.status = FileStatus.DELETED.value
        record.updated_at = utcnow()
        await self._db.commit()
        log_event(logger, "file_soft_deleted", file_id=file_id, key=record.storage_key)
        return True

    async def batch_soft_delete(self, file_ids: Iterable[int]) -> int:
        ids = list(file_ids)
        if not ids:
            return 0
        result = await self._db.execute(
            update(FileRecord)
            .where(FileRecord.id.in_(ids), FileRecord.status == FileStatus.ACTIVE.value)
            .values(status=FileStatus.DELETED.value, updated_at=utcnow())
        )
        await self._db.commit()
        return result.rowcount

    async def restore(self, file_id: int) -> bool:
        """Clear the deleted flag. Does not check that the backend object still exists."""
        record = await self._get_record(file_id)
        if record.is_active:
            return True
        record.status = FileStatus.ACTIVE.value
        record.updated_at = utcnow()
        await self._db.commit()
        log_event(logger, "file_restored", file_id=file_id, key=record.storage_key)
        return True

    async def permanent_delete(self, file_id: int) -> bool:
        """Delete the backend object, then the record. A backend failure keeps the record and raises."""
        record = await self._get_record(file_id)
        key = record.storage_key
        if record.storage_backend != self.backend:
            raise BackendDeleteError(
                f"Record is stored on '{record.storage_backend}' but the active backend is '{self.backend}'",
                self._storage.kind,
                key,
            )
        try:
            deleted = await asyncio.to_thread(self._storage.delete, key)
        except BackendDeleteError:
            record_delete(self.backend, "error")
            log_event(logger, "permanent_delete_failed", logging.ERROR, file_id=file_id, backend=self.backend, key=key)
            raise
        record_delete(self.backend, "deleted" if deleted else "absent")
        if not deleted:
            logger.warning("Object %s already absent from %s; removing record %s", key, self.backend, file_id)
        await self._db.delete(record)
        await self._db.commit()
        log_event(logger, "file_permanently_deleted", file_id=file_id, backend=self.backend, key=key)
        return True

    # ----- Maintenance -----

    async def purge_deleted(self, older_than_days: int) -> int:
        """Permanently delete records soft-deleted more than older_than_days ago. Returns count purged."""
        cutoff = datetime.now(timezone.utc) - timedelta(days=older_than_days)
        rows = await self._db.execute(
            select(FileRecord.id).where(
                FileRecord.status == FileStatus.DELETED.value,
                FileRecord.updated_at < cutoff,
            )
        )
        purged = 0
        for file_id in rows.scalars().all():
            try:
                await self.permanent_delete(file_id)
                purged += 1
            except StorageError as e:
                logger.error("Purge of file %s failed; record kept: %s", file_id, e)
        log_event(logger, "purge_complete", purged=purged, older_than_days=older_than_days)
        return purged

    async def check_integrity(self) -> IntegrityReport:
        """Probe the active backend for every active record and list missing keys."""
        rows = await self._db.execute(
            select(FileRecord).where(FileRecord.status == FileStatus.ACTIVE.value).order_by(FileRecord.id)
        )
        report = IntegrityReport(backend=self.backend, total_checked=0)
        for record in rows.scalars().all():
            if record.storage_backend != self.backend:
                report.skipped_other_backend += 1
                continue
            report.total_checked += 1
            if not await asyncio.to_thread(self._storage.exists, record.storage_key):
                report.missing.append(record.storage_key)
        log_event(
            logger, "integrity_check", backend=self.backend,
            checked=report.total_checked, missing=report.missing_count,
        )
        return report

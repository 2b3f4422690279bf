"""Pydantic schemas: upload requests and the public file view."""
import mimetypes
from datetime import datetime
from pathlib import Path
from typing import BinaryIO

from pydantic import BaseModel, ConfigDict, Field, model_validator

from filestore.db.models import FileRecord

_IMAGE_EXTENSIONS = frozenset({"jpg", "jpeg", "png", "gif", "bmp", "webp"})


def _config_forbid(**kwargs):
    return ConfigDict(extra="forbid", **kwargs)


class UploadRequest(BaseModel):
    """One file to upload. Built per call by the caller (multipart decoder, CLI) and discarded afterwards."""

    model_config = _config_forbid()
    content: bytes
    filename: str
    content_type: str | None = None
    logical_path: str = "files"
    size: int | None = Field(default=None, ge=0)

    @model_validator(mode="after")
    def _fill_size(self):
        if self.size is None:
            self.size = len(self.content)
        return self

    @classmethod
    def from_stream(
        cls,
        fh: BinaryIO,
        filename: str,
        logical_path: str = "files",
        content_type: str | None = None,
    ) -> "UploadRequest":
        content = fh.read()
        if content_type is None:
            content_type, _ = mimetypes.guess_type(filename)
        return cls(content=content, filename=filename, content_type=content_type, logical_path=logical_path)

    @classmethod
    def from_path(cls, path: str | Path, logical_path: str = "files") -> "UploadRequest":
        p = Path(path)
        with p.open("rb") as fh:
            return cls.from_stream(fh, p.name, logical_path=logical_path)


class FileVO(BaseModel):
    model_config = _config_forbid(from_attributes=True)
    id: int
    url: str | None
    original_name: str
    file_name: str
    storage_key: str
    storage_backend: str
    storage_path: str | None
    file_extension: str | None
    file_size: int
    mime_type: str | None
    content_md5: str | None
    is_public: bool
    is_image: bool
    download_count: int
    status: str
    remark: str | None
    created_at: datetime | None
    updated_at: datetime | None

    @classmethod
    def from_record(cls, record: FileRecord, url: str | None = None) -> "FileVO":
        ext = (record.file_extension or "").lower()
        return cls(
            id=record.id,
            url=url if url is not None else record.file_url,
            original_name=record.original_name,
            file_name=record.file_name,
            storage_key=record.storage_key,
            storage_backend=record.storage_backend,
            storage_path=record.storage_path,
            file_extension=record.file_extension,
            file_size=record.file_size,
            mime_type=record.mime_type,
            content_md5=record.content_md5,
            is_public=record.is_public,
            is_image=ext in _IMAGE_EXTENSIONS,
            download_count=record.download_count or 0,
            status=record.status,
            remark=record.remark,
            created_at=record.created_at,
            updated_at=record.updated_at,
        )


class BatchUploadError(BaseModel):
    model_config = _config_forbid()
    filename: str
    reason: str


class BatchUploadResult(BaseModel):
    """Per-file outcome of a batch; failures never abort the rest."""

    model_config = _config_forbid()
    files: list[FileVO] = Field(default_factory=list)
    errors: list[BatchUploadError] = Field(default_factory=list)

    @property
    def partial(self) -> bool:
        return bool(self.errors)


class IntegrityReport(BaseModel):
    model_config = _config_forbid()
    backend: str
    total_checked: int
    missing: list[str] = Field(default_factory=list)
    skipped_other_backend: int = 0

    @property
    def missing_count(self) -> int:
        return len(self.missing)

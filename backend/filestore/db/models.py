"""SQLAlchemy models: file metadata records."""
import enum
from datetime import datetime, timezone

from sqlalchemy import BigInteger, Boolean, DateTime, Index, Integer, Text
from sqlalchemy.orm import DeclarativeBase, Mapped, mapped_column

# BIGSERIAL on Postgres; plain INTEGER PRIMARY KEY on SQLite so autoincrement works there too.
_BigId = BigInteger().with_variant(Integer, "sqlite")


def utcnow() -> datetime:
    return datetime.now(timezone.utc)


class Base(DeclarativeBase):
    pass


class FileStatus(str, enum.Enum):
    ACTIVE = "active"
    DELETED = "deleted"


class FileRecord(Base):
    """One stored object, addressed by (storage_backend, storage_key)."""
    __tablename__ = "files"

    id: Mapped[int] = mapped_column(_BigId, primary_key=True, autoincrement=True)
    original_name: Mapped[str] = mapped_column(Text, nullable=False)
    file_name: Mapped[str] = mapped_column(Text, nullable=False)  # last key segment
    storage_key: Mapped[str] = mapped_column(Text, nullable=False)
    storage_backend: Mapped[str] = mapped_column(Text, nullable=False)  # local | s3
    storage_path: Mapped[str | None] = mapped_column(Text, nullable=True)  # logical path, e.g. avatars
    file_url: Mapped[str | None] = mapped_column(Text, nullable=True)
    file_extension: Mapped[str | None] = mapped_column(Text, nullable=True)
    file_size: Mapped[int] = mapped_column(BigInteger, nullable=False)
    mime_type: Mapped[str | None] = mapped_column(Text, nullable=True)
    content_md5: Mapped[str | None] = mapped_column(Text, nullable=True)
    uploader_id: Mapped[str | None] = mapped_column(Text, nullable=True)
    upload_ip: Mapped[str | None] = mapped_column(Text, nullable=True)
    is_public: Mapped[bool] = mapped_column(Boolean, nullable=False, default=True)
    download_count: Mapped[int] = mapped_column(Integer, nullable=False, default=0)
    status: Mapped[str] = mapped_column(Text, nullable=False, default=FileStatus.ACTIVE.value)
    remark: Mapped[str | None] = mapped_column(Text, nullable=True)
    created_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), default=utcnow)
    updated_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), default=utcnow, onupdate=utcnow)

    __table_args__ = (
        Index("ix_files_backend_key", "storage_backend", "storage_key", unique=True),
        Index("ix_files_status_updated", "status", "updated_at"),
        Index("ix_files_uploader_created", "uploader_id", "created_at"),
    )

    @property
    def is_active(self) -> bool:
        return self.status == FileStatus.ACTIVE.value

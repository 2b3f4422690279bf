"""Pytest fixtures: in-memory DB session, local storage under tmp_path, file record service."""
import pytest
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker, create_async_engine
from sqlalchemy.pool import StaticPool

from filestore.db.models import Base
from filestore.services.file_records import FileRecordService
from filestore.services.storage.base import LocalStorageConfig
from filestore.services.storage.local import LocalStorage
from filestore.services.upload_validation import UploadPolicies, UploadPolicy

TEST_DATABASE_URL = "sqlite+aiosqlite://"
MB = 1024 * 1024


@pytest.fixture
async def db():
    engine = create_async_engine(
        TEST_DATABASE_URL,
        connect_args={"check_same_thread": False},
        poolclass=StaticPool,
    )
    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.create_all)
    factory = async_sessionmaker(engine, class_=AsyncSession, expire_on_commit=False)
    async with factory() as session:
        yield session
    await engine.dispose()


@pytest.fixture
def storage_root(tmp_path):
    return tmp_path / "uploads"


@pytest.fixture
def local_storage(storage_root) -> LocalStorage:
    return LocalStorage(LocalStorageConfig(root_path=str(storage_root), url_prefix="/uploads"))


@pytest.fixture
def policies() -> UploadPolicies:
    return UploadPolicies(
        image=UploadPolicy(max_bytes=5 * MB, allowed_extensions={"jpg", "jpeg", "png", "gif", "webp"}),
        document=UploadPolicy(max_bytes=10 * MB, allowed_extensions={"txt", "pdf"}),
        default=UploadPolicy(max_bytes=10 * MB, allowed_extensions={"jpg", "png", "pdf", "txt"}),
    )


@pytest.fixture
def service(db: AsyncSession, local_storage: LocalStorage, policies: UploadPolicies) -> FileRecordService:
    return FileRecordService(db, local_storage, policies)

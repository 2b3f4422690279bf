from .models import Base, FileRecord, FileStatus
from .session import get_db, get_engine, get_session_factory, init_db

__all__ = [
    "Base",
    "FileRecord",
    "FileStatus",
    "get_db",
    "get_engine",
    "get_session_factory",
    "init_db",
]

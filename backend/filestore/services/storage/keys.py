"""Storage key generation: <logical path>/<YYYY/MM/DD>/<128-bit random hex><.ext>.

The base name never comes from the caller's filename; only its sanitized extension is kept.
"""
import secrets
from datetime import datetime, timezone

from filestore.services.upload_validation import file_extension


def normalize_logical_path(logical_path: str | None) -> str:
    """Return the path with exactly one trailing '/', or '' when empty. Rejects '..' segments."""
    if not logical_path:
        return ""
    parts = []
    for part in logical_path.replace("\\", "/").split("/"):
        part = part.strip()
        if part in ("", "."):
            continue
        if part == "..":
            raise ValueError(f"Invalid logical path: {logical_path}")
        parts.append(part)
    return "/".join(parts) + "/" if parts else ""


def date_partition(now: datetime | None = None) -> str:
    now = now or datetime.now(timezone.utc)
    return now.astimezone(timezone.utc).strftime("%Y/%m/%d")


def generate_key(
    original_filename: str | None,
    logical_path: str | None,
    *,
    date_partitioned: bool = True,
    now: datetime | None = None,
) -> str:
    ext = file_extension(original_filename)
    name = secrets.token_hex(16) + (f".{ext}" if ext else "")
    prefix = normalize_logical_path(logical_path)
    if date_partitioned:
        prefix += date_partition(now) + "/"
    return prefix + name


def key_basename(key: str | None) -> str | None:
    if not key or "/" not in key:
        return key
    return key.rsplit("/", 1)[1]

"""Upload validation: extension allow-list and max size per category. Pure, runs before any backend call."""
from __future__ import annotations

import re
from typing import NamedTuple

from pydantic import BaseModel, ConfigDict

from filestore.core.exceptions import FileValidationError

_IMAGE_PATHS = frozenset({"image", "images", "avatar", "avatars"})
_DOCUMENT_PATHS = frozenset({"document", "documents", "docs"})


def sanitize_storage_filename(filename: str | None) -> str:
    """Safe basename: no path separators, no control chars, bounded length."""
    if not filename or not filename.strip():
        return ""
    # Remove path components and restrict to alphanumeric, dash, underscore, dot
    base = filename.strip().split("/")[-1].split("\\")[-1]
    safe = re.sub(r"[^\w\-.]", "_", base)
    return safe[:200] if len(safe) > 200 else safe


def file_extension(filename: str | None) -> str:
    """Lowercased extension without the dot; empty when there is none."""
    base = sanitize_storage_filename(filename)
    if "." not in base.strip("."):
        return ""
    return base.rsplit(".", 1)[1].lower()


class UploadPolicy(BaseModel):
    model_config = ConfigDict(frozen=True)

    max_bytes: int
    allowed_extensions: frozenset[str]


class UploadPolicies(BaseModel):
    """Per-category policies; logical paths pick a category."""

    model_config = ConfigDict(frozen=True)

    image: UploadPolicy
    document: UploadPolicy
    default: UploadPolicy

    def for_path(self, logical_path: str | None) -> UploadPolicy:
        head = (logical_path or "").strip("/").split("/")[0].lower()
        if head in _IMAGE_PATHS:
            return self.image
        if head in _DOCUMENT_PATHS:
            return self.document
        return self.default


class ValidationOutcome(NamedTuple):
    ok: bool
    reason: str | None = None


def validate_upload(filename: str | None, size: int, policy: UploadPolicy) -> ValidationOutcome:
    if size <= 0:
        return ValidationOutcome(False, "file is empty")
    if size > policy.max_bytes:
        return ValidationOutcome(
            False,
            f"file size {size} exceeds limit of {policy.max_bytes} bytes ({policy.max_bytes // (1024 * 1024)} MB)",
        )
    ext = file_extension(filename)
    if not ext:
        return ValidationOutcome(False, "filename has no extension")
    if policy.allowed_extensions and ext not in policy.allowed_extensions:
        allowed = ", ".join(sorted(policy.allowed_extensions))
        return ValidationOutcome(False, f"file type not supported: {ext} (allowed: {allowed})")
    return ValidationOutcome(True)


def ensure_valid(filename: str | None, size: int, policy: UploadPolicy) -> None:
    """Raise FileValidationError if invalid."""
    outcome = validate_upload(filename, size, policy)
    if not outcome.ok:
        raise FileValidationError(outcome.reason or "invalid file")

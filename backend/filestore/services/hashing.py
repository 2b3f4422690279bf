"""Content digest stored with each file record for later integrity checks (MD5, 128-bit hex).

Digests are verification-only; uploads are never short-circuited on a matching digest.
"""
import hashlib
from typing import BinaryIO

_CHUNK = 64 * 1024


def compute_digest(data: bytes) -> str:
    return hashlib.md5(data, usedforsecurity=False).hexdigest()


def digest_stream(fh: BinaryIO) -> str:
    """Digest an open binary handle from its current position to EOF."""
    h = hashlib.md5(usedforsecurity=False)
    for chunk in iter(lambda: fh.read(_CHUNK), b""):
        h.update(chunk)
    return h.hexdigest()


def verify_digest(data: bytes, expected: str | None) -> bool:
    if not expected:
        return False
    return compute_digest(data) == expected.lower()

"""Scrub storage credentials from log fields: access keys, secrets, presigned URL signatures."""
import re
from typing import Any

REDACTED = "[REDACTED]"

# Field names containing any of these (case-insensitive) are never logged
SENSITIVE_FIELDS = frozenset({
    "password", "token", "secret", "authorization", "credential",
    "access_key", "api_key", "signature", "upload_url",
})

_SIGNED_QUERY = re.compile(
    r"([?&](?:X-Amz-Signature|Signature|X-Amz-Credential|X-Amz-Security-Token)=)[^&\s]+",
    re.IGNORECASE,
)
_AWS_KEY_ID = re.compile(r"\b(?:AKIA|ASIA)[A-Z0-9]{16}\b")


def is_sensitive_field(name: str) -> bool:
    lowered = name.lower()
    return any(marker in lowered for marker in SENSITIVE_FIELDS)


def redact_text(value: str) -> str:
    """Mask signed query parameters and AWS key ids inside free text (URLs, error messages)."""
    if value.lower().startswith("bearer "):
        return REDACTED
    value = _SIGNED_QUERY.sub(r"\1" + REDACTED, value)
    return _AWS_KEY_ID.sub(REDACTED, value)


def redact_for_log(obj: Any) -> Any:
    """Return a copy of obj with sensitive fields and embedded credentials masked."""
    if isinstance(obj, dict):
        return {
            k: REDACTED if is_sensitive_field(str(k)) else redact_for_log(v)
            for k, v in obj.items()
        }
    if isinstance(obj, (list, tuple)):
        return type(obj)(redact_for_log(x) for x in obj)
    if isinstance(obj, str):
        return redact_text(obj)
    return obj

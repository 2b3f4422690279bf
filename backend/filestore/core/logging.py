"""Logging setup and structured storage events (plain or one JSON object per line)."""
import json
import logging
from typing import Any

from filestore.core.logging_redaction import redact_for_log

ROOT_LOGGER = "filestore"

_json_output = False


def configure_logging(log_json: bool = False, level: str = "INFO") -> None:
    """Install a single stream handler on the package logger. Safe to call twice."""
    global _json_output
    _json_output = log_json
    root = logging.getLogger(ROOT_LOGGER)
    for h in root.handlers[:]:
        root.removeHandler(h)
    h = logging.StreamHandler()
    if log_json:
        h.setFormatter(logging.Formatter("%(message)s"))
    else:
        h.setFormatter(logging.Formatter("%(asctime)s %(levelname)s %(name)s: %(message)s"))
    root.addHandler(h)
    root.setLevel(level.upper())


def log_event(logger: logging.Logger, event: str, level: int = logging.INFO, **fields: Any) -> None:
    """Log one storage event. Fields are redacted before they reach any handler."""
    extra = redact_for_log({k: v for k, v in fields.items() if v is not None})
    if _json_output:
        logger.log(level, json.dumps({"event": event, **extra}, default=str))
    else:
        detail = " ".join(f"{k}={v}" for k, v in extra.items())
        logger.log(level, "%s %s", event, detail, extra={"event": event})

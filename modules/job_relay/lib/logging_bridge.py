from __future__ import annotations

import copy
import logging
import re
from typing import Any

# Prefer the service's JSONL writer; default to stdlib logging.
# No prints; this module should be silent on import.
_logging_backend = None
try:
    from service import logging_utils as _svc_logging  # type: ignore

    _logging_backend = _svc_logging
except Exception:
    _logging_backend = None

# Keys that should be redacted from structured logs
_REDACT_KEYS = {
    "password",
    "token",
    "apikey",
    "api_key",
    "secret",
    "authorization",
    "auth",
    "bearer",
    "webhook",
    "webhook_url",
    "destination",
}

# Discord-style webhook URLs embed their token in the path.
_WEBHOOK_RE = re.compile(r"(https?://[^\s/]+/api/webhooks/\d+/)[\w\-]+")


def scrub_url(value: str) -> str:
    """Hide the token segment of a webhook URL, keep the rest for debugging."""
    return _WEBHOOK_RE.sub(r"\1***REDACTED***", value)


def _redact_record(record: dict[str, Any]) -> dict[str, Any]:
    """
    Shallow-copy record and redact obvious secret-like fields at top level.
    Nested structures are handled by service.logging_utils.
    """
    redacted = copy.copy(record)
    for k in list(redacted.keys()):
        lk = str(k).lower()
        if lk in _REDACT_KEYS or lk.endswith("_secret"):
            redacted[k] = "***REDACTED***"
        elif isinstance(redacted[k], str):
            redacted[k] = scrub_url(redacted[k])
    return redacted


def activity(record: dict[str, Any]) -> None:
    """
    Write an activity record to the project's logging utility if available.
    Falls back to stdlib logging as structured info.
    """
    payload = _redact_record(record)
    if _logging_backend and hasattr(_logging_backend, "write_activity_log"):
        try:
            _logging_backend.write_activity_log(payload)  # type: ignore[attr-defined]
            return
        except Exception:
            # Fall through to std logging
            pass
    logging.getLogger("job_relay.activity").info(payload)


def error(record: dict[str, Any]) -> None:
    """
    Write an error record to the project's logging utility if available.
    Falls back to stdlib logging as structured error.
    """
    payload = _redact_record(record)
    if _logging_backend and hasattr(_logging_backend, "write_error_log"):
        try:
            _logging_backend.write_error_log(payload)  # type: ignore[attr-defined]
            return
        except Exception:
            # Fall through to std logging
            pass
    logging.getLogger("job_relay.error").error(payload)

from __future__ import annotations

import copy
import logging
from typing import Any

# Prefer the service's JSONL writer; default to stdlib logging.
# No prints; this module should be silent on import.
_logging_backend = None
try:
    from service import logging_utils as _svc_logging  # type: ignore

    _logging_backend = _svc_logging
except Exception:
    _logging_backend = None

# Keys that should never reach a log verbatim (secrets and the applicant's identity)
_REDACT_KEYS = {
    "password",
    "token",
    "secret",
    "authorization",
    "contact_name",
    "contact_email",
    "contact_message",
}


def _redact_record(record: dict[str, Any]) -> dict[str, Any]:
    """
    Shallow-copy record and redact identity/secret fields at top level.
    The service writer also redacts nested values.
    """
    redacted = copy.copy(record)
    for k in list(redacted.keys()):
        lk = str(k).lower()
        if lk in _REDACT_KEYS or lk.endswith("_secret"):
            redacted[k] = "***REDACTED***"
    return redacted


def activity(record: dict[str, Any]) -> None:
    """
    Write an activity record through service.logging_utils if available.
    Falls back to stdlib logging as structured info.
    """
    payload = _redact_record(record)
    if _logging_backend and hasattr(_logging_backend, "write_activity_log"):
        try:
            _logging_backend.write_activity_log(payload)  # type: ignore[attr-defined]
            return
        except Exception:
            logging.getLogger("pararius_contact.activity").debug("write_activity_log failed", exc_info=True)
    logging.getLogger("pararius_contact.activity").info(payload)


def error(record: dict[str, Any]) -> None:
    """
    Write an error record through service.logging_utils if available.
    Falls back to stdlib logging as structured error.
    """
    payload = _redact_record(record)
    if _logging_backend and hasattr(_logging_backend, "write_error_log"):
        try:
            _logging_backend.write_error_log(payload)  # type: ignore[attr-defined]
            return
        except Exception:
            logging.getLogger("pararius_contact.error").debug("write_error_log failed", exc_info=True)
    logging.getLogger("pararius_contact.error").error(payload)

# service/logging_utils.py
"""
Structured JSONL activity and error logs.

Files live in $LOG_DIR (default /app/local/logs) as <prefix>-YYYY-MM-DD.jsonl,
one JSON object per line. Each record is redacted, stamped with `_meta`
(ts, host, pid) and appended with a single O_APPEND write, so concurrent
writers never interleave within a line.

Environment (read on every write):
    LOG_DIR, ACTIVITY_LOG_PREFIX, ERROR_LOG_PREFIX
    ACTIVITY_LOG_MAX_BYTES   size-based rotation (0 = off)
    LOG_DISABLE              1/true to drop all records
"""

from __future__ import annotations

import contextlib
import datetime as _dt
import json
import os
import socket
from collections.abc import Iterable, Iterator
from typing import Any

_DEFAULT_LOG_DIR = "/app/local/logs"
REDACTED = "***REDACTED***"

# Case-insensitive substrings of keys whose values never reach disk.
# The contact identity is the applicant's PII.
_DEFAULT_REDACT_KEYS = frozenset({
    "password",
    "token",
    "apikey",
    "api_key",
    "secret",
    "authorization",
    "cookie",
    "contact_name",
    "contact_email",
    "contact_message",
})

_HOSTNAME = socket.gethostname()
_PID = os.getpid()


# ---- Public API --------------------------------------------------------------


def write_activity_log(record: dict[str, Any]) -> None:
    """Append one activity record. Never mutates `record`; raises on I/O failure."""
    if not _disabled():
        _append_jsonl(get_activity_log_path(), record)


def write_error_log(record: dict[str, Any]) -> None:
    """Append one error record to the parallel error log."""
    if not _disabled():
        _append_jsonl(get_error_log_path(), record)


def get_activity_log_path() -> str:
    return _path_for_today(os.getenv("ACTIVITY_LOG_PREFIX", "activity"))


def get_error_log_path() -> str:
    return _path_for_today(os.getenv("ERROR_LOG_PREFIX", "error"))


def redact(record: dict[str, Any], keys: Iterable[str] | None = None) -> dict[str, Any]:
    """Deep copy of `record` with values of matching keys replaced by REDACTED."""
    return _redact(record, tuple(k.lower() for k in (keys or _DEFAULT_REDACT_KEYS)))


def iter_activity_records(log_dir: str | None = None, *, prefix: str | None = None) -> Iterator[dict[str, Any]]:
    """
    Yield records from every `<prefix>-*.jsonl*` file in `log_dir`, oldest
    first. Lines that don't parse (a torn final write) are skipped.
    """
    base = log_dir or _log_dir()
    head = f"{prefix or os.getenv('ACTIVITY_LOG_PREFIX', 'activity')}-"
    try:
        names = sorted(n for n in os.listdir(base) if n.startswith(head) and ".jsonl" in n)
    except FileNotFoundError:
        return
    for name in names:
        with open(os.path.join(base, name), encoding="utf-8", errors="replace") as f:
            for line in f:
                rec = _parse_line(line)
                if rec is not None:
                    yield rec


# ---- Internals ---------------------------------------------------------------


def _disabled() -> bool:
    return os.getenv("LOG_DISABLE", "").strip().lower() in {"1", "true", "yes", "on"}


def _log_dir() -> str:
    return os.getenv("LOG_DIR", _DEFAULT_LOG_DIR)


def _path_for_today(prefix: str) -> str:
    return os.path.join(_log_dir(), f"{prefix}-{_dt.date.today().isoformat()}.jsonl")


def _parse_line(line: str) -> dict[str, Any] | None:
    line = line.strip()
    if not line:
        return None
    try:
        rec = json.loads(line)
    except json.JSONDecodeError:
        return None
    return rec if isinstance(rec, dict) else None


def _redact(value: Any, patterns: tuple[str, ...]) -> Any:
    if isinstance(value, dict):
        return {
            k: REDACTED if isinstance(k, str) and any(p in k.lower() for p in patterns) else _redact(v, patterns)
            for k, v in value.items()
        }
    if isinstance(value, (list, tuple)):
        return type(value)(_redact(v, patterns) for v in value)
    return value


def _rotate_if_large(path: str) -> None:
    limit = int(os.getenv("ACTIVITY_LOG_MAX_BYTES", "0") or 0)
    if limit <= 0:
        return
    try:
        if os.path.getsize(path) < limit:
            return
    except FileNotFoundError:
        return
    stamp = _dt.datetime.now().strftime("%Y%m%d-%H%M%S")
    with contextlib.suppress(FileNotFoundError):
        os.replace(path, f"{path}.{stamp}")


def _append_jsonl(path: str, record: dict[str, Any]) -> None:
    payload = redact(record)
    meta = payload.get("_meta") if isinstance(payload.get("_meta"), dict) else {}
    payload["_meta"] = {
        **meta,
        "ts": _dt.datetime.now(_dt.timezone.utc).isoformat(timespec="seconds"),
        "host": _HOSTNAME,
        "pid": _PID,
    }
    # Serialize before touching the file; non-JSON values (dates, enums) become str
    data = (json.dumps(payload, ensure_ascii=False, separators=(",", ":"), default=str) + "\n").encode("utf-8")

    def _write() -> None:
        os.makedirs(os.path.dirname(path), exist_ok=True)
        _rotate_if_large(path)
        fd = os.open(path, os.O_CREAT | os.O_APPEND | os.O_WRONLY, 0o644)
        try:
            os.write(fd, data)
        finally:
            os.close(fd)

    try:
        _write()
    except OSError:
        # One retry for transient failures (e.g. the dir vanished mid-rotation)
        _write()

# service/runner.py
"""
Runs one module tick: resolve `<module>.run`, normalize its kwargs, execute it
in a worker thread with an optional timeout and emit one activity record.

Modules whose run() accepts `stop_event` get a threading.Event that is set on
timeout or on request_shutdown(); it's the module's job to honour it.
"""

from __future__ import annotations

import importlib
import inspect
import json
import logging
import os
import threading
import time
import uuid
from collections.abc import Callable
from concurrent.futures import Future, ThreadPoolExecutor
from concurrent.futures import TimeoutError as FutureTimeout
from dataclasses import dataclass, field
from datetime import datetime, timezone
from typing import Any

from .logging_utils import write_activity_log

log = logging.getLogger(__name__)

_TRUE = {"true", "t", "yes", "y", "1"}
_FALSE = {"false", "f", "no", "n", "0"}

# Stop events of the runs currently executing
_ACTIVE_STOPS: set[threading.Event] = set()
# job_id -> worker future; outlives a timed-out run until its thread returns
_JOB_FUTURES: dict[str, Future] = {}
_ACTIVE_LOCK = threading.Lock()


class PreviousRunActive(RuntimeError):
    """The previous run of the same job is still winding down."""


@dataclass
class RunResult:
    ok: bool
    message: str
    meta: dict[str, Any] = field(default_factory=dict)


def now_iso() -> str:
    return datetime.now(timezone.utc).astimezone().isoformat(timespec="seconds")


# ---- kwargs ------------------------------------------------------------------


def _coerce_scalar(raw: str) -> Any:
    """'[..]'/'{..}' -> JSON, then bool-ish, then int/float; otherwise the stripped string."""
    s = raw.strip()
    if s[:1] in "[{" and s[-1:] in "]}":
        try:
            return json.loads(s)
        except json.JSONDecodeError:
            pass
    low = s.lower()
    if low in _TRUE:
        return True
    if low in _FALSE:
        return False
    try:
        return int(s)
    except ValueError:
        pass
    try:
        return float(s)
    except ValueError:
        return s


def _normalize_kwargs_types(kwargs: dict[str, object] | None) -> dict[str, object]:
    """
    Prepare job kwargs for module.run(**kwargs).

    Keys ending in "_env" hold an environment variable NAME; the value is
    replaced with that variable's content ("" when unset) and never coerced.
    Other string values go through _coerce_scalar; non-strings pass unchanged.
    """
    out: dict[str, object] = {}
    for key, value in (kwargs or {}).items():
        if not isinstance(value, str):
            out[key] = value
        elif key.endswith("_env"):
            out[key] = os.getenv(value.strip(), "")
        else:
            out[key] = _coerce_scalar(value)
    return out


# ---- module resolution -------------------------------------------------------


def _resolve_callable(module_path: str) -> Callable[..., Any]:
    """`pkg.mod` -> pkg.mod.run; a package without run() falls back to `pkg.mod.main`."""
    mod = importlib.import_module(module_path)
    fn = getattr(mod, "run", None)
    if not callable(fn):
        try:
            fn = getattr(importlib.import_module(f"{module_path}.main"), "run", None)
        except ModuleNotFoundError:
            fn = None
    if not callable(fn):
        raise AttributeError(f"Module {module_path!r} does not define a callable `run(**kwargs)`.")
    return fn


def _accepts_stop_event(fn: Callable[..., Any]) -> bool:
    try:
        return "stop_event" in inspect.signature(fn).parameters
    except (TypeError, ValueError):
        return False


def _coerce_result(value: Any) -> RunResult:
    """A module returns None or a meta dict (optionally with 'message')."""
    if value is None:
        return RunResult(ok=True, message="OK")
    if isinstance(value, dict):
        return RunResult(ok=True, message=str(value.get("message", "OK")), meta=value)
    raise TypeError(f"Module run() must return None or a dict, got {type(value).__name__}")


# ---- public API --------------------------------------------------------------


def is_job_active(job_id: str) -> bool:
    """True while a run started for `job_id` (even a timed-out one) is still executing."""
    with _ACTIVE_LOCK:
        fut = _JOB_FUTURES.get(job_id)
    return fut is not None and not fut.done()


def _forget_job_future(job_id: str, future: Future) -> None:
    with _ACTIVE_LOCK:
        if _JOB_FUTURES.get(job_id) is future:
            del _JOB_FUTURES[job_id]


def request_shutdown() -> int:
    """Set the stop event of every in-flight run; returns how many were signalled."""
    with _ACTIVE_LOCK:
        events = list(_ACTIVE_STOPS)
    for evt in events:
        evt.set()
    if events:
        log.info("Requested stop for %d in-flight run(s)", len(events))
    return len(events)


def run_module_once(
    module: str,
    kwargs: dict[str, object] | None = None,
    trigger_type: str = "scheduled",
    job_context: dict[str, object] | None = None,
    timeout_sec: float | None = None,
) -> tuple[dict[str, Any] | None, str]:
    """
    Execute `module`.run(**kwargs) once.

    Returns (meta_or_none, run_id). Exceptions from the module, a TimeoutError
    when `timeout_sec` elapses and a TypeError for a bad return value are
    re-raised after the activity record is written.

    When job_context carries a job_id and an earlier run of that job is still
    executing (a timed-out thread winding down), PreviousRunActive is raised
    and nothing runs.
    """
    run_id = uuid.uuid4().hex
    context: dict[str, Any] = {
        **(job_context or {}),
        "run_id": run_id,
        "module": module,
        "trigger_type": trigger_type,
        "started_at": now_iso(),
    }

    kw = _normalize_kwargs_types(kwargs)
    fn = _resolve_callable(module)

    stop_event = threading.Event()
    if _accepts_stop_event(fn):
        kw_call = {**kw, "stop_event": stop_event}
    else:
        kw_call = dict(kw)

    job_id = str(context["job_id"]) if context.get("job_id") else None
    error: BaseException | None = None
    started = time.monotonic()
    pool = ThreadPoolExecutor(max_workers=1, thread_name_prefix=f"run-{run_id[:8]}")
    with _ACTIVE_LOCK:
        previous = _JOB_FUTURES.get(job_id) if job_id else None
        if previous is not None and not previous.done():
            pool.shutdown(wait=False)
            log.warning("Job %s: previous run still executing; skipping this tick", job_id)
            raise PreviousRunActive(f"Job {job_id!r} still has a run in progress")
        _ACTIVE_STOPS.add(stop_event)
        future = pool.submit(fn, **kw_call)
        if job_id:
            _JOB_FUTURES[job_id] = future
    if job_id:
        future.add_done_callback(lambda f: _forget_job_future(job_id, f))
    try:
        result = _coerce_result(future.result(timeout=timeout_sec or None))
    except FutureTimeout:
        # A thread can't be killed: signal it and leave it to wind down
        stop_event.set()
        error = TimeoutError(f"Module run timed out after {timeout_sec}s")
        result = RunResult(ok=False, message=str(error), meta={"timeout_sec": timeout_sec})
    except KeyboardInterrupt:
        stop_event.set()
        raise
    except Exception as e:
        error = e
        result = RunResult(ok=False, message=str(e), meta={"exception_type": type(e).__name__})
    finally:
        pool.shutdown(wait=False)
        with _ACTIVE_LOCK:
            _ACTIVE_STOPS.discard(stop_event)

    try:
        write_activity_log({
            "ts": now_iso(),
            "run_id": run_id,
            "module": module,
            "trigger_type": trigger_type,
            "ok": result.ok,
            "message": result.message,
            "duration_ms": int((time.monotonic() - started) * 1000),
            "stop_requested": stop_event.is_set(),
            "context": context,
            "kwargs": kw,
            "meta": result.meta,
        })
    except Exception as e:
        log.warning("activity log write failed for run %s: %s", run_id, e)

    if error is not None:
        raise error
    return (result.meta or None), run_id

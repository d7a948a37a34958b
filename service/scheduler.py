# service/scheduler.py
from __future__ import annotations

import logging
import os
import threading
import time as _time
from collections.abc import Callable, Iterable
from dataclasses import dataclass
from datetime import datetime, time, timedelta, timezone
from datetime import tzinfo as _tzinfo
from typing import Any
from zoneinfo import ZoneInfo, ZoneInfoNotFoundError

import pytz
from apscheduler.executors.pool import ThreadPoolExecutor
from apscheduler.jobstores.memory import MemoryJobStore
from apscheduler.schedulers.background import BackgroundScheduler
from apscheduler.triggers.combining import OrTrigger
from apscheduler.triggers.cron import CronTrigger
from apscheduler.triggers.date import DateTrigger
from apscheduler.triggers.interval import IntervalTrigger

from . import config_schema, runner
from .logging_utils import write_activity_log

LOG = logging.getLogger(__name__)

_TRIGGER_KINDS = ("interval", "cron", "date", "daily_time")
_INTERVAL_UNITS = ("weeks", "days", "hours", "minutes", "seconds")
_INTERVAL_EXTRAS = {"jitter", "timezone", "start_date", "end_date"}
_CRON_FIELDS = {"second", "minute", "hour", "day", "day_of_week", "month", "timezone", "start_date", "end_date", "jitter"}
_DAILY_FIELDS = {"time", "day_of_week", "timezone"}


# ---- Internal structures ----------------------------------------------------


@dataclass(frozen=True, slots=True)
class JobSpec:
    """One configured job, normalized and with its APScheduler trigger built."""

    id: str
    trigger: Any
    module: str
    kwargs: dict[str, Any]
    timeout_sec: int | None
    max_instances: int
    coalesce: bool
    misfire_grace_time: int | None
    summary: str | None
    run_immediately: bool = False


# ---- Public controller ------------------------------------------------------


class SchedulerController:
    """Lifecycle handle returned by start(); the CLI only needs stop() and join()."""

    def __init__(self, scheduler: BackgroundScheduler) -> None:
        self._scheduler = scheduler
        self._stopped = threading.Event()

    def stop(self) -> None:
        """
        Stop firing new ticks and ask in-flight runs to wind down at their
        next listing boundary. Does not wait for them.
        """
        signalled = runner.request_shutdown()
        if self._scheduler.running:
            LOG.info("Shutting down scheduler (%d run(s) signalled)...", signalled)
            self._scheduler.shutdown(wait=False)
        self._stopped.set()

    def join(self, timeout: float | None = None) -> bool:
        """True once stop() has completed, False if `timeout` elapsed first."""
        return self._stopped.wait(timeout=timeout)

    def get_job_ids(self) -> Iterable[str]:
        return [job.id for job in self._scheduler.get_jobs()]


# ---- Module API -------------------------------------------------------------


def start(config_path: str | None = None) -> SchedulerController:
    """
    Load and validate the config, register every job and start a background
    scheduler. Jobs whose spec can't be built are logged and skipped.
    """
    cfg = config_schema.load_config(config_path)
    config_schema.validate(cfg)
    tz = _resolve_timezone(cfg)

    # One tick at a time per job; missed ticks collapse into one
    job_defaults = {"coalesce": True, "max_instances": 1}
    scheduler = BackgroundScheduler(
        timezone=tz,
        job_defaults=job_defaults,
        executors={"default": ThreadPoolExecutor(_int_or(cfg.get("executor_workers"), 4))},
        jobstores={"default": MemoryJobStore()},
    )

    for raw in cfg["jobs"]:
        try:
            spec = _make_job_spec(raw, default_job_defaults=job_defaults, tz=tz)
        except ValueError:
            LOG.exception("Skipping job with invalid spec: %r", raw.get("id"))
            continue
        _add_job(scheduler, spec)

    scheduler.start()
    LOG.info("Scheduler started (tz=%s) with %d job(s).", tz, len(scheduler.get_jobs()))
    return SchedulerController(scheduler)


# ---- Job specs --------------------------------------------------------------


def _resolve_timezone(cfg: dict[str, Any]):
    """APScheduler 3.x wants a pytz zone: config 'timezone', then $TZ, then UTC."""
    name = cfg.get("timezone") or os.getenv("TZ") or "UTC"
    try:
        return pytz.timezone(name)
    except pytz.UnknownTimeZoneError:
        LOG.warning("Unknown timezone %r; using UTC", name)
        return pytz.UTC


def _make_job_spec(raw: dict[str, Any], default_job_defaults: dict[str, Any], tz) -> JobSpec:
    module = _require(raw, "module")
    jid = str(raw.get("id") or raw.get("name") or module)

    trigger = _build_trigger(_require(raw, "trigger"), tz)
    if os.getenv("SCHEDULER_PREVIEW") == "1":
        print(f"PARSED[{jid}]:", trigger)

    return JobSpec(
        id=jid,
        trigger=trigger,
        module=module,
        kwargs=dict(raw.get("kwargs") or {}),
        timeout_sec=_int_or(raw.get("timeout_sec"), None),
        max_instances=_int_or(raw.get("max_instances"), default_job_defaults.get("max_instances", 1)),
        coalesce=bool(raw.get("coalesce", default_job_defaults.get("coalesce", True))),
        misfire_grace_time=_int_or(raw.get("misfire_grace_time"), None),
        summary=raw.get("summary") or raw.get("description"),
        run_immediately=bool(raw.get("run_immediately", False)),
    )


# ---- Triggers ---------------------------------------------------------------


def _build_trigger(trig_def: dict[str, Any], tz: Any) -> Any:
    """
    Build an APScheduler trigger from exactly one of:

      {"interval":   {weeks|days|hours|minutes|seconds, jitter?, start_date?, end_date?, timezone?}}
      {"cron":       "m h dom mon dow"} or {second?, minute?, hour?, day?, day_of_week?, month?, ...}
      {"date":       ISO-8601 | epoch seconds} or {"run_at": ..., "timezone"?: ...}
      {"daily_time": {"time": "HH:MM[:SS]" | [...], "day_of_week"?: ..., "timezone"?: ...}}

    A block's own 'timezone' wins over the scheduler zone `tz`.
    Raises ValueError on anything malformed.
    """
    if not isinstance(trig_def, dict):
        raise ValueError("trigger spec must be an object")
    present = [k for k in _TRIGGER_KINDS if trig_def.get(k) is not None]
    if len(present) != 1:
        raise ValueError(f"exactly one of {_TRIGGER_KINDS} must be provided, got {present}")
    kind = present[0]
    return _TRIGGER_BUILDERS[kind](trig_def[kind], _zone(tz))


def _interval_trigger(spec: Any, default_tz: _tzinfo | None) -> IntervalTrigger:
    if not isinstance(spec, dict):
        raise ValueError("interval must be an object with time fields")
    _reject_unknown("interval", spec, set(_INTERVAL_UNITS) | _INTERVAL_EXTRAS)

    units = {u: _non_negative_int(spec, u, "interval") for u in _INTERVAL_UNITS}
    if not any(units.values()):
        raise ValueError("interval must be greater than 0")

    kwargs: dict[str, Any] = {u: v for u, v in units.items() if v}
    jitter = _non_negative_int(spec, "jitter", "interval")
    if jitter:
        kwargs["jitter"] = jitter
    for key in ("start_date", "end_date"):
        if key in spec:
            kwargs[key] = spec[key]
    return IntervalTrigger(timezone=_zone(spec.get("timezone")) or default_tz, **kwargs)


def _cron_trigger(spec: Any, default_tz: _tzinfo | None) -> CronTrigger:
    if isinstance(spec, str):
        if len(spec.split()) != 5:
            raise ValueError(f"cron string must have 5 fields: {spec!r}")
        return CronTrigger.from_crontab(spec, timezone=default_tz)
    if not isinstance(spec, dict):
        raise ValueError("cron must be a crontab string or an object")
    _reject_unknown("cron", spec, _CRON_FIELDS)

    fields = {k: v for k, v in spec.items() if k != "timezone"}
    # Unset time fields mean "at zero", not "every"
    for key in ("second", "minute", "hour"):
        fields.setdefault(key, 0)
    return CronTrigger(timezone=_zone(spec.get("timezone")) or default_tz, **fields)


def _date_trigger(spec: Any, default_tz: _tzinfo | None) -> DateTrigger:
    if isinstance(spec, dict):
        run_at = spec.get("run_at")
        zone = _zone(spec.get("timezone")) or default_tz
    else:
        run_at, zone = spec, default_tz
    if run_at is None or run_at == "":
        raise ValueError("date trigger requires 'run_at'")

    if isinstance(run_at, datetime):
        when = run_at
    elif isinstance(run_at, (int, float)):
        when = datetime.fromtimestamp(run_at, tz=zone or timezone.utc)
    else:
        try:
            when = datetime.fromisoformat(str(run_at).replace("Z", "+00:00"))
        except ValueError as e:
            raise ValueError(f"invalid date.run_at: {run_at!r}") from e
    if when.tzinfo is None:
        when = when.replace(tzinfo=zone or timezone.utc)
    return DateTrigger(run_date=when, timezone=when.tzinfo)


def _daily_time_trigger(spec: Any, default_tz: _tzinfo | None) -> Any:
    """One CronTrigger per distinct time of day, OR-ed together when there are several."""
    if not isinstance(spec, dict):
        raise ValueError("daily_time must be an object")
    _reject_unknown("daily_time", spec, _DAILY_FIELDS)

    raw_times = spec.get("time")
    if raw_times is None:
        raise ValueError("daily_time requires 'time'")
    if isinstance(raw_times, str):
        raw_times = [raw_times]

    zone = _zone(spec.get("timezone")) or default_tz
    triggers = [
        CronTrigger(hour=t.hour, minute=t.minute, second=t.second, day_of_week=spec.get("day_of_week"), timezone=zone)
        for t in sorted({_time_of_day(x) for x in raw_times})
    ]
    if not triggers:
        raise ValueError("daily_time.time cannot be empty")
    return triggers[0] if len(triggers) == 1 else OrTrigger(triggers)


_TRIGGER_BUILDERS: dict[str, Callable[[Any, _tzinfo | None], Any]] = {
    "interval": _interval_trigger,
    "cron": _cron_trigger,
    "date": _date_trigger,
    "daily_time": _daily_time_trigger,
}


def _preview_trigger(trigger: Any, tz: Any, count: int = 6, start: datetime | None = None) -> list[datetime]:
    """Next `count` fire times strictly after `start` (default: now)."""
    now = start or datetime.now(tz=tz)
    prev, out = now, []
    for _ in range(count):
        nxt = trigger.get_next_fire_time(prev, now)
        if nxt is None:
            break
        out.append(nxt)
        prev, now = nxt, nxt + timedelta(microseconds=1)
    return out


# ---- Job registration -------------------------------------------------------


def _add_job(scheduler: BackgroundScheduler, spec: JobSpec) -> None:
    """
    Register `spec` with a wrapper that runs the module through the runner,
    logs duration and never lets one failed tick take the service down.
    `run_immediately` makes the first tick fire now instead of one period out.
    """

    def _job_wrapper() -> None:
        started = _time.monotonic()
        LOG.info("Job[%s] starting (module=%s)", spec.id, spec.module)
        try:
            result = runner.run_module_once(
                spec.module,
                kwargs=dict(spec.kwargs),
                timeout_sec=spec.timeout_sec,
                trigger_type="scheduled",
                job_context=_build_job_context(spec),
            )
        except runner.PreviousRunActive:
            _write_activity(spec, status="skipped", duration_s=_time.monotonic() - started)
            return
        except Exception:
            LOG.exception("Job[%s] failed", spec.id)
            _write_activity(spec, status="error", duration_s=_time.monotonic() - started)
            return
        duration = _time.monotonic() - started
        LOG.info("Job[%s] finished in %.3fs", spec.id, duration)
        _write_activity(spec, status="ok", duration_s=duration, result=result)

    extra: dict[str, Any] = {}
    if spec.run_immediately:
        extra["next_run_time"] = datetime.now(tz=scheduler.timezone)

    job = scheduler.add_job(
        func=_job_wrapper,
        trigger=spec.trigger,
        id=spec.id,
        name=spec.summary or spec.id,
        max_instances=spec.max_instances,
        coalesce=spec.coalesce,
        misfire_grace_time=spec.misfire_grace_time,
        replace_existing=True,
        **extra,
    )

    if os.getenv("SCHEDULER_PREVIEW") == "1":
        upcoming = _preview_trigger(spec.trigger, scheduler.timezone, int(os.getenv("SCHEDULER_PREVIEW_COUNT", "6")))
        print(f"PREVIEW[{spec.id}]:", ", ".join(t.isoformat() for t in upcoming) or "(none)")

    nrt = getattr(job, "next_run_time", None)
    LOG.info(
        "Registered job[%s] module=%s next_run_time=%s run_immediately=%s",
        spec.id,
        spec.module,
        nrt.isoformat() if nrt else "(pending start)",
        spec.run_immediately,
    )


def _write_activity(spec: JobSpec, status: str, duration_s: float, result: Any = None) -> None:
    """Best-effort JSONL record per scheduled run."""
    meta = result[0] if isinstance(result, tuple) and result else None
    try:
        write_activity_log({
            "ts": datetime.now(timezone.utc).isoformat(),
            "source": "scheduler",
            "event": "job_run",
            "fields": {
                "job_id": spec.id,
                "module": spec.module,
                "status": status,
                "duration_ms": int(duration_s * 1000),
                "summary": spec.summary,
                "message": meta.get("message") if isinstance(meta, dict) else None,
            },
        })
    except Exception:
        LOG.debug("write_activity_log failed for job[%s]", spec.id, exc_info=True)


def _build_job_context(spec: JobSpec) -> dict:
    return {
        "job_id": spec.id,
        "module": spec.module,
        "now_iso": datetime.now(timezone.utc).isoformat(),
    }


# ---- Small helpers ----------------------------------------------------------


def _zone(value: Any) -> _tzinfo | None:
    if not value:
        return None
    if isinstance(value, _tzinfo):
        return value
    try:
        return ZoneInfo(str(value))
    except (ZoneInfoNotFoundError, ValueError) as e:
        raise ValueError(f"unknown timezone: {value!r}") from e


def _reject_unknown(kind: str, spec: dict[str, Any], allowed: set[str]) -> None:
    unknown = set(spec) - allowed
    if unknown:
        raise ValueError(f"{kind} has unknown field(s): {sorted(unknown)}")


def _non_negative_int(spec: dict[str, Any], key: str, kind: str) -> int:
    if key not in spec:
        return 0
    try:
        value = int(spec[key])
    except (TypeError, ValueError) as e:
        raise ValueError(f"{kind}.{key} must be an integer") from e
    if value < 0:
        raise ValueError(f"{kind}.{key} must be >= 0")
    return value


def _time_of_day(value: Any) -> time:
    """'HH:MM' or 'HH:MM:SS' -> datetime.time; ValueError when malformed or out of range."""
    parts = str(value).strip().split(":")
    if len(parts) not in (2, 3):
        raise ValueError(f"daily_time.time must be 'HH:MM' or 'HH:MM:SS', got {value!r}")
    try:
        return time(*(int(p) for p in parts))
    except (TypeError, ValueError) as e:
        raise ValueError(f"daily_time.time out of range: {value!r}") from e


def _require(d: dict[str, Any], key: str) -> Any:
    if d.get(key) in (None, ""):
        raise ValueError(f"Missing required key: {key}")
    return d[key]


def _int_or(v: Any, default: int | None) -> int | None:
    """Lenient int coercion for already-validated config values."""
    try:
        return int(v) if v is not None else default
    except (TypeError, ValueError):
        return default

# service/config_schema.py
"""
Service config: a JSON or YAML document with a timezone and a list of jobs.

    timezone: Europe/Amsterdam
    executor_workers: 2
    jobs:
      - id: pararius-groningen
        module: modules.pararius_contact.main
        trigger: {interval: {minutes: 30}}
        run_immediately: true
        timeout_sec: 1500
        kwargs: {...}

load_config() normalizes (ids, booleans, ints); validate() raises ConfigError.
"""

from __future__ import annotations

import json
import logging
import os
import re
from typing import Any

import yaml

logger = logging.getLogger(__name__)


class ConfigError(ValueError):
    """Raised when the config is invalid."""


TRIGGER_KINDS = ("interval", "cron", "date", "daily_time")
_INTERVAL_UNITS = ("weeks", "days", "hours", "minutes", "seconds")
_INTERVAL_KEYS = set(_INTERVAL_UNITS) | {"jitter", "timezone", "start_date", "end_date"}
_TIME_OF_DAY = re.compile(r"^(\d{1,2}):(\d{2})(?::(\d{2}))?$")

_BOOL_FIELDS = ("coalesce", "run_immediately")
# field -> zero allowed
_INT_FIELDS = {"timeout_sec": True, "max_instances": False, "misfire_grace_time": True}
_STR_FIELDS = ("summary", "description")


# ---- Loading -----------------------------------------------------------------


def load_config(path: str | None = None) -> dict[str, Any]:
    """
    Load from `path`, else $CONFIG_PATH, else an empty job list.
    The result always has "jobs" (list) and "timezone" (str).
    """
    source = path or os.environ.get("CONFIG_PATH")
    if not source:
        logger.info("No config path given; starting with no jobs.")
        cfg: dict[str, Any] = {}
    else:
        cfg = _parse(source, _read_text(source))
    return _normalize(cfg)


def _read_text(path: str) -> str:
    try:
        with open(path, encoding="utf-8") as f:
            return f.read()
    except FileNotFoundError as e:
        raise ConfigError(f"Config file not found: {path}") from e
    except OSError as e:
        raise ConfigError(f"Failed to read config file: {path}: {e}") from e


def _parse(path: str, text: str) -> dict[str, Any]:
    if path.lower().endswith((".yml", ".yaml")):
        try:
            data = yaml.safe_load(text) or {}
        except yaml.YAMLError as e:
            raise ConfigError(f"Invalid YAML in {path}: {e}") from e
    else:
        # .json, or anything else that happens to be JSON
        try:
            data = json.loads(text)
        except json.JSONDecodeError as e:
            raise ConfigError(f"Invalid JSON in {path}: {e}") from e
    if not isinstance(data, dict):
        raise ConfigError(f"Top level of {path} must be a mapping.")
    return data


def _normalize(cfg: dict[str, Any]) -> dict[str, Any]:
    jobs = cfg.get("jobs")
    if not isinstance(jobs, list):
        jobs = []
    tz = cfg.get("timezone")
    if not isinstance(tz, str) or not tz.strip():
        cfg["timezone"] = os.environ.get("TZ", "UTC")

    normalized = []
    for idx, job in enumerate(jobs):
        if not isinstance(job, dict):
            raise ConfigError(f"Job at index {idx} must be an object.")
        job = dict(job)
        job["id"] = _job_id(job, idx)
        for name in _BOOL_FIELDS:
            if name in job:
                job[name] = _as_bool(job[name], name, job["id"])
        for name, zero_ok in _INT_FIELDS.items():
            if name in job:
                job[name] = _as_int(job[name], name, job["id"], zero_ok=zero_ok)
        normalized.append(job)
    cfg["jobs"] = normalized
    return cfg


# ---- Validation --------------------------------------------------------------


def validate(cfg: dict[str, Any]) -> None:
    """Raise ConfigError on the first problem found. Never prints or exits."""
    if not isinstance(cfg, dict):
        raise ConfigError("Config must be a mapping.")
    jobs = cfg.get("jobs")
    if not isinstance(jobs, list):
        raise ConfigError("Config needs a top-level 'jobs' list.")
    if cfg.get("timezone") is not None and not isinstance(cfg["timezone"], str):
        raise ConfigError("'timezone' must be a string.")
    if cfg.get("executor_workers") is not None:
        _as_int(cfg["executor_workers"], "executor_workers", "<top-level>", zero_ok=False)

    ids: set[str] = set()
    for idx, job in enumerate(jobs):
        job_id = _validate_job(job, idx)
        if job_id in ids:
            raise ConfigError(f"Duplicate job id '{job_id}'.")
        ids.add(job_id)


def _validate_job(job: Any, idx: int) -> str:
    if not isinstance(job, dict):
        raise ConfigError(f"Job at index {idx} must be an object.")
    module = job.get("module")
    if not isinstance(module, str) or not module.strip():
        raise ConfigError(f"Job {idx}: 'module' must be a non-empty string.")
    job_id = _job_id(job, idx)

    misplaced = [k for k in TRIGGER_KINDS if k in job]
    if misplaced:
        raise ConfigError(f"Job '{job_id}': move {misplaced} under 'trigger'.")
    trigger = job.get("trigger")
    if not isinstance(trigger, dict):
        raise ConfigError(f"Job '{job_id}': 'trigger' is required and must be an object.")
    kinds = [k for k in TRIGGER_KINDS if trigger.get(k) is not None]
    if len(kinds) != 1:
        raise ConfigError(f"Job '{job_id}': 'trigger' needs exactly one of {', '.join(TRIGGER_KINDS)}.")
    _validate_trigger(kinds[0], trigger[kinds[0]], job_id)

    for name in _BOOL_FIELDS:
        if name in job:
            _as_bool(job[name], name, job_id)
    for name, zero_ok in _INT_FIELDS.items():
        if name in job:
            _as_int(job[name], name, job_id, zero_ok=zero_ok)
    if "kwargs" in job and not isinstance(job["kwargs"], dict):
        raise ConfigError(f"Job '{job_id}': 'kwargs' must be an object.")
    for name in _STR_FIELDS:
        if name in job and not isinstance(job[name], str):
            raise ConfigError(f"Job '{job_id}': '{name}' must be a string.")
    return job_id


def _validate_trigger(kind: str, value: Any, job_id: str) -> None:
    where = f"Job '{job_id}': {kind}"
    if kind == "interval":
        if not isinstance(value, dict):
            raise ConfigError(f"{where} must be an object of time fields.")
        unknown = set(value) - _INTERVAL_KEYS
        if unknown:
            raise ConfigError(f"{where} has unknown field(s): {sorted(unknown)}.")
        total = sum(_as_int(value[u], f"interval.{u}", job_id, zero_ok=True) for u in _INTERVAL_UNITS if u in value)
        if total == 0:
            raise ConfigError(f"{where} must be greater than 0.")
    elif kind == "cron":
        if not isinstance(value, (str, dict)):
            raise ConfigError(f"{where} must be a crontab string or an object.")
    elif kind == "date":
        run_at = value.get("run_at") if isinstance(value, dict) else value
        if isinstance(run_at, bool) or not isinstance(run_at, (str, int, float)) or not str(run_at).strip():
            raise ConfigError(f"{where} must be an ISO-8601 string or epoch seconds.")
    elif kind == "daily_time":
        if not isinstance(value, dict) or not value.get("time"):
            raise ConfigError(f"{where} must be an object with 'time'.")
        times = value["time"]
        for t in [times] if isinstance(times, str) else list(times):
            _check_time_of_day(t, job_id)


def _check_time_of_day(t: Any, job_id: str) -> None:
    m = _TIME_OF_DAY.match(str(t).strip())
    if not m or int(m.group(1)) > 23 or int(m.group(2)) > 59 or int(m.group(3) or 0) > 59:
        raise ConfigError(f"Job '{job_id}': daily_time.time must be HH:MM or HH:MM:SS (24h), got {t!r}.")


# ---- Coercion ----------------------------------------------------------------


def _job_id(job: dict[str, Any], idx: int) -> str:
    for key in ("id", "name", "module"):
        v = job.get(key)
        if isinstance(v, str) and v.strip():
            return v.strip()
    return f"job_{idx}"


def _as_bool(value: Any, name: str, job_id: str) -> bool:
    if isinstance(value, bool):
        return value
    if isinstance(value, str):
        v = value.strip().lower()
        if v in {"1", "true", "yes", "on"}:
            return True
        if v in {"0", "false", "no", "off"}:
            return False
    raise ConfigError(f"Job '{job_id}': '{name}' must be a boolean.")


def _as_int(value: Any, name: str, job_id: str, *, zero_ok: bool) -> int:
    if isinstance(value, bool):
        raise ConfigError(f"Job '{job_id}': '{name}' must be an integer.")
    try:
        iv = int(value)
    except (TypeError, ValueError) as e:
        raise ConfigError(f"Job '{job_id}': '{name}' must be an integer.") from e
    floor = 0 if zero_ok else 1
    if iv < floor:
        raise ConfigError(f"Job '{job_id}': '{name}' must be >= {floor} (got {iv}).")
    return iv

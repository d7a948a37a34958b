# service/cli.py
"""
Command-line entrypoints (python -m service.cli ...).

serve
    Start the scheduler and block until SIGINT/SIGTERM. On a signal, in-flight
    runs are asked to stop at their next listing boundary.

run MODULE [--kwargs k=v ...] [--print-meta]
    One ad-hoc tick of MODULE ("pararius_contact" or a dotted path).

list-jobs
    Print the configured jobs.

validate-config
    Load and validate the config; exit 1 when it's invalid.
"""

from __future__ import annotations

import argparse
import json
import logging
import os
import signal
import sys
import threading
import time
from collections.abc import Iterable, Sequence
from datetime import datetime
from typing import Any

from service import config_schema, runner, scheduler
from service import logging_utils as L

LOG = logging.getLogger("service.cli")

EXIT_OK = 0
EXIT_FAILED = 1
EXIT_INTERRUPTED = 130


def _ensure_logging() -> None:
    if logging.getLogger().handlers:
        return
    level = os.getenv("LOG_LEVEL", "INFO").upper()
    logging.basicConfig(
        level=getattr(logging, level, logging.INFO),
        format="%(asctime)s %(levelname)s [%(name)s] %(message)s",
    )


def _now_iso() -> str:
    return datetime.now().astimezone().isoformat()


# ---- argument helpers ----------------------------------------------------------


def _parse_kv_pairs(pairs: Iterable[str]) -> dict[str, Any]:
    """key=value items; values that parse as JSON (true, 3, [..]) are decoded, others stay strings."""
    out: dict[str, Any] = {}
    for item in pairs:
        key, sep, raw = item.partition("=")
        key = key.strip()
        if not sep or not key:
            raise argparse.ArgumentTypeError(f"--kwargs item must be key=value (got {item!r})")
        raw = raw.strip()
        try:
            out[key] = json.loads(raw)
        except json.JSONDecodeError:
            out[key] = raw
    return out


def _qualify_module(name: str) -> str:
    """'pararius_contact' -> 'modules.pararius_contact.main'; dotted paths pass through."""
    name = name.strip()
    return name if "." in name else f"modules.{name}.main"


def _print_table(rows: Sequence[tuple[str, str]], headers: tuple[str, str]) -> None:
    widths = [max(len(headers[i]), *(len(r[i]) for r in rows)) for i in (0, 1)]
    sep = "+-" + "-+-".join("-" * w for w in widths) + "-+"

    def _row(cells: Sequence[str]) -> str:
        return "| " + " | ".join(c.ljust(w) for c, w in zip(cells, widths)) + " |"

    print(sep)
    print(_row(headers))
    print(sep)
    for r in rows:
        print(_row(r))
    print(sep)


def _job_rows(cfg: dict[str, Any]) -> list[tuple[str, str]]:
    rows = []
    for job in cfg.get("jobs") or []:
        desc = job.get("summary") or job.get("description") or json.dumps(job.get("trigger"), default=str)
        if job.get("run_immediately"):
            desc = f"{desc} (runs at startup)"
        rows.append((str(job["id"]), str(desc)))
    return rows


# ---- subcommands ---------------------------------------------------------------


def cmd_validate_config(args: argparse.Namespace) -> int:
    try:
        config_schema.validate(config_schema.load_config(args.config))
    except config_schema.ConfigError as e:
        LOG.error("Configuration invalid: %s", e)
        print(f"ERROR: configuration invalid: {e}", file=sys.stderr)
        return EXIT_FAILED
    print("OK: configuration is valid.")
    return EXIT_OK


def cmd_list_jobs(args: argparse.Namespace) -> int:
    try:
        cfg = config_schema.load_config(args.config)
    except config_schema.ConfigError as e:
        print(f"ERROR: failed to load config: {e}", file=sys.stderr)
        return EXIT_FAILED
    rows = _job_rows(cfg)
    if rows:
        _print_table(rows, headers=("JOB", "DETAILS"))
    else:
        print("No jobs found in config.")
    return EXIT_OK


def cmd_run(args: argparse.Namespace) -> int:
    module = _qualify_module(args.module)
    kwargs = _parse_kv_pairs(args.kwargs or [])
    started = time.monotonic()

    try:
        meta, run_id = runner.run_module_once(module=module, kwargs=kwargs, trigger_type="adhoc")
    except KeyboardInterrupt:
        runner.request_shutdown()
        return EXIT_INTERRUPTED
    except Exception as e:
        print(f"FAILURE: {e}", file=sys.stderr)
        L.write_error_log({
            "ts": _now_iso(),
            "where": "cli.run",
            "module": module,
            "kwargs": kwargs,
            "error": repr(e),
            "duration_ms": int((time.monotonic() - started) * 1000),
        })
        return EXIT_FAILED

    L.write_activity_log({
        "ts": _now_iso(),
        "event": "cli_run",
        "run_id": run_id,
        "module": module,
        "duration_ms": int((time.monotonic() - started) * 1000),
    })
    print(f"DONE: {(meta or {}).get('message') or 'module run completed.'}")
    if args.print_meta and meta is not None:
        print(json.dumps(meta, indent=2, sort_keys=True, default=str))
    return EXIT_OK


def cmd_serve(args: argparse.Namespace) -> int:
    """Run the scheduler until a termination signal arrives."""
    stop = threading.Event()

    def _on_signal(signum, _frame):
        LOG.info("Signal %s received; shutting down...", signum)
        stop.set()

    for sig in (signal.SIGINT, signal.SIGTERM):
        signal.signal(sig, _on_signal)

    try:
        ctl = scheduler.start(config_path=args.config)
    except Exception as e:
        LOG.exception("Scheduler failed to start: %s", e)
        return EXIT_FAILED

    L.write_activity_log({"ts": _now_iso(), "event": "serve_start", "jobs": list(ctl.get_job_ids())})
    try:
        while not stop.wait(0.5):
            pass
    except KeyboardInterrupt:
        pass
    finally:
        _safe_stop(ctl)
        L.write_activity_log({"ts": _now_iso(), "event": "serve_stop"})
    return EXIT_OK


def _safe_stop(ctl: Any) -> None:
    try:
        ctl.stop()
        ctl.join(timeout=10.0)
    except Exception:  # pragma: no cover
        LOG.exception("Error stopping scheduler")


# ---- argparse ------------------------------------------------------------------


def _build_parser() -> argparse.ArgumentParser:
    p = argparse.ArgumentParser(prog="python -m service.cli", description="Listing scanner service tools")
    p.add_argument("--config", help="Config file (default: $CONFIG_PATH, else no jobs).")
    sub = p.add_subparsers(dest="cmd", required=True)

    sub.add_parser("serve", help="Run the scheduler loop.").set_defaults(func=cmd_serve)

    sp = sub.add_parser("run", help="Run one tick of a module now.")
    sp.add_argument("module", help="pararius_contact or a dotted path such as modules.pararius_contact.main")
    sp.add_argument("--kwargs", metavar="k=v", nargs="*", help="Module kwargs (JSON values allowed).")
    sp.add_argument("--print-meta", action="store_true", help="Print the tick's outcome counts as JSON.")
    sp.set_defaults(func=cmd_run)

    sub.add_parser("list-jobs", help="Print the configured jobs.").set_defaults(func=cmd_list_jobs)
    sub.add_parser("validate-config", help="Check the config and exit.").set_defaults(func=cmd_validate_config)
    return p


def main(argv: Iterable[str] | None = None) -> int:
    _ensure_logging()
    args = _build_parser().parse_args(list(argv) if argv is not None else None)
    return args.func(args)


if __name__ == "__main__":  # pragma: no cover
    sys.exit(main())

#!/usr/bin/env python3
"""
print_recent_outcomes.py — show the latest per-listing contact outcomes.

Reads the JSONL activity logs (LOG_DIR, default ./local/logs) and prints the
most recent `listing_outcome` records: outcome, reason, stage and which form
fields were filled.

Usage:
    python scripts/print_recent_outcomes.py [--limit N] [--log-dir DIR] [--failures-only]
"""

import argparse
import os
import sys
from datetime import datetime
from pathlib import Path

PROJECT_ROOT = Path(__file__).resolve().parent.parent  # ../scripts → project root
sys.path.insert(0, str(PROJECT_ROOT))

from service.logging_utils import iter_activity_records  # noqa: E402

DEFAULT_LOG_DIR = PROJECT_ROOT / "local" / "logs"


def format_timestamp(iso_str: str | None) -> str:
    """Convert ISO timestamp to readable local format."""
    if not iso_str:
        return "?"
    try:
        dt = datetime.fromisoformat(iso_str.replace("Z", "+00:00"))
        return dt.astimezone().strftime("%Y-%m-%d %H:%M:%S %Z")
    except ValueError:
        return iso_str


def collect_outcomes(log_dir: str, *, failures_only: bool = False) -> list[dict]:
    """All listing_outcome records in file order (oldest first)."""
    out = []
    for rec in iter_activity_records(log_dir):
        if rec.get("component") != "pararius_contact.coordinator" or rec.get("op") != "listing_outcome":
            continue
        if failures_only and rec.get("outcome") == "handled":
            continue
        out.append(rec)
    return out


def main() -> int:
    ap = argparse.ArgumentParser(description="Print recent listing outcomes from the activity logs.")
    ap.add_argument("--limit", type=int, default=15, help="How many outcomes to show (default 15).")
    ap.add_argument("--log-dir", default=os.getenv("LOG_DIR", str(DEFAULT_LOG_DIR)))
    ap.add_argument("--failures-only", action="store_true", help="Only show processing failures.")
    args = ap.parse_args()

    if not os.path.isdir(args.log_dir):
        print(f"Directory not found: {args.log_dir}")
        return 1

    outcomes = collect_outcomes(args.log_dir, failures_only=args.failures_only)
    if not outcomes:
        print(f"No listing outcomes found in {args.log_dir}")
        return 0

    recent = outcomes[-max(args.limit, 1):]
    print(f"Showing last {len(recent)} of {len(outcomes)} outcome(s).\n")

    for i, rec in enumerate(reversed(recent), 1):
        form = rec.get("form") or {}
        ts = (rec.get("_meta") or {}).get("ts") or rec.get("ts")
        print(f"{i:2d}. [{format_timestamp(ts)}] {rec.get('outcome')} / {rec.get('reason')} @ {rec.get('stage')}")
        print(f"     URL:     {rec.get('listing_id')}")
        if rec.get("offered_since"):
            print(f"     Offered: {rec['offered_since']}")
        if form.get("filled") or form.get("field_errors"):
            print(f"     Filled:  {', '.join(form.get('filled') or []) or '-'}")
        if form.get("field_errors"):
            print(f"     Errors:  {form['field_errors']}")
        if rec.get("error"):
            print(f"     Error:   {rec['error']}")
        print()
    return 0


if __name__ == "__main__":
    sys.exit(main())

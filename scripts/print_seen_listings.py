#!/usr/bin/env python3

import os
import sys
from pathlib import Path

# Path of the dedup log (override with SEEN_PATH or the first argument)
PROJECT_ROOT = Path(__file__).resolve().parent.parent  # ../scripts → project root
DEFAULT_SEEN_PATH = PROJECT_ROOT / "local" / "state" / "seen_listings.txt"


def read_ids(path: str) -> list[str]:
    """Return recorded listing ids in file order (blank lines skipped)."""
    with open(path, encoding="utf-8", errors="replace") as f:
        return [line.strip() for line in f if line.strip()]


def main():
    path = os.getenv("SEEN_PATH", str(DEFAULT_SEEN_PATH))
    limit = 20
    args = sys.argv[1:]
    if args and not args[0].isdigit():
        path = args.pop(0)
    if args:
        try:
            limit = int(args[0])
            if limit <= 0:
                raise ValueError
        except ValueError:
            print(f"Invalid limit: {args[0]}. Using default (20).", file=sys.stderr)
            limit = 20

    if not os.path.exists(path):
        print(f"Dedup log not found: {path}")
        sys.exit(1)

    ids = read_ids(path)
    unique = len(set(ids))
    print(f"PATH: {path}")
    print(f"Recorded: {len(ids)} line(s), {unique} unique listing(s).")
    print("-" * 80)
    for i, lid in enumerate(ids[-limit:], max(len(ids) - limit, 0) + 1):
        print(f"{i:4d}. {lid}")


if __name__ == "__main__":
    main()

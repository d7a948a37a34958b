"""
Append-only dedup store for listing ids.

The on-disk format is one ListingId per line. Lines are only ever appended,
never rewritten, so an interrupted write can at worst leave a partial last
line; previously recorded ids are never lost.
"""

from __future__ import annotations

import os
import threading

from .logging_bridge import activity as log_activity
from .logging_bridge import error as log_error


class PersistenceFailure(OSError):
    """Raised internally when an id could not be appended durably."""


class DedupStore:
    """
    Persisted set of ListingIds already handled.

    The run coordinator is the only writer. `contains` is lock-free; `record`
    serializes appends so each id lands as exactly one line.
    """

    def __init__(self, path: str) -> None:
        self.path = path
        self._seen: set[str] = set()
        self._lock = threading.Lock()
        self._needs_newline = False  # last line on disk lacks its terminator
        self._loaded = False

    # ---- Public API ---------------------------------------------------------

    def load(self) -> set[str]:
        """
        Read the log into memory. A missing file is created empty (not an error).

        Any other read error is logged and re-raised; the store stays unloaded.
        """
        with self._lock:
            self._seen = set()
            self._needs_newline = False
            self._loaded = False
            try:
                with open(self.path, "rb") as f:
                    data = f.read()
            except FileNotFoundError:
                self._create_empty()
                data = b""
            except OSError as e:
                log_error({
                    "component": "pararius_contact.store",
                    "op": "load",
                    "path": self.path,
                    "error": repr(e),
                })
                raise

            text = data.decode("utf-8", errors="replace")
            for line in text.splitlines():
                line = line.strip()
                if line:
                    self._seen.add(line)
            self._needs_newline = bool(data) and not data.endswith(b"\n")
            self._loaded = True

            log_activity({
                "component": "pararius_contact.store",
                "op": "loaded",
                "path": self.path,
                "count": len(self._seen),
            })
            return set(self._seen)

    def contains(self, listing_id: str) -> bool:
        return listing_id in self._seen

    def record(self, listing_id: str) -> bool:
        """
        Mark `listing_id` as handled.

        Appends the id to the log before returning. If the append fails the
        error is logged and the id is still kept in memory for the rest of the
        process. Returns True if the id is durably on disk (or already was).
        """
        listing_id = listing_id.strip()
        if not listing_id:
            raise ValueError("listing_id cannot be empty")

        with self._lock:
            if listing_id in self._seen:
                return True
            try:
                self._append(listing_id)
                durable = True
            except PersistenceFailure as e:
                log_error({
                    "component": "pararius_contact.store",
                    "op": "persist_failed",
                    "path": self.path,
                    "listing_id": listing_id,
                    "error": repr(e.__cause__ or e),
                })
                durable = False
            self._seen.add(listing_id)
            return durable

    def snapshot(self) -> frozenset[str]:
        return frozenset(self._seen)

    @property
    def loaded(self) -> bool:
        return self._loaded

    def __len__(self) -> int:
        return len(self._seen)

    def __contains__(self, listing_id: object) -> bool:
        return listing_id in self._seen

    # ---- Internal helpers ---------------------------------------------------

    def _create_empty(self) -> None:
        try:
            _ensure_dir(self.path)
            fd = os.open(self.path, os.O_CREAT | os.O_WRONLY | os.O_APPEND, 0o644)
            os.close(fd)
        except OSError as e:
            log_error({
                "component": "pararius_contact.store",
                "op": "create",
                "path": self.path,
                "error": repr(e),
            })

    def _append(self, listing_id: str) -> None:
        """One O_APPEND write per id, flushed to disk before returning."""
        prefix = "\n" if self._needs_newline else ""
        data = f"{prefix}{listing_id}\n".encode()
        try:
            _ensure_dir(self.path)
            fd = os.open(self.path, os.O_CREAT | os.O_APPEND | os.O_WRONLY, 0o644)
            try:
                written = os.write(fd, data)
                if written != len(data):
                    raise OSError(f"short write ({written}/{len(data)} bytes)")
                os.fsync(fd)
            finally:
                os.close(fd)
        except OSError as e:
            raise PersistenceFailure(f"append to {self.path} failed") from e
        self._needs_newline = False


# ---- Process-wide stores ----------------------------------------------------

_STORES: dict[str, DedupStore] = {}
_STORES_LOCK = threading.Lock()


def open_store(path: str) -> DedupStore:
    """
    Return the loaded store for `path`, creating it on first use.

    One instance per path lives for the whole process so that ids recorded
    while the disk was failing are still remembered on the next tick. A store
    whose load() raised is not kept; the next call reads the file again.
    """
    key = os.path.abspath(path)
    with _STORES_LOCK:
        store = _STORES.get(key)
        if store is None:
            store = DedupStore(path)
            store.load()
            _STORES[key] = store
        return store


def forget_stores() -> None:
    """Drop the process-wide instances (used by tests to simulate a restart)."""
    with _STORES_LOCK:
        _STORES.clear()


def _ensure_dir(path: str) -> None:
    d = os.path.dirname(os.path.abspath(path)) or "."
    os.makedirs(d, exist_ok=True)

"""
One scheduler tick: discover -> skip seen -> contact -> record.

The coordinator is the only writer of the dedup store. A listing is recorded
only when its workflow ends in Outcome.HANDLED; processing failures stay
unrecorded and are retried on the next tick.
"""

from __future__ import annotations

import threading
import time
from collections.abc import Callable

from . import logging_bridge
from .config import Settings
from .discovery import DiscoveryFailure
from .models import TickSummary, WorkflowResult
from .store import DedupStore
from .workflow import ContactWorkflow, RunInterrupted

__all__ = ["RunInterrupted", "run_once"]


def _elapsed_us(start_ns: int) -> int:
    return int((time.perf_counter_ns() - start_ns) // 1000)


# =============================================================================
# MAIN ORCHESTRATOR
# =============================================================================
def run_once(
    settings: Settings,
    *,
    store: DedupStore,
    discover_fn: Callable[[], list[str]],
    workflow: ContactWorkflow,
    stop_event: threading.Event | None = None,
) -> TickSummary:
    """
    Run one tick.

    Args:
        settings: Module settings (pause length, skip_network).
        store: Loaded dedup store; mutated only through `record`.
        discover_fn: Zero-arg callable returning the current candidate ids.
        workflow: Per-listing contact workflow.
        stop_event: When set, the tick ends at the next listing boundary.

    Raises:
        DiscoveryFailure: the search page could not be read; nothing recorded.
    """
    start_ns = time.perf_counter_ns()
    summary = TickSummary()
    stop = stop_event or threading.Event()

    # -------------------------------------------------------------------------
    # SKIP NETWORK (config smoke runs)
    # -------------------------------------------------------------------------
    if settings.skip_network:
        summary.skipped_network = True
        summary.total_us = _elapsed_us(start_ns)
        logging_bridge.activity({
            "component": "pararius_contact.coordinator",
            "op": "skipped_network",
            "reason": "skip_network",
            "seen_count": len(store),
        })
        return summary

    # -------------------------------------------------------------------------
    # DISCOVER
    # -------------------------------------------------------------------------
    try:
        candidates = discover_fn()
    except DiscoveryFailure as e:
        logging_bridge.error({
            "component": "pararius_contact.coordinator",
            "op": "discovery_failed",
            "search_url": settings.search_url,
            "error": str(e),
            "total_us": _elapsed_us(start_ns),
        })
        raise

    summary.candidates = len(candidates)
    logging_bridge.activity({
        "component": "pararius_contact.coordinator",
        "op": "discovered",
        "search_url": settings.search_url,
        "count": len(candidates),
    })

    # -------------------------------------------------------------------------
    # PROCESS UNSEEN CANDIDATES (strictly one at a time, page order)
    # -------------------------------------------------------------------------
    invoked = 0
    try:
        for listing_id in candidates:
            if stop.is_set():
                raise RunInterrupted("stop requested between listings")

            if store.contains(listing_id):
                summary.already_seen += 1
                logging_bridge.activity({
                    "component": "pararius_contact.coordinator",
                    "op": "skip_seen",
                    "listing_id": listing_id,
                })
                continue

            # Pause only between two workflow invocations
            if invoked and settings.pause_between_listings_sec > 0:
                if stop.wait(settings.pause_between_listings_sec):
                    raise RunInterrupted("stop requested during pause")

            invoked += 1
            result = workflow.process(listing_id)
            summary.results.append(result)

            durable: bool | None = None
            if result.handled:
                durable = store.record(listing_id)
                summary.recorded.append(listing_id)
            _log_outcome(result, durable)
    except RunInterrupted as e:
        summary.interrupted = True
        logging_bridge.activity({
            "component": "pararius_contact.coordinator",
            "op": "interrupted",
            "detail": str(e),
            "processed": len(summary.results),
            "recorded": len(summary.recorded),
        })

    # -------------------------------------------------------------------------
    # SUMMARY LOG (always emitted)
    # -------------------------------------------------------------------------
    summary.total_us = _elapsed_us(start_ns)
    logging_bridge.activity({
        "component": "pararius_contact.coordinator",
        "op": "summary",
        "candidates": summary.candidates,
        "already_seen": summary.already_seen,
        "handled": summary.handled,
        "failed": summary.failed,
        "by_reason": summary.by_reason(),
        "interrupted": summary.interrupted,
        "seen_count": len(store),
        "total_us": summary.total_us,
    })
    return summary


def _log_outcome(result: WorkflowResult, durable: bool | None) -> None:
    record = {
        "component": "pararius_contact.coordinator",
        "op": "listing_outcome",
        "listing_id": result.listing_id,
        "outcome": result.outcome.value,
        "reason": result.reason.value,
        "stage": result.stage.value,
        "offered_since": (result.snapshot.offered_since.isoformat() if result.snapshot.offered_since else None),
        "form": result.form.as_record(),
        "recorded": result.handled,
        "durable": durable,
    }
    if result.error:
        record["error"] = result.error
    logging_bridge.activity(record)

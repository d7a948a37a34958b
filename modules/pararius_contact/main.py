from __future__ import annotations

import threading
from typing import Any

from .lib.browser import SessionFactory
from .lib.config import Settings
from .lib.coordinator import run_once as _run_tick
from .lib.discovery import discover
from .lib.logging_bridge import activity as log_activity
from .lib.store import open_store
from .lib.workflow import ContactWorkflow


def _default_session_factory(settings: Settings) -> SessionFactory:
    # Imported lazily so config-only runs don't need a browser stack loaded.
    from .lib.browser.selenium_session import chrome_session_factory

    b = settings.browser
    return chrome_session_factory(
        headless=b.headless,
        debugger_address=b.debugger_address,
        window_size=b.window_size,
        page_load_timeout_sec=b.page_load_timeout_sec,
    )


def run(
    *,
    stop_event: threading.Event | None = None,
    session_factory: SessionFactory | None = None,
    **kwargs: Any,
) -> dict:
    """
    Entry point for the 'pararius_contact' module (one tick).

    Accepts kwargs (from scheduler/runner), including:
      search_url: str = "https://www.pararius.com/apartments/groningen/apartment"
      cutoff_date: "YYYY-MM-DD" = "2025-06-04"
      seen_path: str = "/app/local/state/seen_listings.txt"
      contact_name / contact_email / contact_message: identity text
      contact_name_env / contact_email_env / contact_message_env: identity text as
        well. Job configs put env var NAMES here and service.runner swaps in the
        variable values; called directly, run() uses the value as-is.
      contact_message_path: str
      headless: bool = True
      debugger_address: str | None
      skip_network: bool = False

    The runner passes `stop_event`; tests may pass `session_factory`.

    Returns:
      meta dict (counts per outcome).
    Raises:
      ConfigError on invalid kwargs, OSError if the seen log can't be read,
      DiscoveryFailure if the search page can't be read.
    """
    settings = Settings.from_env_and_kwargs(kwargs)

    log_activity({
        "component": "pararius_contact.main",
        "op": "start",
        "settings": settings.as_record(),
    })

    store = open_store(settings.seen_path)
    factory = session_factory or (None if settings.skip_network else _default_session_factory(settings))

    workflow = ContactWorkflow(settings, factory, stop_event=stop_event)
    summary = _run_tick(
        settings,
        store=store,
        discover_fn=lambda: discover(factory, settings),
        workflow=workflow,
        stop_event=stop_event,
    )

    return {
        "message": (
            f"{summary.handled} handled, {summary.failed} failed, "
            f"{summary.already_seen} already seen of {summary.candidates} listings"
        ),
        "candidates": summary.candidates,
        "already_seen": summary.already_seen,
        "handled": summary.handled,
        "failed": summary.failed,
        "recorded": len(summary.recorded),
        "by_reason": summary.by_reason(),
        "interrupted": summary.interrupted,
        "skipped_network": summary.skipped_network,
        "seen_count": len(store),
        "total_us": summary.total_us,
    }

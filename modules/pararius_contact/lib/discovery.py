from __future__ import annotations

import logging
import time
from collections.abc import Callable

from .browser import BrowserError, SessionFactory, open_session
from .config import Settings
from .utils import normalize_listing_url

LOG = logging.getLogger(__name__)


class DiscoveryFailure(RuntimeError):
    """The search page could not be loaded or read; aborts the whole tick."""


def discover(
    session_factory: SessionFactory,
    settings: Settings,
    *,
    sleep: Callable[[float], None] = time.sleep,
) -> list[str]:
    """
    Load the search page in its own session and return the listing ids on it.

    Ids are normalized absolute URLs, deduplicated, in page order. A page with
    no listings yields []. Any browser failure becomes DiscoveryFailure.
    """
    try:
        with open_session(session_factory) as session:
            session.navigate(settings.search_url)
            if settings.search_settle_sec > 0:
                sleep(settings.search_settle_sec)

            hrefs: list[str | None] = []
            for handle in session.find_elements(settings.listing_link):
                hrefs.append(session.get_attribute(handle, "href"))
    except BrowserError as e:
        raise DiscoveryFailure(f"{type(e).__name__}: {e}") from e

    seen: set[str] = set()
    ids: list[str] = []
    for href in hrefs:
        lid = normalize_listing_url(href, settings.search_url)
        if not lid:
            LOG.debug("Ignoring listing link with unusable href %r", href)
            continue
        if lid in seen:
            continue
        seen.add(lid)
        ids.append(lid)
    return ids

from __future__ import annotations

import logging
from dataclasses import dataclass
from datetime import date, datetime

from .browser import BrowserSession, ElementUnavailable, Locator
from .models import Reason

LOG = logging.getLogger(__name__)

# "Offered since" is shown as day-month-year, e.g. "04-06-2025"
DATE_FORMAT = "%d-%m-%Y"


@dataclass(frozen=True)
class CutoffDecision:
    proceed: bool
    reason: Reason | None  # set when proceed is False
    offered_since: date | None


def parse_offered_since(text: str | None) -> date | None:
    """Parse the page's dd-mm-yyyy text; None when absent or malformed."""
    s = (text or "").strip()
    if not s:
        return None
    try:
        return datetime.strptime(s, DATE_FORMAT).date()
    except ValueError:
        return None


def decide(offered: date | None, cutoff: date) -> CutoffDecision:
    """
    Pure decision step:
      - unknown date           -> skip (DATE_UNAVAILABLE)
      - strictly before cutoff -> skip (DATE_BEFORE_CUTOFF)
      - on or after cutoff     -> proceed
    """
    if offered is None:
        return CutoffDecision(False, Reason.DATE_UNAVAILABLE, None)
    if offered < cutoff:
        return CutoffDecision(False, Reason.DATE_BEFORE_CUTOFF, offered)
    return CutoffDecision(True, None, offered)


def evaluate(session: BrowserSession, *, locator: Locator, cutoff: date, timeout: float) -> CutoffDecision:
    """Read the listing's "offered since" value from the current page and decide."""
    try:
        handle = session.wait_until_visible(locator, timeout)
        text = session.get_text(handle)
    except ElementUnavailable as e:
        LOG.debug("Offered-since field unavailable: %s", e)
        return decide(None, cutoff)

    offered = parse_offered_since(text)
    if offered is None:
        LOG.debug("Unparsable offered-since text: %r", text)
    return decide(offered, cutoff)

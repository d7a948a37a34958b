# pararius_contact/lib/browser/__init__.py
from __future__ import annotations

from .base import (
    BrowserError,
    BrowserSession,
    ElementUnavailable,
    Locator,
    LocatorChain,
    NavigationFailure,
    SessionFactory,
    SessionUnavailable,
    open_session,
)

__all__ = [
    "BrowserError",
    "BrowserSession",
    "ElementUnavailable",
    "Locator",
    "LocatorChain",
    "NavigationFailure",
    "SessionFactory",
    "SessionUnavailable",
    "open_session",
]

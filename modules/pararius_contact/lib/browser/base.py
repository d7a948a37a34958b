from __future__ import annotations

import contextlib
import logging
from abc import ABC, abstractmethod
from collections.abc import Callable, Iterable, Iterator
from dataclasses import dataclass
from typing import Any

LOG = logging.getLogger(__name__)


class BrowserError(Exception):
    """Base exception for automation-capability failures."""


class SessionUnavailable(BrowserError):
    """The browser could not be started or attached to."""


class NavigationFailure(BrowserError):
    """Top-level navigation failed or timed out."""


class ElementUnavailable(BrowserError):
    """An element was not found, not clickable, went stale, or a wait timed out."""


_SCHEMES = ("css", "xpath", "id")


@dataclass(frozen=True)
class Locator:
    """
    One way of finding an element.
    - by: "css" | "xpath" | "id"
    - value: the selector itself
    """

    by: str
    value: str

    @classmethod
    def parse(cls, raw: str | Locator) -> Locator:
        """
        Parse "css:...", "xpath:..." or "id:..." into a Locator.
        Bare strings are CSS; strings starting with "//" or "(" are XPath.
        """
        if isinstance(raw, Locator):
            return raw
        s = str(raw or "").strip()
        if not s:
            raise ValueError("locator cannot be empty")
        scheme, sep, rest = s.partition(":")
        if sep and scheme.strip().lower() in _SCHEMES and rest.strip():
            return cls(by=scheme.strip().lower(), value=rest.strip())
        if s.startswith("//") or s.startswith("("):
            return cls(by="xpath", value=s)
        return cls(by="css", value=s)

    def __str__(self) -> str:
        return f"{self.by}:{self.value}"


class LocatorChain:
    """
    Ordered fallback locators, tried in sequence until one yields a clickable
    element. Order is priority: the first entry is the primary selector.
    """

    def __init__(self, locators: Iterable[str | Locator]) -> None:
        self.locators: tuple[Locator, ...] = tuple(Locator.parse(x) for x in locators)
        if not self.locators:
            raise ValueError("LocatorChain needs at least one locator")

    def first_clickable(self, session: BrowserSession, timeout: float) -> tuple[Any, Locator] | None:
        """Return (handle, locator) for the first locator that becomes clickable, else None."""
        for locator in self.locators:
            try:
                return session.wait_until_clickable(locator, timeout), locator
            except ElementUnavailable:
                LOG.debug("Locator %s not clickable within %.1fs", locator, timeout)
        return None

    def __iter__(self) -> Iterator[Locator]:
        return iter(self.locators)

    def __len__(self) -> int:
        return len(self.locators)

    def __repr__(self) -> str:
        return f"LocatorChain({[str(x) for x in self.locators]!r})"


class BrowserSession(ABC):
    """
    The page-automation capability the core depends on.

    Contract:
      - Element handles are opaque; only pass them back into the same session.
      - find_element returns None when nothing matches; waits raise
        ElementUnavailable on timeout.
      - navigate raises NavigationFailure; close() must be safe to call once
        on any session, including one whose navigation failed.
    """

    @abstractmethod
    def navigate(self, url: str) -> None: ...

    @abstractmethod
    def find_element(self, locator: Locator) -> Any | None: ...

    @abstractmethod
    def find_elements(self, locator: Locator) -> list[Any]: ...

    @abstractmethod
    def wait_until_clickable(self, locator: Locator, timeout: float) -> Any: ...

    @abstractmethod
    def wait_until_visible(self, locator: Locator, timeout: float) -> Any: ...

    @abstractmethod
    def click(self, handle: Any) -> None: ...

    @abstractmethod
    def get_text(self, handle: Any) -> str: ...

    @abstractmethod
    def get_attribute(self, handle: Any, name: str) -> str | None: ...

    @abstractmethod
    def is_displayed(self, handle: Any) -> bool: ...

    @abstractmethod
    def clear(self, handle: Any) -> None: ...

    @abstractmethod
    def send_keys(self, handle: Any, text: str) -> None: ...

    @abstractmethod
    def close(self) -> None: ...


# Opens a fresh session; raises SessionUnavailable if the browser can't be reached.
SessionFactory = Callable[[], BrowserSession]


@contextlib.contextmanager
def open_session(factory: SessionFactory) -> Iterator[BrowserSession]:
    """
    Scoped acquisition: the session is closed on every exit path.
    Errors while closing are logged, never raised over the body's own error.
    """
    session = factory()
    try:
        yield session
    finally:
        try:
            session.close()
        except Exception:
            LOG.warning("Error closing browser session", exc_info=True)

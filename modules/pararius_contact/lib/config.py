from __future__ import annotations

import json
from collections.abc import Mapping
from dataclasses import dataclass, field
from datetime import date
from typing import Any

from .browser import Locator, LocatorChain
from .utils import truthy


# -----------------------------
# Exceptions
# -----------------------------
class ConfigError(ValueError):
    """Raised when provided kwargs/env cannot form a valid Settings."""


# -----------------------------
# Defaults (Pararius, Groningen)
# -----------------------------
DEFAULT_SEARCH_URL = "https://www.pararius.com/apartments/groningen/apartment"
DEFAULT_CUTOFF_DATE = "2025-06-04"
DEFAULT_SEEN_PATH = "/app/local/state/seen_listings.txt"

DEFAULT_LISTING_LINK_SELECTOR = "css:a.listing-search-item__link"
DEFAULT_OFFERED_SINCE_SELECTOR = "xpath://dt[contains(normalize-space(.), 'Offered since')]/following-sibling::dd[1]"
DEFAULT_CONSENT_SELECTORS = ("id:onetrust-accept-btn-handler",)
DEFAULT_CONTACT_SELECTORS = (
    "css:button.listing-reaction-button--contact-agent, a.listing-reaction-button--contact-agent",
    "xpath://a[contains(normalize-space(.), 'Contact the estate agent')]",
)
DEFAULT_SEND_SELECTORS = ("xpath://button[contains(normalize-space(.), 'Send')]",)
DEFAULT_NAME_FIELD = "css:input#contact-name"
DEFAULT_EMAIL_FIELD = "css:input#contact-email"
DEFAULT_MESSAGE_FIELD = "css:textarea#contact-message"


# -----------------------------
# Models
# -----------------------------
@dataclass(frozen=True)
class FieldSpec:
    """One contact-form input: filled with `text` only if it is visible and empty."""

    name: str  # "name" | "email" | "message"
    locator: Locator
    text: str


@dataclass(frozen=True)
class BrowserSettings:
    headless: bool = True
    debugger_address: str | None = None  # e.g. "localhost:9222" to attach to a running Chrome
    window_size: str = "1920,1080"
    page_load_timeout_sec: float = 30.0


@dataclass(frozen=True)
class Settings:
    """
    Canonical configuration for a 'pararius_contact' run.

    All values are static for the process lifetime. Identity text usually comes
    in through *_env kwargs, which the runner has already replaced with the
    environment value.
    """

    search_url: str = DEFAULT_SEARCH_URL
    cutoff_date: date = field(default_factory=lambda: date.fromisoformat(DEFAULT_CUTOFF_DATE))
    seen_path: str = DEFAULT_SEEN_PATH

    # Identity
    contact_name: str = ""
    contact_email: str = ""
    contact_message: str = ""

    # Page structure
    listing_link: Locator = field(default_factory=lambda: Locator.parse(DEFAULT_LISTING_LINK_SELECTOR))
    offered_since: Locator = field(default_factory=lambda: Locator.parse(DEFAULT_OFFERED_SINCE_SELECTOR))
    consent: LocatorChain = field(default_factory=lambda: LocatorChain(DEFAULT_CONSENT_SELECTORS))
    contact: LocatorChain = field(default_factory=lambda: LocatorChain(DEFAULT_CONTACT_SELECTORS))
    send: LocatorChain = field(default_factory=lambda: LocatorChain(DEFAULT_SEND_SELECTORS))
    name_field: Locator = field(default_factory=lambda: Locator.parse(DEFAULT_NAME_FIELD))
    email_field: Locator = field(default_factory=lambda: Locator.parse(DEFAULT_EMAIL_FIELD))
    message_field: Locator = field(default_factory=lambda: Locator.parse(DEFAULT_MESSAGE_FIELD))

    # Timing (seconds)
    element_timeout_sec: float = 5.0
    pause_between_listings_sec: float = 2.0
    search_settle_sec: float = 3.0
    consent_settle_sec: float = 0.5

    browser: BrowserSettings = field(default_factory=BrowserSettings)

    # Runtime behavior
    session_failure_handled: bool = True
    skip_network: bool = False

    # ------------- convenience -------------
    def form_fields(self) -> list[FieldSpec]:
        """Fields in fill order."""
        return [
            FieldSpec("name", self.name_field, self.contact_name),
            FieldSpec("email", self.email_field, self.contact_email),
            FieldSpec("message", self.message_field, self.contact_message),
        ]

    def as_record(self) -> dict[str, Any]:
        """Log-safe view (identity text is reduced to presence flags)."""
        return {
            "search_url": self.search_url,
            "cutoff_date": self.cutoff_date.isoformat(),
            "seen_path": self.seen_path,
            "has_name": bool(self.contact_name),
            "has_email": bool(self.contact_email),
            "has_message": bool(self.contact_message),
            "element_timeout_sec": self.element_timeout_sec,
            "pause_between_listings_sec": self.pause_between_listings_sec,
            "headless": self.browser.headless,
            "debugger_address": self.browser.debugger_address,
            "session_failure_handled": self.session_failure_handled,
            "skip_network": self.skip_network,
        }

    # ------------- constructors -------------
    @classmethod
    def from_env_and_kwargs(cls, kwargs: Mapping[str, Any] | None) -> Settings:
        """
        Build Settings from kwargs with validation.

        Expected kwargs (all optional):

            search_url: str
            cutoff_date: "YYYY-MM-DD" = "2025-06-04"
            seen_path: str = "/app/local/state/seen_listings.txt"

            # Identity: plain value, or the *_env form resolved by the runner
            contact_name | contact_name_env: str
            contact_email | contact_email_env: str
            contact_message | contact_message_env: str
            contact_message_path: str  # read message text from a file

            # Selectors: "css:...", "xpath:...", "id:..." (bare = css)
            listing_link_selector, offered_since_selector,
            name_field_selector, email_field_selector, message_field_selector: str
            consent_selectors, contact_selectors, send_selectors: list[str] (priority order)

            element_timeout_sec: float = 5
            page_load_timeout_sec: float = 30
            pause_between_listings_sec: float = 2
            search_settle_sec: float = 3
            consent_settle_sec: float = 0.5

            headless: bool = true
            debugger_address: str | None
            window_size: "W,H" = "1920,1080"

            session_failure_handled: bool = true
            skip_network: bool = false
        """
        kw = dict(kwargs or {})

        settings = cls(
            search_url=str(kw.get("search_url") or DEFAULT_SEARCH_URL).strip(),
            cutoff_date=_parse_date(kw.get("cutoff_date") or DEFAULT_CUTOFF_DATE, "cutoff_date"),
            seen_path=str(kw.get("seen_path") or DEFAULT_SEEN_PATH).strip(),
            contact_name=_identity(kw, "contact_name"),
            contact_email=_identity(kw, "contact_email"),
            contact_message=_message(kw),
            listing_link=_locator(kw, "listing_link_selector", DEFAULT_LISTING_LINK_SELECTOR),
            offered_since=_locator(kw, "offered_since_selector", DEFAULT_OFFERED_SINCE_SELECTOR),
            consent=_chain(kw, "consent_selectors", DEFAULT_CONSENT_SELECTORS),
            contact=_chain(kw, "contact_selectors", DEFAULT_CONTACT_SELECTORS),
            send=_chain(kw, "send_selectors", DEFAULT_SEND_SELECTORS),
            name_field=_locator(kw, "name_field_selector", DEFAULT_NAME_FIELD),
            email_field=_locator(kw, "email_field_selector", DEFAULT_EMAIL_FIELD),
            message_field=_locator(kw, "message_field_selector", DEFAULT_MESSAGE_FIELD),
            element_timeout_sec=_seconds(kw, "element_timeout_sec", 5.0),
            pause_between_listings_sec=_seconds(kw, "pause_between_listings_sec", 2.0),
            search_settle_sec=_seconds(kw, "search_settle_sec", 3.0),
            consent_settle_sec=_seconds(kw, "consent_settle_sec", 0.5),
            browser=BrowserSettings(
                headless=truthy(kw.get("headless", True)),
                debugger_address=(str(kw.get("debugger_address") or "").strip() or None),
                window_size=str(kw.get("window_size") or "1920,1080").strip(),
                page_load_timeout_sec=_seconds(kw, "page_load_timeout_sec", 30.0),
            ),
            session_failure_handled=truthy(kw.get("session_failure_handled", True)),
            skip_network=truthy(kw.get("skip_network")),
        )
        _validate_settings(settings)
        return settings


# -----------------------------
# Helpers
# -----------------------------
def _parse_date(value: Any, name: str) -> date:
    if isinstance(value, date):
        return value
    try:
        return date.fromisoformat(str(value).strip())
    except ValueError as e:
        raise ConfigError(f"'{name}' must be an ISO date (YYYY-MM-DD), got {value!r}.") from e


def _identity(kw: Mapping[str, Any], key: str) -> str:
    """Prefer the literal value; fall back to the runner-resolved *_env value."""
    val = kw.get(key)
    if val is None or str(val).strip() == "":
        val = kw.get(f"{key}_env")
    return str(val or "").strip()


def _message(kw: Mapping[str, Any]) -> str:
    path = str(kw.get("contact_message_path") or "").strip()
    if path:
        try:
            with open(path, encoding="utf-8") as f:
                return f.read().strip()
        except OSError as e:
            raise ConfigError(f"contact_message_path unreadable: {path}: {e}") from e
    return _identity(kw, "contact_message")


def _locator(kw: Mapping[str, Any], key: str, default: str) -> Locator:
    raw = kw.get(key) or default
    try:
        return Locator.parse(raw)
    except ValueError as e:
        raise ConfigError(f"'{key}': {e}") from e


def _chain(kw: Mapping[str, Any], key: str, default: tuple[str, ...]) -> LocatorChain:
    raw = kw.get(key)
    if raw is None or raw == "" or raw == []:
        raw = list(default)
    elif isinstance(raw, str):
        # A JSON list string, or a single selector
        s = raw.strip()
        if s.startswith("["):
            try:
                raw = json.loads(s)
            except json.JSONDecodeError as e:
                raise ConfigError(f"'{key}' is not a valid JSON list: {e}") from e
        else:
            raw = [s]
    if not isinstance(raw, (list, tuple)):
        raise ConfigError(f"'{key}' must be a list of selectors.")
    try:
        return LocatorChain(raw)
    except ValueError as e:
        raise ConfigError(f"'{key}': {e}") from e


def _seconds(kw: Mapping[str, Any], key: str, default: float) -> float:
    raw = kw.get(key)
    if raw is None or raw == "":
        return default
    try:
        value = float(raw)
    except (TypeError, ValueError) as e:
        raise ConfigError(f"'{key}' must be a number of seconds.") from e
    if value < 0:
        raise ConfigError(f"'{key}' must be >= 0 (got {value}).")
    return value


def _validate_settings(s: Settings) -> None:
    if not s.search_url.lower().startswith(("http://", "https://")):
        raise ConfigError("'search_url' must be an http(s) URL.")
    if not s.seen_path:
        raise ConfigError("'seen_path' cannot be empty.")
    if s.element_timeout_sec <= 0:
        raise ConfigError("'element_timeout_sec' must be > 0.")
    if s.browser.page_load_timeout_sec <= 0:
        raise ConfigError("'page_load_timeout_sec' must be > 0.")

    parts = s.browser.window_size.split(",")
    if len(parts) != 2 or not all(p.strip().isdigit() for p in parts):
        raise ConfigError("'window_size' must look like 'W,H' (e.g. '1920,1080').")

    # Nothing to submit without an identity; skip_network runs may leave it blank.
    if not s.skip_network and not (s.contact_name and s.contact_email and s.contact_message):
        raise ConfigError(
            "Contact identity incomplete. Provide contact_name, contact_email and "
            "contact_message (or their *_env / contact_message_path forms)."
        )

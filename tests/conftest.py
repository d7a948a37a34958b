# tests/conftest.py
import os
import tempfile
import warnings
from collections.abc import Callable

import pytest
from freezegun import freeze_time

from modules.pararius_contact.lib import config as pc_config
from modules.pararius_contact.lib import store as pc_store
from modules.pararius_contact.lib.browser import (
    BrowserSession,
    ElementUnavailable,
    Locator,
    NavigationFailure,
    SessionUnavailable,
)

warnings.filterwarnings("error", category=DeprecationWarning, module=r"(service|modules)\.")

SEARCH_URL = "https://www.pararius.com/apartments/groningen/apartment"


# ---------------------------------------------------------------------
# Live tests are opt-in: use --live or RUN_LIVE_TESTS=1
# ---------------------------------------------------------------------
def pytest_addoption(parser: pytest.Parser) -> None:
    parser.addoption(
        "--live",
        action="store_true",
        default=False,
        help="Run tests marked as 'live' (real browser / network).",
    )


def pytest_configure(config: pytest.Config) -> None:
    config.addinivalue_line(
        "markers",
        "live: marks tests that drive a real browser against the live site (skipped by default).",
    )


def pytest_collection_modifyitems(config: pytest.Config, items: list[pytest.Item]) -> None:
    run_live = config.getoption("--live") or os.getenv("RUN_LIVE_TESTS") == "1"
    if run_live:
        return
    skip_live = pytest.mark.skip(reason="live tests disabled (use --live or RUN_LIVE_TESTS=1)")
    for item in items:
        if "live" in item.keywords:
            item.add_marker(skip_live)


# ---------------------------------------------------------------------
# Test-wide env defaults (autouse, function-scoped)
# ---------------------------------------------------------------------
@pytest.fixture(autouse=True)
def _env_defaults(monkeypatch):
    # Write logs to a throwaway dir so real logs stay clean (per test)
    tmp_logs = tempfile.mkdtemp(prefix="pc-pytest-logs-")
    monkeypatch.setenv("LOG_DIR", tmp_logs)
    monkeypatch.setenv("ACTIVITY_LOG_PREFIX", "activity-test")
    monkeypatch.setenv("ERROR_LOG_PREFIX", "error-test")
    monkeypatch.delenv("LOG_DISABLE", raising=False)
    monkeypatch.delenv("CONFIG_PATH", raising=False)

    # Identity used by *_env kwargs in tests
    monkeypatch.setenv("PARARIUS_CONTACT_NAME", "Test Applicant")
    monkeypatch.setenv("PARARIUS_CONTACT_EMAIL", "applicant@example.org")
    monkeypatch.setenv("PARARIUS_CONTACT_MESSAGE", "Hello, I'd like to view this apartment.")

    # Each test starts with no process-wide dedup stores
    pc_store.forget_stores()
    yield
    pc_store.forget_stores()


@pytest.fixture
def log_dir():
    return os.environ["LOG_DIR"]


@pytest.fixture
def frozen_utc():
    with freeze_time("2025-07-01T00:00:00Z"):
        yield


@pytest.fixture
def write_min_config(tmp_path, monkeypatch):
    cfg = {
        "timezone": "Europe/Amsterdam",
        "jobs": [
            {
                "id": "pararius-test",
                "module": "modules.pararius_contact.main",
                "trigger": {"interval": {"minutes": 30}},
                "run_immediately": True,
                "kwargs": {"skip_network": True, "seen_path": str(tmp_path / "seen.txt")},
                "summary": "pytest config",
            }
        ],
    }
    import json

    p = tmp_path / "config.json"
    p.write_text(json.dumps(cfg), encoding="utf-8")
    monkeypatch.setenv("CONFIG_PATH", str(p))
    return p


# ---------------------------------------------------------------------
# Settings
# ---------------------------------------------------------------------
@pytest.fixture
def make_settings(tmp_path) -> Callable[..., pc_config.Settings]:
    """Settings with test identity, a per-test store path and no real delays."""

    def _make(**overrides) -> pc_config.Settings:
        kw = {
            "seen_path": str(tmp_path / "state" / "seen_listings.txt"),
            "contact_name": "Test Applicant",
            "contact_email": "applicant@example.org",
            "contact_message": "Hello, I'd like to view this apartment.",
            "element_timeout_sec": 0.01,
            "pause_between_listings_sec": 0,
            "search_settle_sec": 0,
            "consent_settle_sec": 0,
        }
        kw.update(overrides)
        return pc_config.Settings.from_env_and_kwargs(kw)

    return _make


@pytest.fixture
def settings(make_settings):
    return make_settings()


# ---------------------------------------------------------------------
# Fake browser: an in-memory page model behind the BrowserSession contract
# ---------------------------------------------------------------------
class FakeElement:
    def __init__(
        self,
        *,
        text: str = "",
        attrs: dict | None = None,
        displayed: bool = True,
        clickable: bool = True,
        on_click: Callable[[], None] | None = None,
        click_error: Exception | None = None,
        find_error: Exception | None = None,
    ) -> None:
        self.text = text
        self.attrs = dict(attrs or {})
        self.displayed = displayed
        self.clickable = clickable
        self.on_click = on_click
        self.click_error = click_error
        self.find_error = find_error
        self.clicks = 0
        self.typed: list[str] = []

    @property
    def value(self) -> str:
        return self.attrs.get("value", "")


class FakePage:
    """Elements keyed by locator string ("css:...", "xpath:...", "id:...")."""

    def __init__(self, elements: dict | None = None, *, navigate_error: Exception | None = None) -> None:
        self.elements: dict[str, list[FakeElement]] = {}
        self.navigate_error = navigate_error
        for key, els in (elements or {}).items():
            self.put(key, els)

    def put(self, key, els) -> None:
        k = str(Locator.parse(key))
        self.elements[k] = list(els) if isinstance(els, (list, tuple)) else [els]

    def get(self, locator: Locator) -> list[FakeElement]:
        return self.elements.get(str(locator), [])


class FakeSession(BrowserSession):
    def __init__(self, browser: "FakeBrowser") -> None:
        self.browser = browser
        self.page: FakePage | None = None
        self.closed = False

    def navigate(self, url: str) -> None:
        self.browser.visited.append(url)
        page = self.browser.pages.get(url)
        if page is None:
            raise NavigationFailure(f"no such page: {url}")
        if page.navigate_error is not None:
            raise page.navigate_error
        self.page = page

    def _els(self, locator: Locator) -> list[FakeElement]:
        els = self.page.get(locator) if self.page else []
        for el in els:
            if el.find_error is not None:
                raise el.find_error
        return els

    def find_element(self, locator):
        els = self._els(locator)
        return els[0] if els else None

    def find_elements(self, locator):
        return list(self._els(locator))

    def wait_until_clickable(self, locator, timeout):
        for el in self._els(locator):
            if el.displayed and el.clickable:
                return el
        raise ElementUnavailable(f"{locator} not clickable")

    def wait_until_visible(self, locator, timeout):
        for el in self._els(locator):
            if el.displayed:
                return el
        raise ElementUnavailable(f"{locator} not visible")

    def click(self, handle):
        handle.clicks += 1
        self.browser.clicked.append(handle)
        if handle.click_error is not None:
            raise handle.click_error
        if handle.on_click is not None:
            handle.on_click()

    def get_text(self, handle):
        return handle.text

    def get_attribute(self, handle, name):
        return handle.attrs.get(name)

    def is_displayed(self, handle):
        return handle.displayed

    def clear(self, handle):
        handle.attrs["value"] = ""

    def send_keys(self, handle, text):
        handle.typed.append(text)
        handle.attrs["value"] = handle.attrs.get("value", "") + text

    def close(self):
        self.closed = True


class FakeBrowser:
    def __init__(self) -> None:
        self.pages: dict[str, FakePage] = {}
        self.sessions: list[FakeSession] = []
        self.visited: list[str] = []
        self.clicked: list[FakeElement] = []
        self.unavailable = False

    def add_page(self, url: str, page: FakePage) -> FakePage:
        self.pages[url] = page
        return page

    def factory(self) -> FakeSession:
        if self.unavailable:
            raise SessionUnavailable("browser is down")
        s = FakeSession(self)
        self.sessions.append(s)
        return s

    @property
    def all_closed(self) -> bool:
        return all(s.closed for s in self.sessions)


@pytest.fixture
def fake_browser() -> FakeBrowser:
    return FakeBrowser()


@pytest.fixture
def search_page(fake_browser):
    """Register a search page listing the given hrefs (relative or absolute)."""

    def _make(hrefs: list[str], url: str = SEARCH_URL) -> FakePage:
        links = [FakeElement(attrs={"href": h}) for h in hrefs]
        return fake_browser.add_page(url, FakePage({pc_config.DEFAULT_LISTING_LINK_SELECTOR: links}))

    return _make


@pytest.fixture
def listing_page(fake_browser):
    """
    Register a listing detail page. Defaults describe the happy path: fresh
    date, cookie banner, contact button, send button and three empty fields.
    Returns the FakePage; individual elements are reachable via page.get().
    """

    def _make(
        url: str,
        *,
        offered: str | None = "10-06-2025",
        consent: bool = True,
        contact: str | None = "css",  # "css" | "xpath" | None
        contact_click_error: Exception | None = None,
        send: bool = True,
        fields: dict[str, FakeElement | None] | None = None,
        navigate_error: Exception | None = None,
    ) -> FakePage:
        page = FakePage(navigate_error=navigate_error)
        if offered is not None:
            page.put(pc_config.DEFAULT_OFFERED_SINCE_SELECTOR, FakeElement(text=offered))
        if consent:
            page.put(pc_config.DEFAULT_CONSENT_SELECTORS[0], FakeElement())
        if contact == "css":
            page.put(pc_config.DEFAULT_CONTACT_SELECTORS[0], FakeElement(click_error=contact_click_error))
        elif contact == "xpath":
            page.put(pc_config.DEFAULT_CONTACT_SELECTORS[1], FakeElement(click_error=contact_click_error))
        if send:
            page.put(pc_config.DEFAULT_SEND_SELECTORS[0], FakeElement(text="Send"))

        default_fields = {
            "name": FakeElement(attrs={"value": ""}),
            "email": FakeElement(attrs={"value": ""}),
            "message": FakeElement(attrs={"value": ""}),
        }
        default_fields.update(fields or {})
        selectors = {
            "name": pc_config.DEFAULT_NAME_FIELD,
            "email": pc_config.DEFAULT_EMAIL_FIELD,
            "message": pc_config.DEFAULT_MESSAGE_FIELD,
        }
        for name, el in default_fields.items():
            if el is not None:
                page.put(selectors[name], el)
        return fake_browser.add_page(url, page)

    return _make


def element(page: FakePage, selector: str) -> FakeElement:
    """First element registered on `page` under `selector`."""
    return page.get(Locator.parse(selector))[0]


@pytest.fixture
def el():
    return element


@pytest.fixture
def element_cls():
    return FakeElement

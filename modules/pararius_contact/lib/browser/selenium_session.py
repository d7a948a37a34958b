# pararius_contact/lib/browser/selenium_session.py
from __future__ import annotations

import logging
from typing import Any

from selenium import webdriver
from selenium.common.exceptions import (
    NoSuchElementException,
    TimeoutException,
    WebDriverException,
)
from selenium.webdriver.chrome.options import Options
from selenium.webdriver.common.by import By
from selenium.webdriver.support import expected_conditions as EC
from selenium.webdriver.support.ui import WebDriverWait

from .base import (
    BrowserSession,
    ElementUnavailable,
    Locator,
    NavigationFailure,
    SessionFactory,
    SessionUnavailable,
)

LOG = logging.getLogger(__name__)

_BY = {
    "css": By.CSS_SELECTOR,
    "xpath": By.XPATH,
    "id": By.ID,
}


def _by(locator: Locator) -> tuple[str, str]:
    try:
        return _BY[locator.by], locator.value
    except KeyError as e:
        raise ValueError(f"Unsupported locator strategy: {locator.by!r}") from e


class SeleniumSession(BrowserSession):
    """BrowserSession over a Selenium WebDriver; translates Selenium errors."""

    def __init__(self, driver: Any) -> None:
        self.driver = driver

    def navigate(self, url: str) -> None:
        try:
            self.driver.get(url)
        except WebDriverException as e:  # includes TimeoutException on page load
            raise NavigationFailure(f"navigation to {url!r} failed: {e.msg or e!r}") from e

    def find_element(self, locator: Locator) -> Any | None:
        try:
            return self.driver.find_element(*_by(locator))
        except NoSuchElementException:
            return None
        except WebDriverException as e:
            raise ElementUnavailable(f"find {locator} failed: {e.msg or e!r}") from e

    def find_elements(self, locator: Locator) -> list[Any]:
        try:
            return list(self.driver.find_elements(*_by(locator)))
        except WebDriverException as e:
            raise ElementUnavailable(f"find_all {locator} failed: {e.msg or e!r}") from e

    def wait_until_clickable(self, locator: Locator, timeout: float) -> Any:
        return self._wait(EC.element_to_be_clickable(_by(locator)), locator, timeout)

    def wait_until_visible(self, locator: Locator, timeout: float) -> Any:
        return self._wait(EC.visibility_of_element_located(_by(locator)), locator, timeout)

    def _wait(self, condition: Any, locator: Locator, timeout: float) -> Any:
        try:
            return WebDriverWait(self.driver, timeout).until(condition)
        except TimeoutException as e:
            raise ElementUnavailable(f"{locator} not ready after {timeout:.1f}s") from e
        except WebDriverException as e:
            raise ElementUnavailable(f"waiting for {locator} failed: {e.msg or e!r}") from e

    def click(self, handle: Any) -> None:
        try:
            handle.click()
        except WebDriverException as e:
            raise ElementUnavailable(f"click failed: {e.msg or e!r}") from e

    def get_text(self, handle: Any) -> str:
        try:
            return handle.text or ""
        except WebDriverException as e:
            raise ElementUnavailable(f"read text failed: {e.msg or e!r}") from e

    def get_attribute(self, handle: Any, name: str) -> str | None:
        try:
            return handle.get_attribute(name)
        except WebDriverException as e:
            raise ElementUnavailable(f"read attribute {name!r} failed: {e.msg or e!r}") from e

    def is_displayed(self, handle: Any) -> bool:
        try:
            return bool(handle.is_displayed())
        except WebDriverException as e:
            raise ElementUnavailable(f"visibility check failed: {e.msg or e!r}") from e

    def clear(self, handle: Any) -> None:
        try:
            handle.clear()
        except WebDriverException as e:
            raise ElementUnavailable(f"clear failed: {e.msg or e!r}") from e

    def send_keys(self, handle: Any, text: str) -> None:
        try:
            handle.send_keys(text)
        except WebDriverException as e:
            raise ElementUnavailable(f"typing failed: {e.msg or e!r}") from e

    def close(self) -> None:
        self.driver.quit()


def chrome_options(
    *,
    headless: bool = True,
    debugger_address: str | None = None,
    window_size: str = "1920,1080",
) -> Options:
    """Chrome flags used for every session (headless, no GPU, fixed window)."""
    options = Options()
    if headless:
        options.add_argument("--headless=new")
    options.add_argument("--disable-gpu")
    options.add_argument(f"--window-size={window_size}")
    if debugger_address:
        # Attach to an already-running Chrome (started with --remote-debugging-port)
        options.add_experimental_option("debuggerAddress", debugger_address)
    return options


def chrome_session_factory(
    *,
    headless: bool = True,
    debugger_address: str | None = None,
    window_size: str = "1920,1080",
    page_load_timeout_sec: float = 30.0,
) -> SessionFactory:
    """
    Build a SessionFactory that starts (or attaches to) Chrome on each call.
    Driver binaries are resolved by Selenium Manager.
    """

    def _open() -> BrowserSession:
        options = chrome_options(
            headless=headless,
            debugger_address=debugger_address,
            window_size=window_size,
        )
        try:
            driver = webdriver.Chrome(options=options)
        except (WebDriverException, OSError) as e:
            raise SessionUnavailable(f"could not start Chrome: {e!r}") from e
        try:
            driver.set_page_load_timeout(page_load_timeout_sec)
        except WebDriverException as e:
            driver.quit()
            raise SessionUnavailable(f"could not configure Chrome: {e!r}") from e
        LOG.debug("Chrome session opened (headless=%s, attach=%s)", headless, debugger_address)
        return SeleniumSession(driver)

    return _open

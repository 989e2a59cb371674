from __future__ import annotations

import logging
from collections.abc import Callable
from typing import Any

from selenium import webdriver
from selenium.webdriver import ChromeOptions, FirefoxOptions

from variantkit.config.schema import BrowserSettings, PipelineSettings
from variantkit.core.cache import ElementDatabaseCache
from variantkit.core.page import PageSession
from variantkit.core.sandbox import SeleniumPageAdapter, SeleniumSandbox

log = logging.getLogger(__name__)


def create_driver(settings: BrowserSettings):
    """Starts a local browser through Selenium Manager."""

    width, _, height = settings.window_size.partition(",")
    if settings.browser == "chrome":
        options = ChromeOptions()
        if settings.headless:
            options.add_argument("--headless=new")
        options.add_argument(f"--window-size={settings.window_size}")
        driver = webdriver.Chrome(options=options)
    else:
        options = FirefoxOptions()
        if settings.headless:
            options.add_argument("-headless")
        options.add_argument(f"--width={width}")
        options.add_argument(f"--height={height}")
        driver = webdriver.Firefox(options=options)
    driver.set_page_load_timeout(settings.page_load_timeout_seconds)
    driver.implicitly_wait(0)
    return driver


class BrowserSession:
    """One browser window that pages are opened in, each exposed as a PageSession.

    The driver starts lazily on the first ``open`` and the element database
    cache is shared by every page opened through the session.
    """

    def __init__(
        self,
        settings: PipelineSettings | None = None,
        driver_factory: Callable[[BrowserSettings], Any] = create_driver,
    ) -> None:
        self.settings = settings or PipelineSettings()
        self.driver_factory = driver_factory
        self.cache = ElementDatabaseCache(self.settings.cache.ttl_seconds, self.settings.cache.max_entries)
        self.driver = None

    def open(self, url: str) -> PageSession:
        if self.driver is None:
            self.driver = self.driver_factory(self.settings.browser)
        log.info("Opening %s in %s", url, self.settings.browser.browser)
        self.driver.get(url)
        self.cache.invalidate(url)
        return PageSession(
            SeleniumPageAdapter(self.driver),
            SeleniumSandbox(self.driver),
            self.settings.page,
            self.cache,
        )

    def close(self) -> None:
        if self.driver is not None:
            self.driver.quit()
            self.driver = None

    def __enter__(self) -> BrowserSession:
        return self

    def __exit__(self, *exc_info) -> None:
        self.close()

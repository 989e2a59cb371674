from __future__ import annotations

import asyncio
import json
import logging
from typing import Any

from selenium.common.exceptions import JavascriptException, NoSuchWindowException, TimeoutException, WebDriverException

from variantkit.core.exceptions import TestExecutionError
from variantkit.core.models import PageData
from variantkit.harness.patterns import WAIT_FOR_ELEMENT_HELPER
from variantkit.utils.dom_extract import capture_element_database
from variantkit.utils.wait import wait_until

log = logging.getLogger(__name__)

ASYNC_EXECUTION_WRAPPER = """
const done = arguments[arguments.length - 1];
Promise.resolve({script}).then(
  done,
  (error) => done({{ status: "error", error: String((error && error.message) || error), testResults: null }})
);
"""

APPLY_CODE_SCRIPT = r"""
const [css, js, key, helper] = arguments;
const styleId = `variantkit-style-${key}`;
let style = document.getElementById(styleId);
if (!style) {
  style = document.createElement("style");
  style.id = styleId;
  document.head.appendChild(style);
}
style.textContent = css;
document.querySelectorAll(`script[data-variantkit="${key}"]`).forEach((node) => node.remove());
if (js) {
  const script = document.createElement("script");
  script.dataset.variantkit = key;
  script.textContent = `${helper}\n(() => {\n${js}\n})();`;
  document.body.appendChild(script);
}
return true;
"""


class SeleniumSandbox:
    """Runs assembled scripts in the page of a Selenium driver."""

    def __init__(self, driver) -> None:
        self.driver = driver

    async def execute_script(self, script: str, timeout_seconds: float) -> Any:
        return await asyncio.to_thread(self._execute, script, timeout_seconds)

    async def apply_code(self, css: str, js: str, key: str) -> None:
        await asyncio.to_thread(self.driver.execute_script, APPLY_CODE_SCRIPT, css, js, key, WAIT_FOR_ELEMENT_HELPER)

    def _execute(self, script: str, timeout_seconds: float) -> Any:
        self.driver.set_script_timeout(timeout_seconds)
        try:
            return self.driver.execute_async_script(ASYNC_EXECUTION_WRAPPER.format(script=script))
        except TimeoutException as exc:
            raise TestExecutionError(f"Test execution timed out after {timeout_seconds:g}s", "timeout") from exc
        except JavascriptException as exc:
            raise TestExecutionError(exc.msg or "JavaScript error", "javascript-error") from exc
        except NoSuchWindowException as exc:
            raise TestExecutionError(f"Tab is no longer available: {exc.msg}", "tab-error") from exc


class SeleniumPageAdapter:
    """Page capture service backed by a Selenium driver."""

    def __init__(self, driver, element_limit: int = 80, ready_timeout: float = 10.0) -> None:
        self.driver = driver
        self.element_limit = element_limit
        self.ready_timeout = ready_timeout

    async def capture(self) -> PageData:
        return await asyncio.to_thread(self._capture)

    async def screenshot(self) -> str:
        return await asyncio.to_thread(self.driver.get_screenshot_as_base64)

    def _capture(self) -> PageData:
        wait_until(
            lambda: self.driver.execute_script("return document.readyState") == "complete",
            timeout=self.ready_timeout,
        )
        try:
            database = capture_element_database(self.driver, self.element_limit)
        except WebDriverException as exc:
            log.error("Element capture failed: %s", exc)
            raise
        log.info("Captured %s elements from %s", len(database.elements), json.dumps(database.metadata.url))
        return PageData(element_database=database)

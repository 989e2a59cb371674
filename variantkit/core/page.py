from __future__ import annotations

import logging
from typing import Any, Protocol

from variantkit.config.schema import PageInteractionSettings
from variantkit.core.cache import ElementDatabaseCache
from variantkit.core.models import GeneratedCode, PageData
from variantkit.core.session import RequestGuard
from variantkit.utils.wait import with_timeout

log = logging.getLogger(__name__)


class PageCaptureService(Protocol):
    async def capture(self) -> PageData: ...

    async def screenshot(self) -> str: ...


class ExecutionSandbox(Protocol):
    async def execute_script(self, script: str, timeout_seconds: float) -> Any: ...

    async def apply_code(self, css: str, js: str, key: str) -> None: ...


class PageSession:
    """Talks to one page through its capture service and sandbox under hard time limits."""

    def __init__(
        self,
        capture_service: PageCaptureService,
        sandbox: ExecutionSandbox,
        settings: PageInteractionSettings | None = None,
        cache: ElementDatabaseCache | None = None,
        guard: RequestGuard | None = None,
    ) -> None:
        self.capture_service = capture_service
        self.sandbox = sandbox
        self.settings = settings or PageInteractionSettings()
        self.cache = cache
        self.guard = guard or RequestGuard()

    async def capture(self, cache_key: str | None = None, include_screenshot: bool = False) -> PageData:
        token = self.guard.begin(cache_key or "page")
        if self.cache is not None and cache_key:
            cached = self.cache.get(cache_key)
            if cached is not None:
                log.debug("Using cached element database for %s", cache_key)
                page_data = PageData(element_database=cached)
                return await self._with_screenshot(page_data) if include_screenshot else page_data

        page_data = await with_timeout(
            self.capture_service.capture(),
            self.settings.capture_timeout_seconds,
            "Page capture",
        )
        self.guard.check(token)
        if self.cache is not None:
            self.cache.put(cache_key or page_data.element_database.metadata.url, page_data.element_database)
        if include_screenshot and not page_data.screenshot:
            page_data = await self._with_screenshot(page_data)
        return page_data

    async def screenshot(self) -> str:
        return await with_timeout(
            self.capture_service.screenshot(),
            self.settings.screenshot_timeout_seconds,
            "Screenshot",
        )

    async def apply_variation(self, code: GeneratedCode, variation_number: int) -> None:
        """Injects one variation with the global code in front of it."""

        variation = next((item for item in code.variations if item.number == variation_number), None)
        if variation is None:
            raise KeyError(f"Unknown variation number: {variation_number}")
        css = "\n".join(part for part in (code.global_css, variation.css) if part)
        js = "\n".join(part for part in (code.global_js, variation.js) if part)
        await with_timeout(
            self.sandbox.apply_code(css, js, f"variation-{variation_number}"),
            self.settings.inject_timeout_seconds,
            "Code injection",
        )
        log.info("Applied variation %s (%s)", variation.number, variation.name)

    async def _with_screenshot(self, page_data: PageData) -> PageData:
        return page_data.model_copy(update={"screenshot": await self.screenshot()})

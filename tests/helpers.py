from __future__ import annotations

import asyncio
import json
from contextlib import contextmanager
from dataclasses import dataclass, field
from typing import Any, Iterator

import pytest
from selenium.common.exceptions import WebDriverException

from variantkit.config.schema import PipelineSettings, ProviderConfig
from variantkit.core.browser import BrowserSession
from variantkit.core.models import GeneratedCode, ModelResponse, PageData, TokenUsage, Variation
from variantkit.core.page import PageSession
from variantkit.llm.messages import ChatMessage

ELEMENT_DATABASE = {
    "elements": [
        {
            "selector": "#hero",
            "tag": "section",
            "text": "Build faster with Acme",
            "level": "structure",
            "id": "hero",
            "classes": ["hero"],
        },
        {
            "selector": "#cta",
            "tag": "button",
            "text": "Get started",
            "level": "primary",
            "id": "cta",
            "classes": ["btn", "btn-primary"],
            "section": "#hero",
            "visual": {"backgroundColor": "rgb(0, 82, 204)", "color": "rgb(255, 255, 255)", "w": 180, "h": 48},
            "alternativeSelectors": ["[data-testid='cta']"],
        },
        {
            "selector": "h1.hero-title",
            "tag": "H1",
            "text": "Build faster",
            "level": "primary",
            "classes": ["hero-title"],
            "section": "#hero",
        },
        {
            "selector": "nav > a:nth-child(2)",
            "tag": "a",
            "text": "Pricing",
            "level": "proximity",
            "classes": ["nav-link"],
        },
        {
            "selector": "#email",
            "tag": "input",
            "text": "",
            "level": "primary",
            "id": "email",
            "classes": ["form-control"],
        },
        {"selector": "#card-1", "tag": "div", "text": "Starter plan", "level": "proximity", "classes": ["card"]},
        {"selector": "#card-2", "tag": "div", "text": "Team plan", "level": "proximity", "classes": ["card"]},
        {"selector": "#footer", "tag": "footer", "text": "Acme Inc.", "level": "structure", "id": "footer"},
    ],
    "metadata": {
        "url": "https://shop.example.com/",
        "title": "Acme Store",
        "totalElements": 8,
        "mode": "full-page",
    },
}

PASSED_PAYLOAD = {
    "status": "completed",
    "error": None,
    "testResults": {
        "interactions": [{"type": "click", "target": "#cta", "success": True}],
        "validations": [{"test": "cta is red", "passed": True, "expected": "red", "actual": "red"}],
        "overallStatus": "passed",
    },
}

FAILED_PAYLOAD = {
    "status": "completed",
    "error": None,
    "testResults": {
        "interactions": [],
        "validations": [{"test": "cta is red", "passed": False, "expected": "red", "actual": "blue"}],
        "overallStatus": "failed",
    },
}


def variation_json(*variations: dict[str, Any], global_css: str = "", global_js: str = "") -> str:
    return json.dumps({"variations": list(variations), "globalCSS": global_css, "globalJS": global_js})


def make_code(css: str = "", js: str = "", name: str = "Variation 1") -> GeneratedCode:
    return GeneratedCode(variations=[Variation(number=1, name=name, css=css, js=js)])


def openai_config(**overrides) -> ProviderConfig:
    return ProviderConfig(provider="openai", model="gpt-4o-mini", api_key="test-key", **overrides)


@dataclass(slots=True)
class RecordedCall:
    messages: list[ChatMessage]
    config: ProviderConfig
    json_mode: bool


@dataclass
class ScriptedModel:
    """Stands in for call_model and answers with queued replies in order.

    A queued exception is raised instead of returned. Queued delays hold
    back the matching reply.
    """

    replies: list[Any] = field(default_factory=list)
    calls: list[RecordedCall] = field(default_factory=list)
    delays: list[float] = field(default_factory=list)

    async def __call__(self, messages, config, *, json_mode: bool = False) -> ModelResponse:
        self.calls.append(RecordedCall(messages=list(messages), config=config, json_mode=json_mode))
        if not self.replies:
            raise AssertionError("ScriptedModel ran out of replies")
        reply = self.replies.pop(0)
        delay = self.delays.pop(0) if self.delays else 0
        if delay:
            await asyncio.sleep(delay)
        if isinstance(reply, Exception):
            raise reply
        return ModelResponse(
            content=reply,
            usage=TokenUsage(prompt_tokens=120, completion_tokens=40, total_tokens=160),
            model=config.model,
            provider=config.provider,
            stop_reason="stop",
        )


@dataclass
class FakeSandbox:
    """Execution sandbox whose script results are queued payloads or exceptions."""

    outcomes: list[Any] = field(default_factory=list)
    timeouts: list[float] = field(default_factory=list)
    scripts: list[str] = field(default_factory=list)
    applied: list[tuple[str, str, str]] = field(default_factory=list)
    apply_delay: float = 0.0

    async def execute_script(self, script: str, timeout_seconds: float) -> Any:
        self.scripts.append(script)
        self.timeouts.append(timeout_seconds)
        outcome = self.outcomes.pop(0) if self.outcomes else None
        if isinstance(outcome, Exception):
            raise outcome
        return outcome

    async def apply_code(self, css: str, js: str, key: str) -> None:
        if self.apply_delay:
            await asyncio.sleep(self.apply_delay)
        self.applied.append((css, js, key))


@dataclass
class FakeCaptureService:
    page_data: PageData
    screenshot_data: str = "iVBORw0KGgo="
    delay: float = 0.0
    captures: int = 0

    async def capture(self) -> PageData:
        self.captures += 1
        if self.delay:
            await asyncio.sleep(self.delay)
        return self.page_data

    async def screenshot(self) -> str:
        if self.delay:
            await asyncio.sleep(self.delay)
        return self.screenshot_data


class RecordingTransport:
    """Transport double that records the wire request and replays a payload."""

    def __init__(self, payload: dict[str, Any] | None = None, failure: Exception | None = None) -> None:
        self.payload = payload or {}
        self.failure = failure
        self.calls: list[dict[str, Any]] = []

    def __call__(self, url: str, body: dict[str, Any], headers: dict[str, str], timeout: float) -> dict[str, Any]:
        self.calls.append({"url": url, "body": body, "headers": headers, "timeout": timeout})
        if self.failure is not None:
            raise self.failure
        return self.payload

    @property
    def body(self) -> dict[str, Any]:
        return self.calls[-1]["body"]


async def no_sleep(_seconds: float) -> None:
    return None


@contextmanager
def opened_page(url: str, settings: PipelineSettings | None = None) -> Iterator[tuple[BrowserSession, PageSession]]:
    """Opens the url in a real browser, skipping the test when no driver can start."""

    with BrowserSession(settings) as browser:
        try:
            session = browser.open(url)
        except WebDriverException as exc:
            pytest.skip(f"WebDriver could not start for {browser.settings.browser.browser}: {exc}")
        yield browser, session

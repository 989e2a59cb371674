from __future__ import annotations

import json
import logging
import re
from collections.abc import Awaitable, Callable
from dataclasses import dataclass, field

from variantkit.config.schema import ProviderConfig
from variantkit.core.exceptions import ProviderError
from variantkit.core.models import GeneratedCode, ModelResponse
from variantkit.harness.patterns import TEST_PATTERNS_SCRIPT
from variantkit.llm.client import call_model
from variantkit.llm.messages import ChatMessage, system_message, user_message
from variantkit.llm.parser import iter_fenced_blocks
from variantkit.llm.prompts import TEST_SCRIPT_SYSTEM_PROMPT
from variantkit.utils.selectors import extract_css_selectors, extract_query_selectors, strip_pseudo

log = logging.getLogger(__name__)

INTERACTION_PATTERNS = {
    "click": re.compile(r"addEventListener\(['\"]click['\"]|\.click\(|onclick=", re.IGNORECASE),
    "hover": re.compile(r"addEventListener\(['\"]mouse(?:enter|over)['\"]|:hover", re.IGNORECASE),
    "scroll": re.compile(r"addEventListener\(['\"]scroll['\"]|window\.scrollTo|scrollIntoView", re.IGNORECASE),
    "exitIntent": re.compile(r"mouseout|mouse\w*leave|clientY\s*[<>]=?\s*-?\d", re.IGNORECASE),
    "session": re.compile(r"sessionStorage\.(?:get|set)Item", re.IGNORECASE),
    "local": re.compile(r"localStorage\.(?:get|set)Item", re.IGNORECASE),
    "modal": re.compile(r"modal|popup|overlay|\.show\(|\.open\(", re.IGNORECASE),
    "form": re.compile(r"<input|<textarea|<select|<form|\.value\s*=", re.IGNORECASE),
    "timer": re.compile(r"setTimeout|setInterval", re.IGNORECASE),
    "animation": re.compile(r"animate|transition|@keyframes", re.IGNORECASE),
}
REQUEST_KEYWORDS = {
    "click": ("click", "tap"),
    "hover": ("hover",),
    "scroll": ("scroll",),
    "exitIntent": ("exit intent", "exit-intent", "leaves the page"),
    "session": ("session",),
    "local": ("localstorage", "remember"),
    "modal": ("modal", "popup", "pop-up", "overlay"),
    "form": ("form", "input field"),
    "timer": ("timer", "countdown", "delay"),
    "animation": ("animate", "animation"),
}
MINIMUM_DURATIONS = {"timer": 3000, "animation": 2000, "exitIntent": 1500}
TEST_FUNCTION_PATTERN = re.compile(r"(?:async\s+)?function\s+testVariation\s*\(")


@dataclass(slots=True)
class InteractionRequirements:
    types: list[str] = field(default_factory=list)
    complexity: str = "simple"
    suggested_duration_ms: int = 1000

    @property
    def has_interactions(self) -> bool:
        return bool(self.types)


@dataclass(slots=True)
class TestScriptPlan:
    __test__ = False

    script: str | None
    requirements: InteractionRequirements
    source: str
    reason: str = ""


def analyze_interaction_requirements(code: GeneratedCode, request: str) -> InteractionRequirements:
    full_code = f"{code.combined_css()}\n{code.combined_js()}"
    lowered = request.lower()
    types = [
        name
        for name, pattern in INTERACTION_PATTERNS.items()
        if pattern.search(full_code) or any(keyword in lowered for keyword in REQUEST_KEYWORDS[name])
    ]
    if not types:
        requirements = InteractionRequirements(types=types, complexity="simple", suggested_duration_ms=1000)
    elif len(types) <= 2:
        requirements = InteractionRequirements(types=types, complexity="medium", suggested_duration_ms=3000)
    else:
        requirements = InteractionRequirements(types=types, complexity="complex", suggested_duration_ms=5000)
    for name, minimum in MINIMUM_DURATIONS.items():
        if name in types:
            requirements.suggested_duration_ms = max(requirements.suggested_duration_ms, minimum)
    return requirements


def build_test_execution_script(test_source: str) -> str:
    """Wraps the pattern library and a testVariation() function into one async IIFE.

    The expression always resolves to
    ``{status, error, testResults, startTime, endTime, duration}``.
    """

    return f"""(async () => {{
  const startTime = Date.now();
  const output = {{ startTime, endTime: null, status: "running", error: null, testResults: null, duration: 0 }};
  try {{
{TEST_PATTERNS_SCRIPT}
{test_source}
    if (typeof testVariation !== "function") {{
      throw new Error("testVariation is not defined");
    }}
    const returned = await testVariation();
    output.testResults = Object.assign(TestPatterns.results(), returned || {{}});
    output.status = "completed";
  }} catch (error) {{
    output.status = "error";
    output.error = error && error.message ? error.message : String(error);
  }}
  output.endTime = Date.now();
  output.duration = output.endTime - startTime;
  return output;
}})()"""


def build_test_script_prompt(code: GeneratedCode, request: str, requirements: InteractionRequirements) -> str:
    interaction_types = ", ".join(requirements.types) or "static"
    return "\n\n".join(
        [
            "Generate a test script that validates this A/B test implementation.",
            f"USER REQUEST: {request}",
            "IMPLEMENTATION CODE:\nCSS:\n```css\n"
            f"{code.combined_css() or '/* No CSS */'}\n```\nJavaScript:\n```javascript\n"
            f"{code.combined_js() or '/* No JavaScript */'}\n```",
            f"DETECTED INTERACTIONS: {interaction_types}\n"
            f"SUGGESTED TEST DURATION: {requirements.suggested_duration_ms}ms",
            "AVAILABLE UTILITIES (call them as TestPatterns.<name>):\n"
            "- await waitForElement(selector, timeout)\n"
            "- await simulateClick(selector), await simulateHover(selector), await simulateExitIntent()\n"
            "- await scrollTo(yPosition), await scrollToElement(selector), await fillInput(selector, value)\n"
            "- isVisible(selector), exists(selector), getStyle(selector, property), getText(selector)\n"
            "- countElements(selector), getSessionStorage(key), getLocalStorage(key), captureState(label)\n"
            "- await validate(name, condition, expected, actual)",
            "REQUIREMENTS:\n"
            "1. Define exactly one async function named testVariation().\n"
            "2. Interactions and validations are recorded by TestPatterns; return TestPatterns.results() "
            "or an object with interactions, validations and overallStatus.\n"
            "3. Wait for elements before using them and catch errors.\n"
            "4. Validate every aspect of the user request.",
        ]
    )


def parse_test_script_response(text: str) -> str | None:
    candidates = [body for language, body in iter_fenced_blocks(text) if language in ("", "js", "javascript")]
    candidates.append(text)
    for candidate in candidates:
        match = TEST_FUNCTION_PATTERN.search(candidate)
        if match:
            return candidate[match.start():].strip()
    return None


def build_template_test(code: GeneratedCode) -> str | None:
    """Fallback test that checks the modified elements exist and reacts to simple interactions."""

    selectors: list[str] = []
    for selector in extract_query_selectors(code.combined_js()) + extract_css_selectors(code.combined_css()):
        base = strip_pseudo(selector)
        if base and base not in selectors:
            selectors.append(base)
    if not selectors:
        return None
    primary = json.dumps(selectors[0])
    lines = [
        "async function testVariation() {",
        "  try {",
        f"    const element = await TestPatterns.waitForElement({primary}, 5000);",
        "    await TestPatterns.validate('main element exists', Boolean(element), 'present', element ? 'present' : 'missing');",
        f"    await TestPatterns.validate('main element visible', TestPatterns.isVisible({primary}), 'visible', "
        f"TestPatterns.isVisible({primary}) ? 'visible' : 'hidden');",
    ]
    if INTERACTION_PATTERNS["click"].search(code.combined_js()):
        lines.append(f"    await TestPatterns.simulateClick({primary});")
    if INTERACTION_PATTERNS["session"].search(code.combined_js()) or INTERACTION_PATTERNS["local"].search(code.combined_js()):
        lines.append("    TestPatterns.captureState('after-interaction');")
    lines.extend(
        [
            "  } catch (error) {",
            "    await TestPatterns.validate('template test ran', false, 'no error', error.message);",
            "  }",
            "  return TestPatterns.results();",
            "}",
        ]
    )
    return "\n".join(lines)


def add_pre_execution_wait(test_source: str, wait_ms: int = 1000) -> str:
    """Delays the test body so late-applied variation code has time to run."""

    match = TEST_FUNCTION_PATTERN.search(test_source)
    if not match:
        return test_source
    brace = test_source.find("{", match.end())
    if brace < 0:
        return test_source
    return f"{test_source[: brace + 1]}\n  await TestPatterns.wait({wait_ms});{test_source[brace + 1 :]}"


ModelCall = Callable[..., Awaitable[ModelResponse]]


class TestScriptGenerator:
    """Produces testVariation() scripts for interactive variations."""

    __test__ = False

    def __init__(self, model_call: ModelCall = call_model, test_script_model: str | None = None) -> None:
        self.model_call = model_call
        self.test_script_model = test_script_model

    async def generate(
        self,
        code: GeneratedCode,
        request: str,
        provider_config: ProviderConfig,
        force: bool = False,
    ) -> TestScriptPlan:
        requirements = analyze_interaction_requirements(code, request)
        if not requirements.has_interactions and not force and "test" not in request.lower():
            return TestScriptPlan(
                script=None,
                requirements=requirements,
                source="skipped",
                reason="No interactive features detected",
            )

        messages: list[ChatMessage] = [
            system_message(TEST_SCRIPT_SYSTEM_PROMPT),
            user_message(build_test_script_prompt(code, request, requirements)),
        ]
        config = provider_config.with_model(self.test_script_model)
        try:
            response = await self.model_call(messages, config)
            script = parse_test_script_response(response.content)
        except ProviderError as exc:
            log.warning("Test script generation failed: %s", exc)
            script = None
        if script:
            return TestScriptPlan(script=script, requirements=requirements, source="model")

        template = build_template_test(code)
        if template:
            log.info("Using template test script")
            return TestScriptPlan(script=template, requirements=requirements, source="template")
        return TestScriptPlan(
            script=None,
            requirements=requirements,
            source="skipped",
            reason="No usable test script and no selectors for a template",
        )

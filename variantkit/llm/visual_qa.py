from __future__ import annotations

import json
import logging
from collections.abc import Awaitable, Callable

from variantkit.config.schema import ProviderConfig
from variantkit.core.adjustment import QA_FEEDBACK_MARKER, REQUIRED_FIX_MARKER
from variantkit.core.exceptions import ProviderError
from variantkit.core.models import ElementDatabase, GeneratedCode, ModelResponse, TestExecutionResult, VisualQAVerdict
from variantkit.llm.client import call_model
from variantkit.llm.messages import ChatMessage, image_part, system_message, text_part, user_message
from variantkit.llm.parser import recover_json_object
from variantkit.llm.prompts import VISUAL_QA_SYSTEM_PROMPT
from variantkit.logging.artifacts import ArtifactManager

log = logging.getLogger(__name__)

QA_ELEMENT_LIMIT = 10
PASSED_MODIFIER = 20
FAILED_MODIFIER = -30


def confidence_modifier(test_result: TestExecutionResult | None) -> int:
    if test_result is None:
        return 0
    return PASSED_MODIFIER if test_result.passed else FAILED_MODIFIER


def build_visual_qa_prompt(
    request: str,
    code: GeneratedCode,
    test_result: TestExecutionResult | None = None,
    database: ElementDatabase | None = None,
) -> str:
    sections = [
        f"ORIGINAL REQUEST:\n{request.strip()}",
        f"APPLIED CSS:\n```css\n{code.combined_css() or '/* none */'}\n```",
        f"APPLIED JS:\n```javascript\n{code.combined_js() or '// none'}\n```",
    ]
    if database and database.elements:
        elements = [
            {"selector": element.selector, "tag": element.tag, "text": element.text[:60]}
            for element in database.elements[:QA_ELEMENT_LIMIT]
        ]
        sections.append("TARGET ELEMENTS:\n" + json.dumps(elements, indent=2))

    modifier = confidence_modifier(test_result)
    if test_result is None:
        sections.append("INTERACTIVE TEST RESULTS: none were run. Judge from the screenshots alone.")
    else:
        framing = (
            f"The interactive tests passed; raise your confidence by {PASSED_MODIFIER}% when the screenshots agree."
            if modifier > 0
            else f"The interactive tests failed; lower your confidence by {abs(FAILED_MODIFIER)}% and look for the cause."
        )
        sections.append(f"INTERACTIVE TEST RESULTS:\n{test_result.summary()}\n{framing}")

    sections.append(
        "Compare BEFORE and AFTER. Check that the requested change is visible, correct, and causes no "
        "layout breakage, overlap, unreadable text or contrast problems.\n"
        "Respond with JSON only:\n"
        '{"passed": true, "changesDetected": true, "correctnessScore": 0-100, '
        '"issues": [{"severity": "critical|major|minor", "description": "..."}], '
        '"message": "one sentence verdict", "recommendations": ["..."]}'
    )
    return "\n\n".join(sections)


def parse_visual_qa_response(content: str, modifier: int = 0) -> VisualQAVerdict:
    payload = recover_json_object(content)
    if payload is None:
        log.info("Visual QA answered in prose; passing the text through")
        return VisualQAVerdict(passed=True, message=content.strip(), confidence_modifier=modifier, raw_response=content)
    score = payload.get("correctnessScore", payload.get("correctness_score", 0))
    try:
        score = max(0, min(100, int(score)))
    except (TypeError, ValueError):
        score = 0
    issues = payload.get("issues") or []
    recommendations = payload.get("recommendations") or []
    return VisualQAVerdict(
        passed=bool(payload.get("passed", False)),
        changes_detected=bool(payload.get("changesDetected", payload.get("changes_detected", False))),
        correctness_score=score,
        issues=list(issues) if isinstance(issues, list) else [issues],
        message=str(payload.get("message") or ""),
        recommendations=[str(item) for item in recommendations] if isinstance(recommendations, list) else [str(recommendations)],
        confidence_modifier=modifier,
        raw_response=content,
    )


def format_visual_qa_feedback(verdict: VisualQAVerdict) -> str | None:
    """Renders a failing verdict as automated feedback for the next adjustment turn."""

    if verdict.skipped or verdict.error or (verdict.passed and not verdict.issues):
        return None
    lines = [QA_FEEDBACK_MARKER, f"Score: {verdict.correctness_score}/100"]
    if verdict.message:
        lines.append(verdict.message)
    for index, issue in enumerate(verdict.issues, start=1):
        if isinstance(issue, dict):
            severity = issue.get("severity", "issue")
            description = issue.get("description") or issue.get("message") or json.dumps(issue)
            lines.append(f"{REQUIRED_FIX_MARKER} {index} ({severity}): {description}")
        else:
            lines.append(f"{REQUIRED_FIX_MARKER} {index}: {issue}")
    if verdict.recommendations:
        lines.append("Recommendations:")
        lines.extend(f"- {item}" for item in verdict.recommendations)
    return "\n".join(lines)


ModelCall = Callable[..., Awaitable[ModelResponse]]


class VisualQAEvaluator:
    """Asks a vision model whether the AFTER screenshot shows the requested change."""

    def __init__(self, model_call: ModelCall = call_model, artifact_manager: ArtifactManager | None = None) -> None:
        self.model_call = model_call
        self.artifact_manager = artifact_manager

    async def evaluate(
        self,
        before_image: str | None,
        after_image: str | None,
        request: str,
        code: GeneratedCode,
        provider_config: ProviderConfig,
        test_result: TestExecutionResult | None = None,
        database: ElementDatabase | None = None,
    ) -> VisualQAVerdict:
        modifier = confidence_modifier(test_result)
        if not before_image or not after_image:
            return VisualQAVerdict(
                passed=True,
                skipped=True,
                message="Visual QA skipped: before and after screenshots are both required",
                confidence_modifier=modifier,
            )
        if self.artifact_manager:
            stamp = self.artifact_manager.timestamp()
            self.artifact_manager.write_screenshot("before", before_image, stamp)
            self.artifact_manager.write_screenshot("after", after_image, stamp)

        messages: list[ChatMessage] = [
            system_message(VISUAL_QA_SYSTEM_PROMPT),
            user_message(
                text_part("BEFORE screenshot (original page):"),
                image_part(before_image),
                text_part("AFTER screenshot (variation applied):"),
                image_part(after_image),
                text_part(build_visual_qa_prompt(request, code, test_result, database)),
            ),
        ]
        try:
            response = await self.model_call(messages, provider_config, json_mode=True)
        except ProviderError as exc:
            log.error("Visual QA call failed (%s): %s", exc.kind, exc)
            return VisualQAVerdict(
                passed=False,
                error=True,
                message=f"Visual QA failed: {exc}",
                confidence_modifier=modifier,
            )
        verdict = parse_visual_qa_response(response.content, modifier)
        log.info("Visual QA verdict: passed=%s score=%s", verdict.passed, verdict.correctness_score)
        return verdict

from __future__ import annotations

import logging
from collections import deque
from collections.abc import Sequence

from variantkit.config.schema import ProviderConfig
from variantkit.core.merge import detect_merge_violations
from variantkit.core.models import (
    ConversationTurn,
    GeneratedCode,
    MergeViolation,
    PageData,
    SelectedElement,
    VariationSpec,
)
from variantkit.core.pipeline import GenerationPipeline, GenerationResult
from variantkit.core.session import RequestGuard, RequestToken
from variantkit.llm.messages import ChatMessage, text_part, user_message
from variantkit.llm.prompt_builder import build_generation_messages, build_generation_prompt
from variantkit.llm.prompts import QA_REFINEMENT_SYSTEM_PROMPT, REFINEMENT_SYSTEM_PROMPT

log = logging.getLogger(__name__)

QA_FEEDBACK_MARKER = "**VISUAL QA FEEDBACK**"
REQUIRED_FIX_MARKER = "**Required Fix**"
MERGE_RULE = (
    "MERGE RULE: output = existing code + new changes. Keep every existing selector, "
    "style assignment, text change and helper function. Never replace the existing code."
)


class ConversationLog:
    """Append-only record of turns in one working session, capped to the last N."""

    def __init__(self, limit: int = 10) -> None:
        self._turns: deque[ConversationTurn] = deque(maxlen=limit)

    def append(self, request: str, code: GeneratedCode) -> ConversationTurn:
        turn = ConversationTurn(request=request, code=code.copy())
        self._turns.append(turn)
        return turn

    @property
    def turns(self) -> tuple[ConversationTurn, ...]:
        return tuple(self._turns)

    @property
    def last(self) -> ConversationTurn | None:
        return self._turns[-1] if self._turns else None

    def __len__(self) -> int:
        return len(self._turns)

    def format(self) -> str:
        lines = []
        for index, turn in enumerate(self._turns, start=1):
            names = ", ".join(variation.name for variation in turn.code.variations) or "no variations"
            lines.append(f"{index}. Request: {turn.request.strip()} -> {names}")
        return "\n".join(lines)


def is_automated_feedback(feedback: str) -> bool:
    return QA_FEEDBACK_MARKER in feedback or REQUIRED_FIX_MARKER in feedback


def format_applied_code(code: GeneratedCode) -> str:
    sections = ["CURRENT GENERATED CODE (ALREADY APPLIED TO PAGE):"]
    for variation in code.variations:
        sections.append(f"Variation {variation.number} - {variation.name}")
        sections.append(f"CSS:\n```css\n{variation.css or '/* none */'}\n```")
        sections.append(f"JS:\n```javascript\n{variation.js or '// none'}\n```")
    if code.global_css:
        sections.append(f"GLOBAL CSS:\n```css\n{code.global_css}\n```")
    if code.global_js:
        sections.append(f"GLOBAL JS:\n```javascript\n{code.global_js}\n```")
    return "\n".join(sections)


def build_adjustment_description(
    previous_code: GeneratedCode,
    feedback: str,
    test_summary: str | None = None,
    selected_element: SelectedElement | None = None,
) -> str:
    parts = [format_applied_code(previous_code), f"NEW REQUEST TO ADD:\n{feedback.strip()}", MERGE_RULE]
    mandatory = []
    if is_automated_feedback(feedback):
        mandatory.append("Every issue in the automated QA feedback above is a required fix.")
    if test_summary:
        mandatory.append(f"Interactive test results:\n{test_summary.strip()}\nFix every failing check.")
    if mandatory:
        parts.append("MANDATORY FIXES:\n" + "\n".join(mandatory))
    if selected_element:
        parts.append(
            f'The user attached the element "{selected_element.selector}" to this request; '
            "search for the target inside it."
        )
    return "\n\n".join(parts)


def build_corrective_prompt(previous_code: GeneratedCode, feedback: str, violations: Sequence[MergeViolation]) -> str:
    lines = ["Your previous response dropped code that is already applied to the page:"]
    lines.extend(f"{index}. {violation.message}" for index, violation in enumerate(violations, start=1))
    lines.extend(
        [
            "",
            "Try again. Start from the exact existing code, add only the new change, "
            "and do not remove any selector, style property or function.",
            format_applied_code(previous_code),
            f"NEW REQUEST TO ADD:\n{feedback.strip()}",
            "Respond with the complete JSON object.",
        ]
    )
    return "\n".join(lines)


class AdjustmentEngine:
    """Refines applied variation code turn by turn without dropping earlier changes.

    A turn overtaken by a newer one on the same page raises StaleResultError
    and leaves the history untouched.
    """

    def __init__(self, pipeline: GenerationPipeline, page_data: PageData, guard: RequestGuard | None = None) -> None:
        self.pipeline = pipeline
        self.page_data = page_data
        self.log = ConversationLog(pipeline.settings.history_limit)
        self.guard = guard or RequestGuard()
        self.target = page_data.element_database.metadata.url or "session"

    async def adjust(
        self,
        previous_code: GeneratedCode | None,
        feedback: str,
        *,
        provider_config: ProviderConfig,
        test_summary: str | None = None,
        conversation_history: ConversationLog | None = None,
        selected_element: SelectedElement | None = None,
    ) -> GenerationResult:
        token = self.guard.begin(self.target)
        history = conversation_history if conversation_history is not None else self.log
        database = self.page_data.element_database
        settings = self.pipeline.settings

        if previous_code is None or previous_code.is_empty:
            specs = [VariationSpec(name="Variation 1")]
            prompt = build_generation_prompt(
                self.page_data,
                feedback,
                specs,
                settings.prompt,
                selected_element=selected_element,
                conversation_context=history.format() or None,
            )
            messages = build_generation_messages(prompt, self.page_data.screenshot)
            result = await self.pipeline.run_turn(messages, provider_config, database, prompt=prompt, mode="initial")
            return self._finish(result, feedback, history, token)

        applied = previous_code.copy()
        qa_mode = is_automated_feedback(feedback) or bool(test_summary)
        specs = [VariationSpec(name=variation.name) for variation in applied.variations] or [
            VariationSpec(name="Variation 1")
        ]
        description = build_adjustment_description(applied, feedback, test_summary, selected_element)
        prompt = build_generation_prompt(
            self.page_data,
            description,
            specs,
            settings.prompt,
            selected_element=selected_element,
            conversation_context=history.format() or None,
        )
        system_prompt = QA_REFINEMENT_SYSTEM_PROMPT if qa_mode else REFINEMENT_SYSTEM_PROMPT
        messages = build_generation_messages(prompt, self.page_data.screenshot, system_prompt=system_prompt)
        mode = "qa_fix" if qa_mode else "refinement"
        result = await self.pipeline.run_turn(messages, provider_config, database, prompt=prompt, mode=mode)
        if result.code.exhausted or qa_mode:
            return self._finish(result, feedback, history, token)

        violations = detect_merge_violations(applied, result.code, feedback)
        if violations and settings.corrective_retry:
            self.guard.check(token)
            log.warning("Refinement dropped %s item(s); retrying with corrective feedback", len(violations))
            retry_messages: list[ChatMessage] = [
                *messages,
                ChatMessage(role="assistant", parts=[text_part(result.response.content)]),
                user_message(build_corrective_prompt(applied, feedback, violations)),
            ]
            retry = await self.pipeline.run_turn(
                retry_messages, provider_config, database, prompt=prompt, mode=mode
            )
            retry.corrective_retry_used = True
            if not retry.code.exhausted:
                result = retry
                violations = detect_merge_violations(applied, result.code, feedback)
            else:
                result.corrective_retry_used = True
        result.violations = violations
        for violation in violations:
            log.warning("Merge violation: %s", violation.message)
        return self._finish(result, feedback, history, token)

    async def submit(
        self,
        feedback: str,
        *,
        provider_config: ProviderConfig,
        test_summary: str | None = None,
        selected_element: SelectedElement | None = None,
    ) -> GenerationResult:
        """Continues the session from the code of the last turn."""

        last = self.log.last
        return await self.adjust(
            last.code if last else None,
            feedback,
            provider_config=provider_config,
            test_summary=test_summary,
            selected_element=selected_element,
        )

    def _finish(
        self, result: GenerationResult, feedback: str, history: ConversationLog, token: RequestToken
    ) -> GenerationResult:
        self.pipeline.audit(result, feedback)
        self.guard.check(token)
        if not result.code.exhausted:
            history.append(feedback, result.code)
        return result

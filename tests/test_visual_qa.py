from __future__ import annotations

import asyncio
import json

from tests.helpers import FAILED_PAYLOAD, PASSED_PAYLOAD, ScriptedModel, make_code, openai_config
from variantkit.core.adjustment import is_automated_feedback
from variantkit.core.exceptions import ProviderTransportError
from variantkit.core.models import TestExecutionResult, VisualQAVerdict
from variantkit.llm.visual_qa import VisualQAEvaluator, format_visual_qa_feedback, parse_visual_qa_response

BEFORE = "data:image/png;base64,QkVGT1JF"
AFTER = "data:image/png;base64,QUZURVI="
CODE = make_code(css="#cta { background: red !important; }")
VERDICT = {
    "passed": False,
    "changesDetected": True,
    "correctnessScore": 140,
    "issues": [{"severity": "major", "description": "White text on red has low contrast"}],
    "message": "The CTA turned red but the label is hard to read.",
    "recommendations": ["Darken the red"],
}


def evaluate(model, before=BEFORE, after=AFTER, test_result=None, database=None):
    evaluator = VisualQAEvaluator(model)
    return asyncio.run(
        evaluator.evaluate(before, after, "Make the CTA red", CODE, openai_config(), test_result, database)
    )


def test_missing_screenshot_skips_without_calling_the_model():
    model = ScriptedModel()
    verdict = evaluate(model, after=None)
    assert verdict.skipped and verdict.passed
    assert model.calls == []


def test_structured_verdict(element_database):
    model = ScriptedModel([json.dumps(VERDICT)])
    test_result = TestExecutionResult.model_validate(PASSED_PAYLOAD["testResults"])
    verdict = evaluate(model, test_result=test_result, database=element_database)

    assert not verdict.passed
    assert verdict.changes_detected
    assert verdict.correctness_score == 100
    assert verdict.issues[0]["severity"] == "major"
    assert verdict.recommendations == ["Darken the red"]
    assert verdict.confidence_modifier == 20

    call = model.calls[0]
    assert call.json_mode
    parts = call.messages[1].parts
    assert [part.is_image for part in parts] == [False, True, False, True, False]
    assert parts[1].data == "QkVGT1JF" and parts[3].data == "QUZURVI="
    prompt = parts[4].text
    assert "raise your confidence by 20%" in prompt
    assert '"selector": "#cta"' in prompt


def test_compared_screenshots_are_stored(artifact_manager):
    model = ScriptedModel([json.dumps(VERDICT)])
    evaluator = VisualQAEvaluator(model, artifact_manager)
    asyncio.run(evaluator.evaluate(BEFORE, AFTER, "Make the CTA red", CODE, openai_config()))
    files = sorted(artifact_manager.screenshot_root.iterdir())
    assert [path.name.split("_", 1)[1] for path in files] == ["after.png", "before.png"]
    assert files[0].read_bytes() == b"AFTER"
    assert files[1].read_bytes() == b"BEFORE"


def test_failed_tests_lower_confidence():
    model = ScriptedModel([json.dumps({"passed": True, "correctnessScore": 80})])
    test_result = TestExecutionResult.model_validate(FAILED_PAYLOAD["testResults"])
    verdict = evaluate(model, test_result=test_result)
    assert verdict.confidence_modifier == -30
    assert "lower your confidence by 30%" in model.calls[0].messages[1].parts[4].text


def test_prose_reply_is_passed_through():
    verdict = parse_visual_qa_response("Looks great, the button is clearly red.")
    assert verdict.passed
    assert verdict.message == "Looks great, the button is clearly red."
    assert verdict.issues == []


def test_provider_failure_is_an_error_verdict():
    model = ScriptedModel([ProviderTransportError("down", provider="openai", kind="provider_unavailable")])
    verdict = evaluate(model)
    assert verdict.error and not verdict.passed
    assert format_visual_qa_feedback(verdict) is None


def test_failing_verdict_becomes_automated_feedback():
    verdict = parse_visual_qa_response(json.dumps(VERDICT))
    feedback = format_visual_qa_feedback(verdict)
    assert feedback.startswith("**VISUAL QA FEEDBACK**")
    assert "**Required Fix** 1 (major): White text on red has low contrast" in feedback
    assert "- Darken the red" in feedback
    assert is_automated_feedback(feedback)


def test_clean_pass_produces_no_feedback():
    assert format_visual_qa_feedback(VisualQAVerdict(passed=True, correctness_score=95)) is None
    assert format_visual_qa_feedback(VisualQAVerdict(passed=True, skipped=True)) is None

from __future__ import annotations

import asyncio

import pytest

from tests.helpers import FAILED_PAYLOAD, PASSED_PAYLOAD, FakeSandbox, ScriptedModel, make_code, no_sleep, openai_config
from variantkit.config.schema import TestExecutionSettings
from variantkit.core.exceptions import ProviderTransportError, TestExecutionError
from variantkit.core.models import TestRunOutcome
from variantkit.harness.builder import (
    TestScriptGenerator,
    add_pre_execution_wait,
    analyze_interaction_requirements,
    build_template_test,
    build_test_execution_script,
    parse_test_script_response,
)
from variantkit.harness.executor import TestExecutor, classify_test_error

CLICK_JS = "waitForElement('#cta', (el) => { el.addEventListener('click', () => { el.textContent = 'Thanks'; }); });"
MODEL_SCRIPT = (
    "Here is the test:\n```javascript\n"
    "async function testVariation() {\n"
    "  await TestPatterns.simulateClick('#cta');\n"
    "  return TestPatterns.results();\n"
    "}\n```"
)


def timeout_error():
    return TestExecutionError("Test execution timed out after 10s", "timeout")


def test_execution_script_wraps_library_and_test():
    script = build_test_execution_script("async function testVariation() { return {}; }")
    assert script.startswith("(async () => {")
    assert script.endswith("})()")
    assert "const TestPatterns" in script
    assert "await testVariation()" in script
    assert "TestPatterns.results()" in script


def test_interaction_requirements():
    static = analyze_interaction_requirements(make_code(css="#cta { color: red; }"), "Make the CTA red")
    assert static.types == [] and static.suggested_duration_ms == 1000

    click = analyze_interaction_requirements(make_code(js=CLICK_JS), "Change the label after a click")
    assert click.types == ["click"]
    assert click.complexity == "medium" and click.suggested_duration_ms == 3000

    busy = analyze_interaction_requirements(
        make_code(js=CLICK_JS + "\nsetTimeout(() => sessionStorage.setItem('seen', '1'), 500);"),
        "Show a popup on hover",
    )
    assert {"click", "hover", "session", "timer", "modal"} <= set(busy.types)
    assert busy.complexity == "complex" and busy.suggested_duration_ms == 5000


def test_parse_test_script_response():
    assert parse_test_script_response(MODEL_SCRIPT).startswith("async function testVariation()")
    assert parse_test_script_response("I would click the button.") is None


def test_template_test_targets_modified_element():
    template = build_template_test(make_code(css="#cta:hover { color: red; }", js=CLICK_JS))
    assert 'TestPatterns.waitForElement("#cta", 5000)' in template
    assert 'TestPatterns.simulateClick("#cta")' in template
    assert template.rstrip().endswith("}")
    assert build_template_test(make_code()) is None


def test_pre_execution_wait_is_inserted_into_the_body():
    source = add_pre_execution_wait("async function testVariation() {\n  return 1;\n}", 1500)
    assert source.startswith("async function testVariation() {\n  await TestPatterns.wait(1500);")
    assert add_pre_execution_wait("const x = 1;") == "const x = 1;"


def test_generator_skips_static_changes():
    model = ScriptedModel()
    plan = asyncio.run(TestScriptGenerator(model).generate(make_code(css="#cta { color: red; }"), "Make it red", openai_config()))
    assert plan.script is None and plan.source == "skipped"
    assert model.calls == []


def test_generator_uses_model_script_with_test_model():
    model = ScriptedModel([MODEL_SCRIPT])
    generator = TestScriptGenerator(model, test_script_model="gpt-4.1-mini")
    plan = asyncio.run(generator.generate(make_code(js=CLICK_JS), "Change the label after a click", openai_config()))
    assert plan.source == "model"
    assert plan.script.startswith("async function testVariation()")
    assert plan.requirements.types == ["click"]
    assert model.calls[0].config.model == "gpt-4.1-mini"
    assert "DETECTED INTERACTIONS: click" in model.calls[0].messages[1].text


@pytest.mark.parametrize(
    "reply",
    ["No code today.", ProviderTransportError("boom", provider="openai", kind="provider_unavailable")],
)
def test_generator_falls_back_to_template(reply):
    model = ScriptedModel([reply])
    plan = asyncio.run(TestScriptGenerator(model).generate(make_code(js=CLICK_JS), "test the click", openai_config()))
    assert plan.source == "template"
    assert "simulateClick" in plan.script


def test_timeout_then_success_grows_timeout():
    sandbox = FakeSandbox([timeout_error(), PASSED_PAYLOAD])
    sleeps = []

    async def record_sleep(seconds):
        sleeps.append(seconds)

    outcome = asyncio.run(TestExecutor(TestExecutionSettings(), sleep=record_sleep).run("async function testVariation() {}", sandbox))
    assert outcome.success
    assert outcome.attempts == 2
    assert outcome.timeout_seconds == pytest.approx(15.0)
    assert sandbox.timeouts == [pytest.approx(10.0), pytest.approx(15.0)]
    assert sleeps == [0.5]
    assert outcome.result.passed
    assert outcome.result.interactions[0].target == "#cta"


def test_timeouts_never_exceed_the_ceiling():
    sandbox = FakeSandbox([timeout_error(), timeout_error(), timeout_error()])
    outcome = asyncio.run(TestExecutor(TestExecutionSettings(), sleep=no_sleep).run("", sandbox))
    assert not outcome.success
    assert outcome.attempts == 3
    assert outcome.error_type == "timeout"
    assert sandbox.timeouts == [pytest.approx(10.0), pytest.approx(15.0), pytest.approx(20.0)]
    assert "did not finish in time" in outcome.recovery_message()


def test_requested_timeout_is_capped():
    sandbox = FakeSandbox([PASSED_PAYLOAD])
    outcome = asyncio.run(TestExecutor(TestExecutionSettings(), sleep=no_sleep).run("", sandbox, timeout_seconds=60))
    assert sandbox.timeouts == [20.0]
    assert outcome.timeout_seconds == 20.0


def test_completed_runs_are_not_retried():
    sandbox = FakeSandbox([FAILED_PAYLOAD, PASSED_PAYLOAD])
    outcome = asyncio.run(TestExecutor(TestExecutionSettings(), sleep=no_sleep).run("", sandbox))
    assert outcome.success and outcome.attempts == 1
    assert outcome.result.overall_status == "failed"
    assert "cta is red" in outcome.result.summary()
    assert len(sandbox.scripts) == 1


def test_missing_element_retry_waits_before_the_test_body():
    source = "async function testVariation() {\n  return TestPatterns.results();\n}"
    sandbox = FakeSandbox([TestExecutionError("Element not found: #cta"), PASSED_PAYLOAD])
    outcome = asyncio.run(TestExecutor(TestExecutionSettings(), sleep=no_sleep).run(source, sandbox))
    assert outcome.success and outcome.attempts == 2
    assert "TestPatterns.wait(1000)" not in sandbox.scripts[0]
    assert "async function testVariation() {\n  await TestPatterns.wait(1000);" in sandbox.scripts[1]


def test_sandbox_error_type_is_kept():
    error = TestExecutionError("'div[' is not a valid selector", "javascript-error")
    sandbox = FakeSandbox([error, error, error])
    outcome = asyncio.run(TestExecutor(TestExecutionSettings(), sleep=no_sleep).run("", sandbox))
    assert not outcome.success
    assert outcome.error_type == "javascript-error"
    assert len(set(sandbox.scripts)) == 1


def test_missing_results_are_retried_then_reported():
    sandbox = FakeSandbox([None, "nonsense", {"status": "completed", "testResults": None}])
    outcome = asyncio.run(TestExecutor(TestExecutionSettings(), sleep=no_sleep).run("", sandbox))
    assert not outcome.success
    assert outcome.error_type == "no-results"
    assert outcome.error == "No results returned from test execution"


def test_script_errors_keep_partial_results():
    payload = {
        "status": "error",
        "error": "el is not defined",
        "testResults": {"interactions": [], "validations": [], "overallStatus": "passed"},
    }
    outcome = asyncio.run(TestExecutor(sleep=no_sleep).run("", FakeSandbox([payload])))
    assert outcome.success
    assert outcome.result.overall_status == "error"
    assert outcome.result.error == "el is not defined"


def test_hanging_sandbox_is_cut_off():
    class HangingSandbox:
        async def execute_script(self, script, timeout_seconds):
            await asyncio.sleep(10)

    settings = TestExecutionSettings(timeout_seconds=0.01, ceiling_seconds=0.02, max_retries=0)
    outcome = asyncio.run(TestExecutor(settings, sleep=no_sleep).run("", HangingSandbox()))
    assert not outcome.success
    assert outcome.error_type == "timeout"
    assert outcome.attempts == 1


@pytest.mark.parametrize(
    ("message", "error_type"),
    [
        ("Test execution timed out after 10s", "timeout"),
        ("Element not found: #cta", "selector-not-found"),
        ("No results returned from test execution", "no-results"),
        ("SyntaxError: Unexpected token '}'", "javascript-error"),
        ("Tab is no longer available", "tab-error"),
        ("something odd", "unknown"),
    ],
)
def test_classify_test_error(message, error_type):
    assert classify_test_error(message) == error_type


def test_recovery_message_for_success():
    assert TestRunOutcome(success=True).recovery_message() == "Test completed."

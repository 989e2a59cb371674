from __future__ import annotations

import asyncio
from pathlib import Path

import pytest

from tests.helpers import ELEMENT_DATABASE, PASSED_PAYLOAD, FakeSandbox, ScriptedModel, no_sleep, variation_json
from variantkit.core.exceptions import ProviderTransportError
from variantkit.core.models import GenerationRequest
from variantkit.core.pipeline import GenerationPipeline
from variantkit.harness.executor import TestExecutor

STORED_SETTINGS = {"provider": "openai", "authToken": "stored-key"}
CTA_JS = "waitForElement('#cta', (el) => { el.style.color = '#fff'; });"
CLICK_JS = "waitForElement('#cta', (el) => { el.addEventListener('click', () => { el.textContent = 'Thanks'; }); });"
TEST_SCRIPT = "```javascript\nasync function testVariation() {\n  return TestPatterns.results();\n}\n```"


def build_pipeline(model, pipeline_settings, audit_logger=None, artifact_manager=None) -> GenerationPipeline:
    return GenerationPipeline(
        pipeline_settings,
        model_call=model,
        audit_logger=audit_logger,
        artifact_manager=artifact_manager,
        test_executor=TestExecutor(pipeline_settings.test_execution, sleep=no_sleep),
        stored_settings=STORED_SETTINGS,
        environ={},
    )


def cta_reply(css="#cta { background-color: red !important; }", js=CTA_JS) -> str:
    return variation_json({"number": 1, "name": "Red CTA", "css": css, "js": js})


def test_red_cta_request_end_to_end(page_data, pipeline_settings, audit_logger):
    model = ScriptedModel([cta_reply()])
    pipeline = build_pipeline(model, pipeline_settings, audit_logger)
    request = GenerationRequest(page_data=page_data, description="Make the CTA button red with white text")

    result = asyncio.run(pipeline.generate(request))

    assert not result.parse_failed
    assert result.warnings == []
    assert "#cta" in result.code.variations[0].css
    assert result.code.variations[0].js == CTA_JS

    call = model.calls[0]
    assert call.json_mode
    assert call.config.provider == "openai" and call.config.api_key == "stored-key"
    assert call.messages[1].text.startswith('YOU MUST ONLY USE THESE SELECTORS')

    record = audit_logger.read(audit_logger.generations_path)[0]
    assert record["kind"] == "initial"
    assert record["parse_strategy"] == "strict_json"
    assert record["usage"]["total_tokens"] == 160
    assert record["warnings"] == []


def test_generic_selectors_are_repaired_before_returning(page_data, pipeline_settings):
    model = ScriptedModel([cta_reply(css="button.btn { background-color: red; }", js="")])
    result = asyncio.run(
        build_pipeline(model, pipeline_settings).generate(GenerationRequest(page_data=page_data, description="Red CTA"))
    )
    assert result.code.variations[0].css == "#cta { background-color: red; }"
    assert result.warnings == []


def test_unknown_selectors_are_reported_not_dropped(page_data, pipeline_settings, audit_logger):
    model = ScriptedModel([cta_reply(css=".promo { display: none; }", js="")])
    result = asyncio.run(
        build_pipeline(model, pipeline_settings, audit_logger).generate(
            GenerationRequest(page_data=page_data, description="Hide the promo")
        )
    )
    assert result.code.variations[0].css == ".promo { display: none; }"
    assert [(item.selector, item.kind) for item in result.warnings] == [(".promo", "unknown")]
    assert audit_logger.read(audit_logger.generations_path)[0]["warnings"][0]["selector"] == ".promo"


def test_unparseable_reply_is_recorded(page_data, pipeline_settings, audit_logger, artifact_manager):
    model = ScriptedModel(["Sorry, I can only describe the change in words."])
    pipeline = build_pipeline(model, pipeline_settings, audit_logger, artifact_manager)
    result = asyncio.run(pipeline.generate(GenerationRequest(page_data=page_data, description="Red CTA")))

    assert result.parse_failed
    assert result.code.variations == []
    failure = audit_logger.read(audit_logger.parse_failures_path)[0]
    assert failure["provider"] == "openai"
    assert Path(failure["artifact_path"]).read_text(encoding="utf-8").startswith("Sorry")
    assert audit_logger.read(audit_logger.generations_path)[0]["exhausted"] is True


def test_provider_errors_propagate(page_data, pipeline_settings):
    error = ProviderTransportError("Rate limited", provider="openai", kind="rate_limited", status=429)
    pipeline = build_pipeline(ScriptedModel([error]), pipeline_settings)
    with pytest.raises(ProviderTransportError) as excinfo:
        asyncio.run(pipeline.generate(GenerationRequest(page_data=page_data, description="Red CTA")))
    assert excinfo.value.retryable


def test_camel_case_request_with_overrides_and_screenshot(pipeline_settings):
    request = GenerationRequest.model_validate(
        {
            "pageData": {"elementDatabase": ELEMENT_DATABASE, "screenshot": "data:image/png;base64,iVBORw0KGgo="},
            "description": "Try two CTA colors",
            "variations": [{"name": "Red"}, {"name": "Green"}],
            "settings": {"provider": "gemini", "geminiApiKey": "gemini-key"},
            "selectedElement": {"selector": "#hero", "tag": "section"},
        }
    )
    model = ScriptedModel([cta_reply()])
    asyncio.run(build_pipeline(model, pipeline_settings).generate(request))

    call = model.calls[0]
    assert call.config.provider == "gemini" and call.config.model == "gemini-2.5-flash"
    parts = call.messages[1].parts
    assert parts[0].is_image
    prompt = parts[-1].text
    assert "VARIATIONS TO CREATE:\n1. Red\n2. Green" in prompt
    assert "exactly 2 item(s)" in prompt
    assert "SELECTED AREA (SEARCH SCOPE):" in prompt


def test_interactive_result_is_tested_in_the_sandbox(page_data, pipeline_settings, audit_logger, artifact_manager):
    model = ScriptedModel([cta_reply(js=CLICK_JS), TEST_SCRIPT])
    pipeline = build_pipeline(model, pipeline_settings, audit_logger, artifact_manager)
    sandbox = FakeSandbox([PASSED_PAYLOAD])

    async def scenario():
        result = await pipeline.generate(GenerationRequest(page_data=page_data, description="Thank the user on click"))
        return await pipeline.test(result, "Thank the user on click", sandbox)

    result = asyncio.run(scenario())

    assert result.test_plan.source == "model"
    assert result.test_outcome.success and result.test_outcome.result.passed
    assert "async function testVariation()" in sandbox.scripts[0]
    run = audit_logger.read(audit_logger.test_runs_path)[0]
    assert run["overall_status"] == "passed" and run["attempts"] == 1
    assert Path(run["script_path"]).suffix == ".js"


def test_static_result_skips_testing(page_data, pipeline_settings):
    model = ScriptedModel([cta_reply(js="")])
    pipeline = build_pipeline(model, pipeline_settings)
    sandbox = FakeSandbox()

    async def scenario():
        result = await pipeline.generate(GenerationRequest(page_data=page_data, description="Make the CTA red"))
        return await pipeline.test(result, "Make the CTA red", sandbox)

    result = asyncio.run(scenario())
    assert result.test_plan.source == "skipped"
    assert result.test_outcome is None
    assert sandbox.scripts == []

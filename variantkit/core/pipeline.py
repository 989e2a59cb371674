from __future__ import annotations

import logging
from collections.abc import Awaitable, Callable, Mapping
from dataclasses import dataclass, field
from typing import Any

from variantkit.config.loader import resolve_provider_config
from variantkit.config.schema import PipelineSettings, ProviderConfig
from variantkit.core.exceptions import ProviderError
from variantkit.core.models import (
    ElementDatabase,
    GeneratedCode,
    GenerationRequest,
    MergeViolation,
    ModelResponse,
    SelectorWarning,
    TestRunOutcome,
)
from variantkit.core.selector_validator import SelectorValidator, log_unrepaired
from variantkit.harness.builder import TestScriptGenerator, TestScriptPlan
from variantkit.harness.executor import TestExecutor
from variantkit.llm.client import call_model
from variantkit.llm.messages import ChatMessage
from variantkit.llm.parser import parse_generated_code
from variantkit.llm.prompt_builder import build_generation_messages, build_generation_prompt
from variantkit.logging.artifacts import ArtifactManager
from variantkit.logging.audit import GenerationAuditLogger

log = logging.getLogger(__name__)

ModelCall = Callable[..., Awaitable[ModelResponse]]


@dataclass(slots=True)
class GenerationResult:
    code: GeneratedCode
    warnings: list[SelectorWarning]
    response: ModelResponse | None
    prompt: str
    provider_config: ProviderConfig
    mode: str = "initial"
    violations: list[MergeViolation] = field(default_factory=list)
    corrective_retry_used: bool = False
    test_plan: TestScriptPlan | None = None
    test_outcome: TestRunOutcome | None = None

    @property
    def parse_failed(self) -> bool:
        return self.code.exhausted


class GenerationPipeline:
    """Runs one generation turn: prompt, provider call, parse, validate and repair."""

    def __init__(
        self,
        settings: PipelineSettings | None = None,
        *,
        model_call: ModelCall = call_model,
        validator: SelectorValidator | None = None,
        audit_logger: GenerationAuditLogger | None = None,
        artifact_manager: ArtifactManager | None = None,
        test_executor: TestExecutor | None = None,
        test_script_generator: TestScriptGenerator | None = None,
        stored_settings: Mapping[str, Any] | None = None,
        environ: Mapping[str, str] | None = None,
    ) -> None:
        self.settings = settings or PipelineSettings()
        self.model_call = model_call
        self.validator = validator or SelectorValidator()
        self.audit_logger = audit_logger
        self.artifact_manager = artifact_manager
        self.test_executor = test_executor or TestExecutor(self.settings.test_execution)
        self.test_script_generator = test_script_generator or TestScriptGenerator(
            model_call=model_call,
            test_script_model=self.settings.test_script_model,
        )
        self.stored_settings = stored_settings or {}
        self.environ = environ

    def resolve_config(self, overrides: Mapping[str, Any] | None = None) -> ProviderConfig:
        return resolve_provider_config(self.stored_settings, overrides, self.environ)

    async def generate(self, request: GenerationRequest) -> GenerationResult:
        config = self.resolve_config(request.settings)
        prompt = build_generation_prompt(
            request.page_data,
            request.description,
            request.variation_specs,
            self.settings.prompt,
            selected_element=request.selected_element,
        )
        messages = build_generation_messages(prompt, request.page_data.screenshot)
        result = await self.run_turn(
            messages,
            config,
            request.page_data.element_database,
            prompt=prompt,
        )
        self.audit(result, request.description)
        return result

    async def run_turn(
        self,
        messages: list[ChatMessage],
        config: ProviderConfig,
        database: ElementDatabase,
        *,
        prompt: str,
        mode: str = "initial",
    ) -> GenerationResult:
        try:
            response = await self.model_call(messages, config, json_mode=True)
        except ProviderError as exc:
            log.error("%s call failed (%s): %s", exc.provider, exc.kind, exc)
            raise
        code, warnings = self.process_response(response, database)
        return GenerationResult(
            code=code,
            warnings=warnings,
            response=response,
            prompt=prompt,
            provider_config=config,
            mode=mode,
        )

    def process_response(
        self, response: ModelResponse, database: ElementDatabase
    ) -> tuple[GeneratedCode, list[SelectorWarning]]:
        code = parse_generated_code(response.content)
        if code.exhausted:
            self.record_parse_failure(response)
            return code, []
        self.validator.repair(code, database)
        warnings = self.validator.validate(code, database)
        log_unrepaired(warnings)
        return code, warnings

    def record_parse_failure(self, response: ModelResponse) -> None:
        artifact_path = None
        if self.artifact_manager:
            artifact_path = str(self.artifact_manager.write_raw_response("parse_failure", response.content))
        if self.audit_logger:
            self.audit_logger.write_parse_failure(response.content, response.provider, artifact_path)

    def audit(self, result: GenerationResult, request_text: str) -> None:
        if self.audit_logger:
            self.audit_logger.write_generation(
                result.mode,
                result.response,
                result.code,
                result.warnings,
                result.violations,
                request=request_text,
            )
        log.info(
            "%s turn produced %s variation(s) via %s with %s selector warning(s)",
            result.mode,
            len(result.code.variations),
            result.code.parse_strategy or "no strategy",
            len(result.warnings),
        )

    async def test(
        self,
        result: GenerationResult,
        request_text: str,
        sandbox,
        force: bool = False,
    ) -> GenerationResult:
        """Generates a test script for the result and runs it in the sandbox."""

        if not self.settings.test_execution.enabled or result.code.is_empty:
            return result
        plan = await self.test_script_generator.generate(result.code, request_text, result.provider_config, force=force)
        result.test_plan = plan
        if plan.script is None:
            log.info("Skipping test execution: %s", plan.reason)
            return result
        script_path = None
        if self.artifact_manager:
            script_path = str(self.artifact_manager.write_test_script(plan.source, plan.script))
        outcome = await self.test_executor.run(plan.script, sandbox)
        if self.audit_logger:
            self.audit_logger.write_test_run(outcome, script_path)
        result.test_outcome = outcome
        return result

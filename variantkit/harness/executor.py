from __future__ import annotations

import asyncio
import logging
import time
from typing import Any

from pydantic import ValidationError

from variantkit.config.schema import TestExecutionSettings
from variantkit.core.exceptions import TestExecutionError
from variantkit.core.models import TestExecutionResult, TestRunOutcome
from variantkit.harness.builder import add_pre_execution_wait, build_test_execution_script

log = logging.getLogger(__name__)


def classify_test_error(message: str) -> str:
    """Guesses the failure type from an error message."""

    lowered = (message or "").lower()
    if "timeout" in lowered or "timed out" in lowered:
        return "timeout"
    if "element not found" in lowered or "selector" in lowered:
        return "selector-not-found"
    if "no results" in lowered or "null" in lowered:
        return "no-results"
    if "syntax" in lowered or "unexpected token" in lowered or "is not defined" in lowered:
        return "javascript-error"
    if "tab" in lowered or "not found" in lowered or "no such window" in lowered:
        return "tab-error"
    return "unknown"


def error_type_of(error: TestExecutionError) -> str:
    if error.error_type != "unknown":
        return error.error_type
    return classify_test_error(str(error))


class TestExecutor:
    """Runs a testVariation() script in a page sandbox with bounded retries.

    Only execution failures are retried: a crash, a timeout, or a missing
    result payload. A run that completed is returned at once whether its
    validations passed or failed. When an element was not found the retry
    waits before the test body starts.
    """

    __test__ = False

    def __init__(self, settings: TestExecutionSettings | None = None, sleep=asyncio.sleep) -> None:
        self.settings = settings or TestExecutionSettings()
        self.sleep = sleep

    async def run(self, test_source: str, sandbox, timeout_seconds: float | None = None) -> TestRunOutcome:
        settings = self.settings
        timeout = min(timeout_seconds or settings.timeout_seconds, settings.ceiling_seconds)
        source = test_source
        script = build_test_execution_script(source)
        waited = False
        started = time.monotonic()
        last_error: TestExecutionError | None = None
        attempts = 1 + settings.max_retries

        for attempt in range(1, attempts + 1):
            if attempt > 1:
                timeout = min(timeout * settings.backoff, settings.ceiling_seconds)
                log.warning(
                    "Retrying test execution (attempt %s/%s, timeout %.1fs) after: %s",
                    attempt,
                    attempts,
                    timeout,
                    last_error,
                )
                await self.sleep(settings.settle_delay_seconds)
            try:
                payload = await self._execute_once(script, sandbox, timeout)
                result = self._read_payload(payload)
            except TestExecutionError as exc:
                last_error = exc
                if error_type_of(exc) == "selector-not-found" and not waited:
                    source = add_pre_execution_wait(source, settings.pre_execution_wait_ms)
                    script = build_test_execution_script(source)
                    waited = True
                continue
            outcome = TestRunOutcome(
                success=True,
                result=result,
                attempts=attempt,
                timeout_seconds=timeout,
                duration_seconds=time.monotonic() - started,
            )
            log.info("Test run finished with status %s after %s attempt(s)", result.overall_status, attempt)
            return outcome

        message = str(last_error) if last_error else "Test execution failed"
        error_type = error_type_of(last_error) if last_error else "unknown"
        log.warning("Test execution failed after %s attempts (%s): %s", attempts, error_type, message)
        return TestRunOutcome(
            success=False,
            attempts=attempts,
            timeout_seconds=timeout,
            duration_seconds=time.monotonic() - started,
            error=message,
            error_type=error_type,
        )

    @staticmethod
    async def _execute_once(script: str, sandbox, timeout: float) -> Any:
        try:
            return await asyncio.wait_for(sandbox.execute_script(script, timeout), timeout=timeout)
        except asyncio.TimeoutError as exc:
            raise TestExecutionError(f"Test execution timed out after {timeout:g}s", "timeout") from exc
        except TestExecutionError:
            raise
        except Exception as exc:  # noqa: BLE001 - sandbox adapters raise driver-specific errors.
            raise TestExecutionError(str(exc) or type(exc).__name__) from exc

    @staticmethod
    def _read_payload(payload: Any) -> TestExecutionResult:
        if not isinstance(payload, dict):
            raise TestExecutionError("No results returned from test execution", "no-results")
        test_results = payload.get("testResults")
        if payload.get("status") == "error" and not test_results:
            raise TestExecutionError(payload.get("error") or "Test script failed without results")
        if not isinstance(test_results, dict):
            raise TestExecutionError("No results returned from test execution", "no-results")
        if payload.get("status") == "error" and payload.get("error"):
            test_results = {**test_results, "overallStatus": "error", "error": payload["error"]}
        try:
            return TestExecutionResult.model_validate(test_results)
        except ValidationError as exc:
            raise TestExecutionError(f"Malformed test results: {exc}", "no-results") from exc

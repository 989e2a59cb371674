from __future__ import annotations

import json
from datetime import UTC, datetime
from pathlib import Path
from typing import Any

from variantkit.core.models import GeneratedCode, MergeViolation, ModelResponse, SelectorWarning, TestRunOutcome


class GenerationAuditLogger:
    """Persists generation turns, parse failures and test runs as JSONL."""

    def __init__(self, root: str | Path = "artifacts") -> None:
        self.root = Path(root)
        self.root.mkdir(parents=True, exist_ok=True)
        self.generations_path = self.root / "generations.jsonl"
        self.parse_failures_path = self.root / "parse_failures.jsonl"
        self.test_runs_path = self.root / "test_runs.jsonl"

    def write_generation(
        self,
        kind: str,
        response: ModelResponse | None,
        code: GeneratedCode,
        warnings: list[SelectorWarning],
        violations: list[MergeViolation] | None = None,
        request: str = "",
    ) -> None:
        payload = {
            "kind": kind,
            "request": request,
            "provider": response.provider if response else None,
            "model": response.model if response else None,
            "usage": response.usage.to_dict() if response else None,
            "parse_strategy": code.parse_strategy,
            "exhausted": code.exhausted,
            "variation_count": len(code.variations),
            "warnings": [warning.to_dict() for warning in warnings],
            "violations": [{"kind": item.kind, "value": item.value} for item in violations or []],
        }
        self._append(self.generations_path, payload)

    def write_parse_failure(self, raw_text: str, provider: str | None = None, artifact_path: str | None = None) -> None:
        self._append(
            self.parse_failures_path,
            {"provider": provider, "raw_text": raw_text, "artifact_path": artifact_path},
        )

    def write_test_run(self, outcome: TestRunOutcome, script_path: str | None = None) -> None:
        payload = {
            "success": outcome.success,
            "overall_status": outcome.result.overall_status if outcome.result else None,
            "attempts": outcome.attempts,
            "timeout_seconds": outcome.timeout_seconds,
            "duration_seconds": round(outcome.duration_seconds, 3),
            "error": outcome.error,
            "error_type": outcome.error_type,
            "script_path": script_path,
        }
        self._append(self.test_runs_path, payload)

    def read(self, path: Path) -> list[dict[str, Any]]:
        if not path.exists():
            return []
        with path.open("r", encoding="utf-8") as handle:
            return [json.loads(line) for line in handle if line.strip()]

    @staticmethod
    def _append(path: Path, payload: dict[str, Any]) -> None:
        payload = {"timestamp": datetime.now(UTC).isoformat(), **payload}
        with path.open("a", encoding="utf-8") as handle:
            handle.write(json.dumps(payload) + "\n")

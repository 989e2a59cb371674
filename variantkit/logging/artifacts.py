from __future__ import annotations

import base64
from datetime import UTC, datetime
from pathlib import Path

from variantkit.llm.messages import image_part


class ArtifactManager:
    """Creates and manages raw responses, test scripts and screenshots."""

    def __init__(self, root: str | Path = "artifacts") -> None:
        self.root = Path(root)
        self.response_root = self.root / "raw_responses"
        self.script_root = self.root / "test_scripts"
        self.screenshot_root = self.root / "screenshots"
        self._ensure_structure()

    def _ensure_structure(self) -> None:
        self.root.mkdir(parents=True, exist_ok=True)
        for directory in (self.response_root, self.script_root, self.screenshot_root):
            directory.mkdir(parents=True, exist_ok=True)

    @staticmethod
    def timestamp() -> str:
        return datetime.now(UTC).strftime("%Y%m%dT%H%M%S%fZ")

    def write_raw_response(self, label: str, content: str, timestamp: str | None = None) -> Path:
        stamp = timestamp or self.timestamp()
        path = self.response_root / f"{stamp}_{label}.txt"
        path.write_text(content, encoding="utf-8")
        return path

    def write_test_script(self, label: str, script: str, timestamp: str | None = None) -> Path:
        stamp = timestamp or self.timestamp()
        path = self.script_root / f"{stamp}_{label}.js"
        path.write_text(script, encoding="utf-8")
        return path

    def write_screenshot(self, label: str, image: str, timestamp: str | None = None) -> Path:
        """Stores a base64 or data-URL screenshot as a PNG file."""

        stamp = timestamp or self.timestamp()
        path = self.screenshot_root / f"{stamp}_{label}.png"
        path.write_bytes(base64.b64decode(image_part(image).data or ""))
        return path


from __future__ import annotations

from pydantic import BaseModel, ConfigDict, Field, field_validator, model_validator

SUPPORTED_PROVIDERS = ("openai", "anthropic", "gemini")
DEFAULT_MODELS = {
    "openai": "gpt-4o-mini",
    "anthropic": "claude-3-7-sonnet-20250219",
    "gemini": "gemini-2.5-flash",
}
MAX_REQUEST_BYTES = 5 * 1024 * 1024
TEST_TIMEOUT_CEILING_SECONDS = 20.0


class ProviderConfig(BaseModel):
    """Immutable provider settings resolved once per generation turn."""

    model_config = ConfigDict(frozen=True)

    provider: str = "openai"
    model: str = DEFAULT_MODELS["openai"]
    api_key: str = Field(default="", repr=False)
    max_tokens: int = 4000
    temperature: float = 0.5
    timeout_seconds: float = 60.0
    max_request_bytes: int = MAX_REQUEST_BYTES

    @field_validator("provider")
    @classmethod
    def validate_provider(cls, value: str) -> str:
        normalized = value.lower().strip()
        if normalized not in SUPPORTED_PROVIDERS:
            raise ValueError(f"Unsupported LLM provider: {value}")
        return normalized

    def with_model(self, model: str | None) -> "ProviderConfig":
        if not model:
            return self
        return self.model_copy(update={"model": model})


class PromptSettings(BaseModel):
    max_elements: int = 35
    scope_filter_min_elements: int = 5
    text_limit: int = 80
    max_classes: int = 5
    max_css_chars: int = 1500
    max_js_chars: int = 2000


class TestExecutionSettings(BaseModel):
    __test__ = False

    enabled: bool = True
    timeout_seconds: float = 10.0
    ceiling_seconds: float = TEST_TIMEOUT_CEILING_SECONDS
    max_retries: int = 2
    backoff: float = 1.5
    settle_delay_seconds: float = 0.5
    pre_execution_wait_ms: int = 1000

    @field_validator("backoff")
    @classmethod
    def validate_backoff(cls, value: float) -> float:
        if value < 1:
            raise ValueError("backoff must be >= 1")
        return value

    @field_validator("max_retries")
    @classmethod
    def validate_retries(cls, value: int) -> int:
        if value < 0:
            raise ValueError("max_retries must be >= 0")
        return value

    @model_validator(mode="after")
    def validate_ceiling(self) -> "TestExecutionSettings":
        if self.ceiling_seconds > TEST_TIMEOUT_CEILING_SECONDS:
            raise ValueError(f"ceiling_seconds cannot exceed {TEST_TIMEOUT_CEILING_SECONDS:g}")
        if self.timeout_seconds > self.ceiling_seconds:
            raise ValueError("timeout_seconds cannot exceed ceiling_seconds")
        return self


class PageInteractionSettings(BaseModel):
    capture_timeout_seconds: float = 15.0
    screenshot_timeout_seconds: float = 5.0
    inject_timeout_seconds: float = 8.0


class BrowserSettings(BaseModel):
    browser: str = "chrome"
    headless: bool = True
    page_load_timeout_seconds: int = 30
    window_size: str = "1440,1200"

    @field_validator("browser")
    @classmethod
    def validate_browser(cls, value: str) -> str:
        normalized = value.lower()
        if normalized not in {"chrome", "firefox"}:
            raise ValueError(f"Unsupported browser: {value}")
        return normalized


class CacheSettings(BaseModel):
    ttl_seconds: float = 60.0
    max_entries: int = 16


class PipelineSettings(BaseModel):
    history_limit: int = 10
    corrective_retry: bool = True
    artifacts_root: str = "artifacts"
    test_script_model: str | None = None
    prompt: PromptSettings = Field(default_factory=PromptSettings)
    test_execution: TestExecutionSettings = Field(default_factory=TestExecutionSettings)
    page: PageInteractionSettings = Field(default_factory=PageInteractionSettings)
    cache: CacheSettings = Field(default_factory=CacheSettings)
    browser: BrowserSettings = Field(default_factory=BrowserSettings)

    @field_validator("history_limit")
    @classmethod
    def validate_history_limit(cls, value: int) -> int:
        if value < 1:
            raise ValueError("history_limit must be at least 1")
        return value

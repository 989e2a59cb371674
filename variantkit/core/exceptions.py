from __future__ import annotations


class VariantKitError(RuntimeError):
    """Base class for variation pipeline failures."""


class ConfigurationError(VariantKitError):
    """Raised when provider settings or credentials are missing or invalid."""


class ProviderError(VariantKitError):
    """Raised when an LLM provider call cannot produce usable content."""

    kind = "provider_error"

    def __init__(
        self,
        message: str,
        *,
        provider: str,
        kind: str | None = None,
        status: int | None = None,
        hint: str = "",
    ) -> None:
        super().__init__(message)
        self.provider = provider
        self.kind = kind or self.kind
        self.status = status
        self.hint = hint

    @property
    def retryable(self) -> bool:
        return self.kind in {"rate_limited", "provider_unavailable"}

    def __str__(self) -> str:
        message = super().__str__()
        if self.hint:
            return f"{message} ({self.hint})"
        return message


class ProviderTransportError(ProviderError):
    """Raised for auth, rate limit, payload size and availability failures."""


class ProviderResponseEmpty(ProviderError):
    """Raised when the provider answered successfully but with no content."""

    kind = "empty_response"


class TestExecutionError(VariantKitError):
    """Raised inside the executor when a single test attempt fails to run."""

    __test__ = False

    def __init__(self, message: str, error_type: str = "unknown", attempts: int = 1) -> None:
        super().__init__(message)
        self.error_type = error_type
        self.attempts = attempts


class PageInteractionTimeout(VariantKitError):
    """Raised when capture, screenshot or injection exceeds its ceiling."""

    def __init__(self, operation: str, timeout_seconds: float) -> None:
        super().__init__(f"{operation} did not finish within {timeout_seconds:g}s")
        self.operation = operation
        self.timeout_seconds = timeout_seconds


class StaleResultError(VariantKitError):
    """Raised when a result belongs to a request that a newer one superseded."""

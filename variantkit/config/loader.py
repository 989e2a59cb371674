from __future__ import annotations

import json
import os
from collections.abc import Mapping
from pathlib import Path
from typing import Any

from pydantic import ValidationError

from variantkit.config.schema import DEFAULT_MODELS, PipelineSettings, ProviderConfig
from variantkit.core.exceptions import ConfigurationError

KEY_FIELDS = {
    "openai": ("apiKey", "authToken", "openaiApiKey"),
    "anthropic": ("apiKey", "anthropicApiKey"),
    "gemini": ("apiKey", "geminiApiKey"),
}
KEY_ENV = {
    "openai": "OPENAI_API_KEY",
    "anthropic": "ANTHROPIC_API_KEY",
    "gemini": "GEMINI_API_KEY",
}
MODEL_ENV = {
    "openai": "OPENAI_MODEL",
    "anthropic": "ANTHROPIC_MODEL",
    "gemini": "GEMINI_MODEL",
}
NUMERIC_FIELDS = {
    "maxTokens": "max_tokens",
    "temperature": "temperature",
    "timeoutSeconds": "timeout_seconds",
}


class ConfigLoader:
    """Loads and validates the JSON pipeline configuration."""

    @staticmethod
    def load(path: str | Path) -> PipelineSettings:
        config_path = Path(path)
        with config_path.open("r", encoding="utf-8") as handle:
            payload = json.load(handle)
        return PipelineSettings.model_validate(payload)


def resolve_provider_config(
    stored: Mapping[str, Any] | None,
    overrides: Mapping[str, Any] | None = None,
    environ: Mapping[str, str] | None = None,
) -> ProviderConfig:
    """Builds the provider settings for one turn.

    Every field is looked up in the same order: per-request overrides, the
    stored settings object, environment variables, built-in defaults.
    """

    stored = stored or {}
    overrides = overrides or {}
    environ = os.environ if environ is None else environ
    layers = (overrides, stored)

    provider = _first(layers, "provider") or environ.get("LLM_PROVIDER") or "openai"
    provider = str(provider).lower().strip()
    if provider not in DEFAULT_MODELS:
        raise ConfigurationError(f"Unsupported LLM provider: {provider}")

    model = overrides.get("model")
    if not model and _stored_provider_matches(stored, provider):
        model = stored.get("model")
    model = model or environ.get(MODEL_ENV[provider]) or DEFAULT_MODELS[provider]

    api_key = None
    for layer in layers:
        api_key = _first((layer,), *KEY_FIELDS[provider])
        if api_key:
            break
    api_key = api_key or environ.get(KEY_ENV[provider])
    if not api_key:
        raise ConfigurationError(
            f"{KEY_ENV[provider]} is required when the provider is {provider}; "
            "set it in the settings store or the environment"
        )

    extra: dict[str, Any] = {}
    for source_name, field_name in NUMERIC_FIELDS.items():
        value = _first(layers, source_name)
        if value is not None:
            extra[field_name] = value

    try:
        return ProviderConfig(provider=provider, model=str(model), api_key=str(api_key), **extra)
    except ValidationError as exc:
        raise ConfigurationError(f"Invalid provider settings: {exc}") from exc


def _first(layers, *names: str):
    for layer in layers:
        for name in names:
            value = layer.get(name)
            if value not in (None, ""):
                return value
    return None


def _stored_provider_matches(stored: Mapping[str, Any], provider: str) -> bool:
    stored_provider = stored.get("provider")
    return not stored_provider or str(stored_provider).lower() == provider

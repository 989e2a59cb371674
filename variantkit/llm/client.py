from __future__ import annotations

import asyncio
import json
import logging
from abc import ABC, abstractmethod
from collections.abc import Callable, Mapping
from typing import Any
from urllib import error, request

from variantkit.config.schema import ProviderConfig
from variantkit.core.exceptions import ProviderResponseEmpty, ProviderTransportError
from variantkit.core.models import ModelResponse, TokenUsage
from variantkit.llm.messages import ChatMessage

log = logging.getLogger(__name__)

LARGE_REQUEST_BYTES = 1024 * 1024

Transport = Callable[[str, dict[str, Any], dict[str, str], float], dict[str, Any]]

PROVIDER_LABELS = {"openai": "OpenAI", "anthropic": "Anthropic", "gemini": "Gemini"}
KEY_SETTINGS = {
    "openai": "the OpenAI auth token (authToken or OPENAI_API_KEY)",
    "anthropic": "the Anthropic API key (anthropicApiKey or ANTHROPIC_API_KEY)",
    "gemini": "the Gemini API key (geminiApiKey or GEMINI_API_KEY)",
}


class TransportFailure(Exception):
    """Raised by a transport for HTTP errors and network failures."""

    def __init__(self, status: int | None, detail: str) -> None:
        super().__init__(detail)
        self.status = status
        self.detail = detail


class ProviderClient(ABC):
    """Provider-neutral gateway to one LLM vendor.

    Subclasses translate canonical messages to the vendor wire format and
    read content and usage back. Requests are never retried here.
    """

    provider_name = "unknown"

    def __init__(self, config: ProviderConfig, transport: Transport | None = None) -> None:
        self.config = config
        self.transport = transport or _post_json

    @property
    def model(self) -> str:
        return self.config.model

    @abstractmethod
    def endpoint(self) -> str:
        raise NotImplementedError

    @abstractmethod
    def headers(self) -> dict[str, str]:
        raise NotImplementedError

    @abstractmethod
    def build_request(self, messages: list[ChatMessage], json_mode: bool = False) -> dict[str, Any]:
        raise NotImplementedError

    @abstractmethod
    def parse_response(self, payload: dict[str, Any]) -> ModelResponse:
        raise NotImplementedError

    async def call(self, messages: list[ChatMessage], json_mode: bool = False) -> ModelResponse:
        body = self.build_request(messages, json_mode=json_mode)
        size = len(json.dumps(body).encode("utf-8"))
        if size > self.config.max_request_bytes:
            raise ProviderTransportError(
                f"Request of {size} bytes exceeds the {self.config.max_request_bytes} byte limit",
                provider=self.provider_name,
                kind="payload_too_large",
                hint=self.hint_for("payload_too_large"),
            )
        if size > LARGE_REQUEST_BYTES:
            log.warning("Large %s request: %.1f MB", self.provider_name, size / (1024 * 1024))
        log.debug("Calling %s model %s (%s bytes)", self.provider_name, self.model, size)
        try:
            payload = await asyncio.to_thread(
                self.transport,
                self.endpoint(),
                body,
                self.headers(),
                self.config.timeout_seconds,
            )
        except TransportFailure as exc:
            raise self.classify_failure(exc) from exc
        response = self.parse_response(payload)
        log.info(
            "%s responded with %s prompt / %s completion tokens",
            self.provider_name,
            response.usage.prompt_tokens,
            response.usage.completion_tokens,
        )
        return response

    def classify_failure(self, failure: TransportFailure) -> ProviderTransportError:
        status = failure.status
        if status is None:
            kind = "provider_unavailable"
        elif status in (401, 403):
            kind = "auth_invalid"
        elif status == 429:
            kind = "rate_limited"
        elif status == 413:
            kind = "payload_too_large"
        elif status >= 500:
            kind = "provider_unavailable"
        else:
            kind = "request_invalid"
        label = PROVIDER_LABELS.get(self.provider_name, self.provider_name)
        prefix = f"{label} request failed with status {status}" if status else f"{label} request could not be completed"
        return ProviderTransportError(
            f"{prefix}: {failure.detail[:500]}",
            provider=self.provider_name,
            kind=kind,
            status=status,
            hint=self.hint_for(kind, status),
        )

    def hint_for(self, kind: str, status: int | None = None) -> str:
        label = PROVIDER_LABELS.get(self.provider_name, self.provider_name)
        if kind == "auth_invalid":
            return f"Check {KEY_SETTINGS.get(self.provider_name, 'the API key')}"
        if kind == "rate_limited":
            return f"{label} rate limit reached; wait a moment before trying again"
        if kind == "payload_too_large":
            return "Reduce the number of elements sent or drop the screenshot"
        if kind == "provider_unavailable":
            return f"{label} is unreachable or overloaded; try again later"
        if status == 404:
            return f"Model {self.model!r} was not found; choose a different model in settings"
        return "The provider rejected the request; check the model and settings"

    def empty_response(self, stop_reason: str | None, hint: str | None = None) -> ProviderResponseEmpty:
        label = PROVIDER_LABELS.get(self.provider_name, self.provider_name)
        return ProviderResponseEmpty(
            f"{label} returned an empty response (stop reason: {stop_reason or 'unknown'})",
            provider=self.provider_name,
            hint=hint or "Try again or rephrase the request",
        )


class OpenAIProviderClient(ProviderClient):
    provider_name = "openai"

    def endpoint(self) -> str:
        return "https://api.openai.com/v1/chat/completions"

    def headers(self) -> dict[str, str]:
        return {
            "Authorization": f"Bearer {self.config.api_key}",
            "Content-Type": "application/json",
        }

    def uses_completion_tokens(self) -> bool:
        return self.model.startswith(("gpt-5", "o1", "o3", "o4"))

    def build_request(self, messages: list[ChatMessage], json_mode: bool = False) -> dict[str, Any]:
        wire_messages = []
        for message in messages:
            if not any(part.is_image for part in message.parts):
                wire_messages.append({"role": message.role, "content": message.text})
                continue
            content = []
            for part in message.parts:
                if part.is_image:
                    content.append(
                        {
                            "type": "image_url",
                            "image_url": {
                                "url": f"data:{part.media_type};base64,{part.data}",
                                "detail": "high",
                            },
                        }
                    )
                elif part.text:
                    content.append({"type": "text", "text": part.text})
            wire_messages.append({"role": message.role, "content": content})

        body: dict[str, Any] = {"model": self.model, "messages": wire_messages}
        if self.uses_completion_tokens():
            body["max_completion_tokens"] = self.config.max_tokens
        else:
            body["max_tokens"] = self.config.max_tokens
            body["temperature"] = self.config.temperature
        if json_mode:
            body["response_format"] = {"type": "json_object"}
        return body

    def parse_response(self, payload: dict[str, Any]) -> ModelResponse:
        choices = payload.get("choices") or []
        choice = choices[0] if choices else {}
        content = ((choice.get("message") or {}).get("content") or "").strip()
        stop_reason = choice.get("finish_reason")
        usage = normalize_usage(payload.get("usage"))
        if not content:
            hint = None
            details = (payload.get("usage") or {}).get("completion_tokens_details") or {}
            if stop_reason == "length" and details.get("reasoning_tokens"):
                hint = "The model used its whole token budget on reasoning; raise max tokens or pick a non-reasoning model"
            raise self.empty_response(stop_reason, hint)
        return ModelResponse(
            content=content,
            usage=usage,
            model=payload.get("model", self.model),
            provider=self.provider_name,
            stop_reason=stop_reason,
        )


class AnthropicProviderClient(ProviderClient):
    provider_name = "anthropic"

    def endpoint(self) -> str:
        return "https://api.anthropic.com/v1/messages"

    def headers(self) -> dict[str, str]:
        return {
            "x-api-key": self.config.api_key,
            "anthropic-version": "2023-06-01",
            "Content-Type": "application/json",
        }

    def build_request(self, messages: list[ChatMessage], json_mode: bool = False) -> dict[str, Any]:
        system_text = "\n\n".join(message.text for message in messages if message.role == "system")
        wire_messages = []
        for message in messages:
            if message.role == "system":
                continue
            content = []
            for part in message.parts:
                if part.is_image:
                    content.append(
                        {
                            "type": "image",
                            "source": {"type": "base64", "media_type": part.media_type, "data": part.data},
                        }
                    )
                elif part.text:
                    content.append({"type": "text", "text": part.text})
            wire_messages.append({"role": message.role, "content": content})

        body: dict[str, Any] = {
            "model": self.model,
            "max_tokens": self.config.max_tokens,
            "temperature": self.config.temperature,
            "messages": wire_messages,
        }
        if system_text:
            body["system"] = [{"type": "text", "text": system_text, "cache_control": {"type": "ephemeral"}}]
        return body

    def parse_response(self, payload: dict[str, Any]) -> ModelResponse:
        blocks = payload.get("content") or []
        content = "".join(
            block.get("text", "") for block in blocks if isinstance(block, dict) and block.get("type", "text") == "text"
        ).strip()
        stop_reason = payload.get("stop_reason")
        if not content:
            raise self.empty_response(stop_reason)
        return ModelResponse(
            content=content,
            usage=normalize_usage(payload.get("usage")),
            model=payload.get("model", self.model),
            provider=self.provider_name,
            stop_reason=stop_reason,
        )


class GeminiProviderClient(ProviderClient):
    provider_name = "gemini"
    endpoint_template = "https://generativelanguage.googleapis.com/v1beta/models/{model}:generateContent"

    def endpoint(self) -> str:
        return self.endpoint_template.format(model=self.model)

    def headers(self) -> dict[str, str]:
        return {
            "x-goog-api-key": self.config.api_key,
            "x-goog-api-client": "variantkit/0.1.0",
            "Content-Type": "application/json",
        }

    def build_request(self, messages: list[ChatMessage], json_mode: bool = False) -> dict[str, Any]:
        system_text = "\n\n".join(message.text for message in messages if message.role == "system")
        contents = []
        for message in messages:
            if message.role == "system":
                continue
            parts = []
            for part in message.parts:
                if part.is_image:
                    parts.append({"inline_data": {"mime_type": part.media_type, "data": part.data}})
                elif part.text:
                    parts.append({"text": part.text})
            contents.append({"role": "model" if message.role == "assistant" else "user", "parts": parts})

        generation_config: dict[str, Any] = {
            "temperature": self.config.temperature,
            "maxOutputTokens": self.config.max_tokens,
        }
        if json_mode:
            generation_config["responseMimeType"] = "application/json"
        body: dict[str, Any] = {"contents": contents, "generationConfig": generation_config}
        if system_text:
            body["system_instruction"] = {"parts": [{"text": system_text}]}
        return body

    def parse_response(self, payload: dict[str, Any]) -> ModelResponse:
        candidates = payload.get("candidates") or []
        if not candidates:
            raise self.empty_response(None, "Gemini returned no candidates; the prompt may have been blocked")
        candidate = candidates[0]
        parts = (candidate.get("content") or {}).get("parts") or []
        content = "".join(part.get("text", "") for part in parts if isinstance(part, dict)).strip()
        stop_reason = candidate.get("finishReason")
        if not content:
            raise self.empty_response(stop_reason)
        return ModelResponse(
            content=content,
            usage=normalize_usage(payload.get("usageMetadata")),
            model=payload.get("modelVersion", self.model),
            provider=self.provider_name,
            stop_reason=stop_reason,
        )


CLIENTS: dict[str, type[ProviderClient]] = {
    "openai": OpenAIProviderClient,
    "anthropic": AnthropicProviderClient,
    "gemini": GeminiProviderClient,
}


def create_provider_client(config: ProviderConfig, transport: Transport | None = None) -> ProviderClient:
    return CLIENTS[config.provider](config, transport=transport)


async def call_model(
    messages: list[ChatMessage],
    config: ProviderConfig,
    *,
    json_mode: bool = False,
    transport: Transport | None = None,
) -> ModelResponse:
    client = create_provider_client(config, transport=transport)
    return await client.call(messages, json_mode=json_mode)


def normalize_usage(raw: Mapping[str, Any] | None) -> TokenUsage:
    """Maps OpenAI, Anthropic and Gemini usage blocks onto one shape."""

    if not raw:
        return TokenUsage()

    def pick(*names: str) -> int:
        for name in names:
            value = raw.get(name)
            if isinstance(value, (int, float)):
                return int(value)
        return 0

    prompt = pick("prompt_tokens", "input_tokens", "promptTokenCount", "promptTokens", "inputTokens")
    completion = pick(
        "completion_tokens", "output_tokens", "candidatesTokenCount", "completionTokens", "outputTokens"
    )
    total = pick("total_tokens", "totalTokenCount", "totalTokens") or prompt + completion
    cache_read = pick("cache_read_input_tokens", "cachedContentTokenCount", "cacheReadInputTokens")
    if not cache_read:
        details = raw.get("prompt_tokens_details") or {}
        cache_read = int(details.get("cached_tokens") or 0)
    return TokenUsage(
        prompt_tokens=prompt,
        completion_tokens=completion,
        total_tokens=total,
        cache_creation_tokens=pick("cache_creation_input_tokens", "cacheCreationInputTokens"),
        cache_read_tokens=cache_read,
    )


def _post_json(url: str, payload: dict[str, Any], headers: dict[str, str], timeout: float = 30) -> dict[str, Any]:
    encoded = json.dumps(payload).encode("utf-8")
    req = request.Request(url, data=encoded, headers=headers, method="POST")
    try:
        with request.urlopen(req, timeout=timeout) as response:
            raw = response.read().decode("utf-8")
    except error.HTTPError as exc:
        detail = exc.read().decode("utf-8", errors="replace")
        raise TransportFailure(exc.code, detail) from exc
    except error.URLError as exc:
        raise TransportFailure(None, str(exc.reason)) from exc
    except TimeoutError as exc:
        raise TransportFailure(None, f"timed out after {timeout}s") from exc
    try:
        return json.loads(raw)
    except json.JSONDecodeError as exc:
        raise TransportFailure(None, f"provider returned invalid JSON: {raw[:200]}") from exc

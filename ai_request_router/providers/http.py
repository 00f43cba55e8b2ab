from __future__ import annotations

import logging
from typing import Any

import httpx

from ai_request_router.config import ProviderConfig
from ai_request_router.errors import (
    ProviderCallError,
    ProviderTimeoutError,
    ProviderUnavailableError,
)
from ai_request_router.models import InvocationOutput, RouteRequest
from ai_request_router.providers.base import ProviderAdapter

logger = logging.getLogger(__name__)

UNAVAILABLE_STATUSES = {429, 502, 503, 504}
DEFAULT_SYSTEM_PROMPT = "You are a helpful AI assistant for note taking."


def _request_error_details(exc: httpx.RequestError) -> dict[str, Any]:
    error_repr = repr(exc)
    error_message = str(exc).strip() or error_repr
    error_type = exc.__class__.__name__.strip() or "RequestError"
    details: dict[str, Any] = {
        "error": error_message,
        "error_type": error_type,
        "is_timeout": isinstance(exc, httpx.TimeoutException),
    }
    request = getattr(exc, "request", None)
    if isinstance(request, httpx.Request):
        details["request_url"] = str(request.url)
    return details


class HttpProviderAdapter(ProviderAdapter):
    """Base for adapters that talk JSON over HTTP through a shared AsyncClient."""

    request_path = ""
    health_path = ""

    def __init__(self, config: ProviderConfig, client: httpx.AsyncClient) -> None:
        super().__init__(
            config.key,
            config.profile,
            max_attempts=config.max_attempts,
            retry_delay_seconds=config.retry_delay_seconds,
        )
        self.config = config
        self.client = client

    def build_headers(self) -> dict[str, str]:
        return {"Content-Type": "application/json"}

    def build_payload(self, request: RouteRequest) -> dict[str, Any]:
        raise NotImplementedError

    def parse_response(self, data: dict[str, Any]) -> InvocationOutput:
        raise NotImplementedError

    def require_api_key(self) -> str:
        api_key = self.config.resolved_api_key()
        if not api_key:
            raise ProviderUnavailableError(self.key, "API key not configured")
        return api_key

    def _system_prompt(self, request: RouteRequest) -> str:
        option = request.options.get("system_prompt")
        if isinstance(option, str) and option.strip():
            return option
        return self.config.system_prompt or DEFAULT_SYSTEM_PROMPT

    def _temperature(self, request: RouteRequest) -> float:
        value = request.options.get("temperature")
        if isinstance(value, (int, float)) and not isinstance(value, bool):
            return float(value)
        return self.config.default_temperature

    def _max_tokens(self, request: RouteRequest) -> int:
        value = request.options.get("max_tokens")
        if isinstance(value, int) and not isinstance(value, bool) and value > 0:
            return value
        return self.config.default_max_tokens

    def _cost_for(self, usage: dict[str, int]) -> float:
        rate = self.config.cost_per_1k_tokens
        total = usage.get("total", 0)
        if rate is None or total <= 0:
            return self.profile.cost_per_call
        return (total / 1000.0) * rate

    async def _call(self, request: RouteRequest, timeout_ms: float) -> InvocationOutput:
        headers = self.build_headers()
        payload = self.build_payload(request)
        url = f"{self.config.effective_base_url()}{self.request_path}"
        try:
            response = await self.client.post(
                url,
                json=payload,
                headers=headers,
                timeout=timeout_ms / 1000.0,
            )
        except httpx.TimeoutException as exc:
            raise ProviderTimeoutError(self.key, timeout_ms) from exc
        except httpx.RequestError as exc:
            details = _request_error_details(exc)
            logger.warning(
                "provider_request_error provider=%s error_type=%s error=%s",
                self.key,
                details["error_type"],
                details["error"],
            )
            raise ProviderUnavailableError(
                self.key, f"{details['error_type']}: {details['error']}"
            ) from exc

        if response.status_code in UNAVAILABLE_STATUSES:
            raise ProviderUnavailableError(
                self.key, f"upstream status {response.status_code}"
            )
        if response.status_code >= 400:
            raise ProviderCallError(
                self.key,
                f"upstream status {response.status_code}: {response.text[:200]}",
                status_code=response.status_code,
            )

        try:
            data = response.json()
        except ValueError as exc:
            raise ProviderCallError(self.key, "response body is not JSON") from exc
        if not isinstance(data, dict):
            raise ProviderCallError(self.key, "response body is not a JSON object")
        return self.parse_response(data)

    async def health_check(self) -> bool:
        if not self.health_path:
            return True
        try:
            headers = self.build_headers()
        except ProviderUnavailableError:
            return False
        try:
            response = await self.client.get(
                f"{self.config.effective_base_url()}{self.health_path}",
                headers=headers,
            )
        except httpx.RequestError as exc:
            details = _request_error_details(exc)
            logger.info(
                "provider_health_error provider=%s error_type=%s",
                self.key,
                details["error_type"],
            )
            return False
        return response.is_success


class OpenAIChatProvider(HttpProviderAdapter):
    request_path = "/chat/completions"
    health_path = "/models"

    def build_headers(self) -> dict[str, str]:
        headers = super().build_headers()
        headers["Authorization"] = f"Bearer {self.require_api_key()}"
        if self.config.organization:
            headers["OpenAI-Organization"] = self.config.organization
        return headers

    def build_payload(self, request: RouteRequest) -> dict[str, Any]:
        return {
            "model": self.config.model,
            "messages": [
                {"role": "system", "content": self._system_prompt(request)},
                {"role": "user", "content": request.prompt_text},
            ],
            "temperature": self._temperature(request),
            "max_tokens": self._max_tokens(request),
            "stream": False,
        }

    def parse_response(self, data: dict[str, Any]) -> InvocationOutput:
        choices = data.get("choices")
        if not isinstance(choices, list) or not choices:
            raise ProviderCallError(self.key, "no response choices available")
        message = choices[0].get("message") if isinstance(choices[0], dict) else None
        content = message.get("content") if isinstance(message, dict) else None
        raw_usage = data.get("usage") if isinstance(data.get("usage"), dict) else {}
        usage = {
            "input": int(raw_usage.get("prompt_tokens") or 0),
            "output": int(raw_usage.get("completion_tokens") or 0),
            "total": int(raw_usage.get("total_tokens") or 0),
        }
        return InvocationOutput(
            payload=content or "",
            cost_units=self._cost_for(usage),
            usage=usage,
            model=str(data.get("model") or self.config.model),
        )


class AnthropicMessagesProvider(HttpProviderAdapter):
    request_path = "/messages"
    health_path = "/models"
    api_version = "2023-06-01"

    def build_headers(self) -> dict[str, str]:
        headers = super().build_headers()
        headers["x-api-key"] = self.require_api_key()
        headers["anthropic-version"] = self.api_version
        return headers

    def build_payload(self, request: RouteRequest) -> dict[str, Any]:
        return {
            "model": self.config.model,
            "system": self._system_prompt(request),
            "max_tokens": self._max_tokens(request),
            "temperature": self._temperature(request),
            "messages": [{"role": "user", "content": request.prompt_text}],
        }

    def parse_response(self, data: dict[str, Any]) -> InvocationOutput:
        blocks = data.get("content")
        if not isinstance(blocks, list):
            raise ProviderCallError(self.key, "response has no content blocks")
        text = "".join(
            str(block.get("text") or "")
            for block in blocks
            if isinstance(block, dict) and block.get("type", "text") == "text"
        )
        raw_usage = data.get("usage") if isinstance(data.get("usage"), dict) else {}
        input_tokens = int(raw_usage.get("input_tokens") or 0)
        output_tokens = int(raw_usage.get("output_tokens") or 0)
        usage = {
            "input": input_tokens,
            "output": output_tokens,
            "total": input_tokens + output_tokens,
        }
        return InvocationOutput(
            payload=text,
            cost_units=self._cost_for(usage),
            usage=usage,
            model=str(data.get("model") or self.config.model),
        )


class OllamaGenerateProvider(HttpProviderAdapter):
    request_path = "/api/generate"
    health_path = "/api/tags"

    def build_payload(self, request: RouteRequest) -> dict[str, Any]:
        return {
            "model": self.config.model,
            "prompt": request.prompt_text,
            "system": self._system_prompt(request),
            "stream": False,
            "options": {
                "temperature": self._temperature(request),
                "num_predict": self._max_tokens(request),
            },
        }

    def parse_response(self, data: dict[str, Any]) -> InvocationOutput:
        input_tokens = int(data.get("prompt_eval_count") or 0)
        output_tokens = int(data.get("eval_count") or 0)
        usage = {
            "input": input_tokens,
            "output": output_tokens,
            "total": input_tokens + output_tokens,
        }
        return InvocationOutput(
            payload=str(data.get("response") or ""),
            cost_units=self._cost_for(usage),
            usage=usage,
            model=str(data.get("model") or self.config.model),
        )


_ADAPTERS: dict[str, type[HttpProviderAdapter]] = {
    "openai": OpenAIChatProvider,
    "anthropic": AnthropicMessagesProvider,
    "ollama": OllamaGenerateProvider,
}


def build_http_provider(
    config: ProviderConfig, client: httpx.AsyncClient
) -> HttpProviderAdapter:
    adapter_cls = _ADAPTERS.get(config.kind)
    if adapter_cls is None:
        raise ValueError(f"Unsupported provider kind: {config.kind}")
    return adapter_cls(config, client)

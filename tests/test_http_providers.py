from __future__ import annotations

import asyncio
import json
from typing import Any

import httpx
import pytest

from ai_request_router.config import ProviderConfig
from ai_request_router.errors import (
    ProviderCallError,
    ProviderTimeoutError,
    ProviderUnavailableError,
)
from ai_request_router.models import RouteRequest
from ai_request_router.providers.http import (
    AnthropicMessagesProvider,
    OllamaGenerateProvider,
    OpenAIChatProvider,
    build_http_provider,
)


def _client(handler: Any) -> httpx.AsyncClient:
    return httpx.AsyncClient(transport=httpx.MockTransport(handler), timeout=30.0)


def _invoke(adapter: Any, request: RouteRequest) -> Any:
    async def _run() -> Any:
        try:
            return await adapter.invoke(request)
        finally:
            await adapter.client.aclose()

    return asyncio.run(_run())


def _openai_config(**overrides: Any) -> ProviderConfig:
    payload: dict[str, Any] = {
        "key": "openai-mini",
        "kind": "openai",
        "model": "gpt-4o-mini",
        "api_key": "sk-test",
        "api_key_env": "ROUTER_TEST_UNSET_KEY",
        "cost_per_call": 0.002,
    }
    payload.update(overrides)
    return ProviderConfig.model_validate(payload)


def test_openai_adapter_sends_chat_request_and_parses_usage() -> None:
    seen: dict[str, Any] = {}

    def handler(request: httpx.Request) -> httpx.Response:
        seen["url"] = str(request.url)
        seen["auth"] = request.headers.get("Authorization")
        seen["body"] = json.loads(request.content)
        return httpx.Response(
            200,
            json={
                "model": "gpt-4o-mini-2024",
                "choices": [{"message": {"role": "assistant", "content": "Hello."}}],
                "usage": {"prompt_tokens": 12, "completion_tokens": 8, "total_tokens": 20},
            },
        )

    adapter = OpenAIChatProvider(
        _openai_config(cost_per_1k_tokens=0.5), _client(handler)
    )
    output = _invoke(
        adapter,
        RouteRequest(payload="Say hi", options={"temperature": 0.1, "max_tokens": 50}),
    )

    assert seen["url"] == "https://api.openai.com/v1/chat/completions"
    assert seen["auth"] == "Bearer sk-test"
    assert seen["body"]["model"] == "gpt-4o-mini"
    assert seen["body"]["messages"][-1] == {"role": "user", "content": "Say hi"}
    assert seen["body"]["temperature"] == 0.1
    assert seen["body"]["max_tokens"] == 50
    assert output.payload == "Hello."
    assert output.usage == {"input": 12, "output": 8, "total": 20}
    assert output.cost_units == pytest.approx(0.01)
    assert output.model == "gpt-4o-mini-2024"


def test_anthropic_adapter_joins_text_blocks() -> None:
    seen: dict[str, Any] = {}

    def handler(request: httpx.Request) -> httpx.Response:
        seen["headers"] = dict(request.headers)
        return httpx.Response(
            200,
            json={
                "content": [
                    {"type": "text", "text": "Part one. "},
                    {"type": "text", "text": "Part two."},
                ],
                "usage": {"input_tokens": 5, "output_tokens": 7},
            },
        )

    config = ProviderConfig.model_validate(
        {
            "key": "claude",
            "kind": "anthropic",
            "model": "claude-3-5-haiku-latest",
            "api_key": "ant-test",
            "api_key_env": "ROUTER_TEST_UNSET_KEY",
            "cost_per_call": 0.004,
        }
    )
    output = _invoke(
        AnthropicMessagesProvider(config, _client(handler)),
        RouteRequest(payload={"prompt": "two parts please"}),
    )

    assert seen["headers"]["x-api-key"] == "ant-test"
    assert seen["headers"]["anthropic-version"] == "2023-06-01"
    assert output.payload == "Part one. Part two."
    assert output.usage["total"] == 12
    assert output.cost_units == 0.004


def test_ollama_adapter_needs_no_api_key() -> None:
    def handler(request: httpx.Request) -> httpx.Response:
        assert request.url.path == "/api/generate"
        assert "Authorization" not in request.headers
        return httpx.Response(
            200, json={"response": "local answer", "prompt_eval_count": 3, "eval_count": 4}
        )

    config = ProviderConfig.model_validate(
        {"key": "local", "kind": "ollama", "model": "llama3.1"}
    )
    output = _invoke(build_http_provider(config, _client(handler)), RouteRequest(payload="hi"))

    assert output.payload == "local answer"
    assert output.usage == {"input": 3, "output": 4, "total": 7}


@pytest.mark.parametrize("status_code", [429, 502, 503, 504])
def test_overloaded_statuses_map_to_unavailable(status_code: int) -> None:
    def handler(request: httpx.Request) -> httpx.Response:
        return httpx.Response(status_code, json={"error": "busy"})

    adapter = OpenAIChatProvider(_openai_config(), _client(handler))

    with pytest.raises(ProviderUnavailableError):
        _invoke(adapter, RouteRequest(payload="hi"))


def test_client_error_status_maps_to_call_error() -> None:
    def handler(request: httpx.Request) -> httpx.Response:
        return httpx.Response(400, text="bad request body")

    adapter = OpenAIChatProvider(_openai_config(), _client(handler))

    with pytest.raises(ProviderCallError) as exc_info:
        _invoke(adapter, RouteRequest(payload="hi"))

    assert exc_info.value.status_code == 400
    assert "bad request body" in exc_info.value.detail


def test_transport_timeout_maps_to_timeout() -> None:
    def handler(request: httpx.Request) -> httpx.Response:
        raise httpx.ReadTimeout("read timed out", request=request)

    adapter = OpenAIChatProvider(_openai_config(), _client(handler))

    with pytest.raises(ProviderTimeoutError) as exc_info:
        _invoke(adapter, RouteRequest(payload="hi", max_response_time_ms=1500))

    assert exc_info.value.timeout_ms == 1500.0


def test_connection_error_maps_to_unavailable() -> None:
    def handler(request: httpx.Request) -> httpx.Response:
        raise httpx.ConnectError("connection refused", request=request)

    adapter = OpenAIChatProvider(_openai_config(), _client(handler))

    with pytest.raises(ProviderUnavailableError, match="ConnectError"):
        _invoke(adapter, RouteRequest(payload="hi"))


def test_missing_api_key_is_unavailable() -> None:
    def handler(request: httpx.Request) -> httpx.Response:
        raise AssertionError("no request should be sent")

    adapter = OpenAIChatProvider(_openai_config(api_key=None), _client(handler))

    with pytest.raises(ProviderUnavailableError, match="API key"):
        _invoke(adapter, RouteRequest(payload="hi"))


def test_api_key_is_read_from_environment(monkeypatch: Any) -> None:
    monkeypatch.setenv("ROUTER_TEST_OPENAI_KEY", "sk-from-env")

    config = _openai_config(api_key=None, api_key_env="ROUTER_TEST_OPENAI_KEY")

    assert config.resolved_api_key() == "sk-from-env"


def test_non_json_body_is_a_call_error() -> None:
    def handler(request: httpx.Request) -> httpx.Response:
        return httpx.Response(200, text="<html>oops</html>")

    adapter = OpenAIChatProvider(_openai_config(), _client(handler))

    with pytest.raises(ProviderCallError, match="not JSON"):
        _invoke(adapter, RouteRequest(payload="hi"))


def test_retries_stay_inside_one_invoke() -> None:
    calls = {"count": 0}

    def handler(request: httpx.Request) -> httpx.Response:
        calls["count"] += 1
        if calls["count"] == 1:
            return httpx.Response(503)
        return httpx.Response(
            200, json={"choices": [{"message": {"content": "second try."}}]}
        )

    adapter = OpenAIChatProvider(_openai_config(max_attempts=2), _client(handler))
    output = _invoke(adapter, RouteRequest(payload="hi"))

    assert calls["count"] == 2
    assert output.payload == "second try."


def test_health_check_uses_models_endpoint() -> None:
    def handler(request: httpx.Request) -> httpx.Response:
        if request.url.path.endswith("/models"):
            return httpx.Response(503)
        return httpx.Response(200, json={})

    adapter = OpenAIChatProvider(_openai_config(), _client(handler))

    async def _run() -> bool:
        try:
            return await adapter.health_check()
        finally:
            await adapter.client.aclose()

    assert asyncio.run(_run()) is False

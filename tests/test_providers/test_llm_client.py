"""
Tests for the OpenAI-compatible chat-completions client.

No network: every test routes the client through ``httpx.MockTransport``.

What we test
------------
1. Request shape: URL, bearer header, model, seed, temperature 0, JSON mode.
2. Successful parse: content text, token usage, model echo.
3. Error mapping: 429 → rate_limit (retryable), 5xx → api_failure
   (retryable), 4xx → api_failure (not retryable), timeout / transport →
   api_failure (retryable), bad bodies → invalid_response.
4. Construction without an API key fails.
"""

from __future__ import annotations

import json

import httpx
import pytest

from expansion_engine.config import AIConfig
from expansion_engine.errors import AIStrategyError
from expansion_engine.providers.llm_client import OpenAICompatibleClient

_CONFIG = AIConfig(api_key="sk-test", base_url="https://llm.example.com/v1/", model="test-model")


def _client(handler) -> OpenAICompatibleClient:
    return OpenAICompatibleClient(
        _CONFIG, http_client=httpx.Client(transport=httpx.MockTransport(handler))
    )


def _ok_body(content: str = '{"selected": []}') -> dict:
    return {
        "model": "test-model-0613",
        "choices": [{"message": {"role": "assistant", "content": content}}],
        "usage": {"prompt_tokens": 100, "completion_tokens": 20, "total_tokens": 120},
    }


class TestRequest:
    def test_request_shape(self):
        seen = {}

        def handler(request: httpx.Request) -> httpx.Response:
            seen["url"] = str(request.url)
            seen["auth"] = request.headers["Authorization"]
            seen["body"] = json.loads(request.content)
            return httpx.Response(200, json=_ok_body())

        _client(handler).complete("system", "user", 20251029, timeout=5.0)
        assert seen["url"] == "https://llm.example.com/v1/chat/completions"
        assert seen["auth"] == "Bearer sk-test"
        body = seen["body"]
        assert body["model"] == "test-model"
        assert body["seed"] == 20251029
        assert body["temperature"] == 0
        assert body["response_format"] == {"type": "json_object"}
        assert [m["role"] for m in body["messages"]] == ["system", "user"]

    def test_parses_completion(self):
        client = _client(lambda r: httpx.Response(200, json=_ok_body('{"selected": [1]}')))
        completion = client.complete("s", "u", 1, timeout=5.0)
        assert completion.text == '{"selected": [1]}'
        assert completion.tokens_used == 120
        assert completion.model == "test-model-0613"
        assert completion.latency_ms >= 0

    def test_missing_usage_counts_zero_tokens(self):
        body = _ok_body()
        del body["usage"]
        completion = _client(lambda r: httpx.Response(200, json=body)).complete("s", "u", 1, 5.0)
        assert completion.tokens_used == 0

    @pytest.mark.parametrize("usage", [5, "120", [120], {"total_tokens": "many"}, {"total_tokens": -3}])
    def test_malformed_usage_counts_zero_tokens(self, usage):
        body = _ok_body()
        body["usage"] = usage
        completion = _client(lambda r: httpx.Response(200, json=body)).complete("s", "u", 1, 5.0)
        assert completion.tokens_used == 0
        assert completion.text == '{"selected": []}'

    def test_requires_api_key(self):
        with pytest.raises(ValueError):
            OpenAICompatibleClient(AIConfig())


class TestErrorMapping:
    @pytest.mark.parametrize("status,kind,retryable", [
        (429, "rate_limit", True),
        (500, "api_failure", True),
        (503, "api_failure", True),
        (401, "api_failure", False),
        (400, "api_failure", False),
    ])
    def test_http_status(self, status, kind, retryable):
        client = _client(lambda r: httpx.Response(status, json={"error": "x"}))
        with pytest.raises(AIStrategyError) as exc_info:
            client.complete("s", "u", 1, timeout=5.0)
        assert exc_info.value.kind == kind
        assert exc_info.value.retryable is retryable

    def test_timeout(self):
        def handler(request):
            raise httpx.ReadTimeout("timed out", request=request)

        with pytest.raises(AIStrategyError) as exc_info:
            _client(handler).complete("s", "u", 1, timeout=0.5)
        assert exc_info.value.kind == "api_failure"
        assert exc_info.value.retryable is True

    def test_transport_error(self):
        def handler(request):
            raise httpx.ConnectError("connection refused", request=request)

        with pytest.raises(AIStrategyError) as exc_info:
            _client(handler).complete("s", "u", 1, timeout=5.0)
        assert exc_info.value.kind == "api_failure"
        assert exc_info.value.retryable is True

    def test_non_json_body(self):
        client = _client(lambda r: httpx.Response(200, text="<html>oops</html>"))
        with pytest.raises(AIStrategyError) as exc_info:
            client.complete("s", "u", 1, timeout=5.0)
        assert exc_info.value.kind == "invalid_response"
        assert exc_info.value.retryable is False

    def test_missing_choices(self):
        client = _client(lambda r: httpx.Response(200, json={"choices": []}))
        with pytest.raises(AIStrategyError) as exc_info:
            client.complete("s", "u", 1, timeout=5.0)
        assert exc_info.value.kind == "invalid_response"

    def test_empty_content(self):
        client = _client(lambda r: httpx.Response(200, json=_ok_body("   ")))
        with pytest.raises(AIStrategyError) as exc_info:
            client.complete("s", "u", 1, timeout=5.0)
        assert exc_info.value.kind == "invalid_response"

    @pytest.mark.parametrize("body", [[1, 2, 3], "just text", 42, None])
    def test_body_not_an_object(self, body):
        client = _client(lambda r: httpx.Response(200, json=body))
        with pytest.raises(AIStrategyError) as exc_info:
            client.complete("s", "u", 1, timeout=5.0)
        assert exc_info.value.kind == "invalid_response"

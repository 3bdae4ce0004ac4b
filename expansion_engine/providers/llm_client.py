"""
OpenAI-compatible chat-completions client for the strategy reranker.

Works against any endpoint speaking the OpenAI ``/chat/completions``
protocol (OpenAI, Groq, a local gateway). Requests ask for a JSON object
at temperature 0 with the generation seed, so repeated runs against the
same model are as reproducible as the provider allows.

Error mapping (``AIStrategyError.kind``, retryable?)::

    HTTP 429                      rate_limit        yes
    HTTP 5xx, timeout, transport  api_failure       yes
    other HTTP 4xx                api_failure       no
    body without choices/content  invalid_response  no
    body not JSON                 invalid_response  no
"""

from __future__ import annotations

import logging
import time
from typing import Any, Optional

import httpx

from expansion_engine.config import AIConfig
from expansion_engine.errors import AIStrategyError
from expansion_engine.providers.base import LLMCompletion

logger = logging.getLogger(__name__)


class OpenAICompatibleClient:
    """Synchronous chat-completions client.

    Args:
        config:      AI settings (base URL, model, key, token limit).
        http_client: Optional ``httpx.Client`` (tests use ``MockTransport``).

    Raises:
        ValueError: If no API key is configured.
    """

    def __init__(self, config: AIConfig, http_client: Optional[httpx.Client] = None) -> None:
        if not config.api_key:
            raise ValueError(
                "LLM API key not set. Set EXPANSION_ENGINE_LLM_API_KEY in .env."
            )
        self.config = config
        self._http = http_client

    @property
    def url(self) -> str:
        return f"{self.config.base_url.rstrip('/')}/chat/completions"

    def _payload(self, system_prompt: str, user_prompt: str, seed: int) -> dict[str, Any]:
        return {
            "model": self.config.model,
            "messages": [
                {"role": "system", "content": system_prompt},
                {"role": "user", "content": user_prompt},
            ],
            "temperature": 0,
            "seed": seed,
            "max_tokens": self.config.max_tokens,
            "response_format": {"type": "json_object"},
        }

    def complete(
        self,
        system_prompt: str,
        user_prompt: str,
        seed: int,
        timeout: float,
    ) -> LLMCompletion:
        headers = {
            "Authorization": f"Bearer {self.config.api_key}",
            "Content-Type": "application/json",
        }
        payload = self._payload(system_prompt, user_prompt, seed)
        started = time.monotonic()
        try:
            if self._http is not None:
                resp = self._http.post(self.url, headers=headers, json=payload, timeout=timeout)
            else:
                resp = httpx.post(self.url, headers=headers, json=payload, timeout=timeout)
            resp.raise_for_status()
        except httpx.TimeoutException as exc:
            raise AIStrategyError(
                "api_failure", f"timeout after {timeout:.1f}s", retryable=True
            ) from exc
        except httpx.HTTPStatusError as exc:
            code = exc.response.status_code
            if code == 429:
                raise AIStrategyError("rate_limit", "HTTP 429", retryable=True) from exc
            raise AIStrategyError(
                "api_failure", f"HTTP {code}", retryable=code >= 500
            ) from exc
        except httpx.HTTPError as exc:
            raise AIStrategyError(
                "api_failure", f"transport error: {exc}", retryable=True
            ) from exc
        latency_ms = int((time.monotonic() - started) * 1000)

        try:
            data = resp.json()
        except ValueError as exc:
            raise AIStrategyError("invalid_response", "body is not JSON") from exc
        if not isinstance(data, dict):
            raise AIStrategyError("invalid_response", "body is not a JSON object")
        try:
            text = data["choices"][0]["message"]["content"]
        except (KeyError, IndexError, TypeError) as exc:
            raise AIStrategyError("invalid_response", "no choices[0].message.content") from exc
        if not isinstance(text, str) or not text.strip():
            raise AIStrategyError("invalid_response", "empty completion content")

        tokens = _total_tokens(data.get("usage"))
        model = data.get("model") if isinstance(data.get("model"), str) else None
        logger.debug("LLM completion | model=%s tokens=%d latency_ms=%d",
                     model, tokens, latency_ms)
        return LLMCompletion(
            text=text,
            tokens_used=tokens,
            latency_ms=latency_ms,
            model=model,
        )


def _total_tokens(usage: object) -> int:
    """``usage.total_tokens`` when well-formed, else 0."""
    if not isinstance(usage, dict):
        return 0
    total = usage.get("total_tokens")
    if isinstance(total, bool) or not isinstance(total, int) or total < 0:
        return 0
    return total

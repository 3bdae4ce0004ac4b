"""
Exception taxonomy for the expansion engine.

Only ``InvalidParametersError`` ever reaches the caller of a generation
request. ``ProviderUnavailableError`` and ``AIStrategyError`` are raised by
providers and recovered inside the pipeline; the outcome is reported through
result metadata. Timeouts, candidate limits and empty regions are not
exceptions at all; they are flags on a partial result.
"""

from __future__ import annotations

from typing import Literal

AIErrorKind = Literal["api_failure", "rate_limit", "invalid_response", "parsing_error"]


class InvalidParametersError(ValueError):
    """Malformed generation parameters, raised before any computation.

    Attributes:
        errors: One human-readable message per violated constraint.
    """

    def __init__(self, errors: list[str]) -> None:
        self.errors = list(errors)
        super().__init__("Invalid generation parameters: " + "; ".join(self.errors))


class ProviderUnavailableError(RuntimeError):
    """An optional data provider (urban, settlement, anchor) could not answer.

    Attributes:
        provider: Short provider name, e.g. ``"mapbox"``.
    """

    def __init__(self, provider: str, reason: str) -> None:
        self.provider = provider
        self.reason = reason
        super().__init__(f"Provider '{provider}' unavailable: {reason}")


class AIStrategyError(RuntimeError):
    """Failure of an LLM reranking call.

    Attributes:
        kind:      One of ``api_failure``, ``rate_limit``, ``invalid_response``,
                   ``parsing_error``.
        retryable: Whether the retry ladder should try again.
    """

    def __init__(self, kind: AIErrorKind, message: str, retryable: bool = False) -> None:
        self.kind = kind
        self.retryable = retryable
        super().__init__(f"[{kind}] {message}")

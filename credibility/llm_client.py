"""Chat-completion transport for the evidence classifier.

Every provider goes through ``LLMClient.generate``: build the message list, let
the subclass add its request parameters, then send with throttling and
retries. Failures that survive the retries surface as ``LLMServiceError`` with
a ``reason`` so the request boundary can tell rate limiting from outages.
"""

from __future__ import annotations

import logging
import os
import random
import re
import time
from dataclasses import dataclass
from typing import Any, Protocol

from credibility.errors import ConfigError
from credibility.prompts import CLASSIFIER_SYSTEM_PROMPT, build_classification_prompt
from credibility.retrieval import significant_words

log = logging.getLogger(__name__)

RETRYABLE_STATUS = frozenset({408, 409, 429, 500, 502, 503, 504})
_REASON_BY_NAME = (
    ("RateLimitError", "rate_limit"),
    ("APITimeoutError", "timeout"),
    ("APIConnectionError", "connection"),
    ("InternalServerError", "server"),
)
_REASON_BY_TEXT = (
    ("rate limit", "rate_limit"),
    ("too many requests", "rate_limit"),
    ("timeout", "timeout"),
    ("timed out", "timeout"),
)


class LLMServiceError(RuntimeError):
    """Raised when a classifier call fails after retries."""

    def __init__(self, message: str, *, reason: str | None = None) -> None:
        super().__init__(message)
        self.reason = reason


@dataclass(frozen=True)
class LLMResponse:
    text: str
    input_tokens: int
    output_tokens: int


class Classifier(Protocol):
    """Black-box evidence classifier: one raw reply per (question, excerpt)."""

    def classify(self, question: str, excerpt: str) -> str: ...


@dataclass(frozen=True)
class RetryPolicy:
    max_retries: int = 2
    backoff_base_s: float = 3.0
    backoff_max_s: float = 45.0
    min_interval_s: float = 0.5

    @classmethod
    def from_config(cls) -> RetryPolicy:
        from credibility.config import (
            LLM_BACKOFF_BASE_S,
            LLM_BACKOFF_MAX_S,
            LLM_MAX_RETRIES,
            LLM_MIN_CALL_INTERVAL_S,
        )

        return cls(
            max_retries=LLM_MAX_RETRIES,
            backoff_base_s=LLM_BACKOFF_BASE_S,
            backoff_max_s=LLM_BACKOFF_MAX_S,
            min_interval_s=LLM_MIN_CALL_INTERVAL_S,
        )

    @property
    def attempts(self) -> int:
        return max(1, self.max_retries + 1)

    def delay(self, attempt: int, reason: str | None) -> float:
        """Capped exponential wait before retry ``attempt + 1``, without jitter."""
        base = max(0.1, self.backoff_base_s)
        if reason == "rate_limit":
            base *= 2
        return min(max(base, self.backoff_max_s), base * (1.5**attempt))


def failure_reason(exc: BaseException) -> str | None:
    """Name the transient condition behind ``exc``, or None if retrying will not help."""
    status_code = getattr(exc, "status_code", None)
    if status_code == 429:
        return "rate_limit"
    if status_code in RETRYABLE_STATUS:
        return "server"
    name = exc.__class__.__name__
    for marker, reason in _REASON_BY_NAME:
        if marker in name:
            return reason
    body = str(exc).lower()
    for marker, reason in _REASON_BY_TEXT:
        if marker in body:
            return reason
    return None


class LLMClient:
    """Base class for chat-completion providers."""

    provider: str = "base"

    def __init__(self, policy: RetryPolicy | None = None, *, sleep=time.sleep) -> None:
        self._policy = policy or RetryPolicy.from_config()
        self._sleep = sleep
        self._last_call_ts = 0.0
        self._client: Any = None

    def _throttle(self) -> None:
        if self._policy.min_interval_s <= 0:
            return
        elapsed = time.monotonic() - self._last_call_ts
        if elapsed < self._policy.min_interval_s:
            self._sleep(self._policy.min_interval_s - elapsed)

    def _send(self, kwargs: dict) -> Any:
        attempts = self._policy.attempts
        for attempt in range(attempts):
            self._throttle()
            try:
                resp = self._client.chat.completions.create(**kwargs)
            except Exception as exc:
                reason = failure_reason(exc)
                if reason is None or attempt == attempts - 1:
                    raise LLMServiceError(
                        f"{self.provider} call failed after {attempt + 1}/{attempts} attempts: {exc}",
                        reason=reason,
                    ) from exc
                wait = self._policy.delay(attempt, reason) + random.uniform(0.0, 1.0)  # nosec B311
                log.warning(
                    "%s %s on attempt %d/%d; retrying in %.1fs",
                    self.provider,
                    reason,
                    attempt + 1,
                    attempts,
                    wait,
                )
                self._sleep(wait)
            else:
                self._last_call_ts = time.monotonic()
                return resp
        raise LLMServiceError(f"{self.provider} call failed unexpectedly.")

    def _response_from(self, resp: Any) -> LLMResponse:
        if not getattr(resp, "choices", None):
            raise LLMServiceError("Invalid API response structure: no choices.")
        usage = resp.usage
        return LLMResponse(
            text=resp.choices[0].message.content or "",
            input_tokens=getattr(usage, "prompt_tokens", 0) if usage else 0,
            output_tokens=getattr(usage, "completion_tokens", 0) if usage else 0,
        )

    def _request_kwargs(self, model: str | None, temperature: float, max_tokens: int | None) -> dict:
        raise NotImplementedError

    def generate(
        self,
        prompt: str,
        *,
        system: str = "",
        model: str | None = None,
        temperature: float | None = None,
        max_tokens: int | None = None,
    ) -> LLMResponse:
        from credibility.config import CLASSIFIER_TEMPERATURE

        messages = [{"role": "system", "content": system}] if system else []
        messages.append({"role": "user", "content": prompt})
        kwargs = self._request_kwargs(
            model,
            CLASSIFIER_TEMPERATURE if temperature is None else temperature,
            max_tokens,
        )
        kwargs["messages"] = messages
        return self._response_from(self._send(kwargs))


class MistralClient(LLMClient):
    """Mistral chat completions through its OpenAI-compatible endpoint."""

    provider = "mistral"

    def __init__(self, policy: RetryPolicy | None = None) -> None:
        from openai import OpenAI

        from credibility.config import MISTRAL_API_KEY, MISTRAL_ENDPOINT

        if not MISTRAL_API_KEY:
            raise ConfigError("MISTRAL_API_KEY is required when LLM_PROVIDER=mistral.")
        super().__init__(policy)
        self._client = OpenAI(base_url=MISTRAL_ENDPOINT, api_key=MISTRAL_API_KEY)

    def _request_kwargs(self, model: str | None, temperature: float, max_tokens: int | None) -> dict:
        from credibility.config import MISTRAL_MODEL

        kwargs: dict = {"model": model or MISTRAL_MODEL, "temperature": temperature}
        if max_tokens is not None:
            kwargs["max_tokens"] = max_tokens
        return kwargs


class AzureOpenAIClient(LLMClient):
    provider = "azure_openai"

    def __init__(self, policy: RetryPolicy | None = None) -> None:
        from openai import AzureOpenAI

        from credibility.config import AZURE_API_KEY, AZURE_API_VERSION, AZURE_ENDPOINT

        if not AZURE_API_KEY:
            raise ConfigError("AZURE_API_KEY is required when LLM_PROVIDER=azure_openai.")
        if not AZURE_ENDPOINT:
            raise ConfigError("AZURE_ENDPOINT is required when LLM_PROVIDER=azure_openai.")
        super().__init__(policy)
        self._client = AzureOpenAI(
            api_version=AZURE_API_VERSION,
            azure_endpoint=AZURE_ENDPOINT,
            api_key=AZURE_API_KEY,
        )

    def _request_kwargs(self, model: str | None, temperature: float, max_tokens: int | None) -> dict:
        from credibility.config import AZURE_MODEL

        deployment = model or AZURE_MODEL
        # Reasoning deployments ("o1", "o3-mini", ...) reject temperature and max_tokens.
        if deployment.startswith("o"):
            kwargs: dict = {"model": deployment}
            if max_tokens is not None:
                kwargs["max_completion_tokens"] = max_tokens
            return kwargs
        kwargs = {"model": deployment, "temperature": temperature}
        if max_tokens is not None:
            kwargs["max_tokens"] = max_tokens
        return kwargs


class MockOfflineClient(LLMClient):
    """Deterministic stand-in that answers from word overlap between question and excerpt."""

    provider = "mock"

    _PROMPT_RE = re.compile(
        r"QUESTION:\s*\n(?P<question>.*?)\n\s*\nDOCUMENT_EXCERPT:\s*\n(?P<excerpt>.*?)"
        r"(?=\n\s*\nAnswer with one word|\Z)",
        re.DOTALL,
    )

    def __init__(self) -> None:
        super().__init__(RetryPolicy(max_retries=0, min_interval_s=0.0))

    def _label(self, prompt: str) -> str:
        match = self._PROMPT_RE.search(prompt)
        if not match:
            return "Insufficient"
        terms = significant_words(match.group("question"))
        if not terms:
            return "Insufficient"
        excerpt = match.group("excerpt").lower()
        coverage = sum(1 for term in terms if term in excerpt) / len(terms)
        if coverage >= 0.5:
            return "Yes"
        if coverage >= 0.2:
            return "Insufficient"
        return "No"

    def generate(
        self,
        prompt: str,
        *,
        system: str = "",
        model: str | None = None,
        temperature: float | None = None,
        max_tokens: int | None = None,
    ) -> LLMResponse:
        del system, model, temperature, max_tokens
        return LLMResponse(text=self._label(prompt), input_tokens=0, output_tokens=0)


class LLMClassifier:
    """Adapts an ``LLMClient`` to the strict three-label classifier contract."""

    def __init__(
        self,
        llm: LLMClient,
        *,
        system: str = CLASSIFIER_SYSTEM_PROMPT,
        max_tokens: int | None = None,
    ) -> None:
        from credibility.config import CLASSIFIER_MAX_TOKENS

        self._llm = llm
        self._system = system
        self._max_tokens = max_tokens or CLASSIFIER_MAX_TOKENS

    @property
    def provider(self) -> str:
        return self._llm.provider

    def classify(self, question: str, excerpt: str) -> str:
        response = self._llm.generate(
            build_classification_prompt(question=question, excerpt=excerpt),
            system=self._system,
            max_tokens=self._max_tokens,
        )
        log.debug(
            "%s classified with %d prompt / %d completion tokens",
            self.provider,
            response.input_tokens,
            response.output_tokens,
        )
        return response.text


def _env_flag(name: str, default: bool) -> bool:
    return os.getenv(name, "1" if default else "0").strip().lower() in {"1", "true", "yes"}


def get_llm_client() -> LLMClient:
    from credibility.config import LLM_PROVIDER, OFFLINE_MODE

    if _env_flag("OFFLINE_MODE", OFFLINE_MODE):
        return MockOfflineClient()

    provider = os.getenv("LLM_PROVIDER", LLM_PROVIDER).strip().lower()
    factories = {
        "mistral": MistralClient,
        "azure_openai": AzureOpenAIClient,
        "mock": MockOfflineClient,
    }
    if provider not in factories:
        raise ConfigError(f"Unknown LLM_PROVIDER={provider!r}")
    return factories[provider]()


def get_classifier() -> LLMClassifier:
    return LLMClassifier(get_llm_client())

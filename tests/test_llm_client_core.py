from credibility.errors import ConfigError, error_response
from credibility.llm_client import (
    LLMClient,
    LLMServiceError,
    RetryPolicy,
    failure_reason,
    get_llm_client,
)

NO_WAIT = RetryPolicy(max_retries=2, backoff_base_s=1.0, backoff_max_s=4.0, min_interval_s=0.0)


class _Completion:
    class usage:
        prompt_tokens = 42
        completion_tokens = 1

    class _Choice:
        class message:
            content = "Yes"

    choices = [_Choice()]


class _Completions:
    def __init__(self, failures: list[Exception]) -> None:
        self._failures = list(failures)
        self.requests: list[dict] = []

    def create(self, **kwargs):
        self.requests.append(kwargs)
        if self._failures:
            raise self._failures.pop(0)
        return _Completion()


class ScriptedLLM(LLMClient):
    provider = "scripted"

    def __init__(self, *failures: Exception, policy: RetryPolicy = NO_WAIT) -> None:
        self.waits: list[float] = []
        super().__init__(policy, sleep=self.waits.append)
        self.completions = _Completions(list(failures))
        self._client = type("Client", (), {"chat": type("Chat", (), {"completions": self.completions})})()

    def _request_kwargs(self, model, temperature, max_tokens) -> dict:
        return {"model": model or "scripted-small", "temperature": temperature, "max_tokens": max_tokens}


class RateLimitError(Exception):
    status_code = 429


def test_generate_sends_system_and_user_messages() -> None:
    llm = ScriptedLLM()
    response = llm.generate("Is there a plan?", system="Answer Yes or No.", max_tokens=10)

    assert response.text == "Yes"
    assert (response.input_tokens, response.output_tokens) == (42, 1)
    request = llm.completions.requests[0]
    assert request["messages"] == [
        {"role": "system", "content": "Answer Yes or No."},
        {"role": "user", "content": "Is there a plan?"},
    ]
    assert request["model"] == "scripted-small"
    assert request["max_tokens"] == 10


def test_transient_failure_is_retried_with_backoff() -> None:
    llm = ScriptedLLM(RuntimeError("upstream timeout"))
    assert llm.generate("q").text == "Yes"
    assert len(llm.completions.requests) == 2
    assert len(llm.waits) == 1
    assert 1.0 <= llm.waits[0] <= 2.0


def test_non_retryable_failure_is_raised_immediately() -> None:
    llm = ScriptedLLM(ValueError("model not found"))
    try:
        llm.generate("q")
        raise AssertionError("Expected LLMServiceError.")
    except LLMServiceError as exc:
        assert "1/3" in str(exc)
        assert exc.reason is None
    assert llm.waits == []


def test_exhausted_rate_limit_keeps_its_reason() -> None:
    llm = ScriptedLLM(*(RateLimitError("slow down") for _ in range(3)))
    try:
        llm.generate("q")
        raise AssertionError("Expected LLMServiceError.")
    except LLMServiceError as exc:
        assert exc.reason == "rate_limit"
        assert error_response(exc)["errorCode"] == "RATE_LIMIT_ERROR"
    assert len(llm.completions.requests) == 3


def test_rejects_response_without_choices() -> None:
    class Empty:
        choices: list = []
        usage = None

    try:
        ScriptedLLM()._response_from(Empty())
        raise AssertionError("Expected LLMServiceError.")
    except LLMServiceError as exc:
        assert "no choices" in str(exc)


def test_failure_reason_classification() -> None:
    class APIConnectionError(Exception):
        pass

    class ServerError(Exception):
        status_code = 503

    assert failure_reason(RateLimitError("x")) == "rate_limit"
    assert failure_reason(ServerError("x")) == "server"
    assert failure_reason(APIConnectionError("x")) == "connection"
    assert failure_reason(RuntimeError("Too Many Requests")) == "rate_limit"
    assert failure_reason(ValueError("bad request")) is None


def test_rate_limited_backoff_is_longer_and_capped() -> None:
    policy = RetryPolicy(backoff_base_s=3.0, backoff_max_s=10.0)
    assert policy.delay(0, None) == 3.0
    assert policy.delay(0, "rate_limit") == 6.0
    assert policy.delay(5, "rate_limit") == 10.0
    assert RetryPolicy(max_retries=-1).attempts == 1


def test_get_llm_client_unknown_provider(monkeypatch) -> None:
    monkeypatch.setenv("OFFLINE_MODE", "0")
    monkeypatch.setenv("LLM_PROVIDER", "unknown_provider")
    try:
        get_llm_client()
        raise AssertionError("Expected ConfigError for unknown provider.")
    except ConfigError as exc:
        assert "Unknown LLM_PROVIDER" in str(exc)


def test_get_llm_client_routes_to_mistral(monkeypatch) -> None:
    monkeypatch.setenv("OFFLINE_MODE", "0")
    monkeypatch.setenv("LLM_PROVIDER", "mistral")
    monkeypatch.setattr("credibility.llm_client.MistralClient", lambda: "mistral-client")
    assert get_llm_client() == "mistral-client"


def test_get_llm_client_routes_to_azure(monkeypatch) -> None:
    monkeypatch.setenv("OFFLINE_MODE", "0")
    monkeypatch.setenv("LLM_PROVIDER", "azure_openai")
    monkeypatch.setattr("credibility.llm_client.AzureOpenAIClient", lambda: "azure-client")
    assert get_llm_client() == "azure-client"


def test_mistral_client_requires_api_key(monkeypatch) -> None:
    monkeypatch.setattr("credibility.config.MISTRAL_API_KEY", "")
    from credibility.llm_client import MistralClient

    try:
        MistralClient()
        raise AssertionError("Expected ConfigError without API key.")
    except ConfigError as exc:
        assert exc.code == "CONFIG_ERROR"
        assert "MISTRAL_API_KEY" in str(exc)

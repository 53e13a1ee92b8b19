"""
Tests for the provider clients and the model family registry.

SDK calls are replaced with stubs; nothing here reaches the network.
"""

from types import SimpleNamespace

import pytest

from clinical_ai_gateway.clients import llm_client
from clinical_ai_gateway.clients.anthropic_client import AnthropicClient
from clinical_ai_gateway.clients.llm_client import BaseLLMClient, ModelProvider, ProviderResponse
from clinical_ai_gateway.clients.openai_client import OpenAIClient
from clinical_ai_gateway.clients.registry import ProviderRegistry
from clinical_ai_gateway.core.config import GatewaySettings
from clinical_ai_gateway.core.context_packet import PacketConstraints
from clinical_ai_gateway.core.exceptions import (
    ConfigurationError,
    MalformedResponseError,
    ProviderContentFilteredError,
    ProviderError,
    ProviderRateLimitError,
    ProviderUnavailableError,
)
from clinical_ai_gateway.core.models import TokenUsage
from tests.conftest import FakeProvider

CONSTRAINTS = PacketConstraints(max_tokens=200, timeout_ms=5000)


class ScriptedClient(BaseLLMClient):
    """BaseLLMClient whose _call_api replays a list of outcomes."""

    def __init__(self, outcomes, **kwargs):
        super().__init__(api_key="test", model_name="scripted-1", **kwargs)
        self._outcomes = list(outcomes)
        self.api_calls = 0

    def _call_api(self, prompt, constraints):
        outcome = self._outcomes[min(self.api_calls, len(self._outcomes) - 1)]
        self.api_calls += 1
        if isinstance(outcome, Exception):
            raise outcome
        return ProviderResponse(text=outcome, token_usage=TokenUsage(prompt_tokens=5, completion_tokens=7))

    @property
    def provider_name(self):
        return "scripted"


@pytest.fixture
def no_sleep(monkeypatch):
    waits = []
    monkeypatch.setattr(llm_client.time, "sleep", waits.append)
    return waits


class TestBaseLLMClient:
    def test_success(self):
        client = ScriptedClient(["summary"])
        response = client.generate("prompt", CONSTRAINTS)

        assert response.text == "summary"
        assert response.token_usage.total_tokens == 12
        assert client.total_calls == 1
        assert client.success_rate == 100.0

    def test_satisfies_protocol(self):
        assert isinstance(ScriptedClient(["x"]), ModelProvider)

    def test_rate_limit_retried(self, no_sleep):
        client = ScriptedClient(
            [ProviderRateLimitError(provider="scripted", retry_after=0.5), "summary"], max_retries=2
        )

        assert client.generate("prompt", CONSTRAINTS).text == "summary"
        assert client.api_calls == 2
        assert no_sleep == [0.5]

    def test_rate_limit_exhausts_retries(self, no_sleep):
        client = ScriptedClient([ProviderRateLimitError(provider="scripted")], max_retries=2)

        with pytest.raises(ProviderRateLimitError):
            client.generate("prompt", CONSTRAINTS)
        assert client.api_calls == 2
        assert client.failed_calls == 1

    def test_provider_error_not_retried(self, no_sleep):
        client = ScriptedClient([ProviderError("boom", provider="scripted"), "summary"], max_retries=3)

        with pytest.raises(ProviderError):
            client.generate("prompt", CONSTRAINTS)
        assert client.api_calls == 1
        assert no_sleep == []

    def test_unexpected_exception_wrapped(self):
        client = ScriptedClient([KeyError("choices")])

        with pytest.raises(ProviderError) as exc_info:
            client.generate("prompt", CONSTRAINTS)
        assert isinstance(exc_info.value.original_error, KeyError)
        assert exc_info.value.provider == "scripted"

    def test_blank_text_is_malformed(self):
        client = ScriptedClient(["   "])

        with pytest.raises(MalformedResponseError):
            client.generate("prompt", CONSTRAINTS)
        assert client.success_rate == 0.0


def _completion(content="Assessment: stable", finish_reason="stop"):
    message = SimpleNamespace(content=content)
    return SimpleNamespace(
        choices=[SimpleNamespace(message=message, finish_reason=finish_reason)],
        usage=SimpleNamespace(prompt_tokens=40, completion_tokens=9),
    )


class StubCompletions:
    def __init__(self, result):
        self.result = result
        self.kwargs = None

    def create(self, **kwargs):
        self.kwargs = kwargs
        if isinstance(self.result, Exception):
            raise self.result
        return self.result


class StatusError(Exception):
    def __init__(self, message, status_code):
        super().__init__(message)
        self.status_code = status_code


class TestOpenAIClient:
    def _client(self, result, **kwargs):
        client = OpenAIClient(api_key="sk-test", model_name="gpt-4o", **kwargs)
        completions = StubCompletions(result)
        client._client = SimpleNamespace(chat=SimpleNamespace(completions=completions))
        return client, completions

    def test_generate(self):
        client, completions = self._client(_completion())
        response = client.generate("Summarize", CONSTRAINTS)

        assert response.text == "Assessment: stable"
        assert response.token_usage.prompt_tokens == 40
        assert completions.kwargs["max_tokens"] == 200
        assert completions.kwargs["timeout"] == 5.0
        assert completions.kwargs["messages"] == [{"role": "user", "content": "Summarize"}]

    def test_content_filter(self):
        client, _ = self._client(_completion(content=None, finish_reason="content_filter"))
        with pytest.raises(ProviderContentFilteredError):
            client.generate("Summarize", CONSTRAINTS)

    def test_empty_content(self):
        client, _ = self._client(_completion(content=""))
        with pytest.raises(MalformedResponseError):
            client.generate("Summarize", CONSTRAINTS)

    def test_rate_limit_translated(self, no_sleep):
        client, _ = self._client(StatusError("Too many requests", 429))
        with pytest.raises(ProviderRateLimitError):
            client.generate("Summarize", CONSTRAINTS)

    def test_other_errors_translated(self):
        client, _ = self._client(StatusError("Bad gateway", 502))
        with pytest.raises(ProviderError) as exc_info:
            client.generate("Summarize", CONSTRAINTS)
        assert "Bad gateway" in exc_info.value.message

    def test_compatible_endpoint_name(self):
        client = OpenAIClient(
            api_key="local", model_name="llama3.1:8b", base_url="http://localhost:11434/v1", provider_name="local"
        )
        assert client.provider_name == "local"
        assert client.model_name == "llama3.1:8b"


class TestAnthropicClient:
    def _client(self, result):
        client = AnthropicClient(api_key="sk-ant-test", model_name="claude-sonnet-4-5")
        messages = StubCompletions(result)
        client._client = SimpleNamespace(messages=messages)
        return client, messages

    def test_generate_joins_text_blocks(self):
        response = SimpleNamespace(
            content=[
                SimpleNamespace(type="text", text="Part one. "),
                SimpleNamespace(type="tool_use", text="ignored"),
                SimpleNamespace(type="text", text="Part two."),
            ],
            stop_reason="end_turn",
            usage=SimpleNamespace(input_tokens=30, output_tokens=6),
        )
        client, messages = self._client(response)

        result = client.generate("Summarize", CONSTRAINTS)

        assert result.text == "Part one. Part two."
        assert result.token_usage.completion_tokens == 6
        assert messages.kwargs["timeout"] == 5.0

    def test_refusal(self):
        response = SimpleNamespace(content=[], stop_reason="refusal", usage=None)
        client, _ = self._client(response)
        with pytest.raises(ProviderContentFilteredError):
            client.generate("Summarize", CONSTRAINTS)

    def test_overloaded_is_rate_limit(self, no_sleep):
        client, _ = self._client(StatusError("Overloaded", 529))
        with pytest.raises(ProviderRateLimitError):
            client.generate("Summarize", CONSTRAINTS)


class TestProviderRegistry:
    def test_register_and_get(self):
        registry = ProviderRegistry()
        provider = FakeProvider("Claude-Opus")
        registry.register("claude-opus", provider)

        assert registry.get("Claude-Opus") is provider
        assert registry.has("Claude-Opus")
        assert registry.families() == ["Claude-Opus"]

    def test_rejects_non_provider(self):
        with pytest.raises(ConfigurationError):
            ProviderRegistry().register("Claude-Opus", object())

    def test_unknown_family(self):
        with pytest.raises(ProviderUnavailableError):
            ProviderRegistry().get("Mistral")

    @pytest.fixture
    def clean_keys(self, tmp_path, monkeypatch):
        monkeypatch.chdir(tmp_path)
        for name in ("OPENAI_API_KEY", "ANTHROPIC_API_KEY", "MISTRAL_API_KEY"):
            monkeypatch.delenv(name, raising=False)
            monkeypatch.delenv(f"GATEWAY_{name}", raising=False)

    def test_from_settings_without_keys(self, clean_keys):
        registry = ProviderRegistry.from_settings(GatewaySettings.from_environment())
        assert registry.families() == ["Local-Model"]

    def test_from_settings_with_anthropic_key(self, clean_keys):
        settings = GatewaySettings.from_environment(anthropic_api_key="sk-ant-test")
        registry = ProviderRegistry.from_settings(settings)

        assert set(registry.families()) == {"Claude-Opus", "Claude-Sonnet", "Local-Model"}
        assert registry.get("Claude-Sonnet").model_name == settings.claude_sonnet_model

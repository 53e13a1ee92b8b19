"""
Anthropic Client - Claude Messages API Implementation

Serves the Claude-Opus and Claude-Sonnet families; one instance per family,
each bound to its concrete model name.
"""

from typing import Optional

from loguru import logger

from clinical_ai_gateway.clients.llm_client import BaseLLMClient, ProviderResponse
from clinical_ai_gateway.core.context_packet import PacketConstraints
from clinical_ai_gateway.core.exceptions import (
    MalformedResponseError,
    ProviderContentFilteredError,
    ProviderError,
    ProviderRateLimitError,
)
from clinical_ai_gateway.core.models import TokenUsage


class AnthropicClient(BaseLLMClient):
    """
    Anthropic API client for text generation.

    What it does:
        Sends the packet prompt as a single user message through the Messages
        API and concatenates the returned text blocks.

    Example:
        >>> client = AnthropicClient(api_key="...", model_name="claude-3-opus-20240229")
        >>> result = client.generate("Summarize...", packet.constraints)
    """

    def __init__(
        self,
        api_key: Optional[str],
        model_name: str,
        rate_limit_delay: float = 0.0,
        max_retries: int = 1,
        temperature: float = 0.3,
    ):
        super().__init__(
            api_key=api_key,
            model_name=model_name,
            rate_limit_delay=rate_limit_delay,
            max_retries=max_retries,
        )
        self._temperature = temperature
        self._client = None
        self._initialize_client()

        logger.info(f"AnthropicClient initialized | Model: {model_name}")

    def _initialize_client(self) -> None:
        """Lazy import to avoid requiring anthropic at module load."""
        try:
            from anthropic import Anthropic

            self._client = Anthropic(api_key=self._api_key, max_retries=0)

        except ImportError as e:
            raise ProviderError(
                "anthropic package not installed. Install with: pip install anthropic",
                provider="anthropic",
                original_error=e,
            ) from e
        except Exception as e:
            raise ProviderError(
                f"Failed to initialize Anthropic client: {e}",
                provider="anthropic",
                original_error=e,
            ) from e

    def _call_api(self, prompt: str, constraints: PacketConstraints) -> ProviderResponse:
        kwargs = {
            "model": self._model_name,
            "max_tokens": constraints.max_tokens,
            "temperature": self._temperature,
            "messages": [{"role": "user", "content": prompt}],
        }
        if constraints.timeout_seconds is not None:
            kwargs["timeout"] = constraints.timeout_seconds

        try:
            response = self._client.messages.create(**kwargs)
        except Exception as e:
            raise self._translate_error(e) from e

        if getattr(response, "stop_reason", None) == "refusal":
            raise ProviderContentFilteredError(provider="anthropic", reason="refusal")

        text = "".join(
            getattr(block, "text", "") for block in (response.content or [])
            if getattr(block, "type", "text") == "text"
        )
        if not text.strip():
            raise MalformedResponseError(
                "Anthropic returned empty response", provider="anthropic", model=self._model_name
            )

        usage = response.usage
        token_usage = TokenUsage(
            prompt_tokens=getattr(usage, "input_tokens", 0) or 0,
            completion_tokens=getattr(usage, "output_tokens", 0) or 0,
        )
        return ProviderResponse(text=text, token_usage=token_usage)

    def _translate_error(self, error: Exception) -> ProviderError:
        status_code = getattr(error, "status_code", None)
        error_str = str(error).lower()

        # 529 is Anthropic's "overloaded"
        if status_code in (429, 529) or "rate_limit" in error_str or "overloaded" in error_str:
            return ProviderRateLimitError(provider="anthropic", original_error=error)

        return ProviderError(
            f"Anthropic API error: {error}",
            provider="anthropic",
            model=self._model_name,
            original_error=error,
        )

    @property
    def provider_name(self) -> str:
        return "anthropic"

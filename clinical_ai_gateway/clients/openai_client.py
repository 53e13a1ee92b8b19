"""
OpenAI Client - OpenAI Chat Completions Implementation

Serves the OpenAI-GPT-4o family and, through an optional base_url, any
OpenAI-compatible endpoint: the Mistral API and a local Ollama/vLLM server
both speak the same chat-completions protocol.

Why Separate File:
    1. Single Responsibility: one SDK per file
    2. Provider-specific handling: usage fields, finish reasons
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


# =============================================================================
# STAGE 1: OPENAI CLIENT IMPLEMENTATION
# =============================================================================


class OpenAIClient(BaseLLMClient):
    """
    OpenAI-protocol client for text generation.

    What it does:
        Sends the packet prompt as a single user message and returns the
        completion text with token usage.

    When to use:
        - OpenAI-GPT-4o (default endpoint)
        - Mistral (base_url=https://api.mistral.ai/v1, provider_name="mistral")
        - Local-Model (base_url=http://localhost:11434/v1, provider_name="local")

    Example:
        >>> client = OpenAIClient(api_key="...", model_name="gpt-4o")
        >>> result = client.generate("Summarize...", packet.constraints)
    """

    def __init__(
        self,
        api_key: Optional[str],
        model_name: str = "gpt-4o",
        base_url: Optional[str] = None,
        provider_name: str = "openai",
        rate_limit_delay: float = 0.0,
        max_retries: int = 1,
        temperature: float = 0.3,
    ):
        # =====================================================================
        # STAGE 1.1: INITIALIZE BASE CLASS
        # =====================================================================
        super().__init__(
            api_key=api_key,
            model_name=model_name,
            rate_limit_delay=rate_limit_delay,
            max_retries=max_retries,
        )
        self._base_url = base_url
        self._provider_name = provider_name
        self._temperature = temperature

        # =====================================================================
        # STAGE 1.2: CONFIGURE OPENAI SDK
        # =====================================================================
        self._client = None
        self._initialize_client()

        logger.info(
            f"OpenAIClient initialized | Provider: {provider_name} | Model: {model_name}"
            + (f" | Endpoint: {base_url}" if base_url else "")
        )

    def _initialize_client(self) -> None:
        """
        Initialize the OpenAI SDK client.

        Lazy import to avoid requiring openai at module load.
        """
        try:
            from openai import OpenAI

            # SDK retries are disabled; retry policy lives in BaseLLMClient
            self._client = OpenAI(api_key=self._api_key, base_url=self._base_url, max_retries=0)

        except ImportError as e:
            raise ProviderError(
                "openai package not installed. Install with: pip install openai",
                provider=self._provider_name,
                original_error=e,
            ) from e
        except Exception as e:
            raise ProviderError(
                f"Failed to initialize OpenAI client: {e}",
                provider=self._provider_name,
                original_error=e,
            ) from e

    # =========================================================================
    # STAGE 2: API CALL IMPLEMENTATION
    # =========================================================================

    def _call_api(self, prompt: str, constraints: PacketConstraints) -> ProviderResponse:
        """
        Make the chat-completions call.

        Raises:
            ProviderRateLimitError: If rate limited
            ProviderContentFilteredError: If the provider filtered the output
            MalformedResponseError: If no text came back
            ProviderError: Any other API failure
        """
        try:
            response = self._client.chat.completions.create(
                model=self._model_name,
                messages=[{"role": "user", "content": prompt}],
                temperature=self._temperature,
                max_tokens=constraints.max_tokens,
                timeout=constraints.timeout_seconds,
            )
        except Exception as e:
            raise self._translate_error(e) from e

        if not response.choices:
            raise MalformedResponseError(
                "OpenAI returned no choices", provider=self._provider_name, model=self._model_name
            )

        choice = response.choices[0]
        if choice.finish_reason == "content_filter":
            raise ProviderContentFilteredError(provider=self._provider_name, reason="content_filter")

        text = choice.message.content if choice.message else None
        if not text:
            raise MalformedResponseError(
                "OpenAI returned empty response",
                provider=self._provider_name,
                model=self._model_name,
            )

        usage = response.usage
        token_usage = TokenUsage(
            prompt_tokens=getattr(usage, "prompt_tokens", 0) or 0,
            completion_tokens=getattr(usage, "completion_tokens", 0) or 0,
        )
        return ProviderResponse(text=text, token_usage=token_usage)

    def _translate_error(self, error: Exception) -> ProviderError:
        """Map SDK exceptions onto the gateway's provider errors."""
        error_str = str(error).lower()
        status_code = getattr(error, "status_code", None)

        if status_code == 429 or "rate limit" in error_str or "quota" in error_str:
            return ProviderRateLimitError(provider=self._provider_name, original_error=error)

        if "content_filter" in error_str or "content management policy" in error_str:
            return ProviderContentFilteredError(provider=self._provider_name, reason=str(error))

        return ProviderError(
            f"{self._provider_name} API error: {error}",
            provider=self._provider_name,
            model=self._model_name,
            original_error=error,
        )

    # =========================================================================
    # STAGE 3: PROPERTIES
    # =========================================================================

    @property
    def provider_name(self) -> str:
        return self._provider_name

"""
Provider Registry - Model Family to Provider Lookup Table

Dispatch from a model family to the client that serves it is an explicit
table lookup. Adding a provider means registering an object that satisfies
ModelProvider; nothing inspects model-name strings.

Usage:
    registry = ProviderRegistry.from_settings(settings)
    provider = registry.get("Claude-Opus")
    result = provider.generate(prompt, packet.constraints)
"""

import threading
from typing import Dict, List

from loguru import logger

from clinical_ai_gateway.clients.anthropic_client import AnthropicClient
from clinical_ai_gateway.clients.llm_client import ModelProvider
from clinical_ai_gateway.clients.openai_client import OpenAIClient
from clinical_ai_gateway.core.config import GatewaySettings
from clinical_ai_gateway.core.enums import ModelFamily, ProviderKind
from clinical_ai_gateway.core.exceptions import ConfigurationError, ProviderUnavailableError


class ProviderRegistry:
    """Thread-safe mapping of model family → ModelProvider."""

    def __init__(self):
        self._providers: Dict[str, ModelProvider] = {}
        self._lock = threading.Lock()

    def register(self, model_family: str, provider: ModelProvider) -> None:
        """
        Register (or replace) the provider serving a model family.

        Raises:
            ConfigurationError: If provider does not implement ModelProvider
        """
        if not isinstance(provider, ModelProvider):
            raise ConfigurationError(
                "Provider does not implement ModelProvider",
                context={"model": model_family, "type": type(provider).__name__},
            )
        family = ModelFamily.from_string(model_family).value
        with self._lock:
            self._providers[family] = provider
        logger.debug(f"Provider registered | Model: {family} | Provider: {provider.provider_name}")

    def get(self, model_family: str) -> ModelProvider:
        """
        Raises:
            ProviderUnavailableError: If no provider serves the family
        """
        with self._lock:
            provider = self._providers.get(model_family)
        if provider is None:
            raise ProviderUnavailableError(model_family)
        return provider

    def has(self, model_family: str) -> bool:
        with self._lock:
            return model_family in self._providers

    def families(self) -> List[str]:
        with self._lock:
            return list(self._providers)

    # =========================================================================
    # FACTORY
    # =========================================================================

    @classmethod
    def from_settings(cls, settings: GatewaySettings) -> "ProviderRegistry":
        """
        Build clients for every provider that has credentials.

        The local model needs none and is always registered so the restricted
        route is always served.
        """
        registry = cls()
        common = {
            "rate_limit_delay": settings.rate_limit_delay,
            "max_retries": settings.max_provider_retries,
        }

        if settings.openai_api_key:
            registry.register(
                ModelFamily.OPENAI_GPT_4O.value,
                OpenAIClient(api_key=settings.openai_api_key, model_name=settings.openai_model, **common),
            )

        if settings.anthropic_api_key:
            registry.register(
                ModelFamily.CLAUDE_OPUS.value,
                AnthropicClient(
                    api_key=settings.anthropic_api_key,
                    model_name=settings.claude_opus_model,
                    **common,
                ),
            )
            registry.register(
                ModelFamily.CLAUDE_SONNET.value,
                AnthropicClient(
                    api_key=settings.anthropic_api_key,
                    model_name=settings.claude_sonnet_model,
                    **common,
                ),
            )

        if settings.mistral_api_key:
            registry.register(
                ModelFamily.MISTRAL.value,
                OpenAIClient(
                    api_key=settings.mistral_api_key,
                    model_name=settings.mistral_model,
                    base_url=settings.mistral_base_url,
                    provider_name=ProviderKind.MISTRAL.value,
                    **common,
                ),
            )

        registry.register(
            ModelFamily.LOCAL_MODEL.value,
            OpenAIClient(
                api_key=settings.local_model_api_key,
                model_name=settings.local_model,
                base_url=settings.local_model_base_url,
                provider_name=ProviderKind.LOCAL.value,
                **common,
            ),
        )

        logger.info(f"Provider registry built | Families: {', '.join(registry.families())}")
        return registry

"""
Clients Layer - Model Provider Abstractions

This layer hides provider SDKs behind one protocol so the rest of the
gateway works with any model family interchangeably.

Submodules:
    llm_client.py       → ModelProvider protocol, ProviderResponse, BaseLLMClient
    openai_client.py    → OpenAI (and OpenAI-compatible Mistral/local) client
    anthropic_client.py → Claude client
    registry.py         → Model family → provider lookup table

Why Abstraction Layer:
    1. Swappable providers without changing routing or execution
    2. Centralized rate limiting and retry logic
    3. Testability via scripted implementations
"""

from clinical_ai_gateway.clients.anthropic_client import AnthropicClient
from clinical_ai_gateway.clients.llm_client import BaseLLMClient, ModelProvider, ProviderResponse
from clinical_ai_gateway.clients.openai_client import OpenAIClient
from clinical_ai_gateway.clients.registry import ProviderRegistry

__all__ = [
    "ModelProvider",
    "ProviderResponse",
    "BaseLLMClient",
    "OpenAIClient",
    "AnthropicClient",
    "ProviderRegistry",
]

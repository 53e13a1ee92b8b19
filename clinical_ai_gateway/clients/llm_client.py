"""
Model Provider Protocol and Base Implementation

This module defines the interface every text-generation provider must
satisfy and a base class with the common plumbing (rate limiting, bounded
retry on rate limits, error translation, call metrics).

Protocol Pattern:
    - ModelProvider defines the interface: generate(prompt, constraints)
    - BaseLLMClient provides common implementation
    - Concrete clients (OpenAIClient, AnthropicClient) extend base
    - ProviderRegistry maps each model family to one provider

Why This Design:
    1. Dependency Inversion: routing/execution depend on the protocol only
    2. Open/Closed: a new provider is a new class plus a registry entry
    3. Testability: scripted fake providers satisfy the same protocol
"""

import threading
import time
from abc import ABC, abstractmethod
from dataclasses import dataclass
from typing import Optional, Protocol, runtime_checkable

from loguru import logger

from clinical_ai_gateway.core.context_packet import PacketConstraints
from clinical_ai_gateway.core.exceptions import (
    MalformedResponseError,
    ProviderError,
    ProviderRateLimitError,
)
from clinical_ai_gateway.core.models import TokenUsage


@dataclass(frozen=True)
class ProviderResponse:
    """Text plus token usage returned by one successful provider call."""

    text: str
    token_usage: TokenUsage


# =============================================================================
# STAGE 1: MODEL PROVIDER PROTOCOL
# =============================================================================
# Defines the contract that all provider clients must follow.


@runtime_checkable
class ModelProvider(Protocol):
    """
    Protocol defining one opaque text-generation capability.

    What it does:
        Specifies the exact methods a provider must implement so the
        executor can call any model family the same way.

    Why it exists:
        1. Replaces model-name string matching with a typed interface
        2. Testing: scripted implementations drop in without a network
        3. Documentation: clear contract for implementers

    Required Methods:
        generate(prompt, constraints) → ProviderResponse or raises

    Properties:
        model_name → Concrete model served (e.g. gpt-4o)
        provider_name → Provider (openai, anthropic, mistral, local)
    """

    def generate(self, prompt: str, constraints: PacketConstraints) -> ProviderResponse:
        """
        Generate text from a prompt.

        Raises:
            ProviderError: If generation fails
        """
        ...

    @property
    def model_name(self) -> str:
        ...

    @property
    def provider_name(self) -> str:
        ...


# =============================================================================
# STAGE 2: BASE LLM CLIENT (ABSTRACT)
# =============================================================================


class BaseLLMClient(ABC):
    """
    Abstract base class for provider clients with common functionality.

    What subclasses must implement:
        - _call_api(prompt, constraints): Actual API call
        - provider_name: Property returning provider name

    What base class provides:
        - Rate limiting between calls (thread-safe, shared by batch workers)
        - Bounded retry on rate limiting only; every other failure is raised
          at once so the fallback cascade can move on
        - Response shape checking (non-empty text)
        - Call metrics
    """

    def __init__(
        self,
        api_key: Optional[str],
        model_name: str,
        rate_limit_delay: float = 0.0,
        max_retries: int = 1,
    ):
        # =====================================================================
        # STAGE 2.1: STORE CONFIGURATION
        # =====================================================================
        self._api_key = api_key
        self._model_name = model_name
        self._rate_limit_delay = rate_limit_delay
        self._max_retries = max(1, max_retries)

        # =====================================================================
        # STAGE 2.2: TRACKING STATE
        # =====================================================================
        self._lock = threading.Lock()
        self._last_call_time: Optional[float] = None
        self._total_calls = 0
        self._failed_calls = 0

    # =========================================================================
    # STAGE 3: PUBLIC API
    # =========================================================================

    def generate(self, prompt: str, constraints: PacketConstraints) -> ProviderResponse:
        """
        Generate text with rate limiting and rate-limit retry.

        Algorithm:
            1. Apply rate limiting (wait if needed)
            2. Call API; retry only when rate limited
            3. Check the response shape
            4. Track metrics

        Raises:
            ProviderError: On any failure (after rate-limit retries)
        """
        last_error: Optional[ProviderError] = None

        for attempt in range(1, self._max_retries + 1):
            self._apply_rate_limit()
            try:
                response = self._call_api(prompt, constraints)
                self._check_response(response)
                self._record(success=True)
                return response

            except ProviderRateLimitError as e:
                last_error = e
                if attempt == self._max_retries:
                    break
                wait_time = e.retry_after or float(2**attempt)
                logger.warning(
                    f"Rate limited by {self.provider_name} | "
                    f"Waiting {wait_time}s (attempt {attempt}/{self._max_retries})"
                )
                time.sleep(wait_time)

            except ProviderError:
                self._record(success=False)
                raise

            except Exception as e:
                self._record(success=False)
                raise ProviderError(
                    f"{self.provider_name} call failed: {e}",
                    provider=self.provider_name,
                    model=self._model_name,
                    original_error=e,
                ) from e

        self._record(success=False)
        raise last_error

    # =========================================================================
    # STAGE 4: ABSTRACT METHODS
    # =========================================================================

    @abstractmethod
    def _call_api(self, prompt: str, constraints: PacketConstraints) -> ProviderResponse:
        """
        Make the actual API call. Must be implemented by subclasses.

        Raises:
            ProviderError: If API call fails
        """
        ...

    @property
    @abstractmethod
    def provider_name(self) -> str:
        ...

    # =========================================================================
    # STAGE 5: COMMON IMPLEMENTATION
    # =========================================================================

    @property
    def model_name(self) -> str:
        return self._model_name

    def _apply_rate_limit(self) -> None:
        """Space calls at least rate_limit_delay apart across threads."""
        if self._rate_limit_delay <= 0:
            return
        with self._lock:
            now = time.monotonic()
            wait_time = 0.0
            if self._last_call_time is not None:
                wait_time = max(0.0, self._rate_limit_delay - (now - self._last_call_time))
            self._last_call_time = now + wait_time
        if wait_time > 0:
            time.sleep(wait_time)

    def _check_response(self, response: ProviderResponse) -> None:
        if not isinstance(response, ProviderResponse):
            raise MalformedResponseError(
                f"{self.provider_name} returned {type(response).__name__}",
                provider=self.provider_name,
                model=self._model_name,
            )
        if not isinstance(response.text, str) or not response.text.strip():
            raise MalformedResponseError(
                f"{self.provider_name} returned empty response",
                provider=self.provider_name,
                model=self._model_name,
            )

    def _record(self, success: bool) -> None:
        with self._lock:
            if success:
                self._total_calls += 1
            else:
                self._failed_calls += 1

    # =========================================================================
    # STAGE 6: METRICS
    # =========================================================================

    @property
    def total_calls(self) -> int:
        """Total number of successful API calls."""
        return self._total_calls

    @property
    def failed_calls(self) -> int:
        return self._failed_calls

    @property
    def success_rate(self) -> float:
        """Percentage of successful calls."""
        total = self._total_calls + self._failed_calls
        if total == 0:
            return 100.0
        return (self._total_calls / total) * 100

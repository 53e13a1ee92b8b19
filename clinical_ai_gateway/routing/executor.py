"""
Fallback Executor - Cascade Traversal With Per-Attempt Timeouts

Calls providers in cascade order until one succeeds or all fail.

Algorithm:
    candidates = dedupe([selected] + cascade)   (cascade skipped if no fallback)
    for each candidate, in order:
        run provider.generate on a worker thread, bounded by the timeout
        success       → return (fallback_triggered = candidate is not first)
        any failure   → record the attempt, advance
    all failed        → CascadeExhaustedError

A timed-out attempt is abandoned, not cancelled: the worker thread runs to
completion in the background and its result is discarded.
"""

import time
from concurrent.futures import ThreadPoolExecutor
from concurrent.futures import TimeoutError as FutureTimeoutError
from typing import List, Optional

from loguru import logger

from clinical_ai_gateway.clients.llm_client import ProviderResponse
from clinical_ai_gateway.clients.registry import ProviderRegistry
from clinical_ai_gateway.core.context_packet import PacketConstraints
from clinical_ai_gateway.core.exceptions import (
    CascadeExhaustedError,
    MalformedResponseError,
    ProviderError,
    ProviderTimeoutError,
)
from clinical_ai_gateway.core.models import AttemptRecord, ExecutionResult, RoutingDecision, TokenUsage


class FallbackExecutor:
    """
    Executes one call across the fallback cascade.

    Attributes:
        default_timeout_seconds: Per-attempt bound when the packet has none
    """

    def __init__(self, registry: ProviderRegistry, default_timeout_seconds: float = 30.0):
        self._registry = registry
        self._default_timeout = default_timeout_seconds

    def execute(
        self,
        prompt: str,
        decision: RoutingDecision,
        constraints: PacketConstraints,
        use_fallback: bool = True,
    ) -> ExecutionResult:
        """
        Run the cascade for one call.

        Raises:
            CascadeExhaustedError: If every candidate failed
        """
        candidates = decision.candidates if use_fallback else [decision.selected_model]
        timeout = constraints.timeout_seconds or self._default_timeout

        attempts: List[AttemptRecord] = []
        failures: List[str] = []

        for index, model in enumerate(candidates):
            start = time.perf_counter()
            try:
                response = self._attempt(model, prompt, constraints, timeout)
            except Exception as e:
                duration_ms = (time.perf_counter() - start) * 1000
                provider = getattr(e, "provider", None) or "unknown"
                attempts.append(
                    AttemptRecord(
                        model=model,
                        provider=provider,
                        success=False,
                        duration_ms=duration_ms,
                        error=f"{type(e).__name__}: {getattr(e, 'message', str(e))}",
                    )
                )
                failures.append(f"{model}: {getattr(e, 'message', str(e))}")
                logger.warning(
                    f"Attempt failed | Model: {model} | {type(e).__name__} | "
                    f"Attempt {index + 1}/{len(candidates)}"
                )
                continue

            duration_ms = (time.perf_counter() - start) * 1000
            attempts.append(
                AttemptRecord(
                    model=model,
                    provider=self._provider_name(model),
                    success=True,
                    duration_ms=duration_ms,
                )
            )
            if index > 0:
                logger.info(f"Fallback succeeded | Model: {model} | Attempt {index + 1}")
            return ExecutionResult(
                text=response.text,
                model_used=model,
                fallback_triggered=index > 0,
                token_usage=response.token_usage,
                attempts=attempts,
            )

        logger.error(f"Cascade exhausted | Attempted: {', '.join(candidates)}")
        raise CascadeExhaustedError(attempted_models=candidates, failures=failures)

    # =========================================================================
    # SINGLE ATTEMPT
    # =========================================================================

    def _attempt(
        self, model: str, prompt: str, constraints: PacketConstraints, timeout: float
    ) -> ProviderResponse:
        provider = self._registry.get(model)

        pool = ThreadPoolExecutor(max_workers=1, thread_name_prefix=f"attempt-{model}")
        try:
            future = pool.submit(provider.generate, prompt, constraints)
            try:
                response = future.result(timeout=timeout)
            except FutureTimeoutError as e:
                raise ProviderTimeoutError(
                    provider=provider.provider_name, model=model, timeout_seconds=timeout
                ) from e
        finally:
            pool.shutdown(wait=False)

        return self._validate(response, model, provider.provider_name)

    @staticmethod
    def _validate(response, model: str, provider_name: str) -> ProviderResponse:
        """Reject anything but non-empty text with token usage."""
        text = getattr(response, "text", None)
        if not isinstance(text, str) or not text.strip():
            raise MalformedResponseError(
                f"{model} returned no usable text", provider=provider_name, model=model
            )
        usage = getattr(response, "token_usage", None)
        if not isinstance(usage, TokenUsage):
            raise MalformedResponseError(
                f"{model} returned no token usage", provider=provider_name, model=model
            )
        return response

    def _provider_name(self, model: str) -> str:
        provider: Optional[object] = None
        if self._registry.has(model):
            provider = self._registry.get(model)
        return getattr(provider, "provider_name", "unknown")

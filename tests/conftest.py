"""
Shared fixtures: scripted fake providers, registries, packets and gateways.
"""

import threading
import time
from typing import Dict, Iterable, List, Optional

import pytest

from clinical_ai_gateway.clients.llm_client import ProviderResponse
from clinical_ai_gateway.clients.registry import ProviderRegistry
from clinical_ai_gateway.core.config import GatewaySettings
from clinical_ai_gateway.core.context_packet import ContextPacket, PacketConstraints
from clinical_ai_gateway.core.enums import ModelFamily
from clinical_ai_gateway.core.exceptions import AuditStoreError, ProviderError
from clinical_ai_gateway.core.models import TokenUsage
from clinical_ai_gateway.pipeline import ClinicalAIGateway
from clinical_ai_gateway.repository.audit_store import InMemoryAuditStore


class ConcurrencyTracker:
    """Counts calls in flight across providers and remembers the peak."""

    def __init__(self):
        self._lock = threading.Lock()
        self.current = 0
        self.peak = 0

    def enter(self) -> None:
        with self._lock:
            self.current += 1
            self.peak = max(self.peak, self.current)

    def exit(self) -> None:
        with self._lock:
            self.current -= 1


class FakeProvider:
    """
    Scripted ModelProvider.

    script: sequence of behaviours consumed one per call; the last entry
    repeats once the script runs out. Behaviours:
        "ok"        → text response
        "echo"      → returns the prompt it received
        "fail"      → raises ProviderError
        "malformed" → returns an empty text
        "slow"      → sleeps `delay` seconds, then responds
    """

    def __init__(
        self,
        model_name: str,
        script: Iterable[str] = ("ok",),
        text: Optional[str] = None,
        delay: float = 0.0,
        tracker: Optional[ConcurrencyTracker] = None,
        provider_name: str = "fake",
    ):
        self._model_name = model_name
        self._provider_name = provider_name
        self._script = list(script)
        self._text = text or f"{model_name} answer"
        self._delay = delay
        self._tracker = tracker
        self._lock = threading.Lock()
        self.calls = 0
        self.prompts: List[str] = []

    @property
    def model_name(self) -> str:
        return self._model_name

    @property
    def provider_name(self) -> str:
        return self._provider_name

    def generate(self, prompt: str, constraints: PacketConstraints) -> ProviderResponse:
        with self._lock:
            index = min(self.calls, len(self._script) - 1)
            behaviour = self._script[index]
            self.calls += 1
            self.prompts.append(prompt)

        if self._tracker:
            self._tracker.enter()
        try:
            if self._delay:
                time.sleep(self._delay)
            if behaviour == "fail":
                raise ProviderError(f"{self._model_name} unavailable", provider=self._provider_name)
            if behaviour == "malformed":
                return ProviderResponse(text="", token_usage=TokenUsage())
            text = prompt if behaviour == "echo" else self._text
            return ProviderResponse(text=text, token_usage=TokenUsage(prompt_tokens=12, completion_tokens=30))
        finally:
            if self._tracker:
                self._tracker.exit()


class FlakyStore(InMemoryAuditStore):
    """Audit store whose first `failures` appends raise."""

    def __init__(self, failures: int):
        super().__init__()
        self.failures = failures
        self.append_calls = 0

    def append(self, record):
        self.append_calls += 1
        if self.append_calls <= self.failures:
            raise AuditStoreError(record.id, "disk unavailable")
        return super().append(record)


def build_registry(providers: Dict[str, FakeProvider]) -> ProviderRegistry:
    registry = ProviderRegistry()
    for family, provider in providers.items():
        registry.register(family, provider)
    return registry


def make_packet(
    role: str = "clinician",
    model_family: str = ModelFamily.OPENAI_GPT_4O.value,
    prompt: str = "Summarize the pathology report",
    safety_mode: str = "high",
    redact_phi: bool = True,
    max_tokens: int = 1000,
    timeout_ms: Optional[int] = None,
    department: str = "oncology",
) -> ContextPacket:
    return ContextPacket.from_dict(
        {
            "version": "1.0",
            "user": {"id": "u-1", "role": role, "department": department, "session_id": "s-1"},
            "task": {"intent": "Summarize report", "model_family": model_family},
            "inputs": {"prompt": prompt},
            "constraints": {
                "max_tokens": max_tokens,
                "redact_phi": redact_phi,
                "safety_mode": safety_mode,
                "timeout_ms": timeout_ms,
            },
            "routing": {"agent": "GATEWAY_TEST"},
            "audit": {"hash": "abc123"},
        }
    )


def make_request(**overrides) -> dict:
    request = {
        "user_id": "dr-lee",
        "role": "clinician",
        "department": "oncology",
        "task": "summarize_report",
        "input": "Summarize the attached pathology report",
    }
    request.update(overrides)
    return request


@pytest.fixture
def settings(tmp_path, monkeypatch) -> GatewaySettings:
    monkeypatch.chdir(tmp_path)
    return GatewaySettings(_env_file=None, batch_concurrency=3, default_timeout_seconds=2.0)


@pytest.fixture
def providers() -> Dict[str, FakeProvider]:
    return {family: FakeProvider(family) for family in ModelFamily.values()}


@pytest.fixture
def audit_store() -> InMemoryAuditStore:
    return InMemoryAuditStore()


@pytest.fixture
def gateway(settings, providers, audit_store) -> ClinicalAIGateway:
    return ClinicalAIGateway(
        settings=settings,
        registry=build_registry(providers),
        audit_store=audit_store,
    )

"""
Security Screening - Pre-Call Gating and Post-Call Redaction

This module screens prompts before any model is invoked and redacts
identifier-like spans from text on both sides of the call:
    1. Injection risk scan (weighted adversarial patterns, score in [0, 1])
    2. Content policy filter (disallowed categories)
    3. PHI detection (SSN, phone, email, date)
    4. PHI redaction (fixed placeholder tokens, idempotent)

Why Rule-Based Screening:
    1. Deterministic: the same prompt is always judged the same way
    2. Free and instant: no model call is spent on a rejected prompt
    3. Auditable: every rejection names the rule that fired

Pipeline Position:
    Packet → [Screening (pre)] → Router → Executor → [Screening (post)] → Audit
              ^^^^^^^^^^^^^^^                         ^^^^^^^^^^^^^^^^
"""

import re
from dataclasses import dataclass, field
from typing import List, Sequence, Tuple

from loguru import logger

from clinical_ai_gateway.core.constants import (
    CONTENT_POLICY_CATEGORIES,
    INJECTION_BLOCK_THRESHOLD,
    INJECTION_PATTERNS,
    PHI_PATTERNS,
)
from clinical_ai_gateway.core.context_packet import ContextPacket
from clinical_ai_gateway.core.models import ScreeningResult


# =============================================================================
# STAGE 1: INJECTION RISK SCAN
# =============================================================================


@dataclass
class InjectionScanResult:
    score: float
    matched: List[str] = field(default_factory=list)

    @property
    def blocked(self) -> bool:
        return self.score >= INJECTION_BLOCK_THRESHOLD


class InjectionScanner:
    """
    Scores prompt text against weighted adversarial patterns.

    Score = min(sum of weights of matching patterns, 1.0). Each pattern is
    counted once however often it occurs.
    """

    def __init__(
        self,
        patterns: Sequence[Tuple[str, float]] = INJECTION_PATTERNS,
        threshold: float = INJECTION_BLOCK_THRESHOLD,
    ):
        self._patterns = [
            (re.compile(pattern, re.IGNORECASE | re.MULTILINE), pattern, weight)
            for pattern, weight in patterns
        ]
        self._threshold = threshold

    @property
    def threshold(self) -> float:
        return self._threshold

    def scan(self, text: str) -> InjectionScanResult:
        score = 0.0
        matched = []
        for regex, source, weight in self._patterns:
            if regex.search(text or ""):
                score += weight
                matched.append(source)
        return InjectionScanResult(score=min(round(score, 4), 1.0), matched=matched)

    def is_blocked(self, text: str) -> bool:
        return self.scan(text).score >= self._threshold


# =============================================================================
# STAGE 2: CONTENT POLICY FILTER
# =============================================================================


@dataclass
class ContentPolicyResult:
    approved: bool
    violations: List[str] = field(default_factory=list)


class ContentPolicyFilter:
    """Rejects disallowed content categories; reports each violated category once."""

    def __init__(self, categories=CONTENT_POLICY_CATEGORIES):
        self._categories = {
            name: re.compile("|".join(f"(?:{p})" for p in patterns), re.IGNORECASE)
            for name, patterns in categories.items()
        }

    def check(self, text: str) -> ContentPolicyResult:
        violations = [name for name, regex in self._categories.items() if regex.search(text or "")]
        return ContentPolicyResult(approved=not violations, violations=violations)


# =============================================================================
# STAGE 3: PHI DETECTION AND REDACTION
# =============================================================================
# Patterns are applied in declaration order (SSN before phone).


def _compile_phi(patterns) -> List[Tuple[str, "re.Pattern", str]]:
    return [(kind, re.compile(pattern), placeholder) for kind, pattern, placeholder in patterns]


class PHIDetector:
    """Pattern-matches identifier-like spans."""

    def __init__(self, patterns=PHI_PATTERNS):
        self._patterns = _compile_phi(patterns)

    def detect(self, text: str) -> List[str]:
        """Return PHI kinds present in text, in pattern order, without duplicates."""
        kinds: List[str] = []
        for kind, regex, _ in self._patterns:
            if kind not in kinds and regex.search(text or ""):
                kinds.append(kind)
        return kinds

    def contains_phi(self, text: str) -> bool:
        return any(regex.search(text or "") for _, regex, _ in self._patterns)


class PHIRedactor:
    """
    Replaces identifier-like spans with fixed placeholder tokens.

    Idempotent: placeholders contain no digits or '@', so no pattern matches
    already-redacted text.
    """

    def __init__(self, patterns=PHI_PATTERNS):
        self._patterns = _compile_phi(patterns)

    def redact(self, text: str) -> str:
        if not text:
            return text
        for _, regex, placeholder in self._patterns:
            text = regex.sub(placeholder, text)
        return text

    __call__ = redact


# =============================================================================
# STAGE 4: SECURITY SCREENER (ORCHESTRATOR)
# =============================================================================


class SecurityScreener:
    """
    Combines the individual checks into the two pipeline call sites.

    What it does:
        screen_request(packet) gates a call before routing; redact_output
        cleans model output before it is returned or persisted.

    When to use:
        - Once per packet, before the router
        - On every model output when the packet asks for PHI redaction

    Example:
        >>> screener = SecurityScreener()
        >>> result = screener.screen_request(packet)
        >>> if not result.approved:
        ...     print(result.violations)
    """

    def __init__(
        self,
        scanner: InjectionScanner = None,
        content_filter: ContentPolicyFilter = None,
        detector: PHIDetector = None,
        redactor: PHIRedactor = None,
    ):
        self.scanner = scanner or InjectionScanner()
        self.content_filter = content_filter or ContentPolicyFilter()
        self.detector = detector or PHIDetector()
        self.redactor = redactor or PHIRedactor()

    def screen_request(self, packet: ContextPacket) -> ScreeningResult:
        """
        Pre-call screening of the packet prompt.

        Algorithm:
            1. Injection scan over the prompt and the context window (which
               carries an excerpt of earlier model output); blocked when
               score >= threshold
            2. Content policy check
            3. PHI detection (informational; drives redaction and audit flag)
        """
        prompt = packet.inputs.prompt
        violations: List[str] = []

        # Step 1: Injection risk
        injection = self.scanner.scan("\n".join((prompt, *packet.inputs.context_window)))
        if injection.score >= self.scanner.threshold:
            violations.append(
                f"Potential prompt injection detected (risk score {injection.score:.2f})"
            )

        # Step 2: Content policy
        policy = self.content_filter.check(prompt)
        violations.extend(f"Content policy violation: {name}" for name in policy.violations)

        # Step 3: PHI
        phi_kinds = self.detector.detect(prompt)

        if violations:
            logger.warning(
                f"Request rejected by screening | User: {packet.user.id} | "
                f"Risk: {injection.score:.2f} | Violations: {len(violations)}"
            )

        return ScreeningResult(
            approved=not violations,
            violations=violations,
            risk_score=injection.score,
            phi_detected=bool(phi_kinds),
            phi_kinds=phi_kinds,
        )

    def redact_output(self, text: str) -> str:
        """Post-call redaction of model output."""
        return self.redactor.redact(text)

    def contains_phi(self, text: str) -> bool:
        return self.detector.contains_phi(text)

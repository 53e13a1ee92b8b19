"""
Security Layer - Pre-Call Screening and PHI Redaction

This layer decides whether a prompt may reach any model and removes
identifier-like spans from text before it leaves or is persisted.

Submodules:
    screening.py → Injection scan, content policy, PHI detection/redaction

Dependency Rule:
    This layer depends on: core
    This layer is used by: mediation
"""

from clinical_ai_gateway.security.screening import (
    ContentPolicyFilter,
    InjectionScanner,
    PHIDetector,
    PHIRedactor,
    SecurityScreener,
)

__all__ = [
    "SecurityScreener",
    "InjectionScanner",
    "ContentPolicyFilter",
    "PHIDetector",
    "PHIRedactor",
]

"""
Constants for the Clinical AI Gateway

This module holds the static policy tables and fixed values used throughout
the gateway. Policy lives here as declarative data, never as inline
conditionals, so a policy change does not touch control flow.

Constant Categories:
    ROLE_MODEL_MATRIX / FALLBACK_CASCADE → Default routing policy
    TASK_INTENTS / MODEL_PREFERENCE_MAP  → Request-to-packet mappings
    INJECTION_PATTERNS / PHI_PATTERNS    → Security screening patterns
    AUDIT_RETENTION_DAYS                 → Compliance retention
    ERROR_SUGGESTIONS                    → Remediation hints per error code
"""

from typing import Dict, List, Tuple

from clinical_ai_gateway.core.enums import (
    ErrorCode,
    ExpectedOutput,
    ModelFamily,
    ModelPreference,
    OutputFormat,
    OutputLength,
    ProviderKind,
    SafetyLevel,
    SafetyMode,
    TaskKind,
    UserRole,
)


# =============================================================================
# STAGE 1: PROTOCOL
# =============================================================================

PROTOCOL_VERSION = "1.0"

NO_MODEL_SENTINEL = "none"
"""Model name recorded when no model produced output (rejection, exhaustion)."""

ERROR_MODEL_SENTINEL = "error"
"""Model name recorded for unexpected internal failures."""


# =============================================================================
# STAGE 2: ROUTING POLICY
# =============================================================================
# Role → ordered permitted families. The first entry is the role's
# highest-priority family and is used when a request must be downgraded.

ROLE_MODEL_MATRIX: Dict[str, List[str]] = {
    UserRole.CLINICIAN.value: [
        ModelFamily.OPENAI_GPT_4O.value,
        ModelFamily.CLAUDE_OPUS.value,
        ModelFamily.CLAUDE_SONNET.value,
    ],
    UserRole.ONCOLOGIST.value: [
        ModelFamily.OPENAI_GPT_4O.value,
        ModelFamily.CLAUDE_OPUS.value,
        ModelFamily.CLAUDE_SONNET.value,
        ModelFamily.MISTRAL.value,
    ],
    UserRole.NURSE.value: [
        ModelFamily.CLAUDE_SONNET.value,
        ModelFamily.LOCAL_MODEL.value,
    ],
    UserRole.TECHNICIAN.value: [
        ModelFamily.LOCAL_MODEL.value,
    ],
    UserRole.RESEARCHER.value: [
        ModelFamily.CLAUDE_OPUS.value,
        ModelFamily.MISTRAL.value,
        ModelFamily.LOCAL_MODEL.value,
    ],
    UserRole.ADMIN.value: [
        ModelFamily.OPENAI_GPT_4O.value,
        ModelFamily.CLAUDE_OPUS.value,
        ModelFamily.CLAUDE_SONNET.value,
        ModelFamily.MISTRAL.value,
        ModelFamily.LOCAL_MODEL.value,
    ],
}

# Model → ordered alternates tried when the model fails.
FALLBACK_CASCADE: Dict[str, List[str]] = {
    ModelFamily.OPENAI_GPT_4O.value: [
        ModelFamily.CLAUDE_OPUS.value,
        ModelFamily.CLAUDE_SONNET.value,
        ModelFamily.MISTRAL.value,
        ModelFamily.LOCAL_MODEL.value,
    ],
    ModelFamily.CLAUDE_OPUS.value: [
        ModelFamily.OPENAI_GPT_4O.value,
        ModelFamily.CLAUDE_SONNET.value,
        ModelFamily.MISTRAL.value,
        ModelFamily.LOCAL_MODEL.value,
    ],
    ModelFamily.CLAUDE_SONNET.value: [
        ModelFamily.CLAUDE_OPUS.value,
        ModelFamily.OPENAI_GPT_4O.value,
        ModelFamily.LOCAL_MODEL.value,
    ],
    ModelFamily.MISTRAL.value: [
        ModelFamily.CLAUDE_SONNET.value,
        ModelFamily.LOCAL_MODEL.value,
    ],
    ModelFamily.LOCAL_MODEL.value: [],
}

MODEL_PROVIDERS: Dict[str, str] = {
    ModelFamily.OPENAI_GPT_4O.value: ProviderKind.OPENAI.value,
    ModelFamily.CLAUDE_OPUS.value: ProviderKind.ANTHROPIC.value,
    ModelFamily.CLAUDE_SONNET.value: ProviderKind.ANTHROPIC.value,
    ModelFamily.MISTRAL.value: ProviderKind.MISTRAL.value,
    ModelFamily.LOCAL_MODEL.value: ProviderKind.LOCAL.value,
}

LOCAL_ONLY_MODELS: List[str] = [ModelFamily.LOCAL_MODEL.value]

RESTRICTED_MODEL = ModelFamily.LOCAL_MODEL.value
"""Most restrictive model; content routed here never leaves the trusted boundary."""

# Illustrative USD cost per 1K tokens. Observability only, never billing.
COST_PER_1K_TOKENS: Dict[str, float] = {
    ModelFamily.OPENAI_GPT_4O.value: 0.03,
    ModelFamily.CLAUDE_OPUS.value: 0.075,
    ModelFamily.CLAUDE_SONNET.value: 0.015,
    ModelFamily.MISTRAL.value: 0.002,
    ModelFamily.LOCAL_MODEL.value: 0.0,
}


# =============================================================================
# STAGE 3: REQUEST → PACKET MAPPINGS
# =============================================================================

TASK_INTENTS: Dict[TaskKind, str] = {
    TaskKind.SUMMARIZE_REPORT: "Generate comprehensive summary of genomic/clinical report",
    TaskKind.ANALYZE_MUTATIONS: "Analyze genetic mutations and clinical significance",
    TaskKind.RECOMMEND_TREATMENT: "Provide evidence-based treatment recommendations",
    TaskKind.MATCH_TRIALS: "Match patient to relevant clinical trials",
    TaskKind.CLINICAL_DECISION: "Support clinical decision making",
    TaskKind.PATIENT_EDUCATION: "Create patient-friendly educational content",
    TaskKind.RISK_ASSESSMENT: "Assess clinical risk factors and outcomes",
    TaskKind.DRUG_INTERACTION: "Analyze drug-drug and drug-gene interactions",
}

MODEL_PREFERENCE_MAP: Dict[ModelPreference, ModelFamily] = {
    ModelPreference.SMART: ModelFamily.OPENAI_GPT_4O,
    ModelPreference.FAST: ModelFamily.CLAUDE_SONNET,
    ModelPreference.LOCAL: ModelFamily.LOCAL_MODEL,
    ModelPreference.PRECISE: ModelFamily.CLAUDE_OPUS,
}

DEFAULT_MODEL_PREFERENCE = ModelPreference.SMART

MAX_TOKENS_BY_LENGTH: Dict[OutputLength, int] = {
    OutputLength.SHORT: 500,
    OutputLength.MEDIUM: 1500,
    OutputLength.LONG: 3000,
}

DEFAULT_MAX_TOKENS = 1500

OUTPUT_FORMAT_TO_EXPECTED: Dict[OutputFormat, ExpectedOutput] = {
    OutputFormat.SUMMARY: ExpectedOutput.CLINICAL_SUMMARY,
    OutputFormat.DETAILED: ExpectedOutput.ANALYSIS,
    OutputFormat.BULLET_POINTS: ExpectedOutput.REPORT,
    OutputFormat.STRUCTURED: ExpectedOutput.DATA_TRANSFORM,
}

SAFETY_LEVEL_TO_MODE: Dict[SafetyLevel, SafetyMode] = {
    SafetyLevel.STANDARD: SafetyMode.MEDIUM,
    SafetyLevel.HIGH: SafetyMode.HIGH,
    SafetyLevel.MAXIMUM: SafetyMode.MAXIMUM,
}

DEFAULT_SAFETY_MODE = SafetyMode.HIGH

CONTEXT_EXCERPT_CHARS = 200
"""Length of the prior-response excerpt injected into the context window."""


# =============================================================================
# STAGE 4: SECURITY SCREENING PATTERNS
# =============================================================================
# (pattern, weight). A single instruction-override phrase or fabricated role
# marker is enough to reach the 0.5 blocking threshold.

INJECTION_PATTERNS: List[Tuple[str, float]] = [
    # Instruction override phrasing
    (r"ignore\s+(all\s+)?(the\s+)?(previous|prior|above)\s+instructions", 0.6),
    (r"disregard\s+(all\s+)?(the\s+)?(previous|prior|above)\s+(instructions|rules)", 0.6),
    (r"forget\s+everything", 0.6),
    (r"override\s+(your|the)\s+(safety|system)\s+(rules|instructions|guidelines)", 0.6),
    # Fabricated system-role markers
    (r"system:\s*you\s+are\s+now", 0.5),
    (r"\[\s*system\s*\]", 0.5),
    (r"<\|?\s*im_start\s*\|?>\s*system", 0.5),
    (r"^\s*#{2,}\s*system\b", 0.5),
    # Softer jailbreak cues
    (r"pretend\s+(that\s+)?you\s+(are|have)\s+no\s+(restrictions|rules)", 0.3),
    (r"reveal\s+(your|the)\s+system\s+prompt", 0.3),
    (r"developer\s+mode", 0.3),
]

INJECTION_BLOCK_THRESHOLD = 0.5

CONTENT_POLICY_CATEGORIES: Dict[str, List[str]] = {
    "self_harm_instructions": [
        r"how\s+(do\s+i|to|can\s+i)\s+(kill|harm|hurt)\s+(myself|yourself)",
        r"lethal\s+dose\s+to\s+(kill|end)",
    ],
    "weapons_construction": [
        r"(build|make|construct)\s+(a\s+)?(bomb|explosive|weapon)",
    ],
    "illicit_drug_synthesis": [
        r"(synthesi[sz]e|cook|manufacture)\s+(meth|methamphetamine|fentanyl|heroin)",
    ],
    "harmful_content_request": [
        r"generate\s+harmful\s+content",
    ],
}

# Order matters: SSN before phone so hyphenated IDs are not split.
PHI_PATTERNS: List[Tuple[str, str, str]] = [
    ("ssn", r"\b\d{3}-\d{2}-\d{4}\b", "[SSN_REDACTED]"),
    ("email", r"\b[A-Za-z0-9._%+-]+@[A-Za-z0-9.-]+\.[A-Za-z]{2,}\b", "[EMAIL_REDACTED]"),
    ("phone", r"\(\d{3}\)\s?\d{3}[-.\s]\d{4}\b", "[PHONE_REDACTED]"),
    ("phone", r"\b\d{3}[-.]\d{3}[-.]\d{4}\b", "[PHONE_REDACTED]"),
    ("phone", r"\b\d{10,}\b", "[PHONE_REDACTED]"),
    ("date", r"\b\d{1,2}/\d{1,2}/\d{4}\b", "[DATE_REDACTED]"),
    ("date", r"\b\d{4}-\d{2}-\d{2}\b", "[DATE_REDACTED]"),
]


# =============================================================================
# STAGE 5: AUDIT AND COMPLIANCE
# =============================================================================

AUDIT_RETENTION_DAYS = 2555
"""Seven years, the compliance retention period for audit records."""

AUDIT_NEAR_MISS_CHANNEL = "audit_near_miss"
"""Loguru `channel` binding for audit records that could not be persisted."""

PENDING_AUDIT_LIMIT = 1000

TIME_RANGE_HOURS: Dict[str, int] = {
    "1h": 1,
    "24h": 24,
    "7d": 24 * 7,
    "30d": 24 * 30,
}


# =============================================================================
# STAGE 6: RESPONSE SHAPING
# =============================================================================

# Heuristic confidence, not a calibrated probability.
BASE_CONFIDENCE = 85
FALLBACK_CONFIDENCE_PENALTY = 15
VIOLATION_CONFIDENCE_PENALTY = 10

ERROR_SUGGESTIONS: Dict[ErrorCode, List[str]] = {
    ErrorCode.VALIDATION_ERROR: [
        "Provide both a task kind and input text",
        "Check that the user role is one of the supported roles",
    ],
    ErrorCode.SECURITY_VIOLATION: [
        "Remove instruction-override or system-role phrasing from the prompt",
        "Rephrase the request without disallowed content",
    ],
    ErrorCode.CASCADE_EXHAUSTED: [
        "Retry later; all permitted models are currently unavailable",
        "Try again with reduced complexity or a shorter output length",
    ],
    ErrorCode.INTERNAL_ERROR: [
        "Check your request parameters",
        "Verify user permissions",
        "Contact the platform team if the problem persists",
    ],
    ErrorCode.WORKFLOW_NOT_FOUND: [
        "Check the workflow name against the registered workflows",
    ],
    ErrorCode.WORKFLOW_PERMISSION_DENIED: [
        "Ask a user with one of the required roles to run this workflow",
    ],
}


# =============================================================================
# STAGE 7: LOGGING CONFIGURATION
# =============================================================================

LOG_FORMAT = (
    "<green>{time:YYYY-MM-DD HH:mm:ss}</green> | "
    "<level>{level: <8}</level> | "
    "<cyan>{name}</cyan>:<cyan>{function}</cyan>:<cyan>{line}</cyan> | "
    "<level>{message}</level>"
)

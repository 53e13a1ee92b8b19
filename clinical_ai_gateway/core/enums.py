"""
Enumerations for the Clinical AI Gateway

This module defines the enumeration types shared by every layer of the
gateway. Enums provide:
    1. Type safety for categorical values
    2. Validation of inbound requests (unknown values are rejected)
    3. Clear domain semantics in audit records

Enumeration Categories:
    UserRole / ClearanceLevel        → Who is calling
    ModelFamily / ProviderKind       → What can be called
    TaskKind / ExpectedOutput        → What is being asked
    SafetyMode / SafetyLevel         → How strictly content is protected
    ModelPreference / OutputFormat   → Caller-facing preference tiers
    AuditOutcome / ErrorCode         → How a call ended
"""

from enum import Enum


class _LookupMixin:
    """Case-insensitive lookup shared by caller-facing enums."""

    @classmethod
    def from_string(cls, value: str):
        """
        Convert a string to an enum member, matching value or name.

        Raises:
            ValueError: If no member matches
        """
        if isinstance(value, cls):
            return value

        normalized = str(value).strip().lower()
        for member in cls:
            if member.value.lower() == normalized or member.name.lower() == normalized:
                return member

        valid = ", ".join(m.value for m in cls)
        raise ValueError(f"Invalid {cls.__name__}: '{value}'. Valid values: {valid}")

    @classmethod
    def values(cls) -> list:
        """Return all member values as a list."""
        return [member.value for member in cls]


# =============================================================================
# STAGE 1: CALLER IDENTITY
# =============================================================================


class UserRole(_LookupMixin, str, Enum):
    """
    Fixed enumeration of roles allowed to invoke the gateway.

    The role decides which model families a caller may use (see the
    role-access matrix in constants.py).
    """

    CLINICIAN = "clinician"
    ONCOLOGIST = "oncologist"
    NURSE = "nurse"
    TECHNICIAN = "technician"
    RESEARCHER = "researcher"
    ADMIN = "admin"


class ClearanceLevel(_LookupMixin, str, Enum):
    """Optional clearance carried on the caller identity."""

    BASIC = "basic"
    ENHANCED = "enhanced"
    RESTRICTED = "restricted"


# =============================================================================
# STAGE 2: MODELS AND PROVIDERS
# =============================================================================


class ModelFamily(_LookupMixin, str, Enum):
    """
    Model families the gateway can route to.

    Each family is served by exactly one provider client, registered in the
    ProviderRegistry lookup table.
    """

    OPENAI_GPT_4O = "OpenAI-GPT-4o"
    CLAUDE_OPUS = "Claude-Opus"
    CLAUDE_SONNET = "Claude-Sonnet"
    MISTRAL = "Mistral"
    LOCAL_MODEL = "Local-Model"


class ProviderKind(_LookupMixin, str, Enum):
    """Provider backing a model family."""

    OPENAI = "openai"
    ANTHROPIC = "anthropic"
    MISTRAL = "mistral"
    LOCAL = "local"


# =============================================================================
# STAGE 3: TASK DEFINITION
# =============================================================================


class TaskKind(_LookupMixin, str, Enum):
    """
    Task-oriented request kinds accepted by the facade.

    Each kind maps to a natural-language intent (TASK_INTENTS).
    """

    SUMMARIZE_REPORT = "summarize_report"
    ANALYZE_MUTATIONS = "analyze_mutations"
    RECOMMEND_TREATMENT = "recommend_treatment"
    MATCH_TRIALS = "match_trials"
    CLINICAL_DECISION = "clinical_decision"
    PATIENT_EDUCATION = "patient_education"
    RISK_ASSESSMENT = "risk_assessment"
    DRUG_INTERACTION = "drug_interaction"


class ExpectedOutput(_LookupMixin, str, Enum):
    """Kind of output the model is expected to produce."""

    CLINICAL_SUMMARY = "clinical_summary"
    ANALYSIS = "analysis"
    RECOMMENDATION = "recommendation"
    REPORT = "report"
    DATA_TRANSFORM = "data_transform"


class Priority(_LookupMixin, str, Enum):
    LOW = "low"
    NORMAL = "normal"
    HIGH = "high"
    URGENT = "urgent"


# =============================================================================
# STAGE 4: SAFETY
# =============================================================================


class SafetyMode(_LookupMixin, str, Enum):
    """
    Safety mode carried on the Context Packet constraints.

    MAXIMUM combined with PHI redaction forces the restricted local model.
    """

    LOW = "low"
    MEDIUM = "medium"
    HIGH = "high"
    MAXIMUM = "maximum"


class SafetyLevel(_LookupMixin, str, Enum):
    """Caller-facing safety override, translated to a SafetyMode."""

    STANDARD = "standard"
    HIGH = "high"
    MAXIMUM = "maximum"


class AuditLevel(_LookupMixin, str, Enum):
    BASIC = "basic"
    DETAILED = "detailed"
    FORENSIC = "forensic"


# =============================================================================
# STAGE 5: CALLER PREFERENCES
# =============================================================================


class ModelPreference(_LookupMixin, str, Enum):
    """Abstract model tier a caller may ask for instead of a concrete family."""

    SMART = "smart"
    FAST = "fast"
    LOCAL = "local"
    PRECISE = "precise"


class OutputFormat(_LookupMixin, str, Enum):
    SUMMARY = "summary"
    DETAILED = "detailed"
    BULLET_POINTS = "bullet_points"
    STRUCTURED = "structured"


class OutputLength(_LookupMixin, str, Enum):
    SHORT = "short"
    MEDIUM = "medium"
    LONG = "long"


# =============================================================================
# STAGE 6: OUTCOMES
# =============================================================================


class AuditOutcome(_LookupMixin, str, Enum):
    """
    Terminal outcome recorded on every audit record.

    Exactly one audit record is written per terminal outcome.
    """

    SUCCESS = "success"
    CASCADE_EXHAUSTED = "cascade_exhausted"
    SECURITY_REJECTION = "security_rejection"
    INTERNAL_ERROR = "internal_error"


class ComplianceStatus(_LookupMixin, str, Enum):
    COMPLIANT = "compliant"
    WARNING = "warning"
    VIOLATION = "violation"


class ErrorCode(_LookupMixin, str, Enum):
    """Machine-readable error codes returned in structured errors."""

    VALIDATION_ERROR = "VALIDATION_ERROR"
    SECURITY_VIOLATION = "SECURITY_VIOLATION"
    CASCADE_EXHAUSTED = "CASCADE_EXHAUSTED"
    INTERNAL_ERROR = "INTERNAL_ERROR"
    WORKFLOW_NOT_FOUND = "WORKFLOW_NOT_FOUND"
    WORKFLOW_PERMISSION_DENIED = "WORKFLOW_PERMISSION_DENIED"

"""
Domain Models for the Clinical AI Gateway

This module defines the data structures passed between the gateway layers.
All models are dataclasses designed for:
    1. Type safety and IDE support
    2. Serialization to/from JSON (audit store, responses)
    3. Clear domain semantics

Model Hierarchy:
    TokenUsage         → Prompt/completion token counts
    RoutingDecision    → Ephemeral router output (selected model, cascade)
    AttemptRecord      → One provider attempt inside the cascade
    ExecutionResult    → Executor output (text, model used, fallback flag)
    ScreeningResult    → Pre-call security screening outcome
    ModelCallAudit     → Immutable audit record, one per terminal outcome
    SessionContext     → Rolling per-session summary
    MediationResult    → Engine output consumed by the facade
    GatewayResponse    → Caller-facing response (never an exception)
    WorkflowResult     → Ordered per-step responses of a workflow
    AuditFilters       → Audit query filters
    UsageAnalytics     → Aggregates over the audit store

Usage:
    from clinical_ai_gateway.core.models import GatewayResponse, ModelCallAudit

    record = ModelCallAudit.from_dict(json.loads(line))
"""

from dataclasses import dataclass, field
from datetime import datetime, timedelta, timezone
from typing import Any, Dict, List, Optional, Tuple

from clinical_ai_gateway.core.constants import TIME_RANGE_HOURS
from clinical_ai_gateway.core.enums import AuditOutcome, ComplianceStatus, ErrorCode


def utc_now() -> datetime:
    return datetime.now(timezone.utc)


def _parse_datetime(value: Any) -> datetime:
    if isinstance(value, datetime):
        parsed = value
    else:
        parsed = datetime.fromisoformat(str(value))
    if parsed.tzinfo is None:
        parsed = parsed.replace(tzinfo=timezone.utc)
    return parsed


# =============================================================================
# STAGE 1: PROVIDER OUTPUT
# =============================================================================


@dataclass(frozen=True)
class TokenUsage:
    """Token accounting reported by a provider."""

    prompt_tokens: int = 0
    completion_tokens: int = 0

    @property
    def total_tokens(self) -> int:
        return self.prompt_tokens + self.completion_tokens

    def to_dict(self) -> Dict[str, int]:
        return {
            "prompt_tokens": self.prompt_tokens,
            "completion_tokens": self.completion_tokens,
            "total_tokens": self.total_tokens,
        }

    @classmethod
    def from_dict(cls, data: Optional[Dict[str, Any]]) -> "TokenUsage":
        data = data or {}
        return cls(
            prompt_tokens=int(data.get("prompt_tokens", 0)),
            completion_tokens=int(data.get("completion_tokens", 0)),
        )


# =============================================================================
# STAGE 2: ROUTING AND EXECUTION
# =============================================================================


@dataclass(frozen=True)
class RoutingDecision:
    """
    Router output for one call. Computed fresh per call, never persisted on
    its own (the audit record carries the packet and the model used).

    Attributes:
        selected_model: Model family chosen for the first attempt
        provider: Provider backing the selected model
        reasoning: Human-readable explanation of the choice
        fallback_cascade: Ordered alternates, never containing selected_model
        security_clearance: Whether the selection is cleared for the role
        estimated_cost: Illustrative cost (observability only)
        estimated_tokens: Rough token estimate for the task
        requested_model: Family requested on the packet
        downgraded: Requested family was not permitted for the role
        forced_restricted: Maximum safety with PHI redaction forced the
            restricted model
    """

    selected_model: str
    provider: str
    reasoning: str
    fallback_cascade: Tuple[str, ...] = ()
    security_clearance: bool = True
    estimated_cost: float = 0.0
    estimated_tokens: int = 0
    requested_model: Optional[str] = None
    downgraded: bool = False
    forced_restricted: bool = False

    @property
    def candidates(self) -> List[str]:
        """Selected model followed by its cascade, deduplicated in order."""
        seen = []
        for model in (self.selected_model,) + tuple(self.fallback_cascade):
            if model not in seen:
                seen.append(model)
        return seen

    def to_dict(self) -> Dict[str, Any]:
        return {
            "selected_model": self.selected_model,
            "provider": self.provider,
            "reasoning": self.reasoning,
            "fallback_cascade": list(self.fallback_cascade),
            "security_clearance": self.security_clearance,
            "estimated_cost": self.estimated_cost,
            "estimated_tokens": self.estimated_tokens,
            "requested_model": self.requested_model,
            "downgraded": self.downgraded,
            "forced_restricted": self.forced_restricted,
        }


@dataclass(frozen=True)
class AttemptRecord:
    """Outcome of a single provider attempt within the cascade."""

    model: str
    provider: str
    success: bool
    duration_ms: float
    error: Optional[str] = None

    def to_dict(self) -> Dict[str, Any]:
        return {
            "model": self.model,
            "provider": self.provider,
            "success": self.success,
            "duration_ms": round(self.duration_ms, 2),
            "error": self.error,
        }


@dataclass
class ExecutionResult:
    text: str
    model_used: str
    fallback_triggered: bool
    token_usage: TokenUsage = field(default_factory=TokenUsage)
    attempts: List[AttemptRecord] = field(default_factory=list)

    @property
    def attempted_models(self) -> List[str]:
        return [attempt.model for attempt in self.attempts]


# =============================================================================
# STAGE 3: SECURITY SCREENING
# =============================================================================


@dataclass
class ScreeningResult:
    """
    Outcome of pre-call screening.

    Attributes:
        approved: False when any injection or content-policy violation hit
        violations: Human-readable violation descriptions
        risk_score: Injection risk score in [0, 1]
        phi_detected: Whether identifier-like spans were found in the prompt
        phi_kinds: Kinds of PHI found (ssn, phone, email, date)
    """

    approved: bool
    violations: List[str] = field(default_factory=list)
    risk_score: float = 0.0
    phi_detected: bool = False
    phi_kinds: List[str] = field(default_factory=list)


# =============================================================================
# STAGE 4: AUDIT RECORD
# =============================================================================


@dataclass(frozen=True)
class ModelCallAudit:
    """
    Immutable record of one terminal outcome.

    What it does:
        Describes one completed or rejected model invocation: who called,
        which model answered (or a sentinel), hashes of input and output,
        the packet snapshot, timing, token usage and safety findings.

    Why it exists:
        1. Compliance: every terminal outcome leaves exactly one record
        2. Analytics: usage metrics are derived from these records only
        3. No raw PHI: input/output appear as hashes, the snapshot is
           redacted when the packet asked for redaction

    Attributes:
        id: Unique generated identifier (idempotency key for writes)
        model_used: Model that answered, "none" for rejection/exhaustion,
            "error" for internal failures
        outcome: Terminal outcome category
        packet: JSON-safe Context Packet snapshot
    """

    id: str
    user_id: str
    model_used: str
    task: str
    input_hash: str
    output_hash: Optional[str]
    timestamp: datetime
    packet: Dict[str, Any]
    outcome: AuditOutcome
    fallback_triggered: bool = False
    response_time_ms: float = 0.0
    token_usage: TokenUsage = field(default_factory=TokenUsage)
    safety_violations: Tuple[str, ...] = ()
    phi_detected: bool = False
    department: str = ""
    attempted_models: Tuple[str, ...] = ()
    error_code: Optional[str] = None

    @property
    def day(self) -> str:
        """Per-day index key (UTC)."""
        return self.timestamp.astimezone(timezone.utc).strftime("%Y-%m-%d")

    @property
    def succeeded(self) -> bool:
        return self.outcome == AuditOutcome.SUCCESS

    def to_dict(self) -> Dict[str, Any]:
        """Convert to dictionary for JSON serialization."""
        return {
            "id": self.id,
            "user_id": self.user_id,
            "model_used": self.model_used,
            "task": self.task,
            "input_hash": self.input_hash,
            "output_hash": self.output_hash,
            "timestamp": self.timestamp.isoformat(),
            "packet": self.packet,
            "outcome": self.outcome.value,
            "fallback_triggered": self.fallback_triggered,
            "response_time_ms": self.response_time_ms,
            "token_usage": self.token_usage.to_dict(),
            "safety_violations": list(self.safety_violations),
            "phi_detected": self.phi_detected,
            "department": self.department,
            "attempted_models": list(self.attempted_models),
            "error_code": self.error_code,
        }

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "ModelCallAudit":
        """Create from dictionary (JSON deserialization)."""
        return cls(
            id=data["id"],
            user_id=data["user_id"],
            model_used=data["model_used"],
            task=data.get("task", ""),
            input_hash=data.get("input_hash", ""),
            output_hash=data.get("output_hash"),
            timestamp=_parse_datetime(data["timestamp"]),
            packet=data.get("packet") or {},
            outcome=AuditOutcome(data.get("outcome", AuditOutcome.SUCCESS.value)),
            fallback_triggered=bool(data.get("fallback_triggered", False)),
            response_time_ms=float(data.get("response_time_ms", 0.0)),
            token_usage=TokenUsage.from_dict(data.get("token_usage")),
            safety_violations=tuple(data.get("safety_violations") or ()),
            phi_detected=bool(data.get("phi_detected", False)),
            department=data.get("department", ""),
            attempted_models=tuple(data.get("attempted_models") or ()),
            error_code=data.get("error_code"),
        )


@dataclass
class AuditFilters:
    """Filters for audit queries. Unset fields match everything."""

    user_id: Optional[str] = None
    model_name: Optional[str] = None
    start_date: Optional[datetime] = None
    end_date: Optional[datetime] = None
    department: Optional[str] = None
    outcome: Optional[AuditOutcome] = None

    @classmethod
    def from_time_range(
        cls, time_range: str, now: Optional[datetime] = None, **kwargs: Any
    ) -> "AuditFilters":
        """
        Build filters covering the trailing window ("1h", "24h", "7d", "30d").

        Raises:
            ValueError: If the time range is not recognized
        """
        if time_range not in TIME_RANGE_HOURS:
            valid = ", ".join(TIME_RANGE_HOURS)
            raise ValueError(f"Invalid time range '{time_range}'. Valid values: {valid}")
        end = now or utc_now()
        start = end - timedelta(hours=TIME_RANGE_HOURS[time_range])
        return cls(start_date=start, end_date=end, **kwargs)

    def matches(self, record: ModelCallAudit) -> bool:
        if self.user_id is not None and record.user_id != self.user_id:
            return False
        if self.model_name is not None and record.model_used != self.model_name:
            return False
        if self.department is not None and record.department != self.department:
            return False
        if self.outcome is not None and record.outcome != self.outcome:
            return False
        if self.start_date is not None and record.timestamp < _parse_datetime(self.start_date):
            return False
        if self.end_date is not None and record.timestamp > _parse_datetime(self.end_date):
            return False
        return True


# =============================================================================
# STAGE 5: SESSION CONTEXT
# =============================================================================


@dataclass
class SessionContext:
    """Rolling per-session summary used for prompt continuity."""

    session_id: str
    last_request: Optional[str] = None
    last_response: Optional[str] = None
    request_count: int = 0
    total_processing_ms: float = 0.0
    last_activity: datetime = field(default_factory=utc_now)

    def to_dict(self) -> Dict[str, Any]:
        return {
            "session_id": self.session_id,
            "last_request": self.last_request,
            "last_response": self.last_response,
            "request_count": self.request_count,
            "total_processing_ms": round(self.total_processing_ms, 2),
            "last_activity": self.last_activity.isoformat(),
        }


# =============================================================================
# STAGE 6: MEDIATION AND RESPONSES
# =============================================================================


@dataclass
class MediationResult:
    """
    Engine output for one packet. The facade shapes it into a GatewayResponse.

    Attributes:
        success: True only when a model produced output
        audit_id: Id of the single audit record written for this outcome
        audit_persisted: False when the audit write became a near miss
        error_code / error_message: Set on every non-success outcome
    """

    success: bool
    audit_id: str
    text: Optional[str] = None
    model_used: Optional[str] = None
    fallback_triggered: bool = False
    token_usage: TokenUsage = field(default_factory=TokenUsage)
    routing: Optional[RoutingDecision] = None
    violations: List[str] = field(default_factory=list)
    phi_detected: bool = False
    processing_time_ms: float = 0.0
    audit_persisted: bool = True
    outcome: AuditOutcome = AuditOutcome.SUCCESS
    error_code: Optional[ErrorCode] = None
    error_message: Optional[str] = None


@dataclass
class ErrorDetail:
    """Structured error returned to callers in place of an exception."""

    message: str
    code: ErrorCode
    suggestions: List[str] = field(default_factory=list)

    def to_dict(self) -> Dict[str, Any]:
        return {"message": self.message, "code": self.code.value, "suggestions": self.suggestions}


@dataclass
class ResponseMetadata:
    processing_time_ms: float = 0.0
    token_usage: TokenUsage = field(default_factory=TokenUsage)
    estimated_cost: float = 0.0
    citations: List[str] = field(default_factory=list)
    actionable_items: List[str] = field(default_factory=list)
    followup_recommendations: List[str] = field(default_factory=list)
    safety_warnings: List[str] = field(default_factory=list)

    def to_dict(self) -> Dict[str, Any]:
        return {
            "processing_time_ms": round(self.processing_time_ms, 2),
            "token_usage": self.token_usage.to_dict(),
            "estimated_cost": self.estimated_cost,
            "citations": self.citations,
            "actionable_items": self.actionable_items,
            "followup_recommendations": self.followup_recommendations,
            "safety_warnings": self.safety_warnings,
        }


@dataclass
class AuditSummary:
    """Audit reference returned with every response that produced a record."""

    audit_id: str
    compliance_status: ComplianceStatus
    phi_detected: bool = False
    fallback_used: bool = False
    security_violations: List[str] = field(default_factory=list)

    def to_dict(self) -> Dict[str, Any]:
        return {
            "audit_id": self.audit_id,
            "compliance_status": self.compliance_status.value,
            "phi_detected": self.phi_detected,
            "fallback_used": self.fallback_used,
            "security_violations": self.security_violations,
        }


@dataclass
class GatewayResponse:
    """
    Caller-facing response. Callers always receive one of these, never an
    unhandled exception.

    Attributes:
        confidence: Penalty-based heuristic in [0, 100], NOT a calibrated
            probability
        audit: Audit reference (None only for validation failures, which
            are rejected before a packet exists)
        error: Structured error when success is False
    """

    success: bool
    response: Optional[str] = None
    confidence: Optional[float] = None
    model_used: Optional[str] = None
    processing_time_ms: float = 0.0
    metadata: ResponseMetadata = field(default_factory=ResponseMetadata)
    audit: Optional[AuditSummary] = None
    session_id: Optional[str] = None
    error: Optional[ErrorDetail] = None

    @classmethod
    def failure(
        cls,
        error: ErrorDetail,
        processing_time_ms: float = 0.0,
        audit: Optional[AuditSummary] = None,
        session_id: Optional[str] = None,
    ) -> "GatewayResponse":
        return cls(
            success=False,
            processing_time_ms=processing_time_ms,
            metadata=ResponseMetadata(processing_time_ms=processing_time_ms),
            audit=audit,
            session_id=session_id,
            error=error,
        )

    def to_dict(self) -> Dict[str, Any]:
        return {
            "success": self.success,
            "response": self.response,
            "confidence": self.confidence,
            "model_used": self.model_used,
            "processing_time_ms": round(self.processing_time_ms, 2),
            "metadata": self.metadata.to_dict(),
            "audit": self.audit.to_dict() if self.audit else None,
            "session_id": self.session_id,
            "error": self.error.to_dict() if self.error else None,
        }


@dataclass
class WorkflowResult:
    """Completed step responses, in order, up to the first failure."""

    success: bool
    workflow_id: str
    workflow_name: str = ""
    results: List[GatewayResponse] = field(default_factory=list)
    total_time_ms: float = 0.0
    error: Optional[ErrorDetail] = None

    def to_dict(self) -> Dict[str, Any]:
        return {
            "success": self.success,
            "workflow_id": self.workflow_id,
            "workflow_name": self.workflow_name,
            "results": [r.to_dict() for r in self.results],
            "total_time_ms": round(self.total_time_ms, 2),
            "error": self.error.to_dict() if self.error else None,
        }


# =============================================================================
# STAGE 7: ANALYTICS
# =============================================================================


@dataclass
class UsageAnalytics:
    """
    Aggregate metrics over audit records matching a filter.

    Rates are fractions in [0, 1]; times are milliseconds.
    """

    total_calls: int = 0
    successful_calls: int = 0
    success_rate: float = 0.0
    average_response_time_ms: float = 0.0
    top_tasks: List[Tuple[str, int]] = field(default_factory=list)
    model_distribution: Dict[str, int] = field(default_factory=dict)
    error_summary: Dict[str, int] = field(default_factory=dict)
    fallback_rate: float = 0.0
    security_rejections: int = 0
    phi_detected_count: int = 0
    total_tokens: int = 0

    def to_dict(self) -> Dict[str, Any]:
        return {
            "total_calls": self.total_calls,
            "successful_calls": self.successful_calls,
            "success_rate": self.success_rate,
            "average_response_time_ms": self.average_response_time_ms,
            "top_tasks": [{"task": task, "count": count} for task, count in self.top_tasks],
            "model_distribution": self.model_distribution,
            "error_summary": self.error_summary,
            "fallback_rate": self.fallback_rate,
            "security_rejections": self.security_rejections,
            "phi_detected_count": self.phi_detected_count,
            "total_tokens": self.total_tokens,
        }

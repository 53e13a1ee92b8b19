"""
Mediation Engine - Governed Execution of One Context Packet

This module runs one packet through the governed pipeline and always writes
exactly one audit record for its terminal outcome.

Pipeline:
    1. Pre-call screening   → rejection short-circuits (no model call)
    2. Routing              → selected model + cascade
    3. Input redaction      → prompt sent to the model (if redact_phi)
    4. Cascade execution    → first successful model
    5. Output redaction     → text returned and hashed (if redact_phi)
    6. Audit (always)       → success | security_rejection |
                              cascade_exhausted | internal_error

Why a Separate Engine:
    1. The facade deals with requests; the engine only with packets
    2. One place guarantees the one-record-per-outcome rule
    3. process_packet never raises: every failure becomes a result
"""

import hashlib
import time
import uuid
from dataclasses import dataclass, field
from typing import Any, Dict, List, Optional

from loguru import logger

from clinical_ai_gateway.audit.recorder import AuditRecorder
from clinical_ai_gateway.core.constants import (
    AUDIT_NEAR_MISS_CHANNEL,
    ERROR_MODEL_SENTINEL,
    NO_MODEL_SENTINEL,
)
from clinical_ai_gateway.core.context_packet import ContextPacket
from clinical_ai_gateway.core.enums import AuditOutcome, ErrorCode
from clinical_ai_gateway.core.exceptions import CascadeExhaustedError, SecurityViolationError
from clinical_ai_gateway.core.models import (
    MediationResult,
    ModelCallAudit,
    TokenUsage,
    utc_now,
)
from clinical_ai_gateway.routing.executor import FallbackExecutor
from clinical_ai_gateway.routing.router import ModelRouter
from clinical_ai_gateway.security.screening import SecurityScreener


def sha256_hex(text: Optional[str]) -> Optional[str]:
    if text is None:
        return None
    return hashlib.sha256(text.encode("utf-8")).hexdigest()


def compose_model_prompt(packet: ContextPacket) -> str:
    """Text actually sent to the model: intent, context window, then the prompt."""
    parts = [f"Task: {packet.task.intent}"]
    if packet.inputs.context_window:
        parts.append("Context:\n" + "\n".join(packet.inputs.context_window))
    parts.append(packet.inputs.prompt)
    return "\n\n".join(parts)


@dataclass
class _Trace:
    """Facts collected while a packet moves through the pipeline."""

    snapshot: Optional[Dict[str, Any]] = None
    input_hash: Optional[str] = None
    output_hash: Optional[str] = None
    phi_detected: bool = False
    attempted_models: List[str] = field(default_factory=list)


class MediationEngine:
    """
    Screens, routes, executes, redacts and audits one packet.

    What it does:
        Turns a validated Context Packet into a MediationResult, writing
        exactly one ModelCallAudit along the way.

    When to use:
        - From the facade, once per packet (single calls, workflow steps,
          batch items)

    Example:
        >>> engine = MediationEngine(screener, router, executor, recorder)
        >>> result = engine.process_packet(packet)
        >>> result.success, result.model_used, result.audit_id
    """

    def __init__(
        self,
        screener: SecurityScreener,
        router: ModelRouter,
        executor: FallbackExecutor,
        recorder: AuditRecorder,
    ):
        self._screener = screener
        self._router = router
        self._executor = executor
        self._recorder = recorder

    def process_packet(self, packet: ContextPacket) -> MediationResult:
        start = time.perf_counter()
        audit_id = str(uuid.uuid4())
        trace = _Trace()

        try:
            result = self._run(packet, audit_id, trace)
        except SecurityViolationError as e:
            result = MediationResult(
                success=False,
                audit_id=audit_id,
                model_used=NO_MODEL_SENTINEL,
                violations=e.violations,
                outcome=AuditOutcome.SECURITY_REJECTION,
                error_code=e.error_code,
                error_message=e.message,
            )
        except Exception as e:
            logger.exception(f"Internal error during mediation | Audit: {audit_id} | {type(e).__name__}")
            result = MediationResult(
                success=False,
                audit_id=audit_id,
                model_used=ERROR_MODEL_SENTINEL,
                outcome=AuditOutcome.INTERNAL_ERROR,
                error_code=ErrorCode.INTERNAL_ERROR,
                error_message=f"Internal error while processing request ({type(e).__name__})",
            )

        result.processing_time_ms = (time.perf_counter() - start) * 1000
        result.phi_detected = trace.phi_detected
        result.audit_persisted = self._write_audit(packet, result, trace)
        return result

    # =========================================================================
    # STAGE 1: PIPELINE
    # =========================================================================

    def _run(self, packet: ContextPacket, audit_id: str, trace: _Trace) -> MediationResult:
        redact = packet.constraints.redact_phi
        redactor = self._screener.redactor

        # ---- 1.1 Snapshot and input hash (never raw PHI in the record) ----
        trace.input_hash = sha256_hex(packet.inputs.prompt)
        audit_packet = packet.redacted(redactor.redact) if redact else packet
        trace.snapshot = audit_packet.to_dict()

        # ---- 1.2 Pre-call screening ----
        screening = self._screener.screen_request(packet)
        trace.phi_detected = screening.phi_detected
        if not screening.approved:
            raise SecurityViolationError(screening.violations, screening.risk_score)

        # ---- 1.3 Routing ----
        decision = self._router.route(packet)

        # ---- 1.4 Execution on the (redacted) prompt ----
        prompt = compose_model_prompt(audit_packet)
        try:
            execution = self._executor.execute(
                prompt,
                decision,
                packet.constraints,
                use_fallback=packet.routing.use_fallback,
            )
        except CascadeExhaustedError as e:
            trace.attempted_models = list(e.attempted_models)
            return MediationResult(
                success=False,
                audit_id=audit_id,
                model_used=NO_MODEL_SENTINEL,
                routing=decision,
                fallback_triggered=len(e.attempted_models) > 1,
                outcome=AuditOutcome.CASCADE_EXHAUSTED,
                error_code=ErrorCode.CASCADE_EXHAUSTED,
                error_message=e.message,
            )
        trace.attempted_models = execution.attempted_models

        # ---- 1.5 Output redaction ----
        text = execution.text
        if self._screener.contains_phi(text):
            trace.phi_detected = True
        if redact:
            text = self._screener.redact_output(text)
        trace.output_hash = sha256_hex(text)

        logger.info(
            f"Mediation complete | Audit: {audit_id} | Model: {execution.model_used} | "
            f"Fallback: {execution.fallback_triggered}"
        )
        return MediationResult(
            success=True,
            audit_id=audit_id,
            text=text,
            model_used=execution.model_used,
            fallback_triggered=execution.fallback_triggered,
            token_usage=execution.token_usage,
            routing=decision,
            outcome=AuditOutcome.SUCCESS,
        )

    # =========================================================================
    # STAGE 2: AUDIT
    # =========================================================================

    def _write_audit(self, packet: ContextPacket, result: MediationResult, trace: _Trace) -> bool:
        try:
            audit = ModelCallAudit(
                id=result.audit_id,
                user_id=packet.user.id,
                model_used=result.model_used or NO_MODEL_SENTINEL,
                task=packet.task.intent,
                input_hash=trace.input_hash or "",
                output_hash=trace.output_hash,
                timestamp=utc_now(),
                packet=trace.snapshot or _minimal_snapshot(packet),
                outcome=result.outcome,
                fallback_triggered=result.fallback_triggered,
                response_time_ms=round(result.processing_time_ms, 2),
                token_usage=result.token_usage if result.success else TokenUsage(),
                safety_violations=tuple(result.violations),
                phi_detected=trace.phi_detected,
                department=packet.user.department,
                attempted_models=tuple(trace.attempted_models),
                error_code=result.error_code.value if result.error_code else None,
            )
        except Exception as e:
            logger.bind(channel=AUDIT_NEAR_MISS_CHANNEL).critical(
                f"AUDIT NEAR MISS | Id: {result.audit_id} | Record could not be built: {e}"
            )
            return False
        return self._recorder.record(audit)


def _minimal_snapshot(packet: ContextPacket) -> Dict[str, Any]:
    """Snapshot without inputs, used when the full snapshot could not be taken."""
    data = packet.to_dict()
    data.pop("inputs", None)
    return data

"""
Clinical AI Gateway - Request Facade

This is the PUBLIC API entry point of the governed AI-request mediator. It
sits between the clinical application and external language-model
providers and coordinates every layer behind one object.

Architecture Diagram:
    ┌─────────────────────────────────────────────────────────────────────┐
    │                          ClinicalAIGateway                          │
    ├─────────────────────────────────────────────────────────────────────┤
    │  request → PacketBuilder → Screening → Router → FallbackExecutor    │
    │                                 │                       │           │
    │                                 └──→ AuditRecorder ←────┘           │
    │                                          │                          │
    │           response ← SessionStore ←──────┘    UsageAnalytics (read) │
    └─────────────────────────────────────────────────────────────────────┘

Entry Points:
    process(request)                → GatewayResponse (never raises)
    execute_workflow(name, request) → WorkflowResult (stops at first failure)
    process_batch(requests)         → List[GatewayResponse] (bounded window)
    get_audit_log / get_usage_analytics / get_session_context

Usage:
    from clinical_ai_gateway import ClinicalAIGateway

    gateway = ClinicalAIGateway.from_environment()
    response = gateway.process({
        "user_id": "dr-lee",
        "role": "oncologist",
        "department": "oncology",
        "task": "summarize_report",
        "input": "Summarize the attached pathology report",
    })
    if response.success:
        print(response.response, response.audit.audit_id)
"""

import re
import threading
import time
import uuid
from concurrent.futures import ThreadPoolExecutor
from typing import Any, Callable, Dict, List, Optional, Sequence, Union

from loguru import logger

from clinical_ai_gateway.audit.analytics import UsageAnalyticsService
from clinical_ai_gateway.audit.recorder import AuditRecorder, NearMissCallback
from clinical_ai_gateway.clients.registry import ProviderRegistry
from clinical_ai_gateway.core.config import GatewaySettings
from clinical_ai_gateway.core.constants import (
    BASE_CONFIDENCE,
    ERROR_SUGGESTIONS,
    FALLBACK_CONFIDENCE_PENALTY,
    VIOLATION_CONFIDENCE_PENALTY,
)
from clinical_ai_gateway.core.context_packet import ContextPacket
from clinical_ai_gateway.core.enums import ComplianceStatus, ErrorCode, OutputFormat, TaskKind
from clinical_ai_gateway.core.exceptions import (
    ContextPacketValidationError,
    GatewayError,
    WorkflowNotFoundError,
    WorkflowPermissionError,
)
from clinical_ai_gateway.core.log_config import configure_logging
from clinical_ai_gateway.core.models import (
    AuditFilters,
    AuditSummary,
    ErrorDetail,
    GatewayResponse,
    MediationResult,
    ModelCallAudit,
    ResponseMetadata,
    SessionContext,
    UsageAnalytics,
    WorkflowResult,
)
from clinical_ai_gateway.core.requests import GatewayRequest
from clinical_ai_gateway.mediation.engine import MediationEngine
from clinical_ai_gateway.mediation.packet_builder import ContextPacketBuilder
from clinical_ai_gateway.mediation.workflows import BUILTIN_WORKFLOWS, ClinicalWorkflow
from clinical_ai_gateway.repository.audit_store import AuditStore, InMemoryAuditStore, JsonlAuditStore
from clinical_ai_gateway.repository.session_store import InMemorySessionStore, SessionStore
from clinical_ai_gateway.routing.executor import FallbackExecutor
from clinical_ai_gateway.routing.policy import RoutingPolicy
from clinical_ai_gateway.routing.router import ModelRouter
from clinical_ai_gateway.security.screening import SecurityScreener

RequestLike = Union[GatewayRequest, Dict[str, Any]]


# =============================================================================
# STAGE 1: RESPONSE SHAPING HELPERS
# =============================================================================

_CITATION_PATTERN = re.compile(r"\[([^\[\]]+)\]")
_REDACTION_TOKEN = re.compile(r"^[A-Z]+_REDACTED$")


def heuristic_confidence(fallback_used: bool, violation_count: int) -> float:
    """
    Penalty-based confidence heuristic in [0, 100].

    Base score minus fixed deductions for fallback use and violations. This is
    NOT a calibrated probability.
    """
    score = BASE_CONFIDENCE
    if fallback_used:
        score -= FALLBACK_CONFIDENCE_PENALTY
    if violation_count > 0:
        score -= VIOLATION_CONFIDENCE_PENALTY
    return float(max(0, min(100, score)))


def extract_metadata(text: str) -> Dict[str, List[str]]:
    """Citations in [brackets], plus canned follow-ups keyed on output wording."""
    citations = [
        match.strip()
        for match in _CITATION_PATTERN.findall(text or "")
        if match.strip() and not _REDACTION_TOKEN.match(match.strip())
    ]
    lowered = (text or "").lower()

    actionable_items: List[str] = []
    if "recommend" in lowered:
        actionable_items = ["Review recommendations with patient", "Schedule follow-up"]

    followups: List[str] = []
    if "trial" in lowered or "study" in lowered:
        followups = ["Consider clinical trial enrollment"]

    return {
        "citations": list(dict.fromkeys(citations)),
        "actionable_items": actionable_items,
        "followup_recommendations": followups,
    }


def compliance_status(result: MediationResult) -> ComplianceStatus:
    if result.violations:
        return ComplianceStatus.VIOLATION
    if result.phi_detected:
        return ComplianceStatus.WARNING
    return ComplianceStatus.COMPLIANT


def error_detail(code: ErrorCode, message: str) -> ErrorDetail:
    return ErrorDetail(message=message, code=code, suggestions=list(ERROR_SUGGESTIONS.get(code, [])))


# =============================================================================
# STAGE 2: GATEWAY FACADE
# =============================================================================


class ClinicalAIGateway:
    """
    Main entry point for governed AI requests.

    What it does:
        Builds a Context Packet per call, runs it through the mediation
        engine, shapes the caller-facing response and keeps session context
        current. Also runs multi-step workflows and bounded batches.

    Why it exists:
        1. Simple API: callers never touch packets, routers or providers
        2. Well-formed responses: every failure is a structured error
        3. Configuration: one place wires stores, policy and providers
        4. Testability: every collaborator can be injected

    How it works:
        STAGE 1: Wire components from settings (or injected overrides)
        STAGE 2: On process():
            2.1 Build packet (validation failures return VALIDATION_ERROR)
            2.2 Mediate (screen → route → execute → redact → audit)
            2.3 Shape response (confidence, metadata, audit summary)
            2.4 Update session context

    Example:
        >>> gateway = ClinicalAIGateway(settings, registry=registry)
        >>> response = gateway.process(request)
        >>> response.success, response.model_used
    """

    def __init__(
        self,
        settings: Optional[GatewaySettings] = None,
        registry: Optional[ProviderRegistry] = None,
        audit_store: Optional[AuditStore] = None,
        session_store: Optional[SessionStore] = None,
        policy: Optional[RoutingPolicy] = None,
        screener: Optional[SecurityScreener] = None,
        near_miss_callback: Optional[NearMissCallback] = None,
        workflows: Optional[Dict[str, ClinicalWorkflow]] = None,
    ):
        # =====================================================================
        # STAGE 2.1: CONFIGURATION
        # =====================================================================
        self._settings = settings or GatewaySettings()
        settings = self._settings

        # =====================================================================
        # STAGE 2.2: STORES
        # =====================================================================
        if audit_store is None:
            audit_store = self._create_audit_store(settings)
        self._session_store = session_store or InMemorySessionStore(
            ttl_seconds=settings.session_ttl_seconds,
            max_entries=settings.session_max_entries,
        )
        self._recorder = AuditRecorder(
            audit_store,
            max_write_attempts=settings.audit_write_attempts,
            near_miss_callback=near_miss_callback,
        )
        self._analytics = UsageAnalyticsService(self._recorder)

        # =====================================================================
        # STAGE 2.3: ROUTING AND EXECUTION
        # =====================================================================
        if policy is None:
            policy = (
                RoutingPolicy.from_file(settings.routing_policy_path)
                if settings.routing_policy_path
                else RoutingPolicy.default()
            )
        self._registry = registry if registry is not None else ProviderRegistry.from_settings(settings)
        self._screener = screener or SecurityScreener()
        self._router = ModelRouter(policy)
        self._executor = FallbackExecutor(
            self._registry, default_timeout_seconds=settings.default_timeout_seconds
        )

        # =====================================================================
        # STAGE 2.4: MEDIATION
        # =====================================================================
        self._builder = ContextPacketBuilder(
            self._session_store,
            lower_trust_roles=settings.lower_trust_roles,
            lower_trust_departments=settings.lower_trust_departments,
        )
        self._engine = MediationEngine(self._screener, self._router, self._executor, self._recorder)

        self._workflows: Dict[str, ClinicalWorkflow] = dict(
            BUILTIN_WORKFLOWS if workflows is None else workflows
        )
        self._workflows_lock = threading.Lock()

        logger.info(
            f"ClinicalAIGateway initialized | Providers: {', '.join(self._registry.families())} | "
            f"Batch concurrency: {settings.batch_concurrency}"
        )

    # =========================================================================
    # STAGE 3: SINGLE CALL
    # =========================================================================

    def process(self, request: RequestLike) -> GatewayResponse:
        """
        Process one task-oriented request. Never raises.

        Returns:
            GatewayResponse with either output or a structured error
        """
        start = time.perf_counter()

        # ---- 3.1 Build packet ----
        try:
            packet = self._builder.build(GatewayRequest.coerce(request))
        except ContextPacketValidationError as e:
            details = "; ".join(e.errors)
            logger.warning(f"Request rejected at boundary | {e.message} | {details}")
            message = f"{e.message}: {details}" if details else e.message
            return GatewayResponse.failure(
                error_detail(ErrorCode.VALIDATION_ERROR, message),
                processing_time_ms=_elapsed_ms(start),
            )
        except Exception as e:
            logger.exception(f"Internal error while building packet | {type(e).__name__}")
            return GatewayResponse.failure(
                error_detail(ErrorCode.INTERNAL_ERROR, f"Internal error ({type(e).__name__})"),
                processing_time_ms=_elapsed_ms(start),
            )

        # ---- 3.2 Mediate ----
        result = self._engine.process_packet(packet)

        # ---- 3.3 Shape response ----
        response = self._build_response(result, packet, _elapsed_ms(start))

        # ---- 3.4 Session context ----
        self._update_session(packet, response)
        return response

    def _build_response(
        self, result: MediationResult, packet: ContextPacket, elapsed_ms: float
    ) -> GatewayResponse:
        audit = AuditSummary(
            audit_id=result.audit_id,
            compliance_status=compliance_status(result),
            phi_detected=result.phi_detected,
            fallback_used=result.fallback_triggered,
            security_violations=list(result.violations),
        )
        session_id = packet.user.session_id

        if not result.success:
            code = result.error_code or ErrorCode.INTERNAL_ERROR
            return GatewayResponse.failure(
                error_detail(code, result.error_message or "Processing failed"),
                processing_time_ms=elapsed_ms,
                audit=audit,
                session_id=session_id,
            )

        extracted = extract_metadata(result.text)
        metadata = ResponseMetadata(
            processing_time_ms=elapsed_ms,
            token_usage=result.token_usage,
            estimated_cost=result.routing.estimated_cost if result.routing else 0.0,
            citations=extracted["citations"],
            actionable_items=extracted["actionable_items"],
            followup_recommendations=extracted["followup_recommendations"],
            safety_warnings=self._safety_warnings(result, packet),
        )
        return GatewayResponse(
            success=True,
            response=result.text,
            confidence=heuristic_confidence(result.fallback_triggered, len(result.violations)),
            model_used=result.model_used,
            processing_time_ms=elapsed_ms,
            metadata=metadata,
            audit=audit,
            session_id=session_id,
        )

    @staticmethod
    def _safety_warnings(result: MediationResult, packet: ContextPacket) -> List[str]:
        warnings = []
        if result.phi_detected:
            if packet.constraints.redact_phi:
                warnings.append("Protected health information detected and redacted")
            else:
                warnings.append("Protected health information detected; redaction was disabled")
        if result.routing and result.routing.downgraded:
            warnings.append(result.routing.reasoning)
        if result.routing and result.routing.forced_restricted:
            warnings.append("Maximum safety with PHI redaction: processed on the restricted local model")
        if result.fallback_triggered:
            warnings.append(f"Primary model unavailable; answered by fallback model {result.model_used}")
        if not result.audit_persisted:
            warnings.append("Audit record pending persistence")
        return warnings

    def _update_session(self, packet: ContextPacket, response: GatewayResponse) -> None:
        redactor = self._screener.redactor
        last_request = packet.inputs.prompt
        if packet.constraints.redact_phi:
            last_request = redactor.redact(last_request)

        def mutate(ctx: SessionContext) -> None:
            ctx.last_request = last_request
            if response.success:
                ctx.last_response = response.response
            ctx.request_count += 1
            ctx.total_processing_ms += response.processing_time_ms

        try:
            self._session_store.update(packet.user.session_id, mutate)
        except Exception as e:
            logger.error(f"Session update failed | Session: {packet.user.session_id} | {e}")

    # =========================================================================
    # STAGE 4: WORKFLOWS
    # =========================================================================

    def execute_workflow(self, name: str, request: RequestLike) -> WorkflowResult:
        """
        Run a named workflow step by step in one shared session.

        Unknown workflows and callers without a required role get
        success=False with no results. Otherwise steps run in order and stop
        at the first failure; completed results are always returned.
        """
        start = time.perf_counter()

        with self._workflows_lock:
            workflow = self._workflows.get(name)
        try:
            if workflow is None:
                raise WorkflowNotFoundError(name)
            base = GatewayRequest.coerce(request)
            if not workflow.permits(base.role):
                raise WorkflowPermissionError(name, base.role, workflow.required_roles)
        except GatewayError as e:
            logger.warning(f"Workflow rejected | Workflow: {name} | {e.message}")
            return WorkflowResult(
                success=False,
                workflow_id="",
                workflow_name=name,
                total_time_ms=_elapsed_ms(start),
                error=error_detail(e.error_code, e.message),
            )

        workflow_id = str(uuid.uuid4())
        session_id = base.session_id or str(uuid.uuid4())
        results: List[GatewayResponse] = []

        logger.info(f"Workflow started | Workflow: {name} | Id: {workflow_id} | Steps: {len(workflow.steps)}")
        for index, step in enumerate(workflow.steps, start=1):
            step_request = base.with_updates(
                task=step.task.value,
                input=step.render_input(base.input or ""),
                session_id=session_id,
            )
            step_response = self.process(step_request)
            results.append(step_response)
            if not step_response.success:
                logger.warning(
                    f"Workflow step failed | Workflow: {name} | Step {index}/{len(workflow.steps)}: {step.id}"
                )
                break

        success = len(results) == len(workflow.steps) and all(r.success for r in results)
        return WorkflowResult(
            success=success,
            workflow_id=workflow_id,
            workflow_name=name,
            results=results,
            total_time_ms=_elapsed_ms(start),
            error=None if success else results[-1].error,
        )

    def register_workflow(self, workflow: ClinicalWorkflow, key: Optional[str] = None) -> str:
        """
        Register (or replace) a workflow.

        Returns:
            Lookup key; defaults to the workflow name in snake_case
        """
        key = key or re.sub(r"\W+", "_", workflow.name.strip().lower()).strip("_")
        with self._workflows_lock:
            self._workflows[key] = workflow
        logger.info(f"Workflow registered | Workflow: {key} | Steps: {len(workflow.steps)}")
        return key

    @property
    def workflows(self) -> List[str]:
        with self._workflows_lock:
            return list(self._workflows)

    # =========================================================================
    # STAGE 5: BATCH
    # =========================================================================

    def process_batch(self, requests: Sequence[RequestLike]) -> List[GatewayResponse]:
        """
        Process independent requests with at most batch_concurrency in flight.

        Excess requests wait for a free worker. Results keep input order.
        """
        if not requests:
            return []
        workers = min(self._settings.batch_concurrency, len(requests))
        logger.info(f"Batch started | Requests: {len(requests)} | Concurrency: {workers}")
        with ThreadPoolExecutor(max_workers=workers, thread_name_prefix="gateway-batch") as pool:
            return list(pool.map(self.process, requests))

    # =========================================================================
    # STAGE 6: TASK CONVENIENCE METHODS
    # =========================================================================

    def summarize_report(self, request: RequestLike) -> GatewayResponse:
        return self._process_task(request, TaskKind.SUMMARIZE_REPORT)

    def recommend_treatment(self, request: RequestLike) -> GatewayResponse:
        return self._process_task(request, TaskKind.RECOMMEND_TREATMENT)

    def assess_drug_interactions(self, request: RequestLike) -> GatewayResponse:
        return self._process_task(request, TaskKind.DRUG_INTERACTION)

    def match_clinical_trials(self, request: RequestLike) -> GatewayResponse:
        return self._process_task(request, TaskKind.MATCH_TRIALS)

    def generate_patient_education(self, request: RequestLike) -> GatewayResponse:
        """Patient education always uses a patient-friendly summary."""

        def patient_friendly(req: GatewayRequest) -> GatewayRequest:
            preferences = req.preferences.model_copy(
                update={"patient_friendly": True, "output_format": OutputFormat.SUMMARY}
            )
            return req.with_updates(preferences=preferences)

        return self._process_task(request, TaskKind.PATIENT_EDUCATION, patient_friendly)

    def _process_task(
        self,
        request: RequestLike,
        task: TaskKind,
        adjust: Optional[Callable[[GatewayRequest], GatewayRequest]] = None,
    ) -> GatewayResponse:
        try:
            req = GatewayRequest.coerce(request).with_updates(task=task.value)
        except ContextPacketValidationError:
            # process() produces the structured validation error
            return self.process(request)
        if adjust is not None:
            req = adjust(req)
        return self.process(req)

    # =========================================================================
    # STAGE 7: QUERIES AND MAINTENANCE
    # =========================================================================

    def get_audit_log(self, filters: Optional[AuditFilters] = None, **criteria: Any) -> List[ModelCallAudit]:
        """
        Audit records matching filters, newest first.

        Example:
            >>> gateway.get_audit_log(user_id="dr-lee")
            >>> gateway.get_audit_log(AuditFilters.from_time_range("24h"))
        """
        return self._recorder.query(filters or AuditFilters(**criteria))

    def get_usage_analytics(
        self,
        filters: Optional[AuditFilters] = None,
        time_range: Optional[str] = None,
        top_n: int = 10,
        **criteria: Any,
    ) -> UsageAnalytics:
        """
        Raises:
            ValueError: If time_range is not one of 1h, 24h, 7d, 30d
        """
        if filters is None:
            filters = (
                AuditFilters.from_time_range(time_range, **criteria)
                if time_range
                else AuditFilters(**criteria)
            )
        return self._analytics.compute(filters, top_n=top_n)

    def get_session_context(self, session_id: str) -> Optional[SessionContext]:
        return self._session_store.get(session_id)

    def flush_pending_audits(self) -> int:
        return self._recorder.flush_pending()

    def purge_expired_audits(self) -> int:
        removed = self._recorder.store.purge_expired()
        logger.info(f"Expired audit records purged | Removed: {removed}")
        return removed

    # =========================================================================
    # STAGE 8: FACTORY METHODS
    # =========================================================================

    @classmethod
    def from_settings(cls, settings: GatewaySettings, **overrides: Any) -> "ClinicalAIGateway":
        return cls(settings=settings, **overrides)

    @classmethod
    def from_environment(cls, env_file: Optional[str] = None, **overrides: Any) -> "ClinicalAIGateway":
        """
        Create a gateway from environment configuration.

        This is the recommended way to create a gateway. It:
            1. Loads settings from the environment / .env file
            2. Configures logging sinks
            3. Builds providers for every configured credential

        Raises:
            ConfigurationError: If settings or the routing policy are invalid
        """
        settings = GatewaySettings.from_environment(env_file=env_file)
        configure_logging(settings)
        return cls(settings=settings, **overrides)

    @staticmethod
    def _create_audit_store(settings: GatewaySettings) -> AuditStore:
        if settings.audit_store_dir:
            return JsonlAuditStore(settings.audit_store_dir, retention_days=settings.audit_retention_days)
        logger.warning("No audit_store_dir configured; audit records are kept in memory only")
        return InMemoryAuditStore(retention_days=settings.audit_retention_days)

    # =========================================================================
    # STAGE 9: PROPERTIES
    # =========================================================================

    @property
    def settings(self) -> GatewaySettings:
        return self._settings

    @property
    def router(self) -> ModelRouter:
        return self._router

    @property
    def registry(self) -> ProviderRegistry:
        return self._registry

    @property
    def recorder(self) -> AuditRecorder:
        return self._recorder


def _elapsed_ms(start: float) -> float:
    return (time.perf_counter() - start) * 1000

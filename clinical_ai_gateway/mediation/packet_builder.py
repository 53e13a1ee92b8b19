"""
Packet Builder - Task-Oriented Request to Context Packet

This module translates a GatewayRequest into the canonical Context Packet.
The translation is:
    1. Task kind            → natural-language intent
    2. Model preference     → concrete model family
    3. Attachments + prefs  → appended prompt sections
    4. Request fields       → deterministic SHA-256 correlation hash
    5. Missing overrides    → strict defaults (redact PHI, high safety,
                              maximum for lower-trust roles/departments)
    6. Session context      → short prior-turn excerpt in the context window

Why Separate Builder:
    1. Single Responsibility: packet construction separate from mediation
    2. Testability: packets can be inspected without any model call
    3. Pure, except for reading the session store

Pipeline Position:
    Facade → [PacketBuilder] → Screening → Router → Executor → Audit
              ^^^^^^^^^^^^^^^
              You are here
"""

import hashlib
import json
import uuid
from typing import Iterable, List, Optional

from loguru import logger

from clinical_ai_gateway.core.constants import (
    CONTEXT_EXCERPT_CHARS,
    DEFAULT_MAX_TOKENS,
    DEFAULT_MODEL_PREFERENCE,
    DEFAULT_SAFETY_MODE,
    MAX_TOKENS_BY_LENGTH,
    MODEL_PREFERENCE_MAP,
    OUTPUT_FORMAT_TO_EXPECTED,
    PROTOCOL_VERSION,
    SAFETY_LEVEL_TO_MODE,
    TASK_INTENTS,
)
from clinical_ai_gateway.core.context_packet import ContextPacket
from clinical_ai_gateway.core.enums import (
    AuditLevel,
    ExpectedOutput,
    Priority,
    SafetyMode,
    TaskKind,
    UserRole,
)
from clinical_ai_gateway.core.exceptions import ContextPacketValidationError
from clinical_ai_gateway.core.requests import Attachments, GatewayRequest, Preferences
from clinical_ai_gateway.repository.session_store import SessionStore


# =============================================================================
# STAGE 1: PROMPT SECTIONS
# =============================================================================

ADDITIONAL_CONTEXT_HEADER = "Additional Context:"
OUTPUT_PREFERENCES_HEADER = "Output Preferences:"
CITATIONS_INSTRUCTION = "Include citations and evidence levels"
PATIENT_FRIENDLY_INSTRUCTION = "Use patient-friendly language (9th grade reading level)"


def _to_json(value) -> str:
    return json.dumps(value, sort_keys=True, default=str)


def build_attachment_section(attachments: Attachments) -> str:
    """Serialized summary of attachments, or '' when there are none."""
    if attachments.is_empty:
        return ""
    lines = [ADDITIONAL_CONTEXT_HEADER]
    if attachments.structured_records:
        lines.append(f"Structured Records: {_to_json(attachments.structured_records)}")
    if attachments.genomic_data:
        lines.append(f"Genomic Data: {_to_json(attachments.genomic_data)}")
    if attachments.lab_results:
        lines.append(f"Lab Results: {_to_json(attachments.lab_results)}")
    if attachments.clinical_notes:
        lines.append(f"Clinical Notes: {attachments.clinical_notes}")
    return "\n".join(lines)


def build_preferences_section(preferences: Preferences) -> str:
    lines = []
    if preferences.output_format:
        lines.append(f"Format: {preferences.output_format.value}")
    if preferences.max_length:
        lines.append(f"Length: {preferences.max_length.value}")
    if preferences.include_citations:
        lines.append(CITATIONS_INSTRUCTION)
    if preferences.patient_friendly:
        lines.append(PATIENT_FRIENDLY_INSTRUCTION)
    if not lines:
        return ""
    return "\n".join([OUTPUT_PREFERENCES_HEADER] + lines)


def compute_request_hash(request: GatewayRequest) -> str:
    """
    Deterministic SHA-256 over the request content.

    Identical task, input, user, session and attachments always hash the
    same, so repeated submissions can be correlated in the audit trail.
    """
    payload = {
        "task": request.task,
        "input": request.input,
        "user_id": request.user_id,
        "session_id": request.session_id,
        "attachments": request.attachments.model_dump(mode="json"),
    }
    return hashlib.sha256(_to_json(payload).encode("utf-8")).hexdigest()


# =============================================================================
# STAGE 2: CONTEXT PACKET BUILDER
# =============================================================================


class ContextPacketBuilder:
    """
    Builds Context Packets from task-oriented requests.

    What it does:
        Applies the request → packet mappings and the strict defaults, and
        injects a short excerpt of the session's previous response.

    Why it exists:
        1. Every entry point produces the same validated packet shape
        2. Defaults bias toward stricter protection when callers are silent
        3. Keeps packet rules out of the facade

    Example:
        >>> builder = ContextPacketBuilder(session_store)
        >>> packet = builder.build(request)
        >>> packet.task.intent
        'Generate comprehensive summary of genomic/clinical report'
    """

    def __init__(
        self,
        session_store: Optional[SessionStore] = None,
        lower_trust_roles: Iterable[str] = (),
        lower_trust_departments: Iterable[str] = (),
    ):
        self._session_store = session_store
        self._lower_trust_roles = {r.lower() for r in lower_trust_roles}
        self._lower_trust_departments = {d.lower() for d in lower_trust_departments}

    def build(self, request: GatewayRequest) -> ContextPacket:
        """
        Raises:
            ContextPacketValidationError: Missing task/input, unknown role, or
                any packet invariant violated
        """
        # Step 1: Required fields
        missing = []
        if not request.task or not request.task.strip():
            missing.append("task: task kind is required")
        if not request.input or not request.input.strip():
            missing.append("input: input text is required")
        if missing:
            raise ContextPacketValidationError("Task and input are required", errors=missing)

        try:
            role = UserRole.from_string(request.role)
        except ValueError as e:
            raise ContextPacketValidationError("Unknown user role", errors=[f"role: {e}"]) from e

        session_id = request.session_id or str(uuid.uuid4())
        if request.session_id is None:
            request = request.with_updates(session_id=session_id)
        preferences = request.preferences
        overrides = request.security_overrides
        task_name = request.task.strip()

        # Step 2: Prompt
        sections = [request.input]
        for section in (
            build_attachment_section(request.attachments),
            build_preferences_section(preferences),
        ):
            if section:
                sections.append(section)
        prompt = "\n\n".join(sections)

        # Step 3: Constraints with strict defaults
        redact_phi = True if overrides.redact_phi is None else overrides.redact_phi
        safety_mode = self._resolve_safety_mode(request, role)

        payload = {
            "version": PROTOCOL_VERSION,
            "user": {
                "id": request.user_id,
                "role": role,
                "department": request.department,
                "session_id": session_id,
            },
            "task": {
                "intent": self._resolve_intent(task_name),
                "model_family": MODEL_PREFERENCE_MAP[preferences.model or DEFAULT_MODEL_PREFERENCE],
                "expected_output": (
                    OUTPUT_FORMAT_TO_EXPECTED[preferences.output_format]
                    if preferences.output_format
                    else ExpectedOutput.CLINICAL_SUMMARY
                ),
            },
            "inputs": {
                "prompt": prompt,
                "data_refs": self._data_refs(request.attachments),
                "context_window": self._context_window(session_id, request.department, role),
            },
            "constraints": {
                "max_tokens": (
                    MAX_TOKENS_BY_LENGTH[preferences.max_length]
                    if preferences.max_length
                    else DEFAULT_MAX_TOKENS
                ),
                "redact_phi": redact_phi,
                "safety_mode": safety_mode,
                "timeout_ms": request.context.timeout_ms,
            },
            "routing": {
                "agent": f"GATEWAY_{task_name.upper()}",
                "use_fallback": True,
                "priority": Priority.NORMAL,
            },
            "audit": {
                "ip": request.context.ip or "unknown",
                "user_agent": request.context.user_agent or "unknown",
                "hash": compute_request_hash(request),
                "compliance_flags": (
                    ["detailed_audit"] if overrides.audit_level == AuditLevel.FORENSIC else []
                ),
            },
        }

        packet = ContextPacket.from_dict(payload)
        logger.debug(
            f"Packet built | User: {packet.user.id} | Task: {task_name} | "
            f"Model: {packet.task.model_family.value} | Safety: {packet.constraints.safety_mode.value}"
        )
        return packet

    # =========================================================================
    # STAGE 3: HELPERS
    # =========================================================================

    @staticmethod
    def _resolve_intent(task_name: str) -> str:
        try:
            return TASK_INTENTS[TaskKind.from_string(task_name)]
        except ValueError:
            # Unlisted task kinds pass through as their own intent
            return task_name

    def _resolve_safety_mode(self, request: GatewayRequest, role: UserRole) -> SafetyMode:
        level = request.security_overrides.safety_level
        if level is not None:
            return SAFETY_LEVEL_TO_MODE[level]
        if self.is_lower_trust(role.value, request.department):
            return SafetyMode.MAXIMUM
        return DEFAULT_SAFETY_MODE

    def is_lower_trust(self, role: str, department: str) -> bool:
        return (
            role.lower() in self._lower_trust_roles
            or (department or "").lower() in self._lower_trust_departments
        )

    @staticmethod
    def _data_refs(attachments: Attachments) -> List[str]:
        return [
            str(record["id"])
            for record in attachments.structured_records
            if isinstance(record, dict) and record.get("id") is not None
        ]

    def _context_window(self, session_id: str, department: str, role: UserRole) -> List[str]:
        context = []
        if self._session_store is not None:
            session = self._session_store.get(session_id)
            if session is not None and session.last_response:
                excerpt = session.last_response[:CONTEXT_EXCERPT_CHARS]
                context.append(f"Previous interaction: {excerpt}...")
        context.append(f"Department: {department}")
        context.append(f"User role: {role.value}")
        return context

"""
Context Packet - Canonical Envelope for One AI Invocation

Every model call made by the gateway is described by exactly one Context
Packet. The packet is validated on construction, frozen afterwards, and
doubles as the audit snapshot.

Packet Structure:
    ContextPacket
    ├── user         → id, role, department, session id, clearance
    ├── task         → intent, requested model family, expected output
    ├── inputs       → prompt, data references, prior-turn context window
    ├── constraints  → max tokens, PHI redaction, safety mode, timeout
    ├── routing      → agent name, fallback flag, priority
    └── audit        → request time, source IP, user agent, hash, flags

Invariants:
    - version equals PROTOCOL_VERSION
    - user.role is one of the UserRole values
    - task.intent is non-empty

Usage:
    from clinical_ai_gateway.core.context_packet import ContextPacket

    packet = ContextPacket.from_dict(payload)
    snapshot = packet.redacted(redactor)   # new packet, original untouched
"""

from datetime import datetime, timezone
from typing import Any, Callable, Dict, Optional, Tuple

from pydantic import BaseModel, ConfigDict, Field, ValidationError, field_validator

from clinical_ai_gateway.core.constants import PROTOCOL_VERSION
from clinical_ai_gateway.core.enums import (
    ClearanceLevel,
    ExpectedOutput,
    ModelFamily,
    Priority,
    SafetyMode,
    UserRole,
)
from clinical_ai_gateway.core.exceptions import ContextPacketValidationError


# =============================================================================
# STAGE 1: PACKET SECTIONS
# =============================================================================
# Each section is a frozen pydantic model; tuples keep sequences immutable.


class _FrozenModel(BaseModel):
    model_config = ConfigDict(frozen=True, extra="forbid", use_enum_values=False)


class UserContext(_FrozenModel):
    """Authenticated caller identity supplied by the identity collaborator."""

    id: str = Field(..., min_length=1)
    role: UserRole
    department: str = ""
    session_id: str = Field(..., min_length=1)
    clearance_level: Optional[ClearanceLevel] = None


class TaskSpec(_FrozenModel):
    intent: str
    model_family: ModelFamily
    expected_output: ExpectedOutput = ExpectedOutput.CLINICAL_SUMMARY

    @field_validator("intent")
    @classmethod
    def validate_intent_not_empty(cls, v: str) -> str:
        if not v or not v.strip():
            raise ValueError("task intent cannot be empty")
        return v


class PacketInputs(_FrozenModel):
    prompt: str
    data_refs: Tuple[str, ...] = ()
    context_window: Tuple[str, ...] = ()


class PacketConstraints(_FrozenModel):
    max_tokens: int = Field(..., ge=1)
    redact_phi: bool = True
    safety_mode: SafetyMode = SafetyMode.HIGH
    timeout_ms: Optional[int] = Field(default=None, ge=1)

    @property
    def timeout_seconds(self) -> Optional[float]:
        """Per-attempt timeout in seconds, if the packet sets one."""
        if self.timeout_ms is None:
            return None
        return self.timeout_ms / 1000.0


class RoutingHints(_FrozenModel):
    agent: str
    use_fallback: bool = True
    priority: Optional[Priority] = None


class AuditMetadata(_FrozenModel):
    request_time: datetime = Field(default_factory=lambda: datetime.now(timezone.utc))
    ip: str = "unknown"
    user_agent: Optional[str] = None
    hash: str
    compliance_flags: Tuple[str, ...] = ()


# =============================================================================
# STAGE 2: CONTEXT PACKET
# =============================================================================


class ContextPacket(_FrozenModel):
    """
    Canonical, versioned envelope for one AI invocation.

    What it does:
        Carries everything the gateway needs to screen, route, execute and
        audit one model call. Built once per call by the packet builder and
        never mutated afterwards.

    Why it exists:
        1. One validated shape for every call, whatever the entry point
        2. The same object is persisted as the audit snapshot
        3. Version field lets the protocol evolve without silent breakage
    """

    version: str = PROTOCOL_VERSION
    user: UserContext
    task: TaskSpec
    inputs: PacketInputs
    constraints: PacketConstraints
    routing: RoutingHints
    audit: AuditMetadata

    @field_validator("version")
    @classmethod
    def validate_version(cls, v: str) -> str:
        if v != PROTOCOL_VERSION:
            raise ValueError(f"unsupported protocol version '{v}', expected '{PROTOCOL_VERSION}'")
        return v

    # -------------------------------------------------------------------------
    # 2.1 Construction
    # -------------------------------------------------------------------------

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "ContextPacket":
        """
        Validate a raw payload into a packet.

        Raises:
            ContextPacketValidationError: If any invariant is violated
        """
        try:
            return cls.model_validate(data)
        except ValidationError as e:
            raise ContextPacketValidationError(
                "Context packet validation failed", errors=format_validation_errors(e)
            ) from e

    # -------------------------------------------------------------------------
    # 2.2 Derived Packets
    # -------------------------------------------------------------------------

    def redacted(self, redact: Callable[[str], str]) -> "ContextPacket":
        """
        Return a new packet whose prompt and context window are redacted.

        Args:
            redact: Text redaction function (e.g. PHIRedactor.redact)
        """
        inputs = self.inputs.model_copy(
            update={
                "prompt": redact(self.inputs.prompt),
                "context_window": tuple(redact(line) for line in self.inputs.context_window),
            }
        )
        return self.model_copy(update={"inputs": inputs})

    # -------------------------------------------------------------------------
    # 2.3 Serialization
    # -------------------------------------------------------------------------

    def to_dict(self) -> Dict[str, Any]:
        """JSON-safe dictionary (enums as values, datetimes as ISO strings)."""
        return self.model_dump(mode="json")


def format_validation_errors(error: ValidationError) -> list:
    """Flatten a pydantic ValidationError into 'field.path: message' strings."""
    return [
        f"{'.'.join(str(part) for part in item['loc']) or 'packet'}: {item['msg']}"
        for item in error.errors()
    ]

"""
Core Layer - Domain Models, Enums, Policy Tables and Configuration

This layer contains the side-effect-free foundation of the gateway. It holds
no I/O beyond reading settings from the environment.

Submodules:
    enums.py          → Enumerations (UserRole, ModelFamily, ErrorCode, ...)
    constants.py      → Declarative policy tables and fixed values
    exceptions.py     → Domain-specific exceptions
    config.py         → GatewaySettings (pydantic-settings)
    log_config.py     → loguru sink setup
    context_packet.py → Context Packet (pydantic, frozen)
    requests.py       → Task-oriented inbound request
    models.py         → Dataclasses passed between layers

Dependency Rule:
    This layer depends on NOTHING else in the package.
    All other layers may depend on this layer.
"""

from clinical_ai_gateway.core.config import GatewaySettings
from clinical_ai_gateway.core.context_packet import (
    AuditMetadata,
    ContextPacket,
    PacketConstraints,
    PacketInputs,
    RoutingHints,
    TaskSpec,
    UserContext,
)
from clinical_ai_gateway.core.enums import (
    AuditOutcome,
    ComplianceStatus,
    ErrorCode,
    ModelFamily,
    SafetyMode,
    TaskKind,
    UserRole,
)
from clinical_ai_gateway.core.exceptions import (
    CascadeExhaustedError,
    ConfigurationError,
    ContextPacketValidationError,
    GatewayError,
    ProviderError,
    SecurityViolationError,
    WorkflowError,
)
from clinical_ai_gateway.core.log_config import configure_logging
from clinical_ai_gateway.core.models import (
    AuditFilters,
    GatewayResponse,
    ModelCallAudit,
    RoutingDecision,
    SessionContext,
    TokenUsage,
    UsageAnalytics,
    WorkflowResult,
)
from clinical_ai_gateway.core.requests import GatewayRequest

__all__ = [
    # Context Packet
    "ContextPacket",
    "UserContext",
    "TaskSpec",
    "PacketInputs",
    "PacketConstraints",
    "RoutingHints",
    "AuditMetadata",
    # Requests and responses
    "GatewayRequest",
    "GatewayResponse",
    "WorkflowResult",
    # Models
    "AuditFilters",
    "ModelCallAudit",
    "RoutingDecision",
    "SessionContext",
    "TokenUsage",
    "UsageAnalytics",
    # Enums
    "AuditOutcome",
    "ComplianceStatus",
    "ErrorCode",
    "ModelFamily",
    "SafetyMode",
    "TaskKind",
    "UserRole",
    # Configuration
    "GatewaySettings",
    "configure_logging",
    # Exceptions
    "GatewayError",
    "ConfigurationError",
    "ContextPacketValidationError",
    "SecurityViolationError",
    "ProviderError",
    "CascadeExhaustedError",
    "WorkflowError",
]

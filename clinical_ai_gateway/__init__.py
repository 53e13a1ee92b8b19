"""
Clinical AI Gateway

A governed AI-request mediator for clinical applications. Every model call
is wrapped in a Context Packet, screened, routed by role and safety policy,
executed with an ordered fallback cascade, redacted and audited.

Architecture Overview:
    clinical_ai_gateway/
    ├── core/           → Packet, models, enums, policy tables, settings (Layer 0 - Pure)
    ├── repository/     → Audit and session stores (Layer 1 - Infrastructure)
    ├── clients/        → Provider clients and registry (Layer 1 - Infrastructure)
    ├── security/       → Injection, content policy, PHI (Layer 2 - Business Logic)
    ├── routing/        → Router and fallback executor (Layer 2 - Business Logic)
    ├── audit/          → Recorder and usage analytics (Layer 3 - Business Logic)
    ├── mediation/      → Packet builder, engine, workflows (Layer 4 - Business Logic)
    └── pipeline.py     → ClinicalAIGateway facade (Layer 5 - Public API)

Quick Start:
    from clinical_ai_gateway import ClinicalAIGateway

    gateway = ClinicalAIGateway.from_environment()
    response = gateway.summarize_report({
        "user_id": "dr-lee",
        "role": "oncologist",
        "input": "Summarize the attached pathology report",
    })
"""

__version__ = "1.0.0"

# =============================================================================
# PUBLIC API EXPORTS
# =============================================================================

# Main Entry Point
from clinical_ai_gateway.pipeline import ClinicalAIGateway

# Packet and requests
from clinical_ai_gateway.core.context_packet import ContextPacket
from clinical_ai_gateway.core.requests import GatewayRequest

# Core Models
from clinical_ai_gateway.core.models import (
    AuditFilters,
    GatewayResponse,
    ModelCallAudit,
    SessionContext,
    UsageAnalytics,
    WorkflowResult,
)

# Enums
from clinical_ai_gateway.core.enums import (
    AuditOutcome,
    ErrorCode,
    ModelFamily,
    SafetyMode,
    TaskKind,
    UserRole,
)

# Configuration
from clinical_ai_gateway.core.config import GatewaySettings

# Extension points
from clinical_ai_gateway.clients.llm_client import ModelProvider, ProviderResponse
from clinical_ai_gateway.clients.registry import ProviderRegistry
from clinical_ai_gateway.mediation.workflows import ClinicalWorkflow, WorkflowStep
from clinical_ai_gateway.routing.policy import RoutingPolicy

__all__ = [
    # Main Entry Point (use this!)
    "ClinicalAIGateway",
    # Packet and requests
    "ContextPacket",
    "GatewayRequest",
    # Core Models
    "GatewayResponse",
    "WorkflowResult",
    "ModelCallAudit",
    "AuditFilters",
    "SessionContext",
    "UsageAnalytics",
    # Enums
    "AuditOutcome",
    "ErrorCode",
    "ModelFamily",
    "SafetyMode",
    "TaskKind",
    "UserRole",
    # Configuration
    "GatewaySettings",
    # Extension points
    "ModelProvider",
    "ProviderResponse",
    "ProviderRegistry",
    "RoutingPolicy",
    "ClinicalWorkflow",
    "WorkflowStep",
]

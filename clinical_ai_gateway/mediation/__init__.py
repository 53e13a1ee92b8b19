"""
Mediation Layer - Packet Construction and Governed Execution

Submodules:
    packet_builder.py → GatewayRequest → ContextPacket
    engine.py         → Screen, route, execute, redact, audit one packet
    workflows.py      → Named multi-step protocols

Dependency Rule:
    This layer depends on: core, security, routing, repository, audit
    This layer is used by: pipeline (facade)
"""

from clinical_ai_gateway.mediation.engine import MediationEngine
from clinical_ai_gateway.mediation.packet_builder import ContextPacketBuilder
from clinical_ai_gateway.mediation.workflows import (
    BUILTIN_WORKFLOWS,
    ClinicalWorkflow,
    WorkflowStep,
)

__all__ = [
    "ContextPacketBuilder",
    "MediationEngine",
    "ClinicalWorkflow",
    "WorkflowStep",
    "BUILTIN_WORKFLOWS",
]

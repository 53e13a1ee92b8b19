"""
Routing Layer - Model Selection and Cascade Execution

This layer decides which model answers a packet and drives the fallback
cascade when the chosen model fails.

Submodules:
    policy.py   → Declarative role matrix, cascade, provider and cost tables
    router.py   → ModelRouter (packet → RoutingDecision)
    executor.py → FallbackExecutor (cascade traversal with timeouts)

Dependency Rule:
    This layer depends on: core, clients
    This layer is used by: mediation
"""

from clinical_ai_gateway.routing.executor import FallbackExecutor
from clinical_ai_gateway.routing.policy import RoutingPolicy
from clinical_ai_gateway.routing.router import ModelRouter

__all__ = [
    "RoutingPolicy",
    "ModelRouter",
    "FallbackExecutor",
]

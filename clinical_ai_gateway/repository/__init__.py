"""
Repository Layer - Durable State Behind Narrow Interfaces

All mutable state the gateway keeps lives here, so routing and execution
remain pure and testable without a live store.

Submodules:
    audit_store.py   → Append-only, day-indexed audit records
    session_store.py → Keyed session context with TTL and size cap

Dependency Rule:
    This layer depends on: core (models, exceptions)
    This layer is used by: audit, mediation, pipeline
"""

from clinical_ai_gateway.repository.audit_store import (
    AuditStore,
    InMemoryAuditStore,
    JsonlAuditStore,
)
from clinical_ai_gateway.repository.session_store import (
    InMemorySessionStore,
    SessionStore,
)

__all__ = [
    "AuditStore",
    "InMemoryAuditStore",
    "JsonlAuditStore",
    "SessionStore",
    "InMemorySessionStore",
]

"""
Audit Layer - Compliance Records and Usage Metrics

Submodules:
    recorder.py  → AuditRecorder (idempotent writes, near-miss channel, queries)
    analytics.py → UsageAnalyticsService (streaming aggregation)

Dependency Rule:
    This layer depends on: core, repository
    This layer is used by: mediation, pipeline
"""

from clinical_ai_gateway.audit.analytics import UsageAnalyticsService
from clinical_ai_gateway.audit.recorder import AuditRecorder

__all__ = [
    "AuditRecorder",
    "UsageAnalyticsService",
]

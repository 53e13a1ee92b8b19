"""
Usage Analytics - Aggregates Over the Audit Store

Read-only. Computed on demand in a single streaming pass over matching
records; memory grows with the number of distinct tasks, models and error
codes, never with the number of records.
"""

from collections import Counter
from typing import Optional

from loguru import logger

from clinical_ai_gateway.audit.recorder import AuditRecorder
from clinical_ai_gateway.core.enums import AuditOutcome
from clinical_ai_gateway.core.models import AuditFilters, UsageAnalytics


class UsageAnalyticsService:
    """
    Derives usage metrics from audit records.

    Metrics:
        total_calls, successful_calls, success_rate
        average_response_time_ms
        top_tasks (top-N by frequency), model_distribution
        error_summary (error code → count)
        fallback_rate (over successful calls), security_rejections,
        phi_detected_count, total_tokens
    """

    def __init__(self, recorder: AuditRecorder):
        self._recorder = recorder

    def compute(self, filters: Optional[AuditFilters] = None, top_n: int = 10) -> UsageAnalytics:
        total = 0
        successful = 0
        fallbacks = 0
        rejections = 0
        phi_count = 0
        tokens = 0
        response_time_sum = 0.0
        tasks: Counter = Counter()
        models: Counter = Counter()
        errors: Counter = Counter()

        for record in self._recorder.iter_matching(filters):
            total += 1
            response_time_sum += record.response_time_ms
            tasks[record.task] += 1
            models[record.model_used] += 1
            tokens += record.token_usage.total_tokens
            if record.phi_detected:
                phi_count += 1

            if record.outcome == AuditOutcome.SUCCESS:
                successful += 1
                if record.fallback_triggered:
                    fallbacks += 1
            else:
                errors[record.error_code or record.outcome.value] += 1
                if record.outcome == AuditOutcome.SECURITY_REJECTION:
                    rejections += 1

        analytics = UsageAnalytics(
            total_calls=total,
            successful_calls=successful,
            success_rate=round(successful / total, 4) if total else 0.0,
            average_response_time_ms=round(response_time_sum / total, 2) if total else 0.0,
            top_tasks=tasks.most_common(top_n),
            model_distribution=dict(models),
            error_summary=dict(errors),
            fallback_rate=round(fallbacks / successful, 4) if successful else 0.0,
            security_rejections=rejections,
            phi_detected_count=phi_count,
            total_tokens=tokens,
        )
        logger.debug(f"Usage analytics computed | Calls: {total} | Success rate: {analytics.success_rate}")
        return analytics

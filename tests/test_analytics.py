"""
Tests for usage analytics over audit records.
"""

from datetime import timedelta

import pytest

from clinical_ai_gateway.audit.analytics import UsageAnalyticsService
from clinical_ai_gateway.audit.recorder import AuditRecorder
from clinical_ai_gateway.core.enums import AuditOutcome
from clinical_ai_gateway.core.models import AuditFilters, TokenUsage
from clinical_ai_gateway.repository.audit_store import InMemoryAuditStore
from tests.test_audit_store import NOW, make_audit


@pytest.fixture
def recorder():
    recorder = AuditRecorder(InMemoryAuditStore())
    records = [
        make_audit(task="Summarize report", response_time_ms=100.0),
        make_audit(task="Summarize report", response_time_ms=200.0, fallback_triggered=True, model="Claude-Opus"),
        make_audit(task="Match trials", response_time_ms=300.0, phi_detected=True, user_id="u-2"),
        make_audit(
            task="Summarize report",
            model="none",
            outcome=AuditOutcome.SECURITY_REJECTION,
            error_code="SECURITY_VIOLATION",
            output_hash=None,
            token_usage=TokenUsage(),
            response_time_ms=0.0,
        ),
        make_audit(
            task="Match trials",
            model="error",
            outcome=AuditOutcome.INTERNAL_ERROR,
            error_code="INTERNAL_ERROR",
            token_usage=TokenUsage(),
            response_time_ms=0.0,
            timestamp=NOW - timedelta(days=3),
        ),
    ]
    for record in records:
        recorder.record(record)
    return recorder


class TestUsageAnalytics:
    def test_aggregates(self, recorder):
        analytics = UsageAnalyticsService(recorder).compute()

        assert analytics.total_calls == 5
        assert analytics.successful_calls == 3
        assert analytics.success_rate == 0.6
        assert analytics.average_response_time_ms == 120.0
        assert analytics.top_tasks[0] == ("Summarize report", 3)
        assert analytics.model_distribution == {"OpenAI-GPT-4o": 2, "Claude-Opus": 1, "none": 1, "error": 1}
        assert analytics.error_summary == {"SECURITY_VIOLATION": 1, "INTERNAL_ERROR": 1}
        assert analytics.fallback_rate == pytest.approx(1 / 3, abs=1e-4)
        assert analytics.security_rejections == 1
        assert analytics.phi_detected_count == 1
        assert analytics.total_tokens == 90

    def test_filters_apply(self, recorder):
        analytics = UsageAnalyticsService(recorder).compute(AuditFilters(user_id="u-2"))
        assert analytics.total_calls == 1
        assert analytics.top_tasks == [("Match trials", 1)]

    def test_time_range(self, recorder):
        filters = AuditFilters.from_time_range("24h", now=NOW + timedelta(minutes=1))
        assert UsageAnalyticsService(recorder).compute(filters).total_calls == 4

    def test_top_n(self, recorder):
        assert len(UsageAnalyticsService(recorder).compute(top_n=1).top_tasks) == 1

    def test_empty_store(self):
        analytics = UsageAnalyticsService(AuditRecorder(InMemoryAuditStore())).compute()
        assert analytics.total_calls == 0
        assert analytics.success_rate == 0.0
        assert analytics.to_dict()["top_tasks"] == []

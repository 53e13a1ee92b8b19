"""
Tests for the in-memory and day-partitioned JSONL audit stores.
"""

import uuid
from datetime import datetime, timedelta, timezone

import pytest

from clinical_ai_gateway.core.enums import AuditOutcome
from clinical_ai_gateway.core.models import ModelCallAudit, TokenUsage
from clinical_ai_gateway.repository.audit_store import InMemoryAuditStore, JsonlAuditStore

NOW = datetime(2026, 3, 10, 12, 0, tzinfo=timezone.utc)


def make_audit(timestamp=NOW, user_id="u-1", model="OpenAI-GPT-4o", **overrides) -> ModelCallAudit:
    fields = dict(
        id=str(uuid.uuid4()),
        user_id=user_id,
        model_used=model,
        task="Summarize report",
        input_hash="a" * 64,
        output_hash="b" * 64,
        timestamp=timestamp,
        packet={"version": "1.0"},
        outcome=AuditOutcome.SUCCESS,
        token_usage=TokenUsage(prompt_tokens=10, completion_tokens=20),
    )
    fields.update(overrides)
    return ModelCallAudit(**fields)


@pytest.fixture(params=["memory", "jsonl"])
def store(request, tmp_path):
    if request.param == "memory":
        return InMemoryAuditStore(retention_days=30)
    return JsonlAuditStore(tmp_path / "audit", retention_days=30)


class TestAuditStoreContract:
    def test_append_and_get(self, store):
        record = make_audit()
        assert store.append(record) is True
        assert store.get(record.id) == record
        assert store.count() == 1

    def test_append_is_idempotent_on_id(self, store):
        record = make_audit()
        store.append(record)
        assert store.append(record) is False
        assert store.count() == 1

    def test_get_unknown(self, store):
        assert store.get("missing") is None

    def test_range_query_spans_days(self, store):
        records = [make_audit(timestamp=NOW - timedelta(days=d)) for d in range(5)]
        for record in records:
            store.append(record)

        found = list(store.iter_records(NOW - timedelta(days=2, hours=1), NOW))

        assert {r.id for r in found} == {r.id for r in records[:3]}

    def test_unbounded_query_returns_everything(self, store):
        for d in range(3):
            store.append(make_audit(timestamp=NOW - timedelta(days=d)))
        assert len(list(store.iter_records())) == 3

    def test_purge_expired(self, store):
        old = make_audit(timestamp=NOW - timedelta(days=45))
        recent = make_audit(timestamp=NOW - timedelta(days=5))
        store.append(old)
        store.append(recent)

        assert store.purge_expired(now=NOW) == 1
        assert store.get(old.id) is None
        assert store.get(recent.id) == recent


class TestJsonlAuditStore:
    def test_one_file_per_day(self, tmp_path):
        store = JsonlAuditStore(tmp_path)
        store.append(make_audit(timestamp=NOW))
        store.append(make_audit(timestamp=NOW - timedelta(days=1)))

        names = sorted(p.name for p in tmp_path.glob("*.jsonl"))
        assert names == ["audit-2026-03-09.jsonl", "audit-2026-03-10.jsonl"]

    def test_reopen_keeps_ids(self, tmp_path):
        record = make_audit()
        JsonlAuditStore(tmp_path).append(record)

        reopened = JsonlAuditStore(tmp_path)

        assert reopened.count() == 1
        assert reopened.append(record) is False
        assert reopened.get(record.id).token_usage.total_tokens == 30

    def test_torn_line_is_skipped(self, tmp_path):
        store = JsonlAuditStore(tmp_path)
        record = make_audit()
        store.append(record)
        with open(tmp_path / "audit-2026-03-10.jsonl", "a", encoding="utf-8") as f:
            f.write('{"id": "partial", "user_')

        assert [r.id for r in JsonlAuditStore(tmp_path).iter_records()] == [record.id]

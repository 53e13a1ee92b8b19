"""
Audit Recorder - One Record Per Terminal Outcome

Writes Model Call Audit records to the audit store and answers filtered
queries over them.

Write Durability:
    1. Up to max_write_attempts writes, all with the same record id (the
       store is idempotent on id, so a retry never duplicates)
    2. On exhaustion the record is a near miss:
         - logged at CRITICAL on the audit_near_miss channel
         - passed to the optional near_miss_callback
         - kept in a bounded pending queue for flush_pending()
    3. record() never raises: the business outcome is returned regardless

A crash between "model responded" and "audit persisted" can still lose a
record; audit consistency is eventual, not transactional.
"""

import threading
from collections import deque
from typing import Callable, Deque, Iterator, List, Optional

from loguru import logger

from clinical_ai_gateway.core.constants import AUDIT_NEAR_MISS_CHANNEL, PENDING_AUDIT_LIMIT
from clinical_ai_gateway.core.models import AuditFilters, ModelCallAudit
from clinical_ai_gateway.repository.audit_store import AuditStore

NearMissCallback = Callable[[ModelCallAudit, Exception], None]


class AuditRecorder:
    """
    Persists audit records with bounded retry and a near-miss channel.

    Example:
        >>> recorder = AuditRecorder(InMemoryAuditStore())
        >>> recorder.record(audit)
        True
        >>> recorder.query(AuditFilters(user_id="u-1"))
    """

    def __init__(
        self,
        store: AuditStore,
        max_write_attempts: int = 3,
        near_miss_callback: Optional[NearMissCallback] = None,
        pending_limit: int = PENDING_AUDIT_LIMIT,
    ):
        self._store = store
        self._max_attempts = max(1, max_write_attempts)
        self._near_miss_callback = near_miss_callback
        self._pending: Deque[ModelCallAudit] = deque(maxlen=pending_limit)
        self._pending_lock = threading.Lock()
        self._near_miss_log = logger.bind(channel=AUDIT_NEAR_MISS_CHANNEL)

    @property
    def store(self) -> AuditStore:
        return self._store

    # =========================================================================
    # STAGE 1: WRITES
    # =========================================================================

    def record(self, audit: ModelCallAudit) -> bool:
        """
        Persist one record.

        Returns:
            True if the record is stored (or was already stored), False if it
            became a near miss
        """
        last_error: Optional[Exception] = None
        for attempt in range(1, self._max_attempts + 1):
            try:
                created = self._store.append(audit)
                if not created:
                    logger.debug(f"Audit record already stored | Id: {audit.id}")
                return True
            except Exception as e:
                last_error = e
                logger.warning(
                    f"Audit write failed | Id: {audit.id} | "
                    f"Attempt {attempt}/{self._max_attempts} | {e}"
                )

        self._near_miss(audit, last_error)
        return False

    def flush_pending(self) -> int:
        """
        Retry queued near misses once each.

        Returns:
            Number of records persisted by this flush
        """
        with self._pending_lock:
            batch = list(self._pending)
            self._pending.clear()

        flushed = 0
        failed: List[ModelCallAudit] = []
        for audit in batch:
            try:
                self._store.append(audit)
                flushed += 1
            except Exception as e:
                logger.warning(f"Pending audit still failing | Id: {audit.id} | {e}")
                failed.append(audit)

        with self._pending_lock:
            self._pending.extendleft(reversed(failed))

        if batch:
            logger.info(f"Pending audits flushed | Persisted: {flushed} | Remaining: {len(failed)}")
        return flushed

    @property
    def pending_count(self) -> int:
        with self._pending_lock:
            return len(self._pending)

    def _near_miss(self, audit: ModelCallAudit, error: Optional[Exception]) -> None:
        with self._pending_lock:
            if len(self._pending) == self._pending.maxlen:
                self._near_miss_log.critical(
                    f"Pending audit queue full; oldest record dropped | Id: {self._pending[0].id}"
                )
            self._pending.append(audit)

        self._near_miss_log.critical(
            f"AUDIT NEAR MISS | Id: {audit.id} | User: {audit.user_id} | "
            f"Outcome: {audit.outcome.value} | Error: {error}"
        )

        if self._near_miss_callback is not None:
            try:
                self._near_miss_callback(audit, error)
            except Exception as e:
                self._near_miss_log.error(f"Near-miss callback failed | Id: {audit.id} | {e}")

    # =========================================================================
    # STAGE 2: QUERIES
    # =========================================================================

    def iter_matching(self, filters: Optional[AuditFilters] = None) -> Iterator[ModelCallAudit]:
        """Stream records matching filters, oldest first."""
        filters = filters or AuditFilters()
        for record in self._store.iter_records(filters.start_date, filters.end_date):
            if filters.matches(record):
                yield record

    def query(self, filters: Optional[AuditFilters] = None) -> List[ModelCallAudit]:
        """Records matching filters, newest first."""
        records = list(self.iter_matching(filters))
        records.sort(key=lambda r: r.timestamp, reverse=True)
        return records

    def get(self, audit_id: str) -> Optional[ModelCallAudit]:
        return self._store.get(audit_id)

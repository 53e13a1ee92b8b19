"""
Audit Store - Append-Only Audit Record Persistence

This module provides the narrow storage contract behind the audit recorder.
Records are written once, never mutated, retained for the compliance period
and indexed by day for range queries.

Architecture:
    AuditStore (Protocol)
    ├── InMemoryAuditStore  → dict by id + per-day index (tests, single process)
    └── JsonlAuditStore     → one append-only audit-YYYY-MM-DD.jsonl per day

Why Repository Pattern:
    1. Routing and execution stay pure; durable state lives behind one seam
    2. Testability: the in-memory store needs no filesystem
    3. Idempotent appends: a retried write with the same id is a no-op

Pipeline Position:
    ... → Redaction → Audit Recorder → [Audit Store]
                                        ^^^^^^^^^^^^^
                                        You are here

Usage:
    store = JsonlAuditStore("var/audit", retention_days=2555)
    store.append(record)
    for record in store.iter_records(start, end):
        ...
"""

import json
import os
import threading
from collections import defaultdict
from datetime import date, datetime, timedelta, timezone
from pathlib import Path
from typing import Dict, Iterator, List, Optional, Protocol, Set, Union, runtime_checkable

from loguru import logger

from clinical_ai_gateway.core.constants import AUDIT_RETENTION_DAYS
from clinical_ai_gateway.core.exceptions import AuditStoreError
from clinical_ai_gateway.core.models import ModelCallAudit, utc_now


# =============================================================================
# STAGE 1: AUDIT STORE PROTOCOL (INTERFACE)
# =============================================================================


@runtime_checkable
class AuditStore(Protocol):
    """
    Protocol defining the audit storage contract.

    Required Methods:
        append(record)           → True if stored, False if the id exists
        get(audit_id)            → Record or None
        iter_records(start, end) → Stream of records in the time range
        purge_expired(now)       → Drop partitions past retention
        count()                  → Number of stored records
    """

    def append(self, record: ModelCallAudit) -> bool:
        """
        Raises:
            AuditStoreError: If the record could not be persisted
        """
        ...

    def get(self, audit_id: str) -> Optional[ModelCallAudit]:
        ...

    def iter_records(
        self, start: Optional[datetime] = None, end: Optional[datetime] = None
    ) -> Iterator[ModelCallAudit]:
        ...

    def purge_expired(self, now: Optional[datetime] = None) -> int:
        ...

    def count(self) -> int:
        ...


def _as_utc(value: Optional[datetime]) -> Optional[datetime]:
    if value is None:
        return None
    if value.tzinfo is None:
        return value.replace(tzinfo=timezone.utc)
    return value.astimezone(timezone.utc)


def _in_range(record: ModelCallAudit, start: Optional[datetime], end: Optional[datetime]) -> bool:
    if start is not None and record.timestamp < start:
        return False
    if end is not None and record.timestamp > end:
        return False
    return True


def _day_in_range(day: str, start: Optional[datetime], end: Optional[datetime]) -> bool:
    if start is not None and day < start.strftime("%Y-%m-%d"):
        return False
    if end is not None and day > end.strftime("%Y-%m-%d"):
        return False
    return True


def _retention_cutoff(now: Optional[datetime], retention_days: int) -> str:
    now = _as_utc(now) or utc_now()
    return (now - timedelta(days=retention_days)).strftime("%Y-%m-%d")


# =============================================================================
# STAGE 2: IN-MEMORY IMPLEMENTATION
# =============================================================================


class InMemoryAuditStore:
    """Lock-protected in-process store with a per-day index."""

    def __init__(self, retention_days: int = AUDIT_RETENTION_DAYS):
        self._retention_days = retention_days
        self._records: Dict[str, ModelCallAudit] = {}
        self._by_day: Dict[str, List[str]] = defaultdict(list)
        self._lock = threading.Lock()

    def append(self, record: ModelCallAudit) -> bool:
        with self._lock:
            if record.id in self._records:
                return False
            self._records[record.id] = record
            self._by_day[record.day].append(record.id)
            return True

    def get(self, audit_id: str) -> Optional[ModelCallAudit]:
        with self._lock:
            return self._records.get(audit_id)

    def iter_records(
        self, start: Optional[datetime] = None, end: Optional[datetime] = None
    ) -> Iterator[ModelCallAudit]:
        start, end = _as_utc(start), _as_utc(end)
        with self._lock:
            days = sorted(d for d in self._by_day if _day_in_range(d, start, end))
            snapshot = [self._records[i] for d in days for i in self._by_day[d]]
        for record in snapshot:
            if _in_range(record, start, end):
                yield record

    def purge_expired(self, now: Optional[datetime] = None) -> int:
        cutoff = _retention_cutoff(now, self._retention_days)
        removed = 0
        with self._lock:
            for day in [d for d in self._by_day if d < cutoff]:
                for audit_id in self._by_day.pop(day):
                    self._records.pop(audit_id, None)
                    removed += 1
        return removed

    def count(self) -> int:
        with self._lock:
            return len(self._records)


# =============================================================================
# STAGE 3: DAY-PARTITIONED JSONL IMPLEMENTATION
# =============================================================================


class JsonlAuditStore:
    """
    Append-only audit store backed by one JSON-lines file per UTC day.

    What it does:
        Writes each record as one line to audit-YYYY-MM-DD.jsonl and fsyncs
        before acknowledging. The file name is the per-day index: range
        queries open only the partitions that overlap the range and stream
        them line by line.

    Why it exists:
        1. Durable, append-only storage with no server dependency
        2. Retention is enforced by deleting whole day partitions
        3. Reads never materialize the whole store

    Example:
        >>> store = JsonlAuditStore("var/audit")
        >>> store.append(record)
        True
        >>> store.append(record)   # same id
        False
    """

    FILE_PREFIX = "audit-"
    FILE_SUFFIX = ".jsonl"

    def __init__(self, directory: Union[str, Path], retention_days: int = AUDIT_RETENTION_DAYS):
        self._directory = Path(directory)
        self._retention_days = retention_days
        self._lock = threading.Lock()
        self._ids: Set[str] = set()

        try:
            self._directory.mkdir(parents=True, exist_ok=True)
        except OSError as e:
            raise AuditStoreError("-", f"cannot create audit directory {self._directory}: {e}") from e

        self._rebuild_index()

    # -------------------------------------------------------------------------
    # 3.1 Index
    # -------------------------------------------------------------------------

    def _day_file(self, day: str) -> Path:
        return self._directory / f"{self.FILE_PREFIX}{day}{self.FILE_SUFFIX}"

    def _days(self) -> List[str]:
        days = []
        for path in self._directory.glob(f"{self.FILE_PREFIX}*{self.FILE_SUFFIX}"):
            day = path.name[len(self.FILE_PREFIX) : -len(self.FILE_SUFFIX)]
            try:
                date.fromisoformat(day)
            except ValueError:
                continue
            days.append(day)
        return sorted(days)

    def _rebuild_index(self) -> None:
        for day in self._days():
            for record in self._read_day(day):
                self._ids.add(record.id)
        logger.info(f"Audit store opened | Directory: {self._directory} | Records: {len(self._ids)}")

    def _read_day(self, day: str) -> Iterator[ModelCallAudit]:
        path = self._day_file(day)
        try:
            with open(path, "r", encoding="utf-8") as f:
                for line_no, line in enumerate(f, start=1):
                    line = line.strip()
                    if not line:
                        continue
                    try:
                        yield ModelCallAudit.from_dict(json.loads(line))
                    except (json.JSONDecodeError, KeyError, ValueError) as e:
                        # Torn final line after a crash mid-write
                        logger.warning(f"Skipping unreadable audit line | File: {path.name}:{line_no} | {e}")
        except FileNotFoundError:
            return

    # -------------------------------------------------------------------------
    # 3.2 Store Contract
    # -------------------------------------------------------------------------

    def append(self, record: ModelCallAudit) -> bool:
        line = json.dumps(record.to_dict(), ensure_ascii=False, default=str)
        with self._lock:
            if record.id in self._ids:
                return False
            try:
                with open(self._day_file(record.day), "a", encoding="utf-8") as f:
                    f.write(line + "\n")
                    f.flush()
                    os.fsync(f.fileno())
            except OSError as e:
                raise AuditStoreError(record.id, str(e)) from e
            self._ids.add(record.id)
            return True

    def get(self, audit_id: str) -> Optional[ModelCallAudit]:
        with self._lock:
            if audit_id not in self._ids:
                return None
        for day in reversed(self._days()):
            for record in self._read_day(day):
                if record.id == audit_id:
                    return record
        return None

    def iter_records(
        self, start: Optional[datetime] = None, end: Optional[datetime] = None
    ) -> Iterator[ModelCallAudit]:
        start, end = _as_utc(start), _as_utc(end)
        for day in self._days():
            if not _day_in_range(day, start, end):
                continue
            for record in self._read_day(day):
                if _in_range(record, start, end):
                    yield record

    def purge_expired(self, now: Optional[datetime] = None) -> int:
        """Delete day partitions older than the retention period."""
        cutoff = _retention_cutoff(now, self._retention_days)
        removed = 0
        with self._lock:
            for day in self._days():
                if day >= cutoff:
                    break
                for record in self._read_day(day):
                    self._ids.discard(record.id)
                    removed += 1
                self._day_file(day).unlink()
                logger.info(f"Audit partition purged | Day: {day}")
        return removed

    def count(self) -> int:
        with self._lock:
            return len(self._ids)

    @property
    def directory(self) -> Path:
        return self._directory

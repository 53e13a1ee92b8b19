"""
Session Store - Per-Session Rolling Context

Keyed by session id, created lazily, updated after every response. Read-
modify-write is atomic per key: two rapid calls in one session never lose an
update, while different sessions proceed independently.

Eviction:
    - Idle timeout: entries untouched for ttl_seconds are dropped
    - Size cap: beyond max_entries the least recently used entry is dropped

Usage:
    store = InMemorySessionStore(ttl_seconds=3600, max_entries=10_000)
    store.update(session_id, lambda ctx: setattr(ctx, "last_response", text))
    ctx = store.get(session_id)
"""

import dataclasses
import threading
import time
from collections import OrderedDict
from typing import Callable, Dict, Optional, Protocol, runtime_checkable

from loguru import logger

from clinical_ai_gateway.core.models import SessionContext, utc_now


@runtime_checkable
class SessionStore(Protocol):
    """Keyed session storage with per-key atomic read-modify-write."""

    def get(self, session_id: str) -> Optional[SessionContext]:
        """Copy of the session entry, or None."""
        ...

    def update(
        self, session_id: str, mutator: Callable[[SessionContext], None]
    ) -> SessionContext:
        """Apply mutator to the entry (created lazily) under the key's lock."""
        ...

    def clear(self) -> None:
        ...


@dataclasses.dataclass
class _KeyLock:
    """Per-session lock plus the number of updates holding a reference to it."""

    lock: threading.Lock = dataclasses.field(default_factory=threading.Lock)
    holders: int = 0


class InMemorySessionStore:
    """
    In-process session store with per-key locks, idle TTL and LRU cap.

    What it does:
        Holds one SessionContext per session id. update() runs the mutator
        while holding that session's lock; get() returns a copy, so callers
        never see a half-applied update.

    Why it exists:
        1. Prompt continuity across calls in one session
        2. Bounded memory (idle timeout plus size cap)

    Example:
        >>> store = InMemorySessionStore(ttl_seconds=60, max_entries=100)
        >>> store.update("s1", lambda ctx: None).request_count
        0
    """

    def __init__(
        self,
        ttl_seconds: float = 3600.0,
        max_entries: int = 10_000,
        clock: Callable[[], float] = time.monotonic,
    ):
        self._ttl = ttl_seconds
        self._max_entries = max_entries
        self._clock = clock

        self._entries: "OrderedDict[str, SessionContext]" = OrderedDict()
        self._touched: Dict[str, float] = {}
        self._key_locks: Dict[str, _KeyLock] = {}
        self._lock = threading.Lock()

    # -------------------------------------------------------------------------
    # Store Contract
    # -------------------------------------------------------------------------

    def get(self, session_id: str) -> Optional[SessionContext]:
        with self._lock:
            self._evict_expired()
            entry = self._entries.get(session_id)
            if entry is None:
                return None
            return dataclasses.replace(entry)

    def update(
        self, session_id: str, mutator: Callable[[SessionContext], None]
    ) -> SessionContext:
        key_lock = self._checkout_key_lock(session_id)
        try:
            with key_lock.lock:
                with self._lock:
                    self._evict_expired()
                    entry = self._entries.get(session_id)
                working = (
                    dataclasses.replace(entry) if entry is not None else SessionContext(session_id=session_id)
                )

                mutator(working)
                working.last_activity = utc_now()

                with self._lock:
                    self._entries[session_id] = working
                    self._entries.move_to_end(session_id)
                    self._touched[session_id] = self._clock()
                    self._enforce_size_cap()
                return dataclasses.replace(working)
        finally:
            self._release_key_lock(session_id, key_lock)

    def clear(self) -> None:
        with self._lock:
            self._entries.clear()
            self._touched.clear()
            self._key_locks = {
                session_id: key_lock for session_id, key_lock in self._key_locks.items() if key_lock.holders
            }

    def __len__(self) -> int:
        with self._lock:
            self._evict_expired()
            return len(self._entries)

    # -------------------------------------------------------------------------
    # Key Locks
    # -------------------------------------------------------------------------

    def _checkout_key_lock(self, session_id: str) -> _KeyLock:
        with self._lock:
            key_lock = self._key_locks.get(session_id)
            if key_lock is None:
                key_lock = _KeyLock()
                self._key_locks[session_id] = key_lock
            key_lock.holders += 1
            return key_lock

    def _release_key_lock(self, session_id: str, key_lock: _KeyLock) -> None:
        with self._lock:
            key_lock.holders -= 1
            if not key_lock.holders and session_id not in self._entries:
                self._key_locks.pop(session_id, None)

    # -------------------------------------------------------------------------
    # Eviction (callers hold self._lock)
    # -------------------------------------------------------------------------

    def _drop(self, session_id: str) -> None:
        self._entries.pop(session_id, None)
        self._touched.pop(session_id, None)
        key_lock = self._key_locks.get(session_id)
        # Kept while any update holds it, so one session never gets two locks
        if key_lock is not None and not key_lock.holders:
            self._key_locks.pop(session_id, None)

    def _evict_expired(self) -> None:
        now = self._clock()
        # OrderedDict is in least-recently-updated order
        for session_id in list(self._entries):
            if now - self._touched.get(session_id, now) < self._ttl:
                break
            self._drop(session_id)
            logger.debug(f"Session evicted (idle) | Session: {session_id}")

    def _enforce_size_cap(self) -> None:
        while len(self._entries) > self._max_entries:
            session_id = next(iter(self._entries))
            self._drop(session_id)
            logger.debug(f"Session evicted (capacity) | Session: {session_id}")

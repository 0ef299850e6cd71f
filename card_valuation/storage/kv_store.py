"""
Key-value stores with per-entry TTL.

Writes are idempotent and last-writer-wins; concurrent writers computing the
same key need no coordination. Expired entries read as misses.
"""

import logging
import threading
import time
from abc import ABC, abstractmethod
from datetime import datetime, timedelta, timezone
from typing import Any, Callable, Dict, Optional, Tuple

from sqlalchemy.orm import sessionmaker

from card_valuation.database import db as db_ops

logger = logging.getLogger(__name__)


class BaseKeyValueStore(ABC):
    """Abstract key-value store with TTL."""

    @abstractmethod
    def get(self, key: str) -> Optional[Any]:
        """Return the stored value, or None if missing or expired."""
        pass

    @abstractmethod
    def put(self, key: str, value: Any, ttl_seconds: int) -> None:
        """Store a JSON-serializable value for ttl_seconds."""
        pass


class InMemoryKeyValueStore(BaseKeyValueStore):
    """Process-local store, used by the CLI and tests."""

    def __init__(self, clock: Callable[[], float] = time.time):
        self._clock = clock
        self._entries: Dict[str, Tuple[Any, float]] = {}
        self._lock = threading.Lock()

    def get(self, key: str) -> Optional[Any]:
        with self._lock:
            entry = self._entries.get(key)
            if entry is None:
                return None
            value, expires_at = entry
            if expires_at <= self._clock():
                del self._entries[key]
                return None
            return value

    def put(self, key: str, value: Any, ttl_seconds: int) -> None:
        with self._lock:
            now = self._clock()
            # get() only evicts the keys it reads
            expired = [k for k, (_, expires_at) in self._entries.items() if expires_at <= now]
            for k in expired:
                del self._entries[k]
            self._entries[key] = (value, now + ttl_seconds)

    def __len__(self) -> int:
        return len(self._entries)

    def __bool__(self) -> bool:
        # An empty store is still a store
        return True


class SqlKeyValueStore(BaseKeyValueStore):
    """Store backed by the cache_entries table, shared across processes."""

    def __init__(self, session_factory: sessionmaker, clock: Callable[[], datetime] = None):
        self._session_factory = session_factory
        self._clock = clock or (lambda: datetime.now(timezone.utc))

    def get(self, key: str) -> Optional[Any]:
        db = self._session_factory()
        try:
            entry = db_ops.get_live_cache_entry(db, key, self._clock())
            return entry.payload if entry is not None else None
        finally:
            db.close()

    def put(self, key: str, value: Any, ttl_seconds: int) -> None:
        now = self._clock()
        db = self._session_factory()
        try:
            db_ops.upsert_cache_entry(db, key, value, now, now + timedelta(seconds=ttl_seconds))
        finally:
            db.close()

    def purge_expired(self) -> int:
        db = self._session_factory()
        try:
            removed = db_ops.delete_expired_cache_entries(db, self._clock())
            logger.info(f"Purged {removed} expired cache entries")
            return removed
        finally:
            db.close()

"""
Rate Limiting

Fixed-window request counting per (identity, resource path). Identity is a
user id for session callers and an API key id for machine callers; both go
through the same counters.
"""

from __future__ import annotations

import math
import threading
import time
from dataclasses import dataclass
from datetime import datetime, timedelta, timezone
from typing import Any, Callable, Optional, Protocol

from firebase_admin import firestore

from app.core.logging import get_logger

logger = get_logger("expenseflow.auth.rate_limit")

Clock = Callable[[], float]


@dataclass(frozen=True)
class RateLimitDecision:
    allowed: bool
    retry_after: int = 0
    remaining: int = 0


class CounterStore(Protocol):
    def increment(self, key: str, expires_at: float) -> int:
        """Atomically add one to ``key`` and return the new count."""
        ...


class InMemoryCounterStore:
    """Process-local counters guarded by a lock."""

    def __init__(self) -> None:
        self._lock = threading.Lock()
        self._counts: dict[str, tuple[int, float]] = {}

    def increment(self, key: str, expires_at: float) -> int:
        with self._lock:
            count, _ = self._counts.get(key, (0, expires_at))
            count += 1
            self._counts[key] = (count, expires_at)
            return count

    def prune(self, now: float) -> None:
        """Drop counters whose window has ended."""
        with self._lock:
            expired = [key for key, (_, expires_at) in self._counts.items() if expires_at <= now]
            for key in expired:
                del self._counts[key]

    def __len__(self) -> int:
        return len(self._counts)


class FirestoreCounterStore:
    """Counters shared across instances, one document per window."""

    def __init__(self, db: Any, collection: str = "rate_limits") -> None:
        self.db = db
        self.collection = collection

    def increment(self, key: str, expires_at: float) -> int:
        doc_ref = self.db.collection(self.collection).document(key.replace("/", "|"))

        @firestore.transactional
        def bump(transaction) -> int:
            snapshot = doc_ref.get(transaction=transaction)
            count = (snapshot.to_dict() or {}).get("count", 0) + 1 if snapshot.exists else 1
            transaction.set(
                doc_ref,
                {
                    "count": count,
                    # Firestore TTL policy on this field cleans up old windows
                    "expires_at": datetime.fromtimestamp(expires_at, tz=timezone.utc) + timedelta(minutes=5),
                },
            )
            return count

        return bump(self.db.transaction())


class RateLimiter:
    """Allows ``max_requests`` per ``window_seconds`` for each (identity, resource)."""

    PRUNE_INTERVAL = 256

    def __init__(
        self,
        store: Optional[CounterStore] = None,
        max_requests: int = 120,
        window_seconds: int = 60,
        clock: Clock = time.time,
    ) -> None:
        if max_requests < 1 or window_seconds < 1:
            raise ValueError("Rate limit ceiling and window must be positive.")
        self.store = store or InMemoryCounterStore()
        self.max_requests = max_requests
        self.window_seconds = window_seconds
        self.clock = clock
        self._checks = 0

    def check(self, identity: str, resource: str) -> RateLimitDecision:
        now = self.clock()
        window_start = math.floor(now / self.window_seconds) * self.window_seconds
        window_end = window_start + self.window_seconds
        key = f"{identity}:{resource}:{window_start}"

        count = self.store.increment(key, window_end)
        self._maybe_prune(now)

        if count > self.max_requests:
            retry_after = max(1, math.ceil(window_end - now))
            logger.warning(f"Rate limit exceeded for identity={identity} path={resource}")
            return RateLimitDecision(allowed=False, retry_after=retry_after, remaining=0)
        return RateLimitDecision(allowed=True, remaining=self.max_requests - count)

    def _maybe_prune(self, now: float) -> None:
        self._checks += 1
        if self._checks % self.PRUNE_INTERVAL == 0 and isinstance(self.store, InMemoryCounterStore):
            self.store.prune(now)

"""In-memory stores for the authorization-code flow.

Pending authorization codes, callback sessions and pickup tokens live in an
EphemeralStore: a lock-guarded map whose entries expire after a fixed
window regardless of use. Entries are swept periodically, not by timers.
"""

import asyncio
import logging
import time
from dataclasses import dataclass
from typing import Callable, Generic, Optional, TypeVar

logger = logging.getLogger(__name__)

DEFAULT_EPHEMERAL_TTL = 5 * 60


@dataclass
class PendingAuthorization:
    """A minted, not yet redeemed authorization code."""

    code: str
    bearer_credential: str
    created_at: float


@dataclass
class CallbackSession:
    """Remembers where to send the caller once the login form completes."""

    session_key: str
    original_state: str
    redirect_uri: str
    client_id: str
    created_at: float


@dataclass
class PickupToken:
    """A bearer credential parked by /auth/callback until the browser collects it."""

    token_id: str
    bearer_credential: str
    created_at: float


T = TypeVar("T")


class EphemeralStore(Generic[T]):
    """TTL map keyed by opaque strings. Records must carry `created_at`."""

    def __init__(self, name: str, ttl: float = DEFAULT_EPHEMERAL_TTL,
                 clock: Callable[[], float] = time.monotonic):
        self.name = name
        self.ttl = ttl
        self.clock = clock
        self._entries: dict[str, T] = {}
        self._lock = asyncio.Lock()

    def _live(self, record: T, now: float) -> bool:
        return now - record.created_at <= self.ttl

    async def put(self, key: str, record: T) -> None:
        async with self._lock:
            self._entries[key] = record

    async def pop(self, key: Optional[str]) -> Optional[T]:
        """Remove and return a live record. Expired records are removed too."""
        if not key:
            return None
        async with self._lock:
            record = self._entries.pop(key, None)
        if record is None or not self._live(record, self.clock()):
            return None
        return record

    async def peek(self, key: Optional[str]) -> Optional[T]:
        if not key:
            return None
        async with self._lock:
            record = self._entries.get(key)
        if record is None or not self._live(record, self.clock()):
            return None
        return record

    async def sweep_expired(self) -> int:
        async with self._lock:
            now = self.clock()
            expired = [k for k, r in self._entries.items() if not self._live(r, now)]
            for key in expired:
                del self._entries[key]
        if expired:
            logger.info(f"[SWEEP] Removed {len(expired)} expired {self.name} record(s)")
        return len(expired)

    def __len__(self) -> int:
        return len(self._entries)

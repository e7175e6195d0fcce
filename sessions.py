"""Session registry and session resolution strategies.

The registry exclusively owns every upstream handle. A session id maps to
one authenticated handle with a sliding expiry window; once a session is
removed its id never resolves again.
"""

import asyncio
import logging
import time
import uuid
from dataclasses import dataclass, field
from typing import Any, Callable, Optional

from errors import AuthenticationFailed, AuthenticationRequired, ServiceError

logger = logging.getLogger(__name__)

DEFAULT_SESSION_TTL = 24 * 60 * 60


@dataclass
class Session:
    session_id: str
    handle: Any
    created_at: float
    user_id: Optional[str] = None
    email: Optional[str] = None


@dataclass
class RevalidationResult:
    session_id: str
    still_valid: bool


class SessionRegistry:
    """Maps session ids to authenticated upstream handles."""

    def __init__(self, handle_factory: Callable[[str], Any], ttl: float = DEFAULT_SESSION_TTL,
                 clock: Callable[[], float] = time.monotonic):
        self._handle_factory = handle_factory
        self._ttl = ttl
        self._clock = clock
        self._sessions: dict[str, Session] = {}
        self._lock = asyncio.Lock()

    @property
    def ttl(self) -> float:
        return self._ttl

    def _expired(self, session: Session, now: float) -> bool:
        return now - session.created_at > self._ttl

    async def create(self, credential: str, session_key: str = None,
                     user_id: str = None, email: str = None) -> str:
        """Validate a bearer credential and store a new session.

        Raises:
            AuthenticationFailed: the credential did not pass upstream validation.
        """
        handle = self._handle_factory(credential)
        try:
            valid = await handle.validate()
        except ServiceError as e:
            logger.warning(f"[SESSION] Validation call failed: {e.message}")
            valid = False
        if not valid:
            logger.info("[SESSION] Session not created: credential failed validation")
            raise AuthenticationFailed("Bearer token failed validation")

        session_id = session_key or str(uuid.uuid4())
        async with self._lock:
            self._sessions[session_id] = Session(
                session_id=session_id,
                handle=handle,
                created_at=self._clock(),
                user_id=user_id,
                email=email,
            )
        logger.info(f"[SESSION] Created session {session_id[:12]}...")
        return session_id

    async def get(self, session_id: Optional[str]) -> Optional[Any]:
        """Return the session's handle and refresh its expiry, or None."""
        session = await self.get_session(session_id)
        return session.handle if session else None

    async def get_session(self, session_id: Optional[str]) -> Optional[Session]:
        if not session_id:
            return None
        async with self._lock:
            session = self._sessions.get(session_id)
            if session is None:
                return None
            now = self._clock()
            if self._expired(session, now):
                del self._sessions[session_id]
                logger.info(f"[SESSION] Session {session_id[:12]}... expired on lookup")
                return None
            session.created_at = now
            return session

    async def revoke(self, session_id: Optional[str]) -> bool:
        """Remove a session. Returns True if something was removed."""
        if not session_id:
            return False
        async with self._lock:
            removed = self._sessions.pop(session_id, None)
        if removed:
            logger.info(f"[SESSION] Revoked session {session_id[:12]}...")
        return removed is not None

    async def sweep_expired(self) -> int:
        async with self._lock:
            now = self._clock()
            expired = [sid for sid, s in self._sessions.items() if self._expired(s, now)]
            for sid in expired:
                del self._sessions[sid]
        if expired:
            logger.info(f"[SWEEP] Removed {len(expired)} expired session(s)")
        return len(expired)

    async def revalidate_all(self) -> list[RevalidationResult]:
        """Re-run validation for every live session, revoking the failures."""
        async with self._lock:
            snapshot = list(self._sessions.values())

        async def check(session: Session) -> RevalidationResult:
            try:
                valid = bool(await session.handle.validate())
            except ServiceError:
                valid = False
            return RevalidationResult(session.session_id, valid)

        results = await asyncio.gather(*(check(s) for s in snapshot))

        for result in results:
            if not result.still_valid:
                await self.revoke(result.session_id)

        logger.info(
            f"[SESSION] Revalidated {len(results)} session(s), "
            f"{sum(1 for r in results if not r.still_valid)} revoked"
        )
        return list(results)

    async def count(self) -> int:
        async with self._lock:
            return len(self._sessions)

    async def session_ids(self) -> list[str]:
        async with self._lock:
            return list(self._sessions)

    async def clear(self) -> None:
        async with self._lock:
            self._sessions.clear()


# ============== Session Resolution ==============

@dataclass
class HeaderSessionResolver:
    """Resolves the caller's session from an explicit X-Session-ID value."""

    registry: SessionRegistry
    session_id: Optional[str] = None
    allows_inline_auth: bool = field(default=True, init=False)

    async def resolve(self):
        if not self.session_id:
            raise AuthenticationRequired("Session ID required in X-Session-ID header")
        handle = await self.registry.get(self.session_id)
        if handle is None:
            raise AuthenticationRequired(
                "Not authenticated. Please authenticate first using the authenticate tool "
                "or the OAuth2 flow."
            )
        return handle

    def bind(self, session_id: str) -> None:
        """Reuse a session created by inline authentication for later calls."""
        self.session_id = session_id

    async def invalidate(self) -> None:
        """Drop the session after its handle failed an upstream call."""
        await self.registry.revoke(self.session_id)

    async def release(self) -> None:
        pass


@dataclass
class BearerSessionResolver:
    """Lazily creates a session for a bearer-authenticated request.

    The session key always embeds the verified user id plus a per-request
    nonce, so two users can never share a key.
    """

    registry: SessionRegistry
    token: str
    user_id: str
    email: Optional[str] = None
    allows_inline_auth: bool = field(default=False, init=False)
    _session_id: Optional[str] = field(default=None, init=False, repr=False)
    _lock: asyncio.Lock = field(default_factory=asyncio.Lock, init=False, repr=False)

    @property
    def session_id(self) -> Optional[str]:
        return self._session_id

    async def resolve(self):
        async with self._lock:
            if self._session_id:
                handle = await self.registry.get(self._session_id)
                if handle is not None:
                    return handle
            session_key = f"session_{self.user_id}_{uuid.uuid4().hex}"
            try:
                self._session_id = await self.registry.create(
                    self.token, session_key=session_key, user_id=self.user_id, email=self.email
                )
            except AuthenticationFailed as e:
                raise AuthenticationRequired(f"Not authenticated: {e.message}") from e
            return await self.registry.get(self._session_id)

    def bind(self, session_id: str) -> None:
        raise AuthenticationRequired("Authentication is handled by the OAuth2 flow")

    async def invalidate(self) -> None:
        await self.release()

    async def release(self) -> None:
        session_id, self._session_id = self._session_id, None
        if session_id:
            await self.registry.revoke(session_id)

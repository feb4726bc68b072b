"""In-memory session registry.

Sessions are opaque continuity tokens: the proxy creates one per request that
does not carry an ``X-Session-ID`` header and passes it through to the backend.
Client-supplied ids are accepted without verification. Records live in process
memory only; with ``ttl_seconds`` > 0, sessions unused for longer than the TTL
are purged lazily whenever a new session is created.
"""
import logging
import threading
import uuid
from datetime import datetime, timedelta, timezone
from typing import Callable, Dict, Optional

from lmproxy.models.backend import Session

logger = logging.getLogger(__name__)


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


class SessionRegistry:
    """Creates and tracks sessions keyed by id."""

    def __init__(
        self,
        workspace: Optional[str] = None,
        ttl_seconds: int = 0,
        clock: Callable[[], datetime] = _utcnow,
    ):
        self.workspace = workspace
        self.ttl_seconds = ttl_seconds
        self._clock = clock
        self._sessions: Dict[str, Session] = {}
        self._lock = threading.Lock()

    def create_session(self) -> str:
        """Create a new session and return its id."""
        now = self._clock()
        session = Session(
            id=str(uuid.uuid4()),
            created_at=now,
            last_used_at=now,
            workspace=self.workspace,
        )
        with self._lock:
            if self.ttl_seconds > 0:
                self._evict_expired(now)
            self._sessions[session.id] = session
        logger.info(f"Created new session {session.id}")
        return session.id

    def get(self, session_id: str) -> Optional[Session]:
        with self._lock:
            return self._sessions.get(session_id)

    def touch(self, session_id: str) -> None:
        """Update last-used time for a known session; unknown ids are ignored."""
        with self._lock:
            session = self._sessions.get(session_id)
            if session:
                session.last_used_at = self._clock()

    def resolve(self, header_value: Optional[str]) -> str:
        """Reuse the client's session id when present, otherwise create one."""
        if header_value:
            self.touch(header_value)
            return header_value
        return self.create_session()

    def _evict_expired(self, now: datetime) -> None:
        # Caller holds the lock
        cutoff = now - timedelta(seconds=self.ttl_seconds)
        expired = [sid for sid, s in self._sessions.items() if s.last_used_at < cutoff]
        for sid in expired:
            del self._sessions[sid]
        if expired:
            logger.info(f"Evicted {len(expired)} expired sessions")

    def __len__(self) -> int:
        with self._lock:
            return len(self._sessions)

    def __contains__(self, session_id: object) -> bool:
        with self._lock:
            return session_id in self._sessions

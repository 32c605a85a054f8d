"""Server-side sessions binding a logged-in user to an authenticated client."""
import logging
import threading
import uuid
from abc import ABC, abstractmethod
from dataclasses import dataclass, field
from datetime import datetime, timedelta, timezone
from typing import Any, Callable, Dict, List, Optional

DEFAULT_SESSION_TTL = timedelta(hours=2)


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


@dataclass
class UserSession:
    user_id: str
    client: Any
    session_id: str = field(default_factory=lambda: str(uuid.uuid4()))
    created_at: datetime = field(default_factory=_utcnow)
    last_accessed_at: datetime = field(default_factory=_utcnow)

    def is_expired(self, now: datetime, ttl: timedelta = DEFAULT_SESSION_TTL) -> bool:
        return now - self.last_accessed_at > ttl


class SessionStore(ABC):
    """Storage for user sessions keyed by session id."""

    @abstractmethod
    def get(self, session_id: str) -> Optional[UserSession]:
        """Return a live session and refresh its last access time."""
        raise NotImplementedError

    @abstractmethod
    def put(self, session: UserSession) -> None:
        raise NotImplementedError

    @abstractmethod
    def remove(self, session_id: str) -> Optional[UserSession]:
        raise NotImplementedError

    @abstractmethod
    def sweep(self) -> List[UserSession]:
        """Drop every expired session and return the dropped ones."""
        raise NotImplementedError

    @abstractmethod
    def clear(self) -> List[UserSession]:
        """Drop every session and return them."""
        raise NotImplementedError


class InMemorySessionStore(SessionStore):
    """Process-local session map guarded by a single lock.

    Expired sessions are removed lazily: on lookup, and by a sweep every time
    a new session is stored.
    """

    def __init__(
        self,
        ttl: timedelta = DEFAULT_SESSION_TTL,
        clock: Callable[[], datetime] = _utcnow,
    ):
        self.ttl = ttl
        self._clock = clock
        self._sessions: Dict[str, UserSession] = {}
        self._lock = threading.Lock()

    def __len__(self) -> int:
        with self._lock:
            return len(self._sessions)

    def get(self, session_id: str) -> Optional[UserSession]:
        now = self._clock()
        with self._lock:
            session = self._sessions.get(session_id)
            if session is None:
                return None
            if session.is_expired(now, self.ttl):
                del self._sessions[session_id]
                logging.info("Session %s for user %s expired", session_id, session.user_id)
                return None
            session.last_accessed_at = now
            return session

    def put(self, session: UserSession) -> None:
        with self._lock:
            self._sessions[session.session_id] = session

    def remove(self, session_id: str) -> Optional[UserSession]:
        with self._lock:
            return self._sessions.pop(session_id, None)

    def sweep(self) -> List[UserSession]:
        now = self._clock()
        with self._lock:
            expired = [
                session_id
                for session_id, session in self._sessions.items()
                if session.is_expired(now, self.ttl)
            ]
            removed = [self._sessions.pop(session_id) for session_id in expired]
        if removed:
            logging.info("Swept %d expired session(s)", len(removed))
        return removed

    def clear(self) -> List[UserSession]:
        with self._lock:
            removed = list(self._sessions.values())
            self._sessions.clear()
        return removed

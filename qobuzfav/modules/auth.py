"""Login, logout and session lookup against Qobuz."""
import logging
from datetime import timedelta
from typing import Callable, Dict, Optional

from .helperClasses import UserInputs
from .qobuz import QobuzAPIError, QobuzAuthError, QobuzClient, build_client, hash_password
from .sessions import InMemorySessionStore, SessionStore, UserSession


class QobuzAuthService:
    """Creates sessions for users who log in with their Qobuz credentials.

    Every session owns its own QobuzClient carrying that user's token. The
    client is closed when the session is logged out or swept. While a
    background run still uses the client, closing waits until the last run
    on that session ends.
    """

    def __init__(
        self,
        user_inputs: UserInputs,
        store: Optional[SessionStore] = None,
        client_factory: Optional[Callable[[UserInputs], QobuzClient]] = None,
    ):
        self.user_inputs = user_inputs
        self.store = store or InMemorySessionStore(
            ttl=timedelta(seconds=user_inputs.session_ttl_seconds)
        )
        self._client_factory = client_factory or build_client
        self._active_runs: Dict[str, int] = {}
        self._pending_close: Dict[str, UserSession] = {}

    async def login(self, email: str, password: str) -> Optional[UserSession]:
        """Log a user in and register a new session, or return None."""
        client = self._client_factory(self.user_inputs)
        try:
            user_id = await client.login(email, hash_password(password))
        except (QobuzAuthError, QobuzAPIError) as e:
            logging.warning("Qobuz login failed for %s: %s", email, e)
            await client.close()
            return None

        session = UserSession(user_id=user_id, client=client)
        self.store.put(session)
        await self._close_expired()
        logging.info("Created session %s for Qobuz user %s", session.session_id, user_id)
        return session

    def get_session(self, session_id: Optional[str]) -> Optional[UserSession]:
        if not session_id:
            return None
        return self.store.get(session_id)

    async def logout(self, session_id: Optional[str]) -> None:
        if not session_id:
            return
        session = self.store.remove(session_id)
        if session:
            logging.info("Session %s logged out", session_id)
            await self._close_client(session)

    def begin_run(self, session: UserSession) -> None:
        """Mark the session's client as used by a background run."""
        self._active_runs[session.session_id] = self._active_runs.get(session.session_id, 0) + 1

    async def end_run(self, session: UserSession) -> None:
        """Release a run, closing the client if the session ended meanwhile."""
        remaining = self._active_runs.get(session.session_id, 0) - 1
        if remaining > 0:
            self._active_runs[session.session_id] = remaining
            return
        self._active_runs.pop(session.session_id, None)
        pending = self._pending_close.pop(session.session_id, None)
        if pending is not None:
            logging.info("Closing client of ended session %s", session.session_id)
            await pending.client.close()

    async def close_all(self) -> None:
        sessions = self.store.clear() + list(self._pending_close.values())
        self._pending_close.clear()
        self._active_runs.clear()
        for session in sessions:
            await session.client.close()

    async def _close_expired(self) -> None:
        for session in self.store.sweep():
            await self._close_client(session)

    async def _close_client(self, session: UserSession) -> None:
        if self._active_runs.get(session.session_id, 0) > 0:
            logging.info(
                "Session %s still has a running operation, closing its client afterwards",
                session.session_id,
            )
            self._pending_close[session.session_id] = session
            return
        await session.client.close()

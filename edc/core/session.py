"""
In-memory store for form-entry sessions.

A session wraps the FormSession of one user filling in one form. The
API opens sessions on demand; a session idle for longer than the
store's timeout is treated as gone and dropped the next time anyone
looks it up or a cleanup pass runs.
"""

import threading
import time
import uuid
from typing import Any, Callable

from edc.core.form_state import FormSession
from edc.core.schema import FormSpecification

# 30 minutes
DEFAULT_SESSION_TIMEOUT_SECONDS = 30 * 60


class Session:
    """One user's in-progress entry of one form."""

    def __init__(self, form_session: FormSession, actor: str, now: float):
        self.form_session = form_session
        self.actor = actor
        self.opened_at = now
        self.last_seen_at = now

    @property
    def form_id(self) -> str:
        return self.form_session.form.form_id

    def idle_for(self, now: float) -> float:
        return now - self.last_seen_at


class FormSessionStore:
    """Thread-safe registry of open form-entry sessions.

    Args:
        timeout_seconds: Idle time after which a session expires.
        clock: Source of the current time in seconds.
    """

    def __init__(
        self,
        timeout_seconds: int = DEFAULT_SESSION_TIMEOUT_SECONDS,
        clock: Callable[[], float] = time.monotonic,
    ):
        self.timeout_seconds = timeout_seconds
        self._clock = clock
        self._sessions: dict[str, Session] = {}
        self._lock = threading.RLock()

    def _expired(self, session: Session) -> bool:
        return session.idle_for(self._clock()) > self.timeout_seconds

    def _drop_expired(self) -> int:
        # Caller holds the lock
        stale = [sid for sid, s in self._sessions.items() if self._expired(s)]
        for sid in stale:
            del self._sessions[sid]
        return len(stale)

    def create_session(
        self,
        form: FormSpecification,
        actor: str,
        initial_values: dict[str, Any] | None = None,
        read_only: bool = False,
        session_id: str | None = None,
    ) -> tuple[str, Session]:
        """Open a session for a form.

        Expired sessions are swept before the new one is registered.

        Args:
            form: The form specification being filled in.
            actor: Identity of the user who owns the session.
            initial_values: Draft values to start from.
            read_only: Render every field disabled.
            session_id: Optional custom ID. Auto-generated if not provided.

        Returns:
            Tuple of (session_id, Session).
        """
        session_id = session_id or str(uuid.uuid4())
        session = Session(
            FormSession(form, initial_values=initial_values, read_only=read_only),
            actor,
            self._clock(),
        )
        with self._lock:
            self._drop_expired()
            self._sessions[session_id] = session
        return session_id, session

    def get_session(self, session_id: str) -> Session | None:
        """Look up a live session and mark it as used.

        Returns None for unknown IDs. An expired session is removed and
        also reported as None.
        """
        with self._lock:
            session = self._sessions.get(session_id)
            if session is None:
                return None
            if self._expired(session):
                del self._sessions[session_id]
                return None
            session.last_seen_at = self._clock()
            return session

    def sessions_for(self, actor: str) -> dict[str, Session]:
        """Live sessions owned by one user."""
        with self._lock:
            return {
                sid: s for sid, s in self._sessions.items()
                if s.actor == actor and not self._expired(s)
            }

    def delete_session(self, session_id: str) -> bool:
        """Close a session. Returns True if it existed."""
        with self._lock:
            return self._sessions.pop(session_id, None) is not None

    def cleanup_expired(self) -> int:
        """Drop every expired session and return how many were dropped."""
        with self._lock:
            return self._drop_expired()

    def count(self) -> int:
        with self._lock:
            return len(self._sessions)

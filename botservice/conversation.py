"""Conversation sessions with a sliding 24-hour expiry."""

from __future__ import annotations

import threading
import uuid
from dataclasses import dataclass, field
from datetime import datetime, timedelta
from typing import Any

from botservice.logger import Logger

_SESSION_LIFETIME = timedelta(hours=24)


class SessionExpiredError(LookupError):
    """The session existed but had expired; it has been removed."""


@dataclass
class ConversationSession:
    bot_id: str
    user_id: str
    id: str = ""
    current_flow_id: str = ""
    current_step_id: str = ""
    context: dict[str, Any] = field(default_factory=dict)
    created_at: datetime | None = None
    updated_at: datetime | None = None
    expires_at: datetime | None = None


class ConversationService:
    """Stores conversation sessions and enforces their expiry."""

    def __init__(self, logger: Logger | None = None) -> None:
        self._logger = logger or Logger()
        self._sessions: dict[str, ConversationSession] = {}
        self._lock = threading.RLock()

    def _store(self, session: ConversationSession) -> None:
        if not session.id:
            session.id = str(uuid.uuid4())
        with self._lock:
            self._sessions[session.id] = session

    def get_session(self, user_id: str, bot_id: str) -> ConversationSession:
        """Return the live session of a user with a bot.

        Raises LookupError if there is none and SessionExpiredError if it expired.
        """
        with self._lock:
            session = next(
                (s for s in self._sessions.values() if s.user_id == user_id and s.bot_id == bot_id),
                None,
            )
        if session is None:
            raise LookupError("session not found")
        if session.expires_at is not None and session.expires_at < datetime.now():
            try:
                self.delete_session(session.id)
            except LookupError as exc:
                self._logger.error(
                    "Failed to delete expired session", "session_id", session.id, "error", str(exc)
                )
            raise SessionExpiredError("session expired")
        return session

    def create_session(self, session: ConversationSession) -> None:
        now = datetime.now()
        session.created_at = now
        session.updated_at = now
        if session.expires_at is None:
            session.expires_at = now + _SESSION_LIFETIME
        self._store(session)

    def update_session(self, session: ConversationSession) -> None:
        """Save a session and extend its expiry by another 24 hours."""
        now = datetime.now()
        session.updated_at = now
        session.expires_at = now + _SESSION_LIFETIME
        self._store(session)

    def delete_session(self, session_id: str) -> None:
        with self._lock:
            if self._sessions.pop(session_id, None) is None:
                raise LookupError(f"session not found: {session_id}")

    def cleanup_expired_sessions(self) -> int:
        """Remove every expired session and return how many were removed."""
        now = datetime.now()
        with self._lock:
            expired = [
                sid for sid, s in self._sessions.items() if s.expires_at is not None and s.expires_at < now
            ]
            for sid in expired:
                del self._sessions[sid]
        self._logger.info("Expired sessions cleaned up successfully")
        return len(expired)
"""
Linking dialog session storage.

In-memory, keyed by telegram_id. Sessions are bounded in number and
expire after an idle timeout; they are never persisted, so a restart
simply drops half-finished dialogs.
"""

from __future__ import annotations

import asyncio
import time
from contextlib import asynccontextmanager
from dataclasses import dataclass, field
from enum import Enum
from typing import AsyncIterator, Callable, Dict, Optional

from eventbot.services.validation import is_valid_email


class LinkingState(str, Enum):
    IDLE = "idle"
    AWAITING_EMAIL = "awaiting_email"
    AWAITING_PASSWORD = "awaiting_password"


@dataclass
class ConversationSession:
    """Dialog state for one Telegram user."""
    state: LinkingState = LinkingState.IDLE
    email: Optional[str] = None
    last_activity: float = field(default=0.0, compare=False)


class SessionStore:
    """
    Bounded session map with idle-timeout eviction and per-user locks.

    All linking code goes through one instance (see get_session_store),
    never through module globals.
    """

    def __init__(
        self,
        idle_timeout_seconds: float = 15 * 60,
        max_sessions: int = 10_000,
        clock: Callable[[], float] = time.monotonic,
    ):
        if max_sessions < 1:
            raise ValueError("max_sessions must be positive")
        self._idle_timeout = idle_timeout_seconds
        self._max_sessions = max_sessions
        self._clock = clock
        self._sessions: Dict[int, ConversationSession] = {}
        self._locks: Dict[int, asyncio.Lock] = {}
        self._lock_holders: Dict[int, int] = {}

    def __len__(self) -> int:
        return len(self._sessions)

    def __contains__(self, telegram_id: int) -> bool:
        return self.get(telegram_id) is not None

    def _expired(self, session: ConversationSession, now: float) -> bool:
        return now - session.last_activity > self._idle_timeout

    def get(self, telegram_id: int) -> Optional[ConversationSession]:
        """Return the live session, dropping it first if it went idle."""
        session = self._sessions.get(telegram_id)
        if session is None:
            return None
        if self._expired(session, self._clock()):
            self.delete(telegram_id)
            return None
        return session

    def put(self, telegram_id: int, session: ConversationSession) -> None:
        """Store session and mark it active now."""
        if session.state == LinkingState.AWAITING_PASSWORD and not is_valid_email(session.email or ""):
            raise ValueError("awaiting_password session requires a valid email")

        if telegram_id not in self._sessions and len(self._sessions) >= self._max_sessions:
            self._make_room()

        session.last_activity = self._clock()
        self._sessions[telegram_id] = session

    def delete(self, telegram_id: int) -> None:
        self._sessions.pop(telegram_id, None)

    def purge_expired(self) -> int:
        """Drop all idle sessions. Returns how many were removed."""
        now = self._clock()
        expired = [tid for tid, s in self._sessions.items() if self._expired(s, now)]
        for telegram_id in expired:
            self.delete(telegram_id)
        return len(expired)

    def _make_room(self) -> None:
        if self.purge_expired():
            return
        oldest = min(self._sessions, key=lambda tid: self._sessions[tid].last_activity)
        self.delete(oldest)

    @asynccontextmanager
    async def lock(self, telegram_id: int) -> AsyncIterator[None]:
        """Serialize read-modify-write for one user; other users run freely."""
        lock = self._locks.setdefault(telegram_id, asyncio.Lock())
        self._lock_holders[telegram_id] = self._lock_holders.get(telegram_id, 0) + 1
        try:
            async with lock:
                yield
        finally:
            remaining = self._lock_holders[telegram_id] - 1
            if remaining:
                self._lock_holders[telegram_id] = remaining
            else:
                del self._lock_holders[telegram_id]
                del self._locks[telegram_id]


_session_store: Optional[SessionStore] = None


def get_session_store() -> SessionStore:
    """Get or create the process-wide session store."""
    global _session_store
    if _session_store is None:
        from eventbot.config import get_settings
        settings = get_settings()
        _session_store = SessionStore(
            idle_timeout_seconds=settings.session_idle_timeout_minutes * 60,
            max_sessions=settings.session_max_entries,
        )
    return _session_store

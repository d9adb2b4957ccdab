"""Per-chat conversation state with expiry and strict per-chat serialisation."""

from __future__ import annotations

import asyncio
import logging
from collections.abc import AsyncIterator, Callable
from contextlib import asynccontextmanager
from dataclasses import dataclass, field
from datetime import datetime, timedelta
from enum import Enum
from typing import Optional
from uuid import UUID

from ..models.base import utcnow
from .extraction import TransactionFields

logger = logging.getLogger(__name__)

DEFAULT_EXPIRY = timedelta(minutes=5)


class SessionState(str, Enum):
    IDLE = "idle"
    AWAITING_PHONE = "awaiting-phone"
    COMPLETE = "complete"


@dataclass
class Session:
    chat_id: str
    state: SessionState = SessionState.IDLE
    pending_transaction: Optional[TransactionFields] = None
    # Number already stored for the pending counterparty, offered for reuse.
    known_phone: Optional[str] = None
    # Stays the same across save retries of one pending record.
    idempotency_key: Optional[UUID] = None
    last_activity_at: datetime = field(default_factory=utcnow)

    def reset(self) -> None:
        self.state = SessionState.IDLE
        self.pending_transaction = None
        self.known_phone = None
        self.idempotency_key = None

    def is_expired(self, now: datetime, expiry: timedelta) -> bool:
        return now - self.last_activity_at > expiry


@dataclass
class _Entry:
    session: Session
    lock: asyncio.Lock = field(default_factory=asyncio.Lock)


class SessionRegistry:
    """Owns every chat session.

    Work for one chat runs under that chat's lock; different chats never wait on each
    other beyond the brief registry lookup.
    """

    def __init__(
        self,
        *,
        expiry: timedelta = DEFAULT_EXPIRY,
        max_sessions: int = 10_000,
        clock: Callable[[], datetime] = utcnow,
    ) -> None:
        self.expiry = expiry
        self.max_sessions = max_sessions
        self.clock = clock
        self._entries: dict[str, _Entry] = {}
        self._lock = asyncio.Lock()

    def __len__(self) -> int:
        return len(self._entries)

    def get(self, chat_id: str) -> Optional[Session]:
        entry = self._entries.get(str(chat_id))
        return entry.session if entry else None

    @asynccontextmanager
    async def acquire(self, chat_id: str) -> AsyncIterator[Session]:
        key = str(chat_id)
        async with self._lock:
            entry = self._entries.get(key)
            if entry is None:
                self._make_room()
                entry = _Entry(Session(chat_id=key, last_activity_at=self.clock()))
                self._entries[key] = entry

        async with entry.lock:
            session = entry.session
            now = self.clock()
            if session.state is not SessionState.IDLE and session.is_expired(now, self.expiry):
                logger.info("Session for chat %s expired in state %s", key, session.state.value)
                session.reset()
            try:
                yield session
            finally:
                session.last_activity_at = self.clock()

    async def purge_expired(self) -> int:
        """Drop idle-timed-out sessions that nobody is using right now."""
        async with self._lock:
            now = self.clock()
            stale = [
                key
                for key, entry in self._entries.items()
                if not entry.lock.locked() and entry.session.is_expired(now, self.expiry)
            ]
            for key in stale:
                del self._entries[key]
        if stale:
            logger.debug("Purged %d expired sessions", len(stale))
        return len(stale)

    def _make_room(self) -> None:
        if len(self._entries) < self.max_sessions:
            return
        now = self.clock()
        unlocked = [(key, entry) for key, entry in self._entries.items() if not entry.lock.locked()]
        expired = [key for key, entry in unlocked if entry.session.is_expired(now, self.expiry)]
        for key in expired:
            del self._entries[key]
        if len(self._entries) < self.max_sessions:
            return
        # Oldest idle chats go first, then the oldest of anything not in use.
        candidates = sorted(
            (
                (entry.session.state is not SessionState.IDLE, entry.session.last_activity_at, key)
                for key, entry in unlocked
                if key in self._entries
            ),
        )
        for _, _, key in candidates:
            if len(self._entries) < self.max_sessions:
                break
            logger.warning("Session limit reached; evicting chat %s", key)
            del self._entries[key]

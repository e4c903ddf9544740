# app/services/session_store.py
"""Session storage: the only shared mutable state of the chat service.

Backends implement ``SessionStore``. Reads return detached copies, so a turn
that fails half way never leaks into the stored session.

``create`` and ``purge_expired`` take a ``protected`` collection of session
ids that have a turn in flight; those are never evicted or purged.
"""
from abc import ABC, abstractmethod
import asyncio
from collections import defaultdict
from contextlib import asynccontextmanager
from datetime import timedelta
import logging
from typing import Collection, Dict, FrozenSet, List, Optional

from app.models.domain_models import LoanSession, utcnow

logger = logging.getLogger(__name__)


class SessionNotFoundError(LookupError):
    pass


class SessionStore(ABC):
    @abstractmethod
    async def get(self, session_id: str) -> Optional[LoanSession]:
        """Detached copy of the stored session, or None."""

    @abstractmethod
    async def create(self, session: LoanSession, protected: Collection[str] = ()) -> LoanSession:
        """Insert a new session, replacing any previous one with the same id."""

    @abstractmethod
    async def update(self, session: LoanSession) -> LoanSession:
        """Replace an existing session. Raises SessionNotFoundError if absent."""

    @abstractmethod
    async def delete(self, session_id: str) -> bool:
        pass

    @abstractmethod
    async def list_ids(self) -> List[str]:
        pass

    @abstractmethod
    async def purge_expired(self, max_age_seconds: int, protected: Collection[str] = ()) -> int:
        """Drop sessions idle for longer than ``max_age_seconds``; returns the count."""


class InMemorySessionStore(SessionStore):
    """
    Process-local store. ``max_sessions`` bounds it by evicting the session
    that was updated least recently among those not in use.
    """

    def __init__(self, max_sessions: Optional[int] = None):
        if max_sessions is not None and max_sessions <= 0:
            raise ValueError("max_sessions must be positive")
        self._sessions: Dict[str, LoanSession] = {}
        self._max_sessions = max_sessions
        self._lock = asyncio.Lock()

    async def get(self, session_id: str) -> Optional[LoanSession]:
        session = self._sessions.get(session_id)
        return session.model_copy(deep=True) if session is not None else None

    async def create(self, session: LoanSession, protected: Collection[str] = ()) -> LoanSession:
        async with self._lock:
            if (
                self._max_sessions is not None
                and session.session_id not in self._sessions
                and len(self._sessions) >= self._max_sessions
            ):
                self._evict_one(protected)
            self._sessions[session.session_id] = session.model_copy(deep=True)
        return session

    def _evict_one(self, protected: Collection[str]):
        idle = [s for sid, s in self._sessions.items() if sid not in protected]
        if not idle:
            # every stored session has a turn in flight; run over the bound for now
            logger.warning(
                "session store full (%d) with every session in use; not evicting", len(self._sessions)
            )
            return
        oldest = min(idle, key=lambda s: s.updated_at)
        del self._sessions[oldest.session_id]
        logger.info("session store full; evicted %s", oldest.session_id)

    async def update(self, session: LoanSession) -> LoanSession:
        async with self._lock:
            if session.session_id not in self._sessions:
                raise SessionNotFoundError(session.session_id)
            self._sessions[session.session_id] = session.model_copy(deep=True)
        return session

    async def delete(self, session_id: str) -> bool:
        async with self._lock:
            return self._sessions.pop(session_id, None) is not None

    async def list_ids(self) -> List[str]:
        return list(self._sessions)

    async def purge_expired(self, max_age_seconds: int, protected: Collection[str] = ()) -> int:
        cutoff = utcnow() - timedelta(seconds=max_age_seconds)
        async with self._lock:
            expired = [
                sid
                for sid, s in self._sessions.items()
                if s.updated_at < cutoff and sid not in protected
            ]
            for sid in expired:
                del self._sessions[sid]
        if expired:
            logger.info("purged %d expired sessions", len(expired))
        return len(expired)


class SessionLocks:
    """
    One asyncio.Lock per session id: turns on the same session run one at a
    time, turns on different sessions never wait on each other.
    """

    def __init__(self):
        self._locks: Dict[str, asyncio.Lock] = defaultdict(asyncio.Lock)
        self._users: Dict[str, int] = defaultdict(int)

    @asynccontextmanager
    async def hold(self, session_id: str):
        self._users[session_id] += 1
        lock = self._locks[session_id]
        try:
            async with lock:
                yield
        finally:
            self._users[session_id] -= 1
            if self._users[session_id] == 0:
                del self._users[session_id]
                del self._locks[session_id]

    def held_ids(self) -> FrozenSet[str]:
        """Ids with a turn running or waiting."""
        return frozenset(self._users)

    def __contains__(self, session_id: str) -> bool:
        return session_id in self._users

    def __len__(self):
        return len(self._locks)

"""Identity to session registry."""

from __future__ import annotations

import asyncio
import logging
import threading
import weakref
from collections.abc import Callable
from dataclasses import dataclass, field

from session_gateway.domain.errors import ConstructionFailedError
from session_gateway.domain.events import TransportEvent
from session_gateway.domain.sessions import SessionSnapshot
from session_gateway.services.challenges import ChallengeStore
from session_gateway.services.lifecycle import SessionLifecycle

_logger = logging.getLogger(__name__)

SessionBuilder = Callable[[str], SessionLifecycle]


@dataclass
class SessionRegistry:
    """Owns the identity to session map.

    Creation and teardown for one identity run under that identity's lock, so
    concurrent callers see a single session and never two live transports.
    The map itself is guarded by a short thread lock that is never held
    across an ``await``. Identity locks are held weakly and disappear once no
    caller holds or waits on them.
    """

    build_session: SessionBuilder
    challenge_store: ChallengeStore
    _sessions: dict[str, SessionLifecycle] = field(default_factory=dict, init=False)
    _identity_locks: weakref.WeakValueDictionary[str, asyncio.Lock] = field(
        default_factory=weakref.WeakValueDictionary, init=False
    )
    _map_lock: threading.Lock = field(default_factory=threading.Lock, init=False)

    async def get_or_create(self, identity: str) -> SessionLifecycle:
        """Return the live session for an identity, starting one if needed."""
        existing = self.get(identity)
        if existing is not None and not _is_stale(existing):
            return existing
        async with self._lock_for(identity):
            existing = self.get(identity)
            if existing is not None and not _is_stale(existing):
                return existing
            if existing is not None:
                _logger.info(
                    "Replacing %s session for %s", existing.state.value, identity
                )
                await self._teardown(identity, existing, "replaced")
            try:
                session = self.build_session(identity)
            except Exception as exc:
                _logger.exception("Failed to construct transport for %s", identity)
                raise ConstructionFailedError(identity, exc) from exc
            with self._map_lock:
                self._sessions[identity] = session
            session.start()
            return session

    def get(self, identity: str) -> SessionLifecycle | None:
        """Return the registered session for an identity without creating one."""
        with self._map_lock:
            return self._sessions.get(identity)

    async def reset(self, identity: str) -> None:
        """Destroy and forget the session for an identity."""
        async with self._lock_for(identity):
            session = self.get(identity)
            if session is None:
                self.challenge_store.clear(identity)
                return
            await self._teardown(identity, session, "reset")

    async def remove(
        self,
        identity: str,
        expected: SessionLifecycle | None = None,
        reason: str = "removed",
    ) -> bool:
        """Tear down a session, optionally only if it is still ``expected``."""
        async with self._lock_for(identity):
            session = self.get(identity)
            if session is None:
                return False
            if expected is not None and session is not expected:
                return False
            await self._teardown(identity, session, reason)
            return True

    def list(self) -> list[SessionSnapshot]:
        """Return snapshots of every tracked session, ordered by identity."""
        with self._map_lock:
            sessions = sorted(self._sessions.items())
        return [session.snapshot() for _, session in sessions]

    def sessions(self) -> list[SessionLifecycle]:
        """Return the currently registered session objects."""
        with self._map_lock:
            return list(self._sessions.values())

    def publish(self, identity: str, event: TransportEvent) -> bool:
        """Route an inbound transport event to its session."""
        session = self.get(identity)
        if session is None:
            _logger.warning(
                "Dropping %s event for unknown session %s", event.kind.value, identity
            )
            return False
        session.emit(event)
        return True

    async def close_all(self) -> None:
        """Tear down every session, used on shutdown."""
        with self._map_lock:
            identities = list(self._sessions)
        for identity in identities:
            await self.remove(identity, reason="shutdown")

    def _lock_for(self, identity: str) -> asyncio.Lock:
        with self._map_lock:
            lock = self._identity_locks.get(identity)
            if lock is None:
                lock = asyncio.Lock()
                self._identity_locks[identity] = lock
            return lock

    async def _teardown(
        self, identity: str, session: SessionLifecycle, reason: str
    ) -> None:
        with self._map_lock:
            if self._sessions.get(identity) is session:
                del self._sessions[identity]
        self.challenge_store.clear(identity)
        await session.close(reason)
        _logger.info("Session %s torn down (%s)", identity, reason)


def _is_stale(session: SessionLifecycle) -> bool:
    return session.is_closed or session.state.is_failed

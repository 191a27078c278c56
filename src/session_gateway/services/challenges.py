"""Pending authentication challenges with expiry."""

import logging
import threading
from collections.abc import Callable
from dataclasses import dataclass, field
from datetime import UTC, datetime, timedelta

from session_gateway.domain.challenges import Challenge

_logger = logging.getLogger(__name__)

DEFAULT_CHALLENGE_TTL = timedelta(minutes=10)

Renderer = Callable[[str], bytes]
Clock = Callable[[], datetime]


def utc_now() -> datetime:
    """Return the current UTC time."""
    return datetime.now(tz=UTC)


@dataclass
class ChallengeStore:
    """Holds at most one challenge per identity.

    Age-based removal only happens through ``sweep_expired``; ``get`` returns
    whatever is stored so callers see a consistent view between sweeps.
    """

    ttl: timedelta = DEFAULT_CHALLENGE_TTL
    clock: Clock = utc_now
    _challenges: dict[str, Challenge] = field(default_factory=dict, init=False)
    _lock: threading.Lock = field(default_factory=threading.Lock, init=False)

    def put(
        self, identity: str, payload: str, render: Renderer | None = None
    ) -> Challenge:
        """Store or replace the challenge for an identity."""
        rendered: bytes | None = None
        if render is not None:
            try:
                rendered = render(payload)
            except Exception:
                _logger.exception("Challenge rendering failed for %s", identity)
        challenge = Challenge(
            identity=identity,
            payload=payload,
            rendered=rendered,
            issued_at=self.clock(),
            ttl=self.ttl,
        )
        with self._lock:
            self._challenges[identity] = challenge
        return challenge

    def get(self, identity: str) -> Challenge | None:
        """Return the current challenge for an identity, if any."""
        with self._lock:
            return self._challenges.get(identity)

    def clear(self, identity: str) -> None:
        """Drop the challenge for an identity."""
        with self._lock:
            self._challenges.pop(identity, None)

    def sweep_expired(self, now: datetime | None = None) -> set[str]:
        """Remove expired challenges and return the owning identities."""
        resolved_now = now or self.clock()
        with self._lock:
            expired = {
                identity
                for identity, challenge in self._challenges.items()
                if challenge.is_expired(resolved_now)
            }
            for identity in expired:
                del self._challenges[identity]
        return expired

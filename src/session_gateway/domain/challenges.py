"""Domain models for authentication challenges."""

from dataclasses import dataclass
from datetime import datetime, timedelta


@dataclass(frozen=True)
class Challenge:
    """A pending scan code for linking a session."""

    identity: str
    payload: str
    rendered: bytes | None
    issued_at: datetime
    ttl: timedelta

    @property
    def expires_at(self) -> datetime:
        return self.issued_at + self.ttl

    def is_expired(self, now: datetime) -> bool:
        """Return True once the challenge has outlived its TTL."""
        return now - self.issued_at > self.ttl

"""Domain models for messaging sessions."""

from dataclasses import dataclass
from datetime import datetime
from enum import Enum


class SessionState(str, Enum):
    """Lifecycle states of a messaging session."""

    INITIALIZING = "initializing"
    AWAITING_SCAN = "awaiting_scan"
    AUTHENTICATED = "authenticated"
    READY = "ready"
    AUTH_FAILED = "auth_failed"
    DISCONNECTED = "disconnected"
    ERROR = "error"

    @property
    def is_failed(self) -> bool:
        """Whether the state is one of the terminal failure states."""
        return self in FAILED_STATES


FAILED_STATES = frozenset(
    {SessionState.AUTH_FAILED, SessionState.DISCONNECTED, SessionState.ERROR}
)
BRING_UP_STATES = frozenset({SessionState.INITIALIZING, SessionState.AWAITING_SCAN})


@dataclass(frozen=True)
class SessionSnapshot:
    """Point-in-time view of a session."""

    identity: str
    state: SessionState
    created_at: datetime
    last_state_change_at: datetime
    error_detail: str | None = None
    has_challenge: bool = False

    def to_dict(self) -> dict[str, object]:
        """Serialize the snapshot for API responses."""
        return {
            "identity": self.identity,
            "status": self.state.value,
            "created_at": self.created_at.isoformat(),
            "last_state_change_at": self.last_state_change_at.isoformat(),
            "error_detail": self.error_detail,
            "has_challenge": self.has_challenge,
        }

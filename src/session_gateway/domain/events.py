"""Lifecycle events emitted by transports."""

from dataclasses import dataclass
from enum import Enum


class TransportEventKind(str, Enum):
    """Kinds of events a transport can push to its session."""

    QR = "qr"
    AUTHENTICATED = "authenticated"
    READY = "ready"
    AUTH_FAILURE = "auth_failure"
    DISCONNECTED = "disconnected"
    ERROR = "error"


@dataclass(frozen=True)
class TransportEvent:
    """Single event pushed by a transport instance.

    ``detail`` holds the scan payload for ``qr`` events and the reason for
    failure events.
    """

    kind: TransportEventKind
    detail: str | None = None

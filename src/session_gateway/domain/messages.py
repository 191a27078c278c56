"""Domain models for outbound messages."""

import re
from dataclasses import dataclass
from datetime import datetime

from session_gateway.domain.errors import InvalidRecipientError

DEFAULT_ADDRESS_SUFFIX = "@c.us"

_PHONE_CHARS = re.compile(r"^[\d\s+().-]+$")
_NON_DIGITS = re.compile(r"\D")


@dataclass(frozen=True)
class SendRequest:
    """Request to deliver a text message from a session."""

    identity: str
    recipient: str
    body: str


@dataclass(frozen=True)
class SentMessage:
    """Acknowledgement returned by a transport for one delivered message."""

    id: str
    timestamp: datetime


@dataclass(frozen=True)
class SendResult:
    """Outcome of a successful dispatch."""

    id: str
    recipient: str
    accepted_at: datetime
    attempts: int


def normalize_recipient(raw: str, suffix: str = DEFAULT_ADDRESS_SUFFIX) -> str:
    """Normalize a phone number or address into the canonical address form.

    Formatting characters (spaces, dashes, dots, parentheses, a leading plus)
    are dropped. An address that already carries the suffix is accepted when
    its local part is all digits.
    """
    value = raw.strip()
    if value.endswith(suffix):
        local = value[: -len(suffix)]
        if local.isdigit():
            return value
        raise InvalidRecipientError(raw)
    if not _PHONE_CHARS.match(value):
        raise InvalidRecipientError(raw)
    digits = _NON_DIGITS.sub("", value)
    if not digits:
        raise InvalidRecipientError(raw)
    return f"{digits}{suffix}"

"""Identity sanitization for session keys."""

import re

DEFAULT_IDENTITY = "default"
MAX_IDENTITY_LENGTH = 64

_INVALID_CHARS = re.compile(r"[^A-Za-z0-9_-]")


def sanitize_identity(
    raw: str | None,
    default: str = DEFAULT_IDENTITY,
    max_length: int = MAX_IDENTITY_LENGTH,
) -> str:
    """Return a bounded alphanumeric identity token, or the default."""
    if raw is None:
        return default
    cleaned = _INVALID_CHARS.sub("", raw.strip())[:max_length]
    return cleaned or default

"""Application configuration."""

import os

from pydantic_settings import BaseSettings, SettingsConfigDict

_ENVIRONMENT = os.getenv("ENVIRONMENT", "local")


class Settings(BaseSettings):
    """Application settings loaded from environment variables."""

    bridge_base_url: str = "http://localhost:8081"
    bridge_token: str | None = None
    bridge_event_token: str | None = None
    admin_token: str | None = None
    default_identity: str = "default"
    identity_max_length: int = 64
    address_suffix: str = "@c.us"
    challenge_ttl_seconds: float = 600.0
    challenge_wait_seconds: float = 10.0
    bring_up_timeout_seconds: float = 300.0
    janitor_interval_seconds: float = 60.0
    ready_settle_seconds: float = 3.0
    transport_init_timeout: float = 60.0
    transport_destroy_timeout: float = 15.0
    send_max_attempts: int = 5
    send_retry_delay_seconds: float = 2.0
    send_backoff_multiplier: float = 1.0
    send_max_retry_delay_seconds: float = 4.0
    send_crash_cooldown_seconds: float = 4.0
    send_attempt_timeout_seconds: float = 30.0
    crash_signatures: str = (
        "Evaluation failed,Session closed,Target closed,Protocol error"
    )
    recipient_not_found_signatures: str = (
        "not registered,invalid wid,No LID for user,recipient not found"
    )
    host: str = "0.0.0.0"
    port: int = 3000
    environment: str = _ENVIRONMENT

    model_config = SettingsConfigDict(
        env_file=(f".env.{_ENVIRONMENT}", ".env"),
        extra="ignore",
    )


def parse_signatures(raw: str | None) -> tuple[str, ...]:
    """Parse a comma-separated list of error signatures from env."""
    if raw is None:
        return ()
    signatures: list[str] = []
    for chunk in raw.split(","):
        value = chunk.strip()
        if value and value not in signatures:
            signatures.append(value)
    return tuple(signatures)

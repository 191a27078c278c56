"""Dependency container wiring for the application."""

from collections.abc import Awaitable, Callable
from dataclasses import dataclass
from datetime import timedelta

from session_gateway.adapters.bridge_transport import HttpxBridgeTransportFactory
from session_gateway.adapters.qr_renderer import ChallengeRenderer, QrCodePngRenderer
from session_gateway.adapters.transport import TransportFactory
from session_gateway.config import Settings, parse_signatures
from session_gateway.domain.identity import sanitize_identity
from session_gateway.services.challenges import ChallengeStore
from session_gateway.services.dispatcher import (
    ErrorClassifier,
    MessageDispatcher,
    RetryPolicy,
)
from session_gateway.services.janitor import Janitor
from session_gateway.services.lifecycle import SessionLifecycle
from session_gateway.services.registry import SessionRegistry


@dataclass
class AppContainer:
    """Holds application-wide dependencies."""

    settings: Settings
    challenge_store: ChallengeStore
    registry: SessionRegistry
    dispatcher: MessageDispatcher
    janitor: Janitor
    close_resources: Callable[[], Awaitable[None]]

    def identity(self, raw: str | None) -> str:
        """Sanitize a raw identity using the configured defaults."""
        return sanitize_identity(
            raw,
            default=self.settings.default_identity,
            max_length=self.settings.identity_max_length,
        )


def build_services(
    settings: Settings,
    transport_factory: TransportFactory,
    renderer: ChallengeRenderer | None,
    close_resources: Callable[[], Awaitable[None]],
) -> AppContainer:
    """Wire the session services around a transport factory."""
    challenge_store = ChallengeStore(
        ttl=timedelta(seconds=settings.challenge_ttl_seconds)
    )

    def build_session(identity: str) -> SessionLifecycle:
        return SessionLifecycle(
            identity,
            transport_factory,
            challenge_store,
            renderer,
            init_timeout=settings.transport_init_timeout,
            destroy_timeout=settings.transport_destroy_timeout,
            ready_settle_seconds=settings.ready_settle_seconds,
        )

    registry = SessionRegistry(
        build_session=build_session, challenge_store=challenge_store
    )
    dispatcher = MessageDispatcher(
        policy=RetryPolicy(
            max_attempts=settings.send_max_attempts,
            retry_delay=settings.send_retry_delay_seconds,
            backoff_multiplier=settings.send_backoff_multiplier,
            max_retry_delay=settings.send_max_retry_delay_seconds,
            crash_cooldown=settings.send_crash_cooldown_seconds,
            attempt_timeout=settings.send_attempt_timeout_seconds,
        ),
        classifier=ErrorClassifier(
            crash_signatures=parse_signatures(settings.crash_signatures),
            not_found_signatures=parse_signatures(
                settings.recipient_not_found_signatures
            ),
        ),
        address_suffix=settings.address_suffix,
    )
    janitor = Janitor(
        registry=registry,
        challenge_store=challenge_store,
        interval=timedelta(seconds=settings.janitor_interval_seconds),
        bring_up_timeout=timedelta(seconds=settings.bring_up_timeout_seconds),
    )
    return AppContainer(
        settings=settings,
        challenge_store=challenge_store,
        registry=registry,
        dispatcher=dispatcher,
        janitor=janitor,
        close_resources=close_resources,
    )


def build_container(settings: Settings | None = None) -> AppContainer:
    """Create the default dependency container."""
    resolved_settings = settings or Settings()
    transport_factory = HttpxBridgeTransportFactory.create_default(
        base_url=resolved_settings.bridge_base_url,
        token=resolved_settings.bridge_token,
        timeout=resolved_settings.send_attempt_timeout_seconds,
    )

    async def close_resources() -> None:
        await transport_factory.close()

    return build_services(
        resolved_settings,
        transport_factory=transport_factory,
        renderer=QrCodePngRenderer(),
        close_resources=close_resources,
    )

"""Shared test fixtures."""

import asyncio
import itertools
from dataclasses import dataclass, field
from datetime import UTC, datetime, timedelta

import pytest

from session_gateway.adapters.transport import EventSink, Transport, TransportFactory
from session_gateway.config import Settings
from session_gateway.containers import AppContainer, build_services
from session_gateway.domain.events import TransportEvent, TransportEventKind
from session_gateway.domain.messages import SentMessage
from session_gateway.services.challenges import ChallengeStore
from session_gateway.services.lifecycle import SessionLifecycle

FIXED_NOW = datetime(2025, 10, 1, 12, 0, tzinfo=UTC)


@dataclass
class MutableClock:
    """Clock that only moves when told to."""

    now: datetime = FIXED_NOW

    def __call__(self) -> datetime:
        return self.now

    def advance(self, **kwargs: float) -> None:
        self.now += timedelta(**kwargs)


@dataclass
class FakeTransport(Transport):
    """In-memory transport that records calls and replays scripted outcomes."""

    identity: str
    emit: EventSink
    ready: bool = True
    init_error: Exception | None = None
    destroy_error: Exception | None = None
    send_outcomes: list[Exception | None] = field(default_factory=list)
    send_delay: float = 0.0
    ready_delay: float = 0.0
    initialize_calls: int = 0
    destroy_calls: int = 0
    sent: list[tuple[str, str]] = field(default_factory=list)
    _ids: itertools.count = field(default_factory=lambda: itertools.count(1))

    async def initialize(self) -> None:
        self.initialize_calls += 1
        if self.init_error is not None:
            raise self.init_error

    async def destroy(self) -> None:
        self.destroy_calls += 1
        if self.destroy_error is not None:
            raise self.destroy_error

    async def send_message(self, address: str, body: str) -> SentMessage:
        self.sent.append((address, body))
        if self.send_delay:
            await asyncio.sleep(self.send_delay)
        outcome = self.send_outcomes.pop(0) if self.send_outcomes else None
        if outcome is not None:
            raise outcome
        return SentMessage(id=f"msg-{next(self._ids)}", timestamp=FIXED_NOW)

    async def is_ready(self) -> bool:
        if self.ready_delay:
            await asyncio.sleep(self.ready_delay)
        return self.ready

    def push(self, kind: TransportEventKind, detail: str | None = None) -> None:
        self.emit(TransportEvent(kind, detail))


@dataclass
class FakeTransportFactory(TransportFactory):
    """Factory that hands out fake transports and remembers them."""

    created: list[FakeTransport] = field(default_factory=list)
    error: Exception | None = None
    init_error: Exception | None = None

    def create(self, identity: str, emit: EventSink) -> FakeTransport:
        if self.error is not None:
            raise self.error
        transport = FakeTransport(
            identity=identity, emit=emit, init_error=self.init_error
        )
        self.created.append(transport)
        return transport

    def for_identity(self, identity: str) -> FakeTransport:
        return [t for t in self.created if t.identity == identity][-1]


@dataclass
class FakeRenderer:
    """Renderer that returns predictable bytes."""

    def render(self, payload: str) -> bytes:
        return f"png:{payload}".encode()


@dataclass
class RecordingSleep:
    """Replacement for asyncio.sleep that records requested delays."""

    delays: list[float] = field(default_factory=list)

    async def __call__(self, delay: float) -> None:
        self.delays.append(delay)


async def settle(rounds: int = 10) -> None:
    """Yield to the loop so queued session events get applied."""
    for _ in range(rounds):
        await asyncio.sleep(0)


def make_session(
    factory: FakeTransportFactory,
    store: ChallengeStore,
    identity: str = "user1",
    clock: MutableClock | None = None,
) -> SessionLifecycle:
    return SessionLifecycle(
        identity,
        factory,
        store,
        FakeRenderer(),
        init_timeout=1.0,
        destroy_timeout=1.0,
        clock=clock or MutableClock(),
    )


async def ready_session(
    factory: FakeTransportFactory, store: ChallengeStore, identity: str = "user1"
) -> SessionLifecycle:
    session = make_session(factory, store, identity)
    session.start()
    factory.for_identity(identity).push(TransportEventKind.READY)
    await settle()
    return session


@pytest.fixture
def clock() -> MutableClock:
    return MutableClock()


@pytest.fixture
def transport_factory() -> FakeTransportFactory:
    return FakeTransportFactory()


@pytest.fixture
def challenge_store(clock: MutableClock) -> ChallengeStore:
    return ChallengeStore(clock=clock)


@pytest.fixture
def settings() -> Settings:
    return Settings(
        bridge_base_url="http://bridge.test",
        admin_token="admin-token",
        bridge_event_token="bridge-token",
        challenge_wait_seconds=0.2,
        ready_settle_seconds=0.0,
        transport_init_timeout=1.0,
        transport_destroy_timeout=1.0,
        send_retry_delay_seconds=0.0,
        send_crash_cooldown_seconds=0.0,
        send_attempt_timeout_seconds=1.0,
    )


@pytest.fixture
def container(
    settings: Settings, transport_factory: FakeTransportFactory
) -> AppContainer:
    async def close_resources() -> None:
        return None

    return build_services(
        settings,
        transport_factory=transport_factory,
        renderer=FakeRenderer(),
        close_resources=close_resources,
    )

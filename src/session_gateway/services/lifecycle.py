"""Per-session state machine driving one transport."""

import asyncio
import logging

from session_gateway.adapters.qr_renderer import ChallengeRenderer
from session_gateway.adapters.transport import Transport, TransportFactory
from session_gateway.domain.errors import SessionClosedError
from session_gateway.domain.events import TransportEvent, TransportEventKind
from session_gateway.domain.sessions import SessionSnapshot, SessionState
from session_gateway.services.challenges import ChallengeStore, Clock, utc_now

_logger = logging.getLogger(__name__)

_QR_SOURCES = frozenset({SessionState.INITIALIZING, SessionState.AWAITING_SCAN})
_AUTHENTICATED_SOURCES = frozenset({SessionState.AWAITING_SCAN})
_READY_SOURCES = frozenset(
    {
        SessionState.INITIALIZING,
        SessionState.AWAITING_SCAN,
        SessionState.AUTHENTICATED,
    }
)
_FAILURE_TARGETS = {
    TransportEventKind.AUTH_FAILURE: SessionState.AUTH_FAILED,
    TransportEventKind.DISCONNECTED: SessionState.DISCONNECTED,
    TransportEventKind.ERROR: SessionState.ERROR,
}
_TEARDOWN_EVENTS = frozenset(
    {TransportEventKind.AUTH_FAILURE, TransportEventKind.DISCONNECTED}
)


class SessionLifecycle:
    """Owns one transport and applies its events in arrival order.

    Events are queued by ``emit`` and consumed by a single task, so state is
    only ever mutated by that task or by ``close``. A failure state is
    terminal: later events are ignored until the registry replaces the
    session.
    """

    def __init__(  # noqa: PLR0913
        self,
        identity: str,
        transport_factory: TransportFactory,
        challenge_store: ChallengeStore,
        renderer: ChallengeRenderer | None = None,
        *,
        init_timeout: float = 60.0,
        destroy_timeout: float = 15.0,
        ready_settle_seconds: float = 0.0,
        clock: Clock = utc_now,
    ) -> None:
        self.identity = identity
        self._challenges = challenge_store
        self._renderer = renderer
        self._init_timeout = init_timeout
        self._destroy_timeout = destroy_timeout
        self._ready_settle_seconds = ready_settle_seconds
        self._clock = clock
        now = clock()
        self.created_at = now
        self.last_state_change_at = now
        self.state = SessionState.INITIALIZING
        self.error_detail: str | None = None
        self._events: asyncio.Queue[TransportEvent] = asyncio.Queue()
        self._consumer: asyncio.Task[None] | None = None
        self._init_task: asyncio.Task[None] | None = None
        self._inflight: set[asyncio.Task[object]] = set()
        self._transport_lock = asyncio.Lock()
        self._transport_released = False
        self._closed = False
        self.transport: Transport = transport_factory.create(identity, self.emit)

    @property
    def is_closed(self) -> bool:
        return self._closed

    @property
    def is_ready(self) -> bool:
        return not self._closed and self.state is SessionState.READY

    def start(self) -> None:
        """Begin consuming events and initialize the transport in the background."""
        if self._consumer is not None or self._closed:
            return
        _logger.info("Starting session %s", self.identity)
        self._consumer = asyncio.create_task(
            self._consume(), name=f"session-events:{self.identity}"
        )
        self._init_task = asyncio.create_task(
            self._initialize(), name=f"session-init:{self.identity}"
        )

    def emit(self, event: TransportEvent) -> None:
        """Queue a transport event for ordered processing."""
        if self._closed:
            _logger.debug(
                "Dropping %s event for closed session %s",
                event.kind.value,
                self.identity,
            )
            return
        self._events.put_nowait(event)

    def snapshot(self) -> SessionSnapshot:
        """Return an immutable view of the session."""
        return SessionSnapshot(
            identity=self.identity,
            state=self.state,
            created_at=self.created_at,
            last_state_change_at=self.last_state_change_at,
            error_detail=self.error_detail,
            has_challenge=self._challenges.get(self.identity) is not None,
        )

    def track(self, task: asyncio.Task[object]) -> None:
        """Register an in-flight transport call so teardown can cancel it."""
        if self._closed:
            task.cancel()
            return
        self._inflight.add(task)
        task.add_done_callback(self._inflight.discard)

    async def reinitialize_transport(self) -> None:
        """Destroy and re-initialize the transport after a crash."""
        self._ensure_reusable()
        _logger.warning("Reinitializing transport for %s", self.identity)
        async with self._transport_lock:
            self._ensure_reusable()
            try:
                await asyncio.wait_for(
                    self.transport.destroy(), timeout=self._destroy_timeout
                )
            except Exception:
                _logger.exception(
                    "Transport destroy failed during reinitialize for %s",
                    self.identity,
                )
            await asyncio.wait_for(
                self.transport.initialize(), timeout=self._init_timeout
            )

    async def close(self, reason: str = "session closed") -> None:
        """Tear the session down; calling it again is a no-op."""
        if self._closed:
            return
        self._closed = True
        if not self.state.is_failed:
            self._transition(SessionState.DISCONNECTED, reason)
        self._challenges.clear(self.identity)
        self._cancel_inflight()
        pending = [
            task
            for task in (self._init_task, self._consumer)
            if task is not None and not task.done()
        ]
        for task in pending:
            task.cancel()
        await asyncio.gather(*pending, return_exceptions=True)
        await self._release_transport()

    async def _initialize(self) -> None:
        try:
            await asyncio.wait_for(
                self.transport.initialize(), timeout=self._init_timeout
            )
        except Exception as exc:
            _logger.warning(
                "Transport initialization failed for %s: %s",
                self.identity,
                _describe(exc),
            )
            self.emit(
                TransportEvent(
                    TransportEventKind.ERROR,
                    f"initialization failed: {_describe(exc)}",
                )
            )

    async def _consume(self) -> None:
        while True:
            event = await self._events.get()
            try:
                await self._apply(event)
            except Exception:
                _logger.exception(
                    "Failed to apply %s event for %s", event.kind.value, self.identity
                )

    async def _apply(self, event: TransportEvent) -> None:
        if self.state.is_failed:
            _logger.debug(
                "Ignoring %s event for %s in terminal state %s",
                event.kind.value,
                self.identity,
                self.state.value,
            )
            return
        if event.kind is TransportEventKind.QR:
            self._on_qr(event)
        elif event.kind is TransportEventKind.AUTHENTICATED:
            self._on_authenticated()
        elif event.kind is TransportEventKind.READY:
            await self._on_ready()
        else:
            await self._on_failure(event)

    def _on_qr(self, event: TransportEvent) -> None:
        if self.state not in _QR_SOURCES:
            self._ignore(event.kind)
            return
        if not event.detail:
            _logger.warning("Ignoring qr event without payload for %s", self.identity)
            return
        render = self._renderer.render if self._renderer is not None else None
        self._challenges.put(self.identity, event.detail, render)
        _logger.info("QR received for %s", self.identity)
        self._transition(SessionState.AWAITING_SCAN)

    def _on_authenticated(self) -> None:
        if self.state not in _AUTHENTICATED_SOURCES:
            self._ignore(TransportEventKind.AUTHENTICATED)
            return
        self._challenges.clear(self.identity)
        self._transition(SessionState.AUTHENTICATED)

    async def _on_ready(self) -> None:
        if self.state not in _READY_SOURCES:
            self._ignore(TransportEventKind.READY)
            return
        self._challenges.clear(self.identity)
        if self._ready_settle_seconds > 0:
            _logger.info(
                "Session %s ready, waiting %.1fs to stabilize",
                self.identity,
                self._ready_settle_seconds,
            )
            await asyncio.sleep(self._ready_settle_seconds)
        self._transition(SessionState.READY)

    async def _on_failure(self, event: TransportEvent) -> None:
        target = _FAILURE_TARGETS[event.kind]
        self._transition(target, event.detail or event.kind.value)
        self._challenges.clear(self.identity)
        if event.kind in _TEARDOWN_EVENTS:
            self._cancel_inflight()
            await self._release_transport()

    def _transition(self, state: SessionState, detail: str | None = None) -> None:
        previous = self.state
        self.state = state
        self.last_state_change_at = self._clock()
        self.error_detail = (detail or state.value) if state.is_failed else None
        if detail and state.is_failed:
            _logger.info(
                "Session %s: %s -> %s (%s)",
                self.identity,
                previous.value,
                state.value,
                detail,
            )
        else:
            _logger.info(
                "Session %s: %s -> %s", self.identity, previous.value, state.value
            )

    def _ignore(self, kind: TransportEventKind) -> None:
        _logger.debug(
            "Ignoring %s event for %s in state %s",
            kind.value,
            self.identity,
            self.state.value,
        )

    def _ensure_reusable(self) -> None:
        # A released transport stays released.
        if self._closed or self._transport_released or self.state.is_failed:
            raise SessionClosedError(
                f"Session {self.identity} is closed (state={self.state.value})"
            )

    def _cancel_inflight(self) -> None:
        for task in list(self._inflight):
            task.cancel()

    async def _release_transport(self) -> None:
        async with self._transport_lock:
            if self._transport_released:
                return
            try:
                await asyncio.wait_for(
                    self.transport.destroy(), timeout=self._destroy_timeout
                )
            except Exception:
                _logger.exception("Failed to destroy transport for %s", self.identity)
            self._transport_released = True


def _describe(exc: BaseException) -> str:
    return str(exc) or type(exc).__name__

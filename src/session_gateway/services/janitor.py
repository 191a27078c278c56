"""Background sweep for expired challenges and abandoned sessions."""

import asyncio
import logging
from dataclasses import dataclass, field
from datetime import datetime, timedelta

from session_gateway.domain.sessions import BRING_UP_STATES
from session_gateway.services.challenges import ChallengeStore, Clock, utc_now
from session_gateway.services.registry import SessionRegistry

_logger = logging.getLogger(__name__)


@dataclass
class Janitor:
    """Periodically reaps sessions that will never become usable."""

    registry: SessionRegistry
    challenge_store: ChallengeStore
    interval: timedelta = timedelta(seconds=60)
    bring_up_timeout: timedelta = timedelta(minutes=5)
    clock: Clock = utc_now
    _task: asyncio.Task[None] | None = field(default=None, init=False)

    async def run_once(self, now: datetime | None = None) -> set[str]:
        """Run a single sweep and return the identities that were reaped."""
        resolved_now = now or self.clock()
        reaped: set[str] = set()

        for identity in self.challenge_store.sweep_expired(resolved_now):
            if await self.registry.remove(identity, reason="challenge expired"):
                reaped.add(identity)

        for session in self.registry.sessions():
            if session.state.is_failed:
                reason = f"reaped in state {session.state.value}"
            elif (
                session.state in BRING_UP_STATES
                and resolved_now - session.created_at > self.bring_up_timeout
            ):
                reason = "bring-up timed out"
            else:
                continue
            if await self.registry.remove(
                session.identity, expected=session, reason=reason
            ):
                reaped.add(session.identity)

        if reaped:
            _logger.info(
                "Janitor reaped %s session(s): %s", len(reaped), sorted(reaped)
            )
        return reaped

    def start(self) -> None:
        """Start the periodic sweep in the background."""
        if self._task is not None and not self._task.done():
            return
        self._task = asyncio.create_task(self._run(), name="session-janitor")

    async def stop(self) -> None:
        """Stop the periodic sweep and wait for it to finish."""
        if self._task is None:
            return
        self._task.cancel()
        await asyncio.gather(self._task, return_exceptions=True)
        self._task = None

    async def _run(self) -> None:
        while True:
            await asyncio.sleep(self.interval.total_seconds())
            try:
                await self.run_once()
            except Exception:
                _logger.exception("Janitor sweep failed")

"""Retrying message dispatch over a session's transport."""

import asyncio
import logging
from collections.abc import Awaitable, Callable
from dataclasses import dataclass, field
from enum import Enum
from typing import TypeVar

from session_gateway.domain.errors import (
    DeliveryFailedError,
    NotReadyError,
    RecipientNotFoundError,
    SessionClosedError,
    TransientTransportError,
    TransportCrashedError,
)
from session_gateway.domain.messages import (
    DEFAULT_ADDRESS_SUFFIX,
    SendResult,
    SentMessage,
    normalize_recipient,
)
from session_gateway.services.lifecycle import SessionLifecycle

_logger = logging.getLogger(__name__)

Sleep = Callable[[float], Awaitable[None]]
T = TypeVar("T")


class FailureKind(str, Enum):
    """Classification of a failed send attempt."""

    RECIPIENT_NOT_FOUND = "recipient_not_found"
    CRASHED = "crashed"
    TRANSIENT = "transient"


@dataclass(frozen=True)
class RetryPolicy:
    """Attempt budget and delays for message delivery."""

    max_attempts: int = 5
    retry_delay: float = 2.0
    backoff_multiplier: float = 1.0
    max_retry_delay: float = 4.0
    crash_cooldown: float = 4.0
    attempt_timeout: float = 30.0

    def delay_for(self, failed_attempt: int) -> float:
        """Return the cooldown after the given (1-based) failed attempt."""
        delay = self.retry_delay * self.backoff_multiplier ** (failed_attempt - 1)
        return min(delay, max(self.max_retry_delay, self.retry_delay))


@dataclass(frozen=True)
class ErrorClassifier:
    """Maps transport failures onto retry behaviour.

    Typed transport errors win; otherwise the error text is matched against
    the configured signatures (case-insensitive).
    """

    crash_signatures: tuple[str, ...] = ()
    not_found_signatures: tuple[str, ...] = ()

    def classify(self, exc: BaseException) -> FailureKind:
        """Return the failure kind for an exception raised by an attempt."""
        if isinstance(exc, RecipientNotFoundError):
            return FailureKind.RECIPIENT_NOT_FOUND
        if isinstance(exc, TransportCrashedError):
            return FailureKind.CRASHED
        message = str(exc).lower()
        if any(sig.lower() in message for sig in self.not_found_signatures):
            return FailureKind.RECIPIENT_NOT_FOUND
        if any(sig.lower() in message for sig in self.crash_signatures):
            return FailureKind.CRASHED
        return FailureKind.TRANSIENT


@dataclass
class MessageDispatcher:
    """Deliver messages through ready sessions with bounded retries."""

    policy: RetryPolicy = field(default_factory=RetryPolicy)
    classifier: ErrorClassifier = field(default_factory=ErrorClassifier)
    address_suffix: str = DEFAULT_ADDRESS_SUFFIX
    sleep: Sleep = asyncio.sleep

    async def send(
        self, session: SessionLifecycle, recipient: str, body: str
    ) -> SendResult:
        """Send a message, retrying transient failures per the policy."""
        if not session.is_ready:
            raise NotReadyError(session.identity, session.state.value)
        address = normalize_recipient(recipient, self.address_suffix)

        last_error: BaseException | None = None
        attempts = 0
        for attempt in range(1, self.policy.max_attempts + 1):
            if _is_torn_down(session):
                raise DeliveryFailedError(
                    attempts,
                    SessionClosedError(f"Session {session.identity} was torn down"),
                )
            attempts = attempt
            try:
                sent = await self._attempt(session, address, body)
            except SessionClosedError as exc:
                raise DeliveryFailedError(attempts, exc) from exc
            except Exception as exc:
                last_error = exc
                kind = self.classifier.classify(exc)
                _logger.warning(
                    "Send attempt %s/%s for %s to %s failed (%s): %s",
                    attempt,
                    self.policy.max_attempts,
                    session.identity,
                    address,
                    kind.value,
                    _describe(exc),
                )
                if kind is FailureKind.RECIPIENT_NOT_FOUND:
                    if isinstance(exc, RecipientNotFoundError):
                        raise
                    raise RecipientNotFoundError(_describe(exc)) from exc
                if attempt == self.policy.max_attempts:
                    break
                if kind is FailureKind.CRASHED:
                    try:
                        await self._recover(session)
                    except SessionClosedError as closed:
                        raise DeliveryFailedError(attempts, closed) from closed
                    await self.sleep(self.policy.crash_cooldown)
                else:
                    await self.sleep(self.policy.delay_for(attempt))
                continue
            _logger.info(
                "Message sent for %s to %s on attempt %s",
                session.identity,
                address,
                attempt,
            )
            return SendResult(
                id=sent.id,
                recipient=address,
                accepted_at=sent.timestamp,
                attempts=attempt,
            )

        cause = last_error or TransientTransportError("no attempts were made")
        raise DeliveryFailedError(attempts, cause) from last_error

    async def _attempt(
        self, session: SessionLifecycle, address: str, body: str
    ) -> SentMessage:
        ready = await self._tracked(
            session,
            asyncio.wait_for(
                session.transport.is_ready(), timeout=self.policy.attempt_timeout
            ),
        )
        if not ready:
            raise TransientTransportError("transport is not ready")
        return await self._tracked(
            session,
            asyncio.wait_for(
                session.transport.send_message(address, body),
                timeout=self.policy.attempt_timeout,
            ),
        )

    async def _recover(self, session: SessionLifecycle) -> None:
        try:
            await self._tracked(session, session.reinitialize_transport())
        except SessionClosedError:
            raise
        except Exception as exc:
            _logger.warning(
                "Transport reinitialize failed for %s: %s",
                session.identity,
                _describe(exc),
            )

    async def _tracked(self, session: SessionLifecycle, call: Awaitable[T]) -> T:
        """Run a transport call as a task the session can cancel on teardown."""
        task = asyncio.ensure_future(call)
        session.track(task)
        try:
            return await task
        except asyncio.CancelledError:
            current = asyncio.current_task()
            if task.cancelled() and _is_torn_down(session) and not (
                current is not None and current.cancelling()
            ):
                raise SessionClosedError(
                    f"Session {session.identity} was torn down"
                ) from None
            raise


def _is_torn_down(session: SessionLifecycle) -> bool:
    return session.is_closed or session.state.is_failed


def _describe(exc: BaseException) -> str:
    return str(exc) or type(exc).__name__

"""Transport collaborator interfaces."""

from collections.abc import Callable
from typing import Protocol

from session_gateway.domain.events import TransportEvent
from session_gateway.domain.messages import SentMessage

EventSink = Callable[[TransportEvent], None]


class Transport(Protocol):
    """Connection to the messaging network for a single identity.

    Implementations push lifecycle events through the sink they were created
    with; the session processes them one at a time in arrival order.
    """

    async def initialize(self) -> None:
        """Start the transport and its authentication flow."""

    async def destroy(self) -> None:
        """Release the transport. Destroying twice must be a no-op."""

    async def send_message(self, address: str, body: str) -> SentMessage:
        """Send a text message to a canonical address."""

    async def is_ready(self) -> bool:
        """Return True when the transport can accept messages."""


class TransportFactory(Protocol):
    """Creates one transport per session."""

    def create(self, identity: str, emit: EventSink) -> Transport:
        """Construct (but do not initialize) a transport for an identity."""

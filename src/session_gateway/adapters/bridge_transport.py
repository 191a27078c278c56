"""Messaging bridge transport adapter."""

import logging
from dataclasses import dataclass, field
from datetime import UTC, datetime

import httpx

from session_gateway.adapters.transport import EventSink
from session_gateway.domain.errors import (
    RecipientNotFoundError,
    TransientTransportError,
    TransportCrashedError,
)
from session_gateway.domain.events import TransportEvent, TransportEventKind
from session_gateway.domain.messages import SentMessage

_logger = logging.getLogger(__name__)

_CRASH_STATUS_CODES = {409, 410}


@dataclass
class HttpxBridgeTransport:
    """Transport backed by an external bridge service over HTTP.

    The bridge owns the browser session and stored credentials. Lifecycle
    events reach the gateway through the event webhook; the start response may
    also carry an immediate QR payload or readiness flag, which is forwarded
    through ``emit``.
    """

    identity: str
    base_url: str
    http_client: httpx.AsyncClient
    emit: EventSink
    token: str | None = None
    timeout: float = 30.0
    _started: bool = field(default=False, init=False)

    async def initialize(self) -> None:
        """Ask the bridge to start a session for this identity."""
        response = await self.http_client.post(
            self._url("start"), headers=self._headers(), timeout=self.timeout
        )
        response.raise_for_status()
        self._started = True
        payload = _json_or_empty(response)
        if payload.get("ready") is True:
            self.emit(TransportEvent(TransportEventKind.READY))
        elif isinstance(payload.get("qr"), str):
            self.emit(TransportEvent(TransportEventKind.QR, payload["qr"]))

    async def destroy(self) -> None:
        """Ask the bridge to close the session; no-op when not started."""
        if not self._started:
            return
        self._started = False
        response = await self.http_client.delete(
            f"{self.base_url}/sessions/{self.identity}",
            headers=self._headers(),
            timeout=self.timeout,
        )
        if response.status_code == 404:
            return
        response.raise_for_status()

    async def send_message(self, address: str, body: str) -> SentMessage:
        """Send a message and map bridge failures onto transport errors."""
        try:
            response = await self.http_client.post(
                self._url("messages"),
                json={"chatId": address, "body": body},
                headers=self._headers(),
                timeout=self.timeout,
            )
            response.raise_for_status()
        except httpx.HTTPStatusError as exc:
            detail = _error_detail(exc.response)
            if exc.response.status_code == 404:
                raise RecipientNotFoundError(detail) from exc
            if exc.response.status_code in _CRASH_STATUS_CODES:
                raise TransportCrashedError(detail) from exc
            raise TransientTransportError(detail) from exc
        except httpx.TransportError as exc:
            raise TransientTransportError(str(exc) or type(exc).__name__) from exc
        payload = _json_or_empty(response)
        return SentMessage(
            id=str(payload.get("id", "")),
            timestamp=_parse_timestamp(payload.get("timestamp")),
        )

    async def is_ready(self) -> bool:
        """Query the bridge for the session's readiness."""
        try:
            response = await self.http_client.get(
                self._url("state"), headers=self._headers(), timeout=self.timeout
            )
            response.raise_for_status()
        except httpx.HTTPError as exc:
            _logger.warning("Bridge state probe failed for %s: %s", self.identity, exc)
            return False
        return _json_or_empty(response).get("ready") is True

    def _url(self, action: str) -> str:
        return f"{self.base_url}/sessions/{self.identity}/{action}"

    def _headers(self) -> dict[str, str]:
        if self.token is None:
            return {}
        return {"Authorization": f"Bearer {self.token}"}


@dataclass
class HttpxBridgeTransportFactory:
    """Creates bridge transports sharing one httpx session."""

    base_url: str
    http_client: httpx.AsyncClient
    token: str | None = None
    timeout: float = 30.0

    @classmethod
    def create_default(
        cls, base_url: str, token: str | None = None, timeout: float = 30.0
    ) -> "HttpxBridgeTransportFactory":
        """Create a factory with a managed httpx session."""
        return cls(
            base_url=base_url.rstrip("/"),
            http_client=httpx.AsyncClient(),
            token=token,
            timeout=timeout,
        )

    def create(self, identity: str, emit: EventSink) -> HttpxBridgeTransport:
        """Build an uninitialized transport for an identity."""
        return HttpxBridgeTransport(
            identity=identity,
            base_url=self.base_url,
            http_client=self.http_client,
            emit=emit,
            token=self.token,
            timeout=self.timeout,
        )

    async def close(self) -> None:
        """Close the underlying HTTP client session."""
        await self.http_client.aclose()


def _json_or_empty(response: httpx.Response) -> dict[str, object]:
    if not response.content:
        return {}
    try:
        payload = response.json()
    except ValueError:
        return {}
    return payload if isinstance(payload, dict) else {}


def _error_detail(response: httpx.Response) -> str:
    payload = _json_or_empty(response)
    for key in ("error", "detail", "message"):
        value = payload.get(key)
        if isinstance(value, str) and value:
            return value
    return f"bridge returned HTTP {response.status_code}"


def _parse_timestamp(raw: object) -> datetime:
    """Parse an epoch-seconds or ISO timestamp, defaulting to now."""
    if isinstance(raw, int | float):
        return datetime.fromtimestamp(raw, tz=UTC)
    if isinstance(raw, str):
        try:
            parsed = datetime.fromisoformat(raw)
        except ValueError:
            return datetime.now(tz=UTC)
        return parsed if parsed.tzinfo else parsed.replace(tzinfo=UTC)
    return datetime.now(tz=UTC)

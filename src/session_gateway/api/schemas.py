"""Pydantic models for HTTP payloads."""

from pydantic import AliasChoices, BaseModel, Field

from session_gateway.domain.events import TransportEvent, TransportEventKind
from session_gateway.domain.messages import SendRequest


class SendMessageRequest(BaseModel):
    """Body of a send request; accepts the legacy ``number``/``message`` keys."""

    recipient: str = Field(
        min_length=1, validation_alias=AliasChoices("recipient", "number")
    )
    body: str = Field(min_length=1, validation_alias=AliasChoices("body", "message"))

    def to_request(self, identity: str) -> SendRequest:
        return SendRequest(identity=identity, recipient=self.recipient, body=self.body)


class TransportEventPayload(BaseModel):
    """Lifecycle event pushed by the messaging bridge."""

    type: TransportEventKind
    detail: str | None = Field(
        default=None, validation_alias=AliasChoices("detail", "qr", "reason")
    )

    def to_event(self) -> TransportEvent:
        """Convert the payload to a domain event."""
        return TransportEvent(kind=self.type, detail=self.detail)

"""Error taxonomy for session and delivery failures."""


class GatewayError(Exception):
    """Base class for errors surfaced to API callers."""

    error_code = "gateway_error"
    status_code = 500

    def to_dict(self) -> dict[str, object]:
        """Serialize the error for JSON responses."""
        return {"error": self.error_code, "detail": str(self)}


class NotReadyError(GatewayError):
    """Raised when a session is asked to send before it is ready."""

    error_code = "not_ready"
    status_code = 409

    def __init__(self, identity: str, state: str) -> None:
        super().__init__(f"Session {identity} is not ready (state={state})")
        self.identity = identity
        self.state = state

    def to_dict(self) -> dict[str, object]:
        return {**super().to_dict(), "status": self.state}


class InvalidRecipientError(GatewayError):
    """Raised when a recipient cannot be normalized to an address."""

    error_code = "invalid_recipient"
    status_code = 400

    def __init__(self, recipient: str) -> None:
        super().__init__(f"Invalid recipient: {recipient!r}")
        self.recipient = recipient


class RecipientNotFoundError(GatewayError):
    """Raised when the recipient is not registered on the messaging network."""

    error_code = "recipient_not_found"
    status_code = 404


class TransientTransportError(GatewayError):
    """Retryable transport failure."""

    error_code = "transient_transport_failure"
    status_code = 502


class TransportCrashedError(TransientTransportError):
    """Retryable failure that requires reinitializing the transport."""

    error_code = "transport_crashed"


class SessionClosedError(GatewayError):
    """Raised when a session is torn down while work is in flight."""

    error_code = "session_closed"
    status_code = 409


class DeliveryFailedError(GatewayError):
    """Raised when a message could not be delivered after all attempts."""

    error_code = "delivery_failed"
    status_code = 502

    def __init__(self, attempts: int, cause: BaseException) -> None:
        super().__init__(f"Failed to send message after {attempts} attempts: {cause}")
        self.attempts = attempts
        self.cause = cause

    def to_dict(self) -> dict[str, object]:
        return {
            **super().to_dict(),
            "attempts": self.attempts,
            "cause": type(self.cause).__name__,
        }


class ConstructionFailedError(GatewayError):
    """Raised when a transport could not be constructed for an identity."""

    error_code = "construction_failed"
    status_code = 503

    def __init__(self, identity: str, cause: BaseException) -> None:
        super().__init__(f"Could not start transport for {identity}: {cause}")
        self.identity = identity
        self.cause = cause

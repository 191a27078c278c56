"""FastAPI application factory."""

import asyncio
import base64
import logging
from collections.abc import AsyncIterator
from contextlib import asynccontextmanager

from fastapi import Depends, FastAPI, Header, HTTPException, Request, status
from fastapi.responses import HTMLResponse, JSONResponse, Response

from session_gateway.api.admin import router as admin_router
from session_gateway.api.schemas import SendMessageRequest, TransportEventPayload
from session_gateway.app_logging import configure_logging
from session_gateway.containers import AppContainer
from session_gateway.domain.challenges import Challenge
from session_gateway.domain.errors import GatewayError
from session_gateway.services.lifecycle import SessionLifecycle

_CHALLENGE_POLL_SECONDS = 0.5


def _get_bridge_event_token(request: Request) -> str | None:
    container: AppContainer = request.app.state.container
    return container.settings.bridge_event_token


async def require_bridge_token(
    x_bridge_token: str | None = Header(default=None),
    bridge_token: str | None = Depends(_get_bridge_event_token),
) -> None:
    """Ensure bridge callbacks carry the shared token when one is configured."""
    if bridge_token is None:
        return
    if x_bridge_token != bridge_token:
        raise HTTPException(status_code=status.HTTP_401_UNAUTHORIZED)


def create_app(container: AppContainer) -> FastAPI:  # noqa: PLR0915
    """Create a FastAPI app configured with dependencies."""
    configure_logging()
    logger = logging.getLogger(__name__)

    @asynccontextmanager
    async def lifespan(app: FastAPI) -> AsyncIterator[None]:
        state_container: AppContainer = app.state.container
        state_container.janitor.start()
        yield
        await state_container.janitor.stop()
        try:
            await state_container.registry.close_all()
        except Exception:
            logger.exception("Failed to tear down sessions on shutdown")
        await state_container.close_resources()

    app = FastAPI(lifespan=lifespan)
    app.state.container = container

    app.include_router(admin_router)

    @app.exception_handler(GatewayError)
    async def gateway_error_handler(
        request: Request, exc: GatewayError
    ) -> JSONResponse:
        logger.info(
            "Request %s %s failed: %s", request.method, request.url.path, exc
        )
        return JSONResponse(status_code=exc.status_code, content=exc.to_dict())

    @app.get("/health")
    async def health() -> dict[str, str]:
        """Simple health check endpoint."""
        return {"status": "ok"}

    @app.get("/", response_class=HTMLResponse)
    async def index(request: Request) -> HTMLResponse:
        """Landing page pointing operators at the QR pages."""
        state_container: AppContainer = request.app.state.container
        example = state_container.settings.default_identity
        return HTMLResponse(
            "<h1>Session gateway running</h1>"
            f'<p>Open <a href="/qr/{example}">/qr/{example}</a> to link a session.</p>'
            "<p>Use /qr/{identity} for additional identities.</p>"
        )

    @app.get("/challenge/{identity}")
    async def get_challenge(identity: str, request: Request) -> dict[str, object]:
        """Return the pending QR challenge or the readiness of a session."""
        state_container: AppContainer = request.app.state.container
        resolved = state_container.identity(identity)
        session = await state_container.registry.get_or_create(resolved)
        challenge = await _wait_for_challenge(state_container, session)
        return {
            "identity": resolved,
            "status": session.state.value,
            "ready": session.is_ready,
            "challenge": _challenge_body(challenge) if challenge else None,
        }

    @app.get("/challenge/{identity}/image")
    async def get_challenge_image(identity: str, request: Request) -> Response:
        """Return the rendered QR challenge as a PNG."""
        state_container: AppContainer = request.app.state.container
        resolved = state_container.identity(identity)
        challenge = state_container.challenge_store.get(resolved)
        if challenge is None or challenge.rendered is None:
            raise HTTPException(status_code=status.HTTP_404_NOT_FOUND)
        return Response(content=challenge.rendered, media_type="image/png")

    @app.get("/qr/{identity}", response_class=HTMLResponse)
    async def qr_page(identity: str, request: Request) -> HTMLResponse:
        """Auto-refreshing page that shows the QR code until the session is ready."""
        state_container: AppContainer = request.app.state.container
        resolved = state_container.identity(identity)
        session = await state_container.registry.get_or_create(resolved)
        challenge = await _wait_for_challenge(state_container, session)
        return HTMLResponse(_qr_page_html(resolved, session, challenge))

    @app.get("/status/{identity}")
    async def get_status(identity: str, request: Request) -> dict[str, object]:
        """Return the lifecycle state of a session without creating one."""
        state_container: AppContainer = request.app.state.container
        resolved = state_container.identity(identity)
        session = state_container.registry.get(resolved)
        if session is None:
            return {
                "identity": resolved,
                "status": "not_found",
                "has_challenge": False,
                "is_ready": False,
            }
        snapshot = session.snapshot()
        return {
            "identity": resolved,
            "status": snapshot.state.value,
            "has_challenge": snapshot.has_challenge,
            "is_ready": session.is_ready,
            "error_detail": snapshot.error_detail,
        }

    @app.post("/send/{identity}")
    async def send_message(
        identity: str, payload: SendMessageRequest, request: Request
    ) -> dict[str, object]:
        """Deliver a text message through a ready session."""
        state_container: AppContainer = request.app.state.container
        resolved = state_container.identity(identity)
        send_request = payload.to_request(resolved)
        session = await state_container.registry.get_or_create(resolved)
        result = await state_container.dispatcher.send(
            session, send_request.recipient, send_request.body
        )
        return {
            "success": True,
            "message_id": result.id,
            "recipient": result.recipient,
            "accepted_at": result.accepted_at.isoformat(),
            "attempts": result.attempts,
        }

    @app.post("/reset/{identity}")
    async def reset_session(identity: str, request: Request) -> dict[str, object]:
        """Tear down a session and start a fresh one."""
        state_container: AppContainer = request.app.state.container
        resolved = state_container.identity(identity)
        await state_container.registry.reset(resolved)
        session = await state_container.registry.get_or_create(resolved)
        return {"identity": resolved, "status": session.state.value, "reset": True}

    @app.get("/sessions")
    async def list_sessions(request: Request) -> dict[str, object]:
        """Enumerate tracked identities and their states."""
        state_container: AppContainer = request.app.state.container
        return {
            "sessions": [
                {"identity": snapshot.identity, "status": snapshot.state.value}
                for snapshot in state_container.registry.list()
            ]
        }

    @app.post(
        "/transport/events/{identity}", dependencies=[Depends(require_bridge_token)]
    )
    async def transport_event(
        identity: str, payload: TransportEventPayload, request: Request
    ) -> dict[str, str]:
        """Accept a lifecycle event pushed by the messaging bridge."""
        state_container: AppContainer = request.app.state.container
        resolved = state_container.identity(identity)
        accepted = state_container.registry.publish(resolved, payload.to_event())
        return {"status": "ok" if accepted else "ignored"}

    return app


async def _wait_for_challenge(
    container: AppContainer, session: SessionLifecycle
) -> Challenge | None:
    """Poll briefly for a challenge while the session is still coming up."""
    loop = asyncio.get_running_loop()
    deadline = loop.time() + container.settings.challenge_wait_seconds
    while True:
        challenge = container.challenge_store.get(session.identity)
        if challenge is not None or session.is_ready or session.state.is_failed:
            return challenge
        if loop.time() >= deadline:
            return None
        await asyncio.sleep(_CHALLENGE_POLL_SECONDS)


def _challenge_body(challenge: Challenge) -> dict[str, object]:
    image = None
    if challenge.rendered is not None:
        encoded = base64.b64encode(challenge.rendered).decode("ascii")
        image = f"data:image/png;base64,{encoded}"
    return {
        "payload": challenge.payload,
        "image": image,
        "issued_at": challenge.issued_at.isoformat(),
        "expires_at": challenge.expires_at.isoformat(),
    }


def _qr_page_html(
    identity: str, session: SessionLifecycle, challenge: Challenge | None
) -> str:
    if session.is_ready:
        return f"<h2>Session ready for {identity}</h2>"
    if challenge is not None and challenge.rendered is not None:
        return (
            f"<h2>Scan the QR code for {identity}</h2>"
            f'<img src="/challenge/{identity}/image" width="300"/>'
            f"<p>Status: {session.state.value} (page refreshes every 10s)</p>"
            "<script>setTimeout(()=>location.reload(),10000)</script>"
        )
    return (
        f"<h2>Waiting for a QR code for {identity}...</h2>"
        f"<p>Status: {session.state.value}</p>"
        "<script>setTimeout(()=>location.reload(),3000)</script>"
    )

"""Tests for the public HTTP endpoints."""

import time

from fastapi.testclient import TestClient

from session_gateway.api.app import create_app
from session_gateway.containers import AppContainer
from tests.conftest import FakeTransportFactory

BRIDGE_HEADERS = {"X-Bridge-Token": "bridge-token"}


def _wait_for_status(client: TestClient, identity: str, expected: str) -> dict:
    data: dict = {}
    for _ in range(100):
        data = client.get(f"/status/{identity}").json()
        if data["status"] == expected:
            return data
        time.sleep(0.01)
    raise AssertionError(f"status never reached {expected!r}: {data}")


def _push(client: TestClient, identity: str, payload: dict) -> dict:
    response = client.post(
        f"/transport/events/{identity}", json=payload, headers=BRIDGE_HEADERS
    )
    assert response.status_code == 200
    return response.json()


def test_health(container: AppContainer) -> None:
    with TestClient(create_app(container)) as client:
        response = client.get("/health")

    assert response.status_code == 200
    assert response.json() == {"status": "ok"}


def test_index_links_to_qr_page(container: AppContainer) -> None:
    with TestClient(create_app(container)) as client:
        response = client.get("/")

    assert response.status_code == 200
    assert "text/html" in response.headers["content-type"]
    assert 'href="/qr/default"' in response.text


def test_link_then_send_flow(
    container: AppContainer, transport_factory: FakeTransportFactory
) -> None:
    with TestClient(create_app(container)) as client:
        reset = client.post("/reset/user1").json()
        assert reset == {"identity": "user1", "status": "initializing", "reset": True}

        assert _push(client, "user1", {"type": "qr", "qr": "ABC"}) == {"status": "ok"}
        _wait_for_status(client, "user1", "awaiting_scan")

        challenge = client.get("/challenge/user1").json()
        assert challenge["status"] == "awaiting_scan"
        assert challenge["ready"] is False
        assert challenge["challenge"]["payload"] == "ABC"
        assert challenge["challenge"]["image"].startswith("data:image/png;base64,")

        image = client.get("/challenge/user1/image")
        assert image.status_code == 200
        assert image.headers["content-type"] == "image/png"
        assert image.content == b"png:ABC"

        _push(client, "user1", {"type": "ready"})
        status = _wait_for_status(client, "user1", "ready")
        assert status["is_ready"] is True
        assert status["has_challenge"] is False

        response = client.post(
            "/send/user1", json={"recipient": "+1 (555) 123-4567", "body": "hi"}
        )

    assert response.status_code == 200
    data = response.json()
    assert data["success"] is True
    assert data["message_id"] == "msg-1"
    assert data["recipient"] == "15551234567@c.us"
    assert data["attempts"] == 1
    assert transport_factory.for_identity("user1").sent == [
        ("15551234567@c.us", "hi")
    ]


def test_send_accepts_legacy_field_names(container: AppContainer) -> None:
    with TestClient(create_app(container)) as client:
        client.post("/reset/user1")
        _push(client, "user1", {"type": "ready"})
        _wait_for_status(client, "user1", "ready")

        response = client.post(
            "/send/user1", json={"number": "15551234567", "message": "hello"}
        )

    assert response.status_code == 200
    assert response.json()["recipient"] == "15551234567@c.us"


def test_send_before_ready_is_conflict(
    container: AppContainer, transport_factory: FakeTransportFactory
) -> None:
    with TestClient(create_app(container)) as client:
        response = client.post(
            "/send/user1", json={"recipient": "15551234567", "body": "hi"}
        )

    assert response.status_code == 409
    data = response.json()
    assert data["error"] == "not_ready"
    assert data["status"] == "initializing"
    assert transport_factory.for_identity("user1").sent == []


def test_send_invalid_recipient_is_bad_request(container: AppContainer) -> None:
    with TestClient(create_app(container)) as client:
        client.post("/reset/user1")
        _push(client, "user1", {"type": "ready"})
        _wait_for_status(client, "user1", "ready")

        response = client.post(
            "/send/user1", json={"recipient": "call me", "body": "hi"}
        )

    assert response.status_code == 400
    assert response.json()["error"] == "invalid_recipient"


def test_send_missing_body_is_rejected(container: AppContainer) -> None:
    with TestClient(create_app(container)) as client:
        response = client.post("/send/user1", json={"recipient": "15551234567"})

    assert response.status_code == 422


def test_send_delivery_failure_is_bad_gateway(
    container: AppContainer, transport_factory: FakeTransportFactory
) -> None:
    with TestClient(create_app(container)) as client:
        client.post("/reset/user1")
        _push(client, "user1", {"type": "ready"})
        _wait_for_status(client, "user1", "ready")
        transport_factory.for_identity("user1").send_outcomes = [
            RuntimeError("socket hang up") for _ in range(5)
        ]

        response = client.post(
            "/send/user1", json={"recipient": "15551234567", "body": "hi"}
        )

    assert response.status_code == 502
    data = response.json()
    assert data["error"] == "delivery_failed"
    assert data["attempts"] == 5


def test_status_of_unknown_identity_does_not_create_session(
    container: AppContainer, transport_factory: FakeTransportFactory
) -> None:
    with TestClient(create_app(container)) as client:
        response = client.get("/status/ghost")
        sessions = client.get("/sessions").json()

    assert response.json()["status"] == "not_found"
    assert sessions == {"sessions": []}
    assert transport_factory.created == []


def test_challenge_times_out_without_qr(container: AppContainer) -> None:
    with TestClient(create_app(container)) as client:
        response = client.get("/challenge/user1")
        image = client.get("/challenge/user1/image")

    assert response.status_code == 200
    data = response.json()
    assert data["status"] == "initializing"
    assert data["challenge"] is None
    assert image.status_code == 404


def test_identity_is_sanitized(container: AppContainer) -> None:
    with TestClient(create_app(container)) as client:
        client.post("/reset/a.b!c")
        sessions = client.get("/sessions").json()

    assert sessions == {"sessions": [{"identity": "abc", "status": "initializing"}]}


def test_reset_replaces_session(
    container: AppContainer, transport_factory: FakeTransportFactory
) -> None:
    with TestClient(create_app(container)) as client:
        client.post("/reset/user1")
        _push(client, "user1", {"type": "ready"})
        _wait_for_status(client, "user1", "ready")

        response = client.post("/reset/user1")
        status = client.get("/status/user1").json()

    assert response.json()["status"] == "initializing"
    assert status["status"] == "initializing"
    assert len(transport_factory.created) == 2
    assert transport_factory.created[0].destroy_calls == 1


def test_sessions_lists_identities(container: AppContainer) -> None:
    with TestClient(create_app(container)) as client:
        client.post("/reset/bob")
        client.post("/reset/alice")
        response = client.get("/sessions")

    assert response.json() == {
        "sessions": [
            {"identity": "alice", "status": "initializing"},
            {"identity": "bob", "status": "initializing"},
        ]
    }


def test_transport_events_require_bridge_token(container: AppContainer) -> None:
    with TestClient(create_app(container)) as client:
        client.post("/reset/user1")
        missing = client.post("/transport/events/user1", json={"type": "ready"})
        wrong = client.post(
            "/transport/events/user1",
            json={"type": "ready"},
            headers={"X-Bridge-Token": "nope"},
        )
        status = client.get("/status/user1").json()

    assert missing.status_code == 401
    assert wrong.status_code == 401
    assert status["status"] == "initializing"


def test_transport_event_for_unknown_identity_is_ignored(
    container: AppContainer,
) -> None:
    with TestClient(create_app(container)) as client:
        data = _push(client, "ghost", {"type": "ready"})

    assert data == {"status": "ignored"}


def test_failure_event_is_reported_in_status(container: AppContainer) -> None:
    with TestClient(create_app(container)) as client:
        client.post("/reset/user1")
        _push(client, "user1", {"type": "auth_failure", "reason": "bad credentials"})
        status = _wait_for_status(client, "user1", "auth_failed")

    assert status["error_detail"] == "bad credentials"
    assert status["is_ready"] is False


def test_qr_page_renders_image(container: AppContainer) -> None:
    with TestClient(create_app(container)) as client:
        client.post("/reset/user1")
        _push(client, "user1", {"type": "qr", "detail": "ABC"})
        _wait_for_status(client, "user1", "awaiting_scan")
        waiting = client.get("/qr/user1")

        _push(client, "user1", {"type": "ready"})
        _wait_for_status(client, "user1", "ready")
        ready = client.get("/qr/user1")

    assert waiting.status_code == 200
    assert "text/html" in waiting.headers["content-type"]
    assert '<img src="/challenge/user1/image"' in waiting.text
    assert "Session ready for user1" in ready.text


def test_shutdown_tears_down_sessions(
    container: AppContainer, transport_factory: FakeTransportFactory
) -> None:
    with TestClient(create_app(container)) as client:
        client.post("/reset/user1")

    assert container.registry.list() == []
    assert transport_factory.for_identity("user1").destroy_calls == 1

"""ASGI entrypoint for the session gateway API."""

from session_gateway.api.app import create_app
from session_gateway.containers import build_container

app = create_app(build_container())
